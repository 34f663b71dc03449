import re

from errors import InvalidBranch, InvalidFilename, MissingFilename

FILENAME_PATTERN = re.compile(r"[A-Za-z0-9._-]+")
MAX_FILENAME_LENGTH = 255
MAX_SEGMENT_BYTES = 255
MAX_BRANCH_BYTES = 1024

REF_PREFIXES = ("refs/heads/", "refs/tags/")
LATEST_SEGMENT = "latest"


def validate_filename(filename: str | None) -> str:
    """
    Guard for every filename that ends up in a storage key.

    Keys are plain string concatenations, so this is what keeps a caller
    out of other branches' namespaces.
    """
    if not filename:
        raise MissingFilename()
    if len(filename) > MAX_FILENAME_LENGTH:
        raise InvalidFilename(f"Filename longer than {MAX_FILENAME_LENGTH} characters")
    if not FILENAME_PATTERN.fullmatch(filename):
        raise InvalidFilename(f"Filename {filename[:50]!r} contains disallowed characters")
    if filename == "." or ".." in filename:
        raise InvalidFilename(f"Filename {filename[:50]!r} is a relative path component")
    return filename


def validate_branch(branch: str | None) -> str:
    if not branch:
        raise InvalidBranch("Empty branch")
    if len(branch.encode("utf-8")) > MAX_BRANCH_BYTES:
        raise InvalidBranch(f"Branch longer than {MAX_BRANCH_BYTES} bytes")
    if "\\" in branch or any(ord(ch) < 32 or ord(ch) == 127 for ch in branch):
        raise InvalidBranch(f"Branch {branch[:50]!r} contains disallowed characters")
    segments = branch.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise InvalidBranch(f"Branch {branch[:50]!r} has an empty or relative segment")
    if any(len(segment.encode("utf-8")) > MAX_SEGMENT_BYTES for segment in segments):
        raise InvalidBranch(f"Branch {branch[:50]!r} has a segment longer than {MAX_SEGMENT_BYTES} bytes")
    return branch


def extract_branch(ref: str) -> str:
    """refs/heads/main -> main, refs/tags/v1 -> v1; anything else is used as is."""
    for prefix in REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def list_prefix(branch: str) -> str:
    return f"{branch}/{LATEST_SEGMENT}/"


def derive_key(branch: str, filename: str) -> str:
    return f"{list_prefix(branch)}{filename}"
