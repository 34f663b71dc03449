"""
Filesystem-backed object store.

A key `<dir>/<name>` is stored as <root>/objects/<sha256(dir)>/<name>, its
content type and custom metadata as <root>/metadata/<sha256(dir)>/<name>.
Hashing the directory part keeps the on-disk layout flat: no key's file can
ever be another key's directory, and long branch names never reach the
filesystem. Writes go to <root>/_tmp first and are moved into place with
os.replace, so a put always overwrites the previous object in one step.
"""
import hashlib
import json
import logging
import os
import posixpath
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from errors import InvalidStorageKey, StorageError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_NAME_BYTES = 255


@dataclass(frozen=True)
class ArtifactEntry:
    key: str
    size: int
    uploaded_at: datetime


@dataclass(frozen=True)
class StoredArtifact:
    key: str
    data: bytes
    content_type: str
    metadata: dict[str, str]


def _bucket(directory: str) -> str:
    return hashlib.sha256(directory.encode("utf-8")).hexdigest()


class FilesystemArtifactStore:

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.objects_dir = self.root / "objects"
        self.metadata_dir = self.root / "metadata"
        self.tmp_dir = self.root / "_tmp"
        for directory in (self.objects_dir, self.metadata_dir, self.tmp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _split_key(key: str) -> tuple[str, str]:
        """Returns (directory part including the trailing '/', object name)."""
        norm = posixpath.normpath(key) if key else ""
        if (not key or key.startswith("/") or key.endswith("/") or norm != key
                or norm.startswith("../") or "\x00" in key):
            raise InvalidStorageKey(f"Storage key {key[:80]!r} is not a clean relative path")
        directory, _, name = key.rpartition("/")
        if name in (".", "..") or len(name.encode("utf-8")) > MAX_NAME_BYTES:
            raise InvalidStorageKey(f"Storage key {key[:80]!r} has an unusable object name")
        return f"{directory}/" if directory else "", name

    def _paths(self, key: str) -> tuple[Path, Path]:
        directory, name = self._split_key(key)
        bucket = _bucket(directory)
        return self.objects_dir / bucket / name, self.metadata_dir / bucket / name

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.tmp_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def put(self, key: str, data: bytes, content_type: str | None, metadata: dict[str, str]) -> None:
        object_path, metadata_path = self._paths(key)
        record = {
            "key": key,
            "content_type": content_type or DEFAULT_CONTENT_TYPE,
            "metadata": dict(metadata),
        }
        try:
            self._write_atomic(object_path, data)
            self._write_atomic(metadata_path, json.dumps(record).encode("utf-8"))
        except OSError as exc:
            logger.error(f"Failed to store {key}: {exc}")
            raise StorageError(f"Failed to store {key}: {exc}") from exc

    def get(self, key: str) -> StoredArtifact | None:
        object_path, metadata_path = self._paths(key)
        try:
            data = object_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

        try:
            record = json.loads(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            record = {}
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read metadata of {key}: {exc}") from exc

        return StoredArtifact(
            key=key,
            data=data,
            content_type=record.get("content_type") or DEFAULT_CONTENT_TYPE,
            metadata=record.get("metadata") or {},
        )

    def list(self, prefix: str) -> list[ArtifactEntry]:
        """
        Objects directly under `prefix`, which must end in '/'. Keys are
        `prefix + name`; deeper keys belong to a different prefix.
        """
        if not prefix.endswith("/"):
            raise InvalidStorageKey(f"List prefix {prefix[:80]!r} must end with '/'")
        directory = self.objects_dir / _bucket(prefix)

        entries = []
        try:
            if not directory.is_dir():
                return []
            for path in sorted(directory.iterdir()):
                if not path.is_file():
                    continue
                stat = path.stat()
                entries.append(ArtifactEntry(
                    key=f"{prefix}{path.name}",
                    size=stat.st_size,
                    uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
        except OSError as exc:
            raise StorageError(f"Failed to list {prefix}: {exc}") from exc
        return entries
