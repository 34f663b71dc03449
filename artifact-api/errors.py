from enum import Enum


class ErrorKind(str, Enum):
    MISSING_AUTH = "missing_auth"
    TOKEN_INVALID = "token_invalid"
    REPOSITORY_NOT_ALLOWED = "repository_not_allowed"
    MISSING_FILENAME = "missing_filename"
    INVALID_FILENAME = "invalid_filename"
    INVALID_BRANCH = "invalid_branch"
    MISSING_BODY = "missing_body"
    ARTIFACT_NOT_FOUND = "artifact_not_found"
    KEY_SET_UNAVAILABLE = "key_set_unavailable"
    STORAGE_ERROR = "storage_error"


class ConfigError(RuntimeError):
    pass


class ArtifactApiError(Exception):
    """
    Base class of every failure the API maps to an HTTP response.

    `message` is the fixed text returned to the caller. `detail` is a
    diagnostic string that only goes to the log.
    """
    kind: ErrorKind
    status: int = 500
    message: str = "Internal error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message)
        self.detail = detail


class MissingAuth(ArtifactApiError):
    kind = ErrorKind.MISSING_AUTH
    status = 401
    message = "Missing or invalid Authorization header"


class TokenInvalid(ArtifactApiError):
    kind = ErrorKind.TOKEN_INVALID
    status = 403
    message = "Token verification failed"


class RepositoryNotAllowed(ArtifactApiError):
    kind = ErrorKind.REPOSITORY_NOT_ALLOWED
    status = 403
    message = "Repository not allowed"

    def __init__(self, repository: str, detail: str | None = None):
        super().__init__(detail or f"Repository {repository!r} is not allowed to upload")
        self.repository = repository


class MissingFilename(ArtifactApiError):
    kind = ErrorKind.MISSING_FILENAME
    status = 400
    message = "Missing filename parameter"


class InvalidFilename(ArtifactApiError):
    kind = ErrorKind.INVALID_FILENAME
    status = 400
    message = "Invalid filename"


class InvalidBranch(ArtifactApiError):
    kind = ErrorKind.INVALID_BRANCH
    status = 400
    message = "Invalid branch"


class MissingBody(ArtifactApiError):
    kind = ErrorKind.MISSING_BODY
    status = 400
    message = "Request body is required"


class ArtifactNotFound(ArtifactApiError):
    kind = ErrorKind.ARTIFACT_NOT_FOUND
    status = 404
    message = "Artifact not found"


class KeySetUnavailable(ArtifactApiError):
    kind = ErrorKind.KEY_SET_UNAVAILABLE
    status = 503
    message = "Token verification keys unavailable"


class StorageError(ArtifactApiError):
    kind = ErrorKind.STORAGE_ERROR
    status = 500
    message = "Storage backend failure"


class InvalidStorageKey(StorageError):
    pass
