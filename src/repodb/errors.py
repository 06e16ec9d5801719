"""Error taxonomy shared by every storage layer."""

from __future__ import annotations


class RepoDBError(Exception):
    """Base class for all repodb errors."""


class NotFound(RepoDBError):
    """A file, entity or repository does not exist.

    Reads translate this into ``None`` / ``[]``; it only surfaces from writes,
    where it means the backing repository is missing or uninitialized.
    """


class Conflict(RepoDBError):
    """The content hash supplied with a write no longer matches the remote file."""

    def __init__(self, path: str, message: str = "") -> None:
        self.path = path
        super().__init__(message or f"Concurrent modification of {path}")


class ProvisioningError(RepoDBError):
    """The backing repository could not be created, reached or repaired."""


class RemoteUnavailable(RepoDBError):
    """Network failure, timeout or rate limit that outlived the client's retries."""


class AccessDenied(RepoDBError):
    """The token was rejected or lacks permission for the operation."""


class EncodingError(RepoDBError):
    """A stored file could not be parsed.

    Raised instead of skipping the file so the next write never overwrites a
    shared journal with a partial view of it.
    """

    def __init__(self, path: str, reason: str, line: int | None = None) -> None:
        self.path = path
        self.reason = reason
        self.line = line
        where = f"{path}:{line}" if line is not None else path
        super().__init__(f"Cannot parse {where}: {reason}")
