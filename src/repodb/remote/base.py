"""Remote store protocol: the file API of a hosted Git repository service."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from repodb.models import DirEntry, Identity, RemoteFile, RepoHandle


@runtime_checkable
class RemoteStore(Protocol):
    """Protocol that every backing store must implement.

    ``repo`` arguments are full names (``owner/name``). Writes are guarded by
    the content hash of the version the caller last read.
    """

    async def get(self, repo: str, path: str) -> RemoteFile | None:
        """Return the file, or None when it does not exist."""
        ...

    async def put(
        self,
        repo: str,
        path: str,
        content: str,
        message: str,
        expected_hash: str | None = None,
    ) -> str:
        """Create or update a file and return its new content hash.

        Raises Conflict when ``expected_hash`` is stale (or missing for an
        existing file) and NotFound when the repository cannot take writes.
        """
        ...

    async def delete(self, repo: str, path: str, hash: str, message: str) -> None:
        """Delete a file at the given revision."""
        ...

    async def list(self, repo: str, directory: str = "") -> list[DirEntry]:
        """List a directory; a missing directory lists as empty."""
        ...

    async def get_repo(self, name: str) -> RepoHandle | None:
        """Look up a repository of the authenticated user."""
        ...

    async def create_repo(self, name: str, private: bool = True) -> RepoHandle:
        """Create a repository for the authenticated user."""
        ...

    async def get_identity(self) -> Identity:
        """Return the login the token authenticates as."""
        ...
