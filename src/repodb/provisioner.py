"""Per-user backing repository: creation, base layout, manifest and repair."""

from __future__ import annotations

import logging

import frontmatter

from repodb.errors import AccessDenied, NotFound, ProvisioningError, RemoteUnavailable
from repodb.models import DirEntry, RemoteFile, RepoHandle, format_timestamp, utcnow
from repodb.remote.base import RemoteStore

logger = logging.getLogger(__name__)

MARKER_PATH = "README.md"
MANIFEST_PATH = "repodb.md"
MANIFEST_VERSION = 1

# Directory purposes written to the manifest. Advisory only, never read back.
LAYOUT = {
    "timeline": "Monthly chat journals (timeline/<year>-<month>.md)",
    "threads": "Chat threads, one JSON file per thread (entity_files encoding)",
    "messages": "Chat messages grouped per thread (entity_files encoding)",
    "agents": "Custom AI agents",
    "workflows": "Workflow definitions",
    "archives": "Archived conversation groups",
    "profiles": "User profile and preferences",
    "tool_configs": "Tool and MCP server configuration",
}


def _render_marker(handle: RepoHandle) -> str:
    return (
        f"# {handle.name}\n\n"
        "Private chat history and settings managed by repodb.\n\n"
        "Files are plain markdown and JSON; edit by hand at your own risk.\n"
    )


def _render_manifest(handle: RepoHandle, user_id: str) -> str:
    post = frontmatter.Post(
        "# repodb manifest\n\n"
        + "\n".join(f"- `{name}/` {purpose}" for name, purpose in LAYOUT.items())
        + "\n",
        version=MANIFEST_VERSION,
        repository=handle.full_name,
        user_id=user_id,
        created=format_timestamp(utcnow()),
        layout=LAYOUT,
    )
    return frontmatter.dumps(post) + "\n"


class RepositoryProvisioner:
    """Make sure a user's private repository exists and can take writes."""

    def __init__(self, store: RemoteStore, repo_name: str) -> None:
        self._store = store
        self._repo_name = repo_name

    async def ensure(self, user_id: str) -> RepoHandle:
        """Create the repository if absent, initialize it if empty, write the manifest."""
        try:
            handle = await self._store.get_repo(self._repo_name)
            if handle is None:
                logger.info("Creating repository %s for user %s", self._repo_name, user_id)
                handle = await self._store.create_repo(self._repo_name, private=True)

            if not await self._store.list(handle.full_name, ""):
                logger.info("Repository %s is empty, writing baseline", handle.full_name)
                await self._store.put(
                    handle.full_name, MARKER_PATH, _render_marker(handle), "Initialize repository"
                )

            if await self._store.get(handle.full_name, MANIFEST_PATH) is None:
                await self._store.put(
                    handle.full_name,
                    MANIFEST_PATH,
                    _render_manifest(handle, user_id),
                    "Write repodb manifest",
                )
        except AccessDenied as e:
            raise ProvisioningError(f"Permission denied provisioning {self._repo_name}: {e}") from e
        except RemoteUnavailable as e:
            raise ProvisioningError(f"Repository host unreachable: {e}") from e
        except NotFound as e:
            raise ProvisioningError(f"Repository {self._repo_name} not writable: {e}") from e
        return handle

    async def repair(self, handle: RepoHandle) -> None:
        """Write the baseline marker so an uninitialized repository accepts writes."""
        logger.warning("Repairing repository %s", handle.full_name)
        try:
            existing = await self._store.get(handle.full_name, MARKER_PATH)
            await self._store.put(
                handle.full_name,
                MARKER_PATH,
                _render_marker(handle),
                "Repair repository baseline",
                existing.hash if existing else None,
            )
        except (NotFound, AccessDenied, RemoteUnavailable) as e:
            raise ProvisioningError(f"Could not repair {handle.full_name}: {e}") from e


class RepoFiles:
    """File access bound to one provisioned repository.

    A NotFound on write means the repository lost its initial commit (or was
    never initialized); the provisioner repairs it and the write is retried once.
    """

    def __init__(self, store: RemoteStore, handle: RepoHandle, provisioner: RepositoryProvisioner) -> None:
        self.store = store
        self.handle = handle
        self._provisioner = provisioner

    @property
    def repo(self) -> str:
        return self.handle.full_name

    async def read(self, path: str) -> RemoteFile | None:
        return await self.store.get(self.repo, path)

    async def write(self, path: str, content: str, message: str, expected_hash: str | None = None) -> str:
        try:
            return await self.store.put(self.repo, path, content, message, expected_hash)
        except NotFound:
            await self._provisioner.repair(self.handle)
            return await self.store.put(self.repo, path, content, message, expected_hash)

    async def delete(self, path: str, hash: str, message: str) -> None:
        await self.store.delete(self.repo, path, hash, message)

    async def list(self, directory: str) -> list[DirEntry]:
        return await self.store.list(self.repo, directory)
