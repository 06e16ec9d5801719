"""RepoDB: wires the remote store, provisioner, cache and stores together.

One RepoDB per process (or per request scope, in tests). It owns the HTTP
session and the cache; ``connect(user_id)`` provisions the user's repository
and hands back the stores bound to it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from repodb.cache import Cache
from repodb.collections import CollectionStore
from repodb.config import RepoDBConfig
from repodb.facade import ChatRepository
from repodb.models import RepoHandle, validate_id
from repodb.provisioner import RepoFiles, RepositoryProvisioner
from repodb.remote import GitHubStore, RemoteStore
from repodb.timeline import TimelineStore, build_timeline_store

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """Everything bound to one user's provisioned repository."""

    user_id: str
    repo: RepoHandle
    chats: ChatRepository
    collections: CollectionStore
    timeline: TimelineStore


class RepoDB:
    """Entry point for applications."""

    def __init__(
        self,
        config: RepoDBConfig,
        store: RemoteStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._owns_store = store is None
        self.store: RemoteStore = store if store is not None else GitHubStore(config.remote)
        self.provisioner = RepositoryProvisioner(self.store, config.remote.repo_name)
        self.cache = Cache.from_config(config.cache, clock=clock)
        self._handles: dict[str, RepoHandle] = {}

    async def __aenter__(self) -> RepoDB:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        self.cache.invalidate_all()
        if self._owns_store and hasattr(self.store, "close"):
            await self.store.close()

    async def connect(self, user_id: str) -> UserSession:
        """Provision (once per process) and bind the stores for ``user_id``."""
        validate_id(user_id, "user id")
        handle = self._handles.get(user_id)
        if handle is None:
            handle = await self.provisioner.ensure(user_id)
            self._handles[user_id] = handle
            logger.info("Connected %s to %s", user_id, handle.full_name)

        files = RepoFiles(self.store, handle, self.provisioner)
        timeline = build_timeline_store(files, self.config.timeline)
        return UserSession(
            user_id=user_id,
            repo=handle,
            chats=ChatRepository(timeline, self.cache, owner_id=user_id),
            collections=CollectionStore(files),
            timeline=timeline,
        )
