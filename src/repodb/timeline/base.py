"""Timeline store protocol and the shared read-modify-write loop."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from repodb.errors import Conflict
from repodb.models import Message, Thread
from repodb.provisioner import RepoFiles

logger = logging.getLogger(__name__)

# Receives the current file content (None if absent); returns the new content,
# or None to leave the file alone.
Mutation = Callable[[str | None], str | None]


@runtime_checkable
class TimelineStore(Protocol):
    """Protocol that every thread/message encoding must implement."""

    async def upsert_thread(self, thread: Thread) -> Thread:
        """Create the thread's record, or rewrite it with new metadata."""
        ...

    async def get_thread(self, thread_id: str) -> Thread | None:
        """Return the thread, or None when it is absent or deleted."""
        ...

    async def list_threads(
        self, limit: int | None = None, owner_id: str | None = None, *, scan_all: bool = False
    ) -> list[Thread]:
        """Active threads, most recent activity first.

        Listing may be bounded to recent data; ``scan_all`` lifts that bound.
        """
        ...

    async def append_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        """Add a new message to its thread."""
        ...

    async def upsert_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        """Rewrite an existing message in place, or append it if it is new."""
        ...

    async def list_messages(self, thread_id: str) -> list[Message]:
        """Active messages of an active thread, oldest first."""
        ...

    async def delete_thread(self, thread_id: str) -> bool:
        """Soft-delete a thread. Returns False when it was not found."""
        ...

    async def delete_message(self, message_id: str) -> bool:
        """Soft-delete one message. Returns False when it was not found."""
        ...

    async def delete_messages_after(self, message_id: str) -> int:
        """Soft-delete every message created strictly after the given one."""
        ...


async def read_modify_write(
    files: RepoFiles,
    path: str,
    mutate: Mutation,
    message: str,
    retries: int = 0,
) -> bool:
    """Apply ``mutate`` to a file under its content-hash guard.

    On Conflict the file is re-read and ``mutate`` re-applied, up to
    ``retries`` extra times; the last Conflict propagates. Returns True when
    a write happened.
    """
    attempt = 0
    while True:
        remote = await files.read(path)
        current = remote.content if remote else None
        updated = mutate(current)
        if updated is None or updated == current:
            return False
        try:
            await files.write(path, updated, message, remote.hash if remote else None)
            return True
        except Conflict:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("Conflict writing %s, re-reading (retry %d/%d)", path, attempt, retries)
