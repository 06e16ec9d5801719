"""Timeline store over monthly markdown journals.

Each thread has a home section in the journal of the month it was created.
A message lands in the journal of the month it was created in; when that
is a later month, a continuation section is synthesized there. Readers merge
every section of a thread, letting the home section win for title and
creation time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from repodb.models import DELETED, Message, Thread, ensure_utc, validate_id
from repodb.provisioner import RepoFiles
from repodb.timeline.base import read_modify_write
from repodb.timeline.format import (
    JOURNAL_DIR,
    Journal,
    is_journal_name,
    journal_path,
    id_marker,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JournalTimelineStore:
    """Threads and messages stored as sections of ``timeline/YYYY-MM.md``."""

    def __init__(
        self,
        files: RepoFiles,
        *,
        scan_limit: int | None = 12,
        conflict_retries: int = 0,
    ) -> None:
        self._files = files
        self._scan_limit = scan_limit
        self._conflict_retries = conflict_retries

    # ── Helpers ──────────────────────────────────────────────

    async def _journal_paths(self) -> list[str]:
        """Journal paths, newest month first."""
        entries = await self._files.list(JOURNAL_DIR)
        names = sorted((e.name for e in entries if e.type == "file" and is_journal_name(e.name)), reverse=True)
        return [f"{JOURNAL_DIR}/{name}" for name in names]

    async def _journals_containing(self, marker: str, limit: int | None = None) -> list[Journal]:
        """Parse only the journals whose raw text mentions ``marker``."""
        paths = await self._journal_paths()
        if limit:
            paths = paths[:limit]
        journals = []
        for path in paths:
            remote = await self._files.read(path)
            if remote is None or marker not in remote.content:
                continue
            journals.append(Journal.parse(remote.content, path))
        return journals

    async def _mutate(self, path: str, change: Callable[[Journal], T], message: str) -> T | None:
        result: T | None = None

        def apply(content: str | None) -> str | None:
            nonlocal result
            journal = Journal.parse(content, path) if content is not None else Journal.empty(path)
            result = change(journal)
            return journal.render() if journal.modified else None

        await read_modify_write(self._files, path, apply, message, self._conflict_retries)
        return result

    @staticmethod
    def _merge_threads(journals: list[Journal], owner_id: str | None = None) -> dict[str, Thread]:
        """Fold every section into one Thread per id (deleted ones included)."""
        threads: dict[str, Thread] = {}
        has_home: dict[str, bool] = {}
        for journal in journals:
            for section in journal.sections:
                if owner_id and section.owner_id and section.owner_id != owner_id:
                    continue
                current = threads.get(section.thread_id)
                if current is None:
                    threads[section.thread_id] = section.to_thread()
                    has_home[section.thread_id] = not section.continued
                    continue

                current.last_message_at = max(current.last_message_at, section.last_activity)
                if not section.continued and not has_home[section.thread_id]:
                    current.title = section.title
                    current.created_at = section.created_at
                    current.owner_id = section.owner_id or current.owner_id
                    has_home[section.thread_id] = True
                if section.status == DELETED:
                    current.status = DELETED
        return threads

    # ── Threads ──────────────────────────────────────────────

    async def upsert_thread(self, thread: Thread) -> Thread:
        validate_id(thread.id, "thread id")
        thread.created_at = ensure_utc(thread.created_at)
        path = journal_path(thread.created_at)
        section = await self._mutate(path, lambda j: j.upsert_section(thread), f"Save thread {thread.id}")
        if section is not None:
            thread.last_message_at = section.last_activity
        return thread

    async def get_thread(self, thread_id: str) -> Thread | None:
        journals = await self._journals_containing(id_marker(thread_id))
        thread = self._merge_threads(journals).get(thread_id)
        if thread is None or thread.is_deleted:
            return None
        return thread

    async def list_threads(
        self, limit: int | None = None, owner_id: str | None = None, *, scan_all: bool = False
    ) -> list[Thread]:
        paths = await self._journal_paths()
        if self._scan_limit and not scan_all:
            paths = paths[: self._scan_limit]
        journals = []
        for path in paths:
            remote = await self._files.read(path)
            if remote is not None:
                journals.append(Journal.parse(remote.content, path))

        threads = [t for t in self._merge_threads(journals, owner_id).values() if not t.is_deleted]
        threads.sort(key=lambda t: t.last_message_at or t.created_at, reverse=True)
        return threads[:limit] if limit else threads

    async def delete_thread(self, thread_id: str) -> bool:
        found = False
        for journal in await self._journals_containing(id_marker(thread_id)):
            if not journal.sections_for(thread_id):
                continue
            found = True
            await self._mutate(
                journal.path,
                lambda j: j.set_thread_status(thread_id, DELETED),
                f"Delete thread {thread_id}",
            )
        if not found:
            logger.debug("Thread %s not found, nothing to delete", thread_id)
        return found

    # ── Messages ─────────────────────────────────────────────

    async def append_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        validate_id(message.id, "message id")
        validate_id(message.thread_id, "thread id")
        message.created_at = ensure_utc(message.created_at)
        await self._mutate(
            journal_path(message.created_at),
            lambda j: j.append_message(message, thread_title, owner_id),
            f"Add message {message.id} to {message.thread_id}",
        )
        return message

    async def upsert_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        validate_id(message.id, "message id")
        for journal in await self._journals_containing(id_marker(message.id)):
            if journal.find_message(message.id) is None:
                continue
            stored = await self._mutate(
                journal.path,
                lambda j: j.replace_message(message),
                f"Update message {message.id}",
            )
            if stored is not None:
                return stored
        return await self.append_message(message, thread_title, owner_id)

    async def find_message(self, message_id: str) -> Message | None:
        for journal in await self._journals_containing(id_marker(message_id)):
            located = journal.find_message(message_id)
            if located is not None:
                section, index = located
                return section.messages[index]
        return None

    async def list_messages(self, thread_id: str) -> list[Message]:
        journals = await self._journals_containing(id_marker(thread_id))
        messages: dict[str, Message] = {}
        for journal in journals:
            for section in journal.sections_for(thread_id):
                if section.status == DELETED:
                    return []
                for message in section.messages:
                    if not message.is_deleted:
                        messages.setdefault(message.id, message)
        return sorted(messages.values(), key=lambda m: m.created_at)

    async def delete_message(self, message_id: str) -> bool:
        target = await self.find_message(message_id)
        if target is None:
            return False
        for journal in await self._journals_containing(id_marker(message_id)):
            if journal.find_message(message_id) is None:
                continue
            await self._mutate(
                journal.path,
                lambda j: j.set_message_status(target.thread_id, {message_id}, DELETED),
                f"Delete message {message_id}",
            )
        return True

    async def delete_messages_after(self, message_id: str) -> int:
        target = await self.find_message(message_id)
        if target is None:
            logger.warning("Message %s not found, nothing deleted", message_id)
            return 0

        doomed = {m.id for m in await self.list_messages(target.thread_id) if m.created_at > target.created_at}
        if not doomed:
            return 0

        deleted = 0
        for journal in await self._journals_containing(id_marker(target.thread_id)):
            if not any(m.id in doomed for s in journal.sections_for(target.thread_id) for m in s.messages):
                continue
            deleted += await self._mutate(
                journal.path,
                lambda j: j.set_message_status(target.thread_id, doomed, DELETED),
                f"Delete messages after {message_id}",
            ) or 0
        logger.info("Deleted %d message(s) after %s in %s", deleted, message_id, target.thread_id)
        return deleted

