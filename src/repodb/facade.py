"""Chat data access for one owner: cache in front of a timeline store.

Reads are read-through. Writes follow one protocol: make sure the affected
list is cached, apply the change optimistically, write to the store, then
swap the optimistic item for the stored one. When the write fails the
affected cache keys are dropped and the error propagates, so a failed write
is never served from cache.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from repodb.cache import Cache, Region
from repodb.errors import NotFound
from repodb.models import Message, Thread, ThreadDetail
from repodb.timeline.base import TimelineStore

logger = logging.getLogger(__name__)


# ── Copies and list mutators (pure, return new objects) ───────


def _copy_thread(thread: Thread) -> Thread:
    return replace(thread)


def _copy_message(message: Message) -> Message:
    return replace(message, parts=[replace(p) for p in message.parts])


def _copy_detail(detail: ThreadDetail) -> ThreadDetail:
    return ThreadDetail(thread=_copy_thread(detail.thread), messages=[_copy_message(m) for m in detail.messages])


def _with_thread(threads: list[Thread], thread: Thread) -> list[Thread]:
    rest = [t for t in threads if t.id != thread.id]
    return [_copy_thread(thread)] + rest


def _without_thread(threads: list[Thread], thread_id: str) -> list[Thread]:
    return [t for t in threads if t.id != thread_id]


def _touch_thread(threads: list[Thread], thread_id: str, when: Any) -> list[Thread]:
    for thread in threads:
        if thread.id == thread_id:
            touched = replace(thread, last_message_at=max(filter(None, [thread.last_message_at, when])))
            return _with_thread(threads, touched)
    return threads


def _with_message(messages: list[Message], message: Message) -> list[Message]:
    rest = [m for m in messages if m.id != message.id]
    return sorted(rest + [_copy_message(message)], key=lambda m: m.created_at)


def _without_messages(messages: list[Message], message_ids: set[str]) -> list[Message]:
    return [m for m in messages if m.id not in message_ids]


class ChatRepository:
    """Thread and message operations the application calls."""

    def __init__(self, timeline: TimelineStore, cache: Cache, owner_id: str) -> None:
        self._timeline = timeline
        self._cache = cache
        self._owner_id = owner_id

    @property
    def owner_id(self) -> str:
        return self._owner_id

    # ── Cache protocol ───────────────────────────────────────

    @contextmanager
    def _invalidate_on_failure(self, *keys: tuple[Region, str]) -> Iterator[None]:
        try:
            yield
        except BaseException:
            for region, key in keys:
                self._cache.invalidate(region, key)
            logger.warning("Write failed, dropped cached %s", ", ".join(f"{r.value}/{k}" for r, k in keys))
            raise

    async def _optimistic(
        self,
        region: Region,
        key: str,
        mutator: Callable[[Any], Any],
        load: Callable[[], Awaitable[Any]],
    ) -> None:
        """Apply ``mutator`` to the cached value, reading it through first if absent."""
        if self._cache.apply_optimistic(region, key, mutator):
            return
        await load()
        self._cache.apply_optimistic(region, key, mutator)

    # ── Reads ────────────────────────────────────────────────

    async def list_threads_by_owner(self, owner_id: str | None = None) -> list[Thread]:
        owner = owner_id or self._owner_id
        cached = self._cache.get(Region.THREADS, owner)
        if cached is not None:
            return [_copy_thread(t) for t in cached]
        threads = await self._timeline.list_threads(owner_id=owner)
        self._cache.set(Region.THREADS, owner, [_copy_thread(t) for t in threads])
        return threads

    async def list_messages_by_thread(self, thread_id: str) -> list[Message]:
        cached = self._cache.get(Region.MESSAGES, thread_id)
        if cached is not None:
            return [_copy_message(m) for m in cached]
        messages = await self._timeline.list_messages(thread_id)
        self._cache.set(Region.MESSAGES, thread_id, [_copy_message(m) for m in messages])
        return messages

    async def select_thread(self, thread_id: str) -> Thread | None:
        detail = self._cache.get(Region.THREAD_DETAIL, thread_id)
        if detail is not None:
            return _copy_thread(detail.thread)
        for thread in self._cache.get(Region.THREADS, self._owner_id) or []:
            if thread.id == thread_id:
                return _copy_thread(thread)
        return await self._timeline.get_thread(thread_id)

    async def select_thread_details(self, thread_id: str) -> ThreadDetail | None:
        cached = self._cache.get(Region.THREAD_DETAIL, thread_id)
        if cached is not None:
            return _copy_detail(cached)
        thread = await self._timeline.get_thread(thread_id)
        if thread is None:
            return None
        detail = ThreadDetail(thread=thread, messages=await self.list_messages_by_thread(thread_id))
        self._cache.set(Region.THREAD_DETAIL, thread_id, _copy_detail(detail))
        return detail

    # ── Threads ──────────────────────────────────────────────

    async def _save_thread(self, thread: Thread) -> Thread:
        if not thread.owner_id:
            thread.owner_id = self._owner_id
        owner = thread.owner_id
        with self._invalidate_on_failure((Region.THREADS, owner), (Region.THREAD_DETAIL, thread.id)):
            await self._optimistic(
                Region.THREADS,
                owner,
                lambda ts: _with_thread(ts, thread),
                lambda: self.list_threads_by_owner(owner),
            )
            stored = await self._timeline.upsert_thread(thread)
        self._cache.apply_optimistic(Region.THREADS, owner, lambda ts: _with_thread(ts, stored))
        self._cache.invalidate(Region.THREAD_DETAIL, thread.id)
        return stored

    async def insert_thread(self, thread: Thread) -> Thread:
        """Create a thread record."""
        return await self._save_thread(thread)

    async def upsert_thread(self, thread: Thread) -> Thread:
        """Create or rewrite a thread, keeping the creation time of an existing one."""
        existing = await self._timeline.get_thread(thread.id)
        if existing is not None:
            thread.created_at = existing.created_at
            thread.last_message_at = existing.last_message_at
        return await self._save_thread(thread)

    async def update_thread(self, thread_id: str, *, title: str | None = None) -> Thread:
        existing = await self._timeline.get_thread(thread_id)
        if existing is None:
            raise NotFound(f"Thread {thread_id} not found")
        if title is not None:
            existing.title = title
        return await self._save_thread(existing)

    async def delete_thread(self, thread_id: str) -> bool:
        owner = self._owner_id
        with self._invalidate_on_failure(
            (Region.THREADS, owner), (Region.MESSAGES, thread_id), (Region.THREAD_DETAIL, thread_id)
        ):
            self._cache.apply_optimistic(Region.THREADS, owner, lambda ts: _without_thread(ts, thread_id))
            deleted = await self._timeline.delete_thread(thread_id)
        self._cache.invalidate(Region.MESSAGES, thread_id)
        self._cache.invalidate(Region.THREAD_DETAIL, thread_id)
        return deleted

    async def delete_all_threads(self, owner_id: str | None = None) -> int:
        owner = owner_id or self._owner_id
        # Every journal, not just the recent ones list_threads_by_owner shows
        threads = await self._timeline.list_threads(owner_id=owner, scan_all=True)
        count = 0
        try:
            for thread in threads:
                if await self._timeline.delete_thread(thread.id):
                    count += 1
                self._cache.invalidate(Region.MESSAGES, thread.id)
                self._cache.invalidate(Region.THREAD_DETAIL, thread.id)
        finally:
            self._cache.invalidate(Region.THREADS, owner)
        logger.info("Deleted %d thread(s) of %s", count, owner)
        return count

    # ── Messages ─────────────────────────────────────────────

    async def _thread_context(self, thread_id: str) -> tuple[str, str]:
        """Title and owner written into a section synthesized for a new month."""
        thread = await self.select_thread(thread_id)
        if thread is None:
            return "", self._owner_id
        return thread.title, thread.owner_id or self._owner_id

    async def insert_message(self, message: Message) -> Message:
        thread_id = message.thread_id
        with self._invalidate_on_failure(
            (Region.MESSAGES, thread_id), (Region.THREAD_DETAIL, thread_id), (Region.THREADS, self._owner_id)
        ):
            await self._optimistic(
                Region.MESSAGES,
                thread_id,
                lambda ms: _with_message(ms, message),
                lambda: self.list_messages_by_thread(thread_id),
            )
            title, owner = await self._thread_context(thread_id)
            stored = await self._timeline.append_message(message, title, owner)

        self._cache.apply_optimistic(Region.MESSAGES, thread_id, lambda ms: _with_message(ms, stored))
        self._cache.apply_optimistic(
            Region.THREADS, self._owner_id, lambda ts: _touch_thread(ts, thread_id, stored.created_at)
        )
        self._cache.invalidate(Region.THREAD_DETAIL, thread_id)
        return stored

    async def insert_messages(self, messages: list[Message]) -> list[Message]:
        return [await self.insert_message(m) for m in messages]

    async def upsert_message(self, message: Message) -> Message:
        thread_id = message.thread_id
        with self._invalidate_on_failure((Region.MESSAGES, thread_id), (Region.THREAD_DETAIL, thread_id)):
            await self._optimistic(
                Region.MESSAGES,
                thread_id,
                lambda ms: _with_message(ms, message),
                lambda: self.list_messages_by_thread(thread_id),
            )
            title, owner = await self._thread_context(thread_id)
            stored = await self._timeline.upsert_message(message, title, owner)
        self._cache.apply_optimistic(Region.MESSAGES, thread_id, lambda ms: _with_message(ms, stored))
        self._cache.invalidate(Region.THREAD_DETAIL, thread_id)
        return stored

    async def delete_message(self, message_id: str, thread_id: str | None = None) -> bool:
        """Soft-delete a message. Without ``thread_id`` every cached message list is dropped."""
        if thread_id is None:
            deleted = await self._timeline.delete_message(message_id)
            self._cache.invalidate_all(Region.MESSAGES)
            self._cache.invalidate_all(Region.THREAD_DETAIL)
            return deleted

        with self._invalidate_on_failure((Region.MESSAGES, thread_id), (Region.THREAD_DETAIL, thread_id)):
            self._cache.apply_optimistic(
                Region.MESSAGES, thread_id, lambda ms: _without_messages(ms, {message_id})
            )
            deleted = await self._timeline.delete_message(message_id)
        self._cache.invalidate(Region.THREAD_DETAIL, thread_id)
        return deleted

    async def delete_messages_after(self, message_id: str, thread_id: str | None = None) -> int:
        """Soft-delete every message of the thread created after ``message_id``."""
        try:
            return await self._timeline.delete_messages_after(message_id)
        finally:
            if thread_id is None:
                self._cache.invalidate_all(Region.MESSAGES)
                self._cache.invalidate_all(Region.THREAD_DETAIL)
            else:
                self._cache.invalidate(Region.MESSAGES, thread_id)
                self._cache.invalidate(Region.THREAD_DETAIL, thread_id)
