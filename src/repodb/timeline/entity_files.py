"""Timeline store with one JSON document per thread and per message.

    threads/<thread id>.json
    messages/thread-<thread id>/message-<message id>.json

Every write touches a single small file, so concurrent writers rarely
collide; listing costs one read per file.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from repodb.errors import EncodingError
from repodb.models import (
    ACTIVE,
    DELETED,
    ROLES,
    Message,
    Thread,
    ensure_utc,
    format_timestamp,
    parse_timestamp,
    part_from_dict,
    part_to_dict,
    validate_id,
)
from repodb.provisioner import RepoFiles
from repodb.timeline.base import read_modify_write

logger = logging.getLogger(__name__)

THREADS_DIR = "threads"
MESSAGES_DIR = "messages"


def _thread_path(thread_id: str) -> str:
    return f"{THREADS_DIR}/{validate_id(thread_id, 'thread id')}.json"


def _messages_dir(thread_id: str) -> str:
    return f"{MESSAGES_DIR}/thread-{validate_id(thread_id, 'thread id')}"


def _message_path(thread_id: str, message_id: str) -> str:
    return f"{_messages_dir(thread_id)}/message-{validate_id(message_id, 'message id')}.json"


def _dump(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n"


def _load(path: str, content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
    except ValueError as e:
        raise EncodingError(path, f"invalid json: {e}") from e
    if not isinstance(data, dict):
        raise EncodingError(path, "expected a json object")
    return data


def thread_to_dict(thread: Thread) -> dict[str, Any]:
    return {
        "id": thread.id,
        "ownerId": thread.owner_id,
        "title": thread.title,
        "createdAt": format_timestamp(thread.created_at),
        "status": thread.status,
    }


def thread_from_dict(path: str, data: dict[str, Any]) -> Thread:
    try:
        return Thread(
            id=str(data["id"]),
            owner_id=str(data.get("ownerId", "")),
            title=str(data.get("title", "")),
            created_at=parse_timestamp(data["createdAt"]),
            status=data.get("status", ACTIVE),
        )
    except (KeyError, ValueError) as e:
        raise EncodingError(path, f"bad thread document: {e}") from e


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "threadId": message.thread_id,
        "role": message.role,
        "parts": [part_to_dict(p) for p in message.parts],
        "createdAt": format_timestamp(message.created_at),
        "model": message.model,
        "status": message.status,
    }


def message_from_dict(path: str, data: dict[str, Any]) -> Message:
    try:
        role = data["role"]
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        return Message(
            id=str(data["id"]),
            thread_id=str(data["threadId"]),
            role=role,
            parts=[part_from_dict(p) for p in data.get("parts", [])],
            created_at=parse_timestamp(data["createdAt"]),
            model=data.get("model"),
            status=data.get("status", ACTIVE),
        )
    except (KeyError, ValueError, AttributeError) as e:
        raise EncodingError(path, f"bad message document: {e}") from e


class EntityFileTimelineStore:
    """Threads and messages as individual JSON files."""

    def __init__(self, files: RepoFiles, *, conflict_retries: int = 0) -> None:
        self._files = files
        self._conflict_retries = conflict_retries

    async def _set_status(self, path: str, status: str, message: str) -> bool:
        def apply(content: str | None) -> str | None:
            if content is None:
                return None
            data = _load(path, content)
            if data.get("status") == status:
                return None
            data["status"] = status
            return _dump(data)

        return await read_modify_write(self._files, path, apply, message, self._conflict_retries)

    # ── Threads ──────────────────────────────────────────────

    async def upsert_thread(self, thread: Thread) -> Thread:
        thread.created_at = ensure_utc(thread.created_at)
        thread.status = ACTIVE
        content = _dump(thread_to_dict(thread))
        await read_modify_write(
            self._files,
            _thread_path(thread.id),
            lambda _: content,
            f"Save thread {thread.id}",
            self._conflict_retries,
        )
        return thread

    async def _read_thread(self, thread_id: str) -> Thread | None:
        path = _thread_path(thread_id)
        remote = await self._files.read(path)
        if remote is None:
            return None
        return thread_from_dict(path, _load(path, remote.content))

    async def get_thread(self, thread_id: str) -> Thread | None:
        thread = await self._read_thread(thread_id)
        if thread is None or thread.is_deleted:
            return None
        return thread

    async def list_threads(
        self, limit: int | None = None, owner_id: str | None = None, *, scan_all: bool = False
    ) -> list[Thread]:
        # The threads directory is always listed whole
        threads: list[Thread] = []
        for entry in await self._files.list(THREADS_DIR):
            if entry.type != "file" or not entry.name.endswith(".json"):
                continue
            remote = await self._files.read(entry.path)
            if remote is None:
                continue
            thread = thread_from_dict(entry.path, _load(entry.path, remote.content))
            if thread.is_deleted or (owner_id and thread.owner_id and thread.owner_id != owner_id):
                continue
            # Per-thread activity would cost a directory scan each; creation time stands in
            thread.last_message_at = thread.created_at
            threads.append(thread)
        threads.sort(key=lambda t: t.created_at, reverse=True)
        return threads[:limit] if limit else threads

    async def delete_thread(self, thread_id: str) -> bool:
        path = _thread_path(thread_id)
        if await self._files.read(path) is None:
            return False
        await self._set_status(path, DELETED, f"Delete thread {thread_id}")
        return True

    # ── Messages ─────────────────────────────────────────────

    async def append_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        message.created_at = ensure_utc(message.created_at)
        content = _dump(message_to_dict(message))
        await read_modify_write(
            self._files,
            _message_path(message.thread_id, message.id),
            lambda _: content,
            f"Add message {message.id} to {message.thread_id}",
            self._conflict_retries,
        )
        return message

    async def upsert_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> Message:
        path = _message_path(message.thread_id, message.id)

        def apply(current: str | None) -> str:
            if current is not None:
                message.created_at = message_from_dict(path, _load(path, current)).created_at
            return _dump(message_to_dict(message))

        await read_modify_write(
            self._files, path, apply, f"Update message {message.id}", self._conflict_retries
        )
        return message

    async def list_messages(self, thread_id: str) -> list[Message]:
        thread = await self._read_thread(thread_id)
        if thread is not None and thread.is_deleted:
            return []
        messages: list[Message] = []
        for entry in await self._files.list(_messages_dir(thread_id)):
            if entry.type != "file" or not entry.name.endswith(".json"):
                continue
            remote = await self._files.read(entry.path)
            if remote is None:
                continue
            message = message_from_dict(entry.path, _load(entry.path, remote.content))
            if not message.is_deleted:
                messages.append(message)
        messages.sort(key=lambda m: m.created_at)
        return messages

    async def find_message(self, message_id: str) -> Message | None:
        name = f"message-{validate_id(message_id, 'message id')}.json"
        for folder in await self._files.list(MESSAGES_DIR):
            if folder.type != "dir":
                continue
            path = f"{folder.path}/{name}"
            remote = await self._files.read(path)
            if remote is not None:
                return message_from_dict(path, _load(path, remote.content))
        return None

    async def delete_message(self, message_id: str) -> bool:
        target = await self.find_message(message_id)
        if target is None:
            return False
        await self._set_status(
            _message_path(target.thread_id, message_id), DELETED, f"Delete message {message_id}"
        )
        return True

    async def delete_messages_after(self, message_id: str) -> int:
        target = await self.find_message(message_id)
        if target is None:
            logger.warning("Message %s not found, nothing deleted", message_id)
            return 0
        deleted = 0
        for message in await self.list_messages(target.thread_id):
            if message.created_at <= target.created_at:
                continue
            if await self._set_status(
                _message_path(message.thread_id, message.id), DELETED, f"Delete message {message.id}"
            ):
                deleted += 1
        return deleted
