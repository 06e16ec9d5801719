"""In-memory RemoteStore used by store and facade tests."""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone

from repodb.errors import Conflict, NotFound
from repodb.models import DirEntry, Identity, Message, RemoteFile, RepoHandle, TextPart, Thread


class FakeRemoteStore:
    """Hash-checked file store. Every call yields to the event loop once."""

    def __init__(self, login: str = "alice") -> None:
        self.login = login
        self.repos: dict[str, RepoHandle] = {}
        self.files: dict[str, dict[str, RemoteFile]] = {}
        self.uninitialized: set[str] = set()
        self.puts: list[str] = []
        self.fail_next_put: Exception | None = None

    def add_repo(self, name: str = "repodb-data", *, initialized: bool = True) -> RepoHandle:
        handle = RepoHandle(owner=self.login, name=name)
        self.repos[handle.full_name] = handle
        self.files.setdefault(handle.full_name, {})
        if not initialized:
            self.uninitialized.add(handle.full_name)
        return handle

    def content(self, repo: str, path: str) -> str | None:
        file = self.files.get(repo, {}).get(path)
        return file.content if file else None

    @staticmethod
    def _hash(content: str) -> str:
        return hashlib.sha1(content.encode("utf-8")).hexdigest()

    # ── RemoteStore ──────────────────────────────────────────

    async def get(self, repo: str, path: str) -> RemoteFile | None:
        await asyncio.sleep(0)
        file = self.files.get(repo, {}).get(path)
        return RemoteFile(path=file.path, content=file.content, hash=file.hash) if file else None

    async def put(
        self,
        repo: str,
        path: str,
        content: str,
        message: str,
        expected_hash: str | None = None,
    ) -> str:
        await asyncio.sleep(0)
        if self.fail_next_put is not None:
            error, self.fail_next_put = self.fail_next_put, None
            raise error
        if repo not in self.files:
            raise NotFound(f"Repository {repo} not found")
        if repo in self.uninitialized and path != "README.md":
            raise NotFound(f"Repository {repo} has no commits")

        current = self.files[repo].get(path)
        if current is not None and current.hash != expected_hash:
            raise Conflict(path)
        if current is None and expected_hash is not None:
            raise Conflict(path)

        new_hash = self._hash(content)
        self.files[repo][path] = RemoteFile(path=path, content=content, hash=new_hash)
        self.uninitialized.discard(repo)
        self.puts.append(path)
        return new_hash

    async def delete(self, repo: str, path: str, hash: str, message: str) -> None:
        await asyncio.sleep(0)
        current = self.files.get(repo, {}).get(path)
        if current is None:
            raise NotFound(path)
        if current.hash != hash:
            raise Conflict(path)
        del self.files[repo][path]

    async def list(self, repo: str, directory: str = "") -> list[DirEntry]:
        await asyncio.sleep(0)
        prefix = f"{directory.strip('/')}/" if directory.strip("/") else ""
        entries: dict[str, DirEntry] = {}
        for path in self.files.get(repo, {}):
            if not path.startswith(prefix):
                continue
            head, _, rest = path[len(prefix):].partition("/")
            kind = "dir" if rest else "file"
            entries.setdefault(head, DirEntry(name=head, path=prefix + head, type=kind))
        return sorted(entries.values(), key=lambda e: e.name)

    async def get_repo(self, name: str) -> RepoHandle | None:
        await asyncio.sleep(0)
        return self.repos.get(f"{self.login}/{name}")

    async def create_repo(self, name: str, private: bool = True) -> RepoHandle:
        await asyncio.sleep(0)
        return self.add_repo(name)

    async def get_identity(self) -> Identity:
        return Identity(login=self.login, id=1)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Builders ─────────────────────────────────────────────────


def at(day: int, hour: int = 12, minute: int = 0, month: int = 10, year: int = 2026) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_thread(thread_id: str = "t1", title: str = "Trip planning", created_at: datetime | None = None,
                owner_id: str = "alice") -> Thread:
    return Thread(id=thread_id, owner_id=owner_id, title=title, created_at=created_at or at(1))


def make_message(message_id: str, thread_id: str = "t1", role: str = "user", text: str = "hello",
                 created_at: datetime | None = None) -> Message:
    return Message(
        id=message_id,
        thread_id=thread_id,
        role=role,
        parts=[TextPart(text=text)],
        created_at=created_at or at(1, 13),
    )
