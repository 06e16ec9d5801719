"""Data model for threads, messages, collection entities and remote files."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Union

Role = Literal["user", "assistant", "system"]
ROLES: tuple[str, ...] = ("user", "assistant", "system")

ACTIVE = "active"
DELETED = "deleted"

DEFAULT_THREAD_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (str or an already-decoded datetime)."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# ── Message parts ─────────────────────────────────────────────


@dataclass
class TextPart:
    text: str

    kind = "text"


@dataclass
class ToolInvocationPart:
    """A tool call issued by the assistant."""

    tool_name: str
    arguments: Any = field(default_factory=dict)
    call_id: str | None = None

    kind = "tool-invocation"


@dataclass
class ToolResultPart:
    """The value a tool call returned."""

    tool_name: str
    result: Any = None
    call_id: str | None = None

    kind = "tool-result"


@dataclass
class OpaquePart:
    """Any part kind this library does not understand, kept verbatim."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


MessagePart = Union[TextPart, ToolInvocationPart, ToolResultPart, OpaquePart]


def part_to_dict(part: MessagePart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ToolInvocationPart):
        data = {"type": "tool-invocation", "toolName": part.tool_name, "args": part.arguments}
        if part.call_id:
            data["toolCallId"] = part.call_id
        return data
    if isinstance(part, ToolResultPart):
        data = {"type": "tool-result", "toolName": part.tool_name, "result": part.result}
        if part.call_id:
            data["toolCallId"] = part.call_id
        return data
    return {**part.data, "type": part.kind}


def part_from_dict(data: dict[str, Any]) -> MessagePart:
    kind = data.get("type", "")
    if kind == "text":
        return TextPart(text=str(data.get("text", "")))
    if kind == "tool-invocation":
        return ToolInvocationPart(
            tool_name=str(data.get("toolName", "")),
            arguments=data.get("args", {}),
            call_id=data.get("toolCallId"),
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_name=str(data.get("toolName", "")),
            result=data.get("result"),
            call_id=data.get("toolCallId"),
        )
    rest = {k: v for k, v in data.items() if k != "type"}
    return OpaquePart(kind=str(kind or "unknown"), data=rest)


# ── Chat entities ─────────────────────────────────────────────


@dataclass
class Thread:
    id: str
    owner_id: str
    title: str = ""
    created_at: datetime = field(default_factory=utcnow)
    status: str = ACTIVE
    last_message_at: datetime | None = None

    @property
    def display_title(self) -> str:
        return self.title.strip() or DEFAULT_THREAD_TITLE

    @property
    def is_deleted(self) -> bool:
        return self.status == DELETED


@dataclass
class Message:
    id: str
    thread_id: str
    role: Role
    parts: list[MessagePart] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    model: str | None = None
    status: str = ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == DELETED

    @property
    def text(self) -> str:
        """Concatenated text parts, handy for previews and logs."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass
class ThreadDetail:
    thread: Thread
    messages: list[Message] = field(default_factory=list)


@dataclass
class Entity:
    """A collection record (agent, workflow, archive, profile, tool config)."""

    id: str
    owner_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    is_public: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ── Remote store shapes ───────────────────────────────────────


@dataclass
class RemoteFile:
    path: str
    content: str
    hash: str


@dataclass
class DirEntry:
    name: str
    path: str
    type: Literal["file", "dir"] = "file"


@dataclass
class RepoHandle:
    owner: str
    name: str
    private: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class Identity:
    login: str
    id: int | None = None


_UNSAFE_ID_CHARS = set('/\\()\n\r\t <>:"|?*')


def validate_id(value: str, what: str = "id") -> str:
    """Ids become path segments and journal markers; reject anything unsafe for both."""
    if not value or value in (".", "..") or any(c in _UNSAFE_ID_CHARS for c in value):
        raise ValueError(f"Invalid {what}: {value!r}")
    return value
