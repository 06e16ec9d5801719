"""Monthly journal format: parse into sections and blocks, mutate, serialize.

A journal is a markdown file with YAML frontmatter (the summary) and one
section per thread:

    #### <title> (<thread id>)

    - Created: <iso timestamp>
    - Owner: <owner id>
    - Status: Active | Deleted
    - Continued: yes            (only on sections synthesized in a later month)

    ##### <role> · <iso timestamp> (<message id>)
    - Model: <model id>         (optional)
    - Status: Deleted           (only on deleted messages)

    <body>

    ---

A body is a sequence of parts. Text is written verbatim; tool calls, tool
results and unknown part kinds are a label line followed by a fenced JSON
block. Adjacent text parts are separated by ``<!-- part -->``. Text lines that
would read as structure are escaped with one leading backslash.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime

import frontmatter

from repodb.errors import EncodingError
from repodb.models import (
    ACTIVE,
    DEFAULT_THREAD_TITLE,
    DELETED,
    ROLES,
    Message,
    MessagePart,
    OpaquePart,
    TextPart,
    Thread,
    ToolInvocationPart,
    ToolResultPart,
    ensure_utc,
    format_timestamp,
    parse_timestamp,
    part_from_dict,
    part_to_dict,
    utcnow,
)

JOURNAL_DIR = "timeline"

SECTION_RE = re.compile(r"^#### (?P<title>.*?)\s*\((?P<id>[^()\s]+)\)\s*$")
BLOCK_RE = re.compile(r"^##### (?P<role>\w+) · (?P<ts>\S+) \((?P<id>[^()\s]+)\)\s*$")
META_RE = re.compile(r"^- (?P<key>[A-Z][A-Za-z]*): (?P<value>.*?)\s*$")
LABEL_RE = re.compile(
    r"^\*\*(?P<label>Tool call|Tool result|Part):\*\* `(?P<name>[^`]*)`(?: \((?P<call_id>[^()]*)\))?\s*$"
)
FENCE_RE = re.compile(r"^(?P<fence>`{3,})json\s*$")
JOURNAL_NAME_RE = re.compile(r"^\d{4}-\d{2}\.md$")

TERMINATOR = "---"
PART_BREAK = "<!-- part -->"

# Any text line matching this (after stripping leading backslashes) is escaped.
_STRUCTURAL_RE = re.compile(
    r"^\\*(?:-{3,}\s*$|#{4,5} |\*\*(?:Tool call|Tool result|Part):\*\*|<!-- part -->)"
)
_BACKTICKS_RE = re.compile(r"`+")

_LABELS = {
    "tool-invocation": "Tool call",
    "tool-result": "Tool result",
}


def month_key(moment: datetime) -> str:
    moment = ensure_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def journal_path(moment: datetime) -> str:
    return f"{JOURNAL_DIR}/{month_key(moment)}.md"


def is_journal_name(name: str) -> bool:
    return bool(JOURNAL_NAME_RE.match(name))


def id_marker(value: str) -> str:
    """Literal text every section or block header carrying this id contains."""
    return f"({value})"


# ── Escaping ─────────────────────────────────────────────────


def escape_line(line: str) -> str:
    return "\\" + line if _STRUCTURAL_RE.match(line) else line


def unescape_line(line: str) -> str:
    if line.startswith("\\") and _STRUCTURAL_RE.match(line[1:]):
        return line[1:]
    return line


def _fence_for(text: str) -> str:
    longest = max((len(run) for run in _BACKTICKS_RE.findall(text)), default=0)
    return "`" * max(3, longest + 1)


def _single_line(value: str) -> str:
    return " ".join(value.split())


# ── Model ────────────────────────────────────────────────────


@dataclass
class ThreadSection:
    """One thread's header, metadata and message blocks inside a journal."""

    thread_id: str
    title: str
    created_at: datetime
    owner_id: str = ""
    status: str = ACTIVE
    continued: bool = False
    messages: list[Message] = field(default_factory=list)

    @property
    def last_activity(self) -> datetime:
        stamps = [self.created_at] + [m.created_at for m in self.messages]
        return max(stamps)

    def to_thread(self) -> Thread:
        return Thread(
            id=self.thread_id,
            owner_id=self.owner_id,
            title=self.title,
            created_at=self.created_at,
            status=self.status,
            last_message_at=self.last_activity,
        )

    def index_of(self, message_id: str) -> int | None:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        return None


@dataclass
class Journal:
    """Typed view of one monthly journal file."""

    month: str
    sections: list[ThreadSection] = field(default_factory=list)
    path: str = ""
    modified: bool = field(default=False, compare=False, repr=False)

    @classmethod
    def empty(cls, path: str) -> Journal:
        month = path.rsplit("/", 1)[-1].removesuffix(".md")
        return cls(month=month, path=path)

    def sections_for(self, thread_id: str) -> list[ThreadSection]:
        return [s for s in self.sections if s.thread_id == thread_id]

    def find_message(self, message_id: str) -> tuple[ThreadSection, int] | None:
        for section in self.sections:
            index = section.index_of(message_id)
            if index is not None:
                return section, index
        return None

    # ── Mutations ────────────────────────────────────────────

    def upsert_section(self, thread: Thread) -> ThreadSection:
        """Replace every section for the thread with one fresh section at the end.

        Message blocks of the removed sections move into the new one, so
        pruning duplicates never drops history.
        """
        stale = self.sections_for(thread.id)
        carried: dict[str, Message] = {}
        for section in stale:
            for message in section.messages:
                carried.setdefault(message.id, message)

        fresh = ThreadSection(
            thread_id=thread.id,
            title=thread.title,
            created_at=ensure_utc(thread.created_at),
            owner_id=thread.owner_id,
            status=ACTIVE,
            messages=sorted(carried.values(), key=lambda m: m.created_at),
        )
        self.sections = [s for s in self.sections if s.thread_id != thread.id]
        self.sections.append(fresh)
        self.modified = True
        return fresh

    def append_message(self, message: Message, thread_title: str = "", owner_id: str = "") -> ThreadSection:
        """Add a block to the thread's section, synthesizing the section if missing."""
        sections = self.sections_for(message.thread_id)
        if sections:
            section = sections[-1]
        else:
            section = ThreadSection(
                thread_id=message.thread_id,
                title=thread_title,
                created_at=ensure_utc(message.created_at),
                owner_id=owner_id,
                continued=True,
            )
            self.sections.append(section)

        index = section.index_of(message.id)
        if index is None:
            section.messages.append(message)
        else:
            section.messages[index] = message
        self.modified = True
        return section

    def replace_message(self, message: Message) -> Message | None:
        """Rewrite an existing block in place. Returns the stored message or None."""
        for section in self.sections_for(message.thread_id):
            index = section.index_of(message.id)
            if index is None:
                continue
            original = section.messages[index]
            message.created_at = original.created_at
            section.messages[index] = message
            self.modified = True
            return message
        return None

    def set_thread_status(self, thread_id: str, status: str) -> bool:
        changed = False
        for section in self.sections_for(thread_id):
            if section.status != status:
                section.status = status
                changed = True
        self.modified |= changed
        return changed

    def set_message_status(self, thread_id: str, message_ids: set[str], status: str) -> int:
        count = 0
        for section in self.sections_for(thread_id):
            for message in section.messages:
                if message.id in message_ids and message.status != status:
                    message.status = status
                    count += 1
        self.modified |= count > 0
        return count

    # ── Serialization ────────────────────────────────────────

    def render(self, now: datetime | None = None) -> str:
        lines = [f"# Timeline {self.month}", ""]
        for section in self.sections:
            lines.extend(_render_section(section))

        active = [s for s in self.sections if s.status != DELETED]
        post = frontmatter.Post(
            "\n".join(lines),
            month=self.month,
            threads=len({s.thread_id for s in active}),
            messages=sum(1 for s in active for m in s.messages if not m.is_deleted),
            updated=format_timestamp(now or utcnow()),
        )
        return frontmatter.dumps(post) + "\n"

    @classmethod
    def parse(cls, text: str, path: str) -> Journal:
        try:
            post = frontmatter.loads(text)
        except Exception as e:
            raise EncodingError(path, f"invalid frontmatter: {e}") from e
        month = str(post.metadata.get("month") or Journal.empty(path).month)
        return cls(month=month, sections=_Parser(path, post.content).parse(), path=path)


# ── Rendering ────────────────────────────────────────────────


def _render_section(section: ThreadSection) -> list[str]:
    title = _single_line(section.title) or DEFAULT_THREAD_TITLE
    lines = [
        f"#### {title} ({section.thread_id})",
        "",
        f"- Created: {format_timestamp(section.created_at)}",
    ]
    if section.owner_id:
        lines.append(f"- Owner: {section.owner_id}")
    lines.append(f"- Status: {'Deleted' if section.status == DELETED else 'Active'}")
    if section.continued:
        lines.append("- Continued: yes")
    lines.append("")
    for message in section.messages:
        lines.extend(render_block(message))
        lines.append("")
    return lines


def render_block(message: Message) -> list[str]:
    lines = [f"##### {message.role} · {format_timestamp(message.created_at)} ({message.id})"]
    if message.model:
        lines.append(f"- Model: {_single_line(message.model)}")
    if message.is_deleted:
        lines.append("- Status: Deleted")
    lines.append("")

    previous: MessagePart | None = None
    for part in message.parts:
        if previous is not None:
            lines.append("")
            if isinstance(previous, TextPart) and isinstance(part, TextPart):
                lines.extend([PART_BREAK, ""])
        lines.extend(_render_part(part))
        previous = part

    lines.extend(["", TERMINATOR])
    return lines


def _render_part(part: MessagePart) -> list[str]:
    if isinstance(part, TextPart):
        return [escape_line(line) for line in part.text.split("\n")]

    if isinstance(part, (ToolInvocationPart, ToolResultPart)):
        label = _LABELS[part.kind]
        name = part.tool_name
        value = part.arguments if isinstance(part, ToolInvocationPart) else part.result
        call_id = part.call_id
    else:
        label = "Part"
        name = part.kind
        value = part_to_dict(part)
        call_id = None

    header = f"**{label}:** `{name.replace('`', '')}`"
    if call_id:
        header += f" ({_single_line(call_id).replace('(', '').replace(')', '')})"
    payload = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    fence = _fence_for(payload)
    return [header, "", f"{fence}json", *payload.split("\n"), fence]


# ── Parsing ──────────────────────────────────────────────────


class _Parser:
    """Line-oriented journal body parser."""

    def __init__(self, path: str, body: str) -> None:
        self.path = path
        self.lines = body.split("\n")
        self.pos = 0

    def fail(self, reason: str, line: int | None = None) -> EncodingError:
        return EncodingError(self.path, reason, (line if line is not None else self.pos) + 1)

    def parse(self) -> list[ThreadSection]:
        sections: list[ThreadSection] = []
        while self.pos < len(self.lines):
            line = self.lines[self.pos]
            header = SECTION_RE.match(line)
            if header:
                sections.append(self._section(header))
                continue
            if BLOCK_RE.match(line):
                raise self.fail("message block outside a thread section")
            # Title line, blank lines and hand-written notes between sections
            self.pos += 1
        return sections

    def _section(self, header: re.Match) -> ThreadSection:
        header_line = self.pos
        self.pos += 1
        meta: dict[str, str] = {}
        messages: list[Message] = []

        while self.pos < len(self.lines):
            line = self.lines[self.pos]
            if SECTION_RE.match(line):
                break
            block = BLOCK_RE.match(line)
            if block:
                messages.append(self._block(block, header.group("id")))
                continue
            field_match = META_RE.match(line)
            if field_match and not messages:
                meta[field_match.group("key").lower()] = field_match.group("value")
            self.pos += 1

        if "created" not in meta:
            raise self.fail("thread section without a Created line", header_line)
        try:
            created_at = parse_timestamp(meta["created"])
        except ValueError as e:
            raise self.fail(f"bad Created timestamp: {e}", header_line) from e

        return ThreadSection(
            thread_id=header.group("id"),
            title=header.group("title").strip(),
            created_at=created_at,
            owner_id=meta.get("owner", ""),
            status=DELETED if meta.get("status", "").lower() == DELETED else ACTIVE,
            continued=meta.get("continued", "").lower() in ("yes", "true"),
            messages=messages,
        )

    def _block(self, header: re.Match, thread_id: str) -> Message:
        header_line = self.pos
        role = header.group("role")
        if role not in ROLES:
            raise self.fail(f"unknown role {role!r}")
        try:
            created_at = parse_timestamp(header.group("ts"))
        except ValueError as e:
            raise self.fail(f"bad message timestamp: {e}") from e
        self.pos += 1

        meta: dict[str, str] = {}
        while self.pos < len(self.lines):
            field_match = META_RE.match(self.lines[self.pos])
            if not field_match:
                break
            meta[field_match.group("key").lower()] = field_match.group("value")
            self.pos += 1
        if self.pos < len(self.lines) and not self.lines[self.pos].strip():
            self.pos += 1

        body = self._body_lines(header_line)
        return Message(
            id=header.group("id"),
            thread_id=thread_id,
            role=role,
            parts=self._parts(body, header_line),
            created_at=created_at,
            model=meta.get("model") or None,
            status=DELETED if meta.get("status", "").lower() == DELETED else ACTIVE,
        )

    def _body_lines(self, header_line: int) -> list[str]:
        """Collect lines up to the terminator, stepping over fenced blocks."""
        body: list[str] = []
        fence: str | None = None
        while self.pos < len(self.lines):
            line = self.lines[self.pos]
            self.pos += 1
            if fence is not None:
                if line.strip() == fence:
                    fence = None
                body.append(line)
                continue
            if line.rstrip() == TERMINATOR:
                return body
            if SECTION_RE.match(line) or BLOCK_RE.match(line):
                raise self.fail("unterminated message block", header_line)
            opening = FENCE_RE.match(line)
            if opening and body and LABEL_RE.match(_last_nonblank(body)):
                fence = opening.group("fence")
            body.append(line)
        raise self.fail("unterminated message block", header_line)

    def _parts(self, body: list[str], header_line: int) -> list[MessagePart]:
        parts: list[MessagePart] = []
        text: list[str] = []

        def flush() -> None:
            joined = "\n".join(text).strip("\n")
            if joined:
                parts.append(TextPart(text=joined))
            text.clear()

        i = 0
        while i < len(body):
            line = body[i]
            if line == PART_BREAK:
                flush()
                i += 1
                continue
            label = LABEL_RE.match(line)
            if not label:
                text.append(unescape_line(line))
                i += 1
                continue

            flush()
            i += 1
            while i < len(body) and not body[i].strip():
                i += 1
            opening = FENCE_RE.match(body[i]) if i < len(body) else None
            if not opening:
                raise self.fail(f"{label.group('label')} without a fenced json block", header_line)
            fence = opening.group("fence")
            i += 1
            payload: list[str] = []
            while i < len(body) and body[i].strip() != fence:
                payload.append(body[i])
                i += 1
            if i >= len(body):
                raise self.fail("unterminated code fence", header_line)
            i += 1
            try:
                value = json.loads("\n".join(payload))
            except ValueError as e:
                raise self.fail(f"invalid json in {label.group('label')}: {e}", header_line) from e
            parts.append(_decode_part(label, value))

        flush()
        return parts


def _last_nonblank(lines: list[str]) -> str:
    for line in reversed(lines):
        if line.strip():
            return line
    return ""


def _decode_part(label: re.Match, value: object) -> MessagePart:
    kind = label.group("label")
    call_id = label.group("call_id") or None
    if kind == "Tool call":
        return ToolInvocationPart(tool_name=label.group("name"), arguments=value, call_id=call_id)
    if kind == "Tool result":
        return ToolResultPart(tool_name=label.group("name"), result=value, call_id=call_id)
    if isinstance(value, dict):
        return part_from_dict(value)
    return OpaquePart(kind=label.group("name"), data={"value": value})
