"""Core data models for aichat-context."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

from .config import DEFAULT_TITLE, TITLE_MAX_CHARS

Role = Literal["user", "assistant"]
ROLES = ("user", "assistant")

Tier = Literal["safe", "warning", "critical", "emergency"]
TIERS = ("safe", "warning", "critical", "emergency")  # least to most severe

FileKind = Literal["image", "text", "code", "archive", "other"]

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024

_CODE_MIME_TYPES = {"application/javascript", "application/typescript"}
_ARCHIVE_MIME_TYPES = {"application/zip", "application/x-rar-compressed"}
_CODE_EXT_RE = re.compile(r"\.(js|ts|jsx|tsx|py|java|cpp|c|html|css|sql)$", re.IGNORECASE)
_ARCHIVE_EXT_RE = re.compile(r"\.(zip|rar|7z|tar|gz)$", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_file(name: str, mime_type: str) -> FileKind:
    """Bucket an uploaded file by MIME type, falling back to its extension."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("text/") or mime_type == "application/json":
        return "text"
    if mime_type in _CODE_MIME_TYPES or _CODE_EXT_RE.search(name):
        return "code"
    if mime_type in _ARCHIVE_MIME_TYPES or _ARCHIVE_EXT_RE.search(name):
        return "archive"
    return "other"


@dataclass
class FileAttachment:
    """A file attached to a message. Not counted towards context usage."""

    name: str
    mime_type: str
    size: int  # bytes
    kind: FileKind = "other"
    content: Optional[str] = None  # decoded text for text/code files

    @classmethod
    def from_upload(cls, name: str, mime_type: str, data: bytes) -> "FileAttachment":
        if len(data) > MAX_ATTACHMENT_BYTES:
            raise ValueError(f"File {name} is too large. Maximum size is 10MB.")
        kind = classify_file(name, mime_type)
        content = None
        if kind in ("text", "code"):
            content = data.decode("utf-8", errors="replace")
        return cls(name=name, mime_type=mime_type, size=len(data), kind=kind, content=content)


@dataclass
class Message:
    """A single chat message."""

    id: str
    role: Role
    content: str
    timestamp: datetime
    tokens: Optional[int] = None  # cached count, filled lazily by callers
    files: list[FileAttachment] = field(default_factory=list)

    @classmethod
    def create(cls, role: Role, content: str, files: Optional[list[FileAttachment]] = None) -> "Message":
        return cls(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            timestamp=_utcnow(),
            files=list(files or []),
        )


def message_from_dict(data: dict) -> Message:
    """Build a Message from untyped transport/storage data.

    Raises ValueError on an unknown role or missing content.
    """
    role = data.get("role")
    if role not in ROLES:
        raise ValueError(f"Unknown message role: {role!r}")
    content = data.get("content")
    if not isinstance(content, str):
        raise ValueError("Message content must be a string")

    timestamp = data.get("timestamp")
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    elif timestamp is None:
        timestamp = _utcnow()
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    files = [
        f if isinstance(f, FileAttachment) else FileAttachment(
            name=f["name"],
            mime_type=f.get("mime_type", ""),
            size=int(f.get("size", 0)),
            kind=f.get("kind") or classify_file(f["name"], f.get("mime_type", "")),
            content=f.get("content"),
        )
        for f in data.get("files") or []
    ]

    return Message(
        id=data.get("id") or uuid.uuid4().hex,
        role=role,
        content=content,
        timestamp=timestamp,
        tokens=data.get("tokens"),
        files=files,
    )


def derive_title(first_message: str) -> str:
    """Conversation title from the opening user message."""
    text = first_message.strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


@dataclass
class Conversation:
    """An ordered chat between the user and the model."""

    id: str
    title: Optional[str]  # None until set explicitly; see display_title
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, title: Optional[str] = None) -> "Conversation":
        now = _utcnow()
        return cls(id=uuid.uuid4().hex, title=title, created_at=now, updated_at=now)

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        for msg in self.messages:
            if msg.role == "user":
                return derive_title(msg.content)
        return DEFAULT_TITLE

    def append(self, message: Message) -> None:
        """Add a message and advance updated_at.

        updated_at becomes the later of now and the message timestamp, so an
        imported older message still counts as activity. It never moves back.
        """
        self.messages.append(message)
        self.updated_at = max(self.updated_at, message.timestamp, _utcnow())


@dataclass(frozen=True)
class ContextStatus:
    """Context-window usage, recomputed from messages on demand."""

    total_tokens: int
    percentage: float  # fraction of limit, 0.5 == 50%
    tier: Tier
    limit: int


@dataclass
class TrimResult:
    """Outcome of trimming; trimmed_messages is a suffix of the input."""

    trimmed_messages: list[Message]
    removed_count: int
    tokens_saved: int
    over_budget: bool = False  # newest message kept even though it exceeds the target
