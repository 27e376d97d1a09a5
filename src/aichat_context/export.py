"""Export conversations to Markdown, JSON and compact continuation formats."""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from .compact import CompactOptions, export_compact
from .core import Conversation
from .tokens import count_tokens

ExportFormat = Literal["markdown", "json", "compact"]

EXPORT_FORMAT_VERSION = "aichat-context-export-v1"

ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


@dataclass
class ExportOptions:
    include_timestamps: bool = True
    include_token_counts: bool = False


@dataclass
class ExportArtifact:
    """Export content plus the filename and media type to save it under."""

    content: str
    filename: str
    media_type: str


def conversation_to_markdown(conversation: Conversation, options: Optional[ExportOptions] = None) -> str:
    """Export a conversation as readable Markdown with message bodies verbatim."""
    options = options or ExportOptions()
    messages = conversation.messages

    lines = [f"# {conversation.display_title}", ""]
    lines.append(f"**Created:** {conversation.created_at.isoformat()}")
    lines.append(f"**Last Updated:** {conversation.updated_at.isoformat()}")
    lines.append(f"**Messages:** {len(messages)}")
    if options.include_token_counts:
        total = sum(count_tokens(m.content) for m in messages)
        lines.append(f"**Total Tokens:** {total:,}")
    lines.extend(["", "---", ""])

    for msg in messages:
        heading = f"## {ROLE_LABELS[msg.role]}"
        if options.include_timestamps:
            heading += f" ({msg.timestamp.strftime('%Y-%m-%d %H:%M')})"
        if options.include_token_counts:
            heading += f" [{count_tokens(msg.content)} tokens]"
        lines.append(heading)
        lines.append("")
        lines.append(msg.content)
        if msg.files:
            lines.append("")
            lines.append("**Attachments:** " + ", ".join(f.name for f in msg.files))
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def conversation_to_json(conversation: Conversation, options: Optional[ExportOptions] = None) -> str:
    """Export a conversation as structured JSON."""
    options = options or ExportOptions()
    messages = conversation.messages

    metadata = {
        "id": conversation.id,
        "title": conversation.display_title,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "message_count": len(messages),
    }
    if options.include_token_counts:
        metadata["total_tokens"] = sum(count_tokens(m.content) for m in messages)

    data = {
        "metadata": metadata,
        "messages": [
            {
                "id": msg.id,
                "role": msg.role,
                "content": msg.content,
                "timestamp": msg.timestamp.isoformat() if options.include_timestamps else None,
                "tokens": count_tokens(msg.content) if options.include_token_counts else None,
                "files": [
                    {"name": f.name, "mime_type": f.mime_type, "size": f.size, "kind": f.kind}
                    for f in msg.files
                ],
            }
            for msg in messages
        ],
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "format": EXPORT_FORMAT_VERSION,
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def title_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:30] or "conversation"


def export_conversation(
    conversation: Conversation,
    format: ExportFormat = "markdown",
    options: Optional[ExportOptions] = None,
    compact_options: Optional[CompactOptions] = None,
    today: Optional[datetime] = None,
) -> ExportArtifact:
    """Render a conversation in the requested format with a download filename.

    Compact exports are saved as .md/text/markdown for convenience even
    though the content is not Markdown.
    """
    date_str = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    slug = title_slug(conversation.display_title)

    if format == "json":
        return ExportArtifact(
            content=conversation_to_json(conversation, options),
            filename=f"{slug}-{date_str}.json",
            media_type="application/json",
        )
    elif format == "compact":
        return ExportArtifact(
            content=export_compact(conversation, compact_options),
            filename=f"{slug}-compact-{date_str}.md",
            media_type="text/markdown",
        )
    elif format == "markdown":
        return ExportArtifact(
            content=conversation_to_markdown(conversation, options),
            filename=f"{slug}-{date_str}.md",
            media_type="text/markdown",
        )
    raise ValueError(f"Invalid export format: {format}")
