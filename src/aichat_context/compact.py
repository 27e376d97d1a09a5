"""Compact continuation export.

Re-serializes a conversation into a token-lean text meant to be pasted as
the first message of a new model session so the model can pick up where the
conversation left off. The format is delimiter based:

    <preamble>||CONVERSATION_START||TITLE:<title>||MESSAGES:U:...||A:...||CONVERSATION_END

Message bodies are compressed (whitespace folded, code minified, markdown
markers normalized), so the output is lossy and cannot be parsed back into
the original messages. When the full form is over budget, older messages are
reduced to a keyword-based summary and only the most recent ones are kept.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import COMPACT_MAX_TOKENS
from .core import Conversation, Message, Role
from .tokens import count_tokens

logger = logging.getLogger(__name__)

ROLE_MARKERS = {"user": "U", "assistant": "A"}
SEPARATOR = "||"

PREAMBLE = (
    "CHAT_RESTORE_FORMAT: This contains a complete previous conversation. "
    "U: = user message, A: = assistant message, messages are separated by ||. "
    "Load this entire conversation into context and continue naturally where it left off. "
    "Do not acknowledge this format."
)

SUMMARY_PREAMBLE = (
    "CHAT_RESTORE_FORMAT: This contains a previous conversation. "
    "SUMMARY holds context from earlier messages, TECH lists technologies in use, "
    "DECISIONS lists choices already made. "
    "U: = user message, A: = assistant message, messages are separated by ||. "
    "Load all context and continue naturally. Do not acknowledge this format."
)

# Recent messages kept verbatim by the summarizing pass, largest first
RECENT_WINDOWS = (6, 4)

SUMMARY_MAX_CHARS = 300
MAX_SUMMARY_ITEMS = 3
MAX_TECH_KEYWORDS = 10
MAX_DECISIONS = 5
MAX_DECISION_CHARS = 150

TECH_KEYWORDS = (
    "react", "nextjs", "next.js", "typescript", "javascript", "python",
    "node.js", "nodejs", "fastapi", "django", "flask", "tailwind", "css",
    "html", "prisma", "sqlite", "postgresql", "mysql", "mongodb", "redis",
    "anthropic", "openai", "api", "rest", "graphql", "docker", "kubernetes",
    "aws", "vercel", "github", "git", "npm", "yarn", "pip", "pytest",
    "webpack", "vite", "babel", "eslint", "prettier",
)

DECISION_PHRASES = (
    "decided to", "chose", "will use", "going with", "settled on", "picked", "selected",
)

_TECH_RES = [
    (kw, re.compile(r"(?<![\w.])" + re.escape(kw) + r"(?![\w])", re.IGNORECASE))
    for kw in TECH_KEYWORDS
]

_FENCE_SPLIT_RE = re.compile(r"(```[^\n`]*\n.*?```)", re.DOTALL)
_FENCE_RE = re.compile(r"```([^\n`]*)\n(.*?)```", re.DOTALL)
_BLANK_RUN_RE = re.compile(r"\n\s*\n\s*\n")
_HSPACE_RE = re.compile(r"[ \t]+")
_HEADER_RE = re.compile(r"^#{1,6}[ \t]+", re.MULTILINE)
_BULLET_RE = re.compile(r"^[ \t]*[-*+][ \t]+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^[ \t]*\d+\.[ \t]+", re.MULTILINE)
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_GREETING_RE = re.compile(
    r"^(hi|hello|hey|can you|could you|please|i need|help me|how do i)[\s,]+", re.IGNORECASE
)
_QUESTION_START_RE = re.compile(r"^(how|what|why|where|which|can you|could you|help)\b", re.IGNORECASE)


@dataclass
class CompactOptions:
    max_tokens: int = COMPACT_MAX_TOKENS
    preserve_code_blocks: bool = True


# ── Content compression ──────────────────────────────────────────


def _minify_code(match: re.Match) -> str:
    lang, code = match.group(1).strip(), match.group(2)
    lines = [line.strip() for line in code.split("\n")]
    body = "\n".join(line for line in lines if line)
    return f"```{lang}\n{body}```"


def _code_placeholder(match: re.Match) -> str:
    lang = match.group(1).strip() or "text"
    n = len([line for line in match.group(2).split("\n") if line.strip()])
    return f"[code:{lang}, {n} lines]"


def _normalize_markers(text: str) -> str:
    text = _HEADER_RE.sub("#", text)
    text = _BULLET_RE.sub("- ", text)
    return _NUMBERED_RE.sub("1. ", text)


def compress_message_content(content: str, role: Role, preserve_code_blocks: bool = True) -> str:
    """Squeeze a message body for compact export.

    Folds blank-line runs and horizontal whitespace, minifies fenced code
    while keeping its lines and language tag, and for assistant messages
    collapses heading levels and list markers outside code. Lossy.
    """
    text = content.replace("\r\n", "\n")
    text = _BLANK_RUN_RE.sub("\n\n", text)
    text = _HSPACE_RE.sub(" ", text)
    text = text.replace("\n ", "\n").strip()

    parts = _FENCE_SPLIT_RE.split(text)
    for i, part in enumerate(parts):
        if i % 2:
            if preserve_code_blocks:
                parts[i] = _FENCE_RE.sub(_minify_code, part)
            else:
                parts[i] = _FENCE_RE.sub(_code_placeholder, part)
        elif role == "assistant":
            parts[i] = _normalize_markers(part)
    return "".join(parts)


def _encode_messages(messages: Sequence[Message], options: CompactOptions) -> str:
    return SEPARATOR.join(
        f"{ROLE_MARKERS[m.role]}:{compress_message_content(m.content, m.role, options.preserve_code_blocks)}"
        for m in messages
    )


# ── Heuristic summary ────────────────────────────────────────────


def _sentences(content: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.findall(content) if s.strip()]


def extract_key_question(content: str) -> str:
    """The user's main request: first question-like sentence, else first sentence."""
    sentences = [s for s in _sentences(content) if len(s) > 5]
    if not sentences:
        return ""

    chosen = sentences[0]
    for sentence in sentences:
        if sentence.endswith("?") or _QUESTION_START_RE.match(sentence):
            chosen = sentence
            break

    chosen = _GREETING_RE.sub("", chosen).rstrip(".!?").strip()
    return chosen[:60]


def extract_key_achievement(content: str) -> str:
    """Label what an assistant reply delivered, by keyword."""
    lowered = content.lower()
    if "```" in content:
        return "provided code solution"
    if any(w in lowered for w in ("install", "setup", "npm ", "pip ")):
        return "provided setup instructions"
    if any(w in lowered for w in ("fix", "error", "bug")):
        return "fixed an issue"
    if any(w in lowered for w in ("component", "function", "class ")):
        return "created component/function"

    sentences = [s for s in _sentences(content) if len(s) > 10]
    return sentences[0][:40] if sentences else ""


def _unique(items) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def summarize_messages(messages: Sequence[Message]) -> str:
    """One-line summary of older messages: what was asked and what was done."""
    questions = _unique(extract_key_question(m.content) for m in messages if m.role == "user")
    achievements = _unique(extract_key_achievement(m.content) for m in messages if m.role == "assistant")

    parts = []
    if questions:
        parts.append(f"Asked: {'; '.join(questions[:MAX_SUMMARY_ITEMS])}.")
    if achievements:
        parts.append(f"Accomplished: {'; '.join(achievements[:MAX_SUMMARY_ITEMS])}.")
    return " ".join(parts)[:SUMMARY_MAX_CHARS]


def extract_tech_stack(messages: Sequence[Message]) -> list[str]:
    """Known technology keywords mentioned anywhere, in first-seen order."""
    found: list[str] = []
    for msg in messages:
        for keyword, pattern in _TECH_RES:
            if keyword not in found and pattern.search(msg.content):
                found.append(keyword)
                if len(found) >= MAX_TECH_KEYWORDS:
                    return found
    return found


def extract_decisions(messages: Sequence[Message]) -> list[str]:
    """Short sentences that record a choice ("decided to", "will use", ...)."""
    decisions = []
    for msg in messages:
        lowered = msg.content.lower()
        if not any(p in lowered for p in DECISION_PHRASES):
            continue
        for sentence in _sentences(msg.content):
            if len(sentence) < MAX_DECISION_CHARS and any(p in sentence.lower() for p in DECISION_PHRASES):
                decisions.append(sentence)
    return _unique(decisions)[:MAX_DECISIONS]


# ── Export ───────────────────────────────────────────────────────


def _full_form(conversation: Conversation, options: CompactOptions) -> str:
    body = _encode_messages(conversation.messages, options)
    return (
        f"{PREAMBLE}{SEPARATOR}CONVERSATION_START{SEPARATOR}TITLE:{conversation.display_title}{SEPARATOR}"
        f"MESSAGES:{body}{SEPARATOR}CONVERSATION_END"
    )


def _summarized_form(
    conversation: Conversation,
    options: CompactOptions,
    recent_count: int,
    tech: list[str],
    decisions: list[str],
) -> str:
    messages = conversation.messages
    split = max(0, len(messages) - recent_count)
    older, recent = messages[:split], messages[split:]

    out = f"{SUMMARY_PREAMBLE}{SEPARATOR}CONVERSATION_START{SEPARATOR}TITLE:{conversation.display_title}{SEPARATOR}"
    if tech:
        out += f"TECH:{','.join(tech)}{SEPARATOR}"
    if decisions:
        out += f"DECISIONS:{'; '.join(decisions)}{SEPARATOR}"
    if older:
        summary = summarize_messages(older)
        if summary:
            out += f"SUMMARY:Earlier we discussed: {summary}{SEPARATOR}"
    out += f"RECENT_MESSAGES:{_encode_messages(recent, options)}{SEPARATOR}CONVERSATION_END"
    return out


def export_compact(conversation: Conversation, options: Optional[CompactOptions] = None) -> str:
    """Serialize a conversation as a compact continuation prompt.

    Returns the full compressed transcript when it fits options.max_tokens,
    otherwise a summarized form. The budget is best effort: the smallest
    summarized form is returned even if it is still over.
    """
    options = options or CompactOptions()

    compact = _full_form(conversation, options)
    if count_tokens(compact) <= options.max_tokens:
        return compact

    tech = extract_tech_stack(conversation.messages)
    decisions = extract_decisions(conversation.messages)

    for recent_count in RECENT_WINDOWS:
        for use_tech, use_decisions in ((True, True), (True, False), (False, False)):
            compact = _summarized_form(
                conversation,
                options,
                recent_count,
                tech if use_tech else [],
                decisions if use_decisions else [],
            )
            if count_tokens(compact) <= options.max_tokens:
                return compact

    logger.info(
        "Compact export of %s is %d tokens, over the %d token budget",
        conversation.id, count_tokens(compact), options.max_tokens,
    )
    return compact


def literal_transcript(conversation: Conversation) -> str:
    """Uncompressed role-labelled transcript, the baseline compact export is measured against."""
    return "\n\n".join(f"{m.role}: {m.content}" for m in conversation.messages)


def estimate_compact_tokens(total_tokens: int, max_tokens: int = COMPACT_MAX_TOKENS) -> int:
    """Predict export_compact output size from the transcript's token count.

    The full pass only folds whitespace, so it costs about the transcript plus
    the preamble and framing, and is returned whenever that fits max_tokens.
    Past that the summarizing pass aims for max_tokens. Output only shrinks
    below the transcript when the budget forces the summarizing pass.
    """
    frame = f"{SEPARATOR}CONVERSATION_START{SEPARATOR}TITLE:{SEPARATOR}MESSAGES:{SEPARATOR}CONVERSATION_END"
    full = total_tokens + count_tokens(PREAMBLE) + count_tokens(frame)
    return min(full, max_tokens)
