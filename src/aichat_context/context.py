"""Context-window classification and conversation trimming.

Everything here is pure: functions take a snapshot of messages and return
new values without touching their inputs. Callers recompute after every
state change and should gate UI changes on tier transitions, since the
classifier has no hysteresis.
"""

import logging
import math
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from .config import (
    CRITICAL_THRESHOLD,
    DEFAULT_CONTEXT_LIMIT,
    DEFAULT_MODEL,
    EMERGENCY_THRESHOLD,
    RECOMMENDED_TRIM_RATIO,
    WARNING_THRESHOLD,
)
from .core import ContextStatus, Message, Tier, TrimResult
from .settings import Settings
from .tokens import lookup_model, message_tokens, total_tokens

logger = logging.getLogger(__name__)

TRIM_STRATEGIES = ("recent",)


def get_context_limit(model: str = DEFAULT_MODEL) -> int:
    info = lookup_model(model)
    return info.context_limit if info else DEFAULT_CONTEXT_LIMIT


def classify_tier(percentage: float) -> Tier:
    if percentage >= EMERGENCY_THRESHOLD:
        return "emergency"
    elif percentage >= CRITICAL_THRESHOLD:
        return "critical"
    elif percentage >= WARNING_THRESHOLD:
        return "warning"
    return "safe"


def get_context_status(messages: Sequence[Message], model: str = DEFAULT_MODEL) -> ContextStatus:
    """Classify how much of the model's context window the messages use.

    Only message bodies count; attachments are excluded.
    """
    limit = get_context_limit(model)
    tokens = total_tokens(messages)
    percentage = tokens / limit
    return ContextStatus(
        total_tokens=tokens,
        percentage=percentage,
        tier=classify_tier(percentage),
        limit=limit,
    )


def get_recommended_trim_target(model: str = DEFAULT_MODEL) -> int:
    return math.floor(get_context_limit(model) * RECOMMENDED_TRIM_RATIO)


def trim_conversation(
    messages: Sequence[Message],
    target_tokens: int,
    strategy: str = "recent",
) -> TrimResult:
    """Drop the oldest messages until the rest fit within target_tokens.

    The kept messages are always a contiguous suffix of the input. If the
    newest message alone exceeds the target it is kept anyway and the result
    is flagged over_budget, so a non-empty conversation never trims to nothing.
    """
    if strategy not in TRIM_STRATEGIES:
        raise ValueError(f"Unknown trim strategy: {strategy}")

    if not messages:
        return TrimResult(trimmed_messages=[], removed_count=0, tokens_saved=0)

    counts = [message_tokens(m) for m in messages]
    total = sum(counts)

    if total <= target_tokens:
        return TrimResult(trimmed_messages=list(messages), removed_count=0, tokens_saved=0)

    kept_tokens = 0
    start = len(messages)
    for i in range(len(messages) - 1, -1, -1):
        if kept_tokens + counts[i] > target_tokens:
            break
        kept_tokens += counts[i]
        start = i

    over_budget = False
    if start == len(messages):
        start = len(messages) - 1
        kept_tokens = counts[-1]
        over_budget = True
        logger.warning(
            "Newest message (%d tokens) exceeds trim target %d; keeping it anyway",
            kept_tokens, target_tokens,
        )

    return TrimResult(
        trimmed_messages=list(messages[start:]),
        removed_count=start,
        tokens_saved=total - kept_tokens,
        over_budget=over_budget,
    )


ContextActionKind = Literal["none", "prompt", "auto_trim"]


@dataclass
class ContextAction:
    """What the chat layer should do before its next request."""

    status: ContextStatus
    action: ContextActionKind
    trim: Optional[TrimResult] = None


def plan_context_action(messages: Sequence[Message], settings: Settings) -> ContextAction:
    """Decide between auto-trimming, prompting the user, or doing nothing.

    Auto-trim applies when enabled and usage reaches the configured threshold;
    otherwise an emergency tier asks the user to manage context.
    """
    status = get_context_status(messages, settings.model)

    if settings.auto_trim and status.percentage >= settings.auto_trim_threshold:
        target = get_recommended_trim_target(settings.model)
        result = trim_conversation(messages, target)
        if result.removed_count:
            logger.info(
                "Auto-trimmed %d messages (%d tokens) at %.0f%% of context",
                result.removed_count, result.tokens_saved, status.percentage * 100,
            )
            return ContextAction(status=status, action="auto_trim", trim=result)

    if status.tier == "emergency":
        return ContextAction(status=status, action="prompt")
    return ContextAction(status=status, action="none")
