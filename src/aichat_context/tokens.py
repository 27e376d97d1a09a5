"""Token counting and cost estimation.

Token counts come from tiktoken's cl100k_base encoding, which is a close
enough approximation of the Claude tokenizer for budgeting. If the encoding
cannot be loaded or encoding fails, counts fall back to ~4 characters per
token.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Literal, Optional

import tiktoken

from .config import DEFAULT_MODEL, MODELS, ModelInfo
from .core import Message

logger = logging.getLogger(__name__)

Direction = Literal["input", "output"]

ENCODING_NAME = "cl100k_base"

_encoding = None
_encoding_failed = False
_unknown_models: set[str] = set()


def _get_encoding():
    """Load the tokenizer once; after a failure, stay on the fallback."""
    global _encoding, _encoding_failed
    if _encoding is None and not _encoding_failed:
        try:
            _encoding = tiktoken.get_encoding(ENCODING_NAME)
        except Exception as e:
            _encoding_failed = True
            logger.warning("Tokenizer unavailable, estimating by characters: %s", e)
    return _encoding


def estimate_tokens(text: str) -> int:
    """Character-based estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def count_tokens(text: str) -> int:
    """Return the approximate number of model tokens in text."""
    if not text or not text.strip():
        return 0

    encoding = _get_encoding()
    if encoding is None:
        return estimate_tokens(text)
    try:
        return len(encoding.encode(text, disallowed_special=()))
    except Exception as e:
        logger.debug("Tokenizer failed on %d chars: %s", len(text), e)
        return estimate_tokens(text)


def message_tokens(message: Message) -> int:
    """Token count for a message, preferring its cached value."""
    if message.tokens is not None:
        return message.tokens
    return count_tokens(message.content)


def total_tokens(messages: Iterable[Message]) -> int:
    return sum(count_tokens(m.content) for m in messages)


def lookup_model(model: str) -> Optional[ModelInfo]:
    """Find a model in the static table, logging unknown ids once."""
    info = MODELS.get(model)
    if info is None and model not in _unknown_models:
        _unknown_models.add(model)
        logger.warning("No pricing or context data for model %s", model)
    return info


def get_model_display_name(model: str) -> str:
    info = MODELS.get(model)
    return info.display_name if info else model


def calculate_cost(tokens: int, model: str = DEFAULT_MODEL, direction: Direction = "input") -> float:
    """Estimate USD cost for tokens sent to (input) or produced by (output) a model.

    Unknown models cost 0.0: no pricing data is not an error.
    """
    info = lookup_model(model)
    if info is None:
        return 0.0

    if direction == "output":
        price_per_million = info.output_price_per_million
    else:
        price_per_million = info.input_price_per_million
    return tokens * (price_per_million / 1_000_000)


def format_cost(cost: float) -> str:
    """Render a cost so that sub-cent amounts stay informative."""
    if cost < 0.001:
        return f"{cost * 1000:.3f}m$"
    elif cost < 0.01:
        return f"{cost * 100:.2f}¢"
    else:
        return f"${cost:.4f}"


@dataclass(frozen=True)
class CostBreakdown:
    """Conversation cost: user turns billed as input, assistant turns as output."""

    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


def conversation_cost(messages: Iterable[Message], model: str = DEFAULT_MODEL) -> CostBreakdown:
    input_tokens = 0
    output_tokens = 0
    for msg in messages:
        if msg.role == "user":
            input_tokens += count_tokens(msg.content)
        else:
            output_tokens += count_tokens(msg.content)

    return CostBreakdown(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost=calculate_cost(input_tokens, model, "input"),
        output_cost=calculate_cost(output_tokens, model, "output"),
    )
