"""Context-budget management and conversation export for LLM chat clients."""

__version__ = "0.1.0"
