"""
Token counting with optional tiktoken backend.

Budgets only need to be approximately right, since the providers use
different tokenizers.  If ``tiktoken`` is installed the counter uses the
encoding for the requested model, or ``cl100k_base`` for models tiktoken does
not know (Gemini, Llama).  Otherwise a character heuristic is used.
"""

from __future__ import annotations

from typing import Any

FALLBACK_ENCODING = "cl100k_base"
CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD = 4


def _load_encoding(model: str | None) -> Any:
    try:
        import tiktoken  # type: ignore[import-untyped]
    except ImportError:
        return None
    try:
        return tiktoken.encoding_for_model(model or "gpt-4")
    except KeyError:
        pass
    try:
        return tiktoken.get_encoding(FALLBACK_ENCODING)
    except Exception:
        # Encoding files unavailable (offline); use the heuristic.
        return None


class TokenCounter:
    """
    Estimate token counts for text and message lists.

    Parameters
    ----------
    model:
        Model name used to pick a tiktoken encoding.  Ignored when tiktoken
        is not available.
    """

    def __init__(self, model: str | None = None) -> None:
        self.model = model
        self._encoding: Any = _load_encoding(model)

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text))
        return max(1, len(text) // CHARS_PER_TOKEN)

    def count_messages(self, messages: list) -> int:
        """Content tokens plus a fixed per-message overhead for role markers."""
        return sum(
            MESSAGE_OVERHEAD + self.count_text(getattr(msg, "content", None) or "")
            for msg in messages
        )
