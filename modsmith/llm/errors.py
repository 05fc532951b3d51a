"""
Exception hierarchy for the completion layer.

Providers raise ``ProviderError`` (and its subclasses) for anything that goes
wrong on the wire.  The orchestrator classifies those and re-raises a single
``CompletionError`` to the caller, chained to the original exception.
"""

from __future__ import annotations

from modsmith.types import RETRIABLE_KINDS, ErrorKind


class ProviderError(Exception):
    """A failure reported by (or while talking to) a completion provider."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


class RetryExhaustedError(ProviderError):
    """Raised by ``RetryExecutor`` once the rate-limit retry budget is spent."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"{last_error} (retries exhausted after {attempts} attempts)",
            status_code=getattr(last_error, "status_code", None),
            provider=getattr(last_error, "provider", None),
        )
        self.last_error = last_error
        self.attempts = attempts


class SafetyBlockedError(ProviderError):
    """The provider refused the prompt or the response on safety grounds."""


class MalformedResponseError(ProviderError):
    """A syntactically successful call returned an unusable payload."""


class StreamConsumedError(RuntimeError):
    """A provider stream handle was iterated a second time."""


class CompletionError(Exception):
    """
    The single, classified error surfaced to callers of the orchestrator.

    Attributes
    ----------
    kind:
        One of the ``ErrorKind`` constants.
    message:
        Human-readable description.
    retriable:
        Whether the caller may reasonably try the same request again later.
    provider:
        The provider whose failure produced this error, if any.
    """

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        retriable: bool | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retriable = kind in RETRIABLE_KINDS if retriable is None else retriable
        self.provider = provider

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"CompletionError(kind={self.kind!r}, message={self.message!r}, "
            f"retriable={self.retriable!r}, provider={self.provider!r})"
        )
