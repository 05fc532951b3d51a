"""
Failure classification for provider errors and payloads.

``classify`` is a pure function: it looks at an exception, a decoded JSON
payload or a bare message and decides which ``ErrorKind`` it belongs to.
Checks run in priority order, so a payload that is both a safety block and
carries a 429 status is reported as a safety block.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
import jsonschema

from modsmith.llm.errors import (
    CompletionError,
    MalformedResponseError,
    SafetyBlockedError,
)
from modsmith.types import RETRIABLE_KINDS, ErrorKind

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate_limit",
    "429",
    "resource has been exhausted",
    "resource_exhausted",
    "quota",
)

SAFETY_PAYLOAD_ERRORS = frozenset({"SAFETY_VIOLATION", "PLATFORM_SECURITY_VIOLATION"})

_SAFETY_MARKERS = (
    "safety_violation",
    "platform_security_violation",
    "block reason",
    "blockreason",
    "blocked for safety",
)

_AUTH_MARKERS = (
    "api key",
    "api_key",
    "unauthorized",
    "unauthenticated",
    "permission denied",
    "permission_denied",
    "invalid credentials",
    "forbidden",
)

_NETWORK_MARKERS = (
    "connection refused",
    "connection reset",
    "network",
    "failed to fetch",
    "name or service not known",
    "timed out",
)


@dataclass(frozen=True)
class Classification:
    kind: str
    retriable: bool


def _message_of(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        return json.dumps(raw, default=str)
    return str(raw)


def is_rate_limited(raw: Any) -> bool:
    """Return ``True`` when *raw* looks like a rate-limit or quota failure."""
    if getattr(raw, "status_code", None) == 429:
        return True
    message = _message_of(raw).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_safety_payload(payload: Any) -> bool:
    """``{"error": "SAFETY_VIOLATION"}``-style payloads returned as content."""
    return isinstance(payload, dict) and payload.get("error") in SAFETY_PAYLOAD_ERRORS


def _is_safety(raw: Any) -> bool:
    if isinstance(raw, SafetyBlockedError):
        return True
    if isinstance(raw, dict):
        if is_safety_payload(raw):
            return True
        feedback = raw.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            return True
        return False
    message = _message_of(raw).lower()
    return any(marker in message for marker in _SAFETY_MARKERS)


def _is_malformed(raw: Any) -> bool:
    return isinstance(
        raw,
        (MalformedResponseError, json.JSONDecodeError, jsonschema.ValidationError),
    )


def _is_auth(raw: Any) -> bool:
    if getattr(raw, "status_code", None) in (401, 403):
        return True
    message = _message_of(raw).lower()
    return any(marker in message for marker in _AUTH_MARKERS)


def _is_network(raw: Any) -> bool:
    if isinstance(raw, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    if isinstance(raw, BaseException):
        message = str(raw).lower()
        return any(marker in message for marker in _NETWORK_MARKERS)
    return False


def classify(raw: Any) -> Classification:
    """
    Assign an ``ErrorKind`` to an exception, payload dict or message string.

    A ``CompletionError`` keeps the kind it was already given.
    """
    if isinstance(raw, CompletionError):
        return Classification(raw.kind, raw.retriable)

    if _is_safety(raw):
        kind = ErrorKind.SAFETY_BLOCKED
    elif is_rate_limited(raw):
        kind = ErrorKind.RATE_LIMITED
    elif _is_malformed(raw):
        kind = ErrorKind.MALFORMED_RESPONSE
    elif _is_auth(raw):
        kind = ErrorKind.AUTH_ERROR
    elif _is_network(raw):
        kind = ErrorKind.NETWORK_ERROR
    else:
        kind = ErrorKind.UNKNOWN
    return Classification(kind, kind in RETRIABLE_KINDS)


def to_completion_error(raw: Any, provider: str | None = None) -> CompletionError:
    """Wrap *raw* in a ``CompletionError`` carrying its classification."""
    if isinstance(raw, CompletionError):
        return raw
    result = classify(raw)
    message = _message_of(raw) or type(raw).__name__
    if provider is None:
        provider = getattr(raw, "provider", None)
    return CompletionError(
        result.kind, message, retriable=result.retriable, provider=provider
    )
