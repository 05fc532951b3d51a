"""Parsing of structured-json completions into file edits."""

from __future__ import annotations

import json
import re

import jsonschema

from modsmith.llm.classifier import is_safety_payload
from modsmith.llm.errors import CompletionError
from modsmith.llm.types import FileEdit
from modsmith.types import ErrorKind

FILES_SCHEMA = {
    "type": "object",
    "required": ["files"],
    "properties": {
        "files": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["path", "content"],
                "properties": {
                    "path": {"type": "string", "minLength": 1},
                    "content": {"type": "string"},
                },
            },
        },
    },
}

_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n(.*?)\n?```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove one Markdown code fence wrapped around the whole document."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def parse_structured_result(text: str, provider: str | None = None) -> list[FileEdit]:
    """
    Parse a complete structured-json response.

    Raises ``CompletionError`` with ``SAFETY_BLOCKED`` for a safety payload
    and ``MALFORMED_RESPONSE`` for empty, unparsable or mis-shaped documents.
    """
    body = strip_code_fence(text)
    if not body:
        raise CompletionError(
            ErrorKind.MALFORMED_RESPONSE,
            "structured response is empty",
            provider=provider,
        )

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise CompletionError(
            ErrorKind.MALFORMED_RESPONSE,
            f"structured response is not valid JSON: {exc}",
            provider=provider,
        ) from exc

    if is_safety_payload(payload):
        raise CompletionError(
            ErrorKind.SAFETY_BLOCKED,
            f"request rejected by content policy ({payload['error']})",
            provider=provider,
        )

    try:
        jsonschema.validate(instance=payload, schema=FILES_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise CompletionError(
            ErrorKind.MALFORMED_RESPONSE,
            f"structured response does not match the files schema: {exc.message}",
            provider=provider,
        ) from exc

    return [FileEdit(path=item["path"], content=item["content"]) for item in payload["files"]]
