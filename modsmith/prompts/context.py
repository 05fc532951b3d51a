"""
Token-budgeted project context packer.

Renders the project snapshot, an optional attached document and the user's
prompt into the final user message.  When the snapshot does not fit in the
budget, the largest files are dropped first; the prompt and the attachment
are always kept, and prior turns count against the budget.  The packer
reports what was kept and dropped via :class:`~modsmith.types.ContextReport`.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any

from modsmith.llm.types import CompletionRequest
from modsmith.types import ContextReport

logger = logging.getLogger(__name__)

_FENCE_LANGUAGES = {
    ".java": "java",
    ".kt": "kotlin",
    ".gradle": "groovy",
    ".kts": "kotlin",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
    ".properties": "properties",
    ".xml": "xml",
    ".md": "markdown",
}


def fence_language(path: str) -> str:
    return _FENCE_LANGUAGES.get(posixpath.splitext(path)[1].lower(), "")


def render_file(path: str, content: str) -> str:
    return f"### {path}\n```{fence_language(path)}\n{content}\n```"


class ProjectContextPacker:
    """
    Pack a project snapshot into a token budget.

    Parameters
    ----------
    token_counter:
        Any object exposing ``count_text(str) -> int`` and
        ``count_messages(list) -> int``; ``modsmith.llm.token_counter.TokenCounter``
        satisfies this.
    max_context_tokens:
        Size of the context window to fill.
    reserve_tokens:
        Headroom kept free for the system instruction and the reply.  Prior
        turns in ``request.history`` are charged against the budget as well.
    """

    def __init__(
        self,
        token_counter: Any,
        max_context_tokens: int = 32_000,
        reserve_tokens: int = 2_000,
    ) -> None:
        self.token_counter = token_counter
        self.max_context_tokens = max_context_tokens
        self.reserve_tokens = reserve_tokens

    def pack(self, request: CompletionRequest) -> tuple[str, ContextReport]:
        """Return the rendered user message and a report of what it holds."""
        prompt_tokens = self.token_counter.count_text(request.prompt)
        history_tokens = self.token_counter.count_messages(request.history)

        attachment_block = ""
        if request.attachment is not None:
            attachment_block = (
                f"## Attached document: {request.attachment.name}\n\n"
                f"{request.attachment.text}"
            )
        attachment_tokens = self.token_counter.count_text(attachment_block)

        budget = max(
            0,
            self.max_context_tokens
            - self.reserve_tokens
            - prompt_tokens
            - history_tokens
            - attachment_tokens,
        )

        rendered = {path: render_file(path, text) for path, text in request.files.items()}
        costs = {path: self.token_counter.count_text(block) for path, block in rendered.items()}

        kept = set(rendered)
        total = sum(costs.values())
        # Largest first; ties broken by path so the result is deterministic.
        for path in sorted(rendered, key=lambda p: (-costs[p], p)):
            if total <= budget:
                break
            kept.discard(path)
            total -= costs[path]

        kept_files = sorted(kept)
        dropped_files = sorted(set(rendered) - kept)
        if dropped_files:
            logger.warning(
                "Project context over budget, dropped %d file(s): %s",
                len(dropped_files),
                ", ".join(dropped_files),
            )

        sections: list[str] = []
        if kept_files:
            sections.append(
                "## Project files\n\n" + "\n\n".join(rendered[p] for p in kept_files)
            )
        if attachment_block:
            sections.append(attachment_block)
        sections.append(f"## Request\n\n{request.prompt}")

        report = ContextReport(
            max_context_tokens=self.max_context_tokens,
            reserve_tokens=self.reserve_tokens,
            prompt_tokens=prompt_tokens,
            history_tokens=history_tokens,
            file_tokens=total,
            attachment_tokens=attachment_tokens,
            kept_files=kept_files,
            dropped_files=dropped_files,
        )
        return "\n\n".join(sections), report
