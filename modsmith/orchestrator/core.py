"""
Orchestrator core -- resilient streaming completion for one request.

The orchestrator:
1. Builds the system instruction and the packed user message
2. Walks the provider chain in priority order
3. Invokes each provider through the rate-limit retry executor
4. Normalizes the provider stream and forwards every event to the caller
5. Reassembles tool calls and, in structured mode, parses the file edits
6. Fails over only on capacity errors; everything else is raised at once
"""

from __future__ import annotations

import functools
import logging
from contextlib import aclosing
from typing import AsyncIterator, Sequence, Union

from modsmith.llm.chain import ProviderChain
from modsmith.llm.classifier import classify, to_completion_error
from modsmith.llm.errors import CompletionError
from modsmith.llm.retry import RetryExecutor
from modsmith.llm.token_counter import TokenCounter
from modsmith.llm.tool_call_accumulator import ToolCallAccumulator
from modsmith.llm.types import (
    ChatMessage,
    CompletionRequest,
    FinishReason,
    Message,
    Outcome,
    OutputMode,
    ProviderCall,
    ProviderDescriptor,
    StreamEnd,
    StreamEvent,
    StructuredResult,
    TextDelta,
    ToolCallDelta,
)
from modsmith.orchestrator.structured import parse_structured_result
from modsmith.prompts.context import ProjectContextPacker
from modsmith.prompts.system import build_system_instruction
from modsmith.types import ErrorKind

logger = logging.getLogger(__name__)

RunItem = Union[StreamEvent, ChatMessage, StructuredResult]


class CompletionOrchestrator:
    """
    Facade over provider failover, retry, normalization and accumulation.

    Parameters
    ----------
    descriptors : sequence of ProviderDescriptor
        Providers in priority order (primary first).  Shared read-only by all
        requests.
    retry : RetryExecutor
        Rate-limit retry policy applied to every provider invocation.
    packer : ProjectContextPacker
        Renders the project snapshot into the user message.
    """

    def __init__(
        self,
        descriptors: Sequence[ProviderDescriptor],
        retry: RetryExecutor | None = None,
        packer: ProjectContextPacker | None = None,
    ) -> None:
        self.descriptors = tuple(descriptors)
        self.retry = retry or RetryExecutor()
        self.packer = packer or ProjectContextPacker(TokenCounter(None))

    async def run(self, request: CompletionRequest) -> AsyncIterator[RunItem]:
        """
        Process one request, yielding stream events then the final outcome.

        Events from the active provider are yielded in exactly the order the
        provider emitted them.  After a failover the next provider's events
        start fresh; text already yielded is not retracted.  The last item is
        a ``ChatMessage`` or ``StructuredResult``.  Failures are raised as
        ``CompletionError``.
        """
        if request.mode not in OutputMode.ALL:
            raise ValueError(f"Unknown output mode {request.mode!r}")
        if not self.descriptors:
            raise CompletionError(ErrorKind.UNKNOWN, "No completion providers configured")

        system_instruction = build_system_instruction(request)
        user_content, report = self.packer.pack(request)
        logger.debug(
            "Context: %d file(s) kept, %d dropped, ~%d file tokens",
            len(report.kept_files),
            len(report.dropped_files),
            report.file_tokens,
        )
        messages = [*request.history, Message(role="user", content=user_content)]

        chain = ProviderChain(self.descriptors)
        for descriptor in chain:
            call = self._build_call(request, descriptor, system_instruction, messages)
            try:
                handle = await self.retry.execute(
                    functools.partial(descriptor.provider.invoke, call)
                )
            except Exception as exc:
                self._fail_or_advance(chain, descriptor, exc)
                continue

            accumulator = ToolCallAccumulator()
            text_parts: list[str] = []
            end: StreamEnd | None = None
            try:
                async with aclosing(descriptor.provider.normalize(handle)) as stream:
                    async for event in stream:
                        if isinstance(event, TextDelta):
                            text_parts.append(event.text)
                        elif isinstance(event, ToolCallDelta):
                            accumulator.consume(event)
                        elif isinstance(event, StreamEnd):
                            end = event
                        yield event
            except Exception as exc:
                self._fail_or_advance(chain, descriptor, exc)
                continue

            outcome = self._build_outcome(
                request, descriptor, "".join(text_parts), accumulator, end
            )
            chain.mark_succeeded()
            logger.info("Provider %s completed the request", descriptor.id)
            yield outcome
            return

        last_id, last_error = chain.failures[-1]
        raise CompletionError(
            ErrorKind.ALL_PROVIDERS_EXHAUSTED,
            f"All {len(chain)} providers are rate limited or out of quota. "
            f"Last error ({last_id}): {last_error}",
            provider=last_id,
        ) from last_error

    async def complete(self, request: CompletionRequest) -> Outcome:
        """Consume the full stream and return the final outcome."""
        outcome: Outcome | None = None
        async for item in self.run(request):
            if isinstance(item, (ChatMessage, StructuredResult)):
                outcome = item
        if outcome is None:  # pragma: no cover
            raise CompletionError(ErrorKind.UNKNOWN, "Completion produced no outcome")
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_call(
        self,
        request: CompletionRequest,
        descriptor: ProviderDescriptor,
        system_instruction: str,
        messages: list[Message],
    ) -> ProviderCall:
        structured = request.mode == OutputMode.STRUCTURED_JSON
        tools = list(request.tools)
        if tools and structured:
            logger.debug("Tool declarations are not sent in structured mode")
            tools = []
        elif tools and not descriptor.supports_tools:
            logger.info(
                "Provider %s does not support tools; omitting %d declaration(s)",
                descriptor.id,
                len(tools),
            )
            tools = []

        return ProviderCall(
            model=descriptor.model,
            system_instruction=system_instruction,
            messages=messages,
            tools=tools,
            temperature=request.temperature,
            deterministic=request.deterministic,
            json_output=structured,
            stream=descriptor.supports_streaming,
        )

    def _fail_or_advance(
        self,
        chain: ProviderChain,
        descriptor: ProviderDescriptor,
        exc: Exception,
    ) -> None:
        """Advance the chain on a capacity error; raise anything else."""
        classification = classify(exc)
        if classification.kind == ErrorKind.RATE_LIMITED:
            chain.record_failure(exc)
            return
        logger.error(
            "Provider %s failed (%s), not failing over: %s",
            descriptor.id,
            classification.kind,
            exc,
        )
        raise to_completion_error(exc, provider=descriptor.id) from exc

    def _build_outcome(
        self,
        request: CompletionRequest,
        descriptor: ProviderDescriptor,
        text: str,
        accumulator: ToolCallAccumulator,
        end: StreamEnd | None,
    ) -> Outcome:
        reason = end.reason if end is not None else FinishReason.STOP

        if reason == FinishReason.SAFETY:
            detail = end.detail if end is not None and end.detail else "safety"
            raise CompletionError(
                ErrorKind.SAFETY_BLOCKED,
                f"{descriptor.id} blocked the response ({detail})",
                provider=descriptor.id,
            )
        if reason == FinishReason.LENGTH:
            logger.warning("Provider %s stopped at the output token limit", descriptor.id)

        if request.mode == OutputMode.STRUCTURED_JSON:
            files = parse_structured_result(text, provider=descriptor.id)
            return StructuredResult(files=files, provider=descriptor.id, model=descriptor.model)

        tool_calls = []
        if reason == FinishReason.TOOL_CALLS:
            tool_calls = accumulator.finalize()
        elif accumulator.pending:
            logger.warning(
                "Dropping %d incomplete tool call(s): stream ended with %r",
                accumulator.pending,
                reason,
            )
            accumulator.reset()

        if not text.strip() and not tool_calls:
            message = f"{descriptor.id} returned an empty response"
            if accumulator.errors:
                message += f"; {accumulator.errors[0].message}"
            raise CompletionError(
                ErrorKind.MALFORMED_RESPONSE, message, provider=descriptor.id
            )

        return ChatMessage(
            text=text,
            tool_calls=tool_calls,
            provider=descriptor.id,
            model=descriptor.model,
        )
