"""
Round loop -- the caller that drives the fallback orchestrator.

For one user turn the loop:
1. Streams a completion with multi-tier fallback
2. Stops when the model answers without tool calls
3. Otherwise executes each tool call and feeds the results back
4. Repeats on the model that actually answered, up to ``max_rounds``
5. Always finishes with exactly one ``done`` event
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from tierstream.llm.errors import AllTiersExhausted, StreamCancelled
from tierstream.llm.events import (
    DoneEvent,
    ErrorEvent,
    EventSink,
    ToolCallEvent,
    ToolResultEvent,
)
from tierstream.llm.fallback import FallbackOrchestrator
from tierstream.llm.token_counter import TokenTally
from tierstream.llm.tool_call_assembler import parse_tool_arguments
from tierstream.llm.types import Message, ToolCall
from tierstream.tools.registry import ToolRegistry
from tierstream.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


@dataclass
class RoundOutcome:
    actual_model: str
    rounds: int
    text: str = ""


def _tool_output(result: ToolResult) -> str:
    if not result.success and result.error:
        return f"[Error: {result.error_code}] {result.error}"
    return result.content


class RoundLoop:
    """
    Parameters
    ----------
    orchestrator : FallbackOrchestrator
        Streams each round with tiered fallback.
    registry : ToolRegistry
        Tool definitions offered to the model and the dispatcher for calls.
    max_rounds : int
        Max completion rounds for one user turn.
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        registry: ToolRegistry,
        max_rounds: int = 5,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.orchestrator = orchestrator
        self.registry = registry
        self.max_rounds = max_rounds

    async def run(
        self,
        requested_model: str,
        conversation: list[Message],
        sink: EventSink,
        *,
        context: dict | None = None,
        cancel: asyncio.Event | None = None,
    ) -> RoundOutcome:
        """
        Process one user turn to completion or failure.

        *conversation* is extended in place with the assistant and tool
        messages of every round.  Provider failures never escape: they are
        reported as an ``error`` event followed by ``done``.
        """
        tools_schema = self.registry.to_openai_schema()
        tally = TokenTally()
        model = requested_model
        rounds = 0
        text = ""

        try:
            while rounds < self.max_rounds:
                rounds += 1
                result = await self.orchestrator.stream_with_fallback(
                    model,
                    conversation,
                    tools_schema,
                    sink,
                    tally=tally,
                    cancel=cancel,
                )
                model = result.actual_model
                text = result.text

                if not result.has_tool_calls:
                    break

                conversation.append(Message.assistant(result.text, list(result.tool_calls)))
                for tc in result.tool_calls:
                    await self._run_tool(tc, conversation, sink, context)
            else:
                logger.info(
                    "Reached maximum of %d rounds for %s", self.max_rounds, requested_model
                )
        except AllTiersExhausted as exc:
            sink.emit(
                ErrorEvent(
                    code=ErrorCode.ALL_PROVIDERS_FAILED,
                    model=exc.requested_model,
                    message=str(exc),
                )
            )
        except StreamCancelled as exc:
            logger.info("Round loop cancelled for %s", requested_model)
            sink.emit(ErrorEvent(code=ErrorCode.CANCELLED, model=model, message=str(exc)))

        sink.emit(DoneEvent(actual_model=model))
        return RoundOutcome(actual_model=model, rounds=rounds, text=text)

    async def _run_tool(
        self,
        tool_call: ToolCall,
        conversation: list[Message],
        sink: EventSink,
        context: dict | None,
    ) -> ToolResult:
        sink.emit(ToolCallEvent(name=tool_call.name))
        args = parse_tool_arguments(tool_call.arguments)
        result = await self.registry.execute_tool(tool_call.name, args, context)
        output = _tool_output(result)
        sink.emit(
            ToolResultEvent(
                name=tool_call.name,
                success=result.success,
                preview=output[:PREVIEW_CHARS],
            )
        )
        conversation.append(Message.tool(tool_call.id, output))
        return result
