"""
Direct Anthropic adapter backed by the ``anthropic`` SDK (Messages API).

Tool calls arrive block-framed: ``content_block_start`` opens a
``tool_use`` block with its id and name, and subsequent ``input_json_delta``
fragments belong to the most recently opened block.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import anthropic

from tierstream.llm.events import EventSink, ToolCallDeltaEvent, UsageEvent
from tierstream.llm.providers.base import Provider
from tierstream.llm.token_counter import TokenEstimator, TokenTally
from tierstream.llm.tool_call_assembler import ToolCallAssembler, parse_tool_arguments
from tierstream.llm.types import Message, StreamResult

logger = logging.getLogger(__name__)


def to_anthropic_messages(conversation: list[Message]) -> tuple[str, list[dict]]:
    """
    Convert canonical messages to Anthropic's format.

    Returns ``(system_prompt, messages_list)``.  System messages are joined;
    consecutive tool results are merged into a single user turn.
    """
    system_parts: list[str] = []
    converted: list[dict] = []

    for msg in conversation:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content,
            }
            prev = converted[-1] if converted else None
            if (
                prev is not None
                and prev["role"] == "user"
                and isinstance(prev["content"], list)
                and all(b.get("type") == "tool_result" for b in prev["content"])
            ):
                prev["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if msg.role == "assistant" and msg.tool_calls:
            content_blocks: list[dict] = []
            if msg.content:
                content_blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                content_blocks.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": parse_tool_arguments(tc.arguments),
                })
            converted.append({"role": "assistant", "content": content_blocks})
            continue

        if not msg.content:
            continue
        converted.append({"role": msg.role, "content": msg.content})

    return "\n\n".join(system_parts), converted


def to_anthropic_tools(tools: list[dict]) -> list[dict]:
    """Convert OpenAI-style tool schemas to Anthropic's format."""
    converted = []
    for tool in tools:
        func = tool.get("function", tool)
        converted.append({
            "name": func["name"],
            "description": func.get("description", ""),
            "input_schema": func.get("parameters") or {"type": "object"},
        })
    return converted


class AnthropicSDKProvider(Provider):
    """
    Parameters
    ----------
    max_output:
        ``max_tokens`` sent with every request.
    timeout:
        Request timeout in seconds.
    client_factory:
        Builds a client for a given API key.  Defaults to
        ``anthropic.AsyncAnthropic`` with SDK retries disabled.
    """

    vendor = "anthropic"

    def __init__(
        self,
        max_output: int = 8192,
        timeout: float = 120.0,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._max_output = max_output
        self._timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> anthropic.AsyncAnthropic:
        return anthropic.AsyncAnthropic(
            api_key=api_key, timeout=self._timeout, max_retries=0
        )

    async def stream(
        self,
        native_model: str,
        api_key: str,
        conversation: list[Message],
        tools: list[dict],
        sink: EventSink,
        estimate_tokens: TokenEstimator,
        tally: TokenTally,
    ) -> StreamResult:
        client = self._client_factory(api_key)
        system, messages = to_anthropic_messages(conversation)

        kwargs: dict = {
            "model": native_model,
            "messages": messages,
            "max_tokens": self._max_output,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)
        logger.info(
            "REQUEST: anthropic model=%s tools=%d messages=%d",
            native_model,
            len(tools),
            len(messages),
        )

        assembler = ToolCallAssembler()
        text_parts: list[str] = []
        input_tokens = 0

        async with client.messages.stream(**kwargs) as stream_mgr:
            async for event in stream_mgr:
                event_type = getattr(event, "type", None)

                if event_type == "message_start":
                    usage = getattr(getattr(event, "message", None), "usage", None)
                    input_tokens = getattr(usage, "input_tokens", 0) or 0

                elif event_type == "content_block_start":
                    block = getattr(event, "content_block", None)
                    if block is not None and getattr(block, "type", None) == "tool_use":
                        call_id = getattr(block, "id", "") or ""
                        name = getattr(block, "name", "") or ""
                        slot = assembler.open_block(call_id, name)
                        sink.emit(ToolCallDeltaEvent(index=slot, id=call_id, name=name))

                elif event_type == "content_block_delta":
                    delta_obj = getattr(event, "delta", None)
                    delta_type = getattr(delta_obj, "type", None)
                    if delta_type == "text_delta":
                        text = getattr(delta_obj, "text", "") or ""
                        if text:
                            text_parts.append(text)
                            self.emit_text(text, sink, estimate_tokens, tally)
                    elif delta_type == "input_json_delta":
                        partial_json = getattr(delta_obj, "partial_json", "") or ""
                        slot = assembler.append_to_open_block(partial_json)
                        if slot is not None and partial_json:
                            sink.emit(
                                ToolCallDeltaEvent(index=slot, arguments_fragment=partial_json)
                            )

                elif event_type == "content_block_stop":
                    assembler.close_block()

                elif event_type == "message_delta":
                    usage = getattr(event, "usage", None)
                    if usage is not None:
                        sink.emit(
                            UsageEvent(
                                tokens_in=input_tokens,
                                tokens_out=getattr(usage, "output_tokens", 0) or 0,
                            )
                        )

        return StreamResult(
            text="".join(text_parts),
            tool_calls=assembler.finalize(),
            has_tool_calls=assembler.has_calls,
        )
