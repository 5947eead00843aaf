"""
Aggregator adapter: OpenAI-compatible chat completions over raw SSE.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol with one shared credential; by default the OpenRouter multi-vendor
endpoint, addressed with canonical ``vendor/model`` identifiers.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import logging

import httpx

from tierstream.llm.errors import ProviderUnavailable
from tierstream.llm.events import EventSink, ToolCallDeltaEvent, UsageEvent
from tierstream.llm.providers.base import Provider, iter_sse_json, raise_for_status
from tierstream.llm.token_counter import TokenEstimator, TokenTally
from tierstream.llm.tool_call_assembler import ToolCallAssembler
from tierstream.llm.types import Message, RawToolDelta, StreamResult

logger = logging.getLogger(__name__)


def to_openai_messages(conversation: list[Message]) -> list[dict]:
    """Map canonical messages onto the OpenAI chat schema."""
    wire_messages: list[dict] = []
    for msg in conversation:
        m: dict = {"role": msg.role, "content": msg.content}
        if msg.role == "assistant" and msg.tool_calls:
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                }
                for tc in msg.tool_calls
            ]
        if msg.role == "tool":
            m["tool_call_id"] = msg.tool_call_id or ""
        wire_messages.append(m)
    return wire_messages


def feed_openai_chunk(
    data: dict,
    assembler: ToolCallAssembler,
    sink: EventSink,
) -> tuple[str, bool]:
    """
    Apply one decoded chunk's tool-call fragments and usage.

    Returns ``(text_delta, saw_tool_calls)``.  Shared by the raw-SSE and
    SDK adapters, which both see the same chunk shape.
    """
    usage = data.get("usage")
    if usage:
        sink.emit(
            UsageEvent(
                tokens_in=usage.get("prompt_tokens") or 0,
                tokens_out=usage.get("completion_tokens") or 0,
            )
        )

    choices = data.get("choices")
    if not choices:
        return "", False

    delta = choices[0].get("delta") or {}
    text_delta = delta.get("content") or ""

    raw_tcs = delta.get("tool_calls") or []
    for raw_tc in raw_tcs:
        func = raw_tc.get("function") or {}
        fragment = RawToolDelta(
            call_index=raw_tc.get("index", 0),
            id=raw_tc.get("id"),
            name_delta=func.get("name") or "",
            args_delta=func.get("arguments") or "",
        )
        assembler.feed(fragment)
        sink.emit(
            ToolCallDeltaEvent(
                index=fragment.call_index,
                id=fragment.id,
                name=fragment.name_delta or None,
                arguments_fragment=fragment.args_delta or None,
            )
        )
    return text_delta, bool(raw_tcs)


class OpenAICompatProvider(Provider):
    """
    Stream-capable adapter for an OpenAI-API-compatible aggregator.

    Parameters
    ----------
    base_url:
        Base URL of the API, e.g. ``"https://openrouter.ai/api/v1"``.
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests use ``httpx.MockTransport``).
    """

    vendor = "aggregator"

    def __init__(
        self,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _build_headers(self, api_key: str) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _build_body(
        self,
        model: str,
        conversation: list[Message],
        tools: list[dict],
    ) -> dict:
        body: dict = {
            "model": model,
            "messages": to_openai_messages(conversation),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        logger.info(
            "REQUEST: aggregator model=%s tools=%d messages=%d",
            model,
            len(tools),
            len(conversation),
        )
        return body

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
        url = f"{self._url}/chat/completions"
        body = self._build_body(native_model, conversation, tools)
        assembler = ToolCallAssembler()
        text_parts: list[str] = []
        has_tool_calls = False

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            async with client.stream(
                "POST", url, json=body, headers=self._build_headers(api_key)
            ) as response:
                await raise_for_status(response)

                async for data in iter_sse_json(response):
                    if "error" in data and not data.get("choices"):
                        # Mid-stream error frame from the aggregator.
                        err = data["error"]
                        if not isinstance(err, dict):
                            err = {"message": str(err)}
                        code = err.get("code")
                        raise ProviderUnavailable(
                            f"aggregator stream error: {err.get('message', '')}",
                            status=code if isinstance(code, int) else None,
                            code=code if isinstance(code, str) else None,
                        )

                    text, saw_tools = feed_openai_chunk(data, assembler, sink)
                    has_tool_calls = has_tool_calls or saw_tools
                    if text:
                        text_parts.append(text)
                        self.emit_text(text, sink, estimate_tokens, tally)

        return StreamResult(
            text="".join(text_parts),
            tool_calls=assembler.finalize(),
            has_tool_calls=has_tool_calls,
        )
