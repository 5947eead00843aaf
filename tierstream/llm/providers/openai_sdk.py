"""
Direct OpenAI adapter backed by the ``openai`` SDK.

Chunks are normalised to plain dicts and share the index-addressed
tool-call handling of the aggregator adapter.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import openai

from tierstream.llm.events import EventSink
from tierstream.llm.providers.base import Provider
from tierstream.llm.providers.openai_compat import feed_openai_chunk, to_openai_messages
from tierstream.llm.token_counter import TokenEstimator, TokenTally
from tierstream.llm.tool_call_assembler import ToolCallAssembler
from tierstream.llm.types import Message, StreamResult

logger = logging.getLogger(__name__)


def _as_dict(chunk: Any) -> dict:
    if isinstance(chunk, dict):
        return chunk
    return chunk.model_dump(exclude_none=True)


class OpenAISDKProvider(Provider):
    """
    Parameters
    ----------
    base_url:
        Override the base URL (useful for proxies).
    timeout:
        Request timeout in seconds.
    client_factory:
        Builds a client for a given API key.  Defaults to
        ``openai.AsyncOpenAI`` with SDK retries disabled.
    """

    vendor = "openai"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 120.0,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> openai.AsyncOpenAI:
        kwargs: dict = {"api_key": api_key, "timeout": self._timeout, "max_retries": 0}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return openai.AsyncOpenAI(**kwargs)

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
        kwargs: dict = {
            "model": native_model,
            "messages": to_openai_messages(conversation),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools
        logger.info(
            "REQUEST: openai model=%s tools=%d messages=%d",
            native_model,
            len(tools),
            len(conversation),
        )

        assembler = ToolCallAssembler()
        text_parts: list[str] = []
        has_tool_calls = False

        response_stream = await client.chat.completions.create(**kwargs)
        async with response_stream:
            async for chunk in response_stream:
                text, saw_tools = feed_openai_chunk(_as_dict(chunk), assembler, sink)
                has_tool_calls = has_tool_calls or saw_tools
                if text:
                    text_parts.append(text)
                    self.emit_text(text, sink, estimate_tokens, tally)

        return StreamResult(
            text="".join(text_parts),
            tool_calls=assembler.finalize(),
            has_tool_calls=has_tool_calls,
        )
