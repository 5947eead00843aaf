"""
Direct Gemini adapter over the ``streamGenerateContent`` REST endpoint.

Text only: function calling is not supported on this fallback path, so the
adapter ignores *tools* and always reports ``has_tool_calls=False``.

Dependencies: ``httpx``.  No Google SDK needed.
"""

from __future__ import annotations

import logging

import httpx

from tierstream.llm.events import EventSink, UsageEvent
from tierstream.llm.providers.base import Provider, iter_sse_json, raise_for_status
from tierstream.llm.token_counter import TokenEstimator, TokenTally
from tierstream.llm.types import Message, StreamResult

logger = logging.getLogger(__name__)


def to_gemini_contents(conversation: list[Message]) -> tuple[str, list[dict]]:
    """Return ``(system_text, contents)``; empty messages are skipped."""
    system_parts: list[str] = []
    contents: list[dict] = []
    for msg in conversation:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
            continue
        if not msg.content:
            continue
        role = "model" if msg.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": msg.content}]})
    return "\n\n".join(system_parts), contents


class GeminiProvider(Provider):
    vendor = "gemini"

    def __init__(
        self,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

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
        system_text, contents = to_gemini_contents(conversation)
        body: dict = {"contents": contents}
        if system_text:
            body["systemInstruction"] = {"role": "user", "parts": [{"text": system_text}]}

        url = f"{self._url}/models/{native_model}:streamGenerateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }
        logger.info(
            "REQUEST: gemini model=%s messages=%d (tools ignored: %d)",
            native_model,
            len(contents),
            len(tools),
        )

        text_parts: list[str] = []
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            async with client.stream(
                "POST", url, params={"alt": "sse"}, json=body, headers=headers
            ) as response:
                await raise_for_status(response)

                async for data in iter_sse_json(response):
                    for candidate in data.get("candidates") or []:
                        parts = (candidate.get("content") or {}).get("parts") or []
                        for part in parts:
                            text = part.get("text") or ""
                            if text:
                                text_parts.append(text)
                                self.emit_text(text, sink, estimate_tokens, tally)

                    usage = data.get("usageMetadata")
                    if usage:
                        sink.emit(
                            UsageEvent(
                                tokens_in=usage.get("promptTokenCount") or 0,
                                tokens_out=usage.get("candidatesTokenCount") or 0,
                            )
                        )

        return StreamResult(text="".join(text_parts), tool_calls=[], has_tool_calls=False)
