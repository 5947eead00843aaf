"""Abstract base class for streaming provider adapters."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from tierstream.llm.errors import http_error
from tierstream.llm.events import DeltaEvent, EventSink
from tierstream.llm.token_counter import TokenEstimator, TokenTally
from tierstream.llm.types import Message, StreamResult

logger = logging.getLogger(__name__)


class Provider(ABC):
    """
    An adapter for one vendor's streaming wire protocol.

    Implementations must:
      - open exactly one streaming HTTP call per ``stream`` invocation and
        never retry internally;
      - push ``DeltaEvent`` / ``ToolCallDeltaEvent`` / ``UsageEvent`` to the
        sink as frames arrive;
      - return the full text and assembled tool calls once the stream ends;
      - raise on any non-2xx response or stream-level error.
    """

    #: Routing-table vendor kind this adapter serves.
    vendor: str = ""

    @abstractmethod
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
        """Stream one completion and return its accumulated result."""
        ...

    @staticmethod
    def emit_text(
        text: str,
        sink: EventSink,
        estimate_tokens: TokenEstimator,
        tally: TokenTally,
    ) -> None:
        """Count and forward one text delta."""
        tally.add(text, estimate_tokens)
        sink.emit(DeltaEvent(content=text, tokens_out=tally.value))


async def raise_for_status(response: httpx.Response) -> None:
    """
    Read the error body and raise for non-2xx responses.

    429 raises ``RateLimited``, 503 ``Overloaded``, anything else a plain
    ``ProviderHTTPError``.
    """
    if response.is_success:
        return
    body = await response.aread()
    raise http_error(response.status_code, body.decode("utf-8", errors="replace"))


async def iter_sse_json(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """
    Parse Server-Sent Events from the response byte stream.

    Each SSE event has the form::

        data: {json}\\n\\n

    The sentinel ``data: [DONE]`` terminates the stream.  Non-JSON payloads
    are logged and skipped; comment and ``event:`` lines are ignored.
    """
    buffer = ""
    async for text in response.aiter_text():
        buffer += text

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = line.rstrip("\r")

            if not line.startswith("data:"):
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                return
            if not data_str:
                continue

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue
            if isinstance(data, dict):
                yield data

    # Trailing frame without a final newline.
    tail = buffer.strip()
    if tail.startswith("data:"):
        data_str = tail[len("data:"):].strip()
        if data_str and data_str != "[DONE]":
            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                return
            if isinstance(data, dict):
                yield data
