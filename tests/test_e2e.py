"""End-to-end test: real adapters over a mock HTTP transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from tierstream.config import Credentials, ProviderConfig
from tierstream.llm.events import QueueSink
from tierstream.llm.fallback import FallbackOrchestrator
from tierstream.llm.providers import GeminiProvider, OpenAICompatProvider
from tierstream.llm.types import Message
from tierstream.orchestrator.core import RoundLoop
from tierstream.sse import sse_stream
from tierstream.tools.builtin import CurrentDateTimeTool
from tierstream.tools.registry import ToolRegistry


def _sse(*frames: dict) -> bytes:
    body = "".join(f"data: {json.dumps(f)}\n\n" for f in frames) + "data: [DONE]\n\n"
    return body.encode()


class FakeUpstream:
    """
    Plays an aggregator and a Gemini endpoint.

    The aggregator answers the first request with a tool call and the next
    with text; Gemini always answers with text.  Either can be switched to
    return HTTP errors.
    """

    def __init__(self, aggregator_down: bool = False) -> None:
        self.aggregator_down = aggregator_down
        self.aggregator_requests: list[dict] = []
        self.gemini_requests: list[dict] = []

    def aggregator(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.aggregator_requests.append(body)
        if self.aggregator_down:
            return httpx.Response(503, text="no capacity")
        if len(self.aggregator_requests) == 1:
            return httpx.Response(
                200,
                content=_sse(
                    {
                        "choices": [
                            {
                                "index": 0,
                                "delta": {
                                    "tool_calls": [
                                        {
                                            "index": 0,
                                            "id": "call_dt",
                                            "function": {"name": "get_current_datetime", "arguments": "{}"},
                                        }
                                    ]
                                },
                            }
                        ]
                    },
                ),
            )
        return httpx.Response(
            200,
            content=_sse(
                {"choices": [{"index": 0, "delta": {"content": "It is Tuesday."}}]},
                {"choices": [], "usage": {"prompt_tokens": 50, "completion_tokens": 4}},
            ),
        )

    def gemini(self, request: httpx.Request) -> httpx.Response:
        self.gemini_requests.append(json.loads(request.content))
        return httpx.Response(
            200,
            content=_sse(
                {"candidates": [{"content": {"parts": [{"text": "Hello from Gemini"}]}}]},
            ),
        )


def build_loop(upstream: FakeUpstream, credentials: dict) -> RoundLoop:
    adapters = {
        "aggregator": OpenAICompatProvider(transport=httpx.MockTransport(upstream.aggregator)),
        "gemini": GeminiProvider(transport=httpx.MockTransport(upstream.gemini)),
    }
    orch = FallbackOrchestrator(ProviderConfig(), Credentials(credentials), adapters)
    registry = ToolRegistry()
    registry.register(CurrentDateTimeTool())
    return RoundLoop(orch, registry)


async def _run_to_frames(loop: RoundLoop, model: str) -> list[dict]:
    sink = QueueSink()

    async def produce():
        try:
            await loop.run(model, [Message.user("what day is it?")], sink)
        finally:
            sink.close()

    producer = asyncio.create_task(produce())
    frames = [json.loads(f[len("data: "):]) async for f in sse_stream(sink)]
    await producer
    return frames


async def test_tool_round_trip_over_sse():
    upstream = FakeUpstream()
    loop = build_loop(upstream, {"OPENROUTER_API_KEY": "sk-or"})

    frames = await _run_to_frames(loop, "openai/gpt-5.2")

    assert [f["type"] for f in frames] == ["tool_call", "tool_result", "delta", "usage", "done"]
    assert frames[1]["name"] == "get_current_datetime"
    assert frames[1]["success"] is True
    assert frames[2] == {"type": "delta", "content": "It is Tuesday.", "tokensOut": 4}
    assert frames[-1] == {"type": "done", "actualModel": "openai/gpt-5.2"}

    second = upstream.aggregator_requests[1]["messages"]
    assert second[1]["tool_calls"][0]["function"]["name"] == "get_current_datetime"
    assert second[2]["role"] == "tool"
    assert second[2]["tool_call_id"] == "call_dt"


async def test_aggregator_outage_reroutes_to_gemini():
    upstream = FakeUpstream(aggregator_down=True)
    loop = build_loop(upstream, {"OPENROUTER_API_KEY": "sk-or", "GEMINI_API_KEY": "g-key"})

    frames = await _run_to_frames(loop, "anthropic/claude-sonnet-4.6")

    assert frames[0] == {
        "type": "rerouting",
        "from": "anthropic/claude-sonnet-4.6",
        "to": "google/gemini-3-pro-preview",
        "provider": "Anthropic",
    }
    assert frames[1]["content"] == "Hello from Gemini"
    assert frames[-1] == {"type": "done", "actualModel": "google/gemini-3-pro-preview"}
    assert len(upstream.gemini_requests) == 1


async def test_total_outage_reports_error_then_done():
    upstream = FakeUpstream(aggregator_down=True)
    loop = build_loop(upstream, {"OPENROUTER_API_KEY": "sk-or"})

    frames = await _run_to_frames(loop, "openai/gpt-5.2")

    assert [f["type"] for f in frames if f["type"] != "rerouting"] == ["error", "done"]
    assert frames[-2]["code"] == "all_providers_failed"
    assert frames[-1] == {"type": "done", "actualModel": "openai/gpt-5.2"}
