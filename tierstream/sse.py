"""
Wire encoding for canonical stream events.

Clients receive one JSON object per Server-Sent Event::

    data: {"type": "delta", "content": "Hi", "tokensOut": 1}\\n\\n

Raw ``tool_call_delta`` fragments are internal plumbing and are not sent
unless explicitly requested.
"""

from __future__ import annotations

import json
from typing import AsyncIterator

from tierstream.llm.events import QueueSink, StreamEvent, ToolCallDeltaEvent

INTERNAL_EVENTS: tuple[type[StreamEvent], ...] = (ToolCallDeltaEvent,)


def encode_json_line(event: StreamEvent) -> str:
    """Serialise *event* as a compact single-line JSON object."""
    return json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"))


def encode_event(event: StreamEvent) -> str:
    return f"data: {encode_json_line(event)}\n\n"


def is_client_visible(event: StreamEvent) -> bool:
    return not isinstance(event, INTERNAL_EVENTS)


async def sse_stream(
    sink: QueueSink,
    *,
    include_internal: bool = False,
) -> AsyncIterator[str]:
    """Yield encoded frames from *sink* until it is closed."""
    async for event in sink:
        if include_internal or is_client_visible(event):
            yield encode_event(event)
