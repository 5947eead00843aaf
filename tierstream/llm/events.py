"""
Canonical stream events.

Every provider adapter, the fallback orchestrator, the round loop and the
debate engine speak this vocabulary.  Each event knows its wire ``type`` and
serialises itself with ``to_dict`` into the JSON object sent to clients.

Events are delivered to an ``EventSink``: anything with an ``emit(event)``
method.  Sinks must deliver in emission order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, ClassVar, Protocol


@dataclass(frozen=True)
class StreamEvent:
    """Base for all canonical events."""

    type: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload()}


# ---------------------------------------------------------------------------
# Provider-level events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeltaEvent(StreamEvent):
    """A chunk of assistant text plus the caller's running output estimate."""

    type: ClassVar[str] = "delta"
    content: str = ""
    tokens_out: int = 0

    def payload(self) -> dict[str, Any]:
        return {"content": self.content, "tokensOut": self.tokens_out}


@dataclass(frozen=True)
class ToolCallDeltaEvent(StreamEvent):
    """Partial tool-invocation data as it leaves the provider."""

    type: ClassVar[str] = "tool_call_delta"
    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments_fragment: str | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "name": self.name,
            "argumentsFragment": self.arguments_fragment,
        }


@dataclass(frozen=True)
class UsageEvent(StreamEvent):
    """Token counts as reported by the provider.  Last value wins."""

    type: ClassVar[str] = "usage"
    tokens_in: int = 0
    tokens_out: int = 0

    def payload(self) -> dict[str, Any]:
        return {"tokensIn": self.tokens_in, "tokensOut": self.tokens_out}


@dataclass(frozen=True)
class ReroutingEvent(StreamEvent):
    type: ClassVar[str] = "rerouting"
    from_model: str = ""
    to_model: str = ""
    provider_label: str = ""

    def payload(self) -> dict[str, Any]:
        return {
            "from": self.from_model,
            "to": self.to_model,
            "provider": self.provider_label,
        }


@dataclass(frozen=True)
class DoneEvent(StreamEvent):
    type: ClassVar[str] = "done"
    actual_model: str | None = None

    def payload(self) -> dict[str, Any]:
        return {"actualModel": self.actual_model}


@dataclass(frozen=True)
class ErrorEvent(StreamEvent):
    type: ClassVar[str] = "error"
    code: str = ""
    model: str | None = None
    message: str = ""

    def payload(self) -> dict[str, Any]:
        return {"code": self.code, "model": self.model, "message": self.message}


# ---------------------------------------------------------------------------
# Round-loop events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCallEvent(StreamEvent):
    type: ClassVar[str] = "tool_call"
    name: str = ""

    def payload(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass(frozen=True)
class ToolResultEvent(StreamEvent):
    type: ClassVar[str] = "tool_result"
    name: str = ""
    success: bool = True
    preview: str = ""

    def payload(self) -> dict[str, Any]:
        return {"name": self.name, "success": self.success, "preview": self.preview}


# ---------------------------------------------------------------------------
# Debate events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DebateStartEvent(StreamEvent):
    type: ClassVar[str] = "debate_start"


@dataclass(frozen=True)
class DebateTurnStartEvent(StreamEvent):
    type: ClassVar[str] = "debate_turn_start"
    model: str = ""
    phase: str = ""

    def payload(self) -> dict[str, Any]:
        return {"model": self.model, "phase": self.phase}


@dataclass(frozen=True)
class DebateTurnDeltaEvent(StreamEvent):
    type: ClassVar[str] = "debate_turn_delta"
    model: str = ""
    content: str = ""

    def payload(self) -> dict[str, Any]:
        return {"model": self.model, "content": self.content}


@dataclass(frozen=True)
class DebateTurnEndEvent(StreamEvent):
    type: ClassVar[str] = "debate_turn_end"
    model: str = ""
    phase: str = ""

    def payload(self) -> dict[str, Any]:
        return {"model": self.model, "phase": self.phase}


@dataclass(frozen=True)
class DebateSynthesisStartEvent(StreamEvent):
    type: ClassVar[str] = "debate_synthesis_start"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class EventSink(Protocol):
    def emit(self, event: StreamEvent) -> None: ...


@dataclass
class CollectingSink:
    """Keeps every emitted event in order."""

    events: list[StreamEvent] = field(default_factory=list)

    def emit(self, event: StreamEvent) -> None:
        self.events.append(event)

    def of_type(self, cls: type[StreamEvent]) -> list[StreamEvent]:
        return [e for e in self.events if isinstance(e, cls)]


class CallbackSink:
    """Adapts a plain callable to the sink interface."""

    def __init__(self, callback: Callable[[StreamEvent], None]) -> None:
        self._callback = callback

    def emit(self, event: StreamEvent) -> None:
        self._callback(event)


_CLOSED = object()


class QueueSink:
    """
    Channel-style sink backed by an unbounded ``asyncio.Queue``.

    Producers call ``emit``; a single consumer drains the sink with
    ``async for event in sink``.  ``close()`` ends the iteration once every
    previously emitted event has been consumed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def emit(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("emit() on a closed QueueSink")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
