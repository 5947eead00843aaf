"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from tierstream.llm.events import UsageEvent

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ToolCall:
    """
    A reassembled tool call.

    *arguments* is the raw JSON buffer exactly as the provider streamed it.
    Parsing is left to the caller (see ``parse_tool_arguments``).
    """

    id: str
    name: str
    arguments: str = ""


@dataclass
class Message:
    """A single message in a conversation, tagged by *role*."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, text: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role="assistant", content=text, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, result_text: str) -> Message:
        return cls(role="tool", content=result_text, tool_call_id=tool_call_id)


@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streaming tool call.

    Index-addressed providers emit these as fragments arrive; the
    ``ToolCallAssembler`` concatenates them per ``call_index``.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""


@dataclass
class StreamResult:
    """What a provider adapter hands back after its stream completes."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    has_tool_calls: bool = False


@dataclass(frozen=True)
class FallbackResult:
    """
    Outcome of one ``stream_with_fallback`` call.

    *tier* is 1 (aggregator), 2 (direct vendor, same model) or 3 (auto-route).
    *usage* is the last ``usage`` event of the attempt that succeeded, if
    the provider reported one.
    """

    text: str
    tool_calls: tuple[ToolCall, ...]
    has_tool_calls: bool
    actual_model: str
    tier: int
    usage: UsageEvent | None = None
