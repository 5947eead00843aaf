"""LLM subsystem -- provider adapters, tiered fallback and streaming tool-call assembly."""

from tierstream.llm.errors import (
    AllTiersExhausted,
    FailedAttempt,
    MissingCredential,
    ProviderUnavailable,
    RelayError,
    StreamCancelled,
)
from tierstream.llm.fallback import FallbackOrchestrator
from tierstream.llm.token_counter import TokenTally, estimate_tokens
from tierstream.llm.tool_call_assembler import ToolCallAssembler
from tierstream.llm.types import (
    FallbackResult,
    Message,
    RawToolDelta,
    StreamResult,
    ToolCall,
)

__all__ = [
    "AllTiersExhausted",
    "FailedAttempt",
    "FallbackOrchestrator",
    "FallbackResult",
    "Message",
    "MissingCredential",
    "ProviderUnavailable",
    "RawToolDelta",
    "RelayError",
    "StreamCancelled",
    "StreamResult",
    "TokenTally",
    "ToolCall",
    "ToolCallAssembler",
    "estimate_tokens",
]
