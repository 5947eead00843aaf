"""
Assembles streaming tool-call fragments into complete ``ToolCall`` records.

Two wire shapes converge here:

  - **Index-addressed** (OpenAI-compatible): every fragment carries the
    provider's ``index``; ``name`` and ``arguments`` accrue incrementally.
    Use ``feed``.
  - **Block-framed** (Anthropic): a block start supplies ``id`` + ``name``,
    later fragments carry only argument JSON and belong to the open block
    until its stop.  Use ``open_block`` / ``append_to_open_block`` /
    ``close_block``.

Slots live in an ordered arena.  A provider index is bound to its slot the
first time it is seen, so ``finalize`` always returns calls in
first-appearance order and fragments are concatenated in arrival order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from tierstream.llm.types import RawToolDelta, ToolCall

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    id: str = ""
    name: str = ""
    args: str = ""


class ToolCallAssembler:
    """Buffers tool-call fragments and produces finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._slots: list[_Slot] = []
        self._by_index: dict[int, int] = {}
        self._open_block: int | None = None

    # ------------------------------------------------------------------
    # Index-addressed fragments
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> None:
        slot_no = self._by_index.get(delta.call_index)
        if slot_no is None:
            slot_no = len(self._slots)
            self._slots.append(_Slot())
            self._by_index[delta.call_index] = slot_no
        slot = self._slots[slot_no]

        if delta.id:
            slot.id = delta.id
        if delta.name_delta:
            slot.name += delta.name_delta
        if delta.args_delta:
            slot.args += delta.args_delta

    # ------------------------------------------------------------------
    # Block-framed fragments
    # ------------------------------------------------------------------

    def open_block(self, call_id: str, name: str) -> int:
        """Start a new tool-call block and make it current.  Returns its slot."""
        self._slots.append(_Slot(id=call_id or "", name=name or ""))
        self._open_block = len(self._slots) - 1
        return self._open_block

    def append_to_open_block(self, fragment: str) -> int | None:
        """Append argument JSON to the current block.  Returns its slot."""
        if self._open_block is None:
            logger.warning("Dropping tool argument fragment with no open block")
            return None
        self._slots[self._open_block].args += fragment
        return self._open_block

    def close_block(self) -> None:
        """End the current block; later fragments are dropped until the next start."""
        self._open_block = None

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def has_calls(self) -> bool:
        return bool(self._slots)

    def finalize(self) -> list[ToolCall]:
        """Return every assembled call in slot order."""
        return [
            ToolCall(id=slot.id or f"call_{n}", name=slot.name.strip(), arguments=slot.args)
            for n, slot in enumerate(self._slots)
        ]


def parse_tool_arguments(raw: str) -> dict:
    """
    Parse a reassembled argument buffer.

    Malformed JSON or a non-object value yields ``{}`` so a bad call does
    not fail the whole round.
    """
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("tool_call_json_parse_failed err=%s raw=%.200s", exc, raw)
        return {}
    if not isinstance(value, dict):
        logger.warning("tool call arguments are not an object: %.200s", raw)
        return {}
    return value
