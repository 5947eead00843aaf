"""Tests for tierstream.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

import json

from tierstream.llm.tool_call_assembler import ToolCallAssembler, parse_tool_arguments
from tierstream.llm.types import RawToolDelta


class TestIndexAddressed:
    """Assemble calls from OpenAI-style index-addressed fragments."""

    def test_basic_assembly(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name_delta="f"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"a":'))
        asm.feed(RawToolDelta(call_index=0, args_delta="1}"))

        calls = asm.finalize()
        assert len(calls) == 1
        assert calls[0].name == "f"
        assert calls[0].arguments == '{"a":1}'
        assert json.loads(calls[0].arguments) == {"a": 1}

    def test_name_and_id_accrue(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="call_1", name_delta="read_"))
        asm.feed(RawToolDelta(call_index=0, name_delta="file"))

        tc = asm.finalize()[0]
        assert tc.id == "call_1"
        assert tc.name == "read_file"

    def test_interleaved_indices(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="a", name_delta="first"))
        asm.feed(RawToolDelta(call_index=1, id="b", name_delta="second"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"x": '))
        asm.feed(RawToolDelta(call_index=1, args_delta='{"y": 2}'))
        asm.feed(RawToolDelta(call_index=0, args_delta="1}"))

        calls = asm.finalize()
        assert [c.name for c in calls] == ["first", "second"]
        assert json.loads(calls[0].arguments) == {"x": 1}
        assert json.loads(calls[1].arguments) == {"y": 2}

    def test_first_appearance_order_not_index_order(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=3, name_delta="late_index"))
        asm.feed(RawToolDelta(call_index=1, name_delta="early_index"))

        assert [c.name for c in asm.finalize()] == ["late_index", "early_index"]

    def test_missing_id_gets_positional_default(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name_delta="a"))
        asm.feed(RawToolDelta(call_index=1, id="given", name_delta="b"))

        assert [c.id for c in asm.finalize()] == ["call_0", "given"]

    def test_empty(self):
        asm = ToolCallAssembler()
        assert asm.has_calls is False
        assert asm.finalize() == []


class TestBlockFramed:
    """Assemble calls from Anthropic-style content blocks."""

    def test_fragments_go_to_open_block(self):
        asm = ToolCallAssembler()
        assert asm.open_block("toolu_1", "search") == 0
        assert asm.append_to_open_block('{"q": "cats"') == 0
        assert asm.append_to_open_block("}") == 0

        tc = asm.finalize()[0]
        assert (tc.id, tc.name) == ("toolu_1", "search")
        assert json.loads(tc.arguments) == {"q": "cats"}

    def test_new_block_becomes_current(self):
        asm = ToolCallAssembler()
        asm.open_block("t1", "one")
        asm.append_to_open_block("{}")
        asm.open_block("t2", "two")
        asm.append_to_open_block('{"n": 2}')

        calls = asm.finalize()
        assert [c.arguments for c in calls] == ["{}", '{"n": 2}']

    def test_fragment_without_block_is_dropped(self):
        asm = ToolCallAssembler()
        assert asm.append_to_open_block('{"orphan": true}') is None
        assert asm.has_calls is False

    def test_fragment_after_block_stop_is_dropped(self):
        asm = ToolCallAssembler()
        asm.open_block("t1", "one")
        asm.append_to_open_block("{}")
        asm.close_block()
        assert asm.append_to_open_block('{"late": 1}') is None
        assert asm.finalize()[0].arguments == "{}"


class TestParseToolArguments:
    def test_valid_object(self):
        assert parse_tool_arguments('{"a": 1}') == {"a": 1}

    def test_empty_buffer(self):
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("   ") == {}

    def test_malformed_json_soft_fails(self):
        assert parse_tool_arguments('{"a": ') == {}

    def test_non_object_soft_fails(self):
        assert parse_tool_arguments("[1, 2]") == {}
