"""Tests for tierstream.orchestrator.debate.DebateEngine."""

from __future__ import annotations

import asyncio

import pytest

from tests.mock_providers import Reply, fails_midway, make_adapters, make_orchestrator, unavailable
from tierstream.config import DebateConfig, ProviderConfig
from tierstream.llm.errors import StreamCancelled
from tierstream.llm.events import (
    CollectingSink,
    DeltaEvent,
    DoneEvent,
    ReroutingEvent,
    UsageEvent,
)
from tierstream.llm.types import Message
from tierstream.orchestrator.debate import (
    OPENING_PROMPT,
    UNAVAILABLE_PLACEHOLDER,
    DebateEngine,
    DebateTurn,
    _TurnSink,
    format_transcript,
    short_name,
)

OPUS = "anthropic/claude-opus-4.6"
GPT = "openai/gpt-5.2"
GEMINI = "google/gemini-3-pro-preview"
SONNET = "anthropic/claude-sonnet-4.6"
ROSTER = (OPUS, GPT, GEMINI)


def scripted_aggregator(**overrides):
    script = {
        OPUS: Reply(chunks=["opus view"], usage=(1, 10)),
        GPT: Reply(chunks=["gpt view"], usage=(2, 20)),
        GEMINI: Reply(chunks=["gemini view"], usage=(3, 30)),
        SONNET: Reply(chunks=["final ", "answer"], usage=(4, 40)),
    }
    script.update(overrides)
    return script


async def run(adapters, conversation=None, config=None, **kwargs):
    orch = make_orchestrator(adapters, config=config)
    engine = DebateEngine(orch, DebateConfig())
    sink = CollectingSink()
    turns = await engine.run_debate(
        conversation or [Message.user("Should we use tabs?")], sink, **kwargs
    )
    return turns, sink


class TestEventContract:
    async def test_event_sequence(self):
        _, sink = await run(make_adapters(aggregator=scripted_aggregator()))

        expected = ["debate_start"]
        for phase in ("opening", "challenge"):
            for _model in ROSTER:
                expected += ["debate_turn_start", "debate_turn_delta", "debate_turn_end"]
        expected += ["debate_synthesis_start", "delta", "delta", "usage", "done"]
        assert [e.type for e in sink.events] == expected

    async def test_turn_events_name_model_and_phase(self):
        _, sink = await run(make_adapters(aggregator=scripted_aggregator()))

        starts = [e for e in sink.events if e.type == "debate_turn_start"]
        assert [(e.model, e.phase) for e in starts] == [
            (OPUS, "opening"),
            (GPT, "opening"),
            (GEMINI, "opening"),
            (OPUS, "challenge"),
            (GPT, "challenge"),
            (GEMINI, "challenge"),
        ]
        deltas = [e for e in sink.events if e.type == "debate_turn_delta"]
        assert (deltas[0].model, deltas[0].content) == (OPUS, "opus view")

    async def test_synthesis_streams_plain_deltas(self):
        _, sink = await run(make_adapters(aggregator=scripted_aggregator()))

        assert [e.content for e in sink.of_type(DeltaEvent)] == ["final ", "answer"]
        assert sink.events[-1] == DoneEvent(actual_model="debate-composite")

    async def test_returns_six_turns(self):
        turns, _ = await run(make_adapters(aggregator=scripted_aggregator()))

        assert turns == [
            DebateTurn(OPUS, "opening", "opus view"),
            DebateTurn(GPT, "opening", "gpt view"),
            DebateTurn(GEMINI, "opening", "gemini view"),
            DebateTurn(OPUS, "challenge", "opus view"),
            DebateTurn(GPT, "challenge", "gpt view"),
            DebateTurn(GEMINI, "challenge", "gemini view"),
        ]

    async def test_sub_call_rerouting_is_not_forwarded(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(**{GPT: unavailable()}),
            openai={"gpt-5.2": unavailable()},
        )
        turns, sink = await run(adapters)

        assert sink.of_type(ReroutingEvent) == []
        assert turns[1].content == "ok"


class TestUsage:
    async def test_sum_of_seven_sub_calls(self):
        _, sink = await run(make_adapters(aggregator=scripted_aggregator()))

        usage = sink.of_type(UsageEvent)
        assert usage == [UsageEvent(tokens_in=2 * (1 + 2 + 3) + 4, tokens_out=2 * (10 + 20 + 30) + 40)]

    async def test_unavailable_model_contributes_nothing(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(**{GEMINI: unavailable()}),
            gemini={"gemini-3-pro-preview": unavailable()},
        )
        turns, sink = await run(adapters, config=ProviderConfig(auto_route=()))

        assert [t.content for t in turns if t.model == GEMINI] == [UNAVAILABLE_PLACEHOLDER] * 2
        assert sink.of_type(UsageEvent) == [
            UsageEvent(tokens_in=2 * (1 + 2) + 4, tokens_out=2 * (10 + 20) + 40)
        ]
        assert sink.events[-1].type == "done"

    def test_turn_sink_forwards_only_deltas(self):
        forwarded = []
        turn_sink = _TurnSink(forwarded.append)
        turn_sink.emit(UsageEvent(tokens_in=1, tokens_out=1))
        turn_sink.emit(DeltaEvent(content="x", tokens_out=1))
        turn_sink.emit(ReroutingEvent(from_model=OPUS, to_model=GPT, provider_label="Anthropic"))

        assert forwarded == [DeltaEvent(content="x", tokens_out=1)]


class TestFailureIsolation:
    async def test_turn_keeps_only_winning_tier_content_and_usage(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(
                **{OPUS: fails_midway(["PARTIAL-GARBAGE "], usage=(1000, 1000))}
            ),
            anthropic={"claude-opus-4-6": Reply(chunks=["real opus view"], usage=(1, 10))},
        )
        turns, sink = await run(adapters)

        assert turns[0] == DebateTurn(OPUS, "opening", "real opus view")
        assert sink.of_type(UsageEvent) == [
            UsageEvent(tokens_in=2 * (1 + 2 + 3) + 4, tokens_out=2 * (10 + 20 + 30) + 40)
        ]

        challenge_prompt = adapters["aggregator"].calls[4].conversation[0].content
        assert "real opus view" in challenge_prompt
        assert "PARTIAL-GARBAGE" not in challenge_prompt
        synthesis_prompt = adapters["aggregator"].calls[-1].conversation[0].content
        assert "PARTIAL-GARBAGE" not in synthesis_prompt

    async def test_synthesis_usage_only_from_winning_tier(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(**{SONNET: fails_midway(["half "], usage=(900, 900))}),
            anthropic={"claude-sonnet-4-6": Reply(chunks=["verdict"], usage=(4, 40))},
        )
        _, sink = await run(adapters)

        assert sink.of_type(UsageEvent)[0].tokens_out == 2 * (10 + 20 + 30) + 40
        assert sink.events[-1] == DoneEvent(actual_model="debate-composite")

    async def test_unavailable_opening_is_shown_to_challengers(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(**{GEMINI: unavailable()}),
            gemini={"gemini-3-pro-preview": unavailable()},
        )
        await run(adapters, config=ProviderConfig(auto_route=()))

        challenge_calls = [c for c in adapters["aggregator"].calls if c.native_model == OPUS][1:]
        system_prompt = challenge_calls[0].conversation[0].content
        assert "opus view" in system_prompt
        assert f"**gemini-3-pro-preview:** {UNAVAILABLE_PLACEHOLDER}" in system_prompt

    async def test_failed_synthesis_emits_placeholder(self):
        adapters = make_adapters(
            aggregator=scripted_aggregator(**{SONNET: unavailable()}),
            anthropic={"claude-sonnet-4-6": unavailable()},
        )
        _, sink = await run(adapters, config=ProviderConfig(auto_route=()))

        assert [e.content for e in sink.of_type(DeltaEvent)] == [UNAVAILABLE_PLACEHOLDER]
        assert sink.of_type(UsageEvent)[0].tokens_out == 2 * (10 + 20 + 30)
        assert sink.events[-1] == DoneEvent(actual_model="debate-composite")

    async def test_cancellation_propagates(self):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(StreamCancelled):
            await run(make_adapters(aggregator=scripted_aggregator()), cancel=cancel)


class TestPrompts:
    async def test_opening_prompt_and_context(self):
        adapters = make_adapters(aggregator=scripted_aggregator())
        conversation = [
            Message.system("operator instructions"),
            Message.user("earlier question"),
            Message.assistant("earlier answer"),
            Message.user("Should we use tabs?"),
        ]
        await run(adapters, conversation=conversation)

        opening = adapters["aggregator"].calls[0].conversation
        assert opening[0] == Message.system(OPENING_PROMPT)
        assert opening[1:] == conversation[1:]

    async def test_sub_calls_offer_no_tools(self):
        adapters = make_adapters(aggregator=scripted_aggregator())
        await run(adapters)

        assert all(c.tools == [] for c in adapters["aggregator"].calls)
        assert len(adapters["aggregator"].calls) == 7

    async def test_synthesis_prompt_has_topic_and_transcript(self):
        adapters = make_adapters(aggregator=scripted_aggregator())
        await run(adapters)

        synthesis = adapters["aggregator"].calls[-1]
        assert synthesis.native_model == SONNET
        prompt = synthesis.conversation[0].content
        assert '"Should we use tabs?"' in prompt
        assert "## Opening" in prompt and "## Challenge" in prompt
        assert "**claude-opus-4.6:** opus view" in prompt

    async def test_default_topic_without_user_message(self):
        adapters = make_adapters(aggregator=scripted_aggregator())
        await run(adapters, conversation=[Message.system("only system")])

        prompt = adapters["aggregator"].calls[-1].conversation[0].content
        assert "the topic under discussion" in prompt


def test_format_transcript_groups_by_phase():
    turns = [
        DebateTurn(OPUS, "opening", "a"),
        DebateTurn(GPT, "opening", "b"),
        DebateTurn(OPUS, "challenge", "c"),
    ]
    assert format_transcript(turns) == (
        "## Opening\n**claude-opus-4.6:** a\n\n**gpt-5.2:** b"
        "\n\n---\n\n"
        "## Challenge\n**claude-opus-4.6:** c"
    )


def test_short_name():
    assert short_name(GEMINI) == "gemini-3-pro-preview"
    assert short_name("plain") == "plain"
