"""
Multi-model debate built on the fallback orchestrator.

A fixed roster of three models runs through three strictly sequential
phases:

  1. **Opening**: each model states its position.
  2. **Challenge**: each model sees its own opening and the others', then
     critiques, concedes or defends.
  3. **Synthesis**: a separate model reads the six-turn transcript and
     writes the final answer, streamed as ordinary ``delta`` events.

One unavailable model never aborts the debate: its turn gets a placeholder
and contributes no usage.  Usage of all seven sub-calls is summed into a
single ``usage`` event before the final ``done``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Literal

from tierstream.config import DebateConfig
from tierstream.llm.errors import RelayError, StreamCancelled
from tierstream.llm.events import (
    DebateStartEvent,
    DebateSynthesisStartEvent,
    DebateTurnDeltaEvent,
    DebateTurnEndEvent,
    DebateTurnStartEvent,
    DeltaEvent,
    DoneEvent,
    EventSink,
    StreamEvent,
    UsageEvent,
)
from tierstream.llm.fallback import FallbackOrchestrator
from tierstream.llm.token_counter import TokenTally
from tierstream.llm.types import Message

logger = logging.getLogger(__name__)

Phase = Literal["opening", "challenge"]

UNAVAILABLE_PLACEHOLDER = "(This model was unavailable for this round.)"
DEBATE_MODEL_LABEL = "debate-composite"
DEFAULT_TOPIC = "the topic under discussion"

OPENING_PROMPT = (
    "You are participating in a structured multi-model debate. Give your honest, "
    "specific position on the user's question. Be direct and concise, 2-3 short "
    "paragraphs max. Do not hedge or disclaim. Take a clear stance."
)

CHALLENGE_PROMPT = """You are in the challenge round of a structured multi-model debate.

Your opening position was:
{own}

The other participants said:
{others}

Challenge weak reasoning, identify blind spots and stress-test assumptions. \
Defend your view where it differs. If another position is genuinely stronger \
on a point, concede it, but do not cave just to be agreeable. 2-3 short paragraphs."""

SYNTHESIS_PROMPT = """You are the moderator of a structured multi-model debate.

Three models ({names}) debated:
"{topic}"

Here is the full debate:

{transcript}

Write one balanced, direct final answer for the user. Weigh the positions \
that held up under challenge, say briefly where the others fell short, and \
commit to a clear conclusion. Write in plain prose, concise and actionable."""


@dataclass(frozen=True)
class DebateTurn:
    model: str
    phase: Phase
    content: str


@dataclass
class _Usage:
    tokens_in: int = 0
    tokens_out: int = 0

    def add(self, event: UsageEvent | None) -> None:
        if event is not None:
            self.tokens_in += event.tokens_in
            self.tokens_out += event.tokens_out


class _TurnSink:
    """
    Filters one sub-call's events.

    Text deltas are re-emitted through *forward*; everything else is
    dropped.  Content and usage come from the ``FallbackResult`` of the
    winning attempt, not from what streamed past.
    """

    def __init__(self, forward: Callable[[DeltaEvent], None]) -> None:
        self._forward = forward

    def emit(self, event: StreamEvent) -> None:
        if isinstance(event, DeltaEvent):
            self._forward(event)


def short_name(model: str) -> str:
    """``"openai/gpt-5.2"`` -> ``"gpt-5.2"``."""
    return model.rsplit("/", 1)[-1]


def format_transcript(turns: list[DebateTurn]) -> str:
    sections: list[str] = []
    for phase in ("opening", "challenge"):
        entries = [
            f"**{short_name(t.model)}:** {t.content}" for t in turns if t.phase == phase
        ]
        if entries:
            sections.append(f"## {phase.capitalize()}\n" + "\n\n".join(entries))
    return "\n\n---\n\n".join(sections)


class DebateEngine:
    """
    Parameters
    ----------
    orchestrator : FallbackOrchestrator
        Every sub-call goes through tiered fallback.
    config : DebateConfig
        Roster and synthesis model.
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        config: DebateConfig | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or DebateConfig()

    async def run_debate(
        self,
        conversation: list[Message],
        sink: EventSink,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[DebateTurn]:
        """
        Run opening, challenge and synthesis, emitting events to *sink*.

        Returns the six roster turns.  ``StreamCancelled`` propagates.
        """
        roster = self.config.roster
        topic = self._topic(conversation)
        context = [m for m in conversation if m.role != "system"]
        usage = _Usage()
        turns: list[DebateTurn] = []

        sink.emit(DebateStartEvent())

        openings: dict[str, str] = {}
        for model in roster:
            messages = [Message.system(OPENING_PROMPT), *context]
            content = await self._turn(model, "opening", messages, sink, usage, cancel)
            openings[model] = content
            turns.append(DebateTurn(model=model, phase="opening", content=content))

        for model in roster:
            others = "\n\n".join(
                f"**{short_name(m)}:** {openings[m]}" for m in roster if m != model
            )
            prompt = CHALLENGE_PROMPT.format(own=openings[model], others=others)
            messages = [Message.system(prompt), *context]
            content = await self._turn(model, "challenge", messages, sink, usage, cancel)
            turns.append(DebateTurn(model=model, phase="challenge", content=content))

        sink.emit(DebateSynthesisStartEvent())
        prompt = SYNTHESIS_PROMPT.format(
            names=", ".join(short_name(m) for m in roster),
            topic=topic,
            transcript=format_transcript(turns),
        )
        synth_sink = _TurnSink(sink.emit)
        try:
            result = await self.orchestrator.stream_with_fallback(
                self.config.synthesis_model,
                [Message.system(prompt), *context],
                [],
                synth_sink,
                tally=TokenTally(),
                cancel=cancel,
            )
        except StreamCancelled:
            raise
        except RelayError as exc:
            logger.warning("Debate synthesis failed: %s", exc)
            sink.emit(DeltaEvent(content=UNAVAILABLE_PLACEHOLDER))
        else:
            usage.add(result.usage)

        sink.emit(UsageEvent(tokens_in=usage.tokens_in, tokens_out=usage.tokens_out))
        sink.emit(DoneEvent(actual_model=DEBATE_MODEL_LABEL))
        return turns

    @staticmethod
    def _topic(conversation: list[Message]) -> str:
        for msg in reversed(conversation):
            if msg.role == "user":
                return msg.content or DEFAULT_TOPIC
        return DEFAULT_TOPIC

    async def _turn(
        self,
        model: str,
        phase: Phase,
        messages: list[Message],
        sink: EventSink,
        usage: _Usage,
        cancel: asyncio.Event | None,
    ) -> str:
        sink.emit(DebateTurnStartEvent(model=model, phase=phase))
        turn_sink = _TurnSink(
            lambda e: sink.emit(DebateTurnDeltaEvent(model=model, content=e.content))
        )
        try:
            result = await self.orchestrator.stream_with_fallback(
                model, messages, [], turn_sink, tally=TokenTally(), cancel=cancel
            )
        except StreamCancelled:
            raise
        except RelayError as exc:
            logger.warning("Debate %s turn for %s unavailable: %s", phase, model, exc)
            content = UNAVAILABLE_PLACEHOLDER
        else:
            content = result.text
            usage.add(result.usage)
        sink.emit(DebateTurnEndEvent(model=model, phase=phase))
        return content
