"""
Multi-tier fallback streaming.

The orchestrator is the primary entry point for anything that needs a
streamed completion.  For one requested model it tries, strictly in order
and never in parallel:

  1. **Aggregator** with the requested model.
  2. **Direct vendor, same model**, silently.
  3. **Auto-route** to the next configured model in the priority list,
     announcing each substitution with one ``rerouting`` event; then, as a
     last resort, the same candidates through the aggregator.

A tier whose credential is missing is skipped, not counted as a failure.
Every other failure is logged and recorded, and the next tier is tried
regardless of whether the error looked retryable.  Only when everything
has failed does ``AllTiersExhausted`` escape.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Mapping

from tierstream.config import Credentials, ProviderConfig, ProviderRoute
from tierstream.llm.errors import (
    AllTiersExhausted,
    FailedAttempt,
    MissingCredential,
    StreamCancelled,
    classify_error,
)
from tierstream.llm.events import EventSink, ReroutingEvent, StreamEvent, UsageEvent
from tierstream.llm.providers import Provider, build_default_adapters
from tierstream.llm.token_counter import TokenEstimator, TokenTally, estimate_tokens
from tierstream.llm.types import FallbackResult, Message, StreamResult

logger = logging.getLogger(__name__)

TIER_AGGREGATOR = 1
TIER_DIRECT = 2
TIER_AUTO_ROUTE = 3


class _AttemptSink:
    """
    Wraps the caller's sink for one tier attempt.

    Usage reports are held back and only released by ``release`` once the
    attempt has succeeded, so a failed tier never contributes usage.
    """

    def __init__(self, sink: EventSink) -> None:
        self._sink = sink
        self.usage: UsageEvent | None = None

    def emit(self, event: StreamEvent) -> None:
        if isinstance(event, UsageEvent):
            self.usage = event
        else:
            self._sink.emit(event)

    def release(self) -> UsageEvent | None:
        if self.usage is not None:
            self._sink.emit(self.usage)
        return self.usage


def provider_label(model: str) -> str:
    """``"anthropic/claude-x"`` -> ``"Anthropic"``."""
    prefix = model.split("/", 1)[0]
    return prefix[:1].upper() + prefix[1:]


class FallbackOrchestrator:
    """
    Parameters
    ----------
    config:
        Static routing table.
    credentials:
        Secrets resolved once at startup.
    adapters:
        Vendor kind -> adapter.  Defaults to ``build_default_adapters``.
    """

    def __init__(
        self,
        config: ProviderConfig,
        credentials: Credentials,
        adapters: Mapping[str, Provider] | None = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self._adapters = dict(adapters) if adapters is not None else build_default_adapters(config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream_with_fallback(
        self,
        requested_model: str,
        conversation: list[Message],
        tools: list[dict],
        sink: EventSink,
        estimate_tokens: TokenEstimator = estimate_tokens,
        tally: TokenTally | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> FallbackResult:
        """
        Stream a response for *requested_model* with multi-tier fallback.

        Raises ``AllTiersExhausted`` only if every tier fails, and
        ``StreamCancelled`` as soon as *cancel* is set.
        """
        tally = tally if tally is not None else TokenTally()
        attempts: list[FailedAttempt] = []
        aggregator_key = self.credentials.get(self.config.aggregator.credential_key)
        if "aggregator" not in self._adapters:
            aggregator_key = None

        async def attempt(tier: int, model: str, vendor: str, native: str, key: str):
            self._check_cancelled(cancel)
            adapter = self._adapters[vendor]
            attempt_sink = _AttemptSink(sink)
            try:
                result = await self._run_cancellable(
                    adapter.stream(
                        native, key, conversation, tools, attempt_sink, estimate_tokens, tally
                    ),
                    cancel,
                )
            except StreamCancelled:
                raise
            except Exception as exc:
                kind = classify_error(exc)
                failure = FailedAttempt(
                    tier=tier,
                    model=model,
                    error=str(exc) or type(exc).__name__,
                    retryable=kind != "fatal",
                )
                attempts.append(failure)
                logger.warning(
                    "[fallback] tier %d (%s) failed: model=%s retryable=%s kind=%s err=%s",
                    tier, vendor, model, failure.retryable, kind, failure.error,
                )
                return None
            return self._finish(result, model, tier, attempt_sink.release())

        # -- Tier 1: aggregator ------------------------------------------
        if aggregator_key:
            logger.info("[fallback] tier 1 (aggregator): %s", requested_model)
            done = await attempt(
                TIER_AGGREGATOR, requested_model, "aggregator", requested_model, aggregator_key
            )
            if done is not None:
                return done

        # -- Tier 2: same model, direct vendor, silent -------------------
        try:
            route, direct_key = self._direct_target(requested_model)
        except MissingCredential as exc:
            logger.debug("[fallback] tier 2 skipped for %s: %s", requested_model, exc)
        else:
            logger.info("[fallback] tier 2 (direct, same model): %s", requested_model)
            done = await attempt(
                TIER_DIRECT, requested_model, route.vendor, route.native_model, direct_key
            )
            if done is not None:
                return done

        # -- Tier 3: auto-route to a different model ---------------------
        candidates = [m for m in self.config.auto_route if m != requested_model]
        label = provider_label(requested_model)

        for candidate in candidates:
            try:
                cand_route, cand_key = self._direct_target(candidate)
            except MissingCredential as exc:
                logger.debug("[fallback] tier 3 candidate %s skipped: %s", candidate, exc)
                continue
            self._check_cancelled(cancel)
            logger.info("[fallback] tier 3 (auto-route): %s -> %s", requested_model, candidate)
            sink.emit(ReroutingEvent(from_model=requested_model, to_model=candidate, provider_label=label))
            done = await attempt(
                TIER_AUTO_ROUTE, candidate, cand_route.vendor, cand_route.native_model, cand_key
            )
            if done is not None:
                return done

        # -- Tier 3, last resort: candidates through the aggregator ------
        if aggregator_key:
            for candidate in candidates:
                self._check_cancelled(cancel)
                logger.info("[fallback] tier 3 aggregator fallback: %s", candidate)
                sink.emit(ReroutingEvent(from_model=requested_model, to_model=candidate, provider_label=label))
                done = await attempt(
                    TIER_AUTO_ROUTE, candidate, "aggregator", candidate, aggregator_key
                )
                if done is not None:
                    return done

        logger.error(
            "[fallback] all tiers failed for %s: %s",
            requested_model,
            json.dumps([a.to_dict() for a in attempts]),
        )
        raise AllTiersExhausted(requested_model, attempts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _direct_target(self, model: str) -> tuple[ProviderRoute, str]:
        """Resolve the direct-vendor route and key for *model*."""
        route = self.config.route_for(model)
        if route is None:
            raise MissingCredential(f"no direct route for {model}")
        key = self.credentials.get(route.credential_key)
        if not key:
            raise MissingCredential(f"{route.credential_key} is not configured")
        if route.vendor not in self._adapters:
            raise MissingCredential(f"no adapter registered for vendor {route.vendor!r}")
        return route, key

    @staticmethod
    def _finish(
        result: StreamResult, model: str, tier: int, usage: UsageEvent | None
    ) -> FallbackResult:
        return FallbackResult(
            text=result.text,
            tool_calls=tuple(result.tool_calls),
            has_tool_calls=result.has_tool_calls,
            actual_model=model,
            tier=tier,
            usage=usage,
        )

    @staticmethod
    def _check_cancelled(cancel: asyncio.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise StreamCancelled("request cancelled by caller")

    @staticmethod
    async def _run_cancellable(
        coro: Awaitable[StreamResult],
        cancel: asyncio.Event | None,
    ) -> StreamResult:
        """Await *coro*, aborting it (and its HTTP stream) if *cancel* fires."""
        if cancel is None:
            return await coro

        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task in done:
            return task.result()
        raise StreamCancelled("request cancelled by caller")
