"""
Error taxonomy for provider streaming and fallback.

Adapters let transport and SDK exceptions propagate; the fallback
orchestrator catches them per tier, records a ``FailedAttempt`` and moves
on.  ``is_retryable`` / ``classify_error`` exist for diagnostics only and
never decide whether the next tier is tried.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass


class RelayError(Exception):
    """Base class for every error raised by tierstream."""


class ProviderUnavailable(RelayError):
    """Transport or HTTP failure talking to a provider."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class ProviderHTTPError(ProviderUnavailable):
    """Non-2xx response from a streaming endpoint."""

    def __init__(self, status: int, body: str = "") -> None:
        snippet = body.strip()[:300]
        message = f"HTTP {status}" + (f": {snippet}" if snippet else "")
        super().__init__(message, status=status)
        self.body = body


class RateLimited(ProviderHTTPError):
    """HTTP 429 from a provider."""

    def __init__(self, body: str = "", status: int = 429) -> None:
        super().__init__(status, body)


class Overloaded(ProviderHTTPError):
    """HTTP 503 from a provider."""

    def __init__(self, body: str = "", status: int = 503) -> None:
        super().__init__(status, body)


def http_error(status: int, body: str = "") -> ProviderHTTPError:
    """Build the most specific ``ProviderHTTPError`` for *status*."""
    if status == 429:
        return RateLimited(body)
    if status == 503:
        return Overloaded(body)
    return ProviderHTTPError(status, body)


class MissingCredential(RelayError):
    """A tier or route has no usable credential configured."""


class StreamCancelled(RelayError):
    """The caller cancelled the request; no further tiers are attempted."""


@dataclass(frozen=True)
class FailedAttempt:
    tier: int
    model: str
    error: str
    retryable: bool

    def to_dict(self) -> dict:
        return asdict(self)


class AllTiersExhausted(RelayError):
    """Every tier and every auto-route candidate failed (or none were configured)."""

    def __init__(self, requested_model: str, attempts: list[FailedAttempt]) -> None:
        if attempts:
            message = f"All model providers failed for {requested_model} ({len(attempts)} attempts)"
        else:
            message = f"No provider is configured for {requested_model}"
        super().__init__(message)
        self.requested_model = requested_model
        self.attempts = list(attempts)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_RATE_LIMIT_RE = re.compile(r"rate.?limit|too many request|throttl", re.IGNORECASE)
_OVERLOAD_RE = re.compile(r"capacity|overloaded|unavailable", re.IGNORECASE)
_RATE_LIMIT_CODES = {"rate_limit_exceeded", "rate_limit_error"}
_OVERLOAD_CODES = {"overloaded_error", "service_unavailable"}


def _status_of(exc: BaseException) -> int:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else 0


def _codes_of(exc: BaseException) -> set[str]:
    codes: set[str] = set()
    for attr in ("code", "type"):
        value = getattr(exc, attr, None)
        if isinstance(value, str):
            codes.add(value)
    # Anthropic / OpenAI SDK errors carry the decoded error body.
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict):
            for key in ("type", "code"):
                if isinstance(err.get(key), str):
                    codes.add(err[key])
    return codes


def classify_error(exc: BaseException) -> str:
    """
    Return a diagnostic class name for *exc*.

    One of ``"rate_limited"``, ``"overloaded"``, ``"unavailable"``
    (5xx / transport) or ``"fatal"``.
    """
    if isinstance(exc, RateLimited):
        return "rate_limited"
    if isinstance(exc, Overloaded):
        return "overloaded"

    status = _status_of(exc)
    codes = _codes_of(exc)
    message = str(exc)

    if status == 429 or codes & _RATE_LIMIT_CODES or _RATE_LIMIT_RE.search(message):
        return "rate_limited"
    if status == 503 or codes & _OVERLOAD_CODES or _OVERLOAD_RE.search(message):
        return "overloaded"
    if status >= 500:
        return "unavailable"
    return "fatal"


def is_retryable(exc: BaseException) -> bool:
    """True for 429, 503, any 5xx, or rate-limit / overload vocabulary."""
    return classify_error(exc) != "fatal"
