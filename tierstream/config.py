"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < explicit overrides

Credentials are kept apart from the routing table: ``ProviderConfig`` names
credential *keys*, and a ``Credentials`` mapping built once at process start
resolves them to secrets.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator

import yaml

VENDOR_KINDS = ("aggregator", "anthropic", "openai", "gemini")


class ConfigError(ValueError):
    """Raised when configuration is structurally invalid."""


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderRoute:
    credential_key: str
    native_model: str
    vendor: str

    def __post_init__(self) -> None:
        if self.vendor not in VENDOR_KINDS:
            raise ConfigError(
                f"Unknown vendor {self.vendor!r}; expected one of {VENDOR_KINDS}"
            )


@dataclass(frozen=True)
class AggregatorConfig:
    base_url: str = "https://openrouter.ai/api/v1"
    credential_key: str = "OPENROUTER_API_KEY"


DEFAULT_ROUTES: dict[str, ProviderRoute] = {
    "anthropic/claude-sonnet-4.6": ProviderRoute("CLAUDE_API_KEY", "claude-sonnet-4-6", "anthropic"),
    "anthropic/claude-opus-4.6": ProviderRoute("CLAUDE_API_KEY", "claude-opus-4-6", "anthropic"),
    "openai/gpt-5.2": ProviderRoute("OPENAI_API_KEY", "gpt-5.2", "openai"),
    "google/gemini-3-pro-preview": ProviderRoute("GEMINI_API_KEY", "gemini-3-pro-preview", "gemini"),
}

DEFAULT_AUTO_ROUTE: tuple[str, ...] = (
    "anthropic/claude-sonnet-4.6",
    "openai/gpt-5.2",
    "google/gemini-3-pro-preview",
)


@dataclass(frozen=True)
class ProviderConfig:
    """Static routing table.  Read-only once constructed."""

    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    routes: Mapping[str, ProviderRoute] = field(
        default_factory=lambda: dict(DEFAULT_ROUTES)
    )
    auto_route: tuple[str, ...] = DEFAULT_AUTO_ROUTE
    timeout_seconds: float = 120.0
    max_output_tokens: int = 8192

    def __post_init__(self) -> None:
        # Freeze the routing table so nothing can mutate it after startup.
        object.__setattr__(self, "routes", MappingProxyType(dict(self.routes)))
        object.__setattr__(self, "auto_route", tuple(self.auto_route))

    def route_for(self, model: str) -> ProviderRoute | None:
        return self.routes.get(model)

    def credential_keys(self) -> set[str]:
        keys = {r.credential_key for r in self.routes.values()}
        keys.add(self.aggregator.credential_key)
        return keys


@dataclass(frozen=True)
class DebateConfig:
    roster: tuple[str, ...] = (
        "anthropic/claude-opus-4.6",
        "openai/gpt-5.2",
        "google/gemini-3-pro-preview",
    )
    synthesis_model: str = "anthropic/claude-sonnet-4.6"

    def __post_init__(self) -> None:
        object.__setattr__(self, "roster", tuple(self.roster))
        if len(self.roster) != 3 or len(set(self.roster)) != 3:
            raise ConfigError("Debate roster must contain exactly three distinct models")
        if self.synthesis_model in self.roster:
            raise ConfigError("Synthesis model must not be part of the debate roster")


@dataclass(frozen=True)
class LoopConfig:
    max_rounds: int = 5
    tool_timeout_seconds: float = 30.0


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RelayConfig:
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    debate: DebateConfig = field(default_factory=DebateConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)

    def to_dict(self) -> dict:
        providers = self.providers
        return {
            "providers": {
                "aggregator": asdict(providers.aggregator),
                "routes": {
                    name: asdict(route) for name, route in providers.routes.items()
                },
                "auto_route": list(providers.auto_route),
                "timeout_seconds": providers.timeout_seconds,
                "max_output_tokens": providers.max_output_tokens,
            },
            "debate": {
                "roster": list(self.debate.roster),
                "synthesis_model": self.debate.synthesis_model,
            },
            "loop": asdict(self.loop),
        }


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class Credentials(Mapping[str, str]):
    """
    Immutable credential-key -> secret mapping.

    Empty values are treated as absent, so ``key in creds`` means the
    credential can actually be used.
    """

    def __init__(self, values: Mapping[str, str | None] | None = None) -> None:
        self._values = {k: v for k, v in (values or {}).items() if v}

    @classmethod
    def from_env(
        cls,
        keys: Iterable[str],
        environ: Mapping[str, str] | None = None,
    ) -> Credentials:
        env = os.environ if environ is None else environ
        return cls({k: env.get(k) for k in keys})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Credentials(keys={sorted(self._values)})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _filter_fields(cls: type, raw: dict) -> dict:
    """Keep only keys that are fields of *cls*."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in raw.items() if k in valid_fields}


def _build_routes(raw: dict | None) -> dict[str, ProviderRoute]:
    if raw is None:
        return dict(DEFAULT_ROUTES)
    routes: dict[str, ProviderRoute] = {}
    for model, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Route for {model!r} must be a mapping")
        try:
            routes[model] = ProviderRoute(
                credential_key=entry["credential_key"],
                native_model=entry["native_model"],
                vendor=entry["vendor"],
            )
        except KeyError as exc:
            raise ConfigError(f"Route for {model!r} is missing {exc.args[0]!r}") from exc
    return routes


def _build_providers(raw: dict) -> ProviderConfig:
    agg = AggregatorConfig(**_filter_fields(AggregatorConfig, raw.get("aggregator", {})))
    kwargs = _filter_fields(ProviderConfig, raw)
    kwargs.pop("aggregator", None)
    kwargs["routes"] = _build_routes(raw.get("routes"))
    if "auto_route" in kwargs:
        kwargs["auto_route"] = tuple(kwargs["auto_route"])
    return ProviderConfig(aggregator=agg, **kwargs)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, str, type]] = {
    "TIERSTREAM_AGGREGATOR_BASE_URL": ("providers", "aggregator.base_url", str),
    "TIERSTREAM_TIMEOUT":             ("providers", "timeout_seconds", float),
    "TIERSTREAM_MAX_OUTPUT_TOKENS":   ("providers", "max_output_tokens", int),
    "TIERSTREAM_AUTO_ROUTE":          ("providers", "auto_route", list),
    "TIERSTREAM_SYNTHESIS_MODEL":     ("debate", "synthesis_model", str),
    "TIERSTREAM_MAX_ROUNDS":          ("loop", "max_rounds", int),
    "TIERSTREAM_TOOL_TIMEOUT":        ("loop", "tool_timeout_seconds", float),
}


def _set_dotpath(raw: dict, section: str, dotpath: str, value: Any) -> None:
    node = raw.setdefault(section, {})
    parts = dotpath.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def find_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "tierstream.yaml",
        Path.cwd() / "tierstream.yml",
        Path.home() / ".config" / "tierstream" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RelayConfig:
    """
    Build a RelayConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  explicit overrides

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    overrides : dict of ``"section.dotpath" -> value`` overrides
    environ : environment mapping, defaults to ``os.environ``
    """
    raw: dict[str, Any] = {}
    env = os.environ if environ is None else environ

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ConfigError(f"{p} must contain a mapping at the top level")
            raw = _deep_merge(raw, file_data)

    # --- 2. Env var overrides ---
    for env_var, (section, dotpath, target_type) in _ENV_MAP.items():
        val = env.get(env_var)
        if val is None:
            continue
        try:
            coerced = _coerce(val, target_type)
        except ValueError as exc:
            raise ConfigError(f"{env_var}={val!r} is not a valid {target_type.__name__}") from exc
        _set_dotpath(raw, section, dotpath, coerced)

    # --- 3. Explicit overrides ---
    for key, value in (overrides or {}).items():
        section, _, dotpath = key.partition(".")
        _set_dotpath(raw, section, dotpath, value)

    try:
        debate_raw = _filter_fields(DebateConfig, raw.get("debate", {}))
        return RelayConfig(
            providers=_build_providers(raw.get("providers", {})),
            debate=DebateConfig(**debate_raw),
            loop=LoopConfig(**_filter_fields(LoopConfig, raw.get("loop", {}))),
        )
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc
