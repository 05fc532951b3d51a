"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags

API keys are never stored in the config itself: each provider names the
environment variable that holds its key.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

from modsmith.llm.providers.base import Provider
from modsmith.llm.providers.gemini import GeminiProvider
from modsmith.llm.providers.openai_compat import OpenAICompatProvider
from modsmith.llm.retry import RetryExecutor
from modsmith.llm.types import OutputMode, ProviderDescriptor

logger = logging.getLogger(__name__)

PROVIDER_KINDS = ("gemini", "openai-compat")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    name: str = "gemini"
    kind: str = "gemini"
    model: str = "gemini-2.0-flash"
    api_base: str = ""
    api_key_env: str = "GEMINI_API_KEY"
    supports_tools: bool = True
    supports_streaming: bool = True
    max_output_tokens: int = 8_192
    timeout_seconds: int = 120
    headers: dict[str, str] = field(default_factory=dict)


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(),
        ProviderConfig(
            name="groq",
            kind="openai-compat",
            model="llama-3.3-70b-versatile",
            api_base="https://api.groq.com/openai/v1",
            api_key_env="GROQ_API_KEY",
            max_output_tokens=4_096,
        ),
        ProviderConfig(
            name="openrouter",
            kind="openai-compat",
            model="meta-llama/llama-3.3-70b-instruct",
            api_base="https://openrouter.ai/api/v1",
            api_key_env="OPENROUTER_API_KEY",
            max_output_tokens=4_096,
            headers={"X-Title": "modsmith"},
        ),
    ]


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_delay_seconds: float = 2.0
    max_delay_seconds: float = 10.0
    jitter_seconds: float = 1.0


@dataclass
class GenerationConfig:
    temperature: float = 0.7
    deterministic: bool = False
    mode: str = OutputMode.CHAT
    max_context_tokens: int = 32_000
    reserve_tokens: int = 2_000


@dataclass
class LoggingConfig:
    level: str = "WARNING"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ModsmithConfig:
    providers: list[ProviderConfig] = field(default_factory=_default_providers)
    retry: RetryConfig = field(default_factory=RetryConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute.

    Numeric parts index into lists, so ``providers.0.model`` targets the
    primary provider.
    """
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = obj[int(part)] if part.isdigit() else getattr(obj, part)
    last = parts[-1]
    if last.isdigit():
        obj[int(last)] = value
    else:
        setattr(obj, last, value)


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
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _build_providers(raw: Any) -> list[ProviderConfig]:
    if raw is None:
        return _default_providers()
    if not isinstance(raw, list):
        raise ValueError("'providers' must be a list of provider entries")
    return [_build_section(ProviderConfig, entry or {}) for entry in raw]


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "MODSMITH_PRIMARY_MODEL":       ("providers.0.model", str),
    "MODSMITH_RETRY_MAX":           ("retry.max_retries", int),
    "MODSMITH_RETRY_INITIAL_DELAY": ("retry.initial_delay_seconds", float),
    "MODSMITH_RETRY_MAX_DELAY":     ("retry.max_delay_seconds", float),
    "MODSMITH_RETRY_JITTER":        ("retry.jitter_seconds", float),
    "MODSMITH_TEMPERATURE":         ("generation.temperature", float),
    "MODSMITH_DETERMINISTIC":       ("generation.deterministic", bool),
    "MODSMITH_MODE":                ("generation.mode", str),
    "MODSMITH_MAX_CONTEXT":         ("generation.max_context_tokens", int),
    "MODSMITH_LOG_LEVEL":           ("logging.level", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ModsmithConfig:
    """
    Build a ModsmithConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)
        else:
            logger.warning("Config file %s not found, using defaults", p)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = raw.get("profiles", {}).get(profile)
        if profile_data is None:
            raise ValueError(f"Unknown profile {profile!r}")
        raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = ModsmithConfig(
        providers=_build_providers(raw.get("providers")),
        retry=_build_section(RetryConfig, raw.get("retry", {})),
        generation=_build_section(GenerationConfig, raw.get("generation", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            if dotpath.startswith("providers.") and not cfg.providers:
                continue
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


def validate_config(cfg: ModsmithConfig) -> list[str]:
    """Return a list of human-readable problems; empty when the config is usable."""
    problems: list[str] = []
    if not cfg.providers:
        problems.append("no providers configured")

    seen: set[str] = set()
    for i, p in enumerate(cfg.providers):
        label = f"providers[{i}] ({p.name})"
        if p.name in seen:
            problems.append(f"{label}: duplicate provider name")
        seen.add(p.name)
        if p.kind not in PROVIDER_KINDS:
            problems.append(
                f"{label}: unknown kind {p.kind!r} (expected one of {', '.join(PROVIDER_KINDS)})"
            )
        if not p.model:
            problems.append(f"{label}: model is empty")
        if not p.api_key_env:
            problems.append(f"{label}: api_key_env is empty")
        if p.kind == "openai-compat" and not p.api_base:
            problems.append(f"{label}: api_base is required for openai-compat providers")

    if cfg.retry.max_retries < 0:
        problems.append("retry.max_retries must be >= 0")
    if cfg.retry.initial_delay_seconds < 0 or cfg.retry.max_delay_seconds < 0:
        problems.append("retry delays must be >= 0")
    if cfg.retry.max_delay_seconds < cfg.retry.initial_delay_seconds:
        problems.append("retry.max_delay_seconds must be >= retry.initial_delay_seconds")

    if cfg.generation.mode not in OutputMode.ALL:
        problems.append(f"generation.mode {cfg.generation.mode!r} is not one of {OutputMode.ALL}")
    if not 0.0 <= cfg.generation.temperature <= 2.0:
        problems.append("generation.temperature must be between 0 and 2")
    if cfg.generation.reserve_tokens >= cfg.generation.max_context_tokens:
        problems.append("generation.reserve_tokens must be below max_context_tokens")

    if cfg.logging.level.upper() not in LOG_LEVELS:
        problems.append(f"logging.level {cfg.logging.level!r} is not a logging level")
    return problems


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def build_provider(pc: ProviderConfig, api_key: str) -> Provider:
    if pc.kind == "gemini":
        kwargs: dict[str, Any] = {}
        if pc.api_base:
            kwargs["url"] = pc.api_base
        return GeminiProvider(
            api_key=api_key,
            name=pc.name,
            timeout=float(pc.timeout_seconds),
            max_output=pc.max_output_tokens,
            **kwargs,
        )
    if pc.kind == "openai-compat":
        return OpenAICompatProvider(
            url=pc.api_base,
            api_key=api_key,
            name=pc.name,
            timeout=float(pc.timeout_seconds),
            max_output=pc.max_output_tokens,
            headers=dict(pc.headers),
        )
    raise ValueError(f"Unknown provider kind {pc.kind!r} for provider {pc.name!r}")


def build_descriptors(
    cfg: ModsmithConfig,
    environ: dict[str, str] | None = None,
) -> tuple[ProviderDescriptor, ...]:
    """
    Create the provider descriptors in priority order.

    Providers whose API key variable is unset or empty are skipped with a
    warning; the remaining order is preserved.
    """
    env = os.environ if environ is None else environ
    descriptors: list[ProviderDescriptor] = []
    for pc in cfg.providers:
        api_key = env.get(pc.api_key_env, "")
        if not api_key:
            logger.warning(
                "Skipping provider %s: environment variable %s is not set",
                pc.name,
                pc.api_key_env,
            )
            continue
        descriptors.append(
            ProviderDescriptor(
                id=pc.name,
                provider=build_provider(pc, api_key),
                model=pc.model,
                supports_tools=pc.supports_tools,
                supports_streaming=pc.supports_streaming,
            )
        )
    return tuple(descriptors)


def build_retry(cfg: ModsmithConfig) -> RetryExecutor:
    return RetryExecutor(
        max_retries=cfg.retry.max_retries,
        initial_delay=cfg.retry.initial_delay_seconds,
        max_delay=cfg.retry.max_delay_seconds,
        jitter=cfg.retry.jitter_seconds,
    )
