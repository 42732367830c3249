"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

FAMILIES = ("chat", "responses", "messages", "dual")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    base_url: str = ""
    api_key_env: str = ""
    family: str = "chat"
    timeout_seconds: float = 120.0


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig("https://api.openai.com/v1", "OPENAI_API_KEY", "responses"),
        "anthropic": ProviderConfig("https://api.anthropic.com/v1", "ANTHROPIC_API_KEY", "messages"),
        "xai": ProviderConfig("https://api.x.ai/v1", "XAI_API_KEY", "dual"),
        "deepseek": ProviderConfig("https://api.deepseek.com", "DEEPSEEK_API_KEY", "chat"),
        "gemini": ProviderConfig(
            "https://generativelanguage.googleapis.com/v1beta/openai", "GEMINI_API_KEY", "chat"
        ),
        "minimax": ProviderConfig("https://api.minimax.io/v1", "MINIMAX_API_KEY", "chat"),
        "huggingface": ProviderConfig("https://router.huggingface.co/v1", "HF_TOKEN", "chat"),
        "aimlapi": ProviderConfig("https://api.aimlapi.com/v1", "AIMLAPI_API_KEY", "chat"),
    }


@dataclass
class OrchestratorConfig:
    max_tool_rounds: int = 10
    tool_timeout_seconds: float = 300.0
    keep_text_with_tool_calls: bool = False


@dataclass
class StoreConfig:
    threads_db: str = "~/.agentgate/threads.db"


@dataclass
class ToolsConfig:
    # entries: {id, name, url, owner, public, auth_token_env}
    directory: list[dict] = field(default_factory=list)


@dataclass
class LoggingConfig:
    level: str = "WARNING"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class GatewayConfig:
    providers: dict[str, ProviderConfig] = field(default_factory=_default_providers)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    # brand -> model -> {input_per_1k, output_per_1k, input_cache_per_1k}
    pricing: dict[str, dict[str, dict]] = field(default_factory=dict)
    store: StoreConfig = field(default_factory=StoreConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set an override using dot notation (e.g. 'orchestrator.max_tool_rounds')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def provider(self, brand: str) -> ProviderConfig | None:
        return self.providers.get(brand.lower())

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute (or key)."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = obj[part] if isinstance(obj, dict) else getattr(obj, part)
    if isinstance(obj, dict):
        obj[parts[-1]] = value
    else:
        setattr(obj, parts[-1], value)


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
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _build_providers(raw: dict) -> dict[str, ProviderConfig]:
    """File entries overlay the built-in brand table; new brands are added."""
    providers = {name: asdict(p) for name, p in _default_providers().items()}
    for name, entry in (raw or {}).items():
        providers[name.lower()] = _deep_merge(providers.get(name.lower(), {}), entry or {})
    return {name: _build_section(ProviderConfig, entry) for name, entry in providers.items()}


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "AGENTGATE_MAX_TOOL_ROUNDS":     ("orchestrator.max_tool_rounds", int),
    "AGENTGATE_TOOL_TIMEOUT":        ("orchestrator.tool_timeout_seconds", float),
    "AGENTGATE_KEEP_TOOL_TEXT":      ("orchestrator.keep_text_with_tool_calls", bool),
    "AGENTGATE_THREADS_DB":          ("store.threads_db", str),
    "AGENTGATE_LOG_LEVEL":           ("logging.level", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> GatewayConfig:
    """
    Build a GatewayConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

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

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = GatewayConfig(
        providers=_build_providers(raw.get("providers", {})),
        orchestrator=_build_section(OrchestratorConfig, raw.get("orchestrator", {})),
        pricing=raw.get("pricing", {}) or {},
        store=_build_section(StoreConfig, raw.get("store", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


def validate_config(cfg: GatewayConfig) -> list[str]:
    """Return a list of problems; empty when the configuration is usable."""
    problems: list[str] = []
    for name, p in cfg.providers.items():
        if p.family not in FAMILIES:
            problems.append(f"providers.{name}.family: unknown family {p.family!r}")
        if not p.base_url:
            problems.append(f"providers.{name}.base_url: missing")
    if cfg.orchestrator.max_tool_rounds < 1:
        problems.append("orchestrator.max_tool_rounds: must be at least 1")
    if cfg.orchestrator.tool_timeout_seconds <= 0:
        problems.append("orchestrator.tool_timeout_seconds: must be positive")
    for brand, models in cfg.pricing.items():
        if not isinstance(models, dict):
            problems.append(f"pricing.{brand}: expected a mapping of models")
            continue
        for model, rates in models.items():
            for key, value in (rates or {}).items():
                if not isinstance(value, (int, float)):
                    problems.append(f"pricing.{brand}.{model}.{key}: not a number")
    for i, entry in enumerate(cfg.tools.directory):
        for key in ("id", "url"):
            if not entry.get(key):
                problems.append(f"tools.directory[{i}].{key}: missing")
    return problems
