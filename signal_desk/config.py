"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``SIGNAL_DESK_*`` prefix, plus ``ANTHROPIC_API_KEY``

Entry point: ``load_config(config_path=None) -> AppConfig``

The scorer, the alert synthesizer, the daily orchestrator and every CLI
command receive an ``AppConfig`` (or one of its sections) — never raw dicts
or individual env var lookups scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/signal_desk.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class SignalConfig(BaseModel):
    """Confluence scorer thresholds.

    ``rsi_os`` / ``rsi_ob`` are the oversold / overbought RSI levels,
    ``vol_thresh`` the volume-ratio spike level and ``min_confluence`` the
    absolute net score needed for a plain BUY/SELL classification.
    """

    model_config = ConfigDict(frozen=True)

    rsi_os: float = 30.0
    rsi_ob: float = 70.0
    vol_thresh: float = 2.0
    min_confluence: int = 2

    @model_validator(mode="after")
    def validate_rsi_band(self) -> "SignalConfig":
        if not 0.0 <= self.rsi_os < self.rsi_ob <= 100.0:
            raise ValueError(
                f"Expected 0 <= rsi_os < rsi_ob <= 100, got rsi_os={self.rsi_os}, "
                f"rsi_ob={self.rsi_ob}."
            )
        return self

    @field_validator("min_confluence")
    @classmethod
    def validate_min_confluence(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"min_confluence must be >= 1, got {v}.")
        return v


class DistributionConfig(BaseModel):
    """Per-user personalization policy for the daily recommendation feed."""

    model_config = ConfigDict(frozen=True)

    job_name: str = "recommendations_daily"

    base_min_confidence: float = 0.45
    low_risk_threshold: float = 0.3          # risk_level below this → stricter
    low_risk_confidence_bump: float = 0.10
    crisis_confidence_bump: float = 0.10

    strategic_cap: int = 4
    opportunistic_cap: int = 3
    risk_cap: int = 4

    high_focus_threshold: float = 0.7        # focus above this → fewer strategic
    high_focus_strategic_cap: int = 2
    low_focus_threshold: float = 0.3         # focus below this → fewer opportunistic
    low_focus_opportunistic_cap: int = 1

    crisis_strategic_cap: int = 2
    crisis_opportunistic_cap: int = 1

    max_workers: int = 4                     # 1 → users processed sequentially

    @field_validator(
        "strategic_cap", "opportunistic_cap", "risk_cap",
        "high_focus_strategic_cap", "low_focus_opportunistic_cap",
        "crisis_strategic_cap", "crisis_opportunistic_cap",
    )
    @classmethod
    def validate_cap(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Category caps must be >= 0, got {v}.")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be >= 1, got {v}.")
        return v


class GeneratorConfig(BaseModel):
    """Candidate idea generator (Anthropic Messages API) settings.

    With no ``api_key`` the deterministic fallback generator is used.
    """

    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    model: str = "claude-3-5-haiku-latest"
    api_url: str = "https://api.anthropic.com/v1/messages"
    timeout_s: float = 9.0
    max_tokens: int = 2000
    temperature: float = 0.2
    fallback_on_error: bool = True

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        # Anything shorter never completes a generation round-trip.
        return max(2.0, v)


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/signal_desk.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + environment.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    signals: SignalConfig = SignalConfig()
    distribution: DistributionConfig = DistributionConfig()
    generator: GeneratorConfig = GeneratorConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides to the raw config dict.

    Supported overrides:
      SIGNAL_DESK_DB_PATH      → raw["database"]["db_path"]
      SIGNAL_DESK_LOG_LEVEL    → raw["logging"]["level"]
      SIGNAL_DESK_MAX_WORKERS  → raw["distribution"]["max_workers"]
      SIGNAL_DESK_DEBUG        → raw["debug"]
      ANTHROPIC_API_KEY        → raw["generator"]["api_key"]
    """
    if db_path := os.environ.get("SIGNAL_DESK_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("SIGNAL_DESK_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if max_workers := os.environ.get("SIGNAL_DESK_MAX_WORKERS"):
        raw.setdefault("distribution", {})["max_workers"] = int(max_workers)

    if debug := os.environ.get("SIGNAL_DESK_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        raw.setdefault("generator", {})["api_key"] = api_key

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        signals=SignalConfig(**raw.get("signals", {})),
        distribution=DistributionConfig(**raw.get("distribution", {})),
        generator=GeneratorConfig(**raw.get("generator", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
