# src/manuscript_pipeline/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: LLM pricing,
concurrency caps, retry policy, budget limits, DAG version and the
backends used for the object store, job queue and cost ledger.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from manuscript_pipeline.config.stages import DAG_VERSION


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM ===
    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    llm_model: str = "claude-sonnet-4-20250514"
    # USD per 1M tokens, used when the model has no entry in the pricing table
    llm_rate_in: float = 3.0
    llm_rate_out: float = 15.0
    llm_request_timeout_sec: float = 300.0
    # JSON object {"model": [rate_in, rate_out]} overriding the built-in table
    llm_pricing: str = ""

    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # === Concurrency ===
    global_llm_concurrency: int = 16
    per_report_concurrency: int = 5
    worker_report_concurrency: int = 4
    # Section calls of one whole-manuscript stage in flight at once
    section_concurrency: int = 4
    # Calls per minute (0 = unlimited); shared across workers through Redis
    # when the URL is set, otherwise counted per process
    llm_rate_limit_redis_url: str = ""
    llm_rate_limit_per_minute: int = 0

    # === Stage execution ===
    stage_timeout_sec: float = 600.0
    max_attempts: int = 3
    retry_base_s: float = 1.0
    retry_cap_s: float = 30.0
    cancel_poll_interval_sec: float = 1.0

    # === Budgets (USD per calendar month, UTC) ===
    monthly_limit_free: float = 5.0
    monthly_limit_pro: float = 50.0
    monthly_limit_enterprise: float = 500.0
    monthly_limit_global: float = 1000.0
    default_user_tier: Literal["free", "pro", "enterprise"] = "free"
    budget_alert_thresholds: str = "50,75,90,100"
    budget_estimate_margin: float = 1.25

    # === DAG ===
    dag_version: int = DAG_VERSION

    # === Status records ===
    status_ttl_sec: int = 604_800

    # === Job queue ===
    queue_backend: Literal["memory", "redis"] = "memory"
    queue_redis_url: str = ""
    queue_name: str = "manuscript-pipeline"
    visibility_timeout_sec: float = 300.0
    max_deliveries: int = 5
    heartbeat_interval_sec: float = 30.0
    dequeue_timeout_sec: float = 5.0

    # === Object store ===
    object_store_backend: Literal["memory", "local", "s3"] = "local"
    object_store_root: Path = Path("~/.manuscript_pipeline/objects")
    object_store_s3_bucket: str = ""
    object_store_s3_prefix: str = "manuscript-pipeline/"
    object_store_s3_region: str = ""
    object_store_s3_endpoint: str = ""

    # === Cost ledger ===
    ledger_backend: Literal["memory", "sqlite"] = "sqlite"
    ledger_db_path: Path = Path("~/.manuscript_pipeline/ledger.db")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("max_attempts", "max_deliveries", "dag_version")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("llm_pricing")
    @classmethod
    def validate_pricing(cls, v: str) -> str:
        if not v.strip():
            return v
        parsed = json.loads(v)
        if not isinstance(parsed, dict) or any(
            not isinstance(rates, list) or len(rates) != 2 for rates in parsed.values()
        ):
            raise ValueError("llm_pricing must map model names to [rate_in, rate_out]")
        return v

    @field_validator("budget_alert_thresholds")
    @classmethod
    def validate_thresholds(cls, v: str) -> str:
        values = [float(t) for t in v.split(",") if t.strip()]
        if values != sorted(set(values)) or any(t <= 0 for t in values):
            raise ValueError(
                "budget_alert_thresholds must be strictly increasing positive percentages"
            )
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.per_report_concurrency > self.global_llm_concurrency:
            errors.append(
                "PER_REPORT_CONCURRENCY must be <= GLOBAL_LLM_CONCURRENCY"
            )

        if min(
            self.per_report_concurrency,
            self.global_llm_concurrency,
            self.section_concurrency,
        ) < 1:
            errors.append("Concurrency caps must be >= 1")

        if self.retry_base_s > self.retry_cap_s:
            errors.append("RETRY_BASE_S must be <= RETRY_CAP_S")

        if self.queue_backend == "redis" and not self.queue_redis_url:
            errors.append("QUEUE_BACKEND=redis requires QUEUE_REDIS_URL")

        if self.object_store_backend == "s3" and not self.object_store_s3_bucket:
            errors.append("OBJECT_STORE_BACKEND=s3 requires OBJECT_STORE_S3_BUCKET")

        if self.llm_rate_limit_per_minute < 0:
            errors.append("LLM_RATE_LIMIT_PER_MINUTE must be >= 0")

        if self.heartbeat_interval_sec >= self.visibility_timeout_sec:
            errors.append(
                "HEARTBEAT_INTERVAL_SEC must be < VISIBILITY_TIMEOUT_SEC"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def budget_alert_thresholds_list(self) -> list[float]:
        """Parse comma-separated alert thresholds (percent of limit)."""
        return [float(t) for t in self.budget_alert_thresholds.split(",") if t.strip()]

    @property
    def pricing_overrides(self) -> dict[str, tuple[float, float]]:
        """Per-model (rate_in, rate_out) overrides from LLM_PRICING."""
        if not self.llm_pricing.strip():
            return {}
        return {
            model: (float(rates[0]), float(rates[1]))
            for model, rates in json.loads(self.llm_pricing).items()
        }

    @property
    def tier_limits(self) -> dict[str, float]:
        """Monthly USD limit per user tier."""
        return {
            "free": self.monthly_limit_free,
            "pro": self.monthly_limit_pro,
            "enterprise": self.monthly_limit_enterprise,
        }


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-worker config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
