# tests/unit/config/test_unit_pipeline_settings.py — v1
"""Tests for config/settings.py validators and config/stages.py tables."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from manuscript_pipeline.config.settings import ConfigurationError, Settings, load_settings
from manuscript_pipeline.config.stages import (
    PROGRESS_WEIGHTS,
    STAGE_GROUPS,
    STAGE_REGISTRY,
)


class TestDefaults:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.llm_provider == "anthropic"
        assert s.max_attempts == 3
        assert s.budget_alert_thresholds_list == [50.0, 75.0, 90.0, 100.0]
        assert s.tier_limits == {"free": 5.0, "pro": 50.0, "enterprise": 500.0}
        assert s.pricing_overrides == {}

    def test_pricing_overrides(self, make_settings):
        s = make_settings(llm_pricing='{"m1": [1, 2.5]}')
        assert s.pricing_overrides == {"m1": (1.0, 2.5)}

    def test_env_var_override(self, monkeypatch):
        monkeypatch.setenv("PER_REPORT_CONCURRENCY", "2")
        assert Settings(_env_file=None).per_report_concurrency == 2


class TestConsistencyRules:
    @pytest.mark.parametrize(
        "overrides,fragment",
        [
            ({"per_report_concurrency": 20, "global_llm_concurrency": 10}, "PER_REPORT_CONCURRENCY"),
            ({"retry_base_s": 10.0, "retry_cap_s": 1.0}, "RETRY_BASE_S"),
            ({"queue_backend": "redis"}, "QUEUE_REDIS_URL"),
            ({"object_store_backend": "s3"}, "OBJECT_STORE_S3_BUCKET"),
            ({"llm_rate_limit_per_minute": -1}, "LLM_RATE_LIMIT_PER_MINUTE"),
            ({"section_concurrency": 0}, "Concurrency caps"),
            ({"heartbeat_interval_sec": 30.0, "visibility_timeout_sec": 30.0}, "HEARTBEAT_INTERVAL_SEC"),
            ({"per_report_concurrency": 0}, "Concurrency caps"),
        ],
    )
    def test_rejects_inconsistent_config(self, make_settings, overrides, fragment):
        with pytest.raises(ConfigurationError, match=fragment):
            make_settings(**overrides)

    def test_errors_are_combined(self, make_settings):
        with pytest.raises(ConfigurationError) as info:
            make_settings(queue_backend="redis", object_store_backend="s3")
        assert "QUEUE_REDIS_URL" in str(info.value)
        assert "OBJECT_STORE_S3_BUCKET" in str(info.value)

    def test_load_settings_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, retry_base_s=5.0, retry_cap_s=1.0)


class TestFieldValidators:
    @pytest.mark.parametrize("field", ["max_attempts", "max_deliveries", "dag_version"])
    def test_positive_ints(self, make_settings, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})

    @pytest.mark.parametrize("value", ["50,50,90", "90,50", "0,50"])
    def test_thresholds_strictly_increasing(self, make_settings, value):
        with pytest.raises(ValidationError):
            make_settings(budget_alert_thresholds=value)

    @pytest.mark.parametrize("value", ['["m"]', '{"m": [1]}', "not json"])
    def test_pricing_shape(self, make_settings, value):
        with pytest.raises(ValidationError):
            make_settings(llm_pricing=value)


class TestStageTables:
    def test_weights_sum_to_100(self):
        assert sum(PROGRESS_WEIGHTS.values()) == pytest.approx(100.0)

    def test_groups_cover_registry(self):
        grouped = [stage for ids in STAGE_GROUPS.values() for stage in ids]
        assert len(grouped) == len(set(grouped)) == len(STAGE_REGISTRY)
        assert set(grouped) == set(PROGRESS_WEIGHTS)
