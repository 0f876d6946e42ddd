# tests/unit/core/test_unit_pipeline_core.py — v1
"""Tests for core/errors.py and core/models.py."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from manuscript_pipeline.core.errors import (
    AlreadyLeased,
    BudgetExceeded,
    LLMCallError,
    ObjectNotFound,
    PipelineError,
    StageCancelled,
    TransientError,
    error_for_kind,
    friendly_message,
)
from manuscript_pipeline.core.models import StatusRecord, SubmitOptions, period_of


class TestErrors:
    @pytest.mark.parametrize(
        "kind",
        [
            "transient",
            "validation_error",
            "budget_exceeded",
            "auth_error",
            "invariant_violation",
            "dag_version_mismatch",
            "cancelled",
        ],
    )
    def test_error_for_kind_roundtrip(self, kind):
        error = error_for_kind(kind, "boom", stage_id="keywords")
        assert isinstance(error, PipelineError)
        assert error.kind == kind
        assert error.stage_id == "keywords"
        assert str(error) == "boom"

    def test_default_message_is_kind(self):
        assert str(TransientError()) == "transient"
        assert BudgetExceeded().kind == "budget_exceeded"
        assert StageCancelled().kind == "cancelled"

    def test_already_leased_carries_report(self):
        error = AlreadyLeased("r9")
        assert error.report_id == "r9"
        assert "r9" in str(error)

    def test_object_not_found_is_key_error(self):
        assert issubclass(ObjectNotFound, KeyError)

    def test_llm_call_error_fields(self):
        error = LLMCallError("slow down", "rate_limit", 429)
        assert (error.category, error.status_code) == ("rate_limit", 429)

    def test_friendly_message(self):
        assert "budget" in friendly_message("budget_exceeded")
        assert friendly_message("something_new") == friendly_message("invariant_violation")


class TestModels:
    def test_period_of(self):
        assert period_of(datetime(2026, 1, 31, 23, 59, tzinfo=timezone.utc)) == "2026-01"
        # Local midnight on Feb 1st in UTC+2 is still January in UTC
        plus_two = timezone(timedelta(hours=2))
        assert period_of(datetime(2026, 2, 1, 1, 0, tzinfo=plus_two)) == "2026-01"
        assert period_of(datetime(2026, 3, 1)) == "2026-03"

    def test_status_record_camel_case(self):
        record = StatusRecord(state="running", progress=25, current_step="lineEditing")
        data = json.loads(record.to_json_bytes())
        assert data["currentStep"] == "lineEditing"
        assert "updatedAt" in data
        assert "results" not in data
        assert not record.is_terminal

    @pytest.mark.parametrize("state", ["complete", "failed", "cancelled"])
    def test_terminal_states(self, state):
        assert StatusRecord(state=state).is_terminal

    def test_submit_options_accepts_camel_case(self):
        options = SubmitOptions.model_validate(
            {"userId": "u1", "includeAssets": True, "styleGuide": "ap"}
        )
        assert options.include_assets
        assert options.style_guide == "ap"
        assert options.formats == []
