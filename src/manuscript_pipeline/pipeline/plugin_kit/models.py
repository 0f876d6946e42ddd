# src/manuscript_pipeline/pipeline/plugin_kit/models.py — v1
"""Stage plugin models: StageInput, StageResponse, StageResult, TextSection."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from manuscript_pipeline.core.models import Manuscript, SubmitOptions


class TextSection(BaseModel):
    """Contiguous run of manuscript words analysed by one LLM call."""

    number: int  # 1-based
    start_word: int
    end_word: int
    total: int = 1
    text: str

    @property
    def word_range(self) -> str:
        return f"{self.start_word}-{self.end_word}"


class StageInput(BaseModel):
    """Everything a stage needs to build its prompt."""

    report_id: str
    stage_id: str
    attempt: int
    manuscript: Manuscript
    text: str
    options: SubmitOptions
    # Parent stage id -> parsed result JSON (camelCase keys)
    parents: dict[str, dict[str, Any]] = Field(default_factory=dict)
    repair_hint: str | None = None
    # Set on each call of a sectioned stage
    section: TextSection | None = None


class StageResponse(BaseModel):
    """Base class for stage response contracts.

    Fields are snake_case in Python and camelCase on the wire. Unknown
    keys in the LLM answer are dropped so stored results only hold the
    declared contract.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class SectionOutcome(BaseModel):
    """Validated answer of one section call, or why it was rejected."""

    section: TextSection
    response: StageResponse | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None


class StageResult(BaseModel):
    """Outcome of one successful Analyzer run."""

    stage_id: str
    result_key: str
    # True when the result already existed and no LLM call was made
    reused: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    usd: float = 0.0
    model: str | None = None
