# src/manuscript_pipeline/pipeline/stages/categories.py — v1
"""BISAC category recommendations."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse

BISAC_CODE_PATTERN = r"^[A-Z]{3}\d{6}$"


class Category(StageResponse):
    code: str = Field(pattern=BISAC_CODE_PATTERN)
    name: str
    rationale: str = ""
    competition_level: Literal["high", "medium", "low"] = "medium"
    estimated_ranking: str | None = None


class CategoriesResponse(StageResponse):
    primary: list[Category] = Field(min_length=1, max_length=2)
    secondary: list[Category] = Field(min_length=3, max_length=5)
    alternative: list[Category] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class CategoriesStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "categories"

    @property
    def description(self) -> str:
        return "Categories — primary, secondary and cross-genre BISAC codes"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return 0.3

    @property
    def response_schema(self) -> type[StageResponse]:
        return CategoriesResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
        }

    def check(self, response: StageResponse) -> None:
        codes = [
            c.code
            for group in (response.primary, response.secondary, response.alternative)  # type: ignore[attr-defined]
            for c in group
        ]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"duplicate category codes: {duplicates}")
