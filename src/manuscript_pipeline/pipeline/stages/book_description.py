# src/manuscript_pipeline/pipeline/stages/book_description.py — v1
"""Retailer book descriptions in three lengths plus hooks and positioning."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.llm.token_budget import head_excerpt
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse

# Retailer hard limit for the description field.
MAX_DESCRIPTION_CHARS = 4000


class BookDescriptionResponse(StageResponse):
    short: str = Field(min_length=1)
    medium: str = Field(min_length=1)
    long: str = Field(min_length=1, max_length=MAX_DESCRIPTION_CHARS)
    hooks: list[str] = Field(default_factory=list)
    key_words: list[str] = Field(default_factory=list)
    target_audience: str = ""
    comparison_line: str = ""


class BookDescriptionStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "bookDescription"

    @property
    def description(self) -> str:
        return "Book description — short, medium and long retailer copy"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def response_schema(self) -> type[StageResponse]:
        return BookDescriptionResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
            "opening": head_excerpt(inp.text),
        }
