# src/manuscript_pipeline/pipeline/stages/series_description.py — v1
"""Series positioning: tagline, arc and reading order.

Runs for standalone books too; with no series details the model is asked
to sketch the series the book could anchor.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.llm.token_budget import head_excerpt
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse
from manuscript_pipeline.pipeline.stages.author_bio import format_details


class BookArc(StageResponse):
    book_number: int = Field(ge=1)
    tentative_title: str = ""
    purpose: str = ""
    cliffhanger: str = ""


class SeriesDescriptionResponse(StageResponse):
    series_tagline: str
    short_series_description: str
    long_series_description: str
    overarching_conflict: str = ""
    character_journey: dict[str, str] = Field(default_factory=dict)
    reading_order: dict[str, Any] = Field(default_factory=dict)
    book_by_book_arc: list[BookArc] = Field(default_factory=list)


class SeriesDescriptionStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "seriesDescription"

    @property
    def description(self) -> str:
        return "Series description — tagline, overarching arc, reading order"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return 0.8

    @property
    def response_schema(self) -> type[StageResponse]:
        return SeriesDescriptionResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "series_details": format_details(
                inp.options.series_data,
                empty="No series details provided; propose a series this book could anchor.",
            ),
            "digest": self.developmental_digest(inp),
            "opening": head_excerpt(inp.text),
        }
