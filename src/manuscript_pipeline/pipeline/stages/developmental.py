# src/manuscript_pipeline/pipeline/stages/developmental.py — v1
"""Developmental edit: structure, character, plot, voice and genre fit.

Root of the DAG. Book-length manuscripts are reduced to a balanced
excerpt (opening, middle and ending) before prompting.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import Field

from manuscript_pipeline.core.models import Criticality, StageKind
from manuscript_pipeline.llm.token_budget import balanced_excerpt, count_words
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse

MAX_EXCERPT_CHARS = 100_000

_CHAPTER_HEADING = re.compile(
    r"(?:^|\n)(?:chapter)\s+(?:\d+|[ivxlcdm]+)\b", re.IGNORECASE
)


class SectionAssessment(StageResponse):
    score: int = Field(ge=1, le=10)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class Marketability(StageResponse):
    score: int = Field(ge=1, le=10)
    summary: str


class DevelopmentalResponse(StageResponse):
    overall_score: int = Field(ge=1, le=10)
    structure: SectionAssessment
    characters: SectionAssessment
    plot: SectionAssessment
    voice: SectionAssessment
    genre_fit: SectionAssessment
    top_priorities: list[str] = Field(min_length=1)
    marketability: Marketability


def chapter_stats(text: str) -> tuple[int, int]:
    """Return (chapter count, average chapter length in words)."""
    chapters = len(_CHAPTER_HEADING.findall(text)) or 1
    return chapters, count_words(text) // chapters


class DevelopmentalStage(BaseStage):
    """Big-picture developmental critique of the whole manuscript."""

    @property
    def stage_id(self) -> str:
        return "developmental"

    @property
    def description(self) -> str:
        return "Developmental edit — structure, characters, plot, voice, genre fit"

    @property
    def kind(self) -> StageKind:
        return "analysis"

    @property
    def criticality(self) -> Criticality:
        return "required"

    @property
    def temperature(self) -> float:
        return 0.5

    @property
    def response_schema(self) -> type[StageResponse]:
        return DevelopmentalResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        chapters, avg_length = chapter_stats(inp.text)
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "total_words": inp.manuscript.word_count,
            "chapter_count": chapters,
            "avg_chapter_length": avg_length,
            "manuscript_text": balanced_excerpt(inp.text, MAX_EXCERPT_CHARS),
        }
