# src/manuscript_pipeline/pipeline/stages/formatting.py — v1
"""EPUB and print PDF formatting briefs.

These stages describe how the book should be laid out; producing the
files themselves is left to the typesetting tools.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.llm.token_budget import head_excerpt
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse
from manuscript_pipeline.pipeline.stages.developmental import chapter_stats


class EpubFormattingResponse(StageResponse):
    structure: dict[str, list[str]]
    chapter_headings: str
    scene_breaks: str = ""
    typography: dict[str, str] = Field(default_factory=dict)
    table_of_contents: str = ""
    notes: list[str] = Field(default_factory=list)


class PdfFormattingResponse(StageResponse):
    trim_size: str
    estimated_page_count: int = Field(gt=0)
    margins: dict[str, str] = Field(default_factory=dict)
    typography: dict[str, str] = Field(default_factory=dict)
    chapter_openings: str = ""
    running_heads: str = ""
    notes: list[str] = Field(default_factory=list)


class _FormattingStage(BaseStage):
    """Shared prompt fields: manuscript metadata plus the opening pages."""

    @property
    def temperature(self) -> float:
        return 0.3

    @property
    def max_tokens(self) -> int:
        return 2048

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        chapters, _ = chapter_stats(inp.text)
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "total_words": inp.manuscript.word_count,
            "chapter_count": chapters,
            "opening": head_excerpt(inp.text, 3_000),
        }


class EpubFormattingStage(_FormattingStage):
    @property
    def stage_id(self) -> str:
        return "epub"

    @property
    def description(self) -> str:
        return "EPUB formatting brief"

    @property
    def response_schema(self) -> type[StageResponse]:
        return EpubFormattingResponse


class PdfFormattingStage(_FormattingStage):
    @property
    def stage_id(self) -> str:
        return "pdf"

    @property
    def description(self) -> str:
        return "Print PDF interior formatting brief"

    @property
    def response_schema(self) -> type[StageResponse]:
        return PdfFormattingResponse
