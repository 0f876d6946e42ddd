# src/manuscript_pipeline/pipeline/stages/cover_brief.py — v1
"""Cover design brief for a designer or an image model."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.llm.token_budget import head_excerpt
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse


class CoverBriefResponse(StageResponse):
    visual_concept: dict[str, str]
    color_palette: dict[str, str]
    typography: dict[str, str]
    mood_atmosphere: str
    genre_conventions: list[str] = Field(default_factory=list)
    ai_art_prompts: dict[str, str] = Field(default_factory=dict)
    designer_brief: str = Field(min_length=1)
    target_audience_appeal: str = ""


class CoverBriefStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "coverBrief"

    @property
    def description(self) -> str:
        return "Cover brief — imagery, palette, typography and art prompts"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return 0.8

    @property
    def response_schema(self) -> type[StageResponse]:
        return CoverBriefResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
            "opening": head_excerpt(inp.text),
        }
