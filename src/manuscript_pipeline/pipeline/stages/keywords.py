# src/manuscript_pipeline/pipeline/stages/keywords.py — v1
"""Search keywords for retailer discoverability.

Retailers accept exactly seven keyword slots of at most 50 characters
each; answers outside those limits are rejected so the analyzer can
request a repair.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse

KEYWORD_SLOTS = 7
MAX_KEYWORD_CHARS = 50

Level = Literal["high", "medium", "low"]


class KeywordsResponse(StageResponse):
    keywords: list[str]
    rationale: dict[str, str] = Field(default_factory=dict)
    search_volume: Level = "medium"
    competition_level: Level = "medium"


class KeywordsStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "keywords"

    @property
    def description(self) -> str:
        return "Keywords — seven search phrases for retailer discoverability"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return 0.5

    @property
    def max_tokens(self) -> int:
        return 2048

    @property
    def response_schema(self) -> type[StageResponse]:
        return KeywordsResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
        }

    def check(self, response: StageResponse) -> None:
        keywords = response.keywords  # type: ignore[attr-defined]
        if len(keywords) != KEYWORD_SLOTS:
            raise ValueError(f"expected exactly {KEYWORD_SLOTS} keywords, got {len(keywords)}")
        too_long = [k for k in keywords if len(k) > MAX_KEYWORD_CHARS]
        if too_long:
            raise ValueError(
                f"keywords over {MAX_KEYWORD_CHARS} characters: {too_long}"
            )
        if any(not k.strip() for k in keywords):
            raise ValueError("empty keyword")
