# src/manuscript_pipeline/pipeline/stages/marketing.py — v1
"""Marketing stages: market analysis and social media launch posts.

Both read the finished asset results rather than the manuscript, so
their prompts stay small regardless of book length.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse


def description_text(inp: StageInput) -> str:
    """Medium-length book description from the bookDescription result."""
    desc = inp.parents.get("bookDescription", {})
    return desc.get("medium") or desc.get("short") or "Not available."


def keyword_text(inp: StageInput) -> str:
    return BaseStage.as_list(inp.parents.get("keywords", {}).get("keywords"))


def category_text(inp: StageInput) -> str:
    cats = inp.parents.get("categories", {})
    names = [c.get("name", c.get("code", "")) for c in cats.get("primary", []) + cats.get("secondary", [])]
    return BaseStage.as_list(names)


class PricePoint(StageResponse):
    recommended: float = Field(gt=0)
    rationale: str = ""


class Pricing(StageResponse):
    ebook: PricePoint
    paperback: PricePoint


class ComparableTitle(StageResponse):
    title: str
    author: str = ""
    reason: str = ""


class MarketAnalysisResponse(StageResponse):
    primary_genre: str
    sub_genres: list[str] = Field(default_factory=list)
    market_position: str
    target_readers: str = ""
    comparable_titles: list[ComparableTitle] = Field(default_factory=list)
    pricing: Pricing
    launch_strategy: list[str] = Field(default_factory=list)


class MarketAnalysisStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "marketAnalysis"

    @property
    def description(self) -> str:
        return "Market analysis — positioning, comparable titles, pricing"

    @property
    def dependencies(self) -> list[str]:
        return ["bookDescription", "keywords", "categories"]

    @property
    def temperature(self) -> float:
        return 0.5

    @property
    def response_schema(self) -> type[StageResponse]:
        return MarketAnalysisResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "book_description": description_text(inp),
            "keywords": keyword_text(inp),
            "categories": category_text(inp),
        }


class SocialMediaResponse(StageResponse):
    twitter: list[str] = Field(min_length=1)
    facebook: list[str] = Field(min_length=1)
    instagram: list[str] = Field(min_length=1)
    tiktok: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)


class SocialMediaStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "socialMedia"

    @property
    def description(self) -> str:
        return "Social media — launch posts per platform"

    @property
    def dependencies(self) -> list[str]:
        return ["bookDescription", "keywords"]

    @property
    def temperature(self) -> float:
        return 0.8

    @property
    def response_schema(self) -> type[StageResponse]:
        return SocialMediaResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "book_description": description_text(inp),
            "keywords": keyword_text(inp),
        }

    def check(self, response: StageResponse) -> None:
        long_posts = [p for p in response.twitter if len(p) > 280]  # type: ignore[attr-defined]
        if long_posts:
            raise ValueError(f"{len(long_posts)} twitter post(s) over 280 characters")
