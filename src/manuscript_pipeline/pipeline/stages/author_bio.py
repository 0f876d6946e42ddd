# src/manuscript_pipeline/pipeline/stages/author_bio.py — v1
"""Author biographies built from author-supplied details."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse

MAX_SOCIAL_BIO_CHARS = 160


def format_details(data: dict[str, Any], empty: str) -> str:
    """Render caller-supplied key/value details as prompt lines."""
    lines = [
        f"- {key}: {', '.join(map(str, value)) if isinstance(value, list) else value}"
        for key, value in sorted(data.items())
        if value not in (None, "", [])
    ]
    return "\n".join(lines) or empty


class AuthorBioResponse(StageResponse):
    short: str = Field(min_length=1)
    medium: str = Field(min_length=1)
    long: str = Field(min_length=1)
    tone: str = ""
    suggestions: list[str] = Field(default_factory=list)
    social_media_bio: str = Field(default="", max_length=MAX_SOCIAL_BIO_CHARS)


class AuthorBioStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "authorBio"

    @property
    def description(self) -> str:
        return "Author bio — short, medium, long and social profile versions"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def response_schema(self) -> type[StageResponse]:
        return AuthorBioResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "author_details": format_details(
                inp.options.author_data, empty="No author details provided."
            ),
            "digest": self.developmental_digest(inp),
        }
