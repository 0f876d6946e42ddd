# src/manuscript_pipeline/pipeline/stages/back_matter.py — v1
"""Back matter: thank-you note, newsletter call to action, sign-off."""

from __future__ import annotations

from typing import Any

from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse
from manuscript_pipeline.pipeline.stages.author_bio import format_details


class NewsletterCta(StageResponse):
    headline: str
    body: str
    call_to_action: str


class BackMatterResponse(StageResponse):
    thank_you_message: str
    newsletter_cta: NewsletterCta
    connect_message: str = ""
    closing_line: str = ""


class BackMatterStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "backMatter"

    @property
    def description(self) -> str:
        return "Back matter — reader thank-you and newsletter signup"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def max_tokens(self) -> int:
        return 2048

    @property
    def response_schema(self) -> type[StageResponse]:
        return BackMatterResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "author_details": format_details(inp.options.author_data, empty="Not provided."),
            "digest": self.developmental_digest(inp),
        }
