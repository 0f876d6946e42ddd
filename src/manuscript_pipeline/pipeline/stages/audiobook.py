# src/manuscript_pipeline/pipeline/stages/audiobook.py — v1
"""Audiobook production suite.

narration and pronunciation and timing read the manuscript; samples and
metadata are assembled from the other stage results.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import Field

from manuscript_pipeline.llm.token_budget import count_words, head_excerpt
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import StageInput, StageResponse
from manuscript_pipeline.pipeline.stages.developmental import chapter_stats
from manuscript_pipeline.pipeline.stages.marketing import (
    category_text,
    description_text,
    keyword_text,
)

# Typical finished-audio narration rate
NARRATION_WORDS_PER_MINUTE = 155
MAX_PUBLISHER_SUMMARY_CHARS = 4000
# Temperature used where answers must be reproducible (pronunciations)
PRECISE_TEMPERATURE = 0.1


def _compact(result: dict[str, Any]) -> str:
    return json.dumps(result, ensure_ascii=False, sort_keys=True) if result else "Not available."


# --- Narration ---


class CharacterVoice(StageResponse):
    character: str
    voice_direction: str


class AudiobookNarrationResponse(StageResponse):
    narration_style: dict[str, str]
    character_voices: list[CharacterVoice] = Field(default_factory=list)
    production_notes: list[str] = Field(default_factory=list)


class AudiobookNarrationStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "audiobookNarration"

    @property
    def description(self) -> str:
        return "Audiobook narration — narrator profile and character voices"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental", "bookDescription"]

    @property
    def response_schema(self) -> type[StageResponse]:
        return AudiobookNarrationResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
            "book_description": description_text(inp),
            "opening": head_excerpt(inp.text),
        }


# --- Pronunciation ---


class PronunciationEntry(StageResponse):
    name: str = ""
    term: str = ""
    pronunciation: str
    notes: str = ""


class AudiobookPronunciationResponse(StageResponse):
    character_names: list[PronunciationEntry] = Field(default_factory=list)
    place_names: list[PronunciationEntry] = Field(default_factory=list)
    other_terms: list[PronunciationEntry] = Field(default_factory=list)
    overall_notes: str = ""


class AudiobookPronunciationStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "audiobookPronunciation"

    @property
    def description(self) -> str:
        return "Audiobook pronunciation guide for names and terms"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return PRECISE_TEMPERATURE

    @property
    def response_schema(self) -> type[StageResponse]:
        return AudiobookPronunciationResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "digest": self.developmental_digest(inp),
            "opening": head_excerpt(inp.text, 10_000),
        }


# --- Timing ---


class OverallTiming(StageResponse):
    total_listening_minutes: int = Field(gt=0)
    finished_hours: float | None = None
    rationale: str = ""


class ChapterEstimate(StageResponse):
    chapter: int = Field(ge=1)
    minutes: float = Field(ge=0)


class AudiobookTimingResponse(StageResponse):
    overall_timing: OverallTiming
    chapter_estimates: list[ChapterEstimate] = Field(default_factory=list)
    recording_sessions: str = ""


class AudiobookTimingStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "audiobookTiming"

    @property
    def description(self) -> str:
        return "Audiobook timing — listening time and chapter estimates"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

    @property
    def temperature(self) -> float:
        return 0.3

    @property
    def response_schema(self) -> type[StageResponse]:
        return AudiobookTimingResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        words = count_words(inp.text)
        chapters, _ = chapter_stats(inp.text)
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "total_words": words,
            "chapter_count": chapters,
            "words_per_minute": NARRATION_WORDS_PER_MINUTE,
            "baseline_minutes": max(1, round(words / NARRATION_WORDS_PER_MINUTE)),
            "digest": self.developmental_digest(inp),
        }


# --- Samples ---


class RetailSample(StageResponse):
    starts_at: str
    duration_minutes: float = Field(gt=0, le=15)
    reason: str = ""


class AuditionSample(StageResponse):
    passage: str
    purpose: str = ""


class AudiobookSamplesResponse(StageResponse):
    retail_audio_sample: RetailSample
    audition_samples: list[AuditionSample] = Field(min_length=1)


class AudiobookSamplesStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "audiobookSamples"

    @property
    def description(self) -> str:
        return "Audiobook samples — retail sample and narrator auditions"

    @property
    def dependencies(self) -> list[str]:
        return ["audiobookNarration", "audiobookTiming"]

    @property
    def response_schema(self) -> type[StageResponse]:
        return AudiobookSamplesResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "narration": _compact(inp.parents.get("audiobookNarration", {})),
            "timing": _compact(inp.parents.get("audiobookTiming", {}).get("overallTiming", {})),
            "opening": head_excerpt(inp.text),
        }


# --- Metadata ---


class AudiobookMetadataResponse(StageResponse):
    title_metadata: dict[str, str]
    publisher_summary: str = Field(min_length=1, max_length=MAX_PUBLISHER_SUMMARY_CHARS)
    keywords: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    narrator_credit: str = ""


class AudiobookMetadataStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "audiobookMetadata"

    @property
    def description(self) -> str:
        return "Audiobook metadata — distribution title data and summary"

    @property
    def dependencies(self) -> list[str]:
        return ["bookDescription", "keywords", "categories", "authorBio", "audiobookNarration"]

    @property
    def temperature(self) -> float:
        return 0.5

    @property
    def response_schema(self) -> type[StageResponse]:
        return AudiobookMetadataResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        narration = inp.parents.get("audiobookNarration", {})
        return {
            "genre": self.genre_of(inp),
            "title": self.title_of(inp),
            "book_description": description_text(inp),
            "keywords": keyword_text(inp),
            "categories": category_text(inp),
            "author_bio": inp.parents.get("authorBio", {}).get("medium", "Not available."),
            "narration_style": _compact(narration.get("narrationStyle", {})),
        }
