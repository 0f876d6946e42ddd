# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides fast settings, a scripted LLM client answering every stage with a
valid response, sample manuscripts and a fully wired in-memory
PipelineContext. No external services: every backend runs in-process.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from manuscript_pipeline.api.facade import PipelineContext
from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.models import SubmitOptions
from manuscript_pipeline.llm.base_client import BaseLLMClient
from manuscript_pipeline.llm.models import LLMResponse, Message
from manuscript_pipeline.llm.token_budget import estimate_tokens
from manuscript_pipeline.logging.context import get_context
from manuscript_pipeline.queue.memory_queue import MemoryJobQueue
from manuscript_pipeline.storage.memory_store import MemoryObjectStore

SCRIPTED_OUTPUT_TOKENS = 500


# === Valid answers per stage (camelCase, as an LLM would return them) ===


def _section(score: int = 7) -> dict[str, Any]:
    return {
        "score": score,
        "strengths": ["Clear stakes"],
        "weaknesses": ["Slow middle"],
        "recommendations": ["Tighten act two"],
    }


def _category(code: str, name: str) -> dict[str, Any]:
    return {"code": code, "name": name, "rationale": "Fits the audience", "competitionLevel": "medium"}


VALID_ANSWERS: dict[str, dict[str, Any]] = {
    "developmental": {
        "overallScore": 7,
        "structure": _section(),
        "characters": _section(8),
        "plot": _section(6),
        "voice": _section(8),
        "genreFit": _section(7),
        "topPriorities": ["Raise the midpoint stakes", "Trim the prologue"],
        "marketability": {"score": 7, "summary": "Solid commercial appeal"},
    },
    "lineEditing": {
        "overallScore": 7,
        "issues": [
            {
                "type": "filter_words",
                "severity": "medium",
                "location": "Chapter 1",
                "original": "She saw the door open.",
                "suggestion": "The door opened.",
                "explanation": "Removes a filter verb",
            }
        ],
        "strengths": ["Vivid imagery"],
        "readabilityMetrics": {
            "averageSentenceLength": 14.5,
            "passiveVoiceCount": 3,
            "adverbCount": 12,
            "sentenceVariety": "good",
        },
    },
    "copyEditing": {
        "overallScore": 8,
        "errorCount": 1,
        "errors": [
            {
                "type": "punctuation",
                "severity": "low",
                "original": "Its late",
                "correction": "It's late",
                "rule": "Contractions take an apostrophe",
            }
        ],
        "strengths": ["Consistent tense"],
    },
    "bookDescription": {
        "short": "A lighthouse keeper hides a storm-born secret.",
        "medium": "When the storm comes, Mara must choose between her island and the truth.",
        "long": "Mara has kept the lighthouse for ten years. " * 5,
        "hooks": ["What the sea returns, it expects back."],
        "keyWords": ["lighthouse", "storm"],
        "targetAudience": "Readers of atmospheric literary suspense",
        "comparisonLine": "For fans of The Lighthouse Keeper's Daughter",
    },
    "keywords": {
        "keywords": [
            "atmospheric island mystery",
            "lighthouse keeper novel",
            "storm suspense fiction",
            "family secret thriller",
            "coastal gothic story",
            "female lead suspense",
            "slow burn literary mystery",
        ],
        "rationale": {"atmospheric island mystery": "High intent phrase"},
        "searchVolume": "medium",
        "competitionLevel": "low",
    },
    "categories": {
        "primary": [_category("FIC031000", "Fiction / Thrillers / General")],
        "secondary": [
            _category("FIC019000", "Fiction / Literary"),
            _category("FIC030000", "Fiction / Thrillers / Suspense"),
            _category("FIC022000", "Fiction / Mystery & Detective / General"),
        ],
        "alternative": [],
        "recommendations": ["Lead with suspense"],
    },
    "authorBio": {
        "short": "J. Doe writes coastal suspense.",
        "medium": "J. Doe grew up by the sea and writes suspense about it.",
        "long": "J. Doe grew up by the sea. " * 4,
        "tone": "warm",
        "socialMediaBio": "Coastal suspense author.",
    },
    "backMatter": {
        "thankYouMessage": "Thank you for reading.",
        "newsletterCta": {
            "headline": "Stay in touch",
            "body": "Get a free short story.",
            "callToAction": "Sign up today",
        },
        "connectMessage": "Find me online.",
        "closingLine": "Until the next storm.",
    },
    "coverBrief": {
        "visualConcept": {"primaryImage": "A lighthouse in a storm"},
        "colorPalette": {"primary": "slate blue"},
        "typography": {"titleFont": "condensed serif"},
        "moodAtmosphere": "Brooding and tense",
        "genreConventions": ["Lone figure", "Weather"],
        "aiArtPrompts": {"midjourney": "lighthouse, storm, cinematic"},
        "designerBrief": "Dark, wet, a single lit window.",
    },
    "seriesDescription": {
        "seriesTagline": "Every island keeps a secret.",
        "shortSeriesDescription": "A coastal suspense series.",
        "longSeriesDescription": "Three islands, three keepers, one storm.",
        "bookByBookArc": [{"bookNumber": 1, "tentativeTitle": "The Keeper"}],
    },
    "marketAnalysis": {
        "primaryGenre": "Suspense",
        "subGenres": ["Literary suspense"],
        "marketPosition": "Upmarket suspense with literary voice",
        "comparableTitles": [{"title": "Shutter Island", "author": "Dennis Lehane"}],
        "pricing": {
            "ebook": {"recommended": 4.99, "rationale": "Genre norm"},
            "paperback": {"recommended": 16.99},
        },
        "launchStrategy": ["Pre-order campaign"],
    },
    "socialMedia": {
        "twitter": ["The storm is coming. #suspense"],
        "facebook": ["Meet Mara, keeper of the last lighthouse."],
        "instagram": ["Lighthouse at dusk, storm on the horizon."],
        "hashtags": ["#booktok", "#suspense"],
    },
    "audiobookNarration": {
        "narrationStyle": {"tone": "hushed", "pacing": "measured"},
        "characterVoices": [{"character": "Mara", "voiceDirection": "Low and guarded"}],
        "productionNotes": ["Leave room for silence"],
    },
    "audiobookPronunciation": {
        "characterNames": [{"name": "Mara", "pronunciation": "MAH-rah"}],
        "placeNames": [{"name": "Skerry", "pronunciation": "SKEH-ree"}],
        "otherTerms": [],
        "overallNotes": "Soft Scottish vowels",
    },
    "audiobookTiming": {
        "overallTiming": {"totalListeningMinutes": 387, "finishedHours": 6.5},
        "chapterEstimates": [{"chapter": 1, "minutes": 19.5}],
        "recordingSessions": "Four sessions",
    },
    "audiobookSamples": {
        "retailAudioSample": {"startsAt": "Chapter 1", "durationMinutes": 5, "reason": "Strong hook"},
        "auditionSamples": [{"passage": "The light went out.", "purpose": "Tension"}],
    },
    "audiobookMetadata": {
        "titleMetadata": {"title": "The Keeper", "subtitle": "A Novel"},
        "publisherSummary": "A lighthouse keeper hides a storm-born secret.",
        "keywords": ["lighthouse"],
        "categories": ["Suspense"],
        "narratorCredit": "Read by A. Voice",
    },
    "epub": {
        "structure": {"frontMatter": ["Title page"], "backMatter": ["About the author"]},
        "chapterHeadings": "Numbered, small caps",
        "sceneBreaks": "Centered asterism",
    },
    "pdf": {
        "trimSize": "5.5 x 8.5 in",
        "estimatedPageCount": 240,
        "margins": {"inside": "0.875 in"},
        "chapterOpenings": "Recto, drop cap",
    },
}


# === Scripted LLM client ===


class ScriptedLLM(BaseLLMClient):
    """LLM double that answers by stage.

    The stage is taken from the logging context that the orchestrator sets
    inside each stage task. Queued failures (exceptions or raw answer
    strings) are consumed before the default answer is used, and gates let
    a test hold a stage inside its LLM call.
    """

    def __init__(self, model: str = "scripted-model") -> None:
        self._model = model
        self.answers: dict[str, Any] = {k: dict(v) for k, v in VALID_ANSWERS.items()}
        self.failures: dict[str, list[BaseException | str]] = {}
        self.calls: list[dict[str, Any]] = []
        self._gates: dict[str, asyncio.Event] = {}
        self._entered: dict[str, asyncio.Event] = {}

    def fail(self, stage_id: str, *outcomes: BaseException | str) -> None:
        """Queue outcomes for the next calls of a stage."""
        self.failures.setdefault(stage_id, []).extend(outcomes)

    def hold(self, stage_id: str) -> asyncio.Event:
        """Block calls of a stage until the returned event is set."""
        return self._gates.setdefault(stage_id, asyncio.Event())

    def entered(self, stage_id: str) -> asyncio.Event:
        """Event set as soon as a call for the stage starts."""
        return self._entered.setdefault(stage_id, asyncio.Event())

    def calls_for(self, stage_id: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["stage"] == stage_id]

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        idempotency_key: str | None = None,
    ) -> LLMResponse:
        ctx = get_context()
        stage = ctx.stage
        assert stage is not None, "ScriptedLLM needs a stage in the logging context"
        prompt = messages[-1].content
        self.calls.append(
            {
                "stage": stage,
                "attempt": ctx.attempt,
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "idempotency_key": idempotency_key,
            }
        )
        self.entered(stage).set()
        gate = self._gates.get(stage)
        if gate is not None:
            await gate.wait()

        answer = self.answers[stage]
        content = answer if isinstance(answer, str) else json.dumps(answer)
        queued = self.failures.get(stage)
        if queued:
            outcome = queued.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            content = outcome

        return LLMResponse(
            content=content,
            input_tokens=estimate_tokens(prompt),
            output_tokens=SCRIPTED_OUTPUT_TOKENS,
            model=self._model,
            provider="scripted",
            latency_ms=1,
            request_id=idempotency_key,
        )

    @property
    def provider_name(self) -> str:
        return "scripted"

    @property
    def model(self) -> str:
        return self._model


# === Manuscripts ===


def make_manuscript(words: int = 60_000, chapters: int = 20) -> str:
    """Plain-text manuscript of about ``words`` words split into chapters."""
    per_chapter = max(1, words // chapters)
    sentence = "The keeper climbed the stairs while the storm pressed at the glass"
    sentence_words = sentence.split()
    body: list[str] = []
    for n in range(1, chapters + 1):
        chunk = [sentence_words[i % len(sentence_words)] for i in range(per_chapter - 2)]
        body.append(f"Chapter {n}\n" + " ".join(chunk) + ".")
    return "\n\n".join(body)


# === Fixtures ===


def build_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "_env_file": None,
        "object_store_backend": "memory",
        "ledger_backend": "memory",
        "queue_backend": "memory",
        "retry_base_s": 0.01,
        "retry_cap_s": 0.02,
        "cancel_poll_interval_sec": 0.01,
        "heartbeat_interval_sec": 1.0,
        "visibility_timeout_sec": 30.0,
        "dequeue_timeout_sec": 0.05,
        "stage_timeout_sec": 10.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for fast, in-memory Settings with overrides."""
    return build_settings


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def make_context(llm: ScriptedLLM) -> Callable[..., PipelineContext]:
    """Factory wiring a PipelineContext around the scripted LLM."""

    def _make(
        settings: Settings | None = None,
        *,
        store: MemoryObjectStore | None = None,
        queue: MemoryJobQueue | None = None,
        llm_client: BaseLLMClient | None = None,
    ) -> PipelineContext:
        settings = settings or build_settings()
        return PipelineContext.from_settings(
            settings,
            store=store or MemoryObjectStore(),
            queue=queue
            or MemoryJobQueue(
                visibility_timeout_sec=settings.visibility_timeout_sec,
                max_deliveries=settings.max_deliveries,
                poll_interval_sec=0.01,
            ),
            llm_client=llm_client or llm,
        )

    return _make


@pytest.fixture
def ctx(make_context: Callable[..., PipelineContext], settings: Settings) -> PipelineContext:
    return make_context(settings)


@pytest.fixture
def manuscript_text() -> str:
    return make_manuscript()


@pytest.fixture
def small_manuscript() -> str:
    return make_manuscript(words=2_000, chapters=4)


@pytest.fixture
def options() -> SubmitOptions:
    return SubmitOptions(user_id="u1", genre="suspense")


@pytest.fixture
def scripted_llm_cls() -> type[ScriptedLLM]:
    return ScriptedLLM


@pytest.fixture
def valid_answers() -> dict[str, dict[str, Any]]:
    """Deep copy of the valid answer for every stage, safe to mutate."""
    return json.loads(json.dumps(VALID_ANSWERS))
