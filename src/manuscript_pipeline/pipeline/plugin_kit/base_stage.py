# src/manuscript_pipeline/pipeline/plugin_kit/base_stage.py — v1
"""Standard stage interface for the analysis DAG.

A stage is pure description: identity, edges, prompt and response
contract. It never calls the LLM or touches storage itself; the
Analyzer does that for every stage in the same way.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from manuscript_pipeline.core.models import Criticality, StageKind
from manuscript_pipeline.pipeline.plugin_kit.models import (
    SectionOutcome,
    StageInput,
    StageResponse,
    TextSection,
)

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

DEFAULT_SYSTEM_PROMPT = (
    "You are an experienced publishing professional. "
    "Respond only with a single valid JSON object."
)

REPAIR_INSTRUCTION = (
    "\n\nIMPORTANT: your previous answer could not be used ({hint}). "
    "Return ONLY one valid JSON object with exactly the structure requested above, "
    "with no text before or after it."
)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class BaseStage(ABC):
    """Standard interface for all pipeline stages."""

    def __init__(self) -> None:
        self._prompt_template: str | None = None

    # --- Identity and edges ---

    @property
    @abstractmethod
    def stage_id(self) -> str:
        """Unique stage identifier (e.g. 'developmental', 'keywords')."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what this stage produces."""

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def kind(self) -> StageKind:
        return "asset"

    @property
    def criticality(self) -> Criticality:
        return "optional"

    @property
    def dependencies(self) -> list[str]:
        """Stage ids whose results this stage reads."""
        return []

    # --- LLM call parameters ---

    @property
    def temperature(self) -> float:
        return 0.7

    @property
    def max_tokens(self) -> int:
        return 4096

    @property
    def system_prompt(self) -> str:
        return DEFAULT_SYSTEM_PROMPT

    @property
    @abstractmethod
    def response_schema(self) -> type[StageResponse]:
        """Pydantic model the parsed answer must satisfy."""

    @property
    def prompt_file(self) -> Path:
        return PROMPTS_DIR / f"{self.stage_id}.txt"

    # --- Prompt ---

    @abstractmethod
    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        """Values substituted into the prompt template."""

    def _load_prompt(self) -> str:
        """Load and cache prompt template."""
        if self._prompt_template is None:
            self._prompt_template = self.prompt_file.read_text(encoding="utf-8")
        return self._prompt_template

    def build_prompt(self, inp: StageInput) -> str:
        """Fill the template; append the repair instruction on a repair attempt."""
        prompt = self._load_prompt().format(**self.prompt_fields(inp))
        if inp.repair_hint:
            prompt += REPAIR_INSTRUCTION.format(hint=inp.repair_hint)
        return prompt

    # --- Response ---

    def parse_response(self, content: str) -> dict[str, Any]:
        """Parse the LLM answer, handling markdown fences and surrounding prose.

        Raises:
            ValueError: If no JSON object can be decoded.
        """
        text = content.strip()
        if text.startswith("```"):
            lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
            text = "\n".join(lines)
        match = _JSON_OBJECT.search(text)
        if match is None:
            raise ValueError("no JSON object in response")
        parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict):
            raise ValueError("response is not a JSON object")
        return parsed

    def validate_response(self, data: dict[str, Any]) -> StageResponse:
        """Validate parsed data against the response contract.

        Raises:
            pydantic.ValidationError: Schema mismatch.
            ValueError: A semantic check in check() failed.
        """
        response = self.response_schema.model_validate(data)
        self.check(response)
        return response

    def check(self, response: StageResponse) -> None:
        """Semantic checks beyond the schema. Override to add rules."""

    # --- Sectioned stages ---

    @property
    def section_words(self) -> int | None:
        """Words per call for stages that read the whole manuscript.

        None means a single call. Otherwise the analyzer calls the LLM
        once per section (response_schema applies to each answer) and
        stores what merge_sections() builds from them.
        """
        return None

    def split_sections(self, text: str) -> list[TextSection]:
        size = self.section_words
        if not size:
            raise NotImplementedError(f"{self.stage_id} is not a sectioned stage")
        words = text.split()
        starts = range(0, len(words), size) if words else [0]
        total = len(starts)
        return [
            TextSection(
                number=n,
                start_word=start,
                end_word=min(start + size, len(words)),
                total=total,
                text=" ".join(words[start:start + size]),
            )
            for n, start in enumerate(starts, start=1)
        ]

    def merge_sections(self, inp: StageInput, outcomes: list[SectionOutcome]) -> StageResponse:
        """Combine per-section answers into the stored stage result."""
        raise NotImplementedError(f"{self.stage_id} is not a sectioned stage")

    def current_section(self, inp: StageInput) -> TextSection:
        """Section being analysed; the opening one when none is set."""
        if inp.section is not None:
            return inp.section
        return self.split_sections(inp.text)[0]

    # --- Helpers for prompt_fields ---

    @staticmethod
    def genre_of(inp: StageInput) -> str:
        return inp.options.genre or inp.manuscript.genre or "general"

    @staticmethod
    def title_of(inp: StageInput) -> str:
        return inp.manuscript.title or "Untitled"

    @staticmethod
    def as_list(values: Any, default: str = "N/A") -> str:
        if not values:
            return default
        return ", ".join(str(v) for v in values)

    def developmental_digest(self, inp: StageInput) -> str:
        """Short summary of the developmental analysis for downstream prompts."""
        dev = inp.parents.get("developmental", {})
        if not dev:
            return "No developmental analysis available."
        lines = [f"Overall Score: {dev.get('overallScore', 'N/A')}/10"]
        for section, label in (
            ("structure", "Structure"),
            ("characters", "Character"),
            ("plot", "Plot"),
            ("voice", "Voice"),
        ):
            strengths = (dev.get(section) or {}).get("strengths")
            lines.append(f"{label} Strengths: {self.as_list(strengths)}")
        lines.append(f"Top Priorities: {self.as_list(dev.get('topPriorities'))}")
        summary = (dev.get("marketability") or {}).get("summary")
        if summary:
            lines.append(f"Marketability: {summary}")
        return "\n".join(lines)
