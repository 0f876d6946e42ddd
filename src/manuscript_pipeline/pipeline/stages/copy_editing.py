# src/manuscript_pipeline/pipeline/stages/copy_editing.py — v1
"""Copy edit: grammar, punctuation, spelling and house style.

Sections of 1,000 words are checked one call each. The stored
CopyEditingReport adds manuscript-wide consistency checks (name
variants, number style) computed locally and keeps the top 30 errors.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Literal

from pydantic import Field

from manuscript_pipeline.core.models import Criticality, StageKind
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import (
    SectionOutcome,
    StageInput,
    StageResponse,
)

SECTION_WORDS = 1_000
TOP_ISSUES = 30
MAX_NAME_VARIATIONS = 20

_STYLE_GUIDE_NAMES = {
    "chicago": "Chicago Manual of Style",
    "ap": "AP Stylebook",
    "custom": "author's house",
}

Level = Literal["high", "medium", "low"]
ErrorType = Literal["grammar", "punctuation", "spelling", "capitalization", "formatting"]

SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}
TYPE_RANK = {"grammar": 0, "punctuation": 1, "spelling": 2, "capitalization": 3, "formatting": 4}

# Capitalized words that start sentences far more often than they name anyone
_COMMON_STARTERS = frozenset({"The", "A", "An", "I", "It", "He", "She", "They"})
_NUMBER_WORD = re.compile(
    r"\b(one|two|three|four|five|six|seven|eight|nine|ten|\d+)\b", re.IGNORECASE
)


# --- Per-section answer ---


class CopyError(StageResponse):
    type: ErrorType
    subtype: str = ""
    severity: Level
    location: str = ""
    original: str
    correction: str
    rule: str = ""
    confidence: Level = "medium"


class CopyEditingResponse(StageResponse):
    overall_score: int = Field(ge=1, le=10)
    error_count: int = Field(ge=0)
    errors: list[CopyError]
    strengths: list[str] = Field(default_factory=list)


# --- Stored report ---


class CopyIssue(CopyError):
    section_number: int
    word_range: str


class NameVariation(StageResponse):
    variations: list[str]
    counts: list[int]
    severity: Level = "high"
    suggestion: str


class NumberStyleIssue(StageResponse):
    severity: Level = "medium"
    spelled_out: int
    numerals: int
    suggestion: str


class ConsistencyIssues(StageResponse):
    character_names: list[NameVariation] = Field(default_factory=list)
    number_style: list[NumberStyleIssue] = Field(default_factory=list)


class CopyAssessment(StageResponse):
    overall_copy_score: float
    total_errors: int
    summary: str
    focus_areas: list[str]
    ready_for_publication: bool


class CopySectionSummary(StageResponse):
    section_number: int
    word_range: str
    overall_score: int
    error_count: int


class CopyEditingReport(StageResponse):
    overall_assessment: CopyAssessment
    errors_by_type: dict[str, int]
    consistency_issues: ConsistencyIssues
    top_issues: list[CopyIssue]
    sections: list[CopySectionSummary]
    unanalyzed_sections: list[int] = Field(default_factory=list)


# --- Manuscript-wide checks ---


def copy_score(total_errors: int) -> float:
    """Score from the error count of a novel-length manuscript."""
    if total_errors > 300:
        return 4.0
    if total_errors > 150:
        return 6.0
    if total_errors > 50:
        return 7.5
    if total_errors > 20:
        return 9.0
    return 10.0


def _copy_summary(score: float) -> str:
    if score >= 9:
        return "Excellent technical quality. Minimal corrections needed."
    if score >= 7:
        return "Good technical foundation with moderate corrections needed."
    if score >= 5:
        return "Significant technical issues requiring thorough revision."
    return "Extensive technical errors. Professional copy editing strongly recommended."


def names_look_alike(first: str, second: str) -> bool:
    """Possible spelling variants: one contains the other or at most two letters differ."""
    if abs(len(first) - len(second)) > 2:
        return False
    if first in second or second in first:
        return True
    diff = sum(1 for a, b in zip(first, second) if a != b)
    return diff + abs(len(first) - len(second)) <= 2


def find_name_variations(text: str) -> list[NameVariation]:
    counts: Counter[str] = Counter()
    for word in text.split():
        cleaned = re.sub(r"[^A-Za-z]", "", word)
        if len(cleaned) > 3 and cleaned[0].isupper() and cleaned not in _COMMON_STARTERS:
            counts[cleaned] += 1
    names = sorted(name for name, n in counts.items() if n > 1)

    found: list[NameVariation] = []
    for i, first in enumerate(names):
        for second in names[i + 1:]:
            if not names_look_alike(first, second):
                continue
            found.append(
                NameVariation(
                    variations=[first, second],
                    counts=[counts[first], counts[second]],
                    suggestion=(
                        f'Possible inconsistency: "{first}" ({counts[first]}x) '
                        f'vs "{second}" ({counts[second]}x)'
                    ),
                )
            )
            if len(found) >= MAX_NAME_VARIATIONS:
                return found
    return found


def check_number_style(text: str, style_guide: str) -> list[NumberStyleIssue]:
    numbers = _NUMBER_WORD.findall(text)
    numerals = sum(1 for n in numbers if n.isdigit())
    spelled = len(numbers) - numerals
    if spelled <= 10 or numerals <= 10:
        return []
    rule = (
        "Chicago style: spell out one through one hundred"
        if style_guide == "chicago"
        else "AP style: spell out one through nine"
    )
    return [
        NumberStyleIssue(
            spelled_out=spelled,
            numerals=numerals,
            suggestion=(
                f"Inconsistent number style: {spelled} spelled out vs {numerals} numerals. {rule}"
            ),
        )
    ]


class CopyEditingStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "copyEditing"

    @property
    def description(self) -> str:
        return "Copy edit — grammar, punctuation, spelling, style guide"

    @property
    def kind(self) -> StageKind:
        return "analysis"

    @property
    def criticality(self) -> Criticality:
        return "required"

    @property
    def dependencies(self) -> list[str]:
        return ["lineEditing"]

    @property
    def temperature(self) -> float:
        return 0.3

    @property
    def max_tokens(self) -> int:
        return 2048

    @property
    def section_words(self) -> int:
        return SECTION_WORDS

    @property
    def response_schema(self) -> type[StageResponse]:
        return CopyEditingResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        patterns = inp.parents["lineEditing"].get("patterns") or {}
        issue_types = sorted(patterns.get("issueTypeCounts") or {})
        section = self.current_section(inp)
        return {
            "style_guide": _STYLE_GUIDE_NAMES[inp.options.style_guide],
            "line_issue_types": self.as_list(issue_types, default="none"),
            "section_label": f"{section.number} of {section.total}, words {section.word_range}",
            "manuscript_text": section.text,
        }

    def merge_sections(self, inp: StageInput, outcomes: list[SectionOutcome]) -> CopyEditingReport:
        analyzed = [(o.section, o.response) for o in outcomes if o.ok]
        issues = [
            CopyIssue(
                **error.model_dump(),
                section_number=section.number,
                word_range=section.word_range,
            )
            for section, response in analyzed
            for error in response.errors
        ]
        issues.sort(key=lambda e: (SEVERITY_RANK[e.severity], TYPE_RANK.get(e.type, 10)))

        consistency = ConsistencyIssues(
            character_names=find_name_variations(inp.text),
            number_style=check_number_style(inp.text, inp.options.style_guide),
        )
        by_type = Counter({kind: 0 for kind in TYPE_RANK})
        by_type.update(issue.type for issue in issues)
        by_type["consistency"] = len(consistency.character_names) + len(consistency.number_style)

        total = len(issues)
        score = copy_score(total)
        focus = [
            f"{kind}: {count} errors"
            for kind, count in sorted(by_type.items(), key=lambda kv: -kv[1])
            if count > 10
        ]
        return CopyEditingReport(
            overall_assessment=CopyAssessment(
                overall_copy_score=score,
                total_errors=total,
                summary=_copy_summary(score),
                focus_areas=focus,
                ready_for_publication=score >= 9 and total < 20,
            ),
            errors_by_type=dict(by_type),
            consistency_issues=consistency,
            top_issues=issues[:TOP_ISSUES],
            sections=[
                CopySectionSummary(
                    section_number=section.number,
                    word_range=section.word_range,
                    overall_score=response.overall_score,
                    error_count=len(response.errors),
                )
                for section, response in analyzed
            ],
            unanalyzed_sections=[o.section.number for o in outcomes if not o.ok],
        )
