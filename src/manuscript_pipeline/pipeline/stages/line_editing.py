# src/manuscript_pipeline/pipeline/stages/line_editing.py — v1
"""Line edit: prose-level issues with concrete rewrites.

The manuscript is read in 800-word sections. Each section answer follows
LineEditingResponse; the stored result is a LineEditingReport with the
cross-section patterns, an overall assessment and the top 20 suggestions.
"""

from __future__ import annotations

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

SECTION_WORDS = 800
TOP_SUGGESTIONS = 20

Severity = Literal["high", "medium", "low"]
Variety = Literal["good", "needs_work", "poor"]

SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}
# Issue types fixed first within one severity
TYPE_RANK = {
    "show_not_tell": 0,
    "passive_voice": 1,
    "weak_verb": 2,
    "redundancy": 3,
    "adverb": 4,
    "sentence_variety": 5,
    "cliche": 6,
    "other": 7,
}


# --- Per-section answer ---


class LineIssue(StageResponse):
    type: str
    severity: Severity
    location: str = ""
    original: str
    suggestion: str
    explanation: str = ""


class ReadabilityMetrics(StageResponse):
    average_sentence_length: float = 0.0
    passive_voice_count: int = 0
    adverb_count: int = 0
    sentence_variety: Variety = "good"


class LineEditingResponse(StageResponse):
    overall_score: int = Field(ge=1, le=10)
    issues: list[LineIssue]
    strengths: list[str] = Field(default_factory=list)
    readability_metrics: ReadabilityMetrics = Field(default_factory=ReadabilityMetrics)


# --- Stored report ---


class LineSuggestion(LineIssue):
    section_number: int
    word_range: str


class LinePatterns(StageResponse):
    total_sections: int
    analyzed_sections: int
    average_score: float
    issue_type_counts: dict[str, int]
    total_issues: int
    passive_voice_total: int
    adverb_total: int
    average_sentence_length_overall: float
    sentence_variety_distribution: dict[str, int]


class LineAssessment(StageResponse):
    overall_prose_score: float
    summary: str
    key_strengths: list[str]
    key_weaknesses: list[str]
    urgent_issues: list[str]


class LineSectionSummary(StageResponse):
    section_number: int
    word_range: str
    overall_score: int
    issue_count: int


class LineEditingReport(StageResponse):
    overall_assessment: LineAssessment
    patterns: LinePatterns
    top_suggestions: list[LineSuggestion]
    sections: list[LineSectionSummary]
    unanalyzed_sections: list[int] = Field(default_factory=list)


def _summary(score: float) -> str:
    if score >= 8:
        return "Strong prose with minimal issues. Focus on fine-tuning."
    if score >= 6:
        return "Solid foundation with room for improvement in several areas."
    return "Prose needs significant revision to meet publishing standards."


class LineEditingStage(BaseStage):
    @property
    def stage_id(self) -> str:
        return "lineEditing"

    @property
    def description(self) -> str:
        return "Line edit — word choice, sentence rhythm, show vs tell"

    @property
    def kind(self) -> StageKind:
        return "analysis"

    @property
    def criticality(self) -> Criticality:
        return "required"

    @property
    def dependencies(self) -> list[str]:
        return ["developmental"]

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
        return LineEditingResponse

    def prompt_fields(self, inp: StageInput) -> dict[str, Any]:
        priorities = inp.parents["developmental"].get("topPriorities", [])
        section = self.current_section(inp)
        return {
            "genre": self.genre_of(inp),
            "priorities": "\n".join(f"- {p}" for p in priorities) or "- none",
            "section_label": f"{section.number} of {section.total}, words {section.word_range}",
            "manuscript_text": section.text,
        }

    def merge_sections(self, inp: StageInput, outcomes: list[SectionOutcome]) -> LineEditingReport:
        analyzed = [(o.section, o.response) for o in outcomes if o.ok]
        patterns = self._patterns(len(outcomes), [r for _, r in analyzed])

        suggestions = [
            LineSuggestion(
                **issue.model_dump(),
                section_number=section.number,
                word_range=section.word_range,
            )
            for section, response in analyzed
            for issue in response.issues
        ]
        suggestions.sort(
            key=lambda s: (SEVERITY_RANK[s.severity], TYPE_RANK.get(s.type, 10))
        )

        return LineEditingReport(
            overall_assessment=self._assessment(patterns, [r for _, r in analyzed]),
            patterns=patterns,
            top_suggestions=suggestions[:TOP_SUGGESTIONS],
            sections=[
                LineSectionSummary(
                    section_number=section.number,
                    word_range=section.word_range,
                    overall_score=response.overall_score,
                    issue_count=len(response.issues),
                )
                for section, response in analyzed
            ],
            unanalyzed_sections=[o.section.number for o in outcomes if not o.ok],
        )

    @staticmethod
    def _patterns(total: int, answers: list[LineEditingResponse]) -> LinePatterns:
        type_counts = Counter(issue.type for a in answers for issue in a.issues)
        variety = Counter({"good": 0, "needs_work": 0, "poor": 0})
        variety.update(a.readability_metrics.sentence_variety for a in answers)
        lengths = [
            a.readability_metrics.average_sentence_length
            for a in answers
            if a.readability_metrics.average_sentence_length
        ]
        scores = [a.overall_score for a in answers]
        return LinePatterns(
            total_sections=total,
            analyzed_sections=len(answers),
            average_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            issue_type_counts=dict(type_counts),
            total_issues=sum(type_counts.values()),
            passive_voice_total=sum(a.readability_metrics.passive_voice_count for a in answers),
            adverb_total=sum(a.readability_metrics.adverb_count for a in answers),
            average_sentence_length_overall=(
                round(sum(lengths) / len(lengths), 1) if lengths else 0.0
            ),
            sentence_variety_distribution=dict(variety),
        )

    @staticmethod
    def _assessment(patterns: LinePatterns, answers: list[LineEditingResponse]) -> LineAssessment:
        weaknesses = [
            f"{kind.replace('_', ' ')}: {count} instances"
            for kind, count in Counter(patterns.issue_type_counts).most_common(3)
        ]
        strengths = list(dict.fromkeys(s for a in answers for s in a.strengths))[:5]

        urgent: list[str] = []
        high = sum(1 for a in answers for issue in a.issues if issue.severity == "high")
        if high > 10:
            urgent.append(f"{high} high-severity prose issues need immediate attention")
        if patterns.passive_voice_total > 50:
            urgent.append(f"Excessive passive voice ({patterns.passive_voice_total} instances)")
        if patterns.adverb_total > 100:
            urgent.append(f"Adverb overuse ({patterns.adverb_total} instances)")

        return LineAssessment(
            overall_prose_score=patterns.average_score,
            summary=_summary(patterns.average_score),
            key_strengths=strengths,
            key_weaknesses=weaknesses,
            urgent_issues=urgent,
        )
