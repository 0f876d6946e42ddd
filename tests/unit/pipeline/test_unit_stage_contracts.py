# tests/unit/pipeline/test_unit_stage_contracts.py — v1
"""Tests for plugin_kit/base_stage.py and the stage response contracts."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from manuscript_pipeline.config.stages import PROGRESS_WEIGHTS
from manuscript_pipeline.core.models import Manuscript, SubmitOptions
from manuscript_pipeline.pipeline.plugin_kit.base_stage import REPAIR_INSTRUCTION
from manuscript_pipeline.pipeline.plugin_kit.models import SectionOutcome, StageInput
from manuscript_pipeline.pipeline.registry import StageRegistry
from manuscript_pipeline.pipeline.stages.author_bio import format_details
from manuscript_pipeline.pipeline.stages.copy_editing import (
    check_number_style,
    copy_score,
    find_name_variations,
    names_look_alike,
)

ALL_STAGES = sorted(PROGRESS_WEIGHTS)


@pytest.fixture(scope="module")
def registry() -> StageRegistry:
    return StageRegistry.default()


def _input(stage_id: str, parents: dict, text: str = "Chapter 1\nThe keeper climbed.", **kw) -> StageInput:
    manuscript = Manuscript(
        manuscript_id="m1",
        owner_id="u1",
        raw_key="manuscripts/u1/m1",
        word_count=len(text.split()),
        uploaded_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        title="The Keeper",
        genre="suspense",
    )
    values = dict(
        report_id="r1",
        stage_id=stage_id,
        attempt=1,
        manuscript=manuscript,
        text=text,
        options=SubmitOptions(user_id="u1", author_data={"name": "J. Doe"}),
        parents=parents,
    )
    values.update(kw)
    return StageInput(**values)


class TestEveryStage:
    @pytest.mark.parametrize("stage_id", ALL_STAGES)
    def test_valid_answer_accepted(self, registry, valid_answers, stage_id):
        stage = registry.get_or_raise(stage_id)
        response = stage.validate_response(valid_answers[stage_id])
        assert response.model_dump(by_alias=True)

    @pytest.mark.parametrize("stage_id", ALL_STAGES)
    def test_prompt_builds_from_parents(self, registry, valid_answers, stage_id):
        stage = registry.get_or_raise(stage_id)
        parents = {dep: valid_answers[dep] for dep in stage.dependencies}
        prompt = stage.build_prompt(_input(stage_id, parents))
        assert prompt.strip()
        for field in stage.prompt_fields(_input(stage_id, parents)):
            assert "{" + field + "}" not in prompt

    @pytest.mark.parametrize("stage_id", ALL_STAGES)
    def test_call_parameters(self, registry, stage_id):
        stage = registry.get_or_raise(stage_id)
        assert 0.0 <= stage.temperature <= 1.0
        assert stage.max_tokens > 0
        assert stage.prompt_file.exists()
        assert stage.kind == ("analysis" if stage.criticality == "required" else "asset")


class TestBaseStage:
    @pytest.fixture
    def stage(self, registry):
        return registry.get_or_raise("keywords")

    def test_parse_plain(self, stage):
        assert stage.parse_response('{"a": 1}') == {"a": 1}

    def test_parse_markdown_fence(self, stage):
        assert stage.parse_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_surrounding_prose(self, stage):
        assert stage.parse_response('Here you go:\n{"a": {"b": 2}}\nHope it helps.') == {"a": {"b": 2}}

    @pytest.mark.parametrize("content", ["no json here", "[1, 2]", '{"a": '])
    def test_parse_failures(self, stage, content):
        with pytest.raises(ValueError):
            stage.parse_response(content)

    def test_repair_instruction_appended(self, stage, valid_answers):
        parents = {"developmental": valid_answers["developmental"]}
        plain = stage.build_prompt(_input("keywords", parents))
        repaired = stage.build_prompt(_input("keywords", parents, repair_hint="expected 7 keywords"))
        assert repaired == plain + REPAIR_INSTRUCTION.format(hint="expected 7 keywords")

    def test_developmental_digest(self, stage, valid_answers):
        digest = stage.developmental_digest(_input("keywords", {"developmental": valid_answers["developmental"]}))
        assert "Overall Score: 7/10" in digest
        assert "Top Priorities: Raise the midpoint stakes, Trim the prologue" in digest
        assert "Marketability: Solid commercial appeal" in digest
        assert stage.developmental_digest(_input("keywords", {})) == "No developmental analysis available."

    def test_genre_prefers_options(self, stage):
        inp = _input("keywords", {}, options=SubmitOptions(user_id="u1", genre="horror"))
        assert stage.genre_of(inp) == "horror"
        assert stage.genre_of(_input("keywords", {})) == "suspense"

    def test_unknown_keys_dropped(self, stage, valid_answers):
        answer = dict(valid_answers["keywords"], chatter="ignored")
        assert "chatter" not in stage.validate_response(answer).model_dump(by_alias=True)

    def test_format_details(self):
        rendered = format_details({"name": "J. Doe", "awards": ["A", "B"], "site": ""}, empty="none")
        assert rendered == "- awards: A, B\n- name: J. Doe"
        assert format_details({}, empty="none") == "none"


class TestSemanticChecks:
    def _reject(self, registry, stage_id, answer, match=None):
        stage = registry.get_or_raise(stage_id)
        with pytest.raises((ValueError, ValidationError), match=match):
            stage.validate_response(answer)

    def test_keywords_count(self, registry, valid_answers):
        answer = valid_answers["keywords"]
        answer["keywords"] = answer["keywords"][:6]
        self._reject(registry, "keywords", answer, match="exactly 7")

    def test_keywords_length(self, registry, valid_answers):
        answer = valid_answers["keywords"]
        answer["keywords"][0] = "x" * 51
        self._reject(registry, "keywords", answer, match="over 50")

    def test_keywords_blank(self, registry, valid_answers):
        answer = valid_answers["keywords"]
        answer["keywords"][0] = "   "
        self._reject(registry, "keywords", answer, match="empty")

    def test_categories_duplicate_codes(self, registry, valid_answers):
        answer = valid_answers["categories"]
        answer["alternative"] = [dict(answer["primary"][0])]
        self._reject(registry, "categories", answer, match="duplicate")

    def test_categories_code_pattern(self, registry, valid_answers):
        answer = valid_answers["categories"]
        answer["primary"][0]["code"] = "fiction"
        self._reject(registry, "categories", answer)

    def test_categories_secondary_count(self, registry, valid_answers):
        answer = valid_answers["categories"]
        answer["secondary"] = answer["secondary"][:2]
        self._reject(registry, "categories", answer)

    def test_twitter_length(self, registry, valid_answers):
        answer = valid_answers["socialMedia"]
        answer["twitter"].append("x" * 281)
        self._reject(registry, "socialMedia", answer, match="280")

    def test_social_bio_length(self, registry, valid_answers):
        answer = valid_answers["authorBio"]
        answer["socialMediaBio"] = "x" * 161
        self._reject(registry, "authorBio", answer)

    def test_retail_sample_duration(self, registry, valid_answers):
        answer = valid_answers["audiobookSamples"]
        answer["retailAudioSample"]["durationMinutes"] = 16
        self._reject(registry, "audiobookSamples", answer)

    def test_developmental_requires_sections(self, registry, valid_answers):
        answer = valid_answers["developmental"]
        del answer["plot"]
        self._reject(registry, "developmental", answer)


class TestSectionedStages:
    @staticmethod
    def _outcomes(stage, answers: list[dict | None], words: int = 800):
        sections = stage.split_sections(" ".join(["word"] * words * len(answers)))
        return [
            SectionOutcome(
                section=section,
                response=stage.validate_response(answer) if answer is not None else None,
                error=None if answer is not None else "no JSON object in response",
            )
            for section, answer in zip(sections, answers)
        ]

    def test_split_by_word_count(self, registry):
        stage = registry.get_or_raise("lineEditing")
        sections = stage.split_sections(" ".join(f"w{i}" for i in range(2_000)))
        assert [s.word_range for s in sections] == ["0-800", "800-1600", "1600-2000"]
        assert [s.number for s in sections] == [1, 2, 3]
        assert {s.total for s in sections} == {3}
        assert sections[2].text.split()[0] == "w1600"
        assert registry.get_or_raise("copyEditing").section_words == 1_000

    def test_empty_text_is_one_section(self, registry):
        (section,) = registry.get_or_raise("copyEditing").split_sections("")
        assert (section.number, section.total, section.text) == (1, 1, "")

    def test_single_call_stage_has_no_sections(self, registry):
        stage = registry.get_or_raise("developmental")
        assert stage.section_words is None
        with pytest.raises(NotImplementedError):
            stage.split_sections("some text")

    def test_prompt_uses_section_text(self, registry, valid_answers):
        stage = registry.get_or_raise("lineEditing")
        text = " ".join(f"w{i}" for i in range(1_000))
        section = stage.split_sections(text)[1]
        inp = _input("lineEditing", {"developmental": valid_answers["developmental"]}, text=text, section=section)
        prompt = stage.build_prompt(inp)
        assert "section 2 of 2, words 800-1000" in prompt
        assert "w800" in prompt and "w799 " not in prompt

    def test_line_merge_prioritises_suggestions(self, registry, valid_answers):
        stage = registry.get_or_raise("lineEditing")
        base = valid_answers["lineEditing"]
        issue = base["issues"][0]
        noisy = dict(
            base,
            overallScore=5,
            issues=[dict(issue, type="cliche", severity="high")]
            + [dict(issue, type="adverb", severity="low")] * 12
            + [dict(issue, type="show_not_tell", severity="high")] * 11,
            readabilityMetrics=dict(base["readabilityMetrics"], passiveVoiceCount=60),
        )
        outcomes = self._outcomes(stage, [base, noisy, None])
        report = stage.merge_sections(_input("lineEditing", {}), outcomes)

        assert report.unanalyzed_sections == [3]
        assert report.patterns.total_sections == 3
        assert report.patterns.analyzed_sections == 2
        assert report.patterns.average_score == 6.0
        assert report.patterns.passive_voice_total == 63
        assert len(report.top_suggestions) == 20
        assert [s.type for s in report.top_suggestions[:12]] == ["show_not_tell"] * 11 + ["cliche"]
        assert report.top_suggestions[0].section_number == 2
        assert report.overall_assessment.summary.startswith("Solid foundation")
        assert report.overall_assessment.key_weaknesses[0] == "adverb: 12 instances"
        assert any("high-severity" in u for u in report.overall_assessment.urgent_issues)
        assert any("passive voice" in u for u in report.overall_assessment.urgent_issues)

    def test_copy_merge_scores_by_error_count(self, registry, valid_answers):
        stage = registry.get_or_raise("copyEditing")
        base = valid_answers["copyEditing"]
        error = base["errors"][0]
        heavy = dict(
            base,
            errors=[dict(error, type="spelling")] * 25 + [dict(error, type="grammar", severity="high")],
        )
        outcomes = self._outcomes(stage, [base, heavy], words=1_000)
        report = stage.merge_sections(_input("copyEditing", {}), outcomes)

        assessment = report.overall_assessment
        assert assessment.total_errors == 27
        assert assessment.overall_copy_score == 9.0
        assert not assessment.ready_for_publication
        assert assessment.focus_areas == ["spelling: 25 errors"]
        assert report.errors_by_type["punctuation"] == 1
        assert report.errors_by_type["consistency"] == 0
        assert report.top_issues[0].type == "grammar"
        assert len(report.top_issues) == 27

    @pytest.mark.parametrize(
        "errors,score", [(0, 10.0), (21, 9.0), (51, 7.5), (151, 6.0), (301, 4.0)]
    )
    def test_copy_score_thresholds(self, errors, score):
        assert copy_score(errors) == score

    def test_name_variations_flagged(self):
        text = "Katherine waved. Katharine smiled. Katherine left. Katharine stayed. Robert ran."
        (found,) = find_name_variations(text)
        assert found.variations == ["Katharine", "Katherine"]
        assert found.counts == [2, 2]
        assert not names_look_alike("Robert", "Katherine")

    def test_mixed_number_style_flagged(self):
        text = " ".join(["three"] * 11 + ["42"] * 11)
        (issue,) = check_number_style(text, "chicago")
        assert (issue.spelled_out, issue.numerals) == (11, 11)
        assert "Chicago" in issue.suggestion
        assert check_number_style("three 42", "ap") == []
