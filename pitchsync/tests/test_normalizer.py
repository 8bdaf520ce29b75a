"""Tests for the pitch view model: defaults, positional answers and funding amounts."""
from __future__ import annotations

from datetime import datetime

import pytest

from conftest import FixedScoring
from pitchsync.models import Pitch, Profile
from pitchsync.normalizer import (
    ANSWER_COLUMNS,
    PITCH_QUESTIONS,
    PLACEHOLDER_DECK_URL,
    UNKNOWN_FOUNDER,
    answers_to_columns,
    format_funding_amount,
    normalize_pitch,
    parse_funding_amount,
)
from pitchsync.scoring import SCORE_MAX, SCORE_MIN, PlaceholderScoring, ScoringInput


def _full_pitch(**overrides) -> Pitch:
    values = dict(
        id="p-1", user_id="u-1", company_name="Acme", company_description="rockets.",
        industry="Hardware", location="Berlin", funding_stage="Seed", funding_amount=500000.0,
        pitch_deck_url="https://files/deck.pdf", intro_video_url="https://files/v.mp4",
        problem_statement="P", solution_description="S", traction="T",
        team_description="Team", growth_projections="G", status="shortlisted", ai_score=81,
        created_at=datetime(2025, 1, 2, 3, 4, 5),
    )
    values.update(overrides)
    pitch = Pitch(**values)
    pitch.profile = Profile(id="u-1", name="Fiona", email="fiona@example.com", role="founder")
    return pitch


class TestDefaults:
    def test_all_optional_fields_null(self):
        view = normalize_pitch(Pitch(id="p-2", company_name="Bare"))
        assert [a["answer"] for a in view["answers"]] == [""] * 5
        assert view["pitch_deck_url"] == PLACEHOLDER_DECK_URL
        assert SCORE_MIN <= view["ai_score"] < SCORE_MAX
        assert view["description"] == ""
        assert view["industry"] == ""
        assert view["location"] == ""
        assert view["video_url"] is None

    def test_missing_profile_uses_sentinels(self):
        view = normalize_pitch(Pitch(id="p-3", company_name="NoOwner"))
        assert view["founder_name"] == UNKNOWN_FOUNDER
        assert view["email"] == ""

    def test_profile_without_name(self):
        pitch = Pitch(id="p-4", company_name="X")
        pitch.profile = Profile(id="u", name=None, email=None, role="founder")
        view = normalize_pitch(pitch)
        assert view["founder_name"] == UNKNOWN_FOUNDER
        assert view["email"] == ""

    def test_status_defaults_to_new_and_created_at_is_filled(self):
        view = normalize_pitch(Pitch(id="p-5", company_name="X"))
        assert view["status"] == "new"
        assert view["created_at"]

    def test_missing_funding_amount_is_zero(self):
        view = normalize_pitch(Pitch(id="p-6", company_name="X"))
        assert view["funding_amount"] == "0"


class TestPresentFields:
    def test_answers_map_positionally(self):
        view = normalize_pitch(_full_pitch(), FixedScoring())
        assert [a["question"] for a in view["answers"]] == list(PITCH_QUESTIONS)
        assert [a["answer"] for a in view["answers"]] == ["P", "S", "T", "Team", "G"]

    def test_same_input_same_answers(self):
        pitch = _full_pitch()
        first = normalize_pitch(pitch, FixedScoring())["answers"]
        second = normalize_pitch(pitch, FixedScoring())["answers"]
        assert first == second

    def test_persisted_score_wins(self):
        scoring = FixedScoring(10)
        view = normalize_pitch(_full_pitch(ai_score=81), scoring)
        assert view["ai_score"] == 81
        assert scoring.calls == 0

    def test_zero_score_is_kept(self):
        scoring = FixedScoring(10)
        assert normalize_pitch(_full_pitch(ai_score=0), scoring)["ai_score"] == 0
        assert scoring.calls == 0

    def test_missing_score_is_synthesized(self):
        scoring = FixedScoring(66)
        assert normalize_pitch(_full_pitch(ai_score=None), scoring)["ai_score"] == 66
        assert scoring.calls == 1

    def test_founder_from_profile(self):
        view = normalize_pitch(_full_pitch(), FixedScoring())
        assert view["founder_name"] == "Fiona"
        assert view["email"] == "fiona@example.com"
        assert view["founder_id"] == "u-1"

    def test_summary_template(self):
        view = normalize_pitch(_full_pitch())
        assert view["ai_summary"] == (
            "Acme is developing rockets. The founder is seeking 500000 at Seed stage."
        )

    def test_created_at_iso(self):
        assert normalize_pitch(_full_pitch())["created_at"] == "2025-01-02T03:04:05"


class TestAnswersToColumns:
    def test_positional(self):
        cols = answers_to_columns(["a", "b", "c", "d", "e"])
        assert [cols[c] for c in ANSWER_COLUMNS] == ["a", "b", "c", "d", "e"]

    def test_short_list_pads_with_empty(self):
        cols = answers_to_columns(["only problem"])
        assert cols["problem_statement"] == "only problem"
        assert cols["growth_projections"] == ""

    def test_none_answers_become_empty(self):
        assert answers_to_columns([None, "x"])["problem_statement"] == ""

    def test_too_many_rejected(self):
        with pytest.raises(ValueError):
            answers_to_columns(["1", "2", "3", "4", "5", "6"])

    def test_write_then_read_keeps_position(self):
        answers = ["why", "how", "users", "who", "where"]
        pitch = Pitch(id="p", company_name="C", **answers_to_columns(answers))
        assert [a["answer"] for a in normalize_pitch(pitch)["answers"]] == answers


class TestFundingAmount:
    @pytest.mark.parametrize("text,expected", [
        ("$500,000", 500000.0),
        ("1.5M", 1.5),
        ("  250000 ", 250000.0),
        ("", 0.0),
        (None, 0.0),
        ("a lot", 0.0),
        ("-", 0.0),
        ("9" * 400, 0.0),
    ])
    def test_parse(self, text, expected):
        assert parse_funding_amount(text) == expected

    @pytest.mark.parametrize("value,expected", [
        (None, "0"),
        (0, "0"),
        (500000.0, "500000"),
        (1.5, "1.5"),
        (0.00001, "0.00001"),
        (float("inf"), "0"),
        (float("nan"), "0"),
    ])
    def test_format(self, value, expected):
        assert format_funding_amount(value) == expected

    def test_currency_formatting_is_not_recovered(self):
        stored = parse_funding_amount("$500,000")
        assert format_funding_amount(stored) == "500000"

    def test_small_amount_survives_reparse(self):
        assert parse_funding_amount(format_funding_amount(0.00001)) == 0.00001

    def test_view_exposes_numeric_amount(self):
        assert normalize_pitch(Pitch(id="p", funding_amount=1.5))["funding_value"] == 1.5
        assert normalize_pitch(Pitch(id="p", funding_amount=float("inf")))["funding_value"] == 0.0
        assert normalize_pitch(Pitch(id="p"))["funding_value"] == 0.0


class TestPlaceholderScoring:
    def test_range(self):
        scoring = PlaceholderScoring(seed=7)
        fields = ScoringInput("A", "B", "1", "Seed")
        assert all(SCORE_MIN <= scoring.score(fields) < SCORE_MAX for _ in range(200))

    def test_seed_is_reproducible(self):
        fields = ScoringInput("A", "B", "1", "Seed")
        first, second = PlaceholderScoring(seed=3), PlaceholderScoring(seed=3)
        assert [first.score(fields) for _ in range(5)] == [second.score(fields) for _ in range(5)]
