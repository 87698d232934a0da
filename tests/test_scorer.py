"""
Tests for similarity scoring.
"""

import pytest

from sitelog.entity_resolution.scorer import SimilarityScorer


@pytest.fixture
def scorer():
    return SimilarityScorer()


def test_identical_names_score_one(scorer):
    assert scorer.score("owen glassburn", "owen glassburn") == 1.0


def test_empty_input_scores_zero(scorer):
    assert scorer.score("", "kurt") == 0.0
    assert scorer.score("kurt", "") == 0.0


def test_transcription_split_caught_by_edit_signal(scorer):
    breakdown = scorer.score_breakdown("owen glass burner", "owen glassburn")
    # 3 edits over 17 characters
    assert breakdown.edit == pytest.approx(14 / 17)
    assert breakdown.token < breakdown.edit
    assert breakdown.combined == breakdown.edit
    assert breakdown.combined >= 0.80


def test_partial_name_caught_by_token_signal(scorer):
    breakdown = scorer.score_breakdown("russell", "scott russell")
    assert breakdown.token == 1.0
    assert breakdown.edit < 0.80
    assert scorer.score("russell", "scott russell") == 1.0


def test_reordered_name(scorer):
    assert scorer.score("glassburn owen", "owen glassburn") == 1.0


def test_unrelated_names_score_low(scorer):
    assert scorer.score("kurt", "brian smith") < 0.5


def test_scores_are_bounded(scorer):
    for a, b in [("a", "b"), ("abc", "abc supply"), ("x" * 50, "y")]:
        assert 0.0 <= scorer.score(a, b) <= 1.0


def test_best_score_over_names(scorer):
    names = ["owen glassburn", "owen", "ogb"]
    assert scorer.best_score("owen", names) == 1.0
    assert scorer.best_score("owen glass burner", ["kurt"]) < scorer.best_score(
        "owen glass burner", names
    )
    assert scorer.best_score("owen", []) == 0.0
