"""Tests for description similarity."""

import pytest

from reconmatch.engine.similarity import (
    SimilarityAlgorithm,
    TextSimilarity,
    advanced_similarity,
    jaccard_similarity,
    jaro_winkler_similarity,
    levenshtein_similarity,
    normalize_text,
)


class TestNormalize:

    def test_accents_punctuation_and_spaces(self):
        assert normalize_text("Virement  Société-Générale!") == "virement societe generale"

    def test_none_is_empty(self):
        assert normalize_text(None) == ""


class TestAlgorithms:

    def test_jaccard(self):
        assert jaccard_similarity("a b c", "b c d") == pytest.approx(0.5)

    def test_jaccard_empty_side(self):
        assert jaccard_similarity("", "anything") == 0.0

    def test_levenshtein(self):
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_levenshtein_both_empty(self):
        assert levenshtein_similarity("", "") == 1.0

    def test_jaro_winkler_identical_and_empty(self):
        assert jaro_winkler_similarity("ACME", "acme") == 1.0
        assert jaro_winkler_similarity("acme", "") == 0.0

    def test_jaro_winkler_rewards_common_prefix(self):
        assert jaro_winkler_similarity("acme corp", "acme inc") > jaro_winkler_similarity(
            "corp acme", "inc acme"
        )

    def test_advanced_identical(self):
        assert advanced_similarity("Client A", "client a") == 1.0

    def test_advanced_containment(self):
        score = advanced_similarity("acme", "acme corp")
        assert 0.7 < score < 1.0

    def test_advanced_unrelated(self):
        assert advanced_similarity("electricity", "zz top") < 0.5


class TestTextSimilarity:

    @pytest.mark.parametrize("algorithm", list(SimilarityAlgorithm))
    def test_scores_stay_in_unit_interval(self, algorithm):
        text = TextSimilarity(algorithm)
        for a, b in [("", ""), ("abc", ""), ("VIR ACME", "Acme transfer"), ("x", "x")]:
            assert 0.0 <= text.similarity(a, b) <= 1.0

    def test_normalization_applied(self):
        text = TextSimilarity(SimilarityAlgorithm.LEVENSHTEIN, normalize=True)
        assert text.similarity("Société", "societe") == 1.0

    def test_normalization_disabled(self):
        text = TextSimilarity(SimilarityAlgorithm.LEVENSHTEIN, normalize=False)
        assert text.similarity("Société", "societe") < 1.0
