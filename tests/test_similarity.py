"""
Tests for name normalization and similarity scoring.
"""

import pytest

from maintenance.db_cleaner.similarity import (
    SimilarityConfig,
    SimilarityScore,
    bucket_key,
    combined_similarity,
    double_metaphone_codes,
    levenshtein_similarity,
    normalize_name,
    phonetic_similarity,
    soundex_code,
)


def test_normalize_name_strips_legal_suffixes_and_accents():
    assert normalize_name("Société Générale S.A.") == "societe generale"
    assert normalize_name("Acme Inc.") == "acme"
    assert normalize_name("Acme Co., Ltd") == "acme"
    assert normalize_name("  Back   Market  SAS ") == "back market"


def test_normalize_name_keeps_at_least_one_token():
    assert normalize_name("Company") == "company"
    assert normalize_name("") == ""
    assert normalize_name(None) == ""


def test_bucket_key_ignores_spacing():
    assert bucket_key("Open AI") == bucket_key("OpenAI Inc") == "openai"
    assert bucket_key("Back-Market") == bucket_key("Back Market SAS")


def test_identical_after_normalization_scores_one():
    score = combined_similarity("Stripe", "Stripe, Inc.")
    assert score.normalized_match is True
    assert score.combined == pytest.approx(1.0)


@pytest.mark.parametrize(
    "a,b",
    [
        ("Doctolib", "Doctolibb"),
        ("Open AI", "OpenAI"),
        ("Mistral AI", "Mistral"),
        ("Qonto", "Alan"),
    ],
)
def test_similarity_is_symmetric_and_bounded(a, b):
    forward = combined_similarity(a, b)
    backward = combined_similarity(b, a)
    assert forward.to_dict() == backward.to_dict()
    for value in (forward.combined, forward.levenshtein, forward.jaro_winkler, forward.phonetic):
        assert 0.0 <= value <= 1.0


def test_empty_names_never_match():
    score = combined_similarity("", "Stripe")
    assert score.combined == 0.0
    assert score.normalized_match is False


def test_unrelated_names_score_low():
    assert combined_similarity("Stripe", "Doctolib").combined < 0.8


def test_levenshtein_is_token_order_insensitive():
    assert levenshtein_similarity("labs acme", "acme labs") == pytest.approx(1.0)


def test_phonetic_codes():
    assert soundex_code("Smith") == soundex_code("Smyth")
    primary, _ = double_metaphone_codes("Smith")
    assert primary
    assert double_metaphone_codes("123") == ("", "")


def test_phonetic_similarity_for_sound_alikes():
    assert phonetic_similarity("smith", "smyth") >= 0.7
    assert phonetic_similarity("stripe", "") == 0.0


def test_explain_lists_reasons():
    score = SimilarityScore(
        combined=1.0, levenshtein=1.0, jaro_winkler=1.0, phonetic=1.0, normalized_match=True
    )
    reason = score.explain(same_country=True)
    assert "exact normalized name match" in reason
    assert "very high Jaro-Winkler" in reason
    assert "same country" in reason


def test_explain_falls_back_to_combined_score():
    score = SimilarityScore(
        combined=0.5, levenshtein=0.2, jaro_winkler=0.5, phonetic=0.0, normalized_match=False
    )
    assert score.explain() == "combined similarity 50%"


def test_weights_come_from_config():
    config = SimilarityConfig(
        jaro_winkler_weight=0.0,
        levenshtein_weight=0.0,
        phonetic_weight=0.0,
        normalized_match_bonus=0.0,
    )
    assert combined_similarity("Stripe", "Stripe", config).combined == 0.0


@pytest.mark.parametrize(
    "a,b",
    [
        ("Stripe", "Stripe Inc"),
        ("Doctolib", "Doctolibb"),
        ("Back Market", "BackMarket SAS"),
        ("Qonto", "Alan"),
    ],
)
def test_real_names_get_phonetic_scores(a, b):
    score = combined_similarity(a, b)
    assert 0.0 <= score.phonetic <= 1.0
    assert soundex_code(a)
    assert soundex_code(a) == soundex_code(a.upper())


def test_stripe_spellings_score_as_duplicates():
    score = combined_similarity("Stripe", "Stripe Inc")
    assert score.normalized_match is True
    assert score.phonetic == pytest.approx(1.0)
    assert score.combined == pytest.approx(1.0)


def test_normalize_name_keeps_non_latin_letters():
    assert normalize_name("Яндекс") == "яндекс"
    assert normalize_name("Ørsted") == "ørsted"
    assert normalize_name("株式会社メルカリ") == "株式会社メルカリ"
    assert normalize_name("Straße GmbH") == "strasse"


def test_identical_non_latin_names_match():
    score = combined_similarity("Яндекс", "Яндекс")
    assert score.normalized_match is True
    assert score.combined > 0.0
    assert bucket_key("Яндекс") == bucket_key("яндекс") != ""
    assert combined_similarity("Яндекс", "Mercari").normalized_match is False
