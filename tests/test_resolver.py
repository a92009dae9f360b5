"""
Tests for merge resolution: duplicate classification, survivor choice,
field transfers and the visited-id guard.
"""

from datetime import date, datetime

import pytest

from maintenance.db_cleaner.resolver import (
    FundingRoundResolver,
    MergeResolver,
    company_completeness,
    compute_field_transfers,
    data_quality_score,
    same_country,
    select_non_overlapping,
    union_list,
)
from maintenance.db_cleaner.similarity import SimilarityConfig, SimilarityScore
from maintenance.db_cleaner.types import CompanyCandidate, PlannedMerge, RoundCandidate
from maintenance.models import CompanyStatus


def candidate(id, name, minute=0, headquarters=None, rounds=0, enrichments=0, **values):
    values["name"] = name
    values.setdefault("headquarters", headquarters)
    return CompanyCandidate(
        id=id,
        name=name,
        created_at=datetime(2024, 1, 1, 0, minute),
        headquarters=headquarters,
        values=values,
        funding_round_count=rounds,
        enrichment_count=enrichments,
    )


def score(combined, normalized_match=False):
    return SimilarityScore(
        combined=combined,
        levenshtein=combined,
        jaro_winkler=combined,
        phonetic=combined,
        normalized_match=normalized_match,
    )


def planned(keep_id, merge_id):
    return PlannedMerge(keep_id, keep_id, merge_id, merge_id, score(1.0, True), "test")


# =============================================================================
# Classification
# =============================================================================

def test_duplicate_thresholds():
    resolver = MergeResolver(SimilarityConfig(duplicate_threshold=0.9, moderate_threshold=0.8))

    assert resolver.is_duplicate(score(0.92), in_same_country=False)
    assert resolver.is_duplicate(score(0.85), in_same_country=True)
    assert not resolver.is_duplicate(score(0.85), in_same_country=False)
    assert not resolver.is_duplicate(score(0.75), in_same_country=True)
    assert resolver.is_duplicate(score(0.10, normalized_match=True), in_same_country=False)


def test_same_country_uses_normalized_countries():
    assert same_country("USA", "United States")
    assert same_country("Paris, France", "france")
    assert not same_country("France", "Germany")
    assert not same_country(None, "France")


def test_find_duplicates_plans_every_matching_pair():
    resolver = MergeResolver()
    group = [
        candidate("a", "Stripe", 1),
        candidate("b", "Stripe, Inc.", 2),
        candidate("c", "STRIPE SAS", 3),
    ]

    pairs = resolver.find_duplicates(group)

    assert [(p.keep_id, p.merge_id) for p in pairs] == [("a", "b"), ("a", "c"), ("b", "c")]
    assert all("exact normalized name match" in p.justification for p in pairs)


def test_planned_merge_counts_child_rows_of_the_merged_record():
    group = [
        candidate("a", "Stripe", 1, industry="FinTech Payments", rounds=3),
        candidate("b", "Stripe, Inc.", 2, rounds=2, enrichments=4),
    ]

    (pair,) = MergeResolver().find_duplicates(group)

    assert (pair.keep_id, pair.merge_id) == ("a", "b")
    assert pair.funding_rounds_to_transfer == 2
    assert pair.enrichments_to_transfer == 4
    assert pair.to_dict()["funding_rounds_to_transfer"] == 2
    assert pair.to_dict()["enrichments_to_transfer"] == 4


# =============================================================================
# Survivor choice
# =============================================================================

def test_keep_is_the_more_complete_record():
    # A: three lightly weighted fields, no rows. B: industry plus five funding rounds.
    a = candidate("a", "Acme", 1, website="https://acme.io", headquarters="France", founded_year=2015)
    b = candidate("b", "Acme SAS", 2, industry="FinTech Payments", rounds=5)

    assert company_completeness(b.values, 5, 0) > company_completeness(a.values, 0, 0)

    keep, merge = MergeResolver().choose_keep(a, b)
    assert keep.id == "b"
    assert merge.id == "a"


def test_keep_is_the_older_record_on_ties():
    older = candidate("older", "Acme", 1, industry="SaaS B2B")
    newer = candidate("newer", "Acme Inc", 2, industry="SaaS B2B")

    keep, _ = MergeResolver().choose_keep(older, newer)
    assert keep.id == "older"


def test_data_quality_and_enrichments_count_toward_completeness():
    assert company_completeness({"data_quality": 80}) == 4.0
    assert company_completeness({}, enrichment_count=10) == pytest.approx(3.0)


# =============================================================================
# Field transfers
# =============================================================================

def test_transfers_never_overwrite_populated_fields():
    keep = {"name": "Acme", "website": "https://acme.io", "industry": None, "description": ""}
    merge = {"name": "Acme SAS", "website": "https://other.io", "industry": "SaaS B2B", "description": "Widgets"}

    updates = compute_field_transfers(keep, merge)

    assert "website" not in updates
    assert updates["industry"] == "SaaS B2B"
    assert updates["description"] == "Widgets"


def test_founders_union_dedupes_by_name():
    keep = {"name": "Acme", "founders": [{"name": "Jane Doe", "role": "CEO"}]}
    merge = {"name": "Acme", "founders": [{"name": "jane doe"}, {"name": "John Roe", "role": "CTO"}]}

    updates = compute_field_transfers(keep, merge)

    assert updates["founders"] == [
        {"name": "Jane Doe", "role": "CEO"},
        {"name": "John Roe", "role": "CTO"},
    ]


def test_merged_name_becomes_alias():
    keep = {"name": "Acme", "aliases": ["ACME Corp"]}
    merge = {"name": "Acme Robotics", "aliases": ["acme corp", "Acme"]}

    updates = compute_field_transfers(keep, merge)

    assert updates["aliases"] == ["ACME Corp", "Acme Robotics"]


def test_union_list_counts_additions():
    merged, added = union_list(["a", "b"], ["B", "c", None, ""])
    assert merged == ["a", "b", "c"]
    assert added == 1


def test_suffix_variant_of_survivor_name_becomes_alias():
    updates = compute_field_transfers({"name": "Stripe"}, {"name": "Stripe, Inc."})
    assert updates["aliases"] == ["Stripe, Inc."]

    # Only the survivor's own spelling is left out
    assert "aliases" not in compute_field_transfers({"name": "Stripe"}, {"name": "STRIPE"})


def test_unions_keep_entries_without_a_latin_key():
    keep = {
        "name": "Stripe",
        "founders": [{"name": "Patrick"}],
        "competitors": [],
    }
    merge = {
        "name": "Stripe, Inc.",
        "founders": [{"name": "李明"}, {"role": "CTO"}, {"role": "CTO"}, {"name": "patrick"}],
        "competitors": ["Яндекс", "яндекс", "Adyen"],
    }

    updates = compute_field_transfers(keep, merge)

    assert updates["founders"] == [{"name": "Patrick"}, {"name": "李明"}, {"role": "CTO"}]
    assert updates["competitors"] == ["Яндекс", "Adyen"]


def test_data_quality_score_weights():
    full = {
        "name": "Stripe",
        "industry": "FinTech Payments",
        "description": "Online payments",
        "headquarters": "United States",
        "total_raised": 2_200_000_000,
        "website": "https://stripe.com",
        "founded_year": 2010,
        "founders": [{"name": "Patrick Collison"}],
        "status": CompanyStatus.ACTIVE,
    }

    assert data_quality_score({"name": "Ghost Co", "status": CompanyStatus.UNKNOWN}) == 5
    assert data_quality_score({"name": "Ghost Co", "status": "active"}) == 10
    assert data_quality_score(full) == 85
    assert data_quality_score(full, funding_round_count=3, enrichment_count=2) == 93
    assert data_quality_score(full, funding_round_count=20, enrichment_count=50) == 100


# =============================================================================
# Visited-id guard
# =============================================================================

def test_guard_skips_pairs_touching_merged_records():
    pairs = [planned("a", "b"), planned("a", "c"), planned("b", "c"), planned("d", "e")]

    selected, skipped = select_non_overlapping(pairs)

    assert [(p.keep_id, p.merge_id) for p in selected] == [("a", "b"), ("a", "c"), ("d", "e")]
    assert skipped == 1


def test_guard_skips_pairs_whose_survivor_was_merged_away():
    selected, skipped = select_non_overlapping([planned("b", "a"), planned("a", "c")])
    assert [(p.keep_id, p.merge_id) for p in selected] == [("b", "a")]
    assert skipped == 1


# =============================================================================
# Funding rounds
# =============================================================================

def round_candidate(id, minute=0, **values):
    return RoundCandidate(
        id=id,
        company_id="company",
        created_at=datetime(2024, 1, 1, 0, minute),
        values=values,
    )


def test_rounds_match_within_tolerances():
    resolver = FundingRoundResolver(amount_tolerance=0.1, date_tolerance_days=7)
    a = {"amount_usd": 10_000_000, "funding_date": date(2024, 3, 1), "stage": "Series A"}
    b = {"amount_usd": 9_500_000, "funding_date": date(2024, 3, 5), "stage_normalized": "SERIES_A"}

    reasons = resolver.match_reasons(a, b)

    assert reasons is not None
    assert "same stage" in reasons


def test_rounds_differ_on_amount_date_or_stage():
    resolver = FundingRoundResolver(amount_tolerance=0.1, date_tolerance_days=7)
    base = {"amount_usd": 10_000_000, "funding_date": date(2024, 3, 1), "stage": "Seed"}

    assert resolver.match_reasons(base, dict(base, amount_usd=5_000_000)) is None
    assert resolver.match_reasons(base, dict(base, funding_date=date(2024, 4, 1))) is None
    assert resolver.match_reasons(base, dict(base, stage="Series B")) is None


def test_rounds_without_comparable_signal_do_not_match():
    resolver = FundingRoundResolver()
    assert resolver.match_reasons({"stage": "Seed"}, {"stage": "Seed"}) is None
    assert resolver.match_reasons({"amount_usd": 1_000_000}, {"funding_date": date(2024, 1, 1)}) is None


def test_round_duplicates_keep_the_richer_round():
    resolver = FundingRoundResolver()
    sparse = round_candidate("sparse", 1, amount_usd=2_000_000, investors=[])
    rich = round_candidate(
        "rich", 2, amount_usd=2_000_000, funding_date=date(2024, 1, 1), investors=["Partech", "Kima"]
    )

    pairs = resolver.find_duplicates([sparse, rich])

    assert len(pairs) == 1
    assert pairs[0].keep_id == "rich"
    assert pairs[0].merge_id == "sparse"
