"""
Tests for country, stage and industry normalization.
"""

import pytest

from maintenance.db_cleaner.normalization import (
    CountryNormalizer,
    IndustryNormalizer,
    StageNormalizer,
)
from maintenance.db_cleaner.taxonomy import (
    COUNTRIES,
    INDUSTRY_TAXONOMY,
    STAGES,
    normalize_country,
    normalize_industry,
    normalize_stage,
)
from maintenance.db_cleaner.unit_of_work import UnitOfWork
from maintenance.models import Company, FundingRound


def run_pass(db, normalizer):
    uow = UnitOfWork(db)
    with uow.transaction():
        updated = normalizer.execute(uow)
    db.expire_all()
    return updated


# =============================================================================
# Lookups
# =============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("USA", "United States"),
    ("U.S.A.", "United States"),
    ("united states", "United States"),
    ("Royaume-Uni", "United Kingdom"),
    ("Paris, France", "France"),
    ("Berlin, Deutschland", "Germany"),
    ("based in the Netherlands", "Netherlands"),
    ("Atlantis", None),
    ("", None),
    (None, None),
])
def test_normalize_country(raw, expected):
    assert normalize_country(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    ("Série A", "SERIES_A"),
    ("series-b", "SERIES_B"),
    ("pre-seed", "PRE_SEED"),
    ("Amorçage", "SEED"),
    ("SERIES_C", "SERIES_C"),
    ("Round X", None),
])
def test_normalize_stage(raw, expected):
    assert normalize_stage(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    ("saas b2b", "SaaS B2B"),
    ("Fintech", "FinTech Payments"),
    ("Intelligence Artificielle", "AI Pure-Play"),
    ("B2B HRTech platform", "HRTech"),
    ("Retail", "Retail Tech"),
    ("Underwater basket weaving", None),
])
def test_normalize_industry(raw, expected):
    assert normalize_industry(raw) == expected


def test_lookups_are_idempotent():
    for country in COUNTRIES:
        assert normalize_country(country) == country
    for stage in STAGES:
        assert normalize_stage(stage) == stage
    for industry in INDUSTRY_TAXONOMY:
        assert normalize_industry(industry) == industry


# =============================================================================
# Passes
# =============================================================================

def test_country_normalizer_rewrites_then_settles(db, build):
    company = build.company("Stripe", headquarters="USA")
    funding_round = build.funding_round(company, geography="Paris, France")
    company_id, round_id = company.id, funding_round.id

    assert run_pass(db, CountryNormalizer()) == 2
    assert db.get(Company, company_id).headquarters == "United States"
    assert db.get(FundingRound, round_id).geography == "France"

    assert run_pass(db, CountryNormalizer()) == 0


def test_unmapped_values_are_flagged_and_untouched(db, build):
    company = build.company("Nautilus", headquarters="Atlantis")
    company_id = company.id

    normalizer = CountryNormalizer()
    uow = UnitOfWork(db)
    planned = normalizer.plan(uow)

    assert planned.changes == []
    assert len(planned.review_flags) == 1
    flag = planned.review_flags[0]
    assert flag.record_id == company_id
    assert flag.value == "Atlantis"

    assert run_pass(db, normalizer) == 0
    assert db.get(Company, company_id).headquarters == "Atlantis"


def test_stage_normalizer_fills_normalized_column(db, build):
    company = build.company("Alan", last_round_stage="serie c")
    funding_round = build.funding_round(company, stage="Série C")
    company_id, round_id = company.id, funding_round.id

    normalizer = StageNormalizer()
    planned = normalizer.plan(UnitOfWork(db))
    assert {(c.model, c.target_field, c.new_value) for c in planned.changes} == {
        ("FundingRound", "stage_normalized", "SERIES_C"),
        ("Company", "last_round_stage", "SERIES_C"),
    }

    run_pass(db, normalizer)

    saved_round = db.get(FundingRound, round_id)
    assert saved_round.stage == "Série C"
    assert saved_round.stage_normalized == "SERIES_C"
    assert db.get(Company, company_id).last_round_stage == "SERIES_C"


def test_industry_normalizer(db, build):
    company = build.company("Doctolib", industry="healthcare")
    funding_round = build.funding_round(company, sector="Digital health")
    company_id, round_id = company.id, funding_round.id

    assert run_pass(db, IndustryNormalizer()) == 2
    assert db.get(Company, company_id).industry == "HealthTech"
    assert db.get(FundingRound, round_id).sector_normalized == "HealthTech"
