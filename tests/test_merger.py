"""
Tests for the transactional record merger.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from maintenance.db_cleaner.errors import MergeError, ReadOnlyViolationError
from maintenance.db_cleaner.merger import MERGED_BY, RecordMerger, merge_history
from maintenance.db_cleaner.similarity import combined_similarity
from maintenance.db_cleaner.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork
from maintenance.models import (
    Company,
    CompanyEnrichment,
    CompanyMergeLog,
    EnrichmentSource,
    FundingRound,
)


@pytest.fixture
def merger():
    return RecordMerger()


def test_merge_moves_children_and_fills_blanks(db, build, merger):
    keep = build.company(
        "Acme",
        website="https://acme.io",
        industry=None,
        founders=[{"name": "Jane Doe"}],
    )
    merge = build.company(
        "Acme Robotics",
        website="https://acme-robotics.fr",
        industry="Robotics",
        total_raised=Decimal("2500000"),
        founders=[{"name": "John Roe"}],
    )
    build.funding_round(merge, amount_usd=Decimal("2500000"))
    build.funding_round(merge, amount_usd=Decimal("500000"))
    build.enrichment(merge.id)
    keep_id, merge_id = keep.id, merge.id

    uow = UnitOfWork(db)
    result = merger.merge_companies(
        uow, keep_id, merge_id, combined_similarity("Acme", "Acme Robotics"), "exact normalized name match", "run-1"
    )

    assert result.funding_rounds_transferred == 2
    assert result.enrichments_transferred == 1
    assert set(result.fields_transferred) == {"industry", "total_raised", "founders", "aliases"}

    db.expire_all()
    assert db.get(Company, merge_id) is None
    survivor = db.get(Company, keep_id)
    assert survivor.website == "https://acme.io"
    assert survivor.industry == "Robotics"
    assert survivor.total_raised == Decimal("2500000")
    assert [f["name"] for f in survivor.founders] == ["Jane Doe", "John Roe"]
    assert survivor.aliases == ["Acme Robotics"]
    # name, industry, total_raised, website, founders, known status; 2 rounds; 1 enrichment
    assert survivor.data_quality == 60

    rounds = db.scalars(select(FundingRound).where(FundingRound.company_id == keep_id)).all()
    assert len(rounds) == 2


def test_merge_writes_audit_log_and_trace(db, build, merger):
    keep = build.company("Lydia", industry="FinTech Payments")
    merge = build.company("Lydia SAS", description="Mobile payments")
    keep_id, merge_id = keep.id, merge.id

    result = merger.merge_companies(
        UnitOfWork(db), keep_id, merge_id, combined_similarity("Lydia", "Lydia SAS"), "same name", "run-42"
    )

    db.expire_all()
    log = db.get(CompanyMergeLog, result.merge_log_id)
    assert log.merged_from_id == merge_id
    assert log.merged_into_id == keep_id
    assert log.merged_from_name == "Lydia SAS"
    assert log.merged_by == MERGED_BY
    assert log.maintenance_run_id == "run-42"
    assert log.dry_run is False
    assert log.fields_transferred == ["description", "aliases"]
    assert log.before_state["merge"]["description"] == "Mobile payments"
    assert log.before_state["keep"]["description"] is None
    assert log.after_state["description"] == "Mobile payments"
    assert log.after_state["aliases"] == ["Lydia SAS"]

    trace = db.scalars(
        select(CompanyEnrichment).where(CompanyEnrichment.company_id == keep_id)
    ).one()
    assert trace.source == EnrichmentSource.MANUAL
    assert trace.new_data["merged_from_id"] == merge_id
    assert trace.new_data["merge_log_id"] == result.merge_log_id

    assert [entry.id for entry in merge_history(db, keep_id)] == [result.merge_log_id]


def test_failed_merge_rolls_back(db, build, merger):
    keep = build.company("Alan")
    build.funding_round(keep, amount_usd=Decimal("1000000"))
    keep_id = keep.id

    with pytest.raises(MergeError) as excinfo:
        merger.merge_companies(
            UnitOfWork(db), keep_id, "missing-id", combined_similarity("Alan", "Alan"), "test"
        )

    assert excinfo.value.merge_id == "missing-id"
    db.expire_all()
    assert db.get(Company, keep_id) is not None
    assert db.scalars(select(CompanyMergeLog)).all() == []


def test_read_only_unit_of_work_refuses_merges(db, build, merger):
    keep = build.company("Qonto")
    merge = build.company("Qonto SA")

    with pytest.raises(ReadOnlyViolationError):
        merger.merge_companies(
            ReadOnlyUnitOfWork(db), keep.id, merge.id, combined_similarity("Qonto", "Qonto SA"), "test"
        )

    db.expire_all()
    assert db.get(Company, merge.id) is not None


def test_round_merge_unions_investors(db, build, merger):
    company = build.company("Pennylane")
    keep = build.funding_round(
        company, amount_usd=Decimal("40000000"), stage="Series B", investors=["Sequoia"]
    )
    merge = build.funding_round(
        company,
        amount_usd=Decimal("40000000"),
        lead_investor="Sequoia",
        investors=["Sequoia", "DST Global"],
        is_enriched=True,
    )
    keep_id, merge_id = keep.id, merge.id

    result = merger.merge_funding_rounds(UnitOfWork(db), keep_id, merge_id)

    assert set(result.fields_transferred) == {"lead_investor", "investors"}
    db.expire_all()
    assert db.get(FundingRound, merge_id) is None
    survivor = db.get(FundingRound, keep_id)
    assert survivor.investors == ["Sequoia", "DST Global"]
    assert survivor.lead_investor == "Sequoia"
    assert survivor.is_enriched is True


def test_round_merge_refuses_rounds_of_different_companies(db, build, merger):
    a = build.funding_round(build.company("Swile"), amount_usd=Decimal("1"))
    b = build.funding_round(build.company("Spendesk"), amount_usd=Decimal("1"))
    a_id, b_id = a.id, b.id

    with pytest.raises(MergeError):
        merger.merge_funding_rounds(UnitOfWork(db), a_id, b_id)

    db.expire_all()
    assert db.get(FundingRound, b_id) is not None


def test_merge_keeps_list_entries_without_a_latin_name(db, build, merger):
    keep = build.company("Stripe", founders=[{"name": "Patrick"}], competitors=[])
    merge = build.company(
        "Stripe, Inc.",
        founders=[{"name": "李明"}, {"role": "CTO"}],
        competitors=["Яндекс"],
    )
    keep_id, merge_id = keep.id, merge.id

    merger.merge_companies(
        UnitOfWork(db), keep_id, merge_id, combined_similarity("Stripe", "Stripe, Inc."), "same name"
    )

    db.expire_all()
    assert db.get(Company, merge_id) is None
    survivor = db.get(Company, keep_id)
    assert survivor.founders == [{"name": "Patrick"}, {"name": "李明"}, {"role": "CTO"}]
    assert survivor.competitors == ["Яндекс"]
    assert survivor.aliases == ["Stripe, Inc."]


def test_merge_recomputes_stale_data_quality(db, build, merger):
    keep = build.company("Swile", industry="HR Tech", data_quality=5)
    merge = build.company("Swile SAS", description="Employee benefits", headquarters="France")
    build.funding_round(merge, amount_usd=Decimal("200000000"))
    keep_id, merge_id = keep.id, merge.id

    result = merger.merge_companies(
        UnitOfWork(db), keep_id, merge_id, combined_similarity("Swile", "Swile SAS"), "same name"
    )

    db.expire_all()
    # name, industry, description, headquarters, known status; 1 round
    assert db.get(Company, keep_id).data_quality == 52
    log = db.get(CompanyMergeLog, result.merge_log_id)
    assert log.before_state["keep"]["data_quality"] == 5
    assert log.after_state["data_quality"] == 52
    assert "data_quality" not in log.fields_transferred
