"""
Record merging. Each merge runs in its own transaction and either fully
applies (survivor updated, children re-parented, audit written, duplicate
deleted) or leaves the store untouched.
"""

import logging
from typing import Optional

from config.logging import get_logger
from maintenance.db_cleaner.errors import (
    CleanerError,
    MergeError,
    ReadOnlyViolationError,
    RecordNotFoundError,
)
from maintenance.db_cleaner.resolver import (
    COMPANY_SNAPSHOT_FIELDS,
    ROUND_LIST_FIELDS,
    ROUND_SCALAR_FIELDS,
    ROUND_SNAPSHOT_FIELDS,
    compute_field_transfers,
    data_quality_score,
    snapshot,
)
from maintenance.db_cleaner.similarity import SimilarityScore
from maintenance.db_cleaner.types import (
    MergeLogEntry,
    MergeResult,
    RoundMergeResult,
)
from maintenance.db_cleaner.unit_of_work import UnitOfWork
from maintenance.models import (
    Company,
    CompanyEnrichment,
    CompanyMergeLog,
    EnrichmentSource,
    FundingRound,
    generate_uuid,
)

MERGED_BY = "DB_CLEANER"

# Captured in the audit log's before/after snapshots
COMPANY_STATE_FIELDS = ("id", "slug", "status") + COMPANY_SNAPSHOT_FIELDS


class RecordMerger:
    """
    Merges one duplicate into its survivor.

    Usage:
        merger = RecordMerger()
        result = merger.merge_companies(uow, keep_id, merge_id, score, "same country")
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("db_cleaner.merger")

    def merge_companies(
        self,
        uow: UnitOfWork,
        keep_id: str,
        merge_id: str,
        similarity: SimilarityScore,
        justification: str,
        run_id: Optional[str] = None,
    ) -> MergeResult:
        """
        Merge company merge_id into keep_id.

        Transfers are recomputed from the live rows, not from the plan, so
        anything written since planning is respected.

        Raises:
            MergeError: the transaction failed and was rolled back
            ReadOnlyViolationError: called with a dry-run unit of work
        """
        try:
            with uow.transaction():
                return self._merge_companies(uow, keep_id, merge_id, similarity, justification, run_id)
        except ReadOnlyViolationError:
            raise
        except Exception as e:
            self.logger.error(f"[MERGE-FAILED] {merge_id} -> {keep_id}, rolled back: {e}")
            raise MergeError(keep_id, merge_id, e) from e

    def _merge_companies(self, uow, keep_id, merge_id, similarity, justification, run_id) -> MergeResult:
        keep = uow.get(Company, keep_id, for_update=True)
        if keep is None:
            raise RecordNotFoundError("Company", keep_id)
        merge = uow.get(Company, merge_id, for_update=True)
        if merge is None:
            raise RecordNotFoundError("Company", merge_id)

        transfers = compute_field_transfers(
            snapshot(keep, COMPANY_SNAPSHOT_FIELDS),
            snapshot(merge, COMPANY_SNAPSHOT_FIELDS),
        )
        before_state = {
            "keep": snapshot(keep, COMPANY_STATE_FIELDS),
            "merge": snapshot(merge, COMPANY_STATE_FIELDS),
        }

        for name, value in transfers.items():
            setattr(keep, name, value)

        rounds_moved = uow.reparent(FundingRound.company_id, merge.id, keep.id)
        enrichments_moved = uow.reparent(CompanyEnrichment.company_id, merge.id, keep.id)
        uow.flush()

        # Filled blanks and moved children change the survivor's score
        keep.data_quality = data_quality_score(
            snapshot(keep, COMPANY_STATE_FIELDS),
            uow.count_by(FundingRound.company_id, [keep.id]).get(keep.id, 0),
            uow.count_by(CompanyEnrichment.company_id, [keep.id]).get(keep.id, 0),
        )

        entry = MergeLogEntry(
            id=generate_uuid(),
            merged_from_id=merge.id,
            merged_from_name=merge.name,
            merged_into_id=keep.id,
            merged_into_name=keep.name,
            before_state=before_state,
            after_state=snapshot(keep, COMPANY_STATE_FIELDS),
            fields_transferred=tuple(transfers),
            funding_rounds_transferred=rounds_moved,
            enrichments_transferred=enrichments_moved,
            similarity_score=similarity.combined,
            similarity_details=similarity.to_dict(),
            match_reason=justification,
            merged_by=MERGED_BY,
            maintenance_run_id=run_id,
        )
        uow.add(entry.to_record())

        # Trace on the survivor's enrichment history
        uow.add(CompanyEnrichment(
            company_id=keep.id,
            source=EnrichmentSource.MANUAL,
            fields_updated=list(transfers),
            new_data={
                "action": "merge",
                "merged_from_id": merge.id,
                "merged_from_name": merge.name,
                "merge_log_id": entry.id,
                "similarity": round(similarity.combined, 4),
                "reason": justification,
            },
        ))

        uow.delete(merge)
        uow.flush()

        self.logger.info(
            f"[MERGED] '{entry.merged_from_name}' -> '{entry.merged_into_name}' "
            f"(score: {similarity.combined:.2f}, fields: {len(transfers)}, "
            f"rounds: {rounds_moved}, enrichments: {enrichments_moved})"
        )
        return MergeResult(
            keep_id=keep_id,
            merge_id=merge_id,
            merge_log_id=entry.id,
            fields_transferred=list(transfers),
            funding_rounds_transferred=rounds_moved,
            enrichments_transferred=enrichments_moved,
        )

    def merge_funding_rounds(self, uow: UnitOfWork, keep_id: str, merge_id: str) -> RoundMergeResult:
        """Fill the kept round's blanks from the duplicate, union investors, delete the duplicate."""
        try:
            with uow.transaction():
                keep = uow.get(FundingRound, keep_id, for_update=True)
                if keep is None:
                    raise RecordNotFoundError("FundingRound", keep_id)
                merge = uow.get(FundingRound, merge_id, for_update=True)
                if merge is None:
                    raise RecordNotFoundError("FundingRound", merge_id)
                if keep.company_id != merge.company_id:
                    raise CleanerError(
                        f"rounds belong to different companies ({keep.company_id}, {merge.company_id})"
                    )

                transfers = compute_field_transfers(
                    snapshot(keep, ROUND_SNAPSHOT_FIELDS),
                    snapshot(merge, ROUND_SNAPSHOT_FIELDS),
                    ROUND_SCALAR_FIELDS,
                    ROUND_LIST_FIELDS,
                )
                for name, value in transfers.items():
                    setattr(keep, name, value)
                if merge.is_enriched:
                    keep.is_enriched = True

                uow.delete(merge)
                uow.flush()
        except ReadOnlyViolationError:
            raise
        except Exception as e:
            self.logger.error(f"[ROUND-MERGE-FAILED] {merge_id} -> {keep_id}, rolled back: {e}")
            raise MergeError(keep_id, merge_id, e) from e

        self.logger.debug(f"[ROUND-MERGED] {merge_id} -> {keep_id} (fields: {list(transfers)})")
        return RoundMergeResult(keep_id=keep_id, merge_id=merge_id, fields_transferred=list(transfers))


def merge_history(session, company_id: str) -> list:
    """Merge log entries where the company was merged in or merged away, newest first."""
    return (
        session.query(CompanyMergeLog)
        .filter(
            (CompanyMergeLog.merged_into_id == company_id)
            | (CompanyMergeLog.merged_from_id == company_id)
        )
        .order_by(CompanyMergeLog.created_at.desc())
        .all()
    )
