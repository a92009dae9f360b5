"""
Deduplication phases for companies and funding rounds.

Detection reads the store page by page into snapshots, buckets them and
scores pairs inside each bucket. plan() stops there; execute() then merges
the pairs one transaction at a time, skipping any pair whose records were
already merged away in this pass.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config.logging import get_logger
from maintenance.db_cleaner.base import CleanerConfig
from maintenance.db_cleaner.errors import MergeError
from maintenance.db_cleaner.grouping import group_by, group_candidates
from maintenance.db_cleaner.merger import RecordMerger
from maintenance.db_cleaner.resolver import (
    COMPANY_SNAPSHOT_FIELDS,
    ROUND_SNAPSHOT_FIELDS,
    FundingRoundResolver,
    MergeResolver,
    VisitedGuard,
    select_non_overlapping,
    snapshot,
)
from maintenance.db_cleaner.types import CleanerPhase, CompanyCandidate, RoundCandidate
from maintenance.db_cleaner.unit_of_work import UnitOfWork
from maintenance.models import Company, CompanyEnrichment, FundingRound


@dataclass
class DedupOutcome:
    merged: int = 0
    failed: int = 0
    skipped: int = 0


class CompanyDeduplicator:
    phase = CleanerPhase.DEDUPLICATE_COMPANIES

    def __init__(
        self,
        config: Optional[CleanerConfig] = None,
        resolver: Optional[MergeResolver] = None,
        merger: Optional[RecordMerger] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CleanerConfig()
        self.logger = logger or get_logger("db_cleaner.duplicates")
        self.resolver = resolver or MergeResolver(self.config.similarity)
        self.merger = merger or RecordMerger()

    def load_candidates(self, uow: UnitOfWork) -> list:
        candidates = []
        for batch in uow.iter_batches(Company, batch_size=self.config.batch_size):
            ids = [c.id for c in batch]
            round_counts = uow.count_by(FundingRound.company_id, ids)
            enrichment_counts = uow.count_by(CompanyEnrichment.company_id, ids)
            candidates.extend(
                CompanyCandidate(
                    id=c.id,
                    name=c.name,
                    created_at=c.created_at,
                    headquarters=c.headquarters,
                    values=snapshot(c, COMPANY_SNAPSHOT_FIELDS),
                    funding_round_count=round_counts.get(c.id, 0),
                    enrichment_count=enrichment_counts.get(c.id, 0),
                )
                for c in batch
            )
        return candidates

    def candidate_pairs(self, uow: UnitOfWork) -> list:
        """Every duplicate pair, group by group, before the visited-id guard."""
        candidates = self.load_candidates(uow)
        groups = group_candidates(candidates)

        pairs = []
        for group in groups.values():
            pairs.extend(self.resolver.find_duplicates(group))

        self.logger.info(
            f"Scanned {len(candidates)} companies: {len(groups)} candidate groups, "
            f"{len(pairs)} duplicate pairs"
        )
        return pairs

    def plan(self, uow: UnitOfWork) -> list:
        selected, skipped = select_non_overlapping(self.candidate_pairs(uow))
        if skipped:
            self.logger.info(f"{skipped} pairs overlap an earlier merge and would be skipped")
        return selected

    def execute(self, uow: UnitOfWork, run_id: Optional[str] = None) -> DedupOutcome:
        pairs = self.candidate_pairs(uow)
        uow.end_read()

        outcome = DedupOutcome()
        guard = VisitedGuard()
        for pair in pairs:
            if not guard.admit(pair):
                continue
            try:
                self.merger.merge_companies(
                    uow, pair.keep_id, pair.merge_id, pair.similarity, pair.justification, run_id
                )
            except MergeError as e:
                # Contained: the pair is skipped and the phase goes on
                self.logger.warning(f"Skipping pair {pair.merge_id} -> {pair.keep_id}: {e.cause}")
                outcome.failed += 1
                continue
            guard.record(pair)
            outcome.merged += 1

        outcome.skipped = guard.skipped
        self.logger.info(
            f"Company dedup: merged={outcome.merged} failed={outcome.failed} skipped={outcome.skipped}"
        )
        return outcome


class FundingRoundDeduplicator:
    phase = CleanerPhase.DEDUPLICATE_FUNDING_ROUNDS

    def __init__(
        self,
        config: Optional[CleanerConfig] = None,
        resolver: Optional[FundingRoundResolver] = None,
        merger: Optional[RecordMerger] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CleanerConfig()
        self.logger = logger or get_logger("db_cleaner.duplicates")
        self.resolver = resolver or FundingRoundResolver(
            amount_tolerance=self.config.round_amount_tolerance,
            date_tolerance_days=self.config.round_date_tolerance_days,
        )
        self.merger = merger or RecordMerger()

    def load_candidates(self, uow: UnitOfWork) -> list:
        candidates = []
        for batch in uow.iter_batches(
            FundingRound, FundingRound.company_id.is_not(None), batch_size=self.config.batch_size
        ):
            candidates.extend(
                RoundCandidate(
                    id=r.id,
                    company_id=r.company_id,
                    created_at=r.created_at,
                    values=snapshot(r, ROUND_SNAPSHOT_FIELDS),
                )
                for r in batch
            )
        return candidates

    def candidate_pairs(self, uow: UnitOfWork) -> list:
        candidates = self.load_candidates(uow)
        groups = group_by(candidates, lambda r: r.company_id)

        pairs = []
        for group in groups.values():
            pairs.extend(self.resolver.find_duplicates(group))

        self.logger.info(
            f"Scanned {len(candidates)} funding rounds across {len(groups)} companies: "
            f"{len(pairs)} duplicate pairs"
        )
        return pairs

    def plan(self, uow: UnitOfWork) -> list:
        selected, _ = select_non_overlapping(self.candidate_pairs(uow))
        return selected

    def execute(self, uow: UnitOfWork, run_id: Optional[str] = None) -> DedupOutcome:
        pairs = self.candidate_pairs(uow)
        uow.end_read()

        outcome = DedupOutcome()
        guard = VisitedGuard()
        for pair in pairs:
            if not guard.admit(pair):
                continue
            try:
                self.merger.merge_funding_rounds(uow, pair.keep_id, pair.merge_id)
            except MergeError as e:
                self.logger.warning(f"Skipping round pair {pair.merge_id} -> {pair.keep_id}: {e.cause}")
                outcome.failed += 1
                continue
            guard.record(pair)
            outcome.merged += 1

        outcome.skipped = guard.skipped
        self.logger.info(
            f"Round dedup: merged={outcome.merged} failed={outcome.failed} skipped={outcome.skipped}"
        )
        return outcome
