"""
Dry-run plan builder: runs every phase's detection and collects what a
live run would change, without writing.
"""

import logging
from typing import Optional

from config.logging import get_logger
from maintenance.db_cleaner.errors import FetchError
from maintenance.db_cleaner.normalization import NormalizationPlan
from maintenance.db_cleaner.types import (
    CORRECTIVE_PHASES,
    CleanerPhase,
    CleanerPlan,
    PhaseErrorRecord,
)
from maintenance.db_cleaner.unit_of_work import UnitOfWork


class PlanBuilder:
    def __init__(self, company_dedup, round_dedup, corrective_passes: dict, logger: Optional[logging.Logger] = None):
        self.company_dedup = company_dedup
        self.round_dedup = round_dedup
        self.corrective_passes = corrective_passes
        self.logger = logger or get_logger("db_cleaner.planner")

    def build(self, uow: UnitOfWork, skip_phases: frozenset = frozenset(), errors: Optional[list] = None) -> CleanerPlan:
        """
        Plan every phase not in skip_phases.

        A phase whose detection fails is recorded in errors and left out of
        the plan. FetchError propagates.
        """
        errors = errors if errors is not None else []
        plan = CleanerPlan()

        for phase in (CleanerPhase.DEDUPLICATE_COMPANIES, CleanerPhase.DEDUPLICATE_FUNDING_ROUNDS) + CORRECTIVE_PHASES:
            if phase in skip_phases:
                self.logger.info(f"[DRY-RUN] Skipping phase {phase.value}")
                continue
            try:
                self._plan_phase(uow, phase, plan)
            except FetchError:
                raise
            except Exception as e:
                self.logger.error(f"[DRY-RUN] Planning {phase.value} failed: {e}")
                errors.append(PhaseErrorRecord.from_exception(e, phase))
                uow.end_read()

        summary = plan.summary()
        self.logger.info(
            f"[DRY-RUN] Plan: {summary}, estimated duration {plan.estimated_duration}"
        )
        return plan

    def _plan_phase(self, uow: UnitOfWork, phase: CleanerPhase, plan: CleanerPlan) -> None:
        if phase == CleanerPhase.DEDUPLICATE_COMPANIES:
            plan.companies_to_merge = self.company_dedup.plan(uow)
        elif phase == CleanerPhase.DEDUPLICATE_FUNDING_ROUNDS:
            plan.funding_rounds_to_merge = self.round_dedup.plan(uow)
        else:
            planned = self.corrective_passes[phase].plan(uow)
            if isinstance(planned, NormalizationPlan):
                plan.normalizations.extend(planned.changes)
                plan.review_flags.extend(planned.review_flags)
            elif phase == CleanerPhase.REMOVE_INVALID:
                plan.invalid_to_delete = planned
            elif phase == CleanerPhase.REMOVE_ORPHANS:
                plan.orphans_to_delete = planned
            elif phase == CleanerPhase.FIX_ABERRANT:
                plan.aberrant_fixes = planned
