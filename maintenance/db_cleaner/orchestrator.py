"""
DB cleaner orchestrator.

Phase order:
1. deduplicate_companies       own transaction per merge
2. deduplicate_rounds          own transaction per merge
3. remove_invalid          \
4. normalize_countries      |
5. normalize_stages         |  one shared transaction with a timeout;
6. normalize_industries     |  any failure rolls back all of them
7. remove_orphans           |
8. fix_aberrant            /

A dry run builds a plan through a read-only unit of work instead.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config.logging import get_logger
from maintenance.db_cleaner.base import CleanerConfig
from maintenance.db_cleaner.cleanup import (
    AberrantValueSanitizer,
    InvalidEntryRemover,
    OrphanReaper,
)
from maintenance.db_cleaner.duplicates import CompanyDeduplicator, FundingRoundDeduplicator
from maintenance.db_cleaner.errors import (
    FetchError,
    PhaseError,
    RunInProgressError,
    TransactionTimeoutError,
)
from maintenance.db_cleaner.normalization import (
    CountryNormalizer,
    IndustryNormalizer,
    StageNormalizer,
)
from maintenance.db_cleaner.planner import PlanBuilder
from maintenance.db_cleaner.types import (
    CORRECTIVE_PHASES,
    DEDUP_PHASES,
    CleanerDetails,
    CleanerPhase,
    CleanerResult,
    PhaseErrorRecord,
    parse_phases,
)
from maintenance.db_cleaner.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork
from maintenance.models import MaintenanceAgent, MaintenanceRun, MaintenanceStatus

# One mutating run per store within this process
_RUN_LOCKS: dict = {}
_RUN_LOCKS_GUARD = threading.Lock()


def _store_lock(session_factory) -> threading.Lock:
    bind = getattr(session_factory, "kw", {}).get("bind")
    key = str(bind.url) if bind is not None else id(session_factory)
    with _RUN_LOCKS_GUARD:
        return _RUN_LOCKS.setdefault(key, threading.Lock())


class DbCleaner:
    """
    Runs the maintenance phases against one store.

    Usage:
        cleaner = DbCleaner(SessionLocal)
        result = cleaner.run(dry_run=True)
        print(result.plan.estimated_duration)

        result = cleaner.run(run_id=run.id, skip_phases=["normalize_industries"])
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        config: Optional[CleanerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if session_factory is None:
            from maintenance.database import SessionLocal
            session_factory = SessionLocal

        self.session_factory = session_factory
        self.config = config or CleanerConfig.from_settings()
        self.logger = logger or get_logger("db_cleaner")

        self.company_dedup = CompanyDeduplicator(self.config)
        self.round_dedup = FundingRoundDeduplicator(self.config)
        self.corrective_passes = {
            p.phase: p
            for p in (
                InvalidEntryRemover(self.config),
                CountryNormalizer(self.config),
                StageNormalizer(self.config),
                IndustryNormalizer(self.config),
                OrphanReaper(self.config),
                AberrantValueSanitizer(self.config),
            )
        }
        self.planner = PlanBuilder(self.company_dedup, self.round_dedup, self.corrective_passes)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        dry_run: bool = False,
        run_id: Optional[str] = None,
        skip_phases: Optional[Iterable] = None,
        triggered_by: Optional[str] = None,
    ) -> CleanerResult:
        """
        Run the cleaner.

        Args:
            dry_run: only plan; the store is never written
            run_id: MaintenanceRun row to track (created if missing, live runs only)
            skip_phases: phase names to leave out
            triggered_by: recorded on the MaintenanceRun row

        Raises:
            ValueError: an unknown phase name in skip_phases
        """
        skip = parse_phases(skip_phases)
        started = time.monotonic()

        self.logger.info("=" * 60)
        self.logger.info(f"DB CLEANER {'DRY RUN' if dry_run else 'RUN'} (run_id={run_id})")
        if skip:
            self.logger.info(f"Skipping phases: {sorted(p.value for p in skip)}")
        self.logger.info("=" * 60)

        if dry_run:
            return self._dry_run(run_id, skip, started)

        lock = _store_lock(self.session_factory)
        if not lock.acquire(blocking=False):
            # The run holding the lock may use the same run_id, so its row is left alone
            return self._abort(run_id, started, PhaseErrorRecord(
                message="another DB cleaner run is in progress in this process",
                error_type=RunInProgressError.__name__,
            ), record=False)
        try:
            return self._live_run(run_id, skip, started, triggered_by)
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _dry_run(self, run_id: Optional[str], skip: frozenset, started: float) -> CleanerResult:
        errors = []
        plan = None
        status = None

        session = self.session_factory()
        try:
            uow = ReadOnlyUnitOfWork(session, batch_size=self.config.batch_size)
            plan = self.planner.build(uow, skip, errors)
        except FetchError as e:
            self.logger.error(f"[DRY-RUN] Aborted, store unreachable: {e}")
            errors.append(PhaseErrorRecord.from_exception(e))
            status = MaintenanceStatus.FAILED
        finally:
            session.rollback()
            session.close()

        status = status or self._status_for(errors)
        result = CleanerResult(
            success=status != MaintenanceStatus.FAILED,
            status=status,
            dry_run=True,
            run_id=run_id,
            duration_ms=_elapsed_ms(started),
            errors=errors,
            plan=plan,
        )
        self.logger.info(f"[DRY-RUN] Finished with status {status.value} in {result.duration_ms}ms")
        return result

    # ------------------------------------------------------------------
    # Live run
    # ------------------------------------------------------------------

    def _live_run(
        self,
        run_id: Optional[str],
        skip: frozenset,
        started: float,
        triggered_by: Optional[str],
    ) -> CleanerResult:
        try:
            self._claim_run(run_id, triggered_by)
        except RunInProgressError as e:
            return self._abort(run_id, started, PhaseErrorRecord.from_exception(e))
        except SQLAlchemyError as e:
            self.logger.error(f"Run aborted, store unreachable: {e}")
            return self._abort(run_id, started, PhaseErrorRecord.from_exception(FetchError(str(e))))

        details = CleanerDetails()
        errors = []
        status = None

        session = self.session_factory()
        uow = UnitOfWork(session, batch_size=self.config.batch_size)
        try:
            for phase in DEDUP_PHASES:
                if phase in skip:
                    self.logger.info(f"Skipping phase {phase.value}")
                    continue
                self._run_dedup_phase(uow, phase, run_id, details, errors)

            group = [phase for phase in CORRECTIVE_PHASES if phase not in skip]
            if group:
                self._run_corrective_group(uow, group, details, errors)
        except FetchError as e:
            self.logger.error(f"Run aborted, store unreachable: {e}")
            errors.append(PhaseErrorRecord.from_exception(e))
            status = MaintenanceStatus.FAILED
        finally:
            session.close()

        status = status or self._status_for(errors)
        result = CleanerResult(
            success=status != MaintenanceStatus.FAILED,
            status=status,
            dry_run=False,
            run_id=run_id,
            items_processed=details.items_processed,
            items_updated=details.items_updated,
            items_failed=len(errors) + details.merges_failed,
            items_skipped=details.merges_skipped,
            duration_ms=_elapsed_ms(started),
            errors=errors,
            details=details,
        )
        self._finish_run(run_id, result, triggered_by)
        self._log_summary(result)
        return result

    def _run_dedup_phase(self, uow, phase, run_id, details: CleanerDetails, errors: list) -> None:
        dedup = self.company_dedup if phase == CleanerPhase.DEDUPLICATE_COMPANIES else self.round_dedup
        self.logger.info(f"Phase {phase.value}: starting")
        try:
            outcome = dedup.execute(uow, run_id)
        except FetchError:
            raise
        except Exception as e:
            self.logger.error(f"Phase {phase.value} failed: {e}")
            errors.append(PhaseErrorRecord.from_exception(e, phase))
            uow.session.rollback()
            return

        details.set_count(phase, outcome.merged)
        details.merges_failed += outcome.failed
        details.merges_skipped += outcome.skipped

    def _run_corrective_group(self, uow, group: list, details: CleanerDetails, errors: list) -> None:
        """
        Run the corrective phases in one transaction.

        On a phase error or a timeout nothing in the group is kept: the
        transaction rolls back and every group counter is reset to 0.
        """
        self.logger.info(f"Corrective phases: {[p.value for p in group]}")
        try:
            with uow.transaction(timeout_seconds=self.config.corrective_timeout_seconds):
                for phase in group:
                    try:
                        count = self.corrective_passes[phase].execute(uow)
                    except (FetchError, TransactionTimeoutError):
                        raise
                    except Exception as e:
                        raise PhaseError(phase.value, e) from e
                    details.set_count(phase, count)
                    self.logger.info(f"Phase {phase.value}: {count}")
        except TransactionTimeoutError as e:
            self.logger.error(f"Corrective phases timed out and were rolled back: {e}")
            for phase in group:
                details.set_count(phase, 0)
                errors.append(PhaseErrorRecord.from_exception(e, phase))
        except PhaseError as e:
            self.logger.error(f"Phase {e.phase} failed, corrective phases rolled back: {e.cause}")
            for phase in group:
                details.set_count(phase, 0)
            errors.append(PhaseErrorRecord(
                message=f"{e.cause} (corrective phases rolled back)",
                phase=e.phase,
                error_type=type(e.cause).__name__,
            ))

    def _status_for(self, errors: list) -> MaintenanceStatus:
        if not errors:
            return MaintenanceStatus.COMPLETED
        if len(errors) < self.config.failed_error_threshold:
            return MaintenanceStatus.PARTIAL
        return MaintenanceStatus.FAILED

    def _abort(
        self,
        run_id: Optional[str],
        started: float,
        error: PhaseErrorRecord,
        record: bool = True,
    ) -> CleanerResult:
        """FAILED result for a run that never started its phases; recorded on run_id unless record is False."""
        self.logger.warning(f"Run not started: {error.message}")
        result = CleanerResult(
            success=False,
            status=MaintenanceStatus.FAILED,
            dry_run=False,
            run_id=run_id,
            items_failed=1,
            duration_ms=_elapsed_ms(started),
            errors=[error],
        )
        if record:
            self._finish_run(run_id, result, None)
        return result

    # ------------------------------------------------------------------
    # Run tracking
    # ------------------------------------------------------------------

    def _claim_run(self, run_id: Optional[str], triggered_by: Optional[str]) -> None:
        """
        Refuse to start while another DB cleaner run is RUNNING and recent,
        then mark run_id RUNNING.
        """
        cutoff = datetime.now() - timedelta(minutes=self.config.run_lock_ttl_minutes)
        with self.session_factory.begin() as session:
            stmt = select(MaintenanceRun).where(
                MaintenanceRun.agent == MaintenanceAgent.DB_CLEANER,
                MaintenanceRun.status == MaintenanceStatus.RUNNING,
                MaintenanceRun.started_at >= cutoff,
            )
            if run_id is not None:
                stmt = stmt.where(MaintenanceRun.id != run_id)
            other = session.scalars(stmt.limit(1)).first()
            if other is not None:
                raise RunInProgressError(f"run {other.id} is in progress since {other.started_at}")

            if run_id is None:
                return
            run = session.get(MaintenanceRun, run_id)
            if run is None:
                run = MaintenanceRun(id=run_id, agent=MaintenanceAgent.DB_CLEANER)
                session.add(run)
            run.status = MaintenanceStatus.RUNNING
            run.started_at = datetime.now()
            if triggered_by:
                run.triggered_by = triggered_by

    def _finish_run(self, run_id: Optional[str], result: CleanerResult, triggered_by: Optional[str]) -> None:
        if run_id is None:
            return
        try:
            with self.session_factory.begin() as session:
                run = session.get(MaintenanceRun, run_id)
                if run is None:
                    run = MaintenanceRun(id=run_id, agent=MaintenanceAgent.DB_CLEANER, triggered_by=triggered_by)
                    session.add(run)
                run.status = result.status
                run.completed_at = datetime.now()
                run.duration_ms = result.duration_ms
                run.items_processed = result.items_processed
                run.items_updated = result.items_updated
                run.items_failed = result.items_failed
                run.items_skipped = result.items_skipped
                run.details = result.details.to_dict()
                run.errors = [e.to_dict() for e in result.errors]
        except SQLAlchemyError as e:
            self.logger.error(f"Could not record run {run_id} as {result.status.value}: {e}")

    def _log_summary(self, result: CleanerResult) -> None:
        details = result.details
        self.logger.info("=" * 60)
        self.logger.info(f"DB CLEANER {result.status.value.upper()} in {result.duration_ms}ms")
        self.logger.info("=" * 60)
        self.logger.info(f"Companies merged: {details.companies_merged}")
        self.logger.info(f"Funding rounds merged: {details.funding_rounds_merged}")
        self.logger.info(f"Invalid entries removed: {details.invalid_entries_removed}")
        self.logger.info(f"Countries normalized: {details.countries_normalized}")
        self.logger.info(f"Stages normalized: {details.stages_normalized}")
        self.logger.info(f"Industries normalized: {details.industries_normalized}")
        self.logger.info(f"Orphans removed: {details.orphans_removed}")
        self.logger.info(f"Aberrant values fixed: {details.aberrant_values_fixed}")
        if details.merges_failed or details.merges_skipped:
            self.logger.info(f"Merges failed: {details.merges_failed}, skipped: {details.merges_skipped}")
        for error in result.errors:
            self.logger.warning(f"  [{error.phase}] {error.message}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def run_cleaner(
    dry_run: bool = False,
    run_id: Optional[str] = None,
    skip_phases: Optional[Iterable] = None,
    session_factory: Optional[sessionmaker] = None,
    config: Optional[CleanerConfig] = None,
) -> CleanerResult:
    """Run the DB cleaner with default wiring."""
    return DbCleaner(session_factory, config).run(dry_run=dry_run, run_id=run_id, skip_phases=skip_phases)
