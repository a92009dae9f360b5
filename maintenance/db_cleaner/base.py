"""
Shared configuration and the base class for corrective passes.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from config.logging import get_logger
from config.settings import settings
from maintenance.db_cleaner.similarity import SimilarityConfig
from maintenance.db_cleaner.types import CleanerPhase
from maintenance.db_cleaner.unit_of_work import UnitOfWork


@dataclass
class CleanerConfig:
    """Configuration for a DB cleaner run."""
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)

    # Funding rounds closer than this are the same round
    round_amount_tolerance: float = 0.10
    round_date_tolerance_days: int = 7

    batch_size: int = 1000
    corrective_timeout_seconds: Optional[float] = 300.0

    # Reported errors at or above this count turn the run FAILED
    failed_error_threshold: int = 4

    # A RUNNING row older than this no longer blocks new runs
    run_lock_ttl_minutes: int = 360

    founded_year_floor: int = 1900
    funding_date_floor: date = date(1990, 1, 1)
    max_round_amount_usd: float = 100_000_000_000
    score_min: int = 0
    score_max: int = 100

    @classmethod
    def from_settings(cls) -> "CleanerConfig":
        return cls(
            similarity=SimilarityConfig.from_settings(),
            round_amount_tolerance=settings.ROUND_AMOUNT_TOLERANCE,
            round_date_tolerance_days=settings.ROUND_DATE_TOLERANCE_DAYS,
            batch_size=settings.DEDUP_BATCH_SIZE,
            corrective_timeout_seconds=settings.CORRECTIVE_TRANSACTION_TIMEOUT_SECONDS,
            failed_error_threshold=settings.FAILED_ERROR_THRESHOLD,
            run_lock_ttl_minutes=settings.RUN_LOCK_TTL_MINUTES,
            founded_year_floor=settings.FOUNDED_YEAR_FLOOR,
            funding_date_floor=settings.FUNDING_DATE_FLOOR,
            max_round_amount_usd=settings.MAX_ROUND_AMOUNT_USD,
            score_min=settings.SCORE_MIN,
            score_max=settings.SCORE_MAX,
        )


def record_label(record) -> Optional[str]:
    """Display name for a company or funding round row."""
    return getattr(record, "name", None) or getattr(record, "company_name", None)


class CorrectivePass:
    """
    One corrective phase.

    plan() only reads and returns snapshots; apply() writes exactly what a
    plan describes. execute() is plan + apply, so a dry run and a live run
    detect the same rows.
    """

    phase: CleanerPhase

    def __init__(self, config: Optional[CleanerConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or CleanerConfig()
        self.logger = logger or get_logger(f"db_cleaner.{self.phase.value}")

    def plan(self, uow: UnitOfWork) -> Any:
        raise NotImplementedError

    def apply(self, uow: UnitOfWork, planned: Any) -> int:
        raise NotImplementedError

    def execute(self, uow: UnitOfWork) -> int:
        return self.apply(uow, self.plan(uow))
