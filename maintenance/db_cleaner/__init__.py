"""
DB Cleaner

Scheduled data-quality maintenance for companies and funding rounds:
- Duplicate detection and merging (rapidfuzz + phonetic similarity)
- Country, stage and industry normalization
- Invalid entry, orphan and aberrant value cleanup
- Dry-run planning through a read-only unit of work
"""

from maintenance.db_cleaner.base import CleanerConfig
from maintenance.db_cleaner.orchestrator import DbCleaner, run_cleaner
from maintenance.db_cleaner.similarity import (
    SimilarityConfig,
    SimilarityScore,
    combined_similarity,
    normalize_name,
)
from maintenance.db_cleaner.types import (
    CleanerDetails,
    CleanerPhase,
    CleanerPlan,
    CleanerResult,
    PhaseErrorRecord,
)
from maintenance.db_cleaner.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork

__all__ = [
    "CleanerConfig",
    "CleanerDetails",
    "CleanerPhase",
    "CleanerPlan",
    "CleanerResult",
    "DbCleaner",
    "PhaseErrorRecord",
    "ReadOnlyUnitOfWork",
    "SimilarityConfig",
    "SimilarityScore",
    "UnitOfWork",
    "combined_similarity",
    "normalize_name",
    "run_cleaner",
]
