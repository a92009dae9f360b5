"""
Value objects passed between the DB cleaner's detection and apply steps.

Plans hold snapshots, never ORM instances, so they stay valid across
transaction boundaries and can be serialized as-is.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from maintenance.models import CompanyMergeLog, MaintenanceStatus


class CleanerPhase(Enum):
    """Phases in execution order."""
    DEDUPLICATE_COMPANIES = "deduplicate_companies"
    DEDUPLICATE_FUNDING_ROUNDS = "deduplicate_rounds"
    REMOVE_INVALID = "remove_invalid"
    NORMALIZE_COUNTRIES = "normalize_countries"
    NORMALIZE_STAGES = "normalize_stages"
    NORMALIZE_INDUSTRIES = "normalize_industries"
    REMOVE_ORPHANS = "remove_orphans"
    FIX_ABERRANT = "fix_aberrant"


DEDUP_PHASES = (
    CleanerPhase.DEDUPLICATE_COMPANIES,
    CleanerPhase.DEDUPLICATE_FUNDING_ROUNDS,
)

# Share one transaction and one timeout
CORRECTIVE_PHASES = (
    CleanerPhase.REMOVE_INVALID,
    CleanerPhase.NORMALIZE_COUNTRIES,
    CleanerPhase.NORMALIZE_STAGES,
    CleanerPhase.NORMALIZE_INDUSTRIES,
    CleanerPhase.REMOVE_ORPHANS,
    CleanerPhase.FIX_ABERRANT,
)


def parse_phases(names: Optional[Iterable]) -> frozenset:
    """Turn phase names (or CleanerPhase members) into a set, rejecting unknown names."""
    phases = set()
    for name in names or ():
        if isinstance(name, CleanerPhase):
            phases.add(name)
            continue
        try:
            phases.add(CleanerPhase(str(name).strip().lower().replace("-", "_")))
        except ValueError:
            valid = ", ".join(p.value for p in CleanerPhase)
            raise ValueError(f"Unknown phase '{name}'. Valid phases: {valid}") from None
    return frozenset(phases)


def to_json_safe(value: Any) -> Any:
    """Convert Decimal/date/Enum values (recursively) to JSON-serializable types."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_safe(v) for v in value]
    return value


@dataclass(frozen=True)
class CompanyCandidate:
    """Read-time snapshot of a company, enough to score and plan a merge."""
    id: str
    name: str
    created_at: Optional[datetime]
    headquarters: Optional[str]
    values: dict
    funding_round_count: int = 0
    enrichment_count: int = 0


@dataclass(frozen=True)
class RoundCandidate:
    """Read-time snapshot of a funding round."""
    id: str
    company_id: str
    created_at: Optional[datetime]
    values: dict


@dataclass(frozen=True)
class PlannedMerge:
    keep_id: str
    keep_name: str
    merge_id: str
    merge_name: str
    similarity: Any  # SimilarityScore
    justification: str
    fields_to_transfer: tuple = ()
    # Child rows re-parented onto the survivor
    funding_rounds_to_transfer: int = 0
    enrichments_to_transfer: int = 0

    @property
    def record_ids(self) -> tuple:
        return (self.keep_id, self.merge_id)

    def to_dict(self) -> dict:
        return {
            "keep": {"id": self.keep_id, "name": self.keep_name},
            "merge": {"id": self.merge_id, "name": self.merge_name},
            "similarity": self.similarity.to_dict(),
            "reason": self.justification,
            "fields_to_transfer": list(self.fields_to_transfer),
            "funding_rounds_to_transfer": self.funding_rounds_to_transfer,
            "enrichments_to_transfer": self.enrichments_to_transfer,
        }


@dataclass(frozen=True)
class PlannedRoundMerge:
    keep_id: str
    merge_id: str
    company_id: str
    reason: str
    fields_to_transfer: tuple = ()

    @property
    def record_ids(self) -> tuple:
        return (self.keep_id, self.merge_id)

    def to_dict(self) -> dict:
        return asdict(self) | {"fields_to_transfer": list(self.fields_to_transfer)}


@dataclass(frozen=True)
class PlannedNormalization:
    model: str
    record_id: str
    record_name: Optional[str]
    source_field: str
    target_field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict:
        return to_json_safe(asdict(self))


@dataclass(frozen=True)
class ReviewFlag:
    """A value no normalization table recognizes; left untouched for manual review."""
    model: str
    record_id: str
    field: str
    value: Any

    def to_dict(self) -> dict:
        return to_json_safe(asdict(self))


@dataclass(frozen=True)
class PlannedDeletion:
    model: str
    record_id: str
    record_name: Optional[str]
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PlannedAberrantFix:
    model: str
    record_id: str
    record_name: Optional[str]
    rule: str
    current_values: dict
    fields: tuple

    def to_dict(self) -> dict:
        return to_json_safe(asdict(self))


@dataclass
class MergeResult:
    keep_id: str
    merge_id: str
    merge_log_id: str
    fields_transferred: list = field(default_factory=list)
    funding_rounds_transferred: int = 0
    enrichments_transferred: int = 0


@dataclass
class RoundMergeResult:
    keep_id: str
    merge_id: str
    fields_transferred: list = field(default_factory=list)


@dataclass
class PhaseErrorRecord:
    """A reported error, with the phase (and item, when known) it belongs to."""
    message: str
    phase: Optional[str] = None
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_exception(cls, exc: Exception, phase: Optional[CleanerPhase] = None, **kwargs) -> "PhaseErrorRecord":
        return cls(
            message=str(exc),
            phase=phase.value if phase else None,
            error_type=type(exc).__name__,
            **kwargs,
        )

    def to_dict(self) -> dict:
        return to_json_safe(asdict(self))


@dataclass
class CleanerDetails:
    companies_merged: int = 0
    funding_rounds_merged: int = 0
    invalid_entries_removed: int = 0
    countries_normalized: int = 0
    stages_normalized: int = 0
    industries_normalized: int = 0
    orphans_removed: int = 0
    aberrant_values_fixed: int = 0
    merges_failed: int = 0
    merges_skipped: int = 0

    # Counter touched by each phase
    PHASE_COUNTERS = {
        CleanerPhase.DEDUPLICATE_COMPANIES: "companies_merged",
        CleanerPhase.DEDUPLICATE_FUNDING_ROUNDS: "funding_rounds_merged",
        CleanerPhase.REMOVE_INVALID: "invalid_entries_removed",
        CleanerPhase.NORMALIZE_COUNTRIES: "countries_normalized",
        CleanerPhase.NORMALIZE_STAGES: "stages_normalized",
        CleanerPhase.NORMALIZE_INDUSTRIES: "industries_normalized",
        CleanerPhase.REMOVE_ORPHANS: "orphans_removed",
        CleanerPhase.FIX_ABERRANT: "aberrant_values_fixed",
    }

    def set_count(self, phase: CleanerPhase, count: int) -> None:
        setattr(self, self.PHASE_COUNTERS[phase], count)

    def get_count(self, phase: CleanerPhase) -> int:
        return getattr(self, self.PHASE_COUNTERS[phase])

    @property
    def items_processed(self) -> int:
        return sum(self.get_count(phase) for phase in CleanerPhase)

    @property
    def items_updated(self) -> int:
        return (
            self.countries_normalized
            + self.stages_normalized
            + self.industries_normalized
            + self.aberrant_values_fixed
        )

    def to_dict(self) -> dict:
        return asdict(self)


# Estimated cost per planned action, in milliseconds
DURATION_WEIGHTS_MS = {
    "companies_to_merge": 100,
    "funding_rounds_to_merge": 50,
    "invalid_companies": 10,
    "invalid_funding_rounds": 5,
    "orphans_to_delete": 5,
    "normalizations": 5,
    "aberrant_fixes": 5,
}


def format_duration(ms: float) -> str:
    """850 -> '850ms', 1200 -> '1.2s', 180000 -> '3min', 5400000 -> '1.5h'."""
    if ms < 1000:
        return f"{int(round(ms))}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    if ms < 3_600_000:
        return f"{round(ms / 60_000)}min"
    return f"{ms / 3_600_000:.1f}h"


@dataclass
class CleanerPlan:
    """Everything a live run would do, computed without writing."""
    companies_to_merge: list = field(default_factory=list)
    funding_rounds_to_merge: list = field(default_factory=list)
    invalid_to_delete: list = field(default_factory=list)
    orphans_to_delete: list = field(default_factory=list)
    normalizations: list = field(default_factory=list)
    review_flags: list = field(default_factory=list)
    aberrant_fixes: list = field(default_factory=list)

    def summary(self) -> dict:
        invalid_companies = sum(1 for d in self.invalid_to_delete if d.model == "Company")
        return {
            "companies_to_merge": len(self.companies_to_merge),
            "funding_rounds_to_merge": len(self.funding_rounds_to_merge),
            "invalid_companies": invalid_companies,
            "invalid_funding_rounds": len(self.invalid_to_delete) - invalid_companies,
            "orphans_to_delete": len(self.orphans_to_delete),
            "normalizations": len(self.normalizations),
            "review_flags": len(self.review_flags),
            "aberrant_fixes": len(self.aberrant_fixes),
        }

    @property
    def estimated_duration_ms(self) -> int:
        summary = self.summary()
        return sum(summary[key] * weight for key, weight in DURATION_WEIGHTS_MS.items())

    @property
    def estimated_duration(self) -> str:
        return format_duration(self.estimated_duration_ms)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary(),
            "estimated_duration_ms": self.estimated_duration_ms,
            "estimated_duration": self.estimated_duration,
            "companies_to_merge": [m.to_dict() for m in self.companies_to_merge],
            "funding_rounds_to_merge": [m.to_dict() for m in self.funding_rounds_to_merge],
            "invalid_to_delete": [d.to_dict() for d in self.invalid_to_delete],
            "orphans_to_delete": [d.to_dict() for d in self.orphans_to_delete],
            "normalizations": [n.to_dict() for n in self.normalizations],
            "review_flags": [f.to_dict() for f in self.review_flags],
            "aberrant_fixes": [f.to_dict() for f in self.aberrant_fixes],
        }


@dataclass
class CleanerResult:
    success: bool
    status: MaintenanceStatus
    dry_run: bool
    run_id: Optional[str] = None
    items_processed: int = 0
    items_updated: int = 0
    items_failed: int = 0
    items_skipped: int = 0
    duration_ms: int = 0
    errors: list = field(default_factory=list)
    details: CleanerDetails = field(default_factory=CleanerDetails)
    plan: Optional[CleanerPlan] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "run_id": self.run_id,
            "items_processed": self.items_processed,
            "items_updated": self.items_updated,
            "items_failed": self.items_failed,
            "items_skipped": self.items_skipped,
            "duration_ms": self.duration_ms,
            "errors": [e.to_dict() for e in self.errors],
            "details": self.details.to_dict(),
            "plan": self.plan.to_dict() if self.plan else None,
        }


@dataclass(frozen=True)
class MergeLogEntry:
    """Audit entry for one company merge; persisted as a CompanyMergeLog row."""
    id: str
    merged_from_id: str
    merged_from_name: str
    merged_into_id: str
    merged_into_name: str
    before_state: dict
    after_state: dict
    fields_transferred: tuple
    funding_rounds_transferred: int
    enrichments_transferred: int
    similarity_score: float
    similarity_details: dict
    match_reason: str
    merged_by: str = "DB_CLEANER"
    dry_run: bool = False
    maintenance_run_id: Optional[str] = None

    def to_record(self) -> CompanyMergeLog:
        return CompanyMergeLog(
            id=self.id,
            merged_from_id=self.merged_from_id,
            merged_from_name=self.merged_from_name,
            merged_into_id=self.merged_into_id,
            merged_into_name=self.merged_into_name,
            before_state=to_json_safe(self.before_state),
            after_state=to_json_safe(self.after_state),
            fields_transferred=list(self.fields_transferred),
            funding_rounds_transferred=self.funding_rounds_transferred,
            enrichments_transferred=self.enrichments_transferred,
            similarity_score=Decimal(str(round(self.similarity_score, 4))),
            similarity_details=to_json_safe(self.similarity_details),
            match_reason=self.match_reason,
            merged_by=self.merged_by,
            dry_run=self.dry_run,
            maintenance_run_id=self.maintenance_run_id,
        )
