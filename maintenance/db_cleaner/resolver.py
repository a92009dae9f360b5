"""
Merge resolution: decide which pairs in a candidate group are duplicates,
which record survives, and what the survivor gains from the other.

The same functions serve planning (on snapshots) and merging (on live rows),
so a dry run reports exactly the transfers a live merge would perform.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from config.logging import get_logger
from maintenance.db_cleaner.similarity import (
    SimilarityConfig,
    SimilarityScore,
    combined_similarity,
    normalize_name,
)
from maintenance.db_cleaner.taxonomy import normalize_country, normalize_stage
from maintenance.db_cleaner.types import (
    CompanyCandidate,
    PlannedMerge,
    PlannedRoundMerge,
    RoundCandidate,
    to_json_safe,
)
from maintenance.models import CompanyStatus

# Filled on the survivor only when it has no value
COMPANY_SCALAR_FIELDS = (
    "description",
    "short_description",
    "website",
    "linkedin_url",
    "crunchbase_url",
    "industry",
    "sub_industry",
    "business_model",
    "target_market",
    "headquarters",
    "city",
    "region",
    "founded_year",
    "employee_count",
    "employee_range",
    "status_details",
    "total_raised",
    "last_valuation",
    "last_round_stage",
    "last_round_date",
)

# Unioned, survivor entries first
COMPANY_LIST_FIELDS = ("founders", "competitors", "notable_clients", "aliases")

COMPANY_SNAPSHOT_FIELDS = ("name", "data_quality") + COMPANY_SCALAR_FIELDS + COMPANY_LIST_FIELDS

# Points per populated field
COMPLETENESS_WEIGHTS = {
    "industry": 2.0,
    "description": 2.0,
    "founders": 2.0,
    "total_raised": 2.0,
    "website": 1.0,
    "headquarters": 1.0,
    "founded_year": 1.0,
}
DATA_QUALITY_DIVISOR = 20
FUNDING_ROUND_POINTS = 0.5
ENRICHMENT_POINTS = 0.3

ROUND_SCALAR_FIELDS = (
    "amount",
    "amount_usd",
    "currency",
    "funding_date",
    "stage",
    "stage_normalized",
    "geography",
    "sector",
    "sector_normalized",
    "lead_investor",
    "valuation_pre",
    "valuation_post",
    "source_url",
)
ROUND_LIST_FIELDS = ("investors",)
ROUND_SNAPSHOT_FIELDS = ROUND_SCALAR_FIELDS + ROUND_LIST_FIELDS + ("is_enriched",)


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def snapshot(record, fields: Iterable[str]) -> dict:
    """Plain-dict copy of the given attributes; lists are copied."""
    values = {}
    for name in fields:
        value = getattr(record, name)
        values[name] = list(value) if isinstance(value, (list, tuple)) else value
    return values


def list_item_key(item) -> Optional[str]:
    """
    Dedup key for a list entry: founders by name, everything else by its text.

    Only blank entries get no key. Entries whose text normalizes to nothing
    fall back to their casefolded text, and dicts without a name to their
    canonical JSON, so no entry carrying data is ever dropped by a union.
    """
    if is_blank(item):
        return None
    if isinstance(item, dict):
        if is_blank(item.get("name")):
            return json.dumps(to_json_safe(item), sort_keys=True, ensure_ascii=False)
        item = item["name"]
    text = str(item)
    return normalize_name(text) or text.strip().casefold()


def alias_key(item) -> Optional[str]:
    """Aliases are spellings, so "Stripe, Inc." and "Stripe" stay distinct."""
    if is_blank(item):
        return None
    return " ".join(str(item).casefold().split())


def union_list(keep_items: Optional[list], merge_items: Optional[list], key=list_item_key) -> tuple:
    """Return (keep items followed by unseen merge items, number added)."""
    result = []
    seen = set()
    for item in keep_items or []:
        result.append(item)
        k = key(item)
        if k:
            seen.add(k)

    added = 0
    for item in merge_items or []:
        k = key(item)
        if not k or k in seen:
            continue
        result.append(item)
        seen.add(k)
        added += 1

    return result, added


def compute_field_transfers(
    keep: Mapping,
    merge: Mapping,
    scalar_fields: Iterable[str] = COMPANY_SCALAR_FIELDS,
    list_fields: Iterable[str] = COMPANY_LIST_FIELDS,
) -> dict:
    """
    Values the survivor gains from the merged record, keyed by field.

    Scalars move only when blank on the survivor; lists gain the entries the
    survivor lacks. When both mappings carry "name", the merged name becomes
    an alias of the survivor. Nothing already on the survivor is overwritten.
    """
    updates = {}

    for name in scalar_fields:
        if is_blank(keep.get(name)) and not is_blank(merge.get(name)):
            updates[name] = merge[name]

    for name in list_fields:
        incoming = list(merge.get(name) or [])
        key = list_item_key
        if name == "aliases":
            key = alias_key
            if merge.get("name"):
                incoming.append(merge["name"])
            keep_name = alias_key(keep.get("name"))
            incoming = [a for a in incoming if alias_key(a) != keep_name]
        merged, added = union_list(keep.get(name), incoming, key)
        if added:
            updates[name] = merged

    return updates


def company_completeness(values: Mapping, funding_round_count: int = 0, enrichment_count: int = 0) -> float:
    score = sum(
        weight for name, weight in COMPLETENESS_WEIGHTS.items()
        if not is_blank(values.get(name))
    )
    score += (values.get("data_quality") or 0) / DATA_QUALITY_DIVISOR
    score += funding_round_count * FUNDING_ROUND_POINTS
    score += enrichment_count * ENRICHMENT_POINTS
    return score


DATA_QUALITY_FIELD_POINTS = {
    "name": 5,
    "industry": 15,
    "description": 15,
    "headquarters": 10,
    "total_raised": 15,
    "website": 5,
    "founded_year": 5,
    "founders": 10,
}
DATA_QUALITY_KNOWN_STATUS_POINTS = 5
# (points per row, cap)
DATA_QUALITY_ROUND_POINTS = (2, 10)
DATA_QUALITY_ENRICHMENT_POINTS = (1, 5)
DATA_QUALITY_MAX = 100


def data_quality_score(values: Mapping, funding_round_count: int = 0, enrichment_count: int = 0) -> int:
    """
    Stored data_quality score (0-100) of a company.

    60 points for essential fields, 25 for important ones, up to 15 for
    having funding rounds and enrichments.
    """
    score = sum(
        points for name, points in DATA_QUALITY_FIELD_POINTS.items()
        if not is_blank(values.get(name))
    )
    if values.get("status") not in (None, CompanyStatus.UNKNOWN, CompanyStatus.UNKNOWN.value):
        score += DATA_QUALITY_KNOWN_STATUS_POINTS

    per_round, round_cap = DATA_QUALITY_ROUND_POINTS
    score += min(funding_round_count * per_round, round_cap)
    per_enrichment, enrichment_cap = DATA_QUALITY_ENRICHMENT_POINTS
    score += min(enrichment_count * per_enrichment, enrichment_cap)

    return min(score, DATA_QUALITY_MAX)


def candidate_completeness(candidate: CompanyCandidate) -> float:
    return company_completeness(
        candidate.values, candidate.funding_round_count, candidate.enrichment_count
    )


def same_country(a: Optional[str], b: Optional[str]) -> bool:
    """True when both locations resolve to the same country."""
    if is_blank(a) or is_blank(b):
        return False
    country_a = normalize_country(a) or a.strip().lower()
    country_b = normalize_country(b) or b.strip().lower()
    return country_a == country_b


class VisitedGuard:
    """
    Tracks records already merged away during one pass.

    A pair is admitted only if neither side has been merged away; after a
    successful merge the caller records it. The planner and the executor
    both walk pairs through this guard, so they select the same pairs.
    """

    def __init__(self):
        self.merged_ids = set()
        self.skipped = 0

    def admit(self, planned) -> bool:
        if planned.keep_id in self.merged_ids or planned.merge_id in self.merged_ids:
            self.skipped += 1
            return False
        return True

    def record(self, planned) -> None:
        self.merged_ids.add(planned.merge_id)


def select_non_overlapping(planned: Iterable) -> tuple:
    """Pairs a fully successful run would merge, plus the number skipped."""
    guard = VisitedGuard()
    selected = []
    for pair in planned:
        if guard.admit(pair):
            guard.record(pair)
            selected.append(pair)
    return selected, guard.skipped


class MergeResolver:
    """
    Classifies company pairs within a candidate group.

    A pair is a duplicate when any of:
    - combined similarity >= duplicate_threshold
    - combined similarity >= moderate_threshold and both are in the same country
    - the normalized names are identical
    """

    def __init__(self, config: Optional[SimilarityConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or SimilarityConfig()
        self.logger = logger or get_logger("db_cleaner.resolver")

    def is_duplicate(self, score: SimilarityScore, in_same_country: bool) -> bool:
        if score.normalized_match:
            return True
        if score.combined >= self.config.duplicate_threshold:
            return True
        return in_same_country and score.combined >= self.config.moderate_threshold

    def choose_keep(self, a: CompanyCandidate, b: CompanyCandidate) -> tuple:
        """(keep, merge): higher completeness wins, the older record on ties."""
        if candidate_completeness(b) > candidate_completeness(a):
            return b, a
        return a, b

    def find_duplicates(self, group: list) -> list:
        """All duplicate pairs in an age-ordered group, in (i, j) order."""
        planned = []
        for i, a in enumerate(group):
            for b in group[i + 1:]:
                score = combined_similarity(a.name, b.name, self.config)
                in_same_country = same_country(a.headquarters, b.headquarters)
                if not self.is_duplicate(score, in_same_country):
                    continue

                keep, merge = self.choose_keep(a, b)
                transfers = compute_field_transfers(keep.values, merge.values)
                planned.append(PlannedMerge(
                    keep_id=keep.id,
                    keep_name=keep.name,
                    merge_id=merge.id,
                    merge_name=merge.name,
                    similarity=score,
                    justification=score.explain(in_same_country, self.config),
                    fields_to_transfer=tuple(transfers),
                    funding_rounds_to_transfer=merge.funding_round_count,
                    enrichments_to_transfer=merge.enrichment_count,
                ))
                self.logger.debug(
                    f"Duplicate pair: keep={keep.name!r} merge={merge.name!r} "
                    f"score={score.combined:.2f}"
                )
        return planned


# =============================================================================
# Funding rounds
# =============================================================================

def round_completeness(values: Mapping) -> float:
    score = 0.0
    if not is_blank(values.get("amount_usd")) or not is_blank(values.get("amount")):
        score += 2
    if values.get("funding_date"):
        score += 1
    if values.get("stage") or values.get("stage_normalized"):
        score += 1
    score += len(values.get("investors") or []) * 0.5
    if values.get("is_enriched"):
        score += 2
    return score


def _round_amount(values: Mapping) -> Optional[Decimal]:
    for name in ("amount_usd", "amount"):
        if values.get(name) is not None:
            return Decimal(str(values[name]))
    return None


def _round_stage(values: Mapping) -> Optional[str]:
    return values.get("stage_normalized") or normalize_stage(values.get("stage"))


class FundingRoundResolver:
    """
    Two rounds of the same company are one round reported twice when every
    signal known on both sides agrees: amounts within amount_tolerance of the
    larger one, dates within date_tolerance_days, equal normalized stages.
    At least one of amount or date must be known on both sides.
    """

    def __init__(
        self,
        amount_tolerance: float = 0.10,
        date_tolerance_days: int = 7,
        logger: Optional[logging.Logger] = None,
    ):
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self.date_tolerance_days = date_tolerance_days
        self.logger = logger or get_logger("db_cleaner.resolver")

    def match_reasons(self, a: Mapping, b: Mapping) -> Optional[list]:
        """Why the rounds match, or None if they do not."""
        reasons = []

        amount_a, amount_b = _round_amount(a), _round_amount(b)
        if amount_a is not None and amount_b is not None:
            largest = max(abs(amount_a), abs(amount_b))
            if largest and abs(amount_a - amount_b) / largest > self.amount_tolerance:
                return None
            reasons.append(f"amount within {self.amount_tolerance:.0%}")

        date_a, date_b = a.get("funding_date"), b.get("funding_date")
        if isinstance(date_a, date) and isinstance(date_b, date):
            if abs((date_a - date_b).days) > self.date_tolerance_days:
                return None
            reasons.append(f"dates within {self.date_tolerance_days} days")

        if not reasons:
            return None

        stage_a, stage_b = _round_stage(a), _round_stage(b)
        if stage_a and stage_b:
            if stage_a != stage_b:
                return None
            reasons.append("same stage")

        return reasons

    def choose_keep(self, a: RoundCandidate, b: RoundCandidate) -> tuple:
        if round_completeness(b.values) > round_completeness(a.values):
            return b, a
        return a, b

    def find_duplicates(self, group: list) -> list:
        """Duplicate pairs among one company's age-ordered rounds."""
        planned = []
        for i, a in enumerate(group):
            for b in group[i + 1:]:
                reasons = self.match_reasons(a.values, b.values)
                if reasons is None:
                    continue
                keep, merge = self.choose_keep(a, b)
                transfers = compute_field_transfers(
                    keep.values, merge.values, ROUND_SCALAR_FIELDS, ROUND_LIST_FIELDS
                )
                planned.append(PlannedRoundMerge(
                    keep_id=keep.id,
                    merge_id=merge.id,
                    company_id=keep.company_id,
                    reason=", ".join(reasons),
                    fields_to_transfer=tuple(transfers),
                ))
        return planned
