"""
Normalization passes: rewrite country, stage and industry values to their
canonical form. Unrecognized values are left as they are and flagged.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional

from maintenance.db_cleaner.base import CorrectivePass, record_label
from maintenance.db_cleaner.taxonomy import (
    normalize_country,
    normalize_industry,
    normalize_stage,
)
from maintenance.db_cleaner.types import (
    CleanerPhase,
    PlannedNormalization,
    ReviewFlag,
)
from maintenance.db_cleaner.unit_of_work import UnitOfWork
from maintenance.models import Company, FundingRound


@dataclass(frozen=True)
class NormalizationRule:
    """Read model.source_field, write the canonical value to model.target_field."""
    model: type
    source_field: str
    target_field: str
    lookup: Callable[[Optional[str]], Optional[str]]


@dataclass
class NormalizationPlan:
    changes: list = field(default_factory=list)
    review_flags: list = field(default_factory=list)


class NormalizationPass(CorrectivePass):
    rules: tuple = ()

    def plan(self, uow: UnitOfWork) -> NormalizationPlan:
        result = NormalizationPlan()

        for rule in self.rules:
            source = getattr(rule.model, rule.source_field)
            for batch in uow.iter_batches(rule.model, source.is_not(None)):
                for record in batch:
                    raw = getattr(record, rule.source_field)
                    if not raw or not raw.strip():
                        continue

                    canonical = rule.lookup(raw)
                    if canonical is None:
                        result.review_flags.append(
                            ReviewFlag(rule.model.__name__, record.id, rule.source_field, raw)
                        )
                        continue

                    current = getattr(record, rule.target_field)
                    if canonical != current:
                        result.changes.append(PlannedNormalization(
                            model=rule.model.__name__,
                            record_id=record.id,
                            record_name=record_label(record),
                            source_field=rule.source_field,
                            target_field=rule.target_field,
                            old_value=current,
                            new_value=canonical,
                        ))

        for flag in result.review_flags:
            self.logger.warning(
                f"Unmapped {flag.field} value left for review: "
                f"model={flag.model} id={flag.record_id} value={flag.value!r}"
            )
        self.logger.info(
            f"{self.phase.value}: {len(result.changes)} to normalize, "
            f"{len(result.review_flags)} flagged for review"
        )
        return result

    def apply(self, uow: UnitOfWork, planned: NormalizationPlan) -> int:
        models = {rule.model.__name__: rule.model for rule in self.rules}

        # One UPDATE per (model, column, value)
        grouped = defaultdict(list)
        for change in planned.changes:
            grouped[(change.model, change.target_field, change.new_value)].append(change.record_id)

        updated = 0
        for (model_name, target_field, value), ids in grouped.items():
            updated += uow.update_rows(models[model_name], ids, {target_field: value})

        self.logger.info(f"{self.phase.value}: normalized {updated} values")
        return updated


class CountryNormalizer(NormalizationPass):
    phase = CleanerPhase.NORMALIZE_COUNTRIES
    rules = (
        NormalizationRule(Company, "headquarters", "headquarters", normalize_country),
        NormalizationRule(FundingRound, "geography", "geography", normalize_country),
    )


class StageNormalizer(NormalizationPass):
    phase = CleanerPhase.NORMALIZE_STAGES
    rules = (
        NormalizationRule(FundingRound, "stage", "stage_normalized", normalize_stage),
        NormalizationRule(Company, "last_round_stage", "last_round_stage", normalize_stage),
    )


class IndustryNormalizer(NormalizationPass):
    phase = CleanerPhase.NORMALIZE_INDUSTRIES
    rules = (
        NormalizationRule(Company, "industry", "industry", normalize_industry),
        NormalizationRule(FundingRound, "sector", "sector_normalized", normalize_industry),
    )
