"""
Cleanup passes: invalid entries, orphaned children and aberrant values.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from sqlalchemy import or_, select

from maintenance.db_cleaner.base import CleanerConfig, CorrectivePass, record_label
from maintenance.db_cleaner.types import (
    CleanerPhase,
    PlannedAberrantFix,
    PlannedDeletion,
)
from maintenance.db_cleaner.unit_of_work import UnitOfWork, chunked
from maintenance.models import Company, CompanyEnrichment, FundingRound


class InvalidEntryRemover(CorrectivePass):
    """
    Delete records too empty to be useful:
    - companies with no industry, description or total raised, and no
      funding rounds or enrichments attached
    - unlinked funding rounds with no amount, stage or investors
    """

    phase = CleanerPhase.REMOVE_INVALID

    def plan(self, uow: UnitOfWork) -> list:
        planned = []

        has_rounds = select(FundingRound.id).where(FundingRound.company_id == Company.id).exists()
        has_enrichments = (
            select(CompanyEnrichment.id).where(CompanyEnrichment.company_id == Company.id).exists()
        )
        for batch in uow.iter_batches(
            Company,
            Company.industry.is_(None),
            Company.description.is_(None),
            Company.total_raised.is_(None),
            ~has_rounds,
            ~has_enrichments,
        ):
            planned.extend(
                PlannedDeletion("Company", c.id, c.name, "no industry, description, funding or enrichment")
                for c in batch
            )

        for batch in uow.iter_batches(
            FundingRound,
            FundingRound.amount.is_(None),
            FundingRound.amount_usd.is_(None),
            FundingRound.stage.is_(None),
            FundingRound.company_id.is_(None),
        ):
            # JSON emptiness is not portable in SQL
            planned.extend(
                PlannedDeletion("FundingRound", r.id, r.company_name, "unlinked round with no amount, stage or investors")
                for r in batch
                if not r.investors
            )

        self.logger.info(f"Found {len(planned)} invalid entries")
        return planned

    def apply(self, uow: UnitOfWork, planned: list) -> int:
        deleted = _delete_planned(uow, planned)
        self.logger.info(f"Removed {deleted} invalid entries")
        return deleted


class OrphanReaper(CorrectivePass):
    """Delete child rows whose company reference no longer resolves."""

    phase = CleanerPhase.REMOVE_ORPHANS

    # (child model, foreign key column) pairs pointing at Company
    RELATIONS = (
        (FundingRound, FundingRound.company_id),
        (CompanyEnrichment, CompanyEnrichment.company_id),
    )

    def plan(self, uow: UnitOfWork) -> list:
        planned = []

        for model, fk_column in self.RELATIONS:
            dangling = set()
            for parent_ids in uow.iter_distinct_values(fk_column, batch_size=self.config.batch_size):
                dangling.update(set(parent_ids) - uow.existing_ids(Company, parent_ids))

            for chunk in chunked(sorted(dangling)):
                for record in uow.scalars(select(model).where(fk_column.in_(chunk)).order_by(model.id)):
                    planned.append(PlannedDeletion(
                        model.__name__,
                        record.id,
                        record_label(record),
                        f"company {record.company_id} does not exist",
                    ))

            if dangling:
                self.logger.warning(
                    f"{model.__name__}: {len(dangling)} missing companies referenced"
                )

        self.logger.info(f"Found {len(planned)} orphaned records")
        return planned

    def apply(self, uow: UnitOfWork, planned: list) -> int:
        deleted = _delete_planned(uow, planned)
        self.logger.info(f"Removed {deleted} orphaned records")
        return deleted


@dataclass(frozen=True)
class AberrantRule:
    """Rows of model matching condition(today) get fields set to NULL."""
    name: str
    model: type
    fields: tuple
    condition: Callable[[date], object]


def default_aberrant_rules(config: CleanerConfig) -> tuple:
    return (
        AberrantRule(
            "founded_year_in_future", Company, ("founded_year",),
            lambda today: Company.founded_year > today.year + 1,
        ),
        AberrantRule(
            "founded_year_too_old", Company, ("founded_year",),
            lambda today: Company.founded_year < config.founded_year_floor,
        ),
        AberrantRule(
            "negative_total_raised", Company, ("total_raised",),
            lambda today: Company.total_raised < 0,
        ),
        AberrantRule(
            "negative_employee_count", Company, ("employee_count",),
            lambda today: Company.employee_count < 0,
        ),
        AberrantRule(
            "data_quality_out_of_range", Company, ("data_quality",),
            lambda today: or_(
                Company.data_quality < config.score_min,
                Company.data_quality > config.score_max,
            ),
        ),
        AberrantRule(
            "negative_round_amount", FundingRound, ("amount", "amount_usd"),
            lambda today: or_(FundingRound.amount < 0, FundingRound.amount_usd < 0),
        ),
        AberrantRule(
            "round_amount_too_large", FundingRound, ("amount", "amount_usd"),
            lambda today: FundingRound.amount_usd > config.max_round_amount_usd,
        ),
        AberrantRule(
            "funding_date_in_future", FundingRound, ("funding_date",),
            lambda today: FundingRound.funding_date > today,
        ),
        AberrantRule(
            "funding_date_too_old", FundingRound, ("funding_date",),
            lambda today: FundingRound.funding_date < config.funding_date_floor,
        ),
    )


class AberrantValueSanitizer(CorrectivePass):
    """
    Null out values that cannot be true (future founding years, negative
    amounts, rounds above the plausible ceiling, ...). The row is kept.
    """

    phase = CleanerPhase.FIX_ABERRANT

    def __init__(
        self,
        config: Optional[CleanerConfig] = None,
        logger=None,
        rules: Optional[tuple] = None,
        clock: Callable[[], date] = date.today,
    ):
        super().__init__(config, logger)
        self.rules = rules or default_aberrant_rules(self.config)
        self.clock = clock

    def plan(self, uow: UnitOfWork) -> list:
        today = self.clock()
        planned = []

        for rule in self.rules:
            found = 0
            for batch in uow.iter_batches(rule.model, rule.condition(today)):
                for record in batch:
                    planned.append(PlannedAberrantFix(
                        model=rule.model.__name__,
                        record_id=record.id,
                        record_name=record_label(record),
                        rule=rule.name,
                        current_values={f: getattr(record, f) for f in rule.fields},
                        fields=rule.fields,
                    ))
                    found += 1
            if found:
                self.logger.info(f"Rule {rule.name}: {found} rows")

        return planned

    def apply(self, uow: UnitOfWork, planned: list) -> int:
        rules = {rule.name: rule for rule in self.rules}

        by_rule = defaultdict(list)
        for fix in planned:
            by_rule[fix.rule].append(fix.record_id)

        fixed = 0
        for rule_name, ids in by_rule.items():
            rule = rules[rule_name]
            fixed += uow.update_rows(rule.model, ids, {f: None for f in rule.fields})

        self.logger.info(f"Fixed {fixed} aberrant values")
        return fixed


_MODELS = {
    "Company": Company,
    "FundingRound": FundingRound,
    "CompanyEnrichment": CompanyEnrichment,
}


def _delete_planned(uow: UnitOfWork, planned: list) -> int:
    by_model = defaultdict(list)
    for deletion in planned:
        by_model[deletion.model].append(deletion.record_id)

    deleted = 0
    for model_name, ids in by_model.items():
        deleted += uow.delete_rows(_MODELS[model_name], ids)
    return deleted
