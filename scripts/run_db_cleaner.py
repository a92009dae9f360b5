#!/usr/bin/env python3
"""
Run the DB cleaner: deduplicate companies and funding rounds, normalize
countries/stages/industries, remove invalid and orphaned records, fix
aberrant values.

Usage:
    python scripts/run_db_cleaner.py --dry-run
    python scripts/run_db_cleaner.py --run-id 3f6c... --triggered-by cron
    python scripts/run_db_cleaner.py --skip-phase normalize_industries --skip-phase fix_aberrant
    python scripts/run_db_cleaner.py --dry-run --json > plan.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from maintenance.database import SessionLocal, make_session_factory
from maintenance.db_cleaner import CleanerPhase, DbCleaner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run DB cleaner maintenance on companies and funding rounds"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing anything",
    )
    parser.add_argument(
        "--run-id",
        help="MaintenanceRun id to track this run under (created if missing)",
    )
    parser.add_argument(
        "--skip-phase",
        action="append",
        default=[],
        choices=[phase.value for phase in CleanerPhase],
        metavar="PHASE",
        help="Phase to skip (repeatable): " + ", ".join(p.value for p in CleanerPhase),
    )
    parser.add_argument(
        "--triggered-by",
        default="cli",
        help="Recorded on the MaintenanceRun row",
    )
    parser.add_argument(
        "--database-url",
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result (and plan) as JSON",
    )
    return parser


def print_plan(plan) -> None:
    summary = plan.summary()
    print("\nPLAN")
    print("-" * 60)
    for key, count in summary.items():
        print(f"  {key.replace('_', ' '):<28} {count}")
    print(f"  {'estimated duration':<28} {plan.estimated_duration}")

    if plan.companies_to_merge:
        print("\nCompany merges:")
        for merge in plan.companies_to_merge[:25]:
            print(
                f"  '{merge.merge_name}' -> '{merge.keep_name}' "
                f"({merge.similarity.combined:.0%}: {merge.justification})"
            )
        if len(plan.companies_to_merge) > 25:
            print(f"  ... and {len(plan.companies_to_merge) - 25} more")

    if plan.review_flags:
        print(f"\n{len(plan.review_flags)} values need manual review (no canonical mapping)")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    session_factory = make_session_factory(args.database_url) if args.database_url else SessionLocal
    cleaner = DbCleaner(session_factory)

    if not args.json:
        print("=" * 60)
        print("DB CLEANER")
        print("=" * 60)
        print(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
        if args.skip_phase:
            print(f"Skipping: {', '.join(args.skip_phase)}")
        print("=" * 60)

    result = cleaner.run(
        dry_run=args.dry_run,
        run_id=args.run_id,
        skip_phases=args.skip_phase,
        triggered_by=args.triggered_by,
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1

    print(f"\nStatus: {result.status.value.upper()} ({result.duration_ms}ms)")
    if result.plan is not None:
        print_plan(result.plan)
    else:
        for name, count in result.details.to_dict().items():
            print(f"  {name.replace('_', ' '):<28} {count}")

    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  [{error.phase or 'run'}] {error.message}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
