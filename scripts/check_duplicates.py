#!/usr/bin/env python3
"""
Duplicate Company Diagnostic Script

Read-only: shows the candidate groups the DB cleaner would examine, the
similarity of every pair in them, and which pairs it would merge.

Usage:
    python scripts/check_duplicates.py
    python scripts/check_duplicates.py --min-group-size 3
    python scripts/check_duplicates.py --all-pairs
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from maintenance.database import SessionLocal
from maintenance.db_cleaner.base import CleanerConfig
from maintenance.db_cleaner.duplicates import CompanyDeduplicator
from maintenance.db_cleaner.grouping import group_candidates
from maintenance.db_cleaner.resolver import candidate_completeness, same_country
from maintenance.db_cleaner.similarity import bucket_key, combined_similarity
from maintenance.db_cleaner.unit_of_work import ReadOnlyUnitOfWork


def print_group(key: str, group: list, dedup: CompanyDeduplicator, all_pairs: bool) -> None:
    print(f"\n{'=' * 70}")
    print(f"Bucket '{key}' ({len(group)} companies)")
    print(f"{'=' * 70}")

    for company in group:
        print(
            f"  {company.name:<40} completeness={candidate_completeness(company):5.1f} "
            f"rounds={company.funding_round_count} hq={company.headquarters or '-'}"
        )

    planned = {(p.keep_id, p.merge_id) for p in dedup.resolver.find_duplicates(group)}
    for i, a in enumerate(group):
        for b in group[i + 1:]:
            duplicate = (a.id, b.id) in planned or (b.id, a.id) in planned
            if not duplicate and not all_pairs:
                continue
            score = combined_similarity(a.name, b.name, dedup.config.similarity)
            verdict = "MERGE" if duplicate else "keep apart"
            print(
                f"    {verdict:<10} '{a.name}' ~ '{b.name}': {score.combined:.0%} "
                f"({score.explain(same_country(a.headquarters, b.headquarters))})"
            )


def main():
    parser = argparse.ArgumentParser(description="Show potential duplicate companies")
    parser.add_argument(
        "--min-group-size",
        type=int,
        default=2,
        help="Only show buckets with at least this many companies",
    )
    parser.add_argument(
        "--all-pairs",
        action="store_true",
        help="Also show pairs that would not be merged",
    )
    args = parser.parse_args()

    db = SessionLocal()
    try:
        dedup = CompanyDeduplicator(CleanerConfig.from_settings())
        candidates = dedup.load_candidates(ReadOnlyUnitOfWork(db))
        groups = group_candidates(candidates, key=bucket_key)

        shown = 0
        for key, group in groups.items():
            if len(group) < args.min_group_size:
                continue
            print_group(key, group, dedup, args.all_pairs)
            shown += 1

        print(f"\n{len(candidates)} companies, {shown} candidate buckets shown")
    finally:
        db.rollback()
        db.close()


if __name__ == "__main__":
    main()
