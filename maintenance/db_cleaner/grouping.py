"""
Candidate grouping: bucket records on a cheap key so only records that
share a bucket are ever scored against each other.
"""

from collections import defaultdict
from datetime import datetime
from typing import Callable, Hashable, Iterable, Optional

from maintenance.db_cleaner.similarity import bucket_key


def age_order(record) -> tuple:
    """Oldest first, ties broken by id."""
    return (record.created_at or datetime.min, record.id)


def group_by(
    records: Iterable,
    key: Callable[[object], Optional[Hashable]],
    min_size: int = 2,
) -> dict:
    """
    Bucket records by key, keeping buckets of at least min_size.

    Records whose key is empty or None are never grouped. Buckets come back
    in key order, each sorted oldest first.
    """
    buckets = defaultdict(list)
    for record in records:
        k = key(record)
        if not k:
            continue
        buckets[k].append(record)

    return {
        k: sorted(members, key=age_order)
        for k, members in sorted(buckets.items(), key=lambda item: str(item[0]))
        if len(members) >= min_size
    }


def group_candidates(candidates: Iterable, key: Callable[[str], str] = bucket_key) -> dict:
    """Group company candidates whose names share a bucket key."""
    return group_by(candidates, lambda candidate: key(candidate.name))
