"""
Tests for candidate grouping.
"""

from datetime import datetime

from maintenance.db_cleaner.grouping import group_by, group_candidates
from maintenance.db_cleaner.types import CompanyCandidate


def candidate(id, name, minute):
    return CompanyCandidate(
        id=id,
        name=name,
        created_at=datetime(2024, 1, 1, 0, minute),
        headquarters=None,
        values={"name": name},
    )


def test_groups_share_normalized_key_and_drop_singletons():
    groups = group_candidates([
        candidate("1", "Stripe", 1),
        candidate("2", "Stripe, Inc.", 2),
        candidate("3", "Doctolib", 3),
        candidate("4", "Open AI", 4),
        candidate("5", "OpenAI Inc", 5),
    ])

    assert set(groups) == {"stripe", "openai"}
    assert [c.id for c in groups["stripe"]] == ["1", "2"]


def test_group_members_are_oldest_first():
    groups = group_candidates([
        candidate("b", "Alan SAS", 9),
        candidate("a", "Alan", 5),
        candidate("c", "ALAN", 5),
    ])
    assert [c.id for c in groups["alan"]] == ["a", "c", "b"]


def test_empty_keys_are_never_grouped():
    groups = group_candidates([candidate("1", "", 1), candidate("2", "", 2)])
    assert groups == {}


def test_group_by_custom_key():
    records = [candidate("1", "x", 1), candidate("2", "y", 2), candidate("3", "x", 3)]
    groups = group_by(records, lambda r: r.name)
    assert list(groups) == ["x"]
    assert [r.id for r in groups["x"]] == ["1", "3"]
