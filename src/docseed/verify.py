"""Verify a seeded database against its fixture files.

Checks:
1. Each collection holds at least as many documents as its fixture sets declare
2. Every declared index exists
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from docseed.models import FixtureSet
from docseed.store import DocumentStore


@dataclass
class VerificationResult:
    """Result of a verification check."""

    name: str
    expected: int | None
    actual: int
    passed: bool
    message: str = ""


@dataclass
class VerificationReport:
    """Complete verification report."""

    counts: list[VerificationResult] = field(default_factory=list)
    indexes: list[VerificationResult] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        """Check if all verifications passed."""
        return all(r.passed for r in self.counts + self.indexes)

    @property
    def failures(self) -> list[VerificationResult]:
        """Get all failed verifications."""
        return [r for r in self.counts + self.indexes if not r.passed]


def expected_counts(fixture_sets: Sequence[FixtureSet]) -> dict[str, int]:
    """Sum declared documents per collection, in first-seen order."""
    counts: dict[str, int] = {}
    for fixture_set in fixture_sets:
        counts[fixture_set.collection] = counts.get(fixture_set.collection, 0) + len(fixture_set)
    return counts


def verify_counts(store: DocumentStore, fixture_sets: Sequence[FixtureSet]) -> list[VerificationResult]:
    results = []
    for collection, expected in expected_counts(fixture_sets).items():
        actual = store.count(collection)
        passed = actual >= expected
        results.append(VerificationResult(
            name=f"Collection: {collection}",
            expected=expected,
            actual=actual,
            passed=passed,
            message="" if passed else f"Expected at least {expected} documents, found {actual}",
        ))
    return results


def verify_indexes(store: DocumentStore, fixture_sets: Sequence[FixtureSet]) -> list[VerificationResult]:
    results = []
    existing: dict[str, list[str]] = {}
    for fixture_set in fixture_sets:
        collection = fixture_set.collection
        if collection not in existing:
            existing[collection] = store.index_names(collection)
        for declaration in fixture_set.indexes:
            exists = declaration.index_name in existing[collection]
            results.append(VerificationResult(
                name=f"Index: {collection}.{declaration.index_name}",
                expected=1,
                actual=1 if exists else 0,
                passed=exists,
                message="" if exists else f"Missing index: {declaration.index_name}",
            ))
    return results


def verify_seed(store: DocumentStore, fixture_sets: Sequence[FixtureSet]) -> VerificationReport:
    """Run every check against an open store."""
    return VerificationReport(
        counts=verify_counts(store, fixture_sets),
        indexes=verify_indexes(store, fixture_sets),
    )
