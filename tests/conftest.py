"""Pytest configuration and fixtures for docseed."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from docseed.models import FixtureSet, IndexDeclaration
from docseed.store import MemoryStore

# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def sample_data_dir(project_root: Path) -> Path:
    """Return the fixtures/sample-data directory."""
    return project_root / "fixtures" / "sample-data"


@pytest.fixture
def invalid_data_dir(project_root: Path) -> Path:
    """Return the fixtures/sample-invalid-data directory."""
    return project_root / "fixtures" / "sample-invalid-data"


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_users() -> list[dict[str, Any]]:
    """Return three users with distinct emails."""
    return [
        {"_id": "user1", "username": "alice_smith", "email": "alice.smith@example.com"},
        {"_id": "user2", "username": "bob_jones", "email": "bob.jones@example.com"},
        {"_id": "user3", "username": "carol_wilson", "email": "carol.wilson@example.com"},
    ]


@pytest.fixture
def users_fixture(sample_users: list[dict[str, Any]]) -> FixtureSet:
    """Return a users fixture set with a unique email index."""
    return FixtureSet(
        name="01-users",
        collection="users",
        documents=tuple(sample_users),
        indexes=(IndexDeclaration(keys=(("email", 1),), unique=True),),
    )


@pytest.fixture
def products_fixture() -> FixtureSet:
    """Return a products fixture set with two indexes."""
    return FixtureSet(
        name="02-products",
        collection="products",
        documents=(
            {"_id": "prod1", "name": "Wireless Bluetooth Headphones", "sku": "AT-WBH-001"},
            {"_id": "prod2", "name": "Organic Coffee Beans", "sku": "MR-OCB-500"},
        ),
        indexes=(
            IndexDeclaration(keys=(("category", 1),)),
            IndexDeclaration(keys=(("sku", 1),), unique=True),
        ),
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    """Return an empty in-memory store."""
    return MemoryStore("testdb")


# ============================================================================
# Temp File Fixtures
# ============================================================================


@pytest.fixture
def write_fixture(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture writing fixture files into a temporary directory.

    Returns:
        Function taking a filename and either a dict (dumped as JSON) or raw
        text, returning the written path.
    """
    fixtures_dir = tmp_path / "fixtures"
    fixtures_dir.mkdir()

    def _write(filename: str, content: dict[str, Any] | str) -> Path:
        path = fixtures_dir / filename
        text = content if isinstance(content, str) else json.dumps(content, indent=2)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment settings out of tests."""
    for name in list(os.environ):
        if name.startswith("DOCSEED_"):
            monkeypatch.delenv(name)


# ============================================================================
# Database Fixtures (for integration tests)
# ============================================================================


@pytest.fixture
def mongodb_connection_params() -> dict[str, str]:
    """Return MongoDB connection parameters for testing."""
    return {
        "uri": os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
        "database": "docseed_test",
    }


# ============================================================================
# Markers
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )
    config.addinivalue_line(
        "markers",
        "requires_mongodb: marks tests requiring a MongoDB connection",
    )
