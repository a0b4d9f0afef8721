"""Seed document databases from fixture files.

Fixture files hold one collection's sample documents plus the indexes to
build over them. The loader applies them in order against an explicit store
handle and reports the document count of every collection it touched.
"""

from __future__ import annotations

from docseed.config import LoaderConfig
from docseed.errors import (
    DuplicateKeyError,
    FixtureLoadError,
    IndexConflictError,
    MalformedFixtureError,
    StoreConnectionError,
)
from docseed.fixtures import load_fixture_directory, load_fixture_file, parse_fixture
from docseed.loader import load, load_database
from docseed.models import FixtureSet, IndexDeclaration, InsertOperation, LoadReport
from docseed.store import DocumentStore, MemoryStore, MongoStore, open_store

__all__ = [
    "DocumentStore",
    "DuplicateKeyError",
    "FixtureLoadError",
    "FixtureSet",
    "IndexConflictError",
    "IndexDeclaration",
    "InsertOperation",
    "LoadReport",
    "LoaderConfig",
    "MalformedFixtureError",
    "MemoryStore",
    "MongoStore",
    "StoreConnectionError",
    "load",
    "load_database",
    "load_fixture_directory",
    "load_fixture_file",
    "parse_fixture",
    "open_store",
]
