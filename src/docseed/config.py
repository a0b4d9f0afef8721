"""Loader configuration from environment variables and .env files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Constants
DEFAULT_MONGODB_URI = "mongodb://localhost:27017"
DEFAULT_DATABASE = "sampledb"
DEFAULT_FIXTURES_PATH = Path(__file__).parent.parent.parent / "fixtures" / "sample-data"
DEFAULT_SERVER_TIMEOUT_MS = 5000

ENV_MONGODB_URI = "MONGODB_URI"
ENV_DATABASE = "DOCSEED_DATABASE"
ENV_FIXTURES_PATH = "DOCSEED_FIXTURES_PATH"
ENV_ATOMIC_BATCHES = "DOCSEED_ATOMIC_BATCHES"
ENV_SERVER_TIMEOUT_MS = "DOCSEED_SERVER_TIMEOUT_MS"

TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY_VALUES


@dataclass(frozen=True)
class LoaderConfig:
    """Configuration for a fixture load.

    Fields:
        uri: MongoDB connection string
        database: Target database name
        fixtures_path: Directory of fixture files
        atomic_batches: Remove a failed batch's committed documents before
            the error propagates
        server_timeout_ms: Server selection timeout
        dry_run: Load into an in-process store instead of the server
    """

    uri: str = DEFAULT_MONGODB_URI
    database: str = DEFAULT_DATABASE
    fixtures_path: Path = field(default_factory=lambda: DEFAULT_FIXTURES_PATH)
    atomic_batches: bool = False
    server_timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS
    dry_run: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> LoaderConfig:
        """Build config from the environment (after loading .env).

        Keyword arguments that are not None override environment values,
        which is how CLI options take precedence.
        """
        load_dotenv()

        config = cls(
            uri=os.getenv(ENV_MONGODB_URI, DEFAULT_MONGODB_URI),
            database=os.getenv(ENV_DATABASE, DEFAULT_DATABASE),
            fixtures_path=Path(os.getenv(ENV_FIXTURES_PATH, str(DEFAULT_FIXTURES_PATH))),
            atomic_batches=_env_flag(ENV_ATOMIC_BATCHES),
            server_timeout_ms=int(os.getenv(ENV_SERVER_TIMEOUT_MS, str(DEFAULT_SERVER_TIMEOUT_MS))),
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> LoaderConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
