"""Exception hierarchy for fixture loading.

Every error raised by the loader derives from FixtureLoadError so callers can
catch one type, and every error carries the name of the fixture set that was
being applied when it happened (None when no fixture set was involved, e.g. a
connection failure before the first one).

Error kinds:
- StoreConnectionError: store unreachable, aborts immediately
- MalformedFixtureError: fixture file cannot be parsed or validated
- DuplicateKeyError: identifier collision during insert
- IndexConflictError: index cannot be built over the existing data
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docseed.models import LoadReport


class FixtureLoadError(Exception):
    """Base exception for fixture loading."""

    def __init__(self, message: str, fixture_set: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fixture_set = fixture_set
        self.report: LoadReport | None = None

    @property
    def kind(self) -> str:
        """Short error kind shown to CLI users."""
        return type(self).__name__

    def __str__(self) -> str:
        if self.fixture_set:
            return f"[{self.fixture_set}] {self.message}"
        return self.message


class StoreConnectionError(FixtureLoadError, ConnectionError):
    """The document store could not be reached."""


class MalformedFixtureError(FixtureLoadError):
    """A fixture file could not be parsed or failed validation."""

    def __init__(
        self,
        message: str,
        fixture_set: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message, fixture_set)
        self.errors = errors if errors is not None else [message]


class DuplicateKeyError(FixtureLoadError):
    """A document collided with an identifier or unique key already stored."""

    def __init__(
        self,
        message: str,
        fixture_set: str | None = None,
        document_index: int | None = None,
        document_id: Any = None,
        committed: int = 0,
    ) -> None:
        super().__init__(message, fixture_set)
        self.document_index = document_index
        self.document_id = document_id
        # Documents of the failing batch the store kept before the collision
        self.committed = committed


class IndexConflictError(FixtureLoadError):
    """An index declaration conflicts with existing data or indexes."""

    def __init__(
        self,
        message: str,
        fixture_set: str | None = None,
        index_name: str | None = None,
    ) -> None:
        super().__init__(message, fixture_set)
        self.index_name = index_name
