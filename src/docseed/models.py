"""Data models for fixture sets, index declarations and load reports.

Fixture sets are built once when a fixture file is parsed and never change
afterwards, so they are frozen dataclasses holding tuples.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

IndexDirection = Union[int, str]

# Special index types accepted besides ascending (1) / descending (-1)
SPECIAL_INDEX_TYPES = frozenset({"text", "hashed", "2d", "2dsphere"})


class InsertOperation(str, Enum):
    """How the documents of a fixture set are written to the store.

    INSERT_MANY: one ordered bulk request for the whole batch
    INSERT_ONE: one request per document, in order
    """
    INSERT_MANY = "insertMany"
    INSERT_ONE = "insertOne"


@dataclass(frozen=True)
class IndexDeclaration:
    """A secondary index to build over a collection.

    Fields:
        keys: Ordered (field, direction) pairs
        unique: Whether the index enforces uniqueness
        name: Explicit index name; derived from the keys when omitted
    """
    keys: tuple[tuple[str, IndexDirection], ...]
    unique: bool = False
    name: str | None = None

    @property
    def index_name(self) -> str:
        """Index name, following MongoDB's default ``field_direction`` scheme.

        Examples:
            >>> IndexDeclaration(keys=(("email", 1),)).index_name
            'email_1'
            >>> IndexDeclaration(keys=(("userId", 1), ("orderDate", -1))).index_name
            'userId_1_orderDate_-1'
        """
        if self.name:
            return self.name
        return "_".join(f"{key}_{direction}" for key, direction in self.keys)

    @property
    def fields(self) -> list[str]:
        return [key for key, _direction in self.keys]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDeclaration:
        """Build from the fixture file form ``{"keys": {...}, "unique": bool}``."""
        return cls(
            keys=tuple((key, direction) for key, direction in data["keys"].items()),
            unique=bool(data.get("unique", False)),
            name=data.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {"keys": dict(self.keys), "unique": self.unique}
        if self.name:
            data["name"] = self.name
        return data


@dataclass(frozen=True)
class FixtureSet:
    """A named batch of documents plus the indexes to build over them."""
    name: str
    collection: str
    documents: tuple[dict[str, Any], ...]
    indexes: tuple[IndexDeclaration, ...] = ()
    operation: InsertOperation = InsertOperation.INSERT_MANY
    source: Path | None = None

    @property
    def document_ids(self) -> list[Any]:
        return [document.get("_id") for document in self.documents]

    def __len__(self) -> int:
        return len(self.documents)


@dataclass
class LoadReport:
    """Outcome of a load.

    ``counts`` maps collection name to the document count recorded after its
    insert, in the order collections were processed. When a load fails, the
    report attached to the error holds whatever was recorded before the
    failing step.
    """
    database: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    indexes: dict[str, list[str]] = field(default_factory=dict)
    applied: list[str] = field(default_factory=list)

    @property
    def total_documents(self) -> int:
        return sum(self.counts.values())

    def record_count(self, collection: str, count: int) -> None:
        self.counts[collection] = count

    def record_index(self, collection: str, index_name: str) -> None:
        names = self.indexes.setdefault(collection, [])
        if index_name not in names:
            names.append(index_name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "database": self.database,
            "counts": dict(self.counts),
            "indexes": {name: list(values) for name, values in self.indexes.items()},
            "applied": list(self.applied),
            "total_documents": self.total_documents,
        }
