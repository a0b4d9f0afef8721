"""Document store adapters.

The loader talks to the database only through the DocumentStore protocol,
and always through an explicit store handle bound to one database. There is
no ambient "current database".

Implementations:
- MongoStore: MongoDB (or a wire-compatible server) through pymongo
- MemoryStore: in-process collections for dry runs and unit tests

Both translate store failures into the docseed.errors hierarchy so the loader
never sees driver exceptions for the known failure kinds.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Protocol

from pymongo import MongoClient
from pymongo.errors import (
    BulkWriteError,
    ConfigurationError,
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
)
from pymongo.errors import DuplicateKeyError as PyMongoDuplicateKeyError

from docseed.errors import (
    DuplicateKeyError,
    FixtureLoadError,
    IndexConflictError,
    StoreConnectionError,
)
from docseed.models import IndexDeclaration

if TYPE_CHECKING:
    from docseed.config import LoaderConfig

logger = logging.getLogger(__name__)

# Server error codes
DUPLICATE_KEY_CODE = 11000
INDEX_OPTIONS_CONFLICT_CODE = 85
INDEX_KEY_SPECS_CONFLICT_CODE = 86
INDEX_CONFLICT_CODES = {
    DUPLICATE_KEY_CODE,
    INDEX_OPTIONS_CONFLICT_CODE,
    INDEX_KEY_SPECS_CONFLICT_CODE,
}

ID_INDEX_NAME = "_id_"


class DocumentStore(Protocol):
    """Primitives the loader needs from a document database."""

    database: str

    def ping(self) -> None: ...

    def insert_many(self, collection: str, documents: Sequence[dict[str, Any]]) -> int: ...

    def insert_one(self, collection: str, document: dict[str, Any]) -> None: ...

    def delete_ids(self, collection: str, ids: Sequence[Any]) -> int: ...

    def drop(self, collection: str) -> None: ...

    def count(self, collection: str) -> int: ...

    def create_index(self, collection: str, declaration: IndexDeclaration) -> str: ...

    def index_names(self, collection: str) -> list[str]: ...

    def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def close(self) -> None: ...


# =============================================================================
# MongoDB
# =============================================================================


def _duplicate_from_bulk(error: BulkWriteError, documents: Sequence[dict[str, Any]]) -> FixtureLoadError:
    """Translate an ordered bulk insert failure.

    An ordered insert stops at the first write error, so ``nInserted`` is the
    number of documents committed before the offending one.
    """
    details = error.details or {}
    write_errors = details.get("writeErrors") or []
    committed = details.get("nInserted", 0)
    if not write_errors:
        return FixtureLoadError(f"Bulk insert failed: {error}")

    first = write_errors[0]
    index = first.get("index", committed)
    document_id = documents[index].get("_id") if 0 <= index < len(documents) else None
    if first.get("code") != DUPLICATE_KEY_CODE:
        return FixtureLoadError(f"Insert of document {index} failed: {first.get('errmsg', error)}")
    return DuplicateKeyError(
        f"Duplicate key at document {index} (_id={document_id!r}): {first.get('errmsg', '')}",
        document_index=index,
        document_id=document_id,
        committed=committed,
    )


class MongoStore:
    """DocumentStore over a pymongo client bound to one database."""

    def __init__(self, client: MongoClient, database: str) -> None:
        self._client = client
        self._db = client[database]
        self.database = database

    @classmethod
    def connect(cls, uri: str, database: str, server_timeout_ms: int = 5000) -> MongoStore:
        """Create a client and verify the server answers before returning."""
        try:
            client: MongoClient = MongoClient(uri, serverSelectionTimeoutMS=server_timeout_ms)
        except ConfigurationError as e:
            raise StoreConnectionError(f"Invalid MongoDB configuration: {e}") from e

        store = cls(client, database)
        try:
            store.ping()
        except StoreConnectionError:
            client.close()
            raise
        return store

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except ConnectionFailure as e:
            raise StoreConnectionError(f"Lost connection during {action}: {e}") from e

    def ping(self) -> None:
        try:
            self._client.admin.command("ping")
        except ConnectionFailure as e:
            raise StoreConnectionError(f"MongoDB is unreachable: {e}") from e

    def insert_many(self, collection: str, documents: Sequence[dict[str, Any]]) -> int:
        # pymongo adds _id to the dicts it is given; hand it copies
        batch = [dict(document) for document in documents]
        with self._guard(f"insert into '{collection}'"):
            try:
                result = self._db[collection].insert_many(batch, ordered=True)
            except BulkWriteError as e:
                raise _duplicate_from_bulk(e, batch) from e
            except OperationFailure as e:
                raise FixtureLoadError(f"Insert into '{collection}' failed: {e}") from e
        return len(result.inserted_ids)

    def insert_one(self, collection: str, document: dict[str, Any]) -> None:
        with self._guard(f"insert into '{collection}'"):
            try:
                self._db[collection].insert_one(dict(document))
            except PyMongoDuplicateKeyError as e:
                raise DuplicateKeyError(
                    f"Duplicate key (_id={document.get('_id')!r}): {e}",
                    document_id=document.get("_id"),
                ) from e
            except OperationFailure as e:
                raise FixtureLoadError(
                    f"Insert of _id={document.get('_id')!r} into '{collection}' failed: {e}"
                ) from e

    def delete_ids(self, collection: str, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        with self._guard(f"delete from '{collection}'"):
            result = self._db[collection].delete_many({"_id": {"$in": list(ids)}})
        return result.deleted_count

    def drop(self, collection: str) -> None:
        with self._guard(f"drop of '{collection}'"):
            self._db.drop_collection(collection)

    def count(self, collection: str) -> int:
        with self._guard(f"count of '{collection}'"):
            return self._db[collection].count_documents({})

    def create_index(self, collection: str, declaration: IndexDeclaration) -> str:
        options: dict[str, Any] = {"name": declaration.index_name}
        if declaration.unique:
            options["unique"] = True

        with self._guard(f"index build on '{collection}'"):
            try:
                return self._db[collection].create_index(list(declaration.keys), **options)
            except OperationFailure as e:
                if e.code in INDEX_CONFLICT_CODES:
                    raise IndexConflictError(
                        f"Cannot build index '{declaration.index_name}' on '{collection}': "
                        f"{e.details.get('errmsg', e) if e.details else e}",
                        index_name=declaration.index_name,
                    ) from e
                raise FixtureLoadError(
                    f"Index build '{declaration.index_name}' on '{collection}' failed: {e}"
                ) from e

    def index_names(self, collection: str) -> list[str]:
        with self._guard(f"index listing of '{collection}'"):
            return list(self._db[collection].index_information())

    def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        with self._guard(f"aggregation on '{collection}'"):
            try:
                return list(self._db[collection].aggregate(pipeline))
            except PyMongoError as e:
                raise FixtureLoadError(f"Aggregation on '{collection}' failed: {e}") from e

    def close(self) -> None:
        self._client.close()


# =============================================================================
# In-process store
# =============================================================================


def _lookup(document: dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path; missing fields resolve to None."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _freeze(value: Any) -> Any:
    """Hashable form of a document value for uniqueness checks."""
    if isinstance(value, dict):
        return tuple((key, _freeze(child)) for key, child in value.items())
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(child) for child in value)
    return value


def _index_values(value: Any, parts: list[str]) -> list[Any]:
    """Frozen values a multikey index stores for a dotted path.

    Arrays met along the path, or at its end, contribute one value per
    element, the way the server indexes them. A missing field indexes as
    None and an empty array as an empty tuple.

    Examples:
        >>> _index_values({"tags": ["a", "b"]}, ["tags"])
        ['a', 'b']
        >>> _index_values({"items": [{"sku": "a"}, {"sku": "b"}]}, ["items", "sku"])
        ['a', 'b']
    """
    if not parts:
        if isinstance(value, list):
            return [_freeze(element) for element in value] or [()]
        return [_freeze(value)]
    if isinstance(value, list):
        found: list[Any] = []
        for element in value:
            found.extend(_index_values(element, parts))
        return found or [None]
    if not isinstance(value, dict) or parts[0] not in value:
        return [None]
    return _index_values(value[parts[0]], parts[1:])


def _index_keys(document: dict[str, Any], declaration: IndexDeclaration) -> set[tuple[Any, ...]]:
    """Every index key a document produces; compound keys combine per field."""
    per_field = [_index_values(document, field.split(".")) for field in declaration.fields]
    return set(itertools.product(*per_field))


# =============================================================================
# In-process aggregation
# =============================================================================

GROUP_ACCUMULATORS = ("$sum", "$avg", "$min", "$max")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _evaluate(document: dict[str, Any], expression: Any) -> Any:
    """Evaluate a field path (``"$a.b"``), a document of expressions, or a constant."""
    if isinstance(expression, str) and expression.startswith("$"):
        return _lookup(document, expression[1:])
    if isinstance(expression, dict):
        return {key: _evaluate(document, child) for key, child in expression.items()}
    return expression


def _accumulate(operator: str, expression: Any, documents: list[dict[str, Any]]) -> Any:
    values = [_evaluate(document, expression) for document in documents]
    if operator == "$sum":
        return sum(value for value in values if _is_number(value))
    if operator == "$avg":
        numbers = [value for value in values if _is_number(value)]
        return sum(numbers) / len(numbers) if numbers else None
    present = [value for value in values if value is not None]
    if not present:
        return None
    return min(present) if operator == "$min" else max(present)


def _group(documents: list[dict[str, Any]], argument: dict[str, Any]) -> list[dict[str, Any]]:
    if "_id" not in argument:
        raise FixtureLoadError("$group requires an _id expression")

    groups: dict[Any, tuple[Any, list[dict[str, Any]]]] = {}
    for document in documents:
        group_id = _evaluate(document, argument["_id"])
        groups.setdefault(_freeze(group_id), (group_id, []))[1].append(document)

    rows = []
    for group_id, members in groups.values():
        row: dict[str, Any] = {"_id": group_id}
        for field, accumulator in argument.items():
            if field == "_id":
                continue
            if not isinstance(accumulator, dict) or len(accumulator) != 1:
                raise FixtureLoadError(f"$group field '{field}' must be a single accumulator")
            ((operator, expression),) = accumulator.items()
            if operator not in GROUP_ACCUMULATORS:
                raise FixtureLoadError(f"Unsupported accumulator in memory: {operator}")
            row[field] = _accumulate(operator, expression, members)
        rows.append(row)
    return rows


def _sort_key(value: Any) -> tuple[bool, Any]:
    # None (missing) sorts before every value, as on the server
    return (value is not None, value)


def _sort(documents: list[dict[str, Any]], argument: dict[str, int]) -> list[dict[str, Any]]:
    rows = list(documents)
    # Stable sorts from the last key to the first give a multi-key ordering
    for field, direction in reversed(list(argument.items())):
        rows.sort(key=lambda row, field=field: _sort_key(_lookup(row, field)), reverse=direction == -1)
    return rows


def run_pipeline(documents: list[dict[str, Any]], pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Evaluate the ``$group``/``$sort``/``$limit`` subset of the aggregation language.

    Raises:
        FixtureLoadError: For any other stage or accumulator
    """
    rows = copy.deepcopy(documents)
    for stage in pipeline:
        if len(stage) != 1:
            raise FixtureLoadError(f"Pipeline stage must have exactly one operator: {stage!r}")
        ((operator, argument),) = stage.items()
        if operator == "$group":
            rows = _group(rows, argument)
        elif operator == "$sort":
            rows = _sort(rows, argument)
        elif operator == "$limit":
            rows = rows[:argument]
        else:
            raise FixtureLoadError(f"Unsupported pipeline stage in memory: {operator}")
    return rows


class MemoryStore:
    """DocumentStore kept in process memory.

    Enforces ``_id`` uniqueness and unique indexes the way the server does,
    including multikey indexes over arrays, so a dry run fails on the same
    fixtures a real load would. Aggregation covers the ``$group``, ``$sort``
    and ``$limit`` stages the reports use.
    """

    def __init__(self, database: str = "memory") -> None:
        self.database = database
        self.closed = False
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._indexes: dict[str, dict[str, IndexDeclaration]] = {}

    def _check_open(self) -> None:
        if self.closed:
            raise StoreConnectionError(f"Store for '{self.database}' is closed")

    def _unique_keys(self, collection: str) -> list[IndexDeclaration]:
        declarations = [IndexDeclaration(keys=(("_id", 1),), unique=True, name=ID_INDEX_NAME)]
        declarations.extend(d for d in self._indexes.get(collection, {}).values() if d.unique)
        return declarations

    def _violation(self, collection: str, document: dict[str, Any]) -> str | None:
        existing = self._collections.get(collection, [])
        for declaration in self._unique_keys(collection):
            keys = _index_keys(document, declaration)
            for stored in existing:
                if keys & _index_keys(stored, declaration):
                    return declaration.index_name
        return None

    def ping(self) -> None:
        self._check_open()

    def insert_many(self, collection: str, documents: Sequence[dict[str, Any]]) -> int:
        self._check_open()
        for index, document in enumerate(documents):
            violated = self._violation(collection, document)
            if violated:
                raise DuplicateKeyError(
                    f"Duplicate key at document {index} (_id={document.get('_id')!r}) "
                    f"violates index '{violated}'",
                    document_index=index,
                    document_id=document.get("_id"),
                    committed=index,
                )
            self._collections.setdefault(collection, []).append(copy.deepcopy(document))
        return len(documents)

    def insert_one(self, collection: str, document: dict[str, Any]) -> None:
        try:
            self.insert_many(collection, [document])
        except DuplicateKeyError as e:
            e.document_index = None
            e.committed = 0
            raise

    def delete_ids(self, collection: str, ids: Sequence[Any]) -> int:
        self._check_open()
        targets = {_freeze(document_id) for document_id in ids}
        documents = self._collections.get(collection, [])
        kept = [d for d in documents if _freeze(d.get("_id")) not in targets]
        self._collections[collection] = kept
        return len(documents) - len(kept)

    def drop(self, collection: str) -> None:
        self._check_open()
        self._collections.pop(collection, None)
        self._indexes.pop(collection, None)

    def count(self, collection: str) -> int:
        self._check_open()
        return len(self._collections.get(collection, []))

    def create_index(self, collection: str, declaration: IndexDeclaration) -> str:
        self._check_open()
        name = declaration.index_name
        indexes = self._indexes.setdefault(collection, {})

        for existing_name, existing in indexes.items():
            if existing_name == name or existing.keys == declaration.keys:
                equivalent = (
                    existing_name == name
                    and existing.keys == declaration.keys
                    and existing.unique == declaration.unique
                )
                if equivalent:
                    return name
                raise IndexConflictError(
                    f"Index '{name}' on '{collection}' conflicts with existing index '{existing_name}'",
                    index_name=name,
                )

        if declaration.unique:
            seen: set[tuple[Any, ...]] = set()
            for document in self._collections.get(collection, []):
                keys = _index_keys(document, declaration)
                shared = keys & seen
                if shared:
                    raise IndexConflictError(
                        f"Cannot build unique index '{name}' on '{collection}': "
                        f"duplicate value {next(iter(shared))!r} in existing documents",
                        index_name=name,
                    )
                seen |= keys

        indexes[name] = declaration
        self._collections.setdefault(collection, [])
        return name

    def index_names(self, collection: str) -> list[str]:
        self._check_open()
        if collection not in self._collections:
            return []
        return [ID_INDEX_NAME, *self._indexes.get(collection, {})]

    def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self._check_open()
        return run_pipeline(self._collections.get(collection, []), pipeline)

    def documents(self, collection: str) -> list[dict[str, Any]]:
        """Copies of the stored documents, in insertion order."""
        return copy.deepcopy(self._collections.get(collection, []))

    def collections(self) -> Iterable[str]:
        return list(self._collections)

    def close(self) -> None:
        self.closed = True


@contextmanager
def open_store(config: LoaderConfig) -> Iterator[DocumentStore]:
    """Open the configured store and close it on every exit path."""
    store: DocumentStore
    if config.dry_run:
        logger.info(f"Dry run: loading '{config.database}' into memory")
        store = MemoryStore(config.database)
    else:
        store = MongoStore.connect(config.uri, config.database, config.server_timeout_ms)

    try:
        yield store
    finally:
        store.close()
