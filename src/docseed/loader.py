"""Apply fixture sets to a document store.

A load is a single linear pass:
1. Check the store answers
2. For each fixture set, in order:
   a. Insert its documents (one ordered bulk request by default)
   b. Record the collection's document count
   c. Build its indexes, in declaration order
3. Return a LoadReport of counts per collection

The first failure aborts the load: later fixture sets are never applied and
nothing is retried. Earlier fixture sets stay applied; a malformed file met
part way through a lazily parsed directory fails like any other step. The
raised error carries the failing fixture set's name and the partial report
recorded so far.

Bulk inserts are not assumed atomic. By default the documents the store
committed before a duplicate key stay committed; with ``atomic_batches`` the
loader deletes them again before re-raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from docseed.config import LoaderConfig
from docseed.errors import DuplicateKeyError, FixtureLoadError
from docseed.models import FixtureSet, InsertOperation, LoadReport
from docseed.store import DocumentStore, open_store

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def _notify(progress: ProgressCallback | None, message: str) -> None:
    logger.info(message)
    if progress is not None:
        progress(message)


def insert_documents(store: DocumentStore, fixture_set: FixtureSet) -> int:
    """Write a fixture set's documents using its declared operation.

    Raises:
        DuplicateKeyError: With ``document_index`` and ``committed`` set to
            the position of the offending document in the batch.
    """
    if fixture_set.operation is InsertOperation.INSERT_MANY:
        return store.insert_many(fixture_set.collection, fixture_set.documents)

    for index, document in enumerate(fixture_set.documents):
        try:
            store.insert_one(fixture_set.collection, document)
        except DuplicateKeyError as e:
            e.document_index = index
            e.committed = index
            raise
    return len(fixture_set.documents)


def _roll_back(store: DocumentStore, fixture_set: FixtureSet, error: DuplicateKeyError) -> None:
    """Delete the documents of a failed batch that the store kept."""
    committed_ids = fixture_set.document_ids[: error.committed]
    removed = store.delete_ids(fixture_set.collection, committed_ids)
    logger.warning(
        f"Rolled back {removed} of {error.committed} committed documents "
        f"from '{fixture_set.collection}' ({fixture_set.name})"
    )
    error.committed -= removed


def apply_fixture_set(
    store: DocumentStore,
    fixture_set: FixtureSet,
    report: LoadReport,
    atomic_batches: bool = False,
    progress: ProgressCallback | None = None,
) -> None:
    """Insert one fixture set, record its count, then build its indexes."""
    collection = fixture_set.collection

    try:
        insert_documents(store, fixture_set)
    except DuplicateKeyError as e:
        if atomic_batches and e.committed:
            _roll_back(store, fixture_set, e)
        raise

    count = store.count(collection)
    report.record_count(collection, count)
    _notify(progress, f"Created {count} documents in '{collection}' ({fixture_set.name})")

    for declaration in fixture_set.indexes:
        name = store.create_index(collection, declaration)
        report.record_index(collection, name)
        logger.debug(f"Index '{name}' ready on '{collection}'")

    if fixture_set.indexes:
        _notify(
            progress,
            f"Created {len(fixture_set.indexes)} indexes on '{collection}': "
            + ", ".join(d.index_name for d in fixture_set.indexes),
        )


def load(
    store: DocumentStore,
    fixture_sets: Iterable[FixtureSet],
    atomic_batches: bool = False,
    drop_existing: bool = False,
    progress: ProgressCallback | None = None,
) -> LoadReport:
    """Apply fixture sets to an open store, in order.

    Args:
        store: Store handle bound to the target database
        fixture_sets: Fixture sets in load order; may be a lazy iterator
            (iter_fixture_files), in which case a malformed file fails as
            its own fixture set after the earlier ones are applied
        atomic_batches: Undo a failed batch's committed documents
        drop_existing: Drop each destination collection before its first
            fixture set is applied
        progress: Called with a message after each successful sub-step

    Returns:
        LoadReport with the document count of every processed collection

    Raises:
        FixtureLoadError: First failure; ``fixture_set`` names the set being
            applied and ``report`` holds the counts recorded before it
    """
    report = LoadReport(database=store.database)
    current: str | None = None

    try:
        store.ping()
    except FixtureLoadError as e:
        e.report = report
        raise

    dropped: set[str] = set()
    try:
        # Lazily parsed fixture sets raise MalformedFixtureError from here
        for fixture_set in fixture_sets:
            current = fixture_set.name
            if drop_existing and fixture_set.collection not in dropped:
                store.drop(fixture_set.collection)
                dropped.add(fixture_set.collection)
                logger.debug(f"Dropped '{fixture_set.collection}'")

            apply_fixture_set(store, fixture_set, report, atomic_batches, progress)
            report.applied.append(fixture_set.name)
            current = None
    except FixtureLoadError as e:
        if e.fixture_set is None:
            e.fixture_set = current
        e.report = report
        logger.debug(f"Aborting load at '{e.fixture_set}': {e.kind}")
        raise

    return report


def load_database(
    config: LoaderConfig,
    fixture_sets: Iterable[FixtureSet],
    drop_existing: bool = False,
    progress: ProgressCallback | None = None,
) -> LoadReport:
    """Open the configured target database, load fixture sets, close it.

    The store is closed whether the load succeeds or fails.
    """
    with open_store(config) as store:
        return load(
            store,
            fixture_sets,
            atomic_batches=config.atomic_batches,
            drop_existing=drop_existing,
            progress=progress,
        )
