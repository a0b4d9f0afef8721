"""Read fixture files into immutable fixture sets.

A fixture file is a JSON document holding one collection's documents plus the
indexes to build over them. Non-JSON values (dates, ObjectIds) are written as
MongoDB Extended JSON, e.g. ``{"$date": "2024-01-15T10:30:00Z"}``.

Validation happens entirely here, before anything touches the store:
1. The text must be valid JSON and valid Extended JSON
2. The structure must match schemas/fixture_set.schema.json
3. No field name may start with the reserved ``$`` character

Any failure raises MalformedFixtureError, so a malformed file never commits
a single document. Files are parsed one at a time as the loader asks for
them (iter_fixture_files), so fixture sets before a malformed file are
still applied.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import jsonschema
from bson import json_util
from bson.errors import BSONError

from docseed.errors import MalformedFixtureError
from docseed.models import FixtureSet, IndexDeclaration, InsertOperation

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SCHEMA_PATH = Path(__file__).parent / "schemas" / "fixture_set.schema.json"
FIXTURE_GLOB_PATTERN = "*.json"
RESERVED_FIELD_PREFIX = "$"
MAX_REPORTED_ERRORS = 20

ERROR_INVALID_JSON = "Invalid JSON at line {}, column {}: {}"
ERROR_INVALID_EXTENDED_JSON = "Invalid extended JSON value: {}"
ERROR_RESERVED_FIELD = "Field name '{}' at {} starts with reserved character '$'"
ERROR_NOT_A_DIRECTORY = "Fixture directory does not exist: {}"


@lru_cache(maxsize=1)
def load_fixture_schema() -> dict[str, Any]:
    """Load the fixture set JSON schema shipped with the package."""
    with open(SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def _schema_errors(data: Any) -> list[str]:
    """Validate against the fixture schema, collecting every error."""
    validator = jsonschema.Draft202012Validator(load_fixture_schema())
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(part) for part in e.absolute_path]):
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        errors.append(f"Schema validation error at {location}: {error.message}")
    return errors


def find_reserved_fields(value: Any, path: str = "") -> list[str]:
    """Return the paths of all field names starting with ``$``.

    Walks nested mappings and lists, so ``{"a": [{"$b": 1}]}`` reports
    ``a.0.$b``.
    """
    found: list[str] = []
    if isinstance(value, dict):
        for key, child in value.items():
            child_path = f"{path}.{key}" if path else str(key)
            if isinstance(key, str) and key.startswith(RESERVED_FIELD_PREFIX):
                found.append(child_path)
            found.extend(find_reserved_fields(child, child_path))
    elif isinstance(value, list):
        for position, child in enumerate(value):
            found.extend(find_reserved_fields(child, f"{path}.{position}"))
    return found


def _decode(text: str, name: str) -> Any:
    try:
        return json.loads(text, object_hook=json_util.object_hook)
    except json.JSONDecodeError as e:
        raise MalformedFixtureError(
            ERROR_INVALID_JSON.format(e.lineno, e.colno, e.msg), fixture_set=name
        ) from e
    except (ValueError, TypeError, BSONError) as e:
        raise MalformedFixtureError(
            ERROR_INVALID_EXTENDED_JSON.format(e), fixture_set=name
        ) from e


def parse_fixture(text: str, name: str, source: Path | None = None) -> FixtureSet:
    """Parse fixture file content into a FixtureSet.

    Args:
        text: Raw file content
        name: Fixture set name used when the content does not declare one
        source: File the content was read from, if any

    Raises:
        MalformedFixtureError: Content is not valid JSON, does not match the
            fixture schema, or uses a reserved field name. ``errors`` on the
            exception lists every problem found.
    """
    data = _decode(text, name)

    errors = _schema_errors(data)
    if isinstance(data, dict):
        for document_index, document in enumerate(data.get("documents") or []):
            for field_path in find_reserved_fields(document):
                field_name = field_path.rsplit(".", 1)[-1]
                errors.append(
                    ERROR_RESERVED_FIELD.format(field_name, f"documents.{document_index}.{field_path}")
                )

    if errors:
        reported = errors[:MAX_REPORTED_ERRORS]
        declared_name = data.get("name") if isinstance(data, dict) else None
        raise MalformedFixtureError(
            f"{len(errors)} validation error(s): {reported[0]}",
            fixture_set=declared_name if isinstance(declared_name, str) else name,
            errors=reported,
        )

    return FixtureSet(
        name=data.get("name", name),
        collection=data["collection"],
        documents=tuple(data["documents"]),
        indexes=tuple(IndexDeclaration.from_dict(index) for index in data.get("indexes", [])),
        operation=InsertOperation(data.get("operation", InsertOperation.INSERT_MANY.value)),
        source=source,
    )


def load_fixture_file(path: Path) -> FixtureSet:
    """Read and parse a single fixture file. The file stem is the default name."""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFixtureError(f"File is not UTF-8 text: {e}", fixture_set=path.stem) from e
    fixture_set = parse_fixture(text, name=path.stem, source=path)
    logger.debug(
        f"Parsed {path.name}: {len(fixture_set)} documents for '{fixture_set.collection}'"
    )
    return fixture_set


def discover_fixture_files(directory: Path) -> list[Path]:
    """List fixture files in load order (sorted by filename, dotfiles skipped)."""
    if not directory.is_dir():
        raise FileNotFoundError(ERROR_NOT_A_DIRECTORY.format(directory))
    return sorted(
        path for path in directory.glob(FIXTURE_GLOB_PATTERN)
        if path.is_file() and not path.name.startswith(".")
    )


def iter_fixture_files(paths: Iterable[Path]) -> Iterator[FixtureSet]:
    """Parse fixture files lazily, one per iteration step.

    A malformed file raises MalformedFixtureError only when the iteration
    reaches it, after the caller has consumed every earlier fixture set.
    """
    for path in paths:
        yield load_fixture_file(path)


def load_fixture_directory(directory: Path) -> list[FixtureSet]:
    """Parse every fixture file in a directory, in load order.

    Stops at the first malformed file. Used where all fixture sets are needed
    up front (verification); loads go through iter_fixture_files.
    """
    return list(iter_fixture_files(discover_fixture_files(directory)))


def validate_fixture_directory(directory: Path) -> dict[str, list[str]]:
    """Validate all fixture files in a directory.

    Returns:
        Dict mapping file paths to their validation errors (valid files are
        omitted)
    """
    results: dict[str, list[str]] = {}

    for path in discover_fixture_files(directory):
        try:
            load_fixture_file(path)
        except MalformedFixtureError as e:
            results[str(path)] = e.errors

    return results
