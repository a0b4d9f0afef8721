"""Unit tests for fixture file parsing and validation.

These tests validate:
1. Valid fixture files become immutable FixtureSets
2. Extended JSON values are decoded
3. Malformed files raise MalformedFixtureError before anything is loaded
4. Directories are read in filename order
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest
from bson import ObjectId

from docseed.errors import MalformedFixtureError
from docseed.fixtures import (
    discover_fixture_files,
    find_reserved_fields,
    load_fixture_directory,
    load_fixture_file,
    parse_fixture,
    validate_fixture_directory,
)
from docseed.models import InsertOperation

# Constants
SAMPLE_COLLECTIONS = ["users", "products", "orders", "analytics"]
SAMPLE_COUNTS = {"users": 5, "products": 5, "orders": 4, "analytics": 2}


class TestParseFixture:
    """Tests for parse_fixture on well-formed content."""

    def test_minimal_fixture(self) -> None:
        text = '{"collection": "users", "documents": [{"_id": "user1"}]}'

        fixture_set = parse_fixture(text, name="01-users")

        assert fixture_set.name == "01-users"
        assert fixture_set.collection == "users"
        assert fixture_set.documents == ({"_id": "user1"},)
        assert fixture_set.indexes == ()
        assert fixture_set.operation is InsertOperation.INSERT_MANY

    def test_declared_name_overrides_default(self) -> None:
        text = '{"name": "seed-users", "collection": "users", "documents": [{"_id": 1}]}'

        assert parse_fixture(text, name="01-users").name == "seed-users"

    def test_indexes_keep_declaration_order(self) -> None:
        text = """{
            "collection": "orders",
            "documents": [{"_id": "order1"}],
            "indexes": [
                {"keys": {"userId": 1, "orderDate": -1}},
                {"keys": {"orderNumber": 1}, "unique": true, "name": "order_number_unique"}
            ]
        }"""

        fixture_set = parse_fixture(text, name="03-orders")

        assert [d.index_name for d in fixture_set.indexes] == [
            "userId_1_orderDate_-1",
            "order_number_unique",
        ]
        assert fixture_set.indexes[0].keys == (("userId", 1), ("orderDate", -1))
        assert fixture_set.indexes[1].unique is True

    def test_extended_json_dates_are_decoded(self) -> None:
        text = """{
            "collection": "users",
            "documents": [{"_id": "user1", "createdAt": {"$date": "2024-01-15T10:30:00Z"}}]
        }"""

        document = parse_fixture(text, name="users").documents[0]

        assert isinstance(document["createdAt"], datetime)
        assert (document["createdAt"].year, document["createdAt"].month) == (2024, 1)

    def test_extended_json_object_ids_are_decoded(self) -> None:
        text = '{"collection": "users", "documents": [{"_id": {"$oid": "65a4f0c2e4b0a1b2c3d4e5f6"}}]}'

        document = parse_fixture(text, name="users").documents[0]

        assert document["_id"] == ObjectId("65a4f0c2e4b0a1b2c3d4e5f6")

    def test_insert_one_operation(self) -> None:
        text = '{"collection": "users", "operation": "insertOne", "documents": [{"_id": 1}]}'

        assert parse_fixture(text, name="users").operation is InsertOperation.INSERT_ONE


class TestMalformedFixtures:
    """Malformed content must raise MalformedFixtureError."""

    def test_unterminated_string(self) -> None:
        text = '{"collection": "users", "documents": [{"_id": "user1", "email": "alice@example.com}]}'

        with pytest.raises(MalformedFixtureError, match="Invalid JSON") as exc_info:
            parse_fixture(text, name="01-syntax-errors")

        assert exc_info.value.fixture_set == "01-syntax-errors"

    def test_invalid_object_id(self) -> None:
        text = '{"collection": "users", "documents": [{"_id": {"$oid": "not-an-object-id"}}]}'

        with pytest.raises(MalformedFixtureError, match="extended JSON"):
            parse_fixture(text, name="users")

    def test_reserved_top_level_field(self) -> None:
        text = '{"collection": "orders", "documents": [{"_id": "order1", "$invalid_field": "x"}]}'

        with pytest.raises(MalformedFixtureError) as exc_info:
            parse_fixture(text, name="orders")

        assert "$invalid_field" in exc_info.value.errors[0]
        assert "documents.0.$invalid_field" in exc_info.value.errors[0]

    def test_reserved_nested_field(self) -> None:
        text = """{
            "collection": "orders",
            "documents": [
                {"_id": "order1"},
                {"_id": "order2", "items": [{"productId": "prod1", "$qty": 2}]}
            ]
        }"""

        with pytest.raises(MalformedFixtureError) as exc_info:
            parse_fixture(text, name="orders")

        assert "documents.1.items.0.$qty" in exc_info.value.errors[0]

    def test_undefined_operation(self) -> None:
        text = '{"collection": "c", "operation": "nonExistentMethod", "documents": [{"_id": 1}]}'

        with pytest.raises(MalformedFixtureError, match="operation"):
            parse_fixture(text, name="c")

    def test_document_without_id(self) -> None:
        text = '{"collection": "users", "documents": [{"username": "alice_smith"}]}'

        with pytest.raises(MalformedFixtureError, match="_id"):
            parse_fixture(text, name="users")

    def test_unknown_top_level_key(self) -> None:
        text = '{"collection": "users", "documents": [{"_id": 1}], "database": "test"}'

        with pytest.raises(MalformedFixtureError, match="database"):
            parse_fixture(text, name="users")

    def test_empty_document_batch(self) -> None:
        with pytest.raises(MalformedFixtureError):
            parse_fixture('{"collection": "users", "documents": []}', name="users")

    @pytest.mark.parametrize("collection", ["", "system.users", "bad$name"])
    def test_invalid_collection_name(self, collection: str) -> None:
        text = f'{{"collection": "{collection}", "documents": [{{"_id": 1}}]}}'

        with pytest.raises(MalformedFixtureError, match="collection"):
            parse_fixture(text, name="users")

    def test_invalid_index_direction(self) -> None:
        text = '{"collection": "u", "documents": [{"_id": 1}], "indexes": [{"keys": {"email": 2}}]}'

        with pytest.raises(MalformedFixtureError, match="indexes"):
            parse_fixture(text, name="u")

    def test_top_level_array(self) -> None:
        with pytest.raises(MalformedFixtureError):
            parse_fixture('[{"_id": 1}]', name="users")

    def test_all_errors_are_collected(self) -> None:
        text = """{
            "collection": "orders",
            "documents": [{"_id": 1, "$a": 1}, {"_id": 2, "$b": 2}]
        }"""

        with pytest.raises(MalformedFixtureError) as exc_info:
            parse_fixture(text, name="orders")

        assert len(exc_info.value.errors) == 2


class TestFindReservedFields:
    """Tests for the reserved field name walk."""

    def test_clean_document(self) -> None:
        assert find_reserved_fields({"a": {"b": [1, {"c": 2}]}}) == []

    def test_dollar_in_middle_is_allowed(self) -> None:
        assert find_reserved_fields({"price$usd": 1}) == []

    def test_paths_are_dotted(self) -> None:
        assert find_reserved_fields({"a": [{"$b": 1}]}) == ["a.0.$b"]


class TestFixtureFiles:
    """Tests for reading fixture files and directories."""

    def test_file_stem_is_default_name(self, write_fixture: Callable[..., Path]) -> None:
        path = write_fixture("01-users.json", {"collection": "users", "documents": [{"_id": 1}]})

        fixture_set = load_fixture_file(path)

        assert fixture_set.name == "01-users"
        assert fixture_set.source == path

    def test_discovery_is_sorted_and_skips_dotfiles(
        self, write_fixture: Callable[..., Path]
    ) -> None:
        fixture = {"collection": "c", "documents": [{"_id": 1}]}
        second = write_fixture("02-products.json", fixture)
        first = write_fixture("01-users.json", fixture)
        write_fixture(".hidden.json", fixture)
        write_fixture("notes.txt", "not a fixture")

        assert discover_fixture_files(first.parent) == [first, second]

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            discover_fixture_files(tmp_path / "missing")

    def test_sample_data_loads_in_order(self, sample_data_dir: Path) -> None:
        fixture_sets = load_fixture_directory(sample_data_dir)

        assert [f.collection for f in fixture_sets] == SAMPLE_COLLECTIONS
        assert {f.collection: len(f) for f in fixture_sets} == SAMPLE_COUNTS

    def test_sample_data_ids_are_unique(self, sample_data_dir: Path) -> None:
        for fixture_set in load_fixture_directory(sample_data_dir):
            ids = fixture_set.document_ids
            assert len(ids) == len(set(ids)), f"Duplicate _id in {fixture_set.name}"

    def test_sample_data_is_valid(self, sample_data_dir: Path) -> None:
        assert validate_fixture_directory(sample_data_dir) == {}

    def test_invalid_directory_stops_at_first_malformed_file(self, invalid_data_dir: Path) -> None:
        with pytest.raises(MalformedFixtureError) as exc_info:
            load_fixture_directory(invalid_data_dir)

        assert exc_info.value.fixture_set == "01-syntax-errors"

    def test_invalid_directory_reports_every_malformed_file(self, invalid_data_dir: Path) -> None:
        results = validate_fixture_directory(invalid_data_dir)

        failed = sorted(Path(path).name for path in results)
        assert failed == [
            "01-syntax-errors.json",
            "03-reserved-fields.json",
            "04-undefined-operation.json",
        ]
