"""End-to-end tests for the Schema API."""

import pytest

from metamodel import Schema
from metamodel.resolver import PathResolution

from conftest import DATA_MODEL, ENGINE, MANUFACTURER, TYPES_DOCUMENT


class TestSchemaParse:
    def test_list_entities(self, fleet):
        assert fleet.list_entities() == [
            "Manufacturer",
            "Aircraft",
            "EngineType",
            "Engine",
            "Allocation",
        ]

    def test_get_entity(self, fleet):
        assert fleet.get_entity("Engine").table_name == "engine"
        with pytest.raises(KeyError):
            fleet.get_entity("Hangar")

    def test_registry(self, fleet):
        assert "Status" in fleet.registry
        assert fleet.graph.registry is fleet.registry

    def test_entity_document_overrides_description(self):
        """A '# Name' document replaces a legacy description of the same entity."""
        data_model = DATA_MODEL + """
## Entity Descriptions

### Manufacturer
Old description.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| label | string | Old label [LABEL] | x |
"""
        schema = Schema.parse(data_model, [MANUFACTURER], TYPES_DOCUMENT)
        manufacturer = schema.get_entity("Manufacturer")
        assert manufacturer.description == "An engine or airframe manufacturer."
        assert manufacturer.label_fields.primary == "name"

    def test_undefined_type_name(self):
        """A type naming no known entity or type is treated as a string column."""
        schema = Schema.parse("", [ENGINE], TYPES_DOCUMENT)
        engine = schema.get_entity("Engine")
        assert engine.get_column("type").sql_type == "TEXT NOT NULL"
        assert engine.foreign_keys == []

    def test_resolve(self, fleet):
        result = fleet.resolve("type.designation", "Engine")
        assert isinstance(result, PathResolution)
        assert result.select_expression == "j_type.designation"
        assert fleet.resolver is fleet.resolver


class TestLibrary:
    def test_book(self, library):
        """A single plain entity with a global enum type."""
        book = library.get_entity("Book")
        genre = book.get_column("genre")
        assert genre.sql_type == "INTEGER NOT NULL"
        assert genre.default_value == 1
        assert library.ddl() == [
            "CREATE TABLE IF NOT EXISTS book (\n"
            "  id INTEGER PRIMARY KEY,\n"
            "  title TEXT NOT NULL,\n"
            "  isbn TEXT NOT NULL UNIQUE,\n"
            "  genre INTEGER NOT NULL,\n"
            "  created_at TEXT DEFAULT (datetime('now')),\n"
            "  updated_at TEXT DEFAULT (datetime('now')),\n"
            "  version INTEGER DEFAULT 1\n"
            ");",
            "CREATE VIEW IF NOT EXISTS book_view AS\n"
            "SELECT b.*,\n"
            "       b.title AS _label\n"
            "FROM book b;",
        ]

    def test_views(self, library):
        views = library.compile_views(
            [{"name": "Books", "base": "Book", "columns": ["title", "genre"]}]
        )
        assert views[0].to_sql() == (
            "CREATE VIEW IF NOT EXISTS uv_books AS\n"
            "SELECT b.id,\n"
            '       b.title AS "Title",\n'
            '       b.genre AS "Genre"\n'
            "FROM book b;"
        )

    def test_standalone_book_has_no_area(self, library):
        assert library.get_entity("Book").area == "unknown"
        assert library.graph.area_color("Book") == "#f5f5f5"
