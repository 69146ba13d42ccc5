"""Tests for user view compilation."""

import pytest
from structlog.testing import capture_logs

from metamodel import Schema
from metamodel.parsing.entity_parser import CalculatedDefinition
from metamodel.views import (
    SortSpec,
    ViewCompiler,
    ViewDefinition,
    compile_views,
    group_label,
    parse_column_entry,
    view_sql_name,
)

ENGINE_STATUS = ViewDefinition(
    name="Engine Status",
    base="Engine",
    columns=[
        "serial_number",
        "type AS Engine Type",
        "total_cycles OMIT 0",
        "remaining_cycles",
        "Allocation<engine(WHERE end_date=null).aircraft.registration AS Aircraft",
        "nickname",
    ],
    filter="b.status = 1",
    sort="serial_number DESC",
)


@pytest.fixture
def compiler(graph):
    return ViewCompiler(graph)


def by_path(view):
    return {c.path: c for c in view.columns}


class TestColumnEntries:
    def test_plain(self):
        entry = parse_column_entry("serial_number")
        assert entry.path == "serial_number"
        assert entry.label is None
        assert entry.omit is None
        assert not entry.expand_aggregate

    def test_alias_and_omit(self):
        """OMIT comes last and is split off before AS."""
        entry = parse_column_entry("type.designation as Engine Type OMIT -")
        assert entry.path == "type.designation"
        assert entry.label == "Engine Type"
        assert entry.omit == "-"

    def test_aggregate_suffix(self):
        entry = parse_column_entry("position.*")
        assert entry.path == "position"
        assert entry.expand_aggregate

    def test_back_reference(self):
        assert parse_column_entry("Allocation<engine(COUNT)").is_back_reference

    def test_mapping(self):
        entry = parse_column_entry({"path": "position", "label": "Pos", "expandAggregate": True})
        assert entry.path == "position"
        assert entry.label == "Pos"
        assert entry.expand_aggregate

        entry = parse_column_entry({"path": "total_cycles", "omit": 0})
        assert entry.omit == "0"

    def test_invalid(self):
        assert parse_column_entry("  ") is None
        assert parse_column_entry(42) is None
        assert parse_column_entry({"label": "No path"}) is None


class TestHelpers:
    def test_sql_name(self):
        assert view_sql_name("Engine Status") == "uv_engine_status"
        assert view_sql_name("Fleet / Cycles (2024)") == "uv_fleet_cycles_2024"

    def test_group_label(self):
        assert group_label("-------- Fleet Analysis") == "Fleet Analysis"
        assert group_label("--------") is None

    def test_sort_spec(self):
        assert SortSpec.parse("serial_number DESC") == SortSpec("serial_number", "desc")
        assert SortSpec.parse("serial_number") == SortSpec("serial_number", "asc")
        assert SortSpec.parse({"column": "start_date", "order": "DESC"}) == SortSpec(
            "start_date", "desc"
        )
        assert SortSpec.parse(None) is None

    def test_definition_from_dict(self):
        definition = ViewDefinition.from_dict(
            {"name": "V", "base": "Engine", "columns": ["id"], "requiredFilter": ["status"]}
        )
        assert definition.required_filter == ["status"]
        assert definition.is_complete
        assert not ViewDefinition.from_dict({"name": "V", "base": "Engine"}).is_complete


class TestCompileView:
    def test_columns(self, compiler):
        view = compiler.compile_view(ENGINE_STATUS)
        assert view.name == "Engine Status"
        assert view.sql_name == "uv_engine_status"
        assert view.base_table == "engine"
        assert view.color == "#e0f0ff"
        assert view.default_sort == SortSpec("serial_number", "desc")
        assert [c.label for c in view.columns] == [
            "Serial Number",
            "Engine Type",
            "Total Cycles",
            "Remaining Cycles",
            "Aircraft",
            "Cycle Limit",
        ]

    def test_omit_defaults(self, compiler):
        """Paths that cross a foreign key hide rows where the value is unset."""
        columns = by_path(compiler.compile_view(ENGINE_STATUS))
        assert columns["serial_number"].omit is None
        assert columns["type"].omit is None
        assert columns["total_cycles"].omit == "0"
        back_reference = next(c for c in columns.values() if c.label == "Aircraft")
        assert back_reference.omit == "null"
        assert back_reference.entity_name == "Aircraft"

    def test_linked_entity(self, compiler):
        columns = by_path(compiler.compile_view(ENGINE_STATUS))
        engine_type = columns["type"]
        assert engine_type.linked_entity.entity == "EngineType"
        assert engine_type.fk_id_column == "_fk_Engine Type"
        assert engine_type.area_color == "#fff4e0"
        assert columns["serial_number"].fk_id_column is None

    def test_dropped_column_is_logged(self, compiler):
        with capture_logs() as logs:
            view = compiler.compile_view(ENGINE_STATUS)
        assert "nickname" not in by_path(view)
        assert [log["event"] for log in logs] == ["view_column_dropped"]
        assert logs[0]["path"] == "nickname"

    def test_calculated_dependencies(self, compiler):
        """Inputs of a calculated column are added as hidden columns when missing."""
        columns = by_path(compiler.compile_view(ENGINE_STATUS))
        remaining = columns["remaining_cycles"]
        assert remaining.calculated.code == "return cycle_limit - total_cycles;"
        cycle_limit = columns["cycle_limit"]
        assert cycle_limit.auto_hidden
        assert cycle_limit.sql_alias == "cycle_limit"
        assert cycle_limit.area_color == "#e0f0ff"
        assert not columns["total_cycles"].auto_hidden

    def test_failed_dependency(self, compiler, graph):
        remaining = graph.entities["Engine"].get_column("remaining_cycles")
        remaining.calculated = CalculatedDefinition(depends=["nickname", "cycle_limit"])
        definition = ViewDefinition(name="Cycles", base="Engine", columns=["remaining_cycles"])
        with capture_logs() as logs:
            view = compiler.compile_view(definition)
        assert [c.path for c in view.columns] == ["remaining_cycles", "cycle_limit"]
        assert logs[0]["event"] == "calculated_dependency_failed"
        assert logs[0]["dependency"] == "nickname"

    def test_to_sql(self, compiler):
        assert compiler.compile_view(ENGINE_STATUS).to_sql() == (
            "CREATE VIEW IF NOT EXISTS uv_engine_status AS\n"
            "SELECT b.id,\n"
            '       b.serial_number AS "Serial Number",\n'
            '       j_type.designation AS "Engine Type",\n'
            '       b.type_id AS "_fk_Engine Type",\n'
            '       b.total_cycles AS "Total Cycles",\n'
            '       b.remaining_cycles AS "Remaining Cycles",\n'
            "       (SELECT _br_aircraft.registration FROM allocation _br "
            "LEFT JOIN aircraft _br_aircraft ON _br.aircraft_id = _br_aircraft.id "
            "WHERE _br.engine_id = b.id AND _br.end_date IS NULL LIMIT 1) AS \"Aircraft\",\n"
            '       b.cycle_limit AS "cycle_limit"\n'
            "FROM engine b\n"
            "LEFT JOIN engine_type j_type ON b.type_id = j_type.id\n"
            "WHERE b.status = 1;"
        )


class TestAggregates:
    def test_marker_expands_with_metadata(self, compiler):
        """A bare aggregate path expands and keeps its aggregate metadata."""
        view = compiler.compile_view(
            ViewDefinition(name="Positions", base="Aircraft", columns=["registration", "position"])
        )
        latitude = view.columns[1]
        assert latitude.path == "position_latitude"
        assert latitude.label == "Position Latitude"
        assert latitude.omit == "null"
        assert latitude.aggregate_source == "position"
        assert latitude.aggregate_field == "latitude"

    def test_explicit_expansion(self, compiler):
        view = compiler.compile_view(
            ViewDefinition(name="Positions", base="Aircraft", columns=["position.* AS Pos"])
        )
        assert [c.label for c in view.columns] == ["Pos Latitude", "Pos Longitude"]
        assert view.columns[0].omit is None
        assert view.columns[0].aggregate_source is None


class TestCompile:
    def test_groups_and_dicts(self, graph):
        definitions = [
            "-------- Fleet Analysis",
            {
                "name": "Allocations",
                "base": "Allocation",
                "columns": [
                    {"path": "engine", "label": "Engine", "omit": "-"},
                    {"path": "aircraft.position", "expand_aggregate": True},
                ],
                "sort": {"column": "start_date", "order": "DESC"},
                "requiredFilter": ["aircraft"],
            },
            "-------- Reference",
            {"name": "Makers", "base": "Manufacturer", "columns": ["name", "country"]},
        ]
        views = compile_views(graph, definitions)
        assert [(v.name, v.group) for v in views] == [
            ("Allocations", "Fleet Analysis"),
            ("Makers", "Reference"),
        ]

        allocations = views[0]
        assert allocations.required_filter == ["aircraft"]
        assert allocations.default_sort == SortSpec("start_date", "desc")
        assert [j.alias for j in allocations.joins] == ["j_engine", "j_engine_type", "j_aircraft"]
        engine, latitude, longitude = allocations.columns
        assert engine.omit == "-"
        assert engine.fk_id_column == "_fk_Engine"
        assert latitude.path == "aircraft.position_latitude"
        assert latitude.omit == "null"
        assert longitude.select_expression == "j_aircraft.position_longitude"
        assert views[1].color == "#fff4e0"

    def test_skipped_views(self, compiler):
        definitions = [
            {"name": "", "base": "Engine", "columns": ["serial_number"]},
            {"name": "Hangars", "base": "Hangar", "columns": ["name"]},
            {"name": "Broken", "base": "Engine", "columns": [42, "nickname"]},
        ]
        with capture_logs() as logs:
            assert compiler.compile(definitions) == []
        assert [log["event"] for log in logs] == [
            "view_definition_invalid",
            "view_base_entity_missing",
            "view_column_invalid",
            "view_column_dropped",
            "view_dropped_empty",
        ]


HUB = """\
# Hub
A regional hub.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| name | string | Hub name [LABEL] | Frankfurt |
"""

DEPOT = """\
# Depot
A maintenance depot.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| code | string | Depot code [LABEL] | FRA-1 |
| hub | Hub | Serving hub | 1 |
"""

ROUTE = """\
# Route
A ferry route.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| origin_hub | Hub | Hub of departure | 1 |
| origin | Depot | Depot of departure | 1 |
"""


class TestJoinAliases:
    @pytest.fixture
    def routes(self):
        return Schema.parse("", [HUB, DEPOT, ROUTE])

    def test_colliding_chains_get_distinct_aliases(self, routes):
        """'origin_hub.x' and 'origin.hub.x' render alike but are different joins."""
        views = routes.compile_views(
            [
                {
                    "name": "Routes",
                    "base": "Route",
                    "columns": [
                        "origin_hub.name AS Direct Hub",
                        "origin.hub.name AS Depot Hub",
                        "origin.code AS Depot",
                    ],
                }
            ]
        )
        view = views[0]
        assert [c.label for c in view.columns] == ["Direct Hub", "Depot Hub", "Depot"]
        assert [j.to_sql() for j in view.joins] == [
            "LEFT JOIN hub j_origin_hub ON b.origin_hub_id = j_origin_hub.id",
            "LEFT JOIN depot j_origin ON b.origin_id = j_origin.id",
            "LEFT JOIN hub j_origin_hub_1 ON j_origin.hub_id = j_origin_hub_1.id",
        ]
        assert view.columns[1].select_expression == "j_origin_hub_1.name"

    def test_no_column_dropped(self, routes):
        definition = {"name": "Routes", "base": "Route", "columns": ["origin_hub", "origin.hub.name"]}
        with capture_logs() as logs:
            views = routes.compile_views([definition])
        assert logs == []
        assert [c.select_expression for c in views[0].columns] == [
            "j_origin_hub.name",
            "j_origin_hub_1.name",
        ]
