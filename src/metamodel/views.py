"""Compilation of user-defined reporting views.

A view definition names a base entity and a list of column entries. Each entry
is a path expression with optional display label and omit value:

    serial_number
    type.designation AS Engine Type
    total_cycles OMIT 0
    position.*
    Allocation<engine(WHERE end_date=null).aircraft.registration AS Aircraft
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from metamodel.errors import MetamodelError
from metamodel.model import (
    BASE_ALIAS,
    DEFAULT_AREA_COLOR,
    IDENTITY_COLUMN,
    USER_VIEW_PREFIX,
    EntitySchema,
    SchemaGraph,
)
from metamodel.parsing.entity_parser import CalculatedDefinition
from metamodel.resolver import (
    JOIN_PREFIX,
    AggregateColumn,
    AggregateMarker,
    LinkedEntity,
    PathResolution,
    PathResolver,
)
from metamodel.sql import (
    AliasAllocator,
    ColumnRef,
    Join,
    JoinSet,
    quote_alias,
    quote_identifier,
)

logger = structlog.get_logger(__name__)

_OMIT_SUFFIX = re.compile(r"^(.+?)\s+OMIT\s+(.+)$", re.IGNORECASE)
_ALIAS_SUFFIX = re.compile(r"^(.+?)\s+AS\s+(.+)$", re.IGNORECASE)
_SQL_NAME_INVALID = re.compile(r"[^a-z0-9]+")

AGGREGATE_SUFFIX = ".*"

# Omit value hiding rows whose referenced value is unset
OMIT_NULL = "null"


@dataclass
class ColumnEntry:
    """One parsed column entry of a view definition."""

    path: str
    label: str | None = None
    omit: str | None = None
    expand_aggregate: bool = False

    @property
    def is_back_reference(self) -> bool:
        return "<" in self.path


def _split_aggregate_suffix(path: str) -> tuple[str, bool]:
    if path.endswith(AGGREGATE_SUFFIX):
        return path[: -len(AGGREGATE_SUFFIX)], True
    return path, False


def parse_column_entry(entry: str | Mapping[str, Any]) -> ColumnEntry | None:
    """Parse 'path [AS label] [OMIT value]' or a {path, label, omit, expand_aggregate} dict.

    Returns None for entries that are neither.
    """
    if isinstance(entry, Mapping):
        if not entry.get("path"):
            return None
        path, expand = _split_aggregate_suffix(str(entry["path"]).strip())
        omit = entry.get("omit")
        return ColumnEntry(
            path=path,
            label=entry.get("label") or None,
            omit=str(omit) if omit is not None else None,
            expand_aggregate=bool(
                entry.get("expand_aggregate", entry.get("expandAggregate", False))
            )
            or expand,
        )

    if not isinstance(entry, str) or not entry.strip():
        return None

    text = entry.strip()
    omit = None
    match = _OMIT_SUFFIX.match(text)
    if match:
        text = match.group(1).strip()
        omit = match.group(2).strip()

    label = None
    match = _ALIAS_SUFFIX.match(text)
    if match:
        text = match.group(1).strip()
        label = match.group(2).strip()

    path, expand = _split_aggregate_suffix(text)
    return ColumnEntry(path=path, label=label, omit=omit, expand_aggregate=expand)


@dataclass
class SortSpec:
    """Default sort of a view."""

    column: str
    order: str = "asc"

    @classmethod
    def parse(cls, value: str | Mapping[str, Any] | None) -> SortSpec | None:
        """Accept 'column', 'column DESC' or {column, order}."""
        if not value:
            return None
        if isinstance(value, Mapping):
            if not value.get("column"):
                return None
            return cls(column=value["column"], order=(value.get("order") or "asc").lower())
        parts = str(value).split()
        order = parts[1] if len(parts) > 1 else "asc"
        return cls(column=parts[0], order=order.lower())


@dataclass
class ViewDefinition:
    """A user view as configured: base entity, column entries and options."""

    name: str
    base: str
    columns: list[str | Mapping[str, Any]]
    filter: str | None = None
    sort: str | Mapping[str, Any] | None = None
    prefilter: Any = None
    required_filter: Any = None
    chart: Any = None
    calculator: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ViewDefinition:
        return cls(
            name=data.get("name") or "",
            base=data.get("base") or "",
            columns=list(data.get("columns") or []),
            filter=data.get("filter"),
            sort=data.get("sort"),
            prefilter=data.get("prefilter"),
            required_filter=data.get("required_filter", data.get("requiredFilter")),
            chart=data.get("chart"),
            calculator=data.get("calculator"),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.base and self.columns)


@dataclass
class CompiledColumn:
    """A view column with the metadata the UI needs to render it."""

    path: str
    label: str
    result_type: str
    select_expression: str
    sql_alias: str
    omit: str | None = None
    entity_name: str | None = None
    area_color: str = DEFAULT_AREA_COLOR
    linked_entity: LinkedEntity | None = None
    aggregate_source: str | None = None
    aggregate_type: str | None = None
    aggregate_field: str | None = None
    auto_hidden: bool = False
    calculated: CalculatedDefinition | None = None
    truncate: int | None = None
    nowrap: bool = False

    @property
    def fk_id_column(self) -> str | None:
        """Name of the hidden column carrying the linked entity's id."""
        if self.linked_entity is None:
            return None
        return f"_fk_{self.label}"


@dataclass
class CompiledView:
    """A fully resolved user view."""

    name: str
    sql_name: str
    base: str
    base_table: str
    color: str = DEFAULT_AREA_COLOR
    group: str | None = None
    columns: list[CompiledColumn] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)
    filter: str | None = None
    default_sort: SortSpec | None = None
    prefilter: Any = None
    required_filter: Any = None
    chart: Any = None
    calculator: Any = None

    def to_sql(self) -> str:
        """Render the CREATE VIEW statement."""
        selects = [ColumnRef(BASE_ALIAS, IDENTITY_COLUMN).to_sql()]
        for column in self.columns:
            selects.append(f"{column.select_expression} AS {quote_alias(column.sql_alias)}")
            if column.linked_entity is not None:
                selects.append(
                    f"{column.linked_entity.id_expression} AS {quote_alias(column.fk_id_column)}"
                )

        sql = [
            f"CREATE VIEW IF NOT EXISTS {self.sql_name} AS",
            "SELECT " + ",\n       ".join(selects),
            f"FROM {quote_identifier(self.base_table)} {BASE_ALIAS}",
        ]
        sql.extend(join.to_sql() for join in self.joins)
        if self.filter:
            sql.append(f"WHERE {self.filter}")
        return "\n".join(sql) + ";"


def view_sql_name(name: str) -> str:
    """'Engine Status' -> 'uv_engine_status'."""
    return USER_VIEW_PREFIX + _SQL_NAME_INVALID.sub("_", name.lower()).strip("_")


def group_label(separator: str) -> str | None:
    """'-------- Fleet Analysis' -> 'Fleet Analysis'."""
    return separator.lstrip("-").strip() or None


class ViewCompiler:
    """Compiles view definitions against a schema graph.

    Column failures are logged and the column is dropped; a view with no
    remaining columns is dropped as a whole.
    """

    def __init__(self, graph: SchemaGraph, resolver: PathResolver | None = None) -> None:
        self.graph = graph
        self.resolver = resolver or PathResolver(graph)

    def compile(
        self, definitions: Iterable[ViewDefinition | Mapping[str, Any] | str]
    ) -> list[CompiledView]:
        """Compile a sequence of view definitions.

        Separator strings such as '---- Fleet Analysis' set the group of the
        views that follow them.
        """
        views: list[CompiledView] = []
        group = None
        for definition in definitions:
            if isinstance(definition, str):
                group = group_label(definition)
                continue
            if isinstance(definition, Mapping):
                definition = ViewDefinition.from_dict(definition)
            view = self.compile_view(definition, group)
            if view is not None:
                views.append(view)
        return views

    def compile_view(
        self, definition: ViewDefinition, group: str | None = None
    ) -> CompiledView | None:
        """Compile one view, or return None when it has to be skipped."""
        if not definition.is_complete:
            logger.warning("view_definition_invalid", view=definition.name or None)
            return None

        base = self.graph.get_entity(definition.base)
        if base is None:
            logger.warning("view_base_entity_missing", view=definition.name, base=definition.base)
            return None

        color = self.graph.area_color(base.class_name)
        view = CompiledView(
            name=definition.name,
            sql_name=view_sql_name(definition.name),
            base=base.class_name,
            base_table=base.table_name,
            color=color,
            group=group,
            filter=definition.filter,
            default_sort=SortSpec.parse(definition.sort),
            prefilter=definition.prefilter,
            required_filter=definition.required_filter,
            chart=definition.chart,
            calculator=definition.calculator,
        )
        joins = JoinSet()
        aliases = AliasAllocator(JOIN_PREFIX)

        for raw in definition.columns:
            entry = parse_column_entry(raw)
            if entry is None:
                logger.warning("view_column_invalid", view=definition.name, entry=repr(raw))
                continue
            try:
                columns, column_joins = self._compile_entry(entry, base, aliases)
                joins.merge(column_joins)
            except MetamodelError as e:
                logger.warning(
                    "view_column_dropped", view=definition.name, path=entry.path, error=str(e)
                )
                continue
            view.columns.extend(columns)

        self._add_calculated_dependencies(view, base, joins, aliases)
        view.joins = joins.to_list()

        if not view.columns:
            logger.warning("view_dropped_empty", view=definition.name)
            return None
        return view

    def _compile_entry(
        self, entry: ColumnEntry, base: EntitySchema, aliases: AliasAllocator
    ) -> tuple[list[CompiledColumn], list[Join]]:
        if entry.expand_aggregate:
            expanded = self.resolver.expand_aggregate(
                entry.path, base.class_name, entry.label, aliases=aliases
            )
            return self._aggregate_columns(entry, expanded)

        resolved = self.resolver.resolve(entry.path, base.class_name, aliases)
        if isinstance(resolved, AggregateMarker):
            expanded = self.resolver.expand_aggregate(
                entry.path, base.class_name, entry.label, include_metadata=True, aliases=aliases
            )
            return self._aggregate_columns(entry, expanded, omit_null=True)

        return [self._scalar_column(entry, resolved)], resolved.joins

    def _scalar_column(self, entry: ColumnEntry, resolved: PathResolution) -> CompiledColumn:
        label = entry.label or resolved.result_label
        omit = entry.omit
        if omit is None and "." in entry.path:
            omit = OMIT_NULL
        return CompiledColumn(
            path=entry.path,
            label=label,
            result_type=resolved.result_type,
            select_expression=resolved.select_expression,
            sql_alias=label,
            omit=omit,
            entity_name=resolved.entity_name,
            area_color=self.graph.area_color(resolved.entity_name),
            linked_entity=resolved.linked_entity,
            truncate=resolved.truncate,
            nowrap=resolved.nowrap,
        )

    def _aggregate_columns(
        self, entry: ColumnEntry, expanded: list[AggregateColumn], omit_null: bool = False
    ) -> tuple[list[CompiledColumn], list[Join]]:
        columns = []
        joins: list[Join] = []
        for item in expanded:
            omit = entry.omit
            if omit is None and (omit_null or entry.is_back_reference or "." in item.path):
                omit = OMIT_NULL
            columns.append(
                CompiledColumn(
                    path=item.path,
                    label=item.label,
                    result_type=item.result_type,
                    select_expression=item.select_expression,
                    sql_alias=item.label,
                    omit=omit,
                    entity_name=item.entity_name,
                    area_color=self.graph.area_color(item.entity_name),
                    aggregate_source=item.aggregate_source,
                    aggregate_type=item.aggregate_type,
                    aggregate_field=item.aggregate_field,
                )
            )
            joins.extend(j for j in item.joins if j not in joins)
        return columns, joins

    def _add_calculated_dependencies(
        self, view: CompiledView, base: EntitySchema, joins: JoinSet, aliases: AliasAllocator
    ) -> None:
        """Append hidden columns for the inputs of [CALCULATED] base columns."""
        added: set[str] = set()
        for column in list(view.columns):
            if "." in column.path or "<" in column.path:
                continue
            base_column = base.get_column(column.path)
            if base_column is None or base_column.calculated is None:
                continue

            for dep in base_column.calculated.depends:
                present = any(
                    c.path == dep or c.path == dep.removesuffix("_id") for c in view.columns
                )
                if present or dep in added:
                    continue
                added.add(dep)
                try:
                    resolved = self.resolver.resolve(dep, base.class_name, aliases)
                    if isinstance(resolved, AggregateMarker):
                        raise MetamodelError(f"'{dep}' is an aggregate, not a single column")
                    joins.merge(resolved.joins)
                except MetamodelError as e:
                    logger.warning(
                        "calculated_dependency_failed",
                        view=view.name,
                        column=column.path,
                        dependency=dep,
                        error=str(e),
                    )
                    continue
                view.columns.append(
                    CompiledColumn(
                        path=dep,
                        label=resolved.result_label,
                        result_type=resolved.result_type,
                        select_expression=resolved.select_expression,
                        sql_alias=dep,
                        entity_name=resolved.entity_name,
                        area_color=view.color,
                        auto_hidden=True,
                    )
                )

            column.calculated = base_column.calculated


def compile_views(
    graph: SchemaGraph, definitions: Iterable[ViewDefinition | Mapping[str, Any] | str]
) -> list[CompiledView]:
    """Compile view definitions against a graph with a fresh resolver."""
    return ViewCompiler(graph).compile(definitions)
