"""Compiled schema model: columns, foreign keys, entity schemas and the schema graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from metamodel.parsing.annotations import ComputedRule, MediaConstraints, UIFlags
from metamodel.parsing.entity_parser import Area, CalculatedDefinition
from metamodel.types import NUMBER, STRING, EnumValue

if TYPE_CHECKING:
    from metamodel.parsing.path_parser import LabelExpression
    from metamodel.types import TypeRegistry

IDENTITY_COLUMN = "id"
BASE_ALIAS = "b"
DEFAULT_AREA_COLOR = "#f5f5f5"
USER_VIEW_PREFIX = "uv_"

# Default value for date-like columns without an explicit default
CURRENT_DATE = "CURRENT_DATE"


@dataclass
class LabelFields:
    """Columns that make up an entity's human-readable label."""

    primary: str | None = None
    secondary: str | None = None

    def __bool__(self) -> bool:
        return self.primary is not None


@dataclass
class Column:
    """A resolved table column."""

    name: str
    source_type: str
    sql_type: str
    result_type: str = STRING
    required: bool = False
    custom_type: str | None = None
    foreign_key: ForeignKey | None = None
    display_name: str | None = None
    unique: bool = False
    ui: UIFlags | None = None
    default_value: Any = None
    explicit_default: str | None = None
    optional: bool = False
    description: str = ""
    aggregate_source: str | None = None
    aggregate_type: str | None = None
    aggregate_field: str | None = None
    computed: ComputedRule | None = None
    calculated: CalculatedDefinition | None = None
    media: MediaConstraints | None = None
    system: bool = False

    @property
    def is_identity(self) -> bool:
        return self.name == IDENTITY_COLUMN

    @property
    def is_label(self) -> bool:
        return self.ui is not None and self.ui.label

    @property
    def is_label2(self) -> bool:
        return self.ui is not None and self.ui.label2

    @property
    def conceptual_name(self) -> str:
        """Name used in paths and UI: the display name for FKs, else the column name."""
        return self.display_name or self.name

    def matches(self, name: str) -> bool:
        return self.name == name or self.display_name == name


@dataclass
class ForeignKey:
    """Reference from a column to another entity's identity column."""

    column: str
    entity: str
    table: str
    display_name: str
    target_column: str = IDENTITY_COLUMN
    label_fields: LabelFields = field(default_factory=LabelFields)


@dataclass
class EnumField:
    """Enum-typed column, recorded for response enrichment."""

    type_name: str
    values: list[EnumValue]


@dataclass
class EntitySchema:
    """Fully resolved schema of one entity."""

    class_name: str
    table_name: str
    description: str = ""
    area: str = "unknown"
    columns: list[Column] = field(default_factory=list)
    unique_keys: dict[str, list[str]] = field(default_factory=dict)
    indexes: dict[str, list[str]] = field(default_factory=dict)
    foreign_keys: list[ForeignKey] = field(default_factory=list)
    enum_fields: dict[str, EnumField] = field(default_factory=dict)
    validation_rules: dict[str, dict[str, Any]] = field(default_factory=dict)
    label_fields: LabelFields = field(default_factory=LabelFields)
    label_expression: LabelExpression | None = None
    local_types: list[str] = field(default_factory=list)

    def get_column(self, name: str) -> Column | None:
        """Find a column by name or display name."""
        for column in self.columns:
            if column.matches(name):
                return column
        return None

    def find_fk_column(self, segment: str) -> Column | None:
        """Find a foreign key column by display name, column name, or name without '_id'."""
        for column in self.columns:
            if column.foreign_key is None:
                continue
            if (
                column.display_name == segment
                or column.name == segment
                or column.name == f"{segment}_id"
            ):
                return column
        return None

    def aggregate_columns(self, source: str) -> list[Column]:
        return [c for c in self.columns if c.aggregate_source == source]

    @property
    def label_column(self) -> Column | None:
        for column in self.columns:
            if column.is_label:
                return column
        return None

    @property
    def has_label(self) -> bool:
        return self.label_expression is not None or bool(self.label_fields)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass
class InverseRelationship:
    """One child entity column pointing back at a parent."""

    entity: str
    column: str


@dataclass
class Relationship:
    """Flat foreign key edge, as drawn in diagrams."""

    source: str
    target: str
    column: str
    display_name: str


@dataclass
class SchemaGraph:
    """The compiled schema: entities plus their dependency order and relationships."""

    entities: dict[str, EntitySchema] = field(default_factory=dict)
    ordered_entities: list[EntitySchema] = field(default_factory=list)
    unordered: list[str] = field(default_factory=list)
    inverse_relationships: dict[str, list[InverseRelationship]] = field(default_factory=dict)
    relationships: list[Relationship] = field(default_factory=list)
    areas: dict[str, Area] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    registry: TypeRegistry | None = None

    def get_entity(self, name: str) -> EntitySchema | None:
        return self.entities.get(name)

    def area_color(self, entity_name: str | None) -> str:
        """Colour of the area an entity belongs to, or the default colour."""
        entity = self.entities.get(entity_name) if entity_name else None
        if entity is None:
            return DEFAULT_AREA_COLOR
        area = self.areas.get(entity.area)
        return area.color if area is not None else DEFAULT_AREA_COLOR


def _system_column(name: str, source_type: str, sql_type: str, result_type: str) -> Column:
    return Column(
        name=name,
        source_type=source_type,
        sql_type=sql_type,
        result_type=result_type,
        required=False,
        ui=UIFlags(readonly=True),
        system=True,
    )


def system_columns() -> list[Column]:
    """Fresh copies of the columns every entity receives after its own."""
    return [
        _system_column("created_at", "string", "TEXT DEFAULT (datetime('now'))", STRING),
        _system_column("updated_at", "string", "TEXT DEFAULT (datetime('now'))", STRING),
        _system_column("version", "int", "INTEGER DEFAULT 1", NUMBER),
    ]


SYSTEM_COLUMNS = tuple(c.name for c in system_columns())
