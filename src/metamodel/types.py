"""Type definitions and the type registry for the metamodel compiler."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TypeKind(Enum):
    """Kinds of types a type name can resolve to."""

    BUILTIN = "builtin"
    ENUM = "enum"
    PATTERN = "pattern"
    AGGREGATE = "aggregate"


# Result types exposed to the UI layer
NUMBER = "number"
STRING = "string"
BOOLEAN = "boolean"


@dataclass
class TypeDefinition:
    """Base class for all type definitions."""

    name: str
    description: str = ""

    @property
    def kind(self) -> TypeKind:
        raise NotImplementedError

    @property
    def sql_type(self) -> str:
        """Return the SQL column type for values of this type."""
        return "TEXT"

    @property
    def result_type(self) -> str:
        """Return the result type (number, string or boolean)."""
        return STRING

    def validation_rule(self) -> dict[str, Any]:
        """Return the validation rule used by the persistence layer."""
        return {"type": self.result_type}

    @property
    def is_enum(self) -> bool:
        return self.kind is TypeKind.ENUM

    @property
    def is_pattern(self) -> bool:
        return self.kind is TypeKind.PATTERN

    @property
    def is_aggregate(self) -> bool:
        return self.kind is TypeKind.AGGREGATE


@dataclass
class BuiltinTypeDefinition(TypeDefinition):
    """One of the fixed built-in column types."""

    sql_type_name: str = "TEXT"
    result: str = STRING
    pattern: str | None = None

    @property
    def kind(self) -> TypeKind:
        return TypeKind.BUILTIN

    @property
    def sql_type(self) -> str:
        return self.sql_type_name

    @property
    def result_type(self) -> str:
        return self.result

    def validation_rule(self) -> dict[str, Any]:
        rule: dict[str, Any] = {"type": self.result}
        if self.pattern:
            rule["pattern"] = self.pattern
        return rule


@dataclass
class EnumValue:
    """A single value of an enum type."""

    internal: int | str
    external: str
    description: str = ""


@dataclass
class EnumTypeDefinition(TypeDefinition):
    """Enum type with internal (stored) and external (displayed) values."""

    values: list[EnumValue] = field(default_factory=list)

    @property
    def kind(self) -> TypeKind:
        return TypeKind.ENUM

    @property
    def sql_type(self) -> str:
        if self.values and isinstance(self.values[0].internal, int):
            return "INTEGER"
        return "TEXT"

    @property
    def result_type(self) -> str:
        return NUMBER

    @property
    def default_value(self) -> int | str | None:
        """The implicit default: the first listed value."""
        return self.values[0].internal if self.values else None

    def validation_rule(self) -> dict[str, Any]:
        return {
            "enum": [{"value": v.internal, "label": v.external} for v in self.values]
        }

    def to_internal(self, value: Any) -> Any:
        """Map an external value to its internal value.

        Matching is case-insensitive. A value that is already internal is
        returned as the internal value; anything else is returned unchanged.
        """
        needle = str(value).lower()
        for v in self.values:
            if str(v.external).lower() == needle:
                return v.internal
        for v in self.values:
            if str(v.internal).lower() == needle:
                return v.internal
        return value

    def to_external(self, value: Any) -> Any:
        for v in self.values:
            if v.internal == value:
                return v.external
        return value


@dataclass
class PatternTypeDefinition(TypeDefinition):
    """String type validated by a regular expression."""

    pattern: str = ""
    example: str = ""

    @property
    def kind(self) -> TypeKind:
        return TypeKind.PATTERN

    def validation_rule(self) -> dict[str, Any]:
        rule: dict[str, Any] = {"type": STRING, "pattern": self.pattern}
        if self.description:
            rule["pattern_description"] = self.description
        if self.example:
            rule["pattern_example"] = self.example
        return rule

    def matches(self, value: str) -> bool:
        return re.search(self.pattern, value) is not None


@dataclass
class AggregateField:
    """A sub-field of an aggregate type."""

    name: str
    type_name: str
    sql_type: str
    result_type: str
    required: bool = False
    description: str = ""


@dataclass
class AggregateTypeDefinition(TypeDefinition):
    """Composite type stored as one column per sub-field."""

    fields: list[AggregateField] = field(default_factory=list)

    @property
    def kind(self) -> TypeKind:
        return TypeKind.AGGREGATE

    def get_field(self, name: str) -> AggregateField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

BUILTIN_TYPES: dict[str, BuiltinTypeDefinition] = {
    "int": BuiltinTypeDefinition(name="int", sql_type_name="INTEGER", result=NUMBER),
    "float": BuiltinTypeDefinition(name="float", sql_type_name="REAL", result=NUMBER),
    "number": BuiltinTypeDefinition(name="number", sql_type_name="REAL", result=NUMBER),
    "string": BuiltinTypeDefinition(name="string", sql_type_name="TEXT", result=STRING),
    "date": BuiltinTypeDefinition(
        name="date", sql_type_name="TEXT", result=STRING, pattern=_DATE_PATTERN
    ),
    "bool": BuiltinTypeDefinition(name="bool", sql_type_name="INTEGER", result=BOOLEAN),
    "boolean": BuiltinTypeDefinition(name="boolean", sql_type_name="INTEGER", result=BOOLEAN),
}


def builtin_type(name: str) -> BuiltinTypeDefinition | None:
    """Look up a built-in type, case-insensitively."""
    return BUILTIN_TYPES.get(name.lower())


class TypeRegistry:
    """Registry of custom types, global and entity-local.

    Resolution order for a name is entity-local, then global, then built-in.
    """

    def __init__(self) -> None:
        self._global: dict[str, TypeDefinition] = {}
        self._local: dict[str, dict[str, TypeDefinition]] = {}

    def register(self, type_def: TypeDefinition, scope: str | None = None) -> None:
        """Register a type definition.

        Args:
            type_def: The definition to register.
            scope: Entity name for an entity-local type, None for a global type.
        """
        if scope is None:
            self._global[type_def.name] = type_def
        else:
            self._local.setdefault(scope, {})[type_def.name] = type_def

    def register_all(self, type_defs: list[TypeDefinition], scope: str | None = None) -> None:
        for type_def in type_defs:
            self.register(type_def, scope)

    def resolve(self, name: str, entity: str | None = None) -> TypeDefinition | None:
        """Resolve a type name, or return None if it is unknown."""
        if entity is not None:
            local = self._local.get(entity, {}).get(name)
            if local is not None:
                return local
        found = self._global.get(name)
        if found is not None:
            return found
        return BUILTIN_TYPES.get(name)

    def get_or_raise(self, name: str, entity: str | None = None) -> TypeDefinition:
        """Resolve a type name, raising if not found."""
        type_def = self.resolve(name, entity)
        if type_def is None:
            raise KeyError(f"Type '{name}' not found")
        return type_def

    def is_aggregate(self, name: str, entity: str | None = None) -> bool:
        type_def = self.resolve(name, entity)
        return isinstance(type_def, AggregateTypeDefinition)

    def get_aggregate_fields(self, name: str, entity: str | None = None) -> list[AggregateField]:
        type_def = self.resolve(name, entity)
        if not isinstance(type_def, AggregateTypeDefinition):
            return []
        return list(type_def.fields)

    def sql_type(self, name: str, entity: str | None = None) -> str:
        type_def = self.resolve(name, entity)
        return type_def.sql_type if type_def is not None else "TEXT"

    def validation_rules(self, name: str, entity: str | None = None) -> dict[str, Any] | None:
        type_def = self.resolve(name, entity)
        return type_def.validation_rule() if type_def is not None else None

    def global_types(self) -> dict[str, TypeDefinition]:
        return dict(self._global)

    def types_for_entity(self, entity: str) -> dict[str, TypeDefinition]:
        """Return the types visible from an entity (local overrides global)."""
        result = dict(self._global)
        result.update(self._local.get(entity, {}))
        return result

    def local_types(self, entity: str) -> dict[str, TypeDefinition]:
        return dict(self._local.get(entity, {}))

    def list_types(self) -> list[str]:
        """List all registered type names, local ones as 'entity:Entity:Name'."""
        names = list(self._global)
        for entity, types in self._local.items():
            names.extend(f"entity:{entity}:{name}" for name in types)
        return names

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None
