"""Compilation of parsed entity definitions into a schema graph."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from metamodel.errors import SchemaCompileError, UnknownEntityError
from metamodel.model import (
    CURRENT_DATE,
    IDENTITY_COLUMN,
    SYSTEM_COLUMNS,
    Area,
    Column,
    EntitySchema,
    EnumField,
    ForeignKey,
    LabelFields,
    Relationship,
    SchemaGraph,
    system_columns,
)
from metamodel.ordering import DependencyOrderer
from metamodel.parsing.annotations import FieldAnnotations, parse_annotations
from metamodel.parsing.entity_parser import AttributeDefinition, EntityDefinition
from metamodel.types import (
    BOOLEAN,
    BUILTIN_TYPES,
    NUMBER,
    STRING,
    BuiltinTypeDefinition,
    EnumTypeDefinition,
    PatternTypeDefinition,
    TypeDefinition,
    TypeRegistry,
    builtin_type,
)

logger = structlog.get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


def to_snake_case(name: str) -> str:
    """'EngineType' -> 'engine_type'."""
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def _parse_default(value: str, result_type: str) -> Any:
    if result_type == NUMBER:
        for convert in (int, float):
            try:
                return convert(value)
            except ValueError:
                continue
        return None
    if result_type == BOOLEAN:
        return 1 if value.lower() in ("true", "1") else 0
    return value


class SchemaCompiler:
    """Resolves entity definitions into entity schemas.

    The type registry is passed in explicitly; local types of every definition
    are registered under the entity's scope before any entity is compiled.
    """

    def __init__(self, registry: TypeRegistry | None = None) -> None:
        self.registry = registry if registry is not None else TypeRegistry()
        self.orderer = DependencyOrderer()

    def compile(
        self,
        definitions: Sequence[EntityDefinition],
        all_entity_names: Iterable[str] | None = None,
        areas: dict[str, Area] | None = None,
        entity_areas: dict[str, str] | None = None,
        enabled_entities: Iterable[str] | None = None,
    ) -> SchemaGraph:
        """Compile a set of entity definitions into a schema graph.

        Args:
            definitions: Parsed entity definitions, in declaration order.
            all_entity_names: Names that denote entities when used as a type.
                Defaults to the names of all definitions.
            areas: Areas by key.
            entity_areas: Map of entity name to area key.
            enabled_entities: If given, only these entities are compiled.

        Returns:
            The schema graph. Entities that failed to compile are absent from
            it and listed in ``graph.errors``.
        """
        entity_names = (
            list(all_entity_names)
            if all_entity_names is not None
            else [d.name for d in definitions]
        )
        enabled = set(enabled_entities) if enabled_entities is not None else None
        entity_areas = entity_areas or {}
        graph = SchemaGraph(areas=dict(areas or {}), registry=self.registry)

        for definition in definitions:
            if definition.local_types:
                self.registry.register_all(definition.local_types, scope=definition.name)

        for definition in definitions:
            if enabled is not None and definition.name not in enabled:
                continue
            try:
                entity = self.compile_entity(definition, entity_names)
            except SchemaCompileError as e:
                logger.warning("entity_skipped", entity=definition.name, error=str(e))
                graph.errors[definition.name] = str(e)
                continue
            entity.area = entity_areas.get(definition.name, "unknown")
            graph.entities[entity.class_name] = entity

        self._drop_dangling_references(graph)
        self._enrich_foreign_keys(graph)

        graph.ordered_entities, graph.unordered = self.orderer.order_with_cycles(graph.entities)
        graph.inverse_relationships = self.orderer.inverse_relationships(graph.entities)
        graph.relationships = [
            Relationship(
                source=entity.class_name,
                target=fk.entity,
                column=fk.column,
                display_name=fk.display_name,
            )
            for entity in graph.entities.values()
            for fk in entity.foreign_keys
        ]

        logger.info(
            "schema_compiled",
            entities=len(graph.entities),
            skipped=sorted(graph.errors),
            unordered=graph.unordered,
        )
        return graph

    def compile_entity(
        self, definition: EntityDefinition, entity_names: Iterable[str] = ()
    ) -> EntitySchema:
        """Compile one entity definition.

        Args:
            definition: The parsed entity.
            entity_names: Names that denote entities when used as a type.
        """
        entity_names = set(entity_names)
        entity = EntitySchema(
            class_name=definition.name,
            table_name=to_snake_case(definition.name),
            description=definition.description,
            label_expression=definition.label_expression,
            local_types=[t.name for t in definition.local_types],
        )

        for attribute in definition.attributes:
            if not attribute.name:
                raise SchemaCompileError(definition.name, "attribute without a name")
            if attribute.name in SYSTEM_COLUMNS:
                # System columns are always appended below
                logger.warning(
                    "attribute_reserved", entity=definition.name, attribute=attribute.name
                )
                continue
            annotations = parse_annotations(attribute.description)

            if self.registry.is_aggregate(attribute.type_name, definition.name):
                self._expand_aggregate(entity, attribute, annotations)
            elif attribute.type_name in entity_names:
                self._add_foreign_key(entity, attribute, annotations)
            else:
                self._add_scalar(entity, definition, attribute, annotations)

        # The identity column always comes first
        identity = next((c for c in entity.columns if c.is_identity), None)
        if identity is not None and entity.columns[0] is not identity:
            entity.columns.remove(identity)
            entity.columns.insert(0, identity)

        label = next((c for c in entity.columns if c.is_label), None)
        label2 = next((c for c in entity.columns if c.is_label2), None)
        entity.label_fields = LabelFields(
            primary=label.name if label else None,
            secondary=label2.name if label2 else None,
        )

        entity.columns.extend(system_columns())
        return entity

    def _is_required(self, attribute: AttributeDefinition) -> bool:
        if attribute.name == IDENTITY_COLUMN or attribute.optional:
            return False
        return (attribute.example or "").strip().lower() != "null"

    def _expand_aggregate(
        self, entity: EntitySchema, attribute: AttributeDefinition, annotations: FieldAnnotations
    ) -> None:
        for sub_field in self.registry.get_aggregate_fields(attribute.type_name, entity.class_name):
            name = f"{attribute.name}_{sub_field.name}"
            sql_type = sub_field.sql_type
            if sub_field.required:
                sql_type += " NOT NULL"
            entity.columns.append(
                Column(
                    name=name,
                    source_type=sub_field.type_name,
                    sql_type=sql_type,
                    result_type=sub_field.result_type,
                    required=sub_field.required,
                    ui=annotations.ui,
                    description=f"{attribute.name}: {sub_field.name}",
                    aggregate_source=attribute.name,
                    aggregate_type=attribute.type_name,
                    aggregate_field=sub_field.name,
                )
            )
            rules: dict[str, Any] = {"type": sub_field.result_type}
            if sub_field.required:
                rules["required"] = True
            entity.validation_rules[name] = rules

    def _add_foreign_key(
        self, entity: EntitySchema, attribute: AttributeDefinition, annotations: FieldAnnotations
    ) -> None:
        display_name = attribute.name
        name = f"{attribute.name}_id"
        required = self._is_required(attribute)
        target = attribute.type_name

        foreign_key = ForeignKey(
            column=name,
            entity=target,
            table=to_snake_case(target),
            display_name=display_name,
        )
        entity.foreign_keys.append(foreign_key)

        column = Column(
            name=name,
            source_type=target,
            sql_type="INTEGER",
            result_type=NUMBER,
            required=required,
            foreign_key=foreign_key,
            display_name=display_name,
            unique=annotations.constraints.unique,
            ui=annotations.ui,
            explicit_default=attribute.explicit_default,
            optional=attribute.optional,
            description=attribute.description,
        )
        entity.columns.append(column)

        rules: dict[str, Any] = {"type": NUMBER}
        if required:
            rules["required"] = True
        entity.validation_rules[name] = rules
        self._collect_groups(entity, name, annotations)

    def _add_scalar(
        self,
        entity: EntitySchema,
        definition: EntityDefinition,
        attribute: AttributeDefinition,
        annotations: FieldAnnotations,
    ) -> None:
        name = attribute.name
        required = self._is_required(attribute)
        type_def = self._resolve_type(attribute.type_name, definition.name)
        is_custom = not isinstance(type_def, BuiltinTypeDefinition)

        if isinstance(type_def, EnumTypeDefinition):
            entity.enum_fields[name] = EnumField(
                type_name=attribute.type_name, values=list(type_def.values)
            )

        sql_type = type_def.sql_type
        if name == IDENTITY_COLUMN:
            sql_type = "INTEGER PRIMARY KEY"
        elif required:
            sql_type += " NOT NULL"

        explicit_default = attribute.explicit_default or None
        if explicit_default is not None and name != IDENTITY_COLUMN:
            sql_type += " DEFAULT " + self._default_clause(explicit_default, type_def)

        calculated = None
        if annotations.calculated:
            calculated = definition.calculations.get(name)

        column = Column(
            name=name,
            source_type=attribute.type_name,
            sql_type=sql_type,
            result_type=type_def.result_type,
            required=required,
            custom_type=attribute.type_name if is_custom else None,
            unique=annotations.constraints.unique,
            ui=annotations.ui,
            default_value=(
                None
                if name == IDENTITY_COLUMN
                else self._default_value(name, explicit_default, type_def)
            ),
            explicit_default=explicit_default,
            optional=attribute.optional,
            description=attribute.description,
            computed=annotations.computed,
            calculated=calculated,
            media=annotations.media,
        )
        entity.columns.append(column)

        if name != IDENTITY_COLUMN:
            rules = dict(type_def.validation_rule())
            if required:
                rules["required"] = True
            entity.validation_rules[name] = rules
        self._collect_groups(entity, name, annotations)

    def _resolve_type(self, type_name: str, entity: str) -> TypeDefinition:
        type_def = self.registry.resolve(type_name, entity)
        if type_def is None:
            type_def = builtin_type(type_name)
        if type_def is None:
            logger.debug("type_unresolved", entity=entity, type=type_name)
            type_def = BUILTIN_TYPES[STRING]
        return type_def

    def _default_clause(self, value: str, type_def: TypeDefinition) -> str:
        """Render the SQL DEFAULT for an explicit [DEFAULT=x]."""
        if isinstance(type_def, EnumTypeDefinition):
            internal = type_def.to_internal(value)
            if isinstance(internal, int):
                return str(internal)
            return "'" + str(internal).replace("'", "''") + "'"
        if type_def.result_type == BOOLEAN:
            return "1" if value.lower() == "true" else "0"
        if type_def.result_type == NUMBER:
            return value
        return "'" + value.replace("'", "''") + "'"

    def _default_value(
        self, name: str, explicit_default: str | None, type_def: TypeDefinition
    ) -> Any:
        """Explicit default first, then the type default, then the built-in one."""
        if explicit_default is not None:
            if isinstance(type_def, EnumTypeDefinition):
                return type_def.to_internal(explicit_default)
            return _parse_default(explicit_default, type_def.result_type)

        if isinstance(type_def, EnumTypeDefinition) and type_def.values:
            return type_def.default_value
        if isinstance(type_def, PatternTypeDefinition):
            return type_def.example or ""

        if type_def.result_type in (NUMBER, BOOLEAN):
            return 0
        if "date" in name.lower():
            return CURRENT_DATE
        return ""

    def _collect_groups(
        self, entity: EntitySchema, name: str, annotations: FieldAnnotations
    ) -> None:
        constraints = annotations.constraints
        if constraints.unique_key:
            entity.unique_keys.setdefault(constraints.unique_key, []).append(name)
        if constraints.index_key:
            entity.indexes.setdefault(constraints.index_key, []).append(name)
        if constraints.index:
            entity.indexes[f"idx_{entity.table_name}_{name}"] = [name]

    def _drop_dangling_references(self, graph: SchemaGraph) -> None:
        """Remove entities whose foreign keys point outside the compiled set.

        Removal repeats until no remaining entity references a removed one.
        """
        changed = True
        while changed:
            changed = False
            for name, entity in list(graph.entities.items()):
                for fk in entity.foreign_keys:
                    if fk.entity in graph.entities:
                        continue
                    error = UnknownEntityError(name, fk.display_name, fk.entity)
                    logger.warning("entity_skipped", entity=name, error=str(error))
                    graph.errors[name] = str(error)
                    del graph.entities[name]
                    changed = True
                    break

    def _enrich_foreign_keys(self, graph: SchemaGraph) -> None:
        for entity in graph.entities.values():
            for fk in entity.foreign_keys:
                target = graph.entities[fk.entity]
                fk.label_fields = LabelFields(
                    primary=target.label_fields.primary,
                    secondary=target.label_fields.secondary,
                )
