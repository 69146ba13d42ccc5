"""Compilation of entity labels into SQL expressions."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from metamodel.errors import PathResolutionError
from metamodel.model import IDENTITY_COLUMN, EntitySchema, LabelFields
from metamodel.parsing.path_parser import LabelExpression, LabelLiteral, LabelRef
from metamodel.sql import AliasAllocator, ColumnRef, Concat, Expression, FunctionCall, Join, Literal


@dataclass
class CompiledLabel:
    """A label expression plus the joins it needs."""

    expression: Expression
    joins: list[Join] = field(default_factory=list)

    @property
    def sql(self) -> str:
        return self.expression.to_sql()


def label_fields_expression(alias: str, label_fields: LabelFields) -> Expression | None:
    """primary, or primary || ' (' || secondary || ')'."""
    if label_fields.primary is None:
        return None
    primary = ColumnRef(alias, label_fields.primary)
    if label_fields.secondary is None:
        return primary
    return Concat(
        (primary, Literal(" ("), ColumnRef(alias, label_fields.secondary), Literal(")"))
    )


class LabelCompiler:
    """Compiles entity labels against a set of compiled entities."""

    def __init__(self, entities: Mapping[str, EntitySchema]) -> None:
        self.entities = entities

    def compile(
        self, entity: EntitySchema, alias: str, allocator: AliasAllocator | None = None
    ) -> CompiledLabel | None:
        """Compile an entity's label as seen through a table alias.

        A computed label expression takes precedence over [LABEL]/[LABEL2]
        columns. Returns None when the entity has neither.
        """
        if entity.label_expression is not None:
            return self.compile_expression(entity.label_expression, entity, alias, allocator)
        expression = label_fields_expression(alias, entity.label_fields)
        if expression is None:
            return None
        return CompiledLabel(expression=expression)

    def compile_expression(
        self,
        label: LabelExpression,
        entity: EntitySchema,
        alias: str,
        allocator: AliasAllocator | None = None,
    ) -> CompiledLabel:
        """Compile a computed label expression.

        Join aliases are allocated under ``alias``. References inside a
        multi-part concat are wrapped in COALESCE so one missing part does not
        blank the whole label.
        """
        allocator = allocator or AliasAllocator(alias)
        joins: list[Join] = []
        parts: list[Expression] = []

        for part in label.parts:
            if isinstance(part, LabelLiteral):
                parts.append(Literal(part.value))
                continue
            expression = self._compile_ref(part, label, entity, alias, allocator, joins)
            if label.is_concat:
                expression = FunctionCall("COALESCE", (expression, Literal("")))
            parts.append(expression)

        if len(parts) == 1:
            return CompiledLabel(expression=parts[0], joins=joins)
        return CompiledLabel(expression=Concat(tuple(parts)), joins=joins)

    def _compile_ref(
        self,
        ref: LabelRef,
        label: LabelExpression,
        entity: EntitySchema,
        alias: str,
        allocator: AliasAllocator,
        joins: list[Join],
    ) -> Expression:
        expression_text = _label_text(label)
        current = entity
        current_alias = alias
        chain: list[str] = []

        for index, segment in enumerate(ref.segments[:-1]):
            fk_column = current.find_fk_column(segment)
            if fk_column is None or fk_column.foreign_key is None:
                raise PathResolutionError(
                    f"Label segment '{segment}' is not a foreign key of '{current.class_name}'",
                    expression_text,
                    segment,
                )
            target = self._target(fk_column.foreign_key.entity, expression_text, segment)
            chain.append(fk_column.name)
            join_alias = allocator.alias(ref.segments[: index + 1], chain)
            _append_join(
                joins,
                Join(
                    alias=join_alias,
                    table=target.table_name,
                    left=ColumnRef(current_alias, fk_column.name),
                    right=ColumnRef(join_alias, IDENTITY_COLUMN),
                ),
            )
            current = target
            current_alias = join_alias

        terminal = ref.segments[-1]
        column = current.get_column(terminal)
        if column is None:
            raise PathResolutionError(
                f"Label column '{terminal}' not found in entity '{current.class_name}'",
                expression_text,
                terminal,
            )

        if column.foreign_key is None or ref.is_chain:
            return ColumnRef(current_alias, column.name)

        # A bare FK reference shows the target's primary label
        target = self._target(column.foreign_key.entity, expression_text, terminal)
        primary = target.label_fields.primary
        if primary is None:
            return ColumnRef(current_alias, column.name)
        join_alias = allocator.alias(ref.segments, [*chain, column.name])
        _append_join(
            joins,
            Join(
                alias=join_alias,
                table=target.table_name,
                left=ColumnRef(current_alias, column.name),
                right=ColumnRef(join_alias, IDENTITY_COLUMN),
            ),
        )
        return ColumnRef(join_alias, primary)

    def _target(self, name: str, expression: str, segment: str) -> EntitySchema:
        target = self.entities.get(name)
        if target is None:
            raise PathResolutionError(f"FK target entity '{name}' not found", expression, segment)
        return target


def _append_join(joins: list[Join], join: Join) -> None:
    if join not in joins:
        joins.append(join)


def _label_text(label: LabelExpression) -> str:
    if not label.is_concat:
        part = label.parts[0]
        return part.text if isinstance(part, LabelRef) else repr(part.value)
    rendered = [
        part.text if isinstance(part, LabelRef) else repr(part.value) for part in label.parts
    ]
    return f"concat({', '.join(rendered)})"
