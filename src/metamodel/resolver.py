"""Resolution of path expressions against a compiled schema graph.

A forward path walks foreign keys from the base entity and yields LEFT JOINs
plus a select expression:

    type.manufacturer.name  ->  j_type, j_type_manufacturer; j_type_manufacturer.name

A back-reference looks from the base entity at the children pointing to it and
yields a correlated scalar subquery:

    Allocation<engine(COUNT)  ->  (SELECT COUNT(*) FROM allocation _br WHERE _br.engine_id = b.id)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from metamodel.errors import BackReferenceError, PathResolutionError
from metamodel.labels import CompiledLabel, LabelCompiler
from metamodel.model import BASE_ALIAS, IDENTITY_COLUMN, Column, EntitySchema, SchemaGraph
from metamodel.parsing.path_parser import BackReference, ForwardPath, PathExpression, PathParser
from metamodel.sql import (
    AliasAllocator,
    ColumnRef,
    Equals,
    Expression,
    FunctionCall,
    IsNull,
    Join,
    Literal,
    OrderTerm,
    ScalarSubquery,
    Star,
)
from metamodel.types import NUMBER, STRING

JOIN_PREFIX = "j"
BACK_REFERENCE_ALIAS = "_br"
LABEL_SEGMENT = "_label"

# Columns used as a label when the target entity declares none
FALLBACK_LABEL_COLUMNS = ("name", "designation", "title")


def title_case(text: str) -> str:
    """'serial_number' -> 'Serial Number'."""
    return " ".join(word[:1].upper() + word[1:] for word in text.replace("_", " ").split(" "))


@dataclass
class LinkedEntity:
    """Navigation target of a resolved value: which entity, and the SQL for its id."""

    entity: str
    id_expression: str


@dataclass
class PathResolution:
    """A path expression compiled to SQL."""

    joins: list[Join]
    select_expression: str
    result_label: str
    result_type: str
    entity_name: str
    linked_entity: LinkedEntity | None = None
    column: Column | None = None

    @property
    def truncate(self) -> int | None:
        if self.column is None or self.column.ui is None:
            return None
        return self.column.ui.truncate

    @property
    def nowrap(self) -> bool:
        return self.column is not None and self.column.ui is not None and self.column.ui.nowrap


@dataclass
class AggregateMarker:
    """The path ends at an aggregate source; expand it with expand_aggregate()."""

    source: str
    aggregate_type: str | None
    entity_name: str
    path: str
    joins: list[Join] = field(default_factory=list)


@dataclass
class AggregateColumn:
    """One sub-field of an expanded aggregate."""

    path: str
    label: str
    result_type: str
    select_expression: str
    entity_name: str
    joins: list[Join] = field(default_factory=list)
    aggregate_source: str | None = None
    aggregate_type: str | None = None
    aggregate_field: str | None = None


@dataclass
class _BackReferenceQuery:
    """The parts shared by every subquery built from one back-reference."""

    child: EntitySchema
    table: str
    alias: str
    joins: tuple[Join, ...]
    where: tuple[Expression, ...]
    order_by: OrderTerm | None
    limit: int | None

    def subquery(self, select: Expression, limit: int | None = None) -> ScalarSubquery:
        return ScalarSubquery(
            select=select,
            table=self.table,
            alias=self.alias,
            joins=self.joins,
            where=self.where,
            order_by=self.order_by,
            limit=limit,
        )


class PathResolver:
    """Resolves path expressions against one schema graph.

    The resolver only reads the graph. It owns a PathParser, so one resolver
    should not be shared between threads.
    """

    def __init__(self, graph: SchemaGraph) -> None:
        self.graph = graph
        self.parser = PathParser()
        self.labels = LabelCompiler(graph.entities)

    def parse(self, expression: str) -> PathExpression:
        """Parse an expression, reporting grammar errors as PathResolutionError."""
        try:
            return self.parser.parse(expression)
        except SyntaxError as e:
            raise PathResolutionError(f"Invalid path expression: {e}", expression) from e

    def resolve(
        self, expression: str, base: str, aliases: AliasAllocator | None = None
    ) -> PathResolution | AggregateMarker:
        """Resolve a path expression relative to a base entity.

        Forward joins are named by ``aliases``. Pass one allocator for every
        path of a query so that different FK chains never share an alias.

        Raises:
            PathResolutionError: If a segment, foreign key or column cannot be
                resolved, or the expression is not valid path syntax.
        """
        parsed = self.parse(expression)
        base_entity = self._base(base, expression)
        if isinstance(parsed, BackReference):
            return self._resolve_back_reference(parsed, base_entity, expression)
        return self._resolve_forward(
            parsed, base_entity, expression, aliases or AliasAllocator(JOIN_PREFIX)
        )

    def expand_aggregate(
        self,
        expression: str,
        base: str,
        label_prefix: str | None = None,
        include_metadata: bool = False,
        aliases: AliasAllocator | None = None,
    ) -> list[AggregateColumn]:
        """Expand a path ending at an aggregate source into one column per sub-field.

        Each column is labelled '{prefix} {Field}', where the prefix defaults
        to the title-cased aggregate source. With include_metadata the columns
        carry aggregate_source/type/field so a client can regroup them.
        """
        parsed = self.parse(expression)
        base_entity = self._base(base, expression)
        if isinstance(parsed, BackReference):
            return self._expand_back_reference(
                parsed, base_entity, expression, label_prefix, include_metadata
            )
        return self._expand_forward(
            parsed,
            base_entity,
            expression,
            label_prefix,
            include_metadata,
            aliases or AliasAllocator(JOIN_PREFIX),
        )

    # --- forward paths ---

    def _resolve_forward(
        self, path: ForwardPath, base: EntitySchema, expression: str, aliases: AliasAllocator
    ) -> PathResolution | AggregateMarker:
        segments = path.segments
        if len(segments) == 1 and segments[0] != LABEL_SEGMENT:
            return self._resolve_single(segments[0], base, expression, aliases)

        joins: list[Join] = []
        chain: list[str] = []
        current = base
        alias = BASE_ALIAS
        for index, segment in enumerate(segments[:-1]):
            current, join = self._follow(
                current, segment, alias, expression, aliases, segments[: index + 1], chain
            )
            chain.append(join.left.column)
            joins.append(join)
            alias = join.alias

        terminal = segments[-1]
        if terminal == LABEL_SEGMENT:
            labels = aliases.scoped(alias, chain)
            return self._resolve_label(current, alias, joins, expression, labels)

        column = current.get_column(terminal)
        if column is None:
            return self._aggregate_or_raise(
                current, terminal, expression, joins, "Terminal column"
            )

        return PathResolution(
            joins=joins,
            select_expression=ColumnRef(alias, column.name).to_sql(),
            result_label=title_case(column.conceptual_name),
            result_type=column.result_type,
            entity_name=current.class_name,
            linked_entity=LinkedEntity(
                current.class_name, ColumnRef(alias, IDENTITY_COLUMN).to_sql()
            ),
            column=column,
        )

    def _resolve_single(
        self, name: str, base: EntitySchema, expression: str, aliases: AliasAllocator
    ) -> PathResolution | AggregateMarker:
        column = base.get_column(name)
        if column is None:
            return self._aggregate_or_raise(base, name, expression, [], "Column")

        if column.foreign_key is None:
            return PathResolution(
                joins=[],
                select_expression=ColumnRef(BASE_ALIAS, column.name).to_sql(),
                result_label=title_case(column.conceptual_name),
                result_type=column.result_type,
                entity_name=base.class_name,
                column=column,
            )

        # A bare FK shows the target's label instead of the raw id
        target = self._entity(column.foreign_key.entity, expression, name)
        alias = aliases.alias([column.conceptual_name], [column.name])
        join = Join(
            alias=alias,
            table=target.table_name,
            left=ColumnRef(BASE_ALIAS, column.name),
            right=ColumnRef(alias, IDENTITY_COLUMN),
        )
        label = title_case(column.conceptual_name)
        linked = LinkedEntity(target.class_name, ColumnRef(BASE_ALIAS, column.name).to_sql())

        if target.label_expression is not None:
            labels = aliases.scoped(alias, [column.name])
            compiled = self._compile_label(target, alias, expression, labels)
            return PathResolution(
                joins=[join, *compiled.joins],
                select_expression=compiled.sql,
                result_label=label,
                result_type=STRING,
                entity_name=target.class_name,
                linked_entity=linked,
            )

        label_column = _label_column(target)
        if label_column is None:
            return PathResolution(
                joins=[],
                select_expression=ColumnRef(BASE_ALIAS, column.name).to_sql(),
                result_label=label,
                result_type=column.result_type,
                entity_name=base.class_name,
                column=column,
            )

        return PathResolution(
            joins=[join],
            select_expression=ColumnRef(alias, label_column.name).to_sql(),
            result_label=label,
            result_type=label_column.result_type,
            entity_name=target.class_name,
            linked_entity=linked,
            column=label_column,
        )

    def _resolve_label(
        self,
        entity: EntitySchema,
        alias: str,
        joins: list[Join],
        expression: str,
        labels: AliasAllocator,
    ) -> PathResolution:
        compiled = self._compile_label(entity, alias, expression, labels)
        return PathResolution(
            joins=[*joins, *compiled.joins],
            select_expression=compiled.sql,
            result_label=title_case(entity.class_name),
            result_type=STRING,
            entity_name=entity.class_name,
            linked_entity=LinkedEntity(
                entity.class_name, ColumnRef(alias, IDENTITY_COLUMN).to_sql()
            ),
        )

    def _compile_label(
        self, entity: EntitySchema, alias: str, expression: str, labels: AliasAllocator
    ) -> CompiledLabel:
        try:
            compiled = self.labels.compile(entity, alias, labels)
        except PathResolutionError as e:
            raise PathResolutionError(
                f"Label of '{entity.class_name}' cannot be resolved: {e}", expression, e.segment
            ) from e
        if compiled is None:
            raise PathResolutionError(
                f"Entity '{entity.class_name}' has no label", expression, LABEL_SEGMENT
            )
        return compiled

    def _expand_forward(
        self,
        path: ForwardPath,
        base: EntitySchema,
        expression: str,
        label_prefix: str | None,
        include_metadata: bool,
        aliases: AliasAllocator,
    ) -> list[AggregateColumn]:
        segments = path.segments
        joins: list[Join] = []
        chain: list[str] = []
        current = base
        alias = BASE_ALIAS

        for index, segment in enumerate(segments):
            columns = current.aggregate_columns(segment)
            if columns:
                prefix = label_prefix or title_case(segment)
                return [
                    AggregateColumn(
                        path=".".join([*segments[:index], column.name]),
                        label=f"{prefix} {title_case(column.aggregate_field or column.name)}",
                        result_type=column.result_type,
                        select_expression=ColumnRef(alias, column.name).to_sql(),
                        entity_name=current.class_name,
                        joins=list(joins),
                        **_aggregate_metadata(column, segment, include_metadata),
                    )
                    for column in columns
                ]

            current, join = self._follow(
                current, segment, alias, expression, aliases, segments[: index + 1], chain
            )
            chain.append(join.left.column)
            joins.append(join)
            alias = join.alias

        raise PathResolutionError(
            f"No aggregate columns found for '{segments[-1]}' in entity '{current.class_name}'",
            expression,
            segments[-1],
        )

    # --- back-references ---

    def _back_reference_query(
        self, ref: BackReference, base: EntitySchema, expression: str
    ) -> tuple[_BackReferenceQuery, Column]:
        child = self.graph.entities.get(ref.entity)
        if child is None:
            raise BackReferenceError(
                f"Back-reference entity '{ref.entity}' not found", expression, ref.entity
            )

        fk_column = child.find_fk_column(ref.fk_field)
        if fk_column is None or fk_column.foreign_key is None:
            raise BackReferenceError(
                f"Foreign key '{ref.fk_field}' not found in entity '{child.class_name}'",
                expression,
                ref.fk_field,
            )
        if fk_column.foreign_key.entity != base.class_name:
            raise BackReferenceError(
                f"Foreign key '{ref.fk_field}' in '{child.class_name}' points to "
                f"'{fk_column.foreign_key.entity}', not '{base.class_name}'",
                expression,
                ref.fk_field,
            )

        alias = BACK_REFERENCE_ALIAS
        where: list[Expression] = [
            Equals(ColumnRef(alias, fk_column.name), ColumnRef(BASE_ALIAS, IDENTITY_COLUMN))
        ]
        for condition in ref.params.where:
            target = ColumnRef(alias, _column_name(child, condition.column))
            if condition.is_null:
                where.append(IsNull(target))
            else:
                where.append(Equals(target, Literal(condition.value)))

        order_by = None
        if ref.params.order_by is not None:
            order_by = OrderTerm(
                ColumnRef(alias, _column_name(child, ref.params.order_by.column)),
                ref.params.order_by.direction,
            )

        query = _BackReferenceQuery(
            child=child,
            table=child.table_name,
            alias=alias,
            joins=(),
            where=tuple(where),
            order_by=order_by,
            limit=ref.params.limit,
        )
        return query, fk_column

    def _walk_tail(
        self, query: _BackReferenceQuery, segments: list[str], expression: str
    ) -> tuple[EntitySchema, str, list[Join]]:
        """Follow the FK chain of a back-reference tail inside the subquery."""
        current = query.child
        alias = query.alias
        aliases = AliasAllocator(query.alias)
        joins: list[Join] = []
        chain: list[str] = []
        for index, segment in enumerate(segments):
            current, join = self._follow(
                current, segment, alias, expression, aliases, segments[: index + 1], chain
            )
            chain.append(join.left.column)
            joins.append(join)
            alias = join.alias
        return current, alias, joins

    def _resolve_back_reference(
        self, ref: BackReference, base: EntitySchema, expression: str
    ) -> PathResolution | AggregateMarker:
        params = ref.params
        if params.count and ref.tail:
            raise BackReferenceError(
                "Back-reference takes either COUNT or a target column, not both", expression
            )
        if not params.count and not ref.tail:
            raise BackReferenceError(
                "Back-reference requires a target column (.column) or COUNT", expression
            )

        query, _ = self._back_reference_query(ref, base, expression)

        if params.count:
            subquery = query.subquery(FunctionCall("COUNT", (Star(),)))
            return PathResolution(
                joins=[],
                select_expression=subquery.to_sql(),
                result_label="Count",
                result_type=NUMBER,
                entity_name=query.child.class_name,
            )

        target, alias, tail_joins = self._walk_tail(query, ref.tail[:-1], expression)
        query.joins = tuple(tail_joins)

        terminal = ref.tail[-1]
        column = target.get_column(terminal)
        if column is None:
            return self._aggregate_or_raise(target, terminal, expression, [], "Column")

        select = ColumnRef(alias, column.name)
        label = title_case(column.conceptual_name)

        if params.list_values:
            subquery = query.subquery(FunctionCall("GROUP_CONCAT", (select, Literal(", "))))
            return PathResolution(
                joins=[],
                select_expression=subquery.to_sql(),
                result_label=label,
                result_type=STRING,
                entity_name=target.class_name,
                column=column,
            )

        limit = params.limit or 1
        linked = None
        # Only a direct [LABEL] column of the child is navigable
        if len(ref.tail) == 1 and column.is_label:
            id_query = query.subquery(ColumnRef(query.alias, IDENTITY_COLUMN), limit)
            linked = LinkedEntity(query.child.class_name, id_query.to_sql())

        return PathResolution(
            joins=[],
            select_expression=query.subquery(select, limit).to_sql(),
            result_label=label,
            result_type=column.result_type,
            entity_name=target.class_name,
            linked_entity=linked,
            column=column,
        )

    def _expand_back_reference(
        self,
        ref: BackReference,
        base: EntitySchema,
        expression: str,
        label_prefix: str | None,
        include_metadata: bool,
    ) -> list[AggregateColumn]:
        if not ref.tail:
            raise BackReferenceError(
                "Aggregate expansion of a back-reference requires a target column", expression
            )

        query, _ = self._back_reference_query(ref, base, expression)
        target, alias, tail_joins = self._walk_tail(query, ref.tail[:-1], expression)
        query.joins = tuple(tail_joins)

        source = ref.tail[-1]
        columns = target.aggregate_columns(source)
        if not columns:
            raise BackReferenceError(
                f"No aggregate columns found for '{source}' in entity '{target.class_name}'",
                expression,
                source,
            )

        limit = ref.params.limit or 1
        prefix = label_prefix or title_case(source)
        path_text = expression.strip()
        return [
            AggregateColumn(
                path=f"{path_text}.{column.aggregate_field}",
                label=f"{prefix} {title_case(column.aggregate_field or column.name)}",
                result_type=column.result_type,
                select_expression=query.subquery(ColumnRef(alias, column.name), limit).to_sql(),
                entity_name=target.class_name,
                **_aggregate_metadata(column, source, include_metadata),
            )
            for column in columns
        ]

    # --- helpers ---

    def _base(self, name: str, expression: str) -> EntitySchema:
        entity = self.graph.entities.get(name)
        if entity is None:
            raise PathResolutionError(f"Base entity '{name}' not found", expression)
        return entity

    def _entity(self, name: str, expression: str, segment: str) -> EntitySchema:
        entity = self.graph.entities.get(name)
        if entity is None:
            raise PathResolutionError(f"FK target entity '{name}' not found", expression, segment)
        return entity

    def _follow(
        self,
        entity: EntitySchema,
        segment: str,
        alias: str,
        expression: str,
        aliases: AliasAllocator,
        segments: list[str],
        chain: list[str],
    ) -> tuple[EntitySchema, Join]:
        """Step over one FK segment, returning the target entity and its join.

        The join alias is rendered from ``segments`` and keyed by the FK
        columns walked so far (``chain``) plus the one followed here.
        """
        fk_column = entity.find_fk_column(segment)
        if fk_column is None or fk_column.foreign_key is None:
            raise PathResolutionError(
                f"FK segment '{segment}' not found in entity '{entity.class_name}'",
                expression,
                segment,
            )
        target = self._entity(fk_column.foreign_key.entity, expression, segment)
        next_alias = aliases.alias(segments, [*chain, fk_column.name])
        join = Join(
            alias=next_alias,
            table=target.table_name,
            left=ColumnRef(alias, fk_column.name),
            right=ColumnRef(next_alias, IDENTITY_COLUMN),
        )
        return target, join

    def _aggregate_or_raise(
        self,
        entity: EntitySchema,
        name: str,
        expression: str,
        joins: list[Join],
        what: str,
    ) -> AggregateMarker:
        columns = entity.aggregate_columns(name)
        if not columns:
            raise PathResolutionError(
                f"{what} '{name}' not found in entity '{entity.class_name}'", expression, name
            )
        return AggregateMarker(
            source=name,
            aggregate_type=columns[0].aggregate_type,
            entity_name=entity.class_name,
            path=expression,
            joins=joins,
        )


def _label_column(entity: EntitySchema) -> Column | None:
    column = entity.label_column
    if column is not None:
        return column
    for name in FALLBACK_LABEL_COLUMNS:
        for column in entity.columns:
            if column.name == name:
                return column
    return None


def _column_name(entity: EntitySchema, name: str) -> str:
    column = entity.get_column(name)
    return column.name if column is not None else name


def _aggregate_metadata(column: Column, source: str, include: bool) -> dict[str, str | None]:
    if not include:
        return {}
    return {
        "aggregate_source": source,
        "aggregate_type": column.aggregate_type,
        "aggregate_field": column.aggregate_field,
    }

