"""DDL generation: CREATE TABLE, CREATE INDEX and per-entity label views."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from metamodel.errors import MetamodelError
from metamodel.labels import LabelCompiler, label_fields_expression
from metamodel.model import BASE_ALIAS, IDENTITY_COLUMN, EntitySchema, SchemaGraph
from metamodel.sql import AliasAllocator, ColumnRef, Expression, Join, JoinSet, Star, quote_identifier

logger = structlog.get_logger(__name__)


class DDLGenerator:
    """Renders SQL statements for compiled entities.

    Every statement uses IF NOT EXISTS, and output depends only on the
    entity schemas, so generating twice yields identical text.
    """

    def __init__(self, entities: Mapping[str, EntitySchema] | None = None) -> None:
        """Initialize a generator.

        Args:
            entities: All compiled entities, used to inline the computed label
                expressions of foreign key targets in views.
        """
        self.entities = entities or {}
        self.labels = LabelCompiler(self.entities)

    def create_table(self, entity: EntitySchema) -> str:
        """Render CREATE TABLE for an entity."""
        definitions: list[str] = []

        if not any(c.is_identity for c in entity.columns):
            definitions.append(f"  {IDENTITY_COLUMN} INTEGER PRIMARY KEY")

        for column in entity.columns:
            sql_type = "INTEGER PRIMARY KEY" if column.is_identity else column.sql_type
            definition = f"  {quote_identifier(column.name)} {sql_type}"
            if column.unique and not column.is_identity:
                definition += " UNIQUE"
            definitions.append(definition)

        for fk in entity.foreign_keys:
            definitions.append(
                f"  FOREIGN KEY ({quote_identifier(fk.column)}) "
                f"REFERENCES {quote_identifier(fk.table)}({fk.target_column})"
            )

        for key_name, columns in entity.unique_keys.items():
            column_list = ", ".join(quote_identifier(c) for c in columns)
            definitions.append(
                f"  CONSTRAINT {key_name.lower()}_{entity.table_name} UNIQUE ({column_list})"
            )

        body = ",\n".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(entity.table_name)} (\n{body}\n);"

    def create_indexes(self, entity: EntitySchema) -> list[str]:
        """Render one CREATE INDEX per single-column index and index group."""
        statements = []
        for index_name, columns in entity.indexes.items():
            if not index_name.startswith("idx_"):
                index_name = f"{index_name.lower()}_{entity.table_name}"
            column_list = ", ".join(quote_identifier(c) for c in columns)
            statements.append(
                f"CREATE INDEX IF NOT EXISTS {index_name} "
                f"ON {quote_identifier(entity.table_name)}({column_list});"
            )
        return statements

    def create_view(self, entity: EntitySchema) -> str:
        """Render the {table}_view that adds readable labels to the base table.

        Every foreign key whose target has a label gets a LEFT JOIN and a
        '{display_name}_label' column; the entity's own label is '_label'.
        """
        selects: list[str] = [Star(BASE_ALIAS).to_sql()]
        joins = JoinSet()

        own_label = self._label(entity, BASE_ALIAS, entity)
        if own_label is not None:
            expression, label_joins = own_label
            joins.merge(label_joins)
            selects.append(f"{expression.to_sql()} AS _label")

        counter = 0
        for fk in entity.foreign_keys:
            target = self.entities.get(fk.entity)
            alias = f"fk{counter}"
            if target is not None:
                compiled = self._label(target, alias, entity)
            else:
                expression = label_fields_expression(alias, fk.label_fields)
                compiled = (expression, []) if expression is not None else None
            if compiled is None:
                continue
            counter += 1

            expression, label_joins = compiled
            joins.add(
                Join(
                    alias=alias,
                    table=fk.table,
                    left=ColumnRef(BASE_ALIAS, fk.column),
                    right=ColumnRef(alias, fk.target_column),
                )
            )
            joins.merge(label_joins)
            selects.append(f"{expression.to_sql()} AS {quote_identifier(fk.display_name + '_label')}")

        sql = [
            f"CREATE VIEW IF NOT EXISTS {entity.table_name}_view AS",
            "SELECT " + ",\n       ".join(selects),
            f"FROM {quote_identifier(entity.table_name)} {BASE_ALIAS}",
        ]
        sql.extend(join.to_sql() for join in joins)
        return "\n".join(sql) + ";"

    def _label(
        self, target: EntitySchema, alias: str, owner: EntitySchema
    ) -> tuple[Expression, list[Join]] | None:
        try:
            compiled = self.labels.compile(target, alias, AliasAllocator(alias))
        except MetamodelError as e:
            logger.warning(
                "label_expression_unresolved",
                entity=owner.class_name,
                target=target.class_name,
                error=str(e),
            )
            expression = label_fields_expression(alias, target.label_fields)
            return (expression, []) if expression is not None else None
        if compiled is None:
            return None
        return compiled.expression, compiled.joins

    def entity_statements(self, entity: EntitySchema) -> list[str]:
        """CREATE TABLE, CREATE INDEX and CREATE VIEW for one entity, in that order."""
        return [self.create_table(entity), *self.create_indexes(entity), self.create_view(entity)]

    def generate(self, graph: SchemaGraph) -> list[str]:
        """Render the base schema in a safe application order.

        Tables and their indexes follow the dependency order, then all views.
        Entities left out of the dependency order by a cycle are not rendered.
        """
        statements: list[str] = []
        for entity in graph.ordered_entities:
            statements.append(self.create_table(entity))
            statements.extend(self.create_indexes(entity))
        for entity in graph.ordered_entities:
            statements.append(self.create_view(entity))
        return statements


def generate_schema(graph: SchemaGraph) -> list[str]:
    """Render all DDL for a compiled schema graph."""
    return DDLGenerator(graph.entities).generate(graph)
