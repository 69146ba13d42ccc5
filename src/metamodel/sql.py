"""A small SQL expression builder for the fragments the compiler generates.

Only the constrained dialect the compiler emits is modelled: column
references, literals, ``||`` concatenation, function calls, equality and
IS NULL predicates, scalar correlated subqueries and LEFT JOINs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from metamodel.errors import MetamodelError

_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

RESERVED_WORDS = frozenset(
    """
    ADD ALL ALTER AND AS ASC BETWEEN BY CASE CHECK COLLATE COLUMN CONSTRAINT
    CREATE CROSS DEFAULT DELETE DESC DISTINCT DROP ELSE END ESCAPE EXCEPT EXISTS
    FOREIGN FROM FULL GROUP HAVING IN INDEX INNER INSERT INTERSECT INTO IS ISNULL
    JOIN LEFT LIKE LIMIT NATURAL NOT NOTNULL NULL OFFSET ON OR ORDER OUTER
    PRIMARY REFERENCES RIGHT SELECT SET TABLE THEN TO TRANSACTION UNION UNIQUE
    UPDATE USING VALUES VIEW WHEN WHERE WITH
    """.split()
)


def quote_identifier(name: str) -> str:
    """Quote an identifier unless it is a plain, non-reserved name."""
    if _PLAIN_IDENTIFIER.match(name) and name.upper() not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_alias(name: str) -> str:
    """Always double-quote a column alias."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Expression:
    """Base class for SQL expressions."""

    def to_sql(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.to_sql()


@dataclass(frozen=True)
class ColumnRef(Expression):
    """alias.column, or a bare column when alias is None."""

    alias: str | None
    column: str

    def to_sql(self) -> str:
        if self.alias is None:
            return quote_identifier(self.column)
        return f"{self.alias}.{quote_identifier(self.column)}"


@dataclass(frozen=True)
class Literal(Expression):
    """A string, number or NULL literal."""

    value: str | int | float | None

    def to_sql(self) -> str:
        if self.value is None:
            return "NULL"
        if isinstance(self.value, bool):
            return "1" if self.value else "0"
        if isinstance(self.value, (int, float)):
            return str(self.value)
        return quote_literal(self.value)


@dataclass(frozen=True)
class Star(Expression):
    alias: str | None = None

    def to_sql(self) -> str:
        return f"{self.alias}.*" if self.alias else "*"


@dataclass(frozen=True)
class Concat(Expression):
    """parts joined with ||."""

    parts: tuple[Expression, ...]

    def to_sql(self) -> str:
        return " || ".join(part.to_sql() for part in self.parts)


@dataclass(frozen=True)
class FunctionCall(Expression):
    name: str
    args: tuple[Expression, ...] = ()

    def to_sql(self) -> str:
        return f"{self.name}({', '.join(arg.to_sql() for arg in self.args)})"


@dataclass(frozen=True)
class Equals(Expression):
    left: Expression
    right: Expression

    def to_sql(self) -> str:
        return f"{self.left.to_sql()} = {self.right.to_sql()}"


@dataclass(frozen=True)
class IsNull(Expression):
    operand: Expression

    def to_sql(self) -> str:
        return f"{self.operand.to_sql()} IS NULL"


@dataclass(frozen=True)
class Join:
    """LEFT JOIN table alias ON left = right."""

    alias: str
    table: str
    left: ColumnRef
    right: ColumnRef

    @property
    def on_left(self) -> str:
        return self.left.to_sql()

    @property
    def on_right(self) -> str:
        return self.right.to_sql()

    def to_sql(self) -> str:
        return (
            f"LEFT JOIN {quote_identifier(self.table)} {self.alias} "
            f"ON {self.on_left} = {self.on_right}"
        )


@dataclass(frozen=True)
class OrderTerm:
    expression: Expression
    direction: str = "ASC"

    def to_sql(self) -> str:
        return f"{self.expression.to_sql()} {self.direction}"


@dataclass(frozen=True)
class ScalarSubquery(Expression):
    """(SELECT expr FROM table alias [joins] WHERE ... [ORDER BY ...] [LIMIT n])."""

    select: Expression
    table: str
    alias: str
    joins: tuple[Join, ...] = ()
    where: tuple[Expression, ...] = ()
    order_by: OrderTerm | None = None
    limit: int | None = None

    def to_sql(self) -> str:
        sql = f"(SELECT {self.select.to_sql()} FROM {quote_identifier(self.table)} {self.alias}"
        for join in self.joins:
            sql += " " + join.to_sql()
        if self.where:
            sql += " WHERE " + " AND ".join(term.to_sql() for term in self.where)
        if self.order_by is not None:
            sql += " ORDER BY " + self.order_by.to_sql()
        if self.limit is not None:
            sql += f" LIMIT {self.limit}"
        return sql + ")"


class JoinSet:
    """Ordered set of joins keyed by alias.

    Adding a join under an alias that is already bound to a different join
    is an error; adding the same join again is a no-op.
    """

    def __init__(self, joins: Iterable[Join] = ()) -> None:
        self._joins: dict[str, Join] = {}
        self.merge(joins)

    def add(self, join: Join) -> None:
        existing = self._joins.get(join.alias)
        if existing is None:
            self._joins[join.alias] = join
        elif existing != join:
            raise MetamodelError(
                f"Join alias '{join.alias}' is already bound to table '{existing.table}'"
            )

    def merge(self, joins: Iterable[Join]) -> None:
        """Add several joins, all or nothing."""
        joins = list(joins)
        staged = dict(self._joins)
        for join in joins:
            existing = staged.get(join.alias)
            if existing is not None and existing != join:
                raise MetamodelError(
                    f"Join alias '{join.alias}' is already bound to table '{existing.table}'"
                )
            staged.setdefault(join.alias, join)
        self._joins = staged

    def __contains__(self, alias: str) -> bool:
        return alias in self._joins

    def __iter__(self) -> Iterator[Join]:
        return iter(self._joins.values())

    def __len__(self) -> int:
        return len(self._joins)

    def to_list(self) -> list[Join]:
        return list(self._joins.values())


@dataclass
class AliasAllocator:
    """Allocates join aliases under an owning alias.

    The alias for a segment path is '{owner}_{seg1}_{seg2}...'. Aliases are
    keyed by ``key`` (the segments themselves unless given), so the same key
    always gets the same alias, while a different key that would render to an
    alias already handed out gets a numeric suffix instead.
    """

    owner: str
    prefix: tuple[str, ...] = ()
    _assigned: dict[tuple[str, ...], str] = field(default_factory=dict)
    _used: set[str] = field(default_factory=set)

    def alias(self, segments: Sequence[str], key: Sequence[str] | None = None) -> str:
        key = self.prefix + tuple(segments if key is None else key)
        if key in self._assigned:
            return self._assigned[key]

        rendered = "_".join((self.owner, *segments))
        candidate = rendered
        counter = 0
        while candidate in self._used:
            counter += 1
            candidate = f"{rendered}_{counter}"

        self._assigned[key] = candidate
        self._used.add(candidate)
        return candidate

    def scoped(self, owner: str, prefix: Sequence[str] = ()) -> AliasAllocator:
        """Allocate under another alias, sharing this allocator's bookkeeping."""
        return AliasAllocator(owner, self.prefix + tuple(prefix), self._assigned, self._used)
