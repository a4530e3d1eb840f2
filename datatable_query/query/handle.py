"""Immutable query builder over a physical or virtual table.

Every identifier placed into the tree goes through the validator first and
every value becomes a ``?`` placeholder with a matching binding. Builder
methods return a new handle, so an earlier handle stays usable when a later
step fails.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import sqlglot
from sqlglot import exp

from ..security.validator import IdentifierValidator, TABLE, COLUMN

COMPARISON_BUILDERS = {
    "=": exp.EQ,
    "!=": exp.NEQ,
    "<>": exp.NEQ,
    "<": exp.LT,
    "<=": exp.LTE,
    ">": exp.GT,
    ">=": exp.GTE,
    "like": exp.Like,
}


@dataclass(frozen=True)
class Predicate:
    """A WHERE condition plus the values bound to its placeholders, in order."""

    expression: exp.Expression
    params: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Projection:
    """One SELECT item: ``table.column [AS alias]`` or ``table.*``."""

    table: Optional[str]
    column: str
    alias: Optional[str] = None

    @property
    def output_name(self) -> str:
        if self.alias:
            return self.alias
        return self.column


@dataclass(frozen=True)
class JoinClause:
    """``LEFT JOIN table ON left_table.left_column = right_table.right_column``."""

    table: str
    left_table: str
    left_column: str
    right_table: str
    right_column: str


def placeholder() -> exp.Placeholder:
    return exp.Placeholder()


def quoted_column(column: str, table: Optional[str] = None) -> exp.Column:
    """Build a quoted column reference from already-validated parts."""
    if column == "*":
        this = exp.Star()
    else:
        this = exp.to_identifier(column, quoted=True)
    if table:
        return exp.Column(this=this, table=exp.to_identifier(table, quoted=True))
    return exp.Column(this=this)


def quoted_table(table: str) -> exp.Table:
    return exp.Table(this=exp.to_identifier(table, quoted=True))


class QueryHandle:
    """Builder-pattern query over one primary source.

    Args:
        table: Name the primary source is referred to by (physical table
            name or virtual alias)
        validator: Identifier validator applied to every name
        dialect: sqlglot dialect used when rendering
        subquery_sql: Raw SQL of a virtual source; the handle then selects
            from ``(subquery_sql) AS table``
        columns: Known columns of the primary source, in ordinal order
    """

    def __init__(
        self,
        table: str,
        validator: IdentifierValidator,
        dialect: str = "duckdb",
        subquery_sql: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
    ):
        self.table = validator.validate(TABLE, table)
        self.validator = validator
        self.dialect = dialect
        self.subquery_sql = subquery_sql
        self.columns: List[str] = list(columns or [])
        self.projections: List[Projection] = []
        self.joins: List[JoinClause] = []
        self.predicates: List[Predicate] = []
        self.ordering: List[Tuple[str, Optional[str], bool]] = []
        self.limit: Optional[int] = None
        self.offset: int = 0

    @property
    def is_virtual(self) -> bool:
        return self.subquery_sql is not None

    def _derive(self) -> "QueryHandle":
        clone = copy.copy(self)
        clone.columns = list(self.columns)
        clone.projections = list(self.projections)
        clone.joins = list(self.joins)
        clone.predicates = list(self.predicates)
        clone.ordering = list(self.ordering)
        return clone

    def _column_ref(self, field: str) -> exp.Column:
        table, column = self.validator.validate_qualified(field)
        return quoted_column(column, table)

    def has_column(self, column: str) -> bool:
        for name in self.columns:
            if name.lower() == column.lower():
                return True
        return False

    def joined_tables(self) -> List[str]:
        tables = []
        for join in self.joins:
            tables.append(join.table)
        return tables

    def select(self, projections: Sequence[Projection]) -> "QueryHandle":
        """Replace the SELECT list."""
        validated: List[Projection] = []
        for projection in projections:
            if projection.table:
                self.validator.validate(TABLE, projection.table)
            if projection.column != "*":
                self.validator.validate(COLUMN, projection.column)
            if projection.alias:
                self.validator.validate(COLUMN, projection.alias)
            validated.append(projection)
        clone = self._derive()
        clone.projections = validated
        return clone

    def left_join(
        self,
        table: str,
        left_table: str,
        left_column: str,
        right_table: str,
        right_column: str,
    ) -> "QueryHandle":
        """Add a LEFT JOIN on a single equality."""
        clause = JoinClause(
            table=self.validator.validate(TABLE, table),
            left_table=self.validator.validate(TABLE, left_table),
            left_column=self.validator.validate(COLUMN, left_column),
            right_table=self.validator.validate(TABLE, right_table),
            right_column=self.validator.validate(COLUMN, right_column),
        )
        clone = self._derive()
        clone.joins.append(clause)
        return clone

    def where(self, field: str, operator: str, value: Any) -> "QueryHandle":
        """Add ``field <operator> ?``; sequences become IN / NOT IN."""
        operator = operator.strip().lower()
        if isinstance(value, (list, tuple, set)):
            negate = operator in ("!=", "<>", "not in")
            return self.where_in(field, list(value), negate=negate)
        if operator in ("in", "not in"):
            return self.where_in(field, [value], negate=operator == "not in")
        builder = COMPARISON_BUILDERS.get(operator)
        if builder is None:
            raise ValueError(f"Unsupported operator: {operator}")
        column = self._column_ref(field)
        if value is None:
            return self._add(Predicate(self._null_check(column, operator)))
        expression = builder(this=column, expression=placeholder())
        return self._add(Predicate(expression, (value,)))

    def _null_check(self, column: exp.Column, operator: str) -> exp.Expression:
        is_null = exp.Is(this=column, expression=exp.Null())
        if operator in ("!=", "<>"):
            return exp.Not(this=is_null)
        return is_null

    def where_in(self, field: str, values: Sequence[Any], negate: bool = False) -> "QueryHandle":
        """Add ``field IN (?, ...)``; an empty list matches nothing."""
        column = self._column_ref(field)
        if not values:
            if negate:
                return self._derive()
            return self._add(Predicate(exp.EQ(this=exp.Literal.number(1), expression=exp.Literal.number(0))))
        slots = []
        for _ in values:
            slots.append(placeholder())
        expression: exp.Expression = exp.In(this=column, expressions=slots)
        if negate:
            expression = exp.Not(this=expression)
        return self._add(Predicate(expression, tuple(values)))

    def where_not_null(self, field: str) -> "QueryHandle":
        column = self._column_ref(field)
        return self._add(Predicate(self._null_check(column, "!=")))

    def where_any_like(self, fields: Sequence[str], pattern: str) -> "QueryHandle":
        """Add ``(f1 LIKE ? OR f2 LIKE ? ...)`` with the same bound pattern."""
        if not fields:
            return self._derive()
        likes = []
        params = []
        for field in fields:
            text = exp.Cast(this=self._column_ref(field), to=exp.DataType.build("VARCHAR"))
            likes.append(exp.Like(this=text, expression=placeholder()))
            params.append(pattern)
        expression = exp.or_(*likes) if len(likes) > 1 else likes[0]
        return self._add(Predicate(exp.Paren(this=expression), tuple(params)))

    def _add(self, predicate: Predicate) -> "QueryHandle":
        clone = self._derive()
        clone.predicates.append(predicate)
        return clone

    def order_by(self, column: str, table: Optional[str], descending: bool) -> "QueryHandle":
        """Replace ordering with a single key."""
        self.validator.validate(COLUMN, column)
        if table:
            self.validator.validate(TABLE, table)
        clone = self._derive()
        clone.ordering = [(column, table, descending)]
        return clone

    def paginate(self, offset: int, limit: Optional[int]) -> "QueryHandle":
        clone = self._derive()
        clone.offset = max(0, int(offset))
        clone.limit = None if limit is None else max(0, int(limit))
        return clone

    def bindings(self) -> List[Any]:
        params: List[Any] = []
        for predicate in self.predicates:
            params.extend(predicate.params)
        return params

    def build_select(self, include_order: bool = True, include_page: bool = True) -> exp.Select:
        """Assemble the sqlglot tree for this handle."""
        select = exp.Select()
        select.set("expressions", self._projection_expressions())
        select.from_(self._source_expression(), copy=False)
        for join in self.joins:
            condition = exp.EQ(
                this=quoted_column(join.left_column, join.left_table),
                expression=quoted_column(join.right_column, join.right_table),
            )
            select.append("joins", exp.Join(this=quoted_table(join.table), on=condition, side="LEFT"))
        if self.predicates:
            conditions = []
            for predicate in self.predicates:
                conditions.append(predicate.expression)
            select.set("where", exp.Where(this=exp.and_(*conditions)))
        if include_order and self.ordering:
            keys = []
            for column, table, descending in self.ordering:
                keys.append(exp.Ordered(this=quoted_column(column, table), desc=descending))
            select.set("order", exp.Order(expressions=keys))
        if include_page:
            if self.limit is not None:
                select.set("limit", exp.Limit(expression=exp.Literal.number(self.limit)))
            if self.offset:
                select.set("offset", exp.Offset(expression=exp.Literal.number(self.offset)))
        return select

    def _projection_expressions(self) -> List[exp.Expression]:
        if not self.projections:
            return [quoted_column("*", self.table)]
        expressions: List[exp.Expression] = []
        for projection in self.projections:
            column = quoted_column(projection.column, projection.table)
            if projection.alias:
                expressions.append(exp.alias_(column, projection.alias, quoted=True))
            else:
                expressions.append(column)
        return expressions

    def _source_expression(self) -> exp.Expression:
        if self.subquery_sql is None:
            return quoted_table(self.table)
        inner = sqlglot.parse_one(self.subquery_sql, dialect=self.dialect)
        return exp.Subquery(
            this=inner,
            alias=exp.TableAlias(this=exp.to_identifier(self.table, quoted=True)),
        )

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Render the full query (order and page included) and its bindings."""
        return self.build_select().sql(dialect=self.dialect), self.bindings()

    def count_sql(self) -> Tuple[str, List[Any]]:
        """Render ``SELECT COUNT(*)`` over this handle, ignoring order and page."""
        inner = self.build_select(include_order=False, include_page=False)
        inner.set("expressions", [exp.Literal.number(1)])
        count = exp.Select()
        count.set("expressions", [exp.alias_(exp.Count(this=exp.Star()), "aggregate", quoted=True)])
        count.from_(
            exp.Subquery(
                this=inner,
                alias=exp.TableAlias(this=exp.to_identifier("count_source", quoted=True)),
            ),
            copy=False,
        )
        return count.sql(dialect=self.dialect), self.bindings()

    def __repr__(self) -> str:
        return (
            f"QueryHandle(table={self.table}, joins={len(self.joins)}, "
            f"predicates={len(self.predicates)}, limit={self.limit}, offset={self.offset})"
        )
