"""
Chainable query builder over the SQLite repository.

Only the narrow SQL vocabulary the engine needs is supported: a single flat
WHERE chain joined by AND/OR, simple equi-joins, ordering and a limit. Every
comparison value becomes a numbered positional parameter (``?1``, ``?2``, ...);
values are never interpolated into the statement text.

    db = QueryComposer(repo)
    rows = await (
        db.select("snippet")
        .columns("id", "reference")
        .where("dismissed").eq(False)
        .and_("due").lte(now_ms)
        .sort([("due", "ASC")])
        .limit(20)
        .execute()
    )
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from increading.domain.errors import PersistenceError, ValidationError
from increading.domain.rows import ROW_MODELS, table_columns

from .repository import SQLiteRepository

Conjunction = Literal["WHERE", "AND", "OR"]
Direction = Literal["ASC", "DESC"]


@dataclass(frozen=True)
class BuiltQuery:
    query: str
    parameters: list[Any]


@dataclass(frozen=True)
class _Condition:
    conjunction: Conjunction
    column: str
    comparator: str
    values: tuple[Any, ...]


def _check_table(table: str) -> str:
    if table not in ROW_MODELS:
        raise ValidationError(f"Unknown table {table!r}")
    return table


class _BaseQuery:
    operation = ""

    def __init__(self, table: str, repo: SQLiteRepository | None = None):
        self.table = _check_table(table)
        self._repo = repo
        self._tables = [table]
        self._columns: list[str] | None = None

    def _check_column(self, column: str, joined_only: bool = True) -> str:
        if "." in column:
            table, _, name = column.partition(".")
            _check_table(table)
            if joined_only and table not in self._tables:
                raise ValidationError(f"Table {table!r} is not part of this query")
        else:
            table, name = self.table, column
        if name not in table_columns(table):
            raise ValidationError(f"Unknown column {column!r} on table {table!r}")
        return column

    def columns(self, *columns: str):
        if not columns:
            raise ValidationError("At least one column must be specified if calling .columns()")
        self._columns = [self._check_column(c) for c in columns]
        return self

    def build(self) -> BuiltQuery:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.build().query

    async def execute(self) -> Any:
        if self._repo is None:
            raise PersistenceError("No repository was provided to the query composer")
        built = self.build()
        if self.operation == "SELECT":
            return await self._repo.query(built.query, built.parameters)
        return await self._repo.mutate(built.query, built.parameters)


Q = TypeVar("Q", bound="_FilteredQuery")


class ConditionBuilder(Generic[Q]):
    """Pending comparison on one column; each comparator returns the query."""

    def __init__(self, query: Q, column: str, conjunction: Conjunction):
        self._query = query
        self._column = column
        self._conjunction = conjunction

    def _add(self, comparator: str, *values: Any) -> Q:
        self._query._conditions.append(
            _Condition(self._conjunction, self._column, comparator, values)
        )
        return self._query

    def eq(self, value: Any) -> Q:
        return self._add("=", value)

    def neq(self, value: Any) -> Q:
        return self._add("<>", value)

    def lt(self, value: Any) -> Q:
        return self._add("<", value)

    def lte(self, value: Any) -> Q:
        return self._add("<=", value)

    def gt(self, value: Any) -> Q:
        return self._add(">", value)

    def gte(self, value: Any) -> Q:
        return self._add(">=", value)

    def in_(self, values: Iterable[Any]) -> Q:
        values = tuple(values)
        if not values:
            raise ValidationError("IN requires at least one value")
        return self._add("IN", *values)

    def is_null(self) -> Q:
        return self._add("IS NULL")

    def is_not_null(self) -> Q:
        return self._add("IS NOT NULL")


class _FilteredQuery(_BaseQuery):
    def __init__(self, table: str, repo: SQLiteRepository | None = None):
        super().__init__(table, repo)
        self._conditions: list[_Condition] = []

    def where(self: Q, column: str) -> ConditionBuilder[Q]:
        if self._conditions:
            raise ValidationError("WHERE should not be called multiple times in one query")
        return ConditionBuilder(self, self._check_column(column), "WHERE")

    def and_(self: Q, column: str) -> ConditionBuilder[Q]:
        return self._continue(column, "AND")

    def or_(self: Q, column: str) -> ConditionBuilder[Q]:
        return self._continue(column, "OR")

    def _continue(self: Q, column: str, conjunction: Conjunction) -> ConditionBuilder[Q]:
        if not self._conditions:
            raise ValidationError(f"{conjunction} called without a preceding WHERE")
        return ConditionBuilder(self, self._check_column(column), conjunction)

    def _render_where(self, params: list[Any]) -> str:
        parts = []
        for cond in self._conditions:
            if cond.comparator in ("IS NULL", "IS NOT NULL"):
                clause = f"{cond.column} {cond.comparator}"
            elif cond.comparator == "IN":
                placeholders = []
                for value in cond.values:
                    params.append(value)
                    placeholders.append(f"?{len(params)}")
                clause = f"{cond.column} IN ({', '.join(placeholders)})"
            else:
                params.append(cond.values[0])
                clause = f"{cond.column} {cond.comparator} ?{len(params)}"
            parts.append(f"{cond.conjunction} {clause}")
        return " ".join(parts)


class SelectQuery(_FilteredQuery):
    operation = "SELECT"

    def __init__(self, table: str, repo: SQLiteRepository | None = None):
        super().__init__(table, repo)
        self._joins: list[tuple[str, str, str]] = []
        self._sortings: list[tuple[str, str]] = []
        self._limit: int | None = None

    def _check_column(self, column: str, joined_only: bool = False) -> str:
        # Joined tables may be named before join() is called; build() checks membership.
        return super()._check_column(column, joined_only)

    def _check_joined(self) -> None:
        referenced = [
            *(self._columns or []),
            *(cond.column for cond in self._conditions),
            *(column for column, _ in self._sortings),
        ]
        for column in referenced:
            self._check_column(column, joined_only=True)

    def join(self, table: str) -> "_JoinClause":
        _check_table(table)
        if table in self._tables:
            raise ValidationError(f"Invalid JOIN with multiple references to table {table!r}")
        return _JoinClause(self, table)

    def sort(self, orderings: Iterable[tuple[str, Direction] | tuple[str]]) -> "SelectQuery":
        for ordering in orderings:
            column = self._check_column(ordering[0])
            direction = ordering[1] if len(ordering) > 1 else "ASC"
            if direction not in ("ASC", "DESC"):
                raise ValidationError(f"Invalid sort direction {direction!r}")
            self._sortings.append((column, direction))
        return self

    def limit(self, limit: int) -> "SelectQuery":
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"Limit must be a positive integer; received {limit!r}")
        self._limit = limit
        return self

    def build(self) -> BuiltQuery:
        self._check_joined()
        params: list[Any] = []
        cols = ", ".join(self._columns) if self._columns else "*"
        query = f"SELECT {cols} FROM {self.table}"
        for table, left, right in self._joins:
            query += f" JOIN {table} ON {left} = {right}"
        if self._conditions:
            query += " " + self._render_where(params)
        if self._sortings:
            query += " ORDER BY " + ", ".join(f"{c} {d}" for c, d in self._sortings)
        if self._limit is not None:
            query += f" LIMIT {self._limit}"
        return BuiltQuery(query, params)


class _JoinClause:
    def __init__(self, query: SelectQuery, table: str):
        self._query = query
        self._table = table

    def on(self, left: str, right: str) -> SelectQuery:
        # The joined table becomes visible for qualified column names.
        self._query._tables.append(self._table)
        for column in (left, right):
            if "." not in column:
                raise ValidationError(f"Join columns must be qualified: {column!r}")
            self._query._check_column(column, joined_only=True)
        self._query._joins.append((self._table, left, right))
        return self._query


class InsertQuery(_BaseQuery):
    operation = "INSERT"

    def __init__(self, table: str, repo: SQLiteRepository | None = None):
        super().__init__(table, repo)
        self._rows: list[list[Any]] | None = None

    def values(self, *rows: Mapping[str, Any]) -> "InsertQuery":
        if self._columns is None:
            raise ValidationError("Columns must be specified before inserting values")
        if not rows:
            raise ValidationError("At least one row of values is required")
        self._rows = [[row.get(col) for col in self._columns] for row in rows]
        return self

    def build(self) -> BuiltQuery:
        if self._columns is None:
            raise ValidationError("Insert queries must specify columns")
        if self._rows is None:
            raise ValidationError("Can't build without any values to insert")
        params: list[Any] = []
        groups = []
        for row in self._rows:
            placeholders = []
            for value in row:
                params.append(value)
                placeholders.append(f"?{len(params)}")
            groups.append(f"({', '.join(placeholders)})")
        query = (
            f"INSERT INTO {self.table} ({', '.join(self._columns)}) VALUES {', '.join(groups)}"
        )
        return BuiltQuery(query, params)


class UpdateQuery(_FilteredQuery):
    operation = "UPDATE"

    def __init__(self, table: str, repo: SQLiteRepository | None = None):
        super().__init__(table, repo)
        self._assignments: dict[str, Any] = {}

    def set(self, values: Mapping[str, Any]) -> "UpdateQuery":
        for column in values:
            self._check_column(column)
        self._assignments.update(values)
        return self

    def build(self) -> BuiltQuery:
        targets = [
            (column, value)
            for column, value in self._assignments.items()
            if self._columns is None or column in self._columns
        ]
        if not targets:
            raise ValidationError("Update queries must set at least one column")
        if not self._conditions:
            raise ValidationError("Refusing to build an UPDATE without a WHERE clause")
        params: list[Any] = []
        assignments = []
        for column, value in targets:
            params.append(value)
            assignments.append(f"{column} = ?{len(params)}")
        query = f"UPDATE {self.table} SET {', '.join(assignments)} " + self._render_where(params)
        return BuiltQuery(query, params)


class DeleteQuery(_FilteredQuery):
    operation = "DELETE"

    def columns(self, *columns: str):
        raise ValidationError("DELETE queries do not take columns")

    def build(self) -> BuiltQuery:
        if not self._conditions:
            raise ValidationError("Refusing to build a DELETE without a WHERE clause")
        params: list[Any] = []
        query = f"DELETE FROM {self.table} " + self._render_where(params)
        return BuiltQuery(query, params)


class QueryComposer:
    """Entry point: one builder per operation, keyed by table name."""

    def __init__(self, repo: SQLiteRepository | None = None):
        self.repo = repo

    def select(self, table: str) -> SelectQuery:
        return SelectQuery(table, self.repo)

    def insert(self, table: str) -> InsertQuery:
        return InsertQuery(table, self.repo)

    def update(self, table: str) -> UpdateQuery:
        return UpdateQuery(table, self.repo)

    def delete(self, table: str) -> DeleteQuery:
        return DeleteQuery(table, self.repo)
