"""DuckDB query engine adapter for stax.

This module drives an in-process DuckDB database as the planner and executor
behind a statistics assertion. It implements the QueryEngine protocol:

- plan() reads the optimizer's output cardinality from ``EXPLAIN (FORMAT JSON)``
  and the planner's per-column statistics through DuckDB's ``stats()`` function.
- execute() runs a query and returns the full result set.

Every call runs on its own cursor, so a single engine can serve concurrent
checks. The cursor is interrupted when the check's cancellation token fires.

Example:
    >>> import pyarrow as pa
    >>> from stax.common import Session
    >>> from stax.extensions.duck_engine import DuckDBQueryEngine
    >>>
    >>> engine = DuckDBQueryEngine()
    >>> engine.register_arrow("item", pa.table({"i_item_sk": [1, 2, 3]}))
    >>> session = Session().with_property("collect_plan_statistics_for_all_queries", "true")
    >>> engine.plan("SELECT * FROM item", session).output_row_count
    <Some: 3.0>
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import duckdb
import pyarrow as pa
from returns.maybe import Maybe, Nothing, Some

from stax import functions
from stax.common import CancellationToken, CheckAborted, Session, SetupFailure
from stax.dialect import DuckDBDialect, strip_statement
from stax.models import ColumnStatistics, PlanWithStatistics, ResultSet

logger = logging.getLogger(__name__)

# Session properties with this prefix are applied to the cursor as DuckDB settings
DUCKDB_PROPERTY_PREFIX = "duckdb."

_ESTIMATED_CARDINALITY = "Estimated Cardinality"
_EMPTY_RESULT = "EMPTY_RESULT"
_LEGACY_CARDINALITY = re.compile(r"EC:\s*~?\s*(\d+)")

_MIN_MAX = re.compile(r"\[Min: (?P<min>.*?), Max: (?P<max>.*?)(?:, Has Unicode: .*?)?(?:, Max String Length: .*?)?\]")
_HAS_NULL = re.compile(r"Has Null: (?P<value>true|false)")
_HAS_NO_NULL = re.compile(r"Has No Null: (?P<value>true|false)")
_APPROX_UNIQUE = re.compile(r"Approx Unique: (?P<value>\d+)")
_SETTING_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _node_cardinality(node: Mapping[str, Any]) -> Maybe[float]:
    """Read the estimated cardinality of a single plan node, handling the ~ prefix."""
    extra_info = node.get("extra_info")

    raw: Any = None
    if isinstance(extra_info, Mapping):
        raw = extra_info.get(_ESTIMATED_CARDINALITY)
    elif isinstance(extra_info, str):
        match = _LEGACY_CARDINALITY.search(extra_info)
        raw = match.group(1) if match else None

    if raw is None:
        # Provably empty results carry no estimate
        if str(node.get("name", "")).strip() == _EMPTY_RESULT:
            return Some(0.0)
        return Nothing
    return functions.parse_double(str(raw).lstrip("~"))


def find_output_cardinality(plan: Any) -> Maybe[float]:
    """Estimated cardinality of the top-most plan node that carries one.

    Nodes without an estimate (result collectors, envelopes) are looked
    through as long as they have a single child. The estimate of any other
    node would not describe the query output.

    Args:
        plan: Parsed ``EXPLAIN (FORMAT JSON)`` output, a node or a list of root nodes

    Returns:
        Some(rows) or Nothing when the plan carries no usable estimate
    """
    nodes = plan if isinstance(plan, list) else [plan]
    while len(nodes) == 1 and isinstance(nodes[0], Mapping):
        node = nodes[0]
        estimate = _node_cardinality(node)
        if estimate != Nothing:
            return estimate
        nodes = node.get("children") or []
    return Nothing


def parse_column_stats(text: str | None) -> ColumnStatistics:
    """Parse the string rendered by DuckDB's ``stats()`` function.

    Example input::

        [Min: 1, Max: 3][Has Null: false, Has No Null: true][Approx Unique: 3]

    Boundaries of non-numeric columns (strings, blobs) are not comparable and
    are left absent. Null presence only pins the fraction at its extremes: a
    column without nulls has fraction 0.0, a column with nothing but nulls 1.0.
    """
    if not text:
        return ColumnStatistics()

    low: Maybe[float] = Nothing
    high: Maybe[float] = Nothing
    if (min_max := _MIN_MAX.search(text)) is not None:
        low = functions.parse_double(min_max.group("min"))
        high = functions.parse_double(min_max.group("max"))

    has_null = _HAS_NULL.search(text)
    has_no_null = _HAS_NO_NULL.search(text)
    nulls_fraction: Maybe[float] = Nothing
    if has_null is not None and has_null.group("value") == "false":
        nulls_fraction = Some(0.0)
    elif has_no_null is not None and has_no_null.group("value") == "false":
        nulls_fraction = Some(1.0)

    distinct: Maybe[float] = Nothing
    if (approx_unique := _APPROX_UNIQUE.search(text)) is not None:
        distinct = Some(float(approx_unique.group("value")))

    return ColumnStatistics(
        distinct_values_count=distinct,
        nulls_fraction=nulls_fraction,
        low_value=low,
        high_value=high,
    )


class DuckDBQueryEngine:
    """QueryEngine implementation backed by a DuckDB connection.

    The engine owns its connection unless one is passed in. It is meant to be
    created once per test session, shared by every check and closed by the
    caller.

    Attributes:
        name: Identifier for this engine type, always "duckdb"
        dialect: SQL dialect used for derived queries, always "duckdb"
        max_concurrency: Number of calls served at once
    """

    name: str = "duckdb"
    dialect: str = DuckDBDialect.name

    def __init__(
        self,
        database: str = ":memory:",
        *,
        connection: duckdb.DuckDBPyConnection | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._owns_connection = connection is None
        self._conn = connection if connection is not None else duckdb.connect(database)
        self._lock = threading.Lock()
        self.max_concurrency = max_concurrency or min(8, os.cpu_count() or 1)

    def __enter__(self) -> DuckDBQueryEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_connection:
            self._conn.close()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        return self._conn

    def register_arrow(self, table_name: str, table: pa.Table | pa.RecordBatch) -> None:
        """Materialize a PyArrow table as a DuckDB table so the planner has statistics for it."""
        if isinstance(table, pa.RecordBatch):
            table = pa.Table.from_batches([table])
        with self._lock:
            self._conn.from_arrow(table).create(table_name)
        logger.debug(f"Registered table {table_name} with {table.num_rows} rows")

    @classmethod
    def from_arrow(cls, tables: Mapping[str, pa.Table], **kwargs: Any) -> DuckDBQueryEngine:
        """Create an in-memory engine holding the given tables."""
        engine = cls(**kwargs)
        for table_name, table in tables.items():
            engine.register_arrow(table_name, table)
        return engine

    def run(self, sql: str) -> None:
        """Run a setup statement (DDL, inserts) on the engine's connection."""
        with self._lock:
            try:
                self._conn.execute(sql)
            except duckdb.Error as e:
                raise SetupFailure(str(e), sql) from e

    @contextmanager
    def _cursor(self, session: Session, token: CancellationToken | None) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            cursor = self._conn.cursor()

        def interrupt() -> None:
            try:
                cursor.interrupt()
            except duckdb.Error as e:
                logger.debug(f"Interrupting cursor failed: {e}")

        unregister = token.register(interrupt) if token is not None else (lambda: None)
        try:
            if token is not None:
                token.raise_if_cancelled()
            self._apply_session(cursor, session, token)
            yield cursor
        finally:
            unregister()
            cursor.close()

    @contextmanager
    def _translate_errors(self, sql: str, token: CancellationToken | None) -> Iterator[None]:
        try:
            yield
        except duckdb.Error as e:
            if token is not None and token.cancelled:
                raise CheckAborted(f"Query was interrupted: {sql}") from e
            raise SetupFailure(str(e), sql) from e

    def _apply_session(
        self, cursor: duckdb.DuckDBPyConnection, session: Session, token: CancellationToken | None
    ) -> None:
        if session.catalog and session.schema:
            statement = f"USE {_quote(session.catalog)}.{_quote(session.schema)}"
        elif session.catalog or session.schema:
            statement = f"USE {_quote(session.catalog or session.schema or '')}"
        else:
            statement = None

        if statement is not None:
            with self._translate_errors(statement, token):
                cursor.execute(statement)

        for key, value in session.properties.items():
            if not key.startswith(DUCKDB_PROPERTY_PREFIX):
                continue
            setting = key[len(DUCKDB_PROPERTY_PREFIX) :]
            if not _SETTING_NAME.fullmatch(setting):
                raise SetupFailure(f"Invalid DuckDB setting name in session property {key!r}")
            escaped = value.replace("'", "''")
            statement = f"SET {setting} = '{escaped}'"
            with self._translate_errors(statement, token):
                cursor.execute(statement)

    def plan(self, sql: str, session: Session, token: CancellationToken | None = None) -> PlanWithStatistics:
        """Plan a query and collect the estimated statistics of its output.

        Without the ``collect_plan_statistics_for_all_queries`` session
        property only the output column names are returned.

        Raises:
            SetupFailure: If DuckDB cannot bind or plan the query
            CheckAborted: If the call is interrupted through the token
        """
        query = strip_statement(sql)
        with self._cursor(session, token) as cursor:
            with self._translate_errors(query, token):
                columns = tuple(cursor.sql(query).columns)

            if not session.collects_plan_statistics:
                logger.debug("Plan statistics collection is disabled for this session")
                return PlanWithStatistics(output_columns=columns)

            row_count = self._output_cardinality(cursor, query, token)
            column_statistics = self._column_statistics(cursor, query, columns, token)

        return PlanWithStatistics(
            output_columns=columns,
            output_row_count=row_count,
            column_statistics=column_statistics,
        )

    def _output_cardinality(
        self, cursor: duckdb.DuckDBPyConnection, query: str, token: CancellationToken | None
    ) -> Maybe[float]:
        explain_sql = f"EXPLAIN (FORMAT JSON) {query}"
        with self._translate_errors(explain_sql, token):
            rows = cursor.execute(explain_sql).fetchall()

        if not rows:
            return Nothing

        # Rows are (explain_key, explain_value); prefer the physical plan
        plans = {key: value for key, value in rows}
        raw = plans.get("physical_plan", rows[-1][1])
        row_count = find_output_cardinality(json.loads(raw))
        logger.debug(f"Estimated output cardinality: {row_count}")
        return row_count

    def _column_statistics(
        self,
        cursor: duckdb.DuckDBPyConnection,
        query: str,
        columns: tuple[str, ...],
        token: CancellationToken | None,
    ) -> dict[str, ColumnStatistics]:
        if not columns:
            return {}

        # Positional aliases keep duplicated or oddly named output columns addressable
        aliases = [f"c{i}" for i in range(len(columns))]
        select_list = ", ".join(f"stats({alias})" for alias in aliases)
        stats_sql = f"SELECT {select_list} FROM ({query}) AS source({', '.join(aliases)}) LIMIT 1"
        with self._translate_errors(stats_sql, token):
            row = cursor.execute(stats_sql).fetchone()

        if row is None:
            logger.debug("Query produced no rows, column statistics are unavailable")
            return {}

        statistics: dict[str, ColumnStatistics] = {}
        for column, text in zip(columns, row):
            statistics.setdefault(column, parse_column_stats(text))
        return statistics

    def execute(self, sql: str, session: Session, token: CancellationToken | None = None) -> ResultSet:
        """Execute a query and fetch every row.

        Raises:
            SetupFailure: If DuckDB cannot execute the query
            CheckAborted: If the call is interrupted through the token
        """
        with self._cursor(session, token) as cursor:
            with self._translate_errors(sql, token):
                cursor.execute(sql)
                columns = tuple(d[0] for d in cursor.description or ())
                rows = cursor.fetchall()
        return ResultSet(columns=columns, rows=rows)


def _quote(identifier: str) -> str:
    return DuckDBDialect().quote_identifier(identifier)
