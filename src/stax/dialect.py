"""SQL dialect abstraction for derived metric queries.

This module turns a user query and a metric descriptor into the aggregate
query whose single scalar result is the metric's actual value.

## Overview

A dialect handles:
- Translation of a metric descriptor to an aggregate expression
- Identifier quoting
- Wrapping the user query as a derived table

The user query is embedded verbatim. Predicate semantics (fixed-width
character comparison, decimal literal coercion, NULL handling) therefore stay
exactly what the engine does for the original query.

## Usage

    >>> from stax.dialect import DuckDBDialect
    >>> from stax.specs import OUTPUT_ROW_COUNT, null_fraction
    >>>
    >>> dialect = DuckDBDialect()
    >>> dialect.build_derived_query("SELECT * FROM item", OUTPUT_ROW_COUNT)
    'SELECT count(*) AS "value" FROM (SELECT * FROM item) AS source'
    >>> dialect.translate_metric(null_fraction("i_brand_id"))
    'CAST(count(*) FILTER (WHERE "i_brand_id" IS NULL) AS DOUBLE) / NULLIF(count(*), 0)'

## Extending with new dialects

    class PostgreSQLDialect(DuckDBDialect):
        name = "postgresql"

        def translate_metric(self, metric: MetricDescriptor) -> str:
            match metric:
                case ColumnMetric(column=col, kind=MetricKind.NULL_FRACTION):
                    quoted = self.quote_identifier(col)
                    return f"count(*) FILTER (WHERE {quoted} IS NULL)::float8 / NULLIF(count(*), 0)"
                case _:
                    return super().translate_metric(metric)

    register_dialect("postgresql", PostgreSQLDialect)
"""

from __future__ import annotations

from typing import Protocol, Type, runtime_checkable

from stax.common import StaxError
from stax.specs import ColumnMetric, MetricDescriptor, MetricKind, OutputRowCount

VALUE_ALIAS = "value"


def strip_statement(sql: str) -> str:
    """Remove surrounding whitespace and trailing statement terminators.

    Raises:
        ValueError: If the query is empty
    """
    stripped = sql.strip()
    while stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    if not stripped:
        raise ValueError("Empty query")
    return stripped


def build_derived_query(sql: str, expression: str, alias: str = VALUE_ALIAS) -> str:
    """Wrap a query as a derived table and select one expression from it.

    Args:
        sql: The user query, embedded verbatim
        expression: Aggregate expression to select
        alias: Column alias of the single result column

    Returns:
        SQL query string
    """
    return f'SELECT {expression} AS "{alias}" FROM ({strip_statement(sql)}) AS source'


@runtime_checkable
class Dialect(Protocol):
    """Protocol for SQL dialect implementations."""

    @property
    def name(self) -> str:
        """Name of the SQL dialect (e.g., 'duckdb')."""
        ...

    def quote_identifier(self, identifier: str) -> str:
        """Quote a column name so it is referenced exactly as the query outputs it."""
        ...

    def translate_metric(self, metric: MetricDescriptor) -> str:
        """Translate a metric descriptor to an aggregate SQL expression.

        Raises:
            ValueError: If the metric is not supported
        """
        ...

    def build_derived_query(self, sql: str, metric: MetricDescriptor) -> str:
        """Build the single-row aggregate query computing a metric over a query."""
        ...


class DuckDBDialect:
    """DuckDB SQL dialect implementation.

    Uses DuckDB's aggregate FILTER clause for null counting and double-quoted
    identifiers.
    """

    name = "duckdb"

    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def translate_metric(self, metric: MetricDescriptor) -> str:
        """Translate a metric descriptor to DuckDB SQL syntax."""

        match metric:
            case OutputRowCount():
                return "count(*)"

            case ColumnMetric(column=col, kind=MetricKind.DISTINCT_VALUES_COUNT):
                return f"count(DISTINCT {self.quote_identifier(col)})"

            case ColumnMetric(column=col, kind=MetricKind.NULL_FRACTION):
                # NULL on an empty relation instead of a division fault
                quoted = self.quote_identifier(col)
                return f"CAST(count(*) FILTER (WHERE {quoted} IS NULL) AS DOUBLE) / NULLIF(count(*), 0)"

            case ColumnMetric(column=col, kind=MetricKind.MIN):
                return f"min({self.quote_identifier(col)})"

            case ColumnMetric(column=col, kind=MetricKind.MAX):
                return f"max({self.quote_identifier(col)})"

            case _:
                raise ValueError(f"Unsupported metric: {metric!r}")

    def build_derived_query(self, sql: str, metric: MetricDescriptor) -> str:
        return build_derived_query(sql, self.translate_metric(metric))


# Dialect Registry
_DIALECT_REGISTRY: dict[str, Type[Dialect]] = {}


def register_dialect(name: str, dialect_class: Type[Dialect]) -> None:
    """Register a dialect in the global registry.

    Args:
        name: The name to register the dialect under
        dialect_class: The dialect class to register

    Raises:
        ValueError: If a dialect with this name is already registered
    """
    if name in _DIALECT_REGISTRY:
        raise ValueError(f"Dialect '{name}' is already registered")
    _DIALECT_REGISTRY[name] = dialect_class


def get_dialect(name: str) -> Dialect:
    """Get a dialect instance by name from the registry.

    Raises:
        StaxError: If the dialect is not found in the registry
    """
    if name not in _DIALECT_REGISTRY:
        available = ", ".join(sorted(_DIALECT_REGISTRY.keys()))
        raise StaxError(f"Dialect '{name}' not found in registry. Available dialects: {available}")

    dialect_class = _DIALECT_REGISTRY[name]
    return dialect_class()


# Register built-in dialects
register_dialect("duckdb", DuckDBDialect)
