from dataclasses import dataclass
from enum import StrEnum

from stax.common import StaxError


class MetricKind(StrEnum):
    """Per-column statistics an optimizer can estimate."""

    DISTINCT_VALUES_COUNT = "DISTINCT_VALUES_COUNT"
    NULL_FRACTION = "NULL_FRACTION"
    MIN = "MIN"
    MAX = "MAX"


@dataclass(frozen=True)
class OutputRowCount:
    """Number of rows the query returns."""

    @property
    def name(self) -> str:
        return "OUTPUT_ROW_COUNT"

    @property
    def integral(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ColumnMetric:
    """A statistic of one top-level output column of the query."""

    column: str
    kind: MetricKind

    def __post_init__(self) -> None:
        if not self.column or not self.column.strip():
            raise StaxError(f"{self.kind} requires a column name")

    @property
    def name(self) -> str:
        return f"{self.kind}({self.column})"

    @property
    def integral(self) -> bool:
        return self.kind is MetricKind.DISTINCT_VALUES_COUNT

    def __str__(self) -> str:
        return self.name


MetricDescriptor = OutputRowCount | ColumnMetric

OUTPUT_ROW_COUNT = OutputRowCount()


def distinct_values_count(column: str) -> ColumnMetric:
    return ColumnMetric(column, MetricKind.DISTINCT_VALUES_COUNT)


def null_fraction(column: str) -> ColumnMetric:
    return ColumnMetric(column, MetricKind.NULL_FRACTION)


def min_value(column: str) -> ColumnMetric:
    return ColumnMetric(column, MetricKind.MIN)


def max_value(column: str) -> ColumnMetric:
    return ColumnMetric(column, MetricKind.MAX)


def column_statistics(column: str, *, character: bool = False) -> tuple[ColumnMetric, ...]:
    """All metrics verified for a column.

    Character columns have no meaningful numeric range, so only the null
    fraction and the distinct count are included for them.
    """
    metrics = (null_fraction(column), distinct_values_count(column))
    if character:
        return metrics
    return metrics + (min_value(column), max_value(column))
