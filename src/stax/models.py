from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from returns.maybe import Maybe, Nothing, Some

from stax.common import AssertionMismatch, CheckStatus, StaxError
from stax.specs import MetricDescriptor
from stax.strategies import MetricComparisonStrategy, Outcome


@dataclass(frozen=True)
class ColumnStatistics:
    """Optimizer statistics for one output column. Every field may be absent."""

    distinct_values_count: Maybe[float] = Nothing
    nulls_fraction: Maybe[float] = Nothing
    low_value: Maybe[float] = Nothing
    high_value: Maybe[float] = Nothing


@dataclass(frozen=True)
class PlanWithStatistics:
    """The planned query's output columns and the statistics attached to its output."""

    output_columns: tuple[str, ...]
    output_row_count: Maybe[float] = Nothing
    column_statistics: Mapping[str, ColumnStatistics] = field(default_factory=dict)

    def statistics_for(self, column: str) -> Maybe[ColumnStatistics]:
        stats = self.column_statistics.get(column)
        return Some(stats) if stats is not None else Nothing

    def has_column(self, column: str) -> bool:
        return column in self.output_columns


@dataclass(frozen=True)
class ResultSet:
    columns: tuple[str, ...]
    rows: Sequence[tuple[Any, ...]]

    def scalar(self) -> Any:
        """Return the single value of a single-row, single-column result.

        Returns None for an empty result.

        Raises:
            StaxError: If the result has more than one row or column
        """
        if len(self.columns) != 1:
            raise StaxError(f"Expected a single column, got {len(self.columns)}: {list(self.columns)}")
        if not self.rows:
            return None
        if len(self.rows) > 1:
            raise StaxError(f"Expected a single row, got {len(self.rows)}")
        return self.rows[0][0]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class MetricCheck:
    """One declared (metric, strategy) pair."""

    metric: MetricDescriptor
    strategy: MetricComparisonStrategy

    def __str__(self) -> str:
        return f"{self.metric.name} ~ {self.strategy.name}"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of judging one (metric, strategy) pair.

    Attributes:
        metric: The metric that was checked
        strategy: The comparison strategy applied
        estimated: Optimizer estimate, Nothing when the engine produced none
        actual: Ground truth from the derived query, Nothing when not computable
        outcome: Pass/fail plus the strategy's explanation
    """

    metric: MetricDescriptor
    strategy: MetricComparisonStrategy
    estimated: Maybe[float]
    actual: Maybe[float]
    outcome: Outcome

    @property
    def status(self) -> CheckStatus:
        return "OK" if self.outcome.passed else "FAILURE"

    @property
    def passed(self) -> bool:
        return self.outcome.passed

    def describe(self) -> str:
        return (
            f"{self.metric.name}: estimated={format_value(self.estimated)}, "
            f"actual={format_value(self.actual)}, strategy={self.strategy.name}: {self.outcome.detail}"
        )


@dataclass(frozen=True)
class AssertionResult:
    """All check results for one query. Passes iff every check result passes."""

    sql: str
    results: tuple[CheckResult, ...]

    @property
    def status(self) -> CheckStatus:
        return "OK" if all(r.passed for r in self.results) else "FAILURE"

    @property
    def passed(self) -> bool:
        return self.status == "OK"

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if not r.passed]

    def report(self) -> str:
        """Render every failing pair, or a one-line summary when all passed."""
        if self.passed:
            return f"All {len(self.results)} statistics checks passed for query: {self.sql}"

        lines = [f"{len(self.failures)} of {len(self.results)} statistics checks failed for query: {self.sql}"]
        lines.extend(f"  - {r.describe()}" for r in self.failures)
        return "\n".join(lines)

    def assert_ok(self) -> None:
        """Raise AssertionMismatch listing every failing pair if any check failed."""
        if not self.passed:
            raise AssertionMismatch(self.report(), result=self)


def format_value(value: Maybe[float]) -> str:
    match value:
        case Some(v):
            return f"{v:g}"
        case _:
            return "<absent>"
