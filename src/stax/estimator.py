from __future__ import annotations

import logging

from returns.maybe import Maybe, Nothing

from stax.common import CancellationToken, Query, QueryEngine
from stax.models import ColumnStatistics, PlanWithStatistics
from stax.specs import ColumnMetric, MetricDescriptor, MetricKind, OutputRowCount

logger = logging.getLogger(__name__)


def _column_field(stats: ColumnStatistics, kind: MetricKind) -> Maybe[float]:
    match kind:
        case MetricKind.DISTINCT_VALUES_COUNT:
            return stats.distinct_values_count
        case MetricKind.NULL_FRACTION:
            return stats.nulls_fraction
        case MetricKind.MIN:
            return stats.low_value
        case MetricKind.MAX:
            return stats.high_value


def estimate_from_plan(plan: PlanWithStatistics, metric: MetricDescriptor) -> Maybe[float]:
    """Read the estimate for a metric off a planned query.

    Args:
        plan: The planned query with its output statistics
        metric: Metric to read

    Returns:
        Some(estimate), or Nothing when the plan carries no statistics for the
        metric (statistics collection disabled, unsupported predicate shape,
        column without statistics).
    """
    match metric:
        case OutputRowCount():
            return plan.output_row_count
        case ColumnMetric(column=column, kind=kind):
            return plan.statistics_for(column).bind(lambda stats: _column_field(stats, kind))
        case _:
            raise ValueError(f"Unsupported metric: {metric!r}")


def extract_estimate(
    engine: QueryEngine,
    query: Query,
    metric: MetricDescriptor,
    token: CancellationToken | None = None,
) -> Maybe[float]:
    """Plan a query and return the optimizer's estimate for a metric.

    Raises:
        SetupFailure: If the query cannot be planned
    """
    plan = engine.plan(query.sql, query.session, token)
    estimate = estimate_from_plan(plan, metric)
    if estimate == Nothing:
        logger.debug(f"No estimate for {metric.name}")
    return estimate
