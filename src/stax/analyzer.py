from __future__ import annotations

import logging
from typing import Any

import numpy as np
import sqlparse
from returns.maybe import Maybe, Nothing

from stax import functions
from stax.common import CancellationToken, Query, QueryEngine, StaxError
from stax.dialect import get_dialect
from stax.specs import MetricDescriptor

logger = logging.getLogger(__name__)


def _validate_value(value: Any, metric: MetricDescriptor) -> Maybe[float]:
    """Validate a scalar read back from a derived metric query.

    Args:
        value: The value to validate
        metric: Metric for log context

    Returns:
        Some(float) for a numeric value, Nothing when the metric is not computable
        (NULL result, NaN, masked or non-numeric value).
    """
    # Check for numpy masked value
    if np.ma.is_masked(value):
        logger.debug(f"Masked value for {metric.name}, treating as not computable")
        return Nothing

    if isinstance(value, np.generic):
        value = value.item()

    result = functions.as_double(value)
    if result == Nothing and value is not None:
        logger.debug(f"Value {value!r} of {metric.name} has no numeric interpretation")
    return result


def format_sql(sql: str) -> str:
    return sqlparse.format(
        sql,
        reindent=True,
        keyword_case="upper",
        indent_width=2,
        wrap_after=120,
        comma_first=False,
    )


def derive_actual(
    engine: QueryEngine,
    query: Query,
    metric: MetricDescriptor,
    token: CancellationToken | None = None,
) -> Maybe[float]:
    """Compute the ground-truth value of a metric by executing a derived aggregate query.

    The query is rewritten into a single-row aggregate over the original query
    (see stax.dialect) and executed through the engine with the same session
    used for estimation.

    Args:
        engine: The query engine to execute on
        query: The user query and the session shared with the estimate path
        metric: Metric to compute
        token: Optional cancellation token for the in-flight execution

    Returns:
        Some(value) with the actual metric value, or Nothing when the metric is
        not computable (e.g. null fraction of an empty result, min of a
        character column).

    Raises:
        SetupFailure: If the derived query cannot be executed
        StaxError: If the derived query does not produce a single scalar
    """
    dialect = get_dialect(engine.dialect)
    derived_sql = dialect.build_derived_query(query.sql, metric)
    logger.debug(f"Derived SQL for {metric.name}:\n{format_sql(derived_sql)}")

    result = engine.execute(derived_sql, query.session, token)
    try:
        value = result.scalar()
    except StaxError as e:
        raise StaxError(f"Derived query for {metric.name} did not return a scalar: {e}") from e

    return _validate_value(value, metric)
