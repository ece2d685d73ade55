from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from returns.maybe import Maybe
from rich.markup import escape

from stax import analyzer, estimator
from stax.common import CancellationToken, CheckAborted, Query, QueryEngine, Session, SetupFailure, StaxError
from stax.models import AssertionResult, CheckResult, MetricCheck, PlanWithStatistics
from stax.notation import parse_metric, parse_strategy
from stax.specs import ColumnMetric, MetricDescriptor, column_statistics
from stax.strategies import MetricComparisonStrategy, no_error, no_estimate

__all__ = ["Checks", "Query", "StatisticsAssertion", "ChecksBuilder"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checks:
    """
    Immutable declaration of the (metric, strategy) pairs verified against one query.

    Every method returns a new Checks; the receiver is never modified, so a
    partially built declaration can be reused as a base for several queries.

    Example:
        >>> checks = (
        ...     Checks()
        ...     .estimate(OUTPUT_ROW_COUNT, default_tolerance())
        ...     .verify_character_column_statistics("cd_marital_status", no_error())
        ... )
        >>> len(checks)
        3
    """

    pairs: tuple[MetricCheck, ...] = field(default_factory=tuple)

    def _extend(self, pairs: Iterable[MetricCheck]) -> Checks:
        return Checks(self.pairs + tuple(pairs))

    def estimate(self, metric: MetricDescriptor, strategy: MetricComparisonStrategy) -> Checks:
        """Compare the estimate of a metric with its actual value using a strategy."""
        if not isinstance(strategy, MetricComparisonStrategy):
            raise StaxError(f"Not a comparison strategy: {strategy!r}")
        return self._extend([MetricCheck(metric, strategy)])

    def no_estimate(self, metric: MetricDescriptor) -> Checks:
        """Declare that the engine produces no estimate for a metric."""
        return self.estimate(metric, no_estimate())

    def verify_column_statistics(self, column: str, strategy: MetricComparisonStrategy) -> Checks:
        """Null fraction, distinct count, low and high value of a column."""
        return self._extend(MetricCheck(metric, strategy) for metric in column_statistics(column))

    def verify_character_column_statistics(self, column: str, strategy: MetricComparisonStrategy) -> Checks:
        """Null fraction and distinct count of a character column."""
        return self._extend(MetricCheck(metric, strategy) for metric in column_statistics(column, character=True))

    def verify_exact_column_statistics(self, column: str) -> Checks:
        return self.verify_column_statistics(column, no_error())

    def declare(self, metric: str, strategy: str) -> Checks:
        """Add a pair written in the canonical notation, e.g. ``declare("NULL_FRACTION(c)", "absoluteError(0.01)")``.

        Raises:
            NotationSyntaxError: If either text is malformed
        """
        return self.estimate(parse_metric(metric), parse_strategy(strategy))

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self):
        return iter(self.pairs)


ChecksBuilder = Callable[[Checks], Checks]


def _check_columns(plan: PlanWithStatistics, pairs: tuple[MetricCheck, ...], sql: str) -> None:
    """Column metrics must reference top-level output columns of the query."""
    missing = sorted(
        {
            pair.metric.column
            for pair in pairs
            if isinstance(pair.metric, ColumnMetric) and not plan.has_column(pair.metric.column)
        }
    )
    if missing:
        raise SetupFailure(
            f"Columns {missing} are not output columns of the query. Available columns: {list(plan.output_columns)}",
            sql,
        )


class StatisticsAssertion:
    """
    Verifies an engine's estimated statistics against actual ones for queries.

    The engine is an externally owned, long-lived handle: the assertion never
    creates or closes it. Each check runs on its own bounded thread pool whose
    size never exceeds the engine's max_concurrency.

    Example:
        >>> with DuckDBQueryEngine() as engine:
        ...     assertion = StatisticsAssertion(engine, session)
        ...     assertion.verify(
        ...         "SELECT * FROM item",
        ...         lambda checks: checks.estimate(OUTPUT_ROW_COUNT, default_tolerance()),
        ...     )
    """

    def __init__(self, engine: QueryEngine, session: Session | None = None, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise StaxError(f"max_workers must be at least 1, got {max_workers}")

        self._engine = engine
        self._session = session or Session()
        self._max_workers = max_workers

    def __enter__(self) -> StatisticsAssertion:
        return self

    def __exit__(self, *exc_info: object) -> None:
        # The engine belongs to the caller
        pass

    @property
    def engine(self) -> QueryEngine:
        return self._engine

    @property
    def session(self) -> Session:
        return self._session

    @property
    def pool_size(self) -> int:
        return max(1, min(self._max_workers, self._engine.max_concurrency))

    def check(
        self,
        sql: str,
        builder: ChecksBuilder,
        *,
        session: Session | None = None,
        timeout: float | None = None,
    ) -> AssertionResult:
        """
        Run every declared pair against a query and collect all results.

        Mismatches never short-circuit: the returned result holds one
        CheckResult per declared pair, in declaration order.

        Args:
            sql: The query whose statistics are verified
            builder: Callable receiving an empty Checks and returning the declaration
            session: Session for this check, defaults to the assertion's session
            timeout: Seconds to wait for the whole check

        Returns:
            AssertionResult for the query

        Raises:
            StaxError: If no pairs are declared
            SetupFailure: If the engine cannot plan or execute the query or a derived query
            CheckAborted: If the check times out
        """
        checks = builder(Checks())
        if not isinstance(checks, Checks):
            raise StaxError(f"Check builder must return Checks, got {type(checks).__name__}")
        if not checks.pairs:
            raise StaxError(f"No statistics checks declared for query: {sql}")

        query = Query(sql, session or self._session)
        logger.info(f"Checking {len(checks)} statistics on {self._engine.name}: {escape(sql)}")

        token = CancellationToken()
        executor = ThreadPoolExecutor(max_workers=self.pool_size, thread_name_prefix="stax-check")
        try:
            results = self._run(executor, token, query, checks.pairs, timeout)
        except BaseException:
            token.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        result = AssertionResult(sql=sql, results=results)
        for failure in result.failures:
            logger.error(f"[red]FAILED[/red] {escape(failure.describe())}")
        logger.info(f"Statistics check {result.status}: {len(result.failures)}/{len(result.results)} failed")
        return result

    def _run(
        self,
        executor: ThreadPoolExecutor,
        token: CancellationToken,
        query: Query,
        pairs: tuple[MetricCheck, ...],
        timeout: float | None,
    ) -> tuple[CheckResult, ...]:
        # One plan serves every estimate; derivations run alongside it
        plan_future: Future[PlanWithStatistics] = executor.submit(
            self._engine.plan, query.sql, query.session, token
        )
        actual_futures: list[Future[Maybe[float]]] = [
            executor.submit(analyzer.derive_actual, self._engine, query, pair.metric, token) for pair in pairs
        ]

        futures: list[Future] = [plan_future, *actual_futures]
        done, pending = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)

        if plan_future in done and plan_future.exception() is None:
            _check_columns(plan_future.result(), pairs, query.sql)

        # Setup failures surface first, they mean the harness or the engine is broken
        for future in futures:
            if future in done and future.exception() is not None:
                raise future.exception()  # type: ignore[misc]

        if pending:
            raise CheckAborted(f"Statistics check timed out after {timeout}s: {query.sql}")

        plan = plan_future.result()

        results = []
        for pair, actual_future in zip(pairs, actual_futures):
            estimated = estimator.estimate_from_plan(plan, pair.metric)
            actual = actual_future.result()
            outcome = pair.strategy.judge(estimated, actual, integral=pair.metric.integral)
            results.append(CheckResult(pair.metric, pair.strategy, estimated, actual, outcome))
        return tuple(results)

    def verify(
        self,
        sql: str,
        builder: ChecksBuilder,
        *,
        session: Session | None = None,
        timeout: float | None = None,
    ) -> AssertionResult:
        """Run a check and raise AssertionMismatch listing every failing pair.

        Raises:
            AssertionMismatch: If any pair failed
        """
        result = self.check(sql, builder, session=session, timeout=timeout)
        result.assert_ok()
        return result
