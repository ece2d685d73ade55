from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from stax.models import PlanWithStatistics, ResultSet


COLLECT_PLAN_STATISTICS_FOR_ALL_QUERIES = "collect_plan_statistics_for_all_queries"

CheckStatus = Literal["OK", "FAILURE"]
Properties = Mapping[str, str]


class StaxError(Exception): ...


class SetupFailure(StaxError):
    """The engine could not plan or execute a query at all.

    Carries the offending query text, which for derived metrics is the
    rewritten aggregate query rather than the user query.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        self.message = message
        self.sql = sql
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.sql:
            return f"{self.message}\nQuery: {self.sql}"
        return self.message


class CheckAborted(StaxError): ...


class AssertionMismatch(AssertionError):
    """One or more estimates disagree with the actual statistics."""

    def __init__(self, message: str, result: object | None = None) -> None:
        self.result = result
        super().__init__(message)


@dataclass(frozen=True)
class Session:
    """Catalog, schema and properties under which a query is planned and executed.

    Sessions are immutable. The same instance is used for both the estimate
    and the actual path so the two are comparable.
    """

    catalog: str | None = None
    schema: str | None = None
    properties: Properties = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def with_property(self, key: str, value: str) -> Session:
        return Session(catalog=self.catalog, schema=self.schema, properties={**self.properties, key: value})

    def get_property(self, key: str, default: str | None = None) -> str | None:
        return self.properties.get(key, default)

    @property
    def collects_plan_statistics(self) -> bool:
        return self.properties.get(COLLECT_PLAN_STATISTICS_FOR_ALL_QUERIES, "false") == "true"

    def __hash__(self) -> int:
        return hash((self.catalog, self.schema, tuple(sorted(self.properties.items()))))

    def __repr__(self) -> str:
        return f"Session({self.catalog}.{self.schema}, {dict(self.properties)})"


class CancellationToken:
    """Cooperative cancellation shared between a check and the engine calls it issued.

    Engines register an interrupt callback for each in-flight call; cancel()
    fires every registered callback once. Callbacks registered after
    cancellation fire immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an interrupt callback and return a function that unregisters it."""
        with self._lock:
            if not self._cancelled:
                handle = self._next_id
                self._next_id += 1
                self._callbacks[handle] = callback
                return lambda: self._unregister(handle)
        callback()
        return lambda: None

    def _unregister(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            callback()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CheckAborted("Check was cancelled")


@runtime_checkable
class QueryEngine(Protocol):
    """
    Protocol for the query engine a statistics assertion drives.

    The engine is a shared, long-lived handle owned by the caller. plan() and
    execute() must be safe to call concurrently from up to max_concurrency
    threads.

    Attributes:
        name: A unique identifier for this engine instance
        dialect: The SQL dialect name used to build derived queries
        max_concurrency: Maximum number of calls the engine accepts at once
    """

    name: str
    dialect: str
    max_concurrency: int

    def plan(self, sql: str, session: Session, token: CancellationToken | None = None) -> PlanWithStatistics:
        """
        Plan a query and return the estimated statistics of its output.

        Args:
            sql: The SQL query to plan
            session: Session to plan under
            token: Optional cancellation token for in-flight work

        Returns:
            The plan's output columns and whatever statistics the optimizer attached

        Raises:
            SetupFailure: If the query cannot be planned
        """
        ...

    def execute(self, sql: str, session: Session, token: CancellationToken | None = None) -> ResultSet:
        """
        Execute a query and return its rows.

        Args:
            sql: The SQL query to execute
            session: Session to execute under
            token: Optional cancellation token for in-flight work

        Returns:
            The full result set

        Raises:
            SetupFailure: If the query cannot be executed
        """
        ...


@dataclass(frozen=True)
class Query:
    """A SQL query bound to the session it is planned and executed under."""

    sql: str
    session: Session = field(default_factory=Session)
