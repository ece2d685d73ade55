import logging
from collections.abc import Iterator
from unittest.mock import patch

import pyarrow as pa
import pytest
from rich.console import Console

from stax import get_logger
from stax.common import COLLECT_PLAN_STATISTICS_FOR_ALL_QUERIES, Session
from stax.extensions.duck_engine import DuckDBQueryEngine
from tests.fixtures.data_fixtures import (  # noqa: F401
    customer_address_data,
    customer_demographics_data,
    item_data,
    promotion_data,
    tpcds_tables,
)


@pytest.fixture(autouse=True)
def run_around_tests() -> Iterator:
    # Use stax logger with default format
    get_logger(level=logging.DEBUG, force_reconfigure=True)
    print("\n")
    yield


@pytest.fixture(scope="session")
def console() -> Console:
    return Console()


@pytest.fixture(scope="session")
def stats_session() -> Session:
    """Session that makes the engine attach statistics to ordinary plans."""
    return Session(catalog="memory", schema="main", properties={COLLECT_PLAN_STATISTICS_FOR_ALL_QUERIES: "true"})


@pytest.fixture(scope="session")
def duck_engine(tpcds_tables: dict[str, pa.Table]) -> Iterator[DuckDBQueryEngine]:
    """One engine shared by every test of the session, closed at the end."""
    engine = DuckDBQueryEngine.from_arrow(tpcds_tables, max_concurrency=4)
    yield engine
    engine.close()


@pytest.fixture
def isolated_dialect_registry() -> Iterator[dict[str, type]]:
    """Provide an isolated dialect registry for tests.

    Registering dialects inside a test does not leak into other tests.
    """
    from stax.dialect import _DIALECT_REGISTRY, DuckDBDialect

    with patch.dict("stax.dialect._DIALECT_REGISTRY", {"duckdb": DuckDBDialect}, clear=True):
        yield _DIALECT_REGISTRY
