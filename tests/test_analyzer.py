import datetime
import decimal
import logging

import numpy as np
import pytest
from returns.maybe import Nothing, Some

from stax import analyzer
from stax.common import Query, Session, SetupFailure, StaxError
from stax.extensions.duck_engine import DuckDBQueryEngine
from stax.models import PlanWithStatistics, ResultSet
from stax.specs import OUTPUT_ROW_COUNT, distinct_values_count, max_value, min_value, null_fraction
from tests.fixtures.fake_engines import ScriptedEngine

ITEM_QUERY = "SELECT * FROM item"


def _engine(**actuals: object) -> ScriptedEngine:
    return ScriptedEngine(PlanWithStatistics(("c",)), {OUTPUT_ROW_COUNT: actuals.get("rows")})


class TestValidateValue:
    def test_numeric_values(self) -> None:
        assert analyzer._validate_value(3, OUTPUT_ROW_COUNT) == Some(3.0)
        assert analyzer._validate_value(decimal.Decimal("-7.00"), min_value("c")) == Some(-7.0)

    def test_numpy_scalars(self) -> None:
        assert analyzer._validate_value(np.int64(12), OUTPUT_ROW_COUNT) == Some(12.0)
        assert analyzer._validate_value(np.float64(0.25), null_fraction("c")) == Some(0.25)

    def test_not_computable(self) -> None:
        assert analyzer._validate_value(None, null_fraction("c")) == Nothing
        assert analyzer._validate_value(np.nan, null_fraction("c")) == Nothing
        assert analyzer._validate_value(np.ma.masked, null_fraction("c")) == Nothing
        assert analyzer._validate_value("Women", min_value("c")) == Nothing

    def test_dates(self) -> None:
        assert analyzer._validate_value(datetime.date(1970, 1, 3), max_value("c")) == Some(2.0)


def test_format_sql() -> None:
    formatted = analyzer.format_sql('select count(*) as "value" from (select * from item) as source')
    assert formatted.startswith("SELECT")
    assert "\"value\"" in formatted
    assert "FROM" in formatted


class TestDeriveActualScripted:
    def test_row_count(self) -> None:
        engine = _engine(rows=1000)
        session = Session(catalog="memory")

        actual = analyzer.derive_actual(engine, Query(ITEM_QUERY, session), OUTPUT_ROW_COUNT)

        assert actual == Some(1000.0)
        sql, used_session = engine.executed[0]
        assert sql == 'SELECT count(*) AS "value" FROM (SELECT * FROM item) AS source'
        assert used_session is session

    def test_null_result_is_absent(self) -> None:
        assert analyzer.derive_actual(_engine(rows=None), Query(ITEM_QUERY), OUTPUT_ROW_COUNT) == Nothing

    def test_derived_sql_logged_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        # The stax logger does not propagate, capture on it directly
        stax_logger = logging.getLogger("stax")
        stax_logger.addHandler(caplog.handler)
        try:
            with caplog.at_level(logging.DEBUG, logger="stax"):
                analyzer.derive_actual(_engine(rows=3), Query(ITEM_QUERY), OUTPUT_ROW_COUNT)
        finally:
            stax_logger.removeHandler(caplog.handler)
        assert "Derived SQL for OUTPUT_ROW_COUNT" in caplog.text

    def test_non_scalar_result(self) -> None:
        class WideEngine(ScriptedEngine):
            def execute(self, sql, session, token=None):  # type: ignore[no-untyped-def]
                return ResultSet(("a", "b"), [(1, 2)])

        engine = WideEngine(PlanWithStatistics(("c",)), {})
        with pytest.raises(StaxError, match="did not return a scalar"):
            analyzer.derive_actual(engine, Query(ITEM_QUERY), OUTPUT_ROW_COUNT)

    def test_execution_error_propagates(self) -> None:
        engine = ScriptedEngine(
            PlanWithStatistics(("c",)),
            {},
            execute_errors={OUTPUT_ROW_COUNT: SetupFailure("Catalog Error", "SELECT ...")},
        )
        with pytest.raises(SetupFailure, match="Catalog Error"):
            analyzer.derive_actual(engine, Query(ITEM_QUERY), OUTPUT_ROW_COUNT)


class TestDeriveActualDuckDB:
    def test_row_count(self, duck_engine: DuckDBQueryEngine) -> None:
        assert analyzer.derive_actual(duck_engine, Query(ITEM_QUERY), OUTPUT_ROW_COUNT) == Some(1000.0)

    def test_distinct_values_count(self, duck_engine: DuckDBQueryEngine) -> None:
        query = Query("SELECT * FROM customer_demographics")
        assert analyzer.derive_actual(duck_engine, query, distinct_values_count("cd_marital_status")) == Some(5.0)

    def test_null_fraction_without_nulls(self, duck_engine: DuckDBQueryEngine) -> None:
        assert analyzer.derive_actual(duck_engine, Query(ITEM_QUERY), null_fraction("i_brand_id")) == Some(0.0)

    def test_null_fraction_with_nulls(self, duck_engine: DuckDBQueryEngine) -> None:
        actual = analyzer.derive_actual(duck_engine, Query(ITEM_QUERY), null_fraction("i_color")).unwrap()
        assert 0.0 < actual < 0.3

    def test_null_fraction_of_empty_result_is_absent(self, duck_engine: DuckDBQueryEngine) -> None:
        query = Query("SELECT * FROM item WHERE i_item_sk < 0")
        assert analyzer.derive_actual(duck_engine, query, null_fraction("i_brand_id")) == Nothing

    def test_decimal_min_max(self, duck_engine: DuckDBQueryEngine) -> None:
        query = Query("SELECT * FROM promotion")
        assert analyzer.derive_actual(duck_engine, query, min_value("p_cost")) == Some(1000.0)
        assert analyzer.derive_actual(duck_engine, query, max_value("p_cost")) == Some(1000.0)

    def test_character_min_is_absent(self, duck_engine: DuckDBQueryEngine) -> None:
        assert analyzer.derive_actual(duck_engine, Query(ITEM_QUERY), min_value("i_category")) == Nothing

    def test_trailing_semicolon(self, duck_engine: DuckDBQueryEngine) -> None:
        assert analyzer.derive_actual(duck_engine, Query("SELECT * FROM item;"), OUTPUT_ROW_COUNT) == Some(1000.0)

    def test_unknown_column_is_setup_failure(self, duck_engine: DuckDBQueryEngine) -> None:
        with pytest.raises(SetupFailure) as excinfo:
            analyzer.derive_actual(duck_engine, Query(ITEM_QUERY), distinct_values_count("no_such_column"))
        assert excinfo.value.sql is not None
        assert 'count(DISTINCT "no_such_column")' in excinfo.value.sql
