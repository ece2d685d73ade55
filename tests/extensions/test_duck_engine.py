import json

import duckdb
import pyarrow as pa
import pyarrow.compute as pc
import pytest
from returns.maybe import Nothing, Some

from stax.common import CancellationToken, CheckAborted, QueryEngine, Session, SetupFailure
from stax.extensions.duck_engine import (
    DuckDBQueryEngine,
    find_output_cardinality,
    parse_column_stats,
)


class TestFindOutputCardinality:
    def test_dict_extra_info(self) -> None:
        plan = [{"name": "SEQ_SCAN ", "children": [], "extra_info": {"Table": "item", "Estimated Cardinality": "1000"}}]
        assert find_output_cardinality(plan) == Some(1000.0)

    def test_approximate_prefix(self) -> None:
        plan = {"name": "FILTER", "children": [], "extra_info": {"Estimated Cardinality": "~200"}}
        assert find_output_cardinality(plan) == Some(200.0)

    def test_legacy_text_extra_info(self) -> None:
        plan = {"name": "PROJECTION", "children": [], "extra_info": "i_item_sk\n\n[INFOSEPARATOR]\nEC: 42"}
        assert find_output_cardinality(plan) == Some(42.0)

    def test_top_most_estimate_wins(self) -> None:
        plan = [
            {
                "name": "PROJECTION",
                "extra_info": {"Estimated Cardinality": "300"},
                "children": [{"name": "FILTER", "extra_info": {"Estimated Cardinality": "900"}, "children": []}],
            }
        ]
        assert find_output_cardinality(plan) == Some(300.0)

    def test_looks_through_nodes_without_estimate(self) -> None:
        plan = {
            "name": "RESULT_COLLECTOR",
            "children": [{"name": "SEQ_SCAN", "extra_info": {"Estimated Cardinality": "7"}, "children": []}],
        }
        assert find_output_cardinality(plan) == Some(7.0)

    def test_does_not_guess_between_children(self) -> None:
        plan = {
            "name": "UNKNOWN",
            "children": [
                {"name": "SEQ_SCAN", "extra_info": {"Estimated Cardinality": "7"}, "children": []},
                {"name": "SEQ_SCAN", "extra_info": {"Estimated Cardinality": "9"}, "children": []},
            ],
        }
        assert find_output_cardinality(plan) == Nothing

    def test_no_estimate(self) -> None:
        assert find_output_cardinality([]) == Nothing
        assert find_output_cardinality({"name": "SEQ_SCAN", "children": []}) == Nothing

    def test_empty_result_is_zero_rows(self) -> None:
        assert find_output_cardinality([{"name": "EMPTY_RESULT", "children": [], "extra_info": {}}]) == Some(0.0)
        assert find_output_cardinality({"name": "EMPTY_RESULT ", "children": []}) == Some(0.0)

    def test_empty_result_below_estimating_node(self) -> None:
        plan = {
            "name": "PROJECTION",
            "extra_info": {"Estimated Cardinality": "5"},
            "children": [{"name": "EMPTY_RESULT", "children": [], "extra_info": {}}],
        }
        assert find_output_cardinality(plan) == Some(5.0)


class TestParseColumnStats:
    def test_numeric_column(self) -> None:
        stats = parse_column_stats("[Min: 1, Max: 3][Has Null: false, Has No Null: true][Approx Unique: 3]")
        assert stats.low_value == Some(1.0)
        assert stats.high_value == Some(3.0)
        assert stats.nulls_fraction == Some(0.0)
        assert stats.distinct_values_count == Some(3.0)

    def test_decimal_column(self) -> None:
        stats = parse_column_stats("[Min: -10.00, Max: -5.00][Has Null: true, Has No Null: true]")
        assert stats.low_value == Some(-10.0)
        assert stats.high_value == Some(-5.0)
        assert stats.nulls_fraction == Nothing
        assert stats.distinct_values_count == Nothing

    def test_only_nulls(self) -> None:
        stats = parse_column_stats("[Min: NULL, Max: NULL][Has Null: true, Has No Null: false]")
        assert stats.nulls_fraction == Some(1.0)
        assert stats.low_value == Nothing

    def test_string_column(self) -> None:
        text = "[Min: Books, Max: Women, Has Unicode: false, Max String Length: 50][Has Null: false, Has No Null: true]"
        stats = parse_column_stats(text)
        assert stats.low_value == Nothing
        assert stats.high_value == Nothing
        assert stats.nulls_fraction == Some(0.0)

    def test_date_column(self) -> None:
        stats = parse_column_stats("[Min: 1970-01-02, Max: 1970-01-11][Has Null: false, Has No Null: true]")
        assert stats.low_value == Some(1.0)
        assert stats.high_value == Some(10.0)

    def test_missing(self) -> None:
        stats = parse_column_stats(None)
        assert stats.nulls_fraction == Nothing
        assert stats.distinct_values_count == Nothing


class TestDuckDBQueryEngine:
    def test_protocol(self, duck_engine: DuckDBQueryEngine) -> None:
        assert isinstance(duck_engine, QueryEngine)
        assert duck_engine.dialect == "duckdb"
        assert duck_engine.max_concurrency == 4

    def test_plan_row_count(self, duck_engine: DuckDBQueryEngine, stats_session: Session) -> None:
        plan = duck_engine.plan("SELECT * FROM item", stats_session)

        assert plan.output_columns == (
            "i_item_sk",
            "i_item_id",
            "i_brand_id",
            "i_category",
            "i_color",
            "i_current_price",
        )
        assert plan.output_row_count == Some(1000.0)

    def test_plan_column_statistics(
        self, duck_engine: DuckDBQueryEngine, stats_session: Session, item_data: pa.Table
    ) -> None:
        plan = duck_engine.plan("SELECT i_item_sk, i_brand_id FROM item", stats_session)

        brand = plan.statistics_for("i_brand_id").unwrap()
        assert brand.nulls_fraction == Some(0.0)

        # Planner boundaries never exclude actual values
        true_min = pc.min(item_data["i_brand_id"]).as_py()
        true_max = pc.max(item_data["i_brand_id"]).as_py()
        assert brand.low_value.map(lambda low: low <= true_min).value_or(True)
        assert brand.high_value.map(lambda high: high >= true_max).value_or(True)

    def test_plan_without_statistics_property(self, duck_engine: DuckDBQueryEngine) -> None:
        plan = duck_engine.plan("SELECT * FROM item", Session())

        assert plan.has_column("i_brand_id")
        assert plan.output_row_count == Nothing
        assert dict(plan.column_statistics) == {}

    def test_plan_empty_result(self, duck_engine: DuckDBQueryEngine, stats_session: Session) -> None:
        plan = duck_engine.plan("SELECT i_brand_id FROM item WHERE i_item_sk < 0", stats_session)
        assert plan.statistics_for("i_brand_id") == Nothing

    def test_plan_duplicate_output_names(self, duck_engine: DuckDBQueryEngine, stats_session: Session) -> None:
        plan = duck_engine.plan("SELECT i_brand_id, i_brand_id FROM item", stats_session)
        assert len(plan.output_columns) == 2
        assert plan.has_column("i_brand_id")
        assert plan.output_row_count == Some(1000.0)

    def test_plan_error(self, duck_engine: DuckDBQueryEngine, stats_session: Session) -> None:
        with pytest.raises(SetupFailure) as excinfo:
            duck_engine.plan("SELECT * FROM no_such_table", stats_session)
        assert excinfo.value.sql == "SELECT * FROM no_such_table"

    def test_execute(self, duck_engine: DuckDBQueryEngine) -> None:
        result = duck_engine.execute("SELECT count(*) AS n FROM promotion", Session())
        assert result.columns == ("n",)
        assert result.scalar() == 300

    def test_execute_error(self, duck_engine: DuckDBQueryEngine) -> None:
        with pytest.raises(SetupFailure, match="no_such_column"):
            duck_engine.execute("SELECT no_such_column FROM item", Session())

    def test_session_catalog_and_schema(self, duck_engine: DuckDBQueryEngine) -> None:
        session = Session(catalog="memory", schema="main")
        assert duck_engine.execute("SELECT count(*) FROM item", session).scalar() == 1000

    def test_unknown_catalog(self, duck_engine: DuckDBQueryEngine) -> None:
        with pytest.raises(SetupFailure, match="USE"):
            duck_engine.execute("SELECT 1", Session(catalog="no_such_catalog", schema="main"))

    def test_unknown_engine_setting(self, duck_engine: DuckDBQueryEngine) -> None:
        session = Session(properties={"duckdb.no_such_setting": "1"})
        with pytest.raises(SetupFailure, match="SET no_such_setting"):
            duck_engine.execute("SELECT 1", session)

    def test_invalid_setting_name(self, duck_engine: DuckDBQueryEngine) -> None:
        with pytest.raises(SetupFailure, match="Invalid DuckDB setting name"):
            duck_engine.execute("SELECT 1", Session(properties={"duckdb.x; DROP TABLE item": "1"}))

    def test_cancelled_token_aborts(self, duck_engine: DuckDBQueryEngine) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CheckAborted):
            duck_engine.execute("SELECT count(*) FROM item", Session(), token)


class TestEngineLifecycle:
    def test_register_record_batch(self) -> None:
        batch = pa.RecordBatch.from_pydict({"x": [1, 2, None]})
        with DuckDBQueryEngine() as engine:
            engine.register_arrow("t", batch)
            assert engine.execute("SELECT count(x) FROM t", Session()).scalar() == 2

    def test_run_setup_statement(self) -> None:
        with DuckDBQueryEngine() as engine:
            engine.run("CREATE TABLE ship_mode (sm_carrier CHAR(20))")
            engine.run("INSERT INTO ship_mode VALUES ('UPS'), ('FEDEX')")
            assert engine.execute("SELECT count(*) FROM ship_mode", Session()).scalar() == 2

            with pytest.raises(SetupFailure):
                engine.run("CREATE TABLE")

    def test_borrowed_connection_is_not_closed(self) -> None:
        conn = duckdb.connect()
        engine = DuckDBQueryEngine(connection=conn)
        engine.close()

        assert conn.execute("SELECT 42").fetchone() == (42,)
        conn.close()

    def test_explain_output_is_json(self, duck_engine: DuckDBQueryEngine) -> None:
        rows = duck_engine.connection.cursor().execute("EXPLAIN (FORMAT JSON) SELECT * FROM item").fetchall()
        assert json.loads(rows[-1][1])
