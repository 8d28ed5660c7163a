"""
Unit Tests - Drill-down Reporter
"""
from datetime import date, datetime

import polars as pl
import pytest

from gmv_decomposition.analytics.drilldown import (
    DRILLDOWN_COLUMNS,
    parse_month,
    segment_changes,
    top_segment_changes,
)
from gmv_decomposition.transformation.aggregators import monthly_price_qty_by_category

JAN = date(2018, 1, 1)
FEB = date(2018, 2, 1)


@pytest.fixture
def category_table(sample_snapshot) -> pl.DataFrame:
    s = sample_snapshot
    return monthly_price_qty_by_category(s.order_items, s.orders, s.products)


@pytest.fixture
def synthetic_table() -> pl.DataFrame:
    return pl.DataFrame({
        "month": [JAN, JAN, JAN, JAN, FEB, FEB, FEB, FEB],
        "category": ["a", "b", "c", "z", "a", "b", "c", "y"],
        "unit_price": [10.0, 20.0, 0.0, 5.0, 15.0, 15.0, 3.0, 8.0],
    })


class TestParseMonth:
    """Tests for parse_month"""

    def test_string(self):
        assert parse_month("2018-02") == FEB

    def test_dates_normalised_to_first_day(self):
        assert parse_month(date(2018, 2, 17)) == FEB
        assert parse_month(datetime(2018, 2, 17, 8, 30)) == FEB

    @pytest.mark.parametrize("value", ["2018/02", "Feb 2018", "2018-13", None])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_month(value)


class TestSegmentChanges:
    """Tests for segment_changes"""

    def test_sample_unit_price(self, category_table):
        changes = segment_changes(category_table, "2018-01", "2018-02").sort("segment")

        assert changes.columns == DRILLDOWN_COLUMNS
        assert changes["segment"].to_list() == ["books", "toys"]
        assert changes["delta"].to_list() == pytest.approx([-30.0, -10.0])
        assert changes["pct_change"].to_list() == pytest.approx([-0.6, -0.25])

    def test_only_common_segments(self, synthetic_table):
        changes = segment_changes(synthetic_table, JAN, FEB)

        assert sorted(changes["segment"].to_list()) == ["a", "b", "c"]

    def test_zero_base_gives_null_pct_change(self, synthetic_table):
        c = segment_changes(synthetic_table, JAN, FEB).filter(pl.col("segment") == "c").to_dicts()[0]

        assert c["delta"] == pytest.approx(3.0)
        assert c["pct_change"] is None

    def test_other_metric(self, category_table):
        changes = segment_changes(category_table, JAN, FEB, metric="basket_size").sort("segment")

        assert changes["metric_month_b"].to_list() == pytest.approx([2.0, 1.0])

    def test_missing_column(self, synthetic_table):
        with pytest.raises(ValueError, match="not found"):
            segment_changes(synthetic_table, JAN, FEB, metric="aov")


class TestTopSegmentChanges:
    """Tests for top_segment_changes"""

    def test_ranked_by_abs_delta(self, category_table):
        ranked = top_segment_changes(category_table, "2018-01", "2018-02")

        assert ranked["segment"].to_list() == ["books", "toys"]
        assert ranked["abs_delta"].to_list() == pytest.approx([30.0, 10.0])

    def test_ties_broken_by_segment(self, synthetic_table):
        """a and b both move by 5"""
        ranked = top_segment_changes(synthetic_table, JAN, FEB)

        assert ranked["segment"].to_list() == ["a", "b", "c"]

    def test_top_n_truncates(self, synthetic_table):
        ranked = top_segment_changes(synthetic_table, JAN, FEB, top_n=1)

        assert ranked["segment"].to_list() == ["a"]

    def test_null_metric_sorts_last(self):
        table = pl.DataFrame({
            "month": [JAN, JAN, FEB, FEB],
            "category": ["a", "b", "a", "b"],
            "unit_price": [None, 1.0, 2.0, 1.5],
        })

        ranked = top_segment_changes(table, JAN, FEB)
        assert ranked["segment"].to_list() == ["b", "a"]

    def test_deterministic(self, synthetic_table):
        first = top_segment_changes(synthetic_table, JAN, FEB)
        second = top_segment_changes(synthetic_table.reverse(), JAN, FEB)

        assert first.equals(second)

    @pytest.mark.parametrize("top_n", [0, -1, 2.5, True])
    def test_invalid_top_n(self, synthetic_table, top_n):
        with pytest.raises(ValueError, match="top_n"):
            top_segment_changes(synthetic_table, JAN, FEB, top_n=top_n)

    def test_same_month(self, synthetic_table):
        ranked = top_segment_changes(synthetic_table, JAN, JAN)

        assert ranked["delta"].to_list() == [0.0, 0.0, 0.0, 0.0]
