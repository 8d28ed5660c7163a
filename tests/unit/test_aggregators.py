"""
Unit Tests - Monthly Aggregation
"""
from datetime import date

import polars as pl
import pytest

from gmv_decomposition.config import SegmentDimension
from gmv_decomposition.transformation.aggregators import (
    complete_calendar,
    monthly_by_segment,
    monthly_core,
    monthly_price_qty,
    monthly_price_qty_by_category,
    monthly_price_qty_by_state,
)
from gmv_decomposition.transformation.fact_builder import build_order_facts

JAN = date(2018, 1, 1)
FEB = date(2018, 2, 1)
MAR = date(2018, 3, 1)


@pytest.fixture
def facts(sample_snapshot) -> pl.DataFrame:
    s = sample_snapshot
    return build_order_facts(s.orders, s.order_items, s.products, s.payments, s.reviews, s.customers)


def _by_month(df: pl.DataFrame, month: date, **filters) -> dict:
    selected = df.filter(pl.col("month") == month)
    for col, value in filters.items():
        selected = selected.filter(pl.col(col) == value)
    return selected.to_dicts()[0]


class TestMonthlyCore:
    """Tests for monthly_core"""

    def test_totals(self, facts):
        core = monthly_core(facts)

        assert core["month"].to_list() == [JAN, FEB, MAR]
        assert core["orders"].to_list() == [2, 2, 1]
        assert core["gmv"].to_list() == pytest.approx([130.0, 85.0, 60.0])
        assert core["gmv_gross"].to_list() == pytest.approx([143.0, 92.5, 66.0])
        assert core["aov"].to_list() == pytest.approx([65.0, 42.5, 60.0])

    def test_facts_without_month_are_dropped(self, facts):
        facts = facts.with_columns(
            pl.when(pl.col("order_id") == "o5").then(None).otherwise(pl.col("year")).alias("year")
        )

        assert monthly_core(facts)["month"].to_list() == [JAN, FEB]


class TestMonthlyBySegment:
    """Tests for monthly_by_segment"""

    def test_by_category(self, facts):
        seg = monthly_by_segment(facts, SegmentDimension.CATEGORY)

        assert seg.filter(pl.col("month") == FEB)["segment"].to_list() == ["books", "unknown"]
        books = _by_month(seg, JAN, segment="books")
        assert books["orders_seg"] == 1
        assert books["gmv_seg"] == pytest.approx(100.0)
        assert books["aov_seg"] == pytest.approx(100.0)

    def test_null_state_grouped_as_unknown(self, facts):
        seg = monthly_by_segment(facts, "state")

        assert seg.filter(pl.col("month") == FEB)["segment"].to_list() == ["SP", "unknown"]

    def test_segment_orders_sum_to_total(self, facts):
        core = monthly_core(facts)
        seg = monthly_by_segment(facts, SegmentDimension.STATE)
        totals = seg.group_by("month").agg(pl.col("orders_seg").sum()).sort("month")

        assert totals["orders_seg"].to_list() == core["orders"].to_list()


class TestMonthlyPriceQty:
    """Tests for monthly_price_qty"""

    def test_unit_price_and_basket(self, facts):
        pq = monthly_price_qty(facts)
        feb = _by_month(pq, FEB)

        assert pq["items"].to_list() == [3, 4, 1]
        assert feb["unit_price"] == pytest.approx(21.25)
        assert feb["basket_size"] == pytest.approx(2.0)
        assert feb["aov"] == pytest.approx(42.5)

    def test_recalculated_aov_matches_core(self, facts):
        pq = monthly_price_qty(facts)
        core = monthly_core(facts)

        assert pq["aov_recalc"].to_list() == pytest.approx(core["aov"].to_list(), rel=1e-6)

    def test_zero_items_yields_null(self):
        facts = pl.DataFrame({
            "order_id": ["a"],
            "order_amount_net": [0.0],
            "items_per_order": [0],
            "year": [2018],
            "month": [1],
        })

        pq = monthly_price_qty(facts)
        assert pq["unit_price"].to_list() == [None]
        assert pq["aov_recalc"].to_list() == [None]


class TestItemLevelPriceQty:
    """Tests for the item-level price x quantity tables"""

    def test_by_category_counts_each_line(self, sample_snapshot):
        s = sample_snapshot
        pq = monthly_price_qty_by_category(s.order_items, s.orders, s.products)

        toys_jan = _by_month(pq, JAN, category="toys")
        assert toys_jan["orders"] == 2
        assert toys_jan["items"] == 2
        assert toys_jan["unit_price"] == pytest.approx(40.0)

        books_feb = _by_month(pq, FEB, category="books")
        assert books_feb["items"] == 2
        assert books_feb["unit_price"] == pytest.approx(20.0)
        assert books_feb["basket_size"] == pytest.approx(2.0)

    def test_by_category_excludes_undelivered(self, sample_snapshot):
        s = sample_snapshot
        pq = monthly_price_qty_by_category(s.order_items, s.orders, s.products)

        books_jan = _by_month(pq, JAN, category="books")
        assert books_jan["gmv"] == pytest.approx(50.0)
        assert "unknown" in pq.filter(pl.col("month") == FEB)["category"].to_list()

    def test_by_state(self, sample_snapshot):
        s = sample_snapshot
        pq = monthly_price_qty_by_state(s.order_items, s.orders, s.customers)

        sp_feb = _by_month(pq, FEB, state="SP")
        assert sp_feb["items"] == 3
        assert sp_feb["gmv"] == pytest.approx(70.0)
        assert pq.filter(pl.col("month") == FEB)["state"].to_list() == ["SP", "unknown"]


class TestCompleteCalendar:
    """Tests for complete_calendar"""

    def test_fills_gaps(self, core_factory):
        core = core_factory([(JAN, 2, 100), (MAR, 4, 200)])

        completed = complete_calendar(core, ["orders", "gmv", "gmv_gross"])

        assert completed["month"].to_list() == [JAN, FEB, MAR]
        feb = _by_month(completed, FEB)
        assert feb["orders"] == 0
        assert feb["gmv"] == 0.0
        assert feb["aov"] is None

    def test_empty(self):
        empty = pl.DataFrame(schema={"month": pl.Date, "orders": pl.Int64})
        assert complete_calendar(empty, ["orders"]).is_empty()
