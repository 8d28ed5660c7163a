"""
Monthly Aggregation Module

Rolls order facts (and, for line-level granularity, raw item rows) into
monthly metric tables:
- core: orders, GMV, gross GMV, AOV
- per segment: orders, GMV, AOV by category or customer state
- price x quantity: items, unit price, basket size

Every ratio is null-guarded: a zero denominator yields null, never an error.
Month keys are the first day of the calendar month.
"""

from typing import Dict, List, Optional, Union

import polars as pl
import structlog

from gmv_decomposition.config import SegmentDimension, get_settings
from gmv_decomposition.ingestion.input_loader import conform_null_columns
from .fact_builder import coerce_timestamps
from .metrics import safe_ratio_expr

logger = structlog.get_logger(__name__)


SEGMENT_COLUMNS: Dict[SegmentDimension, str] = {
    SegmentDimension.CATEGORY: "main_category",
    SegmentDimension.STATE: "customer_state",
}

CORE_COUNT_COLUMNS = ["orders", "gmv", "gmv_gross"]
PRICE_QTY_COUNT_COLUMNS = ["orders", "items", "gmv"]


def month_key_expr(year: str = "year", month: str = "month") -> pl.Expr:
    """First day of the month built from integer year/month columns"""
    return pl.date(pl.col(year), pl.col(month), 1)


def _with_month_key(facts: pl.DataFrame) -> pl.DataFrame:
    keyed = facts.with_columns(month_key_expr().alias("month"))
    unkeyed = keyed["month"].null_count()
    if unkeyed:
        logger.warning("Dropping facts without a month key", rows=unkeyed)
    return keyed.filter(pl.col("month").is_not_null())


def _unknown_label(unknown_label: Optional[str]) -> str:
    return unknown_label or get_settings().decomposition.unknown_label


def complete_calendar(df: pl.DataFrame, fill_columns: List[str]) -> pl.DataFrame:
    """
    Reindex a monthly table onto every calendar month in its span.

    Months absent from ``df`` get zero in ``fill_columns``; every other
    column (ratios in particular) stays null for them.
    """
    if df.is_empty():
        return df

    months = pl.DataFrame({
        "month": pl.date_range(df["month"].min(), df["month"].max(), interval="1mo", eager=True),
    })

    return (
        months.join(df, on="month", how="left")
        .with_columns([pl.col(c).fill_null(0) for c in fill_columns if c in df.columns])
        .sort("month")
    )


def monthly_core(facts: pl.DataFrame) -> pl.DataFrame:
    """
    Monthly orders, GMV (net), gross GMV and AOV.

    Returns:
        DataFrame[month, orders, gmv, gmv_gross, aov]
    """
    return (
        _with_month_key(facts)
        .group_by("month")
        .agg([
            pl.col("order_id").n_unique().cast(pl.Int64).alias("orders"),
            pl.col("order_amount_net").sum().cast(pl.Float64).alias("gmv"),
            pl.col("order_amount_gross").sum().cast(pl.Float64).alias("gmv_gross"),
        ])
        .with_columns(safe_ratio_expr(pl.col("gmv"), pl.col("orders")).alias("aov"))
        .sort("month")
    )


def monthly_by_segment(
    facts: pl.DataFrame,
    dim: Union[SegmentDimension, str],
    unknown_label: Optional[str] = None,
) -> pl.DataFrame:
    """
    Monthly orders, GMV and AOV per segment.

    Null segments (e.g. orders without a customer state) are grouped under
    the unknown label.

    Returns:
        DataFrame[month, segment, orders_seg, gmv_seg, aov_seg]
    """
    segment_col = SEGMENT_COLUMNS[SegmentDimension(dim)]

    return (
        _with_month_key(facts)
        .with_columns(pl.col(segment_col).fill_null(_unknown_label(unknown_label)).alias("segment"))
        .group_by(["month", "segment"])
        .agg([
            pl.col("order_id").n_unique().cast(pl.Int64).alias("orders_seg"),
            pl.col("order_amount_net").sum().cast(pl.Float64).alias("gmv_seg"),
        ])
        .with_columns(safe_ratio_expr(pl.col("gmv_seg"), pl.col("orders_seg")).alias("aov_seg"))
        .sort(["month", "segment"])
    )


def _price_qty_ratios() -> List[pl.Expr]:
    return [
        safe_ratio_expr(pl.col("gmv"), pl.col("items")).alias("unit_price"),
        safe_ratio_expr(pl.col("items"), pl.col("orders")).alias("basket_size"),
        safe_ratio_expr(pl.col("gmv"), pl.col("orders")).alias("aov"),
    ]


def monthly_price_qty(facts: pl.DataFrame) -> pl.DataFrame:
    """
    Monthly price x quantity view of AOV.

    ``aov_recalc = unit_price * basket_size`` equals ``aov`` up to float
    rounding.

    Returns:
        DataFrame[month, orders, items, gmv, unit_price, basket_size, aov, aov_recalc]
    """
    return (
        _with_month_key(facts)
        .group_by("month")
        .agg([
            pl.col("order_id").n_unique().cast(pl.Int64).alias("orders"),
            pl.col("items_per_order").sum().cast(pl.Int64).alias("items"),
            pl.col("order_amount_net").sum().cast(pl.Float64).alias("gmv"),
        ])
        .with_columns(_price_qty_ratios())
        .with_columns((pl.col("unit_price") * pl.col("basket_size")).alias("aov_recalc"))
        .sort("month")
    )


def _delivered_order_months(orders: pl.DataFrame, delivered_status: Optional[str]) -> pl.DataFrame:
    status = delivered_status or get_settings().decomposition.delivered_status
    orders = coerce_timestamps(conform_null_columns("orders", orders), ["purchase_ts"])
    return (
        orders.filter(pl.col("status") == status)
        .unique(subset=["order_id"], keep="first", maintain_order=True)
        .with_columns([
            pl.coalesce([pl.col("year"), pl.col("purchase_ts").dt.year()]).cast(pl.Int32).alias("year"),
            pl.coalesce([pl.col("month"), pl.col("purchase_ts").dt.month()]).cast(pl.Int32).alias("month"),
        ])
        .select(["order_id", "customer_id", "year", "month"])
    )


def _item_level_price_qty(item_rows: pl.DataFrame, segment: str) -> pl.DataFrame:
    return (
        _with_month_key(item_rows)
        .group_by(["month", segment])
        .agg([
            pl.col("order_id").n_unique().cast(pl.Int64).alias("orders"),
            pl.len().cast(pl.Int64).alias("items"),
            pl.col("price").cast(pl.Float64).sum().alias("gmv"),
        ])
        .with_columns(_price_qty_ratios())
        .sort(["month", segment])
    )


def monthly_price_qty_by_category(
    items: pl.DataFrame,
    orders: pl.DataFrame,
    products: pl.DataFrame,
    delivered_status: Optional[str] = None,
    unknown_label: Optional[str] = None,
) -> pl.DataFrame:
    """
    Monthly price x quantity per product category, from item rows.

    Each item counts toward its own product's category, so one order can
    contribute to several categories.

    Returns:
        DataFrame[month, category, orders, items, gmv, unit_price, basket_size, aov]
    """
    products = conform_null_columns("products", products)
    product_categories = (
        products.select(["product_id", pl.col("category_name").alias("category")])
        .sort(["product_id", "category"], nulls_last=True)
        .unique(subset=["product_id"], keep="first", maintain_order=True)
    )

    item_rows = (
        conform_null_columns("order_items", items)
        .join(_delivered_order_months(orders, delivered_status), on="order_id", how="inner")
        .join(product_categories, on="product_id", how="left")
        .with_columns(pl.col("category").fill_null(_unknown_label(unknown_label)))
    )

    return _item_level_price_qty(item_rows, "category")


def monthly_price_qty_by_state(
    items: pl.DataFrame,
    orders: pl.DataFrame,
    customers: pl.DataFrame,
    delivered_status: Optional[str] = None,
    unknown_label: Optional[str] = None,
) -> pl.DataFrame:
    """
    Monthly price x quantity per customer state, from item rows.

    Returns:
        DataFrame[month, state, orders, items, gmv, unit_price, basket_size, aov]
    """
    customers = conform_null_columns("customers", customers)
    customer_states = (
        customers.select(["customer_id", "state"])
        .sort(["customer_id", "state"], nulls_last=True)
        .unique(subset=["customer_id"], keep="first", maintain_order=True)
    )

    item_rows = (
        conform_null_columns("order_items", items)
        .join(_delivered_order_months(orders, delivered_status), on="order_id", how="inner")
        .join(customer_states, on="customer_id", how="left")
        .with_columns(pl.col("state").fill_null(_unknown_label(unknown_label)))
    )

    return _item_level_price_qty(item_rows, "state")
