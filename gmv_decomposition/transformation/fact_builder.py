"""
Order Fact Builder

Joins the cleaned input streams into one resolved row per delivered order.
Ambiguous per-order attributes are resolved deterministically:
- main category: largest summed item price, ties by ascending name
- primary payment: largest payment value, ties by sequential id, type, installments
- review: latest creation timestamp, ties by review id then highest score
"""

from dataclasses import dataclass
from typing import List, Optional

import polars as pl
import structlog

from gmv_decomposition.config import get_settings
from gmv_decomposition.ingestion.input_loader import conform_null_columns

logger = structlog.get_logger(__name__)


FACT_COLUMNS: List[str] = [
    "order_id",
    "customer_id",
    "purchase_ts",
    "delivered_customer_ts",
    "estimated_delivery_ts",
    "customer_state",
    "main_category",
    "payment_type",
    "payment_installments",
    "review_score",
    "order_amount_net",
    "order_amount_gross",
    "order_freight",
    "items_per_order",
    "distinct_skus",
    "delivery_days",
    "is_late",
    "year",
    "month",
]

TIMESTAMP_COLUMNS = ["purchase_ts", "delivered_customer_ts", "estimated_delivery_ts"]


@dataclass
class FactBuildStats:
    """Row accounting for a fact build"""
    orders_in: int
    orders_delivered: int
    orders_without_items: int
    facts_out: int


def coerce_timestamps(df: pl.DataFrame, columns: List[str]) -> pl.DataFrame:
    """Give all-null or string timestamp columns a datetime dtype"""
    for col in columns:
        if col not in df.columns:
            continue
        dtype = df[col].dtype
        if dtype == pl.Null:
            df = df.with_columns(pl.col(col).cast(pl.Datetime))
        elif dtype == pl.Utf8:
            df = df.with_columns(pl.col(col).str.to_datetime(strict=False))
    return df


def category_spend(
    items: pl.DataFrame,
    products: pl.DataFrame,
    unknown_label: str = "unknown",
) -> pl.DataFrame:
    """
    Sum item price per (order, category).

    Items whose product is missing or uncategorised fall under ``unknown_label``.
    """
    product_categories = (
        products.select(["product_id", "category_name"])
        .sort(["product_id", "category_name"], nulls_last=True)
        .unique(subset=["product_id"], keep="first", maintain_order=True)
    )

    return (
        items.join(product_categories, on="product_id", how="left")
        .with_columns(pl.col("category_name").fill_null(unknown_label).alias("main_category"))
        .group_by(["order_id", "main_category"])
        .agg(pl.col("price").cast(pl.Float64).sum().alias("category_spend"))
    )


def resolve_main_category(
    items: pl.DataFrame,
    products: pl.DataFrame,
    unknown_label: str = "unknown",
) -> pl.DataFrame:
    """One row per order: the category with the largest spend, ties by name"""
    return (
        category_spend(items, products, unknown_label)
        .sort(
            ["order_id", "category_spend", "main_category"],
            descending=[False, True, False],
            nulls_last=True,
        )
        .unique(subset=["order_id"], keep="first", maintain_order=True)
        .select(["order_id", "main_category"])
    )


def resolve_primary_payment(payments: pl.DataFrame) -> pl.DataFrame:
    """One row per order: the payment record with the largest value"""
    sort_cols = ["order_id", "payment_value"]
    descending = [False, True]

    # payment_sequential is optional in the input contract
    if "payment_sequential" in payments.columns:
        sort_cols.append("payment_sequential")
        descending.append(False)

    sort_cols += ["payment_type", "payment_installments"]
    descending += [False, False]

    return (
        payments.sort(sort_cols, descending=descending, nulls_last=True)
        .unique(subset=["order_id"], keep="first", maintain_order=True)
        .select(["order_id", "payment_type", "payment_installments"])
    )


def resolve_latest_review(reviews: pl.DataFrame) -> pl.DataFrame:
    """One row per order: the most recently created review"""
    reviews = coerce_timestamps(reviews, ["creation_ts"])

    sort_cols = ["order_id", "creation_ts"]
    descending = [False, True]

    if "review_id" in reviews.columns:
        sort_cols.append("review_id")
        descending.append(False)

    sort_cols.append("review_score")
    descending.append(True)

    return (
        reviews.sort(sort_cols, descending=descending, nulls_last=True)
        .unique(subset=["order_id"], keep="first", maintain_order=True)
        .select(["order_id", "review_score"])
    )


def order_item_totals(items: pl.DataFrame) -> pl.DataFrame:
    """Per-order amounts and item counts"""
    return (
        items.group_by("order_id")
        .agg([
            pl.col("price").cast(pl.Float64).sum().alias("order_amount_net"),
            pl.col("freight_value").cast(pl.Float64).sum().alias("order_freight"),
            pl.len().cast(pl.Int64).alias("items_per_order"),
            pl.col("product_id").drop_nulls().n_unique().cast(pl.Int64).alias("distinct_skus"),
        ])
        .with_columns(
            (pl.col("order_amount_net") + pl.col("order_freight")).alias("order_amount_gross")
        )
    )


class OrderFactBuilder:
    """
    Builds the Order Fact table.

    The build is a pure transform: identical inputs always give identical
    rows, sorted by order_id.

    Example:
        builder = OrderFactBuilder()
        facts = builder.build(orders, items, products, payments, reviews, customers)
    """

    def __init__(
        self,
        delivered_status: Optional[str] = None,
        unknown_label: Optional[str] = None,
    ):
        settings = get_settings().decomposition
        self.delivered_status = delivered_status or settings.delivered_status
        self.unknown_label = unknown_label or settings.unknown_label
        self.last_stats: Optional[FactBuildStats] = None

    def _delivered_orders(self, orders: pl.DataFrame) -> pl.DataFrame:
        return (
            orders.filter(pl.col("status") == self.delivered_status)
            .unique(subset=["order_id"], keep="first", maintain_order=True)
        )

    def build(
        self,
        orders: pl.DataFrame,
        items: pl.DataFrame,
        products: pl.DataFrame,
        payments: pl.DataFrame,
        reviews: pl.DataFrame,
        customers: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Build one resolved row per delivered order.

        Orders without item rows are dropped. Missing payment, review or
        customer matches leave the corresponding fields null.
        """
        orders = conform_null_columns("orders", orders)
        items = conform_null_columns("order_items", items)
        products = conform_null_columns("products", products)
        payments = conform_null_columns("payments", payments)
        reviews = conform_null_columns("reviews", reviews)
        customers = conform_null_columns("customers", customers)

        delivered = coerce_timestamps(self._delivered_orders(orders), TIMESTAMP_COLUMNS)
        delivered_items = items.join(delivered.select("order_id"), on="order_id", how="semi")

        customer_states = (
            customers.select(["customer_id", pl.col("state").alias("customer_state")])
            .sort(["customer_id", "customer_state"], nulls_last=True)
            .unique(subset=["customer_id"], keep="first", maintain_order=True)
        )

        facts = (
            delivered.join(order_item_totals(delivered_items), on="order_id", how="inner")
            .join(resolve_main_category(delivered_items, products, self.unknown_label), on="order_id", how="left")
            .join(resolve_primary_payment(payments), on="order_id", how="left")
            .join(resolve_latest_review(reviews), on="order_id", how="left")
            .join(customer_states, on="customer_id", how="left")
        )

        facts = facts.with_columns([
            pl.col("main_category").fill_null(self.unknown_label),
            pl.coalesce([pl.col("year"), pl.col("purchase_ts").dt.year()]).cast(pl.Int32).alias("year"),
            pl.coalesce([pl.col("month"), pl.col("purchase_ts").dt.month()]).cast(pl.Int32).alias("month"),
            (pl.col("delivered_customer_ts") - pl.col("purchase_ts")).dt.total_days().alias("delivery_days"),
            (pl.col("delivered_customer_ts") > pl.col("estimated_delivery_ts")).alias("is_late"),
        ])

        facts = facts.select(FACT_COLUMNS).sort("order_id")

        self.last_stats = FactBuildStats(
            orders_in=orders.height,
            orders_delivered=delivered.height,
            orders_without_items=delivered.height - facts.height,
            facts_out=facts.height,
        )
        logger.info(
            "Order facts built",
            orders_in=self.last_stats.orders_in,
            delivered=self.last_stats.orders_delivered,
            dropped_without_items=self.last_stats.orders_without_items,
            facts=self.last_stats.facts_out,
        )

        return facts


def build_order_facts(
    orders: pl.DataFrame,
    items: pl.DataFrame,
    products: pl.DataFrame,
    payments: pl.DataFrame,
    reviews: pl.DataFrame,
    customers: pl.DataFrame,
    delivered_status: Optional[str] = None,
    unknown_label: Optional[str] = None,
) -> pl.DataFrame:
    """
    Convenience function to build order facts.

    Args:
        orders: Cleaned orders stream
        items: Cleaned order items stream
        products: Cleaned products stream
        payments: Cleaned payments stream
        reviews: Cleaned reviews stream
        customers: Cleaned customers stream
        delivered_status: Status that qualifies an order
        unknown_label: Category for orders without a categorised product

    Returns:
        Order fact DataFrame
    """
    builder = OrderFactBuilder(delivered_status=delivered_status, unknown_label=unknown_label)
    return builder.build(orders, items, products, payments, reviews, customers)
