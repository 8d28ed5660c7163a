"""
Test Suite Configuration
"""
from datetime import datetime

import polars as pl
import pytest

from gmv_decomposition.config import DecompositionSettings, Settings
from gmv_decomposition.ingestion.input_loader import InputSnapshot


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def sample_orders_df() -> pl.DataFrame:
    """Orders across Jan-Mar 2018; one canceled, one delivered without items"""
    return pl.DataFrame({
        "order_id": ["o1", "o2", "o3", "o4", "o5", "o6", "o7"],
        "customer_id": ["c1", "c2", "c1", "c3", "c2", "c1", "c2"],
        "status": ["delivered", "delivered", "delivered", "delivered", "delivered", "canceled", "delivered"],
        "purchase_ts": [
            datetime(2018, 1, 5, 10, 0),
            datetime(2018, 1, 18, 14, 30),
            datetime(2018, 2, 2, 9, 15),
            datetime(2018, 2, 20, 16, 0),
            datetime(2018, 3, 7, 11, 45),
            datetime(2018, 1, 9, 8, 0),
            datetime(2018, 2, 11, 12, 0),
        ],
        "delivered_customer_ts": [
            datetime(2018, 1, 12, 10, 0),
            datetime(2018, 1, 30, 14, 30),
            datetime(2018, 2, 9, 9, 15),
            None,
            datetime(2018, 3, 20, 11, 45),
            None,
            datetime(2018, 2, 15, 12, 0),
        ],
        "estimated_delivery_ts": [
            datetime(2018, 1, 20),
            datetime(2018, 1, 25),
            datetime(2018, 2, 20),
            datetime(2018, 3, 5),
            datetime(2018, 3, 25),
            datetime(2018, 1, 25),
            datetime(2018, 2, 25),
        ],
        "year": [2018, 2018, 2018, 2018, 2018, 2018, 2018],
        "month": [1, 1, 2, 2, 3, 1, 2],
    })


@pytest.fixture
def sample_items_df() -> pl.DataFrame:
    """Order items; o1 splits its spend evenly across two categories"""
    return pl.DataFrame({
        "order_id": ["o1", "o1", "o2", "o3", "o3", "o3", "o4", "o5", "o6"],
        "product_id": ["p1", "p2", "p3", "p1", "p1", "p3", "p9", "p2", "p1"],
        "price": [50.0, 50.0, 30.0, 20.0, 20.0, 30.0, 15.0, 60.0, 100.0],
        "freight_value": [5.0, 5.0, 3.0, 2.0, 2.0, 2.0, 1.5, 6.0, 10.0],
    })


@pytest.fixture
def sample_products_df() -> pl.DataFrame:
    return pl.DataFrame({
        "product_id": ["p1", "p2", "p3", "p4"],
        "category_name": ["books", "toys", "toys", None],
    })


@pytest.fixture
def sample_payments_df() -> pl.DataFrame:
    """o2 has two payments of equal value, told apart by payment_sequential"""
    return pl.DataFrame({
        "order_id": ["o1", "o1", "o2", "o2", "o3", "o5"],
        "payment_sequential": [2, 1, 2, 1, 1, 1],
        "payment_type": ["voucher", "credit_card", "boleto", "credit_card", "debit_card", "credit_card"],
        "payment_installments": [1, 4, 1, 2, 1, 3],
        "payment_value": [50.0, 60.0, 33.0, 33.0, 76.0, 66.0],
    })


@pytest.fixture
def sample_reviews_df() -> pl.DataFrame:
    return pl.DataFrame({
        "order_id": ["o1", "o1", "o2", "o2", "o3", "o5"],
        "review_score": [3, 5, 4, 2, 4, None],
        "creation_ts": [
            datetime(2018, 1, 10),
            datetime(2018, 1, 12),
            None,
            datetime(2018, 1, 20),
            datetime(2018, 2, 10),
            datetime(2018, 3, 10),
        ],
    })


@pytest.fixture
def sample_customers_df() -> pl.DataFrame:
    """c3 is missing, so o4 has no state"""
    return pl.DataFrame({
        "customer_id": ["c1", "c2"],
        "state": ["SP", "RJ"],
    })


@pytest.fixture
def sample_snapshot(
    sample_orders_df,
    sample_items_df,
    sample_products_df,
    sample_payments_df,
    sample_reviews_df,
    sample_customers_df,
) -> InputSnapshot:
    return InputSnapshot(
        orders=sample_orders_df,
        order_items=sample_items_df,
        products=sample_products_df,
        payments=sample_payments_df,
        reviews=sample_reviews_df,
        customers=sample_customers_df,
    )


@pytest.fixture
def decomposition_settings() -> DecompositionSettings:
    return DecompositionSettings(month_a="2018-01", month_b="2018-02", top_n=10)


def make_core(rows):
    """Monthly core table from (month, orders, gmv) tuples"""
    return pl.DataFrame(
        {
            "month": [r[0] for r in rows],
            "orders": [r[1] for r in rows],
            "gmv": [float(r[2]) for r in rows],
            "gmv_gross": [float(r[2]) for r in rows],
        },
        schema={"month": pl.Date, "orders": pl.Int64, "gmv": pl.Float64, "gmv_gross": pl.Float64},
    ).with_columns(
        pl.when(pl.col("orders") > 0).then(pl.col("gmv") / pl.col("orders")).otherwise(None).alias("aov")
    )


@pytest.fixture
def core_factory():
    return make_core

