"""
Data Transformation Module
"""
from .fact_builder import OrderFactBuilder, build_order_facts
from .aggregators import (
    complete_calendar,
    monthly_by_segment,
    monthly_core,
    monthly_price_qty,
    monthly_price_qty_by_category,
    monthly_price_qty_by_state,
)

__all__ = [
    "OrderFactBuilder",
    "build_order_facts",
    "complete_calendar",
    "monthly_by_segment",
    "monthly_core",
    "monthly_price_qty",
    "monthly_price_qty_by_category",
    "monthly_price_qty_by_state",
]
