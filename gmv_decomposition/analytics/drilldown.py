"""
Drill-down Reporter

Ranks segments by how much a metric moved between two chosen months.
Only segments present in both months are compared; entrants and exits are
left out.
"""

from datetime import date, datetime
from typing import List, Union

import polars as pl
import structlog

from gmv_decomposition.transformation.metrics import safe_pct_change_expr

logger = structlog.get_logger(__name__)


DRILLDOWN_COLUMNS: List[str] = [
    "segment",
    "metric_month_a",
    "metric_month_b",
    "delta",
    "abs_delta",
    "pct_change",
]

MonthLike = Union[str, date]


def parse_month(value: MonthLike) -> date:
    """Normalise 'YYYY-MM' strings and dates to the first day of the month"""
    if isinstance(value, datetime):
        return date(value.year, value.month, 1)
    if isinstance(value, date):
        return value.replace(day=1)
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except (TypeError, ValueError):
        raise ValueError(f"Month must be formatted as YYYY-MM, got {value!r}")
    return date(parsed.year, parsed.month, 1)


def segment_changes(
    table: pl.DataFrame,
    month_a: MonthLike,
    month_b: MonthLike,
    metric: str = "unit_price",
    segment_col: str = "category",
) -> pl.DataFrame:
    """
    Metric change per segment between two months, unranked.

    Args:
        table: Monthly per-segment table with ``month``, ``segment_col`` and ``metric``
        month_a: Base month
        month_b: Comparison month
        metric: Metric column to compare
        segment_col: Segment column

    Returns:
        DataFrame[segment, metric_month_a, metric_month_b, delta, abs_delta, pct_change]
    """
    for col in ("month", segment_col, metric):
        if col not in table.columns:
            raise ValueError(f"Column '{col}' not found in drill-down table")

    def _month_slice(month: date, alias: str) -> pl.DataFrame:
        return (
            table.filter(pl.col("month") == month)
            .select([pl.col(segment_col).alias("segment"), pl.col(metric).cast(pl.Float64).alias(alias)])
        )

    base = _month_slice(parse_month(month_a), "metric_month_a")
    comparison = _month_slice(parse_month(month_b), "metric_month_b")

    return (
        base.join(comparison, on="segment", how="inner")
        .with_columns((pl.col("metric_month_b") - pl.col("metric_month_a")).alias("delta"))
        .with_columns([
            pl.col("delta").abs().alias("abs_delta"),
            safe_pct_change_expr(pl.col("metric_month_b"), pl.col("metric_month_a")).alias("pct_change"),
        ])
        .select(DRILLDOWN_COLUMNS)
    )


def top_segment_changes(
    table: pl.DataFrame,
    month_a: MonthLike,
    month_b: MonthLike,
    metric: str = "unit_price",
    segment_col: str = "category",
    top_n: int = 10,
) -> pl.DataFrame:
    """
    Top-N segments by absolute metric change, largest first.

    Ties on abs_delta are ordered by segment name; segments whose metric is
    null in either month sort last.
    """
    if not isinstance(top_n, int) or isinstance(top_n, bool) or top_n < 1:
        raise ValueError(f"top_n must be a positive integer, got {top_n!r}")

    changes = segment_changes(table, month_a, month_b, metric=metric, segment_col=segment_col)
    ranked = (
        changes.sort(["abs_delta", "segment"], descending=[True, False], nulls_last=True)
        .head(top_n)
    )

    logger.info(
        "Drill-down ranked",
        metric=metric,
        segment=segment_col,
        month_a=str(month_a),
        month_b=str(month_b),
        compared=changes.height,
        returned=ranked.height,
    )
    return ranked
