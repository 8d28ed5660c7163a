"""
Decomposition Engine

Month-over-month waterfalls over the monthly metric tables:

L1   GMV  -> Orders x AOV          gmv[t-1] + volume + aov + interaction == gmv[t]
L2-A AOV  -> Mix x Like-for-Like   delta_aov == lfl + mix
L2-B AOV  -> Price x Basket        aov[t-1] + price + basket + interaction == aov[t]

Each month is paired with the immediately preceding calendar month. A month
is decomposed only when every value the leg multiplies or divides by is
non-null in both months, so the first month of a series and months next to
an empty month never appear in the output.

All functions are pure; month pairs are independent of one another.
"""

from dataclasses import asdict, dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

import polars as pl
import structlog

from gmv_decomposition.transformation.aggregators import (
    CORE_COUNT_COLUMNS,
    PRICE_QTY_COUNT_COLUMNS,
    complete_calendar,
)

logger = structlog.get_logger(__name__)


class WaterfallFamily(str, Enum):
    """The three waterfall layers"""
    GMV_VOLUME_AOV = "gmv_volume_aov"
    AOV_MIX_LFL = "aov_mix_lfl"
    AOV_PRICE_BASKET = "aov_price_basket"


class StepKind(str, Enum):
    """Waterfall step variants"""
    START = "start"
    EFFECT = "effect"
    END = "end"


class StepDef(NamedTuple):
    kind: StepKind
    stage: str
    component: str
    column: str


VOLUME_AOV_STEPS: List[StepDef] = [
    StepDef(StepKind.START, "Start", "start", "gmv_prev"),
    StepDef(StepKind.EFFECT, "Orders", "volume", "effect_volume"),
    StepDef(StepKind.EFFECT, "AOV", "aov", "effect_aov"),
    StepDef(StepKind.EFFECT, "Interaction", "interaction", "effect_interaction"),
    StepDef(StepKind.END, "End", "end", "gmv"),
]

MIX_LFL_STEPS: List[StepDef] = [
    StepDef(StepKind.START, "Start", "start", "aov_prev"),
    StepDef(StepKind.EFFECT, "LFL", "lfl", "effect_lfl"),
    StepDef(StepKind.EFFECT, "Mix", "mix", "effect_mix"),
    StepDef(StepKind.END, "End", "end", "aov"),
]

PRICE_BASKET_STEPS: List[StepDef] = [
    StepDef(StepKind.START, "Start", "start", "aov_prev"),
    StepDef(StepKind.EFFECT, "Price", "price", "effect_price"),
    StepDef(StepKind.EFFECT, "Basket", "basket", "effect_basket"),
    StepDef(StepKind.EFFECT, "Interaction", "interaction", "effect_interaction"),
    StepDef(StepKind.END, "End", "end", "aov"),
]

WATERFALL_SCHEMA: Dict[str, Any] = {
    "family": pl.Utf8,
    "dimension": pl.Utf8,
    "month": pl.Date,
    "month_index": pl.Int64,
    "sort_in_month": pl.Int64,
    "sort_key": pl.Int64,
    "step_kind": pl.Utf8,
    "stage": pl.Utf8,
    "component": pl.Utf8,
    "amount": pl.Float64,
    "is_total": pl.Boolean,
}


@dataclass(frozen=True)
class WaterfallStep:
    """One step of a waterfall: a Start/End total or a signed effect"""
    family: WaterfallFamily
    month: date
    month_index: int
    sort_in_month: int
    kind: StepKind
    stage: str
    component: str
    amount: float
    dimension: Optional[str] = None

    @property
    def is_total(self) -> bool:
        return self.kind in (StepKind.START, StepKind.END)

    @property
    def sort_key(self) -> int:
        return self.month_index * 10 + self.sort_in_month

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        row["family"] = self.family.value
        row["step_kind"] = row.pop("kind").value
        row["is_total"] = self.is_total
        row["sort_key"] = self.sort_key
        return row


def _with_previous(df: pl.DataFrame, columns: List[str], fill_columns: List[str]) -> pl.DataFrame:
    """Attach the preceding calendar month's values as ``<col>_prev``"""
    return complete_calendar(df, fill_columns).with_columns([
        pl.col(c).shift(1).alias(f"{c}_prev") for c in columns
    ])


def _decomposable(columns: List[str]) -> pl.Expr:
    condition = pl.lit(True)
    for c in columns:
        condition = condition & pl.col(c).is_not_null()
    return condition


def volume_aov_effects(core: pl.DataFrame) -> pl.DataFrame:
    """
    Volume/AOV decomposition of the GMV change for each month.

    Args:
        core: Monthly core table (month, orders, gmv, gmv_gross, aov)

    Returns:
        DataFrame with previous/current values, delta_gmv and
        effect_volume, effect_aov, effect_interaction per decomposable month
    """
    paired = _with_previous(core, ["orders", "gmv", "aov"], CORE_COUNT_COLUMNS)

    return (
        paired.filter(_decomposable(["orders_prev", "aov_prev", "aov"]))
        .with_columns([
            (pl.col("orders") - pl.col("orders_prev")).alias("delta_orders"),
            (pl.col("aov") - pl.col("aov_prev")).alias("delta_aov"),
            (pl.col("gmv") - pl.col("gmv_prev")).alias("delta_gmv"),
        ])
        .with_columns([
            (pl.col("aov_prev") * pl.col("delta_orders")).alias("effect_volume"),
            (pl.col("orders_prev") * pl.col("delta_aov")).alias("effect_aov"),
            (pl.col("delta_orders") * pl.col("delta_aov")).alias("effect_interaction"),
        ])
        .select([
            "month",
            "orders_prev", "orders", "delta_orders",
            "aov_prev", "aov", "delta_aov",
            "gmv_prev", "gmv", "delta_gmv",
            "effect_volume", "effect_aov", "effect_interaction",
        ])
        .sort("month")
    )


def mix_lfl_effects(
    core: pl.DataFrame,
    segments: pl.DataFrame,
    renormalize_weights: bool = False,
) -> pl.DataFrame:
    """
    Mix vs like-for-like decomposition of the AOV change for each month.

    Only the common set (segments with orders in both months) contributes to
    LFL, each weighted by the mean of its previous and current order share.
    Mix is the residual, absorbing weight shifts and segment entry/exit.

    Args:
        core: Monthly core table
        segments: Monthly segment table (month, segment, orders_seg, aov_seg)
        renormalize_weights: Rescale weights to sum to 1 over the common set
            instead of using raw shares of total orders

    Returns:
        DataFrame[month, aov_prev, aov, delta_aov, effect_lfl, effect_mix,
        common_segments]
    """
    totals = (
        _with_previous(core, ["orders", "aov"], CORE_COUNT_COLUMNS)
        .filter(_decomposable(["orders_prev", "aov_prev", "aov"]))
        .filter((pl.col("orders") > 0) & (pl.col("orders_prev") > 0))
    )

    active = segments.filter(pl.col("orders_seg") > 0).select(["month", "segment", "orders_seg", "aov_seg"])
    previous = (
        active.with_columns(pl.col("month").dt.offset_by("1mo"))
        .rename({"orders_seg": "orders_seg_prev", "aov_seg": "aov_seg_prev"})
    )

    common = (
        active.join(previous, on=["month", "segment"], how="inner")
        .join(totals.select(["month", "orders", "orders_prev"]), on="month", how="inner")
        .with_columns([
            (pl.col("orders_seg") / pl.col("orders")).alias("weight_cur"),
            (pl.col("orders_seg_prev") / pl.col("orders_prev")).alias("weight_prev"),
        ])
    )

    if renormalize_weights:
        common = common.with_columns([
            (pl.col("weight_cur") / pl.col("weight_cur").sum().over("month")).alias("weight_cur"),
            (pl.col("weight_prev") / pl.col("weight_prev").sum().over("month")).alias("weight_prev"),
        ])

    lfl = (
        common.with_columns(
            (
                (pl.col("weight_cur") + pl.col("weight_prev")) / 2
                * (pl.col("aov_seg") - pl.col("aov_seg_prev"))
            ).alias("lfl_contribution")
        )
        .group_by("month")
        .agg([
            pl.col("lfl_contribution").sum().alias("effect_lfl"),
            pl.len().cast(pl.Int64).alias("common_segments"),
        ])
    )

    return (
        totals.select(["month", "aov_prev", "aov"])
        .join(lfl, on="month", how="left")
        .with_columns([
            pl.col("effect_lfl").fill_null(0.0),
            pl.col("common_segments").fill_null(0),
            (pl.col("aov") - pl.col("aov_prev")).alias("delta_aov"),
        ])
        .with_columns((pl.col("delta_aov") - pl.col("effect_lfl")).alias("effect_mix"))
        .select(["month", "aov_prev", "aov", "delta_aov", "effect_lfl", "effect_mix", "common_segments"])
        .sort("month")
    )


def price_basket_effects(price_qty: pl.DataFrame) -> pl.DataFrame:
    """
    Unit price vs basket size decomposition of the AOV change for each month.

    Args:
        price_qty: Monthly price x quantity table (month, orders, items, gmv,
            unit_price, basket_size, aov)

    Returns:
        DataFrame with previous/current values, delta_aov and effect_price,
        effect_basket, effect_interaction per decomposable month
    """
    paired = _with_previous(price_qty, ["unit_price", "basket_size", "aov"], PRICE_QTY_COUNT_COLUMNS)

    return (
        paired.filter(_decomposable([
            "unit_price_prev", "basket_size_prev", "aov_prev",
            "unit_price", "basket_size", "aov",
        ]))
        .with_columns([
            (pl.col("unit_price") - pl.col("unit_price_prev")).alias("delta_unit_price"),
            (pl.col("basket_size") - pl.col("basket_size_prev")).alias("delta_basket_size"),
            (pl.col("aov") - pl.col("aov_prev")).alias("delta_aov"),
        ])
        .with_columns([
            (pl.col("basket_size_prev") * pl.col("delta_unit_price")).alias("effect_price"),
            (pl.col("unit_price_prev") * pl.col("delta_basket_size")).alias("effect_basket"),
            (pl.col("delta_unit_price") * pl.col("delta_basket_size")).alias("effect_interaction"),
        ])
        .select([
            "month",
            "unit_price_prev", "unit_price", "delta_unit_price",
            "basket_size_prev", "basket_size", "delta_basket_size",
            "aov_prev", "aov", "delta_aov",
            "effect_price", "effect_basket", "effect_interaction",
        ])
        .sort("month")
    )


def build_steps(
    effects: pl.DataFrame,
    family: WaterfallFamily,
    step_defs: List[StepDef],
    dimension: Optional[str] = None,
) -> List[WaterfallStep]:
    """Expand a wide effects table into ordered waterfall steps"""
    steps = []
    for month_index, row in enumerate(effects.sort("month").to_dicts(), start=1):
        for sort_in_month, step in enumerate(step_defs):
            steps.append(WaterfallStep(
                family=family,
                month=row["month"],
                month_index=month_index,
                sort_in_month=sort_in_month,
                kind=step.kind,
                stage=step.stage,
                component=step.component,
                amount=float(row[step.column]),
                dimension=dimension,
            ))
    return steps


def steps_to_frame(steps: List[WaterfallStep]) -> pl.DataFrame:
    """Long-format waterfall table ordered by sort_key"""
    return (
        pl.DataFrame([s.to_dict() for s in steps], schema=WATERFALL_SCHEMA)
        .select(list(WATERFALL_SCHEMA))
        .sort("sort_key")
    )


WATERFALL_STEPS: Dict[WaterfallFamily, List[StepDef]] = {
    WaterfallFamily.GMV_VOLUME_AOV: VOLUME_AOV_STEPS,
    WaterfallFamily.AOV_MIX_LFL: MIX_LFL_STEPS,
    WaterfallFamily.AOV_PRICE_BASKET: PRICE_BASKET_STEPS,
}


def render_waterfall(
    effects: pl.DataFrame,
    family: Union[WaterfallFamily, str],
    dimension: Optional[str] = None,
) -> pl.DataFrame:
    """
    Long-format waterfall for one family from its effects table.

    Args:
        effects: Output of the family's effects function
        family: Waterfall family
        dimension: Segment dimension, for the mix/LFL family
    """
    family = WaterfallFamily(family)
    steps = build_steps(effects, family, WATERFALL_STEPS[family], dimension=dimension)
    logger.info("Waterfall rendered", family=family.value, dimension=dimension, months=effects.height)
    return steps_to_frame(steps)


def render_mix_lfl_waterfall(effects_by_dimension: Dict[str, pl.DataFrame]) -> pl.DataFrame:
    """Mix/LFL waterfalls of every dimension in one table, ordered by dimension then sort_key"""
    frames = [
        render_waterfall(df, WaterfallFamily.AOV_MIX_LFL, dimension=dim)
        for dim, df in effects_by_dimension.items()
    ]
    if not frames:
        return steps_to_frame([])
    return pl.concat(frames).sort(["dimension", "sort_key"])
