"""
Decomposition Pipeline

Runs the full batch pass over one input snapshot:
1. Validate input streams (findings are logged, not fatal)
2. Build order facts
3. Aggregate monthly tables
4. Compute effect tables and verify their identities
5. Render waterfalls and the drill-down

Every run recomputes everything from the snapshot; a failed run is simply
rerun.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

import polars as pl
import structlog

from gmv_decomposition.analytics.decomposition import (
    WaterfallFamily,
    mix_lfl_effects,
    price_basket_effects,
    render_mix_lfl_waterfall,
    render_waterfall,
    volume_aov_effects,
)
from gmv_decomposition.analytics.drilldown import top_segment_changes
from gmv_decomposition.config import DecompositionSettings, SegmentDimension, get_settings
from gmv_decomposition.config.logging import bind_run_context, clear_run_context
from gmv_decomposition.ingestion.input_loader import InputLoader, InputSnapshot
from gmv_decomposition.quality.consistency import assert_identities
from gmv_decomposition.quality.validators import (
    INPUT_VALIDATORS,
    ValidationResult,
    create_order_facts_validator,
    create_orders_validator,
)
from gmv_decomposition.transformation.aggregators import (
    monthly_by_segment,
    monthly_core,
    monthly_price_qty,
    monthly_price_qty_by_category,
    monthly_price_qty_by_state,
)
from gmv_decomposition.transformation.fact_builder import OrderFactBuilder

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Everything one pipeline run produces"""
    facts: pl.DataFrame
    core: pl.DataFrame
    segments: Dict[str, pl.DataFrame]
    price_qty: pl.DataFrame
    price_qty_by_segment: Dict[str, pl.DataFrame]
    effects: Dict[str, pl.DataFrame]
    waterfalls: Dict[str, pl.DataFrame]
    drilldown: Optional[pl.DataFrame] = None
    quality: Dict[str, ValidationResult] = field(default_factory=dict)
    consistency: Optional[ValidationResult] = None
    run_id: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()


class DecompositionPipeline:
    """
    Batch GMV decomposition over an input snapshot.

    Example:
        pipeline = DecompositionPipeline()
        result = pipeline.run(InputLoader("data/cleaned").load())
        result.waterfalls["gmv_volume_aov"]
    """

    def __init__(
        self,
        settings: Optional[DecompositionSettings] = None,
        enable_data_quality_checks: Optional[bool] = None,
        enable_consistency_checks: Optional[bool] = None,
    ):
        app_settings = get_settings()
        self.settings = settings or app_settings.decomposition
        self.enable_data_quality_checks = (
            app_settings.data_quality.enable_data_quality_checks
            if enable_data_quality_checks is None else enable_data_quality_checks
        )
        self.enable_consistency_checks = (
            app_settings.data_quality.enable_consistency_checks
            if enable_consistency_checks is None else enable_consistency_checks
        )
        self.fact_builder = OrderFactBuilder(
            delivered_status=self.settings.delivered_status,
            unknown_label=self.settings.unknown_label,
        )

    def _validate_inputs(self, snapshot: InputSnapshot) -> Dict[str, ValidationResult]:
        validators = {stream: factory() for stream, factory in INPUT_VALIDATORS.items()}
        validators["orders"] = create_orders_validator(self.settings.delivered_status)
        return {
            stream: validator.validate(getattr(snapshot, stream))
            for stream, validator in validators.items()
        }

    def _price_qty_by_segment(self, snapshot: InputSnapshot) -> Dict[str, pl.DataFrame]:
        common = dict(
            delivered_status=self.settings.delivered_status,
            unknown_label=self.settings.unknown_label,
        )
        return {
            SegmentDimension.CATEGORY.value: monthly_price_qty_by_category(
                snapshot.order_items, snapshot.orders, snapshot.products, **common
            ),
            SegmentDimension.STATE.value: monthly_price_qty_by_state(
                snapshot.order_items, snapshot.orders, snapshot.customers, **common
            ),
        }

    def _drilldown(self, price_qty_by_segment: Dict[str, pl.DataFrame]) -> Optional[pl.DataFrame]:
        if not self.settings.has_drilldown_months:
            logger.info("Drill-down skipped: month_a/month_b not configured")
            return None

        dimension = self.settings.dimension.value
        return top_segment_changes(
            price_qty_by_segment[dimension],
            self.settings.month_a,
            self.settings.month_b,
            metric=self.settings.drilldown_metric,
            segment_col=dimension,
            top_n=self.settings.top_n,
        )

    def run(self, snapshot: InputSnapshot) -> PipelineResult:
        """
        Run the decomposition over a snapshot.

        Every log record emitted during the run carries its run_id.

        Raises:
            IdentityViolationError: an effect table breaks its identity
        """
        run_id = uuid.uuid4().hex[:12]
        bind_run_context(run_id=run_id)
        try:
            return self._run(snapshot, run_id)
        finally:
            clear_run_context()

    def _run(self, snapshot: InputSnapshot, run_id: str) -> PipelineResult:
        started_at = datetime.now(timezone.utc)
        logger.info("Starting decomposition run", **snapshot.row_counts)

        quality: Dict[str, ValidationResult] = {}
        if self.enable_data_quality_checks:
            quality.update(self._validate_inputs(snapshot))

        facts = self.fact_builder.build(
            snapshot.orders,
            snapshot.order_items,
            snapshot.products,
            snapshot.payments,
            snapshot.reviews,
            snapshot.customers,
        )
        if self.enable_data_quality_checks:
            quality["order_facts"] = create_order_facts_validator().validate(facts)

        core = monthly_core(facts)
        segments = {
            dim.value: monthly_by_segment(facts, dim, unknown_label=self.settings.unknown_label)
            for dim in SegmentDimension
        }
        price_qty = monthly_price_qty(facts)
        price_qty_by_segment = self._price_qty_by_segment(snapshot)

        volume_aov = volume_aov_effects(core)
        mix_lfl = {
            dim: mix_lfl_effects(core, seg, renormalize_weights=self.settings.renormalize_mix_weights)
            for dim, seg in segments.items()
        }
        price_basket = price_basket_effects(price_qty)

        consistency = None
        if self.enable_consistency_checks:
            consistency = assert_identities(
                volume_aov=volume_aov,
                mix_lfl=mix_lfl,
                price_basket=price_basket,
                price_qty=price_qty,
                tolerance=self.settings.identity_tolerance,
            )

        effects = {
            WaterfallFamily.GMV_VOLUME_AOV.value: volume_aov,
            WaterfallFamily.AOV_PRICE_BASKET.value: price_basket,
        }
        effects.update({f"{WaterfallFamily.AOV_MIX_LFL.value}_{dim}": df for dim, df in mix_lfl.items()})

        waterfalls = {
            WaterfallFamily.GMV_VOLUME_AOV.value: render_waterfall(volume_aov, WaterfallFamily.GMV_VOLUME_AOV),
            WaterfallFamily.AOV_MIX_LFL.value: render_mix_lfl_waterfall(mix_lfl),
            WaterfallFamily.AOV_PRICE_BASKET.value: render_waterfall(price_basket, WaterfallFamily.AOV_PRICE_BASKET),
        }

        result = PipelineResult(
            facts=facts,
            core=core,
            segments=segments,
            price_qty=price_qty,
            price_qty_by_segment=price_qty_by_segment,
            effects=effects,
            waterfalls=waterfalls,
            drilldown=self._drilldown(price_qty_by_segment),
            quality=quality,
            consistency=consistency,
            run_id=run_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

        logger.info(
            "Decomposition run complete",
            facts=facts.height,
            months=core.height,
            decomposed_months=volume_aov.height,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def run_from_path(
        self,
        input_path: Optional[Union[str, Path]] = None,
        file_format: Optional[str] = None,
    ) -> PipelineResult:
        """Load a snapshot from disk and run"""
        return self.run(InputLoader(input_path, file_format=file_format).load())
