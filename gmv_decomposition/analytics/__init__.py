"""
Analytics Module
"""
from .decomposition import (
    StepKind,
    WaterfallFamily,
    WaterfallStep,
    mix_lfl_effects,
    price_basket_effects,
    render_mix_lfl_waterfall,
    render_waterfall,
    volume_aov_effects,
)
from .drilldown import segment_changes, top_segment_changes

__all__ = [
    "StepKind",
    "WaterfallFamily",
    "WaterfallStep",
    "mix_lfl_effects",
    "price_basket_effects",
    "render_mix_lfl_waterfall",
    "render_waterfall",
    "volume_aov_effects",
    "segment_changes",
    "top_segment_changes",
]
