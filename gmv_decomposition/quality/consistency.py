"""
Decomposition Consistency Checks

Verifies the algebraic identities every waterfall must satisfy before it is
emitted. A violation means the aggregation itself is wrong, not the input
data, so it is raised as IdentityViolationError instead of being logged as
an ordinary quality finding.
"""

from typing import Dict, List, Optional

import polars as pl
import structlog

from .validators import (
    ValidationCheck,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    summarize_checks,
)

logger = structlog.get_logger(__name__)

DEFAULT_TOLERANCE = 1e-6
ABSOLUTE_FLOOR = 1e-9


class IdentityViolationError(ValueError):
    """A decomposition identity does not hold: an aggregation defect"""

    def __init__(self, result: ValidationResult):
        self.result = result
        names = ", ".join(c.name for c in result.failures)
        super().__init__(f"Decomposition identity violated: {names}")


def within_tolerance(lhs: pl.Expr, rhs: pl.Expr, tolerance: float = DEFAULT_TOLERANCE) -> pl.Expr:
    """Relative closeness of two expressions, with a tiny absolute floor near zero"""
    scale = pl.max_horizontal(lhs.abs(), rhs.abs())
    return (lhs - rhs).abs() <= scale * tolerance + ABSOLUTE_FLOOR


def identity_check(
    name: str,
    frame: pl.DataFrame,
    lhs: pl.Expr,
    rhs: pl.Expr,
    tolerance: float = DEFAULT_TOLERANCE,
) -> ValidationCheck:
    """Check ``lhs == rhs`` row by row within tolerance"""
    scored = frame.with_columns([
        lhs.alias("_lhs"),
        rhs.alias("_rhs"),
    ]).filter(pl.col("_lhs").is_not_null() & pl.col("_rhs").is_not_null())

    violations = scored.filter(~within_tolerance(pl.col("_lhs"), pl.col("_rhs"), tolerance))
    details = None
    if violations.height:
        details = {
            "months": [str(m) for m in violations["month"].to_list()],
            "max_gap": float((violations["_lhs"] - violations["_rhs"]).abs().max()),
        }

    return ValidationCheck(
        name=name,
        passed=violations.height == 0,
        severity=ValidationSeverity.ERROR,
        message=(
            f"{violations.height} months violate {name}"
            if violations.height else f"{name} holds for {scored.height} months"
        ),
        details=details,
        failed_rows=violations.height,
        total_rows=scored.height,
    )


def check_identities(
    volume_aov: Optional[pl.DataFrame] = None,
    mix_lfl: Optional[Dict[str, pl.DataFrame]] = None,
    price_basket: Optional[pl.DataFrame] = None,
    price_qty: Optional[pl.DataFrame] = None,
    tolerance: float = DEFAULT_TOLERANCE,
) -> ValidationResult:
    """
    Verify the decomposition identities over effect tables.

    Args:
        volume_aov: Output of volume_aov_effects
        mix_lfl: Outputs of mix_lfl_effects keyed by dimension
        price_basket: Output of price_basket_effects
        price_qty: Monthly price x quantity table (checks aov_recalc == aov)
        tolerance: Relative tolerance

    Returns:
        ValidationResult; FAILED when any identity is violated
    """
    checks: List[ValidationCheck] = []

    if volume_aov is not None:
        checks.append(identity_check(
            "gmv_volume_aov_identity",
            volume_aov,
            pl.col("gmv_prev") + pl.col("effect_volume") + pl.col("effect_aov") + pl.col("effect_interaction"),
            pl.col("gmv"),
            tolerance,
        ))

    for dimension, effects in (mix_lfl or {}).items():
        checks.append(identity_check(
            f"aov_mix_lfl_identity_{dimension}",
            effects,
            pl.col("effect_lfl") + pl.col("effect_mix"),
            pl.col("delta_aov"),
            tolerance,
        ))

    if price_basket is not None:
        checks.append(identity_check(
            "aov_price_basket_identity",
            price_basket,
            pl.col("aov_prev") + pl.col("effect_price") + pl.col("effect_basket") + pl.col("effect_interaction"),
            pl.col("aov"),
            tolerance,
        ))

    if price_qty is not None:
        checks.append(identity_check(
            "price_qty_aov_recalc",
            price_qty,
            pl.col("aov_recalc"),
            pl.col("aov"),
            tolerance,
        ))

    result = summarize_checks(checks, subject="decomposition")
    logger.info(
        "Identity checks complete",
        status=result.status.value,
        checks=result.total_checks,
        violations=result.failed_checks,
    )
    return result


def assert_identities(
    volume_aov: Optional[pl.DataFrame] = None,
    mix_lfl: Optional[Dict[str, pl.DataFrame]] = None,
    price_basket: Optional[pl.DataFrame] = None,
    price_qty: Optional[pl.DataFrame] = None,
    tolerance: float = DEFAULT_TOLERANCE,
) -> ValidationResult:
    """check_identities, raising IdentityViolationError on any violation"""
    result = check_identities(volume_aov, mix_lfl, price_basket, price_qty, tolerance)
    if result.status == ValidationStatus.FAILED:
        for failure in result.failures:
            logger.error(
                "Decomposition identity violated",
                check=failure.name,
                message=failure.message,
                details=failure.details,
            )
        raise IdentityViolationError(result)
    return result
