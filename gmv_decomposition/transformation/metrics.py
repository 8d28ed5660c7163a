"""Null-guarded ratio helpers shared by aggregation and reporting."""

import polars as pl


def safe_ratio_expr(num: pl.Expr, den: pl.Expr) -> pl.Expr:
    safe_den = pl.when(den != 0).then(den).otherwise(None)
    return num / safe_den


def safe_pct_change_expr(curr: pl.Expr, base: pl.Expr) -> pl.Expr:
    safe_base = pl.when(base != 0).then(base).otherwise(None)
    return (curr - safe_base) / safe_base
