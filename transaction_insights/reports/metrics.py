"""
Report Metrics

Shared aggregation primitives used by every report:

- prices summed as integer cents, never as binary floats
- share-of-total and share-within-partition percentages
- averages and the Efficiency Index (revenue share / volume share)
- Strategic Quadrant classification

Every ratio is evaluated on aggregated rows as an exact fraction of Python
integers and only then rounded to 2 decimals, half-up. A zero denominator
yields null, never an error or infinity.
"""

from decimal import Decimal
from enum import Enum
from fractions import Fraction
from math import prod
from typing import Any, Callable, List, Optional, Sequence, Union

import polars as pl

IntoExpr = Union[str, pl.Expr]
Factors = Union[IntoExpr, Sequence[IntoExpr]]
ExactNumber = Union[int, str, Decimal, Fraction]


class StrategicQuadrant(str, Enum):
    """Strategic role of a segment"""
    STAR = "STAR"  # Above-share revenue at above-average AOV
    CASH_COW = "CASH_COW"  # Traffic driver: below-share revenue, below-average AOV
    EFFICIENCY_PLAY = "EFFICIENCY_PLAY"  # Above-share revenue despite below-average AOV
    LONG_TAIL = "LONG_TAIL"


def _col(value: IntoExpr) -> pl.Expr:
    return pl.col(value) if isinstance(value, str) else value


def _factors(value: Factors) -> List[pl.Expr]:
    if isinstance(value, (str, pl.Expr)):
        return [_col(value)]
    return [_col(v) for v in value]


def _sign(value: Fraction) -> int:
    return (value > 0) - (value < 0)


def cents(column: str = "price") -> pl.Expr:
    """Decimal(12, 2) prices as Int64 cents"""
    # |price| < 1e10, so price * 100 is within float64's exact integer range
    return (pl.col(column).cast(pl.Float64) * 100).round(0).cast(pl.Int64)


def money(cents_column: IntoExpr) -> pl.Expr:
    """Integer cents as currency units"""
    return _col(cents_column) / 100


def round_half_up(value: Optional[ExactNumber], places: int = 2) -> Optional[Decimal]:
    """
    Round an exact value half away from zero.

    Accepts ints, Decimals, Fractions and decimal strings; a float is taken
    at its exact binary value.
    """
    if value is None:
        return None
    scaled = Fraction(value) * 10 ** places
    units, remainder = divmod(abs(scaled.numerator), scaled.denominator)
    if 2 * remainder >= scaled.denominator:
        units += 1
    return Decimal(-units if scaled < 0 else units).scaleb(-places)


def _ratio(numerators: List[Optional[int]], denominators: List[Optional[int]], scale: Fraction) -> Optional[float]:
    if any(v is None for v in numerators + denominators):
        return None
    denominator = prod(denominators)
    if denominator == 0:
        return None
    return float(round_half_up(Fraction(prod(numerators), denominator) * scale))


def _rowwise(exprs: List[pl.Expr], func: Callable[..., Any], return_dtype: pl.DataType) -> pl.Expr:
    """Apply ``func`` row by row across several expressions; unit-length inputs are broadcast"""
    def apply(series: List[pl.Series]) -> pl.Series:
        height = max(len(s) for s in series)
        columns = [s.to_list() * height if len(s) == 1 else s.to_list() for s in series]
        return pl.Series([func(*row) for row in zip(*columns)], dtype=return_dtype)

    return pl.map_batches(exprs, apply, return_dtype=return_dtype)


def exact_ratio(numerator: Factors, denominator: Factors, scale: ExactNumber = 1) -> pl.Expr:
    """
    scale * numerator / denominator, rounded half-up to 2 decimals.

    Both sides are integer expressions, or sequences of them that are
    multiplied together in Python so products never overflow. Null when a
    factor is null or the denominator is zero.

    Example:
        exact_ratio("rev", "total_rev", scale=100)                 # revenue share, %
        exact_ratio(["rev", "total_vol"], ["vol", "total_rev"])    # Efficiency Index
    """
    nums, dens = _factors(numerator), _factors(denominator)
    split = len(nums)
    factor = Fraction(scale)
    return _rowwise(
        nums + dens,
        lambda *row: _ratio(list(row[:split]), list(row[split:]), factor),
        pl.Float64,
    )


def _compare(a: Optional[int], b: Optional[int], c: Optional[int], d: Optional[int]) -> Optional[int]:
    if a is None or b is None or c is None or d is None or b == 0 or d == 0:
        return None
    return _sign(Fraction(a, b) - Fraction(c, d))


def compare_fractions(a_num: IntoExpr, a_den: IntoExpr, b_num: IntoExpr, b_den: IntoExpr) -> pl.Expr:
    """Sign of a_num/a_den - b_num/b_den as Int8 (-1, 0, 1); null if either is undefined"""
    return _rowwise([_col(a_num), _col(a_den), _col(b_num), _col(b_den)], _compare, pl.Int8)


def share_pct(metric: str, partition: Optional[Union[str, List[str]]] = None) -> pl.Expr:
    """
    Percentage share of an integer metric across the whole frame or a partition.

    Evaluated on an already-aggregated frame, one row per group:
        share_pct("revenue")            -> 100 * revenue / sum(revenue)
        share_pct("revenue", "month")   -> 100 * revenue / sum(revenue) over month
    """
    total = pl.col(metric).sum()
    if partition is not None:
        total = total.over(partition)
    return exact_ratio(metric, total, scale=100)


def average(total_cents: IntoExpr, count: IntoExpr) -> pl.Expr:
    """Mean price in currency units from a cents total and a row count"""
    return exact_ratio(total_cents, count, scale=Fraction(1, 100))


def efficiency_index(
    revenue: IntoExpr,
    total_revenue: IntoExpr,
    volume: IntoExpr,
    total_volume: IntoExpr,
) -> pl.Expr:
    """Revenue share over volume share, both against global totals"""
    return exact_ratio([revenue, total_volume], [volume, total_revenue])


def _above_mean(total: int, count: int, totals: List[int], counts: List[int]) -> bool:
    averages = [Fraction(t, n) for t, n in zip(totals, counts) if n]
    return bool(count) and Fraction(total, count) * len(averages) > sum(averages)


def above_partition_mean(total_cents: str, count: str, partition: str) -> pl.Expr:
    """True where total_cents / count is above the mean of that average across the partition"""
    return _rowwise(
        [
            pl.col(total_cents),
            pl.col(count),
            pl.col(total_cents).over(partition, mapping_strategy="join"),
            pl.col(count).over(partition, mapping_strategy="join"),
        ],
        _above_mean,
        pl.Boolean,
    )


def efficiency_label(ei: Optional[float]) -> Optional[str]:
    """Interpretation of an Efficiency Index value"""
    if ei is None:
        return None
    if ei > 1.0:
        return "high-yield"
    if ei < 1.0:
        return "high-volume/low-margin"
    return "balanced"


def quadrant_expr(share_vs_volume: IntoExpr, aov_vs_global: IntoExpr) -> pl.Expr:
    """
    Strategic Quadrant as a priority cascade; branch order matters.

    Both inputs are signs: revenue share against volume share, and segment
    AOV against global AOV. A tie (0) never satisfies the first three
    branches and lands in LONG_TAIL.
    """
    r, a = _col(share_vs_volume), _col(aov_vs_global)
    return (
        pl.when((r > 0) & (a > 0))
        .then(pl.lit(StrategicQuadrant.STAR.value))
        .when((r < 0) & (a < 0))
        .then(pl.lit(StrategicQuadrant.CASH_COW.value))
        .when((r > 0) & (a < 0))
        .then(pl.lit(StrategicQuadrant.EFFICIENCY_PLAY.value))
        .otherwise(pl.lit(StrategicQuadrant.LONG_TAIL.value))
    )


def classify_quadrant(
    revenue_fraction: ExactNumber,
    volume_fraction: ExactNumber,
    aov: ExactNumber,
    global_aov: ExactNumber,
) -> StrategicQuadrant:
    """Classify a single segment with the same cascade as ``quadrant_expr``"""
    frame = pl.DataFrame(
        {
            "r": [_sign(Fraction(revenue_fraction) - Fraction(volume_fraction))],
            "a": [_sign(Fraction(aov) - Fraction(global_aov))],
        },
        schema={"r": pl.Int8, "a": pl.Int8},
    )
    return StrategicQuadrant(frame.select(quadrant_expr("r", "a")).item())
