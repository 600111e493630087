"""
Report Definitions

Each report is a pure function from the analytical view to a lazy result
table. Reports never read the clean set directly and never depend on one
another, so any subset can be collected in any order or in parallel.

Revenue is aggregated in integer cents and converted to currency units only
for output. Temporal reports run over the view minus collapsed-timestamp
years.
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, Dict, List, Optional

import polars as pl

from transaction_insights.config import PipelineSettings
from transaction_insights.quality.anomaly_detector import valid_temporal_rows
from transaction_insights.reports.metrics import (
    above_partition_mean,
    average,
    cents,
    compare_fractions,
    efficiency_index,
    exact_ratio,
    money,
    quadrant_expr,
    share_pct,
)
from transaction_insights.schemas import ANONYMOUS, REGISTERED, WEEKDAY_ORDER

ANON = pl.col("user_type") == ANONYMOUS
REG = pl.col("user_type") == REGISTERED

PREMIUM_WINDOW = "⭐ Premium Window"
STANDARD_WINDOW = "Standard"
NIGHT_WINDOW = "Night"


@dataclass
class ReportContext:
    """Settings shared by every report builder"""
    settings: PipelineSettings

    def temporal(self, view: pl.LazyFrame) -> pl.LazyFrame:
        return valid_temporal_rows(view, self.settings.collapsed_year_min_rows)


ReportBuilder = Callable[[pl.LazyFrame, ReportContext], pl.LazyFrame]


@dataclass(frozen=True)
class ReportDefinition:
    """Registered report: builder plus export metadata"""
    name: str
    builder: ReportBuilder
    export_name: Optional[str] = None
    description: str = ""


# =============================================================================
# HELPERS
# =============================================================================

def _volume_revenue(volume: str, revenue: str) -> List[pl.Expr]:
    """Row count and revenue in cents"""
    return [
        pl.len().cast(pl.Int64).alias(volume),
        cents().sum().alias(revenue),
    ]


def _most_frequent(lf: pl.LazyFrame, key: str, value: str, alias: str) -> pl.LazyFrame:
    """Most frequent ``value`` per ``key``; ties go to the maximum value"""
    return (
        lf.group_by([key, value])
        .agg(pl.len().alias("_occurrences"))
        .sort([key, "_occurrences", value], descending=[False, True, True])
        .group_by(key, maintain_order=True)
        .agg(pl.col(value).first().alias(alias))
    )


def time_window_expr(settings: PipelineSettings) -> pl.Expr:
    """Map hour to its named operating window"""
    windows = settings.time_windows
    name, start, end = windows[0]
    expr = pl.when(pl.col("hour").is_between(start, end)).then(pl.lit(name))
    for name, start, end in windows[1:]:
        expr = expr.when(pl.col("hour").is_between(start, end)).then(pl.lit(name))
    return expr.otherwise(pl.lit(NIGHT_WINDOW))


# =============================================================================
# USER SEGMENTATION
# =============================================================================

def overall_metrics(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Grand totals and global AOV"""
    return (
        view.select(_volume_revenue("total_volume", "total_revenue"))
        .with_columns([
            average("total_revenue", "total_volume").alias("global_aov"),
            money("total_revenue").alias("total_revenue"),
        ])
        .select(["total_volume", "total_revenue", "global_aov"])
    )


def user_segmentation(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Registered vs anonymous: volume, revenue, AOV, diversity, unlabelled revenue"""
    return (
        view.group_by("user_type")
        .agg(
            _volume_revenue("transaction_volume", "total_revenue")
            + [
                pl.col("user_id").drop_nulls().n_unique().cast(pl.Int64).alias("unique_registered_users"),
                pl.col("category_id").n_unique().cast(pl.Int64).alias("category_diversity"),
                pl.col("product_id").n_unique().cast(pl.Int64).alias("product_diversity"),
                cents().filter(~pl.col("category_labelled")).sum().alias("_unlabelled_revenue"),
            ]
        )
        .with_columns([
            share_pct("transaction_volume").alias("volume_percentage"),
            share_pct("total_revenue").alias("revenue_percentage"),
            average("total_revenue", "transaction_volume").alias("aov"),
            exact_ratio("_unlabelled_revenue", "total_revenue", scale=100).alias("percent_unlabelled_revenue"),
        ])
        .sort(["total_revenue", "user_type"], descending=[True, False])
        .select([
            "user_type",
            "transaction_volume",
            "volume_percentage",
            "unique_registered_users",
            money("total_revenue").alias("total_revenue"),
            "revenue_percentage",
            "aov",
            "category_diversity",
            "product_diversity",
            "percent_unlabelled_revenue",
        ])
    )


# =============================================================================
# TEMPORAL
# =============================================================================

def monthly_seasonality(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Per month and user type, with global and within-month shares"""
    return (
        ctx.temporal(view)
        .group_by(["month", "user_type"])
        .agg(_volume_revenue("monthly_volume", "monthly_revenue"))
        .with_columns([
            share_pct("monthly_volume").alias("monthly_volume_pct"),
            share_pct("monthly_volume", "month").alias("volume_within_month_pct"),
            share_pct("monthly_revenue").alias("monthly_revenue_pct"),
            share_pct("monthly_revenue", "month").alias("revenue_within_month_pct"),
            average("monthly_revenue", "monthly_volume").alias("aov"),
        ])
        .sort(["month", "user_type"])
        .select([
            "month",
            "user_type",
            "monthly_volume",
            "monthly_volume_pct",
            "volume_within_month_pct",
            money("monthly_revenue").alias("monthly_revenue"),
            "monthly_revenue_pct",
            "revenue_within_month_pct",
            "aov",
        ])
    )


def payday(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Day-of-month pattern"""
    return (
        ctx.temporal(view)
        .group_by("day")
        .agg(_volume_revenue("day_volume", "day_revenue"))
        .with_columns([
            share_pct("day_volume").alias("volume_pct"),
            share_pct("day_revenue").alias("revenue_pct"),
            average("day_revenue", "day_volume").alias("aov"),
        ])
        .sort("day")
        .select([
            "day",
            "day_volume",
            "volume_pct",
            money("day_revenue").alias("day_revenue"),
            "revenue_pct",
            "aov",
        ])
    )


def weekday_rhythm(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Per weekday and user type, Monday first"""
    return (
        ctx.temporal(view)
        .group_by(["weekday", "user_type"])
        .agg(_volume_revenue("transaction_volume", "total_revenue"))
        .with_columns([
            share_pct("transaction_volume").alias("volume_total_pct"),
            share_pct("transaction_volume", "weekday").alias("volume_share_within_day_pct"),
            share_pct("total_revenue").alias("revenue_total_pct"),
            share_pct("total_revenue", "weekday").alias("revenue_share_within_day_pct"),
            average("total_revenue", "transaction_volume").alias("aov"),
            pl.col("weekday")
            .replace_strict(WEEKDAY_ORDER, default=len(WEEKDAY_ORDER) + 1, return_dtype=pl.Int8)
            .alias("_weekday_order"),
        ])
        .sort(["_weekday_order", "user_type"])
        .select([
            "weekday",
            "user_type",
            "transaction_volume",
            "volume_total_pct",
            "volume_share_within_day_pct",
            money("total_revenue").alias("total_revenue"),
            "revenue_total_pct",
            "revenue_share_within_day_pct",
            "aov",
        ])
    )


def hourly_peaks(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Per hour and user type; premium windows beat the user type's mean hourly AOV"""
    return (
        ctx.temporal(view)
        .group_by(["hour", "user_type"])
        .agg(_volume_revenue("transaction_volume", "_hourly_revenue"))
        .with_columns([
            share_pct("transaction_volume", "user_type").alias("hourly_volume_share"),
            average("_hourly_revenue", "transaction_volume").alias("hourly_aov"),
            above_partition_mean("_hourly_revenue", "transaction_volume", "user_type").alias("is_premium_window"),
        ])
        .with_columns(
            pl.when(pl.col("is_premium_window"))
            .then(pl.lit(PREMIUM_WINDOW))
            .otherwise(pl.lit(STANDARD_WINDOW))
            .alias("efficiency_rating")
        )
        .sort(["hour", "user_type"])
        .select([
            "hour",
            "user_type",
            "transaction_volume",
            "hourly_volume_share",
            "hourly_aov",
            "is_premium_window",
            "efficiency_rating",
        ])
    )


# =============================================================================
# CATEGORY AND BRAND
# =============================================================================

def _master(
    view: pl.LazyFrame,
    key: str,
    flag: str,
    status_column: str,
    known_label: str,
    missing_label: str,
) -> pl.LazyFrame:
    """Side-by-side anonymous/registered breakdown per label"""
    return (
        view.group_by(key)
        .agg([
            pl.col(flag).all().alias("_known"),
            ANON.sum().cast(pl.Int64).alias("anon_vol"),
            REG.sum().cast(pl.Int64).alias("reg_vol"),
            pl.len().cast(pl.Int64).alias("total_vol"),
            cents().filter(ANON).sum().alias("anon_rev"),
            cents().filter(REG).sum().alias("reg_rev"),
            cents().sum().alias("total_rev"),
        ])
        .with_columns([
            pl.when(pl.col("_known"))
            .then(pl.lit(known_label))
            .otherwise(pl.lit(missing_label))
            .alias(status_column),
            share_pct("anon_vol").alias("anon_vol_share_pct"),
            share_pct("reg_vol").alias("reg_vol_share_pct"),
            share_pct("total_vol").alias("total_vol_share_pct"),
            share_pct("anon_rev").alias("anon_rev_share_pct"),
            share_pct("reg_rev").alias("reg_rev_share_pct"),
            share_pct("total_rev").alias("total_rev_share_pct"),
            average("anon_rev", "anon_vol").alias("anon_aov"),
            average("reg_rev", "reg_vol").alias("reg_aov"),
        ])
        .sort(["total_rev", key], descending=[True, False])
        .select([
            key,
            status_column,
            "anon_vol",
            "reg_vol",
            "total_vol",
            "anon_vol_share_pct",
            "reg_vol_share_pct",
            "total_vol_share_pct",
            money("anon_rev").alias("anon_rev"),
            money("reg_rev").alias("reg_rev"),
            money("total_rev").alias("total_rev"),
            "anon_rev_share_pct",
            "reg_rev_share_pct",
            "total_rev_share_pct",
            "anon_aov",
            "reg_aov",
        ])
    )


def _status_mix(
    view: pl.LazyFrame,
    flag: str,
    status_column: str,
    known_label: str,
    missing_label: str,
) -> pl.LazyFrame:
    """Each user type's share of basket and share of wallet by label status"""
    return (
        view.with_columns(
            pl.when(pl.col(flag))
            .then(pl.lit(known_label))
            .otherwise(pl.lit(missing_label))
            .alias(status_column)
        )
        .group_by(status_column)
        .agg([
            ANON.sum().cast(pl.Int64).alias("_anon_vol"),
            REG.sum().cast(pl.Int64).alias("_reg_vol"),
            cents().filter(ANON).sum().alias("_anon_rev"),
            cents().filter(REG).sum().alias("_reg_rev"),
        ])
        .with_columns([
            share_pct("_anon_vol").alias("anon_vol_share_pct"),
            share_pct("_reg_vol").alias("reg_vol_share_pct"),
            share_pct("_anon_rev").alias("anon_rev_share_pct"),
            share_pct("_reg_rev").alias("reg_rev_share_pct"),
        ])
        .sort(status_column)
        .select([
            status_column,
            "anon_vol_share_pct",
            "reg_vol_share_pct",
            "anon_rev_share_pct",
            "reg_rev_share_pct",
        ])
    )


def category_master(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    return _master(view, "category_code", "category_labelled", "label_status", "Labelled", "Unlabelled")


def brand_master(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    return _master(view, "brand", "brand_known", "brand_status", "Known", "Unknown")


def category_label_mix(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    return _status_mix(view, "category_labelled", "category_status", "Labelled", "Unlabelled")


def brand_status_mix(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    return _status_mix(view, "brand_known", "brand_status", "Known", "Unknown")


def unlabelled_categories(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Top sentinel-labelled categories by revenue, with their dominant brand"""
    hidden = view.filter(~pl.col("category_labelled"))
    anchors = _most_frequent(hidden, "category_code", "brand", "anchor_brand")

    return (
        hidden.group_by("category_code")
        .agg(_volume_revenue("transaction_volume", "total_revenue"))
        .with_columns([
            share_pct("total_revenue").alias("share_of_hidden_revenue"),
            average("total_revenue", "transaction_volume").alias("category_aov"),
        ])
        .join(anchors, on="category_code", how="left")
        .sort(["total_revenue", "category_code"], descending=[True, False])
        .head(ctx.settings.unlabelled_top_n)
        .select([
            "category_code",
            "transaction_volume",
            money("total_revenue").alias("total_revenue"),
            "category_aov",
            "anchor_brand",
            "share_of_hidden_revenue",
        ])
    )


def unknown_brands(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """Top unknown-brand products by revenue, with their dominant category as a hint"""
    unknown = view.filter(~pl.col("brand_known"))
    hints = _most_frequent(unknown, "brand", "category_code", "category_hint")

    return (
        unknown.group_by("brand")
        .agg(_volume_revenue("transaction_volume", "total_revenue"))
        .with_columns([
            share_pct("total_revenue").alias("share_of_unknown_revenue"),
            average("total_revenue", "transaction_volume").alias("product_aov"),
        ])
        .join(hints, on="brand", how="left")
        .sort(["total_revenue", "brand"], descending=[True, False])
        .head(ctx.settings.unknown_brand_top_n)
        .select([
            "brand",
            "transaction_volume",
            money("total_revenue").alias("total_revenue"),
            "product_aov",
            "category_hint",
            "share_of_unknown_revenue",
        ])
    )


# =============================================================================
# UNIFIED STRATEGY PORTFOLIO
# =============================================================================

def _segments(lf: pl.LazyFrame, dimension: str, segment: pl.Expr) -> pl.LazyFrame:
    return (
        lf.with_columns(segment.alias("segment_name"))
        .group_by("segment_name")
        .agg(_volume_revenue("vol", "rev"))
        .select([
            pl.lit(dimension).alias("dimension"),
            pl.col("segment_name").cast(pl.Utf8),
            "vol",
            "rev",
        ])
    )


def strategic_portfolio(view: pl.LazyFrame, ctx: ReportContext) -> pl.LazyFrame:
    """
    Category, brand and time-window segments with Efficiency Index and quadrant.

    Shares are taken against grand totals over the whole view; time-window
    segments only cover valid years. Segments at or below the revenue-share
    threshold are dropped. Shares and AOVs are compared by cross-multiplying
    integer totals, so equal ratios tie exactly.
    """
    totals = view.select(_volume_revenue("_total_vol", "_total_rev"))

    unified = pl.concat([
        _segments(view, "Category", pl.col("category_code")),
        _segments(view, "Brand", pl.col("brand")),
        _segments(ctx.temporal(view), "Time Window", time_window_expr(ctx.settings)),
    ])

    threshold = Fraction(str(ctx.settings.revenue_share_threshold_pct)) / 100

    return (
        unified.join(totals, how="cross")
        .filter(
            compare_fractions(
                "rev", "_total_rev", pl.lit(threshold.numerator), pl.lit(threshold.denominator)
            ) > 0
        )
        .with_columns([
            exact_ratio("vol", "_total_vol", scale=100).alias("vol_share_pct"),
            exact_ratio("rev", "_total_rev", scale=100).alias("rev_share_pct"),
            average("rev", "vol").alias("segment_aov"),
            efficiency_index("rev", "_total_rev", "vol", "_total_vol").alias("efficiency_index"),
            quadrant_expr(
                compare_fractions("rev", "_total_rev", "vol", "_total_vol"),
                compare_fractions("rev", "vol", "_total_rev", "_total_vol"),
            ).alias("strategic_role"),
        ])
        .sort(["dimension", "rev", "segment_name"], descending=[False, True, False])
        .select([
            "dimension",
            "segment_name",
            pl.col("vol").alias("transaction_count"),
            money("rev").alias("total_revenue"),
            "segment_aov",
            "vol_share_pct",
            "rev_share_pct",
            "efficiency_index",
            "strategic_role",
        ])
    )


# =============================================================================
# REGISTRY
# =============================================================================

REPORTS: Dict[str, ReportDefinition] = {
    d.name: d
    for d in [
        ReportDefinition("user_segmentation", user_segmentation, "01_user_segmentation_summary",
                         description="User-type segmentation summary"),
        ReportDefinition("monthly_seasonality", monthly_seasonality, "02_monthly_seasonality_check",
                         description="Monthly seasonality by user type"),
        ReportDefinition("payday", payday, "03_payday_analysis",
                         description="Day-of-month pattern"),
        ReportDefinition("weekday_rhythm", weekday_rhythm, "04_weekday_sales_rhythm",
                         description="Weekday rhythm by user type"),
        ReportDefinition("hourly_peaks", hourly_peaks, "05_hourly_analysis",
                         description="Hourly peaks and premium windows"),
        ReportDefinition("category_master", category_master, "06_category_master",
                         description="Category performance by user type"),
        ReportDefinition("unlabelled_categories", unlabelled_categories, "07_unlabelled_categories",
                         description="Top unlabelled categories"),
        ReportDefinition("brand_master", brand_master, "08_brand_master",
                         description="Brand performance by user type"),
        ReportDefinition("unknown_brands", unknown_brands, "09_unknown_brands",
                         description="Top unknown brands"),
        ReportDefinition("strategic_portfolio", strategic_portfolio, "10_unified_strategy_portfolio",
                         description="Unified strategic portfolio"),
        ReportDefinition("overall_metrics", overall_metrics,
                         description="Grand totals and global AOV"),
        ReportDefinition("category_label_mix", category_label_mix,
                         description="Labelled vs unlabelled share of basket and wallet"),
        ReportDefinition("brand_status_mix", brand_status_mix,
                         description="Known vs unknown share of basket and wallet"),
    ]
}

# Reports written by a default run, in export order
DEFAULT_REPORTS: List[str] = sorted(
    (name for name, d in REPORTS.items() if d.export_name),
    key=lambda name: REPORTS[name].export_name,
)
