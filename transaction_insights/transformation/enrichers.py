"""
Analytical View

Enriches the clean transaction set with everything the reports consume:
- user_type segmentation
- year / month / day / weekday / hour from normalized_event_time
- imputed category_code and brand with traceable sentinel fallbacks

The view is a polars LazyFrame. Nothing is cached: each collect() re-reads
the clean set and the reference maps it was built from.
"""

import re
from typing import Optional, Union

import polars as pl
import structlog

from transaction_insights.config import PipelineSettings, get_settings
from transaction_insights.schemas import ANALYTICAL_COLUMNS, ANONYMOUS, REGISTERED
from transaction_insights.transformation.mappers import ReferenceMap

logger = structlog.get_logger(__name__)

FrameLike = Union[pl.DataFrame, pl.LazyFrame]


def sentinel_expr(template: str, id_column: str) -> pl.Expr:
    """Expression rendering a sentinel label that embeds the row's id"""
    return pl.format(template, pl.col(id_column))


def parse_sentinel(label: Optional[str], template: str) -> Optional[int]:
    """
    Recover the original id embedded in a sentinel label.

    Returns None when ``label`` is a real label rather than a sentinel.
    """
    if label is None:
        return None
    prefix, suffix = template.split("{}")
    match = re.fullmatch(re.escape(prefix) + r"(-?\d+)" + re.escape(suffix), label)
    return int(match.group(1)) if match else None


class DataEnricher:
    """
    Builds the analytical view over a clean transaction set.

    Example:
        enricher = DataEnricher()
        view = enricher.analytical_view(clean_df, category_map, brand_map)
        view.filter(pl.col("user_type") == "registered").collect()
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def add_user_type(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.with_columns(
            pl.when(pl.col("user_id").is_null())
            .then(pl.lit(ANONYMOUS))
            .otherwise(pl.lit(REGISTERED))
            .alias("user_type")
        )

    def add_time_features(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        """Temporal breakdown of normalized_event_time"""
        ts = pl.col("normalized_event_time")
        return lf.with_columns([
            ts.dt.year().cast(pl.Int32).alias("year"),
            ts.dt.month().cast(pl.Int32).alias("month"),
            ts.dt.day().cast(pl.Int32).alias("day"),
            ts.dt.strftime("%A").str.strip_chars().alias("weekday"),
            ts.dt.hour().cast(pl.Int32).alias("hour"),
        ])

    def impute_labels(
        self,
        lf: pl.LazyFrame,
        category_map: ReferenceMap,
        brand_map: ReferenceMap,
    ) -> pl.LazyFrame:
        """
        Fill category_code and brand with: own value, then map lookup, then sentinel.

        Both joins are left joins; a lookup miss is routine.
        """
        lf = (
            lf.join(category_map.frame.lazy(), on="category_id", how="left")
            .join(brand_map.frame.lazy(), on="product_id", how="left")
        )

        return lf.with_columns([
            (pl.col("category_code").is_not_null() | pl.col(category_map.mapped_column).is_not_null())
            .alias("category_labelled"),
            (pl.col("brand").is_not_null() | pl.col(brand_map.mapped_column).is_not_null())
            .alias("brand_known"),
            pl.coalesce(
                pl.col("category_code"),
                pl.col(category_map.mapped_column),
                sentinel_expr(self.settings.unlabelled_category_template, "category_id"),
            ).alias("category_code"),
            pl.coalesce(
                pl.col("brand"),
                pl.col(brand_map.mapped_column),
                sentinel_expr(self.settings.unknown_brand_template, "product_id"),
            ).alias("brand"),
        ])

    def analytical_view(
        self,
        clean: FrameLike,
        category_map: ReferenceMap,
        brand_map: ReferenceMap,
    ) -> pl.LazyFrame:
        """
        Lazy analytical view over the clean set.

        Args:
            clean: Clean transactions (DataFrame or LazyFrame)
            category_map: category_id -> category_code map
            brand_map: product_id -> brand map

        Returns:
            LazyFrame with ANALYTICAL_COLUMNS, ordered by id
        """
        lf = clean.lazy()
        lf = self.add_user_type(lf)
        lf = self.add_time_features(lf)
        lf = self.impute_labels(lf, category_map, brand_map)
        return lf.select(ANALYTICAL_COLUMNS).sort("id")


def analytical_view(
    clean: FrameLike,
    category_map: ReferenceMap,
    brand_map: ReferenceMap,
    settings: Optional[PipelineSettings] = None,
) -> pl.LazyFrame:
    """
    Convenience function to build the analytical view.

    Args:
        clean: Clean transactions
        category_map: Category reference map
        brand_map: Brand reference map
        settings: Optional pipeline settings override

    Returns:
        Lazy analytical view
    """
    return DataEnricher(settings).analytical_view(clean, category_map, brand_map)
