"""
Synthetic Data Generator

Generates realistic purchase-line exports for testing and development.
Includes:
- A product catalog with categories and brands
- Registered and anonymous purchases over a year
- Patchy labels: category codes and brands missing at source
- An optional corrupt batch whose timestamps collapsed onto the Unix epoch
"""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import polars as pl
import structlog

from transaction_insights.schemas import PRICE_DTYPE, RAW_SCHEMA

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORY_CODES = [
    "electronics.smartphone",
    "electronics.audio.headphone",
    "electronics.video.tv",
    "computers.notebook",
    "computers.peripherals.mouse",
    "appliances.kitchen.refrigerators",
    "appliances.kitchen.washer",
    "appliances.environment.vacuum",
    "furniture.living_room.sofa",
    "apparel.shoes",
    "kids.toys",
    "sport.bicycle",
]

BRANDS = [
    "samsung", "apple", "xiaomi", "huawei", "lg", "sony",
    "lenovo", "asus", "bosch", "philips", "logitech", "lego",
]

# Price level per category, log-normal around these medians
CATEGORY_PRICE_MEDIANS = dict(zip(
    CATEGORY_CODES,
    [250.0, 40.0, 450.0, 700.0, 15.0, 600.0, 380.0, 120.0, 520.0, 60.0, 25.0, 300.0],
))


# =============================================================================
# GENERATORS
# =============================================================================

class CatalogGenerator:
    """Generate categories and products with their true labels"""

    def __init__(self, random_state: np.random.RandomState):
        self.rng = random_state

    def generate(self, n_products: int = 500) -> pl.DataFrame:
        n_categories = len(CATEGORY_CODES)
        category_ids = 2268105000000000000 + np.cumsum(self.rng.randint(1, 10 ** 6, n_categories))
        category_index = self.rng.randint(0, n_categories, n_products)
        product_ids = 1515966000000000000 + np.cumsum(self.rng.randint(1, 10 ** 6, n_products))

        return pl.DataFrame({
            "product_id": product_ids.astype(np.int64),
            "category_id": category_ids[category_index].astype(np.int64),
            "category_code": [CATEGORY_CODES[i] for i in category_index],
            "brand": self.rng.choice(BRANDS, n_products),
        })


class TransactionGenerator:
    """
    Generate raw purchase lines in the export layout.

    Example:
        generator = TransactionGenerator(seed=42)
        raw = generator.generate(10_000, year=2020)
        corrupt = generator.generate_collapsed(500)
    """

    def __init__(
        self,
        seed: int = 42,
        n_products: int = 500,
        n_users: int = 2000,
        anonymous_rate: float = 0.6,
        missing_category_rate: float = 0.2,
        missing_brand_rate: float = 0.15,
    ):
        self.rng = np.random.RandomState(seed)
        self.catalog = CatalogGenerator(self.rng).generate(n_products)
        self.user_ids = 1515915625000000000 + np.cumsum(self.rng.randint(1, 10 ** 6, n_users))
        self.anonymous_rate = anonymous_rate
        self.missing_category_rate = missing_category_rate
        self.missing_brand_rate = missing_brand_rate
        self._next_order_id = 2294359932054536986

    def _order_ids(self, n: int) -> np.ndarray:
        # A few lines share an order, like a basket
        steps = self.rng.choice([0, 1], size=n, p=[0.2, 0.8])
        steps[0] = 1
        ids = self._next_order_id + np.cumsum(steps)
        self._next_order_id = int(ids[-1]) + 1
        return ids.astype(np.int64)

    def _lines(self, n: int, event_times: pl.Series) -> pl.DataFrame:
        picks = self.catalog[self.rng.randint(0, self.catalog.height, n)]

        medians = np.array([CATEGORY_PRICE_MEDIANS[c] for c in picks["category_code"].to_list()])
        # Whole cents, at least one
        price_cents = np.maximum(np.round(medians * self.rng.lognormal(0.0, 0.5, n) * 100), 1).astype(np.int64)

        anonymous = self.rng.random_sample(n) < self.anonymous_rate
        users = self.rng.choice(self.user_ids, n).astype(np.int64)
        drop_category = self.rng.random_sample(n) < self.missing_category_rate
        drop_brand = self.rng.random_sample(n) < self.missing_brand_rate

        return pl.DataFrame({
            "user_id": pl.Series(users).set(pl.Series(anonymous), None),
            "event_time": event_times,
            "order_id": self._order_ids(n),
            "product_id": picks["product_id"],
            "category_id": picks["category_id"],
            "category_code": picks["category_code"].set(pl.Series(drop_category), None),
            "brand": picks["brand"].set(pl.Series(drop_brand), None),
            "price": pl.Series([Decimal(int(c)).scaleb(-2) for c in price_cents], dtype=PRICE_DTYPE),
        }).cast(RAW_SCHEMA)

    def generate(self, n: int = 10000, year: int = 2020) -> pl.DataFrame:
        """n purchase lines spread over one calendar year, ordered by time"""
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        span = int((end - start).total_seconds())
        seconds = int(start.timestamp()) + np.sort(self.rng.randint(0, span, n)).astype(np.int64)

        event_times = (
            pl.Series("event_time", seconds * 1_000_000)
            .cast(pl.Datetime("us"))
            .dt.replace_time_zone("UTC")
        )
        df = self._lines(n, event_times)
        logger.info("Generated transactions", rows=n, year=year)
        return df

    def generate_collapsed(self, n: int = 500) -> pl.DataFrame:
        """n purchase lines whose timestamps all collapsed onto the Unix epoch"""
        event_times = pl.Series("event_time", [EPOCH] * n, dtype=pl.Datetime("us", "UTC"))
        df = self._lines(n, event_times)
        logger.info("Generated collapsed batch", rows=n)
        return df


def to_export_layout(raw: pl.DataFrame) -> pl.DataFrame:
    """Render raw transactions the way the source exports them"""
    return raw.with_columns(
        pl.col("event_time").dt.strftime("%Y-%m-%d %H:%M:%S UTC").alias("event_time")
    )


class DataGenerator:
    """
    Generate and save a two-batch dataset.

    The first batch covers one year; the second covers the next year plus a
    collapsed-timestamp block, mirroring a historical reload.
    """

    def __init__(self, output_dir: Optional[str] = None, seed: int = 42):
        self.output_dir = Path(output_dir or "./data/raw")
        self.generator = TransactionGenerator(seed=seed)

    def generate_all(
        self,
        rows_per_batch: int = 50000,
        first_year: int = 2020,
        collapsed_rows: int = 1500,
    ) -> Dict[str, pl.DataFrame]:
        first = self.generator.generate(rows_per_batch, year=first_year)
        second = pl.concat([
            self.generator.generate_collapsed(collapsed_rows),
            self.generator.generate(rows_per_batch, year=first_year + 1),
        ])
        return {
            f"transactions_{first_year}": first,
            f"transactions_{first_year + 1}": second,
        }

    def save(self, data: Dict[str, pl.DataFrame]) -> List[Path]:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, df in data.items():
            path = self.output_dir / f"{name}.csv"
            to_export_layout(df).write_csv(path)
            paths.append(path)
            logger.info("Saved batch", file=str(path), rows=len(df))
        return paths
