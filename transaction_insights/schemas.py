"""
Record Schemas

Polars schemas for the three record shapes that flow through the pipeline:
raw (as received), clean (materialized once), and analytical (computed per
query).
"""

from decimal import Decimal
from typing import Union

import polars as pl

ANONYMOUS = "anonymous"
REGISTERED = "registered"

# Fixed-point currency: ten integer digits, two fractional
PRICE_DTYPE = pl.Decimal(12, 2)
CENT = Decimal("0.01")

RAW_SCHEMA = {
    "user_id": pl.Int64,
    "event_time": pl.Datetime("us", "UTC"),
    "order_id": pl.Int64,
    "product_id": pl.Int64,
    "category_id": pl.Int64,
    "category_code": pl.Utf8,
    "brand": pl.Utf8,
    "price": PRICE_DTYPE,
}

RAW_COLUMNS = list(RAW_SCHEMA)

CLEAN_SCHEMA = {
    "id": pl.Int64,
    "user_id": pl.Int64,
    "event_time": pl.Datetime("us"),
    "normalized_event_time": pl.Datetime("us"),
    "order_id": pl.Int64,
    "product_id": pl.Int64,
    "category_id": pl.Int64,
    "category_code": pl.Utf8,
    "brand": pl.Utf8,
    "price": PRICE_DTYPE,
}

CLEAN_COLUMNS = list(CLEAN_SCHEMA)

ANALYTICAL_COLUMNS = [
    "id",
    "user_id",
    "user_type",
    "event_time",
    "normalized_event_time",
    "year",
    "month",
    "day",
    "weekday",
    "hour",
    "order_id",
    "product_id",
    "category_id",
    "category_code",
    "category_labelled",
    "brand",
    "brand_known",
    "price",
]

WEEKDAY_ORDER = {
    "Monday": 1,
    "Tuesday": 2,
    "Wednesday": 3,
    "Thursday": 4,
    "Friday": 5,
    "Saturday": 6,
    "Sunday": 7,
}


def empty_raw_frame() -> pl.DataFrame:
    """Zero-row frame with the raw schema"""
    return pl.DataFrame(schema=RAW_SCHEMA)


def to_price(value: Union[str, int, float, Decimal]) -> Decimal:
    """Price with exactly two fractional digits; floats go through their shortest repr"""
    return Decimal(str(value)).quantize(CENT)
