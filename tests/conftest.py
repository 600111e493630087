"""
Test Suite Configuration
"""
from typing import Callable, Dict, List, Optional

import polars as pl
import pytest
import pytest_asyncio

from transaction_insights.config import PipelineSettings, Settings
from transaction_insights.database import close_database, create_tables, init_database
from transaction_insights.schemas import RAW_SCHEMA, to_price

RAW_DEFAULTS = {
    "user_id": None,
    "event_time": "2020-06-01 12:00:00",
    "order_id": 1,
    "product_id": 100,
    "category_id": 10,
    "category_code": None,
    "brand": None,
    "price": 10.0,
}


def build_raw(rows: List[Dict]) -> pl.DataFrame:
    """Raw frame from partial rows; event_time strings are UTC, prices become 2-digit decimals"""
    records = [{**RAW_DEFAULTS, **row} for row in rows]
    for record in records:
        record["price"] = to_price(record["price"])
    text_schema = {**RAW_SCHEMA, "event_time": pl.Utf8}
    return (
        pl.DataFrame(records, schema=text_schema)
        .with_columns(
            pl.col("event_time")
            .str.to_datetime("%Y-%m-%d %H:%M:%S", time_unit="us")
            .dt.replace_time_zone("UTC")
        )
        .cast(RAW_SCHEMA)
    )


@pytest.fixture
def make_raw() -> Callable[[List[Dict]], pl.DataFrame]:
    """Factory for raw transaction frames"""
    return build_raw


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(APP_ENV="testing")


@pytest.fixture
def pipeline_settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def sample_raw_df() -> pl.DataFrame:
    """A year of purchases plus a block collapsed onto the epoch"""
    return build_raw([
        {"user_id": 1, "event_time": "2020-01-06 09:15:00", "order_id": 1, "product_id": 100,
         "category_id": 5, "category_code": "electronics.smartphone", "brand": "samsung", "price": 300.0},
        {"user_id": None, "event_time": "2020-01-07 13:30:00", "order_id": 2, "product_id": 100,
         "category_id": 5, "category_code": None, "brand": None, "price": 280.0},
        {"user_id": 2, "event_time": "2020-02-15 19:45:00", "order_id": 3, "product_id": 200,
         "category_id": 7, "category_code": "kids.toys", "brand": "lego", "price": 25.5},
        {"user_id": None, "event_time": "2020-02-16 02:10:00", "order_id": 4, "product_id": 300,
         "category_id": 99, "category_code": None, "brand": None, "price": 12.0},
        {"user_id": 1, "event_time": "2020-03-01 11:00:00", "order_id": 5, "product_id": 200,
         "category_id": 7, "category_code": None, "brand": "lego", "price": 30.0},
        {"user_id": None, "event_time": "1970-01-01 00:00:00", "order_id": 6, "product_id": 100,
         "category_id": 5, "category_code": "electronics.smartphone", "brand": "samsung", "price": 310.0},
        {"user_id": None, "event_time": "1970-01-01 00:00:00", "order_id": 7, "product_id": 300,
         "category_id": 99, "category_code": None, "brand": None, "price": 15.0},
        {"user_id": 3, "event_time": "1970-01-01 00:00:00", "order_id": 8, "product_id": 200,
         "category_id": 7, "category_code": "kids.toys", "brand": "lego", "price": 20.0},
    ])


@pytest.fixture
def sample_csv(tmp_path) -> Callable[[str, Optional[List[str]]], str]:
    """Write an export-layout CSV and return its path"""
    header = "user_id,event_time,order_id,product_id,category_id,category_code,brand,price"

    def write(name: str, lines: Optional[List[str]] = None) -> str:
        path = tmp_path / name
        path.write_text("\n".join([header] + (lines or [])) + "\n", encoding="utf-8")
        return str(path)

    return write


@pytest_asyncio.fixture
async def test_db():
    """In-memory database with all tables"""
    engine = await init_database("sqlite+aiosqlite:///:memory:")
    await create_tables()
    yield engine
    await close_database()
