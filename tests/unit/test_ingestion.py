"""
Unit Tests - Batch Ingestion
"""
from datetime import datetime, timezone
from decimal import Decimal

import polars as pl
import pytest

from transaction_insights.exceptions import IngestionError
from transaction_insights.ingestion import BatchFileConfig, BatchLoader
from transaction_insights.ingestion.batch_loader import FileFormat, LoadStatus
from transaction_insights.schemas import RAW_SCHEMA


@pytest.fixture
def loader(tmp_path) -> BatchLoader:
    return BatchLoader(dead_letter_path=str(tmp_path / "dead_letter"))


class TestBatchLoader:
    """Tests for BatchLoader"""

    def test_parses_export_layout(self, loader, sample_csv):
        path = sample_csv("batch.csv", [
            "1515915625353226922,2020-04-24 11:50:39 UTC,2294359932054536986,1515966223509089906,"
            "2268105426648170900,electronics.tablet,samsung,162.01",
            ",2020-04-24 14:37:43 UTC,2294444024058086220,2273948319057183658,"
            "2268105430162997728,,huawei,77.52",
        ])

        batch = loader.load_files([path])
        df = batch.frame

        assert dict(df.schema) == RAW_SCHEMA
        assert df.height == 2
        assert batch.rows_rejected == 0
        assert df["event_time"][0] == datetime(2020, 4, 24, 11, 50, 39, tzinfo=timezone.utc)
        assert df["user_id"][1] is None
        assert df["category_code"][1] is None
        assert df["price"][0] == Decimal("162.01")
        assert batch.results[0].status == LoadStatus.COMPLETED

    def test_timestamp_variants(self, loader, sample_csv):
        path = sample_csv("variants.csv", [
            "1,2020-04-24 11:50:39 UTC,1,1,1,,,1.00",
            "1,2020-04-24 11:50:39+00:00,2,1,1,,,1.00",
            "1,2020-04-24 13:50:39+02:00,3,1,1,,,1.00",
            "1,2020-04-24 11:50:39,4,1,1,,,1.00",
        ])

        df = loader.load_files([path]).frame

        expected = datetime(2020, 4, 24, 11, 50, 39, tzinfo=timezone.utc)
        assert df["event_time"].to_list() == [expected] * 4

    def test_bad_rows_rejected_individually(self, loader, sample_csv, tmp_path):
        path = sample_csv("dirty.csv", [
            "1,2020-04-24 11:50:39 UTC,1,1,1,,,10.00",
            "2,not a timestamp,2,1,1,,,10.00",
            "3,2020-04-24 11:50:39 UTC,3,1,1,,,abc",
            "4,2020-04-24 11:50:39 UTC,,1,1,,,10.00",
            "x,2020-04-24 11:50:39 UTC,5,1,1,,,10.00",
            ",2020-04-24 11:50:39 UTC,6,1,1,,,10.00",
        ])

        batch = loader.load_files([path])
        result = batch.results[0]

        assert batch.frame["order_id"].to_list() == [1, 6]
        assert result.rows_read == 6
        assert result.rows_loaded == 2
        assert result.rows_rejected == 4
        assert result.status == LoadStatus.PARTIAL

        dead = pl.read_parquet(result.dead_letter_file)
        assert dead.height == 4
        assert dead["_invalid_fields"].to_list() == ["event_time", "price", "order_id", "user_id"]

    def test_prices_must_be_two_digit_decimals(self, loader, sample_csv):
        path = sample_csv("prices.csv", [
            "1,2020-04-24 11:50:39 UTC,1,1,1,,,7",
            "1,2020-04-24 11:50:39 UTC,2,1,1,,,7.5",
            "1,2020-04-24 11:50:39 UTC,3,1,1,,,1.234",
            "1,2020-04-24 11:50:39 UTC,4,1,1,,,1e3",
            "1,2020-04-24 11:50:39 UTC,5,1,1,,,\"12,50\"",
        ])

        batch = loader.load_files([path])

        assert batch.frame["order_id"].to_list() == [1, 2]
        assert batch.frame["price"].to_list() == [Decimal("7.00"), Decimal("7.50")]
        assert batch.rows_rejected == 3

    def test_batches_concatenated_without_dedup(self, loader, sample_csv):
        line = "1,2020-04-24 11:50:39 UTC,1,1,1,a,b,10.00"
        first = sample_csv("a.csv", [line])
        second = sample_csv("b.csv", [line, "2,2021-01-01 00:00:00 UTC,2,2,2,a,b,5.00"])

        batch = loader.load_files([first, second])

        assert batch.frame.height == 3
        assert batch.frame["order_id"].to_list() == [1, 1, 2]
        assert len(batch.results) == 2

    def test_extra_columns_ignored(self, loader, tmp_path):
        path = tmp_path / "indexed.csv"
        path.write_text(
            "serial_number,user_id,event_time,order_id,product_id,category_id,category_code,brand,price\n"
            "0,1,2020-04-24 11:50:39 UTC,1,1,1,a,b,10.00\n",
            encoding="utf-8",
        )

        df = loader.load_files([str(path)]).frame

        assert df.columns == list(RAW_SCHEMA)
        assert df.height == 1

    def test_missing_column_fails(self, loader, tmp_path):
        path = tmp_path / "short.csv"
        path.write_text("user_id,event_time\n1,2020-04-24 11:50:39 UTC\n", encoding="utf-8")

        with pytest.raises(IngestionError, match="price"):
            loader.load_files([str(path)])

    def test_missing_file_fails(self, loader, tmp_path):
        with pytest.raises(IngestionError):
            loader.load_files([str(tmp_path / "absent.csv")])

    def test_parquet_input(self, loader, tmp_path, make_raw):
        raw = make_raw([{"order_id": 1}, {"order_id": 2, "user_id": 9}])
        path = tmp_path / "batch.parquet"
        raw.write_parquet(path)

        df = loader.load_files([str(path)]).frame

        assert df.equals(raw)

    def test_format_from_suffix(self, tmp_path):
        assert BatchFileConfig(tmp_path / "x.parquet").file_format == FileFormat.PARQUET
        assert BatchFileConfig(tmp_path / "x.csv").file_format == FileFormat.CSV

    def test_load_directory(self, loader, sample_csv, tmp_path):
        sample_csv("2020.csv", ["1,2020-04-24 11:50:39 UTC,1,1,1,a,b,10.00"])
        sample_csv("2021.csv", ["1,2021-04-24 11:50:39 UTC,2,1,1,a,b,10.00"])

        batch = loader.load_directory(tmp_path)

        assert batch.frame["order_id"].to_list() == [1, 2]
