"""
Batch Data Loader

Batch ingestion of transaction exports (CSV or Parquet) into the raw
transaction frame.
Supports:
- Explicit parsing of every field against the raw schema
- Row-level rejection with a dead-letter file per input
- Multiple batches concatenated in input order, without de-duplication
- Audit logging
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import polars as pl
import structlog
from pydantic import BaseModel

from transaction_insights.config import get_settings
from transaction_insights.exceptions import IngestionError
from transaction_insights.schemas import PRICE_DTYPE, RAW_COLUMNS, RAW_SCHEMA, empty_raw_frame

logger = structlog.get_logger(__name__)

# user_id, category_code and brand may legitimately be missing
REQUIRED_COLUMNS = ["event_time", "order_id", "product_id", "category_id", "price"]
TYPED_COLUMNS = ["user_id", "event_time", "order_id", "product_id", "category_id", "price"]

AWARE_FORMAT = "%Y-%m-%d %H:%M:%S%z"
NAIVE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Plain decimal with at most two fractional digits; anything else is rejected
PRICE_PATTERN = r"^-?\d{1,10}(\.\d{1,2})?$"


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    PARQUET = "parquet"


class LoadStatus(str, Enum):
    """Batch load status"""
    COMPLETED = "completed"
    PARTIAL = "partial"


@dataclass
class BatchFileConfig:
    """Configuration for batch file loading"""
    file_path: Union[str, Path]
    file_format: Optional[FileFormat] = None
    delimiter: str = ","
    encoding: str = "utf8"
    null_values: List[str] = field(default_factory=lambda: ["", "NULL", "null", "None", "NA", "N/A"])

    def __post_init__(self):
        self.file_path = Path(self.file_path)
        if self.file_format is None:
            suffix = self.file_path.suffix.lstrip(".").lower()
            self.file_format = FileFormat.PARQUET if suffix == "parquet" else FileFormat.CSV


class LoadResult(BaseModel):
    """Result of a batch load operation"""
    file_path: str
    status: LoadStatus
    rows_read: int = 0
    rows_loaded: int = 0
    rows_rejected: int = 0
    dead_letter_file: Optional[str] = None
    load_duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    file_hash: Optional[str] = None


@dataclass
class BatchLoad:
    """Concatenated raw frame plus one result per input file"""
    frame: pl.DataFrame
    results: List[LoadResult]

    @property
    def rows_loaded(self) -> int:
        return sum(r.rows_loaded for r in self.results)

    @property
    def rows_rejected(self) -> int:
        return sum(r.rows_rejected for r in self.results)


def parse_event_time(column: str = "event_time") -> pl.Expr:
    """
    Parse export timestamps to UTC instants.

    Accepts "2020-04-24 11:50:39 UTC", "2020-04-24 11:50:39+00:00",
    "2020-04-24 11:50:39+0000" and naive values, which are taken as UTC.
    Unparsable values become null.
    """
    text = (
        pl.col(column)
        .str.strip_chars()
        .str.replace(r"\s*UTC$", "+0000")
        .str.replace(r"([+-]\d{2}):(\d{2})$", "${1}${2}")
    )
    aware = text.str.to_datetime(format=AWARE_FORMAT, time_unit="us", strict=False)
    naive = (
        text.str.to_datetime(format=NAIVE_FORMAT, time_unit="us", strict=False)
        .dt.replace_time_zone("UTC")
    )
    return pl.coalesce(aware.dt.convert_time_zone("UTC"), naive)


def parse_price(column: str = "price") -> pl.Expr:
    """Parse prices to Decimal(12, 2); values that are not plain 2-digit decimals become null"""
    text = pl.col(column).str.strip_chars()
    return pl.when(text.str.contains(PRICE_PATTERN)).then(text).cast(PRICE_DTYPE, strict=False)


def _parse_expr(column: str) -> pl.Expr:
    if column == "event_time":
        return parse_event_time(column)
    if column == "price":
        return parse_price(column)
    dtype = RAW_SCHEMA[column]
    if dtype == pl.Utf8:
        return pl.col(column)
    return pl.col(column).str.strip_chars().cast(dtype, strict=False)


class BatchLoader:
    """
    Batch loader for transaction exports.

    Every row is parsed independently. A row whose typed field cannot be
    parsed, or whose required field is missing, is rejected and written to
    the dead-letter directory; the rest of the batch still loads. A file
    that cannot be read, or lacks a raw column, fails the whole load.

    Example:
        loader = BatchLoader()
        batch = loader.load_files(["data/raw/2020.csv", "data/raw/2021.csv"])
        batch.frame        # raw transactions, both files
        batch.rows_rejected
    """

    def __init__(self, dead_letter_path: Optional[str] = None, delimiter: Optional[str] = None):
        settings = get_settings()
        self.dead_letter_path = Path(dead_letter_path or settings.data_lake.dead_letter_path)
        self.delimiter = delimiter or settings.data_lake.delimiter

    def _compute_file_hash(self, file_path: Path) -> str:
        """Compute MD5 hash of file for audit"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    def _read_csv(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read CSV with every column as text; parsing happens per field"""
        return pl.read_csv(
            config.file_path,
            separator=config.delimiter,
            encoding=config.encoding,
            null_values=config.null_values,
            infer_schema=False,
        )

    def _read_parquet(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read Parquet and render it as text so both formats share one parser"""
        df = pl.read_parquet(config.file_path)
        exprs = []
        for name, dtype in df.schema.items():
            if name == "event_time" and isinstance(dtype, pl.Datetime):
                ts = pl.col(name)
                ts = ts.dt.convert_time_zone("UTC") if dtype.time_zone else ts.dt.replace_time_zone("UTC")
                exprs.append(ts.dt.strftime(AWARE_FORMAT).alias(name))
            else:
                exprs.append(pl.col(name).cast(pl.Utf8).alias(name))
        return df.select(exprs)

    def _read_file(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read file based on format"""
        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.PARQUET: self._read_parquet,
        }
        reader = readers.get(config.file_format)
        if not reader:
            raise IngestionError(f"Unsupported file format: {config.file_format}")

        if not config.file_path.exists():
            raise IngestionError(f"File not found: {config.file_path}")

        try:
            return reader(config)
        except (OSError, pl.exceptions.PolarsError) as e:
            raise IngestionError(f"Cannot read {config.file_path}: {e}") from e

    def _validate_columns(self, df: pl.DataFrame, config: BatchFileConfig) -> None:
        missing = [c for c in RAW_COLUMNS if c not in df.columns]
        if missing:
            raise IngestionError(f"{config.file_path} is missing columns: {', '.join(missing)}")

    def parse(self, strings: pl.DataFrame) -> Dict[str, pl.DataFrame]:
        """
        Split a text frame into parsed rows and rejected rows.

        Returns:
            {"accepted": frame with RAW_SCHEMA,
             "rejected": original text columns plus _invalid_fields}
        """
        staged = strings.select(RAW_COLUMNS).with_columns([
            _parse_expr(c).alias(f"__{c}") for c in RAW_COLUMNS
        ])

        invalid = {
            c: pl.col(f"__{c}").is_null() & (
                pl.col(c).is_not_null() if c not in REQUIRED_COLUMNS else pl.lit(True)
            )
            for c in TYPED_COLUMNS
        }
        staged = staged.with_columns(
            pl.concat_str(
                [pl.when(cond).then(pl.lit(c)) for c, cond in invalid.items()],
                separator=",",
                ignore_nulls=True,
            ).alias("_invalid_fields")
        )
        is_rejected = pl.any_horizontal(list(invalid.values()))

        accepted = (
            staged.filter(~is_rejected)
            .select([pl.col(f"__{c}").alias(c) for c in RAW_COLUMNS])
            .cast(RAW_SCHEMA)
        )
        rejected = staged.filter(is_rejected).select(RAW_COLUMNS + ["_invalid_fields"])

        return {"accepted": accepted, "rejected": rejected}

    def _write_to_dead_letter(self, df: pl.DataFrame, config: BatchFileConfig) -> Path:
        """Write rejected records to the dead-letter directory"""
        self.dead_letter_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        dead_letter_file = self.dead_letter_path / f"{config.file_path.stem}_{timestamp}.parquet"

        df = df.with_columns([
            pl.lit(str(config.file_path)).alias("_source_file"),
            pl.lit(datetime.utcnow()).alias("_failed_at"),
        ])

        df.write_parquet(dead_letter_file)
        logger.warning(
            "Written rejected records to dead letter queue",
            file=str(dead_letter_file),
            records=len(df),
        )
        return dead_letter_file

    def load(self, config: BatchFileConfig) -> Dict[str, object]:
        """
        Load a single batch file.

        Args:
            config: Batch file configuration

        Returns:
            {"frame": raw transactions, "result": LoadResult}

        Raises:
            IngestionError: File unreadable or missing raw columns
        """
        started_at = datetime.utcnow()
        logger.info("Starting batch load", file=str(config.file_path))

        strings = self._read_file(config)
        self._validate_columns(strings, config)

        parts = self.parse(strings)
        accepted, rejected = parts["accepted"], parts["rejected"]

        dead_letter_file = None
        if len(rejected) > 0:
            dead_letter_file = str(self._write_to_dead_letter(rejected, config))

        completed_at = datetime.utcnow()
        result = LoadResult(
            file_path=str(config.file_path),
            status=LoadStatus.PARTIAL if len(rejected) else LoadStatus.COMPLETED,
            rows_read=len(strings),
            rows_loaded=len(accepted),
            rows_rejected=len(rejected),
            dead_letter_file=dead_letter_file,
            load_duration_seconds=(completed_at - started_at).total_seconds(),
            started_at=started_at,
            completed_at=completed_at,
            file_hash=self._compute_file_hash(config.file_path),
        )

        logger.info(
            "Batch load completed",
            file=str(config.file_path),
            rows_loaded=result.rows_loaded,
            rows_rejected=result.rows_rejected,
            duration_seconds=result.load_duration_seconds,
        )

        return {"frame": accepted, "result": result}

    def load_files(self, paths: Sequence[Union[str, Path]]) -> BatchLoad:
        """
        Load several batch files and concatenate them in the given order.

        Rows are not de-duplicated across files.
        """
        frames = []
        results = []
        for path in paths:
            loaded = self.load(BatchFileConfig(file_path=path, delimiter=self.delimiter))
            frames.append(loaded["frame"])
            results.append(loaded["result"])

        frame = pl.concat(frames, how="vertical") if frames else empty_raw_frame()

        logger.info(
            "Batch files loaded",
            files=len(results),
            rows_loaded=len(frame),
            rows_rejected=sum(r.rows_rejected for r in results),
        )
        return BatchLoad(frame=frame, results=results)

    def load_directory(self, directory: Union[str, Path], pattern: str = "*.csv") -> BatchLoad:
        """Load all matching files from a directory in name order"""
        directory = Path(directory)
        files = sorted(directory.glob(pattern))

        logger.info(
            "Loading directory",
            files=len(files),
            directory=str(directory),
            pattern=pattern,
        )
        return self.load_files(files)
