"""
Transaction Insights Configuration

Environment-driven settings, one pydantic-settings section per concern.
Every constant the pipeline exposes at its boundary (time correction,
sentinel templates, display thresholds, time-window boundaries) lives here
rather than in the code that uses it.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Literal, Optional, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LabelPolicy(str, Enum):
    """Representative-label selection policy for the reference maps"""
    MAX = "max"  # Maximum by string ordering
    MOST_FREQUENT = "most_frequent"  # Highest row count, ties broken by max


class DatabaseSettings(BaseSettings):
    """Backing store configuration for raw and clean transaction tables"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    db: str = Field(default="transaction_insights", alias="database", description="Database name")
    user: str = Field(default="insights", description="Database user")
    password: SecretStr = SecretStr("insights")
    echo: bool = Field(default=False, description="Log every SQL statement")
    insert_chunk_size: int = Field(default=5000, description="Rows per bulk insert statement")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """DATABASE_URL when set, otherwise an asyncpg URL from the POSTGRES_* parts"""
        if self.url:
            return self.url
        secret = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{secret}@{self.host}:{self.port}/{self.db}"


class DataLakeSettings(BaseSettings):
    """File locations for raw inputs, rejected rows, and exported reports"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    raw_path: str = Field(default="./data/raw", description="Raw input files")
    dead_letter_path: str = Field(default="./data/raw/dead_letter", description="Rejected row files")
    reports_path: str = Field(default="./data/reports", description="Exported report files")
    delimiter: str = Field(default=",", description="Input file delimiter")


class PipelineSettings(BaseSettings):
    """Cleaning, labelling, and report configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Time normalization
    time_correction_hours: int = Field(
        default=8,
        description="Offset between the source system clock and true UTC",
    )

    # Sentinel labels; "{}" is replaced by the original numeric id
    unlabelled_category_template: str = Field(default="unlabelled (ID: {})")
    unknown_brand_template: str = Field(default="unknown (Prod: {})")

    # Reference maps
    label_policy: LabelPolicy = Field(default=LabelPolicy.MAX)

    # Temporal integrity
    collapsed_year_min_rows: int = Field(
        default=1,
        ge=1,
        description="Minimum rows before a single-instant year is treated as corrupt",
    )

    # Reports
    revenue_share_threshold_pct: float = Field(default=0.5, description="Portfolio display threshold")
    unlabelled_top_n: int = Field(default=15)
    unknown_brand_top_n: int = Field(default=20)
    morning_hours: Tuple[int, int] = Field(default=(5, 10))
    afternoon_hours: Tuple[int, int] = Field(default=(11, 16))
    evening_hours: Tuple[int, int] = Field(default=(17, 22))

    @field_validator("time_correction_hours")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        """Fixed-offset zones only span UTC-12 to UTC+14"""
        if not -12 <= v <= 14:
            raise ValueError(f"Time correction must be between -12 and 14 hours, got {v}")
        return v

    @field_validator("unlabelled_category_template", "unknown_brand_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Sentinel templates must embed the original id exactly once"""
        if v.count("{}") != 1:
            raise ValueError("Sentinel template must contain exactly one '{}' placeholder")
        if not v.split("{}")[0]:
            raise ValueError("Sentinel template must start with a fixed prefix")
        return v

    @field_validator("morning_hours", "afternoon_hours", "evening_hours")
    @classmethod
    def validate_window(cls, v: Tuple[int, int]) -> Tuple[int, int]:
        """Validate hour window boundaries"""
        start, end = v
        if not (0 <= start <= end <= 23):
            raise ValueError(f"Invalid hour window: {v}")
        return v

    @property
    def unlabelled_prefix(self) -> str:
        return self.unlabelled_category_template.split("{}")[0]

    @property
    def unknown_prefix(self) -> str:
        return self.unknown_brand_template.split("{}")[0]

    @property
    def time_windows(self) -> List[Tuple[str, int, int]]:
        """Named hour windows in display order; hours outside all of them are Night"""
        return [
            ("Morning", *self.morning_hours),
            ("Afternoon", *self.afternoon_hours),
            ("Evening", *self.evening_hours),
        ]


class MonitoringSettings(BaseSettings):
    """Log level and renderer"""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: Literal["json", "text"] = Field(default="json", validation_alias="LOG_FORMAT")


class Settings(BaseSettings):
    """Top-level settings; one attribute per section, read from the environment and .env"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development",
        validation_alias="APP_ENV",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env", mode="before")
    @classmethod
    def normalize_env(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v


@lru_cache()
def get_settings() -> Settings:
    """Settings loaded once per process; call ``get_settings.cache_clear()`` after changing the environment"""
    return Settings()
