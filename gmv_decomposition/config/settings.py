"""
GMV Decomposition
Centralized Configuration Management

Configuration is read from environment variables (and an optional ``.env``
file) through Pydantic settings, validated, and cached for the process.
"""

import re
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class SegmentDimension(str, Enum):
    """Segmentation dimensions supported by the mix decomposition"""
    CATEGORY = "category"
    STATE = "state"


class DataLakeSettings(BaseSettings):
    """Snapshot input and curated output locations"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    input_path: str = Field(default="./data/cleaned", description="Cleaned input snapshot directory")
    output_path: str = Field(default="./data/curated", description="Curated output directory")
    input_format: str = Field(default="parquet", description="Input file format: parquet or csv")
    partition_by: List[str] = Field(default=["year", "month"], description="Output partition columns")

    @field_validator("input_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate input format"""
        allowed = ["parquet", "csv"]
        if v.lower() not in allowed:
            raise ValueError(f"Input format must be one of: {allowed}")
        return v.lower()

    @field_validator("partition_by")
    @classmethod
    def validate_partition_by(cls, v: List[str]) -> List[str]:
        """Validate output partition columns"""
        allowed = ["year", "month", "day"]
        unknown = [col for col in v if col not in allowed]
        if unknown:
            raise ValueError(f"Partition columns must be drawn from {allowed}, got {unknown}")
        if len(set(v)) != len(v):
            raise ValueError("Partition columns must not repeat")
        return v


class DecompositionSettings(BaseSettings):
    """Decomposition and drill-down options"""

    model_config = SettingsConfigDict(env_prefix="DECOMP_")

    month_a: Optional[str] = Field(default=None, description="Drill-down base month (YYYY-MM)")
    month_b: Optional[str] = Field(default=None, description="Drill-down comparison month (YYYY-MM)")
    dimension: SegmentDimension = Field(default=SegmentDimension.CATEGORY, description="Segmentation dimension")
    top_n: int = Field(default=10, description="Number of drill-down segments to report")
    drilldown_metric: str = Field(default="unit_price", description="Metric ranked by the drill-down")

    identity_tolerance: float = Field(default=1e-6, description="Relative tolerance for identity checks")
    renormalize_mix_weights: bool = Field(
        default=False,
        description="Renormalize segment weights over the common set",
    )

    delivered_status: str = Field(default="delivered", description="Order status that qualifies for facts")
    unknown_label: str = Field(default="unknown", description="Label for unresolved segments")

    @field_validator("month_a", "month_b")
    @classmethod
    def validate_month(cls, v: Optional[str]) -> Optional[str]:
        """Validate month keys"""
        if v is not None and not MONTH_PATTERN.match(v):
            raise ValueError(f"Month must be formatted as YYYY-MM, got {v!r}")
        return v

    @field_validator("top_n")
    @classmethod
    def validate_top_n(cls, v: int) -> int:
        """top_n must be a positive integer"""
        if v < 1:
            raise ValueError("top_n must be a positive integer")
        return v

    @property
    def has_drilldown_months(self) -> bool:
        """Both drill-down months configured"""
        return self.month_a is not None and self.month_b is not None


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format"""
        allowed = ["json", "text"]
        if v.lower() not in allowed:
            raise ValueError(f"Log format must be one of: {allowed}")
        return v.lower()


class DataQualitySettings(BaseSettings):
    """Data Quality Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    enable_data_quality_checks: bool = Field(
        default=True,
        description="Run input and fact validators",
    )
    enable_consistency_checks: bool = Field(
        default=True,
        description="Verify decomposition identities before emitting results",
    )


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="gmv-decomposition", description="Application name")
    app_env: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    decomposition: DecompositionSettings = Field(default_factory=DecompositionSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    data_quality: DataQualitySettings = Field(default_factory=DataQualitySettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
