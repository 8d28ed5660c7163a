"""
Snapshot Input Loader

Reads the cleaned entity streams (orders, items, products, payments, reviews,
customers) from a snapshot directory. Cleaning and type-casting happen
upstream; this loader only reads the files and enforces the column contract.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import polars as pl
import structlog

from gmv_decomposition.config import get_settings

logger = structlog.get_logger(__name__)


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    PARQUET = "parquet"


class InputContractError(ValueError):
    """An input stream is missing or lacks a required column"""

    def __init__(self, stream: str, missing: List[str]):
        self.stream = stream
        self.missing = missing
        super().__init__(f"Input stream '{stream}' is missing columns: {', '.join(missing)}")


REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "orders": [
        "order_id",
        "customer_id",
        "status",
        "purchase_ts",
        "delivered_customer_ts",
        "estimated_delivery_ts",
        "year",
        "month",
    ],
    "order_items": ["order_id", "product_id", "price", "freight_value"],
    "products": ["product_id", "category_name"],
    "payments": ["order_id", "payment_type", "payment_installments", "payment_value"],
    "reviews": ["order_id", "review_score", "creation_ts"],
    "customers": ["customer_id", "state"],
}

DATETIME_COLUMNS: Dict[str, List[str]] = {
    "orders": ["purchase_ts", "delivered_customer_ts", "estimated_delivery_ts"],
    "reviews": ["creation_ts"],
}

# Declared dtypes; an all-null column arrives untyped (pl.Null) and is cast to these
COLUMN_DTYPES: Dict[str, Dict[str, pl.DataType]] = {
    "orders": {
        "order_id": pl.Utf8,
        "customer_id": pl.Utf8,
        "status": pl.Utf8,
        "purchase_ts": pl.Datetime,
        "delivered_customer_ts": pl.Datetime,
        "estimated_delivery_ts": pl.Datetime,
        "year": pl.Int32,
        "month": pl.Int32,
    },
    "order_items": {
        "order_id": pl.Utf8,
        "product_id": pl.Utf8,
        "price": pl.Float64,
        "freight_value": pl.Float64,
    },
    "products": {"product_id": pl.Utf8, "category_name": pl.Utf8},
    "payments": {
        "order_id": pl.Utf8,
        "payment_sequential": pl.Int64,
        "payment_type": pl.Utf8,
        "payment_installments": pl.Int64,
        "payment_value": pl.Float64,
    },
    "reviews": {
        "order_id": pl.Utf8,
        "review_id": pl.Utf8,
        "review_score": pl.Int64,
        "creation_ts": pl.Datetime,
    },
    "customers": {"customer_id": pl.Utf8, "state": pl.Utf8},
}


def check_columns(stream: str, df: pl.DataFrame) -> None:
    """Raise InputContractError when a stream lacks required columns"""
    missing = [c for c in REQUIRED_COLUMNS[stream] if c not in df.columns]
    if missing:
        raise InputContractError(stream, missing)


def conform_null_columns(stream: str, df: pl.DataFrame) -> pl.DataFrame:
    """Cast untyped all-null columns of a stream to their declared dtype"""
    casts = [
        pl.col(col).cast(dtype)
        for col, dtype in COLUMN_DTYPES[stream].items()
        if col in df.columns and df[col].dtype == pl.Null
    ]
    return df.with_columns(casts) if casts else df


@dataclass(frozen=True)
class InputSnapshot:
    """Immutable snapshot of the six cleaned input streams"""
    orders: pl.DataFrame
    order_items: pl.DataFrame
    products: pl.DataFrame
    payments: pl.DataFrame
    reviews: pl.DataFrame
    customers: pl.DataFrame

    def __post_init__(self) -> None:
        for stream in REQUIRED_COLUMNS:
            df = getattr(self, stream)
            check_columns(stream, df)
            object.__setattr__(self, stream, conform_null_columns(stream, df))

    @property
    def row_counts(self) -> Dict[str, int]:
        return {stream: getattr(self, stream).height for stream in REQUIRED_COLUMNS}


class InputLoader:
    """
    Reads a cleaned input snapshot from disk.

    Each stream lives in ``<input_path>/<stream>.<format>``.

    Example:
        loader = InputLoader("data/cleaned", file_format=FileFormat.PARQUET)
        snapshot = loader.load()
    """

    def __init__(
        self,
        input_path: Optional[Union[str, Path]] = None,
        file_format: Optional[FileFormat] = None,
    ):
        settings = get_settings()
        self.input_path = Path(input_path or settings.data_lake.input_path)
        self.file_format = FileFormat(file_format or settings.data_lake.input_format)

    def _stream_path(self, stream: str) -> Path:
        return self.input_path / f"{stream}.{self.file_format.value}"

    def _read_csv(self, path: Path, stream: str) -> pl.DataFrame:
        """Read CSV file with Polars"""
        df = pl.read_csv(
            path,
            null_values=["", "NULL", "null", "None", "NA", "N/A"],
            try_parse_dates=True,
        )
        # try_parse_dates leaves unparseable or all-null columns as strings
        for col in DATETIME_COLUMNS.get(stream, []):
            if col in df.columns and df[col].dtype == pl.Utf8:
                df = df.with_columns(
                    pl.col(col).str.to_datetime(strict=False).alias(col)
                )
        return df

    def _read_parquet(self, path: Path, stream: str) -> pl.DataFrame:
        """Read Parquet file"""
        return pl.read_parquet(path)

    def read_stream(self, stream: str) -> pl.DataFrame:
        """Read a single entity stream and enforce its column contract"""
        if stream not in REQUIRED_COLUMNS:
            raise ValueError(f"Unknown input stream: {stream}")

        path = self._stream_path(stream)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.PARQUET: self._read_parquet,
        }
        df = readers[self.file_format](path, stream)
        check_columns(stream, df)

        logger.info("Loaded input stream", stream=stream, rows=df.height, file=str(path))
        return df

    def load(self) -> InputSnapshot:
        """Read all six streams into an InputSnapshot"""
        logger.info("Loading input snapshot", path=str(self.input_path), format=self.file_format.value)
        return InputSnapshot(**{stream: self.read_stream(stream) for stream in REQUIRED_COLUMNS})
