"""
Curated Output Writer

Writes pipeline outputs as parquet. Order facts and waterfalls are sharded
by the configured partition columns (``year=YYYY/month=MM`` by default);
each shard is written on its own. A partitioned table's directory is
cleared before it is written, so a rerun leaves exactly the shards of the
current snapshot.
"""

import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import polars as pl
import structlog

from gmv_decomposition.config import get_settings
from .runner import PipelineResult

logger = structlog.get_logger(__name__)

NULL_PARTITION = "__HIVE_DEFAULT_PARTITION__"

# Partition columns that can be derived from a date column, with label width
DATE_PARTS: Dict[str, int] = {"year": 4, "month": 2, "day": 2}


def _partition_label(value: Any, width: Optional[int]) -> str:
    if value is None:
        return NULL_PARTITION
    if width is None:
        return str(value)
    return f"{int(value):0{width}d}"


class OutputWriter:
    """
    Writes a PipelineResult to the curated zone.

    Example:
        writer = OutputWriter("data/curated", partition_by=["year", "month"])
        paths = writer.write_result(result)
    """

    def __init__(
        self,
        output_path: Optional[Union[str, Path]] = None,
        partition_by: Optional[List[str]] = None,
    ):
        settings = get_settings()
        self.output_path = Path(output_path or settings.data_lake.output_path)
        self.partition_by = list(settings.data_lake.partition_by if partition_by is None else partition_by)

        self.output_path.mkdir(parents=True, exist_ok=True)

    @property
    def partitioned(self) -> bool:
        return bool(self.partition_by)

    def write_table(self, df: pl.DataFrame, name: str) -> str:
        """Write one unpartitioned table"""
        output_file = self.output_path / f"{name}.parquet"
        df.write_parquet(output_file)
        logger.info("Table written", table=name, rows=df.height, file=str(output_file))
        return str(output_file)

    def _clear_table(self, name: str) -> None:
        """Remove every earlier output of a table, sharded or single-file"""
        table_dir = self.output_path / name
        if table_dir.is_dir():
            shutil.rmtree(table_dir)
            logger.debug("Stale shards removed", table=name, path=str(table_dir))
        (self.output_path / f"{name}.parquet").unlink(missing_ok=True)

    def _partition_keys(self, df: pl.DataFrame, name: str, date_column: Optional[str]) -> List[pl.Expr]:
        keys = []
        for col in self.partition_by:
            if col in df.columns and df.schema[col] not in (pl.Date, pl.Datetime):
                keys.append(pl.col(col).alias(f"_{col}"))
            elif date_column and col in DATE_PARTS:
                keys.append(getattr(pl.col(date_column).dt, col)().alias(f"_{col}"))
            else:
                raise ValueError(f"Cannot partition '{name}' by '{col}'")
        return keys

    def write_partitioned(
        self,
        df: pl.DataFrame,
        name: str,
        date_column: Optional[str] = None,
    ) -> List[str]:
        """
        Write a table sharded by the partition columns.

        Args:
            df: Table to write
            name: Output directory name
            date_column: Date column to derive year, month and day from when
                the table has no plain column of that name

        Raises:
            ValueError: If a partition column is neither in the table nor
                derivable from date_column
        """
        self._clear_table(name)
        if not self.partitioned:
            return [self.write_table(df, name)]

        keys = self._partition_keys(df, name, date_column)
        key_columns = [f"_{col}" for col in self.partition_by]

        paths = []
        for key, shard in df.with_columns(keys).partition_by(key_columns, as_dict=True).items():
            values = key if isinstance(key, tuple) else (key,)
            shard_dir = self.output_path / name
            for col, value in zip(self.partition_by, values):
                shard_dir = shard_dir / f"{col}={_partition_label(value, DATE_PARTS.get(col))}"
            shard_dir.mkdir(parents=True, exist_ok=True)
            output_file = shard_dir / "part-0.parquet"
            shard.drop(key_columns).write_parquet(output_file)
            paths.append(str(output_file))

        logger.info(
            "Partitioned table written",
            table=name,
            rows=df.height,
            shards=len(paths),
            partition_by=self.partition_by,
        )
        return sorted(paths)

    def write_result(self, result: PipelineResult) -> Dict[str, List[str]]:
        """Write facts, monthly tables, waterfalls and drill-down"""
        written: Dict[str, List[str]] = {
            "order_facts": self.write_partitioned(result.facts, "order_facts", date_column="purchase_ts"),
            "monthly_core": [self.write_table(result.core, "monthly_core")],
            "monthly_price_qty": [self.write_table(result.price_qty, "monthly_price_qty")],
        }

        for dim, df in result.segments.items():
            written[f"monthly_by_{dim}"] = [self.write_table(df, f"monthly_by_{dim}")]
        for dim, df in result.price_qty_by_segment.items():
            written[f"monthly_price_qty_by_{dim}"] = [self.write_table(df, f"monthly_price_qty_by_{dim}")]

        for family, df in result.waterfalls.items():
            name = f"waterfall_{family}"
            written[name] = self.write_partitioned(df, name, date_column="month")

        if result.drilldown is not None:
            written["drilldown"] = [self.write_table(result.drilldown, "drilldown")]

        return written
