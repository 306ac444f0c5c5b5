"""Persist tea aggregates as one Parquet dataset per tea key."""

from __future__ import annotations

import logging
import os
import shutil
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from pyspark.sql import DataFrame, Row, SparkSession
from pyspark.sql import functions as F
from pyspark.sql import types as T

from teadb.common.models import AVG_FIELDS, SCORE_KEYS, TeaAggregate

logger = logging.getLogger(__name__)

AGGREGATE_SCHEMA = T.StructType(
    [T.StructField("tea_id", T.StringType(), False)]
    + [T.StructField(name, T.DoubleType(), True) for name in AVG_FIELDS]
    + [
        T.StructField("assessment_count", T.LongType(), False),
        T.StructField("last_assessed_at", T.TimestampType(), True),
    ]
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ParquetAggregateStore:
    """Upsert tea aggregates into a folder hierarchy keyed by tea id.

    Each tea folder holds versioned single-row datasets. A write goes to a
    staging folder first and is renamed into place once Spark has committed
    it, so a reader always finds the last complete record. The newest version
    wins; older ones are pruned down to one spare for readers still holding
    it. `updated_at` comes from the Spark session clock.
    """

    def __init__(self, spark: SparkSession, base_path: str) -> None:
        self.spark = spark
        self.base_path = Path(base_path) / "tea_aggregates"
        self.staging_path = Path(base_path) / "_staging"

    def upsert(self, aggregate: TeaAggregate) -> None:
        row = (aggregate.tea_id,) + tuple(aggregate.to_document().values())
        frame = self.spark.createDataFrame([row], schema=AGGREGATE_SCHEMA).withColumn(
            "updated_at", F.current_timestamp()
        )
        target = self.path_for(aggregate.tea_id)
        target.mkdir(parents=True, exist_ok=True)
        self.staging_path.mkdir(parents=True, exist_ok=True)

        staging = self.staging_path / uuid.uuid4().hex
        try:
            self._write_frame(frame, staging)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        version = target / f"v{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"
        os.rename(staging, version)
        self._prune(target)
        logger.debug("Committed aggregate for tea %s as %s", aggregate.tea_id, version)

    def load(self, tea_id: str) -> Optional[TeaAggregate]:
        version = _latest_version(self.path_for(tea_id))
        if version is None:
            return None
        rows = _with_epoch_micros(self.spark.read.parquet(str(version))).collect()
        if not rows:
            return None
        return _to_aggregate(rows[0])

    def load_all(self) -> DataFrame:
        """All stored aggregates as one DataFrame (empty when nothing was written)."""

        versions = []
        if self.base_path.exists():
            for tea_dir in sorted(self.base_path.iterdir()):
                latest = _latest_version(tea_dir)
                if latest is not None:
                    versions.append(str(latest))
        if not versions:
            schema = T.StructType(
                AGGREGATE_SCHEMA.fields + [T.StructField("updated_at", T.TimestampType(), True)]
            )
            return self.spark.createDataFrame([], schema=schema)
        return self.spark.read.parquet(*versions)

    def _write_frame(self, frame: DataFrame, path: Path) -> None:
        frame.coalesce(1).write.mode("overwrite").parquet(str(path))

    def _prune(self, target: Path) -> None:
        for stale in _versions(target)[:-2]:
            shutil.rmtree(stale, ignore_errors=True)

    def path_for(self, tea_id: str) -> Path:
        name = quote(tea_id, safe="")
        # Spark skips paths starting with "_" or "." when listing datasets.
        if name[:1] in ("_", "."):
            name = "%{:02X}".format(ord(name[0])) + name[1:]
        return self.base_path / name


def _with_epoch_micros(frame: DataFrame) -> DataFrame:
    # Python-side timestamp conversion uses the local zone; carry instants as integers instead.
    return frame.withColumn(
        "last_assessed_micros", F.expr("unix_micros(last_assessed_at)")
    ).withColumn("updated_micros", F.expr("unix_micros(updated_at)"))


def _from_micros(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return _EPOCH + timedelta(microseconds=int(value))


def _to_aggregate(row: Row) -> TeaAggregate:
    return TeaAggregate(
        tea_id=row["tea_id"],
        averages={key: row[f"avg_{key}"] for key in SCORE_KEYS},
        assessment_count=int(row["assessment_count"]),
        last_assessed_at=_from_micros(row["last_assessed_micros"]),
        updated_at=_from_micros(row["updated_micros"]),
    )


def _versions(tea_dir: Path) -> List[Path]:
    """Committed versions of one tea, oldest first."""

    if not tea_dir.is_dir():
        return []
    return sorted(
        (path for path in tea_dir.iterdir() if path.is_dir() and path.name.startswith("v")),
        key=lambda path: path.name,
    )


def _latest_version(tea_dir: Path) -> Optional[Path]:
    versions = _versions(tea_dir)
    return versions[-1] if versions else None
