"""Configuration helpers for the tea aggregate job."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

SOURCE_TYPES = ("static", "file_stream", "kafka")


@dataclass(frozen=True)
class DatasetConfig:
    """Where the assessment records live."""

    assessments_path: str
    assessments_format: str = "json"  # json | parquet


@dataclass(frozen=True)
class SourceConfig:
    """Select how change notifications arrive (replayed log vs streaming)."""

    type: str = "static"  # static | file_stream | kafka
    changes_path: Optional[str] = None
    stream_path: Optional[str] = None
    kafka_bootstrap_servers: Optional[str] = None
    kafka_topic: Optional[str] = None
    kafka_starting_offsets: str = "latest"
    checkpoint_path: Optional[str] = None
    trigger_seconds: int = 5


@dataclass(frozen=True)
class OutputConfig:
    """Where tea aggregates are persisted."""

    base_path: str = "./data/output"


@dataclass(frozen=True)
class SparkConfig:
    """Session settings for the local job."""

    app_name: str = "TeaAggregates"
    master: str = "local[*]"
    shuffle_partitions: int = 8


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    """Aggregated configuration model."""

    dataset: DatasetConfig
    source: SourceConfig
    output: OutputConfig
    spark: SparkConfig
    logging: LoggingConfig


def load_config(path: str | Path) -> AppConfig:
    """Parse a YAML config file into an AppConfig dataclass."""

    raw = _load_yaml(path)
    dataset_cfg = raw.get("dataset") or {}
    source_cfg = raw.get("source") or {}
    output_cfg = raw.get("output") or {}
    spark_cfg = raw.get("spark") or {}
    logging_cfg = raw.get("logging") or {}

    dataset = DatasetConfig(
        assessments_path=str(dataset_cfg.get("assessments_path", "./data/assessments.json")),
        assessments_format=str(dataset_cfg.get("assessments_format", "json")).lower(),
    )
    if dataset.assessments_format not in ("json", "parquet"):
        raise ValueError(f"Unknown dataset.assessments_format: {dataset.assessments_format}")

    source = SourceConfig(
        type=str(source_cfg.get("type", "static")),
        changes_path=source_cfg.get("changes_path"),
        stream_path=source_cfg.get("stream_path"),
        kafka_bootstrap_servers=source_cfg.get("kafka_bootstrap_servers"),
        kafka_topic=source_cfg.get("kafka_topic"),
        kafka_starting_offsets=str(source_cfg.get("kafka_starting_offsets", "latest")),
        checkpoint_path=source_cfg.get("checkpoint_path"),
        trigger_seconds=int(source_cfg.get("trigger_seconds", 5)),
    )
    if source.type not in SOURCE_TYPES:
        raise ValueError(f"Unknown source.type: {source.type}")

    output = OutputConfig(base_path=str(output_cfg.get("base_path", "./data/output")))
    spark = SparkConfig(
        app_name=str(spark_cfg.get("app_name", "TeaAggregates")),
        master=str(spark_cfg.get("master", "local[*]")),
        shuffle_partitions=int(spark_cfg.get("shuffle_partitions", 8)),
    )
    log = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())
    return AppConfig(
        dataset=dataset,
        source=source,
        output=output,
        spark=spark,
        logging=log,
    )


def _load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a top-level mapping.")
    return data
