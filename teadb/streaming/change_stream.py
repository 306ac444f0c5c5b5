"""Entry point for the tea aggregate maintenance job."""

from __future__ import annotations

import argparse
import logging

from pyspark.sql import SparkSession

from teadb.common.config import AppConfig, load_config
from teadb.ingest.ingestion_service import IngestionService
from teadb.ingest.sources import FileStreamChangeSource, KafkaChangeSource, StaticChangeSource
from teadb.streaming.aggregator import TeaAggregator
from teadb.streaming.persistence import ParquetAggregateStore


def build_spark(config: AppConfig) -> SparkSession:
    return (
        SparkSession.builder.appName(config.spark.app_name)
        .master(config.spark.master)
        .config("spark.sql.shuffle.partitions", str(config.spark.shuffle_partitions))
        .getOrCreate()
    )


def build_aggregator(spark: SparkSession, config: AppConfig) -> TeaAggregator:
    reader = IngestionService(
        spark,
        assessments_path=config.dataset.assessments_path,
        data_format=config.dataset.assessments_format,
    )
    writer = ParquetAggregateStore(spark, config.output.base_path)
    return TeaAggregator(reader, writer)


def main() -> None:
    parser = argparse.ArgumentParser(description="Keep per-tea assessment aggregates up to date.")
    parser.add_argument("--config", default="config/local.yaml", help="Path to YAML config.")
    args = parser.parse_args()

    config = load_config(args.config)
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    spark = build_spark(config)
    try:
        aggregator = build_aggregator(spark, config)

        if config.source.type == "static":
            if not config.source.changes_path:
                raise ValueError("changes_path must be set for static mode.")
            handled = StaticChangeSource(spark, config.source.changes_path).run(aggregator)
            print(f"Replayed {handled} change(s); aggregates in {config.output.base_path}")
        elif config.source.type == "file_stream":
            if not config.source.stream_path or not config.source.checkpoint_path:
                raise ValueError("stream_path and checkpoint_path must be set for file_stream mode.")
            source = FileStreamChangeSource(
                spark,
                stream_path=config.source.stream_path,
                checkpoint_path=config.source.checkpoint_path,
                trigger_seconds=config.source.trigger_seconds,
            )
            query = source.start(aggregator)
            print("Started streaming file source. Waiting for termination...")
            query.awaitTermination()
        elif config.source.type == "kafka":
            if not config.source.kafka_bootstrap_servers or not config.source.kafka_topic or not config.source.checkpoint_path:
                raise ValueError("kafka_bootstrap_servers, kafka_topic, and checkpoint_path must be set for kafka mode.")
            source = KafkaChangeSource(
                spark,
                bootstrap_servers=config.source.kafka_bootstrap_servers,
                topic=config.source.kafka_topic,
                checkpoint_path=config.source.checkpoint_path,
                starting_offsets=config.source.kafka_starting_offsets,
                trigger_seconds=config.source.trigger_seconds,
            )
            query = source.start(aggregator)
            print("Started Kafka source. Waiting for termination...")
            query.awaitTermination()
        else:
            raise ValueError(f"Unknown source.type: {config.source.type}")
    finally:
        spark.stop()


if __name__ == "__main__":
    main()
