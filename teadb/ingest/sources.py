"""Change-notification sources for static replay and streaming."""

from __future__ import annotations

import logging
from typing import Callable, Iterator

from pyspark.sql import DataFrame, Row, SparkSession
from pyspark.sql import functions as F
from pyspark.sql import types as T
from pyspark.sql.streaming import StreamingQuery

from teadb.common.models import AssessmentChange
from teadb.ingest.ingestion_service import ASSESSMENT_SCHEMA, assessment_from_row
from teadb.streaming.aggregator import TeaAggregator

logger = logging.getLogger(__name__)

CHANGE_SCHEMA = T.StructType(
    [
        T.StructField("assessment_id", T.StringType(), True),
        T.StructField("before", ASSESSMENT_SCHEMA, True),
        T.StructField("after", ASSESSMENT_SCHEMA, True),
    ]
)


def change_from_row(row: Row) -> AssessmentChange:
    """Decode one notification row; a null image means the document did not exist."""

    assessment_id = row["assessment_id"] or ""
    return AssessmentChange(
        assessment_id=assessment_id,
        before=assessment_from_row(row["before"], assessment_id),
        after=assessment_from_row(row["after"], assessment_id),
    )


def batch_handler(aggregator: TeaAggregator) -> Callable[[DataFrame, int], None]:
    """Build a foreachBatch callback that feeds every change to the aggregator.

    Exceptions are not caught: a failed batch fails the query and is replayed
    from the checkpoint on restart.
    """

    def _process_batch(batch_df: DataFrame, batch_id: int) -> None:
        handled = 0
        for row in batch_df.toLocalIterator():
            aggregator.handle_change(change_from_row(row))
            handled += 1
        if handled:
            logger.info("Batch %d: handled %d change(s)", batch_id, handled)

    return _process_batch


class StaticChangeSource:
    """Replays a newline-delimited JSON change log in file order."""

    def __init__(self, spark: SparkSession, changes_path: str) -> None:
        self.spark = spark
        self.changes_path = changes_path

    def load(self) -> Iterator[AssessmentChange]:
        frame = (
            self.spark.read.schema(CHANGE_SCHEMA)
            .option("allowNonNumericNumbers", "true")
            .json(self.changes_path)
        )
        for row in frame.toLocalIterator():
            yield change_from_row(row)

    def run(self, aggregator: TeaAggregator) -> int:
        handled = 0
        for change in self.load():
            aggregator.handle_change(change)
            handled += 1
        return handled


class FileStreamChangeSource:
    """Structured Streaming source that tails newline-delimited change JSON files."""

    def __init__(
        self,
        spark: SparkSession,
        stream_path: str,
        checkpoint_path: str,
        trigger_seconds: int = 5,
    ) -> None:
        self.spark = spark
        self.stream_path = stream_path
        self.checkpoint_path = checkpoint_path
        self.trigger_seconds = trigger_seconds

    def start(self, aggregator: TeaAggregator) -> StreamingQuery:
        """Begin reading the stream and handling micro-batches via the aggregator."""

        stream = (
            self.spark.readStream.schema(CHANGE_SCHEMA)
            .option("allowNonNumericNumbers", "true")
            .json(self.stream_path)
        )
        query = (
            stream.writeStream.foreachBatch(batch_handler(aggregator))
            .option("checkpointLocation", self.checkpoint_path)
            .trigger(processingTime=f"{self.trigger_seconds} seconds")
            .start()
        )
        return query


class KafkaChangeSource:
    """Structured Streaming source consuming change JSON from Kafka."""

    def __init__(
        self,
        spark: SparkSession,
        bootstrap_servers: str,
        topic: str,
        checkpoint_path: str,
        starting_offsets: str = "latest",
        trigger_seconds: int = 5,
    ) -> None:
        self.spark = spark
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.checkpoint_path = checkpoint_path
        self.starting_offsets = starting_offsets
        self.trigger_seconds = trigger_seconds

    def start(self, aggregator: TeaAggregator) -> StreamingQuery:
        stream = (
            self.spark.readStream.format("kafka")
            .option("kafka.bootstrap.servers", self.bootstrap_servers)
            .option("subscribe", self.topic)
            .option("startingOffsets", self.starting_offsets)
            .load()
        )
        parsed = parse_kafka_values(stream)
        query = (
            parsed.writeStream.foreachBatch(batch_handler(aggregator))
            .option("checkpointLocation", self.checkpoint_path)
            .trigger(processingTime=f"{self.trigger_seconds} seconds")
            .start()
        )
        return query


def parse_kafka_values(frame: DataFrame) -> DataFrame:
    """Decode the Kafka `value` column into change rows."""

    return frame.select(
        F.from_json(
            F.col("value").cast("string"),
            CHANGE_SCHEMA,
            {"allowNonNumericNumbers": "true"},
        ).alias("json")
    ).select("json.*")
