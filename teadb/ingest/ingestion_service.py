"""Load assessment records into Spark DataFrames and answer per-tea queries."""

from __future__ import annotations

from typing import Iterator, Optional

from pyspark.sql import DataFrame, Row, SparkSession
from pyspark.sql import functions as F
from pyspark.sql import types as T

from teadb.common.models import SCORE_KEYS, Assessment

# Scores are read as doubles: strings and other non-numbers come back null,
# NaN survives and is dropped when the Assessment is built.
ASSESSMENT_SCHEMA = T.StructType(
    [
        T.StructField("assessment_id", T.StringType(), True),
        T.StructField("tea_id", T.StringType(), True),
    ]
    + [T.StructField(key, T.DoubleType(), True) for key in SCORE_KEYS]
    + [T.StructField("assessed_at", T.StringType(), True)]
)


class IngestionService:
    """Read-only access to the assessment dataset."""

    def __init__(self, spark: SparkSession, assessments_path: str, data_format: str = "json") -> None:
        self.spark = spark
        self.assessments_path = assessments_path
        self.data_format = data_format

    def load_assessments(self) -> DataFrame:
        if self.data_format == "parquet":
            # Parquet carries its own types; a forced schema would fail on timestamp columns.
            return conform_assessments(self.spark.read.parquet(self.assessments_path))
        df = (
            self.spark.read.schema(ASSESSMENT_SCHEMA)
            .option("allowNonNumericNumbers", "true")
            .json(self.assessments_path)
        )
        return df.select(*ASSESSMENT_SCHEMA.fieldNames())

    def find_by_tea(self, tea_id: str) -> Iterator[Assessment]:
        """Stream every assessment of `tea_id`; the query is drained partition by partition."""

        matches = self.load_assessments().where(F.col("tea_id") == tea_id)
        for row in matches.toLocalIterator():
            yield assessment_from_row(row)

    @staticmethod
    def assessment_schema() -> T.StructType:
        return ASSESSMENT_SCHEMA


def assessment_from_row(row: Optional[Row], assessment_id: Optional[str] = None) -> Optional[Assessment]:
    """Convert a Spark row (or nested struct) into an Assessment; None stays None."""

    if row is None:
        return None
    data = row.asDict()
    key = assessment_id or data.get("assessment_id") or ""
    return Assessment.from_document(key, data)


def conform_assessments(frame: DataFrame) -> DataFrame:
    """Project a self-typed assessment frame onto ASSESSMENT_SCHEMA.

    Missing columns become null. Scores keep only numeric values.
    `assessed_at` becomes text that `parse_timestamp` understands: timestamps
    as epoch milliseconds, structs as JSON.
    """

    present = {field.name: field.dataType for field in frame.schema.fields}
    columns = []
    for field in ASSESSMENT_SCHEMA.fields:
        dtype = present.get(field.name)
        if dtype is None:
            column = F.lit(None).cast(field.dataType)
        elif field.name == "assessed_at":
            column = _timestamp_text(field.name, dtype)
        elif field.name in SCORE_KEYS:
            if isinstance(dtype, T.NumericType):
                column = F.col(field.name).cast(T.DoubleType())
            else:
                column = F.lit(None).cast(T.DoubleType())
        else:
            column = F.col(field.name).cast(field.dataType)
        columns.append(column.alias(field.name))
    return frame.select(*columns)


def _timestamp_text(name: str, dtype: T.DataType):
    if isinstance(dtype, T.TimestampType):
        return F.expr(f"unix_millis(`{name}`)").cast(T.StringType())
    if isinstance(dtype, T.StructType):
        return F.to_json(F.col(name))
    if isinstance(dtype, (T.StringType, T.NumericType, T.DateType)):
        return F.col(name).cast(T.StringType())
    return F.lit(None).cast(T.StringType())
