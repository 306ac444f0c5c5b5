import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pyspark.sql import SparkSession

# Ensure the repository root (which contains the `teadb` package) is importable in tests.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class FakeAssessmentStore:
    """Assessments keyed by id, queried by tea the way the record store is."""

    def __init__(self):
        self.records = {}
        self.queries = []
        self.fail_reads = False

    def put(self, assessment):
        self.records[assessment.assessment_id] = assessment

    def delete(self, assessment_id):
        self.records.pop(assessment_id, None)

    def find_by_tea(self, tea_id):
        self.queries.append(tea_id)
        if self.fail_reads:
            raise ConnectionError("assessment store unavailable")
        for assessment in list(self.records.values()):
            if assessment.tea_id == tea_id:
                yield assessment


class FakeAggregateStore:
    """Merge-upserts documents and stamps `updated_at` from a ticking clock."""

    def __init__(self):
        self.documents = {}
        self.writes = []
        self.fail_writes = False
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def upsert(self, aggregate):
        if self.fail_writes:
            raise ConnectionError("aggregate store unavailable")
        self._clock += timedelta(seconds=1)
        document = self.documents.setdefault(aggregate.tea_id, {})
        document.update(aggregate.to_document())
        document["updated_at"] = self._clock
        self.writes.append(aggregate.tea_id)


@pytest.fixture
def assessment_store():
    return FakeAssessmentStore()


@pytest.fixture
def aggregate_store():
    return FakeAggregateStore()


@pytest.fixture(scope="session")
def spark():
    spark = (
        SparkSession.builder.master("local[1]")
        .appName("teadb-aggregates-tests")
        .config("spark.ui.enabled", "false")
        .config("spark.sql.shuffle.partitions", "1")
        .getOrCreate()
    )
    yield spark
    spark.stop()
