from datetime import datetime, timezone

from teadb.ingest.ingestion_service import IngestionService


def _write_lines(path, lines):
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def test_find_by_tea_returns_only_matching_assessments(spark, tmp_path):
    path = _write_lines(
        tmp_path / "assessments.json",
        [
            '{"assessment_id": "a1", "tea_id": "puerh", "thickness": 7.5, "assessed_at": "2024-03-01T09:00:00Z"}',
            '{"assessment_id": "a2", "tea_id": "puerh", "aroma_length": 4, "delicacy": NaN}',
            '{"assessment_id": "a3", "tea_id": "sencha", "thickness": 2.0}',
            '{"assessment_id": "a4", "thickness": 9.0}',
        ],
    )
    service = IngestionService(spark, path)

    found = sorted(service.find_by_tea("puerh"), key=lambda item: item.assessment_id)

    assert [item.assessment_id for item in found] == ["a1", "a2"]
    assert found[0].scores == {"thickness": 7.5}
    assert found[0].assessed_at == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert found[1].scores == {"aroma_length": 4.0}
    assert found[1].assessed_at is None


def test_find_by_tea_with_no_matches_is_empty(spark, tmp_path):
    path = _write_lines(tmp_path / "assessments.json", ['{"assessment_id": "a1", "tea_id": "puerh"}'])

    assert list(IngestionService(spark, path).find_by_tea("oolong")) == []


def test_parquet_dataset_is_supported(spark, tmp_path):
    rows = [("a1", "puerh", 6.0)]
    spark.createDataFrame(rows, "assessment_id string, tea_id string, clarity double").write.parquet(
        str(tmp_path / "assessments.parquet")
    )
    service = IngestionService(spark, str(tmp_path / "assessments.parquet"), data_format="parquet")

    found = list(service.find_by_tea("puerh"))

    assert len(found) == 1
    assert found[0].scores == {"clarity": 6.0}


def test_json_epoch_millis_and_firestore_maps_are_read(spark, tmp_path):
    expected = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    path = _write_lines(
        tmp_path / "assessments.json",
        [
            '{"assessment_id": "a1", "tea_id": "puerh", "assessed_at": 1714564800000}',
            '{"assessment_id": "a2", "tea_id": "puerh", "assessed_at": {"seconds": 1714564800, "nanoseconds": 0}}',
            '{"assessment_id": "a3", "tea_id": "puerh", "assessed_at": {"_seconds": 1714564800, "_nanoseconds": 0}}',
        ],
    )

    found = list(IngestionService(spark, path).find_by_tea("puerh"))

    assert len(found) == 3
    assert all(item.assessed_at == expected for item in found)


def test_parquet_timestamp_column_is_read(spark, tmp_path):
    assessed = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    target = str(tmp_path / "assessments.parquet")
    spark.createDataFrame(
        [("a1", "puerh", 7.5, assessed), ("a2", "puerh", None, None)],
        "assessment_id string, tea_id string, thickness double, assessed_at timestamp",
    ).write.parquet(target)

    found = sorted(
        IngestionService(spark, target, data_format="parquet").find_by_tea("puerh"),
        key=lambda item: item.assessment_id,
    )

    assert found[0].assessed_at == assessed
    assert found[0].scores == {"thickness": 7.5}
    assert found[1].assessed_at is None


def test_parquet_non_numeric_score_columns_do_not_contribute(spark, tmp_path):
    target = str(tmp_path / "assessments.parquet")
    spark.createDataFrame(
        [("a1", "puerh", "8", 3)],
        "assessment_id string, tea_id string, density string, delicacy int",
    ).write.parquet(target)

    found = list(IngestionService(spark, target, data_format="parquet").find_by_tea("puerh"))

    assert found[0].scores == {"delicacy": 3.0}
