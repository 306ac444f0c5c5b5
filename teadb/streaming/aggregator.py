"""Full recompute of per-tea aggregates from their assessments."""

from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Protocol

from teadb.common.models import SCORE_KEYS, Assessment, AssessmentChange, TeaAggregate, to_utc
from teadb.streaming.classifier import classify_change

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


class AssessmentReader(Protocol):
    def find_by_tea(self, tea_id: str) -> Iterable[Assessment]:
        """Every assessment whose tea_id equals `tea_id`, exhausting the query."""


class AggregateWriter(Protocol):
    def upsert(self, aggregate: TeaAggregate) -> None:
        """Merge-write the aggregate at its tea key and stamp `updated_at`."""


class TeaAggregator:
    """Keeps tea aggregates in step with assessment changes."""

    def __init__(self, reader: AssessmentReader, writer: AggregateWriter) -> None:
        self.reader = reader
        self.writer = writer

    def handle_change(self, change: AssessmentChange) -> List[str]:
        """Recompute every tea touched by `change`, one after another."""

        tea_ids = sorted(classify_change(change.before, change.after))
        if not tea_ids:
            logger.debug("Change to assessment %s touches no tea; skipping", change.assessment_id)
            return []
        for tea_id in tea_ids:
            self.recompute(tea_id)
        return tea_ids

    def recompute(self, tea_id: str) -> TeaAggregate:
        try:
            aggregate = reduce_assessments(tea_id, self.reader.find_by_tea(tea_id))
            self.writer.upsert(aggregate)
        except Exception:
            logger.exception("Recompute of tea %s failed; aggregate left as is", tea_id)
            raise
        logger.info(
            "Recomputed tea %s from %d assessment(s)", tea_id, aggregate.assessment_count
        )
        return aggregate


def reduce_assessments(tea_id: str, assessments: Iterable[Assessment]) -> TeaAggregate:
    """Reduce the current assessment set of one tea into its aggregate.

    Each dimension is divided by the total number of assessments, not by the
    number that scored it. A dimension nobody scored stays None.
    """

    values: Dict[str, List[float]] = {key: [] for key in SCORE_KEYS}
    count = 0
    last_assessed = None

    for assessment in assessments:
        count += 1
        for key in SCORE_KEYS:
            value = assessment.score(key)
            if _contributes(value):
                values[key].append(float(value))
        if assessment.assessed_at is not None:
            assessed_at = to_utc(assessment.assessed_at)
            if last_assessed is None or assessed_at > last_assessed:
                last_assessed = assessed_at

    if count == 0:
        return TeaAggregate.empty(tea_id)

    averages = {
        key: round_half_away(math.fsum(values[key]) / count) if values[key] else None
        for key in SCORE_KEYS
    }
    return TeaAggregate(
        tea_id=tea_id,
        averages=averages,
        assessment_count=count,
        last_assessed_at=last_assessed,
    )


def round_half_away(value: float) -> float:
    """Round to two decimals, ties away from zero (7.125 -> 7.13, -7.125 -> -7.13)."""

    # repr() keeps the shortest decimal form, so 2.675 rounds as written.
    return float(Decimal(repr(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def _contributes(value: Optional[float]) -> bool:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)

