"""Dataclasses shared between the change sources, stores and the aggregator."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

BODY_KEYS: Tuple[str, ...] = ("thickness", "density", "smoothness", "clarity", "granularity")
AROMA_KEYS: Tuple[str, ...] = ("aroma_length", "delicacy", "continuity", "aftertaste", "refinement")
SCORE_KEYS: Tuple[str, ...] = BODY_KEYS + AROMA_KEYS

AVG_FIELDS: Tuple[str, ...] = tuple(f"avg_{key}" for key in SCORE_KEYS)

_EPOCH_MILLIS = re.compile(r"-?\d+(\.\d+)?([eE][+-]?\d+)?")


@dataclass(frozen=True)
class Assessment:
    """One tasting of a tea; scores keyed by dimension name."""

    assessment_id: str
    tea_id: Optional[str] = None
    scores: Mapping[str, float] = field(default_factory=dict)
    assessed_at: Optional[datetime] = None

    def score(self, key: str) -> Optional[float]:
        return self.scores.get(key)

    @classmethod
    def from_document(cls, assessment_id: str, data: Mapping[str, Any]) -> "Assessment":
        """Build an Assessment from a raw store document.

        Unusable score values are dropped here so that they never contribute
        to an average; the record itself is kept.
        """

        tea_id = data.get("tea_id")
        scores = {}
        for key in SCORE_KEYS:
            value = coerce_score(data.get(key))
            if value is not None:
                scores[key] = value
        return cls(
            assessment_id=str(assessment_id),
            tea_id=None if tea_id is None or tea_id == "" else str(tea_id),
            scores=scores,
            assessed_at=parse_timestamp(data.get("assessed_at")),
        )


@dataclass(frozen=True)
class AssessmentChange:
    """A change notification: the before and after images of one assessment."""

    assessment_id: str
    before: Optional[Assessment] = None
    after: Optional[Assessment] = None


@dataclass(frozen=True)
class TeaAggregate:
    """Derived per-tea summary. `updated_at` is assigned by the store on write."""

    tea_id: str
    averages: Mapping[str, Optional[float]]
    assessment_count: int
    last_assessed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def empty(cls, tea_id: str) -> "TeaAggregate":
        return cls(
            tea_id=tea_id,
            averages={key: None for key in SCORE_KEYS},
            assessment_count=0,
        )

    def to_document(self) -> Dict[str, Any]:
        """Field set written on every upsert; all derived fields are always present."""

        document: Dict[str, Any] = {
            f"avg_{key}": self.averages.get(key) for key in SCORE_KEYS
        }
        document["assessment_count"] = self.assessment_count
        document["last_assessed_at"] = self.last_assessed_at
        return document


def coerce_score(value: Any) -> Optional[float]:
    """Return a finite float for numeric values, None for anything else."""

    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Convert the timestamp encodings a store may hand back into aware UTC datetimes.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings,
    epoch milliseconds and Firestore-style ``{seconds, nanoseconds}`` maps.
    The last two may also arrive as their JSON text, which is what a string
    column holds when the source document stored a number or an object.
    Anything unparseable is treated as missing.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return _from_epoch_seconds(value / 1000.0)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
            return None
        if not isinstance(nanos, (int, float)) or isinstance(nanos, bool):
            return None
        return _from_epoch_seconds(seconds + nanos / 1e9)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.startswith("{"):
            try:
                decoded = json.loads(text)
            except ValueError:
                return None
            return parse_timestamp(decoded) if isinstance(decoded, Mapping) else None
        if _EPOCH_MILLIS.fullmatch(text):
            return parse_timestamp(float(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch_seconds(seconds: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
