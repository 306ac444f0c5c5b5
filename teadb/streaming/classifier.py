"""Decide which teas need their aggregate recomputed after an assessment change."""

from __future__ import annotations

from typing import FrozenSet, Optional

from teadb.common.models import Assessment


def classify_change(before: Optional[Assessment], after: Optional[Assessment]) -> FrozenSet[str]:
    """Return the tea ids affected by moving from `before` to `after`.

    A deletion or creation touches the single tea of the image that exists.
    An edit touches the union of both teas: one id when the association is
    unchanged, two when the assessment moved, none when neither image has a
    tea. Both images missing is not a valid change and yields nothing.
    """

    before_tea = before.tea_id if before is not None else None
    after_tea = after.tea_id if after is not None else None

    if after is None and before_tea:
        return frozenset((before_tea,))
    if before is None and after_tea:
        return frozenset((after_tea,))
    return frozenset(tea_id for tea_id in (before_tea, after_tea) if tea_id)
