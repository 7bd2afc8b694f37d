"""
Gap Classifier
Decides how today's summary is produced from the last known snapshot date.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from .bucketing import dates_after, days_between
from .exceptions import InvalidGapError


class GapKind(str, Enum):
    FIRST_RUN = "first_run"  # no history, today's summary is 0
    DIRECT = "direct"  # yesterday -> today delta stored as today's summary
    BACKFILL = "backfill"  # synthesize every day after last known through today


@dataclass
class GapDecision:
    kind: GapKind
    today: date
    last_known: Optional[date] = None
    gap_days: int = 0
    span: List[date] = field(default_factory=list)

    @property
    def yesterday(self) -> date:
        return self.today - timedelta(days=1)


def classify_gap(
    last_known: Optional[date],
    today: date,
    min_gap_days: int,
    backfill_enabled: bool = True,
) -> GapDecision:
    """
    Classify the gap between the last snapshot date and today

    Raises InvalidGapError when last_known is not strictly before today.
    """
    if last_known is None:
        return GapDecision(kind=GapKind.FIRST_RUN, today=today)

    gap_days = days_between(last_known, today)
    if gap_days <= 0:
        raise InvalidGapError(
            f"Invalid gap for daily summary: last snapshot {last_known} is not before {today}"
        )

    if not backfill_enabled or gap_days < min_gap_days:
        return GapDecision(kind=GapKind.DIRECT, today=today, last_known=last_known, gap_days=gap_days)

    return GapDecision(
        kind=GapKind.BACKFILL,
        today=today,
        last_known=last_known,
        gap_days=gap_days,
        span=dates_after(last_known, gap_days),
    )
