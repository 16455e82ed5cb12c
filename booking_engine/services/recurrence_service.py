"""Expansion of recurring booking rules into concrete occurrence windows."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Iterator, Optional

from booking_engine.domain.models import RecurrencePattern, RecurrenceRule, TimeWindow
from booking_engine.utils.config import Settings, get_settings


class RecurrenceError(Exception):
    """Base failure for recurrence expansion."""


class SeriesTooLargeError(RecurrenceError):
    """Raised when a rule would produce more occurrences than allowed."""


_FIXED_STEPS = {
    RecurrencePattern.DAILY: timedelta(days=1),
    RecurrencePattern.WEEKLY: timedelta(days=7),
}


def add_months(anchor: datetime, months: int) -> datetime:
    """Advance `anchor` by whole months, clamping the day to the target month's end."""
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))


def _occurrence_start(anchor: datetime, pattern: RecurrencePattern, index: int) -> datetime:
    if pattern is RecurrencePattern.MONTHLY:
        return add_months(anchor, index)
    return anchor + _FIXED_STEPS[pattern] * index


def _iter_windows(first_window: TimeWindow, rule: RecurrenceRule) -> Iterator[TimeWindow]:
    index = 0
    while True:
        start = _occurrence_start(first_window.start, rule.pattern, index)
        if start.date() > rule.until:
            return
        yield first_window.shifted_to(start)
        index += 1


class RecurrenceExpander:
    """Produces the ordered, finite occurrence sequence of a recurrence rule.

    Each occurrence is derived from the anchor window rather than from the
    previous occurrence, so a Jan 31 monthly series clamps to the end of
    February and returns to the 31st in March.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        max_occurrences: Optional[int] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._max_occurrences = (
            max_occurrences
            if max_occurrences is not None
            else self._settings.series_max_occurrences
        )

    @property
    def max_occurrences(self) -> int:
        return self._max_occurrences

    def count(self, first_window: TimeWindow, rule: RecurrenceRule) -> int:
        total = 0
        for _ in _iter_windows(first_window, rule):
            total += 1
            if total > self._max_occurrences:
                raise SeriesTooLargeError(
                    f"recurrence until {rule.until.isoformat()} exceeds the limit of "
                    f"{self._max_occurrences} occurrences"
                )
        return total

    def expand(self, first_window: TimeWindow, rule: RecurrenceRule) -> Iterator[TimeWindow]:
        """Return a fresh lazy iterator over the series.

        The size limit is enforced before the iterator is handed out, so an
        oversized rule fails without yielding anything.
        """
        self.count(first_window, rule)
        return _iter_windows(first_window, rule)
