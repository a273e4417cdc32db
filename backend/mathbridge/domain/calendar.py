"""Expansion of a weekly contract schedule into concrete session slots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Union

from mathbridge.core.exceptions import CapacityException, ValidationException
from mathbridge.domain.weekdays import WeekdayMask


@dataclass(frozen=True)
class SessionSlot:
    session_date: date
    start: datetime
    end: datetime


def _as_mask(days_of_week: Union[int, WeekdayMask]) -> WeekdayMask:
    return days_of_week if isinstance(days_of_week, WeekdayMask) else WeekdayMask(days_of_week)


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationException(
            "end_date must not be before start_date",
            code="INVALID_DATE_RANGE",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def count_qualifying_days(
    start_date: date, end_date: date, days_of_week: Union[int, WeekdayMask]
) -> int:
    """Number of dates in the inclusive range whose weekday is in the mask."""
    mask = _as_mask(days_of_week)
    _check_range(start_date, end_date)
    total = 0
    current = start_date
    while current <= end_date:
        if mask.includes_date(current):
            total += 1
        current += timedelta(days=1)
    return total


def generate_sessions(
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    days_of_week: Union[int, WeekdayMask],
    session_count: int,
) -> List[SessionSlot]:
    """
    Produce the first ``session_count`` slots on qualifying weekdays.

    Dates are walked from ``start_date`` to ``end_date`` inclusive, in order.
    Raises CapacityException, and returns nothing, when the range runs out
    before ``session_count`` slots are found.
    """
    mask = _as_mask(days_of_week)
    _check_range(start_date, end_date)
    if session_count <= 0:
        raise ValidationException(
            "session_count must be positive",
            code="INVALID_SESSION_COUNT",
            details={"session_count": session_count},
        )
    if end_time <= start_time:
        raise ValidationException(
            "end_time must be after start_time",
            code="INVALID_TIME_WINDOW",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )

    slots: List[SessionSlot] = []
    current = start_date
    while current <= end_date and len(slots) < session_count:
        if mask.includes_date(current):
            slots.append(
                SessionSlot(
                    session_date=current,
                    start=datetime.combine(current, start_time),
                    end=datetime.combine(current, end_time),
                )
            )
        current += timedelta(days=1)

    if len(slots) < session_count:
        raise CapacityException(
            f"Date range holds only {len(slots)} of {session_count} required sessions",
            code="INSUFFICIENT_CAPACITY",
            details={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "days_of_week": mask.value,
                "available": len(slots),
                "required": session_count,
            },
        )
    return slots
