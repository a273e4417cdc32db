"""
Overlap rules for sessions and contract windows.

Intervals are half-open: ``[start, end)``. Back-to-back intervals that only
share an endpoint do not overlap.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Iterable, NamedTuple, Optional, Union

from mathbridge.domain.weekdays import WeekdayMask


class Interval(NamedTuple):
    id: Optional[str]
    start: Any
    end: Any


def intervals_overlap(start_a: Any, end_a: Any, start_b: Any, end_b: Any) -> bool:
    return start_a < end_b and start_b < end_a


def has_overlap(
    candidate_start: Any,
    candidate_end: Any,
    existing: Iterable[Interval],
    exclude_id: Optional[str] = None,
) -> bool:
    """True if the candidate overlaps any existing interval other than ``exclude_id``."""
    return find_overlapping(candidate_start, candidate_end, existing, exclude_id) is not None


def find_overlapping(
    candidate_start: Any,
    candidate_end: Any,
    existing: Iterable[Interval],
    exclude_id: Optional[str] = None,
) -> Optional[Interval]:
    for interval in existing:
        if exclude_id is not None and interval.id == exclude_id:
            continue
        if intervals_overlap(candidate_start, candidate_end, interval.start, interval.end):
            return interval
    return None


def date_ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Inclusive calendar ranges: sharing a single day counts as overlap."""
    return start_a <= end_b and start_b <= end_a


def contract_windows_conflict(
    mask_a: Union[int, WeekdayMask],
    dates_a: tuple[date, date],
    times_a: tuple[time, time],
    mask_b: Union[int, WeekdayMask],
    dates_b: tuple[date, date],
    times_b: tuple[time, time],
) -> bool:
    """
    Two weekly schedules clash only if they share a weekday, their date ranges
    overlap and their daily time windows overlap.
    """
    if not (int(mask_a) & int(mask_b)):
        return False
    if not date_ranges_overlap(dates_a[0], dates_a[1], dates_b[0], dates_b[1]):
        return False
    return intervals_overlap(times_a[0], times_a[1], times_b[0], times_b[1])
