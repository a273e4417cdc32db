"""Weekday bit-set used for contract schedules and their display strings."""

from __future__ import annotations

from datetime import date
from enum import IntEnum
from typing import Iterable, List

from mathbridge.core.exceptions import ValidationException

ALL_DAYS_MASK = 0b1111111


class Weekday(IntEnum):
    """Bit position of each day in a schedule mask. Sunday is bit 0."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        # date.weekday() is Monday=0 .. Sunday=6
        return cls((day.weekday() + 1) % 7)

    @property
    def bit(self) -> int:
        return 1 << int(self)

    @property
    def short_name(self) -> str:
        return self.name[:3].title()


class WeekdayMask:
    """
    Immutable set of weekdays backed by a 7-bit integer.

    ``WeekdayMask(10)`` is Monday and Wednesday.
    """

    __slots__ = ("_value",)

    def __init__(self, value: int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationException(
                "days_of_week must be an integer bit mask",
                code="INVALID_DAYS_OF_WEEK",
                details={"days_of_week": value},
            )
        if value <= 0 or value > ALL_DAYS_MASK:
            raise ValidationException(
                "days_of_week must select at least one day and be at most 127",
                code="INVALID_DAYS_OF_WEEK",
                details={"days_of_week": value},
            )
        self._value = value

    @classmethod
    def of(cls, days: Iterable[Weekday]) -> "WeekdayMask":
        value = 0
        for day in days:
            value |= Weekday(day).bit
        return cls(value)

    @property
    def value(self) -> int:
        return self._value

    def includes(self, day: Weekday) -> bool:
        return bool(self._value & Weekday(day).bit)

    def includes_date(self, day: date) -> bool:
        return self.includes(Weekday.from_date(day))

    def intersects(self, other: "WeekdayMask") -> bool:
        return bool(self._value & other.value)

    def days(self) -> List[Weekday]:
        return [day for day in Weekday if self.includes(day)]

    def display(self) -> str:
        """Comma-separated short names in Sunday-first order, e.g. ``"Mon, Wed"``."""
        return ", ".join(day.short_name for day in self.days())

    def __int__(self) -> int:
        return self._value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WeekdayMask):
            return self._value == other.value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"WeekdayMask({self._value}: {self.display()})"
