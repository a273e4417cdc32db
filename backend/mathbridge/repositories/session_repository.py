# backend/mathbridge/repositories/session_repository.py
"""
Lesson Session Repository.

Availability questions are answered against ``scheduled`` sessions only:
done, cancelled and rescheduled rows no longer occupy a tutor's calendar.
"""

from datetime import date, datetime, time
import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import SessionStatus
from ..domain.calendar import SessionSlot
from ..domain.overlap import Interval, find_overlapping
from ..models.session import LessonSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _as_datetime(day: date, value: Union[time, datetime]) -> datetime:
    return value if isinstance(value, datetime) else datetime.combine(day, value)


class SessionRepository(BaseRepository[LessonSession]):
    def __init__(self, db: Session):
        super().__init__(db, LessonSession)

    def get_by_contract(self, contract_id: str) -> List[LessonSession]:
        try:
            return (
                self.db.query(LessonSession)
                .filter(LessonSession.contract_id == contract_id)
                .order_by(LessonSession.start_time, LessonSession.id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list") from exc

    def get_upcoming_for_contract(
        self,
        contract_id: str,
        after: datetime,
        statuses: Iterable[str] = (SessionStatus.SCHEDULED.value,),
    ) -> List[LessonSession]:
        try:
            return (
                self.db.query(LessonSession)
                .filter(
                    LessonSession.contract_id == contract_id,
                    LessonSession.status.in_(list(statuses)),
                    LessonSession.start_time >= after,
                )
                .order_by(LessonSession.start_time)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list upcoming") from exc

    def get_by_tutor(self, tutor_id: str, from_date: Optional[date] = None) -> List[LessonSession]:
        try:
            query = self.db.query(LessonSession).filter(LessonSession.tutor_id == tutor_id)
            if from_date is not None:
                query = query.filter(LessonSession.session_date >= from_date)
            return query.order_by(LessonSession.start_time).all()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list tutor") from exc

    def get_by_child(self, child_id: str, from_date: Optional[date] = None) -> List[LessonSession]:
        try:
            query = self.db.query(LessonSession).filter(LessonSession.child_id == child_id)
            if from_date is not None:
                query = query.filter(LessonSession.session_date >= from_date)
            return query.order_by(LessonSession.start_time).all()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list child") from exc

    def _scheduled_intervals(
        self, tutor_id: str, first_day: date, last_day: date
    ) -> List[Interval]:
        try:
            rows = (
                self.db.query(LessonSession.id, LessonSession.start_time, LessonSession.end_time)
                .filter(
                    LessonSession.tutor_id == tutor_id,
                    LessonSession.status == SessionStatus.SCHEDULED.value,
                    LessonSession.session_date >= first_day,
                    LessonSession.session_date <= last_day,
                )
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail(exc, "load calendar for") from exc
        return [Interval(row.id, row.start_time, row.end_time) for row in rows]

    def find_tutor_conflict(
        self,
        tutor_id: str,
        session_date: date,
        start: Union[time, datetime],
        end: Union[time, datetime],
        exclude_session_id: Optional[str] = None,
    ) -> Optional[Interval]:
        intervals = self._scheduled_intervals(tutor_id, session_date, session_date)
        return find_overlapping(
            _as_datetime(session_date, start),
            _as_datetime(session_date, end),
            intervals,
            exclude_id=exclude_session_id,
        )

    def is_tutor_available(
        self,
        tutor_id: str,
        session_date: date,
        start: Union[time, datetime],
        end: Union[time, datetime],
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        return (
            self.find_tutor_conflict(tutor_id, session_date, start, end, exclude_session_id)
            is None
        )

    def find_tutor_conflicts(
        self, tutor_id: str, slots: List[SessionSlot]
    ) -> Dict[date, Interval]:
        """Map of slot date to the existing session it collides with, loaded in one query."""
        if not slots:
            return {}
        intervals = self._scheduled_intervals(
            tutor_id,
            min(slot.session_date for slot in slots),
            max(slot.session_date for slot in slots),
        )
        conflicts: Dict[date, Interval] = {}
        for slot in slots:
            hit = find_overlapping(slot.start, slot.end, intervals)
            if hit is not None:
                conflicts[slot.session_date] = hit
        return conflicts
