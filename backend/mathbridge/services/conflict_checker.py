# backend/mathbridge/services/conflict_checker.py
"""
Conflict Checker Service for the MathBridge scheduling core.

Answers the two overlap questions the scheduler asks: does a proposed weekly
schedule clash with the child's other contracts, and is a tutor free for a
given slot. The interval rules live in mathbridge.domain.overlap; this service
feeds them the right rows and turns a clash into the matching exception.
"""

from datetime import date, datetime, time
import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.exceptions import ContractOverlapException, TutorUnavailableException
from ..domain.calendar import SessionSlot
from ..domain.overlap import Interval
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def _clock(value: Union[time, datetime]) -> str:
    return value.strftime("%H:%M")


class ConflictChecker(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.contract_repository = RepositoryFactory.create_contract_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)

    @BaseService.measure_operation("check_child_contract_overlap")
    def check_child_contract_overlap(
        self,
        child_id: str,
        start_date: date,
        end_date: date,
        start_time: time,
        end_time: time,
        days_of_week: int,
        exclude_contract_id: Optional[str] = None,
    ) -> None:
        """Raise ContractOverlapException if the child already has a clashing live contract."""
        conflict = self.contract_repository.find_overlapping_contract_for_child(
            child_id,
            (start_date, end_date),
            (start_time, end_time),
            days_of_week,
            exclude_contract_id,
        )
        if conflict is not None:
            self.logger.info(
                "Contract overlap for child",
                extra={"child_id": child_id, "conflicting_contract_id": conflict.id},
            )
            raise ContractOverlapException(child_id, conflict.id)

    def is_tutor_available(
        self,
        tutor_id: str,
        session_date: date,
        start: Union[time, datetime],
        end: Union[time, datetime],
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        return self.session_repository.is_tutor_available(
            tutor_id, session_date, start, end, exclude_session_id
        )

    def ensure_tutor_available(
        self,
        tutor_id: str,
        session_date: date,
        start: Union[time, datetime],
        end: Union[time, datetime],
        exclude_session_id: Optional[str] = None,
    ) -> None:
        if not self.is_tutor_available(tutor_id, session_date, start, end, exclude_session_id):
            raise TutorUnavailableException(
                tutor_id, session_date.isoformat(), _clock(start), _clock(end)
            )

    @BaseService.measure_operation("find_tutor_conflicts")
    def find_tutor_conflicts(self, tutor_id: str, slots: List[SessionSlot]) -> Dict[date, Interval]:
        return self.session_repository.find_tutor_conflicts(tutor_id, slots)

    def ensure_slots_free_for_tutor(self, tutor_id: str, slots: List[SessionSlot]) -> None:
        """Raise for the earliest generated slot that collides with the tutor's calendar."""
        conflicts = self.find_tutor_conflicts(tutor_id, slots)
        if conflicts:
            first = min(conflicts)
            slot = next(s for s in slots if s.session_date == first)
            raise TutorUnavailableException(
                tutor_id, first.isoformat(), _clock(slot.start), _clock(slot.end)
            )

    def get_available_tutors(
        self,
        candidate_ids: Iterable[Optional[str]],
        session_date: date,
        start: Union[time, datetime],
        end: Union[time, datetime],
        exclude_session_id: Optional[str] = None,
    ) -> List[str]:
        """Candidates (in the given order, blanks and duplicates dropped) free for the slot."""
        available: List[str] = []
        for tutor_id in dict.fromkeys(c for c in candidate_ids if c):
            if self.is_tutor_available(tutor_id, session_date, start, end, exclude_session_id):
                available.append(tutor_id)
        return available
