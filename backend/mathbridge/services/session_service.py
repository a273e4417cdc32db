# backend/mathbridge/services/session_service.py
"""
Session Service for the MathBridge scheduling core.

Day-to-day changes to single lessons: the assigned tutor closes today's
session as done or cancelled, and staff hand a session to another of the
contract's tutors after listing which of them are free. Moving a session to
a new slot goes through RescheduleService instead.
"""

from datetime import date, datetime
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import SessionStatus
from ..core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.scheduling_lock import contract_lock_key, scheduling_lock, tutor_lock_key
from ..domain.transitions import SESSION_STATES
from ..events import EventPublisher, SessionStatusChanged
from ..models.session import LessonSession
from ..repositories.factory import RepositoryFactory
from ..schemas.contract import SessionRead
from .base import BaseService
from .conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)

# Statuses a tutor may close a session with; RESCHEDULED only comes from an approved request
TUTOR_SETTABLE_STATUSES = frozenset({SessionStatus.DONE, SessionStatus.CANCELLED})


class SessionService(BaseService):
    def __init__(
        self,
        db: Session,
        conflict_checker: Optional[ConflictChecker] = None,
        today: Callable[[], date] = date.today,
    ):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.contract_repository = RepositoryFactory.create_contract_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.event_publisher = EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )
        self._today = today

    def _get_session_or_404(self, booking_id: str, for_update: bool = False) -> LessonSession:
        session = self.session_repository.get_by_id(booking_id, for_update=for_update)
        if session is None:
            raise NotFoundException(
                "Session not found",
                code="SESSION_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return session

    @BaseService.measure_operation("update_session_status")
    def update_session_status(
        self, booking_id: str, new_status: str, tutor_id: str
    ) -> LessonSession:
        """
        Let the assigned tutor mark today's session done or cancelled.

        Raises:
            ValidationException: unknown status, or one a tutor cannot set
            ForbiddenException: caller is not the session's tutor
            ConflictException: session is not today, or the move is illegal
        """
        target = SESSION_STATES.parse(new_status)
        if target not in TUTOR_SETTABLE_STATUSES:
            raise ValidationException(
                f"Tutors cannot set a session to '{target.value}'",
                code="INVALID_STATUS",
                details={
                    "status": target.value,
                    "allowed": sorted(status.value for status in TUTOR_SETTABLE_STATUSES),
                },
            )

        session = self._get_session_or_404(booking_id)
        with scheduling_lock(contract_lock_key(session.contract_id)):
            with self.transaction():
                session = self._get_session_or_404(booking_id, for_update=True)
                if session.tutor_id != tutor_id:
                    raise ForbiddenException(
                        "Only the assigned tutor can update this session",
                        code="NOT_SESSION_TUTOR",
                        details={"booking_id": booking_id},
                    )
                if session.session_date != self._today():
                    raise ConflictException(
                        "Session status can only be updated on the day of the session",
                        code="SESSION_NOT_TODAY",
                        details={
                            "booking_id": booking_id,
                            "session_date": session.session_date.isoformat(),
                        },
                    )
                session.status = SESSION_STATES.transition(session.status, target).value
                self.session_repository.update(session)
                self.event_publisher.publish(
                    SessionStatusChanged(
                        booking_id=session.id,
                        contract_id=session.contract_id,
                        new_status=session.status,
                        changed_by=tutor_id,
                    ),
                    aggregate_id=session.contract_id,
                    idempotency_key=f"session.status_changed:{session.id}:{session.status}",
                )

        self.log_operation(
            "update_session_status",
            booking_id=booking_id,
            tutor_id=tutor_id,
            new_status=target.value,
        )
        return session

    @BaseService.measure_operation("update_session_tutor")
    def update_session_tutor(self, booking_id: str, new_tutor_id: str) -> LessonSession:
        """Hand a scheduled session to another tutor listed on its contract."""
        new_tutor_id = (new_tutor_id or "").strip()
        if not new_tutor_id:
            raise ValidationException(
                "new_tutor_id is required",
                code="TUTOR_REQUIRED",
                details={"booking_id": booking_id},
            )

        session = self._get_session_or_404(booking_id)
        lock_keys = (contract_lock_key(session.contract_id), tutor_lock_key(new_tutor_id))
        with scheduling_lock(*lock_keys):
            with self.transaction():
                session = self._get_session_or_404(booking_id, for_update=True)
                contract = self.contract_repository.get_by_id(session.contract_id)
                if contract is None or new_tutor_id not in contract.tutor_ids:
                    raise ValidationException(
                        "The new tutor must be one of the contract's tutors",
                        code="TUTOR_NOT_ON_CONTRACT",
                        details={"tutor_id": new_tutor_id, "contract_id": session.contract_id},
                    )
                if session.status != SessionStatus.SCHEDULED.value:
                    raise ConflictException(
                        "Only scheduled sessions can change tutor",
                        code="SESSION_NOT_SCHEDULED",
                        details={"booking_id": booking_id, "status": session.status},
                    )
                if session.tutor_id == new_tutor_id:
                    return session

                self.conflict_checker.ensure_tutor_available(
                    new_tutor_id,
                    session.session_date,
                    session.start_time,
                    session.end_time,
                    exclude_session_id=session.id,
                )
                previous_tutor_id = session.tutor_id
                session.tutor_id = new_tutor_id
                self.session_repository.update(session)

        self.log_operation(
            "update_session_tutor",
            booking_id=booking_id,
            previous_tutor_id=previous_tutor_id,
            new_tutor_id=new_tutor_id,
        )
        return session

    def get_replacement_tutors(self, booking_id: str) -> List[str]:
        """
        Contract tutors, other than the current one, who are free at the
        session's slot. Main tutor first, then the substitutes.
        """
        session = self._get_session_or_404(booking_id)
        if session.status in (SessionStatus.DONE.value, SessionStatus.CANCELLED.value):
            raise ConflictException(
                "Finished sessions cannot change tutor",
                code="SESSION_CLOSED",
                details={"booking_id": booking_id, "status": session.status},
            )
        contract = self.contract_repository.get_by_id(session.contract_id)
        if contract is None:
            raise NotFoundException(
                "Contract not found",
                code="CONTRACT_NOT_FOUND",
                details={"contract_id": session.contract_id},
            )
        candidates = [tutor for tutor in contract.tutor_ids if tutor != session.tutor_id]
        return self.conflict_checker.get_available_tutors(
            candidates,
            session.session_date,
            session.start_time,
            session.end_time,
            exclude_session_id=session.id,
        )

    def get_sessions_by_contract(self, contract_id: str) -> List[SessionRead]:
        return [
            SessionRead.model_validate(session)
            for session in self.session_repository.get_by_contract(contract_id)
        ]

    def get_sessions_by_tutor(
        self, tutor_id: str, from_date: Optional[date] = None
    ) -> List[SessionRead]:
        return [
            SessionRead.model_validate(session)
            for session in self.session_repository.get_by_tutor(tutor_id, from_date)
        ]

    def get_sessions_by_child(
        self, child_id: str, from_date: Optional[date] = None
    ) -> List[SessionRead]:
        return [
            SessionRead.model_validate(session)
            for session in self.session_repository.get_by_child(child_id, from_date)
        ]

    def get_upcoming_sessions(self, contract_id: str) -> List[SessionRead]:
        return [
            SessionRead.model_validate(session)
            for session in self.session_repository.get_upcoming_for_contract(
                contract_id, after=datetime.now()
            )
        ]
