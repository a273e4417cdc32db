# backend/mathbridge/services/contract_service.py
"""
Contract Service for the MathBridge scheduling core.

Owns the contract lifecycle:
- creating a contract and expanding it into lesson sessions
- moving a contract between statuses, cancelling its sessions on cancel
- assigning the main and substitute tutors

Every write runs under the scheduling mutex for the affected child or
contract, plus the tutor it books, and commits as a single transaction.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import ContractStatus, SessionStatus
from ..core.exceptions import ConflictException, NotFoundException, ValidationException
from ..core.scheduling_lock import (
    child_lock_key,
    contract_lock_key,
    scheduling_lock,
    tutor_lock_key,
)
from ..domain.calendar import generate_sessions
from ..domain.transitions import CONTRACT_STATES, SESSION_STATES
from ..domain.weekdays import WeekdayMask
from ..events import ContractCreated, ContractStatusChanged, EventPublisher, TutorsAssigned
from ..models.contract import Contract
from ..models.session import LessonSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.contract import ContractCreate, ContractRead, SessionRead, TutorAssignment
from .base import BaseService
from .conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)

CASCADE_CANCEL_STATUSES = (SessionStatus.SCHEDULED.value, SessionStatus.RESCHEDULED.value)


def expected_end_time(start_time: time, duration_minutes: Optional[int] = None) -> Optional[time]:
    """End of a session starting at ``start_time``, or None if it would cross midnight."""
    minutes = duration_minutes or settings.session_duration_minutes
    start = datetime.combine(date.min, start_time)
    end = start + timedelta(minutes=minutes)
    if end.date() != start.date():
        return None
    return end.time()


def validate_session_window(start_time: time, end_time: time) -> None:
    """Sessions have one fixed length; the end time must match it exactly."""
    expected = expected_end_time(start_time)
    if expected is None or end_time != expected:
        raise ValidationException(
            f"end_time must be start_time + {settings.session_duration_minutes} minutes",
            code="INVALID_END_TIME",
            details={
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "expected_end_time": expected.isoformat() if expected else None,
            },
        )


def _validate_tutor_set(
    main_tutor_id: Optional[str], substitute1: Optional[str], substitute2: Optional[str]
) -> None:
    substitutes = [tutor for tutor in (substitute1, substitute2) if tutor]
    if main_tutor_id and main_tutor_id in substitutes:
        raise ValidationException(
            "Substitute tutors must differ from the main tutor",
            code="INVALID_TUTOR_ASSIGNMENT",
            details={"main_tutor_id": main_tutor_id},
        )
    if len(substitutes) == 2 and substitutes[0] == substitutes[1]:
        raise ValidationException(
            "Substitute tutors must differ from each other",
            code="INVALID_TUTOR_ASSIGNMENT",
            details={"substitute_tutor_id": substitutes[0]},
        )


class ContractService(BaseService):
    def __init__(self, db: Session, conflict_checker: Optional[ConflictChecker] = None):
        super().__init__(db)
        self.package_repository = RepositoryFactory.create_package_repository(db)
        self.contract_repository = RepositoryFactory.create_contract_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.event_publisher = EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    def _get_contract_or_404(self, contract_id: str, for_update: bool = False) -> Contract:
        contract = self.contract_repository.get_by_id(contract_id, for_update=for_update)
        if contract is None:
            raise NotFoundException(
                "Contract not found",
                code="CONTRACT_NOT_FOUND",
                details={"contract_id": contract_id},
            )
        return contract

    @BaseService.measure_operation("create_contract")
    def create_contract(self, data: ContractCreate) -> str:
        """
        Create a contract and all of its sessions.

        Checks run in this order, and nothing is written unless all pass:
        weekday mask, session length, package lookup, overlap with the child's
        other contracts, calendar capacity, main tutor's calendar.

        Returns:
            The new contract id
        """
        mask = WeekdayMask(data.days_of_week)
        validate_session_window(data.start_time, data.end_time)
        if data.end_date < data.start_date:
            raise ValidationException(
                "end_date must not be before start_date",
                code="INVALID_DATE_RANGE",
                details={
                    "start_date": data.start_date.isoformat(),
                    "end_date": data.end_date.isoformat(),
                },
            )
        _validate_tutor_set(
            data.main_tutor_id, data.substitute_tutor1_id, data.substitute_tutor2_id
        )

        package = self.package_repository.get_package(data.package_id)

        lock_keys = [child_lock_key(data.child_id)]
        if data.main_tutor_id:
            lock_keys.append(tutor_lock_key(data.main_tutor_id))

        with scheduling_lock(*lock_keys):
            self.conflict_checker.check_child_contract_overlap(
                data.child_id,
                data.start_date,
                data.end_date,
                data.start_time,
                data.end_time,
                mask.value,
            )
            slots = generate_sessions(
                data.start_date,
                data.end_date,
                data.start_time,
                data.end_time,
                mask,
                package.session_count,
            )
            if data.main_tutor_id:
                self.conflict_checker.ensure_slots_free_for_tutor(data.main_tutor_id, slots)

            with self.transaction():
                contract = Contract(
                    parent_id=data.parent_id,
                    child_id=data.child_id,
                    package_id=package.id,
                    center_id=data.center_id,
                    main_tutor_id=data.main_tutor_id,
                    substitute_tutor1_id=data.substitute_tutor1_id,
                    substitute_tutor2_id=data.substitute_tutor2_id,
                    start_date=data.start_date,
                    end_date=data.end_date,
                    start_time=data.start_time,
                    end_time=data.end_time,
                    days_of_week=mask.value,
                    session_count=package.session_count,
                    reschedule_count=package.max_reschedule,
                    status=ContractStatus.PENDING.value,
                    is_online=data.is_online,
                    video_call_platform=data.video_call_platform,
                    offline_address=data.offline_address,
                )
                self.contract_repository.add(contract)
                self.session_repository.add_many(
                    [
                        LessonSession(
                            contract_id=contract.id,
                            child_id=contract.child_id,
                            tutor_id=contract.main_tutor_id,
                            session_date=slot.session_date,
                            start_time=slot.start,
                            end_time=slot.end,
                            status=SessionStatus.SCHEDULED.value,
                            is_online=contract.is_online,
                            video_call_platform=contract.video_call_platform,
                            offline_address=contract.offline_address,
                        )
                        for slot in slots
                    ]
                )
                self.event_publisher.publish(
                    ContractCreated(
                        contract_id=contract.id,
                        parent_id=contract.parent_id,
                        child_id=contract.child_id,
                        main_tutor_id=contract.main_tutor_id,
                        session_count=len(slots),
                        created_at=datetime.now(timezone.utc),
                    ),
                    aggregate_id=contract.id,
                    idempotency_key=f"contract.created:{contract.id}",
                )

        prometheus_metrics.inc_sessions_generated(len(slots))
        self.log_operation(
            "create_contract",
            contract_id=contract.id,
            child_id=contract.child_id,
            session_count=len(slots),
            days_of_week=mask.display(),
        )
        return contract.id

    @BaseService.measure_operation("update_contract_status")
    def update_status(self, contract_id: str, new_status: str) -> Contract:
        """
        Move a contract to ``new_status``.

        Cancelling also cancels every scheduled or rescheduled session of the
        contract; sessions already done are left alone.
        """
        target = CONTRACT_STATES.parse(new_status)

        with scheduling_lock(contract_lock_key(contract_id)):
            with self.transaction():
                contract = self._get_contract_or_404(contract_id, for_update=True)
                previous = contract.status
                CONTRACT_STATES.transition(previous, target)
                contract.status = target.value

                cancelled_sessions = 0
                if target is ContractStatus.CANCELLED:
                    for session in self.session_repository.get_by_contract(contract_id):
                        if session.status in CASCADE_CANCEL_STATUSES:
                            session.status = SESSION_STATES.transition(
                                session.status, SessionStatus.CANCELLED
                            ).value
                            cancelled_sessions += 1

                self.contract_repository.update(contract)
                self.event_publisher.publish(
                    ContractStatusChanged(
                        contract_id=contract.id,
                        previous_status=previous,
                        new_status=target.value,
                        cancelled_sessions=cancelled_sessions,
                        changed_at=datetime.now(timezone.utc),
                    ),
                    aggregate_id=contract.id,
                    idempotency_key=f"contract.status_changed:{contract.id}:{target.value}",
                )

        self.log_operation(
            "update_contract_status",
            contract_id=contract_id,
            previous_status=previous,
            new_status=target.value,
            cancelled_sessions=cancelled_sessions,
        )
        return contract

    @BaseService.measure_operation("assign_tutors")
    def assign_tutors(self, contract_id: str, assignment: TutorAssignment) -> Contract:
        """
        Set the main and substitute tutors of a contract.

        Upcoming scheduled sessions taught by the previous main tutor (or by
        nobody yet) move to the new main tutor, provided the new tutor is free
        for each of them.
        """
        lock_keys = [contract_lock_key(contract_id)]
        main_tutor_id = (assignment.main_tutor_id or "").strip()
        if main_tutor_id:
            lock_keys.append(tutor_lock_key(main_tutor_id))

        with scheduling_lock(*lock_keys):
            with self.transaction():
                contract = self._get_contract_or_404(contract_id, for_update=True)
                if contract.status == ContractStatus.CANCELLED.value:
                    raise ConflictException(
                        "Cannot assign tutors to a cancelled contract",
                        code="CONTRACT_CANCELLED",
                        details={"contract_id": contract_id},
                    )
                if not main_tutor_id:
                    raise ValidationException(
                        "main_tutor_id is required",
                        code="MAIN_TUTOR_REQUIRED",
                        details={"contract_id": contract_id},
                    )
                _validate_tutor_set(
                    main_tutor_id,
                    assignment.substitute_tutor1_id,
                    assignment.substitute_tutor2_id,
                )

                previous_main = contract.main_tutor_id
                reassigned = 0
                if main_tutor_id != previous_main:
                    upcoming = self.session_repository.get_upcoming_for_contract(
                        contract_id, after=datetime.now()
                    )
                    for session in upcoming:
                        if session.tutor_id not in (None, previous_main):
                            continue
                        self.conflict_checker.ensure_tutor_available(
                            main_tutor_id,
                            session.session_date,
                            session.start_time,
                            session.end_time,
                            exclude_session_id=session.id,
                        )
                        session.tutor_id = main_tutor_id
                        reassigned += 1

                contract.main_tutor_id = main_tutor_id
                contract.substitute_tutor1_id = assignment.substitute_tutor1_id
                contract.substitute_tutor2_id = assignment.substitute_tutor2_id
                self.contract_repository.update(contract)
                self.event_publisher.publish(
                    TutorsAssigned(
                        contract_id=contract.id,
                        main_tutor_id=main_tutor_id,
                        substitute_tutor1_id=contract.substitute_tutor1_id,
                        substitute_tutor2_id=contract.substitute_tutor2_id,
                        reassigned_sessions=reassigned,
                    ),
                    aggregate_id=contract.id,
                )

        self.log_operation(
            "assign_tutors",
            contract_id=contract_id,
            main_tutor_id=main_tutor_id,
            reassigned_sessions=reassigned,
        )
        return contract

    def get_contract(self, contract_id: str) -> ContractRead:
        contract = self.contract_repository.get_by_id_with_package(contract_id)
        if contract is None:
            raise NotFoundException(
                "Contract not found",
                code="CONTRACT_NOT_FOUND",
                details={"contract_id": contract_id},
            )
        return ContractRead.model_validate(contract)

    def get_contracts_by_parent(self, parent_id: str) -> List[ContractRead]:
        return [
            ContractRead.model_validate(contract)
            for contract in self.contract_repository.get_by_parent(parent_id)
        ]

    def get_contract_sessions(self, contract_id: str) -> List[SessionRead]:
        self._get_contract_or_404(contract_id)
        return [
            SessionRead.model_validate(session)
            for session in self.session_repository.get_by_contract(contract_id)
        ]
