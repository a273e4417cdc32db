# backend/mathbridge/services/reschedule_service.py
"""
Reschedule Service for the MathBridge scheduling core.

Parents ask to move a session, tutors ask to be replaced for one, and staff
approve or reject. A request is pending until processed and terminal after.

Request kinds:
- reschedule: moves a session to a new slot and spends one unit of the
  contract's reschedule budget on approval
- make_up: moves a session the tutor could not teach; no budget is spent
- tutor_replacement: keeps the slot but hands it to another contract tutor;
  the original session is cancelled and no budget is spent

Approving never edits a session in place. The original is marked rescheduled
(or cancelled for a replacement) and a new scheduled session is created.
"""

from datetime import date, datetime, time, timezone
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    ContractStatus,
    RescheduleDecisionAction,
    RescheduleKind,
    RescheduleStatus,
    SessionStatus,
)
from ..core.exceptions import (
    ConcurrentModificationException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    PendingRescheduleExistsException,
    RescheduleBudgetExhaustedException,
    ValidationException,
)
from ..core.scheduling_lock import contract_lock_key, scheduling_lock, tutor_lock_key
from ..domain.transitions import RESCHEDULE_STATES, SESSION_STATES
from ..events import EventPublisher, RescheduleProcessed, RescheduleRequested
from ..models.contract import Contract
from ..models.reschedule_request import RescheduleRequest
from ..models.session import LessonSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.reschedule import RescheduleDecision, RescheduleRequestRead
from .base import BaseService
from .conflict_checker import ConflictChecker
from .contract_service import expected_end_time

logger = logging.getLogger(__name__)


def allowed_start_times() -> List[time]:
    return [time.fromisoformat(value) for value in settings.reschedule_start_times]


def validate_requested_slot(start_time: time, end_time: time) -> None:
    allowed = allowed_start_times()
    if start_time not in allowed:
        raise ValidationException(
            "Requested start time is not an allowed session slot",
            code="INVALID_START_TIME",
            details={
                "start_time": start_time.isoformat(),
                "allowed_start_times": [t.strftime("%H:%M") for t in allowed],
            },
        )
    expected = expected_end_time(start_time)
    if end_time != expected:
        raise ValidationException(
            f"end_time must be start_time + {settings.session_duration_minutes} minutes",
            code="INVALID_END_TIME",
            details={
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "expected_end_time": expected.isoformat() if expected else None,
            },
        )


class RescheduleService(BaseService):
    def __init__(self, db: Session, conflict_checker: Optional[ConflictChecker] = None):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.contract_repository = RepositoryFactory.create_contract_repository(db)
        self.request_repository = RepositoryFactory.create_reschedule_request_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.event_publisher = EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # ------------------------------------------------------------------ lookups

    def _get_session_or_404(self, booking_id: str) -> LessonSession:
        session = self.session_repository.get_by_id(booking_id)
        if session is None:
            raise NotFoundException(
                "Session not found",
                code="SESSION_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return session

    def _get_contract_or_404(self, contract_id: str, for_update: bool = False) -> Contract:
        contract = self.contract_repository.get_by_id(contract_id, for_update=for_update)
        if contract is None:
            raise NotFoundException(
                "Contract not found",
                code="CONTRACT_NOT_FOUND",
                details={"contract_id": contract_id},
            )
        return contract

    def _get_request_or_404(self, request_id: str, for_update: bool = False) -> RescheduleRequest:
        request = self.request_repository.get_by_id_with_details(request_id, for_update=for_update)
        if request is None:
            raise NotFoundException(
                "Reschedule request not found",
                code="RESCHEDULE_REQUEST_NOT_FOUND",
                details={"request_id": request_id},
            )
        return request

    # ----------------------------------------------------------------- guards

    @staticmethod
    def _require_active(contract: Contract) -> None:
        if contract.status != ContractStatus.ACTIVE.value:
            raise ConflictException(
                "Contract is not active",
                code="CONTRACT_NOT_ACTIVE",
                details={"contract_id": contract.id, "status": contract.status},
            )

    @staticmethod
    def _require_upcoming_scheduled(session: LessonSession) -> None:
        if session.status != SessionStatus.SCHEDULED.value:
            raise ConflictException(
                "Only scheduled sessions can be moved",
                code="SESSION_NOT_SCHEDULED",
                details={"booking_id": session.id, "status": session.status},
            )
        if session.start_time <= datetime.now():
            raise ConflictException(
                "Cannot move a session that has already started",
                code="SESSION_IN_PAST",
                details={"booking_id": session.id},
            )

    @staticmethod
    def _validate_requested_date(
        contract: Contract, requested_date: date, start_time: time
    ) -> None:
        if datetime.combine(requested_date, start_time) <= datetime.now():
            raise ValidationException(
                "Requested slot is in the past",
                code="REQUESTED_SLOT_IN_PAST",
                details={"requested_date": requested_date.isoformat()},
            )
        if requested_date > contract.end_date:
            raise ValidationException(
                "Requested date is after the contract end date",
                code="REQUESTED_DATE_AFTER_CONTRACT_END",
                details={
                    "requested_date": requested_date.isoformat(),
                    "contract_end_date": contract.end_date.isoformat(),
                },
            )

    # ---------------------------------------------------------------- create

    @BaseService.measure_operation("create_reschedule_request")
    def create_request(
        self,
        parent_id: str,
        booking_id: str,
        requested_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
    ) -> RescheduleRequest:
        """
        Submit a reschedule request. The budget is only checked here; it is
        spent when staff approve.
        """
        return self._create_parent_request(
            RescheduleKind.RESCHEDULE,
            parent_id,
            booking_id,
            requested_date,
            start_time,
            end_time,
            reason,
        )

    @BaseService.measure_operation("create_make_up_request")
    def create_make_up_request(
        self,
        parent_id: str,
        booking_id: str,
        requested_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
    ) -> RescheduleRequest:
        """Ask for a make-up lesson. Same checks as a reschedule, no budget involved."""
        return self._create_parent_request(
            RescheduleKind.MAKE_UP,
            parent_id,
            booking_id,
            requested_date,
            start_time,
            end_time,
            reason,
        )

    def _create_parent_request(
        self,
        kind: RescheduleKind,
        parent_id: str,
        booking_id: str,
        requested_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str],
    ) -> RescheduleRequest:
        session = self._get_session_or_404(booking_id)
        validate_requested_slot(start_time, end_time)

        with scheduling_lock(contract_lock_key(session.contract_id)):
            with self.transaction():
                if self.request_repository.has_pending_for_contract(session.contract_id):
                    raise PendingRescheduleExistsException(session.contract_id)

                contract = self._get_contract_or_404(session.contract_id, for_update=True)
                if contract.parent_id != parent_id:
                    raise ForbiddenException(
                        "You can only reschedule your own child's sessions",
                        code="NOT_CONTRACT_OWNER",
                        details={"booking_id": booking_id},
                    )
                self._require_active(contract)
                if kind is RescheduleKind.RESCHEDULE and contract.reschedule_count <= 0:
                    raise RescheduleBudgetExhaustedException(contract.id)

                # A session given away by an approved tutor replacement is cancelled and
                # cannot be made up; the replacement session can be moved like any other
                self._require_upcoming_scheduled(session)
                self._validate_requested_date(contract, requested_date, start_time)

                request = RescheduleRequest(
                    booking_id=session.id,
                    contract_id=contract.id,
                    parent_id=parent_id,
                    kind=kind.value,
                    requested_date=requested_date,
                    start_time=start_time,
                    end_time=end_time,
                    reason=reason,
                    status=RescheduleStatus.PENDING.value,
                )
                self.request_repository.add(request)
                self._publish_requested(request)

        self.log_operation(
            "create_reschedule_request",
            request_id=request.id,
            kind=kind.value,
            contract_id=request.contract_id,
            booking_id=booking_id,
        )
        return request

    @BaseService.measure_operation("create_tutor_replacement_request")
    def create_tutor_replacement_request(
        self, tutor_id: str, booking_id: str, reason: Optional[str] = None
    ) -> RescheduleRequest:
        """
        The assigned tutor asks staff to hand a future session to someone else.
        The slot stays the same; staff pick the replacement when approving.
        """
        session = self._get_session_or_404(booking_id)
        if session.tutor_id != tutor_id:
            raise ForbiddenException(
                "You can only request a replacement for your own sessions",
                code="NOT_SESSION_TUTOR",
                details={"booking_id": booking_id},
            )
        if session.session_date <= date.today():
            raise ConflictException(
                "Replacements can only be requested for sessions from tomorrow on",
                code="REPLACEMENT_TOO_LATE",
                details={
                    "booking_id": booking_id,
                    "session_date": session.session_date.isoformat(),
                },
            )

        with scheduling_lock(contract_lock_key(session.contract_id)):
            with self.transaction():
                if self.request_repository.has_pending_for_contract(session.contract_id):
                    raise PendingRescheduleExistsException(session.contract_id)
                contract = self._get_contract_or_404(session.contract_id, for_update=True)
                self._require_active(contract)
                self._require_upcoming_scheduled(session)

                request = RescheduleRequest(
                    booking_id=session.id,
                    contract_id=contract.id,
                    parent_id=contract.parent_id,
                    kind=RescheduleKind.TUTOR_REPLACEMENT.value,
                    requested_date=session.session_date,
                    start_time=session.start_time.time(),
                    end_time=session.end_time.time(),
                    reason=reason,
                    status=RescheduleStatus.PENDING.value,
                )
                self.request_repository.add(request)
                self._publish_requested(request)

        self.log_operation(
            "create_tutor_replacement_request",
            request_id=request.id,
            booking_id=booking_id,
            tutor_id=tutor_id,
        )
        return request

    def _publish_requested(self, request: RescheduleRequest) -> None:
        self.event_publisher.publish(
            RescheduleRequested(
                request_id=request.id,
                contract_id=request.contract_id,
                booking_id=request.booking_id,
                kind=request.kind,
                requested_date=request.requested_date.isoformat(),
                start_time=request.start_time.strftime("%H:%M"),
            ),
            aggregate_id=request.contract_id,
            idempotency_key=f"reschedule.requested:{request.id}",
        )

    # --------------------------------------------------------------- process

    @BaseService.measure_operation("approve_reschedule_request")
    def approve_request(
        self, staff_id: str, request_id: str, decision: RescheduleDecision
    ) -> RescheduleRequest:
        """
        Apply a staff decision to a pending request.

        Approval re-checks that the tutor is free for the requested slot
        (ignoring the session being moved), then writes the replacement
        session, updates the original and, for plain reschedules, spends one
        unit of budget. Rejection only closes the request. Either way the
        request becomes terminal; processing it again raises a conflict.

        Approval also holds the scheduling key of the tutor who will teach the
        new session, so a concurrent booking cannot take the same slot.
        """
        request = self._get_request_or_404(request_id)
        contract_id = request.contract_id
        lock_keys = [contract_lock_key(contract_id)]
        locked_tutor_id = None
        if decision.action is RescheduleDecisionAction.APPROVE:
            locked_tutor_id = decision.new_tutor_id or request.booking.tutor_id
            if locked_tutor_id:
                lock_keys.append(tutor_lock_key(locked_tutor_id))

        with scheduling_lock(*lock_keys):
            with self.transaction():
                request = self._get_request_or_404(request_id, for_update=True)
                if decision.action is RescheduleDecisionAction.REJECT:
                    RESCHEDULE_STATES.transition(request.status, RescheduleStatus.REJECTED)
                    self._close(request, staff_id, RescheduleStatus.REJECTED, decision.note)
                else:
                    RESCHEDULE_STATES.transition(request.status, RescheduleStatus.APPROVED)
                    self._apply_approval(request, decision, locked_tutor_id)
                    self._close(request, staff_id, RescheduleStatus.APPROVED, decision.note)

                self.request_repository.update(request)
                self.event_publisher.publish(
                    RescheduleProcessed(
                        request_id=request.id,
                        contract_id=request.contract_id,
                        booking_id=request.booking_id,
                        kind=request.kind,
                        status=request.status,
                        new_booking_id=request.new_booking_id,
                        processed_at=request.processed_at,
                    ),
                    aggregate_id=request.contract_id,
                    idempotency_key=f"reschedule.processed:{request.id}",
                )

        prometheus_metrics.record_reschedule_decision(request.kind, request.status)
        self.log_operation(
            "process_reschedule_request",
            request_id=request.id,
            staff_id=staff_id,
            status=request.status,
            new_booking_id=request.new_booking_id,
        )
        return request

    def reject_request(
        self, staff_id: str, request_id: str, reason: Optional[str] = None
    ) -> RescheduleRequest:
        return self.approve_request(
            staff_id,
            request_id,
            RescheduleDecision(action=RescheduleDecisionAction.REJECT, note=reason),
        )

    @staticmethod
    def _close(
        request: RescheduleRequest, staff_id: str, status: RescheduleStatus, note: Optional[str]
    ) -> None:
        request.status = status.value
        request.staff_id = staff_id
        request.staff_note = note
        request.processed_at = datetime.now(timezone.utc)

    def _resolve_tutor(
        self,
        request: RescheduleRequest,
        contract: Contract,
        session: LessonSession,
        decision: RescheduleDecision,
    ) -> Optional[str]:
        new_tutor_id = decision.new_tutor_id
        if new_tutor_id and new_tutor_id not in contract.tutor_ids:
            raise ValidationException(
                "The new tutor must be one of the contract's tutors",
                code="TUTOR_NOT_ON_CONTRACT",
                details={"tutor_id": new_tutor_id, "contract_id": contract.id},
            )
        if request.kind == RescheduleKind.TUTOR_REPLACEMENT.value:
            if not new_tutor_id or new_tutor_id == session.tutor_id:
                raise ValidationException(
                    "A tutor replacement needs a different tutor",
                    code="REPLACEMENT_TUTOR_REQUIRED",
                    details={"request_id": request.id},
                )
        return new_tutor_id or session.tutor_id

    def _apply_approval(
        self,
        request: RescheduleRequest,
        decision: RescheduleDecision,
        locked_tutor_id: Optional[str],
    ) -> None:
        contract = self._get_contract_or_404(request.contract_id, for_update=True)
        session = request.booking
        kind = RescheduleKind(request.kind)

        self._require_active(contract)
        if session.status != SessionStatus.SCHEDULED.value:
            raise ConflictException(
                "The session is no longer scheduled",
                code="SESSION_NOT_SCHEDULED",
                details={"booking_id": session.id, "status": session.status},
            )
        if kind is RescheduleKind.RESCHEDULE and contract.reschedule_count <= 0:
            raise RescheduleBudgetExhaustedException(contract.id)

        tutor_id = self._resolve_tutor(request, contract, session, decision)
        if tutor_id != locked_tutor_id:
            # The session changed hands after the tutor key was chosen
            raise ConcurrentModificationException(
                details={"booking_id": session.id, "tutor_id": tutor_id}
            )
        new_start = datetime.combine(request.requested_date, request.start_time)
        new_end = datetime.combine(request.requested_date, request.end_time)
        if tutor_id:
            self.conflict_checker.ensure_tutor_available(
                tutor_id,
                request.requested_date,
                new_start,
                new_end,
                exclude_session_id=session.id,
            )

        # Retire the original first so the store never sees two live sessions for the child
        retired_status = (
            SessionStatus.CANCELLED
            if kind is RescheduleKind.TUTOR_REPLACEMENT
            else SessionStatus.RESCHEDULED
        )
        session.status = SESSION_STATES.transition(session.status, retired_status).value
        self.session_repository.update(session)

        replacement = LessonSession(
            contract_id=contract.id,
            child_id=session.child_id,
            tutor_id=tutor_id,
            session_date=request.requested_date,
            start_time=new_start,
            end_time=new_end,
            status=SessionStatus.SCHEDULED.value,
            is_online=session.is_online,
            video_call_platform=session.video_call_platform,
            offline_address=session.offline_address,
            rescheduled_from_id=session.id,
        )
        self.session_repository.add(replacement)
        session.rescheduled_to_id = replacement.id
        self.session_repository.update(session)

        if kind is RescheduleKind.RESCHEDULE:
            contract.reschedule_count = max(0, contract.reschedule_count - 1)
            self.contract_repository.update(contract)

        request.requested_tutor_id = tutor_id
        request.new_booking_id = replacement.id

    # --------------------------------------------------------------- queries

    def get_available_substitute_tutors(self, request_id: str) -> List[str]:
        """Substitute tutors of the contract who are free at the requested slot."""
        request = self._get_request_or_404(request_id)
        contract = request.contract
        session = request.booking
        candidates = [
            tutor_id
            for tutor_id in (contract.substitute_tutor1_id, contract.substitute_tutor2_id)
            if tutor_id and tutor_id != session.tutor_id
        ]
        return self.conflict_checker.get_available_tutors(
            candidates,
            request.requested_date,
            datetime.combine(request.requested_date, request.start_time),
            datetime.combine(request.requested_date, request.end_time),
            exclude_session_id=session.id,
        )

    def get_request(self, request_id: str) -> RescheduleRequestRead:
        return RescheduleRequestRead.model_validate(self._get_request_or_404(request_id))

    def list_requests(
        self, parent_id: Optional[str] = None, status: Optional[str] = None
    ) -> List[RescheduleRequestRead]:
        if status is not None:
            status = RESCHEDULE_STATES.parse(status).value
        return [
            RescheduleRequestRead.model_validate(request)
            for request in self.request_repository.list_requests(parent_id=parent_id, status=status)
        ]
