from contextlib import contextmanager
from datetime import time, timedelta

import pytest
from sqlalchemy.orm import Session

from mathbridge.core.enums import RescheduleKind, RescheduleStatus, SessionStatus
from mathbridge.core.exceptions import (
    ConcurrentModificationException,
    ConflictException,
    ForbiddenException,
    InvalidStatusTransitionException,
    NotFoundException,
    PendingRescheduleExistsException,
    RescheduleBudgetExhaustedException,
    SchedulingLockBusyException,
    TutorUnavailableException,
    ValidationException,
)
from mathbridge.models.contract import Contract
from mathbridge.models.reschedule_request import RescheduleRequest
from mathbridge.models.session import LessonSession
from mathbridge.schemas.reschedule import RescheduleDecision
import mathbridge.services.reschedule_service as reschedule_module
from mathbridge.services.session_service import SessionService

from tests.utils.scheduling_builders import (
    OTHER_CHILD_ID,
    OTHER_TUTOR_ID,
    PARENT_ID,
    SUBSTITUTE_ID,
    TUESDAY,
    TUTOR_ID,
)

APPROVE = RescheduleDecision(action="approve")
REJECT = RescheduleDecision(action="reject", note="No slot")


def _first_session(db: Session, contract_id: str) -> LessonSession:
    return (
        db.query(LessonSession)
        .filter(LessonSession.contract_id == contract_id)
        .order_by(LessonSession.start_time)
        .first()
    )


def _request_next_day(service, booking: LessonSession, **overrides) -> RescheduleRequest:
    """Ask to move ``booking`` to 16:00 on the following day."""
    args = dict(
        parent_id=PARENT_ID,
        booking_id=booking.id,
        requested_date=booking.session_date + timedelta(days=1),
        start_time=time(16, 0),
        end_time=time(17, 30),
        reason="School trip",
    )
    args.update(overrides)
    return service.create_request(**args)


@pytest.fixture
def booking(db, active_contract_id) -> LessonSession:
    return _first_session(db, active_contract_id)


class TestCreateRequest:
    def test_creates_pending_without_spending_budget(
        self, db, reschedule_service, active_contract_id, booking
    ):
        request = _request_next_day(reschedule_service, booking)

        assert request.status == RescheduleStatus.PENDING.value
        assert request.kind == RescheduleKind.RESCHEDULE.value
        assert request.contract_id == active_contract_id
        db.expire_all()
        assert db.get(Contract, active_contract_id).reschedule_count == 2
        assert db.get(LessonSession, booking.id).status == SessionStatus.SCHEDULED.value

    def test_unknown_booking(self, reschedule_service, booking):
        with pytest.raises(NotFoundException):
            _request_next_day(reschedule_service, booking, booking_id="missing")

    @pytest.mark.parametrize(
        "start, end",
        [
            (time(15, 0), time(16, 30)),
            (time(16, 0), time(17, 0)),
            (time(16, 0), time(18, 0)),
        ],
    )
    def test_slot_must_be_policy_slot(self, reschedule_service, booking, start, end):
        with pytest.raises(ValidationException):
            _request_next_day(reschedule_service, booking, start_time=start, end_time=end)

    def test_one_pending_request_per_contract(self, db, reschedule_service, active_contract_id):
        sessions = (
            db.query(LessonSession)
            .filter(LessonSession.contract_id == active_contract_id)
            .order_by(LessonSession.start_time)
            .all()
        )
        _request_next_day(reschedule_service, sessions[0])
        with pytest.raises(PendingRescheduleExistsException):
            _request_next_day(reschedule_service, sessions[2])
        assert db.query(RescheduleRequest).count() == 1

    def test_contract_must_be_active(
        self, db, contract_service, reschedule_service, contract_payload
    ):
        contract_id = contract_service.create_contract(contract_payload())
        with pytest.raises(ConflictException) as exc_info:
            _request_next_day(reschedule_service, _first_session(db, contract_id))
        assert exc_info.value.code == "CONTRACT_NOT_ACTIVE"

    def test_budget_exhausted(
        self, db, contract_service, reschedule_service, contract_payload, make_package
    ):
        package = make_package(max_reschedule=0)
        contract_id = contract_service.create_contract(contract_payload(package_id=package.id))
        contract_service.update_status(contract_id, "active")
        with pytest.raises(RescheduleBudgetExhaustedException):
            _request_next_day(reschedule_service, _first_session(db, contract_id))
        assert db.query(RescheduleRequest).count() == 0

    def test_parent_must_own_contract(self, reschedule_service, booking):
        with pytest.raises(ForbiddenException):
            _request_next_day(reschedule_service, booking, parent_id="someone-else")

    def test_requested_date_within_contract(
        self, db, reschedule_service, active_contract_id, booking
    ):
        contract = db.get(Contract, active_contract_id)
        with pytest.raises(ValidationException):
            _request_next_day(
                reschedule_service,
                booking,
                requested_date=contract.end_date + timedelta(days=1),
            )

    def test_session_must_be_scheduled(self, db, reschedule_service, booking):
        booking.status = SessionStatus.DONE.value
        db.commit()
        with pytest.raises(ConflictException):
            _request_next_day(reschedule_service, booking)


class TestApproveRequest:
    def test_approval_moves_session_and_spends_budget(
        self, db, reschedule_service, active_contract_id, booking
    ):
        request = _request_next_day(reschedule_service, booking)
        processed = reschedule_service.approve_request("staff-1", request.id, APPROVE)

        assert processed.status == RescheduleStatus.APPROVED.value
        assert processed.staff_id == "staff-1"
        assert processed.processed_at is not None

        db.expire_all()
        original = db.get(LessonSession, booking.id)
        replacement = db.get(LessonSession, processed.new_booking_id)
        assert original.status == SessionStatus.RESCHEDULED.value
        assert original.rescheduled_to_id == replacement.id
        assert replacement.status == SessionStatus.SCHEDULED.value
        assert replacement.rescheduled_from_id == original.id
        assert replacement.session_date == request.requested_date
        assert replacement.start_time.time() == time(16, 0)
        assert replacement.tutor_id == TUTOR_ID
        assert db.get(Contract, active_contract_id).reschedule_count == 1

    def test_resolved_request_cannot_be_processed_again(
        self, db, reschedule_service, active_contract_id, booking
    ):
        request = _request_next_day(reschedule_service, booking)
        reschedule_service.approve_request("staff-1", request.id, APPROVE)

        with pytest.raises(ConflictException) as exc_info:
            reschedule_service.approve_request("staff-1", request.id, APPROVE)
        assert isinstance(exc_info.value, InvalidStatusTransitionException)
        with pytest.raises(ConflictException):
            reschedule_service.approve_request("staff-1", request.id, REJECT)

        db.expire_all()
        assert db.get(Contract, active_contract_id).reschedule_count == 1

    def test_rejection_changes_nothing_else(
        self, db, reschedule_service, active_contract_id, booking
    ):
        request = _request_next_day(reschedule_service, booking)
        processed = reschedule_service.reject_request("staff-1", request.id, "No slot")

        assert processed.status == RescheduleStatus.REJECTED.value
        assert processed.staff_note == "No slot"
        db.expire_all()
        assert db.get(Contract, active_contract_id).reschedule_count == 2
        assert db.get(LessonSession, booking.id).status == SessionStatus.SCHEDULED.value
        assert db.query(LessonSession).count() == 4

    def test_new_request_allowed_after_resolution(self, reschedule_service, booking):
        request = _request_next_day(reschedule_service, booking)
        reschedule_service.approve_request("staff-1", request.id, REJECT)
        again = _request_next_day(reschedule_service, booking)
        assert again.status == RescheduleStatus.PENDING.value

    def test_tutor_conflict_leaves_state_unchanged(
        self,
        db,
        contract_service,
        reschedule_service,
        contract_payload,
        active_contract_id,
        booking,
    ):
        # Same tutor teaches another child on Tuesdays at 16:00
        contract_service.create_contract(
            contract_payload(child_id=OTHER_CHILD_ID, days_of_week=TUESDAY)
        )
        request = _request_next_day(reschedule_service, booking)

        with pytest.raises(TutorUnavailableException):
            reschedule_service.approve_request("staff-1", request.id, APPROVE)

        db.expire_all()
        assert db.get(Contract, active_contract_id).reschedule_count == 2
        assert db.get(LessonSession, booking.id).status == SessionStatus.SCHEDULED.value
        assert db.get(RescheduleRequest, request.id).status == RescheduleStatus.PENDING.value

    def test_substitute_can_take_conflicting_slot(
        self, db, contract_service, reschedule_service, contract_payload, booking
    ):
        contract_service.create_contract(
            contract_payload(child_id=OTHER_CHILD_ID, days_of_week=TUESDAY)
        )
        request = _request_next_day(reschedule_service, booking)
        assert reschedule_service.get_available_substitute_tutors(request.id) == [SUBSTITUTE_ID]

        processed = reschedule_service.approve_request(
            "staff-1",
            request.id,
            RescheduleDecision(action="approve", new_tutor_id=SUBSTITUTE_ID),
        )
        assert db.get(LessonSession, processed.new_booking_id).tutor_id == SUBSTITUTE_ID

    def test_tutor_held_while_approving(
        self, db, contract_service, reschedule_service, contract_payload, booking, monkeypatch
    ):
        """Handing the same tutor another child's lesson mid-approval is turned away."""
        other_id = contract_service.create_contract(
            contract_payload(
                child_id=OTHER_CHILD_ID,
                days_of_week=TUESDAY,
                main_tutor_id=SUBSTITUTE_ID,
                substitute_tutor1_id=TUTOR_ID,
            )
        )
        other_booking = _first_session(db, other_id)
        request = _request_next_day(reschedule_service, booking)
        assert other_booking.session_date == request.requested_date

        rival = SessionService(db)
        blocked = []
        check = reschedule_service.conflict_checker.ensure_tutor_available

        def check_then_hand_over(*args, **kwargs):
            check(*args, **kwargs)
            try:
                rival.update_session_tutor(other_booking.id, TUTOR_ID)
            except SchedulingLockBusyException as exc:
                blocked.append(exc)

        monkeypatch.setattr(
            reschedule_service.conflict_checker, "ensure_tutor_available", check_then_hand_over
        )
        processed = reschedule_service.approve_request("staff-1", request.id, APPROVE)

        assert len(blocked) == 1
        db.expire_all()
        assert db.get(LessonSession, other_booking.id).tutor_id == SUBSTITUTE_ID
        assert db.get(LessonSession, processed.new_booking_id).tutor_id == TUTOR_ID

    def test_tutor_changed_before_lock_is_retryable(
        self, db, reschedule_service, booking, monkeypatch
    ):
        request = _request_next_day(reschedule_service, booking)

        @contextmanager
        def lock_after_handover(*keys):
            booking.tutor_id = SUBSTITUTE_ID
            db.commit()
            yield list(keys)

        monkeypatch.setattr(reschedule_module, "scheduling_lock", lock_after_handover)
        with pytest.raises(ConcurrentModificationException):
            reschedule_service.approve_request("staff-1", request.id, APPROVE)
        db.expire_all()
        assert db.get(RescheduleRequest, request.id).status == RescheduleStatus.PENDING.value

    def test_new_tutor_must_be_on_contract(self, reschedule_service, booking):
        request = _request_next_day(reschedule_service, booking)
        with pytest.raises(ValidationException):
            reschedule_service.approve_request(
                "staff-1",
                request.id,
                RescheduleDecision(action="approve", new_tutor_id=OTHER_TUTOR_ID),
            )

    def test_moving_within_own_slot_is_not_a_self_conflict(self, db, reschedule_service, booking):
        # Same date and time as the session being moved
        request = _request_next_day(
            reschedule_service, booking, requested_date=booking.session_date
        )
        processed = reschedule_service.approve_request("staff-1", request.id, APPROVE)
        assert processed.status == RescheduleStatus.APPROVED.value

    def test_unknown_request(self, reschedule_service):
        with pytest.raises(NotFoundException):
            reschedule_service.approve_request("staff-1", "missing", APPROVE)

    def test_budget_runs_out(self, db, reschedule_service, active_contract_id):
        sessions = (
            db.query(LessonSession)
            .filter(LessonSession.contract_id == active_contract_id)
            .order_by(LessonSession.start_time)
            .all()
        )
        # Monday to Tuesday, then Wednesday to Thursday
        for booking in sessions[:2]:
            request = _request_next_day(reschedule_service, booking)
            reschedule_service.approve_request("staff-1", request.id, APPROVE)

        db.expire_all()
        assert db.get(Contract, active_contract_id).reschedule_count == 0
        booking = _first_session(db, active_contract_id)
        with pytest.raises(RescheduleBudgetExhaustedException):
            _request_next_day(reschedule_service, booking)


class TestMakeUpRequest:
    def test_make_up_ignores_budget(
        self, db, contract_service, reschedule_service, contract_payload, make_package
    ):
        package = make_package(max_reschedule=0)
        contract_id = contract_service.create_contract(contract_payload(package_id=package.id))
        contract_service.update_status(contract_id, "active")
        booking = _first_session(db, contract_id)

        request = reschedule_service.create_make_up_request(
            PARENT_ID,
            booking.id,
            booking.session_date + timedelta(days=1),
            time(16, 0),
            time(17, 30),
            "Tutor was ill",
        )
        assert request.kind == RescheduleKind.MAKE_UP.value
        processed = reschedule_service.approve_request("staff-1", request.id, APPROVE)

        db.expire_all()
        assert processed.status == RescheduleStatus.APPROVED.value
        assert db.get(Contract, contract_id).reschedule_count == 0
        assert db.get(LessonSession, booking.id).status == SessionStatus.RESCHEDULED.value


class TestTutorReplacement:
    def test_replacement_hands_slot_to_substitute(self, db, reschedule_service, booking):
        request = reschedule_service.create_tutor_replacement_request(
            TUTOR_ID, booking.id, "Conference"
        )
        assert request.kind == RescheduleKind.TUTOR_REPLACEMENT.value
        assert request.requested_date == booking.session_date

        processed = reschedule_service.approve_request(
            "staff-1",
            request.id,
            RescheduleDecision(action="approve", new_tutor_id=SUBSTITUTE_ID),
        )
        db.expire_all()
        original = db.get(LessonSession, booking.id)
        replacement = db.get(LessonSession, processed.new_booking_id)
        assert original.status == SessionStatus.CANCELLED.value
        assert replacement.tutor_id == SUBSTITUTE_ID
        assert replacement.start_time == original.start_time

    def test_replacement_needs_new_tutor(self, reschedule_service, booking):
        request = reschedule_service.create_tutor_replacement_request(TUTOR_ID, booking.id)
        with pytest.raises(ValidationException):
            reschedule_service.approve_request("staff-1", request.id, APPROVE)

    def test_only_assigned_tutor_can_ask(self, reschedule_service, booking):
        with pytest.raises(ForbiddenException):
            reschedule_service.create_tutor_replacement_request(SUBSTITUTE_ID, booking.id)

    def test_replaced_session_cannot_be_made_up(self, reschedule_service, booking):
        request = reschedule_service.create_tutor_replacement_request(TUTOR_ID, booking.id)
        processed = reschedule_service.approve_request(
            "staff-1",
            request.id,
            RescheduleDecision(action="approve", new_tutor_id=SUBSTITUTE_ID),
        )
        with pytest.raises(ConflictException) as exc_info:
            reschedule_service.create_make_up_request(
                PARENT_ID,
                booking.id,
                booking.session_date + timedelta(days=1),
                time(16, 0),
                time(17, 30),
            )
        assert exc_info.value.code == "SESSION_NOT_SCHEDULED"
        assert processed.new_booking_id is not None


class TestQueries:
    def test_get_and_list(self, reschedule_service, booking):
        request = _request_next_day(reschedule_service, booking)
        assert reschedule_service.get_request(request.id).status == "pending"
        assert [r.id for r in reschedule_service.list_requests(parent_id=PARENT_ID)] == [
            request.id
        ]
        assert reschedule_service.list_requests(status="approved") == []
        with pytest.raises(ValidationException):
            reschedule_service.list_requests(status="unknown")
