import pytest
from sqlalchemy.orm import Session

from mathbridge.core.enums import SessionStatus
from mathbridge.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStatusTransitionException,
    NotFoundException,
    SchedulingLockBusyException,
    TutorUnavailableException,
    ValidationException,
)
from mathbridge.core.scheduling_lock import acquire_lock, tutor_lock_key
from mathbridge.models.event_outbox import EventOutbox
from mathbridge.models.session import LessonSession
from mathbridge.services.session_service import SessionService

from tests.utils.scheduling_builders import (
    CHILD_ID,
    OTHER_CHILD_ID,
    OTHER_TUTOR_ID,
    SUBSTITUTE_ID,
    TUTOR_ID,
)


def _sessions(db: Session, contract_id: str):
    return (
        db.query(LessonSession)
        .filter(LessonSession.contract_id == contract_id)
        .order_by(LessonSession.start_time)
        .all()
    )


@pytest.fixture
def booking(db, active_contract_id) -> LessonSession:
    return _sessions(db, active_contract_id)[0]


@pytest.fixture
def on_session_day(db, booking) -> SessionService:
    """Service whose clock says today is the first session's date."""
    return SessionService(db, today=lambda: booking.session_date)


class TestUpdateSessionStatus:
    def test_tutor_marks_done(self, db, on_session_day, booking):
        session = on_session_day.update_session_status(booking.id, "done", TUTOR_ID)
        assert session.status == SessionStatus.DONE.value
        events = db.query(EventOutbox).filter(EventOutbox.event_type == "session.status_changed")
        assert events.count() == 1

    def test_tutor_cancels(self, on_session_day, booking):
        session = on_session_day.update_session_status(booking.id, "Cancelled", TUTOR_ID)
        assert session.status == SessionStatus.CANCELLED.value

    def test_only_assigned_tutor(self, db, on_session_day, booking):
        with pytest.raises(ForbiddenException):
            on_session_day.update_session_status(booking.id, "done", SUBSTITUTE_ID)
        db.expire_all()
        assert db.get(LessonSession, booking.id).status == SessionStatus.SCHEDULED.value

    def test_only_on_session_day(self, db, booking):
        service = SessionService(db)
        with pytest.raises(ConflictException) as exc_info:
            service.update_session_status(booking.id, "done", TUTOR_ID)
        assert exc_info.value.code == "SESSION_NOT_TODAY"

    @pytest.mark.parametrize("status", ["rescheduled", "scheduled", "finished"])
    def test_status_a_tutor_cannot_set(self, on_session_day, booking, status):
        with pytest.raises(ValidationException):
            on_session_day.update_session_status(booking.id, status, TUTOR_ID)

    def test_done_is_final(self, on_session_day, booking):
        on_session_day.update_session_status(booking.id, "done", TUTOR_ID)
        with pytest.raises(InvalidStatusTransitionException):
            on_session_day.update_session_status(booking.id, "cancelled", TUTOR_ID)

    def test_unknown_session(self, on_session_day):
        with pytest.raises(NotFoundException):
            on_session_day.update_session_status("missing", "done", TUTOR_ID)


class TestUpdateSessionTutor:
    def test_hand_to_substitute(self, db, booking):
        session = SessionService(db).update_session_tutor(booking.id, SUBSTITUTE_ID)
        assert session.tutor_id == SUBSTITUTE_ID

    def test_tutor_must_be_on_contract(self, db, booking):
        with pytest.raises(ValidationException):
            SessionService(db).update_session_tutor(booking.id, OTHER_TUTOR_ID)

    def test_blank_tutor(self, db, booking):
        with pytest.raises(ValidationException):
            SessionService(db).update_session_tutor(booking.id, " ")

    def test_substitute_must_be_free(
        self, db, contract_service, contract_payload, booking
    ):
        contract_service.create_contract(
            contract_payload(
                child_id=OTHER_CHILD_ID,
                main_tutor_id=SUBSTITUTE_ID,
                substitute_tutor1_id=None,
            )
        )
        with pytest.raises(TutorUnavailableException):
            SessionService(db).update_session_tutor(booking.id, SUBSTITUTE_ID)
        db.expire_all()
        assert db.get(LessonSession, booking.id).tutor_id == TUTOR_ID

    def test_only_scheduled_sessions(self, db, booking):
        booking.status = SessionStatus.DONE.value
        db.commit()
        with pytest.raises(ConflictException):
            SessionService(db).update_session_tutor(booking.id, SUBSTITUTE_ID)

    def test_new_tutor_key_is_held(self, db, booking):
        acquire_lock(tutor_lock_key(SUBSTITUTE_ID))
        with pytest.raises(SchedulingLockBusyException):
            SessionService(db).update_session_tutor(booking.id, SUBSTITUTE_ID)
        db.expire_all()
        assert db.get(LessonSession, booking.id).tutor_id == TUTOR_ID


class TestReplacementTutors:
    def test_free_substitutes(self, db, booking):
        assert SessionService(db).get_replacement_tutors(booking.id) == [SUBSTITUTE_ID]

    def test_busy_substitute_is_left_out(
        self, db, contract_service, contract_payload, booking
    ):
        contract_service.create_contract(
            contract_payload(
                child_id=OTHER_CHILD_ID,
                main_tutor_id=SUBSTITUTE_ID,
                substitute_tutor1_id=None,
            )
        )
        assert SessionService(db).get_replacement_tutors(booking.id) == []

    def test_current_tutor_is_skipped(self, db, booking):
        service = SessionService(db)
        service.update_session_tutor(booking.id, SUBSTITUTE_ID)
        assert service.get_replacement_tutors(booking.id) == [TUTOR_ID]

    @pytest.mark.parametrize("status", [SessionStatus.DONE, SessionStatus.CANCELLED])
    def test_closed_sessions(self, db, booking, status):
        booking.status = status.value
        db.commit()
        with pytest.raises(ConflictException) as exc_info:
            SessionService(db).get_replacement_tutors(booking.id)
        assert exc_info.value.code == "SESSION_CLOSED"

    def test_unknown_session(self, db):
        with pytest.raises(NotFoundException):
            SessionService(db).get_replacement_tutors("missing")


class TestQueries:
    def test_lookups(self, db, active_contract_id):
        service = SessionService(db)
        assert len(service.get_sessions_by_contract(active_contract_id)) == 4
        assert len(service.get_sessions_by_tutor(TUTOR_ID)) == 4
        assert len(service.get_sessions_by_child(CHILD_ID)) == 4
        assert service.get_sessions_by_child(OTHER_CHILD_ID) == []
        assert len(service.get_upcoming_sessions(active_contract_id)) == 4
