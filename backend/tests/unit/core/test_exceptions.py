from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm.exc import StaleDataError

from mathbridge.core.exceptions import (
    CapacityException,
    ConcurrentModificationException,
    ConflictException,
    ContractOverlapException,
    ForbiddenException,
    NotFoundException,
    PendingRescheduleExistsException,
    RepositoryException,
    RescheduleBudgetExhaustedException,
    SchedulingLockBusyException,
    TransientException,
    TutorUnavailableException,
    ValidationException,
)
from mathbridge.repositories.base_repository import translate_db_error
from mathbridge.services.base import resolve_integrity_conflict


def test_status_codes():
    assert ValidationException("x").to_http_exception().status_code == 400
    assert ForbiddenException("x").to_http_exception().status_code == 403
    assert NotFoundException("x").to_http_exception().status_code == 404
    assert ConflictException("x").to_http_exception().status_code == 409
    assert CapacityException("x").to_http_exception().status_code == 422
    assert TransientException("x").to_http_exception().status_code == 503


def test_code_defaults_to_class_name():
    assert NotFoundException("missing").code == "NotFoundException"


def test_detail_payload():
    exc = ContractOverlapException("kid", "c1")
    detail = exc.to_http_exception().detail
    assert detail["code"] == "CONTRACT_OVERLAP"
    assert detail["details"] == {"child_id": "kid", "conflicting_contract_id": "c1"}


def test_business_conflicts_are_conflicts():
    for exc in (
        ContractOverlapException("kid"),
        TutorUnavailableException("t", "2025-03-03", "16:00", "17:30"),
        PendingRescheduleExistsException("c"),
        RescheduleBudgetExhaustedException("c"),
    ):
        assert isinstance(exc, ConflictException)
        assert not exc.retryable


def test_transient_errors_carry_retry_after():
    for exc in (ConcurrentModificationException(), SchedulingLockBusyException("k")):
        http_exc = exc.to_http_exception()
        assert exc.retryable
        assert http_exc.status_code == 503
        assert "Retry-After" in http_exc.headers


def test_translate_db_error():
    stale = translate_db_error(StaleDataError("version mismatch"), "update")
    assert isinstance(stale, ConcurrentModificationException)

    timeout = translate_db_error(
        OperationalError("SELECT 1", {}, Exception("canceling statement due to statement timeout")),
        "read",
    )
    assert isinstance(timeout, TransientException)
    assert timeout.code == "STORE_UNAVAILABLE"

    other = translate_db_error(ProgrammingError("SELECT", {}, Exception("syntax")), "read")
    assert isinstance(other, RepositoryException)


def test_resolve_integrity_conflict():
    exc = IntegrityError(
        "INSERT", {}, Exception("UNIQUE constraint failed: reschedule_requests.contract_id")
    )
    assert resolve_integrity_conflict(exc).code == "RESCHEDULE_PENDING"

    tutor = IntegrityError(
        "INSERT", {}, Exception('violates exclusion constraint "sessions_no_overlap_per_tutor"')
    )
    assert resolve_integrity_conflict(tutor).code == "TUTOR_UNAVAILABLE"

    generic = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed"))
    assert resolve_integrity_conflict(generic).code == "INTEGRITY_CONFLICT"
