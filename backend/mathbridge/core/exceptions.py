# backend/mathbridge/core/exceptions.py
"""
Domain-specific exceptions for the MathBridge scheduling core.

Every operation fails with one of these. They carry a message, a stable code
and a details dict, and know how to turn themselves into an HTTPException for
whichever API layer sits on top.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed or violates a static rule."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when the request is well-formed but clashes with current state."""

    status_code = status.HTTP_409_CONFLICT


class CapacityException(DomainException):
    """Raised when a date range cannot hold the required number of sessions."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when the caller does not own the resource it is acting on."""

    status_code = status.HTTP_403_FORBIDDEN


class TransientException(DomainException):
    """Raised when a dependency is briefly unavailable. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    retry_after_s: int = 2

    def to_http_exception(self) -> HTTPException:
        exc = super().to_http_exception()
        exc.headers = {"Retry-After": str(self.retry_after_s)}
        return exc


class ServiceException(DomainException):
    """Raised when a service operation fails for an unexpected reason."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class ContractOverlapException(ConflictException):
    """Raised when a child already has a contract in the same weekly window."""

    def __init__(self, child_id: str, conflicting_contract_id: Optional[str] = None):
        super().__init__(
            message="The child already has a contract that overlaps this schedule",
            code="CONTRACT_OVERLAP",
            details={"child_id": child_id, "conflicting_contract_id": conflicting_contract_id},
        )


class TutorUnavailableException(ConflictException):
    """Raised when a tutor already has a scheduled session in the requested slot."""

    def __init__(
        self,
        tutor_id: str,
        session_date: str,
        start_time: str,
        end_time: str,
    ):
        super().__init__(
            message=f"Tutor is not available on {session_date} {start_time}-{end_time}",
            code="TUTOR_UNAVAILABLE",
            details={
                "tutor_id": tutor_id,
                "date": session_date,
                "start_time": start_time,
                "end_time": end_time,
            },
        )


class PendingRescheduleExistsException(ConflictException):
    def __init__(self, contract_id: str):
        super().__init__(
            message="A pending reschedule request already exists for this contract",
            code="RESCHEDULE_PENDING",
            details={"contract_id": contract_id},
        )


class RescheduleBudgetExhaustedException(ConflictException):
    def __init__(self, contract_id: str):
        super().__init__(
            message="No reschedules remaining for this contract",
            code="RESCHEDULE_BUDGET_EXHAUSTED",
            details={"contract_id": contract_id, "reschedule_count": 0},
        )


class InvalidStatusTransitionException(ConflictException):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            message=f"Cannot change {entity} status from '{current}' to '{target}'",
            code="INVALID_STATUS_TRANSITION",
            details={"entity": entity, "current_status": current, "target_status": target},
        )


class ConcurrentModificationException(TransientException):
    """Raised when another writer changed the same row first."""

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "The record was modified concurrently, please retry",
            code="CONCURRENT_MODIFICATION",
            details=details or {},
        )


class SchedulingLockBusyException(TransientException):
    """Raised when another request holds the scheduling mutex for a key."""

    retry_after_s = 1

    def __init__(self, lock_key: str):
        super().__init__(
            message="Another change to this schedule is in progress, please retry",
            code="SCHEDULING_LOCK_BUSY",
            details={"lock_key": lock_key},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access fails for reasons that are neither transient nor a
    business rule, such as malformed queries. Services translate it into a
    ServiceException.
    """
