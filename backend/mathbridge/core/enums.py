# backend/mathbridge/core/enums.py
"""
Core enums for the MathBridge scheduling core.

Status values are stored as lowercase strings. Legal moves between them are
defined once in ``mathbridge.domain.transitions``.
"""

from enum import Enum


class ContractStatus(str, Enum):
    """Lifecycle of a tutoring contract."""

    PENDING = "pending"  # Created, awaiting payment/activation
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionStatus(str, Enum):
    """Lifecycle of a single lesson session."""

    SCHEDULED = "scheduled"
    DONE = "done"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"  # Superseded by a replacement session


class RescheduleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RescheduleKind(str, Enum):
    """
    What a reschedule request asks staff to do.

    RESCHEDULE moves a session and spends the contract's budget, MAKE_UP moves
    a session the tutor could not teach without spending it, and
    TUTOR_REPLACEMENT keeps the slot but hands it to another tutor.
    """

    RESCHEDULE = "reschedule"
    MAKE_UP = "make_up"
    TUTOR_REPLACEMENT = "tutor_replacement"


class RescheduleDecisionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
