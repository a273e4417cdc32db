"""
Database models for the MathBridge scheduling core.

Importing this package registers every table on ``Base.metadata``.
"""

from .contract import Contract
from .event_outbox import EventOutbox, EventOutboxStatus
from .package import Package
from .reschedule_request import RescheduleRequest
from .session import LessonSession

__all__ = [
    "Contract",
    "EventOutbox",
    "EventOutboxStatus",
    "LessonSession",
    "Package",
    "RescheduleRequest",
]
