"""Scheduling domain events and the outbox publisher."""

from mathbridge.events.publisher import EventPublisher
from mathbridge.events.scheduling_events import (
    ContractCreated,
    ContractStatusChanged,
    RescheduleProcessed,
    RescheduleRequested,
    SessionStatusChanged,
    TutorsAssigned,
)

__all__ = [
    "ContractCreated",
    "ContractStatusChanged",
    "EventPublisher",
    "RescheduleProcessed",
    "RescheduleRequested",
    "SessionStatusChanged",
    "TutorsAssigned",
]
