"""Event publisher - writes domain events to the transactional outbox."""
from datetime import date, datetime, time
import re
from typing import Any, Dict, Optional, Protocol

from mathbridge.repositories.event_outbox_repository import EventOutboxRepository


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


def _event_type(event: Event) -> str:
    # ContractStatusChanged -> contract.status_changed
    words = re.findall(r"[A-Z][a-z0-9]*", type(event).__name__)
    head, *rest = [word.lower() for word in words]
    return f"{head}.{'_'.join(rest)}" if rest else head


class EventPublisher:
    """Publishes domain events into the outbox inside the caller's transaction."""

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(
        self, event: Event, aggregate_id: str, idempotency_key: Optional[str] = None
    ) -> None:
        """
        Queue an event for delivery.

        Nothing is sent from here: the outbox dispatcher picks the row up after
        the surrounding transaction commits, so a rollback discards the event too.
        """
        payload = event.to_dict()

        # Dates and times are stored as ISO strings for JSON serialization
        for key, value in payload.items():
            if isinstance(value, (datetime, date, time)):
                payload[key] = value.isoformat()

        event_type = _event_type(event)
        self.outbox_repo.enqueue(
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=idempotency_key,
        )
