# backend/mathbridge/repositories/event_outbox_repository.py
"""
Repository for the scheduling event outbox.

Enqueue is idempotent on ``idempotency_key`` so replaying an operation never
produces a second notification.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, cast

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from mathbridge.database.session_utils import get_dialect_name
from mathbridge.models.event_outbox import EventOutbox, EventOutboxStatus

from .base_repository import translate_db_error

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row unless one already exists for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        payload = payload or {}
        key = idempotency_key or f"{event_type}:{aggregate_id}:{ulid.ULID()}"
        event_id = str(ulid.ULID())
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
        )

        try:
            if self._dialect == "postgresql":
                stmt = (
                    pg_insert(EventOutbox)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["idempotency_key"])
                )
            else:
                stmt = insert(EventOutbox).values(**values)
                if self._dialect == "sqlite":
                    stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
            inserted = bool(getattr(result, "rowcount", 0))
            self.db.flush()

            if inserted:
                row = self.db.get(EventOutbox, event_id)
            else:
                row = self.db.execute(
                    select(EventOutbox).where(EventOutbox.idempotency_key == key)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Failed to enqueue %s for %s: %s", event_type, aggregate_id, exc)
            raise translate_db_error(exc, "enqueue event") from exc

        if row is None:
            raise RuntimeError("Outbox row not found after enqueue")
        return cast(EventOutbox, row)

    def list_for_aggregate(self, aggregate_id: str) -> list[EventOutbox]:
        try:
            return list(
                self.db.execute(
                    select(EventOutbox)
                    .where(EventOutbox.aggregate_id == aggregate_id)
                    .order_by(EventOutbox.created_at, EventOutbox.id)
                ).scalars()
            )
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, "list events") from exc
