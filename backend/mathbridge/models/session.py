# backend/mathbridge/models/session.py
"""
Lesson session model.

One row per concrete lesson. Sessions are never moved in place: a reschedule
marks the original ``rescheduled`` and links it to a freshly scheduled row.

On PostgreSQL two exclusion constraints make the store itself refuse a second
``scheduled`` session overlapping the same tutor or the same child.
"""

import logging
from typing import Any

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import SessionStatus
from ..database import Base

logger = logging.getLogger(__name__)


class LessonSession(Base):
    __tablename__ = "sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    contract_id = Column(String(26), ForeignKey("contracts.id"), nullable=False, index=True)

    # Denormalised from the contract for per-child conflict checks
    child_id = Column(String(26), nullable=False, index=True)
    tutor_id = Column(String(26), nullable=True, index=True)

    session_date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)

    is_online = Column(Boolean, nullable=False, default=False)
    video_call_platform = Column(String(50), nullable=True)
    offline_address = Column(Text, nullable=True)

    rescheduled_from_id = Column(String(26), ForeignKey("sessions.id"), nullable=True)
    rescheduled_to_id = Column(String(26), ForeignKey("sessions.id"), nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    contract = relationship("Contract", back_populates="sessions")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_sessions_time_order"),
        CheckConstraint(
            "status IN ('scheduled', 'done', 'cancelled', 'rescheduled')",
            name="ck_sessions_status",
        ),
        Index("ix_sessions_tutor_date", "tutor_id", "session_date"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = SessionStatus.SCHEDULED.value

    def __repr__(self) -> str:
        return (
            f"<LessonSession {self.id}: contract={self.contract_id}, tutor={self.tutor_id}, "
            f"{self.start_time}-{self.end_time}, status={self.status}>"
        )


_sessions_exclusion_ddl = [
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist"),
    DDL(
        "ALTER TABLE sessions ADD CONSTRAINT sessions_no_overlap_per_tutor "
        "EXCLUDE USING gist (tutor_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (status = 'scheduled' AND tutor_id IS NOT NULL)"
    ),
    DDL(
        "ALTER TABLE sessions ADD CONSTRAINT sessions_no_overlap_per_child "
        "EXCLUDE USING gist (child_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (status = 'scheduled')"
    ),
]

for _ddl in _sessions_exclusion_ddl:
    event.listen(
        LessonSession.__table__,
        "after_create",
        _ddl.execute_if(dialect="postgresql"),
    )
