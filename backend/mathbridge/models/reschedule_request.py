# backend/mathbridge/models/reschedule_request.py
"""
Reschedule request model.

A parent (or tutor, for replacement requests) asks staff to move one session.
Partial unique indexes keep at most one pending request per contract and per
session, so a race between two submissions is settled by the store.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RescheduleKind, RescheduleStatus
from ..database import Base

_PENDING = text("status = 'pending'")


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("sessions.id"), nullable=False, index=True)
    contract_id = Column(String(26), ForeignKey("contracts.id"), nullable=False, index=True)
    parent_id = Column(String(26), nullable=True, index=True)

    kind = Column(String(30), nullable=False, default=RescheduleKind.RESCHEDULE.value)
    requested_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    reason = Column(Text, nullable=True)
    requested_tutor_id = Column(String(26), nullable=True)

    status = Column(String(20), nullable=False, default=RescheduleStatus.PENDING.value, index=True)
    staff_id = Column(String(26), nullable=True)
    staff_note = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    new_booking_id = Column(String(26), ForeignKey("sessions.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    booking = relationship("LessonSession", foreign_keys=[booking_id])
    contract = relationship("Contract")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_reschedule_requests_status",
        ),
        CheckConstraint(
            "kind IN ('reschedule', 'make_up', 'tutor_replacement')",
            name="ck_reschedule_requests_kind",
        ),
        Index(
            "uq_reschedule_requests_pending_contract",
            "contract_id",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
        Index(
            "uq_reschedule_requests_pending_booking",
            "booking_id",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RescheduleRequest {self.id}: booking={self.booking_id}, kind={self.kind}, "
            f"{self.requested_date} {self.start_time}-{self.end_time}, status={self.status}>"
        )
