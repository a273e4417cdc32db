# backend/mathbridge/models/contract.py
"""
Contract model for the MathBridge scheduling core.

A contract binds a child to a main tutor (plus up to two substitutes) on a
weekly schedule: a set of weekdays, a fixed daily time window, and an
inclusive date range. Creating a contract expands it into LessonSession rows.
"""

import logging
from typing import Any

from sqlalchemy import (
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
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import ContractStatus
from ..database import Base
from ..domain.weekdays import WeekdayMask

logger = logging.getLogger(__name__)


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Parties (users live in another service)
    parent_id = Column(String(26), nullable=False, index=True)
    child_id = Column(String(26), nullable=False, index=True)
    center_id = Column(String(26), nullable=True)
    main_tutor_id = Column(String(26), nullable=True, index=True)
    substitute_tutor1_id = Column(String(26), nullable=True)
    substitute_tutor2_id = Column(String(26), nullable=True)

    package_id = Column(String(26), ForeignKey("payment_packages.id"), nullable=False)

    # Weekly schedule
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    days_of_week = Column(Integer, nullable=False)

    session_count = Column(Integer, nullable=False)
    reschedule_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ContractStatus.PENDING.value, index=True)

    # Delivery details copied onto every session
    is_online = Column(Boolean, nullable=False, default=False)
    video_call_platform = Column(String(50), nullable=True)
    offline_address = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    package = relationship("Package", lazy="joined")
    sessions = relationship(
        "LessonSession",
        back_populates="contract",
        order_by="LessonSession.start_time",
    )

    __table_args__ = (
        CheckConstraint("days_of_week BETWEEN 1 AND 127", name="ck_contracts_days_of_week"),
        CheckConstraint("reschedule_count >= 0", name="ck_contracts_reschedule_count"),
        CheckConstraint("session_count > 0", name="ck_contracts_session_count"),
        CheckConstraint("end_date >= start_date", name="ck_contracts_date_order"),
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="ck_contracts_status",
        ),
        Index("ix_contracts_child_status", "child_id", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = ContractStatus.PENDING.value

    @property
    def weekday_mask(self) -> WeekdayMask:
        return WeekdayMask(self.days_of_week)

    @property
    def days_of_week_display(self) -> str:
        return self.weekday_mask.display()

    @property
    def tutor_ids(self) -> list[str]:
        """Main tutor first, then substitutes, skipping unset slots."""
        return [
            tutor_id
            for tutor_id in (
                self.main_tutor_id,
                self.substitute_tutor1_id,
                self.substitute_tutor2_id,
            )
            if tutor_id
        ]

    def __repr__(self) -> str:
        return (
            f"<Contract {self.id}: child={self.child_id}, tutor={self.main_tutor_id}, "
            f"{self.start_date}..{self.end_date} {self.start_time}-{self.end_time}, "
            f"days={self.days_of_week}, status={self.status}>"
        )
