# backend/mathbridge/models/package.py
"""
Payment package model.

A package is what a parent buys: how many sessions a contract holds and how
many times those sessions may be rescheduled.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Package(Base):
    __tablename__ = "payment_packages"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(100), nullable=False)
    session_count = Column(Integer, nullable=False)
    sessions_per_week = Column(Integer, nullable=False, default=2)
    max_reschedule = Column(Integer, nullable=False, default=0)
    duration_days = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("session_count > 0", name="ck_packages_session_count_positive"),
        CheckConstraint("max_reschedule >= 0", name="ck_packages_max_reschedule_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<Package {self.id}: {self.name}, sessions={self.session_count}, "
            f"max_reschedule={self.max_reschedule}>"
        )
