# backend/mathbridge/schemas/reschedule.py
"""Reschedule request schemas."""

from datetime import date, datetime, time
from typing import Optional

from pydantic import Field

from ..core.enums import RescheduleDecisionAction
from .base import StandardizedModel, StrictRequestModel


class RescheduleDecision(StrictRequestModel):
    """Staff decision on a pending request."""

    action: RescheduleDecisionAction
    new_tutor_id: Optional[str] = Field(
        None, description="Tutor for the replacement session; defaults to the current tutor"
    )
    note: Optional[str] = Field(None, max_length=1000)


class RescheduleRequestRead(StandardizedModel):
    id: str
    booking_id: str
    contract_id: str
    parent_id: Optional[str] = None
    kind: str
    requested_date: date
    start_time: time
    end_time: time
    reason: Optional[str] = None
    requested_tutor_id: Optional[str] = None
    status: str
    staff_id: Optional[str] = None
    staff_note: Optional[str] = None
    new_booking_id: Optional[str] = None
    processed_at: Optional[datetime] = None
