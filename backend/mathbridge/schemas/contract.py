# backend/mathbridge/schemas/contract.py
"""
Contract and session schemas.

Only shapes and types are checked here. Scheduling rules (weekday mask, fixed
session length, capacity) belong to the services so that every caller gets the
same domain exceptions.
"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import Field, field_validator

from .base import StandardizedModel, StrictRequestModel, parse_time_string


class ContractCreate(StrictRequestModel):
    parent_id: str = Field(..., description="Parent buying the package")
    child_id: str = Field(..., description="Child attending the sessions")
    package_id: str = Field(..., description="Package fixing session count and budget")
    center_id: Optional[str] = None
    main_tutor_id: Optional[str] = Field(None, description="Tutor teaching by default")
    substitute_tutor1_id: Optional[str] = None
    substitute_tutor2_id: Optional[str] = None
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    days_of_week: int = Field(..., description="Weekday bit mask, bit 0 = Sunday")
    is_online: bool = False
    video_call_platform: Optional[str] = Field(None, max_length=50)
    offline_address: Optional[str] = Field(None, max_length=500)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> object:
        return parse_time_string(v)


class TutorAssignment(StrictRequestModel):
    main_tutor_id: Optional[str] = None
    substitute_tutor1_id: Optional[str] = None
    substitute_tutor2_id: Optional[str] = None


class SessionRead(StandardizedModel):
    id: str
    contract_id: str
    child_id: str
    tutor_id: Optional[str] = None
    session_date: date
    start_time: datetime
    end_time: datetime
    status: str
    is_online: bool = False
    video_call_platform: Optional[str] = None
    offline_address: Optional[str] = None
    rescheduled_from_id: Optional[str] = None
    rescheduled_to_id: Optional[str] = None


class ContractRead(StandardizedModel):
    id: str
    parent_id: str
    child_id: str
    package_id: str
    center_id: Optional[str] = None
    main_tutor_id: Optional[str] = None
    substitute_tutor1_id: Optional[str] = None
    substitute_tutor2_id: Optional[str] = None
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    days_of_week: int
    days_of_week_display: str
    session_count: int
    reschedule_count: int
    status: str
    is_online: bool = False

