"""
Base schemas shared by the scheduling DTOs.
"""
from datetime import time

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Read model built from ORM rows, enums serialized by value."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


def parse_time_string(value: object) -> object:
    """Accept ``HH:MM`` strings alongside time objects."""
    if isinstance(value, str):
        try:
            hour, minute = value.strip().split(":")[:2]
            return time(int(hour), int(minute))
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value
