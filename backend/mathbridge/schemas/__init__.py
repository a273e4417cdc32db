# backend/mathbridge/schemas/__init__.py
"""
Pydantic schemas for the MathBridge scheduling core.
"""

from .contract import (
    ContractCreate,
    ContractRead,
    SessionRead,
    TutorAssignment,
)
from .reschedule import RescheduleDecision, RescheduleRequestRead

__all__ = [
    "ContractCreate",
    "ContractRead",
    "RescheduleDecision",
    "RescheduleRequestRead",
    "SessionRead",
    "TutorAssignment",
]
