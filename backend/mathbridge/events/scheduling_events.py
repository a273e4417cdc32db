"""Scheduling domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ContractCreated:
    """Fired after a contract and its sessions are persisted."""

    contract_id: str
    parent_id: str
    child_id: str
    main_tutor_id: Optional[str]
    session_count: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ContractStatusChanged:
    """Fired after a contract moves to a new status."""

    contract_id: str
    previous_status: str
    new_status: str
    cancelled_sessions: int
    changed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TutorsAssigned:
    contract_id: str
    main_tutor_id: str
    substitute_tutor1_id: Optional[str]
    substitute_tutor2_id: Optional[str]
    reassigned_sessions: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RescheduleRequested:
    """Fired when a parent or tutor submits a request."""

    request_id: str
    contract_id: str
    booking_id: str
    kind: str
    requested_date: str
    start_time: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RescheduleProcessed:
    """Fired after staff approve or reject a request."""

    request_id: str
    contract_id: str
    booking_id: str
    kind: str
    status: str  # 'approved' or 'rejected'
    new_booking_id: Optional[str]
    processed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionStatusChanged:
    booking_id: str
    contract_id: str
    new_status: str
    changed_by: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
