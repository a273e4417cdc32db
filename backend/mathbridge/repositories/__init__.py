# backend/mathbridge/repositories/__init__.py
"""
Repository Pattern Implementation for the MathBridge scheduling core.

Each aggregate (package, contract, session, reschedule request, outbox) has
one repository; services obtain them through RepositoryFactory.
"""

from .base_repository import BaseRepository, IRepository
from .contract_repository import ContractRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .package_repository import PackageRepository
from .reschedule_request_repository import RescheduleRequestRepository
from .session_repository import SessionRepository

__all__ = [
    "BaseRepository",
    "ContractRepository",
    "EventOutboxRepository",
    "IRepository",
    "PackageRepository",
    "RepositoryFactory",
    "RescheduleRequestRepository",
    "SessionRepository",
]
