# backend/mathbridge/repositories/factory.py
"""
Repository Factory for the MathBridge scheduling core.

Provides centralized creation of repository instances so services (and tests)
can swap implementations in one place.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .contract_repository import ContractRepository
    from .event_outbox_repository import EventOutboxRepository
    from .package_repository import PackageRepository
    from .reschedule_request_repository import RescheduleRequestRepository
    from .session_repository import SessionRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_package_repository(db: Session) -> "PackageRepository":
        from .package_repository import PackageRepository

        return PackageRepository(db)

    @staticmethod
    def create_contract_repository(db: Session) -> "ContractRepository":
        from .contract_repository import ContractRepository

        return ContractRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_reschedule_request_repository(db: Session) -> "RescheduleRequestRepository":
        from .reschedule_request_repository import RescheduleRequestRepository

        return RescheduleRequestRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
