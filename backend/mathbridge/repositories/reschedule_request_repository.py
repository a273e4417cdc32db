"""Reschedule request queries, including the pending-request guards."""

from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.enums import RescheduleStatus
from ..models.contract import Contract
from ..models.reschedule_request import RescheduleRequest
from .base_repository import BaseRepository


class RescheduleRequestRepository(BaseRepository[RescheduleRequest]):
    def __init__(self, db: Session):
        super().__init__(db, RescheduleRequest)

    def has_pending_for_booking(self, booking_id: str) -> bool:
        return self.exists(booking_id=booking_id, status=RescheduleStatus.PENDING.value)

    def has_pending_for_contract(self, contract_id: str) -> bool:
        return self.exists(contract_id=contract_id, status=RescheduleStatus.PENDING.value)

    def get_by_id_with_details(
        self, request_id: str, for_update: bool = False
    ) -> Optional[RescheduleRequest]:
        """Request with its session, contract and package loaded."""
        try:
            query = self._query(for_update).options(
                joinedload(RescheduleRequest.booking),
                joinedload(RescheduleRequest.contract).joinedload(Contract.package),
            )
            return query.filter(RescheduleRequest.id == request_id).first()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "retrieve") from exc

    def list_requests(
        self, parent_id: Optional[str] = None, status: Optional[str] = None
    ) -> List[RescheduleRequest]:
        try:
            query = self.db.query(RescheduleRequest)
            if parent_id is not None:
                query = query.filter(RescheduleRequest.parent_id == parent_id)
            if status is not None:
                query = query.filter(RescheduleRequest.status == status)
            return query.order_by(
                RescheduleRequest.created_at.desc(), RescheduleRequest.id.desc()
            ).all()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list") from exc
