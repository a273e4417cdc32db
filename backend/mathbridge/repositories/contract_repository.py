# backend/mathbridge/repositories/contract_repository.py
"""
Contract Repository for the MathBridge scheduling core.

Besides plain lookups it answers the one scheduling question contracts own:
does a child already have a live contract whose weekly window clashes with a
proposed one.
"""

from datetime import date, time
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.enums import ContractStatus
from ..domain.overlap import contract_windows_conflict
from ..models.contract import Contract
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

LIVE_CONTRACT_STATUSES = (ContractStatus.PENDING.value, ContractStatus.ACTIVE.value)


class ContractRepository(BaseRepository[Contract]):
    def __init__(self, db: Session):
        super().__init__(db, Contract)

    def get_by_id_with_package(
        self, contract_id: str, for_update: bool = False
    ) -> Optional[Contract]:
        try:
            query = self._query(for_update).options(joinedload(Contract.package))
            return query.filter(Contract.id == contract_id).first()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "retrieve") from exc

    def get_by_parent(self, parent_id: str) -> List[Contract]:
        try:
            return (
                self.db.query(Contract)
                .options(joinedload(Contract.package))
                .filter(Contract.parent_id == parent_id)
                .order_by(Contract.start_date.desc(), Contract.id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail(exc, "list") from exc

    def find_overlapping_contract_for_child(
        self,
        child_id: str,
        date_range: Tuple[date, date],
        time_window: Tuple[time, time],
        day_mask: int,
        exclude_contract_id: Optional[str] = None,
    ) -> Optional[Contract]:
        """
        First pending/active contract of the child that shares a weekday,
        overlapping dates and an overlapping time window with the proposal.
        """
        start_date, end_date = date_range
        try:
            query = self.db.query(Contract).filter(
                Contract.child_id == child_id,
                Contract.status.in_(LIVE_CONTRACT_STATUSES),
                Contract.start_date <= end_date,
                Contract.end_date >= start_date,
            )
            if exclude_contract_id:
                query = query.filter(Contract.id != exclude_contract_id)
            candidates = query.order_by(Contract.start_date, Contract.id).all()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "check overlap for") from exc

        for contract in candidates:
            if contract_windows_conflict(
                day_mask,
                date_range,
                time_window,
                contract.days_of_week,
                (contract.start_date, contract.end_date),
                (contract.start_time, contract.end_time),
            ):
                return contract
        return None

    def has_overlapping_contract_for_child(
        self,
        child_id: str,
        date_range: Tuple[date, date],
        time_window: Tuple[time, time],
        day_mask: int,
        exclude_contract_id: Optional[str] = None,
    ) -> bool:
        return (
            self.find_overlapping_contract_for_child(
                child_id, date_range, time_window, day_mask, exclude_contract_id
            )
            is not None
        )
