"""Status state machines for contracts, sessions and reschedule requests."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Generic, Mapping, Type, TypeVar, Union

from mathbridge.core.enums import ContractStatus, RescheduleStatus, SessionStatus
from mathbridge.core.exceptions import InvalidStatusTransitionException, ValidationException

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """A closed status enum plus the table of moves allowed between its members."""

    def __init__(self, entity: str, status_type: Type[S], transitions: Mapping[S, FrozenSet[S]]):
        self.entity = entity
        self.status_type = status_type
        self._transitions: Dict[S, FrozenSet[S]] = {
            status: frozenset(transitions.get(status, frozenset())) for status in status_type
        }

    def parse(self, value: Union[str, S]) -> S:
        if isinstance(value, self.status_type):
            return value
        try:
            return self.status_type(str(value).strip().lower())
        except ValueError:
            raise ValidationException(
                f"Unknown {self.entity} status '{value}'",
                code="INVALID_STATUS",
                details={
                    "entity": self.entity,
                    "status": value,
                    "allowed": [status.value for status in self.status_type],
                },
            ) from None

    def allowed_targets(self, current: Union[str, S]) -> FrozenSet[S]:
        return self._transitions[self.parse(current)]

    def can_transition(self, current: Union[str, S], target: Union[str, S]) -> bool:
        return self.parse(target) in self.allowed_targets(current)

    def is_terminal(self, status: Union[str, S]) -> bool:
        return not self.allowed_targets(status)

    def transition(self, current: Union[str, S], target: Union[str, S]) -> S:
        """Return the parsed target, or raise if the move is not allowed."""
        current_status = self.parse(current)
        target_status = self.parse(target)
        if target_status not in self._transitions[current_status]:
            raise InvalidStatusTransitionException(
                self.entity, current_status.value, target_status.value
            )
        return target_status


CONTRACT_STATES: StateMachine[ContractStatus] = StateMachine(
    "contract",
    ContractStatus,
    {
        ContractStatus.PENDING: frozenset({ContractStatus.ACTIVE, ContractStatus.CANCELLED}),
        ContractStatus.ACTIVE: frozenset({ContractStatus.COMPLETED, ContractStatus.CANCELLED}),
    },
)

SESSION_STATES: StateMachine[SessionStatus] = StateMachine(
    "session",
    SessionStatus,
    {
        SessionStatus.SCHEDULED: frozenset(
            {SessionStatus.DONE, SessionStatus.CANCELLED, SessionStatus.RESCHEDULED}
        ),
        SessionStatus.RESCHEDULED: frozenset({SessionStatus.CANCELLED}),
    },
)

RESCHEDULE_STATES: StateMachine[RescheduleStatus] = StateMachine(
    "reschedule_request",
    RescheduleStatus,
    {
        RescheduleStatus.PENDING: frozenset(
            {RescheduleStatus.APPROVED, RescheduleStatus.REJECTED}
        ),
    },
)
