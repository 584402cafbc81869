# wastelink/core/states.py
from enum import Enum


class PickupStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    PROCESSED = "processed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TRANSITIONS: dict[PickupStatus, frozenset[PickupStatus]] = {
    PickupStatus.PENDING:   frozenset({PickupStatus.ASSIGNED, PickupStatus.CANCELLED}),
    PickupStatus.ASSIGNED:  frozenset({PickupStatus.PICKED_UP, PickupStatus.CANCELLED}),
    PickupStatus.PICKED_UP: frozenset({PickupStatus.COMPLETED, PickupStatus.CANCELLED}),
    PickupStatus.COMPLETED: frozenset({PickupStatus.PROCESSED, PickupStatus.REJECTED}),
    # terminal
    PickupStatus.PROCESSED: frozenset(),
    PickupStatus.REJECTED:  frozenset(),
    PickupStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# administrative reassignment keeps the status at "assigned"
REASSIGNABLE_STATES = frozenset({PickupStatus.PENDING, PickupStatus.ASSIGNED})

# facility linkage is independent of the status progression
FACILITY_ASSIGNABLE_STATES = frozenset({
    PickupStatus.PENDING, PickupStatus.ASSIGNED,
    PickupStatus.PICKED_UP, PickupStatus.COMPLETED,
})


def can_transition(src: PickupStatus, dst: PickupStatus) -> bool:
    return PickupStatus(dst) in TRANSITIONS[PickupStatus(src)]
