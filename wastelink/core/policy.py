# wastelink/core/policy.py
from enum import Enum

from wastelink.core.errors import Forbidden


class Role(str, Enum):
    HOUSEHOLD = "household"
    SME = "sme"
    DRIVER = "driver"
    RECYCLER = "recycler"
    COUNCIL = "council"
    ADMIN = "admin"


OPERATION_ROLES: dict[str, frozenset[Role]] = {
    "create":           frozenset({Role.HOUSEHOLD, Role.SME}),
    "claim":            frozenset({Role.DRIVER}),
    "assign":           frozenset({Role.COUNCIL, Role.ADMIN}),
    "mark_picked_up":   frozenset({Role.DRIVER}),
    "mark_completed":   frozenset({Role.DRIVER}),
    "assign_facility":  frozenset({Role.COUNCIL, Role.ADMIN}),
    "recycler_receive": frozenset({Role.RECYCLER}),
    "recycler_reject":  frozenset({Role.RECYCLER}),
    # requesters may only cancel their own pickups (see guards.ensure_requester)
    "cancel":           frozenset({Role.HOUSEHOLD, Role.SME, Role.COUNCIL, Role.ADMIN}),
}

OVERSIGHT_ROLES = frozenset({Role.COUNCIL, Role.ADMIN})


def can_perform(role: Role, operation: str) -> bool:
    return Role(role) in OPERATION_ROLES.get(operation, frozenset())


def ensure_role(role: Role, operation: str) -> None:
    if not can_perform(role, operation):
        raise Forbidden(f"Role '{Role(role).value}' may not perform {operation}")
