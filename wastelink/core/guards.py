from wastelink.core.errors import Forbidden
from wastelink.core.policy import OVERSIGHT_ROLES


def ensure_assignee(pickup, actor):
    # Drivers can only update their own assigned pickups
    if pickup.assigned_to != actor.user_id:
        raise Forbidden("Driver can only update assigned pickups")


def ensure_requester(pickup, actor):
    if actor.role in OVERSIGHT_ROLES:
        return
    if pickup.requested_by != actor.user_id:
        raise Forbidden("Only the requester can cancel this pickup")
