"""
Authorization policy.

One pure lookup answers "may this role perform this action given how the
principal relates to the target?". Handlers call ``authorize`` instead of
carrying their own role checks.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..errors import AuthorizationError
from ..schemas.booking import Booking
from ..schemas.user import Principal, Role


class Action(str, Enum):
    CREATE_BOOKING = "create_booking"
    LIST_BOOKINGS = "list_bookings"
    VIEW_BOOKING = "view_booking"
    UPDATE_BOOKING = "update_booking"
    CHANGE_STATUS = "change_status"
    CANCEL_BOOKING = "cancel_booking"
    ASSIGN_TECHNICIAN = "assign_technician"
    SET_AVAILABILITY = "set_availability"
    UPDATE_LOCATION = "update_location"


class Requirement(str, Enum):
    ANYONE = "anyone"
    OWNER = "owner"          # customer who created the booking
    ASSIGNEE = "assignee"    # technician assigned to the booking
    SELF = "self"            # technician acting on their own profile


@dataclass(frozen=True)
class Ownership:
    is_owner: bool = False
    is_assignee: bool = False
    is_self: bool = False


C, T, A = Role.CUSTOMER, Role.TECHNICIAN, Role.ADMIN

# (role, action) pairs absent from this table are denied
RULES: Dict[Tuple[Role, Action], Requirement] = {
    (C, Action.CREATE_BOOKING): Requirement.ANYONE,

    (C, Action.LIST_BOOKINGS): Requirement.ANYONE,
    (T, Action.LIST_BOOKINGS): Requirement.ANYONE,
    (A, Action.LIST_BOOKINGS): Requirement.ANYONE,

    (C, Action.VIEW_BOOKING): Requirement.OWNER,
    (T, Action.VIEW_BOOKING): Requirement.ASSIGNEE,
    (A, Action.VIEW_BOOKING): Requirement.ANYONE,

    (C, Action.UPDATE_BOOKING): Requirement.OWNER,
    (T, Action.UPDATE_BOOKING): Requirement.ASSIGNEE,
    (A, Action.UPDATE_BOOKING): Requirement.ANYONE,

    (C, Action.CHANGE_STATUS): Requirement.OWNER,
    (T, Action.CHANGE_STATUS): Requirement.ASSIGNEE,
    (A, Action.CHANGE_STATUS): Requirement.ANYONE,

    (C, Action.CANCEL_BOOKING): Requirement.OWNER,
    (T, Action.CANCEL_BOOKING): Requirement.ASSIGNEE,
    (A, Action.CANCEL_BOOKING): Requirement.ANYONE,

    (A, Action.ASSIGN_TECHNICIAN): Requirement.ANYONE,

    (T, Action.SET_AVAILABILITY): Requirement.SELF,
    (A, Action.SET_AVAILABILITY): Requirement.ANYONE,
    (T, Action.UPDATE_LOCATION): Requirement.SELF,
    (A, Action.UPDATE_LOCATION): Requirement.ANYONE,
}


def is_allowed(role: Role, action: Action, ownership: Ownership = Ownership()) -> bool:
    requirement = RULES.get((role, action))
    if requirement is None:
        return False
    if requirement is Requirement.ANYONE:
        return True
    if requirement is Requirement.OWNER:
        return ownership.is_owner
    if requirement is Requirement.ASSIGNEE:
        return ownership.is_assignee
    return ownership.is_self


def booking_ownership(principal: Principal, booking: Booking) -> Ownership:
    return Ownership(
        is_owner=booking.customer_id == principal.id,
        is_assignee=booking.technician_id is not None and booking.technician_id == principal.id,
    )


def authorize(principal: Principal, action: Action, ownership: Ownership = Ownership()) -> None:
    if not is_allowed(principal.role, action, ownership):
        raise AuthorizationError(f"{principal.role.value.lower()} may not {action.value.replace('_', ' ')}")


def list_scope(principal: Principal) -> Dict[str, Optional[str]]:
    """Filter fields restricting a booking list to what the principal may see."""
    if principal.role is Role.CUSTOMER:
        return {"customer_id": principal.id}
    if principal.role is Role.TECHNICIAN:
        return {"technician_id": principal.id}
    return {}
