"""
Booking lifecycle state machine.

Owns the transition table and evaluates guards in a fixed order:

1. the booking exists (NotFoundError)
2. the requested status is a known value (ValidationError)
3. the principal is allowed to act on the booking (AuthorizationError)
4. ``(current status, role) -> target`` is in the table (ConflictError)
5. the status write, with its timestamps, as one conditional update

A failed guard aborts before anything is written. The conditional update
carries the status and technician that were read, so a request that raced
with another one finds no matching row and gets a ConflictError.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional, Tuple

from ..errors import ConflictError, NotFoundError, ValidationError
from ..repositories.base import BookingRepository, ineligibility_reason
from ..schemas.booking import Booking, BookingCreate, BookingStatus, BookingUpdate, ServiceCategory
from ..schemas.technician import Technician
from ..schemas.user import Principal, Role
from ..utils import ensure_utc, utcnow
from .policy import Action, authorize, booking_ownership

logger = logging.getLogger(__name__)

S = BookingStatus

TERMINAL: FrozenSet[BookingStatus] = frozenset({S.COMPLETED, S.CANCELLED, S.REJECTED})
REQUIRES_TECHNICIAN: FrozenSet[BookingStatus] = frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED})

TRANSITIONS: Dict[BookingStatus, Dict[Role, FrozenSet[BookingStatus]]] = {
    S.PENDING: {
        Role.CUSTOMER: frozenset({S.CANCELLED}),
        Role.TECHNICIAN: frozenset({S.CONFIRMED, S.REJECTED}),
        Role.ADMIN: frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.REJECTED}),
    },
    S.CONFIRMED: {
        Role.CUSTOMER: frozenset({S.CANCELLED}),
        Role.TECHNICIAN: frozenset({S.IN_PROGRESS, S.CANCELLED}),
        Role.ADMIN: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.REJECTED}),
    },
    S.IN_PROGRESS: {
        Role.CUSTOMER: frozenset(),
        Role.TECHNICIAN: frozenset({S.COMPLETED, S.CANCELLED}),
        Role.ADMIN: frozenset({S.COMPLETED, S.CANCELLED, S.REJECTED}),
    },
}

DEFAULT_WINDOW_HOURS = 1


def allowed_targets(current: BookingStatus, role: Role) -> FrozenSet[BookingStatus]:
    # terminal states have no row
    return TRANSITIONS.get(current, {}).get(role, frozenset())


def parse_status(value: Optional[str]) -> BookingStatus:
    try:
        return BookingStatus((value or "").strip().upper())
    except ValueError:
        valid = ", ".join(s.value for s in BookingStatus)
        raise ValidationError(f"Invalid status {value!r}. Must be one of: {valid}") from None


def parse_category(value: Optional[str]) -> ServiceCategory:
    try:
        return ServiceCategory((value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid service category {value!r}") from None


def booking_window(
    scheduled_at: Optional[datetime], estimated_hours: Optional[int]
) -> Optional[Tuple[datetime, datetime]]:
    if scheduled_at is None:
        return None
    start = ensure_utc(scheduled_at)
    return start, start + timedelta(hours=estimated_hours or DEFAULT_WINDOW_HOURS)


def _overlaps(a: Tuple[datetime, datetime], b: Tuple[datetime, datetime]) -> bool:
    return (a[0] < b[1]) and (a[1] > b[0])


def _quote_price(technician: Optional[Technician], estimated_hours: Optional[int]) -> float:
    if technician is None or not estimated_hours:
        return 0.0
    return round(technician.rate * estimated_hours, 2)


class BookingStateMachine:
    def __init__(self, repository: BookingRepository):
        self.repository = repository

    async def _get(self, booking_id: str) -> Booking:
        booking = await self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def load(self, principal: Principal, booking_id: str, action: Action = Action.VIEW_BOOKING) -> Booking:
        booking = await self._get(booking_id)
        authorize(principal, action, booking_ownership(principal, booking))
        return booking

    async def ensure_technician_free(
        self,
        technician_id: str,
        scheduled_at: Optional[datetime],
        estimated_hours: Optional[int],
        exclude_id: Optional[str] = None,
    ) -> None:
        window = booking_window(scheduled_at, estimated_hours)
        if window is None:
            return
        for other in await self.repository.list_active_for_technician(technician_id, exclude_id):
            other_window = booking_window(other.scheduled_at, other.estimated_hours)
            if other_window and _overlaps(window, other_window):
                raise ConflictError("Technician already has a booking in that time window")

    async def create(
        self,
        principal: Principal,
        payload: BookingCreate,
        technician: Optional[Technician] = None,
    ) -> Booking:
        """New bookings always start PENDING, with or without a chosen technician."""
        authorize(principal, Action.CREATE_BOOKING)
        category = parse_category(payload.category)
        scheduled_at = ensure_utc(payload.scheduled_at)

        if payload.technician_id:
            if technician is None or technician.user_id != payload.technician_id:
                raise NotFoundError("Technician not found")
            reason = ineligibility_reason(technician)
            if reason:
                raise ValidationError(reason)
            await self.ensure_technician_free(technician.user_id, scheduled_at, payload.estimated_hours)

        now = utcnow()
        data = {
            "customer_id": principal.id,
            "technician_id": payload.technician_id or None,
            "title": payload.title,
            "description": payload.description,
            "category": category.value,
            "location": payload.location,
            "service_id": payload.service_id,
            "location_id": payload.location_id,
            "availability_id": payload.availability_id,
            "status": S.PENDING.value,
            "scheduled_at": scheduled_at,
            "estimated_hours": payload.estimated_hours,
            "actual_hours": None,
            "total_price": _quote_price(technician, payload.estimated_hours),
            "customer_notes": payload.customer_notes or "",
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
            "cancelled_at": None,
        }
        booking = await self.repository.create(data)
        logger.info("Booking %s created by customer %s (technician=%s)", booking.id, principal.id, booking.technician_id)
        return booking

    async def transition(
        self,
        principal: Principal,
        booking_id: str,
        requested: Optional[str],
        *,
        action: Action = Action.CHANGE_STATUS,
    ) -> Booking:
        booking = await self._get(booking_id)
        target = parse_status(requested)
        authorize(principal, action, booking_ownership(principal, booking))

        current = booking.status
        if target not in allowed_targets(current, principal.role):
            raise ConflictError(f"Transition not allowed: {current.value} -> {target.value}")
        if target in REQUIRES_TECHNICIAN and booking.technician_id is None:
            raise ConflictError(f"A technician must be assigned before moving to {target.value}")
        if current is S.PENDING and target is S.CONFIRMED:
            await self.ensure_technician_free(
                booking.technician_id, booking.scheduled_at, booking.estimated_hours, exclude_id=booking.id
            )

        now = utcnow()
        changes = {"status": target.value, "updated_at": now}
        if target is S.COMPLETED:
            changes["completed_at"] = now
        elif target is S.CANCELLED:
            changes["cancelled_at"] = now

        expected = {"status": current.value, "technician_id": booking.technician_id}
        updated = await self.repository.conditional_update(booking.id, expected, changes)
        if updated is None:
            logger.warning("Conditional write lost for booking %s (%s -> %s)", booking.id, current.value, target.value)
            raise ConflictError("Booking was modified by another request")

        logger.info(
            "Booking %s: %s -> %s by %s %s",
            booking.id, current.value, target.value, principal.role.value, principal.id,
        )
        return updated

    async def cancel(self, principal: Principal, booking_id: str) -> Booking:
        return await self.transition(
            principal, booking_id, S.CANCELLED.value, action=Action.CANCEL_BOOKING
        )

    async def assign(self, booking: Booking, technician: Technician) -> Booking:
        """
        PENDING -> CONFIRMED together with the technician reference. The caller
        has already authorized the request and checked eligibility.
        """
        if booking.status is not S.PENDING:
            raise ConflictError(f"Only pending bookings can be assigned (current: {booking.status.value})")
        await self.ensure_technician_free(
            technician.user_id, booking.scheduled_at, booking.estimated_hours, exclude_id=booking.id
        )

        changes = {
            "technician_id": technician.user_id,
            "status": S.CONFIRMED.value,
            "updated_at": utcnow(),
        }
        if booking.estimated_hours:
            changes["total_price"] = _quote_price(technician, booking.estimated_hours)

        expected = {"status": S.PENDING.value, "technician_id": booking.technician_id}
        updated = await self.repository.conditional_update(booking.id, expected, changes)
        if updated is None:
            logger.warning("Assignment of booking %s to %s lost the race", booking.id, technician.user_id)
            raise ConflictError("Booking was already assigned or changed by another request")
        logger.info("Booking %s assigned to technician %s", booking.id, technician.user_id)
        return updated

    async def update_details(
        self,
        principal: Principal,
        booking_id: str,
        payload: BookingUpdate,
        technician: Optional[Technician] = None,
    ) -> Booking:
        """
        Edits the descriptive fields. When ``estimated_hours`` changes and the
        assigned technician is given, the price is quoted again at their rate.
        """
        booking = await self._get(booking_id)
        authorize(principal, Action.UPDATE_BOOKING, booking_ownership(principal, booking))
        if booking.status in TERMINAL:
            raise ConflictError(f"Booking is {booking.status.value.lower()} and can no longer be edited")

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return booking
        if "scheduled_at" in changes:
            changes["scheduled_at"] = ensure_utc(changes["scheduled_at"])
        if booking.technician_id and ("scheduled_at" in changes or "estimated_hours" in changes):
            await self.ensure_technician_free(
                booking.technician_id,
                changes.get("scheduled_at", booking.scheduled_at),
                changes.get("estimated_hours", booking.estimated_hours),
                exclude_id=booking.id,
            )
        if (
            "estimated_hours" in changes
            and technician is not None
            and technician.user_id == booking.technician_id
        ):
            changes["total_price"] = _quote_price(technician, changes["estimated_hours"])
        changes["updated_at"] = utcnow()

        updated = await self.repository.conditional_update(
            booking.id, {"status": booking.status.value, "technician_id": booking.technician_id}, changes
        )
        if updated is None:
            raise ConflictError("Booking was modified by another request")
        return updated
