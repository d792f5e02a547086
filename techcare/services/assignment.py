"""
Assignment coordinator: claims a technician for a booking.

Covers the two ways a technician gets attached to a booking, an ADMIN
assignment and a customer booking a technician directly. Eligibility is
looked up again at that moment, since it may have changed since discovery;
the state machine's conditional write decides which of two racing
requests wins.
"""
import logging
from typing import Optional

from ..errors import NotFoundError, ValidationError
from ..repositories.base import TechnicianDirectory, ineligibility_reason
from ..schemas.booking import Booking, BookingCreate, BookingUpdate
from ..schemas.technician import Technician
from ..schemas.user import Principal
from .policy import Action, authorize
from .state_machine import BookingStateMachine

logger = logging.getLogger(__name__)


class AssignmentCoordinator:
    def __init__(self, machine: BookingStateMachine, directory: TechnicianDirectory):
        self.machine = machine
        self.directory = directory

    async def _eligible_technician(self, technician_id: str) -> Technician:
        technician = await self.directory.get_by_user_id(technician_id)
        if technician is None:
            raise NotFoundError("Technician not found")
        reason = ineligibility_reason(technician)
        if reason:
            logger.info("Technician %s rejected for assignment: %s", technician_id, reason)
            raise ValidationError(reason)
        return technician

    async def create_booking(self, principal: Principal, payload: BookingCreate) -> Booking:
        technician: Optional[Technician] = None
        if payload.technician_id:
            authorize(principal, Action.CREATE_BOOKING)
            technician = await self._eligible_technician(payload.technician_id)
        return await self.machine.create(principal, payload, technician)

    async def assign(self, principal: Principal, booking_id: str, technician_id: str) -> Booking:
        booking = await self.machine.load(principal, booking_id, Action.ASSIGN_TECHNICIAN)
        technician = await self._eligible_technician(technician_id)
        return await self.machine.assign(booking, technician)

    async def update_booking(self, principal: Principal, booking_id: str, payload: BookingUpdate) -> Booking:
        booking = await self.machine.load(principal, booking_id, Action.UPDATE_BOOKING)
        technician: Optional[Technician] = None
        if booking.technician_id and payload.estimated_hours is not None:
            # re-quote at the current rate; a vanished profile keeps the old price
            technician = await self.directory.get_by_user_id(booking.technician_id)
        return await self.machine.update_details(principal, booking_id, payload, technician)
