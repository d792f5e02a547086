"""
Tests for technician assignment, including the concurrent-claim race
"""
import asyncio

import pytest

from conftest import make_technician
from techcare.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from techcare.repositories.memory import InMemoryBookingRepository, InMemoryTechnicianDirectory
from techcare.schemas.booking import BookingCreate, BookingStatus, BookingUpdate
from techcare.services.assignment import AssignmentCoordinator
from techcare.services.state_machine import BookingStateMachine
from techcare.utils import new_id


def _payload(**overrides) -> BookingCreate:
    data = {
        "title": "Office network down",
        "description": "Router keeps rebooting",
        "category": "NETWORK_SETUP",
        "location": "Remera, Kigali",
        "estimated_hours": 3,
    }
    data.update(overrides)
    return BookingCreate(**data)


class SlowReadRepository(InMemoryBookingRepository):
    """Yields after every read so concurrent requests interleave between read and write."""

    async def get_by_id(self, booking_id):
        booking = await super().get_by_id(booking_id)
        await asyncio.sleep(0)
        return booking


@pytest.mark.asyncio
async def test_admin_assignment_confirms_and_quotes(machine, coordinator, customer, admin, technician):
    booking = await machine.create(customer, _payload())
    assigned = await coordinator.assign(admin, booking.id, technician.user_id)
    assert assigned.status is BookingStatus.CONFIRMED
    assert assigned.technician_id == technician.user_id
    assert assigned.total_price == 15000.0


@pytest.mark.asyncio
async def test_non_admin_cannot_assign(machine, coordinator, customer, technician, tech_principal):
    booking = await machine.create(customer, _payload())
    for actor in (customer, tech_principal):
        with pytest.raises(AuthorizationError):
            await coordinator.assign(actor, booking.id, technician.user_id)


@pytest.mark.asyncio
async def test_assignment_rechecks_eligibility(store, machine, coordinator, customer, admin, technician):
    booking = await machine.create(customer, _payload())
    # the technician went offline after showing up in discovery
    await store.technicians.set_availability(technician.user_id, False)
    with pytest.raises(ValidationError):
        await coordinator.assign(admin, booking.id, technician.user_id)
    stored = await store.bookings.get_by_id(booking.id)
    assert stored.status is BookingStatus.PENDING
    assert stored.technician_id is None


@pytest.mark.asyncio
async def test_assignment_unknown_technician_or_booking(machine, coordinator, customer, admin, technician):
    booking = await machine.create(customer, _payload())
    with pytest.raises(NotFoundError):
        await coordinator.assign(admin, booking.id, new_id())
    with pytest.raises(NotFoundError):
        await coordinator.assign(admin, new_id(), technician.user_id)


@pytest.mark.asyncio
async def test_only_pending_bookings_are_assigned(machine, coordinator, customer, admin, technician):
    booking = await machine.create(customer, _payload())
    await machine.cancel(customer, booking.id)
    with pytest.raises(ConflictError):
        await coordinator.assign(admin, booking.id, technician.user_id)


@pytest.mark.asyncio
async def test_admin_confirms_preselected_technician(machine, coordinator, customer, admin, technician):
    booking = await coordinator.create_booking(customer, _payload(technician_id=technician.user_id))
    assigned = await coordinator.assign(admin, booking.id, technician.user_id)
    assert assigned.status is BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_concurrent_assignments_only_one_wins(customer, admin):
    repository = SlowReadRepository()
    directory = InMemoryTechnicianDirectory([make_technician(), make_technician()])
    first, second = [t.user_id for t in await directory.list_eligible()]
    machine = BookingStateMachine(repository)
    coordinator = AssignmentCoordinator(machine, directory)
    booking = await machine.create(customer, _payload())

    results = await asyncio.gather(
        coordinator.assign(admin, booking.id, first),
        coordinator.assign(admin, booking.id, second),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)

    stored = await repository.get_by_id(booking.id)
    assert stored.status is BookingStatus.CONFIRMED
    assert stored.technician_id == successes[0].technician_id


@pytest.mark.asyncio
async def test_conditional_write_rejects_stale_pre_image(machine, customer, admin, technician):
    booking = await machine.create(customer, _payload())
    # another request cancels between our read and our write
    await machine.cancel(customer, booking.id)
    with pytest.raises(ConflictError):
        await machine.assign(booking, technician)


@pytest.mark.asyncio
async def test_changing_hours_quotes_price_again(coordinator, customer, technician):
    booking = await coordinator.create_booking(customer, _payload(technician_id=technician.user_id))
    assert booking.total_price == 15000.0

    updated = await coordinator.update_booking(customer, booking.id, BookingUpdate(estimated_hours=5))
    assert updated.estimated_hours == 5
    assert updated.total_price == 25000.0

    # other edits leave the quote alone
    renamed = await coordinator.update_booking(customer, booking.id, BookingUpdate(title="Router replaced"))
    assert renamed.total_price == 25000.0


@pytest.mark.asyncio
async def test_hours_on_unassigned_booking_keep_zero_price(coordinator, customer):
    booking = await coordinator.create_booking(customer, _payload())
    updated = await coordinator.update_booking(customer, booking.id, BookingUpdate(estimated_hours=4))
    assert updated.total_price == 0.0


@pytest.mark.asyncio
async def test_update_booking_checks_permissions_first(coordinator, customer, other_customer):
    booking = await coordinator.create_booking(customer, _payload())
    with pytest.raises(AuthorizationError):
        await coordinator.update_booking(other_customer, booking.id, BookingUpdate(estimated_hours=4))
