# techcare/services/projector.py
"""
Maps persisted bookings into the response shape the frontend renders.

Presentation only: nothing here writes back to the repositories.
"""
import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from ..repositories.base import CatalogLookup, TechnicianDirectory
from ..schemas.booking import Booking, BookingOut, TechnicianSummary
from ..schemas.technician import Technician

NOT_SCHEDULED = "Not scheduled"
DEFAULT_TECHNICIAN_NAME = "Technician"
DEFAULT_TECHNICIAN_PHONE = "Not provided"
DEFAULT_TECHNICIAN_IMAGE = "/images/default-technician.png"

DATE_FORMAT = "%b %d, %Y"
TIME_FORMAT = "%H:%M"


def format_price(amount: float, currency: str = "RWF") -> str:
    return f"{amount:,.0f} {currency}"


def _format_slot_date(value: Any) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10]).strftime(DATE_FORMAT)
        except ValueError:
            return value
    return None


def schedule_strings(slot: Optional[Dict[str, Any]], scheduled_at: Optional[datetime]) -> Tuple[str, str]:
    if slot:
        day = _format_slot_date(slot.get("date"))
        start, end = slot.get("start_time"), slot.get("end_time")
        if day:
            if start and end:
                return day, f"{start} - {end}"
            return day, start or NOT_SCHEDULED
    if scheduled_at is not None:
        return scheduled_at.strftime(DATE_FORMAT), scheduled_at.strftime(TIME_FORMAT)
    return NOT_SCHEDULED, NOT_SCHEDULED


def technician_summary(technician_id: Optional[str], technician: Optional[Technician]) -> Optional[TechnicianSummary]:
    if technician_id is None:
        return None
    if technician is None:
        return TechnicianSummary(
            id=technician_id,
            name=DEFAULT_TECHNICIAN_NAME,
            phone=DEFAULT_TECHNICIAN_PHONE,
            image_url=DEFAULT_TECHNICIAN_IMAGE,
        )
    return TechnicianSummary(
        id=technician_id,
        name=technician.full_name or DEFAULT_TECHNICIAN_NAME,
        phone=technician.phone or DEFAULT_TECHNICIAN_PHONE,
        image_url=technician.image_url or DEFAULT_TECHNICIAN_IMAGE,
        specialization=technician.specialization or None,
        rate=technician.rate,
    )


def render_booking(
    booking: Booking,
    *,
    technician: Optional[Technician] = None,
    service: Optional[Dict[str, Any]] = None,
    location: Optional[Dict[str, Any]] = None,
    slot: Optional[Dict[str, Any]] = None,
    currency: str = "RWF",
) -> BookingOut:
    day, time = schedule_strings(slot, booking.scheduled_at)
    service_name = (service or {}).get("name") or booking.category.value.replace("_", " ").title()
    location_text = (location or {}).get("name") or (location or {}).get("address") or booking.location
    return BookingOut(
        id=booking.id,
        customer_id=booking.customer_id,
        technician_id=booking.technician_id,
        title=booking.title,
        description=booking.description,
        category=booking.category.value,
        service_name=service_name,
        location=location_text,
        status=booking.status.value.lower(),
        status_code=booking.status,
        scheduled_at=booking.scheduled_at,
        date=day,
        time=time,
        estimated_hours=booking.estimated_hours,
        actual_hours=booking.actual_hours,
        total_price=booking.total_price,
        price_display=format_price(booking.total_price, currency),
        customer_notes=booking.customer_notes,
        technician=technician_summary(booking.technician_id, technician),
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        completed_at=booking.completed_at,
        cancelled_at=booking.cancelled_at,
    )


class ViewProjector:
    def __init__(self, directory: TechnicianDirectory, catalog: CatalogLookup, currency: str = "RWF"):
        self.directory = directory
        self.catalog = catalog
        self.currency = currency

    async def _none(self):
        return None

    async def project(self, booking: Booking) -> BookingOut:
        technician, service, location, slot = await asyncio.gather(
            self.directory.get_by_user_id(booking.technician_id) if booking.technician_id else self._none(),
            self.catalog.get_service(booking.service_id) if booking.service_id else self._none(),
            self.catalog.get_location(booking.location_id) if booking.location_id else self._none(),
            self.catalog.get_time_slot(booking.availability_id) if booking.availability_id else self._none(),
        )
        return render_booking(
            booking,
            technician=technician,
            service=service,
            location=location,
            slot=slot,
            currency=self.currency,
        )

    async def project_many(self, bookings: List[Booking]) -> List[BookingOut]:
        return list(await asyncio.gather(*(self.project(b) for b in bookings)))
