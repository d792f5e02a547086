# techcare/repositories/memory.py
"""
In-process store used with STORAGE_BACKEND=memory and by the test suite.

The conditional update checks and writes without awaiting in between, so on
a single event loop it is as atomic as Mongo's find_one_and_update.
"""
import copy
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..schemas.booking import Booking
from ..schemas.technician import Technician
from ..utils import new_id
from .base import (
    BookingFilter,
    BookingRepository,
    CatalogLookup,
    TechnicianDirectory,
    TechnicianFilter,
    directory_order,
    ineligibility_reason,
    matches_service_type,
    matches_technician_filter,
)


def _matches(doc: Dict[str, Any], filters: BookingFilter) -> bool:
    if filters.customer_id and doc.get("customer_id") != filters.customer_id:
        return False
    if filters.technician_id and doc.get("technician_id") != filters.technician_id:
        return False
    if filters.statuses and doc.get("status") not in {s.value for s in filters.statuses}:
        return False
    if filters.category and doc.get("category") != filters.category.value:
        return False
    if filters.search:
        term = filters.search.lower()
        haystack = f"{doc.get('title', '')}\n{doc.get('description', '')}".lower()
        if term not in haystack:
            return False
    created = doc.get("created_at")
    if filters.start_date and created < filters.start_date:
        return False
    if filters.end_date and created > filters.end_date:
        return False
    return True


class InMemoryBookingRepository(BookingRepository):
    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}

    async def create(self, data: Dict[str, Any]) -> Booking:
        row = copy.deepcopy(data)
        row["id"] = new_id()
        self._rows[row["id"]] = row
        return Booking.model_validate(row)

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        row = self._rows.get(booking_id)
        return Booking.model_validate(row) if row else None

    async def conditional_update(
        self, booking_id: str, expected: Dict[str, Any], changes: Dict[str, Any]
    ) -> Optional[Booking]:
        row = self._rows.get(booking_id)
        if row is None:
            return None
        if any(row.get(key) != value for key, value in expected.items()):
            return None
        row.update(copy.deepcopy(changes))
        return Booking.model_validate(row)

    async def list(
        self, filters: BookingFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Booking], int]:
        rows = [r for r in self._rows.values() if _matches(r, filters)]
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        page = rows[skip:] if limit is None else rows[skip:skip + limit]
        return [Booking.model_validate(r) for r in page], len(rows)

    def count(self) -> int:
        return len(self._rows)


class InMemoryTechnicianDirectory(TechnicianDirectory):
    def __init__(self, technicians: Optional[List[Technician]] = None):
        self._by_user: Dict[str, Technician] = {}
        for tech in technicians or []:
            self.add(tech)

    def add(self, technician: Technician) -> Technician:
        self._by_user[technician.user_id] = technician
        return technician

    async def get_by_user_id(self, user_id: str) -> Optional[Technician]:
        return self._by_user.get(user_id)

    async def list(
        self, filters: TechnicianFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Technician], int]:
        found = sorted(
            (t for t in self._by_user.values() if matches_technician_filter(t, filters)),
            key=directory_order,
        )
        page = found[skip:] if limit is None else found[skip:skip + limit]
        return page, len(found)

    async def list_eligible(self, service_type: Optional[str] = None) -> List[Technician]:
        return [
            t for t in self._by_user.values()
            if ineligibility_reason(t, require_coordinates=True) is None
            and matches_service_type(t, service_type)
        ]

    async def set_availability(self, user_id: str, is_available: bool) -> Optional[Technician]:
        tech = self._by_user.get(user_id)
        if tech is None:
            return None
        updated = tech.model_copy(update={"is_available": is_available})
        self._by_user[user_id] = updated
        return updated

    async def update_location(
        self, user_id: str, latitude: float, longitude: float, at: datetime
    ) -> Optional[Technician]:
        tech = self._by_user.get(user_id)
        if tech is None:
            return None
        updated = tech.model_copy(
            update={"latitude": latitude, "longitude": longitude, "last_location_update": at}
        )
        self._by_user[user_id] = updated
        return updated


class InMemoryCatalogLookup(CatalogLookup):
    def __init__(self):
        self.services: Dict[str, Dict[str, Any]] = {}
        self.locations: Dict[str, Dict[str, Any]] = {}
        self.time_slots: Dict[str, Dict[str, Any]] = {}

    async def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        return self.services.get(service_id)

    async def get_location(self, location_id: str) -> Optional[Dict[str, Any]]:
        return self.locations.get(location_id)

    async def get_time_slot(self, availability_id: str) -> Optional[Dict[str, Any]]:
        return self.time_slots.get(availability_id)


class MemoryStore:
    """Bundle of in-memory repositories sharing one lifetime."""

    def __init__(self):
        self.bookings = InMemoryBookingRepository()
        self.technicians = InMemoryTechnicianDirectory()
        self.catalog = InMemoryCatalogLookup()
