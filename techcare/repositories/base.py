"""
Persistence interfaces for the booking core.

Handlers and services only see these abstractions; ``mongo.py`` and
``memory.py`` provide the implementations selected by ``STORAGE_BACKEND``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from pymongo.errors import PyMongoError

from ..errors import UpstreamError
from ..schemas.booking import Booking, BookingStatus, ServiceCategory
from ..schemas.technician import ApprovalStatus, Technician

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)


async def run_guarded(
    operation: str,
    factory: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    retries: int = 0,
) -> T:
    """
    Runs a repository call under a timeout, converting driver failures into
    UpstreamError. ``retries`` extra attempts are made; pass 0 for writes.
    """
    attempts = 1 + max(0, retries)
    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(factory(), timeout=timeout)
        except (asyncio.TimeoutError, PyMongoError) as exc:
            last_exc = exc
            if attempt < attempts:
                logger.warning("Repository %s failed (attempt %d/%d): %r", operation, attempt, attempts, exc)
    raise UpstreamError(f"Repository {operation} failed after {attempts} attempt(s)") from last_exc


@dataclass
class BookingFilter:
    customer_id: Optional[str] = None
    technician_id: Optional[str] = None
    statuses: List[BookingStatus] = field(default_factory=list)
    category: Optional[ServiceCategory] = None
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class TechnicianFilter:
    specialization: Optional[str] = None
    is_available: Optional[bool] = None
    search: Optional[str] = None
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None


class BookingRepository(ABC):
    """Create, load, conditionally update and list bookings. No business rules."""

    @abstractmethod
    async def create(self, data: Dict[str, Any]) -> Booking:
        ...

    @abstractmethod
    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    async def conditional_update(
        self, booking_id: str, expected: Dict[str, Any], changes: Dict[str, Any]
    ) -> Optional[Booking]:
        """
        Applies ``changes`` only if the stored row still matches every key in
        ``expected``. Returns the updated booking, or None when nothing matched.
        """

    @abstractmethod
    async def list(
        self, filters: BookingFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Booking], int]:
        """
        Page of bookings, newest first, plus the total count for ``filters``.
        ``limit=None`` returns every match from ``skip`` on.
        """

    async def list_active_for_technician(
        self, technician_id: str, exclude_id: Optional[str] = None
    ) -> List[Booking]:
        items, _ = await self.list(
            BookingFilter(technician_id=technician_id, statuses=list(ACTIVE_STATUSES)),
            limit=None,
        )
        return [b for b in items if b.id != exclude_id]


class TechnicianDirectory(ABC):
    """Technician profiles joined with their owning users."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Optional[Technician]:
        ...

    @abstractmethod
    async def list(
        self, filters: TechnicianFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Technician], int]:
        """Approved, active technicians matching ``filters``, ordered by name, plus the total."""

    @abstractmethod
    async def list_eligible(self, service_type: Optional[str] = None) -> List[Technician]:
        """Approved, active, available technicians with coordinates."""

    @abstractmethod
    async def set_availability(self, user_id: str, is_available: bool) -> Optional[Technician]:
        ...

    @abstractmethod
    async def update_location(
        self, user_id: str, latitude: float, longitude: float, at: datetime
    ) -> Optional[Technician]:
        ...


class CatalogLookup(ABC):
    """Read access to catalog-owned records referenced by bookings."""

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_location(self, location_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_time_slot(self, availability_id: str) -> Optional[Dict[str, Any]]:
        ...


def ineligibility_reason(technician: Technician, *, require_coordinates: bool = False) -> Optional[str]:
    if technician.approval_status != ApprovalStatus.APPROVED:
        return "Technician is not approved"
    if not technician.is_active:
        return "Technician account is not active"
    if not technician.is_available:
        return "Technician is currently unavailable"
    if require_coordinates and (technician.latitude is None or technician.longitude is None):
        return "Technician has no known location"
    return None


def matches_service_type(technician: Technician, service_type: Optional[str]) -> bool:
    if not service_type:
        return True
    return service_type.lower() in (technician.specialization or "").lower()


def is_listed(technician: Technician) -> bool:
    """Browsable profile: approved and backed by an active account."""
    return technician.approval_status == ApprovalStatus.APPROVED and technician.is_active


def matches_technician_filter(technician: Technician, filters: TechnicianFilter) -> bool:
    if not is_listed(technician):
        return False
    if filters.is_available is not None and technician.is_available != filters.is_available:
        return False
    if not matches_service_type(technician, filters.specialization):
        return False
    if filters.search:
        term = filters.search.lower()
        haystack = f"{technician.full_name or ''}\n{technician.specialization or ''}".lower()
        if term not in haystack:
            return False
    if filters.min_rate is not None and technician.rate < filters.min_rate:
        return False
    if filters.max_rate is not None and technician.rate > filters.max_rate:
        return False
    return True


def directory_order(technician: Technician) -> Tuple[str, str]:
    return ((technician.full_name or "").lower(), technician.user_id)
