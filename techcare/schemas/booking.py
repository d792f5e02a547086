from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime
from typing import List, Optional
import math


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class ServiceCategory(str, Enum):
    COMPUTER_REPAIR = "COMPUTER_REPAIR"
    LAPTOP_REPAIR = "LAPTOP_REPAIR"
    PHONE_REPAIR = "PHONE_REPAIR"
    TABLET_REPAIR = "TABLET_REPAIR"
    NETWORK_SETUP = "NETWORK_SETUP"
    SOFTWARE_INSTALLATION = "SOFTWARE_INSTALLATION"
    DATA_RECOVERY = "DATA_RECOVERY"
    VIRUS_REMOVAL = "VIRUS_REMOVAL"
    HARDWARE_UPGRADE = "HARDWARE_UPGRADE"
    CONSULTATION = "CONSULTATION"


class Booking(BaseModel):
    """Persisted booking record."""
    id: str
    customer_id: str
    technician_id: Optional[str] = None
    title: str
    description: str = ""
    category: ServiceCategory
    location: str = ""
    service_id: Optional[str] = None
    location_id: Optional[str] = None
    availability_id: Optional[str] = None
    status: BookingStatus
    scheduled_at: Optional[datetime] = None
    estimated_hours: Optional[int] = None
    actual_hours: Optional[float] = None
    total_price: float = 0.0
    customer_notes: str = ""
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


# ---------- request bodies ----------

class BookingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category: str
    location: str = Field(..., min_length=1)
    technician_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    estimated_hours: Optional[int] = Field(None, gt=0)
    service_id: Optional[str] = None
    location_id: Optional[str] = None
    availability_id: Optional[str] = None
    customer_notes: Optional[str] = None


class BookingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    estimated_hours: Optional[int] = Field(None, gt=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    customer_notes: Optional[str] = None


class StatusPatch(BaseModel):
    # parsed by the state machine so unknown values surface as a 400
    status: str


class AssignTechnician(BaseModel):
    technician_id: str = Field(..., min_length=1)


# ---------- views ----------

class TechnicianSummary(BaseModel):
    id: str
    name: str
    phone: str
    image_url: str
    specialization: Optional[str] = None
    rate: Optional[float] = None


class BookingOut(BaseModel):
    id: str
    customer_id: str
    technician_id: Optional[str] = None
    title: str
    description: str
    category: str
    service_name: str
    location: str
    status: str
    status_code: BookingStatus
    scheduled_at: Optional[datetime] = None
    date: str
    time: str
    estimated_hours: Optional[int] = None
    actual_hours: Optional[float] = None
    total_price: float
    price_display: str
    customer_notes: str = ""
    technician: Optional[TechnicianSummary] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class Pagination(BaseModel):
    current_page: int
    limit: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            current_page=page,
            limit=limit,
            total_pages=total_pages,
            total_items=total,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class BookingPage(BaseModel):
    bookings: List[BookingOut]
    pagination: Pagination
