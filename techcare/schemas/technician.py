from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime
from typing import List, Optional

from .booking import Pagination


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Technician(BaseModel):
    """Directory entry: technician profile joined with its owning user."""
    id: str
    user_id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    image_url: Optional[str] = None
    specialization: str = ""
    experience: Optional[str] = None
    rate: float = Field(0.0, ge=0)
    is_available: bool = False
    is_active: bool = True
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    district: Optional[str] = None
    last_location_update: Optional[datetime] = None


class NearbyTechnician(BaseModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    specialization: str
    experience: Optional[str] = None
    is_available: bool
    rate: float
    image_url: Optional[str] = None
    latitude: float
    longitude: float
    address: Optional[str] = None
    district: Optional[str] = None
    distance_km: float
    estimated_arrival: str
    last_location_update: Optional[datetime] = None


class SearchParameters(BaseModel):
    latitude: float
    longitude: float
    radius: float
    service_type: str


class NearbySearchOut(BaseModel):
    technicians: List[NearbyTechnician]
    search_parameters: SearchParameters
    total_found: int


class AvailabilityPatch(BaseModel):
    is_available: bool


class LocationPatch(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TechnicianStatusOut(BaseModel):
    user_id: str
    is_available: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_location_update: Optional[datetime] = None


class TechnicianOut(BaseModel):
    """Public profile as shown when browsing the directory."""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    specialization: str
    experience: Optional[str] = None
    is_available: bool
    rate: float
    image_url: Optional[str] = None
    address: Optional[str] = None
    district: Optional[str] = None


class TechnicianPage(BaseModel):
    technicians: List[TechnicianOut]
    pagination: Pagination
