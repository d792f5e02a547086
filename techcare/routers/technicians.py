# techcare/routers/technicians.py
from fastapi import APIRouter, Depends, Path, Query
from typing import Optional

from ..deps import get_matching_engine, get_technician_directory
from ..errors import NotFoundError, ValidationError
from ..repositories.base import TechnicianDirectory, TechnicianFilter, is_listed
from ..schemas.technician import (
    AvailabilityPatch,
    LocationPatch,
    NearbySearchOut,
    Technician,
    TechnicianOut,
    TechnicianPage,
    TechnicianStatusOut,
)
from ..schemas.booking import Pagination
from ..schemas.user import Principal
from ..security import get_current_principal
from ..services.matching import GeoMatchingEngine
from ..services.policy import Action, Ownership, authorize
from ..utils import OBJECT_ID, utcnow
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _profile_out(tech: Technician) -> TechnicianOut:
    return TechnicianOut(
        id=tech.user_id,
        name=tech.full_name,
        phone=tech.phone,
        specialization=tech.specialization,
        experience=tech.experience,
        is_available=tech.is_available,
        rate=tech.rate,
        image_url=tech.image_url,
        address=tech.address,
        district=tech.district,
    )


def _status_out(tech: Technician) -> TechnicianStatusOut:
    return TechnicianStatusOut(
        user_id=tech.user_id,
        is_available=tech.is_available,
        latitude=tech.latitude,
        longitude=tech.longitude,
        last_location_update=tech.last_location_update,
    )


@router.get("/nearby", response_model=NearbySearchOut)
async def nearby_technicians(
    lat: float = Query(..., description="Search origin latitude"),
    lng: float = Query(..., description="Search origin longitude"),
    radius: Optional[float] = Query(None, description="Search radius in kilometres"),
    limit: Optional[int] = Query(None, description="Maximum number of technicians"),
    service_type: Optional[str] = Query(None, alias="serviceType", description="Specialization substring"),
    engine: GeoMatchingEngine = Depends(get_matching_engine),
):
    """
    Public discovery: eligible technicians ranked by straight-line distance,
    each with an arrival estimate.
    """
    return await engine.search(lat, lng, radius, limit, service_type)


@router.get("", response_model=TechnicianPage)
async def browse_technicians(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    specialization: Optional[str] = Query(None, max_length=100),
    is_available: Optional[bool] = Query(None, alias="isAvailable"),
    search: Optional[str] = Query(None, max_length=100),
    min_rate: Optional[float] = Query(None, ge=0, alias="minRate"),
    max_rate: Optional[float] = Query(None, ge=0, alias="maxRate"),
    directory: TechnicianDirectory = Depends(get_technician_directory),
):
    """Public directory of approved technicians, ordered by name."""
    if min_rate is not None and max_rate is not None and min_rate > max_rate:
        raise ValidationError("minRate cannot be greater than maxRate")
    filters = TechnicianFilter(
        specialization=specialization.strip() if specialization and specialization.strip() else None,
        is_available=is_available,
        search=search.strip() if search and search.strip() else None,
        min_rate=min_rate,
        max_rate=max_rate,
    )
    items, total = await directory.list(filters, skip=(page - 1) * limit, limit=limit)
    return TechnicianPage(
        technicians=[_profile_out(t) for t in items],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{user_id}", response_model=TechnicianOut)
async def technician_profile(
    user_id: str = Path(..., pattern=OBJECT_ID),
    directory: TechnicianDirectory = Depends(get_technician_directory),
):
    tech = await directory.get_by_user_id(user_id)
    # unapproved or deactivated profiles are hidden
    if tech is None or not is_listed(tech):
        raise NotFoundError("Technician not found")
    return _profile_out(tech)


@router.put("/{user_id}/availability", response_model=TechnicianStatusOut)
async def set_availability(
    user_id: str,
    body: AvailabilityPatch,
    current: Principal = Depends(get_current_principal),
    directory: TechnicianDirectory = Depends(get_technician_directory),
):
    authorize(current, Action.SET_AVAILABILITY, Ownership(is_self=current.id == user_id))
    tech = await directory.set_availability(user_id, body.is_available)
    if tech is None:
        raise NotFoundError("Technician not found")
    logger.info("Technician %s availability set to %s", user_id, body.is_available)
    return _status_out(tech)


@router.put("/{user_id}/location", response_model=TechnicianStatusOut)
async def update_location(
    user_id: str,
    body: LocationPatch,
    current: Principal = Depends(get_current_principal),
    directory: TechnicianDirectory = Depends(get_technician_directory),
):
    authorize(current, Action.UPDATE_LOCATION, Ownership(is_self=current.id == user_id))
    tech = await directory.update_location(user_id, body.latitude, body.longitude, utcnow())
    if tech is None:
        raise NotFoundError("Technician not found")
    return _status_out(tech)
