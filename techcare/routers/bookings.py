# techcare/routers/bookings.py
from fastapi import APIRouter, Depends, status, Path, Query, Request
from typing import Optional
from datetime import datetime

from ..config import get_settings
from ..deps import get_booking_repository, get_coordinator, get_projector, get_state_machine
from ..repositories.base import BookingFilter, BookingRepository
from ..schemas.booking import (
    AssignTechnician,
    BookingCreate,
    BookingOut,
    BookingPage,
    BookingUpdate,
    Pagination,
    StatusPatch,
)
from ..schemas.user import Principal
from ..security import get_current_principal
from ..services.assignment import AssignmentCoordinator
from ..services.policy import Action, authorize, list_scope
from ..services.projector import ViewProjector
from ..services.state_machine import BookingStateMachine, parse_category, parse_status
from ..middleware.rate_limit import apply_rate_limit
from ..utils import OBJECT_ID, ensure_utc
import logging

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: Request,
    payload: BookingCreate,
    current: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    projector: ViewProjector = Depends(get_projector),
):
    apply_rate_limit(request, settings.booking_rate_limit, "create_booking")
    booking = await coordinator.create_booking(current, payload)
    return await projector.project(booking)


@router.get("", response_model=BookingPage)
async def list_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current: Principal = Depends(get_current_principal),
    repository: BookingRepository = Depends(get_booking_repository),
    projector: ViewProjector = Depends(get_projector),
):
    authorize(current, Action.LIST_BOOKINGS)
    filters = BookingFilter(
        statuses=[parse_status(status_filter)] if status_filter else [],
        category=parse_category(category) if category else None,
        search=search.strip() if search and search.strip() else None,
        start_date=ensure_utc(start_date),
        end_date=ensure_utc(end_date),
        **list_scope(current),
    )
    items, total = await repository.list(filters, skip=(page - 1) * limit, limit=limit)
    return BookingPage(
        bookings=await projector.project_many(items),
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: str = Path(..., pattern=OBJECT_ID),
    current: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
    projector: ViewProjector = Depends(get_projector),
):
    booking = await machine.load(current, booking_id, Action.VIEW_BOOKING)
    return await projector.project(booking)


@router.put("/{booking_id}", response_model=BookingOut)
async def update_booking(
    payload: BookingUpdate,
    booking_id: str = Path(..., pattern=OBJECT_ID),
    current: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    projector: ViewProjector = Depends(get_projector),
):
    booking = await coordinator.update_booking(current, booking_id, payload)
    return await projector.project(booking)


@router.put("/{booking_id}/status", response_model=BookingOut)
async def update_status(
    body: StatusPatch,
    booking_id: str = Path(..., pattern=OBJECT_ID),
    current: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
    projector: ViewProjector = Depends(get_projector),
):
    booking = await machine.transition(current, booking_id, body.status)
    return await projector.project(booking)


@router.put("/{booking_id}/assign-technician", response_model=BookingOut)
async def assign_technician(
    body: AssignTechnician,
    booking_id: str = Path(..., pattern=OBJECT_ID),
    current: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    projector: ViewProjector = Depends(get_projector),
):
    booking = await coordinator.assign(current, booking_id, body.technician_id)
    return await projector.project(booking)


@router.delete("/{booking_id}", response_model=BookingOut)
async def cancel_booking(
    booking_id: str = Path(..., pattern=OBJECT_ID),
    current: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
    projector: ViewProjector = Depends(get_projector),
):
    # bookings are never removed; cancelling is a state change
    booking = await machine.cancel(current, booking_id)
    return await projector.project(booking)
