"""FastAPI dependency wiring for repositories and services."""
from fastapi import Depends

from .config import get_settings
from .db import get_db
from .repositories.base import BookingRepository, CatalogLookup, TechnicianDirectory
from .repositories.memory import MemoryStore
from .repositories.mongo import MongoBookingRepository, MongoCatalogLookup, MongoTechnicianDirectory
from .services.assignment import AssignmentCoordinator
from .services.matching import GeoMatchingEngine
from .services.projector import ViewProjector
from .services.state_machine import BookingStateMachine

settings = get_settings()

# only used when STORAGE_BACKEND=memory
memory_store = MemoryStore()


def _guard_options() -> dict:
    return {
        "timeout": settings.repository_timeout_seconds,
        "read_retries": settings.repository_read_retries,
    }


async def get_booking_repository() -> BookingRepository:
    if settings.storage_backend == "memory":
        return memory_store.bookings
    return MongoBookingRepository(await get_db(), **_guard_options())


async def get_technician_directory() -> TechnicianDirectory:
    if settings.storage_backend == "memory":
        return memory_store.technicians
    return MongoTechnicianDirectory(await get_db(), **_guard_options())


async def get_catalog() -> CatalogLookup:
    if settings.storage_backend == "memory":
        return memory_store.catalog
    return MongoCatalogLookup(await get_db(), **_guard_options())


def get_state_machine(
    repository: BookingRepository = Depends(get_booking_repository),
) -> BookingStateMachine:
    return BookingStateMachine(repository)


def get_coordinator(
    machine: BookingStateMachine = Depends(get_state_machine),
    directory: TechnicianDirectory = Depends(get_technician_directory),
) -> AssignmentCoordinator:
    return AssignmentCoordinator(machine, directory)


def get_matching_engine(
    directory: TechnicianDirectory = Depends(get_technician_directory),
) -> GeoMatchingEngine:
    return GeoMatchingEngine(
        directory,
        speed_kmh=settings.average_speed_kmh,
        default_radius_km=settings.default_radius_km,
        default_limit=settings.default_match_limit,
    )


def get_projector(
    directory: TechnicianDirectory = Depends(get_technician_directory),
    catalog: CatalogLookup = Depends(get_catalog),
) -> ViewProjector:
    return ViewProjector(directory, catalog, currency=settings.currency)
