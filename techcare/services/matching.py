# techcare/services/matching.py
"""
Geo matching: ranks eligible technicians around an origin point.

Read-only; discovery requests go straight here without touching bookings.
"""
from typing import List, Optional

from ..errors import ValidationError
from ..repositories.base import TechnicianDirectory
from ..schemas.technician import NearbySearchOut, NearbyTechnician, SearchParameters, Technician
from ..utils import haversine_distance, round_half_up

AVERAGE_SPEED_KMH = 30
DEFAULT_RADIUS_KM = 10
DEFAULT_LIMIT = 20


def estimate_arrival(distance_km: float, speed_kmh: float = AVERAGE_SPEED_KMH) -> str:
    minutes = round_half_up(distance_km / speed_kmh * 60)
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    return f"{hours} hr {rest} min"


def _to_nearby(tech: Technician, distance_km: float, arrival: str) -> NearbyTechnician:
    return NearbyTechnician(
        id=tech.user_id,
        name=tech.full_name,
        phone=tech.phone,
        specialization=tech.specialization,
        experience=tech.experience,
        is_available=tech.is_available,
        rate=tech.rate,
        image_url=tech.image_url,
        latitude=tech.latitude,
        longitude=tech.longitude,
        address=tech.address,
        district=tech.district,
        distance_km=distance_km,
        estimated_arrival=arrival,
        last_location_update=tech.last_location_update,
    )


class GeoMatchingEngine:
    def __init__(
        self,
        directory: TechnicianDirectory,
        *,
        speed_kmh: float = AVERAGE_SPEED_KMH,
        default_radius_km: float = DEFAULT_RADIUS_KM,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.directory = directory
        self.speed_kmh = speed_kmh
        self.default_radius_km = default_radius_km
        self.default_limit = default_limit

    async def find_nearby(
        self,
        lat: float,
        lng: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
        service_type: Optional[str] = None,
    ) -> List[NearbyTechnician]:
        radius_km = self.default_radius_km if radius_km is None else radius_km
        limit = self.default_limit if limit is None else limit
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValidationError("Invalid coordinates provided")
        if radius_km <= 0:
            raise ValidationError("radius must be positive")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        ranked = []
        for tech in await self.directory.list_eligible(service_type or None):
            if tech.latitude is None or tech.longitude is None:
                continue
            raw = haversine_distance(lat, lng, tech.latitude, tech.longitude)
            distance = round(raw, 2)
            # filter on the reported value so every entry honours the radius
            if distance > radius_km:
                continue
            ranked.append((raw, tech.user_id, tech, distance))

        ranked.sort(key=lambda item: (item[0], item[1]))
        return [
            _to_nearby(tech, distance, estimate_arrival(raw, self.speed_kmh))
            for raw, _, tech, distance in ranked[:limit]
        ]

    async def search(
        self,
        lat: float,
        lng: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
        service_type: Optional[str] = None,
    ) -> NearbySearchOut:
        technicians = await self.find_nearby(lat, lng, radius_km, limit, service_type)
        return NearbySearchOut(
            technicians=technicians,
            search_parameters=SearchParameters(
                latitude=lat,
                longitude=lng,
                radius=self.default_radius_km if radius_km is None else radius_km,
                service_type=service_type or "all",
            ),
            total_found=len(technicians),
        )
