# techcare/utils.py
from typing import Optional
import math
from bson import ObjectId
from datetime import datetime, timezone

EARTH_RADIUS_KM = 6371


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ==================== Geolocation ====================

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometres between two points (Haversine formula).
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(dlon / 2) ** 2
    )
    # rounding can push a just outside [0, 1] near antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ==================== Database helpers ====================

OBJECT_ID = r"^[0-9a-fA-F]{24}$"


def new_id() -> str:
    return str(ObjectId())

