from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from .config import get_settings

_settings = get_settings()
_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None

async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(
            _settings.mongodb_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=int(_settings.repository_timeout_seconds * 1000),
        )
        _db = _client[_settings.db_name]
        await _db.bookings.create_index([("customer_id", 1), ("created_at", -1)])
        await _db.bookings.create_index([("technician_id", 1), ("status", 1)])
        await _db.bookings.create_index([("status", 1)])
        await _db.technicians.create_index("user_id", unique=True)
        await _db.technicians.create_index([("approval_status", 1), ("is_available", 1)])
        await _db.technicians.create_index([("latitude", 1), ("longitude", 1)])
    return _db
