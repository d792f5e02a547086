from pydantic import BaseModel
import os
from dotenv import load_dotenv
load_dotenv()  # loads .env from the project root


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "TechCare")
    env: str = os.getenv("APP_ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    db_name: str = os.getenv("DB_NAME", "techcare")
    storage_backend: str = os.getenv("STORAGE_BACKEND", "mongo").lower()
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_expires_hours: int = _env_int("JWT_EXPIRES_HOURS", "8")
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

    # repository guard
    repository_timeout_seconds: float = _env_float("REPOSITORY_TIMEOUT_SECONDS", "5.0")
    repository_read_retries: int = _env_int("REPOSITORY_READ_RETRIES", "2")

    # matching
    default_radius_km: float = _env_float("DEFAULT_RADIUS_KM", "10")
    default_match_limit: int = _env_int("DEFAULT_MATCH_LIMIT", "20")
    average_speed_kmh: float = _env_float("AVERAGE_SPEED_KMH", "30")

    currency: str = os.getenv("CURRENCY", "RWF")
    booking_rate_limit: str = os.getenv("BOOKING_RATE_LIMIT", "15/minute")


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
