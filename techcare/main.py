from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .errors import register_exception_handlers
from .logging_context import configure_logging
from .middleware.request_id import RequestIdMiddleware
from .routers import bookings, technicians
import logging

settings = get_settings()

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title=settings.app_name)
app.state.limiter = limiter
register_exception_handlers(app)

if settings.env == "dev":
    cors_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_regex = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"
    cors_headers = ["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With", "X-Request-ID"]
else:
    frontend_url = settings.frontend_base_url
    cors_origins = [frontend_url] if frontend_url else []
    cors_regex = None
    cors_headers = ["Authorization", "Content-Type", "Accept", "X-Request-ID"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=cors_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=cors_headers,
    expose_headers=["Content-Type", "X-Request-ID"],
)
app.add_middleware(RequestIdMiddleware)

@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.env, "storage_backend": settings.storage_backend}

app.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
app.include_router(technicians.router, prefix="/technicians", tags=["technicians"])

logger.info("%s started (env=%s, storage=%s)", settings.app_name, settings.env, settings.storage_backend)
