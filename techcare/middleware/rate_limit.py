"""
Per-endpoint rate limiting on top of the slowapi limiter stored in app.state
"""
from fastapi import Request, HTTPException
from limits import parse
from slowapi.util import get_remote_address

def apply_rate_limit(request: Request, limit: str, scope: str = "default"):
    """
    Applies ``limit`` (e.g. "15/minute") to the caller's address.

    If no limiter is configured (as in tests) this is a no-op.
    """
    limiter = getattr(request.app.state, "limiter", None)
    if limiter is None:
        return

    key = get_remote_address(request)
    if not limiter._limiter.hit(parse(limit), scope, key):
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests. Limit: {limit}. Try again later."
        )
