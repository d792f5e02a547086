from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

from .config import get_settings
from .schemas.user import Principal, Role

settings = get_settings()
ALGO = "HS256"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(user_id: str, role: Role, expires_hours: Optional[int] = None) -> str:
    """Tokens are issued by the auth service; this mirrors its format for dev and tests."""
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload = {"sub": user_id, "role": Role(role).value, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        role = Role(str(payload.get("role", "")).upper())
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return Principal(id=str(sub), role=role)
