from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import Depends, HTTPException, Request
from marketplace.core_settings import get_settings
from marketplace.core.logging_config import set_request_context

BEARER_PREFIX = "Bearer "

def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

async def optional_user_id(request: Request) -> Optional[str]:
    """User id from a valid bearer token; ``None`` for anonymous callers.

    A present but invalid token is rejected rather than silently treated as a
    guest, so an expired session never places a guest order by accident.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = str(token_data["sub"])
    # Set on the event loop; sync routes run in threads that copy this context
    set_request_context(user_id=user_id)
    return user_id

def require_user_id(user_id: Optional[str] = Depends(optional_user_id)) -> str:
    if user_id is None:
        raise HTTPException(status_code=401, detail="Missing token")
    return user_id
