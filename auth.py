"""
Authentication dependencies

Session issuance lives with the identity provider; this module only turns a
token into the current caller ({id, email}) or rejects the request.
"""

from typing import Optional
from fastapi import HTTPException, Header, Depends, Cookie
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from database import get_db
from crud.user import UserRepository
from auth_utils import decode_jwt

logger = logging.getLogger(__name__)


def _extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    # Priority 1: httpOnly cookie (browser clients)
    if auth_token:
        return auth_token
    # Priority 2: Authorization header (API consumers)
    if authorization and authorization.startswith("Bearer "):
        return authorization.replace("Bearer ", "").strip()
    return None


async def _resolve_user(token: str, db: AsyncSession) -> dict:
    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Cannot authenticate request: {e}")
        raise HTTPException(status_code=401, detail="Authentication is not configured")
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    # Convert user_id to integer (JWT stores it as string)
    try:
        user_id = int(user_id_str)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid user ID in token")

    user = await UserRepository(db).get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")

    return {"id": str(user.id), "email": user.email}


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency function to get current authenticated user.

    Authentication priority:
    1. Check auth_token cookie first
    2. Fallback to Authorization header (Bearer token)
    3. Raise 401 if neither is found
    """
    token = _extract_token(auth_token, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")
    return await _resolve_user(token, db)
