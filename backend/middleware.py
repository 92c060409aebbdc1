from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token
from models import UserRole

logger = logging.getLogger(__name__)


async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token.

    The payload carries `user_id`, `email`, `name` and `role`.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ", 1)[1]
    payload = decode_access_token(token)

    if not payload or not payload.get("user_id"):
        return None

    return payload


async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
    return user


async def require_role(request: Request, *roles: UserRole) -> dict:
    """Require one of the given roles."""
    user = await require_auth(request)
    allowed = {r.value for r in roles}

    if user.get("role") not in allowed:
        logger.warning(f"Role check failed for {user.get('user_id')} on {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden"
        )

    return user


async def require_admin(request: Request) -> dict:
    """Require admin role."""
    return await require_role(request, UserRole.ADMIN)
