"""
core/auth.py: Authentication & Role Guards
============================================
FastAPI dependencies that every protected route uses:

    async def endpoint(user: User = Depends(get_current_user)): ...
    async def admin_only(user: User = Depends(require_role(UserRole.ADMIN))): ...
"""

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import UserRole
from core.crypto import crypto_engine
from core.errors import ApiError, ErrorCode
from db.models import User
from db.session import get_db

logger = logging.getLogger("deedchain.auth")

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    401: no bearer token, or the token's wallet has no user row.
    403: token present but invalid or expired.
    """
    if credentials is None or not credentials.credentials:
        raise ApiError.unauthorized("Access token required", ErrorCode.WALLET_NOT_CONNECTED)

    try:
        payload = crypto_engine.verify_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise ApiError.forbidden("Invalid or expired token", ErrorCode.UNAUTHORIZED)

    result = await db.execute(
        select(User).where(User.wallet_address == payload["walletAddress"].lower())
    )
    user = result.scalars().first()
    if not user:
        raise ApiError.unauthorized("User not found", ErrorCode.USER_NOT_FOUND)
    return user


def require_role(*roles: UserRole):
    """Dependency factory: 403 unless the caller holds one of `roles`."""
    allowed = set(roles)

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning(f"Role {user.role.value} denied (needs {sorted(r.value for r in allowed)})")
            raise ApiError.forbidden("Insufficient permissions")
        return user

    return _check
