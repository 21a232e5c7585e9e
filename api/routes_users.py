"""
api/routes_users.py: Users & Wallet Auth Endpoints

Endpoints:
    POST  /api/users/auth/wallet      → Wallet login (find-or-create), returns JWT
    GET   /api/users/profile          → Caller's profile with counts
    PUT   /api/users/profile          → Update email / name
    GET   /api/users/stats            → Caller's property and transfer totals
    GET   /api/users                  → All users (ADMIN)
    PATCH /api/users/{user_id}/role   → Change a user's role (ADMIN)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import CamelModel
from core.auth import get_current_user, require_role
from core.constants import UserRole, WALLET_ADDRESS_PATTERN
from db.models import User
from db.session import get_db
from modules.serializers import ok
from modules.users import (
    authenticate_wallet, get_profile, update_profile, get_user_stats, list_users, update_user_role,
)

router = APIRouter()

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class WalletAuthRequest(CamelModel):
    wallet_address: str = Field(pattern=WALLET_ADDRESS_PATTERN)
    signature: Optional[str] = None
    message: Optional[str] = None


class ProfileUpdateRequest(CamelModel):
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)


class RoleUpdateRequest(CamelModel):
    role: UserRole


@router.post("/auth/wallet")
async def wallet_login(body: WalletAuthRequest, db: AsyncSession = Depends(get_db)):
    data = await authenticate_wallet(db, body.wallet_address, body.signature, body.message)
    return ok(data)


@router.get("/profile")
async def read_profile(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"user": await get_profile(db, user)})


@router.put("/profile")
async def edit_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = await update_profile(db, user, email=body.email, name=body.name)
    return ok({"user": data}, "Profile updated successfully")


@router.get("/stats")
async def read_stats(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await get_user_stats(db, user))


@router.get("")
async def all_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[UserRole] = None,
    search: Optional[str] = Query(None, max_length=100),
    _: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return ok(await list_users(db, page, limit, role, search))


@router.patch("/{user_id}/role")
async def change_role(
    user_id: str,
    body: RoleUpdateRequest,
    _: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    data = await update_user_role(db, user_id, body.role)
    return ok({"user": data}, "User role updated successfully")
