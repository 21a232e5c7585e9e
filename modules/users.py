"""
modules/users.py: Wallet Users Module
========================================
Wallet login (find-or-create), profiles, per-user stats and role admin.
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import PropertyStatus, UserRole
from core.crypto import crypto_engine
from core.errors import ApiError, ErrorCode
from db.models import Property, Transfer, User, Verification
from db.session import AsyncSessionLocal
from modules.serializers import pagination, user_dict

logger = logging.getLogger("deedchain.modules.users")


async def get_user_by_wallet(db: AsyncSession, wallet_address: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.wallet_address == wallet_address.lower()))
    return result.scalars().first()


async def get_or_create_user(db: AsyncSession, wallet_address: str) -> tuple[User, bool]:
    """Users are created lazily, as CITIZENs, the first time a wallet shows up."""
    user = await get_user_by_wallet(db, wallet_address)
    if user:
        return user, False

    # Own session: a duplicate from a concurrent first login must not roll back the caller
    created = True
    async with AsyncSessionLocal() as own:
        own.add(User(wallet_address=wallet_address.lower(), role=UserRole.CITIZEN))
        try:
            await own.commit()
        except IntegrityError:
            await own.rollback()
            created = False

    user = await get_user_by_wallet(db, wallet_address)
    if created:
        logger.info(f"New user created: {wallet_address}")
    return user, created


async def authenticate_wallet(
    db: AsyncSession,
    wallet_address: str,
    signature: Optional[str] = None,
    message: Optional[str] = None,
) -> dict:
    if signature and message:
        if not crypto_engine.validate_wallet_signature(message, signature, wallet_address):
            raise ApiError.unauthorized("Invalid signature", ErrorCode.TRANSACTION_REJECTED)

    user, _ = await get_or_create_user(db, wallet_address)
    await db.commit()
    token = crypto_engine.create_access_token(user.wallet_address, user.id, user.role.value)
    logger.info(f"User authenticated: {wallet_address}")
    return {"token": token, "user": user_dict(user)}


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar_one()


async def get_profile(db: AsyncSession, user: User) -> dict:
    data = user_dict(user)
    data["counts"] = {
        "ownedProperties": await _count(db, select(func.count(Property.id)).where(Property.owner_id == user.id)),
        "verifications": await _count(db, select(func.count(Verification.id)).where(Verification.verifier_id == user.id)),
        "sentTransfers": await _count(db, select(func.count(Transfer.id)).where(Transfer.from_user_id == user.id)),
        "receivedTransfers": await _count(db, select(func.count(Transfer.id)).where(Transfer.to_user_id == user.id)),
    }
    return data


async def update_profile(db: AsyncSession, user: User, email: Optional[str] = None, name: Optional[str] = None) -> dict:
    if email:
        user.email = email.lower()
    if name:
        user.name = name
    await db.commit()
    logger.info(f"User profile updated: {user.wallet_address}")
    return user_dict(user)


async def get_user_stats(db: AsyncSession, user: User) -> dict:
    owned = select(func.count(Property.id)).where(Property.owner_id == user.id)
    return {
        "totalProperties": await _count(db, owned),
        "verifiedProperties": await _count(db, owned.where(Property.status == PropertyStatus.VERIFIED)),
        "pendingProperties": await _count(db, owned.where(Property.status == PropertyStatus.PENDING)),
        "totalTransfers": await _count(db, select(func.count(Transfer.id)).where(
            or_(Transfer.from_user_id == user.id, Transfer.to_user_id == user.id)
        )),
    }


async def list_users(
    db: AsyncSession,
    page: int = 1,
    limit: int = 10,
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
) -> dict:
    filters = []
    if role:
        filters.append(User.role == role)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(
            func.lower(User.wallet_address).like(pattern),
            func.lower(User.name).like(pattern),
            func.lower(User.email).like(pattern),
        ))

    total = await _count(db, select(func.count(User.id)).where(*filters))
    result = await db.execute(
        select(User).where(*filters)
        .order_by(User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    users = []
    for u in result.scalars().all():
        data = user_dict(u)
        data["counts"] = {
            "ownedProperties": await _count(db, select(func.count(Property.id)).where(Property.owner_id == u.id)),
            "verifications": await _count(db, select(func.count(Verification.id)).where(Verification.verifier_id == u.id)),
        }
        users.append(data)
    return {"users": users, "pagination": pagination(page, limit, total)}


async def update_user_role(db: AsyncSession, user_id: str, role: UserRole) -> dict:
    user = await db.get(User, user_id)
    if not user:
        raise ApiError.not_found("User not found", ErrorCode.USER_NOT_FOUND)
    user.role = role
    await db.commit()
    logger.info(f"User role updated: {user.wallet_address} -> {role.value}")
    return user_dict(user)
