"""
modules/verification.py: Verifier Decisions
==============================================
Verifiers approve or reject PENDING properties.

    approve → Verification row, status VERIFIED, verify-property job (mint deed NFT)
    reject  → Verification row, status REJECTED, owner notified by email
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.constants import PropertyStatus
from core.email import email_service
from core.errors import ApiError, DeedChainError, ErrorCode
from db.models import Property, User, Verification
from modules.jobs import queue_service
from modules.properties import get_property_or_404
from modules.serializers import pagination, property_dict, user_brief, verification_dict

logger = logging.getLogger("deedchain.modules.verification")


async def get_pending_verifications(db: AsyncSession, page: int = 1, limit: int = 10) -> dict:
    """Oldest first, so the queue is worked in arrival order."""
    pending = Property.status == PropertyStatus.PENDING
    total = (await db.execute(select(func.count(Property.id)).where(pending))).scalar_one()
    result = await db.execute(
        select(Property).where(pending)
        .options(selectinload(Property.owner), selectinload(Property.verifications))
        .order_by(Property.created_at.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = []
    for p in result.scalars().all():
        data = property_dict(p)
        data["owner"] = user_brief(p.owner, email=True)
        data["verifications"] = [verification_dict(v) for v in p.verifications[:1]]
        items.append(data)
    return {"verifications": items, "pagination": pagination(page, limit, total)}


async def verify_property(
    db: AsyncSession,
    verifier: User,
    property_id: str,
    approved: bool,
    comments: Optional[str] = None,
) -> dict:
    prop = await get_property_or_404(db, property_id, selectinload(Property.owner))
    if prop.status != PropertyStatus.PENDING:
        raise ApiError.bad_request("Property is not pending verification", ErrorCode.PROPERTY_ALREADY_VERIFIED)

    new_status = PropertyStatus.VERIFIED if approved else PropertyStatus.REJECTED
    # Only one decision can move the row out of PENDING
    decided = await db.execute(
        update(Property)
        .where(Property.id == property_id, Property.status == PropertyStatus.PENDING)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if decided.rowcount == 0:
        raise ApiError.bad_request("Property is not pending verification", ErrorCode.PROPERTY_ALREADY_VERIFIED)
    prop.status = new_status

    verification = Verification(
        property_id=property_id,
        verifier_id=verifier.id,
        approved=approved,
        comments=comments or None,
    )
    db.add(verification)
    await db.commit()

    if approved:
        await queue_service.add_verification_job(property_id, verifier.id, approved)
    else:
        try:
            await email_service.send_verification_notification(prop.owner.email, prop.title, False)
        except DeedChainError as e:
            logger.warning(f"Rejection notice for property {property_id} not sent: {e}")

    logger.info(
        f"Property {property_id} {'approved' if approved else 'rejected'} "
        f"by verifier {verifier.wallet_address}"
    )
    return verification_dict(verification)


async def get_verification_history(db: AsyncSession, property_id: str) -> list:
    result = await db.execute(
        select(Verification).where(Verification.property_id == property_id)
        .options(selectinload(Verification.verifier))
        .order_by(Verification.created_at.desc())
    )
    return [verification_dict(v, verifier=v.verifier) for v in result.scalars().all()]


async def get_verifier_stats(db: AsyncSession, verifier: User) -> dict:
    mine = select(func.count(Verification.id)).where(Verification.verifier_id == verifier.id)
    total = (await db.execute(mine)).scalar_one()
    approved = (await db.execute(mine.where(Verification.approved.is_(True)))).scalar_one()
    rejected = (await db.execute(mine.where(Verification.approved.is_(False)))).scalar_one()
    pending = (await db.execute(
        select(func.count(Property.id)).where(Property.status == PropertyStatus.PENDING)
    )).scalar_one()
    return {
        "totalVerifications": total,
        "approvedCount": approved,
        "rejectedCount": rejected,
        "pendingCount": pending,
        "approvalRate": (approved / total) * 100 if total > 0 else 0,
    }


async def list_verifications(
    db: AsyncSession,
    page: int = 1,
    limit: int = 10,
    approved: Optional[bool] = None,
    verifier_id: Optional[str] = None,
) -> dict:
    filters = []
    if approved is not None:
        filters.append(Verification.approved.is_(approved))
    if verifier_id:
        filters.append(Verification.verifier_id == verifier_id)

    total = (await db.execute(select(func.count(Verification.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Verification).where(*filters)
        .options(selectinload(Verification.property), selectinload(Verification.verifier))
        .order_by(Verification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [verification_dict(v, verifier=v.verifier, prop=v.property) for v in result.scalars().all()]
    return {"verifications": items, "pagination": pagination(page, limit, total)}
