"""
modules/properties.py: Land & Property Registry Module
=========================================================
Registration, listing, search and owner edits of property records.

Flow (register):
    API route → pin metadata on IPFS → save DB row (PENDING) → commit
              → queue upload-to-ipfs job → return
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.blockchain import blockchain
from core.constants import PropertyStatus, UserRole
from core.errors import ApiError, ErrorCode
from core.ipfs import ipfs
from db.models import Property, Transfer, User, Verification
from modules.jobs import queue_service
from modules.serializers import (
    pagination, property_dict, transfer_dict, user_brief, verification_dict,
)

logger = logging.getLogger("deedchain.modules.properties")


async def get_property_or_404(db: AsyncSession, property_id: str, *options) -> Property:
    result = await db.execute(select(Property).where(Property.id == property_id).options(*options))
    prop = result.scalars().first()
    if not prop:
        raise ApiError.not_found("Property not found", ErrorCode.PROPERTY_NOT_FOUND)
    return prop


async def register_property(
    db: AsyncSession,
    owner: User,
    title: str,
    description: str,
    location: str,
    coordinates: str,
    size: float,
    documents: list[dict],
) -> dict:
    """Register a new property. It stays PENDING until a verifier decides."""
    ipfs_result = await ipfs.upload_property_metadata({
        "title": title,
        "description": description,
        "location": location,
        "coordinates": coordinates,
        "size": size,
        "ownerWalletAddress": owner.wallet_address,
        "documents": documents,
    })

    prop = Property(
        title=title,
        description=description,
        location=location,
        coordinates=coordinates,
        size=float(size),
        ipfs_hash=ipfs_result["cid"],
        owner_id=owner.id,
        status=PropertyStatus.PENDING,
    )
    db.add(prop)
    await db.commit()
    logger.info(f"Property registered: {prop.id} by user {owner.wallet_address}")

    await queue_service.add_ipfs_upload_job(prop.id, {
        "title": title,
        "description": description,
        "location": location,
        "coordinates": coordinates,
        "size": size,
        "owner": owner.wallet_address,
        "documents": documents,
        "registeredAt": prop.created_at.isoformat(),
    })

    return {
        "id": prop.id,
        "title": prop.title,
        "location": prop.location,
        "ipfsHash": prop.ipfs_hash,
        "status": prop.status.value,
        "createdAt": prop.created_at.isoformat(),
    }


def _listing_item(prop: Property) -> dict:
    data = property_dict(prop)
    data["owner"] = user_brief(prop.owner)
    latest = prop.verifications[0] if prop.verifications else None
    data["verifications"] = [verification_dict(latest, verifier=latest.verifier)] if latest else []
    return data


async def list_properties(
    db: AsyncSession,
    user: User,
    page: int = 1,
    limit: int = 10,
    status: Optional[PropertyStatus] = None,
    search: Optional[str] = None,
) -> dict:
    filters = []
    if status:
        filters.append(Property.status == status)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(
            func.lower(Property.title).like(pattern),
            func.lower(Property.location).like(pattern),
            func.lower(Property.description).like(pattern),
        ))
    # Citizens see their own properties plus anything already verified
    if user.role == UserRole.CITIZEN:
        filters.append(or_(Property.owner_id == user.id, Property.status == PropertyStatus.VERIFIED))

    total = (await db.execute(select(func.count(Property.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Property).where(*filters)
        .options(
            selectinload(Property.owner),
            selectinload(Property.verifications).selectinload(Verification.verifier),
        )
        .order_by(Property.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    properties = [_listing_item(p) for p in result.scalars().all()]
    return {"properties": properties, "pagination": pagination(page, limit, total)}


async def search_properties(
    db: AsyncSession,
    coordinates: Optional[str] = None,
    location: Optional[str] = None,
) -> list:
    """Substring search over VERIFIED properties (no spatial index)."""
    if not coordinates and not location:
        raise ApiError.bad_request("Either coordinates or location is required", ErrorCode.MISSING_REQUIRED_FIELD)

    filters = [Property.status == PropertyStatus.VERIFIED]
    if coordinates:
        filters.append(Property.coordinates.contains(coordinates))
    if location:
        filters.append(func.lower(Property.location).like(f"%{location.lower()}%"))

    result = await db.execute(
        select(Property).where(*filters)
        .options(selectinload(Property.owner))
        .order_by(Property.created_at.desc())
        .limit(50)
    )
    items = []
    for p in result.scalars().all():
        data = property_dict(p)
        data["owner"] = user_brief(p.owner)
        items.append(data)
    return items


async def get_property_detail(db: AsyncSession, user: User, property_id: str) -> dict:
    prop = await get_property_or_404(
        db, property_id,
        selectinload(Property.owner),
        selectinload(Property.verifications).selectinload(Verification.verifier),
        selectinload(Property.transfers).selectinload(Transfer.from_user),
        selectinload(Property.transfers).selectinload(Transfer.to_user),
    )

    if (prop.owner_id != user.id and user.role == UserRole.CITIZEN
            and prop.status != PropertyStatus.VERIFIED):
        raise ApiError.forbidden("Not authorized to view this property")

    data = property_dict(prop)
    data["owner"] = user_brief(prop.owner, email=True)
    data["verifications"] = [verification_dict(v, verifier=v.verifier) for v in prop.verifications]
    data["transfers"] = [transfer_dict(t) for t in prop.transfers]
    return data


async def get_user_properties(db: AsyncSession, user: User) -> list:
    result = await db.execute(
        select(Property).where(Property.owner_id == user.id)
        .options(selectinload(Property.verifications), selectinload(Property.transfers))
        .order_by(Property.created_at.desc())
    )
    items = []
    for p in result.scalars().all():
        data = property_dict(p)
        data["verifications"] = [verification_dict(v) for v in p.verifications[:1]]
        data["transfers"] = [transfer_dict(t, with_parties=False) for t in p.transfers[:5]]
        items.append(data)
    return items


async def update_property(
    db: AsyncSession,
    user: User,
    property_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    prop = await get_property_or_404(db, property_id, selectinload(Property.owner))
    if prop.owner_id != user.id:
        raise ApiError.forbidden("Not authorized to update this property")
    if prop.status != PropertyStatus.PENDING:
        raise ApiError.bad_request(
            "Cannot update property after verification process has started",
            ErrorCode.PROPERTY_ALREADY_VERIFIED,
        )

    if title:
        prop.title = title
    if description:
        prop.description = description
    await db.commit()
    logger.info(f"Property updated: {property_id} by user {user.wallet_address}")

    data = property_dict(prop)
    data["owner"] = user_brief(prop.owner)
    return data


async def get_onchain_record(db: AsyncSession, property_id: str) -> dict:
    """The LandRegistry view of a property's deed token."""
    prop = await get_property_or_404(db, property_id)
    if not prop.token_id:
        raise ApiError.bad_request("Property does not have a token ID", ErrorCode.PROPERTY_NOT_VERIFIED)
    record = await blockchain.get_property(prop.token_id)
    return {"propertyId": prop.id, "tokenId": prop.token_id, "chain": record}
