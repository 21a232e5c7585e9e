"""
modules/serializers.py: Wire format for DB rows
=================================================
Every response body is built from these helpers so the camelCase field
names stay identical across endpoints. Only relationships that were
eagerly loaded by the caller may be passed in.
"""

from datetime import datetime
from typing import Optional

from db.models import User, Property, Verification, Transfer


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_brief(user: Optional[User], email: bool = False, role: bool = False) -> Optional[dict]:
    if user is None:
        return None
    data = {"walletAddress": user.wallet_address, "name": user.name}
    if email:
        data["email"] = user.email
    if role:
        data["role"] = user.role.value
    return data


def user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "walletAddress": user.wallet_address,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "createdAt": iso(user.created_at),
        "updatedAt": iso(user.updated_at),
    }


def property_dict(prop: Property) -> dict:
    return {
        "id": prop.id,
        "title": prop.title,
        "description": prop.description,
        "location": prop.location,
        "coordinates": prop.coordinates,
        "size": prop.size,
        "ipfsHash": prop.ipfs_hash,
        "tokenId": prop.token_id,
        "status": prop.status.value,
        "ownerId": prop.owner_id,
        "createdAt": iso(prop.created_at),
        "updatedAt": iso(prop.updated_at),
    }


def verification_dict(v: Verification, verifier: Optional[User] = None, prop: Optional[Property] = None) -> dict:
    data = {
        "id": v.id,
        "propertyId": v.property_id,
        "verifierId": v.verifier_id,
        "approved": v.approved,
        "comments": v.comments,
        "createdAt": iso(v.created_at),
    }
    if verifier is not None:
        data["verifier"] = user_brief(verifier, role=True)
    if prop is not None:
        data["property"] = {"title": prop.title, "location": prop.location, "status": prop.status.value}
    return data


def transfer_dict(t: Transfer, with_parties: bool = True, with_email: bool = False,
                  prop: Optional[dict] = None) -> dict:
    data = {
        "id": t.id,
        "propertyId": t.property_id,
        "fromUserId": t.from_user_id,
        "toUserId": t.to_user_id,
        "status": t.status.value,
        "txHash": t.tx_hash,
        "createdAt": iso(t.created_at),
        "completedAt": iso(t.completed_at),
    }
    if with_parties:
        data["fromUser"] = user_brief(t.from_user, email=with_email)
        data["toUser"] = user_brief(t.to_user, email=with_email)
    if prop is not None:
        data["property"] = prop
    return data


def property_brief(prop: Property) -> dict:
    """The property fields a transfer listing shows."""
    return {"title": prop.title, "location": prop.location, "tokenId": prop.token_id}


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


def ok(data=None, message: Optional[str] = None) -> dict:
    """The {success, message, data} envelope every route returns."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
