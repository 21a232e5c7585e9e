"""
api/routes_verifications.py: Verification Endpoints

Endpoints:
    GET  /api/verifications/pending                  → PENDING properties, oldest first
    POST /api/verifications/{property_id}/verify     → Approve / reject a property
    GET  /api/verifications/property/{property_id}   → Verification history
    GET  /api/verifications/stats                    → Caller's verifier statistics
    GET  /api/verifications                          → All verifications (ADMIN)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import CamelModel
from core.auth import get_current_user, require_role
from core.constants import UserRole
from db.models import User
from db.session import get_db
from modules.serializers import ok
from modules.verification import (
    get_pending_verifications, verify_property, get_verification_history,
    get_verifier_stats, list_verifications,
)

router = APIRouter()

verifier_or_admin = require_role(UserRole.VERIFIER, UserRole.ADMIN)


class VerifyRequest(CamelModel):
    approved: bool
    comments: Optional[str] = Field(default=None, max_length=500)


@router.get("/pending")
async def pending(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    _: User = Depends(verifier_or_admin),
    db: AsyncSession = Depends(get_db),
):
    return ok(await get_pending_verifications(db, page, limit))


@router.post("/{property_id}/verify")
async def verify(
    property_id: str,
    body: VerifyRequest,
    verifier: User = Depends(verifier_or_admin),
    db: AsyncSession = Depends(get_db),
):
    verification = await verify_property(db, verifier, property_id, body.approved, body.comments)
    message = "Property approved successfully" if body.approved else "Property rejected successfully"
    return ok({"verification": verification}, message)


@router.get("/property/{property_id}")
async def history(property_id: str, _: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"verifications": await get_verification_history(db, property_id)})


@router.get("/stats")
async def stats(verifier: User = Depends(verifier_or_admin), db: AsyncSession = Depends(get_db)):
    return ok(await get_verifier_stats(db, verifier))


@router.get("")
async def all_verifications(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    approved: Optional[bool] = None,
    verifier_id: Optional[str] = Query(None, alias="verifierId"),
    _: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return ok(await list_verifications(db, page, limit, approved, verifier_id))
