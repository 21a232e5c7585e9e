"""
api/routes_transfers.py: Ownership Transfer Endpoints

Endpoints:
    POST /api/transfers/initiate                 → Owner starts a transfer (201)
    POST /api/transfers/{transfer_id}/complete   → Recipient confirms, job queued
    POST /api/transfers/{transfer_id}/cancel     → Sender cancels a pending transfer
    GET  /api/transfers/my-transfers             → Caller's sent and received transfers
    GET  /api/transfers/{transfer_id}            → One transfer
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import CamelModel
from core.auth import get_current_user
from core.constants import WALLET_ADDRESS_PATTERN
from db.models import User
from db.session import get_db
from modules.serializers import ok
from modules.transfers import (
    initiate_transfer, complete_transfer, cancel_transfer, get_my_transfers, get_transfer,
)

router = APIRouter()


class InitiateTransferRequest(CamelModel):
    property_id: str = Field(min_length=1)
    to_wallet_address: str = Field(pattern=WALLET_ADDRESS_PATTERN)


class CompleteTransferRequest(CamelModel):
    signature: Optional[str] = None


@router.post("/initiate", status_code=201)
async def initiate(
    body: InitiateTransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    transfer = await initiate_transfer(db, user, body.property_id, body.to_wallet_address)
    return ok({"transfer": transfer}, "Transfer initiated successfully")


@router.post("/{transfer_id}/complete")
async def complete(
    transfer_id: str,
    body: Optional[CompleteTransferRequest] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    signature = body.signature if body else None
    data = await complete_transfer(db, user, transfer_id, signature)
    return ok(data, "Transfer confirmed, ownership change is being processed")


@router.post("/{transfer_id}/cancel")
async def cancel(transfer_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    transfer = await cancel_transfer(db, user, transfer_id)
    return ok({"transfer": transfer}, "Transfer cancelled successfully")


@router.get("/my-transfers")
async def my_transfers(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"transfers": await get_my_transfers(db, user)})


@router.get("/{transfer_id}")
async def read_transfer(transfer_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"transfer": await get_transfer(db, user, transfer_id)})
