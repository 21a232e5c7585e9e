"""
modules/transfers.py: Ownership Transfers
============================================
Two-step handover of a verified property's deed.

    owner     → initiate   property VERIFIED → TRANSFERRING, Transfer PENDING
    recipient → complete   signed confirmation, execute-transfer job queued
    owner     → cancel     Transfer REJECTED, property back to VERIFIED

The on-chain move and the owner change happen in the execute-transfer job
(modules/jobs.py).
"""

import logging
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.constants import PropertyStatus, TransferStatus, UserRole, TRANSFER_CONFIRM_MESSAGE
from core.crypto import crypto_engine
from core.errors import ApiError, ErrorCode
from db.models import Property, Transfer, User
from modules.jobs import queue_service
from modules.properties import get_property_or_404
from modules.serializers import property_brief, transfer_dict
from modules.users import get_or_create_user

logger = logging.getLogger("deedchain.modules.transfers")


async def _get_transfer_or_404(db: AsyncSession, transfer_id: str, *options) -> Transfer:
    result = await db.execute(select(Transfer).where(Transfer.id == transfer_id).options(*options))
    transfer = result.scalars().first()
    if not transfer:
        raise ApiError.not_found("Transfer not found", ErrorCode.TRANSFER_NOT_FOUND)
    return transfer


async def initiate_transfer(db: AsyncSession, sender: User, property_id: str, to_wallet_address: str) -> dict:
    prop = await get_property_or_404(db, property_id)
    if prop.owner_id != sender.id:
        raise ApiError.forbidden("Not authorized to transfer this property")
    if prop.status != PropertyStatus.VERIFIED:
        raise ApiError.bad_request("Only verified properties can be transferred", ErrorCode.PROPERTY_NOT_VERIFIED)
    if not prop.token_id:
        raise ApiError.bad_request("Property does not have a token ID", ErrorCode.PROPERTY_NOT_VERIFIED)

    recipient, _ = await get_or_create_user(db, to_wallet_address)
    if recipient.id == sender.id:
        raise ApiError.bad_request("Cannot transfer property to yourself", ErrorCode.INVALID_WALLET_ADDRESS)

    # Only one initiate can move the row out of VERIFIED
    claimed = await db.execute(
        update(Property)
        .where(Property.id == property_id, Property.status == PropertyStatus.VERIFIED)
        .values(status=PropertyStatus.TRANSFERRING)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        raise ApiError.bad_request("Only verified properties can be transferred", ErrorCode.PROPERTY_NOT_VERIFIED)
    prop.status = PropertyStatus.TRANSFERRING

    transfer = Transfer(
        property_id=property_id,
        from_user_id=sender.id,
        to_user_id=recipient.id,
        status=TransferStatus.PENDING,
    )
    db.add(transfer)
    await db.commit()
    logger.info(f"Transfer {transfer.id} initiated: property {property_id} → {recipient.wallet_address}")

    data = transfer_dict(transfer, with_parties=False, prop=property_brief(prop))
    data["toUser"] = {"walletAddress": recipient.wallet_address, "name": recipient.name}
    return data


async def complete_transfer(
    db: AsyncSession,
    recipient: User,
    transfer_id: str,
    signature: Optional[str] = None,
) -> dict:
    transfer = await _get_transfer_or_404(db, transfer_id)
    if transfer.status != TransferStatus.PENDING:
        raise ApiError.bad_request("Transfer is not pending")
    if transfer.to_user_id != recipient.id:
        raise ApiError.forbidden("Not authorized to complete this transfer")

    if signature:
        message = TRANSFER_CONFIRM_MESSAGE.format(property_id=transfer.property_id)
        if not crypto_engine.validate_wallet_signature(message, signature, recipient.wallet_address):
            raise ApiError.bad_request("Invalid signature", ErrorCode.TRANSACTION_REJECTED)

    job = await queue_service.add_transfer_job(transfer_id, signature)
    logger.info(f"Transfer {transfer_id} confirmed by recipient, job {job.id} queued")
    return {"transferId": transfer_id, "jobId": job.id}


async def cancel_transfer(db: AsyncSession, sender: User, transfer_id: str) -> dict:
    transfer = await _get_transfer_or_404(db, transfer_id, selectinload(Transfer.property))
    if transfer.from_user_id != sender.id:
        raise ApiError.forbidden("Not authorized to cancel this transfer")
    if transfer.status != TransferStatus.PENDING:
        raise ApiError.bad_request("Only pending transfers can be cancelled")

    transfer.status = TransferStatus.REJECTED
    if transfer.property.status == PropertyStatus.TRANSFERRING:
        transfer.property.status = PropertyStatus.VERIFIED
    await db.commit()
    logger.info(f"Transfer {transfer_id} cancelled by {sender.wallet_address}")
    return transfer_dict(transfer, with_parties=False)


async def get_my_transfers(db: AsyncSession, user: User) -> list:
    result = await db.execute(
        select(Transfer)
        .where(or_(Transfer.from_user_id == user.id, Transfer.to_user_id == user.id))
        .options(
            selectinload(Transfer.property),
            selectinload(Transfer.from_user),
            selectinload(Transfer.to_user),
        )
        .order_by(Transfer.created_at.desc())
    )
    return [transfer_dict(t, prop=property_brief(t.property)) for t in result.scalars().all()]


async def get_transfer(db: AsyncSession, user: User, transfer_id: str) -> dict:
    transfer = await _get_transfer_or_404(
        db, transfer_id,
        selectinload(Transfer.property),
        selectinload(Transfer.from_user),
        selectinload(Transfer.to_user),
    )
    is_party = user.id in (transfer.from_user_id, transfer.to_user_id)
    if not is_party and user.role == UserRole.CITIZEN:
        raise ApiError.forbidden("Not authorized to view this transfer")

    prop = property_brief(transfer.property)
    prop["status"] = transfer.property.status.value
    return transfer_dict(transfer, with_email=True, prop=prop)
