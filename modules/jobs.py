"""
modules/jobs.py: Background Jobs
===================================
The three DeedChain queues and the processors behind them.

    property verification  → verify-property   mint deed NFT, mark verified on LandRegistry
    property transfer      → execute-transfer  move the deed NFT, hand over ownership
    ipfs upload            → upload-to-ipfs    (re)pin property metadata, optional anchoring

Routes only enqueue. Processors open their own DB session per attempt.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from config import settings
from core.blockchain import blockchain
from core.constants import (
    PropertyStatus, TransferStatus,
    VERIFICATION_QUEUE, TRANSFER_QUEUE, IPFS_QUEUE,
    VERIFY_PROPERTY_JOB, EXECUTE_TRANSFER_JOB, UPLOAD_TO_IPFS_JOB,
)
from core.email import email_service
from core.errors import DeedChainError
from core.ipfs import ipfs
from core.queue import Backoff, Job, JobQueue, create_job_store
from db.models import Property, Transfer
from db.session import session_scope

logger = logging.getLogger("deedchain.jobs")


async def _notify(send, *args):
    """Emails from a job are best effort; a failed send never fails the job."""
    try:
        await send(*args)
    except DeedChainError as e:
        logger.warning(f"Notification email not sent: {e}")


# ── Processors ────────────────────────────────────────────────────────────────
async def process_verification(job: Job) -> dict:
    property_id = job.data["propertyId"]
    approved = job.data.get("approved", True)
    logger.info(f"Processing verification job {job.id} for property {property_id}")

    async with session_scope() as db:
        result = await db.execute(
            select(Property).where(Property.id == property_id).options(selectinload(Property.owner))
        )
        prop = result.scalars().first()
        if not prop:
            raise LookupError(f"Property {property_id} not found")
        if approved and prop.status != PropertyStatus.VERIFIED:
            logger.warning(f"Property {property_id} is {prop.status.value}, not minting a deed")
            return {"propertyId": property_id, "tokenId": prop.token_id, "skipped": True}

        if approved and not prop.token_id:
            minted = await blockchain.mint_deed_nft(prop.owner.wallet_address, prop.ipfs_hash)
            prop.token_id = str(minted["tokenId"])
            # keep the token even if the LandRegistry call below fails and the job retries
            await db.commit()
            logger.info(f"Deed NFT {prop.token_id} minted for property {property_id} (tx {minted['txHash']})")

        if approved:
            await blockchain.verify_property(prop.token_id)

        await _notify(email_service.send_verification_notification, prop.owner.email, prop.title, approved)
        return {"propertyId": property_id, "tokenId": prop.token_id}


async def _rollback_transfer(transfer_id: str, reason: str):
    """Give up on a transfer: REJECTED, and the property goes back to its owner as VERIFIED."""
    async with session_scope() as db:
        result = await db.execute(
            select(Transfer).where(Transfer.id == transfer_id).options(selectinload(Transfer.property))
        )
        transfer = result.scalars().first()
        if not transfer or transfer.status != TransferStatus.PENDING:
            return
        transfer.status = TransferStatus.REJECTED
        if transfer.property.status == PropertyStatus.TRANSFERRING:
            transfer.property.status = PropertyStatus.VERIFIED
        title = transfer.property.title

    logger.error(f"Transfer {transfer_id} rejected after final attempt: {reason}")
    await _notify(
        email_service.send_admin_alert,
        "Property transfer failed",
        f'Transfer {transfer_id} of "{title}" was rolled back after repeated failures: {reason}',
    )


async def process_transfer(job: Job) -> dict:
    transfer_id = job.data["transferId"]
    logger.info(f"Processing transfer job {job.id} for transfer {transfer_id}")
    try:
        return await _execute_transfer(transfer_id)
    except Exception as e:
        if job.is_last_attempt:
            await _rollback_transfer(transfer_id, str(e) or e.__class__.__name__)
        raise


async def _execute_transfer(transfer_id: str) -> dict:
    async with session_scope() as db:
        result = await db.execute(
            select(Transfer).where(Transfer.id == transfer_id).options(
                selectinload(Transfer.property),
                selectinload(Transfer.from_user),
                selectinload(Transfer.to_user),
            )
        )
        transfer = result.scalars().first()
        if not transfer:
            raise LookupError(f"Transfer {transfer_id} not found")
        if transfer.status != TransferStatus.PENDING:
            logger.info(f"Transfer {transfer_id} is {transfer.status.value}, skipping")
            return {"transferId": transfer_id, "skipped": True}

        prop = transfer.property
        if not prop.token_id:
            raise LookupError(f"Property {prop.id} has no deed token")

        tx = await blockchain.transfer_ownership(
            prop.token_id, transfer.from_user.wallet_address, transfer.to_user.wallet_address
        )

        transfer.status = TransferStatus.COMPLETED
        transfer.tx_hash = tx["txHash"]
        transfer.completed_at = datetime.utcnow()
        prop.owner_id = transfer.to_user_id
        prop.status = PropertyStatus.VERIFIED
        await db.commit()
        logger.info(f"Transfer {transfer_id} completed (tx {tx['txHash']})")

        await _notify(email_service.send_transfer_notification, transfer.from_user.email, prop.title, False)
        await _notify(email_service.send_transfer_notification, transfer.to_user.email, prop.title, True)
        return {"transferId": transfer_id, "txHash": tx["txHash"]}


async def process_ipfs_upload(job: Job) -> dict:
    property_id = job.data["propertyId"]
    logger.info(f"Processing IPFS upload job {job.id} for property {property_id}")

    async with session_scope() as db:
        prop = await db.get(Property, property_id)
        if not prop:
            raise LookupError(f"Property {property_id} not found")

        uploaded = await ipfs.upload_property_metadata(job.data["metadata"])
        prop.ipfs_hash = uploaded["cid"]

        if settings.ANCHOR_ON_UPLOAD:
            anchored = await blockchain.register_property(uploaded["cid"], prop.location)
            logger.info(f"Property {property_id} anchored on LandRegistry as {anchored['registryId']}")

        return {"propertyId": property_id, "ipfsHash": uploaded["cid"]}


# ── Service ───────────────────────────────────────────────────────────────────
class QueueService:
    """Owns the queues; started and closed by the app lifespan."""

    def __init__(self):
        self.store = create_job_store()
        self.verification = JobQueue(VERIFICATION_QUEUE, self.store, concurrency=1)
        # one transfer at a time so the signer's nonces stay ordered
        self.transfer = JobQueue(TRANSFER_QUEUE, self.store, concurrency=1)
        self.ipfs = JobQueue(IPFS_QUEUE, self.store, concurrency=2)

        self.verification.process(VERIFY_PROPERTY_JOB, process_verification)
        self.transfer.process(EXECUTE_TRANSFER_JOB, process_transfer)
        self.ipfs.process(UPLOAD_TO_IPFS_JOB, process_ipfs_upload)

    @property
    def queues(self) -> dict[str, JobQueue]:
        return {
            "verification": self.verification,
            "transfer": self.transfer,
            "ipfs": self.ipfs,
        }

    async def start(self):
        await self.store.connect()
        for queue in self.queues.values():
            await queue.start()
        logger.info("Job queues started")

    async def close(self):
        for queue in self.queues.values():
            await queue.close()
        await self.store.close()
        logger.info("Job queues closed")

    async def ping(self) -> str:
        return await self.store.ping()

    # ── producers ──────────────────────────────────────────────────────────
    def _backoff(self, delay_ms: int) -> Backoff:
        return Backoff("exponential", delay_ms)

    async def add_verification_job(self, property_id: str, verifier_id: str, approved: bool) -> Job:
        return await self.verification.add(
            VERIFY_PROPERTY_JOB,
            {"propertyId": property_id, "verifierId": verifier_id, "approved": approved},
            attempts=settings.JOB_ATTEMPTS,
            backoff=self._backoff(settings.JOB_BACKOFF_MS),
        )

    async def add_transfer_job(self, transfer_id: str, signature: Optional[str] = None) -> Job:
        return await self.transfer.add(
            EXECUTE_TRANSFER_JOB,
            {"transferId": transfer_id, "signature": signature},
            attempts=settings.JOB_ATTEMPTS,
            backoff=self._backoff(settings.JOB_BACKOFF_MS),
        )

    async def add_ipfs_upload_job(self, property_id: str, metadata: dict) -> Job:
        return await self.ipfs.add(
            UPLOAD_TO_IPFS_JOB,
            {"propertyId": property_id, "metadata": metadata},
            attempts=settings.JOB_ATTEMPTS,
            backoff=self._backoff(settings.IPFS_JOB_BACKOFF_MS),
        )

    # ── inspection ─────────────────────────────────────────────────────────
    async def get_queue_stats(self) -> dict:
        return {key: await queue.get_job_counts() for key, queue in self.queues.items()}

    async def get_job(self, queue_key: str, job_id: str) -> Optional[Job]:
        queue = self.queues.get(queue_key)
        if queue is None:
            return None
        return await queue.get_job(job_id)

    async def wait_until_idle(self, timeout: Optional[float] = 10):
        await asyncio.gather(*(q.wait_until_idle(timeout) for q in self.queues.values()))

    async def clear(self):
        for queue in self.queues.values():
            await queue.clear()


# Singleton instance: import this everywhere
queue_service = QueueService()
