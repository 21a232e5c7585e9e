"""
modules/admin.py: Admin Console
==================================
Platform counters, dependency health, recent activity and queue inspection.
"""

import logging
import time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from core.blockchain import blockchain
from core.constants import PropertyStatus, TransferStatus
from core.errors import ApiError, ErrorCode
from db.models import Property, Transfer, User, Verification
from db.session import ping_db
from modules.jobs import queue_service
from modules.serializers import iso, property_dict, user_brief, verification_dict

logger = logging.getLogger("deedchain.modules.admin")

STARTED_AT = time.monotonic()


async def get_dashboard(db: AsyncSession) -> dict:
    async def count(stmt) -> int:
        return (await db.execute(stmt)).scalar_one()

    stats = {
        "totalUsers": await count(select(func.count(User.id))),
        "totalProperties": await count(select(func.count(Property.id))),
        "pendingVerifications": await count(
            select(func.count(Property.id)).where(Property.status == PropertyStatus.PENDING)
        ),
        "completedTransfers": await count(
            select(func.count(Transfer.id)).where(Transfer.status == TransferStatus.COMPLETED)
        ),
    }

    result = await db.execute(
        select(Property).options(selectinload(Property.owner))
        .order_by(Property.created_at.desc())
        .limit(10)
    )
    recent = []
    for p in result.scalars().all():
        item = {"id": p.id, "title": p.title, "status": p.status.value, "createdAt": iso(p.created_at)}
        item["owner"] = user_brief(p.owner)
        recent.append(item)

    return {
        "stats": stats,
        "queueStats": await queue_service.get_queue_stats(),
        "recentProperties": recent,
    }


async def _probe(name: str, check) -> str:
    try:
        return await check()
    except Exception as e:
        logger.error(f"Health check for {name} failed: {e}")
        return "unhealthy"


def _is_up(status: str) -> bool:
    return status == "healthy" or status.startswith("ok")


async def get_system_health() -> dict:
    services = {
        "database": await _probe("database", ping_db),
        "redis": await _probe("queue store", queue_service.ping),
        "blockchain": await _probe("blockchain", blockchain.ping),
    }
    return {
        "status": "healthy" if all(_is_up(v) for v in services.values()) else "degraded",
        "services": services,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": settings.ENVIRONMENT,
        "queueBackend": settings.QUEUE_BACKEND,
        "blockchainBackend": settings.BLOCKCHAIN_BACKEND,
    }


async def get_recent_activity(db: AsyncSession, limit: int = 100) -> list:
    result = await db.execute(
        select(Property).options(
            selectinload(Property.owner),
            selectinload(Property.verifications).selectinload(Verification.verifier),
        )
        .order_by(Property.created_at.desc())
        .limit(limit)
    )
    activity = []
    for p in result.scalars().all():
        item = property_dict(p)
        item["owner"] = user_brief(p.owner)
        latest = p.verifications[0] if p.verifications else None
        item["verifications"] = [verification_dict(latest, verifier=latest.verifier)] if latest else []
        activity.append(item)
    return activity


async def get_queue_stats() -> dict:
    return await queue_service.get_queue_stats()


async def get_job(queue_key: str, job_id: str) -> dict:
    if queue_key not in queue_service.queues:
        raise ApiError.not_found(f"Unknown queue: {queue_key}", ErrorCode.INVALID_INPUT)
    job = await queue_service.get_job(queue_key, job_id)
    if job is None:
        raise ApiError.not_found("Job not found", ErrorCode.INVALID_INPUT)
    return job.summary()
