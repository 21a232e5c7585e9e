"""
api/routes_admin.py: Admin Endpoints (ADMIN role only)

Endpoints:
    GET /api/admin/dashboard                    → Counters, queue stats, recent properties
    GET /api/admin/health                       → Database / queue store / chain status
    GET /api/admin/logs                         → Most recent property activity
    GET /api/admin/queues                       → Job counts per queue
    GET /api/admin/queues/{queue}/jobs/{job_id} → One job's state
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_role
from core.constants import UserRole
from db.session import get_db
from modules.admin import get_dashboard, get_system_health, get_recent_activity, get_queue_stats, get_job
from modules.serializers import ok

router = APIRouter(dependencies=[Depends(require_role(UserRole.ADMIN))])


@router.get("/dashboard")
async def dashboard(db: AsyncSession = Depends(get_db)):
    return ok(await get_dashboard(db))


@router.get("/health")
async def system_health():
    return ok(await get_system_health())


@router.get("/logs")
async def logs(limit: int = Query(100, ge=1, le=500), db: AsyncSession = Depends(get_db)):
    return ok({"logs": await get_recent_activity(db, limit)})


@router.get("/queues")
async def queues():
    return ok({"queues": await get_queue_stats()})


@router.get("/queues/{queue}/jobs/{job_id}")
async def job_detail(queue: str, job_id: str):
    return ok({"job": await get_job(queue, job_id)})
