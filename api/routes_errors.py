"""
api/routes_errors.py: Client Error Reports

Endpoints:
    POST /api/errors   → Log an error reported by the web client
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import Field

from api.schemas import CamelModel

logger = logging.getLogger("deedchain.client")

router = APIRouter()


class ClientErrorReport(CamelModel):
    code: str = Field(max_length=64)
    message: str = Field(max_length=2000)
    context: Optional[dict[str, Any]] = None
    url: Optional[str] = Field(default=None, max_length=2000)
    user_agent: Optional[str] = Field(default=None, max_length=500)


@router.post("")
async def report_error(report: ClientErrorReport):
    logger.error(
        f"Client error {report.code}: {report.message} "
        f"(url={report.url}, userAgent={report.user_agent}, context={report.context})"
    )
    return {"success": True}
