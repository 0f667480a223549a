"""Trigger endpoints for the external scheduler (cron, serverless timer, ...).

Contract: POST once per cadence window (daily / hourly). Invoking more than
once, late, or concurrently is always safe.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.database import get_db_session
from src.yd_common.enums import PeriodKind
from src.yd_common.response import ApiResponse, request_id_of, success_response
from src.yd_distribution.api.dependencies import parse_period_kind
from src.yd_distribution.application.schemas import DistributionSummaryResponse
from src.yd_distribution.application.service import DistributionOrchestrator
from src.yd_gateway.auth.dependencies import verify_cron_secret

router = APIRouter(prefix="/cron", tags=["cron"])

_orchestrator = DistributionOrchestrator()


@router.post("/distributions/{kind}", dependencies=[Depends(verify_cron_secret)])
async def run_scheduled_distribution(
    kind: Annotated[PeriodKind, Depends(parse_period_kind)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    summary = await _orchestrator.run_scheduled_distribution(db, kind)
    data = DistributionSummaryResponse.from_summary(summary)
    return success_response(data.model_dump(), request_id_of(request))


@router.get("/health")
async def cron_health() -> dict[str, str]:
    return {"status": "healthy", "service": "distribution-trigger"}
