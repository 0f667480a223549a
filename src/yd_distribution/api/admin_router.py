"""Admin distribution endpoints — all require an admin JWT."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.database import get_db_session
from src.yd_common.enums import PeriodKind
from src.yd_common.response import ApiResponse, request_id_of, success_response
from src.yd_distribution.api.dependencies import parse_period_kind
from src.yd_distribution.application.schemas import (
    CompletionResponse,
    DistributionSummaryResponse,
    EligibilityPreviewItem,
)
from src.yd_distribution.application.service import DistributionOrchestrator
from src.yd_gateway.auth.dependencies import require_admin
from src.yd_gateway.user.db_models import UserModel

router = APIRouter(prefix="/admin", tags=["admin"])

_orchestrator = DistributionOrchestrator()


@router.post("/distributions/{kind}/run")
async def run_manual_distribution(
    kind: Annotated[PeriodKind, Depends(parse_period_kind)],
    admin: Annotated[UserModel, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    summary = await _orchestrator.run_manual_distribution(db, kind, str(admin.id))
    data = DistributionSummaryResponse.from_summary(summary, with_details=True)
    return success_response(data.model_dump(), request_id_of(request))


@router.get("/distributions/{kind}/preview")
async def get_eligibility_preview(
    kind: Annotated[PeriodKind, Depends(parse_period_kind)],
    admin: Annotated[UserModel, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    views = await _orchestrator.get_eligibility_preview(db, kind)
    items = [EligibilityPreviewItem.from_view(v).model_dump() for v in views]
    return success_response(
        {"period_kind": kind.value, "items": items}, request_id_of(request)
    )


@router.post("/distributions/{kind}/complete-expired")
async def complete_expired(
    kind: Annotated[PeriodKind, Depends(parse_period_kind)],
    admin: Annotated[UserModel, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    summary = await _orchestrator.complete_expired(db, kind, str(admin.id))
    data = DistributionSummaryResponse.from_summary(summary, with_details=True)
    return success_response(data.model_dump(), request_id_of(request))


@router.post("/positions/{position_id}/complete")
async def complete_position(
    position_id: uuid.UUID,
    admin: Annotated[UserModel, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    result = await _orchestrator.complete_position(db, str(position_id), str(admin.id))
    data = CompletionResponse.from_result(str(position_id), result)
    return success_response(data.model_dump(), request_id_of(request))
