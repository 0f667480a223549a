"""Owner-facing position endpoints: progress and distribution history."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.database import get_db_session
from src.yd_common.response import ApiResponse, request_id_of, success_response
from src.yd_distribution.application.queries import PositionQueryService
from src.yd_gateway.auth.dependencies import get_current_user
from src.yd_gateway.user.db_models import UserModel

router = APIRouter(prefix="/positions", tags=["positions"])

_service = PositionQueryService()


@router.get("/{position_id}/progress")
async def get_position_progress(
    position_id: uuid.UUID,
    current_user: Annotated[UserModel, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_progress(
        db, str(position_id), str(current_user.id), is_admin=current_user.is_admin
    )
    return success_response(data.model_dump(), request_id_of(request))


@router.get("/{position_id}/distributions")
async def list_position_distributions(
    position_id: uuid.UUID,
    current_user: Annotated[UserModel, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.list_distributions(
        db, str(position_id), str(current_user.id), is_admin=current_user.is_admin
    )
    return success_response(data.model_dump(), request_id_of(request))
