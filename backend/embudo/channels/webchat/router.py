"""Endpoints del canal webchat."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import Response

from embudo.channels import common
from embudo.core.config import settings

from . import schemas, service

router = APIRouter(prefix="/webchat", tags=["webchat"])


@router.post(
    "/messages",
    response_model=schemas.MessageResponse,
    summary="Procesa un mensaje entrante del widget webchat",
)
async def post_webchat_message(
    payload: schemas.MessageRequest, request: Request
) -> schemas.MessageResponse | Response:
    """Recibe un mensaje del widget y responde de forma síncrona."""
    limited = common.enforce_rate_limit(request, "webchat_messages", settings.rate_limit_webchat_max)
    if limited is not None:
        return limited
    return await service.handle_message(payload)


@router.get(
    "/messages",
    response_model=schemas.HistoryResponse,
    summary="Recupera historial de mensajes para un session_id",
)
async def get_webchat_messages(
    request: Request,
    session_id: str = Query(..., min_length=4, description="Identificador de sesión webchat."),
    limit: int = Query(100, ge=1, le=200, description="Número máximo de mensajes a recuperar."),
) -> schemas.HistoryResponse | Response:
    limited = common.enforce_rate_limit(request, "webchat_history", settings.rate_limit_webchat_max * 3)
    if limited is not None:
        return limited
    return await service.fetch_history(session_id=session_id, limit=limit)
