"""Servicio del widget webchat sobre el orquestador del embudo."""

from __future__ import annotations

from datetime import datetime, timezone

from embudo.core.errors import StorageUnavailableError
from embudo.core.logging import get_logger, log_event
from embudo.models.events import InboundEvent
from embudo.services import orchestrator as orchestrator_service

from . import schemas

logger = get_logger("embudo.channels.webchat")

CHANNEL = "webchat"


async def handle_message(payload: schemas.MessageRequest) -> schemas.MessageResponse:
    """Procesa el turno y devuelve la respuesta en la misma petición."""
    event = InboundEvent(
        channel=CHANNEL,
        external_contact_id=payload.session_id,
        kind="text",
        text=payload.content,
        message_id=payload.client_message_id,
        timestamp=datetime.now(timezone.utc),
    )
    result = await orchestrator_service.orchestrator.handle_inbound(event)
    log_event(
        logger,
        "webchat.message_processed",
        conversation_key=result.conversation_key,
        degraded=result.degraded,
    )
    return schemas.MessageResponse(
        reply=result.reply,
        conversation_id=result.conversation_key,
        stage=result.stage.value if result.stage else None,
        degraded=result.degraded,
    )


async def fetch_history(session_id: str, limit: int = 100) -> schemas.HistoryResponse:
    """Devuelve el historial, incluidos los avisos de seguimiento guardados."""
    store = orchestrator_service.orchestrator.store
    try:
        conversation = await store.get(CHANNEL, session_id)
    except StorageUnavailableError:
        logger.warning("webchat.history_unavailable", extra={"session_id": session_id})
        return schemas.HistoryResponse(conversation_id=f"{CHANNEL}:{session_id}")

    return schemas.HistoryResponse(
        conversation_id=conversation.key,
        lang=conversation.lang,
        messages=[
            schemas.HistoryMessage(role=message.role, content=message.content, created_at=message.at)
            for message in conversation.messages[-limit:]
        ],
    )
