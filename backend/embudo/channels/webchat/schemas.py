"""Esquemas de datos para el canal Webchat."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """Payload recibido desde el widget webchat."""

    session_id: str = Field(
        ..., min_length=4, max_length=128, description="Identificador único por visitante/navegador."
    )
    content: str = Field(..., min_length=1, max_length=4000, description="Mensaje en texto plano.")
    client_message_id: str | None = Field(
        default=None,
        description="ID generado en el frontend para deduplicar envíos.",
    )


class MessageResponse(BaseModel):
    """Respuesta a POST /messages."""

    reply: str | None
    conversation_id: str
    stage: str | None = None
    degraded: bool = False


class HistoryMessage(BaseModel):
    """Elemento individual del historial de mensajes."""

    role: Literal["user", "assistant"]
    content: str
    created_at: datetime


class HistoryResponse(BaseModel):
    """Respuesta de GET /messages."""

    conversation_id: str
    lang: str | None = None
    messages: list[HistoryMessage] = Field(default_factory=list)
