"""Eventos normalizados que producen los adaptadores de canal."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

EventKind = Literal["text", "audio", "image", "postback"]


class InboundEvent(BaseModel):
    """Mensaje entrante independiente del canal."""

    channel: str
    routing_id: str | None = None
    external_contact_id: str
    kind: EventKind
    text: str | None = None
    media_id: str | None = None
    message_id: str | None = None
    username: str | None = None
    timestamp: datetime
