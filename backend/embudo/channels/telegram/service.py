"""Normalización de updates de Telegram a eventos del embudo."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from embudo.channels.common import timestamp_from
from embudo.core.errors import PayloadMalformedError
from embudo.core.logging import get_logger
from embudo.models.events import InboundEvent

from .schemas import TelegramUpdate

logger = get_logger("embudo.channels.telegram")

CHANNEL = "telegram"


def normalize(payload: dict[str, Any], *, routing_id: str | None = None) -> list[InboundEvent]:
    """Un update produce a lo sumo un evento; mensajes de bots se ignoran."""
    try:
        update = TelegramUpdate.model_validate(payload)
    except ValidationError as exc:
        raise PayloadMalformedError("Invalid Telegram update") from exc

    message = update.message or update.edited_message
    if message is None:
        return []
    sender = message.from_
    if sender is not None and sender.is_bot:
        return []

    base: dict[str, Any] = {
        "channel": CHANNEL,
        "routing_id": routing_id,
        "external_contact_id": str(message.chat.id),
        "message_id": str(message.message_id),
        "username": sender.username if sender else None,
        "timestamp": timestamp_from(message.date),
    }
    if message.text:
        return [InboundEvent(kind="text", text=message.text, **base)]
    voice = message.voice or message.audio
    if voice is not None:
        return [InboundEvent(kind="audio", media_id=voice.file_id, **base)]
    if message.photo:
        # Telegram lista los tamaños de menor a mayor
        largest = message.photo[-1]
        return [InboundEvent(kind="image", media_id=largest.file_id, text=message.caption, **base)]

    logger.info("telegram.unsupported_message", extra={"message_id": message.message_id})
    return []
