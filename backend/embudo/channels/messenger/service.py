"""Normalización de webhooks de Messenger a eventos del embudo."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from embudo.channels.common import timestamp_from
from embudo.core.config import settings
from embudo.core.errors import PayloadMalformedError
from embudo.core.logging import get_logger
from embudo.models.events import InboundEvent

from .schemas import MessengerMessaging, MessengerWebhookPayload

logger = get_logger("embudo.channels.messenger")

CHANNEL = "messenger"

# El botón "Test" del panel de Meta envía entry.id y sender.id en cero
TEST_IDS = frozenset({"0", "12334"})


def is_synthetic(page_id: str | None, sender_id: str) -> bool:
    return (page_id or "") in TEST_IDS or sender_id in TEST_IDS


def _event_from(item: MessengerMessaging, page_id: str | None) -> InboundEvent | None:
    base: dict[str, Any] = {
        "channel": CHANNEL,
        "routing_id": page_id or (item.recipient.id if item.recipient else None),
        "external_contact_id": item.sender.id,
        "timestamp": timestamp_from(item.timestamp, millis=True),
    }
    if item.postback is not None:
        text = item.postback.title or item.postback.payload
        return InboundEvent(kind="postback", text=text, **base) if text else None

    message = item.message
    if message is None:
        return None
    base["message_id"] = message.mid
    if message.text:
        return InboundEvent(kind="text", text=message.text, **base)
    for attachment in message.attachments:
        if attachment.type == "image" and attachment.url:
            return InboundEvent(kind="image", media_id=attachment.url, **base)
        if attachment.type == "audio" and attachment.url:
            return InboundEvent(kind="audio", media_id=attachment.url, **base)

    logger.info("messenger.unsupported_message", extra={"message_id": message.mid})
    return None


def normalize(payload: dict[str, Any]) -> list[InboundEvent]:
    """Convierte `entry[].messaging[]` en eventos; ignora ecos y eventos de prueba."""
    try:
        parsed = MessengerWebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise PayloadMalformedError("Invalid Messenger payload") from exc

    events: list[InboundEvent] = []
    for entry in parsed.entry:
        for item in entry.messaging:
            if item.message is not None and item.message.is_echo and settings.messenger_ignore_echo:
                continue
            if is_synthetic(entry.id, item.sender.id):
                logger.info("messenger.synthetic_event_skipped", extra={"page_id": entry.id})
                continue
            event = _event_from(item, entry.id)
            if event is not None:
                events.append(event)
    return events
