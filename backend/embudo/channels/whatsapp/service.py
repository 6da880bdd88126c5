"""Normalización de webhooks de WhatsApp Cloud API a eventos del embudo."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from embudo.channels.common import timestamp_from
from embudo.core.errors import PayloadMalformedError
from embudo.core.logging import get_logger
from embudo.models.events import InboundEvent

from .schemas import WhatsAppMessage, WhatsAppWebhookPayload

logger = get_logger("embudo.channels.whatsapp")

CHANNEL = "whatsapp"

# Identificadores que usa el botón "Test" del panel de Meta
TEST_PHONE_NUMBER_IDS = frozenset({"123456123"})
TEST_SENDERS = frozenset({"16315551181", "16505551111"})


def is_synthetic(routing_id: str | None, sender: str) -> bool:
    return (routing_id or "") in TEST_PHONE_NUMBER_IDS or sender in TEST_SENDERS


def _event_from(
    message: WhatsAppMessage, routing_id: str | None, username: str | None
) -> InboundEvent | None:
    base: dict[str, Any] = {
        "channel": CHANNEL,
        "routing_id": routing_id,
        "external_contact_id": message.from_,
        "message_id": message.id,
        "username": username,
        "timestamp": timestamp_from(message.timestamp),
    }
    if message.type == "text" and message.text:
        return InboundEvent(kind="text", text=message.text.body, **base)
    if message.type in {"audio", "voice"}:
        media = message.audio or message.voice
        if media:
            return InboundEvent(kind="audio", media_id=media.id, **base)
    if message.type == "image" and message.image:
        return InboundEvent(kind="image", media_id=message.image.id, text=message.image.caption, **base)
    if message.type == "interactive" and message.interactive:
        reply = message.interactive.button_reply or message.interactive.list_reply
        if reply and (reply.title or reply.id):
            return InboundEvent(kind="postback", text=reply.title or reply.id, **base)
    if message.type == "button" and message.button:
        return InboundEvent(kind="postback", text=message.button.text or message.button.payload, **base)

    logger.info("whatsapp.unsupported_message", extra={"message_type": message.type})
    return None


def normalize(payload: dict[str, Any]) -> list[InboundEvent]:
    """Convierte el payload en eventos; descarta estados y eventos de prueba de Meta."""
    try:
        parsed = WhatsAppWebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise PayloadMalformedError("Invalid WhatsApp payload") from exc

    events: list[InboundEvent] = []
    for entry in parsed.entry:
        for change in entry.changes:
            value = change.value
            routing_id = value.metadata.phone_number_id
            names = {
                contact.wa_id: contact.profile.name if contact.profile else None
                for contact in value.contacts
            }
            for message in value.messages:
                if is_synthetic(routing_id, message.from_):
                    logger.info(
                        "whatsapp.synthetic_event_skipped",
                        extra={"routing_id": routing_id, "message_id": message.id},
                    )
                    continue
                event = _event_from(message, routing_id, names.get(message.from_))
                if event is not None:
                    events.append(event)
    return events
