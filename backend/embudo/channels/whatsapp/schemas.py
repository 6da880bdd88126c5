"""Esquemas Pydantic para payloads de WhatsApp Cloud API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WhatsAppText(_Payload):
    body: str = ""


class WhatsAppMedia(_Payload):
    id: str
    caption: str | None = None
    mime_type: str | None = None


class WhatsAppReply(_Payload):
    id: str | None = None
    title: str | None = None


class WhatsAppInteractive(_Payload):
    type: str | None = None
    button_reply: WhatsAppReply | None = None
    list_reply: WhatsAppReply | None = None


class WhatsAppButton(_Payload):
    text: str | None = None
    payload: str | None = None


class WhatsAppMessage(_Payload):
    """Mensaje entrante; sólo se modelan los tipos que el embudo entiende."""

    from_: str = Field(..., alias="from")
    id: str | None = None
    timestamp: str | None = None
    type: str = "text"
    text: WhatsAppText | None = None
    audio: WhatsAppMedia | None = None
    voice: WhatsAppMedia | None = None
    image: WhatsAppMedia | None = None
    interactive: WhatsAppInteractive | None = None
    button: WhatsAppButton | None = None


class WhatsAppProfile(_Payload):
    name: str | None = None


class WhatsAppContact(_Payload):
    wa_id: str | None = None
    profile: WhatsAppProfile | None = None


class WhatsAppMetadata(_Payload):
    phone_number_id: str | None = None
    display_phone_number: str | None = None


class WhatsAppValue(_Payload):
    messaging_product: str | None = None
    metadata: WhatsAppMetadata = Field(default_factory=WhatsAppMetadata)
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppMessage] = Field(default_factory=list)


class WhatsAppChange(_Payload):
    field: str | None = None
    value: WhatsAppValue = Field(default_factory=WhatsAppValue)


class WhatsAppEntry(_Payload):
    id: str | None = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(_Payload):
    object: str | None = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)
