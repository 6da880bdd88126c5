"""Esquemas Pydantic para webhooks de Messenger (páginas e Instagram)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MessengerParty(_Payload):
    id: str


class MessengerAttachment(_Payload):
    type: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def url(self) -> str | None:
        value = self.payload.get("url")
        return value if isinstance(value, str) else None


class MessengerMessage(_Payload):
    mid: str | None = None
    text: str | None = None
    is_echo: bool = False
    attachments: list[MessengerAttachment] = Field(default_factory=list)


class MessengerPostback(_Payload):
    title: str | None = None
    payload: str | None = None


class MessengerMessaging(_Payload):
    sender: MessengerParty
    recipient: MessengerParty | None = None
    timestamp: int | None = None
    message: MessengerMessage | None = None
    postback: MessengerPostback | None = None


class MessengerEntry(_Payload):
    id: str | None = None
    time: int | None = None
    messaging: list[MessengerMessaging] = Field(default_factory=list)


class MessengerWebhookPayload(_Payload):
    object: str | None = None
    entry: list[MessengerEntry] = Field(default_factory=list)
