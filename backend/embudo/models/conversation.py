"""Modelos base para conversaciones multicanal."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, ValidationError

Role = Literal["user", "assistant"]
Lang = Literal["ru", "ua", "en"]


def conversation_key(channel: str, external_id: str) -> str:
    """Clave única de conversación a través de todos los canales."""
    return f"{channel}:{external_id}"


class ChatMessage(BaseModel):
    """Mensaje individual del historial."""

    role: Role
    content: str
    at: datetime


class Conversation(BaseModel):
    """Memoria durable por contacto y canal."""

    channel: str
    external_id: str
    tenant_id: str | None = None
    routing_id: str | None = None
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )
    lang: Lang | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    pending_media_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("pending_media_ids", "pendingImageFileIds"),
    )
    pending_media_expires_at: datetime | None = None
    last_media_ack_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_media_ack_at", "lastMediaAt")
    )
    follow_up_sent_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("follow_up_sent_at", "followUpSentAt")
    )
    lead_captured_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("lead_captured_at", "leadCapturedAt")
    )

    @property
    def key(self) -> str:
        return conversation_key(self.channel, self.external_id)

    @property
    def user_turns(self) -> int:
        return sum(1 for message in self.messages if message.role == "user")

    @property
    def assistant_turns(self) -> int:
        return sum(1 for message in self.messages if message.role == "assistant")

    def last_message(self, role: Role) -> ChatMessage | None:
        for message in reversed(self.messages):
            if message.role == role:
                return message
        return None

    def recent_user_texts(self, limit: int = 12) -> list[str]:
        texts = [message.content for message in self.messages if message.role == "user"]
        return texts[-limit:]

    @classmethod
    def empty(cls, channel: str, external_id: str) -> Conversation:
        return cls(channel=channel, external_id=external_id)

    @classmethod
    def hydrate(cls, channel: str, external_id: str, raw: Any) -> Conversation:
        """Construye una conversación desde un registro parcial o antiguo.

        Los campos opcionales ausentes quedan con sus valores por defecto y los mensajes
        que no validan (rol desconocido, contenido vacío) se descartan en lugar de fallar.
        """
        if not isinstance(raw, dict):
            return cls.empty(channel, external_id)

        messages: list[ChatMessage] = []
        for item in raw.get("messages") or []:
            try:
                message = ChatMessage.model_validate(item)
            except ValidationError:
                continue
            if message.content.strip():
                messages.append(message)

        data = {key: value for key, value in raw.items() if key != "messages"}
        data.update({"channel": channel, "external_id": external_id, "messages": messages})
        try:
            return cls.model_validate(data)
        except ValidationError:
            # Metadatos corruptos: conserva al menos el historial válido
            return cls(channel=channel, external_id=external_id, messages=messages)
