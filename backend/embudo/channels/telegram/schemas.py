"""Esquemas Pydantic para updates de la Bot API de Telegram."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_Payload):
    id: int
    is_bot: bool = False
    username: str | None = None
    first_name: str | None = None


class TelegramChat(_Payload):
    id: int
    type: str | None = None


class TelegramFile(_Payload):
    file_id: str
    mime_type: str | None = None


class TelegramMessage(_Payload):
    message_id: int
    date: int | None = None
    chat: TelegramChat
    from_: TelegramUser | None = Field(default=None, alias="from")
    text: str | None = None
    caption: str | None = None
    voice: TelegramFile | None = None
    audio: TelegramFile | None = None
    photo: list[TelegramFile] = Field(default_factory=list)


class TelegramUpdate(_Payload):
    update_id: int | None = None
    message: TelegramMessage | None = None
    edited_message: TelegramMessage | None = None
