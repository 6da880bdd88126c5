"""Envío de mensajes y descarga de media por canal (Graph API, Telegram Bot API)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from embudo.core.config import settings
from embudo.core.errors import MissingCredentialError, UpstreamHTTPError, UpstreamTimeoutError
from embudo.core.logging import get_logger
from embudo.models.tenant import ChannelConnection

logger = get_logger(__name__)

SEND_TIMEOUT = 10.0
MEDIA_TIMEOUT = 15.0
MAX_PAYLOAD_CHARS = {"whatsapp": 1600, "messenger": 1800, "telegram": 3500}


@dataclass(slots=True)
class ChannelCredentials:
    """Credenciales efectivas: las de la conexión o las globales por defecto."""

    access_token: str | None = None
    phone_number_id: str | None = None
    page_access_token: str | None = None
    bot_token: str | None = None


def credentials_for(channel: str, connection: ChannelConnection | None = None) -> ChannelCredentials:
    meta = connection.meta if connection else None
    if channel == "whatsapp":
        return ChannelCredentials(
            access_token=(meta.access_token if meta else None) or settings.whatsapp_access_token,
            phone_number_id=(meta.phone_number_id if meta else None)
            or (connection.external_id if connection else None)
            or settings.whatsapp_phone_number_id,
        )
    if channel == "messenger":
        return ChannelCredentials(
            page_access_token=(meta.page_access_token if meta else None)
            or settings.messenger_page_access_token
        )
    if channel == "telegram":
        return ChannelCredentials(bot_token=(meta.bot_token if meta else None) or settings.telegram_bot_token)
    return ChannelCredentials()


def clip(text: str, limit: int) -> str:
    """Recorta al tamaño máximo de payload del canal."""
    cleaned = (text or "").strip()
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(0, limit - 1)].rstrip() + "…"


def _graph_url(path: str) -> str:
    return f"https://{settings.meta_graph_host}/{settings.meta_graph_version}/{path.lstrip('/')}"


async def _request(
    method: str,
    url: str,
    *,
    channel: str,
    timeout: float = SEND_TIMEOUT,
    **kwargs: Any,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise UpstreamTimeoutError(f"{channel}: timeout al llamar {method}") from exc
    except httpx.RequestError as exc:
        raise UpstreamHTTPError(f"{channel}: error de red {exc.__class__.__name__}") from exc

    if response.status_code >= 400:
        msg = f"{channel} respondió error (status={response.status_code}, body={response.text[:300]!r})"
        raise UpstreamHTTPError(msg, status_code=response.status_code)
    return response


class OutboundSender(ABC):
    """Base de los emisores; `send_text` lanza errores de dominio si el envío falla."""

    channel: str = ""

    @abstractmethod
    async def send_text(
        self, recipient_id: str, text: str, *, credentials: ChannelCredentials | None = None
    ) -> None: ...


class WhatsAppSender(OutboundSender):
    channel = "whatsapp"

    async def send_text(
        self, recipient_id: str, text: str, *, credentials: ChannelCredentials | None = None
    ) -> None:
        creds = credentials or credentials_for(self.channel)
        if not creds.access_token or not creds.phone_number_id:
            raise MissingCredentialError("WHATSAPP_ACCESS_TOKEN/WHATSAPP_PHONE_NUMBER_ID no configurados")
        await _request(
            "POST",
            _graph_url(f"{creds.phone_number_id}/messages"),
            channel=self.channel,
            headers={"Authorization": f"Bearer {creds.access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": recipient_id,
                "type": "text",
                "text": {"body": clip(text, MAX_PAYLOAD_CHARS["whatsapp"])},
            },
        )


class MessengerSender(OutboundSender):
    channel = "messenger"

    async def send_text(
        self, recipient_id: str, text: str, *, credentials: ChannelCredentials | None = None
    ) -> None:
        creds = credentials or credentials_for(self.channel)
        if not creds.page_access_token:
            raise MissingCredentialError("MESSENGER_PAGE_ACCESS_TOKEN no configurado")
        await _request(
            "POST",
            _graph_url("me/messages"),
            channel=self.channel,
            params={"access_token": creds.page_access_token},
            json={
                "messaging_type": "RESPONSE",
                "recipient": {"id": recipient_id},
                "message": {"text": clip(text, MAX_PAYLOAD_CHARS["messenger"])},
            },
        )


class TelegramSender(OutboundSender):
    channel = "telegram"

    async def send_text(
        self, recipient_id: str, text: str, *, credentials: ChannelCredentials | None = None
    ) -> None:
        creds = credentials or credentials_for(self.channel)
        if not creds.bot_token:
            raise MissingCredentialError("TELEGRAM_BOT_TOKEN no configurado")
        await _request(
            "POST",
            f"{settings.telegram_api_base}/bot{creds.bot_token}/sendMessage",
            channel=self.channel,
            json={
                "chat_id": recipient_id,
                "text": clip(text, MAX_PAYLOAD_CHARS["telegram"]),
                "disable_web_page_preview": True,
            },
        )


class WebchatSender(OutboundSender):
    """El widget lee el historial; el mensaje queda entregado al guardarse."""

    channel = "webchat"

    async def send_text(
        self, recipient_id: str, text: str, *, credentials: ChannelCredentials | None = None
    ) -> None:
        return None


def default_senders() -> dict[str, OutboundSender]:
    return {
        sender.channel: sender
        for sender in (WhatsAppSender(), MessengerSender(), TelegramSender(), WebchatSender())
    }


async def fetch_whatsapp_media(media_id: str, credentials: ChannelCredentials) -> tuple[bytes, str]:
    """Descarga media de WhatsApp: primero resuelve la URL y luego el binario."""
    if not credentials.access_token:
        raise MissingCredentialError("WHATSAPP_ACCESS_TOKEN no configurado")
    headers = {"Authorization": f"Bearer {credentials.access_token}"}
    meta = await _request("GET", _graph_url(media_id), channel="whatsapp", headers=headers)
    info = meta.json() or {}
    url = info.get("url")
    if not url:
        raise UpstreamHTTPError("whatsapp: media sin URL")
    binary = await _request("GET", url, channel="whatsapp", headers=headers, timeout=MEDIA_TIMEOUT)
    mime = info.get("mime_type") or binary.headers.get("content-type") or "application/octet-stream"
    return binary.content, mime.split(";")[0]


async def fetch_telegram_file(file_id: str, credentials: ChannelCredentials) -> tuple[bytes, str]:
    if not credentials.bot_token:
        raise MissingCredentialError("TELEGRAM_BOT_TOKEN no configurado")
    base = settings.telegram_api_base
    meta = await _request(
        "GET",
        f"{base}/bot{credentials.bot_token}/getFile",
        channel="telegram",
        params={"file_id": file_id},
    )
    file_path = ((meta.json() or {}).get("result") or {}).get("file_path")
    if not file_path:
        raise UpstreamHTTPError("telegram: getFile sin file_path")
    binary = await _request(
        "GET",
        f"{base}/file/bot{credentials.bot_token}/{file_path}",
        channel="telegram",
        timeout=MEDIA_TIMEOUT,
    )
    mime = binary.headers.get("content-type") or "application/octet-stream"
    return binary.content, mime.split(";")[0]


async def fetch_media(channel: str, media_id: str, credentials: ChannelCredentials) -> tuple[bytes, str]:
    if channel == "whatsapp":
        return await fetch_whatsapp_media(media_id, credentials)
    if channel == "telegram":
        return await fetch_telegram_file(media_id, credentials)
    if channel == "messenger" and media_id.startswith("https://"):
        # Messenger entrega la URL firmada del adjunto directamente
        binary = await _request("GET", media_id, channel=channel, timeout=MEDIA_TIMEOUT)
        mime = binary.headers.get("content-type") or "application/octet-stream"
        return binary.content, mime.split(";")[0]
    raise MissingCredentialError(f"{channel}: descarga de media no soportada")
