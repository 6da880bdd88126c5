"""Piezas compartidas por los webhooks de canal: handshake, rate limit, ruteo y despacho."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from embudo.core.config import settings
from embudo.core.errors import EmbudoError, PayloadMalformedError
from embudo.core.logging import get_logger, log_event
from embudo.models.events import InboundEvent
from embudo.models.tenant import ChannelConnection
from embudo.services import orchestrator as orchestrator_service
from embudo.services.outbound import ChannelCredentials, credentials_for
from embudo.services.rate_limit import rate_limiter, request_identity
from embudo.services.tenants import ChannelConnectionsRepository
from embudo.services.webhook_state import webhook_state

logger = get_logger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
SIGNATURE_HEADER = "x-hub-signature-256"


def handshake_response(
    *,
    mode: str | None,
    token: str | None,
    challenge: str | None,
    expected: str | None,
    env_name: str,
    channel: str,
) -> Response:
    """Responde el handshake GET de Meta: eco del challenge sólo con token exacto."""
    if mode == "subscribe" and expected and token == expected:
        log_event(logger, f"{channel}.verify_ok")
        return PlainTextResponse(challenge or "", headers=NO_STORE)

    logger.warning(
        f"{channel}.verify_failed",
        extra={"mode": mode, "token_present": bool(token), "expected_present": bool(expected)},
    )
    return JSONResponse(
        {
            "error": "Invalid verify token",
            "hint": f'Ensure Meta "Verify token" matches {env_name} exactly (no extra spaces/quotes).',
        },
        status_code=403,
        headers=NO_STORE,
    )


def enforce_rate_limit(request: Request, scope: str, limit: int) -> JSONResponse | None:
    """Devuelve la respuesta 429 si la identidad excedió la ventana; None si puede seguir."""
    result = rate_limiter.hit(
        scope, request_identity(request), settings.rate_limit_window_seconds, limit
    )
    if result.ok:
        return None
    logger.warning(
        "rate_limit.exceeded",
        extra={"scope": scope, "retry_after_seconds": result.retry_after_seconds},
    )
    return JSONResponse(
        {"error": "Too many requests"},
        status_code=429,
        headers={**NO_STORE, "Retry-After": str(result.retry_after_seconds)},
    )


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PayloadMalformedError("Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise PayloadMalformedError("Invalid JSON")
    return payload


def timestamp_from(value: Any, *, millis: bool = False) -> datetime:
    """Convierte el timestamp unix del proveedor; si falta o es inválido usa ahora."""
    try:
        seconds = float(value) / (1000 if millis else 1)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def can_send(channel: str, credentials: ChannelCredentials) -> bool:
    if channel == "whatsapp":
        return bool(credentials.access_token and credentials.phone_number_id)
    if channel == "messenger":
        return bool(credentials.page_access_token)
    if channel == "telegram":
        return bool(credentials.bot_token)
    return True


def resolve_route(
    channel: str,
    routing_id: str | None,
    connections: ChannelConnectionsRepository | None = None,
) -> tuple[bool, ChannelConnection | None]:
    """Determina si el evento se procesa y con qué conexión.

    Una conexión deshabilitada se ignora. Un routing id desconocido sólo se procesa si
    existen credenciales globales para responder por el canal.
    """
    repository = connections or ChannelConnectionsRepository()
    connection = repository.resolve(channel, routing_id)
    if connection is not None:
        if connection.status == "disabled":
            log_event(logger, f"{channel}.connection_disabled", routing_id=routing_id)
            return False, None
        return True, connection
    if can_send(channel, credentials_for(channel)):
        return True, None
    logger.warning(
        f"{channel}.unknown_routing",
        extra={"routing_id": routing_id, "hint": "Sin conexión registrada ni credenciales globales."},
    )
    return False, None


def record_events(channel: str, events: Iterable[InboundEvent]) -> None:
    for event in events:
        webhook_state.record_event(
            channel,
            sender=event.external_contact_id,
            kind=event.kind,
            text=event.text,
        )


async def dispatch_events(channel: str, events: list[InboundEvent]) -> int:
    """Procesa los eventos en orden; un fallo en uno no detiene los siguientes."""
    processed = 0
    for event in events:
        should_process, connection = resolve_route(channel, event.routing_id)
        if not should_process:
            continue
        try:
            await orchestrator_service.orchestrator.process_and_send(event, connection)
        except EmbudoError:
            logger.exception(
                f"{channel}.processing_failed",
                extra={"contact_id": event.external_contact_id, "kind": event.kind},
            )
            continue
        processed += 1
    return processed
