"""Endpoints del canal Messenger."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import JSONResponse, Response

from embudo.channels import common
from embudo.core.config import settings
from embudo.core.errors import PayloadMalformedError
from embudo.core.logging import get_logger, log_event
from embudo.core.security import token_meta

from . import service
from .deps import read_signed_body

router = APIRouter(prefix="/messenger", tags=["messenger"])
logger = get_logger("embudo.channels.messenger")


@router.get("/webhook", summary="Handshake de verificación de Meta")
async def messenger_verify(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> Response:
    return common.handshake_response(
        mode=mode,
        token=token,
        challenge=challenge,
        expected=settings.messenger_verify_token,
        env_name="MESSENGER_VERIFY_TOKEN",
        channel="messenger",
    )


@router.post("/webhook", summary="Webhook de recepción Messenger")
async def messenger_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
    limited = common.enforce_rate_limit(request, "messenger_webhook", settings.rate_limit_webhook_max)
    if limited is not None:
        return limited

    raw_body, check = await read_signed_body(request)
    has_signature = bool(request.headers.get(common.SIGNATURE_HEADER))
    if not check.ok:
        logger.warning(
            "messenger.signature_invalid",
            extra={"body_length": len(raw_body), "has_signature": has_signature},
        )
        common.webhook_state.record_post(
            "messenger", length=len(raw_body), has_signature=has_signature, result="invalid_signature"
        )
        return JSONResponse({"error": "Invalid signature"}, status_code=403)

    try:
        events = service.normalize(common.parse_json_body(raw_body))
    except PayloadMalformedError as exc:
        common.webhook_state.record_post(
            "messenger", length=len(raw_body), has_signature=has_signature, result="invalid_json"
        )
        return JSONResponse({"error": str(exc)}, status_code=400)

    common.webhook_state.record_post(
        "messenger", length=len(raw_body), has_signature=has_signature, result="ok"
    )
    common.record_events("messenger", events)
    if events:
        background_tasks.add_task(common.dispatch_events, "messenger", events)
    log_event(logger, "messenger.webhook_accepted", events=len(events))
    return JSONResponse({"ok": True})


@router.get("/health", summary="Diagnóstico del webhook de Messenger")
async def messenger_health() -> dict[str, Any]:
    return {
        "ok": True,
        "channel": "messenger",
        "verify_token": token_meta(settings.messenger_verify_token),
        "page_access_token": token_meta(settings.messenger_page_access_token),
        "app_secret_present": bool(settings.messenger_app_secret),
        "instagram_secret_fallback": bool(settings.instagram_app_secret),
        "signature_bypass": settings.messenger_signature_bypass,
        "ignore_echo": settings.messenger_ignore_echo,
        "state": common.webhook_state.get("messenger").model_dump(mode="json"),
    }
