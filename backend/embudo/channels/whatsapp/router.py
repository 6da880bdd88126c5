"""Endpoints del canal WhatsApp (Cloud API)."""

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

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])
logger = get_logger("embudo.channels.whatsapp")


@router.get("/webhook", summary="Handshake de verificación de Meta")
async def whatsapp_verify(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> Response:
    return common.handshake_response(
        mode=mode,
        token=token,
        challenge=challenge,
        expected=settings.whatsapp_verify_token,
        env_name="WHATSAPP_VERIFY_TOKEN",
        channel="whatsapp",
    )


@router.post("/webhook", summary="Webhook de recepción WhatsApp")
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
) -> Response:
    """Valida firma y payload, agenda el procesamiento y responde de inmediato."""
    limited = common.enforce_rate_limit(request, "whatsapp_webhook", settings.rate_limit_webhook_max)
    if limited is not None:
        return limited

    raw_body, check = await read_signed_body(request)
    has_signature = bool(request.headers.get(common.SIGNATURE_HEADER))
    if not check.ok:
        logger.warning(
            "whatsapp.signature_invalid",
            extra={"body_length": len(raw_body), "has_signature": has_signature},
        )
        common.webhook_state.record_post(
            "whatsapp", length=len(raw_body), has_signature=has_signature, result="invalid_signature"
        )
        return JSONResponse({"error": "Invalid signature"}, status_code=403)

    try:
        events = service.normalize(common.parse_json_body(raw_body))
    except PayloadMalformedError as exc:
        common.webhook_state.record_post(
            "whatsapp", length=len(raw_body), has_signature=has_signature, result="invalid_json"
        )
        return JSONResponse({"error": str(exc)}, status_code=400)

    common.webhook_state.record_post(
        "whatsapp", length=len(raw_body), has_signature=has_signature, result="ok"
    )
    common.record_events("whatsapp", events)
    if events:
        background_tasks.add_task(common.dispatch_events, "whatsapp", events)
    log_event(
        logger, "whatsapp.webhook_accepted", events=len(events), signature_match=check.matched_secret_kind
    )
    return JSONResponse({"ok": True})


@router.get("/health", summary="Diagnóstico del webhook de WhatsApp")
async def whatsapp_health() -> dict[str, Any]:
    state = common.webhook_state.get("whatsapp")
    return {
        "ok": True,
        "channel": "whatsapp",
        "verify_token": token_meta(settings.whatsapp_verify_token),
        "access_token": token_meta(settings.whatsapp_access_token),
        "phone_number_id_present": bool(settings.whatsapp_phone_number_id),
        "app_secret_present": bool(settings.whatsapp_app_secret),
        "instagram_secret_fallback": bool(settings.instagram_app_secret),
        "signature_bypass": settings.whatsapp_signature_bypass,
        "openai_key_present": bool(settings.openai_api_key),
        "state": state.model_dump(mode="json"),
    }

