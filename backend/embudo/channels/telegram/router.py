"""Endpoints del canal Telegram."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, Response

from embudo.channels import common
from embudo.core.config import settings
from embudo.core.errors import PayloadMalformedError
from embudo.core.logging import get_logger, log_event
from embudo.core.security import token_meta

from . import service
from .deps import telegram_secret_ok

router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = get_logger("embudo.channels.telegram")


@router.post("/webhook", summary="Webhook de recepción Telegram")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    secret_ok: bool = Depends(telegram_secret_ok),
) -> Response:
    limited = common.enforce_rate_limit(request, "telegram_webhook", settings.rate_limit_webhook_max)
    if limited is not None:
        return limited

    raw_body = await request.body()
    if not secret_ok:
        logger.warning("telegram.secret_invalid", extra={"body_length": len(raw_body)})
        common.webhook_state.record_post(
            "telegram", length=len(raw_body), has_signature=False, result="invalid_secret"
        )
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        events = service.normalize(common.parse_json_body(raw_body))
    except PayloadMalformedError as exc:
        common.webhook_state.record_post(
            "telegram", length=len(raw_body), has_signature=True, result="invalid_json"
        )
        return JSONResponse({"error": str(exc)}, status_code=400)

    common.webhook_state.record_post("telegram", length=len(raw_body), has_signature=True, result="ok")
    common.record_events("telegram", events)
    if events:
        background_tasks.add_task(common.dispatch_events, "telegram", events)
    log_event(logger, "telegram.webhook_accepted", events=len(events))
    return JSONResponse({"ok": True})


@router.get("/health", summary="Diagnóstico del webhook de Telegram")
async def telegram_health() -> dict[str, Any]:
    return {
        "ok": True,
        "channel": "telegram",
        "bot_token": token_meta(settings.telegram_bot_token),
        "webhook_secret_present": bool(settings.telegram_webhook_secret),
        "owner_chat_configured": bool(settings.telegram_owner_chat_id),
        "state": common.webhook_state.get("telegram").model_dump(mode="json"),
    }
