"""Dependencias reutilizables para rutas de Telegram."""

from __future__ import annotations

from fastapi import Header

from embudo.core.config import settings
from embudo.core.security import verify_shared_token


async def telegram_secret_ok(
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
) -> bool:
    """Valida el header que Telegram reenvía cuando el webhook se registró con secreto."""
    return verify_shared_token(settings.telegram_webhook_secret, x_telegram_bot_api_secret_token)
