"""Dependencias reutilizables para rutas de Messenger."""

from __future__ import annotations

from fastapi import Request

from embudo.channels.common import SIGNATURE_HEADER
from embudo.core.config import settings
from embudo.core.security import SignatureCheck, verify_signature


async def read_signed_body(request: Request) -> tuple[bytes, SignatureCheck]:
    raw_body = await request.body()
    check = verify_signature(
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        secret=settings.messenger_app_secret,
        secondary_secret=settings.instagram_app_secret,
        bypass=settings.messenger_signature_bypass,
        channel="messenger",
    )
    return raw_body, check
