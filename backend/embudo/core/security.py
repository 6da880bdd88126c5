"""Helpers de validación común para webhooks y firmas."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from hashlib import sha256
from typing import Literal

from embudo.core.logging import get_logger

logger = get_logger(__name__)

SecretKind = Literal["primary", "secondary", "bypass", "unconfigured"]

SIGNATURE_PREFIX = "sha256="


@dataclass(slots=True)
class SignatureCheck:
    """Resultado de la verificación de una firma de webhook."""

    ok: bool
    matched_secret_kind: SecretKind | None = None


def build_signature(secret: str, payload: bytes) -> str:
    """Calcula el HMAC-SHA256 hexadecimal del cuerpo bruto."""
    digest = hmac.new(secret.encode(), payload, sha256)
    return digest.hexdigest()


def normalize_signature(value: str | None) -> str:
    """Acepta firmas con o sin prefijo `sha256=`."""
    candidate = (value or "").strip()
    if candidate.lower().startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX) :]
    return candidate.lower()


def _matches(secret: str, payload: bytes, signature: str) -> bool:
    expected = build_signature(secret, payload)
    return hmac.compare_digest(expected.encode(), signature.encode())


def verify_signature(
    payload: bytes,
    signature_header: str | None,
    *,
    secret: str | None,
    secondary_secret: str | None = None,
    bypass: bool = False,
    channel: str = "meta",
) -> SignatureCheck:
    """Verifica la firma HMAC-SHA256 de un webhook de Meta.

    Args:
        payload: Cuerpo bruto recibido, antes de parsear JSON.
        signature_header: Valor de `x-hub-signature-256`.
        secret: App secret del canal.
        secondary_secret: Secreto alternativo que suele configurarse por error.
        bypass: Modo diagnóstico que omite la validación.
        channel: Nombre del canal para los logs.
    """
    if bypass:
        logger.warning("%s.signature_bypassed", channel, extra={"channel": channel})
        return SignatureCheck(ok=True, matched_secret_kind="bypass")

    if not secret and not secondary_secret:
        logger.warning("%s.signature_unconfigured", channel, extra={"channel": channel})
        return SignatureCheck(ok=True, matched_secret_kind="unconfigured")

    signature = normalize_signature(signature_header)
    if not signature:
        return SignatureCheck(ok=False)

    if secret and _matches(secret, payload, signature):
        return SignatureCheck(ok=True, matched_secret_kind="primary")

    if secondary_secret and secondary_secret != secret and _matches(secondary_secret, payload, signature):
        logger.warning(
            "%s.signature_secondary_secret",
            channel,
            extra={
                "channel": channel,
                "hint": "La firma coincide con el secreto alternativo; revisa el app secret configurado.",
            },
        )
        return SignatureCheck(ok=True, matched_secret_kind="secondary")

    return SignatureCheck(ok=False)


def verify_shared_token(expected: str | None, received: str | None) -> bool:
    """Compara el secret token opcional de Telegram; sin token configurado no se exige."""
    if not expected:
        return True
    return hmac.compare_digest(expected.encode(), (received or "").encode())


def token_meta(value: str | None) -> dict[str, object]:
    """Describe un token sin exponerlo (longitud, prefijo y sufijo)."""
    token = (value or "").strip()
    if not token:
        return {"present": False, "len": 0}
    return {"present": True, "len": len(token), "prefix": token[:4], "suffix": token[-4:]}
