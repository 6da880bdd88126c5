"""Taxonomía de errores del orquestador.

Los errores de entrada (firma, payload, rate limit) se convierten en respuestas HTTP.
Los errores de dependencias externas se recuperan localmente con textos de respaldo.
"""

from __future__ import annotations


class EmbudoError(RuntimeError):
    """Base para todos los errores de dominio."""


class SignatureInvalidError(EmbudoError):
    """La firma HMAC del webhook no coincide."""


class PayloadMalformedError(EmbudoError):
    """El cuerpo recibido no es JSON válido o no tiene la forma esperada."""


class RateLimitedError(EmbudoError):
    """El llamante excedió el límite de peticiones de su ventana."""

    def __init__(self, message: str, *, retry_after_seconds: int) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class MissingCredentialError(EmbudoError):
    """Falta una credencial necesaria para llamar a un servicio externo."""


class UpstreamTimeoutError(EmbudoError):
    """Un servicio externo no respondió dentro del presupuesto de tiempo."""


class UpstreamHTTPError(EmbudoError):
    """Un servicio externo respondió con un estado de error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TranscriptionError(EmbudoError):
    """No fue posible transcribir un mensaje de voz."""


class StorageUnavailableError(EmbudoError):
    """El almacén de conversaciones o leads no está disponible."""
