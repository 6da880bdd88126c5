"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter

from embudo.core.config import settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck() -> dict[str, object]:
    """Retorna el estado de la API y qué piezas opcionales están activas."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "conversation_backend": settings.conversation_state_backend,
        "followup_enabled": settings.followup_enabled,
        "openai_configured": bool(settings.openai_api_key),
    }
