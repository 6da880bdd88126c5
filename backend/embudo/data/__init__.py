"""Datos de configuración por tenant integrados en el backend."""

from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def data_path(*parts: str) -> Path:
    """Retorna la ruta a un recurso dentro de `backend/embudo/data`."""
    return BASE_DIR.joinpath(*parts)


def tenant_profile_path(tenant_id: str) -> Path:
    """Ruta del perfil JSON empaquetado para el tenant indicado."""
    return data_path("tenants", f"{tenant_id}.json")
