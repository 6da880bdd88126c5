"""Resolución de tenants y conexiones de canal (sólo lectura)."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationError

from embudo.core.config import settings
from embudo.core.logging import get_logger
from embudo.data import tenant_profile_path
from embudo.models.tenant import ChannelConnection, TenantProfile

logger = get_logger(__name__)


class TenantNotFoundError(LookupError):
    """No existe perfil para el tenant solicitado."""


@lru_cache(maxsize=32)
def load_tenant_profile(tenant_id: str | None = None) -> TenantProfile:
    """Carga y valida el perfil del tenant; usa el tenant por defecto si no se indica."""
    resolved = tenant_id or settings.default_tenant_id
    path = tenant_profile_path(resolved)
    if not path.exists():
        if resolved != settings.default_tenant_id:
            logger.warning("tenants.profile_missing", extra={"tenant_id": resolved})
            return load_tenant_profile(settings.default_tenant_id)
        raise TenantNotFoundError(f"Perfil de tenant no encontrado: {resolved}")
    return TenantProfile.model_validate_json(path.read_text(encoding="utf-8"))


class ChannelConnectionsRepository:
    """Lee conexiones de canal desde el JSON que mantiene el aprovisionamiento."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or settings.channel_connections_path)

    def list_connections(self) -> list[ChannelConnection]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("tenants.connections_unreadable", extra={"path": str(self._path)})
            return []

        items = raw.get("connections", []) if isinstance(raw, dict) else raw
        connections: list[ChannelConnection] = []
        for item in items if isinstance(items, list) else []:
            try:
                connections.append(ChannelConnection.model_validate(item))
            except ValidationError:
                item_id = item.get("id") if isinstance(item, dict) else None
                logger.warning("tenants.connection_invalid", extra={"item_id": item_id})
        return connections

    def resolve(self, channel: str, routing_id: str | None) -> ChannelConnection | None:
        """Busca la conexión del canal para el identificador de ruteo recibido."""
        if not routing_id:
            return None
        for connection in self.list_connections():
            if connection.channel == channel and connection.external_id == str(routing_id):
                return connection
        return None

    def resolve_tenant_id(self, channel: str, routing_id: str | None) -> str | None:
        connection = self.resolve(channel, routing_id)
        return connection.tenant_id if connection else None
