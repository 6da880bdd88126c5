"""Memoria durable de conversaciones por (canal, contacto)."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx

from embudo.core.config import settings
from embudo.core.errors import StorageUnavailableError
from embudo.core.logging import get_logger
from embudo.models.conversation import ChatMessage, Conversation, Role, conversation_key

logger = get_logger(__name__)

MAX_RECORDS = 6000
PRUNE_TO = 5000

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _split_key(key: str) -> tuple[str, str]:
    channel, _, external_id = key.partition(":")
    return channel, external_id


class ConversationStore(ABC):
    """Contrato común: lectura con creación implícita, append acotado y parches.

    Las subclases sólo implementan la lectura/escritura de registros serializados; la
    lógica de historial, timestamps y marcas únicas vive aquí para que todos los
    backends se comporten igual.
    """

    def __init__(self, *, max_messages: int | None = None, clock: Clock | None = None) -> None:
        self._max_messages = max(6, min(80, max_messages or settings.history_limit))
        self._clock = clock or utcnow

    @abstractmethod
    async def _read(self, key: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def _write(self, key: str, record: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _read_all(self) -> dict[str, dict[str, Any]]: ...

    async def get(self, channel: str, external_id: str) -> Conversation:
        """Devuelve la conversación o una vacía sin persistirla."""
        raw = await self._read(conversation_key(channel, external_id))
        if raw is None:
            return Conversation.empty(channel, external_id)
        return Conversation.hydrate(channel, external_id, raw)

    async def append_message(
        self,
        channel: str,
        external_id: str,
        role: Role,
        text: str,
        *,
        at: datetime | None = None,
    ) -> Conversation:
        """Agrega un mensaje y recorta el historial a la ventana configurada."""
        conversation = await self.get(channel, external_id)
        content = (text or "").strip()
        if not content:
            return conversation

        now = at or self._clock()
        messages = [*conversation.messages, ChatMessage(role=role, content=content, at=now)]
        conversation = conversation.model_copy(
            update={
                "messages": messages[-self._max_messages :],
                "created_at": conversation.created_at or now,
                "updated_at": now,
            }
        )
        await self._persist(conversation)
        return conversation

    async def patch(self, channel: str, external_id: str, **fields: Any) -> Conversation:
        """Actualiza metadatos de la conversación (idioma, media pendiente, marcas)."""
        conversation = await self.get(channel, external_id)
        now = self._clock()
        update = {key: value for key, value in fields.items() if key in Conversation.model_fields}
        update.setdefault("created_at", conversation.created_at or now)
        update["updated_at"] = now
        conversation = conversation.model_copy(update=update)
        await self._persist(conversation)
        return conversation

    async def mark_once(
        self, channel: str, external_id: str, field: str, *, at: datetime | None = None
    ) -> bool:
        """Fija una marca temporal sólo si sigue vacía en la lectura más reciente."""
        current = await self.get(channel, external_id)
        if getattr(current, field) is not None:
            return False
        await self.patch(channel, external_id, **{field: at or self._clock()})
        return True

    async def list_all(self) -> dict[str, Conversation]:
        records = await self._read_all()
        conversations: dict[str, Conversation] = {}
        for key, raw in records.items():
            channel, external_id = _split_key(key)
            if not channel or not external_id:
                continue
            conversations[key] = Conversation.hydrate(channel, external_id, raw)
        return conversations

    async def _persist(self, conversation: Conversation) -> None:
        await self._write(conversation.key, conversation.model_dump(mode="json"))


class InMemoryConversationStore(ConversationStore):
    """Implementación en memoria para pruebas y desarrollo local."""

    def __init__(self, *, max_messages: int | None = None, clock: Clock | None = None) -> None:
        super().__init__(max_messages=max_messages, clock=clock)
        self._records: dict[str, dict[str, Any]] = {}

    async def _read(self, key: str) -> dict[str, Any] | None:
        record = self._records.get(key)
        return json.loads(json.dumps(record)) if record is not None else None

    async def _write(self, key: str, record: dict[str, Any]) -> None:
        self._records[key] = json.loads(json.dumps(record))

    async def _read_all(self) -> dict[str, dict[str, Any]]:
        return json.loads(json.dumps(self._records))


class TurnScopedStore(ConversationStore):
    """Envuelve el almacén durable durante un turno.

    Ante el primer `StorageUnavailableError` (lectura o escritura) el resto del turno
    sigue en memoria; el registro que no pudo guardarse queda como semilla para que
    el historial del turno no se pierda.
    """

    def __init__(self, primary: ConversationStore, *, clock: Clock | None = None) -> None:
        super().__init__(max_messages=primary._max_messages, clock=clock or primary._clock)
        self._primary = primary
        self._local = InMemoryConversationStore(max_messages=primary._max_messages, clock=self._clock)
        self.degraded = False

    def _degrade(self, operation: str, exc: StorageUnavailableError) -> None:
        if not self.degraded:
            logger.warning(
                "conversation_store.turn_degraded",
                extra={"operation": operation, "error": str(exc)},
            )
        self.degraded = True

    async def _read(self, key: str) -> dict[str, Any] | None:
        if not self.degraded:
            try:
                return await self._primary._read(key)
            except StorageUnavailableError as exc:
                self._degrade("read", exc)
        return await self._local._read(key)

    async def _write(self, key: str, record: dict[str, Any]) -> None:
        if not self.degraded:
            try:
                await self._primary._write(key, record)
                return
            except StorageUnavailableError as exc:
                self._degrade("write", exc)
        await self._local._write(key, record)

    async def _read_all(self) -> dict[str, dict[str, Any]]:
        if not self.degraded:
            try:
                return await self._primary._read_all()
            except StorageUnavailableError as exc:
                self._degrade("read_all", exc)
        return await self._local._read_all()


class SupabaseStateBackend:
    """Tabla `conversation_state(scope, conv_key, payload)` vía PostgREST."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        service_role: str | None = None,
        scope: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        url = base_url or settings.supabase_url
        key = service_role or settings.supabase_service_role
        if not url or not key:
            raise StorageUnavailableError("Supabase no está configurado (SUPABASE_URL/SERVICE_ROLE)")
        self._url = f"{url.rstrip('/')}/rest/v1/conversation_state"
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._scope = scope or settings.conversation_state_scope
        self._timeout = timeout

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, self._url, headers=headers, **kwargs)
        except httpx.RequestError as exc:
            msg = f"Error de red con conversation_state: {exc}"
            logger.warning(msg)
            raise StorageUnavailableError(msg) from exc

        if response.status_code >= 400:
            msg = (
                "Supabase respondió error en conversation_state"
                f" (status={response.status_code}, body={response.text!r})"
            )
            logger.error(msg)
            raise StorageUnavailableError(msg)
        return response

    async def get(self, key: str) -> dict[str, Any] | None:
        params = {
            "select": "payload",
            "scope": f"eq.{self._scope}",
            "conv_key": f"eq.{key}",
            "limit": "1",
        }
        response = await self._request("GET", params=params)
        rows = response.json() or []
        if not isinstance(rows, list) or not rows:
            return None
        payload = rows[0].get("payload")
        return payload if isinstance(payload, dict) else None

    async def set(self, key: str, payload: dict[str, Any]) -> None:
        body = {
            "scope": self._scope,
            "conv_key": key,
            "payload": payload,
            "updated_at": utcnow().isoformat(),
        }
        await self._request(
            "POST",
            params={"on_conflict": "scope,conv_key"},
            json=body,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def delete(self, key: str) -> None:
        await self._request("DELETE", params={"scope": f"eq.{self._scope}", "conv_key": f"eq.{key}"})

    async def list(self) -> dict[str, dict[str, Any]]:
        params = {"select": "conv_key,payload", "scope": f"eq.{self._scope}"}
        response = await self._request("GET", params=params)
        rows = response.json() or []
        return {
            str(row["conv_key"]): row["payload"]
            for row in rows
            if isinstance(row, dict) and row.get("conv_key") and isinstance(row.get("payload"), dict)
        }


class FileConversationStore(ConversationStore):
    """Documento JSON reescrito atómicamente, con backend externo opcional.

    Cuando hay backend externo se consulta primero y es la fuente autoritativa; el
    archivo queda como espejo y respaldo si el backend falla.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        backend: SupabaseStateBackend | None = None,
        max_messages: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(max_messages=max_messages, clock=clock)
        self._path = Path(path or settings.conversation_store_path)
        self._backend = backend

    def _load_file(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            # No se reescribe un archivo ilegible para no perder el resto de registros
            raise StorageUnavailableError(f"Archivo de conversaciones ilegible: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _save_file(self, records: dict[str, dict[str, Any]]) -> None:
        if len(records) > MAX_RECORDS:
            newest = sorted(
                records.items(),
                key=lambda item: str(item[1].get("updated_at") or ""),
                reverse=True,
            )[:PRUNE_TO]
            records = dict(newest)
            logger.info("conversations.pruned", extra={"kept": len(records)})
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(f"{self._path.name}.{os.getpid()}.tmp")
            tmp_path.write_text(json.dumps(records, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageUnavailableError(f"No fue posible escribir conversaciones: {exc}") from exc

    async def _read(self, key: str) -> dict[str, Any] | None:
        if self._backend is not None:
            try:
                return await self._backend.get(key)
            except StorageUnavailableError:
                logger.warning("conversations.backend_read_failed", extra={"conv_key": key})
        return self._load_file().get(key)

    async def _write(self, key: str, record: dict[str, Any]) -> None:
        backend_ok = False
        if self._backend is not None:
            try:
                await self._backend.set(key, record)
                backend_ok = True
            except StorageUnavailableError:
                logger.warning("conversations.backend_write_failed", extra={"conv_key": key})
        try:
            # Lectura, modificación y reemplazo sin puntos de suspensión intermedios
            records = self._load_file()
            records[key] = record
            self._save_file(records)
        except StorageUnavailableError:
            if not backend_ok:
                raise
            logger.warning("conversations.mirror_write_failed", extra={"conv_key": key})

    async def _read_all(self) -> dict[str, dict[str, Any]]:
        if self._backend is not None:
            try:
                return await self._backend.list()
            except StorageUnavailableError:
                logger.warning("conversations.backend_list_failed")
        return self._load_file()


def build_conversation_store() -> ConversationStore:
    """Crea el almacén configurado por entorno."""
    backend: SupabaseStateBackend | None = None
    if settings.conversation_state_backend == "supabase":
        try:
            backend = SupabaseStateBackend()
        except StorageUnavailableError:
            logger.exception("conversations.backend_unavailable")
    return FileConversationStore(settings.conversation_store_path, backend=backend)


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    return build_conversation_store()
