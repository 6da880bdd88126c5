"""Captura de leads: calificación, deduplicación, persistencia y aviso al operador."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from embudo.core.config import settings
from embudo.core.errors import EmbudoError, StorageUnavailableError
from embudo.core.logging import get_logger, log_event
from embudo.models.conversation import Conversation
from embudo.models.lead import Lead
from embudo.services.classifier import Stage
from embudo.services.conversation_store import Clock, ConversationStore, utcnow
from embudo.services.intent import (
    Intent,
    IntentDetector,
    canonical_phone,
    intent_detector,
)
from embudo.services.outbound import TelegramSender

logger = get_logger("embudo.leads")


def _same_origin(lead: Lead, contact: str, source: str) -> bool:
    return lead.contact == contact and lead.source.strip().lower() == source.strip().lower()


class LeadStore(ABC):
    """Colección append-only consultable por (contacto, origen, fecha)."""

    @abstractmethod
    async def matching(self, contact: str, source: str, *, since: datetime) -> list[Lead]:
        """Leads del contacto y origen creados después de `since`, más recientes primero."""

    @abstractmethod
    async def create(self, lead: Lead) -> Lead: ...

    async def has_recent(
        self, contact: str, source: str, *, within: timedelta, now: datetime
    ) -> bool:
        """Indica si existe un lead del mismo contacto y origen dentro de la ventana."""
        return bool(await self.matching(contact, source, since=now - within))


class InMemoryLeadStore(LeadStore):
    def __init__(self) -> None:
        self.leads: list[Lead] = []

    async def matching(self, contact: str, source: str, *, since: datetime) -> list[Lead]:
        return [
            lead
            for lead in self.leads
            if lead.created_at > since and _same_origin(lead, contact, source)
        ]

    async def create(self, lead: Lead) -> Lead:
        self.leads.insert(0, lead)
        return lead


class FileLeadStore(LeadStore):
    """Lista JSON con los leads más recientes primero, reescrita atómicamente."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or settings.leads_store_path)

    def _load(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageUnavailableError(f"Archivo de leads ilegible: {exc}") from exc
        return data if isinstance(data, list) else []

    async def matching(self, contact: str, source: str, *, since: datetime) -> list[Lead]:
        found: list[Lead] = []
        for item in self._load():
            if not isinstance(item, dict) or item.get("contact") != contact:
                continue
            try:
                lead = Lead.model_validate(item)
            except ValidationError:
                continue
            if lead.created_at > since and _same_origin(lead, contact, source):
                found.append(lead)
        return sorted(found, key=lambda lead: lead.created_at, reverse=True)

    async def create(self, lead: Lead) -> Lead:
        records = self._load()
        records.insert(0, lead.model_dump(mode="json"))
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(f"{self._path.name}.{os.getpid()}.tmp")
            tmp_path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageUnavailableError(f"No fue posible guardar el lead: {exc}") from exc
        return lead


class LeadNotifier:
    """Aviso best-effort al chat de Telegram del operador."""

    def __init__(
        self,
        *,
        sender: TelegramSender | None = None,
        chat_id: str | None = None,
    ) -> None:
        self._sender = sender or TelegramSender()
        self._chat_id = chat_id if chat_id is not None else settings.telegram_owner_chat_id

    @staticmethod
    def format(lead: Lead) -> str:
        lines = [
            f"📥 НОВАЯ ЗАЯВКА ({lead.channel.upper()})",
            f"Контакт: {lead.contact}",
        ]
        if lead.name:
            lines.append(f"Имя: {lead.name}")
        lines += [
            f"Язык: {lead.lang or '—'}",
            f"Стадия: {lead.stage or '—'} · score {lead.ai_readiness if lead.ai_readiness is not None else '—'}",
        ]
        if lead.client_messages:
            lines.append("Сообщения клиента:")
            lines += [f"— {message[:200]}" for message in lead.client_messages[-5:]]
        return "\n".join(lines)

    async def notify(self, lead: Lead) -> bool:
        if not self._chat_id:
            logger.info("leads.notify_skipped", extra={"lead_id": lead.id, "reason": "no_chat_id"})
            return False
        try:
            await self._sender.send_text(self._chat_id, self.format(lead))
        except EmbudoError as exc:
            logger.warning("leads.notify_failed", extra={"lead_id": lead.id, "error": str(exc)})
            return False
        log_event(logger, "leads.notified", lead_id=lead.id, channel=lead.channel)
        return True


class LeadCapture:
    """Decide si el turno califica como lead y lo registra a lo sumo una vez."""

    def __init__(
        self,
        conversations: ConversationStore,
        leads: LeadStore,
        *,
        notifier: LeadNotifier | None = None,
        detector: IntentDetector | None = None,
        dedup_window: timedelta | None = None,
        min_user_turns: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._conversations = conversations
        self._leads = leads
        self._notifier = notifier or LeadNotifier()
        self._detector = detector or intent_detector
        self._window = dedup_window or timedelta(hours=settings.lead_dedup_hours)
        self._min_user_turns = (
            min_user_turns if min_user_turns is not None else settings.lead_min_user_turns
        )
        self._clock = clock or utcnow

    def resolve_contact(
        self, conversation: Conversation, latest_user_text: str, *, username: str | None = None
    ) -> tuple[str | None, str | None]:
        """Contacto canónico y email, desde el texto o desde la identidad del canal."""
        texts = [latest_user_text, *reversed(conversation.recent_user_texts())]
        email: str | None = None
        contact: str | None = None
        for text in texts:
            extracted = self._detector.extract_contact(text)
            if extracted is None:
                continue
            if extracted.kind == "email" and email is None:
                email = extracted.value
            if contact is None:
                contact = extracted.value
        if contact:
            return contact, email

        if conversation.channel == "whatsapp":
            return canonical_phone(conversation.external_id), email
        if conversation.channel == "telegram" and username:
            return f"@{username.lstrip('@')}", email
        return None, email

    async def maybe_capture(
        self,
        conversation: Conversation,
        latest_user_text: str,
        stage: Stage,
        score: int,
        intent: Intent,
        *,
        tenant_id: str | None = None,
        lang: str | None = None,
        username: str | None = None,
        recommendation: str | None = None,
    ) -> Lead | None:
        if conversation.lead_captured_at is not None or intent.support:
            return None
        if conversation.user_turns < self._min_user_turns:
            return None

        texts = [latest_user_text, *conversation.recent_user_texts()]
        has_value = any(self._detector.has_contact_value(text) for text in texts)
        if stage is not Stage.ASK_CONTACT and not has_value:
            return None

        contact, email = self.resolve_contact(conversation, latest_user_text, username=username)
        if not contact:
            return None

        # La marca y la deduplicación se evalúan contra la lectura más reciente
        fresh = await self._conversations.get(conversation.channel, conversation.external_id)
        if fresh.lead_captured_at is not None:
            return None

        now = self._clock()
        source = conversation.channel
        if await self._leads.has_recent(contact, source, within=self._window, now=now):
            log_event(
                logger,
                "leads.dedup_skipped",
                channel=conversation.channel,
                conversation_key=conversation.key,
            )
            return None

        lead = Lead(
            tenant_id=tenant_id or conversation.tenant_id or settings.default_tenant_id,
            contact=contact,
            email=email,
            name=username,
            channel=conversation.channel,
            question=latest_user_text[:500] or None,
            client_messages=conversation.recent_user_texts(12),
            ai_recommendation=recommendation,
            ai_readiness=score,
            stage=stage.value,
            source=source,
            lang=lang or conversation.lang,
            created_at=now,
        )
        await self._leads.create(lead)
        await self._conversations.mark_once(
            conversation.channel, conversation.external_id, "lead_captured_at", at=now
        )
        log_event(
            logger,
            "leads.captured",
            lead_id=lead.id,
            channel=lead.channel,
            stage=stage.value,
            score=score,
        )
        await self._notifier.notify(lead)
        return lead


def build_lead_store() -> LeadStore:
    return FileLeadStore(settings.leads_store_path)


@lru_cache(maxsize=1)
def get_lead_store() -> LeadStore:
    return build_lead_store()
