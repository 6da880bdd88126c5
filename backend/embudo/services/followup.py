"""Seguimiento automático de conversaciones que quedaron esperando al usuario."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from embudo.core.config import settings
from embudo.core.errors import EmbudoError
from embudo.core.logging import get_logger, log_event
from embudo.models.conversation import Conversation
from embudo.models.tenant import TenantProfile
from embudo.services.conversation_store import Clock, ConversationStore, utcnow
from embudo.services.outbound import ChannelCredentials, OutboundSender, credentials_for
from embudo.services.tenants import ChannelConnectionsRepository, load_tenant_profile

logger = get_logger("embudo.followup")

NUDGE_PREVIEW_CHARS = 120


@dataclass(slots=True, frozen=True)
class FollowUpPolicy:
    stall_after: timedelta
    max_delay: timedelta
    outer_bound: timedelta
    poll_interval: float

    @classmethod
    def from_settings(cls) -> FollowUpPolicy:
        return cls(
            stall_after=timedelta(minutes=max(1, settings.followup_after_minutes)),
            max_delay=timedelta(minutes=max(1, settings.followup_max_delay_minutes)),
            outer_bound=timedelta(hours=max(1, settings.followup_outer_bound_hours)),
            poll_interval=float(max(5, settings.followup_poll_seconds)),
        )


def is_stalled(conversation: Conversation, now: datetime, policy: FollowUpPolicy) -> bool:
    """Una conversación es elegible si el asistente respondió y el usuario no volvió."""
    if conversation.lead_captured_at is not None or conversation.follow_up_sent_at is not None:
        return False
    last_user = conversation.last_message("user")
    last_assistant = conversation.last_message("assistant")
    if last_user is None or last_assistant is None:
        return False
    if last_assistant.at <= last_user.at:
        return False
    if now - last_user.at > policy.outer_bound:
        return False
    waited = now - last_assistant.at
    return policy.stall_after <= waited <= policy.max_delay


def build_nudge(conversation: Conversation, profile: TenantProfile) -> str:
    last_user = conversation.last_message("user")
    last = " ".join((last_user.content if last_user else "").split())
    if len(last) > NUDGE_PREVIEW_CHARS:
        last = last[: NUDGE_PREVIEW_CHARS - 1].rstrip() + "…"
    return profile.copy_for(conversation.lang).nudge.format(last=last)


CredentialsResolver = Callable[[Conversation], ChannelCredentials | None]


class SchedulerHandle:
    """Bucle único de seguimiento con `start()`/`stop()` idempotentes.

    Cada instancia es independiente, así las pruebas pueden crear la suya sin compartir
    estado global; la app crea exactamente una en su ciclo de vida.
    """

    def __init__(
        self,
        store: ConversationStore,
        senders: dict[str, OutboundSender],
        *,
        policy: FollowUpPolicy | None = None,
        clock: Clock | None = None,
        profile_loader: Callable[[str | None], TenantProfile] | None = None,
        credentials_resolver: CredentialsResolver | None = None,
    ) -> None:
        self._store = store
        self._senders = senders
        self._policy = policy or FollowUpPolicy.from_settings()
        self._clock = clock or utcnow
        self._profile_loader = profile_loader or load_tenant_profile
        connections = ChannelConnectionsRepository()
        self._credentials_resolver = credentials_resolver or (
            lambda conversation: credentials_for(
                conversation.channel,
                connections.resolve(conversation.channel, conversation.routing_id),
            )
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Arranca el bucle; una segunda llamada no crea otro."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="followup-scheduler")
        log_event(logger, "followup.started", poll_seconds=self._policy.poll_interval)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log_event(logger, "followup.stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:  # pragma: no cover - el bucle no debe detenerse
                logger.exception("followup.tick_failed")
            await asyncio.sleep(self._policy.poll_interval)

    async def tick(self, now: datetime | None = None) -> int:
        """Revisa todas las conversaciones una vez; devuelve cuántos avisos se enviaron."""
        current = now or self._clock()
        sent = 0
        conversations = await self._store.list_all()
        for conversation in conversations.values():
            if not is_stalled(conversation, current, self._policy):
                continue
            if await self._nudge(conversation, current):
                sent += 1
        return sent

    async def _nudge(self, conversation: Conversation, now: datetime) -> bool:
        sender = self._senders.get(conversation.channel)
        if sender is None:
            return False

        # Relectura: otro proceso pudo marcarla o el usuario pudo responder
        fresh = await self._store.get(conversation.channel, conversation.external_id)
        if not is_stalled(fresh, now, self._policy):
            return False

        profile = self._profile_loader(fresh.tenant_id)
        text = build_nudge(fresh, profile)
        try:
            await sender.send_text(
                fresh.external_id, text, credentials=self._credentials_resolver(fresh)
            )
        except EmbudoError as exc:
            logger.warning(
                "followup.send_failed",
                extra={"conversation_key": fresh.key, "channel": fresh.channel, "error": str(exc)},
            )
            return False

        if not await self._store.mark_once(
            fresh.channel, fresh.external_id, "follow_up_sent_at", at=now
        ):
            return False
        await self._store.append_message(fresh.channel, fresh.external_id, "assistant", text, at=now)
        log_event(logger, "followup.sent", conversation_key=fresh.key, channel=fresh.channel)
        return True
