"""Orquestación de un turno entrante: memoria, etapa, prompt, guardrails, lead y envío."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from embudo.core.config import settings
from embudo.core.errors import EmbudoError, StorageUnavailableError
from embudo.core.logging import clip_preview, get_logger, log_event
from embudo.models.conversation import Conversation
from embudo.models.events import InboundEvent
from embudo.models.tenant import ChannelConnection, TenantProfile
from embudo.services.classifier import CONTACT_THRESHOLD, Classification, Stage, classify
from embudo.services.completion import CompletionClient, ImageInput, completion_client
from embudo.services.conversation_store import (
    Clock,
    ConversationStore,
    TurnScopedStore,
    get_conversation_store,
    utcnow,
)
from embudo.services.guardrails import GuardrailContext, GuardrailPipeline
from embudo.services.intent import (
    Intent,
    IntentDetector,
    LanguageResolver,
    intent_detector,
    language_resolver,
)
from embudo.services.leads import LeadCapture, LeadNotifier, LeadStore, get_lead_store
from embudo.services.outbound import (
    ChannelCredentials,
    OutboundSender,
    credentials_for,
    default_senders,
    fetch_media,
)
from embudo.services.prompting import build_system_prompt
from embudo.services.tenants import load_tenant_profile

logger = get_logger("embudo.orchestrator")

AUDIO_FILENAMES = {"whatsapp": "voice.ogg", "telegram": "voice.oga", "messenger": "voice.mp4"}


@dataclass(slots=True)
class TurnResult:
    """Resultado de un turno; `reply` es None cuando no corresponde responder."""

    conversation_key: str
    reply: str | None
    stage: Stage | None = None
    score: int | None = None
    degraded: bool = False
    lead_id: str | None = None


class FunnelOrchestrator:
    """Procesa eventos normalizados de cualquier canal con la misma lógica de embudo."""

    def __init__(
        self,
        *,
        store: ConversationStore | None = None,
        leads: LeadStore | None = None,
        completion: CompletionClient | None = None,
        senders: dict[str, OutboundSender] | None = None,
        notifier: LeadNotifier | None = None,
        profile_loader: Callable[[str | None], TenantProfile] | None = None,
        detector: IntentDetector | None = None,
        languages: LanguageResolver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._leads = leads
        self._completion = completion or completion_client
        self._senders = senders if senders is not None else default_senders()
        self._notifier = notifier
        self._profile_loader = profile_loader or load_tenant_profile
        self._detector = detector or intent_detector
        self._languages = languages or language_resolver
        self._clock = clock or utcnow

    @property
    def store(self) -> ConversationStore:
        if self._store is None:
            self._store = get_conversation_store()
        return self._store

    @property
    def leads(self) -> LeadStore:
        if self._leads is None:
            self._leads = get_lead_store()
        return self._leads

    def _turn_store(self) -> TurnScopedStore:
        """Almacén del turno; si el durable falla, el turno sigue en memoria."""
        return TurnScopedStore(self.store)

    async def handle_inbound(
        self, event: InboundEvent, connection: ChannelConnection | None = None
    ) -> TurnResult:
        channel = event.channel
        contact_id = event.external_contact_id
        tenant_id = connection.tenant_id if connection else settings.default_tenant_id
        profile = self._profile_loader(tenant_id)
        credentials = credentials_for(channel, connection)

        store = self._turn_store()
        conversation = await store.get(channel, contact_id)
        meta_update: dict[str, object] = {}
        if conversation.tenant_id != tenant_id:
            meta_update["tenant_id"] = tenant_id
        if event.routing_id and conversation.routing_id != event.routing_id:
            meta_update["routing_id"] = event.routing_id

        transcript: str | None = None
        if event.kind == "audio":
            transcript = await self._transcribe(event, credentials, profile)
        text = transcript or (event.text or "").strip()

        lang = self._languages.resolve(text, conversation.lang)
        if lang != conversation.lang:
            meta_update["lang"] = lang
        if meta_update:
            conversation = await store.patch(channel, contact_id, **meta_update)
        copy = profile.copy_for(lang)
        if event.kind == "audio" and transcript is None:
            text = copy.voice_placeholder

        if event.kind == "image" and event.media_id:
            conversation = await self._buffer_media(store, conversation, event.media_id)
            if not text:
                return await self._acknowledge_media(store, conversation, copy.media_ack)

        if not text:
            log_event(logger, "orchestrator.empty_event", channel=channel, kind=event.kind)
            return TurnResult(conversation_key=conversation.key, reply=None)

        is_first_turn = conversation.assistant_turns == 0
        conversation = await store.append_message(channel, contact_id, "user", text)
        log_event(
            logger,
            "orchestrator.inbound",
            channel=channel,
            conversation_key=conversation.key,
            kind=event.kind,
            preview=clip_preview(text),
        )

        if is_first_turn:
            await store.append_message(channel, contact_id, "assistant", copy.intro)
            log_event(logger, "orchestrator.intro_sent", channel=channel, lang=lang)
            return TurnResult(conversation_key=conversation.key, reply=copy.intro, stage=Stage.DISCOVERY)

        intent = self._detector.detect(text)
        classification = self._classify(conversation, text, intent)
        images = await self._take_images(store, conversation, credentials)

        system_prompt = build_system_prompt(
            lang, channel, classification.stage, classification.score, profile=profile
        )
        history = conversation.messages[:-1]
        result = await self._completion.complete(
            system_prompt,
            history,
            text,
            images,
            timeout_ms=settings.completion_timeout_for(channel),
            model=profile.openai_model or settings.model_for(channel),
            fallback=copy.fallback,
            no_key_fallback=copy.no_key_fallback,
            api_key=profile.openai_api_key,
            channel=channel,
        )

        texts = conversation.recent_user_texts()
        guardrails = GuardrailPipeline(profile, detector=self._detector)
        reply = guardrails.apply(
            result.text,
            GuardrailContext(
                lang=lang,
                channel=channel,
                stage=classification.stage,
                score=classification.score,
                intent=intent,
                has_contact=any(self._detector.has_contact_value(item) for item in texts),
                is_first_turn=False,
                package_chosen=self._detector.chosen_package(texts, profile.package_names) is not None,
            ),
        )
        conversation = await store.append_message(channel, contact_id, "assistant", reply)

        lead_id = None
        try:
            capture = LeadCapture(
                store, self.leads, notifier=self._notifier, detector=self._detector, clock=self._clock
            )
            lead = await capture.maybe_capture(
                conversation,
                text,
                classification.stage,
                classification.score,
                intent,
                tenant_id=tenant_id,
                lang=lang,
                username=event.username,
                recommendation=reply,
            )
            lead_id = lead.id if lead else None
        except StorageUnavailableError as exc:
            logger.warning("orchestrator.lead_store_unavailable", extra={"channel": channel, "error": str(exc)})

        log_event(
            logger,
            "orchestrator.reply",
            channel=channel,
            conversation_key=conversation.key,
            stage=classification.stage.value,
            score=classification.score,
            intent=intent.label,
            degraded=result.degraded,
            completion_error=result.error,
        )
        return TurnResult(
            conversation_key=conversation.key,
            reply=reply,
            stage=classification.stage,
            score=classification.score,
            degraded=result.degraded,
            lead_id=lead_id,
        )

    def _classify(self, conversation: Conversation, text: str, intent: Intent) -> Classification:
        classification = classify(text, conversation.user_turns)
        if classification.stage is Stage.ASK_CONTACT or intent.support:
            return classification
        if conversation.user_turns < settings.force_contact_after_turns:
            return classification
        if classification.score < CONTACT_THRESHOLD:
            return classification
        if any(self._detector.has_contact_value(item) for item in conversation.recent_user_texts()):
            return classification
        last_assistant = conversation.last_message("assistant")
        if last_assistant and self._detector.mentions_contact(last_assistant.content):
            return classification
        log_event(
            logger,
            "orchestrator.contact_forced",
            conversation_key=conversation.key,
            user_turns=conversation.user_turns,
            score=classification.score,
        )
        return Classification(score=classification.score, stage=Stage.ASK_CONTACT)

    async def _transcribe(
        self, event: InboundEvent, credentials: ChannelCredentials, profile: TenantProfile
    ) -> str | None:
        """Texto del audio o None si no pudo transcribirse."""
        if not event.media_id:
            return None
        try:
            audio, _mime = await fetch_media(event.channel, event.media_id, credentials)
            return await self._completion.transcribe(
                audio,
                filename=AUDIO_FILENAMES.get(event.channel, "voice.ogg"),
                api_key=profile.openai_api_key,
            )
        except EmbudoError as exc:
            logger.warning(
                "orchestrator.transcription_failed",
                extra={"channel": event.channel, "error_type": exc.__class__.__name__, "error": str(exc)},
            )
            return None

    async def _buffer_media(
        self, store: ConversationStore, conversation: Conversation, media_id: str
    ) -> Conversation:
        now = self._clock()
        expires = conversation.pending_media_expires_at
        pending = [] if expires is None or expires <= now else list(conversation.pending_media_ids)
        if media_id not in pending:
            pending.append(media_id)
        return await store.patch(
            conversation.channel,
            conversation.external_id,
            pending_media_ids=pending[-settings.media_buffer_max :],
            pending_media_expires_at=now + timedelta(minutes=settings.media_buffer_minutes),
        )

    async def _acknowledge_media(
        self, store: ConversationStore, conversation: Conversation, ack_text: str
    ) -> TurnResult:
        now = self._clock()
        window = timedelta(minutes=settings.media_buffer_minutes)
        last_ack = conversation.last_media_ack_at
        if last_ack is not None and now - last_ack < window:
            return TurnResult(conversation_key=conversation.key, reply=None)
        await store.patch(conversation.channel, conversation.external_id, last_media_ack_at=now)
        log_event(
            logger,
            "orchestrator.media_buffered",
            conversation_key=conversation.key,
            pending=len(conversation.pending_media_ids),
        )
        return TurnResult(conversation_key=conversation.key, reply=ack_text)

    async def _take_images(
        self,
        store: ConversationStore,
        conversation: Conversation,
        credentials: ChannelCredentials,
    ) -> list[ImageInput]:
        """Descarga las imágenes pendientes vigentes y vacía el buffer."""
        expires = conversation.pending_media_expires_at
        if not conversation.pending_media_ids:
            return []
        media_ids = conversation.pending_media_ids if expires and expires > self._clock() else []
        await store.patch(
            conversation.channel,
            conversation.external_id,
            pending_media_ids=[],
            pending_media_expires_at=None,
        )

        images: list[ImageInput] = []
        for media_id in media_ids[: settings.openai_max_images]:
            try:
                data, mime = await fetch_media(conversation.channel, media_id, credentials)
            except EmbudoError as exc:
                logger.warning(
                    "orchestrator.media_fetch_failed",
                    extra={"channel": conversation.channel, "error": str(exc)},
                )
                continue
            if mime.startswith("image/"):
                images.append(ImageInput(data=data, mime_type=mime))
        return images

    async def process_and_send(
        self, event: InboundEvent, connection: ChannelConnection | None = None
    ) -> TurnResult:
        """Procesa el evento y entrega la respuesta por el canal; pensado para tareas de fondo."""
        result = await self.handle_inbound(event, connection)
        if not result.reply:
            return result
        sender = self._senders.get(event.channel)
        if sender is None:
            logger.warning("orchestrator.no_sender", extra={"channel": event.channel})
            return result
        try:
            await sender.send_text(
                event.external_contact_id,
                result.reply,
                credentials=credentials_for(event.channel, connection),
            )
        except EmbudoError as exc:
            logger.warning(
                "orchestrator.send_failed",
                extra={
                    "channel": event.channel,
                    "conversation_key": result.conversation_key,
                    "error_type": exc.__class__.__name__,
                    "status_code": getattr(exc, "status_code", None),
                    "error": str(exc),
                },
            )
        else:
            log_event(logger, "orchestrator.sent", channel=event.channel, conversation_key=result.conversation_key)
        return result


orchestrator = FunnelOrchestrator()
