"""Configuración central basada en variables de entorno."""

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _aliases(name: str) -> AliasChoices:
    """Acepta `EMBUDO_<NAME>` y el nombre plano usado por las plataformas."""
    return AliasChoices(f"EMBUDO_{name}", name)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    request_log_level: str = Field(
        default="info",
        description=(
            "Nivel mínimo para registrar solicitudes en middleware. "
            "Valores más altos (warning/error) reducen registros de peticiones exitosas."
        ),
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/favicon", "/robots.txt", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str = "logs/embudo.log"

    # Meta (WhatsApp Cloud API / Messenger)
    meta_graph_host: str = "graph.facebook.com"
    meta_graph_version: str = "v22.0"
    whatsapp_verify_token: str | None = Field(default=None, validation_alias=_aliases("WHATSAPP_VERIFY_TOKEN"))
    whatsapp_app_secret: str | None = Field(default=None, validation_alias=_aliases("WHATSAPP_APP_SECRET"))
    # Secreto "hermano" que suele confundirse al configurar la app de Meta
    instagram_app_secret: str | None = Field(default=None, validation_alias=_aliases("INSTAGRAM_APP_SECRET"))
    whatsapp_signature_bypass: bool = Field(
        default=False,
        validation_alias=_aliases("WHATSAPP_SIGNATURE_BYPASS"),
        description="Sólo diagnóstico: omite la validación de firma.",
    )
    whatsapp_access_token: str | None = Field(default=None, validation_alias=_aliases("WHATSAPP_ACCESS_TOKEN"))
    whatsapp_phone_number_id: str | None = Field(
        default=None, validation_alias=_aliases("WHATSAPP_PHONE_NUMBER_ID")
    )
    messenger_verify_token: str | None = Field(default=None, validation_alias=_aliases("MESSENGER_VERIFY_TOKEN"))
    messenger_app_secret: str | None = Field(default=None, validation_alias=_aliases("MESSENGER_APP_SECRET"))
    messenger_signature_bypass: bool = Field(
        default=False, validation_alias=_aliases("MESSENGER_SIGNATURE_BYPASS")
    )
    messenger_page_access_token: str | None = Field(
        default=None, validation_alias=_aliases("MESSENGER_PAGE_ACCESS_TOKEN")
    )
    messenger_ignore_echo: bool = Field(default=True, validation_alias=_aliases("MESSENGER_IGNORE_ECHO"))

    # Telegram
    telegram_api_base: str = "https://api.telegram.org"
    telegram_bot_token: str | None = Field(default=None, validation_alias=_aliases("TELEGRAM_BOT_TOKEN"))
    telegram_webhook_secret: str | None = Field(
        default=None, validation_alias=_aliases("TELEGRAM_WEBHOOK_SECRET")
    )
    telegram_owner_chat_id: str | None = Field(
        default=None,
        validation_alias=_aliases("TELEGRAM_CHAT_ID"),
        description="Chat del operador que recibe avisos de nuevos leads.",
    )

    # OpenAI
    openai_api_key: str | None = Field(default=None, validation_alias=_aliases("OPENAI_API_KEY"))
    openai_model: str = Field(default="gpt-4o-mini", validation_alias=_aliases("OPENAI_MODEL"))
    openai_model_whatsapp: str | None = Field(default=None, validation_alias=_aliases("OPENAI_MODEL_WHATSAPP"))
    openai_model_messenger: str | None = Field(default=None, validation_alias=_aliases("OPENAI_MODEL_MESSENGER"))
    openai_model_telegram: str | None = Field(default=None, validation_alias=_aliases("OPENAI_MODEL_TELEGRAM"))
    openai_model_webchat: str | None = Field(default=None, validation_alias=_aliases("OPENAI_MODEL_WEBCHAT"))
    openai_timeout_ms: int = Field(default=18_000, validation_alias=_aliases("OPENAI_TIMEOUT_MS"))
    openai_timeout_ms_whatsapp: int = Field(
        default=9_000,
        validation_alias=_aliases("OPENAI_TIMEOUT_MS_WHATSAPP"),
        description="WhatsApp exige respuestas rápidas, por eso usa un presupuesto menor.",
    )
    openai_transcribe_model: str = "whisper-1"
    openai_transcribe_timeout_ms: int = Field(
        default=9_000, validation_alias=_aliases("OPENAI_TRANSCRIBE_TIMEOUT_MS")
    )
    openai_history_messages: int = 14
    openai_max_images: int = 3

    # Persistencia
    conversation_store_path: str = "data/conversations.json"
    conversation_max_messages: int = Field(default=24, validation_alias=_aliases("MAX_MESSAGES"))
    conversation_state_backend: Literal["file", "supabase"] = "file"
    conversation_state_scope: str = "embudo"
    supabase_url: str | None = None
    supabase_service_role: str | None = None
    leads_store_path: str = "data/leads.json"
    channel_connections_path: str = "data/channel-connections.json"
    webhook_state_dir: str = "data/webhook-state"
    default_tenant_id: str = "temoweb"

    # Límites de tráfico
    rate_limit_window_seconds: int = 60
    rate_limit_webhook_max: int = 120
    rate_limit_webchat_max: int = 20

    # Embudo
    lead_dedup_hours: int = 24
    lead_min_user_turns: int = 2
    force_contact_after_turns: int = 6
    media_buffer_minutes: int = 10
    media_buffer_max: int = 6
    webchat_truncate: bool = Field(
        default=False,
        description="El widget web no recorta respuestas salvo que se active explícitamente.",
    )

    # Seguimiento automático
    followup_enabled: bool = Field(default=True, validation_alias=_aliases("FOLLOWUP_ENABLED"))
    followup_after_minutes: int = Field(default=20, validation_alias=_aliases("FOLLOWUP_AFTER_MINUTES"))
    followup_poll_seconds: int = Field(default=60, validation_alias=_aliases("FOLLOWUP_POLL_SECONDS"))
    followup_max_delay_minutes: int = Field(
        default=90, validation_alias=_aliases("FOLLOWUP_MAX_DELAY_MINUTES")
    )
    followup_outer_bound_hours: int = 23

    model_config = SettingsConfigDict(env_file=".env", env_prefix="EMBUDO_", extra="allow")

    @property
    def history_limit(self) -> int:
        """Tamaño de historial por conversación, acotado a [6, 80]."""
        return _clamp(self.conversation_max_messages, 6, 80)

    @property
    def completion_timeout_ms(self) -> int:
        return _clamp(self.openai_timeout_ms, 5_000, 90_000)

    @property
    def transcribe_timeout_ms(self) -> int:
        return _clamp(self.openai_transcribe_timeout_ms, 3_000, 20_000)

    def completion_timeout_for(self, channel: str) -> int:
        """Timeout del modelo por canal; WhatsApp nunca excede el general."""
        if channel == "whatsapp":
            return min(_clamp(self.openai_timeout_ms_whatsapp, 3_000, 90_000), self.completion_timeout_ms)
        return self.completion_timeout_ms

    def model_for(self, channel: str) -> str:
        overrides = {
            "whatsapp": self.openai_model_whatsapp,
            "messenger": self.openai_model_messenger,
            "telegram": self.openai_model_telegram,
            "webchat": self.openai_model_webchat,
        }
        return overrides.get(channel) or self.openai_model


settings = Settings()
