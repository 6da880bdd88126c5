"""Configuración por tenant: catálogo, textos comerciales y conexiones de canal."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

LocalizedText = dict[str, str]
ConnectionStatus = Literal["draft", "connected", "disabled"]


def pick(texts: LocalizedText, lang: str | None, *, default: str = "ru") -> str:
    """Elige la variante del idioma pedido con respaldo al idioma por defecto."""
    if lang and texts.get(lang):
        return texts[lang]
    if texts.get(default):
        return texts[default]
    return next(iter(texts.values()), "")


class PackageTier(BaseModel):
    key: str
    name: str
    setup_eur: int
    monthly_eur: int
    min_months: int
    channels: int
    launch_time: LocalizedText = Field(default_factory=dict)


class AddOn(BaseModel):
    key: str
    title: LocalizedText
    setup_eur: int
    monthly_eur: int


class Pilot(BaseModel):
    setup_eur: int
    monthly_eur: int
    months: int
    launch: LocalizedText = Field(default_factory=dict)
    channels: str = "1–2"


class FaqItem(BaseModel):
    question: LocalizedText
    answer: LocalizedText


class SalesCopy(BaseModel):
    """Textos fijos que el núcleo inserta sin pasar por el modelo."""

    intro: str
    fallback: str
    no_key_fallback: str
    voice_placeholder: str = "[Voice message]"
    media_ack: str
    nudge: str = Field(..., description="Plantilla con `{last}` para el último mensaje del usuario.")
    payment_after_agreement: str
    contact_cta: str
    contact_confirm: str
    packages_header: str
    package_line: str
    addons_header: str
    addon_line: str
    lang_rule: str


class TenantProfile(BaseModel):
    """Perfil de tenant con overrides opcionales tipados y valores por defecto."""

    id: str
    brand_name: str
    short_about: LocalizedText = Field(default_factory=dict)
    packages: list[PackageTier] = Field(default_factory=list)
    addons: list[AddOn] = Field(default_factory=list)
    pilot: Pilot | None = None
    faq: list[FaqItem] = Field(default_factory=list)
    copy_by_lang: dict[str, SalesCopy] = Field(default_factory=dict)
    banned_phrases: list[str] = Field(default_factory=list)
    extra_rules: list[str] = Field(default_factory=list)
    openai_api_key: str | None = Field(
        default=None, description="Credencial propia del tenant para el modelo."
    )
    openai_model: str | None = None

    def copy_for(self, lang: str | None) -> SalesCopy:
        if lang and lang in self.copy_by_lang:
            return self.copy_by_lang[lang]
        if "ru" in self.copy_by_lang:
            return self.copy_by_lang["ru"]
        return next(iter(self.copy_by_lang.values()))

    @property
    def package_names(self) -> list[str]:
        return [tier.name for tier in self.packages]


class ConnectionMeta(BaseModel):
    """Credenciales y metadatos de una conexión; todos opcionales."""

    page_access_token: str | None = None
    access_token: str | None = None
    phone_number_id: str | None = None
    app_secret: str | None = None
    bot_token: str | None = None
    label: str | None = None


class ChannelConnection(BaseModel):
    """Vincula un tenant con una identidad de canal (teléfono, página, bot)."""

    id: str
    tenant_id: str
    channel: str
    external_id: str
    meta: ConnectionMeta = Field(default_factory=ConnectionMeta)
    status: ConnectionStatus = "connected"
