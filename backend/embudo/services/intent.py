"""Detección de intención, contacto e idioma compartida por prompt y guardrails."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

CONTACT_HINT_RE = re.compile(
    r"(телефон|phone|email|почт|контакт|зв[ʼ']?яз|связ|call|созвон|зустріч|встреч|демо|demo|"
    r"оплат|счет|рахунок|invoice|договор|контракт|старт|запуск|подключ|підключ)",
    re.IGNORECASE,
)
EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")
HANDLE_RE = re.compile(r"(?:^|\s)@([a-zA-Z0-9_]{4,32})\b")
CONTACT_VALUE_RE = re.compile(
    rf"{EMAIL_RE.pattern}|{HANDLE_RE.pattern}|{PHONE_RE.pattern}", re.IGNORECASE
)
SUPPORT_RE = re.compile(
    r"(не\s+работ|не\s+працю|сбой|збій|ошибк|помил|не\s+отправ|не\s+відправ|поддержк|підтримк|"
    r"support|помогите|допомож|сломал|зламал|не\s+приход|интеграц|інтеграц|token|токен|webhook|"
    r"підписк|подписк|оплат.*не|ошибка\s+api|error\s+api)",
    re.IGNORECASE,
)
SERVICES_RE = re.compile(
    r"(услуг|послуг|service|services|offerings|what\s+do\s+you\s+offer|что\s+вы\s+предлагаете|"
    r"що\s+ви\s+пропонуєте|прайс|каталог)",
    re.IGNORECASE,
)
PRICING_RE = re.compile(r"(цена|ціна|стоим|сколько|вартість|скільки|пакет|тариф|pricing|price)", re.IGNORECASE)
PILOT_RE = re.compile(
    r"(пілот|пилот|pilot|попробовать|спробуват|тест|дешевле|дешевш|дорого|малый\s+бюджет|малий\s+бюджет)",
    re.IGNORECASE,
)
COMPARE_RE = re.compile(
    r"(сравн|порівн|compare|разниц|різниц|отлича|відрізня|пакет|тариф|прайс|"
    r"какой\s+выбрать|який\s+обрати|which\s+package)",
    re.IGNORECASE,
)
# Sólo pedidos directos de pago; hablar de pagos como módulo (Stripe) está permitido
PAYMENT_ASK_RE = re.compile(
    r"\b(оплат(ите|ить)\b|оплата\s+сейчас|pay\s+now|payment\s+link|ссылк\w*\s+на\s+оплат\w*|"
    r"счет(\s+на\s+оплату)?|рахунок|invoice|внести\s+оплат\w*)",
    re.IGNORECASE,
)
_PACKAGE_CHOICE_TEMPLATE = (
    r"\b(беру|берем|выбираю|обираю|хочу|хочемо|хотим|нужен|потрібен|потрібна|нужно|надо|мой|мій|нам|"
    r"для\s+нас|для\s+меня|ок|окей|we\s+take|i\s+choose|i\s+want)\b[\s\S]*?\b({names})\b"
)

ContactKind = Literal["email", "phone", "handle"]
Lang = Literal["ru", "ua", "en"]


@dataclass(slots=True, frozen=True)
class Intent:
    """Señales de intención del último mensaje del usuario."""

    pricing: bool = False
    services: bool = False
    compare: bool = False
    pilot: bool = False
    contact: bool = False
    support: bool = False

    @property
    def label(self) -> str:
        for name in ("support", "contact", "compare", "services", "pricing", "pilot"):
            if getattr(self, name):
                return name
        return "general"


@dataclass(slots=True, frozen=True)
class ExtractedContact:
    value: str
    kind: ContactKind


def canonical_phone(value: str) -> str | None:
    """Normaliza un teléfono a `+dígitos`; None si no parece teléfono."""
    digits = re.sub(r"\D", "", value or "")
    if len(digits) < 8 or len(digits) > 15:
        return None
    return f"+{digits}"


class IntentDetector:
    """Única implementación de las heurísticas de intención y contacto."""

    def detect(self, text: str | None) -> Intent:
        lowered = (text or "").strip().lower()
        if not lowered:
            return Intent()
        return Intent(
            pricing=bool(PRICING_RE.search(lowered)),
            services=bool(SERVICES_RE.search(lowered)),
            compare=bool(COMPARE_RE.search(lowered)),
            pilot=bool(PILOT_RE.search(lowered)),
            contact=bool(CONTACT_HINT_RE.search(lowered)),
            support=bool(SUPPORT_RE.search(lowered)),
        )

    def has_contact_value(self, text: str | None) -> bool:
        return bool(text and CONTACT_VALUE_RE.search(text))

    def mentions_contact(self, text: str | None) -> bool:
        return bool(text and CONTACT_HINT_RE.search(text))

    def extract_contact(self, text: str | None) -> ExtractedContact | None:
        """Extrae email, teléfono o @usuario (en ese orden de preferencia)."""
        if not text:
            return None
        email = EMAIL_RE.search(text)
        if email:
            return ExtractedContact(value=email.group(0).strip(".,;").lower(), kind="email")
        phone = PHONE_RE.search(text)
        if phone:
            canonical = canonical_phone(phone.group(0))
            if canonical:
                return ExtractedContact(value=canonical, kind="phone")
        handle = HANDLE_RE.search(text)
        if handle:
            return ExtractedContact(value=f"@{handle.group(1)}", kind="handle")
        return None

    def is_payment_request(self, line: str) -> bool:
        return bool(PAYMENT_ASK_RE.search(line))

    def chosen_package(self, texts: Iterable[str], package_names: Iterable[str]) -> str | None:
        """Paquete elegido explícitamente por el usuario en sus mensajes, si lo hay."""
        names = [re.escape(name) for name in package_names if name]
        if not names:
            return None
        pattern = re.compile(
            _PACKAGE_CHOICE_TEMPLATE.format(names="|".join(names)), re.IGNORECASE
        )
        chosen: str | None = None
        for text in texts:
            match = pattern.search(text or "")
            if match:
                chosen = match.group(2).upper()
        return chosen


_UA_CHARS_RE = re.compile(r"[іїєґ]", re.IGNORECASE)
_CYRILLIC_RE = re.compile(r"[а-яё]", re.IGNORECASE)
_LATIN_WORD_RE = re.compile(r"[a-z]{3,}", re.IGNORECASE)
_SWITCHES: tuple[tuple[Lang, re.Pattern[str]], ...] = (
    ("ru", re.compile(r"(на\s+русском|по[-\s]?русски|русский|російською|russian)", re.IGNORECASE)),
    ("ua", re.compile(r"(українською|на\s+украинском|по[-\s]?украински|українська|украинский|ukrainian)", re.IGNORECASE)),
    ("en", re.compile(r"(in\s+english|english|на\s+английском|англійською)", re.IGNORECASE)),
)


class LanguageResolver:
    """Resuelve el idioma de respuesta: cambio explícito, idioma guardado o inferencia."""

    def __init__(self, default: Lang = "ru") -> None:
        self._default = default

    def parse_switch(self, text: str | None) -> Lang | None:
        candidate = (text or "").strip()
        # Sólo mensajes cortos; en textos largos la palabra suele ser contenido
        if not candidate or len(candidate) > 60:
            return None
        for lang, pattern in _SWITCHES:
            if pattern.search(candidate):
                return lang
        return None

    def infer(self, text: str | None) -> Lang:
        candidate = text or ""
        if _UA_CHARS_RE.search(candidate):
            return "ua"
        if _CYRILLIC_RE.search(candidate):
            return "ru"
        if _LATIN_WORD_RE.search(candidate):
            return "en"
        return self._default

    def resolve(self, text: str | None, current: str | None = None) -> Lang:
        switched = self.parse_switch(text)
        if switched:
            return switched
        if current in ("ru", "ua", "en"):
            return current  # type: ignore[return-value]
        return self.infer(text)


intent_detector = IntentDetector()
language_resolver = LanguageResolver()
