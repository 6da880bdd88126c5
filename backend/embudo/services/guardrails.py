"""Pipeline de guardrails sobre la respuesta generada por el modelo.

Cada paso recibe el texto actual y devuelve uno nuevo; si un paso falla o deja el
texto vacío se conserva el resultado anterior. Los pasos son idempotentes: aplicarlos
dos veces produce el mismo texto.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from embudo.core.config import settings
from embudo.core.logging import get_logger
from embudo.models.tenant import TenantProfile, pick
from embudo.services.classifier import CONTACT_THRESHOLD, Stage
from embudo.services.intent import Intent, IntentDetector, intent_detector

logger = get_logger("embudo.guardrails")


@dataclass(slots=True, frozen=True)
class ChannelLimit:
    max_chars: int
    max_lines: int


CHANNEL_LIMITS: dict[str, ChannelLimit] = {
    "whatsapp": ChannelLimit(max_chars=900, max_lines=8),
    "messenger": ChannelLimit(max_chars=2000, max_lines=16),
    "telegram": ChannelLimit(max_chars=2000, max_lines=16),
    "instagram": ChannelLimit(max_chars=2400, max_lines=18),
    "flow": ChannelLimit(max_chars=1500, max_lines=12),
}
WEBCHAT_LIMIT = ChannelLimit(max_chars=1700, max_lines=14)
QUALITY_MAX_CHARS = {"whatsapp": 900, "flow": 1000}
QUALITY_DEFAULT_MAX_CHARS = 1200

_LANG_LINE_RE = re.compile(
    r"(^|\n)[^\n]*(можно\s+написать,\s+на\s+каком\s+языке|можете\s+написати,\s+якою\s+мовою|"
    r"you\s+can\s+tell\s+me\s+your\s+preferred\s+language)[^\n]*",
    re.IGNORECASE,
)


@dataclass(slots=True, frozen=True)
class GuardrailContext:
    """Datos del turno que determinan qué reglas aplican."""

    lang: str
    channel: str
    stage: Stage
    score: int
    intent: Intent = field(default_factory=Intent)
    has_contact: bool = False
    is_first_turn: bool = False
    package_chosen: bool = False


@dataclass(slots=True)
class QualityReport:
    missing_packages: bool = False
    missing_addons: bool = False
    too_long: bool = False
    no_cta: bool = False

    @property
    def flags(self) -> list[str]:
        return [name for name in ("missing_packages", "missing_addons", "too_long", "no_cta") if getattr(self, name)]


def _nonempty_lines(text: str) -> list[str]:
    return [line for line in text.split("\n") if line.strip()]


def _collapse_blank_lines(text: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _take_lines(text: str, budget: int) -> str:
    kept: list[str] = []
    count = 0
    for line in text.split("\n"):
        if line.strip():
            if count >= budget:
                break
            count += 1
        kept.append(line)
    return "\n".join(kept).strip()


def _clip(text: str, budget: int) -> str:
    if len(text) <= budget:
        return text
    return text[: max(0, budget - 1)].rstrip() + "…"


def _fits(paragraphs: Sequence[str], limit: ChannelLimit) -> bool:
    lines = sum(len(_nonempty_lines(part)) for part in paragraphs)
    chars = sum(len(part) for part in paragraphs) + 2 * max(0, len(paragraphs) - 1)
    return lines <= limit.max_lines and chars <= limit.max_chars


def _fit_body(body: str, limit: ChannelLimit, reserved: Sequence[str]) -> str:
    line_budget = limit.max_lines - sum(len(_nonempty_lines(part)) for part in reserved)
    char_budget = limit.max_chars - sum(len(part) + 2 for part in reserved)
    if line_budget <= 0 or char_budget <= 1:
        return ""
    return _clip(_take_lines(body, line_budget), char_budget)


def fit_to_limit(text: str, limit: ChannelLimit, *, pinned: Sequence[str] = ()) -> str:
    """Recorta a líneas y caracteres del canal.

    Los párrafos que empiezan con algún prefijo de `pinned` (bloques que insertan los
    guardrails) se conservan completos y sólo se recorta el resto. `pinned` va por
    prioridad: si los bloques no caben juntos se descartan desde el final. Sin bloques
    fijos se conserva el último párrafo corto.
    """
    paragraphs = [part.strip() for part in re.split(r"\n\s*\n", text.strip()) if part.strip()]
    if not paragraphs:
        return text.strip()

    def rank(part: str) -> int | None:
        for index, prefix in enumerate(pinned):
            if prefix and part.startswith(prefix):
                return index
        return None

    kept = [part for part in paragraphs if rank(part) is not None]
    while kept and not _fits(kept, limit):
        kept.remove(max(kept, key=lambda part: rank(part) or 0))

    if not kept:
        tail = paragraphs[-1] if len(paragraphs) > 1 else ""
        if tail and (
            len(_nonempty_lines(tail)) > limit.max_lines // 2 or len(tail) > limit.max_chars // 2
        ):
            tail = ""
        body = _fit_body("\n\n".join(paragraphs[:-1] if tail else paragraphs), limit, [tail] if tail else [])
        return "\n\n".join(part for part in (body, tail) if part)

    loose = [part for part in paragraphs if rank(part) is None]
    body = _fit_body("\n\n".join(loose), limit, kept) if loose else ""
    first_loose = next((i for i, part in enumerate(paragraphs) if rank(part) is None), len(paragraphs))
    before = [part for part in paragraphs[:first_loose] if part in kept]
    after = [part for part in paragraphs[first_loose:] if part in kept]
    return "\n\n".join([*before, *([body] if body else []), *after])


class GuardrailPipeline:
    """Pasos ordenados que aplican las políticas comerciales del tenant."""

    def __init__(
        self,
        profile: TenantProfile,
        *,
        detector: IntentDetector | None = None,
        limits: dict[str, ChannelLimit] | None = None,
    ) -> None:
        self._profile = profile
        self._detector = detector or intent_detector
        self._limits = dict(CHANNEL_LIMITS if limits is None else limits)
        if settings.webchat_truncate and "webchat" not in self._limits:
            self._limits["webchat"] = WEBCHAT_LIMIT
        brand = re.escape(profile.brand_name)
        self._intro_re = re.compile(
            rf"(^|\n)[^\n]*(персонал\w*\s+ai[\s\-‑]*ас+ист\w*\s+{brand}|personal\s+ai\s+assistant\s+of\s+{brand})[^\n]*",
            re.IGNORECASE,
        )
        self._banned = [re.compile(pattern) for pattern in profile.banned_phrases]

    def apply(self, raw: str, context: GuardrailContext) -> str:
        steps: list[tuple[str, Callable[[str, GuardrailContext], str]]] = [
            ("strip_intro", self.strip_repeated_intro),
            ("banned_templates", self.strip_banned_templates),
        ]
        if not context.intent.support:
            steps += [
                ("packages", self.ensure_packages),
                ("no_payment", self.apply_no_payment_policy),
                ("cta", self.ensure_cta),
            ]
        steps.append(("channel_limit", self.enforce_channel_limit))

        text = (raw or "").strip()
        for name, step in steps:
            text = self._run(name, step, text, context)

        report = self.evaluate(text, context)
        if report.flags:
            logger.warning(
                "guardrails.quality_flags",
                extra={"channel": context.channel, "stage": context.stage.value, "flags": report.flags},
            )
        return text

    def _run(
        self,
        name: str,
        step: Callable[[str, GuardrailContext], str],
        text: str,
        context: GuardrailContext,
    ) -> str:
        try:
            result = step(text, context)
        except Exception:  # pragma: no cover - un paso defectuoso no bloquea el envío
            logger.exception("guardrails.step_failed", extra={"step": name, "channel": context.channel})
            return text
        if not (result or "").strip():
            return text
        return result.strip()

    def strip_repeated_intro(self, text: str, context: GuardrailContext) -> str:
        if context.is_first_turn:
            return text
        out = self._intro_re.sub("\n", text)
        out = _LANG_LINE_RE.sub("\n", out)
        return _collapse_blank_lines(out)

    def strip_banned_templates(self, text: str, context: GuardrailContext) -> str:
        out = text
        for pattern in self._banned:
            out = pattern.sub("", out)
        out = re.sub(r"[ \t]{2,}", " ", out)
        out = "\n".join(line.strip() for line in out.split("\n"))
        return _collapse_blank_lines(out)

    def missing_packages(self, text: str) -> list[str]:
        return [
            name
            for name in self._profile.package_names
            if not re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE)
        ]

    def mentions_addons(self, text: str, lang: str) -> bool:
        lowered = text.lower()
        titles = [pick(addon.title, lang).split("(")[0].strip().lower() for addon in self._profile.addons]
        return any(title and title in lowered for title in titles)

    def _needs_packages(self, context: GuardrailContext) -> bool:
        intent = context.intent
        return not context.package_chosen and (intent.compare or intent.pricing or intent.services)

    def ensure_packages(self, text: str, context: GuardrailContext) -> str:
        intent = context.intent
        if not self._needs_packages(context):
            return text

        copy = self._profile.copy_for(context.lang)
        out = text
        missing = self.missing_packages(out)
        if missing:
            lines = [
                copy.package_line.format(
                    name=tier.name,
                    setup=tier.setup_eur,
                    monthly=tier.monthly_eur,
                    channels=tier.channels,
                )
                for tier in self._profile.packages
                if tier.name in missing
            ]
            out = f"{out}\n\n{copy.packages_header}\n" + "\n".join(lines)

        if intent.services and self._profile.addons and not self.mentions_addons(out, context.lang):
            lines = [
                copy.addon_line.format(
                    title=pick(addon.title, context.lang),
                    setup=addon.setup_eur,
                    monthly=addon.monthly_eur,
                )
                for addon in self._profile.addons
            ]
            out = f"{out}\n\n{copy.addons_header}\n" + "\n".join(lines)
        return out

    def apply_no_payment_policy(self, text: str, context: GuardrailContext) -> str:
        lines = text.split("\n")
        kept = [line for line in lines if not self._detector.is_payment_request(line)]
        if len(kept) == len(lines):
            return text
        copy = self._profile.copy_for(context.lang)
        body = _collapse_blank_lines("\n".join(kept))
        return f"{body}\n\n{copy.payment_after_agreement}".strip()

    def ensure_cta(self, text: str, context: GuardrailContext) -> str:
        copy = self._profile.copy_for(context.lang)
        if context.has_contact:
            if context.stage is Stage.ASK_CONTACT and copy.contact_confirm not in text:
                return f"{copy.contact_confirm}\n\n{text}"
            return text

        wants_contact = (
            context.stage is Stage.ASK_CONTACT
            or context.score >= CONTACT_THRESHOLD
            or context.intent.contact
        )
        if not wants_contact or self._detector.mentions_contact(text):
            return text
        return f"{text}\n\n{copy.contact_cta}"

    def limit_for(self, channel: str) -> ChannelLimit | None:
        return self._limits.get(channel)

    def enforce_channel_limit(self, text: str, context: GuardrailContext) -> str:
        limit = self.limit_for(context.channel)
        if limit is None:
            return text
        copy = self._profile.copy_for(context.lang)
        # Orden de prioridad: las tarifas nunca se pierden por el recorte
        pinned = (
            copy.packages_header,
            copy.contact_confirm,
            copy.contact_cta,
            copy.payment_after_agreement,
            copy.addons_header,
        )
        fitted = fit_to_limit(text, limit, pinned=pinned)
        if self._needs_packages(context) and self.missing_packages(fitted):
            # Una tarifa citada por el modelo pudo quedar en las líneas recortadas
            fitted = fit_to_limit(self.ensure_packages(fitted, context), limit, pinned=pinned)
        return fitted

    def evaluate(self, text: str, context: GuardrailContext) -> QualityReport:
        """Chequeo de calidad sin mutaciones; sólo alimenta los logs."""
        intent = context.intent
        sales = not intent.support
        max_chars = QUALITY_MAX_CHARS.get(context.channel, QUALITY_DEFAULT_MAX_CHARS)
        return QualityReport(
            missing_packages=sales
            and not context.package_chosen
            and (intent.compare or intent.pricing)
            and bool(self.missing_packages(text)),
            missing_addons=sales and intent.services and not self.mentions_addons(text, context.lang),
            too_long=len(text) > max_chars,
            no_cta=sales
            and not context.has_contact
            and (context.stage is Stage.ASK_CONTACT or context.score >= CONTACT_THRESHOLD)
            and not self._detector.mentions_contact(text),
        )
