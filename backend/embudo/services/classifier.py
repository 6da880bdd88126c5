"""Clasificador heurístico de etapa y preparación (readiness) del embudo.

Función pura: no depende del almacén de conversaciones ni del modelo. Las reglas viven
en tablas explícitas y ordenadas para poder probarlas una por una.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from embudo.services.intent import CONTACT_VALUE_RE

CONTACT_THRESHOLD = 55
BASE_SCORE = 10
MAX_TURN_BONUS = 12


class Stage(str, Enum):
    DISCOVERY = "DISCOVERY"
    VALUE = "VALUE"
    TRUST = "TRUST"
    OFFER = "OFFER"
    ASK_CONTACT = "ASK_CONTACT"
    FOLLOW_UP = "FOLLOW_UP"


@dataclass(slots=True, frozen=True)
class WeightedRule:
    """Predicado con peso aditivo sobre el texto del usuario."""

    name: str
    weight: int
    predicate: Callable[[str], bool]


@dataclass(slots=True, frozen=True)
class Classification:
    score: int
    stage: Stage


def _matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda text: bool(compiled.search(text))


BUSINESS_RE = r"(у\s+меня|мы\s|клиент|заявк|заказ|продаж|ниша|бизнес|салон|кофейн|ремонт|стомат|барбершоп|школа)"
QUESTION_RE = r"(как|почему|зачем|что|як|чому|що)"
PROCESS_RE = r"(срок|время|термін|інтеграц|интеграц|integration|процесс|как\s+это\s+работает)"
PRICING_RE = (
    r"(цена|ціна|стоим|сколько|вартість|скільки|пакет|тариф|услуг|послуг|services?|offerings|"
    r"оплат|поддержк|setup|внедрен)"
)
START_RE = r"(как\s+начать|что\s+дальше|созвон|call|встреч|готов|подключ|старт|оплач)"
CONFIRM_RE = (
    r"(^|\s)(ок|окей|ok|понял|зрозуміл|супер|класс|топ|подходит|підходить|давай|домовились|"
    r"поехали|поїхали|хочу|хочемо|готов|готові|беру|берем)(\s|[.!,]|$)"
)
OFF_TOPIC_RE = r"(погод|weather|политик|polit|отношен|dating|ресторан|кафе|кофе\b|анекдот|фильм|сериал|спорт)"
MENU_CHOICE_RE = r"^\s*[1-3]\s*$"
SHORT_OK_RE = re.compile(r"^\s*(\d|ок|ok|да|ага)\s*$", re.IGNORECASE)

SCORE_RULES: tuple[WeightedRule, ...] = (
    WeightedRule("length", 5, lambda text: len(text) >= 12),
    WeightedRule("contact_value", 40, lambda text: bool(CONTACT_VALUE_RE.search(text))),
    WeightedRule("business", 15, _matches(BUSINESS_RE)),
    WeightedRule("question", 8, _matches(QUESTION_RE)),
    WeightedRule("process", 10, _matches(PROCESS_RE)),
    WeightedRule("pricing", 18, _matches(PRICING_RE)),
    WeightedRule("start", 28, _matches(START_RE)),
    WeightedRule("confirm", 12, _matches(CONFIRM_RE)),
    WeightedRule("menu_choice", 6, _matches(MENU_CHOICE_RE)),
    WeightedRule("off_topic", -12, _matches(OFF_TOPIC_RE)),
    WeightedRule(
        "too_short", -8, lambda text: len(text) <= 3 and not SHORT_OK_RE.match(text)
    ),
)

# Orden de prioridad para etapas posteriores a ASK_CONTACT
STAGE_RULES: tuple[tuple[Stage, Callable[[str], bool]], ...] = (
    (
        Stage.OFFER,
        _matches(
            r"(цена|ціна|стоим|сколько|вартість|скільки|пакет|тариф|услуг|послуг|services?|"
            r"offerings|price|pricing|пілот|пилот|pilot|stripe|календар|calendar|модул)"
        ),
    ),
    (
        Stage.TRUST,
        _matches(r"(интеграц|інтеграц|integration|процесс|срок|гарант|надеж|надій|безопас|безпек)"),
    ),
    (
        Stage.VALUE,
        _matches(r"(интерес|цікав|покажи|пример|приклад|как\s+это\s+поможет|як\s+це\s+допоможе|how\s+it\s+helps)"),
    ),
)

_start = _matches(START_RE)


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def readiness_score(text: str | None, user_turns: int = 0) -> int:
    """Puntaje 0-100 a partir del último mensaje y la cantidad de turnos previos."""
    candidate = (text or "").strip()
    score = BASE_SCORE
    if candidate:
        score += sum(rule.weight for rule in SCORE_RULES if rule.predicate(candidate))
    score = _clamp(score)
    score += min(MAX_TURN_BONUS, max(0, user_turns) * 2)
    return _clamp(score)


def stage_for(text: str | None, score: int) -> Stage:
    candidate = (text or "").strip()
    if not candidate:
        return Stage.DISCOVERY
    if score >= CONTACT_THRESHOLD and (_start(candidate) or CONTACT_VALUE_RE.search(candidate)):
        return Stage.ASK_CONTACT
    for stage, predicate in STAGE_RULES:
        if predicate(candidate):
            return stage
    return Stage.DISCOVERY


def classify(latest_user_text: str | None, user_turn_count: int = 0) -> Classification:
    """Calcula (score, etapa); nunca lanza excepciones."""
    try:
        score = readiness_score(latest_user_text, user_turn_count)
        return Classification(score=score, stage=stage_for(latest_user_text, score))
    except (TypeError, re.error):  # pragma: no cover - entradas no textuales
        return Classification(score=BASE_SCORE, stage=Stage.DISCOVERY)
