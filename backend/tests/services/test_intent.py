"""Pruebas de detección de intención, contacto e idioma."""

from __future__ import annotations

import pytest

from embudo.services.intent import (
    IntentDetector,
    LanguageResolver,
    canonical_phone,
)

detector = IntentDetector()
languages = LanguageResolver()


def test_detect_pricing_and_services() -> None:
    intent = detector.detect("Какие у вас услуги и сколько стоит пакет?")

    assert intent.pricing and intent.services and intent.compare
    assert not intent.support


def test_detect_support_request() -> None:
    assert detector.detect("бот не работает, webhook выдаёт ошибку").support


@pytest.mark.parametrize(
    ("text", "value", "kind"),
    [
        ("пишите: Ivan@Example.com", "ivan@example.com", "email"),
        ("мой номер +38 (050) 123-45-67", "+380501234567", "phone"),
        ("телега @ivan_petrov", "@ivan_petrov", "handle"),
    ],
)
def test_extract_contact(text: str, value: str, kind: str) -> None:
    contact = detector.extract_contact(text)

    assert contact is not None
    assert (contact.value, contact.kind) == (value, kind)


def test_extract_contact_returns_none_without_value() -> None:
    assert detector.extract_contact("позвоните мне завтра") is None


def test_canonical_phone_bounds() -> None:
    assert canonical_phone("380501234567") == "+380501234567"
    assert canonical_phone("12345") is None


def test_chosen_package_matches_profile_names() -> None:
    texts = ["расскажите подробнее", "Беру BUSINESS, подходит"]

    assert detector.chosen_package(texts, ["START", "BUSINESS", "PRO"]) == "BUSINESS"
    assert detector.chosen_package(["что такое PRO?"], ["START", "BUSINESS", "PRO"]) is None


@pytest.mark.parametrize(
    ("text", "current", "expected"),
    [
        ("english please", "ru", "en"),
        ("українською", "ru", "ua"),
        ("на русском", "en", "ru"),
        ("Привет, сколько стоит?", None, "ru"),
        ("Скільки коштує бот?", None, "ua"),
        ("How much is it?", None, "en"),
        ("How much is it?", "ua", "ua"),
        ("👍", None, "ru"),
    ],
)
def test_language_resolution(text: str, current: str | None, expected: str) -> None:
    assert languages.resolve(text, current) == expected


def test_switch_ignored_in_long_messages() -> None:
    text = "Мы работаем с клиентами из Канады, поэтому часть переписки на english, но это не важно"

    assert languages.parse_switch(text) is None
