"""Pruebas de la configuración basada en entorno."""

from __future__ import annotations

import pytest

from embudo.core.config import Settings


@pytest.fixture(name="clean_env")
def fixture_clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "MAX_MESSAGES",
        "OPENAI_TIMEOUT_MS",
        "OPENAI_TIMEOUT_MS_WHATSAPP",
        "OPENAI_MODEL",
        "OPENAI_MODEL_WHATSAPP",
        "WHATSAPP_VERIFY_TOKEN",
        "EMBUDO_WHATSAPP_VERIFY_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_plain_and_prefixed_names_are_accepted(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("WHATSAPP_VERIFY_TOKEN", "plain")
    assert Settings(_env_file=None).whatsapp_verify_token == "plain"

    clean_env.setenv("EMBUDO_WHATSAPP_VERIFY_TOKEN", "prefixed")
    assert Settings(_env_file=None).whatsapp_verify_token == "prefixed"


@pytest.mark.parametrize(("raw", "expected"), [("2", 6), ("24", 24), ("500", 80)])
def test_history_limit_is_clamped(clean_env: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    clean_env.setenv("MAX_MESSAGES", raw)

    assert Settings(_env_file=None).history_limit == expected


def test_whatsapp_timeout_never_exceeds_general_timeout(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("OPENAI_TIMEOUT_MS", "8000")
    clean_env.setenv("OPENAI_TIMEOUT_MS_WHATSAPP", "60000")

    current = Settings(_env_file=None)

    assert current.completion_timeout_for("whatsapp") == 8_000
    assert current.completion_timeout_for("telegram") == 8_000


def test_general_timeout_is_clamped(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("OPENAI_TIMEOUT_MS", "100")

    assert Settings(_env_file=None).completion_timeout_ms == 5_000


def test_model_override_per_channel(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("OPENAI_MODEL", "gpt-4o-mini")
    clean_env.setenv("OPENAI_MODEL_WHATSAPP", "gpt-4.1-mini")

    current = Settings(_env_file=None)

    assert current.model_for("whatsapp") == "gpt-4.1-mini"
    assert current.model_for("webchat") == "gpt-4o-mini"
