"""Pruebas del formatter JSON y utilidades de logging."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from embudo.core.logging import JSONFormatter, clip_preview, resolve_log_level


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("embudo.test", logging.INFO, __file__, 1, "orchestrator.reply", None, None)
    record.__dict__.update(extra)
    return record


def test_formatter_emits_extra_fields_as_json() -> None:
    at = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)

    payload = json.loads(JSONFormatter().format(_record(conversation_key="whatsapp:1", at=at)))

    assert payload["message"] == "orchestrator.reply"
    assert payload["logger"] == "embudo.test"
    assert payload["conversation_key"] == "whatsapp:1"
    assert payload["at"] == str(at)
    assert "lineno" not in payload


def test_formatter_redacts_credentials() -> None:
    payload = json.loads(
        JSONFormatter().format(_record(access_token="EAAG-secret", token_present=True, app_secret=None))
    )

    assert payload["access_token"] == "***"
    assert payload["token_present"] is True
    assert payload["app_secret"] is None


def test_resolve_log_level_accepts_names_and_numbers() -> None:
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level("30") == logging.WARNING
    assert resolve_log_level("nonsense", default=logging.ERROR) == logging.ERROR
    assert resolve_log_level(None) == logging.INFO


def test_clip_preview_collapses_whitespace() -> None:
    assert clip_preview("  hola \n  mundo ") == "hola mundo"
    assert clip_preview("x" * 130, 120) == "x" * 119 + "…"
    assert clip_preview(None) is None
