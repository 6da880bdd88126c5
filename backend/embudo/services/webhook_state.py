"""Contadores de diagnóstico por canal, persistidos en disco sin garantías."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from embudo.core.config import settings
from embudo.core.logging import clip_preview, get_logger

logger = get_logger(__name__)


class WebhookHealthState(BaseModel):
    total_received: int = 0
    last_received_at: datetime | None = None
    last_from: str | None = None
    last_text_preview: str | None = None
    last_type: str | None = None
    last_post_at: datetime | None = None
    last_post_length: int | None = None
    last_post_has_signature: bool | None = None
    last_post_result: str | None = None


class WebhookStateRegistry:
    """Mantiene un estado por canal; perder el archivo no afecta al flujo principal."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self._dir = Path(directory or settings.webhook_state_dir)
        self._states: dict[str, WebhookHealthState] = {}

    def _path(self, channel: str) -> Path:
        return self._dir / f"{channel}-webhook-state.json"

    def get(self, channel: str) -> WebhookHealthState:
        state = self._states.get(channel)
        if state is None:
            state = self._load(channel)
            self._states[channel] = state
        return state

    def _load(self, channel: str) -> WebhookHealthState:
        path = self._path(channel)
        try:
            if path.exists():
                return WebhookHealthState.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.warning("webhook_state.load_failed", extra={"channel": channel})
        return WebhookHealthState()

    def _save(self, channel: str) -> None:
        path = self._path(channel)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
            tmp_path.write_text(self.get(channel).model_dump_json(), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            logger.warning("webhook_state.save_failed", extra={"channel": channel})

    def record_post(self, channel: str, *, length: int, has_signature: bool, result: str) -> None:
        state = self.get(channel)
        state.last_post_at = datetime.now(timezone.utc)
        state.last_post_length = length
        state.last_post_has_signature = has_signature
        state.last_post_result = result
        self._save(channel)

    def record_event(
        self, channel: str, *, sender: str | None, kind: str, text: str | None
    ) -> None:
        state = self.get(channel)
        state.total_received += 1
        state.last_received_at = datetime.now(timezone.utc)
        state.last_from = sender
        state.last_type = kind
        state.last_text_preview = clip_preview(text, 120)
        self._save(channel)


webhook_state = WebhookStateRegistry()
