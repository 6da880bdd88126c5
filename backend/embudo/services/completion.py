"""Llamadas acotadas en tiempo al modelo de lenguaje y a la transcripción de voz."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from embudo.core.config import settings
from embudo.core.errors import (
    EmbudoError,
    MissingCredentialError,
    TranscriptionError,
    UpstreamHTTPError,
    UpstreamTimeoutError,
)
from embudo.core.logging import get_logger
from embudo.models.conversation import ChatMessage
from embudo.services.openai import get_openai_client

logger = get_logger(__name__)

MAX_TOKENS = 280
TEMPERATURE = 0.75
MAX_IMAGE_BYTES = 900 * 1024

ClientFactory = Callable[[str | None], AsyncOpenAI]


@dataclass(slots=True)
class ImageInput:
    """Imagen en memoria lista para adjuntarse como data URL."""

    data: bytes
    mime_type: str = "image/jpeg"

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(slots=True)
class CompletionResult:
    """Texto final (nunca vacío) y, si hubo degradación, el motivo."""

    text: str
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def _uses_completion_tokens(model: str) -> bool:
    return model.lower().startswith("gpt-5")


def build_messages(
    system_prompt: str,
    history: Sequence[ChatMessage],
    user_text: str,
    images: Sequence[ImageInput] = (),
    *,
    history_limit: int | None = None,
    max_images: int | None = None,
) -> list[dict[str, Any]]:
    """Arma el payload de chat: sistema, historial reciente y turno del usuario."""
    limit = history_limit or settings.openai_history_messages
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    messages += [
        {"role": message.role, "content": message.content} for message in list(history)[-limit:]
    ]

    accepted = [image for image in images if len(image.data) <= MAX_IMAGE_BYTES]
    accepted = accepted[: max_images or settings.openai_max_images]
    if not accepted:
        messages.append({"role": "user", "content": user_text})
        return messages

    parts: list[dict[str, Any]] = [{"type": "text", "text": user_text}]
    parts += [{"type": "image_url", "image_url": {"url": image.as_data_url()}} for image in accepted]
    messages.append({"role": "user", "content": parts})
    return messages


class CompletionClient:
    """Envoltorio del modelo con timeout abortable y texto de respaldo determinista."""

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or get_openai_client

    async def _create(
        self, client: AsyncOpenAI, *, model: str, messages: list[dict[str, Any]], timeout_ms: int
    ) -> str:
        kwargs: dict[str, Any] = {"model": model, "messages": messages}
        if _uses_completion_tokens(model):
            kwargs["max_completion_tokens"] = MAX_TOKENS
        else:
            kwargs["max_tokens"] = MAX_TOKENS
            kwargs["temperature"] = TEMPERATURE

        timeout_s = timeout_ms / 1000
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(**kwargs, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            raise UpstreamTimeoutError(f"Completion timeout tras {timeout_ms} ms") from exc
        except openai.APIStatusError as exc:
            raise UpstreamHTTPError(str(exc), status_code=exc.status_code) from exc
        except openai.APIError as exc:
            raise UpstreamHTTPError(str(exc)) from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        return (content or "").strip()

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        user_text: str,
        images: Sequence[ImageInput] = (),
        *,
        timeout_ms: int,
        model: str,
        fallback: str,
        no_key_fallback: str | None = None,
        api_key: str | None = None,
        channel: str | None = None,
    ) -> CompletionResult:
        """Obtiene la respuesta del modelo o el respaldo determinista ante cualquier fallo."""
        log_extra = {"channel": channel, "model": model, "timeout_ms": timeout_ms}
        try:
            client = self._client_factory(api_key)
        except MissingCredentialError:
            logger.warning("completion.missing_credential", extra=log_extra)
            return CompletionResult(text=no_key_fallback or fallback, error="missing_credential")

        messages = build_messages(system_prompt, history, user_text, images)
        try:
            text = await self._create(client, model=model, messages=messages, timeout_ms=timeout_ms)
        except UpstreamTimeoutError:
            logger.warning("completion.timeout", extra={**log_extra, "aborted": True})
            return CompletionResult(text=fallback, error="timeout")
        except UpstreamHTTPError as exc:
            logger.warning(
                "completion.upstream_error",
                extra={**log_extra, "status_code": exc.status_code, "error": str(exc)},
            )
            return CompletionResult(text=fallback, error="upstream_error")
        except EmbudoError as exc:  # pragma: no cover - otros errores de dominio
            logger.exception("completion.failed", extra={**log_extra, "error": str(exc)})
            return CompletionResult(text=fallback, error="failed")

        if not text:
            logger.warning("completion.empty_output", extra=log_extra)
            return CompletionResult(text=fallback, error="empty_output")
        return CompletionResult(text=text)

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "voice.ogg",
        timeout_ms: int | None = None,
        api_key: str | None = None,
    ) -> str:
        """Transcribe audio con su propio timeout; lanza `TranscriptionError` si falla."""
        budget_ms = timeout_ms or settings.transcribe_timeout_ms
        try:
            client = self._client_factory(api_key)
        except MissingCredentialError as exc:
            raise TranscriptionError("OPENAI_API_KEY is not configured") from exc

        timeout_s = budget_ms / 1000
        try:
            result = await asyncio.wait_for(
                client.audio.transcriptions.create(
                    model=settings.openai_transcribe_model,
                    file=(filename, audio),
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, openai.APIError) as exc:
            raise TranscriptionError(f"Transcripción fallida: {exc.__class__.__name__}") from exc

        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise TranscriptionError("Transcripción vacía")
        return text


completion_client = CompletionClient()
