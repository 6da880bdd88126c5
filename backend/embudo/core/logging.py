"""Configuración de logging estructurado para el orquestador."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# Atributos propios de LogRecord; todo lo demás llegó por `extra`
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}
_SECRET_MARKERS = ("token", "secret", "api_key", "authorization", "password")


def _redact(key: str, value: Any) -> Any:
    if value and isinstance(value, str) and any(marker in key.lower() for marker in _SECRET_MARKERS):
        return "***"
    return value


class JSONFormatter(logging.Formatter):
    """Serializa cada registro como una línea JSON con los campos de `extra`.

    Los campos cuyo nombre sugiere una credencial se enmascaran; los webhooks
    registran metadatos de tokens, nunca su valor.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, _redact(key, value))
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # Los eventos del embudo llevan datetimes y enums en `extra`
        return json.dumps(payload, ensure_ascii=False, default=str)


def _rotating_handler(file_path: str) -> RotatingFileHandler:
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: str | None = None,
    per_logger_files: dict[str, str] | None = None,
) -> None:
    """Configura logging estructurado con formato JSON.

    Además del handler de consola, `log_file` agrega un archivo rotativo general y
    `per_logger_files` permite separar los eventos de cada canal en su propio archivo.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    if log_file:
        try:
            root_logger.addHandler(_rotating_handler(log_file))
        except OSError:
            root_logger.exception(
                "No fue posible iniciar el handler de archivo", extra={"log_file": log_file}
            )

    for logger_name, file_path in (per_logger_files or {}).items():
        target_logger = logging.getLogger(logger_name)
        # Evita duplicar handlers si la app se crea más de una vez (tests, reload)
        for existing in list(target_logger.handlers):
            if isinstance(existing, RotatingFileHandler):
                target_logger.removeHandler(existing)
                existing.close()
        try:
            target_logger.addHandler(_rotating_handler(file_path))
        except OSError:
            root_logger.exception(
                "No fue posible iniciar el handler dedicado",
                extra={"logger": logger_name, "file": file_path},
            )


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Convierte valores configurables a constantes numéricas de logging."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return default
        try:
            return int(candidate)
        except ValueError:
            mapped = logging.getLevelName(candidate.upper())
            if isinstance(mapped, int):
                return mapped
    return default


def get_logger(name: str) -> logging.Logger:
    """Retorna un logger hijo con el nombre solicitado."""
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger, message: str, *, level: int = logging.INFO, **extra: Any
) -> None:
    """Helper para enviar eventos con campos adicionales en formato JSON."""
    if extra:
        logger.log(level, message, extra=extra)
    else:
        logger.log(level, message)


def clip_preview(text: str | None, limit: int = 120) -> str | None:
    """Recorta textos de usuario antes de enviarlos a logs o diagnósticos."""
    if text is None:
        return None
    cleaned = " ".join(text.split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(0, limit - 1)] + "…"
