"""Middlewares personalizados para el orquestador."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from embudo.core.config import settings
from embudo.core.logging import get_logger, log_event, resolve_log_level

logger = get_logger("embudo.request")


def client_ip_from(request: Request) -> str | None:
    """IP del cliente: primer `x-forwarded-for`, luego `x-real-ip`, luego el socket."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        for chunk in forwarded.split(","):
            candidate = chunk.strip()
            if candidate:
                return candidate
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Registra información básica de cada request entrante."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(settings.request_log_skip_prefixes):
            return await call_next(request)

        level = resolve_log_level(settings.request_log_level)
        request_id = request.headers.get("x-request-id") or uuid4().hex
        start = time.perf_counter()
        client_ip = client_ip_from(request)

        log_event(
            logger,
            "request.started",
            level=level,
            request_id=request_id,
            method=request.method,
            path=path,
            client_ip=client_ip,
            user_agent=request.headers.get("user-agent"),
        )

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request.failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": client_ip,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["x-request-id"] = request_id

        log_event(
            logger,
            "request.completed",
            level=level,
            request_id=request_id,
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
            client_ip=client_ip,
        )

        return response
