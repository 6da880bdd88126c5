"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from embudo.api.routes.health import router as health_router
from embudo.channels.messenger.router import router as messenger_router
from embudo.channels.telegram.router import router as telegram_router
from embudo.channels.webchat.router import router as webchat_router
from embudo.channels.whatsapp.router import router as whatsapp_router
from embudo.core.config import settings
from embudo.core.logging import configure_logging, get_logger, resolve_log_level
from embudo.core.middleware import RequestLoggingMiddleware
from embudo.services.conversation_store import get_conversation_store
from embudo.services.followup import SchedulerHandle
from embudo.services.outbound import default_senders


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Arranca el seguimiento automático sólo si está habilitado."""
    log = get_logger("embudo")
    scheduler: SchedulerHandle | None = None
    if settings.followup_enabled:
        scheduler = SchedulerHandle(get_conversation_store(), default_senders())
        scheduler.start()
    else:
        log.info("followup.disabled")
    app.state.followup = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()


def create_app() -> FastAPI:
    """Crea y configura la instancia de FastAPI."""
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    log_dir = Path(settings.log_file_path).parent
    per_logger_files = {
        "embudo.request": str(log_dir / "request.log"),
        "embudo.channels.whatsapp": str(log_dir / "whatsapp.log"),
        "embudo.channels.messenger": str(log_dir / "messenger.log"),
        "embudo.channels.telegram": str(log_dir / "telegram.log"),
        "embudo.leads": str(log_dir / "leads.log"),
    }

    configure_logging(
        level=log_level,
        log_file=settings.log_file_path,
        per_logger_files=per_logger_files,
    )

    app = FastAPI(title="Embudo API", version="0.1.0", root_path="/api", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Se ajustará por ambiente
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(whatsapp_router)
    app.include_router(messenger_router)
    app.include_router(telegram_router)
    app.include_router(webchat_router)

    @app.get("/info", tags=["info"])
    def info() -> dict[str, str | None]:  # pragma: no cover - ruta simple de apoyo
        return {
            "environment": settings.environment,
            "default_tenant": settings.default_tenant_id,
            "model": settings.openai_model,
        }

    return app


app = create_app()
