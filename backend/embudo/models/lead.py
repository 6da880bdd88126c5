"""Modelo de leads capturados por el embudo."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

LeadStatus = Literal["new", "contacted", "qualified", "won", "lost"]


class Lead(BaseModel):
    """Registro deduplicado de un contacto listo para seguimiento humano."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str
    contact: str = Field(..., description="Teléfono canónico (+dígitos), email o @usuario.")
    name: str | None = None
    email: str | None = None
    channel: str
    question: str | None = None
    client_messages: list[str] = Field(default_factory=list)
    ai_recommendation: str | None = None
    ai_summary: str | None = None
    ai_readiness: int | None = None
    stage: str | None = None
    source: str = Field(..., description="Origen para deduplicar, ej. whatsapp o telegram.")
    lang: str | None = None
    notes: str | None = None
    status: LeadStatus = "new"
    created_at: datetime
