"""Cliente centralizado para interactuar con OpenAI."""

from functools import lru_cache

from openai import AsyncOpenAI

from embudo.core.config import settings
from embudo.core.errors import MissingCredentialError


@lru_cache(maxsize=8)
def get_openai_client(api_key: str | None = None) -> AsyncOpenAI:
    """Crea un cliente asíncrono reutilizable por credencial.

    `api_key` permite que un tenant use su propia credencial; sin ella se usa la global.
    Los reintentos quedan en cero porque cada llamada tiene su propio presupuesto de tiempo.
    """
    key = api_key or settings.openai_api_key
    if not key:
        msg = "OPENAI_API_KEY is not configured"
        raise MissingCredentialError(msg)
    return AsyncOpenAI(api_key=key, max_retries=0)
