"""Cobertura del webhook de Messenger."""

from __future__ import annotations

import json

from httpx import AsyncClient

from embudo.core.security import build_signature

MESSENGER_SECRET = "fb-app-secret"


def _payload(*, is_echo: bool = False, text: str = "Hello there") -> bytes:
    return json.dumps(
        {
            "object": "page",
            "entry": [
                {
                    "id": "page-1",
                    "time": 1740996000000,
                    "messaging": [
                        {
                            "sender": {"id": "psid-77"},
                            "recipient": {"id": "page-1"},
                            "timestamp": 1740996000000,
                            "message": {"mid": "m_1", "text": text, "is_echo": is_echo},
                        }
                    ],
                }
            ],
        }
    ).encode()


def _headers(body: bytes, secret: str = MESSENGER_SECRET) -> dict[str, str]:
    return {"x-hub-signature-256": f"sha256={build_signature(secret, body)}"}


async def test_handshake(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/messenger/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-fb", "hub.challenge": "abc"},
    )

    assert response.status_code == 200
    assert response.text == "abc"


async def test_message_is_answered_in_detected_language(async_client: AsyncClient, orchestrator, senders, profile) -> None:
    body = _payload()

    response = await async_client.post("/api/messenger/webhook", content=body, headers=_headers(body))

    assert response.json() == {"ok": True}
    assert senders["messenger"].sent == [("psid-77", profile.copy_for("en").intro)]


async def test_echoes_are_ignored(async_client: AsyncClient, orchestrator, memory_store) -> None:
    body = _payload(is_echo=True)

    response = await async_client.post("/api/messenger/webhook", content=body, headers=_headers(body))

    assert response.status_code == 200
    assert await memory_store.list_all() == {}


async def test_unsigned_delivery_is_rejected(async_client: AsyncClient, orchestrator, memory_store) -> None:
    response = await async_client.post("/api/messenger/webhook", content=_payload())

    assert response.status_code == 403
    assert await memory_store.list_all() == {}


async def test_malformed_payload_returns_400(async_client: AsyncClient, orchestrator) -> None:
    body = json.dumps({"entry": [{"messaging": [{"message": {"text": "sin remitente"}}]}]}).encode()

    response = await async_client.post("/api/messenger/webhook", content=body, headers=_headers(body))

    assert response.status_code == 400
