"""Pruebas de perfiles de tenant y conexiones de canal."""

from __future__ import annotations

import json

from embudo.services.tenants import ChannelConnectionsRepository, load_tenant_profile


def test_default_profile_has_complete_catalog() -> None:
    profile = load_tenant_profile()

    assert profile.package_names == ["START", "BUSINESS", "PRO"]
    assert profile.pilot is not None
    assert set(profile.copy_by_lang) == {"ru", "ua", "en"}
    assert profile.copy_for("de") == profile.copy_for("ru")


def test_unknown_tenant_falls_back_to_default() -> None:
    assert load_tenant_profile("no-such-tenant").id == load_tenant_profile().id


def test_connections_resolve_by_channel_and_routing_id(tmp_path) -> None:
    path = tmp_path / "connections.json"
    path.write_text(
        json.dumps(
            {
                "connections": [
                    {
                        "id": "c1",
                        "tenant_id": "temoweb",
                        "channel": "whatsapp",
                        "external_id": "1000200030004",
                        "meta": {"access_token": "tenant-token"},
                    },
                    {"id": "broken", "channel": "messenger"},
                    {
                        "id": "c2",
                        "tenant_id": "other",
                        "channel": "messenger",
                        "external_id": "page-9",
                        "status": "disabled",
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    repository = ChannelConnectionsRepository(path)

    connection = repository.resolve("whatsapp", "1000200030004")

    assert len(repository.list_connections()) == 2
    assert connection is not None and connection.meta.access_token == "tenant-token"
    assert repository.resolve("messenger", "1000200030004") is None
    assert repository.resolve_tenant_id("messenger", "page-9") == "other"
    assert repository.resolve("whatsapp", None) is None
