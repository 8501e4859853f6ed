import asyncio
import importlib
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from inventory_ledger import db
from inventory_ledger.config import Settings, get_settings
from inventory_ledger.exceptions import ConfigurationError


@pytest.fixture()
def fake_client(monkeypatch):
    client = MagicMock()
    client.close = AsyncMock()
    credential = MagicMock()
    credential.close = AsyncMock()
    monkeypatch.setattr(db, "_client", client)
    monkeypatch.setattr(db, "_credential", credential)
    return client, credential


def test_close_client_releases_client_and_credential(fake_client):
    client, credential = fake_client

    asyncio.run(db.close_client())

    client.close.assert_awaited_once()
    credential.close.assert_awaited_once()
    assert db._client is None
    assert db._credential is None


def test_client_needs_an_endpoint(monkeypatch):
    monkeypatch.setattr(db, "_client", None)

    with pytest.raises(ConfigurationError):
        asyncio.run(db.get_container(db.ContainerType.SYNC, Settings()))


def test_host_shutdown_closes_cosmos_client(monkeypatch, fake_client):
    client, _ = fake_client
    monkeypatch.setenv("COSMOSDB_ENDPOINT", "https://example.documents.azure.com:443/")
    monkeypatch.delitem(sys.modules, "function_app", raising=False)
    get_settings.cache_clear()
    try:
        host = importlib.import_module("function_app")
        with TestClient(host.app):
            client.close.assert_not_awaited()
    finally:
        get_settings.cache_clear()
        sys.modules.pop("function_app", None)

    client.close.assert_awaited_once()
