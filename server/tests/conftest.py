"""Shared test fixtures."""

from __future__ import annotations

import time

import pytest
from httpx import ASGITransport, AsyncClient

import paygate.main as main_module
from paygate.config import AppConfig
from paygate.core.signing import sign_payload

_SINGLETONS = ("_config", "_stats", "_registry", "_limiter", "_pipeline", "_processor", "_storage")


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.device_backend = "memory"
    config.storage.devices_path = str(tmp_path / "devices.json")
    config.storage.payments_dir = str(tmp_path / "payments")
    config.logging.level = "warning"

    main_module.build_components(config)

    yield config

    # Cleanup
    for name in _SINGLETONS:
        setattr(main_module, name, None)


@pytest.fixture
async def client():
    from paygate.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def device():
    """A registered, active device (secret key included)."""
    return await main_module.get_registry().register("dev1", "Test Phone")


def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture
def post_signed(client):
    """POST a request signed the way a device would sign it."""

    async def _post(path, device_id, secret_key, payload, timestamp_ms=None):
        ts = now_ms() if timestamp_ms is None else timestamp_ms
        body, headers = sign_payload(device_id, secret_key, payload, ts)
        return await client.post(path, json=body, headers=headers)

    return _post
