from __future__ import annotations

from typing import Any

import pytest

from app import create_app
from device_map import MemoryDeviceMapStore
from smartlife_adapter import SmartLifeService
from smartlife_gateway import Config, SmartLifeGateway


class FakeClock:
    def __init__(self, now_s: float = 1_700_000_000.0) -> None:
        self.now_s = float(now_s)

    def __call__(self) -> float:
        return self.now_s

    def advance(self, seconds: float) -> None:
        self.now_s += float(seconds)


class FakeVendor:
    """Stands in for the HTTP transport; records every request."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, str], Any]] = []
        self.token_status = 200
        self.token_payload: Any = {
            "success": True,
            "result": {"access_token": "tok-1", "expire_time": 7200},
        }
        self.command_status = 200
        self.command_payload: Any = {"success": True, "result": True}
        self.raise_on: str | None = None

    def __call__(self, method: str, url: str, headers: dict[str, str], json_body: Any = None):
        self.calls.append((method, url, dict(headers), json_body))
        if self.raise_on and self.raise_on in url:
            raise ConnectionError("vendor unreachable")
        if "/v1.0/token" in url:
            return self.token_status, self.token_payload
        return self.command_status, self.command_payload

    @property
    def token_calls(self) -> list[tuple[str, str, dict[str, str], Any]]:
        return [c for c in self.calls if "/v1.0/token" in c[1]]

    @property
    def command_calls(self) -> list[tuple[str, str, dict[str, str], Any]]:
        return [c for c in self.calls if c[1].endswith("/commands")]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture
def cfg() -> Config:
    return Config(base_url="https://vendor.test", client_id="cid", client_secret="secret")


@pytest.fixture
def store() -> MemoryDeviceMapStore:
    return MemoryDeviceMapStore({"u1": {"lamp": "dev123"}})


@pytest.fixture
def service(cfg, store, vendor, clock) -> SmartLifeService:
    return SmartLifeService(store, SmartLifeGateway(cfg, transport=vendor, clock=clock))


@pytest.fixture
def app(service):
    flask_app = create_app(service=service)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
