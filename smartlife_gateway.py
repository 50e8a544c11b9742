# smartlife_gateway.py

from __future__ import annotations

import asyncio
from concurrent.futures import TimeoutError as FuturesTimeoutError
import hashlib
import hmac
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from smartlife_errors import ConfigError, FetchError, VendorApiError

_log = logging.getLogger("smartlife-mcp")

DEFAULT_BASE_URL = "https://openapi.tuyaus.com"
SIGN_METHOD = "HMAC-SHA256"

# Tokens are considered stale this long before the vendor says they expire.
TOKEN_SAFETY_MARGIN_MS = 60_000

Json = Dict[str, Any]
# (method, url, headers, json_body) -> (http_status, parsed JSON or raw text)
Transport = Callable[[str, str, Dict[str, str], Optional[Json]], Tuple[int, Any]]


class AsyncLoopThread:
    """Owns exactly one asyncio event loop running forever in a daemon thread."""

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="smartlife-loop", daemon=True)
        self._started = False
        self._start_lock = threading.Lock()

    def start(self) -> None:
        with self._start_lock:
            if not self._started:
                self._thread.start()
                self._started = True

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def run(self, coro, timeout_s: float | None = None) -> Any:
        self.start()
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return fut.result(timeout=timeout_s)
        except FuturesTimeoutError as e:
            fut.cancel()
            # concurrent.futures.TimeoutError has an empty message by default.
            raise RuntimeError(f"Timeout waiting for SmartLife HTTP call (timeout={timeout_s}s)") from e


# ---------- config ----------


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return float(default)
    try:
        return float(raw)
    except Exception:
        return float(default)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return int(default)
    try:
        return int(float(raw))
    except Exception:
        return int(default)


@dataclass(frozen=True)
class Config:
    base_url: str = DEFAULT_BASE_URL
    client_id: str = ""
    client_secret: str = ""
    bind_host: str = "127.0.0.1"
    port: int = 3000
    device_map_path: str = "device_map.json"
    http_timeout_s: float = 15.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, cfg_path: Optional[str] = None) -> "Config":
        """Environment first, then an optional JSON file for the vendor fields.

        Missing credentials are not an error here; the token fetch reports them.
        """
        env_cfg = (os.environ.get("SMARTLIFE_CONFIG_PATH") or "").strip()
        path = Path(cfg_path or env_cfg) if (cfg_path or env_cfg) else None

        file_cfg: dict[str, Any] = {}
        if path is not None and path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except ValueError as e:
                raise ConfigError(f"Invalid config file {str(path)!r}: not valid JSON") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Invalid config file {str(path)!r}: expected a JSON object")
            file_cfg = data

        def pick(env_name: str, file_key: str, default: str = "") -> str:
            env_val = (os.environ.get(env_name) or "").strip()
            if env_val:
                return env_val
            file_val = str(file_cfg.get(file_key) or "").strip()
            return file_val or default

        return cls(
            base_url=pick("SMARTLIFE_BASE_URL", "base_url", DEFAULT_BASE_URL).rstrip("/"),
            client_id=pick("SMARTLIFE_CLIENT_ID", "client_id"),
            client_secret=pick("SMARTLIFE_CLIENT_SECRET", "client_secret"),
            bind_host=(os.environ.get("SMARTLIFE_BIND_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            port=_env_int("PORT", 3000),
            device_map_path=(os.environ.get("DEVICE_MAP_PATH") or "device_map.json").strip() or "device_map.json",
            http_timeout_s=_env_float("SMARTLIFE_HTTP_TIMEOUT_S", 15.0),
            log_level=str(os.environ.get("SMARTLIFE_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
        )


# ---------- signing ----------


def sign(client_id: str, client_secret: str, t: str, token: str = "") -> str:
    """HMAC-SHA256 of client_id + token + t keyed by the client secret, uppercase hex."""
    msg = f"{client_id}{token}{t}".encode("utf-8")
    return hmac.new(client_secret.encode("utf-8"), msg, hashlib.sha256).hexdigest().upper()


# ---------- transport ----------


class AiohttpTransport:
    """Sync callable that runs aiohttp requests on a shared loop thread."""

    def __init__(self, timeout_s: float = 15.0, loop_thread: AsyncLoopThread | None = None) -> None:
        self._timeout_s = float(timeout_s)
        self._loop_thread = loop_thread or AsyncLoopThread()

    async def _request(self, method: str, url: str, headers: Dict[str, str], json_body: Optional[Json]) -> Tuple[int, Any]:
        timeout = aiohttp.ClientTimeout(total=self._timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, json=json_body) as resp:
                    text = await resp.text()
        except asyncio.TimeoutError as e:
            # aiohttp's total timeout raises with an empty message.
            raise RuntimeError(f"Timeout after {self._timeout_s}s: {method} {url.split('?')[0]}") from e
        try:
            return resp.status, json.loads(text)
        except ValueError:
            return resp.status, text

    def __call__(self, method: str, url: str, headers: Dict[str, str], json_body: Optional[Json] = None) -> Tuple[int, Any]:
        # Outer wait is a little longer so aiohttp's own timeout fires first.
        return self._loop_thread.run(self._request(method, url, headers, json_body), timeout_s=self._timeout_s + 5.0)


def _vendor_msg(payload: Any) -> str:
    if isinstance(payload, dict):
        msg = payload.get("msg") or payload.get("message")
        code = payload.get("code")
        if msg and code is not None:
            return f"{msg} (code {code})"
        if msg:
            return str(msg)
        return json.dumps(payload, default=str)[:300]
    return str(payload or "")[:300]


# ---------- token ----------


class TokenManager:
    """Caches one vendor access token; refreshes lazily when it is (nearly) expired."""

    def __init__(self, cfg: Config, transport: Transport, clock: Callable[[], float] = time.time) -> None:
        self._cfg = cfg
        self._transport = transport
        self._clock = clock
        self.token: Optional[str] = None
        self.expires_at_ms: int = 0
        self.fetch_count = 0

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _token_valid(self) -> bool:
        return bool(self.token) and self.now_ms() < self.expires_at_ms

    def ensure_token(self) -> str:
        if self._token_valid():
            return self.token  # type: ignore[return-value]
        return self.fetch()

    def invalidate(self) -> None:
        self.token = None
        self.expires_at_ms = 0

    def fetch(self) -> str:
        client_id = self._cfg.client_id
        secret = self._cfg.client_secret
        if not client_id or not secret:
            raise ConfigError(
                "Missing SmartLife credentials. Set SMARTLIFE_CLIENT_ID and SMARTLIFE_CLIENT_SECRET."
            )

        self.fetch_count += 1
        t = str(self.now_ms())
        headers = {
            "client_id": client_id,
            "t": t,
            "sign": sign(client_id, secret, t),
            "sign_method": SIGN_METHOD,
        }
        url = f"{self._cfg.base_url}/v1.0/token?grant_type=1"

        try:
            status, payload = self._transport("GET", url, headers, None)
        except Exception as e:
            raise FetchError(f"SmartLife token request failed: {e!r}") from e

        if status >= 400:
            raise FetchError(f"SmartLife token HTTP {status}: {_vendor_msg(payload)}")
        if not isinstance(payload, dict):
            raise FetchError(f"SmartLife token invalid JSON: {str(payload)[:200]}")
        if payload.get("success") is False:
            raise FetchError(f"SmartLife token rejected: {_vendor_msg(payload)}")

        result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
        token = result.get("access_token")
        if not token:
            raise FetchError(f"SmartLife token response missing result.access_token: {_vendor_msg(payload)}")
        try:
            expire_s = float(result.get("expire_time") or 0)
        except (TypeError, ValueError):
            expire_s = 0.0
        if not expire_s > 0:
            raise FetchError(f"SmartLife token response missing result.expire_time: {_vendor_msg(payload)}")
        if expire_s * 1000 <= TOKEN_SAFETY_MARGIN_MS:
            _log.warning("SmartLife token lifetime %ss is inside the refresh margin; every call will refetch", expire_s)

        self.token = str(token)
        self.expires_at_ms = int(t) + int(expire_s * 1000) - TOKEN_SAFETY_MARGIN_MS
        _log.info("SmartLife token refreshed (expires in %ss)", int(expire_s))
        return self.token


# ---------- gateway ----------


class SmartLifeGateway:
    """Sync facade over the vendor device-control API."""

    def __init__(
        self,
        cfg: Config,
        transport: Transport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cfg = cfg
        self._transport: Transport = transport or AiohttpTransport(timeout_s=cfg.http_timeout_s)
        self.tokens = TokenManager(cfg, self._transport, clock=clock)

    def send_commands(self, device_id: str, commands: List[Json]) -> Json:
        token = self.tokens.ensure_token()
        t = str(self.tokens.now_ms())
        headers = {
            "client_id": self._cfg.client_id,
            "access_token": token,
            "t": t,
            "sign": sign(self._cfg.client_id, self._cfg.client_secret, t, token),
            "sign_method": SIGN_METHOD,
            "Content-Type": "application/json",
        }
        url = f"{self._cfg.base_url}/v1.0/iot-03/devices/{quote(str(device_id), safe='')}/commands"

        try:
            status, payload = self._transport("POST", url, headers, {"commands": commands})
        except Exception as e:
            raise VendorApiError(f"SmartLife command request failed: {e!r}") from e

        if status >= 400:
            raise VendorApiError(f"SmartLife command HTTP {status}: {_vendor_msg(payload)}")
        if not isinstance(payload, dict):
            raise VendorApiError(f"SmartLife command invalid JSON: {str(payload)[:200]}")
        return payload
