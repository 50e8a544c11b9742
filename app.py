# app.py

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from device_map import DeviceMapStore, JsonFileDeviceMapStore
from mcp_dispatcher import EXTENSION_KEY, handle_rpc, is_missing
from smartlife_adapter import SmartLifeService
from smartlife_gateway import Config, SmartLifeGateway


def _setup_logging(level_name: str | None = None) -> logging.Logger:
    """Configure the process logger once (stderr, one line per record).

    Secrets (client secret, access tokens) are never passed to it.
    """

    logger = logging.getLogger("smartlife-mcp")
    level_name = str(level_name or os.getenv("SMARTLIFE_LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)
    if getattr(logger, "_smartlife_configured", False):
        return logger

    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(sh)

    logger.propagate = False
    logger._smartlife_configured = True
    return logger


_log = _setup_logging()


def _safe_json(obj: object) -> str:
    try:
        return json.dumps(obj, ensure_ascii=False, sort_keys=True, default=str)
    except Exception:
        return json.dumps({"_error": "json-encode-failed"})


def _bad_request(error: str):
    return jsonify({"ok": False, "error": error}), 400


def create_app(
    service: Optional[SmartLifeService] = None,
    cfg: Optional[Config] = None,
    store: Optional[DeviceMapStore] = None,
) -> Flask:
    """Build the Flask app. Tests pass `service` (or `store`) to avoid env/network."""
    if service is None:
        cfg = cfg or Config.from_env()
        _setup_logging(cfg.log_level)
        store = store or JsonFileDeviceMapStore(cfg.device_map_path)
        service = SmartLifeService(store, SmartLifeGateway(cfg))

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = service

    @app.before_request
    def _before_request():
        g.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        g._start = time.perf_counter()

    @app.after_request
    def _after_request(resp):
        try:
            resp.headers["X-Request-Id"] = getattr(g, "request_id", "")

            start = getattr(g, "_start", None)
            duration_ms = None
            if isinstance(start, (int, float)):
                duration_ms = round((time.perf_counter() - float(start)) * 1000.0, 2)

            fields: dict[str, object] = {
                "event": "http_request",
                "request_id": getattr(g, "request_id", None),
                "method": request.method,
                "path": request.path,
                "status": int(getattr(resp, "status_code", 0) or 0),
                "duration_ms": duration_ms,
            }
            # Only names, never tool arguments.
            if request.path == "/mcps":
                body = request.get_json(silent=True)
                if isinstance(body, dict):
                    fields["rpc_method"] = body.get("method")
                    params = body.get("params")
                    if isinstance(params, dict):
                        fields["tool"] = params.get("name")

            _log.info(_safe_json(fields))
        except Exception:
            # Never let logging break a request.
            pass
        return resp

    # Return JSON errors, but preserve correct HTTP status codes (e.g., 404).
    @app.errorhandler(HTTPException)
    def _handle_http_exception(e: HTTPException):
        return (
            jsonify(
                {
                    "ok": False,
                    "error": e.name,
                    "status": int(getattr(e, "code", 500) or 500),
                    "details": str(getattr(e, "description", "")) or None,
                }
            ),
            int(getattr(e, "code", 500) or 500),
        )

    @app.errorhandler(Exception)
    def _handle_any_exception(e: Exception):
        _log.exception("unhandled error on %s %s", request.method, request.path)
        return jsonify({"ok": False, "error": repr(e)}), 500

    # ---------- MCP JSON-RPC ----------

    @app.post("/mcps")
    def mcps():
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not body.get("method"):
            return _bad_request("Invalid request: JSON object with 'method' required")
        return jsonify(handle_rpc(body))

    # ---------- admin (no auth; operational convenience) ----------

    @app.get("/admin/device-map")
    def device_map_get():
        return jsonify(service.store.dump())

    @app.post("/admin/device-map")
    def device_map_post():
        body = request.get_json(silent=True)
        body = body if isinstance(body, dict) else {}
        user_id = body.get("user_id")
        device_name = body.get("device_name")
        device_id = body.get("device_id")
        if any(is_missing(v) for v in (user_id, device_name, device_id)):
            return _bad_request("user_id, device_name, device_id required")
        service.store.upsert(str(user_id), str(device_name), str(device_id))
        return jsonify({"ok": True})

    @app.get("/healthz")
    def healthz():
        return jsonify({"ok": True})

    return app


def main() -> None:
    cfg = Config.from_env()
    app = create_app(cfg=cfg)
    _log.info("smartlife-mcp listening on %s:%s (device map: %s)", cfg.bind_host, cfg.port, cfg.device_map_path)
    app.run(host=cfg.bind_host, port=cfg.port, debug=False, use_reloader=False, threaded=True)


if __name__ == "__main__":
    main()
