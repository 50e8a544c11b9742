r"""JSON-RPC dispatcher for the MCP tool surface.

Transport-free: both the HTTP endpoint (app.py, POST /mcps) and the STDIO
shim (stdio_server.py) hand a decoded envelope to `handle_rpc` and send back
whatever it returns.

Methods:
- initialize
- tools/list
- tools/call

Tools are registered on flask-mcp-server's global registry with @Mcp.tool and
invoked through `default_registry.call_tool`, so they must run inside a Flask
app context (the tool body finds its SmartLifeService on `current_app`).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from flask import current_app
from flask_mcp_server import Mcp
from flask_mcp_server.registry import default_registry

from smartlife_adapter import ACTIONS, SmartLifeService
from smartlife_errors import MissingParams, SmartLifeError, ToolNotFound

Json = Dict[str, Any]

_log = logging.getLogger("smartlife-mcp")

CONTROL_TOOL = "smartlife.control"
EXTENSION_KEY = "smartlife"
PROTOCOL_VERSION = "2024-11-05"

_REQUIRED_FIELDS = ("user_id", "device", "action")

_INPUT_SCHEMAS: dict[str, Json] = {
    CONTROL_TOOL: {
        "type": "object",
        "properties": {
            "user_id": {"type": "string", "description": "Owner of the device alias."},
            "device": {"type": "string", "description": "Device alias, or a raw SmartLife device id."},
            "action": {"type": "string", "enum": list(ACTIONS)},
            "value": {"description": "Brightness or color temperature for set_* actions."},
        },
        "required": list(_REQUIRED_FIELDS),
    },
}


def current_service() -> SmartLifeService:
    return current_app.extensions[EXTENSION_KEY]


# ---------- MCP tools (registered on the global registry via Mcp.tool) ----------


@Mcp.tool(
    name=CONTROL_TOOL,
    description=(
        "Control a SmartLife device by alias or device id: turn_on, turn_off, "
        "set_brightness or set_color_temp (value required for set_*)."
    ),
)
def smartlife_control(user_id: str, device: str, action: str, value: Any = None) -> dict:
    return current_service().control(user_id, device, action, value)


def _tool_descriptor(name: str) -> Json:
    item = default_registry.tools.get(name) or {}
    return {
        "name": name,
        "description": item.get("description") or "",
        "inputSchema": _INPUT_SCHEMAS.get(name) or item.get("input_schema") or {"type": "object", "properties": {}},
    }


def list_tools() -> list[Json]:
    return [_tool_descriptor(name) for name in sorted(_INPUT_SCHEMAS) if name in default_registry.tools]


# ---------- envelope helpers ----------


def rpc_result(request_id: Any, result: Any) -> Json:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str, data: Any = None) -> Json:
    err: Json = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": err}


def is_missing(value: Any) -> bool:
    """Absent, None, or a blank string."""
    return value is None or (isinstance(value, str) and not value.strip())


def call_tool(params: Json) -> Json:
    name = params.get("name")
    if name not in _INPUT_SCHEMAS or name not in default_registry.tools:
        raise ToolNotFound(f"Tool not found: {name!r}")

    args = params.get("input")
    if args is None:
        args = params.get("arguments")
    if not isinstance(args, dict):
        args = {}

    missing = [f for f in _REQUIRED_FIELDS if is_missing(args.get(f))]
    if missing:
        raise MissingParams(f"Missing required fields: {', '.join(missing)}")

    return default_registry.call_tool(
        str(name),
        user_id=str(args["user_id"]),
        device=str(args["device"]),
        action=str(args["action"]),
        value=args.get("value"),
    )


def handle_rpc(envelope: Json) -> Json:
    """Dispatch one JSON-RPC request. Never raises; errors become error objects."""
    request_id = envelope.get("id")
    method = envelope.get("method")
    params = envelope.get("params")
    if not isinstance(params, dict):
        params = {}

    try:
        if method == "initialize":
            return rpc_result(
                request_id,
                {
                    "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "smartlife-mcp", "version": os.getenv("SMARTLIFE_VERSION", "dev")},
                },
            )

        if method == "tools/list":
            return rpc_result(request_id, {"tools": list_tools()})

        if method == "tools/call":
            return rpc_result(request_id, call_tool(params))

        return rpc_error(request_id, -32601, "Method not found", data=f"Unknown method: {method}")

    except SmartLifeError as e:
        detail = str(e).strip() or e.message
        _log.warning("rpc %s failed: %s %s", method, e.code, detail)
        return rpc_error(request_id, e.code, e.message, data=detail)
    except Exception as e:
        # concurrent.futures.TimeoutError often has an empty message.
        msg = str(e).strip() or e.__class__.__name__
        _log.exception("rpc %s crashed", method)
        return rpc_error(request_id, -32000, "Server error", data=msg)
