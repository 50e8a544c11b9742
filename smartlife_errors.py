# smartlife_errors.py
from __future__ import annotations


class SmartLifeError(Exception):
    """Base error. `code`/`message` become the JSON-RPC error object."""

    code: int = -32000
    message: str = "Server error"


# ---------- vendor side (reported as server errors) ----------


class ConfigError(SmartLifeError):
    pass


class FetchError(SmartLifeError):
    pass


class VendorApiError(SmartLifeError):
    pass


# ---------- caller side ----------


class ToolNotFound(SmartLifeError):
    code = 404
    message = "Tool not found"


class MissingParams(SmartLifeError):
    code = 400
    message = "Missing params"


class DeviceNotFound(SmartLifeError):
    code = 404
    message = "Device not found"


class UnknownAction(SmartLifeError):
    code = 400
    message = "Unknown action"
