# smartlife_adapter.py
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List

from device_map import DeviceMapStore
from smartlife_errors import DeviceNotFound, UnknownAction
from smartlife_gateway import SmartLifeGateway

Json = Dict[str, Any]

_log = logging.getLogger("smartlife-mcp")

ACTIONS = ("turn_on", "turn_off", "set_brightness", "set_color_temp")


def numeric(value: Any) -> float | int:
    """Best-effort number coercion. Anything non-numeric becomes NaN and is still sent."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str) and value.strip():
        try:
            f = float(value.strip())
        except ValueError:
            return math.nan
        if f.is_integer():
            return int(f)
        return f
    return math.nan


def build_commands(action: str, value: Any = None) -> List[Json]:
    if action == "turn_on":
        return [{"code": "switch_1", "value": True}]
    if action == "turn_off":
        return [{"code": "switch_1", "value": False}]
    if action == "set_brightness":
        return [{"code": "brightness", "value": numeric(value)}]
    if action == "set_color_temp":
        return [{"code": "color_temp", "value": numeric(value)}]
    raise UnknownAction(f"Unknown action: {action!r} (expected one of {', '.join(ACTIONS)})")


class SmartLifeService:
    """Alias store + vendor gateway. One instance per app."""

    def __init__(self, store: DeviceMapStore, gateway: SmartLifeGateway) -> None:
        self.store = store
        self.gateway = gateway

    def control(self, user_id: str, device: str, action: str, value: Any = None) -> Json:
        device_id = self.store.resolve(str(user_id), str(device))
        if not device_id:
            raise DeviceNotFound(f"No device {device!r} for user {user_id!r}")

        commands = build_commands(str(action), value)
        resp = self.gateway.send_commands(device_id, commands)

        success = bool(resp.get("success"))
        if not success:
            _log.warning("SmartLife rejected %s on %s: %s", action, device_id, resp.get("msg"))
        return {
            "success": success,
            "message": "OK" if success else str(resp.get("msg") or "Vendor reported failure"),
            "device_id": device_id,
        }
