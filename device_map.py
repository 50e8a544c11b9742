# device_map.py
from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
import re
import threading
from typing import Dict, Optional

_log = logging.getLogger("smartlife-mcp")

AliasMap = Dict[str, Dict[str, str]]

# Vendor device ids are opaque alphanumeric strings; anything that looks like one
# can be used directly without an alias.
_DEVICE_ID_RE = re.compile(r"^[a-z0-9]{8,}$", re.IGNORECASE)


def looks_like_device_id(value: str) -> bool:
    return bool(_DEVICE_ID_RE.match(str(value or "")))


class DeviceMapStore(ABC):
    """user_id -> {alias -> vendor device id}.

    Every read goes back to storage and every write replaces the whole document.
    Subclasses only implement the raw read/write of that document.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()

    @abstractmethod
    def _read(self) -> AliasMap:
        ...

    @abstractmethod
    def _write(self, data: AliasMap) -> None:
        ...

    def dump(self) -> AliasMap:
        return self._read()

    def resolve(self, user_id: str, name_or_id: str) -> Optional[str]:
        user_map = self._read().get(str(user_id))
        if isinstance(user_map, dict):
            hit = user_map.get(str(name_or_id))
            if hit is not None:
                return str(hit)
        if looks_like_device_id(name_or_id):
            return str(name_or_id)
        return None

    def upsert(self, user_id: str, alias: str, device_id: str) -> bool:
        with self._write_lock:
            data = self._read()
            user_map = data.get(str(user_id))
            if not isinstance(user_map, dict):
                user_map = {}
                data[str(user_id)] = user_map
            user_map[str(alias)] = str(device_id)
            self._write(data)
        _log.info("device map: user=%s alias=%s -> %s", user_id, alias, device_id)
        return True


class JsonFileDeviceMapStore(DeviceMapStore):
    def __init__(self, path: str | os.PathLike[str]) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> AliasMap:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            _log.warning("device map unreadable (%s): %r", self.path, e)
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            _log.warning("device map is not valid JSON, treating as empty: %s", self.path)
            return {}
        if not isinstance(data, dict):
            _log.warning("device map top level is not an object, treating as empty: %s", self.path)
            return {}
        return data

    def _write(self, data: AliasMap) -> None:
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class MemoryDeviceMapStore(DeviceMapStore):
    """In-process store. Hands out copies so callers never share nested dicts."""

    def __init__(self, initial: AliasMap | None = None) -> None:
        super().__init__()
        self._data: AliasMap = {}
        if initial:
            self._write(initial)

    def _read(self) -> AliasMap:
        return {u: dict(m) for u, m in self._data.items() if isinstance(m, dict)}

    def _write(self, data: AliasMap) -> None:
        self._data = {str(u): dict(m) for u, m in data.items() if isinstance(m, dict)}
