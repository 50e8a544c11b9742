"""End-to-end validator for the SmartLife MCP server.

Exercises the public HTTP surface of a running server:

  client -> POST /mcps -> mcp_dispatcher -> smartlife_adapter -> smartlife_gateway -> SmartLife cloud

Safety:
- By default it only checks /healthz, tools/list and the admin device map.
- Sending a real device command requires --do-writes (plus --user-id/--device).

Usage examples:
  python tools/validate_mcp_e2e.py --base-url http://127.0.0.1:3000
  python tools/validate_mcp_e2e.py --base-url http://127.0.0.1:3000 --map-user u1 --map-name lamp --map-device bf0123456789abcd
  python tools/validate_mcp_e2e.py --base-url http://127.0.0.1:3000 --user-id u1 --device lamp --action turn_on --do-writes

Exit codes:
- 0: all executed checks passed
- 2: a requested check failed
- 3: could not reach server / protocol errors
"""

from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass(frozen=True)
class CallResult:
    ok: bool
    status: int
    payload: Json | None
    error: str | None


def _http_json(url: str, body: Optional[Json], timeout_s: float) -> CallResult:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, method="POST" if body is not None else "GET")
    if body is not None:
        req.add_header("Content-Type", "application/json")

    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            raw = resp.read()
            status = int(getattr(resp, "status", 200))
            try:
                payload = json.loads(raw.decode("utf-8")) if raw else None
            except Exception:
                payload = {"_raw": raw.decode("utf-8", errors="replace")}
            return CallResult(ok=200 <= status < 300, status=status, payload=payload, error=None)
    except urllib.error.HTTPError as e:
        raw = e.read()
        try:
            payload = json.loads(raw.decode("utf-8")) if raw else None
        except Exception:
            payload = {"_raw": raw.decode("utf-8", errors="replace")}
        return CallResult(ok=False, status=int(e.code), payload=payload, error=str(e))
    except Exception as e:
        return CallResult(ok=False, status=0, payload=None, error=repr(e))


_next_id = 0


def rpc(base_url: str, method: str, params: Optional[Json], timeout_s: float) -> Json:
    global _next_id
    _next_id += 1
    url = base_url.rstrip("/") + "/mcps"
    body = {"jsonrpc": "2.0", "id": _next_id, "method": method, "params": params or {}}
    r = _http_json(url, body, timeout_s)
    if not r.ok or not isinstance(r.payload, dict):
        raise RuntimeError(f"HTTP call failed: status={r.status} error={r.error} payload={r.payload}")
    if r.payload.get("id") != _next_id:
        raise RuntimeError(f"Response id mismatch: sent {_next_id}, got {r.payload.get('id')!r}")
    return r.payload


def _print_json(label: str, obj: Any) -> None:
    print(f"\n== {label} ==")
    print(json.dumps(obj, indent=2, sort_keys=True)[:8000])


def _expect(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base-url", required=True)
    ap.add_argument("--timeout-s", type=float, default=25.0)
    ap.add_argument("--map-user", help="Register an alias via POST /admin/device-map first.")
    ap.add_argument("--map-name")
    ap.add_argument("--map-device")
    ap.add_argument("--user-id")
    ap.add_argument("--device")
    ap.add_argument("--action", default="turn_on")
    ap.add_argument("--value")
    ap.add_argument("--do-writes", action="store_true", help="Actually send a device command.")
    args = ap.parse_args()

    base = str(args.base_url).rstrip("/")

    try:
        health = _http_json(base + "/healthz", None, args.timeout_s)
        if not health.ok:
            raise RuntimeError(f"healthz failed: status={health.status} error={health.error}")

        listed = rpc(base, "tools/list", {}, args.timeout_s)
        _print_json("tools/list", listed)
        tools = (listed.get("result") or {}).get("tools") or []
        _expect(any(t.get("name") == "smartlife.control" for t in tools), "smartlife.control not advertised")

        unknown = rpc(base, "tools/call", {"name": "nope", "input": {}}, args.timeout_s)
        _expect((unknown.get("error") or {}).get("code") == 404, f"expected 404 for unknown tool: {unknown}")

        if args.map_user and args.map_name and args.map_device:
            r = _http_json(
                base + "/admin/device-map",
                {"user_id": args.map_user, "device_name": args.map_name, "device_id": args.map_device},
                args.timeout_s,
            )
            _expect(r.ok, f"admin upsert failed: {r.status} {r.payload}")
            dump = _http_json(base + "/admin/device-map", None, args.timeout_s)
            _expect(
                ((dump.payload or {}).get(args.map_user) or {}).get(args.map_name) == args.map_device,
                f"alias not persisted: {dump.payload}",
            )
            print(f"\nalias ok: {args.map_user}/{args.map_name} -> {args.map_device}")

        if args.do_writes:
            _expect(bool(args.user_id and args.device), "--do-writes needs --user-id and --device")
            tool_input: Json = {"user_id": args.user_id, "device": args.device, "action": args.action}
            if args.value is not None:
                tool_input["value"] = args.value
            called = rpc(base, "tools/call", {"name": "smartlife.control", "input": tool_input}, args.timeout_s)
            _print_json("tools/call", called)
            _expect("result" in called, f"tools/call failed: {called.get('error')}")
            _expect(bool(called["result"].get("success")), f"vendor did not accept command: {called['result']}")

    except AssertionError as e:
        print(f"\nFAIL: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 3

    print("\nPASS")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
