r"""STDIO MCP server.

Same JSON-RPC surface as POST /mcps (initialize, tools/list, tools/call),
one envelope per line on stdin, one response per line on stdout. Handy for
MCP clients that launch a local process instead of speaking HTTP.

Run:
    python stdio_server.py

Notes:
- All logs go to stderr (stdout is reserved for JSON-RPC responses).
- Configuration comes from the same SMARTLIFE_* environment variables as app.py.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

from flask import Flask

from mcp_dispatcher import handle_rpc, rpc_error

_log = logging.getLogger("smartlife-mcp")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


def _write(out: IO[str], resp: dict) -> None:
    out.write(_json_dumps(resp) + "\n")
    out.flush()


def serve(app: Flask, stdin: IO[str], stdout: IO[str]) -> int:
    """Pump JSON-RPC lines until EOF. Tools run inside the app context."""
    with app.app_context():
        for raw_line in stdin:
            raw_line = raw_line.strip()
            if not raw_line:
                continue

            try:
                req = json.loads(raw_line)
            except json.JSONDecodeError as e:
                _write(stdout, rpc_error(None, -32700, "Parse error", data=str(e)))
                continue

            if not isinstance(req, dict) or not req.get("method"):
                _write(stdout, rpc_error(req.get("id") if isinstance(req, dict) else None, -32600, "Invalid Request"))
                continue

            # JSON-RPC notifications: no id => no response.
            if req.get("id") is None:
                continue

            _write(stdout, handle_rpc(req))

    return 0


def main() -> int:
    # Importing app configures logging (stderr) before anything else runs.
    from app import create_app

    app = create_app()
    _log.info("SmartLife STDIO server starting")
    code = serve(app, sys.stdin, sys.stdout)
    _log.info("SmartLife STDIO server exiting")
    return code


if __name__ == "__main__":
    raise SystemExit(main())
