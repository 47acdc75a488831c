"""Server-Sent Events framing for the progress stream."""

from __future__ import annotations

import json


def sse_event(event: str, data: dict) -> bytes:
    payload = json.dumps(data, separators=(",", ":"))
    return f"event: {event}\ndata: {payload}\n\n".encode("utf-8")


def sse_heartbeat() -> bytes:
    # Comment frame; keeps proxies from closing an idle stream.
    return b":\n\n"
