"""SSE wire format.

Frames are newline-delimited and blank-line-terminated:

    data: {"bid":100}\n\n
    :heartbeat 1718000000000\n\n

Comment lines (leading colon) are ignored by EventSource clients; the
heartbeat only exists to keep proxies from closing idle streams.
"""

import json
import time
from typing import Any, Optional


def encode_data(payload: Any) -> str:
    """Serialize a payload as a data frame, compact like JSON.stringify."""
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return f"data: {body}\n\n"


def encode_heartbeat(timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f":heartbeat {timestamp_ms}\n\n"
