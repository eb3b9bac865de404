from __future__ import annotations

import time
from typing import Any, Dict, Optional


START_TS = time.time()


def get_health(backend_ok: Optional[bool] = None, *, backend_url: str = "") -> Dict[str, Any]:
    now = time.time()
    return {
        "ok": True,
        "ts": int(now),
        "uptime_s": int(now - START_TS),
        "backend": {"url": backend_url, "reachable": backend_ok},
    }
