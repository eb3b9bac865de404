from __future__ import annotations

import os
import time

from xxhash import xxh64


def job_id(source: str = "") -> str:
    """Sortable Job id: "ma-", 12 hex digits of ms time, 8 hex digits of hash(source + rand)."""
    t = int(time.time() * 1000)
    h = xxh64(source.encode("utf-8") + os.urandom(8), seed=t).hexdigest()[:8]
    return f"ma-{t:012x}-{h}"
