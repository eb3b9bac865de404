from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

log = logging.getLogger(__name__)


def _write_atomic(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush(); os.fsync(f.fileno())
    os.replace(tmp, path)


class ArtifactStore:
    """
    Downloaded task outputs on local disk. Files are named
    `angle-<job>-<index>-<ms>.<ext>` and addressed by a public ref
    `<url_prefix>/<file name>`.
    """

    def __init__(self, root_dir: str, url_prefix: str = "/data/multiangle"):
        self.root_dir = os.path.abspath(root_dir)
        self.url_prefix = url_prefix.rstrip("/")

    async def write(self, job_id: str, index: int, data: bytes, source_name: str = "") -> str:
        ext = os.path.splitext(source_name)[1].lower() or ".png"
        name = f"angle-{job_id}-{index}-{int(time.time() * 1000)}{ext}"
        path = os.path.join(self.root_dir, name)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write_atomic, path, data)
        log.info("[artifacts.write] job=%s index=%s bytes=%s path=%s", job_id, index, len(data), path)
        return f"{self.url_prefix}/{name}"

    def path_for(self, ref: str) -> Optional[str]:
        """Local file for a ref produced by `write`; None for anything else."""
        prefix = self.url_prefix + "/"
        if not ref.startswith(prefix):
            return None
        name = ref[len(prefix):]
        if not name or os.path.basename(name) != name:
            return None
        return os.path.join(self.root_dir, name)

    def delete(self, ref: str) -> bool:
        path = self.path_for(ref)
        if path is None:
            return False
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True
