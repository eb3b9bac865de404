"""
Caller-side status polling.

`poll_until_terminal` repeatedly asks for a Job snapshot on a fixed interval
until its state is completed, partial or failed. The interval is the caller's
policy; the orchestrator only guarantees that overlapping status calls are safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from ..ops.errors import JobNotFound, OrchestratorError
from .state import TERMINAL_JOB_STATES

log = logging.getLogger(__name__)

Snapshot = Mapping[str, Any]


async def poll_until_terminal(
    fetch: Callable[[], Awaitable[Snapshot]],
    *,
    interval_s: float = 2.0,
    timeout_s: Optional[float] = None,
    on_update: Optional[Callable[[Snapshot], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Snapshot:
    """
    Call `fetch` until the snapshot's "state" is terminal and return that snapshot.
    Raises TimeoutError once `timeout_s` has elapsed without reaching one.
    """
    started = clock()
    while True:
        snap = await fetch()
        if on_update is not None:
            on_update(snap)
        state = snap.get("state")
        if state in TERMINAL_JOB_STATES:
            return snap
        if timeout_s is not None and clock() - started >= timeout_s:
            raise TimeoutError(f"job {snap.get('id')} still {state} after {timeout_s}s")
        await sleep(interval_s)


class RemoteJobClient:
    """Thin HTTP client for the multi-angle routes; unwraps the response envelope."""

    def __init__(self, base_url: str, *, timeout_s: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_s, transport=transport, trust_env=False)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        r = await self._http.request(method, path, json=body)
        r.raise_for_status()
        env = r.json()
        if env.get("ok"):
            return env.get("result")
        err = env.get("error") or {}
        if err.get("code") == JobNotFound.code:
            raise JobNotFound(str(err.get("message") or "job not found"), details=err.get("details"))
        ex = OrchestratorError(str(err.get("message") or "request failed"), details=err.get("details"))
        ex.code = str(err.get("code") or ex.code)
        ex.status = int(err.get("status") or ex.status)
        raise ex

    async def generate(self, body: Dict[str, Any]) -> str:
        result = await self._call("POST", "/api/multiangle/generate", body)
        return str(result["jobId"])

    async def job(self, job_id: str) -> Snapshot:
        return await self._call("GET", f"/api/multiangle/jobs/{job_id}")

    async def wait(self, job_id: str, *, interval_s: float = 2.0, timeout_s: Optional[float] = None,
                   on_update: Optional[Callable[[Snapshot], None]] = None) -> Snapshot:
        log.info("[poller] waiting on job=%s every %ss", job_id, interval_s)
        return await poll_until_terminal(lambda: self.job(job_id), interval_s=interval_s, timeout_s=timeout_s, on_update=on_update)
