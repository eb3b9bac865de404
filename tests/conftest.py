"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: a scripted in-process ComfyUI stand-in, a
source resolver that never touches disk, and a fully wired orchestrator.
"""

import asyncio
import os
from typing import Dict, List, Optional, Set

# Importing app.main configures logging; keep it on stdout during tests.
os.environ.setdefault("ORCH_LOG_FILE", "")

import pytest

from app.artifacts.store import ArtifactStore
from app.comfy.assets import ArtifactDescriptor
from app.comfy.client_aio import PollResult
from app.jobs.orchestrator import JobOrchestrator
from app.jobs.state import SourceImageRef
from app.jobs.store import MemoryJobStore
from app.jobs.throttle import SubmitThrottle
from app.multiangle.catalog import default_catalog
from app.ops.errors import PollFailed, SourceUnavailable, SubmitFailed, UploadFailed


class FakeComfy:
    """
    Stand-in for ComfyClient. Every prompt starts out pending; tests move it
    along with `finish`, `fail` or `break_polls`.
    """

    base_url = "http://comfy.test"

    def __init__(self):
        self.probe_ok = True
        self.fail_submit_calls: Set[int] = set()
        self.fail_uploads = 0
        self.submitted: List[Dict] = []
        self.uploads: List[str] = []
        self.poll_calls: List[str] = []
        self.fetch_calls: List[ArtifactDescriptor] = []
        self.probe_calls = 0
        self._status: Dict[str, PollResult] = {}
        self._poll_errors: Dict[str, int] = {}
        self._poll_crashes: Set[str] = set()
        self.fetch_error: Optional[Exception] = None

    async def probe(self) -> bool:
        self.probe_calls += 1
        return self.probe_ok

    async def upload_asset(self, data: bytes, name: str) -> str:
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise UploadFailed("/upload/image 500")
        self.uploads.append(name)
        return f"multiangle/{name}"

    async def submit(self, graph) -> str:
        n = len(self.submitted) + 1
        self.submitted.append(graph)
        if n in self.fail_submit_calls:
            raise SubmitFailed(f"/prompt 400 on call {n}")
        pid = f"prompt-{n}"
        self._status[pid] = PollResult("pending")
        return pid

    async def poll_status(self, prompt_id: str) -> PollResult:
        self.poll_calls.append(prompt_id)
        await asyncio.sleep(0)
        if prompt_id in self._poll_crashes:
            raise AttributeError("'str' object has no attribute 'get'")
        left = self._poll_errors.get(prompt_id, 0)
        if left:
            self._poll_errors[prompt_id] = left - 1
            raise PollFailed(f"/history/{prompt_id} transport error")
        return self._status[prompt_id]

    async def fetch_artifact(self, artifact: ArtifactDescriptor) -> bytes:
        self.fetch_calls.append(artifact)
        await asyncio.sleep(0)
        if self.fetch_error is not None:
            raise self.fetch_error
        return f"image:{artifact.filename}".encode()

    async def aclose(self) -> None:
        return None

    # ---- scripting helpers ----

    def finish(self, prompt_id: str) -> None:
        self._status[prompt_id] = PollResult("succeeded", artifact=ArtifactDescriptor(f"{prompt_id}_00001_.png", "", "output"))

    def finish_all(self) -> None:
        for pid in list(self._status):
            self.finish(pid)

    def fail(self, prompt_id: str, message: str = "KSampler: out of memory") -> None:
        self._status[prompt_id] = PollResult("failed", message=message)

    def run(self, prompt_id: str) -> None:
        self._status[prompt_id] = PollResult("running")

    def break_polls(self, prompt_id: str, times: int) -> None:
        self._poll_errors[prompt_id] = times

    def crash_polls(self, prompt_id: str) -> None:
        self._poll_crashes.add(prompt_id)


class FakeResolver:
    def __init__(self):
        self.calls = 0
        self.missing: Set[str] = set()

    async def resolve(self, kind: str, value: str):
        self.calls += 1
        if value in self.missing:
            raise SourceUnavailable(f"image {value!r} not found in library")
        return b"\x89PNG source", f"{value}.png"


@pytest.fixture
def comfy():
    return FakeComfy()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def sleeps():
    """Records throttle waits instead of sleeping."""
    return []


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStore(str(tmp_path / "multiangle"))


@pytest.fixture
def orchestrator(comfy, resolver, store, artifacts, sleeps):
    async def fake_sleep(s: float) -> None:
        sleeps.append(s)

    return JobOrchestrator(
        catalog=default_catalog(),
        client=comfy,
        store=store,
        artifacts=artifacts,
        resolver=resolver,
        submit_delay_s=1.0,
        throttle_factory=lambda: SubmitThrottle(1.0, clock=lambda: 0.0, sleep=fake_sleep),
    )


@pytest.fixture
def library_source():
    return SourceImageRef("library", "hero-01")
