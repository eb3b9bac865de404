"""
Multi-angle job orchestration.

A Job fans one source image out into one Task per camera pose. Submission runs
in a background worker per Job, strictly one Task at a time with a throttle
between dispatches. Status is advanced only when somebody asks for it:
`get_job_status` polls every submitted Task concurrently, downloads finished
artifacts, and persists the result, all under a per-Job lock so overlapping
status calls never race on the same Task.

Job state is never stored as truth; it is derived from the Task states on
every read (see jobs.state.derive_job_state).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from ..artifacts.store import ArtifactStore
from ..comfy.assets import AssetResolver
from ..comfy.client_aio import ComfyClient
from ..determinism.seeds import seed_for_task
from ..multiangle.catalog import CameraPose, PoseCatalog
from ..multiangle.graph_builder import WorkflowProfile, build_multiangle_graph, pose_prompt
from ..multiangle.options import GenerationOptions
from ..ops.errors import (
    BackendUnavailable,
    ComputeError,
    FetchFailed,
    JobNotFound,
    OrchestratorError,
    PollFailed,
    TaskTimeout,
)
from ..state.ids import job_id as new_job_id
from .state import Job, SourceImageRef, Task, utcnow
from .store import JobStore
from .throttle import SubmitThrottle

log = logging.getLogger(__name__)

# Consecutive transport-level poll failures a Task may accumulate; one more fails it.
POLL_FAILURE_THRESHOLD = 3

BACKEND_FAILED = "backend_failed"
SUBMISSION_CRASHED = "submission_crashed"


class _JobLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class JobOrchestrator:
    def __init__(
        self,
        *,
        catalog: PoseCatalog,
        client: ComfyClient,
        store: JobStore,
        artifacts: ArtifactStore,
        resolver: AssetResolver,
        profile: Optional[WorkflowProfile] = None,
        submit_delay_s: float = 1.0,
        poll_failure_threshold: int = POLL_FAILURE_THRESHOLD,
        throttle_factory: Optional[Callable[[], SubmitThrottle]] = None,
        now: Callable[[], Any] = utcnow,
    ):
        self.catalog = catalog
        self.client = client
        self.store = store
        self.artifacts = artifacts
        self.resolver = resolver
        self.profile = profile or WorkflowProfile()
        self.poll_failure_threshold = int(poll_failure_threshold)
        self._throttle_factory = throttle_factory or (lambda: SubmitThrottle(submit_delay_s))
        self._now = now
        self._locks: Dict[str, _JobLock] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    @asynccontextmanager
    async def _lock(self, job_id: str) -> AsyncIterator[None]:
        """Per-Job mutation lock. The entry lives only while someone holds or awaits it."""
        entry = self._locks.get(job_id)
        if entry is None:
            entry = self._locks[job_id] = _JobLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(job_id) is entry:
                del self._locks[job_id]

    # ---- creation ----

    async def generate(
        self,
        source: SourceImageRef,
        *,
        preset_id: Optional[str] = None,
        poses: Optional[Sequence[Any]] = None,
        options: Any = None,
    ) -> Job:
        """
        Validate a request and create its Job. Every validation failure (preset,
        pose, options, unreadable source) raises before anything is persisted.
        """
        resolved = self.catalog.resolve_poses(preset_id, poses)
        opts = options if isinstance(options, GenerationOptions) else GenerationOptions.parse(options)
        payload = await self.resolver.resolve(source.kind, source.value)
        return await self.create_job(source, resolved, opts, preset_id=preset_id, payload=payload)

    async def create_job(
        self,
        source: SourceImageRef,
        poses: Sequence[CameraPose],
        options: GenerationOptions,
        *,
        preset_id: Optional[str] = None,
        payload: Optional[Tuple[bytes, str]] = None,
    ) -> Job:
        jid = new_job_id(source.value)
        now = self._now()
        tasks = [
            Task(index=i, pose=pose, prompt=pose_prompt(pose), seed=seed_for_task(jid, pose, options.seed))
            for i, pose in enumerate(poses)
        ]
        job = Job(id=jid, source=source, options=options, tasks=tasks, preset_id=preset_id, created_at=now, updated_at=now)
        log.info("[multiangle.create] job=%s poses=%s preset=%s source=%s:%s", jid, len(tasks), preset_id, source.kind, source.value)

        if not await self.client.probe():
            err = BackendUnavailable(f"compute backend at {self.client.base_url} is unavailable")
            log.warning("[multiangle.create] job=%s probe failed; failing all %s tasks", jid, len(tasks))
            for t in job.tasks:
                t.mark_failed(**err.as_record())
            await self.store.save(job)
            return job

        await self.store.save(job)
        self._spawn_worker(jid, payload)
        return job

    def _spawn_worker(self, job_id: str, payload: Optional[Tuple[bytes, str]]) -> None:
        self._workers[job_id] = asyncio.create_task(self._submit_all(job_id, payload), name=f"multiangle-submit-{job_id}")

    # ---- submission worker ----

    async def _submit_all(self, job_id: str, payload: Optional[Tuple[bytes, str]]) -> None:
        throttle = self._throttle_factory()
        image_ref: Optional[str] = None
        try:
            while True:
                async with self._lock(job_id):
                    job = await self.store.load(job_id)
                    if job is None:
                        log.info("[multiangle.submit] job=%s gone; stopping", job_id)
                        return
                    pending = job.tasks_in("pending")
                    if not pending:
                        return
                    task = pending[0]
                    index, pose, seed = task.index, task.pose, task.seed
                    options, source = job.options, job.source

                await throttle.wait()
                external_id: Optional[str] = None
                error: Optional[OrchestratorError] = None
                try:
                    # Upload once per Job; a failed upload is retried by the next Task.
                    if image_ref is None:
                        if payload is None:
                            payload = await self.resolver.resolve(source.kind, source.value)
                        image_ref = await self.client.upload_asset(*payload)
                    graph = build_multiangle_graph(image_ref, pose, options, seed, self.profile)
                    external_id = await self.client.submit(graph)
                except OrchestratorError as ex:
                    error = ex

                async with self._lock(job_id):
                    job = await self.store.load(job_id)
                    if job is None:
                        log.info("[multiangle.submit] job=%s deleted during submission", job_id)
                        return
                    task = self._task(job, index)
                    if task.state != "pending":
                        continue
                    now = self._now()
                    if error is None:
                        task.mark_submitted(external_id, now)
                        log.info("[multiangle.submit] job=%s task=%s pose=%s prompt_id=%s", job_id, index, pose, external_id)
                    else:
                        task.mark_failed(**error.as_record())
                        log.warning("[multiangle.submit] job=%s task=%s pose=%s failed: %s: %s", job_id, index, pose, error.code, error.message)
                    job.updated_at = now
                    await self.store.save(job)
        except asyncio.CancelledError:
            log.info("[multiangle.submit] job=%s worker cancelled", job_id)
            raise
        except Exception as ex:
            log.exception("[multiangle.submit] job=%s worker crashed", job_id)
            await self._fail_pending(job_id, SUBMISSION_CRASHED, f"submission worker crashed: {ex}")
        finally:
            if self._workers.get(job_id) is asyncio.current_task():
                self._workers.pop(job_id, None)

    async def _fail_pending(self, job_id: str, code: str, message: str) -> None:
        try:
            async with self._lock(job_id):
                job = await self.store.load(job_id)
                if job is None:
                    return
                for t in job.tasks_in("pending"):
                    t.mark_failed(code, message)
                job.updated_at = self._now()
                await self.store.save(job)
        except Exception:
            log.exception("[multiangle.submit] job=%s could not record %s on pending tasks", job_id, code)

    @staticmethod
    def _task(job: Job, index: int) -> Task:
        for t in job.tasks:
            if t.index == index:
                return t
        raise KeyError(f"job {job.id} has no task {index}")

    # ---- status ----

    async def get_job_status(self, job_id: str) -> Job:
        """
        Snapshot of a Job after advancing every submitted Task once. Safe to call
        concurrently and as often as wanted: it never resubmits, and a ready Task
        is never fetched again.
        """
        async with self._lock(job_id):
            job = await self.store.load(job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found", details={"job_id": job_id})
            outstanding = job.tasks_in("submitted")
            if not outstanding:
                return job

            # _advance records every per-Task problem on its Task, so one bad
            # entry never discards the progress of its siblings.
            results = await asyncio.gather(*(self._advance(job, t) for t in outstanding))

            now = self._now()
            for t in outstanding:
                t.last_polled_at = now
            if any(results):
                job.updated_at = now
            await self.store.save(job)
            return job

    async def _advance(self, job: Job, task: Task) -> bool:
        """Poll one submitted Task; True when its state changed. Never raises for a Task's own failure."""
        try:
            return await self._advance_once(job, task)
        except ComputeError as ex:
            return self._count_poll_failure(job, task, ex)
        except OSError as ex:
            return self._count_poll_failure(job, task, FetchFailed(f"storing artifact failed: {ex}"))
        except Exception as ex:
            log.exception("[multiangle.poll] job=%s task=%s unexpected poll error", job.id, task.index)
            return self._count_poll_failure(job, task, PollFailed(f"unexpected poll error: {ex!r}"))

    async def _advance_once(self, job: Job, task: Task) -> bool:
        result = await self.client.poll_status(task.external_task_id or "")

        if result.state == "succeeded" and result.artifact is not None:
            data = await self.client.fetch_artifact(result.artifact)
            ref = await self.artifacts.write(job.id, task.index, data, result.artifact.filename)
            task.mark_ready(ref)
            task.poll_failures = 0
            log.info("[multiangle.poll] job=%s task=%s ready artifact=%s", job.id, task.index, ref)
            return True

        if result.state == "failed":
            task.mark_failed(BACKEND_FAILED, result.message or "generation failed")
            log.warning("[multiangle.poll] job=%s task=%s backend failure: %s", job.id, task.index, result.message)
            return True

        task.poll_failures = 0
        return False

    def _count_poll_failure(self, job: Job, task: Task, ex: OrchestratorError) -> bool:
        task.poll_failures += 1
        log.warning(
            "[multiangle.poll] job=%s task=%s %s (%s/%s): %s",
            job.id, task.index, ex.code, task.poll_failures, self.poll_failure_threshold, ex.message,
        )
        if task.poll_failures <= self.poll_failure_threshold:
            return False
        timeout = TaskTimeout(f"gave up after {task.poll_failures} consecutive poll failures; last: {ex.message}")
        task.mark_failed(**timeout.as_record())
        return True

    # ---- listing / deletion ----

    async def list_jobs(self, *, state: Optional[str] = None, limit: int = 20, offset: int = 0) -> Tuple[List[Job], int]:
        """Stored Jobs, newest first, without touching the backend."""
        jobs = await self.store.list_all()
        if state:
            jobs = [j for j in jobs if j.state == state]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[offset:offset + limit], len(jobs)

    async def delete_job(self, job_id: str) -> Job:
        """
        Remove a Job, stop its local submission worker and delete downloaded
        artifacts. Tasks already queued on the backend keep running there.
        """
        async with self._lock(job_id):
            job = await self.store.load(job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found", details={"job_id": job_id})
            await self.store.delete(job_id)
        worker = self._workers.pop(job_id, None)
        if worker is not None and not worker.done():
            worker.cancel()
        for t in job.tasks:
            if not t.artifact_ref:
                continue
            try:
                self.artifacts.delete(t.artifact_ref)
            except OSError as ex:
                log.warning("[multiangle.delete] job=%s could not remove %s: %s", job_id, t.artifact_ref, ex)
        log.info("[multiangle.delete] job=%s removed (%s tasks)", job_id, len(job.tasks))
        return job

    # ---- lifecycle ----

    async def resume_pending(self) -> List[str]:
        """Restart submission for stored Jobs that still have pending Tasks."""
        resumed: List[str] = []
        for job in await self.store.list_all():
            if job.tasks_in("pending") and job.id not in self._workers:
                self._spawn_worker(job.id, None)
                resumed.append(job.id)
        if resumed:
            log.info("[multiangle.resume] restarted submission for %s jobs", len(resumed))
        return resumed

    async def join(self, job_id: str) -> None:
        """Wait for a Job's submission worker, if one is running."""
        worker = self._workers.get(job_id)
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)

    async def aclose(self) -> None:
        workers = list(self._workers.values())
        for w in workers:
            w.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
