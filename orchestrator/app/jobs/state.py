from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Mapping, Optional

from ..multiangle.catalog import CameraPose
from ..multiangle.options import GenerationOptions
from ..ops.errors import InvalidTransition


TaskState = Literal["pending", "submitted", "ready", "failed"]
JobState = Literal["processing", "completed", "partial", "failed"]

TASK_STATES = ("pending", "submitted", "ready", "failed")
TERMINAL_JOB_STATES: FrozenSet[str] = frozenset({"completed", "partial", "failed"})

_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"submitted", "failed"}),
    "submitted": frozenset({"ready", "failed"}),
    "ready": frozenset(),
    "failed": frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def _parse_ts(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(str(raw))


def derive_job_state(states: Iterable[str]) -> JobState:
    """
    Job state from the multiset of its task states. Order-independent by
    construction; an empty task list counts as failed.
    """
    counts = Counter(states)
    total = sum(counts.values())
    if total == 0:
        return "failed"
    if counts["pending"] or counts["submitted"]:
        return "processing"
    if counts["ready"] == total:
        return "completed"
    if counts["failed"] == total:
        return "failed"
    return "partial"


@dataclass(frozen=True)
class SourceImageRef:
    kind: Literal["library", "url"]
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "value": self.value}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SourceImageRef":
        return cls(raw["kind"], str(raw["value"]))


@dataclass
class Task:
    index: int
    pose: CameraPose
    prompt: str
    seed: int
    state: TaskState = "pending"
    external_task_id: Optional[str] = None
    artifact_ref: Optional[str] = None
    error: Optional[Dict[str, str]] = None
    submitted_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None
    poll_failures: int = 0

    def _move(self, target: TaskState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"task {self.index}: {self.state} -> {target} is not allowed")
        self.state = target

    def mark_submitted(self, external_task_id: str, at: datetime) -> None:
        self._move("submitted")
        self.external_task_id = external_task_id
        self.submitted_at = at
        self.poll_failures = 0

    def mark_ready(self, artifact_ref: str) -> None:
        self._move("ready")
        self.artifact_ref = artifact_ref

    def mark_failed(self, code: str, message: str) -> None:
        self._move("failed")
        self.error = {"code": code, "message": message}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "pose": self.pose.to_dict(),
            "prompt": self.prompt,
            "seed": self.seed,
            "state": self.state,
            "externalTaskId": self.external_task_id,
            "artifactRef": self.artifact_ref,
            "error": dict(self.error) if self.error else None,
            "submittedAt": _iso(self.submitted_at),
            "lastPolledAt": _iso(self.last_polled_at),
            "pollFailures": self.poll_failures,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Task":
        state = raw.get("state") or "pending"
        if state not in TASK_STATES:
            raise ValueError(f"unknown task state {state!r}")
        return cls(
            index=int(raw["index"]),
            pose=CameraPose.from_dict(raw["pose"]),
            prompt=str(raw.get("prompt") or ""),
            seed=int(raw["seed"]),
            state=state,
            external_task_id=raw.get("externalTaskId"),
            artifact_ref=raw.get("artifactRef"),
            error=dict(raw["error"]) if raw.get("error") else None,
            submitted_at=_parse_ts(raw.get("submittedAt")),
            last_polled_at=_parse_ts(raw.get("lastPolledAt")),
            poll_failures=int(raw.get("pollFailures") or 0),
        )


@dataclass
class Job:
    id: str
    source: SourceImageRef
    options: GenerationOptions
    tasks: List[Task]
    preset_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def state(self) -> JobState:
        return derive_job_state(t.state for t in self.tasks)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES

    def tasks_in(self, state: TaskState) -> List[Task]:
        return [t for t in self.tasks if t.state == state]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state,
            "source": self.source.to_dict(),
            "presetId": self.preset_id,
            "options": self.options.to_dict(),
            "tasks": [t.to_dict() for t in self.tasks],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Job":
        # "state" in the stored document is informational only; it is re-derived.
        return cls(
            id=str(raw["id"]),
            source=SourceImageRef.from_dict(raw["source"]),
            options=GenerationOptions.from_dict(raw.get("options") or {}),
            tasks=[Task.from_dict(t) for t in raw.get("tasks") or []],
            preset_id=raw.get("presetId"),
            created_at=_parse_ts(raw.get("createdAt")) or utcnow(),
            updated_at=_parse_ts(raw.get("updatedAt")) or utcnow(),
        )
