from __future__ import annotations

from typing import Any, Dict


class OrchestratorError(Exception):
    code = "orchestrator_error"
    status = 500

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def as_record(self) -> Dict[str, str]:
        """Shape stored on a Task's `error` field."""
        return {"code": self.code, "message": self.message}


# ---- validation: raised before any Job is persisted ----

class ValidationFailed(OrchestratorError):
    code = "validation_failed"
    status = 400


class UnknownPreset(ValidationFailed):
    code = "unknown_preset"


class InvalidPose(ValidationFailed):
    code = "invalid_pose"


class InvalidOptions(ValidationFailed):
    code = "invalid_options"


class SourceUnavailable(OrchestratorError):
    code = "source_unavailable"
    status = 404


class JobNotFound(OrchestratorError):
    code = "job_not_found"
    status = 404


# ---- compute backend: recorded on Tasks, never thrown out of status queries ----

class ComputeError(OrchestratorError):
    code = "compute_error"
    status = 502


class BackendUnavailable(ComputeError):
    code = "backend_unavailable"
    status = 503


class UploadFailed(ComputeError):
    code = "upload_failed"


class SubmitFailed(ComputeError):
    code = "submit_failed"


class PollFailed(ComputeError):
    code = "poll_failed"


class FetchFailed(ComputeError):
    code = "fetch_failed"


class TaskTimeout(ComputeError):
    code = "poll_timeout"
    status = 504


class InvalidTransition(ValueError):
    pass

