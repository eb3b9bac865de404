from __future__ import annotations

from .tool_envelope import SCHEMA_VERSION, ToolEnvelope, build_error_envelope, build_success_envelope, new_request_id

__all__ = [
    "SCHEMA_VERSION",
    "ToolEnvelope",
    "build_success_envelope",
    "build_error_envelope",
    "new_request_id",
]
