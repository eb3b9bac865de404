from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


SCHEMA_VERSION = 1


def new_request_id() -> str:
    return uuid.uuid4().hex


def build_success_envelope(*, result: Any, request_id: str) -> Dict[str, Any]:
    """
    Canonical success envelope for every route of the service.

    `result` is usually a mapping; lists are passed through unchanged so listing
    routes can return them directly.
    """
    res_obj: Any = dict(result) if isinstance(result, dict) else (result if result is not None else {})
    return {
        "schema_version": SCHEMA_VERSION,
        "request_id": request_id if isinstance(request_id, str) else "",
        "ok": True,
        "result": res_obj,
        "error": None,
    }


def build_error_envelope(
    *,
    code: str,
    message: str,
    request_id: str,
    status: int,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Canonical error envelope.

    HTTP status is always 200; semantic status lives on error.status.
    """
    return {
        "schema_version": SCHEMA_VERSION,
        "request_id": request_id if isinstance(request_id, str) else "",
        "ok": False,
        "result": None,
        "error": {
            "code": code,
            "message": message,
            "status": int(status),
            "details": dict(details or {}),
        },
    }


class ToolEnvelope:
    """JSONResponse wrappers around the canonical envelope builders."""

    @staticmethod
    def success(*, result: Any, request_id: str) -> JSONResponse:
        return JSONResponse(build_success_envelope(result=result, request_id=request_id), status_code=200)

    @staticmethod
    def failure(
        *,
        code: str,
        message: str,
        request_id: str,
        status: int,
        details: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        env = build_error_envelope(code=code, message=message, request_id=request_id, status=int(status), details=details)
        return JSONResponse(env, status_code=200)
