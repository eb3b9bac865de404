from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query, Request

from dream_envelopes import ToolEnvelope

from ..jobs.orchestrator import JobOrchestrator
from ..ops.errors import OrchestratorError, ValidationFailed
from ..tools_schema import get_tool_introspection_registry, schema_hash
from .multiangle import failure_for, parse_generate_request, request_id


router = APIRouter()
log = logging.getLogger(__name__)


@router.get("/tool.list")
async def tool_list(request: Request):
    tools = []
    for n, meta in get_tool_introspection_registry().items():
        tools.append(
            {
                "name": n,
                "version": meta.get("version"),
                "kind": meta.get("kind"),
                "description": meta.get("description"),
                "describe_url": f"/tool.describe?name={n}",
            }
        )
    return ToolEnvelope.success(result={"tools": tools}, request_id=request_id(request))


def _describe(name: str, rid: str):
    key = (name or "").strip()
    meta = get_tool_introspection_registry([key]).get(key)
    if meta is None:
        return ToolEnvelope.failure(code="tool_not_found", message=f"unknown tool '{name}'", request_id=rid, status=404)
    shash = schema_hash(meta["schema"])
    env = ToolEnvelope.success(
        result={
            "name": meta["name"],
            "version": meta.get("version"),
            "kind": meta.get("kind"),
            "schema": meta["schema"],
            "schema_hash": shash,
            "notes": meta.get("notes"),
            "examples": meta.get("examples", []),
        },
        request_id=rid,
    )
    env.headers["ETag"] = f'W/"{shash}"'
    return env


@router.get("/tool.describe")
async def tool_describe(request: Request, name: str = Query(..., alias="name")):
    return _describe(name, request_id(request))


@router.post("/tool.describe")
async def tool_describe_post(body: Dict[str, Any], request: Request):
    return _describe(str((body or {}).get("name") or ""), request_id(request))


async def _run_tool(orch: JobOrchestrator, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    if name == "multiangle.presets":
        return {"presets": orch.catalog.list_presets()}
    if name == "multiangle.generate":
        source, preset_id, poses, options = parse_generate_request(args)
        job = await orch.generate(source, preset_id=preset_id, poses=poses, options=options)
        return {"job_id": job.id, "state": job.state, "task_count": len(job.tasks)}
    if name in ("multiangle.status", "multiangle.delete"):
        job_id = args.get("job_id")
        if not isinstance(job_id, str) or not job_id:
            raise ValidationFailed("job_id is required")
        if name == "multiangle.status":
            return (await orch.get_job_status(job_id)).to_dict()
        await orch.delete_job(job_id)
        return {"deleted": job_id}
    raise KeyError(name)


@router.post("/tool.run")
async def tool_run(body: Dict[str, Any], request: Request):
    rid = request_id(request)
    name = str((body or {}).get("name") or "").strip()
    args = (body or {}).get("args") or (body or {}).get("arguments") or {}
    if name not in get_tool_introspection_registry([name]):
        return ToolEnvelope.failure(code="tool_not_found", message=f"unknown tool '{name}'", request_id=rid, status=404)
    if not isinstance(args, dict):
        return ToolEnvelope.failure(code="invalid_args", message="args must be an object", request_id=rid, status=422)
    try:
        result = await _run_tool(request.app.state.orchestrator, name, args)
    except OrchestratorError as ex:
        log.info("[tool.run] %s failed: %s: %s", name, ex.code, ex.message)
        return failure_for(ex, rid)
    return ToolEnvelope.success(result=result, request_id=rid)
