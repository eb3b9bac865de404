from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from dream_envelopes import ToolEnvelope, new_request_id

from ..jobs.orchestrator import JobOrchestrator
from ..jobs.progress import summary
from ..jobs.state import SourceImageRef, TERMINAL_JOB_STATES
from ..multiangle.catalog import AXES, PoseCatalog
from ..multiangle.graph_builder import pose_prompt
from ..ops.errors import InvalidPose, OrchestratorError, ValidationFailed

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/multiangle")

LORA_INFO = {
    "name": "Qwen-Image-Edit-2511-Multiple-Angles-LoRA",
    "version": "1.0.0",
    "totalPoses": 96,
    "description": "96 camera poses: 8 azimuths x 4 elevations x 3 distances",
}


def request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return rid if isinstance(rid, str) and rid else new_request_id()


def failure_for(ex: OrchestratorError, rid: str) -> JSONResponse:
    return ToolEnvelope.failure(code=ex.code, message=ex.message, request_id=rid, status=ex.status, details=ex.details)


def _orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def _catalog(request: Request) -> PoseCatalog:
    return request.app.state.orchestrator.catalog


def _pick(body: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = body.get(k)
        if v is not None and v != "":
            return v
    return None


def parse_generate_request(body: Mapping[str, Any]) -> Tuple[SourceImageRef, Optional[str], Optional[List[Any]], Any]:
    """
    Accepts the UI's camelCase fields (imageId, imageUrl, presetId, angles) and the
    snake_case names used by the tool surface. A library id wins over a URL.
    """
    image_id = _pick(body, "imageId", "image_id")
    image_url = _pick(body, "imageUrl", "image_url")
    if image_id is not None:
        source = SourceImageRef("library", str(image_id))
    elif image_url is not None:
        source = SourceImageRef("url", str(image_url))
    else:
        raise ValidationFailed("image_id or image_url is required")
    preset_id = _pick(body, "presetId", "preset_id")
    poses = _pick(body, "poses", "angles")
    if poses is not None and not isinstance(poses, list):
        raise InvalidPose("poses must be a list of {azimuth, elevation, distance}")
    return source, (str(preset_id) if preset_id is not None else None), poses, body.get("options")


@router.get("/config")
async def multiangle_config(request: Request):
    catalog = _catalog(request)
    return ToolEnvelope.success(
        result={"camera": catalog.camera_config(), "presets": catalog.list_presets(), "loraInfo": LORA_INFO},
        request_id=request_id(request),
    )


@router.get("/presets")
async def multiangle_presets(request: Request):
    return ToolEnvelope.success(result={"presets": _catalog(request).list_presets()}, request_id=request_id(request))


@router.get("/presets/{preset_id}")
async def multiangle_preset(preset_id: str, request: Request):
    preset = _catalog(request).get_preset(preset_id)
    angles = [dict(p.to_dict(), prompt=pose_prompt(p)) for p in preset.poses]
    return ToolEnvelope.success(result=dict(preset.summary(), angles=angles), request_id=request_id(request))


@router.post("/prompt")
async def multiangle_prompt(body: Dict[str, Any], request: Request):
    defaults = {"azimuth": "front", "elevation": "eye", "distance": "medium"}
    raw = {k: (body.get(k) or defaults[k]) for k in AXES}
    pose = _catalog(request).parse_pose(raw)
    return ToolEnvelope.success(result=dict(pose.to_dict(), prompt=pose_prompt(pose)), request_id=request_id(request))


@router.post("/generate")
async def multiangle_generate(body: Dict[str, Any], request: Request):
    source, preset_id, poses, options = parse_generate_request(body)
    job = await _orchestrator(request).generate(source, preset_id=preset_id, poses=poses, options=options)
    return ToolEnvelope.success(result={"jobId": job.id, "job": job.to_dict()}, request_id=request_id(request))


@router.get("/jobs")
async def multiangle_jobs(
    request: Request,
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    if status and status not in TERMINAL_JOB_STATES and status != "processing":
        raise ValidationFailed(f"unknown job status filter {status!r}")
    jobs, total = await _orchestrator(request).list_jobs(state=status, limit=limit, offset=offset)
    return ToolEnvelope.success(result={"jobs": [summary(j) for j in jobs], "total": total}, request_id=request_id(request))


@router.get("/jobs/{job_id}")
async def multiangle_job(job_id: str, request: Request):
    job = await _orchestrator(request).get_job_status(job_id)
    return ToolEnvelope.success(result=job.to_dict(), request_id=request_id(request))


@router.delete("/jobs/{job_id}")
async def multiangle_delete(job_id: str, request: Request):
    await _orchestrator(request).delete_job(job_id)
    return ToolEnvelope.success(result={"deleted": job_id}, request_id=request_id(request))
