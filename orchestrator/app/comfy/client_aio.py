from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

import httpx

from ..ops.errors import FetchFailed, PollFailed, SubmitFailed, UploadFailed
from .assets import (
    ArtifactDescriptor,
    error_message,
    extract_outputs,
    is_completed,
    is_errored,
    normalize_history_entry,
    queue_position,
)

log = logging.getLogger(__name__)

BackendState = Literal["pending", "running", "succeeded", "failed"]


@dataclass(frozen=True)
class PollResult:
    state: BackendState
    artifact: Optional[ArtifactDescriptor] = None
    message: Optional[str] = None


def _body_preview(r: httpx.Response, limit: int = 2000) -> str:
    text = r.text or ""
    return text if len(text) <= limit else text[:limit] + "..."


class ComfyClient:
    """
    Async ComfyUI protocol client. Each call uses the fixed timeout and makes exactly
    one attempt; retry policy belongs to the caller. Stateless between calls apart
    from the pooled HTTP connection.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        probe_timeout_s: float = 5.0,
        upload_subfolder: str = "multiangle",
        client_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.probe_timeout_s = float(probe_timeout_s)
        self.upload_subfolder = upload_subfolder
        self.client_id = client_id or f"filmdream_multiangle_{uuid.uuid4().hex[:12]}"
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_s),
                transport=self._transport,
                trust_env=False,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def probe(self) -> bool:
        try:
            r = await self._client().get("/system_stats", timeout=self.probe_timeout_s)
        except httpx.HTTPError as ex:
            log.warning("[comfy.probe] %s unreachable: %s", self.base_url, ex)
            return False
        ok = 200 <= r.status_code < 300
        if not ok:
            log.warning("[comfy.probe] %s answered %s", self.base_url, r.status_code)
        return ok

    async def upload_asset(self, data: bytes, name: str) -> str:
        """Upload an input image; returns the name LoadImage nodes should reference."""
        files = {"image": (name, data, "application/octet-stream")}
        form = {"subfolder": self.upload_subfolder, "type": "input", "overwrite": "true"}
        try:
            r = await self._client().post("/upload/image", files=files, data=form)
        except httpx.HTTPError as ex:
            raise UploadFailed(f"/upload/image transport error: {ex}") from ex
        if r.status_code < 200 or r.status_code >= 300:
            raise UploadFailed(f"/upload/image {r.status_code}", details={"body": _body_preview(r)})
        try:
            obj = r.json()
        except ValueError as ex:
            raise UploadFailed("/upload/image returned non-JSON body", details={"body": _body_preview(r)}) from ex
        stored = obj.get("name") if isinstance(obj, dict) else None
        if not isinstance(stored, str) or not stored:
            raise UploadFailed("/upload/image response has no name", details={"body": _body_preview(r)})
        subfolder = obj.get("subfolder") or ""
        ref = f"{subfolder}/{stored}" if subfolder else stored
        log.info("[comfy.upload] name=%s bytes=%s ref=%s", name, len(data), ref)
        return ref

    async def submit(self, graph: Dict[str, Any]) -> str:
        payload = {"prompt": graph.get("prompt") or graph, "client_id": self.client_id}
        body_bytes = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        log.info("[comfy.submit] bytes=%s", len(body_bytes))
        try:
            r = await self._client().post("/prompt", content=body_bytes, headers={"Content-Type": "application/json"})
        except httpx.HTTPError as ex:
            raise SubmitFailed(f"/prompt transport error: {ex}") from ex
        if r.status_code < 200 or r.status_code >= 300:
            raise SubmitFailed(f"/prompt {r.status_code}", details={"body": _body_preview(r)})
        try:
            obj = r.json()
        except ValueError as ex:
            raise SubmitFailed("/prompt returned non-JSON body", details={"body": _body_preview(r)}) from ex
        if not isinstance(obj, dict):
            raise SubmitFailed("/prompt returned a non-object body", details={"body": _body_preview(r)})
        if obj.get("node_errors"):
            raise SubmitFailed("/prompt rejected the graph", details={"node_errors": obj.get("node_errors")})
        pid = obj.get("prompt_id") or obj.get("uuid") or obj.get("id")
        if not isinstance(pid, str) or not pid:
            raise SubmitFailed("missing prompt_id from comfy", details={"body": _body_preview(r)})
        return pid

    async def _get_json(self, path: str) -> Any:
        try:
            r = await self._client().get(path)
        except httpx.HTTPError as ex:
            raise PollFailed(f"{path} transport error: {ex}") from ex
        if r.status_code < 200 or r.status_code >= 300:
            raise PollFailed(f"{path} {r.status_code}", details={"body": _body_preview(r)})
        try:
            return r.json()
        except ValueError as ex:
            raise PollFailed(f"{path} returned non-JSON body") from ex

    async def poll_status(self, prompt_id: str) -> PollResult:
        """
        Current backend state of a prompt. PollFailed is raised only for transport or
        protocol problems; an unfinished prompt is reported as pending/running.
        """
        path = f"/history/{prompt_id}"
        entry = normalize_history_entry(await self._get_json(path), prompt_id)
        if not entry:
            queue = await self._get_json("/queue")
            if not isinstance(queue, dict):
                raise PollFailed(f"/queue returned {type(queue).__name__}, expected an object")
            where = queue_position(queue, prompt_id)
            return PollResult("running" if where == "running" else "pending")
        status = entry.get("status")
        if status is not None and not isinstance(status, dict):
            raise PollFailed(f"{path} has a malformed status block", details={"status": repr(status)[:200]})
        if is_errored(entry):
            return PollResult("failed", message=error_message(entry))
        if is_completed(entry):
            outputs = extract_outputs(entry)
            if not outputs:
                return PollResult("failed", message="generation completed without an output file")
            return PollResult("succeeded", artifact=outputs[0])
        return PollResult("running")

    async def fetch_artifact(self, artifact: ArtifactDescriptor) -> bytes:
        try:
            r = await self._client().get("/view", params=artifact.to_dict())
        except httpx.HTTPError as ex:
            raise FetchFailed(f"/view transport error: {ex}") from ex
        if r.status_code < 200 or r.status_code >= 300:
            raise FetchFailed(f"/view {r.status_code} for {artifact.filename}")
        if not r.content:
            raise FetchFailed(f"/view returned an empty body for {artifact.filename}")
        return r.content
