from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx

from ..ops.errors import SourceUnavailable

log = logging.getLogger(__name__)


# Output keys a node may report files under; image savers use "images", 3D savers "meshes".
OUTPUT_KEYS = ("images", "gifs", "meshes")


@dataclass(frozen=True)
class ArtifactDescriptor:
    filename: str
    subfolder: str = ""
    type: str = "output"

    def to_dict(self) -> Dict[str, str]:
        """Query parameters of the /view endpoint."""
        return {"filename": self.filename, "subfolder": self.subfolder, "type": self.type}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ArtifactDescriptor":
        return cls(str(raw["filename"]), str(raw.get("subfolder") or ""), str(raw.get("type") or "output"))


def normalize_history_entry(raw: Dict[str, Any], prompt_id: str) -> Dict[str, Any]:
    """
    Normalize a /history response into a single history entry for the given prompt_id.

    Handles common ComfyUI shapes:
      1) {"history": { "<pid>": {...} }, ...}
      2) {"<pid>": {...}, ...}
      3) {"outputs": {...}, "status": {...}, ...}  (direct entry)

    An empty mapping means the backend has no history for the prompt yet.
    """
    if not isinstance(raw, dict):
        return {}

    entry: Dict[str, Any] | None = None

    # Shape 1: nested history map
    hblock = raw.get("history")
    if isinstance(hblock, dict):
        entry = hblock.get(prompt_id)

    # Shape 2: top-level pid key
    if entry is None and isinstance(raw.get(prompt_id), dict):
        entry = raw[prompt_id]

    # Shape 3: direct entry with outputs/status
    if entry is None and isinstance(raw.get("outputs"), dict):
        entry = raw

    return entry if isinstance(entry, dict) else {}


def status_block(detail: Dict[str, Any]) -> Dict[str, Any]:
    """The entry's status mapping; a missing or non-mapping block reads as empty."""
    st = detail.get("status")
    return st if isinstance(st, dict) else {}


def is_completed(detail: Dict[str, Any]) -> bool:
    st = status_block(detail)
    if st.get("completed") is True:
        return True
    s = (st.get("status_str") or st.get("status") or "")
    return isinstance(s, str) and s.lower() in ("completed", "success", "succeeded", "done", "finished")


def is_errored(detail: Dict[str, Any]) -> bool:
    st = status_block(detail)
    s = st.get("status_str") or st.get("status") or ""
    return isinstance(s, str) and s.lower() == "error"


def error_message(detail: Dict[str, Any]) -> str:
    """
    Best human-readable reason from a failed entry's status.messages, which ComfyUI
    reports as [event_name, payload] pairs.
    """
    msgs = status_block(detail).get("messages")
    if not isinstance(msgs, list):
        return "generation failed"
    for m in msgs:
        if isinstance(m, (list, tuple)) and len(m) >= 2 and m[0] == "execution_error" and isinstance(m[1], dict):
            payload = m[1]
            text = payload.get("exception_message") or payload.get("exception_type") or "execution error"
            node = payload.get("node_type")
            return f"{node}: {str(text).strip()}" if node else str(text).strip()
    for m in msgs:
        if isinstance(m, str) and m:
            return m
    return "generation failed"


def extract_outputs(detail: Dict[str, Any]) -> List[ArtifactDescriptor]:
    """
    Flat list of output files from a single ComfyUI history entry, in node order.

    Handles both common 'outputs' shapes:
      - { node_id: [ {filename, type, subfolder}, ... ] }
      - { node_id: { "images": [ {filename, type, subfolder}, ... ], ... }, ... }
    """
    out: List[ArtifactDescriptor] = []
    outputs = detail.get("outputs") or {}
    if not isinstance(outputs, dict):
        return out

    for items in outputs.values():
        # Shape A: items is already a list of {filename, type, subfolder}
        if isinstance(items, list):
            candidates = items
        # Shape B: items is a mapping with "images": [...] (or meshes/gifs)
        elif isinstance(items, dict):
            candidates = []
            for key in OUTPUT_KEYS:
                if isinstance(items.get(key), list):
                    candidates.extend(items[key])
        else:
            continue

        for it in candidates:
            if not isinstance(it, dict):
                continue
            fn = it.get("filename")
            if not isinstance(fn, str) or not fn:
                continue
            out.append(ArtifactDescriptor.from_dict(it))

    return out


def queue_position(queue: Dict[str, Any], prompt_id: str) -> Optional[str]:
    """Return "running", "pending" or None for a prompt id in a /queue payload."""
    for key, state in (("queue_running", "running"), ("queue_pending", "pending")):
        rows = queue.get(key)
        if not isinstance(rows, list):
            continue
        for item in rows:
            # Queue rows are [number, prompt_id, prompt, extra_data, outputs_to_execute].
            if isinstance(item, (list, tuple)) and len(item) > 1 and item[1] == prompt_id:
                return state
    return None


class AssetResolver:
    """
    Turns a source image reference into (bytes, upload name).

    kind "library": an opaque id of a file under `library_dir`, matched by exact
    file name or by stem (`<id>.png`, `<id>.jpg`, ...).
    kind "url": an http(s) URL fetched with a single GET.
    """

    def __init__(self, library_dir: str, *, timeout_s: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.library_dir = os.path.abspath(library_dir)
        self.timeout_s = float(timeout_s)
        self._transport = transport

    async def resolve(self, kind: str, value: str) -> Tuple[bytes, str]:
        if kind == "library":
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._read_library, value)
        if kind == "url":
            return await self._fetch_url(value)
        raise SourceUnavailable(f"unsupported source kind {kind!r}")

    def _library_path(self, asset_id: str) -> Optional[str]:
        if not asset_id or os.path.basename(asset_id) != asset_id or asset_id in (".", ".."):
            return None
        exact = os.path.join(self.library_dir, asset_id)
        if os.path.isfile(exact):
            return exact
        try:
            names = sorted(os.listdir(self.library_dir))
        except FileNotFoundError:
            return None
        for name in names:
            stem, _ext = os.path.splitext(name)
            if stem == asset_id and os.path.isfile(os.path.join(self.library_dir, name)):
                return os.path.join(self.library_dir, name)
        return None

    def _read_library(self, asset_id: str) -> Tuple[bytes, str]:
        path = self._library_path(asset_id)
        if path is None:
            raise SourceUnavailable(f"image {asset_id!r} not found in library", details={"image_id": asset_id})
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as ex:
            raise SourceUnavailable(f"image {asset_id!r} unreadable: {ex}", details={"image_id": asset_id}) from ex
        return data, os.path.basename(path)

    async def _fetch_url(self, url: str) -> Tuple[bytes, str]:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SourceUnavailable(f"unsupported image url {url!r}", details={"image_url": url})
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport, trust_env=False) as client:
                r = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as ex:
            raise SourceUnavailable(f"fetching {url} failed: {ex}", details={"image_url": url}) from ex
        if r.status_code < 200 or r.status_code >= 300 or not r.content:
            raise SourceUnavailable(f"fetching {url} returned {r.status_code}", details={"image_url": url})
        name = os.path.basename(parsed.path) or "source.png"
        log.info("[assets.resolve] url=%s bytes=%s", url, len(r.content))
        return r.content, name
