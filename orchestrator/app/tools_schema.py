from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, List, Optional

from .multiangle.catalog import AZIMUTHS, DISTANCES, ELEVATIONS
from .multiangle.options import CFG_RANGE, STEPS_RANGE, STRENGTH_RANGE


def _pose_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "azimuth": {"type": "string", "enum": [v.name for v in AZIMUTHS]},
            "elevation": {"type": "string", "enum": [v.name for v in ELEVATIONS]},
            "distance": {"type": "string", "enum": [v.name for v in DISTANCES]},
        },
        "required": ["azimuth", "elevation", "distance"],
    }


def _options_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "strength": {"type": "number", "minimum": STRENGTH_RANGE[0], "maximum": STRENGTH_RANGE[1]},
            "steps": {"type": "integer", "minimum": STEPS_RANGE[0], "maximum": STEPS_RANGE[1]},
            "cfg": {"type": "number", "minimum": CFG_RANGE[0], "maximum": CFG_RANGE[1]},
            "seed": {"type": "integer", "description": "-1 or omitted picks a seed per pose"},
        },
    }


def get_builtin_tools_schema() -> List[Dict[str, Any]]:
    """
    OpenAI-style tools schema for the multi-angle tools an LLM may call through
    /tool.run. Keep this file data-only to avoid circular imports.
    """
    return [
        {
            "type": "function",
            "function": {
                "name": "multiangle.presets",
                "description": "List the camera angle presets and how many poses each generates.",
                "parameters": {"type": "object", "properties": {}, "required": []},
            },
        },
        {
            "type": "function",
            "function": {
                "name": "multiangle.generate",
                "description": "Start a multi-angle generation job for one source image.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "image_id": {"type": "string"},
                        "image_url": {"type": "string"},
                        "preset_id": {"type": "string"},
                        "poses": {"type": "array", "items": _pose_schema()},
                        "options": _options_schema(),
                    },
                    "required": [],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": "multiangle.status",
                "description": "Current state of a multi-angle job, advancing it against the backend.",
                "parameters": {
                    "type": "object",
                    "properties": {"job_id": {"type": "string"}},
                    "required": ["job_id"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": "multiangle.delete",
                "description": "Delete a multi-angle job and its downloaded images.",
                "parameters": {
                    "type": "object",
                    "properties": {"job_id": {"type": "string"}},
                    "required": ["job_id"],
                },
            },
        },
    ]


_INTROSPECTION_NOTES: Dict[str, str] = {
    "multiangle.generate": (
        "Exactly one of image_id (library asset) or image_url. preset_id wins over poses; with neither, "
        "the product-basic preset is used. Returns job_id immediately; poll multiangle.status until state "
        "is completed, partial or failed."
    ),
    "multiangle.status": "Returns the job with one entry per pose; failed tasks carry error.code and error.message.",
    "multiangle.delete": "Best-effort: tasks already queued on the backend are not cancelled.",
}

_INTROSPECTION_EXAMPLES: Dict[str, List[Dict[str, Any]]] = {
    "multiangle.generate": [
        {"args": {"image_id": "hero-01", "preset_id": "character-ortho", "options": {"strength": 0.9, "steps": 20, "cfg": 7.0}}},
    ],
}


def get_tool_introspection_registry(tool_names: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Stable metadata registry used by /tool.list and /tool.describe, derived from
    get_builtin_tools_schema() so the JSON Schema contracts stay single-sourced.
    """
    builtins = get_builtin_tools_schema()
    by_name = {t["function"]["name"]: t["function"] for t in builtins}
    names = list(tool_names) if tool_names is not None else list(by_name)
    out: Dict[str, Dict[str, Any]] = {}
    for nm in names:
        nm_clean = str(nm or "").strip()
        fn = by_name.get(nm_clean)
        if not fn:
            continue
        out[nm_clean] = {
            "name": nm_clean,
            "version": "1",
            "kind": "image",
            "description": fn.get("description", ""),
            "schema": fn.get("parameters") or {},
            "notes": _INTROSPECTION_NOTES.get(nm_clean, ""),
            "examples": _INTROSPECTION_EXAMPLES.get(nm_clean, []),
        }
    return out


def schema_hash(schema: Dict[str, Any]) -> str:
    compact = json.dumps(schema, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(compact).hexdigest()
