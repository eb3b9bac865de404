"""
Camera pose catalog for multi-angle generation.

Three independent axes (8 azimuths x 4 elevations x 3 distances = 96 poses)
matching the poses the multiple-angles LoRA was trained on, plus named
presets that select ordered subsets of them. The catalog is built once at
startup and handed to the orchestrator; it is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..ops.errors import InvalidPose, UnknownPreset


@dataclass(frozen=True)
class AxisValue:
    name: str
    value: float
    label: str
    phrase: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "label": self.label, "prompt": self.phrase}


AZIMUTHS: Tuple[AxisValue, ...] = (
    AxisValue("front", 0, "Front", "front view"),
    AxisValue("front-right", 45, "Front right", "front-right quarter view"),
    AxisValue("right", 90, "Right side", "right side view"),
    AxisValue("back-right", 135, "Back right", "back-right quarter view"),
    AxisValue("back", 180, "Back", "back view"),
    AxisValue("back-left", 225, "Back left", "back-left quarter view"),
    AxisValue("left", 270, "Left side", "left side view"),
    AxisValue("front-left", 315, "Front left", "front-left quarter view"),
)

ELEVATIONS: Tuple[AxisValue, ...] = (
    AxisValue("low", -30, "Low angle", "low-angle shot"),
    AxisValue("eye", 0, "Eye level", "eye-level shot"),
    AxisValue("elevated", 30, "Elevated", "elevated shot"),
    AxisValue("high", 60, "High angle", "high-angle shot"),
)

DISTANCES: Tuple[AxisValue, ...] = (
    AxisValue("close", 0.6, "Close-up", "close-up"),
    AxisValue("medium", 1.0, "Medium", "medium shot"),
    AxisValue("wide", 1.8, "Wide", "wide shot"),
)

AXES: Mapping[str, Tuple[AxisValue, ...]] = MappingProxyType(
    {"azimuth": AZIMUTHS, "elevation": ELEVATIONS, "distance": DISTANCES}
)


@dataclass(frozen=True)
class CameraPose:
    azimuth: str
    elevation: str
    distance: str

    def to_dict(self) -> Dict[str, str]:
        return {"azimuth": self.azimuth, "elevation": self.elevation, "distance": self.distance}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CameraPose":
        return cls(str(raw["azimuth"]), str(raw["elevation"]), str(raw["distance"]))

    def __str__(self) -> str:
        return f"{self.azimuth}/{self.elevation}/{self.distance}"


@dataclass(frozen=True)
class AnglePreset:
    id: str
    label: str
    description: str
    poses: Tuple[CameraPose, ...]

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.label,
            "description": self.description,
            "angleCount": len(self.poses),
        }


def axis_value(axis: str, name: str) -> AxisValue:
    for v in AXES[axis]:
        if v.name == name:
            return v
    raise InvalidPose(f"unknown {axis} '{name}'", details={"axis": axis, "value": name})


def validate_pose(pose: CameraPose) -> CameraPose:
    axis_value("azimuth", pose.azimuth)
    axis_value("elevation", pose.elevation)
    axis_value("distance", pose.distance)
    return pose


def all_poses() -> List[CameraPose]:
    return [CameraPose(a.name, e.name, d.name) for a in AZIMUTHS for e in ELEVATIONS for d in DISTANCES]


def _ring(elevation: str, distance: str) -> List[CameraPose]:
    return [CameraPose(a.name, elevation, distance) for a in AZIMUTHS]


def _p(azimuth: str, elevation: str, distance: str) -> CameraPose:
    return CameraPose(azimuth, elevation, distance)


def default_presets() -> List[AnglePreset]:
    return [
        AnglePreset(
            "product-basic",
            "Product basic",
            "8 horizontal angles, eye level, medium distance",
            tuple(_ring("eye", "medium")),
        ),
        AnglePreset(
            "product-full",
            "Product full",
            "8 horizontal angles plus top-down views",
            tuple(_ring("eye", "medium") + [_p("front", "elevated", "medium"), _p("front", "high", "wide")]),
        ),
        AnglePreset(
            "character-ortho",
            "Character three-view",
            "Front, side and back",
            (_p("front", "eye", "medium"), _p("right", "eye", "medium"), _p("back", "eye", "medium")),
        ),
        AnglePreset(
            "character-full",
            "Character full",
            "8 angles plus a close-up",
            tuple(_ring("eye", "medium") + [_p("front", "eye", "close"), _p("front-right", "low", "medium")]),
        ),
        AnglePreset(
            "hero-shots",
            "Hero shots",
            "Dramatic low-angle coverage",
            (
                _p("front", "low", "medium"),
                _p("front-right", "low", "medium"),
                _p("front-left", "low", "medium"),
                _p("front", "low", "close"),
                _p("front", "low", "wide"),
            ),
        ),
        AnglePreset(
            "detail-closeups",
            "Detail close-ups",
            "Close-ups from several angles",
            (
                _p("front", "eye", "close"),
                _p("front-right", "eye", "close"),
                _p("right", "eye", "close"),
                _p("front", "elevated", "close"),
            ),
        ),
        AnglePreset(
            "panoramic",
            "Panoramic",
            "Wide orbit plus an overhead view",
            (
                _p("front", "eye", "wide"),
                _p("front-right", "eye", "wide"),
                _p("right", "eye", "wide"),
                _p("back", "eye", "wide"),
                _p("front", "high", "wide"),
            ),
        ),
    ]


DEFAULT_PRESET_ID = "product-basic"


class PoseCatalog:
    """Read-only registry of presets over the fixed pose axes."""

    def __init__(self, presets: Iterable[AnglePreset], default_preset_id: str = DEFAULT_PRESET_ID):
        table: Dict[str, AnglePreset] = {}
        for preset in presets:
            if preset.id in table:
                raise ValueError(f"duplicate preset id {preset.id!r}")
            if not preset.poses:
                raise ValueError(f"preset {preset.id!r} has no poses")
            if len(set(preset.poses)) != len(preset.poses):
                raise ValueError(f"preset {preset.id!r} repeats a pose")
            for pose in preset.poses:
                validate_pose(pose)
            table[preset.id] = preset
        if default_preset_id not in table:
            raise ValueError(f"default preset {default_preset_id!r} is not registered")
        self._presets: Mapping[str, AnglePreset] = MappingProxyType(table)
        self.default_preset_id = default_preset_id

    def get_preset(self, preset_id: str) -> AnglePreset:
        preset = self._presets.get(preset_id)
        if preset is None:
            raise UnknownPreset(f"unknown preset: {preset_id}", details={"preset_id": preset_id})
        return preset

    def list_presets(self) -> List[Dict[str, Any]]:
        return [p.summary() for p in self._presets.values()]

    def parse_pose(self, raw: Any) -> CameraPose:
        if isinstance(raw, CameraPose):
            return validate_pose(raw)
        if not isinstance(raw, Mapping):
            raise InvalidPose("pose must be an object with azimuth, elevation and distance")
        missing = [k for k in AXES if not isinstance(raw.get(k), str)]
        if missing:
            raise InvalidPose(f"pose is missing or has a non-string {', '.join(missing)}", details={"missing": missing})
        return validate_pose(CameraPose.from_dict(raw))

    def resolve_poses(self, preset_id: Optional[str] = None, poses: Optional[Sequence[Any]] = None) -> List[CameraPose]:
        """
        Turn a preset id or an explicit pose list into a concrete, ordered pose list.

        A preset wins over explicit poses; with neither, the default preset is used.
        The result is a fresh list, so later catalog changes never reach existing Jobs.
        """
        if preset_id:
            return list(self.get_preset(preset_id).poses)
        if not poses:
            return list(self.get_preset(self.default_preset_id).poses)
        resolved = [self.parse_pose(p) for p in poses]
        seen = set()
        for pose in resolved:
            if pose in seen:
                raise InvalidPose(f"pose {pose} requested twice", details={"pose": pose.to_dict()})
            seen.add(pose)
        return resolved

    def camera_config(self) -> Dict[str, Any]:
        return {axis: [v.to_dict() for v in values] for axis, values in AXES.items()}


def default_catalog() -> PoseCatalog:
    return PoseCatalog(default_presets())
