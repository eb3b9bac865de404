from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..ops.errors import InvalidOptions


STRENGTH_RANGE = (0.5, 1.0)
STEPS_RANGE = (10, 50)
CFG_RANGE = (1.0, 15.0)
SEED_MAX = 0xFFFFFFFFFFFFFFFF
# Callers historically send -1 for "pick a seed for me".
RANDOM_SEED = -1
# The UI sends the LoRA weight as "loraStrength"; the tool surface uses "strength".
STRENGTH_KEYS = ("strength", "loraStrength", "lora_strength")


@dataclass(frozen=True)
class GenerationOptions:
    strength: float = 0.9
    steps: int = 20
    cfg: float = 7.0
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"strength": self.strength, "steps": self.steps, "cfg": self.cfg, "seed": self.seed}

    @classmethod
    def parse(cls, raw: Mapping[str, Any] | None) -> "GenerationOptions":
        """
        Validate a request's options bag. Out-of-range values are rejected, never clamped;
        every offending field is reported at once in `details.fields`.
        """
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise InvalidOptions("options must be an object")
        problems: List[Dict[str, Any]] = []
        strength_key = next((k for k in STRENGTH_KEYS if raw.get(k) is not None), "strength")
        strength = _number(raw, strength_key, cls.strength, STRENGTH_RANGE, problems)
        steps = _integer(raw, "steps", cls.steps, STEPS_RANGE, problems)
        cfg = _number(raw, "cfg", cls.cfg, CFG_RANGE, problems)
        seed = _seed(raw.get("seed"), problems)
        if problems:
            names = ", ".join(p["field"] for p in problems)
            raise InvalidOptions(f"invalid generation options: {names}", details={"fields": problems})
        return cls(strength=float(strength), steps=int(steps), cfg=float(cfg), seed=seed)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "GenerationOptions":
        return cls.parse(raw)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _echo(v: Any) -> Any:
    # NaN/inf and arbitrary objects are not JSON-safe in an error payload.
    if isinstance(v, float) and (v != v or v in (float("inf"), float("-inf"))):
        return repr(v)
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    return repr(v)


def _number(raw: Mapping[str, Any], key: str, default: float, bounds, problems: List[Dict[str, Any]]) -> float:
    v = raw.get(key)
    if v is None:
        return default
    lo, hi = bounds
    if not _is_number(v) or v != v or not (lo <= v <= hi):
        problems.append({"field": key, "value": _echo(v), "min": lo, "max": hi})
        return default
    return float(v)


def _integer(raw: Mapping[str, Any], key: str, default: int, bounds, problems: List[Dict[str, Any]]) -> int:
    v = raw.get(key)
    if v is None:
        return default
    lo, hi = bounds
    # 20.0 is accepted as 20; 20.5 is not an integer step count.
    if not _is_number(v) or v != v or not (lo <= v <= hi) or float(v) != int(v):
        problems.append({"field": key, "value": _echo(v), "min": lo, "max": hi})
        return default
    return int(v)


def _seed(v: Any, problems: List[Dict[str, Any]]) -> Optional[int]:
    if v is None or v == RANDOM_SEED:
        return None
    if isinstance(v, bool) or not isinstance(v, int) or not (0 <= v <= SEED_MAX):
        problems.append({"field": "seed", "value": _echo(v), "min": 0, "max": SEED_MAX})
        return None
    return v
