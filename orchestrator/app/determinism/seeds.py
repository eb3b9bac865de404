from __future__ import annotations

from typing import Optional

from xxhash import xxh64

from ..multiangle.catalog import CameraPose


SEED_BITS = 31


def seed_from_tag(tag: str) -> int:
    """Deterministic 31-bit seed from a tag string."""
    return int(xxh64(tag.encode("utf-8")).intdigest()) & ((1 << SEED_BITS) - 1)


def seed_for_task(job_id: str, pose: CameraPose, requested: Optional[int] = None) -> int:
    """
    Seed recorded on a Task at creation time. An explicit request seed is shared by
    every pose of the Job; otherwise each pose gets its own seed derived from the job id.
    """
    if requested is not None:
        return int(requested)
    return seed_from_tag(f"multiangle|{job_id}|{pose}")
