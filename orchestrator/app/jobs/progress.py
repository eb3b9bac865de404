from __future__ import annotations

from collections import Counter
from typing import Any, Dict

from .state import Job


def summary(job: Job) -> Dict[str, Any]:
    """Listing row for a Job: counts per task state and a 0..1 progress fraction."""
    counts = Counter(t.state for t in job.tasks)
    total = len(job.tasks)
    done = counts["ready"] + counts["failed"]
    return {
        "id": job.id,
        "state": job.state,
        "presetId": job.preset_id,
        "source": job.source.to_dict(),
        "taskCount": total,
        "readyCount": counts["ready"],
        "failedCount": counts["failed"],
        "pendingCount": counts["pending"] + counts["submitted"],
        "progress": round(done / total, 3) if total else 1.0,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
    }
