from __future__ import annotations

from .seeds import seed_for_task, seed_from_tag

__all__ = ["seed_for_task", "seed_from_tag"]
