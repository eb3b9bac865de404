"""
Process settings.

Read once from the environment at startup and injected into the application
factory; nothing else in the service reads os.environ.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

log = logging.getLogger(__name__)


def _env_str(env: Mapping[str, str], key: str, default: str) -> str:
    raw = env.get(key)
    if raw is None:
        return default
    return raw.strip()


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        log.warning("bad %s=%r; defaulting to %s", key, raw, default)
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        log.warning("bad %s=%r; defaulting to %s", key, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    comfy_base_url: str = "http://localhost:8188"
    comfy_timeout_s: float = 30.0
    comfy_probe_timeout_s: float = 5.0
    submit_delay_s: float = 1.0
    poll_failure_threshold: int = 3
    ckpt_name: str = "qwen-image-edit-2511.safetensors"
    lora_name: str = "qwen-image-edit-2511-multiple-angles-lora.safetensors"
    negative_prompt: str = "blurry, low quality, distorted, deformed"
    data_dir: str = "./data"
    library_dir: str = "./data/images"
    job_store: str = "json"
    postgres_host: Optional[str] = None
    postgres_port: int = 5432
    postgres_db: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    log_level: str = "INFO"
    log_file: str = "./data/logs/orchestrator.log"

    @property
    def jobs_path(self) -> str:
        return os.path.join(self.data_dir, "db.json")

    @property
    def artifact_dir(self) -> str:
        return os.path.join(self.data_dir, "multiangle")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        host = _env_str(env, "COMFYUI_HOST", "localhost")
        port = _env_int(env, "COMFYUI_PORT", 8188)
        base = (
            _env_str(env, "COMFYUI_BASE_URL", "")
            or _env_str(env, "COMFYUI_API_URL", "")
            or f"http://{host}:{port}"
        ).rstrip("/")
        data_dir = _env_str(env, "DATA_DIR", "./data") or "./data"
        threshold = _env_int(env, "MULTIANGLE_POLL_FAILURE_THRESHOLD", 3)
        if threshold < 0:
            log.warning("bad MULTIANGLE_POLL_FAILURE_THRESHOLD=%r; defaulting to 3", threshold)
            threshold = 3
        delay = _env_float(env, "MULTIANGLE_SUBMIT_DELAY_S", 1.0)
        if delay < 0:
            log.warning("bad MULTIANGLE_SUBMIT_DELAY_S=%r; defaulting to 1.0", delay)
            delay = 1.0
        store = _env_str(env, "JOB_STORE", "json").lower()
        if store not in ("json", "memory", "postgres"):
            log.warning("bad JOB_STORE=%r; defaulting to json", store)
            store = "json"
        return cls(
            comfy_base_url=base,
            comfy_timeout_s=_env_float(env, "COMFY_TIMEOUT_S", 30.0),
            comfy_probe_timeout_s=_env_float(env, "COMFY_PROBE_TIMEOUT_S", 5.0),
            submit_delay_s=delay,
            poll_failure_threshold=threshold,
            ckpt_name=_env_str(env, "MULTIANGLE_CKPT", cls.ckpt_name),
            lora_name=_env_str(env, "MULTIANGLE_LORA", cls.lora_name),
            negative_prompt=_env_str(env, "MULTIANGLE_NEGATIVE", cls.negative_prompt),
            data_dir=data_dir,
            library_dir=_env_str(env, "LIBRARY_DIR", "") or os.path.join(data_dir, "images"),
            job_store=store,
            postgres_host=env.get("POSTGRES_HOST") or None,
            postgres_port=_env_int(env, "POSTGRES_PORT", 5432),
            postgres_db=env.get("POSTGRES_DB") or None,
            postgres_user=env.get("POSTGRES_USER") or None,
            postgres_password=env.get("POSTGRES_PASSWORD") or None,
            log_level=(_env_str(env, "LOG_LEVEL", "INFO") or "INFO").upper(),
            # Empty ORCH_LOG_FILE disables the file handler.
            log_file=_env_str(env, "ORCH_LOG_FILE", os.path.join(data_dir, "logs", "orchestrator.log")),
        )
