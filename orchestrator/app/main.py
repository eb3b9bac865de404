from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from dream_envelopes import ToolEnvelope, new_request_id

from .artifacts.store import ArtifactStore
from .comfy.assets import AssetResolver
from .comfy.client_aio import ComfyClient
from .config import Settings
from .jobs.orchestrator import JobOrchestrator
from .jobs.store import build_store
from .multiangle.catalog import default_catalog
from .multiangle.graph_builder import WorkflowProfile
from .ops.errors import OrchestratorError
from .ops.health import get_health
from .routes import multiangle as multiangle_routes
from .routes import tools as tool_routes


def _configure_logging(settings: Settings) -> str:
    """
    Single authoritative logging config for this service.

    Always logs to stdout; also logs to `settings.log_file` when it is set and
    can be opened. uvicorn's loggers propagate to root.
    """
    _level = getattr(logging, settings.log_level, logging.INFO)
    _log_file = settings.log_file

    _handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if _log_file:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(_log_file)), exist_ok=True)
            _handlers.append(logging.FileHandler(_log_file, encoding="utf-8"))
        except OSError as _ex:
            # Never fail module import due to file handler issues; stdout logging remains.
            sys.stderr.write(f"[orchestrator.logging] file logging disabled: {_ex}\n")
            _log_file = ""

    logging.captureWarnings(True)
    logging.basicConfig(
        level=_level,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(process)d/%(threadName)s %(name)s %(pathname)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=_handlers,
        force=True,
    )
    logging.getLogger(__name__).debug("logging configured level=%s file=%r", settings.log_level, _log_file)
    return _log_file


async def build_orchestrator(settings: Settings) -> JobOrchestrator:
    client = ComfyClient(
        settings.comfy_base_url,
        timeout_s=settings.comfy_timeout_s,
        probe_timeout_s=settings.comfy_probe_timeout_s,
    )
    return JobOrchestrator(
        catalog=default_catalog(),
        client=client,
        store=await build_store(settings),
        artifacts=ArtifactStore(settings.artifact_dir),
        resolver=AssetResolver(settings.library_dir, timeout_s=settings.comfy_timeout_s),
        profile=WorkflowProfile(
            ckpt_name=settings.ckpt_name,
            lora_name=settings.lora_name,
            negative_prompt=settings.negative_prompt,
        ),
        submit_delay_s=settings.submit_delay_s,
        poll_failure_threshold=settings.poll_failure_threshold,
    )


def create_app(settings: Optional[Settings] = None, orchestrator: Optional[JobOrchestrator] = None) -> FastAPI:
    """
    Application factory. With an injected orchestrator the app is usable
    immediately (tests drive it without a lifespan); otherwise the orchestrator
    is built from `settings` on startup and torn down on shutdown.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = await build_orchestrator(settings)
        orch: JobOrchestrator = app.state.orchestrator
        await orch.resume_pending()
        try:
            yield
        finally:
            await orch.aclose()
            if owned:
                await orch.client.aclose()
                await orch.store.close()

    app = FastAPI(title="FilmDream Orchestrator", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.middleware("http")
    async def request_envelope_middleware(request: Request, call_next):
        rid = request.headers.get("x-request-id") or new_request_id()
        request.state.request_id = rid
        try:
            resp = await call_next(request)
        except Exception as ex:
            logging.getLogger(__name__).error("http.exception path=%s: %s", request.url.path, ex, exc_info=True)
            resp = ToolEnvelope.failure(code="internal_error", message=str(ex), request_id=rid, status=500)
        resp.headers["X-Request-ID"] = rid
        return resp

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, ex: OrchestratorError):
        return multiangle_routes.failure_for(ex, multiangle_routes.request_id(request))

    @app.get("/healthz")
    async def healthz(request: Request):
        orch: Optional[JobOrchestrator] = request.app.state.orchestrator
        backend_ok = await orch.client.probe() if orch is not None else None
        url = orch.client.base_url if orch is not None else settings.comfy_base_url
        return ToolEnvelope.success(result=get_health(backend_ok, backend_url=url), request_id=multiangle_routes.request_id(request))

    app.include_router(multiangle_routes.router)
    app.include_router(tool_routes.router)
    app.mount("/data/multiangle", StaticFiles(directory=settings.artifact_dir, check_dir=False), name="multiangle-data")
    return app


# Hard logging: stdout + file, configured at import.
SETTINGS = Settings.from_env()
ORCH_LOG_FILE = _configure_logging(SETTINGS)
log = logging.getLogger(__name__)

app = create_app(SETTINGS)
