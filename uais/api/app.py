from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from uais.api.errors import APIError, api_error_handler, unhandled_error_handler, validation_error_handler
from uais.config.load_config import load_app_config
from uais.runtime.service import RunnerService

from .routers.health import router as health_router
from .routers.uais import router as uais_router


logger = logging.getLogger(__name__)


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("UAIS_CORS_ORIGINS", "").strip()
    if not raw:
        # Safe local defaults: allow typical dev ports.
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [o.strip() for o in raw.split(",") if o.strip()]


def create_app(service: RunnerService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        # Runner config is a startup snapshot; the job table starts empty.
        if getattr(app.state, "runner_service", None) is None:
            cfg = load_app_config()
            app.state.runner_service = RunnerService.from_config(cfg)
            logger.info(
                "Loaded %d configured runner(s) (config file: %s)",
                len(app.state.runner_service.catalog),
                cfg.config_path or "none",
            )
        yield
        active = app.state.runner_service.registry.active_count()
        if active:
            # No cancellation: child processes outlive the server's job table.
            logger.warning("Shutting down with %d job(s) still running", active)

    app = FastAPI(title="UAIS Runners API", version="0.1.0", lifespan=lifespan)
    if service is not None:
        app.state.runner_service = service

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins_from_env(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(uais_router, prefix="/api/v1", tags=["uais"])

    return app


app = create_app()
