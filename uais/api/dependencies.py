from __future__ import annotations

import threading

from fastapi import Request

from uais.api.errors import APIError
from uais.config.load_config import ConfigError, load_app_config
from uais.runtime.service import RunnerService


_SERVICE_INIT_LOCK = threading.Lock()


def get_runner_service(request: Request) -> RunnerService:
    """FastAPI dependency: the process-wide RunnerService.

    Normally created by the app lifespan. When the app is used without running the
    lifespan, it is built lazily here (once) and cached in `app.state`; the job
    table must be a single instance for the lifetime of the process.
    """
    cached = getattr(request.app.state, "runner_service", None)
    if isinstance(cached, RunnerService):
        return cached

    with _SERVICE_INIT_LOCK:
        cached2 = getattr(request.app.state, "runner_service", None)
        if isinstance(cached2, RunnerService):
            return cached2

        try:
            service = RunnerService.from_config(load_app_config())
        except ConfigError as e:
            raise APIError(status_code=503, code="misconfigured", message=str(e)) from e

        request.app.state.runner_service = service
        return service
