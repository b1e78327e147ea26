from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter, Depends

from uais.api.dependencies import get_runner_service
from uais.runtime.service import RunnerService


router = APIRouter()


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version(service: RunnerService = Depends(get_runner_service)) -> dict[str, Any]:
    return {
        "service": "uais-runners",
        "api": "v1",
        "deps": {
            "fastapi": _pkg_version("fastapi"),
            "uvicorn": _pkg_version("uvicorn"),
            "pydantic": _pkg_version("pydantic"),
        },
        "runners": {
            "configured": len(service.catalog),
            "active_jobs": service.registry.active_count(),
        },
        "ts": time.time(),
    }
