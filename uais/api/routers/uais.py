from __future__ import annotations

import codecs
import json
from typing import Any, Iterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from uais.api.dependencies import get_runner_service
from uais.api.errors import invalid_argument, not_found
from uais.runtime.catalog import UnknownRunnerError
from uais.runtime.relay import PromptEvent, QueueSink
from uais.runtime.service import RunnerService

router = APIRouter()

# Idle streams yield an empty chunk this often so a disconnected client releases its worker thread.
STREAM_IDLE_S = 1.0


class StartRunRequest(BaseModel):
    runner_id: str = Field(min_length=1)
    params: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the script (e.g. the athlete to process).",
    )


class SendInputRequest(BaseModel):
    job_id: str = Field(min_length=1)
    input: str


@router.get("/uais/runners")
def list_runners(service: RunnerService = Depends(get_runner_service)) -> dict[str, Any]:
    return {"runners": [{"id": r.id, "label": r.label} for r in service.catalog.list()]}


@router.post("/uais/run")
def start_run(body: StartRunRequest, service: RunnerService = Depends(get_runner_service)) -> dict[str, Any]:
    """Start a runner. Stream its output with GET /uais/stream?job_id=..."""
    try:
        job = service.start(body.runner_id, body.params)
    except UnknownRunnerError as e:
        raise invalid_argument(
            "Unknown or unconfigured runner. Set the runner's CWD env var.",
            runner_id=e.runner_id,
        ) from e
    except ValueError as e:
        raise invalid_argument(str(e)) from e
    return {"job_id": job.job_id}


def _text_stream(sink: QueueSink) -> Iterator[bytes]:
    try:
        for item in sink.poll(interval_s=STREAM_IDLE_S):
            if item is None:
                yield b""
            # The sentinel is already part of the raw text; typed events are ndjson-only.
            elif isinstance(item, bytes):
                yield item
    finally:
        sink.close()


def _ndjson_line(obj: dict[str, Any]) -> bytes:
    return (json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8")


def _ndjson_stream(sink: QueueSink) -> Iterator[bytes]:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        for item in sink.poll(interval_s=STREAM_IDLE_S):
            if item is None:
                yield b""
                continue
            if isinstance(item, PromptEvent):
                yield _ndjson_line({"type": "prompt", **item.to_dict()})
                continue
            text = decoder.decode(item)
            if text:
                yield _ndjson_line({"type": "output", "data": text})
        tail = decoder.decode(b"", final=True)
        if tail:
            yield _ndjson_line({"type": "output", "data": tail})
        if sink.outcome is not None:
            yield _ndjson_line({"type": "exit", **sink.outcome.to_dict()})
        else:
            yield _ndjson_line({"type": "detached"})
    finally:
        sink.close()


@router.get("/uais/stream")
def stream_job(
    job_id: str = Query(min_length=1),
    fmt: str = Query(default="text", alias="format", pattern="^(text|ndjson)$"),
    service: RunnerService = Depends(get_runner_service),
) -> StreamingResponse:
    sink = QueueSink()
    if not service.attach(job_id, sink):
        raise not_found("Job not found or already finished.", job_id=job_id)

    if fmt == "ndjson":
        return StreamingResponse(_ndjson_stream(sink), media_type="application/x-ndjson")
    return StreamingResponse(_text_stream(sink), media_type="text/plain; charset=utf-8")


@router.post("/uais/input")
def send_input(body: SendInputRequest, service: RunnerService = Depends(get_runner_service)) -> dict[str, Any]:
    """Write a line to the job's stdin. Always 200 so the dashboard can show a friendly message."""
    if not service.write(body.job_id, body.input):
        return {"ok": False, "error": "Job not found or process finished."}
    return {"ok": True}


@router.get("/uais/jobs/{job_id}")
def get_job(job_id: str, service: RunnerService = Depends(get_runner_service)) -> dict[str, Any]:
    snap = service.registry.snapshot(job_id)
    if snap is None:
        raise not_found("Job not found or already finished.", job_id=job_id)
    return {"job": snap}
