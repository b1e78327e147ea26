from __future__ import annotations

import logging
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import IO, Any, Callable

from uais.config.load_config import DEFAULT_FINISHED_JOB_TTL_S, RunnerDefinition
from uais.runtime.prompts import SENTINEL, PromptDetector
from uais.runtime.relay import JobOutcome, OutputRelay, PromptEvent, Sink

logger = logging.getLogger(__name__)


@dataclass
class Job:
    job_id: str
    runner: RunnerDefinition
    detector: PromptDetector
    created_at: float = field(default_factory=time.time)
    process: subprocess.Popen[bytes] | None = None
    relay: OutputRelay = field(default_factory=OutputRelay)
    exited: bool = False
    done: bool = False
    finished_at: float | None = None
    outcome: JobOutcome | None = None
    prompt: PromptEvent | None = None
    stdin_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def prompted(self) -> bool:
        return self.prompt is not None


class JobRegistry:
    """Process-wide table of live jobs.

    Entries are created by the launcher and removed when the process exits. A job
    that exits before anyone attached keeps its transcript for `finished_ttl_s`
    seconds so the first attach can still replay it; after that it is dropped.
    Every read and mutation goes through `self._lock`: inbound requests and the
    per-process reader threads race on the same job otherwise.
    """

    def __init__(
        self,
        *,
        sentinel: str = SENTINEL,
        finished_ttl_s: float = DEFAULT_FINISHED_JOB_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._sentinel = sentinel
        self._finished_ttl_s = finished_ttl_s
        self._clock = clock

    def _reap_expired_locked(self) -> None:
        now = self._clock()
        for job_id, job in list(self._jobs.items()):
            if job.finished_at is not None and now - job.finished_at >= self._finished_ttl_s:
                del self._jobs[job_id]
                logger.debug("Dropped unclaimed transcript of job %s", job_id)

    def _expire(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and job.finished_at is not None:
                del self._jobs[job_id]
                logger.debug("Dropped unclaimed transcript of job %s", job_id)

    def create(self, runner: RunnerDefinition) -> Job:
        with self._lock:
            self._reap_expired_locked()
            job_id = uuid.uuid4().hex
            while job_id in self._jobs:
                job_id = uuid.uuid4().hex
            job = Job(job_id=job_id, runner=runner, detector=PromptDetector(self._sentinel))
            self._jobs[job_id] = job
            return job

    def bind_process(self, job_id: str, process: subprocess.Popen[bytes]) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.process = process

    def attach(self, job_id: str, sink: Sink) -> bool:
        """Bind `sink` to the job, replaying buffered output once. False if unknown."""
        with self._lock:
            self._reap_expired_locked()
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.relay.attach(sink)
            if job.done and job.outcome is not None:
                job.relay.close(job.outcome)
                del self._jobs[job_id]
                logger.debug("Reaped job %s after late attach", job_id)
            return True

    def on_chunk(self, job_id: str, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.done:
                return
            job.relay.push(data)
            date = job.detector.feed(data)
            if date is not None:
                job.prompt = PromptEvent(job_id=job_id, date=date)
                job.relay.push(job.prompt)
                logger.info("Job %s (%s) requested confirmation for %s", job_id, job.runner.id, date)

    def on_exit(self, job_id: str, outcome: JobOutcome) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.done:
                return
            job.done = True
            job.outcome = outcome
            job.exited = True
            job.relay.finish(outcome)
            if job.relay.attached or self._finished_ttl_s <= 0:
                del self._jobs[job_id]
            else:
                job.finished_at = self._clock()
                timer = threading.Timer(self._finished_ttl_s, self._expire, args=(job_id,))
                timer.daemon = True
                timer.start()
            logger.info("Job %s (%s) finished: %s", job_id, job.runner.id, outcome.describe().strip())

    def mark_exited(self, job_id: str) -> None:
        """The process is gone but its pipes may still be draining: refuse further input."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.exited = True

    def writable(self, job_id: str) -> tuple[IO[bytes], threading.Lock] | None:
        """Return the stdin pipe of a live job, or None for unknown/finished jobs."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.exited or job.process is None or job.process.stdin is None:
                return None
            return job.process.stdin, job.stdin_lock

    def snapshot(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._reap_expired_locked()
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return {
                "job_id": job.job_id,
                "runner_id": job.runner.id,
                "label": job.runner.label,
                "created_at": float(job.created_at),
                "pid": job.process.pid if job.process is not None else None,
                "exited": job.exited,
                "done": job.done,
                "attached": job.relay.attached,
                "prompt": job.prompt.to_dict() if job.prompt is not None else None,
                "outcome": job.outcome.to_dict() if job.outcome is not None else None,
            }

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for j in self._jobs.values() if not j.done)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs
