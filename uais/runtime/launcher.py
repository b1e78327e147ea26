from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
import time
from typing import IO, Any, Mapping

from uais.config.load_config import RunnerDefinition
from uais.runtime.interpreters import InterpreterResolver, resolver_for_platform
from uais.runtime.registry import Job, JobRegistry
from uais.runtime.relay import JobOutcome

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_READ_SIZE = 4096
# How long output pipes may stay open after the process itself has exited.
DEFAULT_DRAIN_TIMEOUT_S = 0.5


def _validate_params(params: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in params.items():
        k = str(key)
        v = "" if value is None else str(value)
        if not k or "=" in k or "\0" in k:
            raise ValueError(f"Invalid environment variable name: {k!r}")
        if "\0" in v:
            raise ValueError(f"Invalid value for {k}: contains NUL")
        out[k] = v
    return out


def _subprocess_kwargs() -> dict[str, Any]:
    # Keep the server's Ctrl+C away from the scripts.
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class ProcessLauncher:
    """Spawns one shell process per job and wires its pipes into the registry."""

    def __init__(
        self,
        registry: JobRegistry,
        *,
        resolver: InterpreterResolver | None = None,
        read_size: int = DEFAULT_READ_SIZE,
        drain_timeout_s: float = DEFAULT_DRAIN_TIMEOUT_S,
    ) -> None:
        self._registry = registry
        self._resolver = resolver if resolver is not None else resolver_for_platform()
        self._read_size = int(read_size)
        self._drain_timeout_s = float(drain_timeout_s)

    def build_env(self, params: Mapping[str, Any] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env.update(_validate_params(params or {}))
        self._resolver.augment_env(env)
        return env

    def start(self, runner: RunnerDefinition, params: Mapping[str, Any] | None = None) -> Job:
        """Start `runner` and return its job.

        Spawn failures do not raise: the job is created anyway and finishes immediately
        with a `[Process error]` line, so callers can always stream the result.
        """
        env = self.build_env(params)
        job = self._registry.create(runner)

        try:
            process = subprocess.Popen(
                runner.command,
                shell=True,
                cwd=runner.cwd,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                **_subprocess_kwargs(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.warning("Failed to start runner %s in %s: %s", runner.id, runner.cwd, e)
            self._registry.on_exit(job.job_id, JobOutcome(error=str(e)))
            return job

        self._registry.bind_process(job.job_id, process)
        logger.info("Started job %s runner=%s pid=%s cwd=%s", job.job_id, runner.id, process.pid, runner.cwd)

        readers = [
            threading.Thread(
                target=self._pump,
                args=(job.job_id, stream),
                name=f"uais-{name}-{job.job_id[:8]}",
                daemon=True,
            )
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
            if stream is not None
        ]
        for t in readers:
            t.start()
        threading.Thread(
            target=self._wait,
            args=(job, process, readers),
            name=f"uais-wait-{job.job_id[:8]}",
            daemon=True,
        ).start()
        return job

    def _pump(self, job_id: str, stream: IO[bytes]) -> None:
        try:
            while True:
                chunk = stream.read(self._read_size)
                if not chunk:
                    break
                self._registry.on_chunk(job_id, chunk)
        except (OSError, ValueError) as e:
            logger.debug("Output pipe for job %s closed: %s", job_id, e)
        finally:
            stream.close()

    def _wait(self, job: Job, process: subprocess.Popen[bytes], readers: list[threading.Thread]) -> None:
        returncode = process.wait()
        self._registry.mark_exited(job.job_id)
        if process.stdin is not None:
            with job.stdin_lock:
                try:
                    process.stdin.close()
                except OSError:
                    pass

        # Pipes usually hit EOF right after exit, so the summary line comes last.
        # A background child that inherited them keeps them open; stop waiting then.
        deadline = time.monotonic() + self._drain_timeout_s
        for t in readers:
            t.join(max(0.0, deadline - time.monotonic()))
        if any(t.is_alive() for t in readers):
            logger.info(
                "Job %s exited with output pipes still open (background child?); later output is dropped",
                job.job_id,
            )
        self._registry.on_exit(job.job_id, JobOutcome(returncode=returncode))
