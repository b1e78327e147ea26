from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from uais.runtime.catalog import UnknownRunnerError
from uais.runtime.relay import JobOutcome, PromptEvent, QueueSink
from uais.runtime.service import RunnerService

logger = logging.getLogger(__name__)

# Returns the text to send to the job's stdin, or None to leave the prompt unanswered.
Responder = Callable[[PromptEvent], "str | None"]


@dataclass
class StepResult:
    runner_id: str
    job_id: str | None = None
    outcome: JobOutcome | None = None
    error: str | None = None
    prompts: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None and self.outcome.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "runner_id": self.runner_id,
            "job_id": self.job_id,
            "ok": self.ok,
            "error": self.error,
            "prompts": list(self.prompts),
            "outcome": self.outcome.to_dict() if self.outcome is not None else None,
        }


@dataclass
class SequenceResult:
    steps: list[StepResult]
    transcript: str

    @property
    def ok(self) -> bool:
        return all(s.ok for s in self.steps)


class SequenceRunner:
    """Runs selected runners one after another, never two at once.

    A failing runner (unknown id, bad params, spawn error, non-zero exit) is recorded
    and the loop moves on to the next one.
    """

    def __init__(self, service: RunnerService, *, poll_interval_s: float = 0.2) -> None:
        self._service = service
        self._poll_interval_s = float(poll_interval_s)

    def run(
        self,
        runner_ids: Iterable[str],
        params: Mapping[str, Any] | None = None,
        *,
        responder: Responder | None = None,
        on_output: Callable[[bytes], None] | None = None,
    ) -> SequenceResult:
        transcript: list[bytes] = []
        steps: list[StepResult] = []

        def emit(data: bytes) -> None:
            transcript.append(data)
            if on_output is not None:
                on_output(data)

        for runner_id in runner_ids:
            step = StepResult(runner_id=runner_id)
            steps.append(step)

            runner = self._service.catalog.get(runner_id)
            label = runner.label if runner is not None else runner_id
            emit(f"\n=== {label} ===\n".encode("utf-8"))

            try:
                job = self._service.start(runner_id, params)
            except (UnknownRunnerError, ValueError) as e:
                step.error = str(e)
                emit(f"[Skipping {runner_id}] {e}\n".encode("utf-8"))
                logger.warning("Sequence step %s skipped: %s", runner_id, e)
                continue

            step.job_id = job.job_id
            sink = QueueSink()
            if not self._service.attach(job.job_id, sink):
                step.error = "job vanished before attach"
                emit(f"[Skipping {runner_id}] job vanished before attach\n".encode("utf-8"))
                continue

            for item in sink.items():
                if isinstance(item, PromptEvent):
                    step.prompts.append(item.date)
                    answer = responder(item) if responder is not None else None
                    if answer is not None and not self._service.write(job.job_id, answer):
                        emit(b"[Input not delivered: job already finished]\n")
                    continue
                emit(item)

            step.outcome = sink.outcome
            if step.outcome is None:
                # Another consumer took over the stream; still wait for the process to end.
                self._wait_until_reaped(job.job_id)
                step.error = "stream detached before completion"
            elif not step.outcome.ok:
                logger.warning("Sequence step %s failed: %s", runner_id, step.outcome.describe().strip())

        return SequenceResult(steps=steps, transcript=b"".join(transcript).decode("utf-8", errors="replace"))

    def _wait_until_reaped(self, job_id: str) -> None:
        while True:
            snap = self._service.registry.snapshot(job_id)
            if snap is None or snap["done"]:
                return
            time.sleep(self._poll_interval_s)
