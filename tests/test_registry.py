from __future__ import annotations

import io
import threading
import time
from typing import Any

from uais.config.load_config import RunnerDefinition
from uais.runtime.registry import JobRegistry
from uais.runtime.relay import Buffering, Forwarding, JobOutcome, PromptEvent, QueueSink
from uais.runtime.stdin_bridge import StdinBridge


RUNNER = RunnerDefinition(id="pitching", label="Pitching", cwd="/tmp", command="python main.py")


def _drain(sink: QueueSink) -> list[Any]:
    return list(sink.items(timeout_s=5))


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeProcess:
    pid = 4242

    def __init__(self) -> None:
        self.stdin = io.BytesIO()


class ExplodingSink:
    def send(self, data: bytes) -> None:
        raise RuntimeError("client went away")

    def notify(self, event: PromptEvent) -> None:
        raise RuntimeError("client went away")

    def close(self, outcome: JobOutcome | None = None) -> None:
        raise RuntimeError("client went away")


def test_unknown_job_reports_not_found() -> None:
    registry = JobRegistry()
    bridge = StdinBridge(registry)
    assert registry.attach("nope", QueueSink()) is False
    assert bridge.write("nope", "yes") is False
    assert registry.snapshot("nope") is None


def test_buffered_chunks_replay_once_then_live_forwarding() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"one\n")
    registry.on_chunk(job.job_id, b"two\n")
    assert isinstance(job.relay.state, Buffering)

    first = QueueSink()
    assert registry.attach(job.job_id, first) is True
    assert isinstance(job.relay.state, Forwarding)

    registry.on_chunk(job.job_id, b"three\n")
    registry.on_exit(job.job_id, JobOutcome(returncode=0))

    assert _drain(first) == [b"one\n", b"two\n", b"three\n", b"\n[Process exited with code 0]\n"]
    assert first.outcome == JobOutcome(returncode=0)


def test_second_attach_gets_no_replay_and_supersedes_first() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"early\n")

    first = QueueSink()
    registry.attach(job.job_id, first)
    registry.on_chunk(job.job_id, b"middle\n")

    second = QueueSink()
    registry.attach(job.job_id, second)
    registry.on_chunk(job.job_id, b"late\n")
    registry.on_exit(job.job_id, JobOutcome(returncode=0))

    assert _drain(first) == [b"early\n", b"middle\n"]
    assert first.outcome is None
    assert _drain(second) == [b"late\n", b"\n[Process exited with code 0]\n"]


def test_exit_reaps_attached_job() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    sink = QueueSink()
    registry.attach(job.job_id, sink)

    registry.on_exit(job.job_id, JobOutcome(returncode=-15))
    registry.on_chunk(job.job_id, b"after exit\n")

    assert _drain(sink) == [b"\n[Process exited with signal SIGTERM]\n"]
    assert job.job_id not in registry
    assert registry.attach(job.job_id, QueueSink()) is False
    assert StdinBridge(registry).write(job.job_id, "yes") is False


def test_job_that_exits_before_attach_is_drained_by_first_attach() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_exit(job.job_id, JobOutcome(error="[Errno 2] No such file or directory: '/missing'"))

    # Finished jobs never accept input, even before their transcript is claimed.
    assert StdinBridge(registry).write(job.job_id, "yes") is False
    assert registry.active_count() == 0

    sink = QueueSink()
    assert registry.attach(job.job_id, sink) is True
    items = _drain(sink)
    assert len(items) == 1
    assert items[0].startswith(b"\n[Process error] ")
    assert sink.outcome is not None and sink.outcome.ok is False

    assert registry.attach(job.job_id, QueueSink()) is False


def test_sink_failures_do_not_propagate() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"buffered\n")
    assert registry.attach(job.job_id, ExplodingSink()) is True

    registry.on_chunk(job.job_id, b"DUPLICATE_SESSION:2024-05-01\n")
    registry.on_exit(job.job_id, JobOutcome(returncode=1))
    assert job.job_id not in registry


def test_detached_sink_drops_output_without_affecting_job() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    sink = QueueSink()
    registry.attach(job.job_id, sink)
    sink.close()

    registry.on_chunk(job.job_id, b"nobody listening\n")
    snap = registry.snapshot(job.job_id)
    assert snap is not None
    assert snap["done"] is False
    assert snap["attached"] is True


def test_prompt_event_fires_once_in_stream_order() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"Checking session...\nDUPLICATE_SES")
    registry.on_chunk(job.job_id, b"SION:2024-05-01\nOverwrite? ")
    registry.on_chunk(job.job_id, b"DUPLICATE_SESSION:2024-06-02\n")

    sink = QueueSink()
    registry.attach(job.job_id, sink)
    registry.on_exit(job.job_id, JobOutcome(returncode=0))
    items = _drain(sink)

    events = [i for i in items if isinstance(i, PromptEvent)]
    assert events == [PromptEvent(job_id=job.job_id, date="2024-05-01")]
    # The event follows the chunk that completed the sentinel.
    assert items.index(events[0]) == 2
    assert job.prompted is True


def test_snapshot_reports_pending_prompt() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"DUPLICATE_SESSION:2023-12-31")
    snap = registry.snapshot(job.job_id)
    assert snap is not None
    assert snap["runner_id"] == "pitching"
    assert snap["prompt"] == {"job_id": job.job_id, "date": "2023-12-31"}
    assert snap["attached"] is False
    assert registry.active_count() == 1


def test_job_ids_are_unique() -> None:
    registry = JobRegistry()
    ids = {registry.create(RUNNER).job_id for _ in range(200)}
    assert len(ids) == 200


def test_unclaimed_finished_job_is_dropped_after_grace_period() -> None:
    clock = FakeClock()
    registry = JobRegistry(finished_ttl_s=60, clock=clock)
    job = registry.create(RUNNER)
    registry.on_chunk(job.job_id, b"x" * 10_000)
    registry.on_exit(job.job_id, JobOutcome(returncode=0))

    clock.now += 30
    snap = registry.snapshot(job.job_id)
    assert snap is not None and snap["done"] is True

    clock.now += 31
    assert registry.attach(job.job_id, QueueSink()) is False
    assert job.job_id not in registry


def test_unclaimed_finished_jobs_expire_without_further_requests() -> None:
    registry = JobRegistry(finished_ttl_s=0.05)
    ids = [registry.create(RUNNER).job_id for _ in range(50)]
    for job_id in ids:
        registry.on_chunk(job_id, b"y" * 1024)
        registry.on_exit(job_id, JobOutcome(returncode=0))

    deadline = time.monotonic() + 5
    while any(job_id in registry for job_id in ids) and time.monotonic() < deadline:
        time.sleep(0.02)
    assert not any(job_id in registry for job_id in ids)


def test_zero_ttl_drops_unclaimed_job_at_exit() -> None:
    registry = JobRegistry(finished_ttl_s=0)
    job = registry.create(RUNNER)
    registry.on_exit(job.job_id, JobOutcome(returncode=0))
    assert registry.attach(job.job_id, QueueSink()) is False


def test_exited_process_refuses_input_before_exit_is_reported() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    registry.bind_process(job.job_id, FakeProcess())  # type: ignore[arg-type]
    assert registry.writable(job.job_id) is not None

    registry.mark_exited(job.job_id)

    assert registry.writable(job.job_id) is None
    assert StdinBridge(registry).write(job.job_id, "yes") is False
    snap = registry.snapshot(job.job_id)
    assert snap is not None
    assert snap["exited"] is True
    assert snap["done"] is False


def test_attach_racing_live_output_keeps_every_chunk_once_in_order() -> None:
    registry = JobRegistry()
    job = registry.create(RUNNER)
    n = 5000
    started = threading.Event()

    def reader() -> None:
        for i in range(n):
            registry.on_chunk(job.job_id, f"{i}\n".encode())
            if i == n // 10:
                started.set()
            if i % 100 == 0:
                time.sleep(0)

    t = threading.Thread(target=reader)
    t.start()
    assert started.wait(5)
    sink = QueueSink()
    assert registry.attach(job.job_id, sink) is True
    t.join(10)
    registry.on_exit(job.job_id, JobOutcome(returncode=0))

    items = _drain(sink)
    assert items[-1] == b"\n[Process exited with code 0]\n"
    assert b"".join(items[:-1]).decode().split() == [str(i) for i in range(n)]
