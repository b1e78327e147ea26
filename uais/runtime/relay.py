from __future__ import annotations

import logging
import queue
import signal
from dataclasses import dataclass, field
from typing import Iterator, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptEvent:
    """Out-of-band request for the operator to confirm re-ingesting a date."""

    job_id: str
    date: str

    def to_dict(self) -> dict[str, str]:
        return {"job_id": self.job_id, "date": self.date}


@dataclass(frozen=True)
class JobOutcome:
    returncode: int | None = None
    error: str | None = None

    @property
    def signal_name(self) -> str | None:
        if self.returncode is None or self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode).name
        except ValueError:
            return str(-self.returncode)

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    def describe(self) -> str:
        if self.error is not None:
            return f"\n[Process error] {self.error}\n"
        sig = self.signal_name
        if sig is not None:
            return f"\n[Process exited with signal {sig}]\n"
        return f"\n[Process exited with code {self.returncode}]\n"

    def to_dict(self) -> dict[str, object]:
        return {
            "returncode": self.returncode,
            "signal": self.signal_name,
            "error": self.error,
            "ok": self.ok,
        }


RelayItem = Union[bytes, PromptEvent]


class SinkClosedError(RuntimeError):
    pass


class Sink(Protocol):
    def send(self, data: bytes) -> None: ...

    def notify(self, event: PromptEvent) -> None: ...

    def close(self, outcome: JobOutcome | None = None) -> None: ...


_CLOSED = object()


class QueueSink:
    """Thread-safe sink that hands relayed items to a blocking reader.

    `close(None)` means the sink was superseded or detached; a job outcome is only
    passed when the job itself finished.
    """

    def __init__(self) -> None:
        self._q: queue.Queue[object] = queue.Queue()
        self._closed = False
        self.outcome: JobOutcome | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> None:
        if self._closed:
            raise SinkClosedError("sink is closed")
        self._q.put(bytes(data))

    def notify(self, event: PromptEvent) -> None:
        if self._closed:
            raise SinkClosedError("sink is closed")
        self._q.put(event)

    def close(self, outcome: JobOutcome | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self.outcome = outcome
        self._q.put(_CLOSED)

    def poll(self, *, interval_s: float) -> Iterator[RelayItem | None]:
        """Like `items()`, but yields None after every `interval_s` of silence.

        Lets a consumer running in a worker thread regain control periodically.
        """
        while True:
            try:
                item = self._q.get(timeout=interval_s)
            except queue.Empty:
                yield None
                continue
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def items(self, *, timeout_s: float | None = None) -> Iterator[RelayItem]:
        """Yield relayed items in order until the sink is closed.

        Raises `queue.Empty` if `timeout_s` elapses with nothing to read.
        """
        while True:
            item = self._q.get(timeout=timeout_s)
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]


@dataclass
class Buffering:
    """Pre-attach state: everything relayed so far, in arrival order."""

    items: list[RelayItem] = field(default_factory=list)


@dataclass
class Forwarding:
    """Post-attach state: nothing is retained, items go straight to the sink."""

    sink: Sink


OutputState = Union[Buffering, Forwarding]


def _deliver(sink: Sink, item: RelayItem) -> bool:
    try:
        if isinstance(item, PromptEvent):
            sink.notify(item)
        else:
            sink.send(item)
        return True
    except Exception as e:
        # A broken consumer must never reach the process I/O threads.
        logger.debug("Dropping relayed item for closed/broken sink: %s", e)
        return False


def _close_quietly(sink: Sink, outcome: JobOutcome | None) -> None:
    try:
        sink.close(outcome)
    except Exception as e:
        logger.debug("Ignoring sink close failure: %s", e)


class OutputRelay:
    """Per-job output relay. Not thread-safe on its own; the registry serializes access."""

    def __init__(self) -> None:
        self.state: OutputState = Buffering()

    @property
    def attached(self) -> bool:
        return isinstance(self.state, Forwarding)

    def push(self, item: RelayItem) -> None:
        state = self.state
        if isinstance(state, Buffering):
            state.items.append(item)
        else:
            _deliver(state.sink, item)

    def attach(self, sink: Sink) -> None:
        state = self.state
        if isinstance(state, Buffering):
            for item in state.items:
                if not _deliver(sink, item):
                    break
        else:
            # Superseded consumers end their stream; the process keeps running.
            _close_quietly(state.sink, None)
        self.state = Forwarding(sink)

    def finish(self, outcome: JobOutcome) -> None:
        self.push(outcome.describe().encode("utf-8"))
        self.close(outcome)

    def close(self, outcome: JobOutcome) -> None:
        state = self.state
        if isinstance(state, Forwarding):
            _close_quietly(state.sink, outcome)
