from __future__ import annotations

import logging

from uais.runtime.registry import JobRegistry

logger = logging.getLogger(__name__)


def normalize_input(text: str) -> str:
    """Ensure exactly the caller's text plus one trailing newline (never doubled)."""
    return text if text.endswith("\n") else text + "\n"


class StdinBridge:
    """Writes operator input into a running job's standard input."""

    def __init__(self, registry: JobRegistry) -> None:
        self._registry = registry

    def write(self, job_id: str, text: str) -> bool:
        target = self._registry.writable(job_id)
        if target is None:
            return False
        stdin, lock = target
        payload = normalize_input(text).encode("utf-8")
        # Outside the registry lock: a full pipe must not stall output relaying.
        with lock:
            try:
                # Unbuffered pipe: write() may accept only part of the payload.
                view = memoryview(payload)
                while view:
                    written = stdin.write(view)
                    view = view[written:]
                stdin.flush()
            except (OSError, ValueError) as e:
                # The process exited between lookup and write.
                logger.info("Input for job %s not delivered: %s", job_id, e)
                return False
        return True
