"""Detect the in-band "data already ingested" confirmation request.

Runners print `DUPLICATE_SESSION:<YYYY-MM-DD>` when the session date was already
loaded, then block on stdin waiting for the operator's answer. The marker can be
split across reads, so the detector decodes incrementally and keeps a short tail
of the previous text.
"""

from __future__ import annotations

import codecs
import re

SENTINEL = "DUPLICATE_SESSION:"

_DATE_LEN = len("YYYY-MM-DD")


class PromptDetector:
    """Incremental, one-shot matcher for `<sentinel><ISO date>`."""

    def __init__(self, sentinel: str = SENTINEL) -> None:
        self.sentinel = sentinel
        self._pattern = re.compile(re.escape(sentinel) + r"(\d{4}-\d{2}-\d{2})")
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tail = ""
        self._keep = len(sentinel) + _DATE_LEN - 1
        self.fired = False

    def feed(self, data: bytes) -> str | None:
        """Consume one output chunk; return the date on the first match only."""
        if self.fired:
            return None
        text = self._tail + self._decoder.decode(data)
        m = self._pattern.search(text)
        if m is not None:
            self.fired = True
            self._tail = ""
            return m.group(1)
        self._tail = text[-self._keep :] if self._keep > 0 else ""
        return None
