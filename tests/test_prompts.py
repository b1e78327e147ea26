from __future__ import annotations

import pytest

from uais.runtime.prompts import PromptDetector
from uais.runtime.stdin_bridge import normalize_input


def test_detects_sentinel_split_across_many_chunks() -> None:
    det = PromptDetector()
    text = b"loading...\nDUPLICATE_SESSION:2024-05-01\n"
    found = [det.feed(text[i : i + 3]) for i in range(0, len(text), 3)]
    assert [d for d in found if d is not None] == ["2024-05-01"]
    assert det.fired is True


def test_fires_only_once_per_job() -> None:
    det = PromptDetector()
    assert det.feed(b"DUPLICATE_SESSION:2024-05-01\n") == "2024-05-01"
    assert det.feed(b"DUPLICATE_SESSION:2024-05-02\n") is None


def test_incomplete_date_does_not_match() -> None:
    det = PromptDetector()
    assert det.feed(b"DUPLICATE_SESSION:2024-05\n") is None
    assert det.feed(b"DUPLICATE_SESSION:\n") is None
    assert det.fired is False


def test_multibyte_text_split_mid_character() -> None:
    det = PromptDetector()
    data = "Sesión ya cargada DUPLICATE_SESSION:2024-01-15".encode("utf-8")
    cut = data.index("ó".encode("utf-8")) + 1
    assert det.feed(data[:cut]) is None
    assert det.feed(data[cut:]) == "2024-01-15"


def test_custom_sentinel() -> None:
    det = PromptDetector("ALREADY_LOADED=")
    assert det.feed(b"DUPLICATE_SESSION:2024-05-01") is None
    assert det.feed(b"ALREADY_LOADED=2022-02-02") == "2022-02-02"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("yes", "yes\n"),
        ("yes\n", "yes\n"),
        ("", "\n"),
        ("1\n\n", "1\n\n"),
    ],
)
def test_input_is_newline_terminated_exactly_once(raw: str, expected: str) -> None:
    assert normalize_input(raw) == expected
