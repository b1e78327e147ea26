from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest


# Ensure `import uais...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from uais.config.load_config import RunnerDefinition  # noqa: E402
from uais.runtime.catalog import RunnerCatalog  # noqa: E402
from uais.runtime.interpreters import InterpreterResolver  # noqa: E402
from uais.runtime.launcher import ProcessLauncher  # noqa: E402
from uais.runtime.registry import JobRegistry  # noqa: E402
from uais.runtime.service import RunnerService  # noqa: E402
from uais.runtime.stdin_bridge import StdinBridge  # noqa: E402


@pytest.fixture
def make_runner(tmp_path: Path) -> Callable[..., RunnerDefinition]:
    """Write `code` to <tmp>/<runner_id>/main.py and return a runner that executes it."""

    def _make(runner_id: str, code: str, *, label: str | None = None) -> RunnerDefinition:
        project = tmp_path / runner_id
        project.mkdir(parents=True, exist_ok=True)
        (project / "main.py").write_text(textwrap.dedent(code), encoding="utf-8")
        return RunnerDefinition(
            id=runner_id,
            label=label or runner_id.title(),
            cwd=str(project),
            command=f'"{sys.executable}" -u main.py',
        )

    return _make


@pytest.fixture
def make_service() -> Callable[..., RunnerService]:
    def _make(runners: list[RunnerDefinition]) -> RunnerService:
        registry = JobRegistry()
        return RunnerService(
            catalog=RunnerCatalog(runners),
            registry=registry,
            launcher=ProcessLauncher(registry, resolver=InterpreterResolver()),
            bridge=StdinBridge(registry),
        )

    return _make
