from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from uais.config.load_config import AppConfig
from uais.runtime.catalog import RunnerCatalog
from uais.runtime.interpreters import resolver_for_platform
from uais.runtime.launcher import ProcessLauncher
from uais.runtime.registry import Job, JobRegistry
from uais.runtime.relay import Sink
from uais.runtime.stdin_bridge import StdinBridge


@dataclass
class RunnerService:
    """Wires catalog, registry, launcher and stdin bridge into one object.

    One instance per server process; the API keeps it on `app.state`.
    """

    catalog: RunnerCatalog
    registry: JobRegistry
    launcher: ProcessLauncher
    bridge: StdinBridge

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "RunnerService":
        registry = JobRegistry(finished_ttl_s=cfg.finished_job_ttl_s)
        resolver = resolver_for_platform(executable=cfg.interpreter.executable, home=cfg.interpreter.home)
        return cls(
            catalog=RunnerCatalog.from_config(cfg),
            registry=registry,
            launcher=ProcessLauncher(registry, resolver=resolver),
            bridge=StdinBridge(registry),
        )

    def start(self, runner_id: str, params: Mapping[str, Any] | None = None) -> Job:
        """Raises UnknownRunnerError (before any job exists) or ValueError for bad params."""
        runner = self.catalog.require(runner_id)
        return self.launcher.start(runner, params)

    def attach(self, job_id: str, sink: Sink) -> bool:
        return self.registry.attach(job_id, sink)

    def write(self, job_id: str, text: str) -> bool:
        return self.bridge.write(job_id, text)
