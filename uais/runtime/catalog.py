from __future__ import annotations

from typing import Iterable

from uais.config.load_config import RUNNER_SLOTS, AppConfig, RunnerDefinition

_SLOT_INDEX = {rid: i for i, (rid, _) in enumerate(RUNNER_SLOTS)}


class UnknownRunnerError(LookupError):
    """Raised when a start request names a runner that is not configured."""

    def __init__(self, runner_id: str) -> None:
        super().__init__(f"Unknown or unconfigured runner: {runner_id!r}")
        self.runner_id = runner_id


class RunnerCatalog:
    """Read-only view over the runners configured at startup.

    Listed in canonical slot order; other ids follow in declaration order.
    """

    def __init__(self, runners: Iterable[RunnerDefinition]) -> None:
        declared = [r for r in runners if r.cwd.strip()]
        # sorted() is stable, so extra ids keep their declaration order.
        configured = sorted(declared, key=lambda r: _SLOT_INDEX.get(r.id, len(_SLOT_INDEX)))
        self._runners: tuple[RunnerDefinition, ...] = tuple(configured)
        self._by_id: dict[str, RunnerDefinition] = {r.id: r for r in configured}

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "RunnerCatalog":
        return cls(cfg.runners)

    def list(self) -> list[RunnerDefinition]:
        return list(self._runners)

    def get(self, runner_id: str) -> RunnerDefinition | None:
        return self._by_id.get(runner_id)

    def require(self, runner_id: str) -> RunnerDefinition:
        runner = self.get(runner_id)
        if runner is None:
            raise UnknownRunnerError(runner_id)
        return runner

    def __len__(self) -> int:
        return len(self._runners)
