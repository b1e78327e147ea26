from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping


class ConfigError(RuntimeError):
    pass


DEFAULT_COMMAND = "python main.py"
DEFAULT_FINISHED_JOB_TTL_S = 30.0

# Canonical display order. Runners declared only in the config file are appended after these.
RUNNER_SLOTS: tuple[tuple[str, str], ...] = (
    ("athletic-screen", "Athletic Screen"),
    ("arm-action", "Arm Action"),
    ("curveball", "Curveball"),
    ("pitching", "Pitching"),
    ("hitting", "Hitting"),
    ("pro-sup", "Pro Sup"),
    ("proteus", "Proteus"),
    ("mobility", "Mobility"),
    ("readiness-screen", "Readiness Screen"),
)


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    if not isinstance(value, str):
        raise ConfigError(f"Invalid string for {key}: {value!r}")
    return value


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _env_prefix(runner_id: str) -> str:
    """`athletic-screen` -> `UAIS_ATHLETIC_SCREEN`."""
    return "UAIS_" + runner_id.upper().replace("-", "_")


@dataclass(frozen=True)
class RunnerDefinition:
    id: str
    label: str
    cwd: str
    command: str


@dataclass(frozen=True)
class InterpreterConfig:
    executable: str
    home: str


@dataclass(frozen=True)
class AppConfig:
    runners: tuple[RunnerDefinition, ...]
    interpreter: InterpreterConfig
    config_path: str | None
    # Seconds a finished job waits for its first attach before it is dropped.
    finished_job_ttl_s: float = DEFAULT_FINISHED_JOB_TTL_S


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    return Path(env.get("UAIS_RUNNERS_CONFIG") or "config/runners.toml").expanduser().resolve()


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        import tomllib  # py3.11+
    except Exception as e:
        raise ConfigError("tomllib is required (Python 3.11+).") from e

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def _file_runners(raw: Mapping[str, Any], *, base_dir: Path) -> dict[str, dict[str, str]]:
    section = raw.get("runners", {})
    if not isinstance(section, dict):
        raise ConfigError("Invalid [runners] section: expected a table")

    out: dict[str, dict[str, str]] = {}
    for runner_id, table in section.items():
        if not isinstance(table, dict):
            raise ConfigError(f"Invalid [runners.{runner_id}]: expected a table")
        entry: dict[str, str] = {}
        if "label" in table:
            entry["label"] = _as_str(table["label"], key=f"runners.{runner_id}.label").strip()
        if "command" in table:
            entry["command"] = _as_str(table["command"], key=f"runners.{runner_id}.command").strip()
        if "cwd" in table:
            cwd = _as_str(table["cwd"], key=f"runners.{runner_id}.cwd").strip()
            if cwd:
                p = Path(cwd).expanduser()
                # Relative working directories are anchored at the config file.
                entry["cwd"] = str(p if p.is_absolute() else (base_dir / p).resolve())
            else:
                entry["cwd"] = ""
        out[str(runner_id)] = entry
    return out


def load_runner_definitions(
    *,
    environ: Mapping[str, str] | None = None,
    file_runners: Mapping[str, Mapping[str, str]] | None = None,
) -> tuple[RunnerDefinition, ...]:
    """Merge the built-in runner slots, config file entries and env overrides.

    Env vars (`UAIS_<ID>_CWD`, `UAIS_<ID>_CMD`) win over file values. Runners without
    a working directory are still returned here; the catalog filters them out.
    """
    env = os.environ if environ is None else environ
    from_file = dict(file_runners or {})

    slots: list[tuple[str, str]] = list(RUNNER_SLOTS)
    known = {rid for rid, _ in slots}
    for rid, entry in from_file.items():
        if rid not in known:
            slots.append((rid, entry.get("label") or rid))
            known.add(rid)

    defs: list[RunnerDefinition] = []
    for rid, default_label in slots:
        entry = from_file.get(rid, {})
        prefix = _env_prefix(rid)
        cwd = (env.get(f"{prefix}_CWD") or "").strip() or entry.get("cwd", "")
        command = (env.get(f"{prefix}_CMD") or "").strip() or entry.get("command", "") or DEFAULT_COMMAND
        defs.append(
            RunnerDefinition(
                id=rid,
                label=entry.get("label") or default_label,
                cwd=cwd,
                command=command,
            )
        )
    return tuple(defs)


def _finished_job_ttl(env: Mapping[str, str]) -> float:
    raw = (env.get("UAIS_FINISHED_JOB_TTL") or "").strip()
    if not raw:
        return DEFAULT_FINISHED_JOB_TTL_S
    ttl = _as_float(raw, key="UAIS_FINISHED_JOB_TTL")
    if ttl < 0:
        raise ConfigError(f"Invalid UAIS_FINISHED_JOB_TTL: {raw!r} (must be >= 0)")
    return ttl


def load_app_config(path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if environ is None else environ
    explicit = path is not None or bool(env.get("UAIS_RUNNERS_CONFIG"))
    cfg_path = path or default_config_path(env)

    file_runners: dict[str, dict[str, str]] = {}
    used_path: str | None = None
    if cfg_path.exists():
        raw = _read_toml(cfg_path)
        file_runners = _file_runners(raw, base_dir=cfg_path.parent)
        used_path = str(cfg_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {cfg_path}")

    return AppConfig(
        runners=load_runner_definitions(environ=env, file_runners=file_runners),
        interpreter=InterpreterConfig(
            executable=(env.get("UAIS_INTERPRETER") or "Rscript").strip() or "Rscript",
            home=(env.get("UAIS_R_HOME") or "").strip(),
        ),
        config_path=used_path,
        finished_job_ttl_s=_finished_job_ttl(env),
    )
