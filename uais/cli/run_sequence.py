from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Callable

from uais.config.load_config import ConfigError, load_app_config
from uais.runtime.relay import PromptEvent
from uais.runtime.sequence import SequenceRunner
from uais.runtime.service import RunnerService


def _parse_param(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    return key.strip(), value


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run UAIS runners one after another.")
    parser.add_argument("runners", nargs="*", help="Runner ids in execution order (default: all configured).")
    parser.add_argument(
        "--param",
        action="append",
        type=_parse_param,
        default=[],
        metavar="KEY=VALUE",
        help="Extra environment variable passed to every runner (repeatable).",
    )
    parser.add_argument(
        "--answer",
        default=None,
        help="Answer every duplicate-session prompt with this text instead of asking.",
    )
    parser.add_argument("--list", action="store_true", help="List configured runners and exit.")
    parser.add_argument("--log-level", default=os.getenv("UAIS_LOG_LEVEL", "warning"))
    return parser.parse_args(argv)


def _interactive_responder(fixed: str | None) -> Callable[[PromptEvent], str | None]:
    def respond(event: PromptEvent) -> str | None:
        if fixed is not None:
            return fixed
        sys.stdout.flush()
        try:
            return input(f"\nData for {event.date} already exists. Answer for the script: ")
        except EOFError:
            return None

    return respond


def _write_out(data: bytes) -> None:
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        service = RunnerService.from_config(load_app_config())
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    if args.list:
        for r in service.catalog.list():
            print(f"{r.id}\t{r.label}\t{r.cwd}\t{r.command}")
        return 0

    runner_ids = list(args.runners) or [r.id for r in service.catalog.list()]
    if not runner_ids:
        print("No runners configured. Set env vars like UAIS_ATHLETIC_SCREEN_CWD.", file=sys.stderr)
        return 2

    result = SequenceRunner(service).run(
        runner_ids,
        dict(args.param),
        responder=_interactive_responder(args.answer),
        on_output=_write_out,
    )

    print("\nSummary:")
    for step in result.steps:
        status = "ok" if step.ok else (step.error or (step.outcome.describe().strip() if step.outcome else "failed"))
        print(f"  {step.runner_id}: {status}")
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
