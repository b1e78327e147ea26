"""Locate script interpreters that are installed but missing from PATH.

Analysis scripts are often R projects, and R installers on Windows (and some
macOS/Linux setups) do not put `Rscript` on the search path. Each platform gets
its own resolver strategy; the launcher only calls `augment_env()`.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import shutil
import sys
from pathlib import Path
from typing import MutableMapping

logger = logging.getLogger(__name__)


def _version_key(path: str) -> tuple[int, ...]:
    # "R-4.3.2" sorts after "R-4.10.0" lexically; compare numerically instead.
    return tuple(int(p) for p in re.findall(r"\d+", path))


class InterpreterResolver:
    """Base strategy: no install locations to scan."""

    search_globs: tuple[str, ...] = ()
    path_sep: str = os.pathsep

    def __init__(self, executable: str = "Rscript", *, home: str = "") -> None:
        self.executable = executable
        self.home = home

    def candidate_bin_dirs(self) -> list[Path]:
        dirs: list[Path] = []
        if self.home:
            dirs.append(Path(self.home) / "bin")
            dirs.append(Path(self.home))
        for pattern in self.search_globs:
            for match in sorted(glob.glob(pattern), key=_version_key, reverse=True):
                dirs.append(Path(match))
        return dirs

    def locate_bin_dir(self) -> Path | None:
        for d in self.candidate_bin_dirs():
            if shutil.which(self.executable, path=str(d)) is not None:
                return d
        return None

    def augment_env(self, env: MutableMapping[str, str]) -> MutableMapping[str, str]:
        """Prepend the interpreter's bin dir to PATH when it is not already resolvable."""
        current = env.get("PATH", "")
        if shutil.which(self.executable, path=current) is not None:
            return env
        bin_dir = self.locate_bin_dir()
        if bin_dir is None:
            return env
        env["PATH"] = str(bin_dir) + (self.path_sep + current if current else "")
        logger.debug("Prepended %s to PATH for %s", bin_dir, self.executable)
        return env


class WindowsResolver(InterpreterResolver):
    search_globs = (
        r"C:\Program Files\R\R-*\bin",
        r"C:\Program Files\R\R-*\bin\x64",
    )
    path_sep = ";"


class PosixResolver(InterpreterResolver):
    search_globs = (
        "/Library/Frameworks/R.framework/Resources/bin",
        "/opt/homebrew/bin",
        "/opt/R/*/bin",
        "/usr/local/lib/R/bin",
        "/usr/lib/R/bin",
    )
    path_sep = ":"


def resolver_for_platform(
    platform: str | None = None, *, executable: str = "Rscript", home: str = ""
) -> InterpreterResolver:
    plat = platform or sys.platform
    if plat == "win32":
        return WindowsResolver(executable, home=home)
    return PosixResolver(executable, home=home)
