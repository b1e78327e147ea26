#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))


def main() -> int:
    host = os.getenv("UAIS_HOST", "127.0.0.1")
    port = int(os.getenv("UAIS_PORT", "8000"))
    reload = os.getenv("UAIS_RELOAD", "0").strip().lower() in {"1", "true", "yes", "y", "on"}

    try:
        import uvicorn  # type: ignore
    except Exception as e:
        print("Missing dependency: uvicorn. Install it in your runtime environment.", file=sys.stderr)
        print(str(e), file=sys.stderr)
        return 1

    logging.basicConfig(
        level=os.getenv("UAIS_LOG_LEVEL", "info").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Reload spawns a fresh worker process, which drops the in-memory job table.
    uvicorn.run(
        "uais.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("UAIS_LOG_LEVEL", "info"),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
