#!/usr/bin/env python3
"""
Production startup script.

1. Prepares data directories + audit table (init_data.py)
2. Starts gunicorn (replaces this process via os.execvp)

Usage:
    python scripts/start.py

Document state lives in one process, so gunicorn runs exactly one worker.
SSE streams hold a thread each, hence the gthread worker class.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> None:
    port = os.environ.get("PORT", "").strip()
    if not port:
        print("WARNING: PORT not set, using default 3007", flush=True)
        port = "3007"

    try:
        port_int = int(port)
        if port_int < 1 or port_int > 65535:
            raise ValueError("Port out of range")
    except ValueError:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)

    threads = (os.environ.get("GUNICORN_THREADS") or "32").strip()

    print("=== Preparing data ===", flush=True)
    from scripts.init_data import init_data
    try:
        init_data()
    except Exception as e:
        print(f"Init failed: {e}", flush=True)
        sys.exit(1)

    print("=== Starting gunicorn ===", flush=True)
    print(f"Gunicorn binding to 0.0.0.0:{port} (1 worker, {threads} threads)", flush=True)

    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", "1",
            "--worker-class", "gthread",
            "--threads", threads,
            # SSE responses are long-lived; keep-alives arrive well within this.
            "--timeout", "120",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
