"""
API start script: runs the anonymization API via uvicorn.

Usage:
    python main.py
    python main.py --host 0.0.0.0 --port 8080 --reload
"""

from __future__ import annotations

import argparse

import uvicorn

from pve_anonymizer.logger import Log
from pve_anonymizer.settings import get_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Start the pve-anonymizer API")
    parser.add_argument(
        "--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port", type=int, default=8000, help="Bind port (default: 8000)"
    )
    parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload on code changes"
    )
    parser.add_argument(
        "--workers", type=int, default=1, help="Number of worker processes (default: 1)"
    )
    args = parser.parse_args()

    settings = get_settings()
    Log.configure(settings.log_level)
    Log.info(f"Starting API on {args.host}:{args.port}, mappings in {settings.mapping_db_path}")

    # Each worker owns its own mapping table; they only meet in the SQLite store.
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
