#!/usr/bin/env python3
"""
Run the tidequote server.

Usage:
  python -m tidequote
  python -m tidequote --port 8080 --reload

All other settings come from the environment, see tidequote/config.py.
"""
import argparse
import os
import sys

import uvicorn

from .config import Settings
from .errors import ConfigError


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="tidequote")
    ap.add_argument("--host", default=None, help="bind address (HOST)")
    ap.add_argument("--port", type=int, default=None, help="port (PORT)")
    ap.add_argument("--reload", action="store_true",
                    help="auto-reload on code changes (development only)")
    args = ap.parse_args(argv)

    # the factory re-reads the environment inside the server process
    if args.host:
        os.environ["HOST"] = args.host
    if args.port:
        os.environ["PORT"] = str(args.port)

    try:
        settings = Settings.from_env()
        settings.validate()
    except ConfigError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    print(f"Server running at {settings.public_base_url}")
    uvicorn.run(
        "tidequote.server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=args.reload and not settings.is_production,
        log_level=settings.effective_log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
