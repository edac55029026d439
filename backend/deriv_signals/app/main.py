"""Entrypoint.

Usage:
  python -m deriv_signals.app.main engine   # headless engine
  python -m deriv_signals.app.main serve    # engine + FastAPI in the same event loop
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from deriv_signals.app.engine import run_engine


def main() -> None:
    parser = argparse.ArgumentParser("deriv-signals")
    parser.add_argument("command", choices=["engine", "serve"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="YAML config path")
    args = parser.parse_args()

    try:
        asyncio.run(run_engine(args.config, serve_api=args.command == "serve"))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
