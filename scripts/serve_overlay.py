#!/usr/bin/env python3
"""Serve the overlay control/stream API over HTTP."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from aiohttp import web  # noqa: E402

from pycombo import OverlayConfig  # noqa: E402
from pycombo.server import OverlayHub, create_app  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    hub = OverlayHub(OverlayConfig.from_env())
    web.run_app(create_app(hub), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
