#!/usr/bin/env python3
"""Feed synthetic combo events into an overlay and log what it does.

Useful for eyeballing expiry, placement and animation timings without a
chat connection. Expiry windows can be shortened from the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pycombo import ComboOverlay, OverlayConfig  # noqa: E402
from pycombo.models import Category  # noqa: E402
from pycombo.render import LoggingRenderer  # noqa: E402

_LOG = logging.getLogger("simulate_overlay")

_USERS = ("alice", "bob", "carol", "dave", "erin")
_COLORS = ("#FF0000", "#00FF00", "#1E90FF", "#FFD700", None)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--channel", default="devchannel")
    parser.add_argument("--events", type=int, default=20, help="number of events to send")
    parser.add_argument("--rate", type=float, default=4.0, help="events per second")
    parser.add_argument("--linger", type=float, default=5.0, help="seconds to keep running after the last event")
    parser.add_argument("--ephemeral", action="store_true", help="use falling bodies instead of user entities")
    parser.add_argument("--fall-effect", action="store_true", help="secondary events also fall")
    parser.add_argument("--corner", default="bl", choices=["bl", "tl", "br", "tr"])
    parser.add_argument("--size", type=int, default=3, choices=[1, 2, 3, 4, 5])
    parser.add_argument("--entity-expiry", type=float, default=None, help="override entity idle expiry (seconds)")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    overrides: dict[str, Any] = {
        "corner": args.corner,
        "size": args.size,
        "persistent_mode": not args.ephemeral,
        "fall_effect_enabled": args.fall_effect,
    }
    if args.entity_expiry is not None:
        overrides["entity_expiry"] = args.entity_expiry
    config = OverlayConfig.from_env(**overrides)
    overlay = ComboOverlay(args.channel, config, renderer=LoggingRenderer(_LOG), rng=rng)
    async with overlay:
        for _ in range(args.events):
            category = rng.choice(list(Category))
            overlay.add_event(
                {
                    "type": category.value,
                    "username": rng.choice(_USERS),
                    "color": rng.choice(_COLORS),
                    "bits": 5 if category == Category.SECONDARY else 50,
                }
            )
            await asyncio.sleep(1 / args.rate)
        await asyncio.sleep(args.linger)

        _LOG.info("primary total=%d secondary total=%d", overlay.primary_total, overlay.secondary_total)
        for username, count in overlay.leaderboard(Category.PRIMARY):
            _LOG.info("  %-10s %d", username, count)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    asyncio.run(_run(args))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
