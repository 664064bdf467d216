"""Press a sequence of map buttons and write the resulting map as a PNG.

Usage:
    python scripts/render_demo_map.py --press Playgrounds --press Dofasco --out demo.png
    python scripts/render_demo_map.py --pan 43.26,-79.85,0.03,0.03 --press Beaches

Buttons are applied in order. Search buttons run against Nominatim and are
awaited before the next press, so the final image reflects every step.
Set NOMINATIM_USER_AGENT to identify yourself to the public Nominatim server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from domain.models import Coordinate, CoordinateSpan, Region  # noqa: E402
from services.map_controller import MapViewController, UnknownButtonError  # noqa: E402
from services.map_renderer import render_map_png  # noqa: E402

logger = logging.getLogger("render_demo_map")


def _parse_region(value: str) -> Region:
    try:
        lat, lon, dlat, dlon = (float(part) for part in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError("expected lat,lon,lat_delta,lon_delta")
    return Region(center=Coordinate(lat, lon), span=CoordinateSpan(dlat, dlon))


async def _run(presses: List[str], pan: Optional[Region], width: int, height: int) -> bytes:
    controller = MapViewController()
    controller.subscribe(
        lambda scene: logger.info(
            "scene: camera=%s markers=%d", scene.position.mode.value, len(scene.markers)
        )
    )
    if pan is not None:
        controller.on_camera_change(pan)
    for label in presses:
        logger.info("press %s", label)
        task = controller.press(label)
        if task is not None:
            await task
    return render_map_png(controller.render(), width=width, height=height)


def main() -> int:
    if not logger.handlers:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Render the demo map after pressing buttons.")
    parser.add_argument("--press", action="append", default=[], help="Button label; repeatable.")
    parser.add_argument("--pan", type=_parse_region, default=None, help="Visible region before pressing: lat,lon,dlat,dlon")
    parser.add_argument("--out", default="demo_map.png")
    parser.add_argument("--width", type=int, default=1200)
    parser.add_argument("--height", type=int, default=800)
    args = parser.parse_args()

    try:
        png = asyncio.run(_run(args.press, args.pan, args.width, args.height))
    except UnknownButtonError as exc:
        logger.error("Unknown button %s", exc)
        return 2
    out = Path(args.out)
    out.write_bytes(png)
    logger.info("Wrote %s (%d bytes)", out, len(png))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
