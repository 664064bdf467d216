"""
Static map renderer using Pillow.

Turns a MapScene into a PNG: optional slippy-map tile background, badge views
for the fixed annotations, pin markers for search results. The camera
position decides the viewport:

- automatic: frame every annotation and marker
- region: the region's center and span
- camera: ground extent seen from the camera distance, rotated by heading
"""
import logging
import math
import os
import sqlite3
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont

from domain.models import Annotation, CameraMode, Coordinate, MapScene, Marker

BASE_DIR = Path(__file__).resolve().parents[1]
UPSCALE_FACTOR = 2
TILE_SIZE = 256
METERS_PER_DEGREE_LAT = 111_320.0

# Tile configuration
MAP_TILES_ENABLED = os.getenv("MAP_TILES_ENABLED", "0") in ("1", "true", "TRUE")
MAP_TILE_URL_TEMPLATE = os.getenv("MAP_TILE_URL_TEMPLATE", "")
MAP_TILE_USER_AGENT = os.getenv(
    "MAP_TILE_USER_AGENT",
    os.getenv("NOMINATIM_USER_AGENT", "poi-map-explorer/0.1 (tile-fetch)"),
)
MAP_TILE_REFERER = os.getenv("MAP_TILE_REFERER")
MAP_TILE_TIMEOUT = float(os.getenv("MAP_TILE_TIMEOUT", "3"))
MAP_TILE_MIN_INTERVAL_SEC = float(os.getenv("MAP_TILE_MIN_INTERVAL_SEC", "1.0"))
MAP_TILE_HEADERS = {"User-Agent": MAP_TILE_USER_AGENT}
if MAP_TILE_REFERER:
    MAP_TILE_HEADERS["Referer"] = MAP_TILE_REFERER
_TILE_SESSION = requests.Session()
_TILE_LOCK = threading.Lock()
_LAST_TILE_TS = 0.0
MAP_TILE_CACHE_PATH = Path(
    os.getenv("MAP_TILE_CACHE_PATH", str(BASE_DIR / "data" / "tile_cache.sqlite"))
)
MAP_TILE_CACHE_TTL_SECONDS = int(os.getenv("MAP_TILE_CACHE_TTL_SECONDS", str(30 * 24 * 3600)))
_CACHE_DB_LOCK = threading.Lock()
_CACHE_DB: Optional[sqlite3.Connection] = None
TILE_MEMO_MAX = 512
_TILE_MEMO: "OrderedDict[Tuple[int, int, int], Image.Image]" = OrderedDict()
_TILE_MEMO_LOCK = threading.Lock()

# Styling
BACKGROUND_COLOR = "#eef1ec"
GRID_COLOR = (180, 188, 196, 90)
GRID_SPACING_PX = 80
BADGE_SIZE_PX = 34
BADGE_CORNER_RADIUS = 10
BADGE_FILL = (255, 255, 255, 255)  # system background
BADGE_STROKE = (142, 142, 147, 255)  # secondary
BADGE_STROKE_WIDTH = 5
MARKER_COLOR = (234, 67, 53, 255)
MARKER_SELECTED_COLOR = (200, 30, 30, 255)
MARKER_RADIUS = 11
MARKER_SELECTED_SCALE = 1.5
LABEL_COLOR = (40, 40, 40, 255)
COMPASS_COLOR = (60, 60, 60, 230)
VIEWPORT_PADDING_RATIO = 0.15
MIN_SPAN_DEG = 0.01
MAX_MERCATOR_LAT = 85.05112878

# Single-glyph stand-ins for the symbol names used by annotations.
ICON_GLYPHS = {
    "car": "P",
    "building.2": "W",
    "projective": "+",
    "beach.umbrella": "B",
    "figure.and.child.holdinghands": "K",
}

logger = logging.getLogger(__name__)


@dataclass
class TileLayout:
    zoom: int
    origin_x: float  # world pixel x of the viewport's left edge
    origin_y: float  # world pixel y of the viewport's top edge
    scale: float  # canvas px per world px
    offset_x: float
    offset_y: float


# ----------------- Viewport -----------------

def _compute_bbox(points: Sequence[Tuple[float, float]], padding_ratio: float = VIEWPORT_PADDING_RATIO, min_span_deg: float = MIN_SPAN_DEG) -> dict:
    """Padded bbox around points, never narrower than min_span_deg."""
    lats = [lat for lat, _ in points]
    lons = [lon for _, lon in points]
    min_lat, max_lat = min(lats), max(lats)
    min_lon, max_lon = min(lons), max(lons)

    span_lat = max(max_lat - min_lat, min_span_deg)
    span_lon = max(max_lon - min_lon, min_span_deg)
    center_lat = (min_lat + max_lat) / 2.0
    center_lon = (min_lon + max_lon) / 2.0
    half_lat = span_lat * (1 + 2 * padding_ratio) / 2.0
    half_lon = span_lon * (1 + 2 * padding_ratio) / 2.0

    return {
        "min_lat": center_lat - half_lat,
        "max_lat": center_lat + half_lat,
        "min_lon": center_lon - half_lon,
        "max_lon": center_lon + half_lon,
        "span_lat": span_lat,
        "span_lon": span_lon,
    }


def _normalize_bbox_aspect(
    min_lat: float,
    max_lat: float,
    min_lon: float,
    max_lon: float,
    target_aspect: float,
) -> Tuple[float, float, float, float]:
    """
    Expand bbox (never shrink) to match target aspect (width/height after cos(lat)).
    """
    center_lat = (min_lat + max_lat) / 2.0
    center_lon = (min_lon + max_lon) / 2.0
    lat_span = max(max_lat - min_lat, 1e-6)
    lon_span = max(max_lon - min_lon, 1e-6)
    center_lat_rad = math.radians(center_lat)
    lon_span_vis = lon_span * math.cos(center_lat_rad)
    bbox_aspect = lon_span_vis / lat_span

    if bbox_aspect < target_aspect:
        lon_span_vis_new = target_aspect * lat_span
        lon_span_new = lon_span_vis_new / max(math.cos(center_lat_rad), 1e-6)
        min_lon = center_lon - lon_span_new / 2
        max_lon = center_lon + lon_span_new / 2
    else:
        lat_span_new = lon_span_vis / target_aspect
        min_lat = center_lat - lat_span_new / 2
        max_lat = center_lat + lat_span_new / 2

    return min_lat, max_lat, min_lon, max_lon


def _camera_bbox(center: Coordinate, distance_m: float, pitch_deg: float) -> dict:
    """Ground extent seen by a camera; tilting stretches the far edge."""
    pitch = max(0.0, min(pitch_deg, 80.0))
    extent_m = max(distance_m, 1.0) / max(math.cos(math.radians(pitch)), 0.2)
    span_lat = extent_m / METERS_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(center.latitude)), 1e-6)
    span_lon = extent_m / (METERS_PER_DEGREE_LAT * cos_lat)
    return {
        "min_lat": center.latitude - span_lat / 2.0,
        "max_lat": center.latitude + span_lat / 2.0,
        "min_lon": center.longitude - span_lon / 2.0,
        "max_lon": center.longitude + span_lon / 2.0,
        "span_lat": span_lat,
        "span_lon": span_lon,
    }


def resolve_viewport(scene: MapScene, width: int, height: int) -> dict:
    """Return the lat/lon bbox the scene's camera position shows on a width x height canvas."""
    position = scene.position
    if position.mode == CameraMode.REGION and position.region is not None:
        bbox = position.region.to_bbox()
    elif position.mode == CameraMode.CAMERA and position.camera is not None:
        camera = position.camera
        bbox = _camera_bbox(camera.center, camera.distance, camera.pitch)
    else:
        points = [c.as_tuple() for c in scene.content_coordinates()]
        if not points:
            # Nothing to frame: show the whole world.
            return {"min_lat": -60.0, "max_lat": 75.0, "min_lon": -180.0, "max_lon": 180.0,
                    "span_lat": 135.0, "span_lon": 360.0}
        bbox = _compute_bbox(points)

    target_aspect = max(width / max(height, 1), 1e-3)
    min_lat, max_lat, min_lon, max_lon = _normalize_bbox_aspect(
        bbox["min_lat"], bbox["max_lat"], bbox["min_lon"], bbox["max_lon"], target_aspect
    )
    bbox.update({"min_lat": min_lat, "max_lat": max_lat, "min_lon": min_lon, "max_lon": max_lon})
    return bbox


# ----------------- Projection -----------------

def _latlon_to_world_px(lat: float, lon: float, zoom: int) -> Tuple[float, float]:
    """Web Mercator world pixel coordinates at an integer zoom."""
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    lat_rad = math.radians(lat)
    n = TILE_SIZE * 2.0 ** zoom
    x = (lon + 180.0) / 360.0 * n
    y = (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    return x, y


def _compute_tile_layout(bbox: Dict[str, float], width: int, height: int) -> TileLayout:
    """Pick a zoom where one tile pixel is roughly one canvas pixel, then fit bbox to canvas."""
    lon_span = max(bbox["max_lon"] - bbox["min_lon"], 1e-9)
    zoom = int(round(math.log2(width * 360.0 / (TILE_SIZE * lon_span))))
    zoom = max(1, min(zoom, 18))

    x0, y0 = _latlon_to_world_px(bbox["max_lat"], bbox["min_lon"], zoom)
    x1, y1 = _latlon_to_world_px(bbox["min_lat"], bbox["max_lon"], zoom)
    span_x = max(x1 - x0, 1e-9)
    span_y = max(y1 - y0, 1e-9)
    scale = min(width / span_x, height / span_y)
    offset_x = (width - span_x * scale) / 2.0
    offset_y = (height - span_y * scale) / 2.0
    return TileLayout(zoom=zoom, origin_x=x0, origin_y=y0, scale=scale, offset_x=offset_x, offset_y=offset_y)


def _map_points_to_canvas(
    points: Sequence[Tuple[float, float]],
    layout: TileLayout,
    width: int,
    height: int,
    heading_deg: float = 0.0,
) -> List[Tuple[float, float]]:
    """Project lat/lon to canvas pixels; heading rotates the map around the canvas center."""
    cx, cy = width / 2.0, height / 2.0
    theta = math.radians(-heading_deg)
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    mapped: List[Tuple[float, float]] = []
    for lat, lon in points:
        wx, wy = _latlon_to_world_px(lat, lon, layout.zoom)
        x = layout.offset_x + (wx - layout.origin_x) * layout.scale
        y = layout.offset_y + (wy - layout.origin_y) * layout.scale
        if heading_deg:
            dx, dy = x - cx, y - cy
            x = cx + dx * cos_t - dy * sin_t
            y = cy + dx * sin_t + dy * cos_t
        mapped.append((x, y))
    return mapped


# ----------------- Tiles -----------------

def _get_tile_db() -> sqlite3.Connection:
    """Lazily open the tile cache DB and ensure schema exists."""
    global _CACHE_DB
    with _CACHE_DB_LOCK:
        if _CACHE_DB is None:
            MAP_TILE_CACHE_PATH.parent.mkdir(parents=True, exist_ok=True)
            _CACHE_DB = sqlite3.connect(str(MAP_TILE_CACHE_PATH), check_same_thread=False)
            _CACHE_DB.execute(
                """
                CREATE TABLE IF NOT EXISTS tiles (
                    z INTEGER,
                    x INTEGER,
                    y INTEGER,
                    fetched_at INTEGER,
                    data BLOB,
                    PRIMARY KEY (z, x, y)
                )
                """
            )
            _CACHE_DB.commit()
        return _CACHE_DB


def _get_tile_from_cache(z: int, x: int, y: int) -> Optional[bytes]:
    """Fetch tile bytes from SQLite cache if present and not expired."""
    try:
        db = _get_tile_db()
        row = db.execute(
            "SELECT fetched_at, data FROM tiles WHERE z=? AND x=? AND y=?",
            (z, x, y),
        ).fetchone()
    except sqlite3.Error as exc:
        logger.debug("[MAP] Tile cache read failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not row:
        return None
    fetched_at, data = row
    if MAP_TILE_CACHE_TTL_SECONDS > 0 and time.time() - (fetched_at or 0) > MAP_TILE_CACHE_TTL_SECONDS:
        return None
    return data


def _store_tile_in_cache(z: int, x: int, y: int, data: bytes) -> None:
    try:
        db = _get_tile_db()
        db.execute(
            "INSERT OR REPLACE INTO tiles (z, x, y, fetched_at, data) VALUES (?, ?, ?, ?, ?)",
            (z, x, y, int(time.time()), data),
        )
        db.commit()
    except sqlite3.Error as exc:
        logger.debug("[MAP] Tile cache write failed for %s/%s/%s: %s", z, x, y, exc)


def _fetch_tile_http(z: int, x: int, y: int) -> Optional[bytes]:
    """Fetch a single tile via HTTP with rate limiting."""
    global _LAST_TILE_TS

    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return None

    url = MAP_TILE_URL_TEMPLATE.format(z=z, x=x, y=y)
    with _TILE_LOCK:
        elapsed = time.time() - _LAST_TILE_TS
        if elapsed < MAP_TILE_MIN_INTERVAL_SEC:
            time.sleep(MAP_TILE_MIN_INTERVAL_SEC - elapsed)
        _LAST_TILE_TS = time.time()
        try:
            resp = _TILE_SESSION.get(url, headers=MAP_TILE_HEADERS, timeout=MAP_TILE_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("[MAP] Tile fetch failed for %s: %s", url, exc)
            return None
    return resp.content


def _load_tile(z: int, x: int, y: int) -> Optional[Image.Image]:
    """Tile from SQLite cache, else over HTTP (then stored)."""
    data = _get_tile_from_cache(z, x, y)
    from_cache = data is not None
    if data is None:
        data = _fetch_tile_http(z, x, y)
    if data is None:
        return None
    try:
        img = Image.open(BytesIO(data)).convert("RGB")
    except (OSError, ValueError) as exc:
        logger.warning("[MAP] Tile decode failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not from_cache:
        _store_tile_in_cache(z, x, y, data)
    return img


def _clear_tile_memo() -> None:
    with _TILE_MEMO_LOCK:
        _TILE_MEMO.clear()


def _fetch_tile_cached(z: int, x: int, y: int) -> Optional[Image.Image]:
    """In-memory LRU over _load_tile. Missing tiles are not memoised, so they are retried."""
    key = (z, x, y)
    with _TILE_MEMO_LOCK:
        img = _TILE_MEMO.get(key)
        if img is not None:
            _TILE_MEMO.move_to_end(key)
            return img
    img = _load_tile(z, x, y)
    if img is None:
        return None
    with _TILE_MEMO_LOCK:
        _TILE_MEMO[key] = img
        _TILE_MEMO.move_to_end(key)
        while len(_TILE_MEMO) > TILE_MEMO_MAX:
            _TILE_MEMO.popitem(last=False)
    return img

def _draw_tile_background(img: Image.Image, layout: TileLayout) -> bool:
    """
    Paste tiles covering the canvas. Returns True if any tile was drawn.
    """
    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return False

    n_tiles = 2 ** layout.zoom
    world_left = layout.origin_x - layout.offset_x / layout.scale
    world_top = layout.origin_y - layout.offset_y / layout.scale
    world_right = world_left + img.width / layout.scale
    world_bottom = world_top + img.height / layout.scale
    tx_min, tx_max = int(world_left // TILE_SIZE), int(world_right // TILE_SIZE)
    ty_min = max(0, int(world_top // TILE_SIZE))
    ty_max = min(n_tiles - 1, int(world_bottom // TILE_SIZE))
    tile_px = max(1, int(math.ceil(TILE_SIZE * layout.scale)))

    any_tile = False
    for ty in range(ty_min, ty_max + 1):
        for tx in range(tx_min, tx_max + 1):
            tile = _fetch_tile_cached(layout.zoom, tx % n_tiles, ty)
            if tile is None:
                continue
            any_tile = True
            px = int(layout.offset_x + (tx * TILE_SIZE - layout.origin_x) * layout.scale)
            py = int(layout.offset_y + (ty * TILE_SIZE - layout.origin_y) * layout.scale)
            img.paste(tile.resize((tile_px, tile_px), Image.BICUBIC), (px, py))
    return any_tile


# ----------------- Drawing -----------------

@lru_cache(maxsize=16)
def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


def _draw_grid(draw: ImageDraw.ImageDraw, width: int, height: int) -> None:
    step = GRID_SPACING_PX * UPSCALE_FACTOR
    for x in range(0, width + 1, step):
        draw.line([(x, 0), (x, height)], fill=GRID_COLOR, width=UPSCALE_FACTOR)
    for y in range(0, height + 1, step):
        draw.line([(0, y), (width, y)], fill=GRID_COLOR, width=UPSCALE_FACTOR)


def _draw_text_centered(draw: ImageDraw.ImageDraw, center: Tuple[float, float], text: str, font, fill) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = center[0] - (right - left) / 2.0 - left
    y = center[1] - (bottom - top) / 2.0 - top
    draw.text((x, y), text, font=font, fill=fill)


def _draw_badge(draw: ImageDraw.ImageDraw, center: Tuple[float, float], annotation: Annotation) -> None:
    """Rounded-rectangle badge with an icon glyph; title below unless hidden."""
    half = BADGE_SIZE_PX * UPSCALE_FACTOR / 2.0
    x, y = center
    box = (x - half, y - half, x + half, y + half)
    radius = BADGE_CORNER_RADIUS * UPSCALE_FACTOR
    draw.rounded_rectangle(box, radius=radius, fill=BADGE_FILL)
    draw.rounded_rectangle(box, radius=radius, outline=BADGE_STROKE, width=BADGE_STROKE_WIDTH * UPSCALE_FACTOR // 2)
    glyph = ICON_GLYPHS.get(annotation.system_image, annotation.title[:1].upper())
    _draw_text_centered(draw, center, glyph, _load_font(16 * UPSCALE_FACTOR), LABEL_COLOR)
    if not annotation.titles_hidden:
        _draw_text_centered(
            draw, (x, y + half + 10 * UPSCALE_FACTOR), annotation.title, _load_font(11 * UPSCALE_FACTOR), LABEL_COLOR
        )


def _draw_pin(draw: ImageDraw.ImageDraw, tip: Tuple[float, float], marker: Marker) -> None:
    """Balloon pin whose tail touches the coordinate; title below the tip."""
    scale = MARKER_SELECTED_SCALE if marker.selected else 1.0
    r = MARKER_RADIUS * UPSCALE_FACTOR * scale
    x, y = tip
    head_cy = y - r * 2.2
    color = MARKER_SELECTED_COLOR if marker.selected else MARKER_COLOR
    draw.polygon([(x - r * 0.6, head_cy + r * 0.6), (x + r * 0.6, head_cy + r * 0.6), (x, y)], fill=color)
    draw.ellipse((x - r, head_cy - r, x + r, head_cy + r), fill=color, outline=(255, 255, 255, 255), width=UPSCALE_FACTOR)
    dot = r * 0.35
    draw.ellipse((x - dot, head_cy - dot, x + dot, head_cy + dot), fill=(255, 255, 255, 255))
    label = marker.item.display_name or marker.item.name
    if label:
        _draw_text_centered(draw, (x, y + 9 * UPSCALE_FACTOR), label, _load_font(11 * UPSCALE_FACTOR), LABEL_COLOR)


def _draw_compass(draw: ImageDraw.ImageDraw, width: int, heading_deg: float) -> None:
    """North arrow in the top-right corner, rotated with the map."""
    r = 18 * UPSCALE_FACTOR
    cx, cy = width - r - 16 * UPSCALE_FACTOR, r + 16 * UPSCALE_FACTOR
    draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=(255, 255, 255, 220), outline=COMPASS_COLOR, width=UPSCALE_FACTOR)
    theta = math.radians(-heading_deg)
    tip = (cx + math.sin(theta) * r * 0.8, cy - math.cos(theta) * r * 0.8)
    left = (cx + math.sin(theta - 2.6) * r * 0.5, cy - math.cos(theta - 2.6) * r * 0.5)
    right = (cx + math.sin(theta + 2.6) * r * 0.5, cy - math.cos(theta + 2.6) * r * 0.5)
    draw.polygon([tip, left, (cx, cy), right], fill=MARKER_COLOR)


def render_map_image(scene: MapScene, width: int = 1200, height: int = 800) -> Image.Image:
    """Render the scene to an RGB image of the given size."""
    bbox = resolve_viewport(scene, width, height)
    heading = 0.0
    if scene.position.mode == CameraMode.CAMERA and scene.position.camera is not None:
        heading = scene.position.camera.heading % 360.0

    draw_w, draw_h = width * UPSCALE_FACTOR, height * UPSCALE_FACTOR
    layout = _compute_tile_layout(bbox, draw_w, draw_h)

    img = Image.new("RGBA", (draw_w, draw_h), BACKGROUND_COLOR)
    tiles_ok = False
    if not heading:
        try:
            tiles_ok = _draw_tile_background(img, layout)
        except Exception as exc:
            logger.warning("[MAP] Tile background failed, falling back to grid: %s", exc)
            tiles_ok = False
    draw = ImageDraw.Draw(img, "RGBA")
    if not tiles_ok:
        _draw_grid(draw, draw_w, draw_h)

    annotation_px = _map_points_to_canvas(
        [a.coordinate.as_tuple() for a in scene.annotations], layout, draw_w, draw_h, heading
    )
    for annotation, center in zip(scene.annotations, annotation_px):
        _draw_badge(draw, center, annotation)

    # Selected marker last so it sits on top.
    ordered = sorted(scene.markers, key=lambda m: m.selected)
    marker_px = _map_points_to_canvas(
        [m.coordinate.as_tuple() for m in ordered], layout, draw_w, draw_h, heading
    )
    for marker, tip in zip(ordered, marker_px):
        _draw_pin(draw, tip, marker)

    if heading:
        _draw_compass(draw, draw_w, heading)

    logger.debug(
        "[MAP] Rendered %s view lat(%.4f,%.4f) lon(%.4f,%.4f) z=%d annotations=%d markers=%d tiles=%s",
        scene.position.mode.value,
        bbox["min_lat"],
        bbox["max_lat"],
        bbox["min_lon"],
        bbox["max_lon"],
        layout.zoom,
        len(scene.annotations),
        len(scene.markers),
        tiles_ok,
    )
    return img.resize((width, height), resample=Image.LANCZOS).convert("RGB")


def render_map_png(scene: MapScene, width: int = 1200, height: int = 800) -> bytes:
    buf = BytesIO()
    render_map_image(scene, width, height).save(buf, format="PNG")
    return buf.getvalue()
