import math

import pytest
from PIL import Image

import services.map_renderer as m
from conftest import make_item
from domain.models import (
    ANNOTATIONS,
    PARKING,
    WORK_PLACE,
    CameraPosition,
    MapState,
    shortcut_camera,
)
from services.map_controller import render_scene


@pytest.fixture(autouse=True)
def no_tiles(monkeypatch):
    monkeypatch.setattr(m, "MAP_TILES_ENABLED", False)


def _scene(position, items=()):
    state = MapState(position=position, search_results=list(items))
    return render_scene(state)


def test_region_viewport_contains_region_and_matches_aspect():
    scene = _scene(CameraPosition.for_region(WORK_PLACE))
    width, height = 1200, 800
    bbox = m.resolve_viewport(scene, width, height)

    assert bbox["min_lat"] <= WORK_PLACE.min_lat + 1e-9
    assert bbox["max_lat"] >= WORK_PLACE.max_lat - 1e-9
    assert bbox["min_lon"] <= WORK_PLACE.min_lon + 1e-9
    assert bbox["max_lon"] >= WORK_PLACE.max_lon - 1e-9
    lat_center = (bbox["min_lat"] + bbox["max_lat"]) / 2.0
    aspect = (bbox["max_lon"] - bbox["min_lon"]) * math.cos(math.radians(lat_center)) / (
        bbox["max_lat"] - bbox["min_lat"]
    )
    assert aspect == pytest.approx(width / height, rel=0.01)


def test_automatic_viewport_frames_annotations_and_markers():
    far_item = make_item("Far Beach", lat=43.40, lon=-79.70)
    scene = _scene(CameraPosition.automatic(), [far_item])
    bbox = m.resolve_viewport(scene, 800, 800)

    for coord in scene.content_coordinates():
        assert bbox["min_lat"] < coord.latitude < bbox["max_lat"]
        assert bbox["min_lon"] < coord.longitude < bbox["max_lon"]


def test_automatic_viewport_without_content_shows_world():
    state = MapState()
    scene = render_scene(state, annotations=())
    bbox = m.resolve_viewport(scene, 800, 600)
    assert bbox["max_lon"] - bbox["min_lon"] >= 360.0


def test_camera_viewport_is_centered_and_scales_with_distance():
    near = _scene(CameraPosition.for_camera(shortcut_camera(PARKING)))
    bbox = m.resolve_viewport(near, 1000, 1000)
    assert (bbox["min_lat"] + bbox["max_lat"]) / 2.0 == pytest.approx(PARKING.latitude)
    assert (bbox["min_lon"] + bbox["max_lon"]) / 2.0 == pytest.approx(PARKING.longitude)

    flat = m._camera_bbox(PARKING, 980, 0)
    tilted = m._camera_bbox(PARKING, 980, 60)
    farther = m._camera_bbox(PARKING, 1960, 0)
    assert tilted["span_lat"] > flat["span_lat"]
    assert farther["span_lat"] == pytest.approx(2 * flat["span_lat"])


def test_projection_puts_region_center_at_canvas_center():
    bbox = m.resolve_viewport(_scene(CameraPosition.for_region(WORK_PLACE)), 1200, 800)
    layout = m._compute_tile_layout(bbox, 1200, 800)
    (x, y), = m._map_points_to_canvas([WORK_PLACE.center.as_tuple()], layout, 1200, 800)
    assert x == pytest.approx(600, abs=2)
    assert y == pytest.approx(400, abs=2)


def test_heading_rotates_points_around_center():
    bbox = m.resolve_viewport(_scene(CameraPosition.for_region(WORK_PLACE)), 1000, 1000)
    layout = m._compute_tile_layout(bbox, 1000, 1000)
    north = (WORK_PLACE.max_lat, WORK_PLACE.center.longitude)
    (x0, y0), = m._map_points_to_canvas([north], layout, 1000, 1000, heading_deg=0)
    (x90, y90), = m._map_points_to_canvas([north], layout, 1000, 1000, heading_deg=90)
    # Facing east, north ends up on the left.
    assert y0 < 500
    assert x90 < 500
    assert y90 == pytest.approx(500, abs=2)


def test_render_map_image_has_requested_size():
    items = [make_item("A", lat=PARKING.latitude + 0.002), make_item("B", lon=PARKING.longitude + 0.002)]
    state = MapState(position=CameraPosition.automatic(), search_results=items, selected_result=items[0])
    img = m.render_map_image(render_scene(state), width=320, height=200)
    assert isinstance(img, Image.Image)
    assert img.size == (320, 200)
    assert img.mode == "RGB"


def test_render_png_for_rotated_camera():
    scene = _scene(CameraPosition.for_camera(shortcut_camera(PARKING)))
    png = m.render_map_png(scene, width=200, height=150)
    assert png.startswith(b"\x89PNG")


def test_badge_draws_on_canvas():
    img = Image.new("RGBA", (200, 200), "white")
    draw = m.ImageDraw.Draw(img, "RGBA")
    m._draw_badge(draw, (100, 100), ANNOTATIONS[0])
    assert img.getpixel((100 - m.BADGE_SIZE_PX * m.UPSCALE_FACTOR // 2 + 1, 100))[:3] != (255, 255, 255)
