import pytest

from domain.models import (
    APPLE_STORE,
    APPLE_STORE_REGION,
    BASIC_SPAN,
    PARKING,
    PARKING_SITE,
    WORK,
    WORK_PLACE,
    CameraMode,
    CameraPosition,
    Coordinate,
    MapItem,
    find_button,
    item_to_dict,
    region_around,
)


def test_named_regions_use_basic_span():
    assert BASIC_SPAN.latitude_delta == 0.01
    assert BASIC_SPAN.longitude_delta == 0.01
    assert WORK_PLACE.center == WORK
    assert PARKING_SITE.center == PARKING
    assert APPLE_STORE_REGION.center == APPLE_STORE
    for region in (WORK_PLACE, PARKING_SITE, APPLE_STORE_REGION):
        assert region.span == BASIC_SPAN


def test_region_bbox_is_centered():
    region = region_around(PARKING, 0.0125, 0.0125)
    bbox = region.to_bbox()
    assert (bbox["min_lat"] + bbox["max_lat"]) / 2 == pytest.approx(PARKING.latitude)
    assert bbox["max_lon"] - bbox["min_lon"] == pytest.approx(0.0125)
    assert region.contains(PARKING)


def test_camera_position_constructors():
    assert CameraPosition().mode == CameraMode.AUTOMATIC
    region_pos = CameraPosition.for_region(WORK_PLACE)
    assert region_pos.mode == CameraMode.REGION
    assert region_pos.camera is None


def test_map_items_compare_by_identity():
    a = MapItem(name="Beach", coordinate=Coordinate(1.0, 2.0))
    b = MapItem(name="Beach", coordinate=Coordinate(1.0, 2.0))
    assert a != b
    assert a == a
    assert len({a, b}) == 2


def test_find_button_and_item_to_dict():
    assert find_button("beaches").search.query == "Beaches"
    assert find_button("nowhere") is None

    item = MapItem(name="Pier 4", coordinate=Coordinate(43.27, -79.87), category="beach")
    data = item_to_dict(item)
    assert data["display_name"] == "Pier 4"
    assert data["latitude"] == 43.27
