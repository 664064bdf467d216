import time
from concurrent.futures import ThreadPoolExecutor

from domain.models import PARKING, WORK, Coordinate, MapItem, ResultType, region_around
from services.search_cache_sqlite import SearchCache

POI = (ResultType.POINT_OF_INTEREST,)


def _items():
    return [
        MapItem(name="Pier 4 Beach", coordinate=Coordinate(43.27, -79.87), category="beach", place_id="7"),
        MapItem(name="Bayfront Beach", coordinate=Coordinate(43.271, -79.872), category="beach", place_id="8"),
    ]


def test_round_trip_keeps_order_and_fields(tmp_path):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    region = region_around(PARKING, 0.0125, 0.0125)
    cache.put_items("osm", "Beaches", region, POI, _items())

    cached = cache.get_items("osm", "Beaches", region, POI)
    assert [i.name for i in cached] == ["Pier 4 Beach", "Bayfront Beach"]
    assert cached[0].coordinate == Coordinate(43.27, -79.87)
    assert cached[0].category == "beach"
    assert cached[0].place_id == "7"


def test_query_is_normalized(tmp_path):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    region = region_around(PARKING, 0.0125, 0.0125)
    cache.put_items("osm", "  Beaches ", region, POI, _items())
    assert cache.get_items("osm", "beaches", region, POI) is not None


def test_different_region_or_types_miss(tmp_path):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    region = region_around(PARKING, 0.0125, 0.0125)
    cache.put_items("osm", "Beaches", region, POI, _items())

    assert cache.get_items("osm", "Beaches", region_around(WORK, 0.0125, 0.0125), POI) is None
    assert cache.get_items("osm", "Beaches", region, (ResultType.ADDRESS,)) is None


def test_empty_result_is_cached(tmp_path):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    region = region_around(PARKING, 0.0125, 0.0125)
    cache.put_items("osm", "Volcanoes", region, POI, [])
    assert cache.get_items("osm", "Volcanoes", region, POI) == []


def test_expired_entry_is_ignored(tmp_path, monkeypatch):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    region = region_around(PARKING, 0.0125, 0.0125)
    cache.put_items("osm", "Beaches", region, POI, _items(), ttl_seconds=10)

    real_time = time.time()
    monkeypatch.setattr(time, "time", lambda: real_time + 60)
    assert cache.get_items("osm", "Beaches", region, POI) is None


class _TrackingConnection:
    """Wraps a sqlite3 connection and records how many calls overlap."""

    def __init__(self, conn):
        self._conn = conn
        self.active = 0
        self.max_active = 0

    def execute(self, *args):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.002)
            return self._conn.execute(*args)
        finally:
            self.active -= 1

    def commit(self):
        return self._conn.commit()


def test_worker_threads_share_the_connection_one_at_a_time(tmp_path):
    cache = SearchCache(db_path=str(tmp_path / "cache.sqlite"))
    tracking = _TrackingConnection(cache._conn)
    cache._conn = tracking
    region = region_around(PARKING, 0.0125, 0.0125)

    def put_then_get(n):
        query = f"Beaches {n}"
        cache.put_items("osm", query, region, POI, _items())
        return cache.get_items("osm", query, region, POI)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(put_then_get, range(16)))

    assert all(r is not None and len(r) == 2 for r in results)
    assert tracking.max_active == 1
