"""
SQLite-backed cache for local search responses.
"""
from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from typing import List, Optional, Sequence

from domain.models import Coordinate, MapItem, Region, ResultType

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
SEARCH_CACHE_DB_FILENAME = "search_cache.sqlite"


def _quantize_coord(value: float, step: float = 0.0005) -> float:
    """Quantize coordinates to reduce cache key diversity (~50m grid)."""
    return round(round(value / step) * step, 6)


def _normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def _types_key(result_types: Sequence[ResultType]) -> str:
    return ",".join(sorted(t.value for t in result_types))


class SearchCache:
    def __init__(self, db_path: Optional[str] = None, default_ttl_seconds: int = 7 * 24 * 3600):
        self.db_path = db_path or os.path.join(DATA_DIR, SEARCH_CACHE_DB_FILENAME)
        self.default_ttl_seconds = default_ttl_seconds
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS search_cache (
                provider TEXT NOT NULL,
                query TEXT NOT NULL,
                center_lat REAL NOT NULL,
                center_lon REAL NOT NULL,
                span_lat REAL NOT NULL,
                span_lon REAL NOT NULL,
                result_types TEXT NOT NULL,
                response_json TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                PRIMARY KEY (provider, query, center_lat, center_lon, span_lat, span_lon, result_types)
            )
            """
        )
        self._conn.commit()

    def _key(self, provider: str, query: str, region: Region, result_types: Sequence[ResultType]) -> tuple:
        return (
            provider,
            _normalize_query(query),
            _quantize_coord(region.center.latitude),
            _quantize_coord(region.center.longitude),
            _quantize_coord(region.span.latitude_delta),
            _quantize_coord(region.span.longitude_delta),
            _types_key(result_types),
        )

    def get_items(
        self,
        provider: str,
        query: str,
        region: Region,
        result_types: Sequence[ResultType],
    ) -> Optional[List[MapItem]]:
        """
        Return cached MapItem list if a non-expired entry exists for key.
        """
        try:
            with self._lock:
                cur = self._conn.execute(
                    """
                    SELECT response_json, created_at, ttl_seconds FROM search_cache
                    WHERE provider=? AND query=? AND center_lat=? AND center_lon=?
                    AND span_lat=? AND span_lon=? AND result_types=?
                    """,
                    self._key(provider, query, region, result_types),
                )
                row = cur.fetchone()
        except sqlite3.Error:
            return None
        if not row:
            return None
        response_json, created_at, ttl_seconds = row
        if ttl_seconds > 0 and (time.time() - created_at) > ttl_seconds:
            return None
        try:
            payload = json.loads(response_json)
        except ValueError:
            return None
        items: List[MapItem] = []
        for entry in payload or []:
            try:
                items.append(
                    MapItem(
                        name=entry.get("name", ""),
                        coordinate=Coordinate(float(entry["lat"]), float(entry["lon"])),
                        category=entry.get("category"),
                        provider=entry.get("provider", provider),
                        place_id=entry.get("place_id", ""),
                        raw=entry.get("raw"),
                        display_name=entry.get("display_name"),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return items

    def put_items(
        self,
        provider: str,
        query: str,
        region: Region,
        result_types: Sequence[ResultType],
        items: List[MapItem],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Store MapItem list in cache for key."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        payload = [
            {
                "provider": item.provider,
                "place_id": item.place_id,
                "name": item.name,
                "lat": item.coordinate.latitude,
                "lon": item.coordinate.longitude,
                "category": item.category,
                "display_name": item.display_name,
                "raw": item.raw,
            }
            for item in items
        ]
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO search_cache
                    (provider, query, center_lat, center_lon, span_lat, span_lon, result_types,
                     response_json, created_at, ttl_seconds)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        *self._key(provider, query, region, result_types),
                        json.dumps(payload),
                        int(time.time()),
                        ttl,
                    ),
                )
                self._conn.commit()
        except sqlite3.Error:
            return
