"""
Free-text point-of-interest search scoped to a map region, backed by Nominatim.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, List, Optional

import requests

from domain.models import Coordinate, LocalSearchRequest, MapItem, ResultType
from services.nominatim import NOMINATIM_BASE_URL, NOMINATIM_HEADERS, region_to_viewbox, throttled_get
from services.search_cache_sqlite import SearchCache
from settings import settings

# OSM classes that count as a point of interest rather than an address.
POI_CLASSES = {
    "amenity",
    "leisure",
    "tourism",
    "shop",
    "natural",
    "historic",
    "sport",
    "craft",
    "office",
    "club",
    "healthcare",
    "emergency",
    "man_made",
    "aeroway",
    "railway",
}
ADDRESS_CLASSES = {"place", "building", "highway", "boundary"}


class LocalSearchError(Exception):
    """Raised when the search service could not produce a response."""


def format_display_name(item: MapItem) -> str:
    """
    Produce a short display name for a search result.

    Rules:
    - Prefer a concrete 'name' when Nominatim gives one.
    - Otherwise build something compact from the address parts.
    - Otherwise keep the first components of the raw display_name.
    - Keep it relatively short (< 60 chars); truncate with '…' if necessary.
    """
    if item.name and item.name.strip():
        return _truncate(item.name.strip())

    raw = item.raw or {}
    address = raw.get("address", {})
    if isinstance(address, dict):
        parts = []
        if address.get("house_number"):
            parts.append(str(address["house_number"]))
        if address.get("road"):
            parts.append(str(address["road"]))
        if len(parts) < 2 and address.get("city"):
            parts.append(str(address["city"]))
        if parts:
            return _truncate(", ".join(parts))

    display_name = raw.get("display_name", "")
    if display_name:
        parts = [p.strip() for p in display_name.split(",")]
        # Skip postal codes
        filtered = [p for p in parts if p and not re.match(r"^[A-Z]\d[A-Z] ?\d[A-Z]\d$|^\d{5}(-\d{4})?$", p)]
        result_str = ", ".join(filtered[:3])
        if result_str:
            return _truncate(result_str)

    return f"({item.coordinate.latitude:.4f}, {item.coordinate.longitude:.4f})"


def _truncate(text: str, limit: int = 60) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "…"
    return text


def _matches_result_types(item: dict, result_types: Iterable[ResultType]) -> bool:
    cls = item.get("category") or item.get("class")
    wanted = set(result_types)
    if ResultType.POINT_OF_INTEREST in wanted and cls in POI_CLASSES:
        return True
    if ResultType.ADDRESS in wanted and cls in ADDRESS_CLASSES:
        return True
    return False


class LocalSearch:
    """
    Run a LocalSearchRequest against Nominatim.

    `start` raises LocalSearchError on any transport or decoding problem; an
    empty list means the service answered with no matching items.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        cache: Optional[SearchCache] = None,
        timeout: Optional[float] = None,
        max_results: Optional[int] = None,
        provider: str = "osm",
    ):
        self.provider = provider
        self.base_url = (base_url or NOMINATIM_BASE_URL).rstrip("/")
        self.cache = cache
        self.timeout = timeout if timeout is not None else settings.SEARCH_TIMEOUT
        self.max_results = max_results if max_results is not None else settings.SEARCH_MAX_RESULTS
        self.logger = logging.getLogger(__name__)

    def _params(self, request: LocalSearchRequest) -> dict:
        return {
            "q": request.natural_language_query,
            "format": "jsonv2",
            "viewbox": region_to_viewbox(request.region),
            "bounded": "1",
            "limit": str(self.max_results),
            "addressdetails": "1",
            "namedetails": "1",
        }

    def _to_item(self, entry: dict) -> MapItem:
        item = MapItem(
            name=entry.get("name") or "",
            coordinate=Coordinate(float(entry["lat"]), float(entry["lon"])),
            category=entry.get("type") or entry.get("category"),
            provider=self.provider,
            place_id=str(entry.get("place_id", "")),
            raw=entry,
        )
        item.display_name = format_display_name(item)
        return item

    def start(self, request: LocalSearchRequest) -> List[MapItem]:
        if self.cache is not None:
            cached = self.cache.get_items(
                self.provider, request.natural_language_query, request.region, request.result_types
            )
            if cached is not None:
                self.logger.debug(
                    "LocalSearch cache hit: query=%r items=%d", request.natural_language_query, len(cached)
                )
                return cached

        try:
            resp = throttled_get(
                f"{self.base_url}/search",
                params=self._params(request),
                headers=NOMINATIM_HEADERS,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise LocalSearchError(f"search failed for {request.natural_language_query!r}: {exc}") from exc

        if not isinstance(data, list):
            raise LocalSearchError(f"unexpected search payload: {type(data).__name__}")

        items: List[MapItem] = []
        for entry in data:
            if not isinstance(entry, dict) or not _matches_result_types(entry, request.result_types):
                continue
            try:
                item = self._to_item(entry)
            except (KeyError, TypeError, ValueError):
                continue
            if not request.region.contains(item.coordinate):
                continue
            items.append(item)

        if self.cache is not None:
            self.cache.put_items(
                self.provider,
                request.natural_language_query,
                request.region,
                request.result_types,
                items,
                ttl_seconds=settings.SEARCH_CACHE_TTL_SECONDS,
            )
        self.logger.debug(
            "LocalSearch.start: query=%r viewbox=%s got %d of %d results",
            request.natural_language_query,
            region_to_viewbox(request.region),
            len(items),
            len(data),
        )
        return items

    async def start_async(self, request: LocalSearchRequest) -> List[MapItem]:
        """Run `start` in a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(self.start, request)


_default_local_search: Optional[LocalSearch] = None


def get_default_local_search() -> LocalSearch:
    global _default_local_search
    if _default_local_search is None:
        cache = None
        if settings.SEARCH_CACHE_ENABLED:
            cache = SearchCache(db_path=settings.SEARCH_CACHE_PATH)
        _default_local_search = LocalSearch(cache=cache)
    return _default_local_search
