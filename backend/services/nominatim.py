"""Shared HTTP plumbing for OpenStreetMap Nominatim.

Every Nominatim call in the app goes through `throttled_get` so the public
usage policy (one request per second, identifying User-Agent) holds no matter
how many searches are in flight.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from typing import Any

import requests

from domain.models import Region

NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))

FALLBACK_UA = "poi-map-explorer/0.1 (contact: example@example.com)"

logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_logged_ua = False

if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER


def throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts, _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(headers.get("User-Agent", "")))
        _logged_ua = True
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def region_to_viewbox(region: Region) -> str:
    """Nominatim viewbox order is left,top,right,bottom (lon,lat,lon,lat)."""
    return (
        f"{region.min_lon:.6f},{region.max_lat:.6f},"
        f"{region.max_lon:.6f},{region.min_lat:.6f}"
    )
