import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from domain.models import Coordinate, LocalSearchRequest, MapItem  # noqa: E402


class FakeSearchService:
    """Records requests; answers with canned items, an exception, or waits on a gate."""

    def __init__(self, items: Optional[List[MapItem]] = None, error: Optional[Exception] = None):
        self.items = items or []
        self.error = error
        self.requests: List[LocalSearchRequest] = []
        self.gates: dict = {}
        self.responses: dict = {}

    async def start_async(self, request: LocalSearchRequest) -> List[MapItem]:
        self.requests.append(request)
        query = request.natural_language_query
        gate = self.gates.get(query)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.responses.get(query, self.items))


def make_item(name: str, lat: float = 43.25, lon: float = -79.87, category: str = "playground") -> MapItem:
    return MapItem(name=name, coordinate=Coordinate(lat, lon), category=category, display_name=name)


@pytest.fixture
def fake_search():
    return FakeSearchService()


def run(coro):
    return asyncio.run(coro)
