"""
Map view controller.

Owns the map UI state and wires it to user events:

- camera changes reported by the map surface update the visible region
- shortcut buttons either move the camera or start a search
- finished searches replace the result markers and reframe the camera

The controller publishes a fresh MapScene to its subscribers after every
mutation. Searches are fire-and-forget asyncio tasks; nothing cancels an
older search when a newer one starts.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Sequence, Set

from domain.models import (
    ANNOTATIONS,
    BUTTONS,
    PARKING,
    SMOOTH_SHORT,
    Annotation,
    CameraPosition,
    LocalSearchRequest,
    MapButton,
    MapItem,
    MapScene,
    MapState,
    Marker,
    Region,
    ResultType,
    Transition,
    find_button,
    region_around,
)
from settings import settings

logger = logging.getLogger(__name__)

SceneListener = Callable[[MapScene], None]


class SearchService(Protocol):
    async def start_async(self, request: LocalSearchRequest) -> List[MapItem]:
        ...


class UnknownButtonError(KeyError):
    pass


def render_scene(
    state: MapState,
    annotations: Sequence[Annotation] = ANNOTATIONS,
    transition: Optional[Transition] = None,
) -> MapScene:
    """Pure function of state: fixed annotations plus one marker per result."""
    markers = tuple(
        Marker(item=item, selected=item is state.selected_result)
        for item in state.search_results
    )
    return MapScene(
        position=state.position,
        annotations=tuple(annotations),
        markers=markers,
        map_style=state.map_style,
        transition=transition,
    )


class MapViewController:
    def __init__(
        self,
        search_service: Optional[SearchService] = None,
        annotations: Sequence[Annotation] = ANNOTATIONS,
        buttons: Sequence[MapButton] = BUTTONS,
        discard_stale: Optional[bool] = None,
    ):
        if search_service is None:
            from services.local_search import get_default_local_search

            search_service = get_default_local_search()
        self.search_service = search_service
        self.annotations = tuple(annotations)
        self.buttons = tuple(buttons)
        self.discard_stale = settings.SEARCH_DISCARD_STALE if discard_stale is None else discard_stale
        self.state = MapState()
        self.last_request: Optional[LocalSearchRequest] = None
        self._listeners: List[SceneListener] = []
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    # ----------------- Rendering -----------------

    def render(self, transition: Optional[Transition] = None) -> MapScene:
        return render_scene(self.state, self.annotations, transition)

    def subscribe(self, listener: SceneListener) -> Callable[[], None]:
        """Register a listener for new scenes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, transition: Optional[Transition] = None) -> None:
        scene = self.render(transition)
        for listener in list(self._listeners):
            try:
                listener(scene)
            except Exception:
                logger.exception("Scene listener %r failed", listener)

    # ----------------- Camera -----------------

    def set_position(self, position: CameraPosition, transition: Optional[Transition] = SMOOTH_SHORT) -> None:
        self.state.position = position
        self._publish(transition)

    def on_camera_change(self, region: Region) -> None:
        """The map surface reports what is on screen after a pan, zoom or camera move."""
        self.state.visible_region = region
        self._publish()

    def press(self, label: str) -> Optional[asyncio.Task]:
        """
        Handle a shortcut button.

        Camera shortcuts apply immediately; search shortcuts return the
        spawned task.
        """
        button = find_button(label, self.buttons)
        if button is None:
            raise UnknownButtonError(label)
        if button.search is not None:
            action = button.search
            return self.search(action.query, action.latitude_delta, action.longitude_delta)
        logger.debug("Shortcut %s -> %s", button.label, button.position)
        self.set_position(button.position)
        return None

    # ----------------- Search -----------------

    def build_request(self, query: str, latitude_delta: float, longitude_delta: float) -> LocalSearchRequest:
        region = self.state.visible_region or region_around(PARKING, latitude_delta, longitude_delta)
        return LocalSearchRequest(
            natural_language_query=query,
            region=region,
            result_types=(ResultType.POINT_OF_INTEREST,),
        )

    def search(self, query: str, latitude_delta: float, longitude_delta: float) -> asyncio.Task:
        """Start a search in the background. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        request = self.build_request(query, latitude_delta, longitude_delta)
        task = loop.create_task(self._run_search(request, self._dispatch(request)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def search_and_wait(self, query: str, latitude_delta: float, longitude_delta: float) -> List[MapItem]:
        request = self.build_request(query, latitude_delta, longitude_delta)
        return await self._run_search(request, self._dispatch(request))

    def _dispatch(self, request: LocalSearchRequest) -> int:
        self.last_request = request
        self._generation += 1
        return self._generation

    async def _run_search(self, request: LocalSearchRequest, generation: int) -> List[MapItem]:
        query = request.natural_language_query
        logger.debug("Search #%d %r in %s", generation, query, request.region)

        try:
            items = await self.search_service.start_async(request)
        except Exception as exc:
            logger.warning("Search %r failed, showing no results: %s", query, exc)
            items = []

        if self.discard_stale and generation != self._generation:
            logger.debug("Dropping stale search #%d (latest is #%d)", generation, self._generation)
            return self.state.search_results
        self._replace_results(list(items or []))
        return self.state.search_results

    async def wait_for_searches(self) -> None:
        """Wait for every search still in flight."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    def _replace_results(self, items: List[MapItem]) -> None:
        self.state.search_results = items
        self._publish()
        self._on_search_results_changed()

    def _on_search_results_changed(self) -> None:
        self.set_position(CameraPosition.automatic(), SMOOTH_SHORT)

    # ----------------- Selection -----------------

    def select(self, item: Optional[MapItem]) -> None:
        self.state.selected_result = item
        self._publish()
