"""
Map API routes.

Exposes the map controller's event handlers over HTTP: camera changes from the
client map, shortcut buttons, searches, selection, and a PNG of the scene.
"""
import asyncio
import logging
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from domain.models import (
    SEARCH_FALLBACK_DELTA,
    CameraPosition,
    Coordinate,
    CoordinateSpan,
    MapButton,
    Region,
    item_to_dict,
)
from services.map_controller import MapViewController, UnknownButtonError
from services.map_renderer import render_map_png

router = APIRouter()
logger = logging.getLogger(__name__)


class CoordinateModel(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class RegionModel(BaseModel):
    center: CoordinateModel
    latitude_delta: float = Field(gt=0.0)
    longitude_delta: float = Field(gt=0.0)

    def to_region(self) -> Region:
        return Region(
            center=Coordinate(self.center.latitude, self.center.longitude),
            span=CoordinateSpan(self.latitude_delta, self.longitude_delta),
        )


class CameraModel(BaseModel):
    center: CoordinateModel
    distance: float
    heading: float
    pitch: float


class CameraPositionModel(BaseModel):
    mode: str
    region: Optional[RegionModel] = None
    camera: Optional[CameraModel] = None


class MapItemResponse(BaseModel):
    name: str
    display_name: str
    latitude: float
    longitude: float
    category: Optional[str] = None
    provider: str
    place_id: str


class MapStateResponse(BaseModel):
    position: CameraPositionModel
    visible_region: Optional[RegionModel] = None
    search_results: List[MapItemResponse]
    selected_index: Optional[int] = None
    map_style: str


class ButtonResponse(BaseModel):
    label: str
    system_image: str
    style: str
    kind: str


class SearchBody(BaseModel):
    query: str = Field(min_length=1)
    latitude_delta: float = Field(default=SEARCH_FALLBACK_DELTA, gt=0.0)
    longitude_delta: float = Field(default=SEARCH_FALLBACK_DELTA, gt=0.0)
    wait: bool = False


class SelectionBody(BaseModel):
    index: Optional[int] = None


def _region_model(region: Region) -> RegionModel:
    return RegionModel(
        center=CoordinateModel(latitude=region.center.latitude, longitude=region.center.longitude),
        latitude_delta=region.span.latitude_delta,
        longitude_delta=region.span.longitude_delta,
    )


def position_to_model(position: CameraPosition) -> CameraPositionModel:
    region = _region_model(position.region) if position.region is not None else None
    camera = None
    if position.camera is not None:
        cam = position.camera
        camera = CameraModel(
            center=CoordinateModel(latitude=cam.center.latitude, longitude=cam.center.longitude),
            distance=cam.distance,
            heading=cam.heading,
            pitch=cam.pitch,
        )
    return CameraPositionModel(mode=position.mode.value, region=region, camera=camera)


def state_to_response(controller: MapViewController) -> MapStateResponse:
    state = controller.state
    selected_index = None
    for idx, item in enumerate(state.search_results):
        if item is state.selected_result:
            selected_index = idx
            break
    return MapStateResponse(
        position=position_to_model(state.position),
        visible_region=_region_model(state.visible_region) if state.visible_region else None,
        search_results=[MapItemResponse(**item_to_dict(item)) for item in state.search_results],
        selected_index=selected_index,
        map_style=state.map_style.value,
    )


def button_to_response(button: MapButton) -> ButtonResponse:
    return ButtonResponse(
        label=button.label,
        system_image=button.system_image,
        style=button.style.value,
        kind="search" if button.search is not None else "camera",
    )


def get_controller(request: Request) -> MapViewController:
    return request.app.state.map_controller


@router.get("/state", response_model=MapStateResponse)
async def read_state(request: Request):
    return state_to_response(get_controller(request))


@router.get("/buttons", response_model=List[ButtonResponse])
async def list_buttons(request: Request):
    return [button_to_response(b) for b in get_controller(request).buttons]


@router.post("/camera-change", response_model=MapStateResponse)
async def camera_change(body: RegionModel, request: Request):
    """The client map reports its visible region after a pan or zoom."""
    controller = get_controller(request)
    controller.on_camera_change(body.to_region())
    return state_to_response(controller)


@router.post("/buttons/{label}", response_model=MapStateResponse)
async def press_button(label: str, request: Request, response: Response):
    """
    Press a shortcut button.

    Camera shortcuts answer with the updated state. Search shortcuts start a
    background search and answer 202 right away.
    """
    controller = get_controller(request)
    try:
        task = controller.press(label)
    except UnknownButtonError:
        raise HTTPException(status_code=404, detail=f"Unknown button: {label}")
    if task is not None:
        response.status_code = 202
    return state_to_response(controller)


@router.post("/search", response_model=MapStateResponse)
async def search(body: SearchBody, request: Request, response: Response):
    controller = get_controller(request)
    if body.wait:
        await controller.search_and_wait(body.query, body.latitude_delta, body.longitude_delta)
    else:
        controller.search(body.query, body.latitude_delta, body.longitude_delta)
        response.status_code = 202
    return state_to_response(controller)


@router.post("/selection", response_model=MapStateResponse)
async def select_result(body: SelectionBody, request: Request):
    controller = get_controller(request)
    results = controller.state.search_results
    if body.index is None:
        controller.select(None)
    elif 0 <= body.index < len(results):
        controller.select(results[body.index])
    else:
        raise HTTPException(status_code=404, detail="No search result at that index")
    return state_to_response(controller)


@router.get("/render.png")
async def render_png(
    request: Request,
    width: int = Query(1200, ge=64, le=4096),
    height: int = Query(800, ge=64, le=4096),
):
    scene = get_controller(request).render()
    png = await asyncio.to_thread(render_map_png, scene, width=width, height=height)
    return Response(content=png, media_type="image/png")
