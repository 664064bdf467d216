"""
Core domain models for the map explorer.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class CameraMode(str, Enum):
    """How the map decides what to show."""
    AUTOMATIC = "automatic"  # frame all visible content
    REGION = "region"
    CAMERA = "camera"


class ResultType(str, Enum):
    """Kinds of results a local search may return."""
    POINT_OF_INTEREST = "point_of_interest"
    ADDRESS = "address"


class ButtonStyle(str, Enum):
    BORDERED = "bordered"
    BORDERED_PROMINENT = "bordered_prominent"


class MapStyle(str, Enum):
    STANDARD = "standard"
    STANDARD_REALISTIC = "standard_realistic"  # standard with realistic elevation


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class CoordinateSpan:
    latitude_delta: float
    longitude_delta: float


@dataclass(frozen=True)
class Region:
    """A center coordinate plus a span describing a rectangular map extent."""
    center: Coordinate
    span: CoordinateSpan

    @property
    def min_lat(self) -> float:
        return self.center.latitude - self.span.latitude_delta / 2.0

    @property
    def max_lat(self) -> float:
        return self.center.latitude + self.span.latitude_delta / 2.0

    @property
    def min_lon(self) -> float:
        return self.center.longitude - self.span.longitude_delta / 2.0

    @property
    def max_lon(self) -> float:
        return self.center.longitude + self.span.longitude_delta / 2.0

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_lat <= coordinate.latitude <= self.max_lat
            and self.min_lon <= coordinate.longitude <= self.max_lon
        )

    def to_bbox(self) -> Dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
            "min_lon": self.min_lon,
            "max_lon": self.max_lon,
            "span_lat": self.span.latitude_delta,
            "span_lon": self.span.longitude_delta,
        }


@dataclass(frozen=True)
class MapCamera:
    """Camera looking at a ground coordinate from a distance (meters)."""
    center: Coordinate
    distance: float
    heading: float = 0.0
    pitch: float = 0.0


@dataclass(frozen=True)
class CameraPosition:
    """
    Single piece of state controlling what the map renders.

    Exactly one of the payloads is set, matching the mode:
    - AUTOMATIC: neither
    - REGION: region
    - CAMERA: camera
    """
    mode: CameraMode = CameraMode.AUTOMATIC
    region: Optional[Region] = None
    camera: Optional[MapCamera] = None

    @classmethod
    def automatic(cls) -> "CameraPosition":
        return cls(mode=CameraMode.AUTOMATIC)

    @classmethod
    def for_region(cls, region: Region) -> "CameraPosition":
        return cls(mode=CameraMode.REGION, region=region)

    @classmethod
    def for_camera(cls, camera: MapCamera) -> "CameraPosition":
        return cls(mode=CameraMode.CAMERA, camera=camera)


@dataclass(frozen=True)
class Transition:
    """Animation descriptor applied by the rendering layer to a state update."""
    duration: float
    curve: str = "smooth"


@dataclass(eq=False)
class MapItem:
    """
    One point of interest returned by the search service.

    Compared by identity so a fresh search never equals a stale one.
    """
    name: str
    coordinate: Coordinate
    category: Optional[str] = None
    provider: str = "osm"
    place_id: str = ""
    raw: Optional[dict] = None
    display_name: Optional[str] = None  # shortened label derived from raw payload


@dataclass(frozen=True)
class LocalSearchRequest:
    natural_language_query: str
    region: Region
    result_types: Tuple[ResultType, ...] = (ResultType.POINT_OF_INTEREST,)


@dataclass(frozen=True)
class Annotation:
    """Custom badge view pinned to a coordinate."""
    title: str
    coordinate: Coordinate
    system_image: str
    titles_hidden: bool = True


@dataclass(frozen=True)
class Marker:
    """Default-styled marker derived from a search result."""
    item: MapItem
    selected: bool = False

    @property
    def coordinate(self) -> Coordinate:
        return self.item.coordinate


@dataclass(frozen=True)
class SearchAction:
    query: str
    latitude_delta: float
    longitude_delta: float


@dataclass(frozen=True)
class MapButton:
    """
    A shortcut button shown below the map.

    Either `position` (camera shortcut) or `search` (search shortcut) is set.
    """
    label: str
    system_image: str
    style: ButtonStyle
    position: Optional[CameraPosition] = None
    search: Optional[SearchAction] = None


@dataclass
class MapState:
    """Application state; the scene is a pure function of it."""
    position: CameraPosition = field(default_factory=CameraPosition.automatic)
    search_results: List[MapItem] = field(default_factory=list)
    visible_region: Optional[Region] = None
    selected_result: Optional[MapItem] = None
    map_style: MapStyle = MapStyle.STANDARD_REALISTIC


@dataclass(frozen=True)
class MapScene:
    """What the map surface should display."""
    position: CameraPosition
    annotations: Tuple[Annotation, ...]
    markers: Tuple[Marker, ...]
    map_style: MapStyle
    transition: Optional[Transition] = None

    def content_coordinates(self) -> List[Coordinate]:
        coords = [a.coordinate for a in self.annotations]
        coords.extend(m.coordinate for m in self.markers)
        return coords


# Named places
PARKING = Coordinate(43.25356054444856, -79.87475675469192)
WORK = Coordinate(43.25925488994178, -79.81125751224114)
CATHOLIC_AREA = Coordinate(43.21347255761558, -79.91862956339779)
APPLE_STORE = Coordinate(43.32501104137199, -79.819872988301)

BASIC_SPAN = CoordinateSpan(latitude_delta=0.01, longitude_delta=0.01)

WORK_PLACE = Region(center=WORK, span=BASIC_SPAN)
APPLE_STORE_REGION = Region(center=APPLE_STORE, span=BASIC_SPAN)
PARKING_SITE = Region(center=PARKING, span=BASIC_SPAN)

SMOOTH_SHORT = Transition(duration=0.1, curve="smooth")

SHORTCUT_CAMERA_DISTANCE = 980.0
SHORTCUT_CAMERA_HEADING = 242.0
SHORTCUT_CAMERA_PITCH = 60.0
SEARCH_FALLBACK_DELTA = 0.0125


def shortcut_camera(center: Coordinate) -> MapCamera:
    return MapCamera(
        center=center,
        distance=SHORTCUT_CAMERA_DISTANCE,
        heading=SHORTCUT_CAMERA_HEADING,
        pitch=SHORTCUT_CAMERA_PITCH,
    )


ANNOTATIONS: Tuple[Annotation, ...] = (
    Annotation(title="Parking", coordinate=PARKING, system_image="car"),
    Annotation(title="Work", coordinate=WORK, system_image="building.2"),
    Annotation(title="Catholic", coordinate=CATHOLIC_AREA, system_image="projective"),
)

BUTTONS: Tuple[MapButton, ...] = (
    MapButton(
        label="Playgrounds",
        system_image="figure.and.child.holdinghands",
        style=ButtonStyle.BORDERED_PROMINENT,
        search=SearchAction("Playgrounds", SEARCH_FALLBACK_DELTA, SEARCH_FALLBACK_DELTA),
    ),
    MapButton(
        label="Beaches",
        system_image="beach.umbrella",
        style=ButtonStyle.BORDERED_PROMINENT,
        search=SearchAction("Beaches", SEARCH_FALLBACK_DELTA, SEARCH_FALLBACK_DELTA),
    ),
    MapButton(
        label="Dofasco",
        system_image="building.2",
        style=ButtonStyle.BORDERED,
        position=CameraPosition.for_region(WORK_PLACE),
    ),
    MapButton(
        label="Parking",
        system_image="car",
        style=ButtonStyle.BORDERED,
        position=CameraPosition.for_camera(shortcut_camera(PARKING)),
    ),
    MapButton(
        label="Catholic",
        system_image="projective",
        style=ButtonStyle.BORDERED,
        position=CameraPosition.for_camera(shortcut_camera(CATHOLIC_AREA)),
    ),
)


def find_button(label: str, buttons: Sequence[MapButton] = BUTTONS) -> Optional[MapButton]:
    """Look up a shortcut button by label (case-insensitive)."""
    wanted = label.strip().lower()
    for button in buttons:
        if button.label.lower() == wanted:
            return button
    return None


def region_around(center: Coordinate, latitude_delta: float, longitude_delta: float) -> Region:
    return Region(center=center, span=CoordinateSpan(latitude_delta, longitude_delta))


def item_to_dict(item: MapItem) -> Dict[str, Any]:
    return {
        "name": item.name,
        "display_name": item.display_name or item.name,
        "latitude": item.coordinate.latitude,
        "longitude": item.coordinate.longitude,
        "category": item.category,
        "provider": item.provider,
        "place_id": item.place_id,
    }
