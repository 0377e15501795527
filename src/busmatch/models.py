"""Data models for busmatch."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 position."""
    latitude: float
    longitude: float

    @property
    def is_zero(self) -> bool:
        return self.latitude == 0.0 and self.longitude == 0.0


@dataclass(frozen=True)
class City:
    """A city served by the transit provider."""
    name: str  # Display name, e.g. "台北市"
    tdx_name: str  # Provider path segment, e.g. "Taipei"


CITIES: Tuple[City, ...] = (
    City("台北市", "Taipei"),
    City("新北市", "NewTaipei"),
    City("桃園市", "Taoyuan"),
    City("台中市", "Taichung"),
    City("台南市", "Tainan"),
    City("高雄市", "Kaohsiung"),
    City("基隆市", "Keelung"),
    City("新竹市", "Hsinchu"),
    City("新竹縣", "HsinchuCounty"),
    City("苗栗縣", "MiaoliCounty"),
    City("彰化縣", "ChanghuaCounty"),
    City("南投縣", "NantouCounty"),
    City("雲林縣", "YunlinCounty"),
    City("嘉義縣", "ChiayiCounty"),
    City("嘉義市", "Chiayi"),
    City("屏東縣", "PingtungCounty"),
    City("宜蘭縣", "YilanCounty"),
    City("花蓮縣", "HualienCounty"),
    City("台東縣", "TaitungCounty"),
    City("澎湖縣", "PenghuCounty"),
    City("金門縣", "KinmenCounty"),
    City("連江縣", "LienchiangCounty"),
)


def find_city(name: Optional[str]) -> Optional[City]:
    """
    Resolve a locality name (e.g. from reverse geocoding) to a City.

    "臺" and "台" are treated as the same character, and the locality only has
    to start with the city name ("台北市中正區" -> 台北市).
    """
    if not name:
        return None
    normalized = name.replace("臺", "台")
    for city in CITIES:
        if normalized.startswith(city.name) or normalized == city.tdx_name:
            return city
    return None


@dataclass(frozen=True)
class Route:
    """A bus route as known to the provider."""
    route_uid: str
    name: str  # Zh_tw route name, used as the provider's lookup key
    name_en: Optional[str] = None


@dataclass(frozen=True)
class Stop:
    """A route stop inside a direction sequence."""
    stop_uid: str
    stop_id: Optional[str]
    name: str
    position: Coordinate
    route_uid: Optional[str] = None
    direction: Optional[int] = None


@dataclass(frozen=True)
class RouteDirectionSequence:
    """Ordered stops of one route direction (0 or 1), in travel order."""
    route_uid: str
    name: str
    direction: int
    stops: Tuple[Stop, ...]

    @property
    def stop_uids(self) -> List[str]:
        return [stop.stop_uid for stop in self.stops]


@dataclass(frozen=True)
class StationStop:
    """A route-stop hosted at a physical station."""
    stop_uid: str
    stop_id: str
    route_uid: str
    route_id: str
    route_name: str


@dataclass(frozen=True)
class Station:
    """A physical stop location (a pole or shelter) and the route-stops it hosts."""
    station_uid: str
    station_id: str
    name: str
    position: Coordinate
    stops: Tuple[StationStop, ...] = ()

    @property
    def stop_uids(self) -> FrozenSet[str]:
        return frozenset(stop.stop_uid for stop in self.stops)


@dataclass(frozen=True)
class StationCluster:
    """
    Physically distinct stations sharing a display name near a seed station.

    Every member lies within the grouping radius of the seed, not necessarily
    of every other member.
    """
    name: str
    members: Tuple[Station, ...]
    closest_station_id: str  # Member nearest to the point the cluster was built for

    @property
    def station_ids(self) -> List[str]:
        """Distinct station ids in member order."""
        seen: Dict[str, None] = {}
        for station in self.members:
            seen.setdefault(station.station_id, None)
        return list(seen)

    @property
    def stop_uids(self) -> FrozenSet[str]:
        uids = set()
        for station in self.members:
            uids.update(station.stop_uids)
        return frozenset(uids)

    @property
    def closest_member(self) -> Station:
        for station in self.members:
            if station.station_id == self.closest_station_id:
                return station
        return self.members[0]


@dataclass(frozen=True)
class CandidateRoute:
    """A route with the direction proven to visit departure before arrival."""
    route: Route
    direction: int


@dataclass(frozen=True)
class ArrivalObservation:
    """
    One live arrival estimate for a route/direction at a stop.

    Either estimate_seconds or next_bus_time is meaningful; stop_status is
    meaningful when neither is.
    """
    route_uid: str
    route_name: Optional[str] = None
    direction: Optional[int] = None
    stop_uid: Optional[str] = None
    station_id: Optional[str] = None  # Station the observation was fetched for
    estimate_seconds: Optional[int] = None
    next_bus_time: Optional[str] = None  # ISO-8601 with offset
    stop_status: Optional[int] = None
    updated_at: Optional[str] = None
    plate_number: Optional[str] = None


class ArrivalStatus(Enum):
    """Arrival states in ranking order."""
    COMING = 0
    SCHEDULED = 1
    NO_DATA = 2


@dataclass(frozen=True)
class ArrivalInfo:
    """Status, sort key and display text derived from one observation."""
    status: ArrivalStatus
    sort_key: int  # Seconds until departure, or a reserved key for NO_DATA
    display_text: str

    def ordering_key(self) -> Tuple[int, int]:
        return (self.status.value, self.sort_key)

    def __lt__(self, other: "ArrivalInfo") -> bool:
        return self.ordering_key() < other.ordering_key()


@dataclass(frozen=True)
class DirectionStationMapping:
    """Which station of a two-member cluster serves each direction of a route."""
    route_uid: str
    direction0_station_id: Optional[str]
    direction1_station_id: Optional[str]
    timestamp: float  # Unix seconds of the inference

    def as_dict(self) -> Dict[int, str]:
        mapping = {}
        if self.direction0_station_id is not None:
            mapping[0] = self.direction0_station_id
        if self.direction1_station_id is not None:
            mapping[1] = self.direction1_station_id
        return mapping


class LegMode(Enum):
    WALK = "walk"
    TRANSIT = "transit"


class VehicleKind(Enum):
    BUS = "BUS"
    SUBWAY = "SUBWAY"
    TRAIN = "TRAIN"
    TRAM = "TRAM"
    RAIL = "RAIL"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ItineraryLeg:
    """One walk or transit step of an itinerary skeleton."""
    mode: LegMode
    duration_seconds: int
    polyline: Tuple[Coordinate, ...] = ()
    start_location: Optional[Coordinate] = None
    end_location: Optional[Coordinate] = None
    departure_instant: Optional[datetime] = None
    arrival_instant: Optional[datetime] = None
    distance_text: str = ""
    duration_text: str = ""
    instructions: str = ""
    # Transit legs only
    line_name: Optional[str] = None
    headsign: Optional[str] = None
    departure_stop: Optional[str] = None
    arrival_stop: Optional[str] = None
    stop_count: int = 0
    vehicle: VehicleKind = VehicleKind.UNKNOWN

    @property
    def is_transit(self) -> bool:
        return self.mode is LegMode.TRANSIT

    @property
    def key(self) -> str:
        """Stable identity of the leg, derived from its geometry."""
        return str(hash(self.polyline))

    def with_times(self, departure: Optional[datetime], arrival: Optional[datetime]) -> "ItineraryLeg":
        return replace(self, departure_instant=departure, arrival_instant=arrival)


@dataclass(frozen=True)
class Itinerary:
    """An ordered sequence of legs; leg[i].arrival should equal leg[i+1].departure."""
    legs: Tuple[ItineraryLeg, ...]
    total_duration: str = ""

    @property
    def departure_instant(self) -> Optional[datetime]:
        return self.legs[0].departure_instant if self.legs else None

    @property
    def arrival_instant(self) -> Optional[datetime]:
        return self.legs[-1].arrival_instant if self.legs else None
