"""BusMatch - Live bus alternatives and arrival times for planned itineraries in Taiwan."""

__version__ = "0.1.0"

from .models import (
    ArrivalInfo,
    ArrivalObservation,
    ArrivalStatus,
    CandidateRoute,
    City,
    Coordinate,
    Itinerary,
    ItineraryLeg,
    Station,
    StationCluster,
)
from .station_tracker import BusStationTracker
from .tdx_client import TDXClient
from .transit_data import TransitDataAccessor
from .config import Settings, load_settings

__all__ = [
    "BusStationTracker",
    "TDXClient",
    "TransitDataAccessor",
    "Settings",
    "load_settings",
    "ArrivalInfo",
    "ArrivalObservation",
    "ArrivalStatus",
    "CandidateRoute",
    "City",
    "Coordinate",
    "Itinerary",
    "ItineraryLeg",
    "Station",
    "StationCluster",
]
