"""Main bus station tracker class."""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .alternatives import AlternativeRouteFinder
from .arrivals import ArrivalAggregator
from .cache import FileStore, MemoryStore, TTLCache
from .config import Settings, load_settings
from .direction import DirectionDisambiguator, DirectionMappingCache
from .grouping import find_nearby_clusters, find_nearest_cluster
from .itinerary import apply_selected_arrival, display_times
from .models import (
    ArrivalInfo,
    ArrivalObservation,
    CandidateRoute,
    City,
    Coordinate,
    Itinerary,
    ItineraryLeg,
    Station,
    StationCluster,
    find_city,
)
from .polling import PollSlot
from .tdx_client import TDXClient
from .transit_data import TransitDataAccessor

logger = logging.getLogger(__name__)


class BusStationTracker:
    """
    Resolves itineraries against live bus data and keeps arrival times current.

    This class provides methods to:
    - Find stations and nearby station groups in a city
    - Find every route that can replace a planned transit leg
    - Poll live arrivals for a station or for alternative routes
    - Re-time an itinerary around a chosen live departure
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        accessor: Optional[TransitDataAccessor] = None,
        store=None,
    ):
        """
        Initialize the tracker.

        Args:
            settings: Runtime settings. Loaded from the environment when omitted
                and no accessor is given.
            accessor: Preconfigured data accessor (tests pass a fake).
            store: Cache store for provider data and direction mappings.
                Defaults to a FileStore under settings.cache_dir, or a MemoryStore
                when an accessor is given.
        """
        if settings is None:
            settings = load_settings() if accessor is None else Settings(app_id="", app_key="")
        self.settings = settings

        if store is None:
            store = FileStore(settings.cache_dir) if accessor is None else MemoryStore()
        self.store = store

        if accessor is None:
            accessor = TransitDataAccessor(
                TDXClient(settings),
                TTLCache(store, ttl_seconds=settings.cache_ttl_seconds),
                max_concurrency=settings.max_concurrency,
            )
        self.accessor = accessor

        self.finder = AlternativeRouteFinder(accessor, threshold=settings.grouping_threshold_meters)
        self.disambiguator = DirectionDisambiguator(
            accessor,
            DirectionMappingCache(store, retention_seconds=settings.cache_ttl_seconds),
        )
        self.aggregator = ArrivalAggregator(
            accessor, self.disambiguator, interval=settings.poll_interval_seconds
        )

        self._station_slot = PollSlot()
        self._alternatives_slot = PollSlot()
        self.station_arrivals: List[ArrivalObservation] = []
        self.alternative_times: Dict[str, ArrivalInfo] = {}
        self.last_updated: Optional[datetime] = None

        self._planned: List[Itinerary] = []
        self.itineraries: List[Itinerary] = []

    @staticmethod
    def get_city(name: str) -> City:
        """
        Resolve a city by display name, locality or provider name.

        Raises:
            ValueError: If the name matches no supported city.
        """
        city = find_city(name)
        if city is None:
            raise ValueError(f"No supported city matches '{name}'")
        return city

    async def load_stations(self, city: str, force_refresh: bool = False) -> List[Station]:
        stations = await self.accessor.get_all_stations(city, force_refresh)
        logger.info(f"Loaded {len(stations)} total stations for {city}.")
        return stations

    async def get_station(self, city: str, station_input: str) -> Station:
        """
        Get a station by ID or name.

        Args:
            city: Provider city name.
            station_input: Either a station ID or (part of) a station name.

        Raises:
            ValueError: If station not found.
        """
        stations = await self.load_stations(city)
        for station in stations:
            if station.station_id == station_input:
                return station

        matches = self._match_name(stations, station_input)
        if not matches:
            raise ValueError(f"No station found matching '{station_input}'")
        return matches[0]

    async def find_stations_by_name(self, city: str, name: str) -> List[Station]:
        """Find all stations whose name contains `name`."""
        return self._match_name(await self.load_stations(city), name)

    @staticmethod
    def _match_name(stations: Sequence[Station], name: str) -> List[Station]:
        name_lower = name.lower()
        return [s for s in stations if name_lower in s.name.lower()]

    async def find_nearby_clusters(
        self, city: str, location: Coordinate, force_refresh: bool = False
    ) -> List[StationCluster]:
        stations = await self.accessor.get_all_stations(city, force_refresh)
        clusters = find_nearby_clusters(
            location,
            stations,
            radius=self.settings.nearby_radius_meters,
            threshold=self.settings.grouping_threshold_meters,
        )
        logger.info(f"Grouped into {len(clusters)} unique station names.")
        return clusters

    async def match_route_name(self, city: str, line_name: Optional[str]) -> Optional[str]:
        return await self.accessor.resolve_route_name(city, line_name)

    async def find_alternatives_for_leg(self, city: str, leg: ItineraryLeg) -> List[CandidateRoute]:
        return await self.finder.find_for_leg(city, leg, await self.load_stations(city))

    async def start_station_updates(
        self,
        city: str,
        cluster: StationCluster,
        target_station_id: str,
        on_update: Optional[Callable[[List[ArrivalObservation]], None]] = None,
    ) -> None:
        """Poll live arrivals for one station of a cluster, replacing any previous station target."""
        self.station_arrivals = []

        def publish(arrivals: List[ArrivalObservation]) -> None:
            self.station_arrivals = arrivals
            self.last_updated = datetime.now()
            if on_update is not None:
                on_update(arrivals)

        loop = self.aggregator.watch_station(city, cluster, target_station_id, publish)
        logger.info(f"Starting updates for group {cluster.name}, target {target_station_id}")
        await self._station_slot.start((city, cluster.name, target_station_id), loop)

    async def start_alternative_updates(
        self,
        city: str,
        leg: ItineraryLeg,
        candidates: Sequence[CandidateRoute],
        on_update: Optional[Callable[[Dict[str, ArrivalInfo]], None]] = None,
    ) -> bool:
        """
        Poll live arrivals for the alternatives of a leg at its departure cluster.

        Returns:
            False when there is nothing to poll (no candidates or no departure group).
        """
        if not candidates or leg.start_location is None:
            return False
        cluster = find_nearest_cluster(
            leg.start_location, await self.load_stations(city), self.settings.grouping_threshold_meters
        )
        if cluster is None:
            logger.warning("Failed to find departure group for real-time updates.")
            return False

        self.alternative_times = {}

        def publish(times: Dict[str, ArrivalInfo]) -> None:
            self.alternative_times = times
            self.last_updated = datetime.now()
            if on_update is not None:
                on_update(times)

        loop = self.aggregator.watch_alternatives(city, cluster, list(candidates), publish)
        logger.info(f"Starting {loop.interval:.0f}s loop for {len(candidates)} routes at {cluster.station_ids}")
        await self._alternatives_slot.start((city, leg.key), loop)
        return True

    async def pause_updates(self) -> None:
        await self._station_slot.pause()
        await self._alternatives_slot.pause()

    def resume_updates(self) -> None:
        self._station_slot.resume()
        self._alternatives_slot.resume()

    async def stop(self) -> None:
        """Stop all polling and forget the published results."""
        await self._station_slot.stop()
        await self._alternatives_slot.stop()
        self.station_arrivals = []
        self.alternative_times = {}
        self.last_updated = None

    def set_itineraries(self, itineraries: Sequence[Itinerary]) -> None:
        """Store the planned itineraries returned by the directions provider."""
        self._planned = list(itineraries)
        self.itineraries = list(itineraries)

    def select_alternative(self, itinerary_index: int, leg_index: int, arrival: Optional[ArrivalInfo]) -> Itinerary:
        """Re-time one itinerary around a chosen alternative; NO_DATA restores the plan."""
        planned = self._planned[itinerary_index]
        updated = apply_selected_arrival(planned, leg_index, arrival)
        self.itineraries[itinerary_index] = updated
        return updated

    def reset_itinerary(self, itinerary_index: int) -> Itinerary:
        self.itineraries[itinerary_index] = self._planned[itinerary_index]
        return self.itineraries[itinerary_index]

    def itinerary_times(self, itinerary_index: int) -> List[Tuple[str, str]]:
        """HH:MM departure/arrival per leg, then overall, in the configured timezone."""
        return display_times(self.itineraries[itinerary_index], ZoneInfo(self.settings.timezone))

    def cleanup(self) -> None:
        """Release resources."""
        client = getattr(self.accessor, "client", None)
        if client is not None and hasattr(client, "close"):
            client.close()
        logger.info("Cleaned up tracker resources")
