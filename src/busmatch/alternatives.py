"""Discovering every route that travels from one station cluster to another."""

import asyncio
import logging
from typing import AbstractSet, Dict, List, Optional, Sequence

from .grouping import STATION_GROUPING_DISTANCE_THRESHOLD, find_nearest_cluster
from .models import (
    CandidateRoute,
    Coordinate,
    ItineraryLeg,
    Route,
    RouteDirectionSequence,
    Station,
)

logger = logging.getLogger(__name__)


def validated_direction(
    sequences: Sequence[RouteDirectionSequence],
    departure_uids: AbstractSet[str],
    arrival_uids: AbstractSet[str],
) -> Optional[int]:
    """
    First direction whose stops reach an arrival stop after a departure stop.

    The first departure stop in the sequence is the boarding point; only arrival
    stops strictly after it count.

    Returns:
        The direction index, or None if no direction qualifies.
    """
    for sequence in sequences:
        uids = sequence.stop_uids
        departure_index = next((i for i, uid in enumerate(uids) if uid in departure_uids), None)
        if departure_index is None:
            logger.debug(f"Dir {sequence.direction}: no departure stop")
            continue
        arrival_index = next(
            (i for i in range(departure_index + 1, len(uids)) if uids[i] in arrival_uids),
            None,
        )
        if arrival_index is not None:
            logger.debug(
                f"Dir {sequence.direction} is valid: Dep Index={departure_index}, Arr Index={arrival_index}"
            )
            return sequence.direction
        logger.debug(f"Dir {sequence.direction}: no arrival stop after departure")
    return None


class AlternativeRouteFinder:
    """Finds candidate routes between the clusters nearest two coordinates."""

    def __init__(self, accessor, threshold: float = STATION_GROUPING_DISTANCE_THRESHOLD):
        """
        Args:
            accessor: TransitDataAccessor for stations, routes and stop sequences.
            threshold: Station grouping radius in meters.
        """
        self.accessor = accessor
        self.threshold = threshold
        self._results: Dict[str, List[CandidateRoute]] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    async def find_alternatives(
        self,
        city: str,
        departure: Coordinate,
        arrival: Coordinate,
        stations: Optional[Sequence[Station]] = None,
    ) -> List[CandidateRoute]:
        """
        Every route/direction that visits the departure cluster before the arrival cluster.

        Args:
            city: Provider city name, e.g. "Taipei".
            departure: Boarding coordinate.
            arrival: Alighting coordinate.
            stations: All stations of the city; fetched (cached) when omitted.

        Returns:
            Validated candidates, or an empty list when any step fails.
        """
        if stations is None:
            stations = await self.accessor.get_all_stations(city)

        departure_cluster = find_nearest_cluster(departure, stations, self.threshold)
        arrival_cluster = find_nearest_cluster(arrival, stations, self.threshold)
        if departure_cluster is None or arrival_cluster is None:
            logger.warning(
                f"[Step 1 FAILED] Could not find station groups. "
                f"Departure found: {departure_cluster is not None}, arrival found: {arrival_cluster is not None}"
            )
            return []
        if departure_cluster.name == arrival_cluster.name:
            logger.info(f"[Step 1 SKIPPED] Departure and arrival groups are the same: {departure_cluster.name}")
            return []

        departure_uids = departure_cluster.stop_uids
        arrival_uids = arrival_cluster.stop_uids
        logger.info(f"[Step 1] Departure group: {departure_cluster.name} (StopUIDs: {sorted(departure_uids)})")
        logger.info(f"[Step 1] Arrival group: {arrival_cluster.name} (StopUIDs: {sorted(arrival_uids)})")

        route_lists = await self.accessor.gather(
            (self.accessor.get_routes_through_station(city, sid) for sid in departure_cluster.station_ids),
            default=[],
        )
        routes: Dict[str, Route] = {}
        for route_list in route_lists:
            for route in route_list:
                routes.setdefault(route.route_uid, route)
        if not routes:
            logger.warning("[Step 2 FAILED] No routes found passing departure group.")
            return []
        logger.info(
            f"[Step 2] Found {len(routes)} routes passing departure group: "
            f"[{', '.join(r.name for r in routes.values())}]"
        )

        async def validate(route: Route) -> Optional[CandidateRoute]:
            sequences = await self.accessor.get_stop_sequences(city, route.name)
            direction = validated_direction(sequences, departure_uids, arrival_uids)
            if direction is None:
                logger.debug(f"[Step 3] Route '{route.name}' is invalid")
                return None
            logger.debug(f"[Step 3] Route '{route.name}' (Dir {direction}) is valid")
            return CandidateRoute(route, direction)

        validated = await self.accessor.gather((validate(r) for r in routes.values()), default=None)
        candidates = [c for c in validated if c is not None]
        logger.info(
            f"[Step 3] Found {len(candidates)} valid routes: [{', '.join(c.route.name for c in candidates)}]"
        )
        return candidates

    async def find_for_leg(
        self,
        city: str,
        leg: ItineraryLeg,
        stations: Optional[Sequence[Station]] = None,
    ) -> List[CandidateRoute]:
        """
        Alternatives for a transit leg of an itinerary skeleton.

        Results are remembered per leg; concurrent calls for the same leg share
        one search.
        """
        if leg.start_location is None or leg.end_location is None:
            logger.warning("Missing required location info in leg to find alternatives.")
            return []

        key = f"{city}:{leg.key}"
        if key in self._results:
            return self._results[key]
        task = self._pending.get(key)
        if task is None:
            logger.info(
                f"Finding alternatives in {city} for '{leg.line_name}' "
                f"from {leg.departure_stop} to {leg.arrival_stop}"
            )
            task = asyncio.ensure_future(
                self.find_alternatives(city, leg.start_location, leg.end_location, stations)
            )
            self._pending[key] = task
        try:
            result = await asyncio.shield(task)
        finally:
            if task.done():
                self._pending.pop(key, None)
        self._results[key] = result
        return result

    def forget(self, leg: Optional[ItineraryLeg] = None, city: Optional[str] = None) -> None:
        """Drop remembered alternatives for one leg, or all of them."""
        if leg is None:
            self._results.clear()
            return
        self._results.pop(f"{city}:{leg.key}", None)
