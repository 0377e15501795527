"""Attributing route directions to the physical stations of a cluster."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .cache import MemoryStore
from .config import SEVEN_DAYS_IN_SECONDS
from .geo import bearing, reciprocal, signed_angle_difference
from .models import (
    ArrivalObservation,
    DirectionStationMapping,
    RouteDirectionSequence,
    StationCluster,
    Stop,
)

logger = logging.getLogger(__name__)


def estimate_route_bearing(stops: Sequence[Stop]) -> Optional[float]:
    """
    Rough travel heading of one route direction.

    Uses the stop a third of the way along and the one after it (first and last
    when those coincide). Falls back to the first two stops when the chosen pair
    has zero or identical coordinates.

    Returns:
        Heading in degrees, or None when no usable pair exists.
    """
    if len(stops) < 2:
        return None

    start_index = len(stops) // 3
    end_index = min(start_index + 1, len(stops) - 1)
    if start_index == end_index:
        start, end = stops[0], stops[-1]
    else:
        start, end = stops[start_index], stops[end_index]

    if start.position.latitude == 0.0 or end.position.latitude == 0.0 or start.position == end.position:
        first, second = stops[0], stops[1]
        if first.position.latitude != 0.0 and second.position.latitude != 0.0 and first.position != second.position:
            logger.debug("Estimating bearing from the first two stops.")
            return bearing(first.position, second.position)
        logger.warning(f"Cannot estimate route bearing for stops {start.name} and {end.name}.")
        return None

    return bearing(start.position, end.position)


def infer_mapping(
    sequences: Sequence[RouteDirectionSequence], cluster: StationCluster
) -> Optional[Dict[int, str]]:
    """
    Decide which station of a two-member cluster serves each route direction.

    Vehicles stop on the right-hand side of their travel direction, so for a
    given direction the serving station lies clockwise of the travel heading
    as seen from its partner station.

    One known heading is enough: when only one direction's bearing can be
    estimated, that direction picks its station and the other direction gets
    the remaining member. Only when both headings are unknown is there no
    mapping.

    Returns:
        {0: station_id, 1: station_id}, or None when the cluster does not have
        exactly two members, neither heading is known, or the geometry is
        inconclusive.
    """
    if len(cluster.members) != 2:
        logger.debug(f"Cannot determine mapping for group '{cluster.name}' with {len(cluster.members)} stations.")
        return None

    first, second = cluster.members
    headings = {}
    for sequence in sequences:
        if sequence.direction in (0, 1) and sequence.direction not in headings:
            headings[sequence.direction] = estimate_route_bearing(sequence.stops)

    heading0 = headings.get(0)
    heading1 = headings.get(1)
    if heading0 is None and heading1 is None:
        logger.warning(f"Could not estimate bearing for either direction at '{cluster.name}'.")
        return None

    # Only one direction's heading is needed; the other direction gets the other station
    reference_direction = 0 if heading0 is not None else 1
    heading = heading0 if heading0 is not None else heading1

    first_to_second = bearing(first.position, second.position)
    first_is_right = signed_angle_difference(reciprocal(first_to_second), heading) > 0
    second_is_right = signed_angle_difference(first_to_second, heading) > 0

    if first_is_right and not second_is_right:
        serving, other = first.station_id, second.station_id
    elif second_is_right and not first_is_right:
        serving, other = second.station_id, first.station_id
    else:
        logger.warning(
            f"Ambiguous right-side match at '{cluster.name}' for stations "
            f"{first.station_id}/{second.station_id}. Cannot determine mapping via bearing."
        )
        return None

    return {reference_direction: serving, 1 - reference_direction: other}


class DirectionMappingCache:
    """Persisted route -> direction/station mappings with a retention window."""

    def __init__(
        self,
        store=None,
        retention_seconds: float = SEVEN_DAYS_IN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else MemoryStore()
        self.retention_seconds = retention_seconds
        self._clock = clock

    @staticmethod
    def _key(route_uid: str) -> str:
        return f"direction_mapping_{route_uid}"

    def get(self, route_uid: str) -> Optional[DirectionStationMapping]:
        entry = self.store.read(self._key(route_uid))
        if entry is None:
            return None
        try:
            mapping = DirectionStationMapping(**entry.value)
        except TypeError:
            logger.error(f"Discarding unreadable direction mapping for {route_uid}")
            self.store.delete(self._key(route_uid))
            return None
        if self._clock() - mapping.timestamp >= self.retention_seconds:
            self.store.delete(self._key(route_uid))
            return None
        return mapping

    def put(self, route_uid: str, mapping: Dict[int, str]) -> DirectionStationMapping:
        record = DirectionStationMapping(
            route_uid=route_uid,
            direction0_station_id=mapping.get(0),
            direction1_station_id=mapping.get(1),
            timestamp=self._clock(),
        )
        self.store.write(
            self._key(route_uid),
            {
                "route_uid": record.route_uid,
                "direction0_station_id": record.direction0_station_id,
                "direction1_station_id": record.direction1_station_id,
                "timestamp": record.timestamp,
            },
            record.timestamp,
        )
        return record

    def invalidate(self, route_uid: str) -> None:
        self.store.delete(self._key(route_uid))


@dataclass(frozen=True)
class AttributedArrival:
    """An observation assigned to the station that actually serves it; None means unknown."""
    station_id: Optional[str]
    observation: ArrivalObservation
    source: str  # origin, bearing, stop-sequence or unknown


class DirectionDisambiguator:
    """Resolves which cluster station serves each direction of a route."""

    def __init__(self, accessor, mapping_cache: Optional[DirectionMappingCache] = None):
        """
        Args:
            accessor: TransitDataAccessor used for stop sequences.
            mapping_cache: Persisted mappings; defaults to an in-memory cache.
        """
        self.accessor = accessor
        self.mapping_cache = mapping_cache if mapping_cache is not None else DirectionMappingCache()

    async def mapping_for(
        self, city: str, route_uid: str, route_name: str, cluster: StationCluster
    ) -> Optional[Dict[int, str]]:
        """Cached mapping when still consistent with the cluster, else a fresh inference."""
        member_ids = set(cluster.station_ids)

        cached = self.mapping_cache.get(route_uid)
        if cached is not None:
            mapping = cached.as_dict()
            if all(station_id in member_ids for station_id in mapping.values()):
                logger.debug(f"Using valid cached mapping for {route_name} ({route_uid})")
                return mapping
            logger.warning(
                f"Cached mapping for {route_name} ({route_uid}) points outside current group "
                f"{cluster.name}. Invalidating cache entry."
            )
            self.mapping_cache.invalidate(route_uid)

        sequences = await self.accessor.get_stop_sequences(city, route_name)
        mapping = infer_mapping(sequences, cluster)
        if mapping is None:
            return None
        if not all(station_id in member_ids for station_id in mapping.values()):
            logger.warning(f"Bearing mapping for {route_name} ({route_uid}) points outside group {cluster.name}.")
            return None

        self.mapping_cache.put(route_uid, mapping)
        logger.info(f"Determined mapping for {route_name} ({route_uid}): Dir 0 -> {mapping[0]}, Dir 1 -> {mapping[1]}")
        return mapping

    async def _by_stop_sequence(
        self, city: str, cluster: StationCluster, observation: ArrivalObservation
    ) -> Optional[str]:
        """Secondary heuristic: find the member whose id matches a stop of the observation's direction."""
        sequences = await self.accessor.get_stop_sequences(city, observation.route_name)
        by_direction = {s.direction: set(s.stop_uids) for s in sequences}
        stop_uid = observation.stop_uid

        if stop_uid in by_direction.get(observation.direction, set()):
            for station in cluster.members:
                if stop_uid in (station.station_uid, station.station_id):
                    return station.station_id
            return None

        other = next((s for s in cluster.members if s.station_id != observation.station_id), None)
        if other is None:
            return None
        if stop_uid in by_direction.get(1 - observation.direction, set()) and stop_uid in (
            other.station_uid,
            other.station_id,
        ):
            return other.station_id
        return None

    async def attribute(
        self, city: str, cluster: StationCluster, observations: Sequence[ArrivalObservation]
    ) -> List[AttributedArrival]:
        """
        Assign observations fetched across a cluster to the station serving them.

        The provider reports a route at every station of the cluster it passes,
        with both directions mixed. Only routes seen with more than one direction
        need correcting; everything else stays with the station it was fetched for.
        """
        directions_by_route: Dict[str, set] = {}
        counts: Dict[str, int] = {}
        for obs in observations:
            counts[obs.route_uid] = counts.get(obs.route_uid, 0) + 1
            if obs.direction is not None:
                directions_by_route.setdefault(obs.route_uid, set()).add(obs.direction)
        mixed = {uid for uid, dirs in directions_by_route.items() if counts[uid] > 1 and len(dirs) > 1}

        results: List[AttributedArrival] = []
        seen = set()
        mappings: Dict[str, Optional[Dict[int, str]]] = {}
        for obs in observations:
            if obs.direction is None or obs.route_name is None or obs.stop_uid is None:
                results.append(AttributedArrival(obs.station_id, obs, "origin"))
                continue

            estimate = obs.estimate_seconds if obs.estimate_seconds is not None else obs.next_bus_time
            key = (obs.route_uid, obs.direction, obs.stop_uid, estimate)
            if obs.route_uid not in mixed or key in seen:
                results.append(AttributedArrival(obs.station_id, obs, "origin"))
                continue
            seen.add(key)

            if obs.route_uid not in mappings:
                mappings[obs.route_uid] = await self.mapping_for(city, obs.route_uid, obs.route_name, cluster)
            mapping = mappings[obs.route_uid]

            if mapping is not None:
                station_id = mapping.get(obs.direction)
                if station_id is None:
                    results.append(AttributedArrival(obs.station_id, obs, "origin"))
                else:
                    results.append(AttributedArrival(station_id, obs, "bearing"))
                continue

            station_id = await self._by_stop_sequence(city, cluster, obs)
            if station_id is None:
                logger.debug(
                    f"Discarded {obs.route_name} (Dir {obs.direction}, StopUID {obs.stop_uid}) from "
                    f"{obs.station_id}: direction unknown at {cluster.name}"
                )
                results.append(AttributedArrival(None, obs, "unknown"))
            else:
                results.append(AttributedArrival(station_id, obs, "stop-sequence"))
        return results
