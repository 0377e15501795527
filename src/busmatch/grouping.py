"""Grouping physical stations that share a display name."""

import logging
from typing import Dict, Iterable, List, Optional

from .geo import distance
from .models import Coordinate, Station, StationCluster

logger = logging.getLogger(__name__)

STATION_GROUPING_DISTANCE_THRESHOLD = 150.0  # meters
NEARBY_RADIUS = 500.0  # meters
UNKNOWN_STATION_NAME = "未知站牌"


def _usable(station: Station) -> bool:
    return not station.position.is_zero and bool(station.name.strip())


def group_by_name(
    stations: Iterable[Station],
    reference: Coordinate,
    threshold: float = STATION_GROUPING_DISTANCE_THRESHOLD,
) -> List[StationCluster]:
    """
    Group stations with identical names into clusters.

    Within each name, the member nearest to `reference` seeds the cluster and
    only stations within `threshold` meters of that seed are kept.

    Args:
        stations: Candidate stations, usually already filtered to a neighbourhood.
        reference: Point the clusters are built for (e.g. the user's location).
        threshold: Maximum distance from the seed, in meters.

    Returns:
        Clusters ordered by the distance of their closest member to `reference`.
    """
    by_name: Dict[str, List[Station]] = {}
    for station in stations:
        if station.position.is_zero:
            continue
        name = station.name.strip() or UNKNOWN_STATION_NAME
        by_name.setdefault(name, []).append(station)

    clusters = []
    for name, members in by_name.items():
        seed = min(members, key=lambda s: distance(reference, s.position))
        kept = tuple(s for s in members if distance(seed.position, s.position) <= threshold)
        clusters.append((distance(reference, seed.position), StationCluster(name, kept, seed.station_id)))

    clusters.sort(key=lambda pair: pair[0])
    return [cluster for _, cluster in clusters]


def find_nearest_cluster(
    target: Coordinate,
    stations: Iterable[Station],
    threshold: float = STATION_GROUPING_DISTANCE_THRESHOLD,
) -> Optional[StationCluster]:
    """
    Find the cluster of stations a coordinate refers to.

    The globally nearest usable station names the cluster; it holds every
    same-named station within `threshold` of that nearest station. The closest
    member is re-chosen relative to `target`.

    Returns:
        The cluster, or None if no station lies within 1.5 x threshold of target.
    """
    with_distance = [(s, distance(target, s.position)) for s in stations if _usable(s)]
    if not with_distance:
        return None

    nearest, min_distance = min(with_distance, key=lambda pair: pair[1])
    if min_distance > threshold * 1.5:
        logger.warning(
            f"Nearest station {nearest.name} ({nearest.station_id}) is too far "
            f"({min_distance:.0f} m). Cannot find group."
        )
        return None

    members = [
        (s, d)
        for s, d in with_distance
        if s.name == nearest.name and distance(nearest.position, s.position) <= threshold
    ]
    closest_to_target = min(members, key=lambda pair: pair[1])[0]

    logger.debug(
        f"Found group '{nearest.name}' near target. Members: {[s.station_id for s, _ in members]}. "
        f"Closest in group to target: {closest_to_target.station_id}"
    )
    return StationCluster(
        name=nearest.name,
        members=tuple(s for s, _ in members),
        closest_station_id=closest_to_target.station_id,
    )


def find_nearby_clusters(
    location: Coordinate,
    stations: Iterable[Station],
    radius: float = NEARBY_RADIUS,
    threshold: float = STATION_GROUPING_DISTANCE_THRESHOLD,
) -> List[StationCluster]:
    """Clusters of stations within `radius` meters of location, nearest first."""
    nearby = [s for s in stations if not s.position.is_zero and distance(location, s.position) <= radius]
    nearby.sort(key=lambda s: distance(location, s.position))
    logger.info(f"Filtered to {len(nearby)} stations within {radius:.0f}m.")
    return group_by_name(nearby, location, threshold)
