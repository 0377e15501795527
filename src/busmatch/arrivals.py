"""Live arrival classification, ranking and polling."""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .direction import DirectionDisambiguator
from .models import (
    ArrivalInfo,
    ArrivalObservation,
    ArrivalStatus,
    CandidateRoute,
    StationCluster,
)
from .polling import POLL_INTERVAL, PollingLoop

logger = logging.getLogger(__name__)

# Reserved NO_DATA keys: the last bus has left, ranked just ahead of every other NO_DATA reason
LAST_BUS_SORT_KEY = 2 ** 63 - 2
NO_DATA_SORT_KEY = 2 ** 63 - 1

# StopStatus codes reported by the provider
STATUS_TRAFFIC_CONTROL = 2
STATUS_LAST_BUS_DEPARTED = 3
STATUS_NOT_OPERATING_TODAY = 4

TEXT_ARRIVING = "進站中"
TEXT_ARRIVING_SOON = "即將進站"
TEXT_LAST_BUS_DEPARTED = "末班已過"
TEXT_TRAFFIC_CONTROL = "交管不停"
TEXT_NOT_OPERATING_TODAY = "今日未營運"
TEXT_NOT_DISPATCHED = "未發車"

NOT_DISPATCHED = ArrivalInfo(ArrivalStatus.NO_DATA, NO_DATA_SORT_KEY, TEXT_NOT_DISPATCHED)


def _parse_timestamp(raw: str) -> datetime:
    # fromisoformat on older interpreters rejects a trailing Z
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def classify(observation: ArrivalObservation, now: Optional[datetime] = None) -> ArrivalInfo:
    """
    Derive status, sort key and display text from one observation.

    Args:
        observation: Live arrival record.
        now: Reference time; defaults to the current time.
    """
    estimate = observation.estimate_seconds
    if estimate is not None and estimate >= 0:
        if estimate < 30:
            text = TEXT_ARRIVING
        elif estimate < 60:
            text = TEXT_ARRIVING_SOON
        else:
            text = f"{estimate // 60} 分"
        return ArrivalInfo(ArrivalStatus.COMING, estimate, text)

    if observation.next_bus_time and observation.next_bus_time.strip():
        try:
            scheduled = _parse_timestamp(observation.next_bus_time.strip())
        except ValueError:
            logger.warning(f"Failed to parse NextBusTime: {observation.next_bus_time}")
        else:
            now = now if now is not None else datetime.now(timezone.utc)
            if scheduled < now:
                return ArrivalInfo(ArrivalStatus.NO_DATA, LAST_BUS_SORT_KEY, TEXT_LAST_BUS_DEPARTED)
            seconds = max(0, int((scheduled - now).total_seconds()))
            return ArrivalInfo(ArrivalStatus.SCHEDULED, seconds, f"預計 {scheduled.strftime('%H:%M')}")

    status = observation.stop_status
    if status == STATUS_LAST_BUS_DEPARTED:
        return ArrivalInfo(ArrivalStatus.NO_DATA, LAST_BUS_SORT_KEY, TEXT_LAST_BUS_DEPARTED)
    if status == STATUS_TRAFFIC_CONTROL:
        text = TEXT_TRAFFIC_CONTROL
    elif status == STATUS_NOT_OPERATING_TODAY:
        text = TEXT_NOT_OPERATING_TODAY
    else:
        text = TEXT_NOT_DISPATCHED
    return ArrivalInfo(ArrivalStatus.NO_DATA, NO_DATA_SORT_KEY, text)


def rank_arrivals(
    observations: Iterable[ArrivalObservation], now: Optional[datetime] = None
) -> List[ArrivalObservation]:
    """Sort observations best first: COMING, then SCHEDULED, then NO_DATA, by sort key within each."""
    now = now if now is not None else datetime.now(timezone.utc)
    return sorted(observations, key=lambda obs: classify(obs, now).ordering_key())


def _matches(observation: ArrivalObservation, candidate: CandidateRoute) -> bool:
    if observation.direction != candidate.direction:
        return False
    if observation.route_name is not None:
        return observation.route_name == candidate.route.name
    return observation.route_uid == candidate.route.route_uid


def best_by_candidate(
    observations: Sequence[ArrivalObservation],
    candidates: Sequence[CandidateRoute],
    now: Optional[datetime] = None,
) -> Dict[str, ArrivalInfo]:
    """Best ArrivalInfo per candidate route uid; candidates without observations are not dispatched."""
    now = now if now is not None else datetime.now(timezone.utc)
    best: Dict[str, ArrivalInfo] = {}
    for candidate in candidates:
        infos = [classify(obs, now) for obs in observations if _matches(obs, candidate)]
        best[candidate.route.route_uid] = min(infos) if infos else NOT_DISPATCHED
    return best


class ArrivalAggregator:
    """Polls every station of a cluster and condenses the results."""

    def __init__(
        self,
        accessor,
        disambiguator: Optional[DirectionDisambiguator] = None,
        interval: float = POLL_INTERVAL,
    ):
        self.accessor = accessor
        self.disambiguator = disambiguator if disambiguator is not None else DirectionDisambiguator(accessor)
        self.interval = interval

    async def fetch_cluster(self, city: str, cluster: StationCluster) -> List[ArrivalObservation]:
        """Live arrivals for every station of the cluster, fetched concurrently and flattened."""
        per_station = await self.accessor.gather(
            (self.accessor.get_live_arrivals_for_station(city, sid) for sid in cluster.station_ids),
            default=[],
        )
        return [obs for observations in per_station for obs in observations]

    async def poll_once(
        self, city: str, cluster: StationCluster, candidates: Sequence[CandidateRoute]
    ) -> Optional[Dict[str, ArrivalInfo]]:
        """
        One polling cycle for alternative routes.

        Returns:
            {route_uid: best ArrivalInfo}, or None when the cluster returned no
            observations at all (previous results should be kept).
        """
        observations = await self.fetch_cluster(city, cluster)
        if not observations:
            logger.warning(f"No arrivals found for any station in group {cluster.name}.")
            return None
        result = best_by_candidate(observations, candidates)
        logger.debug(f"Loop update complete. Found {len(result)} routes.")
        return result

    async def station_arrivals(
        self, city: str, cluster: StationCluster, target_station_id: str
    ) -> Optional[List[ArrivalObservation]]:
        """
        Ranked arrivals that really serve one station of a cluster.

        Returns:
            The ranked observations, or None when the cluster returned nothing.
        """
        observations = await self.fetch_cluster(city, cluster)
        if not observations:
            logger.warning(f"No arrivals found for any station in group {cluster.name}.")
            return None
        attributed = await self.disambiguator.attribute(city, cluster, observations)
        mine = [a.observation for a in attributed if a.station_id == target_station_id]
        logger.debug(
            f"ETA updated for {target_station_id}. Fetched: {len(observations)}, "
            f"attributed: {sum(1 for a in attributed if a.station_id)}, final: {len(mine)}"
        )
        return rank_arrivals(mine)

    def watch_alternatives(
        self,
        city: str,
        cluster: StationCluster,
        candidates: Sequence[CandidateRoute],
        publish: Callable[[Dict[str, ArrivalInfo]], None],
    ) -> PollingLoop:
        """Build a loop publishing best arrivals per candidate every interval; start it with resume()."""

        async def update() -> bool:
            result = await self.poll_once(city, cluster, candidates)
            if result is None:
                return False
            publish(result)
            return True

        return PollingLoop(update, self.interval, name=f"alternatives@{cluster.name}")

    def watch_station(
        self,
        city: str,
        cluster: StationCluster,
        target_station_id: str,
        publish: Callable[[List[ArrivalObservation]], None],
    ) -> PollingLoop:
        """Build a loop publishing the ranked arrivals of one station every interval."""

        async def update() -> bool:
            result = await self.station_arrivals(city, cluster, target_station_id)
            if result is None:
                return False
            publish(result)
            return True

        return PollingLoop(update, self.interval, name=f"station@{target_station_id}")
