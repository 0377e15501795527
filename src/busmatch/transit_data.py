"""Cached, concurrency-bounded access to transit provider data."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

from .cache import TTLCache
from .models import ArrivalObservation, Route, RouteDirectionSequence, Station
from .route_names import RouteNameMatcher
from .tdx_client import (
    TDXClient,
    parse_arrivals,
    parse_routes,
    parse_stations,
    parse_stop_sequences,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransitDataAccessor:
    """
    Async front for TDXClient.

    Static data (routes, stop sequences, stations) goes through the TTLCache.
    Live arrivals are never cached. Every public getter returns an empty list
    instead of raising when the provider fails and nothing usable is cached.
    """

    def __init__(
        self,
        client: TDXClient,
        cache: Optional[TTLCache] = None,
        max_concurrency: int = 8,
        matcher: Optional[RouteNameMatcher] = None,
    ):
        self.client = client
        self.cache = cache if cache is not None else TTLCache()
        self.matcher = matcher if matcher is not None else RouteNameMatcher()
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def _call(self, func: Callable[..., Any], *args) -> Any:
        """Run a blocking client call in a worker thread, bounded by the fan-out limit."""
        async with self._semaphore:
            return await asyncio.to_thread(func, *args)

    async def _cached(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        parse: Callable[[Any], List[T]],
        force_refresh: bool = False,
    ) -> List[T]:
        async def fetch_and_validate():
            payload = await fetch()
            # Malformed payloads count as fetch failures and trigger stale fallback
            parse(payload)
            return payload

        try:
            payload = await self.cache.get(key, fetch_and_validate, force_refresh)
            return parse(payload)
        except Exception as e:
            logger.error(f"No data available for {key}: {e}")
            return []

    async def get_routes_for_city(self, city: str, force_refresh: bool = False) -> List[Route]:
        return await self._cached(
            f"routes_{city}",
            lambda: self._call(self.client.fetch_routes, city),
            parse_routes,
            force_refresh,
        )

    async def get_stop_sequences(
        self, city: str, route_name: str, force_refresh: bool = False
    ) -> List[RouteDirectionSequence]:
        return await self._cached(
            f"route_stops_{city}_{route_name}",
            lambda: self._call(self.client.fetch_stop_of_route, city, route_name),
            parse_stop_sequences,
            force_refresh,
        )

    async def get_routes_through_station(
        self, city: str, station_id: str, force_refresh: bool = False
    ) -> List[Route]:
        return await self._cached(
            f"routes_passing_station_{city}_{station_id}",
            lambda: self._call(self.client.fetch_routes_through_station, city, station_id),
            parse_routes,
            force_refresh,
        )

    async def get_all_stations(self, city: str, force_refresh: bool = False) -> List[Station]:
        return await self._cached(
            f"stations_city_{city}",
            lambda: self._call(self.client.fetch_stations, city),
            parse_stations,
            force_refresh,
        )

    async def get_live_arrivals_for_station(self, city: str, station_id: str) -> List[ArrivalObservation]:
        try:
            payload = await self._call(self.client.fetch_arrivals_for_station, city, station_id)
            return parse_arrivals(payload, station_id=station_id)
        except Exception as e:
            logger.error(f"Failed to fetch arrivals for station {station_id} in {city}: {e}")
            return []

    async def resolve_route_name(self, city: str, line_name: Optional[str]) -> Optional[str]:
        """Map a directions-provider line name to this provider's route name, or None."""
        routes = await self.get_routes_for_city(city)
        return self.matcher.match(line_name, routes)

    @staticmethod
    async def gather(coros: Iterable[Awaitable[T]], default: T) -> List[T]:
        """
        Await all coroutines concurrently.

        A coroutine that raises contributes `default` instead of failing the batch.
        """
        results = await asyncio.gather(*coros, return_exceptions=True)
        collected: List[T] = []
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Concurrent fetch failed: {result}")
                collected.append(default)
            else:
                collected.append(result)
        return collected
