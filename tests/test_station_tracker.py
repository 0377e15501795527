"""Tests for BusStationTracker."""

import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeAccessor, make_sequence, make_station
from busmatch.cache import MemoryStore
from busmatch.config import Settings
from busmatch.models import (
    ArrivalInfo,
    ArrivalObservation,
    ArrivalStatus,
    CandidateRoute,
    Coordinate,
    Itinerary,
    ItineraryLeg,
    LegMode,
    Route,
)
from busmatch.station_tracker import BusStationTracker

R1 = Route("TPE1", "307", "307")


def build_tracker():
    stations = [
        make_station("d1", "台北車站", 25.0, 121.5, stop_uids=("D1",)),
        make_station("d2", "台北車站", 25.0, 121.5008, stop_uids=("D2",)),
        make_station("a1", "市政府", 25.02, 121.5, stop_uids=("A1",)),
    ]
    accessor = FakeAccessor(
        stations=stations,
        routes_by_station={"d1": [R1]},
        sequences={"307": [make_sequence("TPE1", "307", 0, [("D1", 0, 0), ("A1", 0, 0)])]},
        arrivals={"d1": [ArrivalObservation("TPE1", "307", 0, "D1", "d1", estimate_seconds=240)]},
        routes=[R1, Route("TPE2", "307副", "307 Shuttle")],
    )
    settings = Settings(app_id="", app_key="", poll_interval_seconds=1000)
    return BusStationTracker(settings=settings, accessor=accessor, store=MemoryStore()), accessor


def build_itinerary():
    return Itinerary(
        legs=(
            ItineraryLeg(mode=LegMode.WALK, duration_seconds=120),
            ItineraryLeg(
                mode=LegMode.TRANSIT,
                duration_seconds=900,
                polyline=(Coordinate(25.0, 121.5), Coordinate(25.02, 121.5)),
                start_location=Coordinate(25.0, 121.5001),
                end_location=Coordinate(25.02, 121.5),
                line_name="307",
            ),
        )
    )


async def settle():
    for _ in range(20):
        await asyncio.sleep(0)


class TestStationLookup(unittest.IsolatedAsyncioTestCase):
    """Test station and city lookups."""

    def setUp(self):
        self.tracker, self.accessor = build_tracker()

    def test_get_city(self):
        self.assertEqual(self.tracker.get_city("臺北市中正區").tdx_name, "Taipei")
        self.assertEqual(self.tracker.get_city("Kaohsiung").name, "高雄市")
        with self.assertRaises(ValueError):
            self.tracker.get_city("Springfield")

    async def test_get_station_by_id(self):
        station = await self.tracker.get_station("Taipei", "a1")
        self.assertEqual(station.name, "市政府")

    async def test_get_station_by_name(self):
        station = await self.tracker.get_station("Taipei", "車站")
        self.assertEqual(station.station_id, "d1")

    async def test_get_station_not_found(self):
        with self.assertRaises(ValueError):
            await self.tracker.get_station("Taipei", "NONEXISTENT")

    async def test_find_stations_by_name(self):
        results = await self.tracker.find_stations_by_name("Taipei", "台北車站")
        self.assertEqual([s.station_id for s in results], ["d1", "d2"])

    async def test_find_nearby_clusters(self):
        clusters = await self.tracker.find_nearby_clusters("Taipei", Coordinate(25.0, 121.5))
        self.assertEqual([c.name for c in clusters], ["台北車站"])
        self.assertEqual(clusters[0].station_ids, ["d1", "d2"])

    async def test_match_route_name(self):
        self.assertEqual(await self.tracker.match_route_name("Taipei", "307V"), "307副")


class TestLiveUpdates(unittest.IsolatedAsyncioTestCase):
    """Test polling through the tracker."""

    async def asyncSetUp(self):
        self.tracker, self.accessor = build_tracker()

    async def asyncTearDown(self):
        await self.tracker.stop()

    async def test_alternatives_for_leg(self):
        leg = build_itinerary().legs[1]
        self.assertEqual(await self.tracker.find_alternatives_for_leg("Taipei", leg), [CandidateRoute(R1, 0)])

    async def test_alternative_updates_published(self):
        leg = build_itinerary().legs[1]
        on_update = MagicMock()
        started = await self.tracker.start_alternative_updates("Taipei", leg, [CandidateRoute(R1, 0)], on_update)
        await settle()

        self.assertTrue(started)
        on_update.assert_called_once()
        self.assertEqual(self.tracker.alternative_times["TPE1"].sort_key, 240)
        self.assertIsNotNone(self.tracker.last_updated)

    async def test_no_candidates_no_loop(self):
        leg = build_itinerary().legs[1]
        self.assertFalse(await self.tracker.start_alternative_updates("Taipei", leg, []))

    async def test_station_updates_published(self):
        (cluster,) = await self.tracker.find_nearby_clusters("Taipei", Coordinate(25.0, 121.5))
        await self.tracker.start_station_updates("Taipei", cluster, "d1")
        await settle()
        self.assertEqual([a.estimate_seconds for a in self.tracker.station_arrivals], [240])

    async def test_new_station_target_replaces_previous(self):
        (cluster,) = await self.tracker.find_nearby_clusters("Taipei", Coordinate(25.0, 121.5))
        await self.tracker.start_station_updates("Taipei", cluster, "d1")
        await settle()
        await self.tracker.start_station_updates("Taipei", cluster, "d2")
        await settle()
        self.assertEqual(self.tracker.station_arrivals, [])

    async def test_pause_and_resume(self):
        (cluster,) = await self.tracker.find_nearby_clusters("Taipei", Coordinate(25.0, 121.5))
        await self.tracker.start_station_updates("Taipei", cluster, "d1")
        await settle()
        await self.tracker.pause_updates()
        fetched = self.accessor.count("arrivals")

        self.tracker.resume_updates()
        await settle()
        # Updated moments ago, so resuming waits out the interval
        self.assertEqual(self.accessor.count("arrivals"), fetched)

    async def test_stop_clears_results(self):
        (cluster,) = await self.tracker.find_nearby_clusters("Taipei", Coordinate(25.0, 121.5))
        await self.tracker.start_station_updates("Taipei", cluster, "d1")
        await settle()
        await self.tracker.stop()
        self.assertEqual(self.tracker.station_arrivals, [])
        self.assertIsNone(self.tracker.last_updated)


class TestItinerarySelection(unittest.TestCase):
    """Test selecting alternatives for planned itineraries."""

    def setUp(self):
        self.tracker, _ = build_tracker()
        self.tracker.set_itineraries([build_itinerary()])

    def test_select_alternative_retimes(self):
        before = datetime.now(timezone.utc)
        updated = self.tracker.select_alternative(0, 1, ArrivalInfo(ArrivalStatus.COMING, 300, "5 分"))
        departure = updated.legs[1].departure_instant
        self.assertGreaterEqual(departure, before + timedelta(seconds=300))
        self.assertEqual(updated.legs[0].arrival_instant, departure)
        self.assertIs(self.tracker.itineraries[0], updated)

    def test_no_data_restores_plan(self):
        self.tracker.select_alternative(0, 1, ArrivalInfo(ArrivalStatus.COMING, 300, "5 分"))
        restored = self.tracker.select_alternative(0, 1, ArrivalInfo(ArrivalStatus.NO_DATA, 2 ** 63 - 1, "未發車"))
        self.assertIsNone(restored.legs[1].departure_instant)

    def test_reset_itinerary(self):
        self.tracker.select_alternative(0, 1, ArrivalInfo(ArrivalStatus.COMING, 300, "5 分"))
        self.assertIsNone(self.tracker.reset_itinerary(0).departure_instant)

    def test_itinerary_times(self):
        self.assertEqual(self.tracker.itinerary_times(0)[-1], ("--:--", "--:--"))
        self.tracker.select_alternative(0, 1, ArrivalInfo(ArrivalStatus.COMING, 300, "5 分"))
        departure, arrival = self.tracker.itinerary_times(0)[-1]
        self.assertRegex(departure, r"^\d\d:\d\d$")
        self.assertRegex(arrival, r"^\d\d:\d\d$")


class TestConstruction(unittest.TestCase):
    """Test default wiring."""

    def test_injected_accessor_uses_memory_store(self):
        accessor = FakeAccessor()
        tracker = BusStationTracker(settings=Settings(app_id="", app_key=""), accessor=accessor)
        self.assertIsInstance(tracker.store, MemoryStore)
        self.assertIs(tracker.disambiguator.mapping_cache.store, tracker.store)


class TestCleanup(unittest.TestCase):
    """Test resource cleanup."""

    def test_cleanup_closes_client(self):
        tracker, accessor = build_tracker()
        tracker.cleanup()
        accessor.client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
