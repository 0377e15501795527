"""Tests for arrival classification, ranking and polling."""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeAccessor, make_station
from busmatch.arrivals import (
    LAST_BUS_SORT_KEY,
    NO_DATA_SORT_KEY,
    NOT_DISPATCHED,
    ArrivalAggregator,
    best_by_candidate,
    classify,
    rank_arrivals,
)
from busmatch.models import (
    ArrivalInfo,
    ArrivalObservation,
    ArrivalStatus,
    CandidateRoute,
    Route,
    StationCluster,
)

TAIPEI = timezone(timedelta(hours=8))
NOW = datetime(2024, 5, 1, 8, 0, tzinfo=TAIPEI)


def obs(estimate=None, next_bus_time=None, status=None, route_uid="R1", name="307", direction=0, station_id="S"):
    return ArrivalObservation(
        route_uid=route_uid,
        route_name=name,
        direction=direction,
        stop_uid=f"{station_id}-stop",
        station_id=station_id,
        estimate_seconds=estimate,
        next_bus_time=next_bus_time,
        stop_status=status,
    )


class TestClassify(unittest.TestCase):
    """Test status, sort key and display text derivation."""

    def test_live_estimates(self):
        self.assertEqual(classify(obs(estimate=25), NOW), ArrivalInfo(ArrivalStatus.COMING, 25, "進站中"))
        self.assertEqual(classify(obs(estimate=45), NOW), ArrivalInfo(ArrivalStatus.COMING, 45, "即將進站"))
        self.assertEqual(classify(obs(estimate=180), NOW), ArrivalInfo(ArrivalStatus.COMING, 180, "3 分"))

    def test_zero_estimate_is_arriving(self):
        self.assertEqual(classify(obs(estimate=0), NOW).display_text, "進站中")

    def test_scheduled_in_future(self):
        info = classify(obs(next_bus_time="2024-05-01T08:10:00+08:00"), NOW)
        self.assertEqual(info, ArrivalInfo(ArrivalStatus.SCHEDULED, 600, "預計 08:10"))

    def test_scheduled_in_past_means_last_bus_gone(self):
        info = classify(obs(next_bus_time="2024-05-01T07:50:00+08:00"), NOW)
        self.assertEqual(info.status, ArrivalStatus.NO_DATA)
        self.assertEqual(info.sort_key, LAST_BUS_SORT_KEY)
        self.assertEqual(info.display_text, "末班已過")

    def test_negative_estimate_falls_through(self):
        info = classify(obs(estimate=-1, next_bus_time="2024-05-01T08:01:00+08:00"), NOW)
        self.assertEqual(info.status, ArrivalStatus.SCHEDULED)
        self.assertEqual(info.sort_key, 60)

    def test_unparseable_schedule_uses_status(self):
        info = classify(obs(next_bus_time="soon", status=4), NOW)
        self.assertEqual(info, ArrivalInfo(ArrivalStatus.NO_DATA, NO_DATA_SORT_KEY, "今日未營運"))

    def test_status_codes(self):
        self.assertEqual(classify(obs(status=2), NOW).display_text, "交管不停")
        self.assertEqual(classify(obs(status=2), NOW).sort_key, NO_DATA_SORT_KEY)
        self.assertEqual(classify(obs(status=3), NOW).sort_key, LAST_BUS_SORT_KEY)
        self.assertEqual(classify(obs(status=3), NOW).display_text, "末班已過")
        self.assertEqual(classify(obs(status=1), NOW), NOT_DISPATCHED)
        self.assertEqual(classify(obs(), NOW), NOT_DISPATCHED)

    def test_last_bus_key_ranks_before_other_no_data(self):
        self.assertLess(LAST_BUS_SORT_KEY, NO_DATA_SORT_KEY)
        self.assertLess(classify(obs(status=3), NOW), classify(obs(status=2), NOW))


class TestOrdering(unittest.TestCase):
    """Test the total order over ArrivalInfo."""

    def test_status_dominates_sort_key(self):
        coming = ArrivalInfo(ArrivalStatus.COMING, 10 ** 9, "late")
        scheduled = ArrivalInfo(ArrivalStatus.SCHEDULED, 0, "now")
        no_data = ArrivalInfo(ArrivalStatus.NO_DATA, 0, "none")
        self.assertLess(coming, scheduled)
        self.assertLess(scheduled, no_data)
        self.assertEqual(sorted([no_data, scheduled, coming]), [coming, scheduled, no_data])

    def test_rank_arrivals(self):
        late = obs(estimate=600)
        soon = obs(estimate=60)
        scheduled = obs(next_bus_time="2024-05-01T08:05:00+08:00")
        gone = obs(status=3)
        self.assertEqual(rank_arrivals([gone, late, scheduled, soon], NOW), [soon, late, scheduled, gone])


class TestBestByCandidate(unittest.TestCase):
    """Test per-candidate reduction."""

    def test_best_matching_direction_wins(self):
        r1 = CandidateRoute(Route("R1", "307"), 0)
        r2 = CandidateRoute(Route("R2", "15"), 1)
        observations = [
            obs(estimate=600),
            obs(estimate=120),
            obs(estimate=30, direction=1),
        ]
        best = best_by_candidate(observations, [r1, r2], NOW)
        self.assertEqual(best["R1"].sort_key, 120)
        self.assertEqual(best["R2"], NOT_DISPATCHED)

    def test_matches_by_uid_without_name(self):
        candidate = CandidateRoute(Route("R1", "307"), 0)
        best = best_by_candidate([obs(estimate=90, name=None)], [candidate], NOW)
        self.assertEqual(best["R1"].sort_key, 90)


class TestArrivalAggregator(unittest.IsolatedAsyncioTestCase):
    """Test cluster-wide polling."""

    def setUp(self):
        self.cluster = StationCluster(
            "Main Gate",
            (make_station("E", "Main Gate", 25.0, 121.5002), make_station("W", "Main Gate", 25.0, 121.4998)),
            "E",
        )
        self.candidate = CandidateRoute(Route("R1", "307"), 0)
        self.accessor = FakeAccessor(
            arrivals={
                "E": [obs(estimate=300, station_id="E")],
                "W": [obs(estimate=90, station_id="W"), obs(estimate=40, route_uid="R9", name="9", station_id="W")],
            }
        )
        self.aggregator = ArrivalAggregator(self.accessor)

    async def test_poll_once_takes_best_across_stations(self):
        result = await self.aggregator.poll_once("Taipei", self.cluster, [self.candidate])
        self.assertEqual(result["R1"].sort_key, 90)
        self.assertEqual(self.accessor.count("arrivals"), 2)

    async def test_poll_once_empty_cluster(self):
        self.accessor.arrivals = {}
        self.assertIsNone(await self.aggregator.poll_once("Taipei", self.cluster, [self.candidate]))

    async def test_station_arrivals_ranked_for_target(self):
        ranked = await self.aggregator.station_arrivals("Taipei", self.cluster, "W")
        self.assertEqual([a.estimate_seconds for a in ranked], [40, 90])

    async def test_watch_alternatives_publishes(self):
        publish = MagicMock()
        loop = self.aggregator.watch_alternatives("Taipei", self.cluster, [self.candidate], publish)
        self.assertTrue(await loop.refresh())
        publish.assert_called_once()
        self.assertEqual(publish.call_args[0][0]["R1"].sort_key, 90)

    async def test_empty_cycle_publishes_nothing(self):
        self.accessor.arrivals = {}
        publish = MagicMock()
        loop = self.aggregator.watch_alternatives("Taipei", self.cluster, [self.candidate], publish)
        self.assertFalse(await loop.refresh())
        publish.assert_not_called()
        self.assertIsNone(loop.last_update)

    async def test_watch_station_publishes(self):
        publish = MagicMock()
        loop = self.aggregator.watch_station("Taipei", self.cluster, "E", publish)
        self.assertTrue(await loop.refresh())
        self.assertEqual([a.estimate_seconds for a in publish.call_args[0][0]], [300])


if __name__ == "__main__":
    unittest.main()
