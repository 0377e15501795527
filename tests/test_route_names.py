"""Tests for route-name matching."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import busmatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmatch.models import Route
from busmatch.route_names import ExactNameMatch, KeywordMatch, RouteNameMatcher, sort_routes

ROUTES = [
    Route("TPE1", "307", "307"),
    Route("TPE2", "307副", "307 Shuttle"),
    Route("TPE3", "5延", "5 Extension"),
    Route("TPE4", "紅5", "R5"),
    Route("TPE5", "跳蛙公車5", "Leapfrog 5"),
]


class TestRouteNameMatcher(unittest.TestCase):
    """Test strategy evaluation order."""

    def setUp(self):
        self.matcher = RouteNameMatcher()

    def test_exact_name(self):
        self.assertEqual(self.matcher.match("307", ROUTES), "307")

    def test_english_name(self):
        self.assertEqual(self.matcher.match("R5", ROUTES), "紅5")

    def test_suffix_variants(self):
        self.assertEqual(self.matcher.match("307V", ROUTES), "307副")
        self.assertEqual(self.matcher.match("5e", ROUTES), "5延")

    def test_keyword_rule(self):
        self.assertEqual(self.matcher.match("Tiaowa Bus", ROUTES), "跳蛙公車5")

    def test_no_match(self):
        self.assertIsNone(self.matcher.match("999", ROUTES))
        self.assertIsNone(self.matcher.match("V", ROUTES))
        self.assertIsNone(self.matcher.match(None, ROUTES))
        self.assertIsNone(self.matcher.match("", ROUTES))

    def test_exact_match_beats_suffix_rewrite(self):
        routes = ROUTES + [Route("TPE6", "307V")]
        self.assertEqual(self.matcher.match("307V", routes), "307V")

    def test_custom_strategy(self):
        matcher = RouteNameMatcher([ExactNameMatch()])
        self.assertIsNone(matcher.match("307V", ROUTES))
        matcher.add_strategy(KeywordMatch("SHUTTLE", "副"))
        self.assertEqual(matcher.match("shuttle", ROUTES), "307副")


class TestSortRoutes(unittest.TestCase):
    """Test route ordering by number."""

    def test_sort_by_first_number(self):
        routes = [Route(n, n) for n in ["307", "綠1", "15", "紅5", "幹線", "1"]]
        self.assertEqual([r.name for r in sort_routes(routes)], ["1", "綠1", "紅5", "15", "307", "幹線"])


if __name__ == "__main__":
    unittest.main()
