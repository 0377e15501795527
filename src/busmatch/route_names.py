"""Matching third-party line names to provider route names."""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from .models import Route

logger = logging.getLogger(__name__)


class ExactNameMatch:
    """Line name equals the provider's Zh_tw route name."""

    def match(self, line_name: str, routes: Sequence[Route]) -> Optional[Route]:
        return next((r for r in routes if r.name == line_name), None)


class EnglishNameMatch:
    """Line name equals the provider's English route name."""

    def match(self, line_name: str, routes: Sequence[Route]) -> Optional[Route]:
        return next((r for r in routes if r.name_en and r.name_en == line_name), None)


class SuffixVariantMatch:
    """
    A trailing latin suffix stands for a localized variant marker.

    Directions providers publish "307V" for the 副 (auxiliary) variant of route
    307 and "5E" for the 延 (extended) variant of route 5.
    """

    def __init__(self, suffix: str, replacement: str):
        self.suffix = suffix.upper()
        self.replacement = replacement

    def match(self, line_name: str, routes: Sequence[Route]) -> Optional[Route]:
        normalized = line_name.upper()
        if not normalized.endswith(self.suffix) or len(normalized) == len(self.suffix):
            return None
        wanted = normalized[: -len(self.suffix)] + self.replacement
        return next((r for r in routes if r.name == wanted), None)


class KeywordMatch:
    """A known special line name maps to any route whose name contains a keyword."""

    def __init__(self, line_name: str, keyword: str):
        self.line_name = line_name.upper()
        self.keyword = keyword

    def match(self, line_name: str, routes: Sequence[Route]) -> Optional[Route]:
        if line_name.upper() != self.line_name:
            return None
        return next((r for r in routes if self.keyword in r.name), None)


DEFAULT_STRATEGIES = (
    ExactNameMatch(),
    EnglishNameMatch(),
    SuffixVariantMatch("V", "副"),
    SuffixVariantMatch("E", "延"),
    KeywordMatch("TIAOWA BUS", "跳蛙"),
)


class RouteNameMatcher:
    """Evaluates matching strategies in priority order; the first hit wins."""

    def __init__(self, strategies: Optional[Iterable] = None):
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)

    def add_strategy(self, strategy, priority: Optional[int] = None) -> None:
        """Register an extra strategy, appended unless a priority index is given."""
        if priority is None:
            self.strategies.append(strategy)
        else:
            self.strategies.insert(priority, strategy)

    def match(self, line_name: Optional[str], routes: Sequence[Route]) -> Optional[str]:
        """
        Map a line name to the provider route name.

        Returns:
            The provider's route name, or None when no strategy matches.
        """
        if not line_name:
            return None
        line_name = line_name.strip()
        for strategy in self.strategies:
            route = strategy.match(line_name, routes)
            if route is not None:
                logger.debug(f"Mapped '{line_name}' to '{route.name}' via {type(strategy).__name__}")
                return route.name
        logger.warning(f"Could not map line '{line_name}' to a provider route")
        return None


_FIRST_NUMBER = re.compile(r"\d+")


def _contains_cjk(name: str) -> bool:
    return any(ch > "一" for ch in name)


def sort_routes(routes: Iterable[Route]) -> List[Route]:
    """Order routes by their first number; routes without a number go last, latin names before CJK ones."""

    def key(route: Route):
        match = _FIRST_NUMBER.search(route.name)
        number = int(match.group()) if match else float("inf")
        return (number, _contains_cjk(route.name))

    return sorted(routes, key=key)
