"""Propagating a chosen live departure through an itinerary's legs."""

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional

from .models import ArrivalInfo, ArrivalStatus, Itinerary, ItineraryLeg

logger = logging.getLogger(__name__)

NO_TIME = "--:--"


def format_time(instant: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    """HH:MM in tz (local time when omitted), or --:-- for a missing instant."""
    if instant is None:
        return NO_TIME
    return instant.astimezone(tz).strftime("%H:%M")


def apply_selected_arrival(
    itinerary: Itinerary,
    leg_index: int,
    arrival: Optional[ArrivalInfo],
    now: Optional[datetime] = None,
) -> Itinerary:
    """
    Re-time an itinerary around the live departure chosen for one transit leg.

    The chosen leg departs at now + arrival.sort_key seconds. Earlier legs are
    walked backwards so each arrives when its successor departs; later legs are
    walked forwards so each departs when its predecessor arrives.

    Args:
        itinerary: The skeleton itinerary as planned by the directions provider.
        leg_index: Index of the transit leg the arrival belongs to.
        arrival: The selected alternative's arrival info.
        now: Reference time, captured once; defaults to the current UTC time.

    Returns:
        A new Itinerary, or the skeleton unchanged when the arrival carries no
        usable time (None or NO_DATA) or leg_index is not a transit leg.
    """
    if arrival is None or arrival.status is ArrivalStatus.NO_DATA:
        logger.debug("Selected alternative has no live time; keeping the planned itinerary.")
        return itinerary
    if not 0 <= leg_index < len(itinerary.legs) or not itinerary.legs[leg_index].is_transit:
        logger.warning(f"Leg {leg_index} is not a transit leg of this itinerary.")
        return itinerary

    now = now if now is not None else datetime.now(timezone.utc)
    legs: List[ItineraryLeg] = list(itinerary.legs)

    chosen = legs[leg_index]
    departure = now + timedelta(seconds=arrival.sort_key)
    legs[leg_index] = chosen.with_times(departure, departure + timedelta(seconds=chosen.duration_seconds))

    for i in range(leg_index - 1, -1, -1):
        leg = legs[i]
        arrives = legs[i + 1].departure_instant
        departs = arrives - timedelta(seconds=leg.duration_seconds) if arrives is not None else None
        legs[i] = leg.with_times(departs, arrives)

    for i in range(leg_index + 1, len(legs)):
        leg = legs[i]
        departs = legs[i - 1].arrival_instant
        arrives = departs + timedelta(seconds=leg.duration_seconds) if departs is not None else None
        legs[i] = leg.with_times(departs, arrives)

    return Itinerary(legs=tuple(legs), total_duration=itinerary.total_duration)


def display_times(itinerary: Itinerary, tz: Optional[tzinfo] = None) -> List[tuple]:
    """(departure, arrival) HH:MM strings per leg followed by the overall pair."""
    rows = [(format_time(leg.departure_instant, tz), format_time(leg.arrival_instant, tz)) for leg in itinerary.legs]
    rows.append((format_time(itinerary.departure_instant, tz), format_time(itinerary.arrival_instant, tz)))
    return rows
