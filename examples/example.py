"""Example usage of BusStationTracker."""

import asyncio
import logging
import sys
from pathlib import Path

# Add src to path so we can import busmatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmatch.arrivals import classify
from busmatch.exceptions import BusMatchError
from busmatch.station_tracker import BusStationTracker

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


async def print_station_arrivals(city_name: str, station_input: str, cycles: int = 2):
    """
    Show live arrivals for the stop group a station belongs to.

    Args:
        city_name: City display name (e.g. "台北市") or provider name ("Taipei")
        station_input: Station name or station ID
        cycles: Number of polling cycles to print before exiting
    """
    print(f"\n{'='*70}")
    print(f"Fetching data for: {station_input} ({city_name})")
    print(f"{'='*70}\n")

    tracker = BusStationTracker()
    try:
        city = tracker.get_city(city_name).tdx_name
        station = await tracker.get_station(city, station_input)
        clusters = await tracker.find_nearby_clusters(city, station.position)
        cluster = next((c for c in clusters if c.name == station.name), None)
        if cluster is None:
            print(f"No stop group found around {station.name}")
            return

        print(f"Station: {station.name}")
        print(f"Stations in group: {', '.join(cluster.station_ids)}\n")

        updates = asyncio.Queue()
        await tracker.start_station_updates(city, cluster, station.station_id, on_update=updates.put_nowait)

        for _ in range(cycles):
            arrivals = await updates.get()
            print(f"ARRIVALS AT {station.station_id} ({tracker.last_updated.strftime('%H:%M:%S')}):")
            print("-" * 70)
            if not arrivals:
                print("  No arrivals found")
            for arrival in arrivals:
                info = classify(arrival)
                print(f"  {arrival.route_name} (Dir {arrival.direction}): {info.display_text}")
            print()

    except ValueError as e:
        print(f"Error: {e}")
        print("Try searching by station name (e.g., '台北車站')")
        sys.exit(1)
    except BusMatchError as e:
        logger.error(f"Failed to fetch data: {e}", exc_info=True)
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        await tracker.stop()
        tracker.cleanup()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python examples/example.py <city> <station name or ID>")
        sys.exit(1)
    asyncio.run(print_station_arrivals(sys.argv[1], " ".join(sys.argv[2:])))
