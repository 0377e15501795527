"""TDX (Transport Data eXchange) bus API fetcher and parser."""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import Settings
from .exceptions import AuthenticationError, ProviderError
from .models import (
    ArrivalObservation,
    Coordinate,
    Route,
    RouteDirectionSequence,
    Station,
    StationStop,
    Stop,
)

logger = logging.getLogger(__name__)

TOKEN_PATH = "auth/realms/TDXConnect/protocol/openid-connect/token"
TOKEN_EXPIRY_BUFFER_SECONDS = 300

# Unknown route name placeholder used by the provider's own apps
UNKNOWN_ROUTE_NAME = "未知路線"


class TDXClient:
    """Fetches raw JSON payloads from the TDX bus API."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            settings: Credentials, base URL and timeout.
            session: Optional preconfigured session (tests pass a mock).
        """
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/") + "/"
        self.session = session if session is not None else self._build_session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=3,
            connect=3,
            read=3,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    @staticmethod
    def _raise_with_context(response: Response, endpoint: str) -> None:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            body = (response.text or "").strip().replace("\n", " ")
            body = body[:500]
            raise ProviderError(
                f"{exc} | endpoint={endpoint} | response_body={body}",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from exc

    def get_token(self) -> str:
        """
        Return a bearer token, requesting a new one when missing or close to expiry.

        Raises:
            AuthenticationError: If the token endpoint rejects the credentials.
        """
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            logger.debug("Requesting TDX access token")
            try:
                response = self.session.post(
                    self.base_url + TOKEN_PATH,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.settings.app_id,
                        "client_secret": self.settings.app_key,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.settings.request_timeout,
                )
                self._raise_with_context(response, TOKEN_PATH)
                payload = response.json()
                access_token = payload["access_token"]
                expires_in = int(payload.get("expires_in", 0))
            except ProviderError as exc:
                raise AuthenticationError(f"Failed to get TDX token: {exc}", endpoint=TOKEN_PATH) from exc
            except (requests.RequestException, ValueError, KeyError) as exc:
                raise AuthenticationError(f"Failed to get TDX token: {exc}", endpoint=TOKEN_PATH) from exc

            self._token = access_token
            self._token_expires_at = time.time() + expires_in - TOKEN_EXPIRY_BUFFER_SECONDS
            return self._token

    def _get_json(self, path: str, params: Dict[str, Any]) -> List[dict]:
        """
        GET a provider endpoint and return its JSON list.

        Raises:
            ProviderError: On transport failure, non-2xx status or a non-list body.
        """
        headers = {
            "Authorization": f"Bearer {self.get_token()}",
            "Accept": "application/json",
        }
        query = dict(params)
        query["$format"] = "JSON"
        logger.debug(f"Fetching {path} {query}")
        try:
            response = self.session.get(
                self.base_url + path,
                params=query,
                headers=headers,
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Request failed for {path}: {exc}", endpoint=path) from exc

        self._raise_with_context(response, path)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"Malformed JSON from {path}: {exc}", endpoint=path) from exc
        if not isinstance(payload, list):
            raise ProviderError(f"Expected a JSON list from {path}, got {type(payload).__name__}", endpoint=path)
        return payload

    def fetch_routes(self, city: str) -> List[dict]:
        return self._get_json(
            f"api/basic/v2/Bus/Route/City/{city}",
            {"$filter": "RouteName/Zh_tw ne null", "$top": 10000},
        )

    def fetch_stop_of_route(self, city: str, route_name: str) -> List[dict]:
        return self._get_json(
            f"api/basic/v2/Bus/StopOfRoute/City/{city}",
            {"$filter": f"RouteName/Zh_tw eq '{route_name}'"},
        )

    def fetch_routes_through_station(self, city: str, station_id: str) -> List[dict]:
        return self._get_json(
            f"api/advanced/v2/Bus/Route/City/{city}/PassThrough/Station/{station_id}",
            {},
        )

    def fetch_arrivals_for_station(self, city: str, station_id: str) -> List[dict]:
        return self._get_json(
            f"api/advanced/v2/Bus/EstimatedTimeOfArrival/City/{city}/PassThrough/Station/{station_id}",
            {"$top": 500},
        )

    def fetch_stations(self, city: str) -> List[dict]:
        return self._get_json(f"api/basic/v2/Bus/Station/City/{city}", {"$top": 10000})

    def close(self) -> None:
        self.session.close()


def _zh_name(name: Optional[dict]) -> Optional[str]:
    if not isinstance(name, dict):
        return None
    return name.get("Zh_tw") or None


def _position(raw: Optional[dict]) -> Coordinate:
    raw = raw or {}
    return Coordinate(float(raw.get("PositionLat") or 0.0), float(raw.get("PositionLon") or 0.0))


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _require_records(payload: Any, what: str) -> List[dict]:
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise ProviderError(f"Malformed {what} payload")
    return payload


def parse_routes(payload: Any) -> List[Route]:
    """Parse Route or PassThrough/Station route records; records without a name are skipped."""
    routes: List[Route] = []
    for record in _require_records(payload, "route"):
        name = _zh_name(record.get("RouteName"))
        uid = record.get("RouteUID")
        if not name or not uid:
            continue
        name_en = (record.get("RouteName") or {}).get("En")
        routes.append(Route(route_uid=uid, name=name, name_en=name_en))
    return routes


def parse_stop_sequences(payload: Any) -> List[RouteDirectionSequence]:
    """Parse StopOfRoute records into direction sequences in travel order."""
    sequences: List[RouteDirectionSequence] = []
    for record in _require_records(payload, "stop-of-route"):
        direction = _optional_int(record.get("Direction"))
        route_uid = record.get("RouteUID")
        if direction is None or not route_uid:
            continue
        raw_stops = record.get("Stops") or []
        # StopSequence is authoritative when present
        if all("StopSequence" in s for s in raw_stops):
            raw_stops = sorted(raw_stops, key=lambda s: s["StopSequence"])
        stops = tuple(
            Stop(
                stop_uid=s["StopUID"],
                stop_id=s.get("StopID"),
                name=_zh_name(s.get("StopName")) or "",
                position=_position(s.get("StopPosition")),
                route_uid=route_uid,
                direction=direction,
            )
            for s in raw_stops
            if s.get("StopUID")
        )
        sequences.append(
            RouteDirectionSequence(
                route_uid=route_uid,
                name=_zh_name(record.get("RouteName")) or "",
                direction=direction,
                stops=stops,
            )
        )
    return sequences


def parse_stations(payload: Any) -> List[Station]:
    """Parse Station records, keeping only the Zh_tw route name of each hosted stop."""
    stations: List[Station] = []
    for record in _require_records(payload, "station"):
        station_id = record.get("StationID")
        if not station_id:
            continue
        stops = tuple(
            StationStop(
                stop_uid=stop.get("StopUID", ""),
                stop_id=stop.get("StopID", ""),
                route_uid=stop.get("RouteUID", ""),
                route_id=stop.get("RouteID", ""),
                route_name=_zh_name(stop.get("RouteName"))
                or (stop.get("RouteName") or {}).get("En")
                or UNKNOWN_ROUTE_NAME,
            )
            for stop in (record.get("Stops") or [])
        )
        stations.append(
            Station(
                station_uid=record.get("StationUID") or "",
                station_id=station_id,
                name=_zh_name(record.get("StationName")) or "",
                position=_position(record.get("StationPosition")),
                stops=stops,
            )
        )
    return stations


def parse_arrivals(payload: Any, station_id: Optional[str] = None) -> List[ArrivalObservation]:
    """
    Parse EstimatedTimeOfArrival records.

    Args:
        payload: Decoded JSON list.
        station_id: Station the arrivals were requested for, recorded on each observation.
    """
    arrivals: List[ArrivalObservation] = []
    for record in _require_records(payload, "arrival"):
        route_uid = record.get("RouteUID")
        if not route_uid:
            continue
        arrivals.append(
            ArrivalObservation(
                route_uid=route_uid,
                route_name=_zh_name(record.get("RouteName")),
                direction=_optional_int(record.get("Direction")),
                stop_uid=record.get("StopUID"),
                station_id=station_id,
                estimate_seconds=_optional_int(record.get("EstimateTime")),
                next_bus_time=record.get("NextBusTime") or None,
                stop_status=_optional_int(record.get("StopStatus")),
                updated_at=record.get("SrcUpdateTime") or record.get("UpdateTime"),
                plate_number=record.get("PlateNumb") or None,
            )
        )
    return arrivals
