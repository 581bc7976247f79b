import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import googlemaps
from googlemaps import exceptions as gm_exceptions

from .errors import ConfigurationError, ProviderDegraded
from .geo import distance_m
from .models import CandidateStation, LatLng, Outcome, TravelTimeMatrix

logger = logging.getLogger(__name__)


# --- Module-level constants ---
STATION_SEARCH_RADIUS_M = 2000
STATION_MAX_RESULTS = 5
STATION_TYPES = ('train_station', 'subway_station', 'light_rail_station')
FALLBACK_STATION_NAME = "Middle Point"
TRAVEL_MODE = 'transit'

_GOOGLE_ERRORS = (gm_exceptions.ApiError, gm_exceptions.TransportError, gm_exceptions.Timeout)


def _fmt(point: LatLng) -> str:
    return f"{point.lat},{point.lng}"


class GoogleMapsService:
    """Service for interacting with Google Maps APIs"""

    def __init__(self, api_key: str, client=None, language: str = 'ja',
                 timeout: Optional[float] = None, retry_timeout: float = 30):
        if client is None:
            if not api_key or api_key == "your_api_key_here":
                raise ConfigurationError("Valid Google Maps API key is required")
            try:
                client = googlemaps.Client(key=api_key, timeout=timeout, retry_timeout=retry_timeout)
            except ValueError as e:
                raise ConfigurationError(f"Invalid Google Maps configuration: {e}")
        self.client = client
        self.language = language

    def find_places_nearby(self, location: LatLng, radius: int, place_types: Sequence[str],
                           max_results: int) -> List[Dict]:
        """
        Find places of the given types around a location.
        Results are merged across types, de-duplicated by place id and ranked
        by number of user ratings (stable, so prominence order breaks ties).
        Raises ProviderDegraded only if every type lookup failed.
        """
        places: List[Dict] = []
        seen = set()
        failures = []

        for place_type in place_types:
            try:
                response = self.client.places_nearby(
                    location=(location.lat, location.lng),
                    radius=radius,
                    type=place_type,
                    language=self.language,
                )
            except _GOOGLE_ERRORS as e:
                logger.warning(f"Places search failed for type={place_type}: {e}")
                failures.append(place_type)
                continue

            for place in response.get('results', []):
                try:
                    place_details = {
                        'name': place['name'],
                        'lat': place['geometry']['location']['lat'],
                        'lng': place['geometry']['location']['lng'],
                        'place_id': place.get('place_id'),
                        'user_ratings_total': place.get('user_ratings_total') or 0,
                    }
                except (KeyError, TypeError):
                    logger.debug(f"Skipping malformed place result: {place!r}")
                    continue
                key = place_details['place_id'] or (place_details['name'], place_details['lat'], place_details['lng'])
                if key in seen:
                    continue
                seen.add(key)
                places.append(place_details)

        if failures and len(failures) == len(place_types):
            raise ProviderDegraded(f"Places search failed for all types: {', '.join(failures)}")

        places.sort(key=lambda p: p['user_ratings_total'], reverse=True)
        return places[:max_results]

    def get_transit_times_matrix(self, origins: List[LatLng], destinations: List[LatLng],
                                 arrival_time: datetime, mode: str = TRAVEL_MODE) -> List[Dict]:
        """
        Batch durations using the Distance Matrix API, arriving by arrival_time.
        Returns one entry per origin/destination pair; 'duration' is seconds,
        or None when the provider has no route for the pair.
        """
        if not origins or not destinations:
            return []

        try:
            dm = self.client.distance_matrix(
                origins=[_fmt(o) for o in origins],
                destinations=[_fmt(d) for d in destinations],
                mode=mode,
                arrival_time=int(arrival_time.timestamp()),
                language=self.language,
            )
        except _GOOGLE_ERRORS as e:
            raise ProviderDegraded(f"Distance Matrix error: {e}")

        if not isinstance(dm, dict) or 'rows' not in dm:
            raise ProviderDegraded("Distance Matrix returned no rows")

        entries = []
        for i, row in enumerate(dm.get('rows', [])):
            for j, el in enumerate(row.get('elements', [])):
                duration = None
                if el and el.get('status') == 'OK':
                    duration = el.get('duration', {}).get('value')
                entries.append({'origin_index': i, 'destination_index': j, 'duration': duration})
        return entries


class StationLocator:
    """Finds candidate transit hubs around the centroid"""

    def __init__(self, maps_service: GoogleMapsService, radius: int = STATION_SEARCH_RADIUS_M,
                 max_results: int = STATION_MAX_RESULTS):
        self.maps_service = maps_service
        self.radius = radius
        self.max_results = max_results

    def locate(self, center: LatLng) -> Outcome[List[CandidateStation]]:
        try:
            places = self.maps_service.find_places_nearby(
                center, self.radius, STATION_TYPES, self.max_results
            )
        except ProviderDegraded as e:
            logger.warning(f"Station search degraded, using centroid: {e.message}")
            return Outcome.error(self._fallback(center), e.message)

        if not places:
            logger.info("No stations near centroid, using centroid as the meeting point")
            return Outcome.fallback(self._fallback(center), "no stations within search radius")

        stations = []
        for place in places:
            location = LatLng(place['lat'], place['lng'])
            stations.append(CandidateStation(
                name=place['name'],
                location=location,
                place_id=place.get('place_id'),
                popularity=place.get('user_ratings_total', 0),
                distance_from_center_m=round(distance_m(center, location), 1),
            ))
        logger.info(f"Found {len(stations)} candidate stations: {[s.name for s in stations]}")
        return Outcome.found(stations)

    @staticmethod
    def _fallback(center: LatLng) -> List[CandidateStation]:
        return [CandidateStation(name=FALLBACK_STATION_NAME, location=center, distance_from_center_m=0.0)]


class TravelTimeOracle:
    """Computes the participant -> station transit duration matrix"""

    def __init__(self, maps_service: GoogleMapsService, mode: str = TRAVEL_MODE):
        self.maps_service = maps_service
        self.mode = mode

    def compute(self, origins: List[LatLng], stations: List[CandidateStation],
                arrival_time: datetime) -> Outcome[TravelTimeMatrix]:
        matrix = TravelTimeMatrix()
        try:
            entries = self.maps_service.get_transit_times_matrix(
                origins, [s.location for s in stations], arrival_time, mode=self.mode
            )
        except ProviderDegraded as e:
            logger.warning(f"Route matrix unavailable, selecting without travel times: {e.message}")
            return Outcome.error(matrix, e.message)

        for entry in entries:
            if entry.get('duration') is not None:
                matrix.set(entry['origin_index'], entry['destination_index'], entry['duration'])

        if not len(matrix):
            logger.warning("Route matrix has no routable pairs")
            return Outcome.fallback(matrix, "no transit routes found")

        logger.info(f"Route matrix: {len(matrix)} of {len(origins) * len(stations)} pairs routed")
        return Outcome.found(matrix)
