import logging
from typing import Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConfigurationError, ProviderDegraded
from .models import LatLng, Outcome, Venue

logger = logging.getLogger(__name__)

HOTPEPPER_URL = "https://webservice.recruit.co.jp/hotpepper/gourmet/v1/"
# HotPepper range tiers: 1=300m 2=500m 3=1000m 4=2000m 5=3000m
VENUE_RANGE_TIER = 3
VENUE_MAX_RESULTS = 5


def _build_session(max_retries: int) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(['GET']),
    )
    session.mount('https://', HTTPAdapter(max_retries=retry))
    session.mount('http://', HTTPAdapter(max_retries=retry))
    return session


class HotPepperService:
    """Client for the HotPepper gourmet search API"""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 timeout: float = 10.0, max_retries: int = 2):
        if not api_key or api_key == "your_api_key_here":
            raise ConfigurationError("Valid HotPepper API key is required")
        self.api_key = api_key
        self.session = session or _build_session(max_retries)
        self.timeout = timeout

    def search_nearby(self, location: LatLng, range_tier: int = VENUE_RANGE_TIER,
                      max_results: int = VENUE_MAX_RESULTS) -> List[Dict]:
        params = {
            'key': self.api_key,
            'lat': location.lat,
            'lng': location.lng,
            'range': range_tier,
            'format': 'json',
            'count': max_results,
        }
        try:
            response = self.session.get(HOTPEPPER_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise ProviderDegraded(f"HotPepper request failed: {e}")
        except ValueError as e:
            raise ProviderDegraded(f"HotPepper returned invalid JSON: {e}")

        results = data.get('results') if isinstance(data, dict) else None
        if not isinstance(results, dict):
            raise ProviderDegraded("HotPepper response has no results")
        if results.get('error'):
            messages = [err.get('message', '') for err in results['error'] if isinstance(err, dict)]
            raise ProviderDegraded(f"HotPepper error: {'; '.join(messages) or results['error']}")
        return list(results.get('shop') or [])[:max_results]


def shop_to_venue(shop: Dict) -> Venue:
    genre = shop.get('genre') or {}
    urls = shop.get('urls') or {}
    photo = ((shop.get('photo') or {}).get('pc') or {}).get('l')
    budget = shop.get('budget') or {}
    return Venue(
        name=shop['name'],
        address=shop.get('address', ''),
        genre=genre.get('name'),
        link=urls.get('pc'),
        photo=photo,
        budget=budget.get('name'),
        budget_average=budget.get('average'),
        tagline=shop.get('catch'),
    )


class VenueFinder:
    """Finds dining spots near the chosen station; never comes back empty"""

    def __init__(self, venue_service: HotPepperService, range_tier: int = VENUE_RANGE_TIER,
                 max_results: int = VENUE_MAX_RESULTS):
        self.venue_service = venue_service
        self.range_tier = range_tier
        self.max_results = max_results

    def find(self, location: LatLng) -> Outcome[List[Venue]]:
        try:
            shops = self.venue_service.search_nearby(location, self.range_tier, self.max_results)
        except ProviderDegraded as e:
            logger.warning(f"Venue search degraded: {e.message}")
            return Outcome.error([Venue.placeholder()], e.message)

        venues = []
        for shop in shops:
            try:
                venues.append(shop_to_venue(shop))
            except (KeyError, AttributeError, TypeError):
                logger.debug(f"Skipping malformed shop: {shop!r}")

        if not venues:
            logger.info("No venues near the selected station")
            return Outcome.fallback([Venue.placeholder()], "no venues found")

        logger.info(f"Found {len(venues)} venues")
        return Outcome.found(venues)
