"""
Finalization pipeline for one event.

    CheckConfiguration -> FetchParticipants -> ValidateLocations ->
    ComputeCentroid -> ClaimEvent -> LocateStations -> ComputeConsensusTime ->
    ComputeTravelMatrix -> SelectStation -> FindVenues -> Persist

Configuration, input and persistence problems abort the run and nothing is
written. Provider problems never abort: each stage returns an Outcome whose
value is usable even when the provider failed.
"""

import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Callable, Optional

from .config import Settings
from .consensus import ScheduleConsensus
from .errors import InputError
from .event_store import EventStore
from .geo import calculate_centroid
from .maps_service import GoogleMapsService, StationLocator, TravelTimeOracle
from .models import FinalizationReport, FinalizationResult
from .selection import StationSelector
from .venue_service import HotPepperService, VenueFinder

logger = logging.getLogger(__name__)


class FinalizationOrchestrator:

    def __init__(self, settings: Settings, store: EventStore,
                 station_locator: StationLocator, travel_time_oracle: TravelTimeOracle,
                 venue_finder: VenueFinder, consensus: Optional[ScheduleConsensus] = None,
                 selector: Optional[StationSelector] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self.store = store
        self.station_locator = station_locator
        self.travel_time_oracle = travel_time_oracle
        self.venue_finder = venue_finder
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.consensus = consensus or ScheduleConsensus(settings.tzinfo, clock=self.clock)
        self.selector = selector or StationSelector()

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[EventStore] = None) -> 'FinalizationOrchestrator':
        """Wire the real providers. Raises ConfigurationError when keys are missing."""
        settings.require_credentials()
        maps_service = GoogleMapsService(
            settings.google_maps_api_key,
            language=settings.places_language,
            timeout=settings.provider_timeout_seconds,
            retry_timeout=settings.provider_retry_timeout_seconds,
        )
        venue_service = HotPepperService(
            settings.hotpepper_key,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        )
        if store is None:
            store = EventStore.from_url(settings.database_url, settings.finalize_lock_ttl_seconds)
            store.create_all()
        return cls(
            settings,
            store,
            StationLocator(maps_service),
            TravelTimeOracle(maps_service),
            VenueFinder(venue_service),
        )

    def finalize(self, event_id) -> FinalizationReport:
        """Compute and persist the meeting plan for event_id"""
        self.settings.require_credentials()
        if not event_id:
            raise InputError("Event ID is required")
        event_id = str(event_id)

        started = perf_counter()
        logger.info(f"=== FINALIZE EVENT {event_id} ===")

        participants = self.store.fetch_participants(event_id)
        if not participants:
            raise InputError("No users found")

        origins = [p.location for p in participants if p.has_valid_location]
        logger.info(f"{len(participants)} participants, {len(origins)} with a usable location")
        if not origins:
            raise InputError("No valid user locations")

        center = calculate_centroid(origins)
        logger.info(f"Centroid: lat={center.lat}, lng={center.lng}")

        claim = self.store.claim(event_id, now=self.clock())
        try:
            outcomes = {}

            outcomes['stations'] = self.station_locator.locate(center)
            stations = outcomes['stations'].value

            availability = [value for p in participants for value in p.availability]
            outcomes['schedule'] = self.consensus.resolve(availability)
            confirmed_at = outcomes['schedule'].value
            logger.info(f"Using arrival time: {confirmed_at.isoformat()}")

            outcomes['travel_times'] = self.travel_time_oracle.compute(origins, stations, confirmed_at)
            station = self.selector.select(stations, outcomes['travel_times'].value)

            outcomes['venues'] = self.venue_finder.find(station.location)

            result = FinalizationResult(
                confirmed_at=confirmed_at,
                station=station,
                venues=outcomes['venues'].value,
                center=center,
            )
            self.store.commit(claim, result, now=self.clock())
        except Exception:
            self.store.release(claim, now=self.clock())
            raise

        report = FinalizationReport(event_id, result, outcomes)
        for degraded in report.degraded_stages:
            logger.warning(f"Degraded stage: {degraded}")
        logger.info(
            f"=== END FINALIZE EVENT {event_id}: station={station.name} "
            f"duration_ms={(perf_counter() - started) * 1000.0:.1f} ==="
        )
        return report
