from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from finalizer.config import Settings
from finalizer.event_store import EventStore
from finalizer.maps_service import GoogleMapsService, StationLocator, TravelTimeOracle
from finalizer.orchestrator import FinalizationOrchestrator
from finalizer.venue_service import HotPepperService, VenueFinder

from factories import NOW, hotpepper_response, make_distance_matrix


@pytest.fixture
def settings():
    return Settings(
        google_maps_api_key='test-google-key',
        hotpepper_key='test-hotpepper-key',
        database_url='sqlite://',
        log_file=None,
    )


@pytest.fixture
def store():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    event_store = EventStore(engine, lock_ttl_seconds=120)
    event_store.create_all()
    return event_store


@pytest.fixture
def unmigrated_store():
    # Same in-memory database, but the tables were never created
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    return EventStore(engine, lock_ttl_seconds=120)


@pytest.fixture
def maps_client():
    client = MagicMock()
    client.places_nearby.return_value = {'status': 'ZERO_RESULTS', 'results': []}
    client.distance_matrix.return_value = make_distance_matrix([])
    return client


@pytest.fixture
def maps_service(maps_client):
    return GoogleMapsService('test-google-key', client=maps_client)


@pytest.fixture
def hotpepper_session():
    session = MagicMock()
    session.get.return_value = hotpepper_response([])
    return session


@pytest.fixture
def venue_service(hotpepper_session):
    return HotPepperService('test-hotpepper-key', session=hotpepper_session)


@pytest.fixture
def orchestrator(settings, store, maps_service, venue_service):
    return FinalizationOrchestrator(
        settings,
        store,
        StationLocator(maps_service),
        TravelTimeOracle(maps_service),
        VenueFinder(venue_service),
        clock=lambda: NOW,
    )
