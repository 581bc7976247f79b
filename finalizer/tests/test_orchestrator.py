from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from googlemaps import exceptions as gm_exceptions

from finalizer.config import Settings
from finalizer.errors import ConfigurationError, FinalizationInProgressError, InputError, PersistenceError
from finalizer.event_store import STATUS_FINALIZED, STATUS_OPEN
from finalizer.maps_service import FALLBACK_STATION_NAME, StationLocator, TravelTimeOracle
from finalizer.models import OutcomeStatus
from finalizer.orchestrator import FinalizationOrchestrator
from finalizer.venue_service import VenueFinder

from factories import NOW, hotpepper_response, make_distance_matrix, make_place, make_shop


@pytest.fixture
def event(store):
    store.add_event('evt-1')
    store.add_participant('evt-1', 'organizer', 35.0, 139.0)
    store.add_participant('evt-1', 'guest', 35.2, 139.2)
    store.add_participant('evt-1', 'no-pin', 0, 0)
    store.add_schedule('organizer', '2024-01-05T19:00:00+09:00')
    store.add_schedule('guest', '2024-01-05T10:00:00Z')
    store.add_schedule('guest', '2024-01-06T10:00:00Z')
    store.add_schedule('no-pin', '2024-01-06T19:00:00+09:00')
    return 'evt-1'


@pytest.fixture
def two_stations(maps_client):
    maps_client.places_nearby.return_value = {'results': [
        make_place('S1', 35.10, 139.10, ratings=900),
        make_place('S2', 35.12, 139.12, ratings=100),
    ]}
    # S1 worst case 600s, S2 worst case 300s
    maps_client.distance_matrix.return_value = make_distance_matrix([[600, 300], [400, 250]])


@pytest.fixture
def shops(hotpepper_session):
    hotpepper_session.get.return_value = hotpepper_response([make_shop('Delicious BBQ'), make_shop('Sushi')])


def test_full_pipeline(orchestrator, store, event, two_stations, shops, maps_client):
    report = orchestrator.finalize(event)
    result = report.result

    assert result.station.name == 'S2'
    assert result.confirmed_at == datetime(2024, 1, 5, 10, tzinfo=timezone.utc)
    assert [v.name for v in result.venues] == ['Delicious BBQ', 'Sushi']
    assert result.center.lat == pytest.approx(35.1)
    assert report.degraded_stages == []

    # Only the two participants with a pin are routed, in participant id order
    assert maps_client.distance_matrix.call_args.kwargs['origins'] == ['35.2,139.2', '35.0,139.0']

    row = store.get_event(event)
    assert row['status'] == STATUS_FINALIZED
    assert row['target_station'] == 'S2'
    assert (row['target_lat'], row['target_lng']) == (35.12, 139.12)
    assert row['confirmed_date'] == '2024-01-05T10:00:00+00:00'
    assert [r['name'] for r in row['restaurant_info']] == ['Delicious BBQ', 'Sushi']


def test_payload_shape(orchestrator, event, two_stations, shops):
    payload = orchestrator.finalize(event).to_dict()
    assert payload['success'] is True
    assert payload['station'] == {'name': 'S2', 'location': {'lat': 35.12, 'lng': 139.12}}
    assert payload['center']['lng'] == pytest.approx(139.1)
    assert payload['restaurant'][0]['catch'] == 'Best Meat!'
    assert payload['confirmed_date'] == '2024-01-05T10:00:00+00:00'
    assert payload['degraded'] == []


def test_rerun_is_idempotent(orchestrator, store, event, two_stations, shops):
    first = orchestrator.finalize(event).result
    second = orchestrator.finalize(event).result
    assert first.confirmed_at == second.confirmed_at
    assert first.station == second.station
    assert store.get_event(event)['status'] == STATUS_FINALIZED


def test_every_provider_down_still_finalizes(orchestrator, store, event, maps_client, hotpepper_session):
    maps_client.places_nearby.side_effect = gm_exceptions.TransportError('down')
    maps_client.distance_matrix.side_effect = gm_exceptions.TransportError('down')
    hotpepper_session.get.side_effect = requests.exceptions.Timeout('slow')

    report = orchestrator.finalize(event)

    assert report.result.station.name == FALLBACK_STATION_NAME
    assert report.result.station.location == report.result.center
    assert report.result.venues[0].is_placeholder
    assert {d['stage'] for d in report.degraded_stages} == {'stations', 'travel_times', 'venues'}
    assert all(d['status'] == OutcomeStatus.ERROR.value for d in report.degraded_stages)

    row = store.get_event(event)
    assert row['target_station'] == FALLBACK_STATION_NAME
    assert row['restaurant_info'] == [{'name': 'Restaurant not found', 'text': 'Please search manually nearby.'}]


def test_no_availability_uses_next_friday(orchestrator, store, two_stations, shops):
    store.add_event('evt-2')
    store.add_participant('evt-2', 'solo', 35.68, 139.76)
    report = orchestrator.finalize('evt-2')
    # NOW is Wednesday 2024-01-03 in Tokyo
    assert report.result.confirmed_at == datetime(2024, 1, 5, 10, tzinfo=timezone.utc)
    assert report.outcomes['schedule'].status is OutcomeStatus.FALLBACK


def test_no_valid_locations_writes_nothing(orchestrator, store, maps_client):
    store.add_event('evt-3')
    store.add_participant('evt-3', 'a', None, None)
    store.add_participant('evt-3', 'b', 0, 139.7)
    with pytest.raises(InputError):
        orchestrator.finalize('evt-3')
    row = store.get_event('evt-3')
    assert row['status'] == STATUS_OPEN
    assert row['target_station'] is None
    maps_client.places_nearby.assert_not_called()


def test_no_participants(orchestrator, store):
    store.add_event('empty')
    with pytest.raises(InputError):
        orchestrator.finalize('empty')


@pytest.mark.parametrize('event_id', [None, ''])
def test_event_id_required(orchestrator, event_id):
    with pytest.raises(InputError):
        orchestrator.finalize(event_id)


def test_missing_credentials_checked_first(store, maps_service, venue_service, event):
    orchestrator = _orchestrator(Settings(google_maps_api_key='k', hotpepper_key=None, log_file=None),
                                 store, maps_service, venue_service)
    with pytest.raises(ConfigurationError):
        orchestrator.finalize(event)
    assert store.get_event(event)['status'] == STATUS_OPEN


def test_from_settings_rejects_missing_keys():
    with pytest.raises(ConfigurationError):
        FinalizationOrchestrator.from_settings(Settings(log_file=None))


def test_concurrent_finalize_is_rejected(orchestrator, store, event, two_stations, shops):
    store.claim(event, now=NOW)
    with pytest.raises(FinalizationInProgressError):
        orchestrator.finalize(event)


def test_persistence_failure_commits_nothing_and_releases(orchestrator, store, event, two_stations, shops):
    real_commit = store.commit
    store.commit = MagicMock(side_effect=PersistenceError('disk full'))

    with pytest.raises(PersistenceError):
        orchestrator.finalize(event)

    row = store.get_event(event)
    assert row['status'] == STATUS_OPEN
    assert row['target_station'] is None

    # The event can be finalized again once the store recovers
    store.commit = real_commit
    assert orchestrator.finalize(event).result.station.name == 'S2'


def test_unreadable_store_is_a_persistence_error(settings, unmigrated_store, maps_service, venue_service, maps_client):
    orchestrator = _orchestrator(settings, unmigrated_store, maps_service, venue_service)
    with pytest.raises(PersistenceError):
        orchestrator.finalize('evt-1')
    maps_client.places_nearby.assert_not_called()


def _orchestrator(settings, store, maps_service, venue_service):
    return FinalizationOrchestrator(
        settings, store, StationLocator(maps_service), TravelTimeOracle(maps_service),
        VenueFinder(venue_service), clock=lambda: NOW,
    )
