"""
Record store access for events, participants and their schedules.

Finalization of an event is guarded by a small state machine on the event
row. Each transition is a conditional UPDATE keyed on the current
``status_token``, so of two concurrent finalize calls only one can hold the
event:

    open | finalized  --claim-->  finalizing  --commit-->  finalized
                                 finalizing  --release-> (previous status)

A ``finalizing`` claim older than the lock TTL is treated as abandoned and
may be taken over; the taker restores ``finalized`` on release if a result
was already committed. A ``finalizing`` row without a timestamp is never
considered abandoned. Read and write failures surface as
``PersistenceError``.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import (
    JSON, Column, DateTime, Float, ForeignKey, MetaData, String, Table,
    create_engine, insert, select, update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import FinalizationInProgressError, InputError, PersistenceError
from .models import FinalizationResult, Participant

logger = logging.getLogger(__name__)

STATUS_OPEN = 'open'
STATUS_FINALIZING = 'finalizing'
STATUS_FINALIZED = 'finalized'

metadata = MetaData()

events = Table(
    'events', metadata,
    Column('id', String(64), primary_key=True),
    Column('status', String(16), nullable=False, default=STATUS_OPEN),
    Column('status_token', String(36), nullable=True),
    Column('status_changed_at', DateTime(timezone=True), nullable=True),
    Column('confirmed_date', String(40), nullable=True),
    Column('target_station', String(255), nullable=True),
    Column('target_lat', Float, nullable=True),
    Column('target_lng', Float, nullable=True),
    Column('restaurant_info', JSON, nullable=True),
)

users = Table(
    'users', metadata,
    Column('id', String(64), primary_key=True),
    Column('event_id', String(64), ForeignKey('events.id', ondelete='CASCADE'), nullable=False, index=True),
    Column('name', String(255), nullable=True),
    Column('lat', Float, nullable=True),
    Column('lng', Float, nullable=True),
)

schedules = Table(
    'schedules', metadata,
    Column('id', String(36), primary_key=True, default=lambda: str(uuid.uuid4())),
    Column('user_id', String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
    Column('date', String(40), nullable=False),
)


@dataclass(frozen=True)
class Claim:
    event_id: str
    token: str
    previous_status: str


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventStore:

    def __init__(self, engine: Engine, lock_ttl_seconds: float = 120.0):
        self.engine = engine
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds)

    @classmethod
    def from_url(cls, database_url: str, lock_ttl_seconds: float = 120.0) -> 'EventStore':
        return cls(create_engine(database_url), lock_ttl_seconds)

    def create_all(self) -> None:
        metadata.create_all(self.engine)

    # --- writes used by the event/participant forms and by tests ---

    def add_event(self, event_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(events).values(id=event_id, status=STATUS_OPEN))

    def add_participant(self, event_id: str, user_id: str, lat: Optional[float] = None,
                        lng: Optional[float] = None, name: Optional[str] = None) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(users).values(id=user_id, event_id=event_id, name=name, lat=lat, lng=lng))

    def add_schedule(self, user_id: str, date: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(schedules).values(user_id=user_id, date=date))

    # --- reads ---

    def get_event(self, event_id: str) -> Optional[Dict]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(events).where(events.c.id == event_id)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load event {event_id}: {e}")
        return dict(row) if row else None

    def fetch_participants(self, event_id: str) -> List[Participant]:
        """Participants of the event with their availability attached"""
        try:
            with self.engine.connect() as conn:
                user_rows = conn.execute(
                    select(users.c.id, users.c.lat, users.c.lng)
                    .where(users.c.event_id == event_id)
                    .order_by(users.c.id)
                ).all()
                participants = {row.id: Participant(id=row.id, lat=row.lat, lng=row.lng) for row in user_rows}
                if not participants:
                    return []

                schedule_rows = conn.execute(
                    select(schedules.c.user_id, schedules.c.date)
                    .where(schedules.c.user_id.in_(list(participants)))
                ).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load participants of event {event_id}: {e}")

        for row in schedule_rows:
            participants[row.user_id].availability.append(row.date)
        return list(participants.values())

    # --- guarded transitions ---

    def claim(self, event_id: str, now: Optional[datetime] = None) -> Claim:
        """Move the event into 'finalizing'. Only one caller can win."""
        now = now or datetime.now(timezone.utc)
        current = self.get_event(event_id)
        if current is None:
            raise InputError(f"Event not found: {event_id}")

        status = current['status'] or STATUS_OPEN
        changed_at = _utc(current['status_changed_at'])
        if status == STATUS_FINALIZING:
            # A claim without a timestamp cannot be aged, so it is never abandoned
            if changed_at is None or now - changed_at < self.lock_ttl:
                raise FinalizationInProgressError(f"Event {event_id} is already being finalized")
            logger.warning(f"Taking over abandoned finalization of event {event_id}")
            # Only a commit writes confirmed_date, so it tells what the event was before the lost claim
            status = STATUS_FINALIZED if current['confirmed_date'] is not None else STATUS_OPEN

        token = str(uuid.uuid4())
        previous_token = current['status_token']
        token_matches = (
            events.c.status_token.is_(None) if previous_token is None
            else events.c.status_token == previous_token
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(events)
                    .where(events.c.id == event_id, token_matches)
                    .values(status=STATUS_FINALIZING, status_token=token, status_changed_at=now)
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not claim event {event_id}: {e}")

        if result.rowcount != 1:
            raise FinalizationInProgressError(f"Event {event_id} is already being finalized")
        logger.info(f"Claimed event {event_id} for finalization (previous status={status})")
        return Claim(event_id, token, status)

    def commit(self, claim: Claim, result: FinalizationResult, now: Optional[datetime] = None) -> None:
        """Write all four result fields and mark the event finalized, in one statement"""
        now = now or datetime.now(timezone.utc)
        values = {
            'confirmed_date': result.confirmed_date,
            'target_station': result.station.name,
            'target_lat': result.station.location.lat,
            'target_lng': result.station.location.lng,
            'restaurant_info': [venue.to_record() for venue in result.venues],
            'status': STATUS_FINALIZED,
            'status_token': None,
            'status_changed_at': now,
        }
        try:
            with self.engine.begin() as conn:
                updated = conn.execute(
                    update(events)
                    .where(
                        events.c.id == claim.event_id,
                        events.c.status == STATUS_FINALIZING,
                        events.c.status_token == claim.token,
                    )
                    .values(**values)
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save result for event {claim.event_id}: {e}")

        if updated.rowcount != 1:
            raise PersistenceError(f"Lost the finalization claim on event {claim.event_id}")
        logger.info(f"Event {claim.event_id} finalized")

    def release(self, claim: Claim, now: Optional[datetime] = None) -> bool:
        """Give the claim back, restoring the previous status"""
        now = now or datetime.now(timezone.utc)
        try:
            with self.engine.begin() as conn:
                updated = conn.execute(
                    update(events)
                    .where(events.c.id == claim.event_id, events.c.status_token == claim.token)
                    .values(status=claim.previous_status, status_token=None, status_changed_at=now)
                )
        except SQLAlchemyError:
            logger.exception(f"Failed to release finalization claim on event {claim.event_id}")
            return False
        return updated.rowcount == 1
