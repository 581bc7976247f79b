from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar


T = TypeVar('T')

PLACEHOLDER_VENUE_NAME = "Restaurant not found"
PLACEHOLDER_VENUE_NOTE = "Please search manually nearby."


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}


@dataclass
class Participant:
    """A user attached to an event, organizer included"""
    id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    availability: List[Any] = field(default_factory=list)

    @property
    def has_valid_location(self) -> bool:
        # 0 is what an unset map pin is stored as, so treat it like null
        return bool(self.lat) and bool(self.lng)

    @property
    def location(self) -> Optional[LatLng]:
        if not self.has_valid_location:
            return None
        return LatLng(float(self.lat), float(self.lng))


@dataclass(frozen=True)
class CandidateStation:
    name: str
    location: LatLng
    place_id: Optional[str] = None
    popularity: int = 0
    distance_from_center_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'location': self.location.to_dict()}


class TravelTimeMatrix:
    """Sparse (origin index, destination index) -> seconds mapping.

    A missing pair means the provider found no route; it is never stored
    as zero.
    """

    def __init__(self, entries: Optional[Dict[Tuple[int, int], int]] = None):
        self._entries: Dict[Tuple[int, int], int] = dict(entries or {})

    def set(self, origin: int, destination: int, seconds: int) -> None:
        self._entries[(origin, destination)] = int(seconds)

    def get(self, origin: int, destination: int) -> Optional[int]:
        return self._entries.get((origin, destination))

    def durations_to(self, destination: int) -> List[int]:
        return [
            seconds for (_, dest), seconds in sorted(self._entries.items())
            if dest == destination
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"TravelTimeMatrix({self._entries!r})"


@dataclass(frozen=True)
class Venue:
    name: str
    address: str = ''
    genre: Optional[str] = None
    link: Optional[str] = None
    photo: Optional[str] = None
    budget: Optional[str] = None
    budget_average: Optional[str] = None
    tagline: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def placeholder(cls) -> 'Venue':
        return cls(name=PLACEHOLDER_VENUE_NAME, note=PLACEHOLDER_VENUE_NOTE)

    @property
    def is_placeholder(self) -> bool:
        return self.note is not None

    def to_record(self) -> Dict[str, Any]:
        """Serialize in the shape the result page renders"""
        if self.is_placeholder:
            return {'name': self.name, 'text': self.note}
        return {
            'name': self.name,
            'address': self.address,
            'genre': {'name': self.genre},
            'urls': {'pc': self.link},
            'photo': {'pc': {'l': self.photo}},
            'budget': {'name': self.budget, 'average': self.budget_average},
            'catch': self.tagline,
        }


class OutcomeStatus(str, Enum):
    FOUND = 'found'
    FALLBACK = 'fallback'
    ERROR = 'error'


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a stage that talks to a provider.

    ``value`` is always usable by the next stage. ``status`` tells whether
    it is real provider data, a default substituted for an empty answer, or
    a default substituted for a failed call.
    """
    status: OutcomeStatus
    value: T
    reason: Optional[str] = None

    @classmethod
    def found(cls, value: T) -> 'Outcome[T]':
        return cls(OutcomeStatus.FOUND, value)

    @classmethod
    def fallback(cls, value: T, reason: str) -> 'Outcome[T]':
        return cls(OutcomeStatus.FALLBACK, value, reason)

    @classmethod
    def error(cls, value: T, reason: str) -> 'Outcome[T]':
        return cls(OutcomeStatus.ERROR, value, reason)

    @property
    def is_found(self) -> bool:
        return self.status is OutcomeStatus.FOUND


@dataclass(frozen=True)
class FinalizationResult:
    """The four fields written back to the event, plus the centroid"""
    confirmed_at: datetime
    station: CandidateStation
    venues: List[Venue]
    center: LatLng

    @property
    def confirmed_date(self) -> str:
        return self.confirmed_at.isoformat()


@dataclass
class FinalizationReport:
    event_id: str
    result: FinalizationResult
    outcomes: Dict[str, Outcome] = field(default_factory=dict)

    @property
    def degraded_stages(self) -> List[Dict[str, Optional[str]]]:
        return [
            {'stage': stage, 'status': outcome.status.value, 'reason': outcome.reason}
            for stage, outcome in self.outcomes.items()
            if not outcome.is_found
        ]

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        return {
            'success': True,
            'event_id': self.event_id,
            'station': result.station.to_dict(),
            'restaurant': [venue.to_record() for venue in result.venues],
            'center': result.center.to_dict(),
            'confirmed_date': result.confirmed_date,
            'distance_from_center_m': result.station.distance_from_center_m,
            'degraded': self.degraded_stages,
        }
