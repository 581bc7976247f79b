import logging
from typing import List, Optional

from .models import CandidateStation, TravelTimeMatrix

logger = logging.getLogger(__name__)


class StationSelector:
    """Minimax station choice: the worst participant commute is kept as short as possible."""

    def select(self, stations: List[CandidateStation], matrix: TravelTimeMatrix) -> CandidateStation:
        if not stations:
            raise ValueError("No stations provided")

        best_station: Optional[CandidateStation] = None
        min_max_duration = float('inf')

        for idx, station in enumerate(stations):
            durations = matrix.durations_to(idx)
            # Unreachable from everyone as far as we know; never prefer it
            if not durations:
                continue
            max_duration = max(durations)
            if max_duration < min_max_duration:
                min_max_duration = max_duration
                best_station = station

        if best_station is None:
            logger.info(f"No travel times for any station, falling back to {stations[0].name}")
            return stations[0]

        logger.info(f"Selected {best_station.name} (longest trip {min_max_duration}s)")
        return best_station
