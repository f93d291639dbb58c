import math
from typing import NamedTuple

from busline.models import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in km."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    a = min(a, 1.0)  # float noise near antipodes
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Coordinate, b: Coordinate) -> float:
    return haversine(a.lat, a.lng, b.lat, b.lng)


class CandidateDistances(NamedTuple):
    to_source_km: float
    to_destination_km: float


class DistanceCache:
    """Name-keyed memo of a candidate stop's distances to both trip ends.

    Several services usually share a candidate stop; the distances are
    computed the first time the name is seen and reused afterwards. Create
    one per suggestion call, never share it between calls.
    """

    def __init__(self, source: Coordinate, destination: Coordinate):
        self.source = source
        self.destination = destination
        self._distances: dict[str, CandidateDistances] = {}
        self.computed = 0

    def get(self, name: str, coord: Coordinate) -> CandidateDistances:
        cached = self._distances.get(name)
        if cached is None:
            cached = CandidateDistances(
                to_source_km=distance_between(coord, self.source),
                to_destination_km=distance_between(coord, self.destination),
            )
            self._distances[name] = cached
            self.computed += 1
        return cached

    def __getitem__(self, name: str) -> CandidateDistances:
        return self._distances[name]

    def __contains__(self, name: str) -> bool:
        return name in self._distances

    def __len__(self) -> int:
        return len(self._distances)
