from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class Coordinate(BaseModel):
    lat: float
    lng: float


class Service(BaseModel):
    service_id: str
    name: str = "Unknown"
    type: str = "Unknown"  # "Ordinary", "Fast Passenger", "Private", ...
    is_running: bool = True
    last_reported_time: int = 0  # epoch millis, 0 = never reported


class TripSegment(BaseModel):
    """One boarding-to-alighting pairing on a single service."""
    service_id: str
    name: str
    type: str
    is_running: bool = True
    last_reported_time: int = 0
    entry_time: str
    exit_time: str
    entry_stop_order: int
    exit_stop_order: int


class ServiceStop(BaseModel):
    stop_id: str
    service_id: str
    name: str
    lat: Optional[float] = None  # None = unresolved coordinates
    lng: Optional[float] = None
    scheduled_time: str = "--:--"
    stop_order: int


class AlternativeStop(BaseModel):
    name: str
    side: str  # "source" or "destination"
    distance_from_source_km: float
    distance_to_destination_km: float
    new_option_count: int
    total_service_count: int
    service_ids: list[str] = Field(default_factory=list)
    new_service_ids: list[str] = Field(default_factory=list)

    @property
    def distance_to_anchor_km(self) -> float:
        """Distance to the stop this alternative replaces."""
        if self.side == "source":
            return self.distance_from_source_km
        return self.distance_to_destination_km


class SuggestionReport(BaseModel):
    from_stop: str
    to_stop: str
    trip_distance_km: float
    search_radius_km: float
    max_detour_km: float
    direct_service_ids: list[str] = Field(default_factory=list)
    near_source: list[AlternativeStop] = Field(default_factory=list)
    near_destination: list[AlternativeStop] = Field(default_factory=list)

    @property
    def has_alternatives(self) -> bool:
        return bool(self.near_source or self.near_destination)

    @property
    def message(self) -> str:
        if self.has_alternatives:
            count = len(self.near_source) + len(self.near_destination)
            return f"Found {count} alternative stops"
        return (
            "No useful alternative stops found. All nearby buses already pass "
            f"directly between {self.from_stop} and {self.to_stop}."
        )


# --- API envelopes ---


class SegmentSearchResponse(BaseModel):
    from_stop: str
    to_stop: str
    segments: list[TripSegment]
    message: str = ""


class ServiceStopsResponse(BaseModel):
    service: Service
    stops: list[ServiceStop]


class ServiceSearchResponse(BaseModel):
    services: list[Service]


class StopSearchResult(BaseModel):
    stop_id: str
    name: str
    lat: Optional[float] = None
    lng: Optional[float] = None


class StopSearchResponse(BaseModel):
    stops: list[StopSearchResult]


class SuggestionResponse(BaseModel):
    report: SuggestionReport
    has_alternatives: bool
    message: str


class TimetableStatus(BaseModel):
    available: bool
    source: Optional[str] = None
    stop_count: int = 0
    service_count: int = 0
    assignment_count: int = 0
    message: str = ""
