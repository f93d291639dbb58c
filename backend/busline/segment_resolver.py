"""Point-to-point trip segments from ordered per-service stop sequences.

A service may call at the same stop name more than once: consecutively for a
halt (arrive, wait, depart) or later in its route for a shuttle that serves
several sub-trips. A segment boards at the closest preceding call at the
origin and alights at the first following call at the destination, so each
boarding opportunity yields exactly one segment.
"""

import logging
import re
from typing import Optional, Sequence

from busline.models import Service, ServiceStop, TripSegment
from busline.timetable_store import (
    RouteAssignment,
    service_metadata,
    service_sequence,
    services_visiting,
)

logger = logging.getLogger("busline.segments")

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?\s*$")


def parse_time_minutes(t: str) -> Optional[int]:
    """Parse '08:05', '8:05:00' or '8:05 PM' to minutes since midnight."""
    m = _TIME_RE.match(str(t))
    if not m:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    meridiem = m.group(4)
    if meridiem:
        hours = hours % 12 + (12 if meridiem.lower() == "pm" else 0)
    return hours * 60 + minutes


def _time_sort_key(t: str) -> tuple[int, int, str]:
    minutes = parse_time_minutes(t)
    if minutes is None:
        return (1, 0, str(t))  # unparseable times sort last
    return (0, minutes, str(t))


def _occurs_between(sequence: Sequence[RouteAssignment], start: int, end: int, name: str) -> bool:
    return any(ra.stop_name == name for ra in sequence[start + 1:end])


def is_valid_segment(
    sequence: Sequence[RouteAssignment],
    board_idx: int,
    alight_idx: int,
    from_stop: str,
    to_stop: str,
) -> bool:
    """Whether boarding at board_idx and alighting at alight_idx is a segment.

    `sequence` is one service's assignments sorted by stop order. The pair is
    valid when neither the origin nor the destination name is called at in
    between: the boarding is the closest preceding call at the origin and
    the alighting is the earliest following call at the destination.
    """
    if board_idx >= alight_idx:
        return False
    if sequence[board_idx].stop_name != from_stop or sequence[alight_idx].stop_name != to_stop:
        return False
    if _occurs_between(sequence, board_idx, alight_idx, from_stop):
        return False
    if _occurs_between(sequence, board_idx, alight_idx, to_stop):
        return False
    return True


def segment_pairs(
    sequence: Sequence[RouteAssignment], from_stop: str, to_stop: str
) -> list[tuple[RouteAssignment, RouteAssignment]]:
    """(board, alight) pairs of one service that satisfy is_valid_segment."""
    if from_stop == to_stop:
        return []
    boards = [i for i, ra in enumerate(sequence) if ra.stop_name == from_stop]
    alights = [i for i, ra in enumerate(sequence) if ra.stop_name == to_stop]
    return [
        (sequence[b], sequence[a])
        for b in boards
        for a in alights
        if is_valid_segment(sequence, b, a, from_stop, to_stop)
    ]


def segments_for_sequence(
    sequence: Sequence[RouteAssignment], service: Service, from_stop: str, to_stop: str
) -> list[TripSegment]:
    return [
        TripSegment(
            service_id=service.service_id,
            name=service.name,
            type=service.type,
            is_running=service.is_running,
            last_reported_time=service.last_reported_time,
            entry_time=board.scheduled_time,
            exit_time=alight.scheduled_time,
            entry_stop_order=board.stop_order,
            exit_stop_order=alight.stop_order,
        )
        for board, alight in segment_pairs(sequence, from_stop, to_stop)
    ]


def find_segments(timetable: dict, from_stop: str, to_stop: str) -> list[TripSegment]:
    """Find every trip segment from `from_stop` to `to_stop`.

    Ordered by entry time ascending; ties broken by service id.
    """
    if from_stop == to_stop:
        return []

    candidates = services_visiting(timetable, from_stop) & services_visiting(timetable, to_stop)
    segments: list[TripSegment] = []
    for service_id in candidates:
        service = service_metadata(timetable, service_id)
        if service is None:
            logger.debug(f"Service {service_id} has route stops but no metadata, skipping")
            continue
        segments.extend(
            segments_for_sequence(service_sequence(timetable, service_id), service, from_stop, to_stop)
        )

    segments.sort(key=lambda s: (_time_sort_key(s.entry_time), s.service_id, s.entry_stop_order))
    logger.info(f"Found {len(segments)} segments from '{from_stop}' to '{to_stop}'")
    return segments


def direct_service_ids(timetable: dict, from_stop: str, to_stop: str) -> set[str]:
    """Services calling at `from_stop` at some point before `to_stop`."""
    if from_stop == to_stop:
        return set()
    direct = set()
    for service_id in services_visiting(timetable, from_stop) & services_visiting(timetable, to_stop):
        sequence = service_sequence(timetable, service_id)
        first_from = min(ra.stop_order for ra in sequence if ra.stop_name == from_stop)
        last_to = max(ra.stop_order for ra in sequence if ra.stop_name == to_stop)
        if first_from < last_to:
            direct.add(service_id)
    return direct


def get_service_by_id(timetable: dict, service_id: str) -> Optional[Service]:
    return service_metadata(timetable, service_id)


def stops_for_service(timetable: dict, service_id: str) -> list[ServiceStop]:
    """Full ordered stop list of a service; halts are kept as separate rows."""
    stops = [
        ServiceStop(
            stop_id=ra.stop_id,
            service_id=ra.service_id,
            name=ra.stop_name,
            lat=ra.lat,
            lng=ra.lng,
            scheduled_time=ra.scheduled_time,
            stop_order=ra.stop_order,
        )
        for ra in service_sequence(timetable, service_id)
    ]
    logger.info(f"Found {len(stops)} stops for service {service_id}")
    return stops
