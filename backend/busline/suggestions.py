"""Alternative stop suggestions for trips with few or no direct services.

Looks for stops near the origin from which some service reaches the
destination, and stops near the destination some service reaches from the
origin. A stop is only suggested when it unlocks services that do not
already run directly between the two requested stops.
"""

import logging
from itertools import groupby
from typing import Callable

from busline.errors import StopNotFound
from busline.geo import CandidateDistances, DistanceCache, distance_between
from busline.models import AlternativeStop, SuggestionReport
from busline.segment_resolver import direct_service_ids
from busline.timetable_store import lookup_stop_coordinates, route_assignments_joining

logger = logging.getLogger("busline.suggestions")

# Short trips still search at least this far around each end
SEARCH_RADIUS_FLOOR_KM = 5.0
# Longest tolerable candidate-to-opposite-end distance, relative to the trip
MAX_DETOUR_FACTOR = 1.5

SOURCE = "source"
DESTINATION = "destination"


def suggest_alternatives(timetable: dict, from_stop: str, to_stop: str) -> SuggestionReport:
    """Rank nearby stops that add trip options between from_stop and to_stop.

    Raises StopNotFound when either stop has no resolvable coordinates.
    """
    source = lookup_stop_coordinates(timetable, from_stop)
    if source is None:
        raise StopNotFound(from_stop)
    destination = lookup_stop_coordinates(timetable, to_stop)
    if destination is None:
        raise StopNotFound(to_stop)

    trip_km = distance_between(source, destination)
    search_radius_km = max(trip_km, SEARCH_RADIUS_FLOOR_KM)
    max_detour_km = trip_km * MAX_DETOUR_FACTOR

    direct = direct_service_ids(timetable, from_stop, to_stop)
    cache = DistanceCache(source, destination)

    # Boarding elsewhere near the origin, riding into the destination
    source_services = _collect_candidates(
        timetable,
        anchor=to_stop,
        excluded={from_stop, to_stop},
        before_anchor=True,
        cache=cache,
        accept=lambda d: d.to_source_km <= search_radius_km and d.to_destination_km <= max_detour_km,
    )
    # Riding from the origin, alighting elsewhere near the destination
    destination_services = _collect_candidates(
        timetable,
        anchor=from_stop,
        excluded={from_stop, to_stop},
        before_anchor=False,
        cache=cache,
        accept=lambda d: d.to_destination_km <= search_radius_km and d.to_source_km <= max_detour_km,
    )

    near_source = _rank(_build_alternatives(source_services, direct, cache, SOURCE))
    near_destination = _rank(_build_alternatives(destination_services, direct, cache, DESTINATION))

    logger.info(
        f"Suggestions for '{from_stop}' -> '{to_stop}' ({trip_km:.1f}km, radius {search_radius_km:.1f}km): "
        f"{len(near_source)} near source, {len(near_destination)} near destination, "
        f"{len(direct)} direct services, {cache.computed} distances computed"
    )

    return SuggestionReport(
        from_stop=from_stop,
        to_stop=to_stop,
        trip_distance_km=trip_km,
        search_radius_km=search_radius_km,
        max_detour_km=max_detour_km,
        direct_service_ids=sorted(direct),
        near_source=near_source,
        near_destination=near_destination,
    )


def _collect_candidates(
    timetable: dict,
    anchor: str,
    excluded: set[str],
    before_anchor: bool,
    cache: DistanceCache,
    accept: Callable[[CandidateDistances], bool],
) -> dict[str, set[str]]:
    """Map candidate stop name -> services linking it with the anchor.

    With before_anchor the candidate must be called at before some call at
    the anchor, otherwise after some call at the anchor.
    """
    services_by_candidate: dict[str, set[str]] = {}

    for service_id, rows in groupby(route_assignments_joining(timetable, anchor), key=lambda ra: ra.service_id):
        rows = list(rows)
        anchor_orders = [ra.stop_order for ra in rows if ra.stop_name == anchor]
        if before_anchor:
            last_anchor = max(anchor_orders)
            reachable = [ra for ra in rows if ra.stop_order < last_anchor]
        else:
            first_anchor = min(anchor_orders)
            reachable = [ra for ra in rows if ra.stop_order > first_anchor]

        for ra in reachable:
            if ra.stop_name in excluded:
                continue
            coord = ra.coordinate
            if coord is None:
                logger.debug(f"Skipping '{ra.stop_name}': no coordinates")
                continue
            if accept(cache.get(ra.stop_name, coord)):
                services_by_candidate.setdefault(ra.stop_name, set()).add(service_id)

    return services_by_candidate


def _build_alternatives(
    services_by_candidate: dict[str, set[str]],
    direct: set[str],
    cache: DistanceCache,
    side: str,
) -> list[AlternativeStop]:
    alternatives = []
    for name, service_ids in services_by_candidate.items():
        new_ids = service_ids - direct
        if not new_ids:
            continue
        distances = cache[name]
        alternatives.append(AlternativeStop(
            name=name,
            side=side,
            distance_from_source_km=distances.to_source_km,
            distance_to_destination_km=distances.to_destination_km,
            new_option_count=len(new_ids),
            total_service_count=len(service_ids),
            service_ids=sorted(service_ids),
            new_service_ids=sorted(new_ids),
        ))
    return alternatives


def _rank(alternatives: list[AlternativeStop]) -> list[AlternativeStop]:
    """Closest to the replaced stop first; more new services breaks ties."""
    return sorted(alternatives, key=lambda a: (a.distance_to_anchor_km, -a.new_option_count, a.name))


def format_suggestion_report(report: SuggestionReport) -> str:
    """Render a report as the plain-text popup shown to commuters."""
    if not report.has_alternatives:
        return (
            "No useful alternative stops found.\n"
            f"All nearby buses already pass directly between {report.from_stop} and {report.to_stop}."
        )

    lines = [
        "Try out these stops:",
        "",
        "Format:",
        " <Stop Name> [Dist. from Source | Dist. to Destination | New Bus Services | Total Bus Services]",
        "",
        "Note: Distances are straight-line and may not reflect actual road distances.",
    ]

    for title, alternatives in (
        (f"Alternative stops near {report.from_stop}:", report.near_source),
        (f"Alternative stops near {report.to_stop}:", report.near_destination),
    ):
        if not alternatives:
            continue
        lines.extend(["", title, ""])
        for i, stop in enumerate(alternatives, start=1):
            lines.append(
                f"{i}. {stop.name} [{stop.distance_from_source_km:.1f}km | "
                f"{stop.distance_to_destination_km:.1f}km | "
                f"{stop.new_option_count} | {stop.total_service_count}]"
            )

    return "\n".join(lines)
