import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from busline.errors import StopNotFound, StoreUnavailable
from busline.models import (
    SegmentSearchResponse,
    Service,
    ServiceSearchResponse,
    ServiceStopsResponse,
    StopSearchResponse,
    StopSearchResult,
    SuggestionResponse,
    TimetableStatus,
)

logger = logging.getLogger("busline.routes")

router = APIRouter()


def _get_state():
    from busline.main import app_state
    return app_state


def _get_timetable() -> dict:
    timetable = _get_state().get("timetable")
    if timetable is None:
        raise HTTPException(status_code=503, detail="Timetable data not available")
    return timetable


@router.get("/health")
async def health():
    return {"status": "ok", "service": "Busline API"}


@router.get("/timetable/status", response_model=TimetableStatus)
async def get_timetable_status():
    """Report which timetable snapshot is loaded."""
    from busline.timetable_store import timetable_summary

    timetable = _get_state().get("timetable")
    if timetable is None:
        return TimetableStatus(available=False, message="Timetable data not available")
    return TimetableStatus(available=True, message="Timetable loaded", **timetable_summary(timetable))


@router.post("/timetable/reload", response_model=TimetableStatus)
def reload_timetable_endpoint():
    """Reload the timetable dataset and swap the new snapshot in."""
    from busline.main import reload_timetable
    from busline.timetable_store import timetable_summary

    try:
        timetable = reload_timetable(_get_state())
    except StoreUnavailable as e:
        logger.error(f"Timetable reload failed: {e}")
        raise HTTPException(status_code=503, detail=f"Timetable data not available: {e}")
    return TimetableStatus(available=True, message="Timetable reloaded", **timetable_summary(timetable))


@router.get("/segments", response_model=SegmentSearchResponse)
def find_segments_endpoint(
    from_stop: str = Query(..., alias="from", min_length=1),
    to_stop: str = Query(..., alias="to", min_length=1),
):
    """Find bus trips from one named stop to another."""
    from busline.segment_resolver import find_segments

    segments = find_segments(_get_timetable(), from_stop, to_stop)
    message = "" if segments else f"No buses found from {from_stop} to {to_stop}."
    return SegmentSearchResponse(from_stop=from_stop, to_stop=to_stop, segments=segments, message=message)


@router.get("/services/search", response_model=ServiceSearchResponse)
def search_services(
    query: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=50),
):
    """Search services by name."""
    from busline.timetable_store import search_services_by_name

    return ServiceSearchResponse(services=search_services_by_name(_get_timetable(), query, limit))


@router.get("/services/{service_id}", response_model=Service)
def get_service(service_id: str):
    from busline.segment_resolver import get_service_by_id

    service = get_service_by_id(_get_timetable(), service_id)
    if service is None:
        raise HTTPException(status_code=404, detail=f"Service '{service_id}' not found")
    return service


@router.get("/services/{service_id}/stops", response_model=ServiceStopsResponse)
def get_service_stops(service_id: str):
    """Ordered stop list of a service, halts included."""
    from busline.segment_resolver import get_service_by_id, stops_for_service

    timetable = _get_timetable()
    service = get_service_by_id(timetable, service_id)
    if service is None:
        raise HTTPException(status_code=404, detail=f"Service '{service_id}' not found")
    return ServiceStopsResponse(service=service, stops=stops_for_service(timetable, service_id))


@router.get("/stops")
def list_stop_names():
    """Distinct stop names for autocomplete."""
    from busline.timetable_store import stop_names

    return {"stops": stop_names(_get_timetable())}


@router.get("/stops/search", response_model=StopSearchResponse)
def search_stops(
    query: str = Query(..., min_length=2),
    limit: int = Query(5, ge=1, le=20),
):
    """Search stops by name."""
    from busline.timetable_store import search_stops as store_search_stops

    stops = store_search_stops(_get_timetable(), query, limit)
    return StopSearchResponse(stops=[StopSearchResult(**s) for s in stops])


@router.get("/suggestions", response_model=SuggestionResponse)
def suggest_alternatives_endpoint(
    from_stop: str = Query(..., alias="from", min_length=1),
    to_stop: str = Query(..., alias="to", min_length=1),
):
    """Nearby stops that add trip options between two stops."""
    from busline.suggestions import suggest_alternatives

    try:
        report = suggest_alternatives(_get_timetable(), from_stop, to_stop)
    except StopNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SuggestionResponse(report=report, has_alternatives=report.has_alternatives, message=report.message)


@router.get("/suggestions/text", response_class=PlainTextResponse)
def suggest_alternatives_text(
    from_stop: str = Query(..., alias="from", min_length=1),
    to_stop: str = Query(..., alias="to", min_length=1),
):
    """Same as /suggestions, rendered as the commuter-facing text report."""
    from busline.suggestions import format_suggestion_report, suggest_alternatives

    try:
        report = suggest_alternatives(_get_timetable(), from_stop, to_stop)
    except StopNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return format_suggestion_report(report)
