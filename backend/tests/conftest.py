"""
Shared fixtures for the Busline test suite.

Provides:
- make_timetable(): in-memory snapshot from per-service stop lists
- sample_timetable: the bundled CSV dataset
- async API client with the sample snapshot injected into app_state
"""

import os
from typing import Optional

import pandas as pd
import pytest
from httpx import ASGITransport, AsyncClient

# Keep the app from reading a developer's .env dataset path
os.environ.setdefault("TIMETABLE_PATH", os.path.join(os.path.dirname(__file__), "..", "data", "timetable"))

from busline.timetable_store import DATA_DIR, build_timetable, load_timetable_data


def make_frames(
    services: dict[str, list[tuple[str, str]]],
    coords: Optional[dict[str, tuple[float, float]]] = None,
    metadata: Optional[dict[str, dict]] = None,
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Build raw stops/route_stops/services frames.

    services maps service id -> ordered [(stop name, scheduled time), ...];
    stop orders are 1..n in list order. Stops missing from `coords` get a
    position derived from their index so every stop is resolvable.
    """
    coords = coords or {}
    metadata = metadata or {}

    names: list[str] = []
    for stops in services.values():
        for name, _ in stops:
            if name not in names:
                names.append(name)
    for name in coords:
        if name not in names:
            names.append(name)

    stop_ids = {name: str(i + 1) for i, name in enumerate(names)}
    stops_df = pd.DataFrame([
        {
            "stop_id": stop_ids[name],
            "location_name": name,
            "latitude": coords.get(name, (10.0 + i * 0.001, 76.0))[0],
            "longitude": coords.get(name, (10.0 + i * 0.001, 76.0))[1],
        }
        for i, name in enumerate(names)
    ])

    route_stops_df = pd.DataFrame(
        [
            {"service_id": sid, "stop_id": stop_ids[name], "stop_order": order, "scheduled_time": time}
            for sid, stops in services.items()
            for order, (name, time) in enumerate(stops, start=1)
        ],
        columns=["service_id", "stop_id", "stop_order", "scheduled_time"],
    )

    services_df = pd.DataFrame(
        [
            {
                "service_id": sid,
                "name": metadata.get(sid, {}).get("name", f"Service {sid}"),
                "type": metadata.get(sid, {}).get("type", "Ordinary"),
            }
            for sid in services
        ],
        columns=["service_id", "name", "type"],
    )
    return stops_df, route_stops_df, services_df


def make_timetable(
    services: dict[str, list[tuple[str, str]]],
    coords: Optional[dict[str, tuple[float, float]]] = None,
    metadata: Optional[dict[str, dict]] = None,
) -> dict:
    return build_timetable(*make_frames(services, coords, metadata))


@pytest.fixture
def sample_timetable():
    return load_timetable_data(DATA_DIR)


@pytest.fixture
async def client(sample_timetable):
    """API client against the sample snapshot; startup loading is bypassed."""
    from busline.main import app, app_state

    app_state["timetable"] = sample_timetable
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app_state.pop("timetable", None)


@pytest.fixture
def timetable_factory():
    """make_timetable as a fixture so test modules need no helper imports."""
    return make_timetable


@pytest.fixture
def frames_factory():
    return make_frames
