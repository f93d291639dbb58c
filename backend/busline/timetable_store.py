"""Read-only timetable snapshot: stops, services and ordered route assignments.

A snapshot is a plain dict of pandas DataFrames plus prebuilt lookup
indexes. It is built once per dataset load and never mutated afterwards;
a refresh builds a new snapshot and the caller swaps it in.
"""

import logging
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from busline.errors import StoreUnavailable
from busline.models import Coordinate, Service

logger = logging.getLogger("busline.timetable")

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "timetable")

UNKNOWN_TIME = "--:--"

# CSV file per table
CSV_FILES = {
    "stops": "stops.csv",
    "route_stops": "route_stops.csv",
    "services": "services.csv",
}

# SQLite table per table
SQLITE_TABLES = {
    "stops": "Stop",
    "route_stops": "RouteStop",
    "services": "BusService",
}

# camelCase column names used by the app's SQLite schema
_SQLITE_COLUMNS = {
    "stopId": "stop_id",
    "serviceId": "service_id",
    "locationName": "location_name",
    "stopOrder": "stop_order",
    "scheduledTime": "scheduled_time",
    "isRunning": "is_running",
    "lastReportedTime": "last_reported_time",
}

_RUNNING_FLAGS = {
    "1": True, "true": True, "yes": True,
    "0": False, "false": False, "no": False,
}

REQUIRED_COLUMNS = {
    "stops": ["stop_id", "location_name", "latitude", "longitude"],
    "route_stops": ["service_id", "stop_id", "stop_order", "scheduled_time"],
    "services": ["service_id", "name", "type"],
}


@dataclass(frozen=True)
class RouteAssignment:
    """One service calling at one stop, at one position of its route."""
    service_id: str
    stop_id: str
    stop_name: str
    stop_order: int
    scheduled_time: str
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.lat is None or self.lng is None:
            return None
        return Coordinate(lat=self.lat, lng=self.lng)


def load_timetable_data(path: Optional[str] = None) -> dict:
    """Load a timetable snapshot from a SQLite database or a CSV directory.

    Raises StoreUnavailable when the dataset is missing or malformed.
    """
    path = path or os.getenv("TIMETABLE_PATH") or DATA_DIR

    if os.path.isdir(path):
        frames = _read_csv_dir(path)
    elif os.path.isfile(path):
        frames = _read_sqlite(path)
    else:
        raise StoreUnavailable(f"Timetable dataset not found: {path}")

    return build_timetable(frames["stops"], frames["route_stops"], frames["services"], source=path)


def _read_csv_dir(path: str) -> dict[str, pd.DataFrame]:
    frames = {}
    for key, fname in CSV_FILES.items():
        fpath = os.path.join(path, fname)
        if not os.path.exists(fpath):
            raise StoreUnavailable(f"Timetable file not found: {fpath}")
        try:
            frames[key] = pd.read_csv(fpath, dtype={"stop_id": str, "service_id": str}, encoding="utf-8-sig")
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, OSError) as e:
            raise StoreUnavailable(f"Could not read {fpath}: {e}") from e
        logger.info(f"Loaded {key}: {len(frames[key])} rows")
    return frames


def _read_sqlite(path: str) -> dict[str, pd.DataFrame]:
    frames = {}
    try:
        conn = sqlite3.connect(Path(path).resolve().as_uri() + "?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Could not open {path}: {e}") from e
    try:
        for key, table in SQLITE_TABLES.items():
            df = pd.read_sql_query(f"SELECT * FROM {table}", conn)
            frames[key] = df.rename(columns=_SQLITE_COLUMNS)
            logger.info(f"Loaded {key}: {len(df)} rows")
    except (sqlite3.Error, pd.errors.DatabaseError) as e:
        raise StoreUnavailable(f"Could not read {path}: {e}") from e
    finally:
        conn.close()
    return frames


def _require_columns(key: str, df: pd.DataFrame) -> None:
    missing = [c for c in REQUIRED_COLUMNS[key] if c not in df.columns]
    if missing:
        raise StoreUnavailable(f"Timetable table '{key}' is missing columns: {', '.join(missing)}")


def build_timetable(
    stops: pd.DataFrame,
    route_stops: pd.DataFrame,
    services: pd.DataFrame,
    source: str = "memory",
) -> dict:
    """Normalise raw tables and prebuild the per-service sequence arena.

    Raises StoreUnavailable when a table is missing columns or holds values
    that cannot be normalised.
    """
    for key, df in (("stops", stops), ("route_stops", route_stops), ("services", services)):
        _require_columns(key, df)

    try:
        return _build_snapshot(stops, route_stops, services, source)
    except (ValueError, TypeError, KeyError) as e:
        raise StoreUnavailable(f"Malformed timetable data in {source}: {e}") from e


def _parse_running(value) -> bool:
    """1/0, true/false or yes/no; a missing value means running."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return True
    if isinstance(value, str):
        flag = _RUNNING_FLAGS.get(value.strip().lower())
        if flag is None:
            raise StoreUnavailable(f"Invalid is_running value: {value!r}")
        return flag
    if value in (0, 1):
        return bool(value)
    raise StoreUnavailable(f"Invalid is_running value: {value!r}")


def _build_snapshot(
    stops: pd.DataFrame,
    route_stops: pd.DataFrame,
    services: pd.DataFrame,
    source: str,
) -> dict:
    stops = stops.copy()
    stops["stop_id"] = stops["stop_id"].astype(str)
    stops["location_name"] = stops["location_name"].astype(str).str.strip()
    stops["latitude"] = pd.to_numeric(stops["latitude"], errors="coerce")
    stops["longitude"] = pd.to_numeric(stops["longitude"], errors="coerce")
    # (0, 0) is what the dataset stores when a stop was never geocoded
    unresolved = (
        stops["latitude"].isna()
        | stops["longitude"].isna()
        | ((stops["latitude"] == 0.0) & (stops["longitude"] == 0.0))
    )
    stops.loc[unresolved, ["latitude", "longitude"]] = float("nan")
    if unresolved.any():
        logger.warning(f"{int(unresolved.sum())} stops have no coordinates")

    route_stops = route_stops.copy()
    route_stops["service_id"] = route_stops["service_id"].astype(str)
    route_stops["stop_id"] = route_stops["stop_id"].astype(str)
    route_stops["stop_order"] = pd.to_numeric(route_stops["stop_order"], errors="coerce")
    bad_order = route_stops["stop_order"].isna()
    if bad_order.any():
        logger.warning(f"Dropping {int(bad_order.sum())} route stops without a stop order")
        route_stops = route_stops[~bad_order].copy()
    route_stops["stop_order"] = route_stops["stop_order"].astype(int)
    route_stops["scheduled_time"] = route_stops["scheduled_time"].fillna(UNKNOWN_TIME).astype(str).str.strip()

    duplicated = route_stops.duplicated(subset=["service_id", "stop_order"], keep="first")
    if duplicated.any():
        logger.warning(f"Dropping {int(duplicated.sum())} route stops with a repeated stop order")
        route_stops = route_stops[~duplicated]

    services = services.copy()
    services["service_id"] = services["service_id"].astype(str)
    services["name"] = services["name"].fillna("Unknown").astype(str)
    services["type"] = services["type"].fillna("Unknown").astype(str)
    if "is_running" not in services.columns:
        services["is_running"] = True
    services["is_running"] = services["is_running"].map(_parse_running).astype(bool)
    if "last_reported_time" not in services.columns:
        services["last_reported_time"] = 0
    services["last_reported_time"] = pd.to_numeric(services["last_reported_time"], errors="coerce").fillna(0).astype("int64")
    services = services.drop_duplicates(subset=["service_id"], keep="first")

    assignments = route_stops.merge(
        stops.drop_duplicates(subset=["stop_id"], keep="first")[["stop_id", "location_name", "latitude", "longitude"]],
        on="stop_id",
        how="inner",
    ).sort_values(["service_id", "stop_order"], kind="mergesort")
    orphaned = len(route_stops) - len(assignments)
    if orphaned:
        logger.warning(f"{orphaned} route stops reference unknown stops")

    sequences: dict[str, list[RouteAssignment]] = {}
    services_by_stop: dict[str, set[str]] = {}
    for row in assignments.itertuples(index=False):
        ra = RouteAssignment(
            service_id=row.service_id,
            stop_id=row.stop_id,
            stop_name=row.location_name,
            stop_order=int(row.stop_order),
            scheduled_time=row.scheduled_time,
            lat=None if pd.isna(row.latitude) else float(row.latitude),
            lng=None if pd.isna(row.longitude) else float(row.longitude),
        )
        sequences.setdefault(ra.service_id, []).append(ra)
        services_by_stop.setdefault(ra.stop_name, set()).add(ra.service_id)

    service_index = {
        row.service_id: Service(
            service_id=row.service_id,
            name=row.name,
            type=row.type,
            is_running=bool(row.is_running),
            last_reported_time=int(row.last_reported_time),
        )
        for row in services.itertuples(index=False)
    }

    stop_coords: dict[str, Coordinate] = {}
    for row in stops.itertuples(index=False):
        if row.location_name not in stop_coords and not pd.isna(row.latitude):
            stop_coords[row.location_name] = Coordinate(lat=float(row.latitude), lng=float(row.longitude))

    logger.info(
        f"Timetable ready: {len(stops)} stops, {len(service_index)} services, "
        f"{len(assignments)} route stops"
    )

    return {
        "stops": stops,
        "route_stops": route_stops,
        "services": services,
        "assignments": assignments,
        "source": source,
        "_sequences": sequences,
        "_services_by_stop": services_by_stop,
        "_service_index": service_index,
        "_stop_coords": stop_coords,
    }


# --- Lookups used by the query layer ---


def lookup_stop_coordinates(timetable: dict, name: str) -> Optional[Coordinate]:
    """Coordinates of the first stop with this name, or None if unresolved."""
    return timetable["_stop_coords"].get(name)


def service_metadata(timetable: dict, service_id: str) -> Optional[Service]:
    return timetable["_service_index"].get(str(service_id))


def service_sequence(timetable: dict, service_id: str) -> list[RouteAssignment]:
    """All assignments of one service, sorted by stop order."""
    return timetable["_sequences"].get(str(service_id), [])


def services_visiting(timetable: dict, name: str) -> set[str]:
    return timetable["_services_by_stop"].get(name, set())


def route_assignments_joining(timetable: dict, anchor: str) -> Iterator[RouteAssignment]:
    """Every assignment of every service that calls at `anchor`."""
    for service_id in sorted(services_visiting(timetable, anchor)):
        yield from service_sequence(timetable, service_id)


def stop_names(timetable: dict) -> list[str]:
    """Distinct stop names for autocomplete."""
    return sorted(timetable["stops"]["location_name"].unique().tolist())


def search_stops(timetable: dict, query: str, limit: int = 5) -> list[dict]:
    """Search stops by name (case-insensitive partial match).

    Starts-with matches are ranked before contains matches.
    """
    if not query or len(query) < 2:
        return []

    query_lower = query.lower()
    starts_with: list[dict] = []
    contains: list[dict] = []
    seen: set[str] = set()

    for row in timetable["stops"].itertuples(index=False):
        name = row.location_name
        key = name.lower()
        if key in seen:
            continue
        item = {
            "stop_id": row.stop_id,
            "name": name,
            "lat": None if pd.isna(row.latitude) else float(row.latitude),
            "lng": None if pd.isna(row.longitude) else float(row.longitude),
        }
        if key.startswith(query_lower):
            seen.add(key)
            starts_with.append(item)
        elif query_lower in key:
            seen.add(key)
            contains.append(item)

    return (starts_with + contains)[:limit]


def search_services_by_name(timetable: dict, query: str, limit: int = 20) -> list[Service]:
    services = timetable["services"]
    if not query:
        return []
    matches = services[services["name"].str.contains(query, case=False, regex=False)]
    return [timetable["_service_index"][sid] for sid in matches["service_id"].head(limit)]


def timetable_summary(timetable: dict) -> dict:
    return {
        "source": timetable.get("source"),
        "stop_count": len(timetable["stops"]),
        "service_count": len(timetable["_service_index"]),
        "assignment_count": len(timetable["assignments"]),
    }
