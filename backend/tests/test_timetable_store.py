"""
Tests for busline.timetable_store

Covers:
  1. Loading the bundled CSV dataset and a SQLite database
  2. Missing or malformed datasets raise StoreUnavailable
  3. Normalisation: unresolved coordinates, repeated stop orders, orphan rows
  4. Lookups: coordinates, joining assignments, name search, status summary
"""

import sqlite3

import pandas as pd
import pytest

from busline.errors import StoreUnavailable
from busline.timetable_store import (
    build_timetable,
    load_timetable_data,
    lookup_stop_coordinates,
    route_assignments_joining,
    search_services_by_name,
    search_stops,
    service_metadata,
    service_sequence,
    services_visiting,
    stop_names,
    timetable_summary,
)


def _write_sqlite(path, include_services=True):
    conn = sqlite3.connect(path)
    conn.executescript("""
        CREATE TABLE Stop (stopId INTEGER PRIMARY KEY, locationName TEXT, latitude REAL, longitude REAL);
        CREATE TABLE RouteStop (serviceId TEXT, stopId INTEGER, stopOrder INTEGER, scheduledTime TEXT);
        INSERT INTO Stop VALUES (1, 'Depot', 10.00, 76.00), (2, 'Market', 10.02, 76.00), (3, 'Mill', NULL, NULL);
        INSERT INTO RouteStop VALUES
            ('Y', 1, 1, '08:00'), ('Y', 1, 2, '08:10'), ('Y', 2, 3, '08:30'), ('Y', 3, 4, '08:50');
    """)
    if include_services:
        conn.executescript("""
            CREATE TABLE BusService (serviceId TEXT PRIMARY KEY, name TEXT, type TEXT,
                                     isRunning INTEGER, lastReportedTime INTEGER);
            INSERT INTO BusService VALUES ('Y', 'Depot - Market', 'Ordinary', 0, 1760860800000);
        """)
    conn.commit()
    conn.close()


def write_csv_store(path, running="1"):
    (path / "stops.csv").write_text("stop_id,location_name,latitude,longitude\n1,Depot,10.0,76.0\n2,Market,10.02,76.0\n")
    (path / "route_stops.csv").write_text("service_id,stop_id,stop_order,scheduled_time\nS,1,1,08:00\nS,2,2,08:30\n")
    (path / "services.csv").write_text(
        f"service_id,name,type,is_running,last_reported_time\nS,Depot - Market,Ordinary,{running},0\n"
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadCsv:

    def test_bundled_dataset(self, sample_timetable):
        summary = timetable_summary(sample_timetable)
        assert summary["stop_count"] == 14
        assert summary["service_count"] == 6
        assert summary["assignment_count"] == 32

    def test_env_path(self, monkeypatch):
        from busline.timetable_store import DATA_DIR

        monkeypatch.setenv("TIMETABLE_PATH", DATA_DIR)
        assert load_timetable_data()["source"] == DATA_DIR

    def test_missing_directory(self, tmp_path):
        with pytest.raises(StoreUnavailable):
            load_timetable_data(str(tmp_path / "nope"))

    def test_missing_file(self, tmp_path):
        (tmp_path / "stops.csv").write_text("stop_id,location_name,latitude,longitude\n")
        with pytest.raises(StoreUnavailable, match="route_stops.csv"):
            load_timetable_data(str(tmp_path))

    def test_missing_column(self, tmp_path):
        (tmp_path / "stops.csv").write_text("stop_id,location_name\n1,Depot\n")
        (tmp_path / "route_stops.csv").write_text("service_id,stop_id,stop_order,scheduled_time\nY,1,1,08:00\n")
        (tmp_path / "services.csv").write_text("service_id,name,type\nY,Depot Loop,Ordinary\n")
        with pytest.raises(StoreUnavailable, match="latitude"):
            load_timetable_data(str(tmp_path))

    def test_bad_running_flag(self, tmp_path):
        write_csv_store(tmp_path, running="maybe")
        with pytest.raises(StoreUnavailable, match="is_running"):
            load_timetable_data(str(tmp_path))

    @pytest.mark.parametrize("raw,expected", [
        ("yes", True), ("true", True), ("1", True),
        ("no", False), ("FALSE", False), ("0", False),
    ])
    def test_running_flag_spellings(self, tmp_path, raw, expected):
        write_csv_store(tmp_path, running=raw)
        tt = load_timetable_data(str(tmp_path))
        assert service_metadata(tt, "S").is_running is expected

    def test_non_finite_stop_order(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", "08:00"), ("B", "08:30")]})
        route_stops["stop_order"] = [1.0, float("inf")]
        with pytest.raises(StoreUnavailable, match="Malformed timetable data"):
            build_timetable(stops, route_stops, services)

    def test_empty_file(self, tmp_path):
        for name in ("stops.csv", "route_stops.csv", "services.csv"):
            (tmp_path / name).write_text("")
        with pytest.raises(StoreUnavailable):
            load_timetable_data(str(tmp_path))


class TestLoadSqlite:

    def test_reads_app_schema(self, tmp_path):
        db = tmp_path / "TimetableDatabase.db"
        _write_sqlite(str(db))
        tt = load_timetable_data(str(db))

        service = service_metadata(tt, "Y")
        assert service.name == "Depot - Market"
        assert service.is_running is False
        assert service.last_reported_time == 1760860800000
        assert [ra.stop_name for ra in service_sequence(tt, "Y")] == ["Depot", "Depot", "Market", "Mill"]

    def test_path_with_uri_characters(self, tmp_path):
        folder = tmp_path / "data #1?v=2 100%"
        folder.mkdir()
        db = folder / "TimetableDatabase.db"
        _write_sqlite(str(db))
        tt = load_timetable_data(str(db))
        assert [ra.stop_order for ra in service_sequence(tt, "Y")] == [1, 2, 3, 4]

    def test_missing_table(self, tmp_path):
        db = tmp_path / "broken.db"
        _write_sqlite(str(db), include_services=False)
        with pytest.raises(StoreUnavailable):
            load_timetable_data(str(db))

    def test_not_a_database(self, tmp_path):
        bogus = tmp_path / "bogus.db"
        bogus.write_bytes(b"this is not sqlite at all, just some bytes" * 10)
        with pytest.raises(StoreUnavailable):
            load_timetable_data(str(bogus))


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestBuildTimetable:

    def test_unresolved_coordinates(self, sample_timetable):
        # Vadavathoor is stored as (0, 0)
        assert lookup_stop_coordinates(sample_timetable, "Vadavathoor") is None
        seq = service_sequence(sample_timetable, "KTM-PLA-01")
        assert seq[1].stop_name == "Vadavathoor"
        assert seq[1].coordinate is None

    def test_null_coordinates(self, tmp_path):
        db = tmp_path / "t.db"
        _write_sqlite(str(db))
        tt = load_timetable_data(str(db))
        assert lookup_stop_coordinates(tt, "Mill") is None
        assert lookup_stop_coordinates(tt, "Market").lat == pytest.approx(10.02)

    def test_repeated_stop_order_dropped(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", "08:00"), ("B", "08:30")]})
        clash = pd.DataFrame([{"service_id": "S", "stop_id": "2", "stop_order": 1, "scheduled_time": "09:00"}])
        tt = build_timetable(stops, pd.concat([route_stops, clash], ignore_index=True), services)
        assert [(ra.stop_name, ra.stop_order) for ra in service_sequence(tt, "S")] == [("A", 1), ("B", 2)]

    def test_sequence_sorted_by_stop_order(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", "08:00"), ("B", "08:30"), ("C", "09:00")]})
        tt = build_timetable(stops, route_stops.iloc[::-1], services)
        assert [ra.stop_order for ra in service_sequence(tt, "S")] == [1, 2, 3]

    def test_orphan_route_stops_dropped(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", "08:00"), ("B", "08:30")]})
        orphan = pd.DataFrame([{"service_id": "S", "stop_id": "999", "stop_order": 3, "scheduled_time": "09:00"}])
        tt = build_timetable(stops, pd.concat([route_stops, orphan], ignore_index=True), services)
        assert len(service_sequence(tt, "S")) == 2

    def test_missing_time_placeholder(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", None), ("B", "08:30")]})
        tt = build_timetable(stops, route_stops, services)
        assert service_sequence(tt, "S")[0].scheduled_time == "--:--"

    def test_service_defaults(self, frames_factory):
        stops, route_stops, services = frames_factory({"S": [("A", "08:00")]})
        tt = build_timetable(stops, route_stops, services)
        service = service_metadata(tt, "S")
        assert service.is_running is True
        assert service.last_reported_time == 0


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookups:

    def test_lookup_coordinates(self, sample_timetable):
        coord = lookup_stop_coordinates(sample_timetable, "Kottayam")
        assert (coord.lat, coord.lng) == (pytest.approx(9.5916), pytest.approx(76.5222))

    def test_lookup_unknown(self, sample_timetable):
        assert lookup_stop_coordinates(sample_timetable, "Ghost Stop") is None

    def test_services_visiting(self, sample_timetable):
        assert services_visiting(sample_timetable, "Changanassery") == {"KTM-TVL-01", "ETM-CHR-01", "PLA-CHR-01"}

    def test_route_assignments_joining(self, sample_timetable):
        rows = list(route_assignments_joining(sample_timetable, "Thiruvalla"))
        assert {ra.service_id for ra in rows} == {"KTM-TVL-01"}
        assert [ra.stop_name for ra in rows] == ["Kottayam", "Pallom", "Chingavanam", "Changanassery", "Thiruvalla"]

    def test_route_assignments_grouped_by_service(self, sample_timetable):
        rows = list(route_assignments_joining(sample_timetable, "Kottayam"))
        keys = [(ra.service_id, ra.stop_order) for ra in rows]
        assert keys == sorted(keys)

    def test_stop_names(self, sample_timetable):
        names = stop_names(sample_timetable)
        assert names == sorted(names)
        assert "Kottayam" in names
        assert len(names) == len(set(names))

    def test_search_stops_ranks_prefix_first(self, sample_timetable):
        results = search_stops(sample_timetable, "kan")
        assert [r["name"] for r in results] == ["Kanjikuzhy"]

        results = search_stops(sample_timetable, "ch")
        names = [r["name"] for r in results]
        assert names[:2] == ["Changanassery", "Chingavanam"]

    def test_search_stops_short_query(self, sample_timetable):
        assert search_stops(sample_timetable, "k") == []

    def test_search_services_by_name(self, sample_timetable):
        services = search_services_by_name(sample_timetable, "kottayam")
        assert {s.service_id for s in services} == {
            "KTM-TVL-01", "KTM-SHT-01", "VKM-KTM-01", "KTM-PLA-01",
        }

    def test_search_services_limit(self, sample_timetable):
        assert len(search_services_by_name(sample_timetable, "kottayam", limit=2)) == 2
