import pytest
from datetime import datetime, timedelta
from core.models import (
    CitizenReport, Pump, PumpStatus, ReportStatus, SensorReading, StatusChange,
    WaterSource, Zone, ZoneStatus,
)
from core.repository import InMemoryRepository
from core.sqlite_repository import SQLiteRepository

T0 = datetime(2024, 5, 6, 8, 0)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRepository()
    else:
        repository = SQLiteRepository(db_path=str(tmp_path / "test_repo.db"))
        yield repository
        repository.close()


def make_zone(zone_id="Z1", **kwargs):
    fields = dict(id=zone_id, name=f"Zone {zone_id}", status=ZoneStatus.OPTIMAL,
                  flow_rate=1000.0, pressure=50.0, population=40000, lat=1.5, lng=2.5)
    fields.update(kwargs)
    return Zone(**fields)


def make_report(block, report_id=None):
    return CitizenReport(
        id=report_id or f"r{block}", type="leak", location="Main St",
        description="Burst pipe", timestamp=T0 + timedelta(minutes=block),
        user_id="u1", report_hash=f"{block:064x}", previous_hash="0",
        block_number=block, signature="s" * 64,
        status_history=[StatusChange(status=ReportStatus.PENDING, timestamp=T0)],
    )


def test_zone_roundtrip(repo):
    """Verify stored zones come back unchanged and in insertion order."""
    repo.add_zone(make_zone("Z2"))
    repo.add_zone(make_zone("Z1"))

    assert [z.id for z in repo.get_zones()] == ["Z2", "Z1"]
    assert repo.get_zone("Z1") == make_zone("Z1")


def test_unknown_ids_return_none(repo):
    """Verify lookups of missing records return None."""
    assert repo.get_zone("nope") is None
    assert repo.get_report("nope") is None
    assert repo.update_zone("nope", {"pressure": 10}) is None
    assert repo.set_report_status(
        "nope", ReportStatus.RESOLVED, StatusChange(status=ReportStatus.RESOLVED, timestamp=T0)
    ) is None


def test_update_zone_stamps_last_updated(repo):
    """Verify operator edits apply editable fields and stamp the time."""
    repo.add_zone(make_zone())
    now = T0 + timedelta(hours=1)

    updated = repo.update_zone(
        "Z1", {"pressure": 30.0, "status": "maintenance", "id": "hijack", "flow_rate": None}, now
    )

    assert updated.id == "Z1"
    assert updated.pressure == 30.0
    assert updated.status == ZoneStatus.MAINTENANCE
    assert updated.flow_rate == 1000.0
    assert updated.last_updated == now
    assert repo.get_zone("Z1").last_updated == now


def test_pumps_and_sources(repo):
    """Verify pumps and sources are stored."""
    pump = Pump(id="P1", zone_id="Z1", source_id="S1", status=PumpStatus.ACTIVE,
                schedule="06:00-09:00", flow_rate=600.0, last_maintenance=T0)
    source = WaterSource(id="S1", name="Lake", type="lake", location="North",
                         lat=1.0, lng=2.0, capacity=1e6, current_level=5e5, quality="good")
    repo.add_pump(pump)
    repo.add_water_source(source)

    assert repo.get_pumps() == [pump]
    assert repo.get_water_sources() == [source]


def test_history_sorted_oldest_first(repo):
    """Verify history is returned in time order whatever the insert order."""
    repo.add_zone(make_zone())
    readings = [
        SensorReading(zone_id="Z1", timestamp=T0 + timedelta(hours=h), flow_rate=1000.0 + h, pressure=50.0)
        for h in (3, 1, 2, 0)
    ]
    assert repo.add_readings(readings) == 4

    history = repo.get_zone_history("Z1")
    assert [r.timestamp for r in history] == [T0 + timedelta(hours=h) for h in range(4)]
    assert repo.get_zone_history("Z9") == []


def test_history_hours_window(repo):
    """Verify the hours filter keeps only recent readings."""
    readings = [
        SensorReading(zone_id="Z1", timestamp=T0 + timedelta(hours=h), flow_rate=1000.0, pressure=50.0)
        for h in range(10)
    ]
    repo.add_readings(readings)

    recent = repo.get_zone_history("Z1", hours=3, now=T0 + timedelta(hours=9))
    assert len(recent) == 4


def test_history_by_zone(repo):
    """Verify history grouping covers every zone."""
    repo.add_zone(make_zone("Z1"))
    repo.add_zone(make_zone("Z2"))
    repo.add_readings([SensorReading(zone_id="Z1", timestamp=T0, flow_rate=1.0, pressure=2.0)])

    grouped = repo.get_history_by_zone()
    assert set(grouped) == {"Z1", "Z2"}
    assert len(grouped["Z1"]) == 1
    assert grouped["Z2"] == []


def test_reports_in_block_order(repo):
    """Verify reports come back by block number and the tail is the highest."""
    assert repo.get_chain_tail() is None
    for block in (2, 0, 1):
        repo.insert_report(make_report(block))

    assert [r.block_number for r in repo.get_reports()] == [0, 1, 2]
    assert repo.get_chain_tail().id == "r2"
    assert repo.get_report("r1") == make_report(1)


def test_set_report_status_keeps_ledger_fields(repo):
    """Verify status changes append history and leave ledger fields alone."""
    original = make_report(0)
    repo.insert_report(original)
    change = StatusChange(status=ReportStatus.INVESTIGATING, timestamp=T0 + timedelta(hours=1),
                          updated_by="crew-7", reason="Dispatched")

    updated = repo.set_report_status("r0", ReportStatus.INVESTIGATING, change)

    assert updated.status == ReportStatus.INVESTIGATING
    assert updated.status_history[-1] == change
    stored = repo.get_report("r0")
    assert len(stored.status_history) == 2
    assert stored.report_hash == original.report_hash
    assert stored.previous_hash == original.previous_hash
    assert stored.block_number == original.block_number
    assert stored.signature == original.signature


def test_returned_records_are_detached():
    """Verify callers cannot mutate in-memory records through returned objects."""
    repo = InMemoryRepository()
    repo.add_zone(make_zone())
    repo.get_zone("Z1").pressure = 1.0
    assert repo.get_zone("Z1").pressure == 50.0
