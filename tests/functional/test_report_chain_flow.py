import pytest
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
import audit_chain
from core.ledger import ReportLedger
from core.models import SensorReading, Zone, ZoneStatus
from core.service import MonitoringService
from core.sqlite_repository import SQLiteRepository

NOW = datetime(2024, 5, 6, 8, 0)


@pytest.fixture
def db_path(tmp_path):
    # File-based DB so every worker thread sees the same data
    return str(tmp_path / "test_chain.db")


@pytest.fixture
def service(db_path):
    repository = SQLiteRepository(db_path=db_path)
    yield MonitoringService(repository)
    repository.close()


def submit_many(service, count, workers=6):
    def worker(i):
        return service.create_report(
            "leak", f"Street {i}", f"Report number {i}",
            geo_location={"lat": 12.9 + i / 1000, "lng": 77.5}, now=NOW + timedelta(seconds=i),
        )

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(worker, i) for i in range(count)]
        return [f.result() for f in futures]


def test_concurrent_submissions_persist_a_single_chain(service, db_path):
    """Verify threaded submissions produce one gap-free, verifiable chain on disk."""
    created = submit_many(service, 30)
    assert len({r.id for r in created}) == 30

    reopened = SQLiteRepository(db_path=db_path)
    try:
        reports = reopened.get_reports()
        assert [r.block_number for r in reports] == list(range(30))
        assert ReportLedger().verify_chain(reports).valid
    finally:
        reopened.close()


def test_workflow_then_audit_passes(service, db_path, caplog):
    """Verify status changes keep the chain valid and the audit tool agrees."""
    created = submit_many(service, 5)
    service.update_report_status(created[0].id, "investigating", updated_by="crew-3")
    service.update_report_status(created[0].id, "resolved", updated_by="crew-3", reason="Valve replaced")

    assert service.verify_chain().valid
    with caplog.at_level(logging.INFO, logger="audit_chain"):
        assert audit_chain.main(["--db", db_path]) == 0
    assert "Chain verification: VALID" in caplog.text


def test_tampering_caught_by_audit(service, db_path, caplog):
    """Verify a direct edit in the database is reported at the edited block."""
    submit_many(service, 4)

    with service.repository._transaction() as conn:
        conn.execute("UPDATE citizen_reports SET location = 'Nowhere' WHERE block_number = 2")

    stats = service.chain_stats()
    assert not stats.is_valid
    assert stats.invalid_block == 2

    with caplog.at_level(logging.INFO, logger="audit_chain"):
        assert audit_chain.main(["--db", db_path]) == 1
    assert "MISMATCH" in caplog.text
    assert "INVALID at block 2" in caplog.text


def test_deleted_block_caught(service):
    """Verify removing a block breaks the link of the next one."""
    submit_many(service, 4)

    with service.repository._transaction() as conn:
        conn.execute("DELETE FROM citizen_reports WHERE block_number = 1")

    result = service.verify_chain()
    assert not result.valid
    assert result.invalid_block == 2


def test_monitoring_over_sqlite(service):
    """Verify the analytics surface runs against persisted zones and history."""
    repo = service.repository
    repo.add_zone(Zone(id="Z1", name="Harbor", status=ZoneStatus.OPTIMAL,
                       flow_rate=1000.0, pressure=50.0, population=50000))
    repo.add_readings(
        SensorReading(zone_id="Z1", timestamp=NOW - timedelta(minutes=5 * i),
                      flow_rate=1500.0, pressure=30.0)
        for i in range(1, 21)
    )

    anomalies = service.anomalies(NOW)
    assert [a.to_dict()["type"] for a in anomalies] == ["leak_detected"]
    assert service.get_zone("Z1", NOW).status == ZoneStatus.LOW_PRESSURE
    assert len(service.demand_predictions(NOW)) == 1


def test_audit_refuses_missing_database(tmp_path, caplog):
    """Verify a mistyped database path fails instead of auditing an empty chain."""
    missing = tmp_path / "typo.db"

    with caplog.at_level(logging.INFO, logger="audit_chain"):
        assert audit_chain.main(["--db", str(missing)]) == 1

    assert not missing.exists()
    assert "Database not found" in caplog.text
    assert "VALID" not in caplog.text
