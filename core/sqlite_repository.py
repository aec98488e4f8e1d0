"""
SQLite Repository: persistent storage for zones, pumps, sources, sensor
history and the citizen report chain.

Uses thread-local connections in WAL mode so the HTTP layer can read from
many threads while report appends are serialized by the service.
"""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.models import (
    CitizenReport, Pump, PumpStatus, ReportStatus, SensorReading, SourceStatus,
    StatusChange, WaterSource, Zone, ZoneStatus,
)
from core.repository import WaterRepository, _apply_zone_updates

log = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteRepository(WaterRepository):
    """
    SQLite-backed implementation of WaterRepository.

    Usage:
        repo = SQLiteRepository("hydrowatch.db")
        repo.add_zone(zone)
        reports = repo.get_reports()
        repo.close()
    """

    DEFAULT_DB_PATH = "hydrowatch.db"

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to the SQLite database. ':memory:' is only safe
                     from a single thread, each connection gets its own DB.
        """
        self.db_path = db_path or os.path.join(os.getcwd(), self.DEFAULT_DB_PATH)
        self._lock = threading.RLock()
        self._connection_pool: Dict[int, sqlite3.Connection] = {}

        self._init_db()
        log.info(f"SQLiteRepository initialized at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local SQLite connection."""
        thread_id = threading.get_ident()

        if thread_id not in self._connection_pool:
            conn = sqlite3.connect(self.db_path, timeout=5.0, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.row_factory = sqlite3.Row
            self._connection_pool[thread_id] = conn
            log.debug(f"Created new SQLite connection for thread {thread_id}")

        return self._connection_pool[thread_id]

    @contextmanager
    def _transaction(self):
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            log.error(f"SQLite transaction failed: {e}")
            raise

    def _init_db(self) -> None:
        with self._lock:
            try:
                with self._transaction() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS zones (
                            id TEXT PRIMARY KEY,
                            name TEXT NOT NULL,
                            status TEXT NOT NULL,
                            flow_rate REAL NOT NULL,
                            pressure REAL NOT NULL,
                            population INTEGER NOT NULL DEFAULT 50000,
                            last_updated TEXT,
                            lat REAL NOT NULL,
                            lng REAL NOT NULL
                        )
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS pumps (
                            id TEXT PRIMARY KEY,
                            zone_id TEXT NOT NULL,
                            source_id TEXT NOT NULL,
                            status TEXT NOT NULL,
                            schedule TEXT NOT NULL,
                            flow_rate REAL NOT NULL,
                            last_maintenance TEXT
                        )
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS water_sources (
                            id TEXT PRIMARY KEY,
                            name TEXT NOT NULL,
                            type TEXT NOT NULL,
                            location TEXT NOT NULL,
                            lat REAL NOT NULL,
                            lng REAL NOT NULL,
                            capacity REAL NOT NULL,
                            current_level REAL NOT NULL,
                            quality TEXT NOT NULL,
                            status TEXT NOT NULL,
                            last_tested TEXT
                        )
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS zone_history (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            zone_id TEXT NOT NULL,
                            timestamp TEXT NOT NULL,
                            flow_rate REAL NOT NULL,
                            pressure REAL NOT NULL,
                            consumption REAL
                        )
                    """)
                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_history_zone_time
                        ON zone_history(zone_id, timestamp)
                    """)
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS citizen_reports (
                            id TEXT PRIMARY KEY,
                            type TEXT NOT NULL,
                            location TEXT NOT NULL,
                            description TEXT NOT NULL,
                            timestamp TEXT NOT NULL,
                            user_id TEXT NOT NULL,
                            status TEXT NOT NULL DEFAULT 'pending',
                            geo_location TEXT,
                            images TEXT,
                            report_hash TEXT NOT NULL,
                            previous_hash TEXT NOT NULL,
                            block_number INTEGER NOT NULL UNIQUE,
                            signature TEXT NOT NULL,
                            status_history TEXT NOT NULL
                        )
                    """)
                    log.info("SQLiteRepository schema initialized")

            except sqlite3.Error as e:
                log.error(f"Failed to initialize SQLiteRepository DB: {e}")
                raise RuntimeError(f"SQLiteRepository initialization failed: {e}")

    # ── row mapping ──────────────────────────────────────────────────────
    @staticmethod
    def _row_to_zone(row: sqlite3.Row) -> Zone:
        return Zone(
            id=row['id'],
            name=row['name'],
            status=ZoneStatus(row['status']),
            flow_rate=row['flow_rate'],
            pressure=row['pressure'],
            population=row['population'],
            last_updated=_dt(row['last_updated']),
            lat=row['lat'],
            lng=row['lng'],
        )

    @staticmethod
    def _row_to_report(row: sqlite3.Row) -> CitizenReport:
        return CitizenReport(
            id=row['id'],
            type=row['type'],
            location=row['location'],
            description=row['description'],
            timestamp=_dt(row['timestamp']),
            user_id=row['user_id'],
            status=ReportStatus(row['status']),
            geo_location=json.loads(row['geo_location']) if row['geo_location'] else None,
            images=json.loads(row['images']) if row['images'] else [],
            report_hash=row['report_hash'],
            previous_hash=row['previous_hash'],
            block_number=row['block_number'],
            signature=row['signature'],
            status_history=[StatusChange.from_dict(s) for s in json.loads(row['status_history'])],
        )

    # ── read side ────────────────────────────────────────────────────────
    def get_zones(self) -> List[Zone]:
        rows = self._get_connection().execute("SELECT * FROM zones ORDER BY rowid").fetchall()
        return [self._row_to_zone(r) for r in rows]

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        row = self._get_connection().execute(
            "SELECT * FROM zones WHERE id = ?", (zone_id,)
        ).fetchone()
        return self._row_to_zone(row) if row else None

    def get_pumps(self) -> List[Pump]:
        rows = self._get_connection().execute("SELECT * FROM pumps ORDER BY rowid").fetchall()
        return [
            Pump(
                id=r['id'],
                zone_id=r['zone_id'],
                source_id=r['source_id'],
                status=PumpStatus(r['status']),
                schedule=r['schedule'],
                flow_rate=r['flow_rate'],
                last_maintenance=_dt(r['last_maintenance']),
            )
            for r in rows
        ]

    def get_water_sources(self) -> List[WaterSource]:
        rows = self._get_connection().execute(
            "SELECT * FROM water_sources ORDER BY rowid"
        ).fetchall()
        return [
            WaterSource(
                id=r['id'],
                name=r['name'],
                type=r['type'],
                location=r['location'],
                lat=r['lat'],
                lng=r['lng'],
                capacity=r['capacity'],
                current_level=r['current_level'],
                quality=r['quality'],
                status=SourceStatus(r['status']),
                last_tested=_dt(r['last_tested']),
            )
            for r in rows
        ]

    def get_zone_history(self, zone_id: str, hours: Optional[float] = None,
                         now: Optional[datetime] = None) -> List[SensorReading]:
        rows = self._get_connection().execute(
            "SELECT * FROM zone_history WHERE zone_id = ? ORDER BY id", (zone_id,)
        ).fetchall()
        readings = [
            SensorReading(
                zone_id=r['zone_id'],
                timestamp=_dt(r['timestamp']),
                flow_rate=r['flow_rate'],
                pressure=r['pressure'],
                consumption=r['consumption'],
            )
            for r in rows
        ]
        if hours is not None:
            cutoff = (now or datetime.now()) - timedelta(hours=hours)
            readings = [r for r in readings if r.timestamp >= cutoff]
        return sorted(readings, key=lambda r: r.timestamp)

    def get_reports(self) -> List[CitizenReport]:
        rows = self._get_connection().execute(
            "SELECT * FROM citizen_reports ORDER BY block_number ASC"
        ).fetchall()
        return [self._row_to_report(r) for r in rows]

    def get_report(self, report_id: str) -> Optional[CitizenReport]:
        row = self._get_connection().execute(
            "SELECT * FROM citizen_reports WHERE id = ?", (report_id,)
        ).fetchone()
        return self._row_to_report(row) if row else None

    def get_chain_tail(self) -> Optional[CitizenReport]:
        row = self._get_connection().execute(
            "SELECT * FROM citizen_reports ORDER BY block_number DESC LIMIT 1"
        ).fetchone()
        return self._row_to_report(row) if row else None

    # ── write side ───────────────────────────────────────────────────────
    def add_zone(self, zone: Zone) -> Zone:
        with self._lock, self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO zones (
                    id, name, status, flow_rate, pressure, population, last_updated, lat, lng
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                zone.id, zone.name, zone.status.value, zone.flow_rate, zone.pressure,
                zone.population, _ts(zone.last_updated), zone.lat, zone.lng
            ))
        return zone

    def update_zone(self, zone_id: str, updates: Dict[str, Any],
                    now: Optional[datetime] = None) -> Optional[Zone]:
        with self._lock:
            zone = self.get_zone(zone_id)
            if zone is None:
                return None
            updated = _apply_zone_updates(zone, updates, now or datetime.now())
            with self._transaction() as conn:
                conn.execute("""
                    UPDATE zones SET name = ?, status = ?, flow_rate = ?, pressure = ?,
                        population = ?, last_updated = ?, lat = ?, lng = ?
                    WHERE id = ?
                """, (
                    updated.name, updated.status.value, updated.flow_rate, updated.pressure,
                    updated.population, _ts(updated.last_updated), updated.lat, updated.lng,
                    zone_id
                ))
            log.info(f"Zone {zone_id} updated manually")
            return updated

    def add_pump(self, pump: Pump) -> Pump:
        with self._lock, self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO pumps (
                    id, zone_id, source_id, status, schedule, flow_rate, last_maintenance
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                pump.id, pump.zone_id, pump.source_id, pump.status.value,
                pump.schedule, pump.flow_rate, _ts(pump.last_maintenance)
            ))
        return pump

    def add_water_source(self, source: WaterSource) -> WaterSource:
        with self._lock, self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO water_sources (
                    id, name, type, location, lat, lng, capacity, current_level,
                    quality, status, last_tested
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                source.id, source.name, source.type, source.location, source.lat,
                source.lng, source.capacity, source.current_level, source.quality,
                source.status.value, _ts(source.last_tested)
            ))
        return source

    def add_readings(self, readings: Iterable[SensorReading]) -> int:
        rows = [
            (r.zone_id, _ts(r.timestamp), r.flow_rate, r.pressure, r.consumption)
            for r in readings
        ]
        with self._lock, self._transaction() as conn:
            conn.executemany("""
                INSERT INTO zone_history (zone_id, timestamp, flow_rate, pressure, consumption)
                VALUES (?, ?, ?, ?, ?)
            """, rows)
        log.debug(f"Stored {len(rows)} sensor readings")
        return len(rows)

    def insert_report(self, report: CitizenReport) -> CitizenReport:
        with self._lock, self._transaction() as conn:
            conn.execute("""
                INSERT INTO citizen_reports (
                    id, type, location, description, timestamp, user_id, status,
                    geo_location, images, report_hash, previous_hash, block_number,
                    signature, status_history
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                report.id, report.type, report.location, report.description,
                _ts(report.timestamp), report.user_id, report.status.value,
                json.dumps(report.geo_location) if report.geo_location else None,
                json.dumps(report.images),
                report.report_hash, report.previous_hash, report.block_number,
                report.signature,
                json.dumps([s.to_dict() for s in report.status_history]),
            ))
        return report

    def set_report_status(self, report_id: str, status: ReportStatus,
                          change: StatusChange) -> Optional[CitizenReport]:
        with self._lock:
            report = self.get_report(report_id)
            if report is None:
                return None
            report.status = status
            report.status_history.append(change)
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE citizen_reports SET status = ?, status_history = ? WHERE id = ?",
                    (status.value, json.dumps([s.to_dict() for s in report.status_history]),
                     report_id),
                )
            return report

    def close(self) -> None:
        """Close all database connections gracefully."""
        with self._lock:
            for thread_id, conn in self._connection_pool.items():
                try:
                    conn.close()
                    log.debug(f"Closed SQLite connection for thread {thread_id}")
                except sqlite3.Error as e:
                    log.warning(f"Error closing connection: {e}")
            self._connection_pool.clear()
        log.info("SQLiteRepository closed")
