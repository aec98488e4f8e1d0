"""
Repository interface for zones, pumps, sources, sensor history and reports.

The analytics engine and the ledger only ever see what the read methods
return, so any storage backend can sit behind this interface. Lookups of
unknown ids return None rather than raising.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.models import (
    CitizenReport, Pump, ReportStatus, SensorReading, StatusChange, WaterSource, Zone,
    ZoneStatus,
)

log = logging.getLogger(__name__)

# Zone fields an operator may edit through update_zone
ZONE_EDITABLE_FIELDS = ("name", "status", "flow_rate", "pressure", "population", "lat", "lng")


class WaterRepository(ABC):
    """Storage contract consumed by the monitoring service."""

    # Read side
    @abstractmethod
    def get_zones(self) -> List[Zone]: ...

    @abstractmethod
    def get_zone(self, zone_id: str) -> Optional[Zone]: ...

    @abstractmethod
    def get_pumps(self) -> List[Pump]: ...

    @abstractmethod
    def get_water_sources(self) -> List[WaterSource]: ...

    @abstractmethod
    def get_zone_history(self, zone_id: str, hours: Optional[float] = None,
                         now: Optional[datetime] = None) -> List[SensorReading]:
        """Readings for one zone, oldest first, optionally limited to the last N hours."""

    @abstractmethod
    def get_reports(self) -> List[CitizenReport]:
        """All reports in ascending block order."""

    @abstractmethod
    def get_report(self, report_id: str) -> Optional[CitizenReport]: ...

    @abstractmethod
    def get_chain_tail(self) -> Optional[CitizenReport]:
        """The report with the highest block number, or None for an empty chain."""

    # Write side
    @abstractmethod
    def add_zone(self, zone: Zone) -> Zone: ...

    @abstractmethod
    def update_zone(self, zone_id: str, updates: Dict[str, Any],
                    now: Optional[datetime] = None) -> Optional[Zone]:
        """Apply an operator edit and stamp last_updated."""

    @abstractmethod
    def add_pump(self, pump: Pump) -> Pump: ...

    @abstractmethod
    def add_water_source(self, source: WaterSource) -> WaterSource: ...

    @abstractmethod
    def add_readings(self, readings: Iterable[SensorReading]) -> int: ...

    @abstractmethod
    def insert_report(self, report: CitizenReport) -> CitizenReport: ...

    @abstractmethod
    def set_report_status(self, report_id: str, status: ReportStatus,
                          change: StatusChange) -> Optional[CitizenReport]:
        """Change workflow status only. Ledger fields are never touched."""

    def get_history_by_zone(self, hours: Optional[float] = None,
                            now: Optional[datetime] = None) -> Dict[str, List[SensorReading]]:
        """Readings grouped per zone id, each series oldest first."""
        return {z.id: self.get_zone_history(z.id, hours, now) for z in self.get_zones()}


def _apply_zone_updates(zone: Zone, updates: Dict[str, Any], now: datetime) -> Zone:
    changes = {k: v for k, v in updates.items() if k in ZONE_EDITABLE_FIELDS and v is not None}
    ignored = set(updates) - set(changes)
    if ignored:
        log.debug(f"Ignoring non-editable zone fields: {sorted(ignored)}")
    if isinstance(changes.get("status"), str):
        changes["status"] = ZoneStatus(changes["status"])
    return replace(zone, last_updated=now, **changes)


class InMemoryRepository(WaterRepository):
    """
    Dict-backed repository. Thread-safe; returns copies so callers
    cannot mutate stored records.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._zones: Dict[str, Zone] = {}
        self._pumps: Dict[str, Pump] = {}
        self._sources: Dict[str, WaterSource] = {}
        self._history: Dict[str, List[SensorReading]] = defaultdict(list)
        self._reports: Dict[str, CitizenReport] = {}

    def get_zones(self) -> List[Zone]:
        with self._lock:
            return [copy.deepcopy(z) for z in self._zones.values()]

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        with self._lock:
            zone = self._zones.get(zone_id)
            return copy.deepcopy(zone) if zone else None

    def get_pumps(self) -> List[Pump]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._pumps.values()]

    def get_water_sources(self) -> List[WaterSource]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._sources.values()]

    def get_zone_history(self, zone_id: str, hours: Optional[float] = None,
                         now: Optional[datetime] = None) -> List[SensorReading]:
        with self._lock:
            readings = list(self._history.get(zone_id, []))

        if hours is not None:
            cutoff = (now or datetime.now()) - timedelta(hours=hours)
            readings = [r for r in readings if r.timestamp >= cutoff]
        return sorted(readings, key=lambda r: r.timestamp)

    def get_reports(self) -> List[CitizenReport]:
        with self._lock:
            reports = [copy.deepcopy(r) for r in self._reports.values()]
        return sorted(reports, key=lambda r: r.block_number)

    def get_report(self, report_id: str) -> Optional[CitizenReport]:
        with self._lock:
            report = self._reports.get(report_id)
            return copy.deepcopy(report) if report else None

    def get_chain_tail(self) -> Optional[CitizenReport]:
        with self._lock:
            if not self._reports:
                return None
            tail = max(self._reports.values(), key=lambda r: r.block_number)
            return copy.deepcopy(tail)

    def add_zone(self, zone: Zone) -> Zone:
        with self._lock:
            self._zones[zone.id] = copy.deepcopy(zone)
        return zone

    def update_zone(self, zone_id: str, updates: Dict[str, Any],
                    now: Optional[datetime] = None) -> Optional[Zone]:
        with self._lock:
            zone = self._zones.get(zone_id)
            if zone is None:
                return None
            updated = _apply_zone_updates(zone, updates, now or datetime.now())
            self._zones[zone_id] = updated
            log.info(f"Zone {zone_id} updated manually")
            return copy.deepcopy(updated)

    def add_pump(self, pump: Pump) -> Pump:
        with self._lock:
            self._pumps[pump.id] = copy.deepcopy(pump)
        return pump

    def add_water_source(self, source: WaterSource) -> WaterSource:
        with self._lock:
            self._sources[source.id] = copy.deepcopy(source)
        return source

    def add_readings(self, readings: Iterable[SensorReading]) -> int:
        count = 0
        with self._lock:
            for reading in readings:
                self._history[reading.zone_id].append(reading)
                count += 1
        return count

    def insert_report(self, report: CitizenReport) -> CitizenReport:
        with self._lock:
            self._reports[report.id] = copy.deepcopy(report)
        return report

    def set_report_status(self, report_id: str, status: ReportStatus,
                          change: StatusChange) -> Optional[CitizenReport]:
        with self._lock:
            report = self._reports.get(report_id)
            if report is None:
                return None
            report.status = status
            report.status_history.append(change)
            return copy.deepcopy(report)
