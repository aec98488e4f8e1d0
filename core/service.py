"""
Monitoring Service - the library surface behind the HTTP layer.

Wires a repository to the analytics engine and the report ledger. Route
handlers call these methods and serialize the results with to_dict();
a None return means "not found".
"""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from analytics.engine import AnalyticsEngine
from analytics.predictor import DemandPredictor
from core.config import EngineSettings
from core.ledger import ReportLedger
from core.models import (
    AnomalyDetection, ChainStats, ChainVerification, CitizenReport, DemandPrediction,
    OptimalSchedule, ReportStatus, StatusChange, Zone,
)
from core.repository import WaterRepository

log = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """Naive datetimes are local wall-clock time."""
    return value if value.tzinfo is not None else value.astimezone()


class MonitoringService:
    """
    Stateless over the repository except for one lock that serializes
    report appends, so two submissions can never claim the same chain tail.
    """

    def __init__(
        self,
        repository: WaterRepository,
        engine: Optional[AnalyticsEngine] = None,
        ledger: Optional[ReportLedger] = None,
        settings: Optional[EngineSettings] = None
    ):
        self.repository = repository
        self.settings = settings or (engine.settings if engine else EngineSettings())
        self.engine = engine or AnalyticsEngine(self.settings)
        self.ledger = ledger or ReportLedger()
        self.predictor = DemandPredictor(self.engine)
        self._append_lock = threading.Lock()

    # ═══════════════════════════════════════════════════════════════════
    # ZONES
    # ═══════════════════════════════════════════════════════════════════
    def _recently_edited(self, zone: Zone, now: datetime) -> bool:
        if zone.last_updated is None:
            return False
        age = (_aware(now) - _aware(zone.last_updated)).total_seconds()
        return age < self.settings.manual_override_seconds

    def _enrich(self, zone: Zone, now: datetime) -> Zone:
        """Computed status and flow, unless an operator edited the zone recently."""
        if self._recently_edited(zone, now):
            log.debug(f"Zone {zone.id} has a fresh manual edit, serving stored values")
            return zone

        history = self.repository.get_zone_history(zone.id)
        return replace(
            zone,
            status=self.engine.calculate_zone_status(zone, history, now),
            flow_rate=self.engine.predict_flow_rate(zone, history, now),
        )

    def list_zones(self, now: Optional[datetime] = None) -> List[Zone]:
        now = now or datetime.now()
        return [self._enrich(z, now) for z in self.repository.get_zones()]

    def get_zone(self, zone_id: str, now: Optional[datetime] = None) -> Optional[Zone]:
        zone = self.repository.get_zone(zone_id)
        if zone is None:
            return None
        return self._enrich(zone, now or datetime.now())

    def update_zone(self, zone_id: str, updates: Dict[str, Any],
                    now: Optional[datetime] = None) -> Optional[Zone]:
        """Operator edit. Wins over computed values for the override window."""
        return self.repository.update_zone(zone_id, updates, now)

    # ═══════════════════════════════════════════════════════════════════
    # ANALYTICS
    # ═══════════════════════════════════════════════════════════════════
    def demand_predictions(self, now: Optional[datetime] = None) -> List[DemandPrediction]:
        zones = self.repository.get_zones()
        return self.predictor.predict_all(zones, self.repository.get_history_by_zone(), now)

    def anomalies(self, now: Optional[datetime] = None) -> List[AnomalyDetection]:
        return self.engine.detect_anomalies(
            self.repository.get_zones(),
            self.repository.get_history_by_zone(),
            self.repository.get_pumps(),
            now,
        )

    def schedules(self) -> List[OptimalSchedule]:
        return self.engine.generate_optimal_schedules(
            self.repository.get_zones(),
            self.repository.get_pumps(),
            self.repository.get_water_sources(),
            self.repository.get_history_by_zone(),
        )

    def equity_score(self) -> int:
        zones = [z for z in self.repository.get_zones() if z.population and z.population > 0]
        return self.engine.calculate_equity_score(zones)

    def optimization_suggestions(self) -> List[Dict[str, Any]]:
        return self.engine.suggest_optimizations(
            self.repository.get_zones(), self.repository.get_pumps()
        )

    # ═══════════════════════════════════════════════════════════════════
    # CITIZEN REPORTS
    # ═══════════════════════════════════════════════════════════════════
    def list_reports(self) -> List[CitizenReport]:
        return self.repository.get_reports()

    def get_report(self, report_id: str) -> Optional[CitizenReport]:
        return self.repository.get_report(report_id)

    def create_report(
        self,
        type: str,
        location: str,
        description: str,
        user_id: str = "",
        geo_location: Optional[Dict[str, float]] = None,
        images: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> CitizenReport:
        """
        Append a new pending report to the ledger.

        Reading the tail and inserting the sealed block happen under one
        lock; the chain has a single writer per service instance.
        """
        timestamp = now or datetime.now(timezone.utc)
        report = CitizenReport(
            id=str(uuid.uuid4()),
            type=type,
            location=location,
            description=description,
            timestamp=timestamp,
            user_id=user_id,
            status=ReportStatus.PENDING,
            geo_location=geo_location,
            images=list(images or []),
            status_history=[StatusChange(status=ReportStatus.PENDING, timestamp=timestamp)],
        )

        with self._append_lock:
            tail = self.repository.get_chain_tail()
            self.ledger.seal(report, tail)
            self.repository.insert_report(report)

        return report

    def update_report_status(
        self,
        report_id: str,
        status: Any,
        updated_by: str = "system",
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[CitizenReport]:
        """
        Move a report through its workflow. Hash, previous hash, signature
        and block number stay as sealed.

        Raises:
            ValueError: if status is not a known report status
        """
        status = status if isinstance(status, ReportStatus) else ReportStatus(status)
        change = StatusChange(
            status=status,
            timestamp=now or datetime.now(timezone.utc),
            updated_by=updated_by,
            reason=reason,
        )
        updated = self.repository.set_report_status(report_id, status, change)
        if updated is None:
            log.warning(f"Status update for unknown report {report_id}")
        return updated

    def verify_chain(self) -> ChainVerification:
        return self.ledger.verify_chain(self.repository.get_reports())

    def chain_stats(self) -> ChainStats:
        return self.ledger.get_chain_stats(self.repository.get_reports())
