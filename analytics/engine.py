"""
Heuristic analytics engine for zone status, demand, anomalies, pump
schedules and distribution equity.

Every operation degrades to a documented fallback on sparse or empty input
instead of raising. A freshly commissioned zone with no history is the
common case, not an error.
"""

import logging
import math
import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from core.config import EngineSettings
from core.models import (
    AnomalyDetection, AnomalyType, DemandPoint, OptimalSchedule, Pump, PumpStatus,
    SensorReading, Severity, WaterSource, Zone, ZoneStatus,
)

log = logging.getLogger("analytics.engine")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return int(math.floor(value + 0.5))


def _recent(readings: Sequence[SensorReading], window: int) -> List[SensorReading]:
    ordered = sorted(readings, key=lambda r: r.timestamp)
    return ordered[-window:] if window > 0 else []


def _hourly_mean_flow(readings: Sequence[SensorReading]) -> Dict[int, float]:
    """Mean flow per hour of day, only for hours that have readings."""
    if not readings:
        return {}
    df = pd.DataFrame({
        'hour': [r.timestamp.hour for r in readings],
        'flow_rate': [r.flow_rate for r in readings],
    })
    means = df.groupby('hour')['flow_rate'].mean()
    return {int(hour): float(flow) for hour, flow in means.items()}


class AnalyticsEngine:
    """
    Rule-based "AI" over zone time series.

    Thresholds come from EngineSettings. The rng only drives the flow
    prediction jitter and may be any object with a random() method.
    """

    def __init__(self, settings: Optional[EngineSettings] = None, rng=None):
        self.settings = settings or EngineSettings()
        self.rng = rng if rng is not None else random.Random()

    # ─────────────────────────────────────────────────────────────────────
    # Zone status
    # ─────────────────────────────────────────────────────────────────────
    def calculate_zone_status(
        self,
        zone: Zone,
        recent_readings: Sequence[SensorReading],
        now: datetime
    ) -> ZoneStatus:
        """
        Classify a zone from its most recent readings.

        Priority: low-pressure, then high-demand (peak hours only), then
        maintenance (erratic pressure), else optimal.
        """
        s = self.settings
        window = _recent(recent_readings, s.status_window)
        if not window:
            return ZoneStatus.OPTIMAL

        pressures = np.array([r.pressure for r in window], dtype=float)
        flows = np.array([r.flow_rate for r in window], dtype=float)
        mean_pressure = float(pressures.mean())
        mean_flow = float(flows.mean())

        if mean_pressure < s.low_pressure_threshold:
            return ZoneStatus.LOW_PRESSURE

        if s.is_peak_hour(now.hour) and mean_flow > zone.flow_rate * s.high_demand_factor:
            return ZoneStatus.HIGH_DEMAND

        if float(pressures.var()) > s.maintenance_variance:
            return ZoneStatus.MAINTENANCE

        return ZoneStatus.OPTIMAL

    # ─────────────────────────────────────────────────────────────────────
    # Flow prediction
    # ─────────────────────────────────────────────────────────────────────
    def predict_flow_rate(
        self,
        zone: Zone,
        historical_readings: Sequence[SensorReading],
        now: datetime
    ) -> float:
        """
        Predict flow for the hour of `now` from same-hour history.

        Falls back to the zone's rated flow when that hour has no history.
        The result carries a +/- flow_jitter random variation.
        """
        s = self.settings
        base = _hourly_mean_flow(historical_readings).get(now.hour)
        if base is None:
            return zone.flow_rate

        population_factor = zone.population / s.population_baseline
        peak_multiplier = s.peak_multiplier if s.is_peak_hour(now.hour) else 1.0
        weekend_factor = s.weekend_factor if now.weekday() >= 5 else 1.0

        predicted = base * population_factor * peak_multiplier * weekend_factor
        jitter = (self.rng.random() - 0.5) * 2 * s.flow_jitter
        return round_half_up(predicted * (1 + jitter))

    def same_hour_samples(self, readings: Sequence[SensorReading], hour: int) -> int:
        return sum(1 for r in readings if r.timestamp.hour == hour)

    # ─────────────────────────────────────────────────────────────────────
    # Anomaly detection
    # ─────────────────────────────────────────────────────────────────────
    def detect_anomalies(
        self,
        zones: Sequence[Zone],
        history_by_zone: Dict[str, Sequence[SensorReading]],
        pumps: Sequence[Pump],
        now: Optional[datetime] = None
    ) -> List[AnomalyDetection]:
        """
        Scan each zone's recent window for leaks, excess pumping, irregular
        flow and pressure drops.

        Zones with fewer than anomaly_min_readings readings are skipped.
        A pressure drop is only reported when no leak was reported for the
        zone, so one low-pressure event is never reported twice.
        """
        s = self.settings
        detected_at = now or datetime.now()
        anomalies: List[AnomalyDetection] = []

        for zone in zones:
            history = history_by_zone.get(zone.id) or []
            if len(history) < s.anomaly_min_readings:
                log.debug(f"Skipping {zone.id}: {len(history)} readings")
                continue

            recent = _recent(history, s.anomaly_window)
            flows = np.array([r.flow_rate for r in recent], dtype=float)
            mean_pressure = float(np.mean([r.pressure for r in recent]))
            mean_flow = float(flows.mean())

            def emit(kind: AnomalyType, severity: Severity, message: str, confidence: float):
                anomalies.append(AnomalyDetection(
                    type=kind,
                    zone_id=zone.id,
                    zone_name=zone.name,
                    severity=severity,
                    message=message,
                    confidence=confidence,
                    detected_at=detected_at,
                ))

            # 1. Leak: pressure collapsed while flow rose
            pressure_collapsed = mean_pressure < s.leak_pressure_threshold
            flow_increased = mean_flow > zone.flow_rate * s.leak_flow_factor
            leak_fired = pressure_collapsed and flow_increased
            if leak_fired:
                if zone.flow_rate > 0:
                    increase = f"{round_half_up((mean_flow / zone.flow_rate - 1) * 100)}%"
                else:
                    increase = f"to {round_half_up(mean_flow)} L/h"
                emit(
                    AnomalyType.LEAK_DETECTED, Severity.CRITICAL,
                    f"Possible leak detected: Pressure at {round_half_up(mean_pressure)} PSI "
                    f"while flow increased {increase}",
                    0.85,
                )

            # 2. Excess pumping for the population served
            active = [p for p in pumps if p.zone_id == zone.id and p.status == PumpStatus.ACTIVE]
            capacity = sum(p.flow_rate for p in active)
            if capacity > zone.population * s.excess_pumping_per_capita:
                emit(
                    AnomalyType.EXCESS_PUMPING, Severity.WARNING,
                    f"Excess pumping detected: {len(active)} pumps active with "
                    f"{round_half_up(capacity)} L/h capacity for population of {zone.population}",
                    0.92,
                )

            # 3. Irregular consumption
            flow_std = float(flows.std())
            if flow_std > mean_flow * s.irregular_cv:
                emit(
                    AnomalyType.IRREGULAR_PATTERN, Severity.INFO,
                    f"Irregular consumption pattern detected. "
                    f"Standard deviation: {round_half_up(flow_std)} L/h",
                    0.75,
                )

            # 4. Low pressure not already explained by the leak check
            if mean_pressure < s.low_pressure_threshold and not leak_fired:
                emit(
                    AnomalyType.PRESSURE_DROP, Severity.WARNING,
                    f"Low pressure detected: {round_half_up(mean_pressure)} PSI "
                    f"(threshold: {s.low_pressure_threshold:g} PSI)",
                    0.88,
                )

        log.info(f"Detected {len(anomalies)} anomalies across {len(zones)} zones")
        return anomalies

    # ─────────────────────────────────────────────────────────────────────
    # Pump scheduling
    # ─────────────────────────────────────────────────────────────────────
    def predict_demand_curve(
        self,
        zone: Zone,
        historical_readings: Sequence[SensorReading]
    ) -> List[DemandPoint]:
        """Expected demand for each hour 0..23, scaled to the zone population."""
        hourly = _hourly_mean_flow(historical_readings)
        population_factor = zone.population / self.settings.population_baseline
        return [
            DemandPoint(hour=hour, demand=round_half_up(hourly.get(hour, zone.flow_rate) * population_factor))
            for hour in range(24)
        ]

    def generate_optimal_schedules(
        self,
        zones: Sequence[Zone],
        pumps: Sequence[Pump],
        sources: Sequence[WaterSource],
        history_by_zone: Dict[str, Sequence[SensorReading]]
    ) -> List[OptimalSchedule]:
        """
        Greedy per-zone, per-pump schedule recommendations.

        Pumps run across the zone's peak window when one is predicted,
        otherwise on the standard morning and evening windows. Source
        capacity and cross-zone contention are not modelled.
        """
        s = self.settings
        schedules: List[OptimalSchedule] = []
        log.debug(f"Scheduling {len(pumps)} pumps over {len(sources)} sources")

        for zone in zones:
            zone_pumps = [p for p in pumps if p.zone_id == zone.id]
            if not zone_pumps:
                continue

            curve = self.predict_demand_curve(zone, history_by_zone.get(zone.id) or [])
            peaks = [p for p in curve if p.demand > zone.flow_rate * s.peak_demand_factor]

            for pump in zone_pumps:
                if peaks:
                    first, last = peaks[0], peaks[-1]
                    schedules.append(OptimalSchedule(
                        pump_id=pump.id,
                        zone_id=zone.id,
                        start_time=f"{first.hour:02d}:00",
                        end_time=f"{last.hour:02d}:00",
                        flow_rate=round_half_up(first.demand / len(zone_pumps)),
                        reason=f"Peak demand predicted: {first.demand} L/h for {zone.name} "
                               f"(Population: {zone.population})",
                    ))
                else:
                    schedules.append(OptimalSchedule(
                        pump_id=pump.id,
                        zone_id=zone.id,
                        start_time="06:00",
                        end_time="09:00",
                        flow_rate=pump.flow_rate,
                        reason=f"Standard morning supply for {zone.name}",
                    ))
                    schedules.append(OptimalSchedule(
                        pump_id=pump.id,
                        zone_id=zone.id,
                        start_time="18:00",
                        end_time="21:00",
                        flow_rate=pump.flow_rate,
                        reason=f"Standard evening supply for {zone.name}",
                    ))

        return schedules

    # ─────────────────────────────────────────────────────────────────────
    # Equity
    # ─────────────────────────────────────────────────────────────────────
    def calculate_equity_score(self, zones: Sequence[Zone]) -> int:
        """
        0-100 score of how evenly flow is spread per capita.

        100 - coefficient_of_variation * 100, floored at 0. No zones, or a
        zero mean per-capita flow, score 100.
        """
        served = [z for z in zones if z.population and z.population > 0]
        if len(served) < len(zones):
            log.debug(f"Excluded {len(zones) - len(served)} zones without population")
        if not served:
            return 100

        per_capita = np.array([z.flow_rate / (z.population / 1000) for z in served], dtype=float)
        mean = float(per_capita.mean())
        if mean == 0:
            return 100

        cv = float(per_capita.std()) / mean
        return round_half_up(max(0.0, 100 - cv * 100))

    # ─────────────────────────────────────────────────────────────────────
    # Suggestions
    # ─────────────────────────────────────────────────────────────────────
    def suggest_optimizations(self, zones: Sequence[Zone], pumps: Sequence[Pump]) -> List[Dict[str, Any]]:
        """Pumping adjustments for zones whose stored pressure is low."""
        suggestions = []
        for zone in zones:
            if zone.pressure < self.settings.suggestion_pressure_threshold:
                suggestions.append({
                    'type': 'schedule-adjustment',
                    'priority': 'high',
                    'zone': zone.name,
                    'message': f"Increase pumping capacity in {zone.name} by 20% "
                               f"to address low pressure",
                    'affectedPumps': [p.id for p in pumps if p.zone_id == zone.id],
                })
        return suggestions


def get_engine(settings: Optional[EngineSettings] = None, rng=None) -> AnalyticsEngine:
    """Factory function for the analytics engine."""
    return AnalyticsEngine(settings=settings, rng=rng)
