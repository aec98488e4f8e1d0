"""
Engine Settings

Every threshold used by the analytics engine and the service layer lives
here with an explicit meaning. A few values can be overridden from the
environment for deployments.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

log = logging.getLogger(__name__)


@dataclass
class EngineSettings:
    """
    All configurable settings for the monitoring engine.

    Pressures are in PSI, flows in L/h, hours in local time.
    """

    # Observation windows
    status_window: int = 12
    """How many of the most recent readings decide a zone's status."""

    anomaly_window: int = 20
    """How many of the most recent readings are scanned for anomalies."""

    anomaly_min_readings: int = 10
    """Zones with fewer readings than this are skipped by anomaly detection."""

    # Pressure thresholds
    low_pressure_threshold: float = 38.0
    """Mean pressure below this marks a zone low-pressure."""

    leak_pressure_threshold: float = 35.0
    """Mean pressure below this, with raised flow, suggests a leak."""

    maintenance_variance: float = 100.0
    """Pressure variance above this suggests erratic equipment."""

    suggestion_pressure_threshold: float = 40.0
    """Stored zone pressure below this triggers a pumping suggestion."""

    # Flow thresholds
    high_demand_factor: float = 1.3
    """Peak-hour mean flow above rated flow times this is high demand."""

    leak_flow_factor: float = 1.2
    """Mean flow above rated flow times this counts as raised flow."""

    irregular_cv: float = 0.5
    """Flow standard deviation above mean flow times this is irregular."""

    excess_pumping_per_capita: float = 2.0
    """Active pump capacity above population times this is excessive."""

    peak_demand_factor: float = 1.2
    """Hourly demand above rated flow times this is a peak period."""

    # Demand model
    population_baseline: int = 50000
    """Population that the historical flow figures are normalised to."""

    peak_multiplier: float = 1.4
    weekend_factor: float = 0.85

    flow_jitter: float = 0.05
    """Symmetric jitter amplitude on predicted flow (0.05 means +/-5%)."""

    peak_hours: Tuple[Tuple[int, int], ...] = ((6, 9), (18, 21))
    """Inclusive (start, end) hour windows treated as peak demand."""

    prediction_horizon_hours: int = 2

    # Service behaviour
    manual_override_seconds: float = 300.0
    """Manual zone edits newer than this are served instead of computed values."""

    db_path: str = "hydrowatch.db"
    log_level: str = "INFO"

    def is_peak_hour(self, hour: int) -> bool:
        return any(start <= hour <= end for start, end in self.peak_hours)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings, applying HYDRO_* environment overrides."""
        settings = cls()
        settings.db_path = os.getenv("HYDRO_DB_PATH", settings.db_path)
        settings.log_level = os.getenv("HYDRO_LOG_LEVEL", settings.log_level).upper()

        jitter = _float_env("HYDRO_FLOW_JITTER")
        if jitter is not None:
            settings.flow_jitter = jitter

        override = _float_env("HYDRO_OVERRIDE_SECONDS")
        if override is not None:
            settings.manual_override_seconds = override

        return settings


def _float_env(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        log.warning(f"Ignoring {name}={raw!r}: not a number")
        return None


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings
