"""
Core module for the water monitoring engine.
Contains data models, settings, the report ledger and storage backends.

The service facade lives in core.service and is imported from there.
"""

from core.models import (
    Zone, SensorReading, Pump, WaterSource, CitizenReport, StatusChange,
    ZoneStatus, PumpStatus, SourceStatus, ReportStatus, AnomalyType, Severity,
    AnomalyDetection, OptimalSchedule, DemandPoint, DemandPrediction,
    ChainVerification, ChainStats,
)
from core.config import EngineSettings, get_settings
from core.ledger import ReportLedger, get_ledger
from core.repository import WaterRepository, InMemoryRepository
from core.sqlite_repository import SQLiteRepository

__all__ = [
    # Records
    "Zone",
    "SensorReading",
    "Pump",
    "WaterSource",
    "CitizenReport",
    "StatusChange",
    "ZoneStatus",
    "PumpStatus",
    "SourceStatus",
    "ReportStatus",
    "AnomalyType",
    "Severity",
    "AnomalyDetection",
    "OptimalSchedule",
    "DemandPoint",
    "DemandPrediction",
    "ChainVerification",
    "ChainStats",
    # Settings
    "EngineSettings",
    "get_settings",
    # Ledger and storage
    "ReportLedger",
    "get_ledger",
    "WaterRepository",
    "InMemoryRepository",
    "SQLiteRepository",
]
