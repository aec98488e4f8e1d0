"""
Core data models for the water monitoring engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ZoneStatus(Enum):
    """Operational status of a distribution zone."""
    OPTIMAL = "optimal"
    LOW_PRESSURE = "low-pressure"
    HIGH_DEMAND = "high-demand"
    MAINTENANCE = "maintenance"


class PumpStatus(Enum):
    ACTIVE = "active"
    IDLE = "idle"
    MAINTENANCE = "maintenance"


class SourceStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class ReportStatus(Enum):
    """Workflow status of a citizen report. Not part of the ledger hash."""
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class AnomalyType(Enum):
    EXCESS_PUMPING = "excess_pumping"
    LEAK_DETECTED = "leak_detected"
    PRESSURE_DROP = "pressure_drop"
    IRREGULAR_PATTERN = "irregular_pattern"


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Zone:
    """
    A distribution zone served by one or more pumps.

    flow_rate is in L/h and pressure in PSI. population must be positive
    for per-capita calculations.
    """
    id: str
    name: str
    status: ZoneStatus
    flow_rate: float
    pressure: float
    population: int = 50000
    last_updated: Optional[datetime] = None
    lat: float = 0.0
    lng: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status.value,
            'flowRate': self.flow_rate,
            'pressure': self.pressure,
            'population': self.population,
            'lastUpdated': _iso(self.last_updated),
            'lat': self.lat,
            'lng': self.lng,
        }


@dataclass
class SensorReading:
    """A single historical data point for a zone."""
    zone_id: str
    timestamp: datetime
    flow_rate: float
    pressure: float
    consumption: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'zoneId': self.zone_id,
            'timestamp': _iso(self.timestamp),
            'flowRate': self.flow_rate,
            'pressure': self.pressure,
            'consumption': self.consumption,
        }


@dataclass
class Pump:
    id: str
    zone_id: str
    source_id: str
    status: PumpStatus
    schedule: str
    flow_rate: float
    last_maintenance: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'zoneId': self.zone_id,
            'sourceId': self.source_id,
            'status': self.status.value,
            'schedule': self.schedule,
            'flowRate': self.flow_rate,
            'lastMaintenance': _iso(self.last_maintenance),
        }


@dataclass
class WaterSource:
    """A river, lake, borewell or reservoir feeding the network."""
    id: str
    name: str
    type: str  # "river", "lake", "borewell", "reservoir"
    location: str
    lat: float
    lng: float
    capacity: float
    current_level: float
    quality: str  # "excellent", "good", "fair", "poor"
    status: SourceStatus = SourceStatus.ACTIVE
    last_tested: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'location': self.location,
            'geoLocation': {'lat': self.lat, 'lng': self.lng},
            'capacity': self.capacity,
            'currentLevel': self.current_level,
            'quality': self.quality,
            'status': self.status.value,
            'lastTested': _iso(self.last_tested),
        }


@dataclass
class AnomalyDetection:
    """
    Result of an anomaly detection pass.
    Created fresh on every pass and never persisted by the engine.
    """
    type: AnomalyType
    zone_id: str
    zone_name: str
    severity: Severity
    message: str
    confidence: float  # 0.0 to 1.0
    detected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'zoneId': self.zone_id,
            'zoneName': self.zone_name,
            'severity': self.severity.value,
            'message': self.message,
            'confidence': self.confidence,
            'detectedAt': _iso(self.detected_at),
        }


@dataclass
class OptimalSchedule:
    """A recommended pump run window. Recomputed on demand."""
    pump_id: str
    zone_id: str
    start_time: str  # "HH:00"
    end_time: str
    flow_rate: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pumpId': self.pump_id,
            'zoneId': self.zone_id,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'flowRate': self.flow_rate,
            'reason': self.reason,
        }


@dataclass
class DemandPoint:
    hour: int
    demand: int


@dataclass
class DemandPrediction:
    zone_id: str
    zone_name: str
    predicted_demand: float
    confidence: float
    time_window: str = "Next 2 hours"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'zoneId': self.zone_id,
            'zoneName': self.zone_name,
            'predictedDemand': self.predicted_demand,
            'confidence': self.confidence,
            'timeWindow': self.time_window,
        }


@dataclass
class StatusChange:
    """One entry of a report's status history."""
    status: ReportStatus
    timestamp: datetime
    updated_by: str = "system"
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'timestamp': _iso(self.timestamp),
            'updatedBy': self.updated_by,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusChange":
        return cls(
            status=ReportStatus(data['status']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            updated_by=data.get('updatedBy', 'system'),
            reason=data.get('reason'),
        )


@dataclass
class CitizenReport:
    """
    A citizen-submitted issue report, sealed into the report ledger.

    report_hash covers id, type, location, description, timestamp and
    previous_hash only. status and status_history change freely.
    """
    id: str
    type: str
    location: str
    description: str
    timestamp: datetime
    user_id: str = ""
    status: ReportStatus = ReportStatus.PENDING
    geo_location: Optional[Dict[str, float]] = None
    images: List[str] = field(default_factory=list)
    report_hash: str = ""
    previous_hash: str = "0"
    block_number: int = 0
    signature: str = ""
    status_history: List[StatusChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'location': self.location,
            'geoLocation': self.geo_location,
            'description': self.description,
            'userId': self.user_id,
            'status': self.status.value,
            'timestamp': _iso(self.timestamp),
            'images': self.images,
            'reportHash': self.report_hash,
            'previousHash': self.previous_hash,
            'blockNumber': self.block_number,
            'signature': self.signature,
            'statusHistory': [s.to_dict() for s in self.status_history],
        }


@dataclass
class ChainVerification:
    """Outcome of a ledger verification. invalid_block is the first bad block."""
    valid: bool
    invalid_block: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'valid': self.valid}
        if self.invalid_block is not None:
            result['invalidBlock'] = self.invalid_block
        return result


@dataclass
class ChainStats:
    total_blocks: int
    is_valid: bool
    invalid_block: Optional[int]
    genesis_hash: Optional[str]
    latest_hash: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalBlocks': self.total_blocks,
            'isValid': self.is_valid,
            'invalidBlock': self.invalid_block,
            'genesisHash': self.genesis_hash,
            'latestHash': self.latest_hash,
        }
