"""Tests for per-zone demand predictions."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from analytics.engine import AnalyticsEngine
from analytics.predictor import DemandPredictor
from core.config import EngineSettings
from core.models import SensorReading, Zone, ZoneStatus

NOW = datetime(2024, 5, 6, 10, 0)  # Monday, targets 11:00 and 12:00


def make_zone(zone_id="Z1", flow_rate=1000):
    return Zone(id=zone_id, name=f"Zone {zone_id}", status=ZoneStatus.OPTIMAL,
                flow_rate=flow_rate, pressure=50)


def history_at(hour, flow, days, zone_id="Z1"):
    return [
        SensorReading(zone_id=zone_id, timestamp=NOW.replace(hour=hour) - timedelta(days=d + 1),
                      flow_rate=flow, pressure=50)
        for d in range(days)
    ]


@pytest.fixture
def predictor():
    rng = MagicMock()
    rng.random.return_value = 0.5
    return DemandPredictor(AnalyticsEngine(rng=rng))


def test_no_history_uses_rated_flow_with_base_confidence(predictor):
    prediction = predictor.predict_zone(make_zone(flow_rate=1800), [], NOW)
    assert prediction.predicted_demand == 1800
    assert prediction.confidence == 0.75
    assert prediction.time_window == "Next 2 hours"


def test_mean_of_next_hours(predictor):
    history = history_at(11, 1000, 3) + history_at(12, 2000, 3)
    prediction = predictor.predict_zone(make_zone(), history, NOW)
    assert prediction.predicted_demand == 1500


def test_confidence_grows_with_samples(predictor):
    history = history_at(11, 1000, 5) + history_at(12, 1000, 5)
    assert predictor.predict_zone(make_zone(), history, NOW).confidence == 0.85


def test_confidence_capped(predictor):
    history = history_at(11, 1000, 30) + history_at(12, 1000, 30)
    assert predictor.predict_zone(make_zone(), history, NOW).confidence == 0.95


def test_confidence_limited_by_sparsest_hour(predictor):
    history = history_at(11, 1000, 10) + history_at(12, 1000, 2)
    assert predictor.predict_zone(make_zone(), history, NOW).confidence == 0.79


def test_confidence_deterministic(predictor):
    history = history_at(11, 1000, 4) + history_at(12, 1000, 4)
    first = predictor.predict_zone(make_zone(), history, NOW).confidence
    assert all(predictor.predict_zone(make_zone(), history, NOW).confidence == first for _ in range(5))


def test_horizon_from_settings():
    engine = AnalyticsEngine(settings=EngineSettings(prediction_horizon_hours=3, flow_jitter=0.0))
    prediction = DemandPredictor(engine).predict_zone(make_zone(), [], NOW)
    assert prediction.time_window == "Next 3 hours"


def test_predict_all_keeps_zone_order(predictor):
    zones = [make_zone("Z2"), make_zone("Z1")]
    history = {"Z1": history_at(11, 1000, 3, zone_id="Z1")}
    predictions = predictor.predict_all(zones, history, NOW)
    assert [p.zone_id for p in predictions] == ["Z2", "Z1"]
    assert predictions[0].to_dict()["zoneName"] == "Zone Z2"


def test_predict_all_empty(predictor):
    assert predictor.predict_all([], {}, NOW) == []
