"""
Short-horizon demand predictions per zone.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np

from analytics.engine import AnalyticsEngine
from core.models import DemandPrediction, SensorReading, Zone

log = logging.getLogger("analytics.predictor")


class DemandPredictor:
    """
    Predict each zone's demand over the next few hours.

    The prediction is the mean of the engine's flow prediction for each
    upcoming hour. Confidence grows with the amount of same-hour history:

        confidence = 0.75 + 0.2 * min(1, samples / FULL_CONFIDENCE_SAMPLES)

    so it always lies in [0.75, 0.95].
    """

    BASE_CONFIDENCE = 0.75
    CONFIDENCE_RANGE = 0.2
    FULL_CONFIDENCE_SAMPLES = 10

    def __init__(self, engine: Optional[AnalyticsEngine] = None):
        self.engine = engine or AnalyticsEngine()

    @property
    def horizon_hours(self) -> int:
        return self.engine.settings.prediction_horizon_hours

    def predict_zone(
        self,
        zone: Zone,
        history: Sequence[SensorReading],
        now: datetime
    ) -> DemandPrediction:
        horizon = max(1, self.horizon_hours)
        targets = [now + timedelta(hours=h) for h in range(1, horizon + 1)]

        predictions = [self.engine.predict_flow_rate(zone, history, t) for t in targets]
        samples = min(self.engine.same_hour_samples(history, t.hour) for t in targets)
        coverage = min(1.0, samples / self.FULL_CONFIDENCE_SAMPLES)

        return DemandPrediction(
            zone_id=zone.id,
            zone_name=zone.name,
            predicted_demand=round(float(np.mean(predictions)), 1),
            confidence=round(self.BASE_CONFIDENCE + self.CONFIDENCE_RANGE * coverage, 3),
            time_window=f"Next {horizon} hours",
        )

    def predict_all(
        self,
        zones: Sequence[Zone],
        history_by_zone: Dict[str, Sequence[SensorReading]],
        now: Optional[datetime] = None
    ) -> List[DemandPrediction]:
        now = now or datetime.now()
        results = [self.predict_zone(z, history_by_zone.get(z.id) or [], now) for z in zones]
        log.info(f"Predicted demand for {len(results)} zones")
        return results
