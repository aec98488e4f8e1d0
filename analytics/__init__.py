"""
Analytics module for the water monitoring engine.
Provides zone status, flow and demand prediction, anomaly detection,
pump scheduling and equity scoring.
"""

from analytics.engine import AnalyticsEngine, get_engine, round_half_up
from analytics.predictor import DemandPredictor

__all__ = [
    "AnalyticsEngine",
    "DemandPredictor",
    "get_engine",
    "round_half_up",
]
