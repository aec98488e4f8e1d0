"""Tests for the distribution equity score."""

import pytest
from analytics.engine import AnalyticsEngine
from core.models import Zone, ZoneStatus


def make_zone(zone_id, flow_rate, population):
    return Zone(id=zone_id, name=zone_id, status=ZoneStatus.OPTIMAL,
                flow_rate=flow_rate, pressure=50, population=population)


@pytest.fixture
def engine():
    return AnalyticsEngine()


def test_two_zones_uneven(engine):
    # per capita 1000 and 500: cv = 250 / 750
    zones = [make_zone("A", 1000, 1000), make_zone("B", 1000, 2000)]
    assert engine.calculate_equity_score(zones) == 67


def test_identical_per_capita_is_perfect(engine):
    zones = [make_zone("A", 1000, 10000), make_zone("B", 2000, 20000), make_zone("C", 500, 5000)]
    assert engine.calculate_equity_score(zones) == 100


def test_no_zones(engine):
    assert engine.calculate_equity_score([]) == 100


def test_zero_flow_everywhere(engine):
    zones = [make_zone("A", 0, 1000), make_zone("B", 0, 2000)]
    assert engine.calculate_equity_score(zones) == 100


def test_floored_at_zero(engine):
    zones = [make_zone("A", 1000, 1000), make_zone("B", 0, 1000),
             make_zone("C", 0, 1000), make_zone("D", 0, 1000)]
    assert engine.calculate_equity_score(zones) == 0


def test_unpopulated_zones_excluded(engine):
    zones = [make_zone("A", 1000, 1000), make_zone("B", 1000, 2000), make_zone("C", 9999, 0)]
    assert engine.calculate_equity_score(zones) == 67


@pytest.mark.parametrize("zones", [
    [make_zone("A", 1000, 1000)],
    [make_zone("A", 1000, 1000), make_zone("B", 3000, 1000)],
    [make_zone("A", 10, 100), make_zone("B", 5000, 300), make_zone("C", 70, 9000)],
])
def test_score_in_range(engine, zones):
    assert 0 <= engine.calculate_equity_score(zones) <= 100
