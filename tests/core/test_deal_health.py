"""
Tests for the Deal Health Aggregator
Temperature mapping, role weighting, momentum windows and trend classification.
"""
import datetime as dt
import pytest

from deal_intel.config import Settings
from deal_intel.core.deal_health import (
    apply_deal_health,
    compute_deal_health,
    contact_momentum,
    deal_momentum,
    deal_temperature,
    health_trend,
    momentum_direction,
    regression_slope,
    role_weight,
)
from deal_intel.models.deal import Deal, DealHealthTrend, MomentumDirection, TemperatureEntry
from deal_intel.models.intelligence import ContactRole, RelationshipIntelligence, RoleAssignment, ScoreEntry

AS_OF = dt.datetime(2025, 3, 30, tzinfo=dt.UTC)


@pytest.fixture
def settings():
    return Settings(_env_file=None, openai_api_key="test-key")


def record(score=0, role=None, history=()):
    return RelationshipIntelligence(
        deal_id="deal-1",
        engagement_score=score,
        role_assignments=[RoleAssignment(role=role)] if role else [],
        score_history=[
            ScoreEntry(score=value, delta=0, date=AS_OF - dt.timedelta(days=days_ago), source_activity=f"a{i}")
            for i, (days_ago, value) in enumerate(history)
        ],
    )


def temperatures(*values, days_apart=1):
    start = AS_OF - dt.timedelta(days=days_apart * len(values))
    return [
        TemperatureEntry(temperature=value, recorded_at=start + dt.timedelta(days=days_apart * i))
        for i, value in enumerate(values)
    ]


class TestTemperature:

    def test_neutral_deal_is_fifty(self):
        assert deal_temperature([]) == 50
        assert deal_temperature([record(0, ContactRole.CHAMPION)]) == 50

    def test_role_weights_scale_influence(self):
        # 30 x 3 (economic buyer) + 20 x 2 (champion) = 130 -> 0.4333 -> 72
        records = [record(30, ContactRole.ECONOMIC_BUYER), record(20, ContactRole.CHAMPION)]
        assert deal_temperature(records) == 72

    def test_blocker_pulls_temperature_down(self):
        # Positive engagement from a blocker counts against the deal
        assert deal_temperature([record(30, ContactRole.BLOCKER)]) == 40

    def test_clamped_to_range(self):
        hot = [record(50, ContactRole.ECONOMIC_BUYER)] * 5
        cold = [record(-50, ContactRole.ECONOMIC_BUYER)] * 5
        assert deal_temperature(hot) == 100
        assert deal_temperature(cold) == 0

    def test_unassigned_role_is_neutral_weight(self):
        assert role_weight(record(10)) == 1.0
        assert role_weight(record(10, ContactRole.UNINVOLVED)) == 0.0


class TestMomentum:

    def test_needs_two_entries(self):
        assert contact_momentum(record(history=[(1, 10)]), AS_OF) is None

    def test_recent_gain_versus_previous_window(self):
        # Previous window: 0 -> 5 (+5); recent window: 10 -> 25 (+15)
        r = record(25, history=[(27, 0), (20, 5), (10, 10), (2, 25)])
        assert contact_momentum(r, AS_OF) == 10.0

    def test_deal_momentum_is_role_weighted(self):
        champion = record(20, ContactRole.CHAMPION, history=[(10, 0), (1, 20)])
        user = record(-10, ContactRole.USER, history=[(10, 0), (1, -10)])
        # 20 x 2 + (-10) x 1
        assert deal_momentum([champion, user], AS_OF) == 30.0

    @pytest.mark.parametrize("momentum,expected", [
        (6.0, MomentumDirection.ACCELERATING),
        (5.0, MomentumDirection.STABLE),
        (-5.0, MomentumDirection.STABLE),
        (-5.5, MomentumDirection.DECELERATING),
    ])
    def test_direction_thresholds(self, momentum, expected):
        assert momentum_direction(momentum) == expected


class TestTrend:

    def test_short_history_uses_start_versus_now(self, settings):
        history = temperatures(50, 52)
        assert health_trend(history, 60, AS_OF, settings) == DealHealthTrend.IMPROVING
        assert health_trend(history, 44, AS_OF, settings) == DealHealthTrend.DECLINING
        assert health_trend(history, 54, AS_OF, settings) == DealHealthTrend.STABLE

    def test_first_point_is_stable(self, settings):
        assert health_trend([], 80, AS_OF, settings) == DealHealthTrend.STABLE

    def test_regression_over_long_history(self, settings):
        rising = temperatures(40, 42, 44, 46, 48, 50)
        assert health_trend(rising, 52, AS_OF, settings) == DealHealthTrend.IMPROVING

        falling = temperatures(70, 68, 66, 64, 62, 60)
        assert health_trend(falling, 58, AS_OF, settings) == DealHealthTrend.DECLINING

    def test_flat_slope_is_stable(self, settings):
        flat = temperatures(50, 51, 50, 51, 50, 51)
        assert health_trend(flat, 50, AS_OF, settings) == DealHealthTrend.STABLE

    def test_regression_slope(self):
        assert regression_slope([(0, 1), (1, 3), (2, 5)]) == pytest.approx(2.0)
        assert regression_slope([(1, 1), (1, 5)]) == 0.0
        assert regression_slope([(0, 1)]) == 0.0


class TestComputeDealHealth:

    def test_builds_history_entry(self, settings):
        deal = Deal(id="deal-1", name="Acme")
        records = [record(30, ContactRole.ECONOMIC_BUYER)]

        update = compute_deal_health(deal, records, AS_OF, source_activity="act-1", settings=settings)

        assert update.temperature == 65
        assert update.entry.temperature == 65
        assert update.entry.source_activity == "act-1"
        assert update.entry.recorded_at == AS_OF
        assert update.trend == DealHealthTrend.STABLE

    def test_apply_appends_without_mutating(self, settings):
        deal = Deal(id="deal-1", name="Acme")
        update = compute_deal_health(deal, [record(10)], AS_OF, settings=settings)

        updated = apply_deal_health(deal, update)

        assert deal.deal_temperature_history == []
        assert len(updated.deal_temperature_history) == 1
        assert updated.deal_health_trend == update.trend
        assert updated.momentum_direction == update.momentum_direction
