"""
Deal Health Aggregator
Combines every contact's relationship intelligence on a deal into temperature,
momentum and trend indicators.
"""
import datetime as dt
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from deal_intel.config import Settings, get_settings
from deal_intel.models.base import as_utc
from deal_intel.models.deal import Deal, DealHealthTrend, MomentumDirection, TemperatureEntry
from deal_intel.models.intelligence import ContactRole, RelationshipIntelligence, ScoreEntry

ROLE_WEIGHTS: Dict[ContactRole, float] = {
    ContactRole.ECONOMIC_BUYER: 3.0,
    ContactRole.CHAMPION: 2.0,
    ContactRole.INFLUENCER: 1.5,
    ContactRole.USER: 1.0,
    ContactRole.DECISION_MAKER: 1.0,
    ContactRole.BLOCKER: -2.0,
    ContactRole.OTHER: 0.5,
    ContactRole.UNINVOLVED: 0.0,
}

# Contacts without any role assignment count at neutral weight
DEFAULT_ROLE_WEIGHT = 1.0

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class DealHealthUpdate:
    temperature: int
    momentum: float
    momentum_direction: MomentumDirection
    trend: DealHealthTrend
    entry: TemperatureEntry


def role_weight(record: RelationshipIntelligence) -> float:
    role = record.current_role
    if role is None:
        return DEFAULT_ROLE_WEIGHT
    return ROLE_WEIGHTS.get(role, DEFAULT_ROLE_WEIGHT)


def weighted_influence(records: Iterable[RelationshipIntelligence]) -> float:
    """Sum of engagement_score x role weight across contacts."""
    return sum(record.engagement_score * role_weight(record) for record in records)


def deal_temperature(records: Iterable[RelationshipIntelligence], cap: float = 300.0) -> int:
    """
    Map weighted influence onto 0..100.

    Influence is scaled by `cap` and clamped to [-1, 1] first, so 50 is neutral.
    """
    influence = weighted_influence(records)
    normalized = max(-1.0, min(1.0, influence / cap))
    return round((normalized + 1) * 50)


def _score_change(history: Sequence[ScoreEntry]) -> int:
    if len(history) < 2:
        return 0
    ordered = sorted(history, key=lambda entry: as_utc(entry.date))
    return ordered[-1].score - ordered[0].score


def contact_momentum(
    record: RelationshipIntelligence,
    as_of: dt.datetime,
    window_days: int = 14,
) -> Optional[float]:
    """
    Score change over the last window minus change over the window before it.
    None when the contact has fewer than two score entries.
    """
    if len(record.score_history) < 2:
        return None

    as_of = as_utc(as_of)
    recent_start = as_of - dt.timedelta(days=window_days)
    previous_start = as_of - dt.timedelta(days=window_days * 2)

    recent = [e for e in record.score_history if as_utc(e.date) > recent_start]
    previous = [e for e in record.score_history if previous_start < as_utc(e.date) <= recent_start]

    return float(_score_change(recent) - _score_change(previous))


def deal_momentum(
    records: Iterable[RelationshipIntelligence],
    as_of: dt.datetime,
    window_days: int = 14,
) -> float:
    total = 0.0
    for record in records:
        momentum = contact_momentum(record, as_of, window_days)
        if momentum is None:
            continue
        total += momentum * role_weight(record)
    return total


def momentum_direction(momentum: float, threshold: float = 5.0) -> MomentumDirection:
    if momentum > threshold:
        return MomentumDirection.ACCELERATING
    if momentum < -threshold:
        return MomentumDirection.DECELERATING
    return MomentumDirection.STABLE


def _classify(value: float, threshold: float) -> Optional[DealHealthTrend]:
    if value > threshold:
        return DealHealthTrend.IMPROVING
    if value < -threshold:
        return DealHealthTrend.DECLINING
    return None


def regression_slope(points: Sequence[Tuple[float, float]]) -> float:
    """Least-squares slope of y over x; 0 when x has no spread."""
    if len(points) < 2:
        return 0.0
    x_mean = sum(x for x, _ in points) / len(points)
    y_mean = sum(y for _, y in points) / len(points)
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in points)
    denominator = sum((x - x_mean) ** 2 for x, _ in points)
    return 0.0 if denominator == 0 else numerator / denominator


def health_trend(
    history: Sequence[TemperatureEntry],
    current_temperature: int,
    as_of: dt.datetime,
    settings: Settings | None = None,
) -> DealHealthTrend:
    """
    Direction of the temperature series including the new point.

    With fewer than `trend_min_points` points, compare first vs current against
    the delta threshold. Otherwise regress temperature over days across the last
    `trend_window_size` points and fall back to the window delta when the slope
    is inconclusive.
    """
    settings = settings or get_settings()
    series: List[Tuple[dt.datetime, float]] = [
        (as_utc(entry.recorded_at), float(entry.temperature)) for entry in history
    ]
    series.append((as_utc(as_of), float(current_temperature)))

    if len(series) < settings.trend_min_points:
        delta = current_temperature - series[0][1]
        return _classify(delta, settings.trend_delta_threshold) or DealHealthTrend.STABLE

    window = series[-settings.trend_window_size:]
    start = window[0][0]
    points = [((when - start).total_seconds() / _SECONDS_PER_DAY, value) for when, value in window]

    slope = regression_slope(points)
    by_slope = _classify(slope, settings.trend_slope_threshold)
    if by_slope is not None:
        return by_slope

    delta = window[-1][1] - window[0][1]
    return _classify(delta, settings.trend_delta_threshold) or DealHealthTrend.STABLE


def compute_deal_health(
    deal: Deal,
    records: Sequence[RelationshipIntelligence],
    as_of: dt.datetime,
    source_activity: Optional[str] = None,
    settings: Settings | None = None,
) -> DealHealthUpdate:
    """
    Temperature, momentum and trend for a deal given all of its contacts' records.

    Args:
        deal: The deal (its temperature history feeds the trend)
        records: Current relationship intelligence of every contact on the deal
        as_of: Reference time, normally the activity date
        source_activity: Activity id recorded on the new history entry
    """
    settings = settings or get_settings()

    temperature = deal_temperature(records, settings.temperature_normalization_cap)
    momentum = deal_momentum(records, as_of, settings.momentum_window_days)
    direction = momentum_direction(momentum, settings.momentum_threshold)
    trend = health_trend(deal.deal_temperature_history, temperature, as_of, settings)

    logger.info(
        f"🌡️ Deal {deal.id}: temperature={temperature}, momentum={momentum:.1f} "
        f"({direction}), trend={trend}"
    )

    return DealHealthUpdate(
        temperature=temperature,
        momentum=momentum,
        momentum_direction=direction,
        trend=trend,
        entry=TemperatureEntry(
            temperature=temperature,
            momentum=momentum,
            trend=trend,
            recorded_at=as_of,
            source_activity=source_activity,
        ),
    )


def apply_deal_health(deal: Deal, update: DealHealthUpdate) -> Deal:
    return deal.model_copy(update={
        "deal_temperature_history": [*deal.deal_temperature_history, update.entry],
        "deal_health_trend": update.trend,
        "momentum_direction": update.momentum_direction,
    })
