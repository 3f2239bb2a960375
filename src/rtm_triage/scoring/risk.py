"""
Risk scoring for clinical alerts.

Combines three signal components with the rule severity:

    risk_score = clamp(0, 10, (w_v * vitals + w_t * trend + w_a * adherence)
                              * severity_multiplier / sum(w))

Every component is clamped to [0, 10]. The scorer is a pure function of
its inputs; it never reads the clock or any storage.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from rtm_triage.core.config.manager import ScoringConfig
from rtm_triage.core.models import (
    Alert,
    MedicationAdherence,
    MetricDefinition,
    Observation,
    RiskScoreResult,
    Severity,
    WorseningDirection,
)

MAX_COMPONENT = 10.0
SECONDS_PER_DAY = 86400.0

# Labels used by the triage queue
RISK_LEVELS = (
    (8.0, "critical"),
    (6.0, "high"),
    (4.0, "medium"),
)


def clamp(value: float, low: float = 0.0, high: float = MAX_COMPONENT) -> float:
    return max(low, min(high, value))


def risk_level(score: float) -> str:
    """Human-facing risk band for a score."""
    for threshold, label in RISK_LEVELS:
        if score >= threshold:
            return label
    return "low"


def least_squares_slope(points: Sequence[Tuple[float, float]]) -> Optional[float]:
    """Slope of the least-squares line through (x, y) points.

    Returns None when the x values do not vary.
    """
    n = len(points)
    if n < 2:
        return None
    mean_x = sum(x for x, _ in points) / n
    mean_y = sum(y for _, y in points) / n
    sxx = sum((x - mean_x) ** 2 for x, _ in points)
    if sxx == 0:
        return None
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in points)
    return sxy / sxx


class RiskScorer:
    """Pure risk scoring over extracted signals."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()
        self.logger = logging.getLogger(__name__)
        self._metrics: Dict[str, MetricDefinition] = {
            metric_id: MetricDefinition(metric_id=metric_id, **definition)
            for metric_id, definition in self.config.metrics.items()
        }

    def vitals_deviation(self, value: float, metric: MetricDefinition) -> float:
        """Saturating distance of a value from the metric's normal range."""
        low, high = metric.normal_min, metric.normal_max
        if low <= value <= high:
            return 0.0

        bound = low if value < low else high
        # Relative to the violated bound; fall back to the range width near zero
        scale = abs(bound) or (high - low) or 1.0
        relative = abs(value - bound) / scale
        deviation = MAX_COMPONENT * (1.0 - math.exp(-self.config.deviation_steepness * relative))
        return clamp(deviation)

    def trend_velocity(
        self, observations: Sequence[Observation], metric: Optional[MetricDefinition]
    ) -> Optional[float]:
        """Worsening rate of change over the most recent readings.

        Returns None when there are too few readings to estimate a trend.
        """
        recent = list(observations)[-self.config.trend_window:]
        if len(recent) < self.config.trend_min_points:
            return None

        origin = recent[0].recorded_at
        points = [
            ((o.recorded_at - origin).total_seconds() / SECONDS_PER_DAY, o.value)
            for o in recent
        ]
        slope = least_squares_slope(points)
        if slope is None:
            return None

        direction = self._worsening_sign(recent[-1].value, metric)
        scale = self.config.default_trend_scale
        if metric is not None and metric.trend_scale:
            scale = metric.trend_scale
        return clamp(direction * slope * scale)

    def _worsening_sign(self, latest: float, metric: Optional[MetricDefinition]) -> float:
        if metric is None or metric.worsening_direction == WorseningDirection.UP:
            return 1.0
        if metric.worsening_direction == WorseningDirection.DOWN:
            return -1.0
        if not metric.has_normal_range:
            return 1.0
        midpoint = (metric.normal_min + metric.normal_max) / 2.0
        return 1.0 if latest >= midpoint else -1.0

    def adherence_penalty(self, adherence: Sequence[MedicationAdherence]) -> Optional[float]:
        """Inverse of mean adherence; None when there is no adherence evidence."""
        if not adherence:
            return None
        mean = sum(a.adherence_score for a in adherence) / len(adherence)
        return clamp(MAX_COMPONENT * (1.0 - mean))

    def severity_multiplier(self, severity) -> float:
        multipliers = self.config.severity_multipliers
        key = severity.value if isinstance(severity, Severity) else str(severity).upper()
        if key in multipliers:
            return multipliers[key]
        fallback = min(multipliers.values())
        self.logger.warning(
            f"Unknown severity {severity!r}, using minimal multiplier {fallback}"
        )
        return fallback

    def _latest_value(
        self, alert: Alert, observations: Sequence[Observation]
    ) -> Optional[float]:
        if observations:
            return observations[-1].value
        value = alert.context.get("value")
        if isinstance(value, dict):
            value = value.get("value")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def compute_risk_score(
        self,
        alert: Alert,
        observations: Sequence[Observation],
        adherence: Sequence[MedicationAdherence],
        metric: Optional[MetricDefinition] = None,
    ) -> RiskScoreResult:
        """Compute the composite risk score for an alert.

        Args:
            alert: Alert being scored (severity, metric and context are used)
            observations: Observation series, oldest first
            adherence: Adherence series, oldest first
            metric: Metric definition; looked up in configuration when omitted

        Returns:
            RiskScoreResult with the score, its components and the signals
            that were unavailable
        """
        if metric is None and alert.metric_id:
            metric = self._metrics.get(alert.metric_id)
        observations = sorted(observations, key=lambda o: o.recorded_at)
        missing: List[str] = []

        vitals = 0.0
        latest = self._latest_value(alert, observations)
        if latest is None:
            missing.append("observation_value")
        elif metric is None or not metric.has_normal_range:
            missing.append("normal_range")
        else:
            vitals = self.vitals_deviation(latest, metric)

        trend = self.trend_velocity(observations, metric)
        if trend is None:
            missing.append("trend")
            trend = 0.0

        penalty = self.adherence_penalty(adherence)
        if penalty is None:
            missing.append("adherence")
            penalty = 0.0

        multiplier = self.severity_multiplier(alert.severity)
        weights = self.config.weights
        weighted = (
            weights["vitals_deviation"] * vitals
            + weights["trend_velocity"] * trend
            + weights["adherence_penalty"] * penalty
        )
        score = clamp(weighted * multiplier / self.config.normalizer)

        return RiskScoreResult(
            risk_score=round(score, 2),
            components={
                "vitals_deviation": round(vitals, 2),
                "trend_velocity": round(trend, 2),
                "adherence_penalty": round(penalty, 2),
                "severity_multiplier": multiplier,
            },
            missing_signals=missing,
        )
