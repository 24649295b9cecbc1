#!/usr/bin/env python3
"""
Risk classification and maintenance suggestions.

The composite score gives the base risk (>=75 low, 60-74 medium, <60 high).
The level is escalated once when a metric is critical or declining, or when
the window's alarm count exceeds the configured threshold. Suggestions are a
deterministic, ordered list driven by which metrics are degraded.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple, Union

import structlog

from Equipment_Monitor.AI_MODULES.assessment_models import (
    AssessmentSettings, MetricContribution, RiskLevel, Trend
)
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType

logger = structlog.get_logger(__name__)

LOW_RISK_FLOOR = 75.0
MEDIUM_RISK_FLOOR = 60.0

METRIC_SUGGESTIONS: Dict[MetricType, str] = {
    MetricType.TEMPERATURE: "Inspect the cooling system and heat dissipation paths",
    MetricType.PRESSURE: "Inspect the pressure circuit for leaks, blocked filters or faulty regulators",
    MetricType.HUMIDITY: "Check enclosure sealing and ventilation to bring humidity back into range",
    MetricType.VIBRATION: "Check mounting fixtures, shaft alignment and bearing condition",
    MetricType.SPEED: "Verify drive control settings and inspect the transmission for slip",
    MetricType.CURRENT: "Inspect windings and connected load for overcurrent or phase imbalance",
    MetricType.VOLTAGE: "Check the supply bus, cabling and terminals for voltage deviation",
    MetricType.POWER: "Review the load profile; power draw is outside the expected envelope",
    MetricType.FREQUENCY: "Check the generator governor and bus frequency regulation",
}

ALARM_SUGGESTION = "Alarms are frequent in this window; schedule a full inspection and resolve critical alarms first"
NO_DATA_SUGGESTION = "No valid monitoring data in this window; verify sensor connectivity and data ingestion"
POOR_SUGGESTION = "Overall health is poor; schedule maintenance as soon as possible"
FAIR_SUGGESTION = "Overall health is fair; increase inspection frequency and plan preventive maintenance"
ROUTINE_SUGGESTION = "Equipment is operating normally; continue routine maintenance"


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    suggestions: Tuple[str, ...]
    escalated: bool = False
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'risk_level': self.risk_level.value,
            'suggestions': list(self.suggestions),
            'escalated': self.escalated,
            'reasons': list(self.reasons),
        }


def base_risk_level(score: float) -> RiskLevel:
    """Risk band for a composite score, mirroring the health-level bands."""
    if score >= LOW_RISK_FLOOR:
        return RiskLevel.LOW
    if score >= MEDIUM_RISK_FLOOR:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


@dataclass(frozen=True)
class RiskClassifier:
    settings: AssessmentSettings = field(default_factory=AssessmentSettings)

    def is_critical(self, contribution: MetricContribution) -> bool:
        return contribution.score < self.settings.critical_score_threshold

    def is_degraded(self, contribution: MetricContribution) -> bool:
        return (contribution.score < self.settings.degraded_score_threshold
                or contribution.trend is Trend.DECLINING)

    def classify_risk(self,
                      score: float,
                      contributions: Mapping[Union[MetricType, str], MetricContribution],
                      alarm_count: float) -> RiskAssessment:
        """
        Derive the risk level and ordered suggestions.

        Args:
            score: Composite health score (0-100).
            contributions: Per-metric contributions of the same assessment.
            alarm_count: Alarms raised in the window (per equipment for
                         aggregate reports).

        Returns:
            RiskAssessment
        """
        by_metric: Dict[MetricType, MetricContribution] = {}
        for key, contribution in (contributions or {}).items():
            metric = MetricType.parse(key)
            if metric is not None:
                by_metric[metric] = contribution

        ordered = [m for m in MetricType if m in by_metric]
        reasons: List[str] = []

        critical = [m.value for m in ordered if self.is_critical(by_metric[m])]
        declining = [m.value for m in ordered if by_metric[m].trend is Trend.DECLINING]
        if critical:
            reasons.append(f"critical metrics: {', '.join(critical)}")
        if declining:
            reasons.append(f"declining metrics: {', '.join(declining)}")
        too_many_alarms = alarm_count > self.settings.alarm_escalation_threshold
        if too_many_alarms:
            reasons.append(f"alarm count {alarm_count:g} exceeds {self.settings.alarm_escalation_threshold}")

        level = base_risk_level(score)
        escalated = bool(reasons) and level is not RiskLevel.HIGH
        if reasons:
            level = level.escalate()

        suggestions = self._suggestions(score, by_metric, ordered, too_many_alarms)

        logger.debug("Risk classified", score=score, risk_level=level.value, escalated=escalated,
                     reasons=reasons)
        return RiskAssessment(
            risk_level=level,
            suggestions=tuple(suggestions),
            escalated=escalated,
            reasons=tuple(reasons),
        )

    def _suggestions(self,
                     score: float,
                     by_metric: Mapping[MetricType, MetricContribution],
                     ordered: List[MetricType],
                     too_many_alarms: bool) -> List[str]:
        suggestions = [METRIC_SUGGESTIONS[m] for m in ordered
                       if m in METRIC_SUGGESTIONS and self.is_degraded(by_metric[m])]

        if too_many_alarms:
            suggestions.append(ALARM_SUGGESTION)

        if not by_metric:
            suggestions.append(NO_DATA_SUGGESTION)
        elif score < MEDIUM_RISK_FLOOR:
            suggestions.append(POOR_SUGGESTION)
        elif score < LOW_RISK_FLOOR:
            suggestions.append(FAIR_SUGGESTION)

        if not suggestions:
            suggestions.append(ROUTINE_SUGGESTION)
        return suggestions


def classify_risk(score: float,
                  contributions: Mapping[Union[MetricType, str], MetricContribution],
                  alarm_count: float) -> RiskAssessment:
    return RiskClassifier().classify_risk(score, contributions, alarm_count)
