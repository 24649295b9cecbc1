"""
Value types shared by the scoring, trend and risk modules.

All types are frozen dataclasses: once the engine hands a contribution or a
result to a report it is never modified.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.UTILITIES.time_utils import parse_timestamp, to_iso


class Trend(str, Enum):
    IMPROVING = 'improving'
    STABLE = 'stable'
    DECLINING = 'declining'


class Stability(str, Enum):
    STEADY = 'steady'
    FLUCTUATING = 'fluctuating'
    ERRATIC = 'erratic'
    INSUFFICIENT_DATA = 'insufficient_data'


class RiskLevel(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    def escalate(self) -> 'RiskLevel':
        """One level up, capped at HIGH."""
        if self is RiskLevel.LOW:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH


@dataclass(frozen=True)
class MetricSample:
    """A single reading produced by the ingestion pipeline."""

    metric_type: Union[MetricType, str]
    timestamp: datetime
    value: float

    def is_valid(self) -> bool:
        try:
            return math.isfinite(float(self.value))
        except (TypeError, ValueError):
            return False


@dataclass(frozen=True)
class MetricContribution:
    """Scoring detail for one metric inside a report."""

    score: float
    weight: float
    trend: Trend = Trend.STABLE
    sample_count: int = 0
    mean: Optional[float] = None
    std: Optional[float] = None

    @property
    def contribution(self) -> float:
        return self.score * self.weight

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'weight': self.weight,
            'trend': self.trend.value,
            'sample_count': self.sample_count,
            'contribution': round(self.contribution, 4),
            'mean': self.mean,
            'std': self.std,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetricContribution':
        return cls(
            score=float(data['score']),
            weight=float(data['weight']),
            trend=Trend(data.get('trend', Trend.STABLE.value)),
            sample_count=int(data.get('sample_count', 0)),
            mean=data.get('mean'),
            std=data.get('std'),
        )


@dataclass(frozen=True)
class SOHResult:
    """Composite state-of-health output of the calculator."""

    score: float
    confidence: float
    contributions: Mapping[MetricType, MetricContribution] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'confidence': self.confidence,
            'contributions': {m.value: c.to_dict() for m, c in self.contributions.items()},
        }


@dataclass(frozen=True)
class TrendResult:
    """Recent-versus-baseline comparison for one metric."""

    trend: Trend
    stability: Stability
    relative_change: float = 0.0
    recent_mean: Optional[float] = None
    baseline_mean: Optional[float] = None
    slope_per_hour: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trend': self.trend.value,
            'stability': self.stability.value,
            'relative_change': round(self.relative_change, 4),
            'recent_mean': self.recent_mean,
            'baseline_mean': self.baseline_mean,
            'slope_per_hour': round(self.slope_per_hour, 6),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrendResult':
        return cls(
            trend=Trend(data['trend']),
            stability=Stability(data['stability']),
            relative_change=float(data.get('relative_change', 0.0)),
            recent_mean=data.get('recent_mean'),
            baseline_mean=data.get('baseline_mean'),
            slope_per_hour=float(data.get('slope_per_hour', 0.0)),
        )


class AnomalySeverity(str, Enum):
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {AnomalySeverity.MEDIUM: 1, AnomalySeverity.HIGH: 2, AnomalySeverity.CRITICAL: 3}


@dataclass(frozen=True)
class AnomalyPoint:
    """
    A reading that deviates from its metric's window mean by more than 1.5
    standard deviations.

    ``deviation_percent`` is relative to the mean and is None when the mean
    is zero. ``equipment_id`` is filled in once the point lands in a report.
    """

    metric_type: MetricType
    timestamp: datetime
    value: float
    expected_value: float
    deviation_percent: Optional[float]
    severity: AnomalySeverity
    equipment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'equipment_id': self.equipment_id,
            'metric_type': self.metric_type.value,
            'timestamp': to_iso(self.timestamp),
            'value': self.value,
            'expected_value': self.expected_value,
            'deviation_percent': self.deviation_percent,
            'severity': self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnomalyPoint':
        deviation = data.get('deviation_percent')
        return cls(
            metric_type=MetricType(data['metric_type']),
            timestamp=parse_timestamp(data['timestamp']),
            value=float(data['value']),
            expected_value=float(data['expected_value']),
            deviation_percent=None if deviation is None else float(deviation),
            severity=AnomalySeverity(data['severity']),
            equipment_id=data.get('equipment_id'),
        )


@dataclass(frozen=True)
class AssessmentSettings:
    """Tunable constants of the engine, resolved once from configuration."""

    stability_penalty_share: float = 0.5
    confidence_saturation_samples: int = 100
    coverage_share: float = 0.6
    trend_tolerance: float = 0.05
    trend_min_samples: int = 3
    alarm_escalation_threshold: int = 5
    degraded_score_threshold: float = 70.0
    critical_score_threshold: float = 40.0
