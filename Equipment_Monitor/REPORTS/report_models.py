"""
Report value types: health levels, uptime statistics and the health report.

A HealthReport is immutable once assembled. Only the annotation fields
(remarks, additional_notes) change afterwards, and they do so by producing a
new instance via ``with_annotations``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from Equipment_Monitor.AI_MODULES.assessment_models import AnomalyPoint, MetricContribution, RiskLevel, TrendResult
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.UTILITIES.time_utils import parse_timestamp, to_iso


class HealthLevel(str, Enum):
    EXCELLENT = 'excellent'
    GOOD = 'good'
    FAIR = 'fair'
    POOR = 'poor'


class ReportType(str, Enum):
    SINGLE = 'single'
    AGGREGATE = 'aggregate'


class EquipmentStatus(str, Enum):
    NORMAL = 'normal'
    WARNING = 'warning'
    FAULT = 'fault'
    OFFLINE = 'offline'
    MAINTENANCE = 'maintenance'

    @classmethod
    def parse(cls, value: str) -> Optional['EquipmentStatus']:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


RUNNING_STATUSES = frozenset({EquipmentStatus.NORMAL, EquipmentStatus.WARNING})
STOPPED_STATUSES = frozenset({EquipmentStatus.FAULT, EquipmentStatus.OFFLINE})


def classify_health_level(score: float) -> HealthLevel:
    """>=90 excellent, >=75 good, >=60 fair, otherwise poor."""
    if score >= 90:
        return HealthLevel.EXCELLENT
    if score >= 75:
        return HealthLevel.GOOD
    if score >= 60:
        return HealthLevel.FAIR
    return HealthLevel.POOR


@dataclass(frozen=True)
class UptimeStats:
    """Durations in seconds; uptime_rate in percent of the window."""

    total_duration: float = 0.0
    running_duration: float = 0.0
    maintenance_duration: float = 0.0
    stopped_duration: float = 0.0
    unknown_duration: float = 0.0

    @property
    def uptime_rate(self) -> float:
        if self.total_duration <= 0:
            return 0.0
        return round(self.running_duration / self.total_duration * 100.0, 2)

    def __add__(self, other: 'UptimeStats') -> 'UptimeStats':
        return UptimeStats(
            total_duration=self.total_duration + other.total_duration,
            running_duration=self.running_duration + other.running_duration,
            maintenance_duration=self.maintenance_duration + other.maintenance_duration,
            stopped_duration=self.stopped_duration + other.stopped_duration,
            unknown_duration=self.unknown_duration + other.unknown_duration,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            'total_duration': self.total_duration,
            'running_duration': self.running_duration,
            'maintenance_duration': self.maintenance_duration,
            'stopped_duration': self.stopped_duration,
            'unknown_duration': self.unknown_duration,
            'uptime_rate': self.uptime_rate,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UptimeStats':
        data = data or {}
        return cls(
            total_duration=float(data.get('total_duration', 0.0)),
            running_duration=float(data.get('running_duration', 0.0)),
            maintenance_duration=float(data.get('maintenance_duration', 0.0)),
            stopped_duration=float(data.get('stopped_duration', 0.0)),
            unknown_duration=float(data.get('unknown_duration', 0.0)),
        )


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class HealthReport:
    id: str
    equipment_ids: Tuple[str, ...]
    report_type: ReportType
    window_start: datetime
    window_end: datetime
    score: float
    level: HealthLevel
    confidence: float
    risk_level: RiskLevel
    generated_at: datetime
    generated_by: str
    contributions: Mapping[MetricType, MetricContribution] = field(default_factory=lambda: _frozen(None))
    trend_summary: Mapping[MetricType, TrendResult] = field(default_factory=lambda: _frozen(None))
    uptime_stats: UptimeStats = field(default_factory=UptimeStats)
    alarm_count: int = 0
    alarm_counts_by_status: Mapping[str, int] = field(default_factory=lambda: _frozen(None))
    abnormal_count: int = 0
    anomalies: Tuple[AnomalyPoint, ...] = ()
    suggestions: Tuple[str, ...] = ()
    remarks: Optional[str] = None
    additional_notes: Optional[str] = None

    @property
    def equipment_id(self) -> Optional[str]:
        """The single equipment id; None for aggregate reports."""
        if self.report_type is ReportType.SINGLE:
            return self.equipment_ids[0]
        return None

    def with_annotations(self, remarks: Optional[str] = None,
                         additional_notes: Optional[str] = None) -> 'HealthReport':
        changes = {}
        if remarks is not None:
            changes['remarks'] = remarks
        if additional_notes is not None:
            changes['additional_notes'] = additional_notes
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'equipment_id': self.equipment_id,
            'equipment_ids': list(self.equipment_ids),
            'report_type': self.report_type.value,
            'window_start': to_iso(self.window_start),
            'window_end': to_iso(self.window_end),
            'score': self.score,
            'level': self.level.value,
            'confidence': self.confidence,
            'contributions': {m.value: c.to_dict() for m, c in self.contributions.items()},
            'trend_summary': {m.value: t.to_dict() for m, t in self.trend_summary.items()},
            'uptime_stats': self.uptime_stats.to_dict(),
            'alarm_count': self.alarm_count,
            'alarm_counts_by_status': dict(self.alarm_counts_by_status),
            'abnormal_count': self.abnormal_count,
            'anomalies': [a.to_dict() for a in self.anomalies],
            'risk_level': self.risk_level.value,
            'suggestions': list(self.suggestions),
            'generated_at': to_iso(self.generated_at),
            'generated_by': self.generated_by,
            'remarks': self.remarks,
            'additional_notes': self.additional_notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealthReport':
        contributions = {}
        for key, raw in (data.get('contributions') or {}).items():
            metric = MetricType.parse(key)
            if metric is not None:
                contributions[metric] = MetricContribution.from_dict(raw)
        trends = {}
        for key, raw in (data.get('trend_summary') or {}).items():
            metric = MetricType.parse(key)
            if metric is not None:
                trends[metric] = TrendResult.from_dict(raw)

        return cls(
            id=data['id'],
            equipment_ids=tuple(data.get('equipment_ids') or [data['equipment_id']]),
            report_type=ReportType(data['report_type']),
            window_start=parse_timestamp(data['window_start']),
            window_end=parse_timestamp(data['window_end']),
            score=float(data['score']),
            level=HealthLevel(data['level']),
            confidence=float(data['confidence']),
            risk_level=RiskLevel(data['risk_level']),
            generated_at=parse_timestamp(data['generated_at']),
            generated_by=data.get('generated_by') or 'system',
            contributions=_frozen(contributions),
            trend_summary=_frozen(trends),
            uptime_stats=UptimeStats.from_dict(data.get('uptime_stats')),
            alarm_count=int(data.get('alarm_count', 0)),
            alarm_counts_by_status=_frozen({str(k): int(v) for k, v in (data.get('alarm_counts_by_status') or {}).items()}),
            abnormal_count=int(data.get('abnormal_count', 0)),
            anomalies=tuple(AnomalyPoint.from_dict(a) for a in data.get('anomalies') or ()),
            suggestions=tuple(data.get('suggestions') or ()),
            remarks=data.get('remarks'),
            additional_notes=data.get('additional_notes'),
        )
