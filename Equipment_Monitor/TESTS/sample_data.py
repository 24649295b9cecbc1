"""Sample builders and in-memory store fakes shared by the test modules."""

import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from Equipment_Monitor.AI_MODULES.assessment_models import MetricSample
from Equipment_Monitor.AI_MODULES.exceptions import ReportNotFoundError
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.DATA_MANAGEMENT.stores import ReportFilters

WINDOW_START = datetime(2024, 1, 1, 0, 0, 0)
WINDOW_END = datetime(2024, 1, 2, 0, 0, 0)
GENERATED_AT = datetime(2024, 1, 2, 6, 0, 0)

# Values at the ideal point of every core profile
HEALTHY_VALUES = {
    MetricType.VIBRATION: 0.0,
    MetricType.TEMPERATURE: 67.5,
    MetricType.PRESSURE: 0.5,
    MetricType.SPEED: 1500.0,
    MetricType.CURRENT: 60.0,
    MetricType.VOLTAGE: 390.0,
    MetricType.POWER: 1000.0,
}


def make_series(metric: MetricType, values, start: datetime = WINDOW_START,
                step: timedelta = timedelta(minutes=30)) -> List[MetricSample]:
    """One sample per value, ``step`` apart from ``start``."""
    return [MetricSample(metric, start + i * step, v) for i, v in enumerate(values)]


def constant_series(metric: MetricType, value: float, count: int = 48) -> List[MetricSample]:
    return make_series(metric, [value] * count)


def healthy_samples(count: int = 48) -> Dict[MetricType, List[MetricSample]]:
    return {metric: constant_series(metric, value, count) for metric, value in HEALTHY_VALUES.items()}


# --- In-memory collaborators ---

class FakeTimeSeriesStore:
    def __init__(self, data: Optional[Dict[str, Dict[MetricType, List[MetricSample]]]] = None,
                 delay: float = 0.0, error: Optional[Exception] = None):
        self.data = data or {}
        self.delay = delay
        self.error = error
        self.calls: List[Tuple[str, MetricType]] = []

    def query(self, equipment_id, metric_type, time_range):
        self.calls.append((equipment_id, metric_type))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        start, end = time_range
        return [s for s in self.data.get(equipment_id, {}).get(metric_type, [])
                if start <= s.timestamp <= end]


class FakeAlarmStore:
    def __init__(self, counts: Optional[Dict[str, Dict[str, int]]] = None):
        self.counts = counts or {}

    def count_by_status(self, equipment_id, time_range):
        return dict(self.counts.get(equipment_id, {}))


class FakeRegistry:
    def __init__(self, equipment_ids=(), history: Optional[Dict[str, list]] = None):
        self.equipment_ids = set(equipment_ids)
        self.history = history or {}

    def exists(self, equipment_id):
        return equipment_id in self.equipment_ids

    def status_history(self, equipment_id, time_range):
        return list(self.history.get(equipment_id, []))


class InMemoryReportRepository:
    def __init__(self):
        self.reports = {}

    def save(self, report):
        self.reports[report.id] = report
        return report

    def get(self, report_id):
        if report_id not in self.reports:
            raise ReportNotFoundError(report_id)
        return self.reports[report_id]

    def list(self, filters: Optional[ReportFilters] = None, page: int = 1, page_size: int = 20):
        items = sorted(self.reports.values(), key=lambda r: r.generated_at, reverse=True)
        offset = (page - 1) * page_size
        return items[offset:offset + page_size], len(items)

    def update_annotations(self, report_id, remarks=None, additional_notes=None):
        report = self.get(report_id).with_annotations(remarks, additional_notes)
        self.reports[report_id] = report
        return report

    def delete(self, report_id):
        self.get(report_id)
        del self.reports[report_id]

