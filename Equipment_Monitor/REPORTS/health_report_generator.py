#!/usr/bin/env python3
"""
Health Report Generator for the Equipment Health Assessment Engine
Assembles single-equipment and aggregate health reports: validates the
request, fetches samples and alarm counts from the stores, runs the SOH
calculator, trend analyzer and risk classifier, computes uptime statistics
and persists the resulting report.
"""

import json
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd
import structlog
from sqlalchemy.exc import SQLAlchemyError

from Equipment_Monitor.AI_MODULES.assessment_models import (
    AnomalyPoint, MetricContribution, MetricSample, SOHResult, Stability, Trend, TrendResult
)
from Equipment_Monitor.AI_MODULES.exceptions import (
    EquipmentNotFoundError, HealthAssessmentError, InvalidReportRequestError, SampleFetchTimeoutError
)
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.AI_MODULES.risk_classifier import RiskClassifier
from Equipment_Monitor.AI_MODULES.soh_calculator import SOHCalculator
from Equipment_Monitor.AI_MODULES.trend_analyzer import TrendAnalyzer
from Equipment_Monitor.DATA_MANAGEMENT.stores import (
    AlarmStore, EquipmentRegistry, HealthReportRepository, ReportRepository, SqlAlarmStore,
    SqlEquipmentRegistry, SqlTimeSeriesStore, StatusInterval, TimeSeriesStore, new_report_id
)
from Equipment_Monitor.REPORTS.report_models import (
    EquipmentStatus, HealthReport, ReportType, RUNNING_STATUSES, STOPPED_STATUSES, UptimeStats,
    classify_health_level
)
from Equipment_Monitor.UTILITIES.time_utils import as_utc_naive, parse_timestamp, utc_now

logger = structlog.get_logger(__name__)

WeightInput = Optional[Mapping[Union[MetricType, str], float]]

# Most severe first; used when members of an aggregate disagree on stability
STABILITY_SEVERITY = (Stability.ERRATIC, Stability.FLUCTUATING, Stability.STEADY, Stability.INSUFFICIENT_DATA)

# Anomalies kept on a report; abnormal_count still counts every one found
MAX_REPORTED_ANOMALIES = 100


def compute_uptime_stats(history: Sequence[StatusInterval],
                         window_start: datetime,
                         window_end: datetime) -> UptimeStats:
    """
    Bucket status intervals clipped to the window.

    normal/warning count as running, maintenance as maintenance, fault/offline
    as stopped. Time covered by no interval (or by an unrecognised status) is
    unknown. Overlapping intervals are counted once, earliest first.
    """
    start, end = as_utc_naive(window_start), as_utc_naive(window_end)
    total = max(0.0, (end - start).total_seconds())
    running = maintenance = stopped = 0.0

    cursor = start
    for status, began, ended in sorted(history, key=lambda h: as_utc_naive(h[1])):
        seg_start = max(as_utc_naive(began), cursor)
        seg_end = min(as_utc_naive(ended) if ended is not None else end, end)
        if seg_end <= seg_start:
            continue
        seconds = (seg_end - seg_start).total_seconds()
        parsed = EquipmentStatus.parse(status)
        if parsed in RUNNING_STATUSES:
            running += seconds
        elif parsed is EquipmentStatus.MAINTENANCE:
            maintenance += seconds
        elif parsed in STOPPED_STATUSES:
            stopped += seconds
        cursor = seg_end

    return UptimeStats(
        total_duration=total,
        running_duration=running,
        maintenance_duration=maintenance,
        stopped_duration=stopped,
        unknown_duration=max(0.0, total - running - maintenance - stopped),
    )


def majority_trend(trends: Sequence[Trend]) -> Trend:
    """Most frequent trend; ties (and empty input) resolve to stable."""
    if not trends:
        return Trend.STABLE
    counts = pd.Series([t.value for t in trends]).value_counts()
    if len(counts) > 1 and counts.iloc[0] == counts.iloc[1]:
        return Trend.STABLE
    return Trend(counts.index[0])


def select_reported_anomalies(anomalies: Sequence[AnomalyPoint],
                              limit: int = MAX_REPORTED_ANOMALIES) -> Tuple[AnomalyPoint, ...]:
    """Most severe anomalies (earliest first among equals), returned in time order."""
    ranked = sorted(anomalies, key=lambda a: (-a.severity.rank, a.timestamp))[:max(0, limit)]
    return tuple(sorted(ranked, key=lambda a: a.timestamp))


@dataclass(frozen=True)
class EquipmentAssessment:
    """Everything computed for one equipment before it becomes (part of) a report."""

    equipment_id: str
    soh: SOHResult
    contributions: Mapping[MetricType, MetricContribution]
    trends: Mapping[MetricType, TrendResult]
    alarm_counts: Mapping[str, int]
    uptime: UptimeStats
    anomalies: Tuple[AnomalyPoint, ...] = ()

    @property
    def alarm_count(self) -> int:
        return int(sum(self.alarm_counts.values()))


class HealthReportGenerator:
    """
    Report assembler. Stores and analyzers are injected; nothing here reads
    configuration or global state.
    """

    def __init__(self,
                 time_series_store: TimeSeriesStore,
                 alarm_store: AlarmStore,
                 registry: EquipmentRegistry,
                 repository: ReportRepository,
                 calculator: Optional[SOHCalculator] = None,
                 analyzer: Optional[TrendAnalyzer] = None,
                 classifier: Optional[RiskClassifier] = None,
                 fetch_timeout: float = 30.0,
                 max_workers: int = 4,
                 default_weights: WeightInput = None,
                 clock: Callable[[], datetime] = utc_now):
        self.time_series_store = time_series_store
        self.alarm_store = alarm_store
        self.registry = registry
        self.repository = repository
        self.calculator = calculator or SOHCalculator()
        self.analyzer = analyzer or TrendAnalyzer(profiles=self.calculator.profiles,
                                                  settings=self.calculator.settings)
        self.classifier = classifier or RiskClassifier(settings=self.calculator.settings)
        self.fetch_timeout = fetch_timeout
        self.max_workers = max(1, max_workers)
        self.default_weights = dict(default_weights or {})
        self.clock = clock

    @classmethod
    def from_config(cls, db, cfg) -> 'HealthReportGenerator':
        """Wire the SQL stores and engine components from a Config instance."""
        settings = cfg.assessment_settings()
        profiles = cfg.profile_table()
        return cls(
            time_series_store=SqlTimeSeriesStore(db),
            alarm_store=SqlAlarmStore(db),
            registry=SqlEquipmentRegistry(db),
            repository=HealthReportRepository(db),
            calculator=SOHCalculator(profiles=profiles, settings=settings),
            analyzer=TrendAnalyzer(profiles=profiles, settings=settings),
            classifier=RiskClassifier(settings=settings),
            fetch_timeout=cfg.SAMPLE_FETCH_TIMEOUT_SECONDS,
            max_workers=cfg.AGGREGATE_MAX_WORKERS,
            default_weights=cfg.METRIC_WEIGHTS,
        )

    # --- Public API ---

    def generate_report(self,
                        equipment_ids: Union[str, Sequence[str]],
                        window_start: datetime,
                        window_end: datetime,
                        requested_by: str = 'system',
                        weights: WeightInput = None,
                        fetch_timeout: Optional[float] = None) -> HealthReport:
        """
        Generate and persist a health report.

        Args:
            equipment_ids: One id (single report) or several ids (aggregate report).
            window_start: Inclusive window start.
            window_end: Inclusive window end; must be after window_start.
            requested_by: User recorded as the report's author.
            weights: Optional custom metric weights.
            fetch_timeout: Seconds allowed per equipment sample fetch.

        Returns:
            The persisted HealthReport.

        Raises:
            InvalidReportRequestError: No ids, or an empty/inverted window.
            EquipmentNotFoundError: An id is not registered.
            SampleFetchTimeoutError: The time-series store exceeded the timeout.
            InvalidWeightsError: A custom weight is negative or not a number.
        """
        ids = self._normalize_ids(equipment_ids)
        start, end = as_utc_naive(window_start), as_utc_naive(window_end)
        if start >= end:
            raise InvalidReportRequestError(f"Window start {start.isoformat()} must be before end {end.isoformat()}")

        for equipment_id in ids:
            if not self.registry.exists(equipment_id):
                logger.warning("Report requested for unknown equipment", equipment_id=equipment_id)
                raise EquipmentNotFoundError(equipment_id)

        timeout = fetch_timeout if fetch_timeout is not None else self.fetch_timeout
        effective_weights = weights if weights is not None else (self.default_weights or None)
        log = logger.bind(equipment_ids=ids, window_start=start.isoformat(), window_end=end.isoformat())
        log.info("Generating health report")

        if len(ids) == 1:
            assessment = self.assess_equipment(ids[0], start, end, effective_weights, timeout)
            report = self._build_single(assessment, start, end, requested_by)
        else:
            assessments = self._assess_all(ids, start, end, effective_weights, timeout)
            report = self._build_aggregate(assessments, start, end, requested_by)

        self.repository.save(report)
        log.info("Health report generated", report_id=report.id, report_type=report.report_type.value,
                 score=report.score, level=report.level.value, risk_level=report.risk_level.value)
        return report

    def assess_equipment(self,
                         equipment_id: str,
                         window_start: datetime,
                         window_end: datetime,
                         weights: WeightInput = None,
                         fetch_timeout: Optional[float] = None) -> EquipmentAssessment:
        """Score, trends, anomalies and uptime for one equipment; nothing is persisted."""
        time_range = (window_start, window_end)
        timeout = fetch_timeout if fetch_timeout is not None else self.fetch_timeout

        samples = self._fetch_samples(equipment_id, time_range, timeout)
        soh = self.calculator.calculate_soh(samples, weights)
        scored = {m: s for m, s in samples.items() if m in soh.contributions}
        trends = self.analyzer.analyze_window(scored, window_start, window_end)
        anomalies = tuple(
            replace(a, equipment_id=equipment_id)
            for a in self.analyzer.detect_window_anomalies(scored, window_start, window_end)
        )
        contributions = {
            metric: replace(contribution, trend=trends[metric].trend) if metric in trends else contribution
            for metric, contribution in soh.contributions.items()
        }

        alarm_counts = {str(k): int(v) for k, v in (self.alarm_store.count_by_status(equipment_id, time_range) or {}).items()}
        uptime = compute_uptime_stats(self.registry.status_history(equipment_id, time_range),
                                      window_start, window_end)

        logger.debug("Equipment assessed", equipment_id=equipment_id, score=soh.score,
                     confidence=soh.confidence, alarms=sum(alarm_counts.values()),
                     anomalies=len(anomalies), uptime_rate=uptime.uptime_rate)
        return EquipmentAssessment(
            equipment_id=equipment_id,
            soh=soh,
            contributions=MappingProxyType(contributions),
            trends=MappingProxyType(dict(trends)),
            alarm_counts=MappingProxyType(alarm_counts),
            uptime=uptime,
            anomalies=anomalies,
        )

    # --- Fetching ---

    @staticmethod
    def _normalize_ids(equipment_ids: Union[str, Sequence[str]]) -> List[str]:
        if isinstance(equipment_ids, str):
            equipment_ids = [equipment_ids]
        ids: List[str] = []
        for raw in equipment_ids or ():
            equipment_id = str(raw).strip()
            if equipment_id and equipment_id not in ids:
                ids.append(equipment_id)
        if not ids:
            raise InvalidReportRequestError("At least one equipment id is required")
        return ids

    def _query_samples(self, equipment_id: str, time_range: Tuple[datetime, datetime],
                       cancelled: Optional[threading.Event] = None) -> Dict[MetricType, List[MetricSample]]:
        samples: Dict[MetricType, List[MetricSample]] = {}
        for metric in MetricType:
            if metric not in self.calculator.profiles:
                continue
            if cancelled is not None and cancelled.is_set():
                logger.info("Sample fetch abandoned", equipment_id=equipment_id, next_metric=metric.value)
                break
            rows = self.time_series_store.query(equipment_id, metric, time_range)
            if rows:
                samples[metric] = list(rows)
        return samples

    def _fetch_samples(self, equipment_id: str, time_range: Tuple[datetime, datetime],
                       timeout: Optional[float]) -> Dict[MetricType, List[MetricSample]]:
        """
        Run the store queries in a worker thread bounded by ``timeout``.

        A store call already in flight when the timeout fires cannot be
        interrupted: the worker thread lives until that query returns, then
        stops without issuing the remaining per-metric queries. Worker
        threads are not daemons, so interpreter exit waits for that one
        query to finish.
        """
        if timeout is None or timeout <= 0:
            return self._query_samples(equipment_id, time_range)

        cancelled = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='sample-fetch')
        try:
            future = executor.submit(self._query_samples, equipment_id, time_range, cancelled)
            done, _ = wait([future], timeout=timeout)
            if not done:
                cancelled.set()
                future.cancel()
                logger.error("Sample fetch timed out", equipment_id=equipment_id, timeout=timeout)
                raise SampleFetchTimeoutError(equipment_id, timeout)
            return future.result()
        finally:
            executor.shutdown(wait=False)

    def _assess_all(self, ids: List[str], start: datetime, end: datetime,
                    weights: WeightInput, timeout: Optional[float]) -> List[EquipmentAssessment]:
        workers = min(self.max_workers, len(ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='assess') as pool:
            futures = [pool.submit(self.assess_equipment, eid, start, end, weights, timeout) for eid in ids]
            return [f.result() for f in futures]

    # --- Assembly ---

    def _build_single(self, assessment: EquipmentAssessment, start: datetime, end: datetime,
                      requested_by: str) -> HealthReport:
        soh = assessment.soh
        risk = self.classifier.classify_risk(soh.score, assessment.contributions, assessment.alarm_count)
        return HealthReport(
            id=new_report_id(),
            equipment_ids=(assessment.equipment_id,),
            report_type=ReportType.SINGLE,
            window_start=start,
            window_end=end,
            score=soh.score,
            level=classify_health_level(soh.score),
            confidence=soh.confidence,
            risk_level=risk.risk_level,
            generated_at=self.clock(),
            generated_by=requested_by or 'system',
            contributions=assessment.contributions,
            trend_summary=assessment.trends,
            uptime_stats=assessment.uptime,
            alarm_count=assessment.alarm_count,
            alarm_counts_by_status=assessment.alarm_counts,
            abnormal_count=len(assessment.anomalies),
            anomalies=select_reported_anomalies(assessment.anomalies),
            suggestions=risk.suggestions,
        )

    def _build_aggregate(self, assessments: List[EquipmentAssessment], start: datetime, end: datetime,
                         requested_by: str) -> HealthReport:
        """Arithmetic mean of member scores and confidences; sums for counts and durations."""
        score = round(sum(a.soh.score for a in assessments) / len(assessments), 2)
        confidence = round(sum(a.soh.confidence for a in assessments) / len(assessments), 3)

        contributions = self._merge_contributions(assessments)
        trends = self._merge_trends(assessments)

        alarm_counts: Dict[str, int] = {}
        for a in assessments:
            for status, count in a.alarm_counts.items():
                alarm_counts[status] = alarm_counts.get(status, 0) + count
        alarm_total = sum(alarm_counts.values())

        uptime = UptimeStats()
        for a in assessments:
            uptime = uptime + a.uptime

        risk = self.classifier.classify_risk(score, contributions, alarm_total / len(assessments))
        return HealthReport(
            id=new_report_id(),
            equipment_ids=tuple(a.equipment_id for a in assessments),
            report_type=ReportType.AGGREGATE,
            window_start=start,
            window_end=end,
            score=score,
            level=classify_health_level(score),
            confidence=confidence,
            risk_level=risk.risk_level,
            generated_at=self.clock(),
            generated_by=requested_by or 'system',
            contributions=MappingProxyType(contributions),
            trend_summary=MappingProxyType(trends),
            uptime_stats=uptime,
            alarm_count=alarm_total,
            alarm_counts_by_status=MappingProxyType(alarm_counts),
            abnormal_count=sum(len(a.anomalies) for a in assessments),
            anomalies=select_reported_anomalies([p for a in assessments for p in a.anomalies]),
            suggestions=risk.suggestions,
        )

    @staticmethod
    def _merge_contributions(assessments: List[EquipmentAssessment]) -> Dict[MetricType, MetricContribution]:
        rows = [
            {'metric': metric, 'score': c.score, 'weight': c.weight, 'sample_count': c.sample_count,
             'mean': c.mean, 'std': c.std, 'trend': c.trend}
            for a in assessments for metric, c in a.contributions.items()
        ]
        if not rows:
            return {}

        df = pd.DataFrame(rows)
        grouped = df.groupby(df['metric'].map(lambda m: m.value), sort=False)
        summary = grouped.agg(score=('score', 'mean'), weight=('weight', 'mean'),
                              sample_count=('sample_count', 'sum'), mean=('mean', 'mean'),
                              std=('std', 'mean'))
        total_weight = float(summary['weight'].sum())

        merged: Dict[MetricType, MetricContribution] = {}
        for metric in MetricType:
            if metric.value not in summary.index:
                continue
            row = summary.loc[metric.value]
            weight = float(row['weight']) / total_weight if total_weight > 0 else 1.0 / len(summary)
            merged[metric] = MetricContribution(
                score=round(float(row['score']), 2),
                weight=weight,
                trend=majority_trend(list(grouped.get_group(metric.value)['trend'])),
                sample_count=int(row['sample_count']),
                mean=None if pd.isna(row['mean']) else round(float(row['mean']), 6),
                std=None if pd.isna(row['std']) else round(float(row['std']), 6),
            )
        return merged

    @staticmethod
    def _merge_trends(assessments: List[EquipmentAssessment]) -> Dict[MetricType, TrendResult]:
        merged: Dict[MetricType, TrendResult] = {}
        for metric in MetricType:
            members = [a.trends[metric] for a in assessments if metric in a.trends]
            if not members:
                continue
            observed = {t.stability for t in members}
            stability = next(s for s in STABILITY_SEVERITY if s in observed)
            recent = [t.recent_mean for t in members if t.recent_mean is not None]
            baseline = [t.baseline_mean for t in members if t.baseline_mean is not None]
            merged[metric] = TrendResult(
                trend=majority_trend([t.trend for t in members]),
                stability=stability,
                relative_change=sum(t.relative_change for t in members) / len(members),
                recent_mean=round(sum(recent) / len(recent), 6) if recent else None,
                baseline_mean=round(sum(baseline) / len(baseline), 6) if baseline else None,
                slope_per_hour=sum(t.slope_per_hour for t in members) / len(members),
            )
        return merged


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main function for CLI usage"""
    import argparse

    from Equipment_Monitor.CONFIG.app_config import config
    from Equipment_Monitor.CONFIG.logging_config import setup_logging
    from Equipment_Monitor.DATA_MANAGEMENT.database_manager import DatabaseManager

    parser = argparse.ArgumentParser(description='Generate an equipment health report')
    parser.add_argument('--equipment', action='append', required=True,
                        help='Equipment id (repeat for an aggregate report)')
    parser.add_argument('--start', required=True, help='Window start (ISO-8601)')
    parser.add_argument('--end', required=True, help='Window end (ISO-8601)')
    parser.add_argument('--user', default='system', help='User recorded as report author')
    args = parser.parse_args(argv)

    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)

    try:
        window_start = parse_timestamp(args.start)
        window_end = parse_timestamp(args.end)
    except ValueError as e:
        print(f"Invalid timestamp: {e}", file=sys.stderr)
        return 2

    db = DatabaseManager(config.DATABASE_URL, echo=config.DB_ECHO)
    try:
        generator = HealthReportGenerator.from_config(db, config)
        report = generator.generate_report(args.equipment, window_start, window_end, requested_by=args.user)
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    except (HealthAssessmentError, SQLAlchemyError) as e:
        print(f"Report generation failed: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
