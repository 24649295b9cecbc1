#!/usr/bin/env python3
"""
Store interfaces consumed by the report generator, and their SQLAlchemy
implementations.

The generator only depends on the Protocols below; tests substitute
in-memory fakes for them.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

import pandas as pd
from sqlalchemy import select, func, delete

from Equipment_Monitor.AI_MODULES.assessment_models import MetricSample
from Equipment_Monitor.AI_MODULES.exceptions import ReportNotFoundError
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.DATA_MANAGEMENT.database_manager import (
    DatabaseManager, Equipment, EquipmentStatusLog, TimeSeriesData, AlarmRecord,
    HealthReportRecord, dumps, loads
)
from Equipment_Monitor.REPORTS.report_models import HealthReport, ReportType
from Equipment_Monitor.UTILITIES.time_utils import as_utc_naive, utc_now

logger = logging.getLogger('DataStores')

TimeRange = Tuple[datetime, datetime]
StatusInterval = Tuple[str, datetime, Optional[datetime]]

# Readings flagged invalid or out of range at ingestion are never scored
EXCLUDED_QUALITY = 'abnormal'


# --- Interfaces ---

class TimeSeriesStore(Protocol):
    def query(self, equipment_id: str, metric_type: MetricType, time_range: TimeRange) -> List[MetricSample]:
        ...


class AlarmStore(Protocol):
    def count_by_status(self, equipment_id: str, time_range: TimeRange) -> Dict[str, int]:
        ...


class EquipmentRegistry(Protocol):
    def exists(self, equipment_id: str) -> bool:
        ...

    def status_history(self, equipment_id: str, time_range: TimeRange) -> List[StatusInterval]:
        ...


@dataclass(frozen=True)
class ReportFilters:
    equipment_id: Optional[str] = None
    report_type: Optional[ReportType] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class ReportRepository(Protocol):
    def save(self, report: HealthReport) -> HealthReport:
        ...

    def get(self, report_id: str) -> HealthReport:
        ...

    def list(self, filters: ReportFilters, page: int, page_size: int) -> Tuple[List[HealthReport], int]:
        ...

    def update_annotations(self, report_id: str, remarks: Optional[str],
                           additional_notes: Optional[str]) -> HealthReport:
        ...

    def delete(self, report_id: str) -> None:
        ...


def new_report_id() -> str:
    return str(uuid.uuid4())


# --- SQLAlchemy Implementations ---

class SqlTimeSeriesStore:
    """Reads readings through pandas.read_sql."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def query_frame(self, equipment_id: str, metric_type: MetricType, time_range: TimeRange) -> pd.DataFrame:
        """Return a DataFrame with ``timestamp`` and ``value`` columns, ordered by time."""
        start, end = (as_utc_naive(t) for t in time_range)
        stmt = (
            select(TimeSeriesData.timestamp, TimeSeriesData.value)
            .where(TimeSeriesData.equipment_id == equipment_id)
            .where(TimeSeriesData.metric_type == MetricType(metric_type).value)
            .where(TimeSeriesData.timestamp >= start)
            .where(TimeSeriesData.timestamp <= end)
            .where(func.coalesce(TimeSeriesData.quality, 'normal') != EXCLUDED_QUALITY)
            .order_by(TimeSeriesData.timestamp)
        )
        with self.db.engine.connect() as connection:
            df = pd.read_sql(stmt, connection)
        if not df.empty:
            df['timestamp'] = pd.to_datetime(df['timestamp'])
            df['value'] = pd.to_numeric(df['value'], errors='coerce')
        return df

    def query(self, equipment_id: str, metric_type: MetricType, time_range: TimeRange) -> List[MetricSample]:
        metric = MetricType(metric_type)
        df = self.query_frame(equipment_id, metric, time_range)
        if df.empty:
            return []
        samples = [
            MetricSample(metric_type=metric, timestamp=ts.to_pydatetime(), value=float(value))
            for ts, value in zip(df['timestamp'], df['value'])
            if not (isinstance(value, float) and math.isnan(value))
        ]
        logger.debug(f"Fetched {len(samples)} {metric.value} samples for {equipment_id}")
        return samples


class SqlAlarmStore:
    def __init__(self, db: DatabaseManager):
        self.db = db

    def count_by_status(self, equipment_id: str, time_range: TimeRange) -> Dict[str, int]:
        start, end = (as_utc_naive(t) for t in time_range)
        with self.db.session_scope() as session:
            rows = session.execute(
                select(AlarmRecord.status, func.count(AlarmRecord.id))
                .where(AlarmRecord.equipment_id == equipment_id)
                .where(AlarmRecord.triggered_at >= start)
                .where(AlarmRecord.triggered_at <= end)
                .group_by(AlarmRecord.status)
            ).all()
        return {status: int(count) for status, count in rows}


class SqlEquipmentRegistry:
    def __init__(self, db: DatabaseManager):
        self.db = db

    def exists(self, equipment_id: str) -> bool:
        with self.db.session_scope() as session:
            return session.get(Equipment, equipment_id) is not None

    def status_history(self, equipment_id: str, time_range: TimeRange) -> List[StatusInterval]:
        """Status intervals overlapping the range; an open interval has ``None`` as its end."""
        start, end = (as_utc_naive(t) for t in time_range)
        with self.db.session_scope() as session:
            rows = session.execute(
                select(EquipmentStatusLog.status, EquipmentStatusLog.started_at, EquipmentStatusLog.ended_at)
                .where(EquipmentStatusLog.equipment_id == equipment_id)
                .where(EquipmentStatusLog.started_at < end)
                .where((EquipmentStatusLog.ended_at.is_(None)) | (EquipmentStatusLog.ended_at > start))
                .order_by(EquipmentStatusLog.started_at)
            ).all()
        return [(status, started, ended) for status, started, ended in rows]


class HealthReportRepository:
    """Persists HealthReport values as rows with JSON-encoded detail columns."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_record(report: HealthReport) -> HealthReportRecord:
        data = report.to_dict()
        return HealthReportRecord(
            id=report.id,
            equipment_id=report.equipment_id,
            equipment_ids=dumps(data['equipment_ids']),
            report_type=report.report_type.value,
            window_start=report.window_start,
            window_end=report.window_end,
            score=report.score,
            level=report.level.value,
            confidence=report.confidence,
            contributions=dumps(data['contributions']),
            trend_summary=dumps(data['trend_summary']),
            uptime_stats=dumps(data['uptime_stats']),
            alarm_count=report.alarm_count,
            alarm_counts_by_status=dumps(data['alarm_counts_by_status']),
            abnormal_count=report.abnormal_count,
            anomalies=dumps(data['anomalies']),
            risk_level=report.risk_level.value,
            suggestions=dumps(data['suggestions']),
            generated_at=report.generated_at,
            generated_by=report.generated_by,
            remarks=report.remarks,
            additional_notes=report.additional_notes,
        )

    @staticmethod
    def _from_record(record: HealthReportRecord) -> HealthReport:
        return HealthReport.from_dict({
            'id': record.id,
            'equipment_id': record.equipment_id,
            'equipment_ids': loads(record.equipment_ids, []),
            'report_type': record.report_type,
            'window_start': record.window_start,
            'window_end': record.window_end,
            'score': record.score,
            'level': record.level,
            'confidence': record.confidence,
            'contributions': loads(record.contributions, {}),
            'trend_summary': loads(record.trend_summary, {}),
            'uptime_stats': loads(record.uptime_stats, {}),
            'alarm_count': record.alarm_count or 0,
            'alarm_counts_by_status': loads(record.alarm_counts_by_status, {}),
            'abnormal_count': record.abnormal_count or 0,
            'anomalies': loads(record.anomalies, []),
            'risk_level': record.risk_level,
            'suggestions': loads(record.suggestions, []),
            'generated_at': record.generated_at,
            'generated_by': record.generated_by,
            'remarks': record.remarks,
            'additional_notes': record.additional_notes,
        })

    def save(self, report: HealthReport) -> HealthReport:
        with self.db.session_scope() as session:
            session.add(self._to_record(report))
        logger.info(f"Health report saved: {report.id} ({report.report_type.value})")
        return report

    def get(self, report_id: str) -> HealthReport:
        with self.db.session_scope() as session:
            record = session.get(HealthReportRecord, report_id)
            if record is None:
                raise ReportNotFoundError(report_id)
            return self._from_record(record)

    def list(self, filters: Optional[ReportFilters] = None, page: int = 1,
             page_size: int = 20) -> Tuple[List[HealthReport], int]:
        """
        Page through reports, newest first.

        Returns:
            (items, total) where total counts every report matching the filters.
        """
        filters = filters or ReportFilters()
        page = max(1, page)
        page_size = max(1, page_size)

        conditions = []
        if filters.equipment_id:
            conditions.append(HealthReportRecord.equipment_id == filters.equipment_id)
        if filters.report_type:
            conditions.append(HealthReportRecord.report_type == ReportType(filters.report_type).value)
        if filters.start_time:
            conditions.append(HealthReportRecord.generated_at >= as_utc_naive(filters.start_time))
        if filters.end_time:
            conditions.append(HealthReportRecord.generated_at <= as_utc_naive(filters.end_time))

        with self.db.session_scope() as session:
            total = session.execute(
                select(func.count(HealthReportRecord.id)).where(*conditions)
            ).scalar_one()
            records = session.execute(
                select(HealthReportRecord)
                .where(*conditions)
                .order_by(HealthReportRecord.generated_at.desc(), HealthReportRecord.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).scalars().all()
            items = [self._from_record(r) for r in records]
        return items, int(total)

    def update_annotations(self, report_id: str, remarks: Optional[str] = None,
                           additional_notes: Optional[str] = None) -> HealthReport:
        """Only the annotation columns are ever written here."""
        with self.db.session_scope() as session:
            record = session.get(HealthReportRecord, report_id)
            if record is None:
                raise ReportNotFoundError(report_id)
            if remarks is not None:
                record.remarks = remarks
            if additional_notes is not None:
                record.additional_notes = additional_notes
            record.updated_at = utc_now()
            session.flush()
            report = self._from_record(record)
        logger.info(f"Health report annotations updated: {report_id}")
        return report

    def delete(self, report_id: str) -> None:
        with self.db.session_scope() as session:
            result = session.execute(delete(HealthReportRecord).where(HealthReportRecord.id == report_id))
            if result.rowcount == 0:
                raise ReportNotFoundError(report_id)
        logger.info(f"Health report deleted: {report_id}")
