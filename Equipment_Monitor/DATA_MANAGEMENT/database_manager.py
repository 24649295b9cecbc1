#!/usr/bin/env python3
"""
Database Manager (SQLAlchemy ORM)
Owns the engine, the session factory and the ORM models behind the
equipment registry, time-series data, alarm records and persisted health
reports. Works against any SQLAlchemy URL; tests use in-memory SQLite.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

# --- SQLAlchemy Imports ---
from sqlalchemy import (
    create_engine, Column, Integer, String, DateTime, Float, Text, Index, ForeignKey
)
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.UTILITIES.time_utils import as_utc_naive, utc_now

logger = logging.getLogger('DatabaseManager')

# --- SQLAlchemy Setup ---
Base = declarative_base()

# --- ORM Models ---
# All datetimes are stored as naive UTC
UTCDateTime = DateTime(timezone=False)


class Equipment(Base):
    __tablename__ = 'equipment'
    id = Column(String(36), primary_key=True)
    device_code = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    equipment_type = Column(String(100), nullable=False)
    location = Column(String(200))
    status = Column(String(50), default='normal', index=True)
    created_at = Column(UTCDateTime, default=utc_now)


class EquipmentStatusLog(Base):
    __tablename__ = 'equipment_status_log'
    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(String(36), ForeignKey('equipment.id', ondelete='CASCADE'), nullable=False)
    status = Column(String(50), nullable=False)
    started_at = Column(UTCDateTime, nullable=False)
    ended_at = Column(UTCDateTime)  # NULL while the status is still active

    __table_args__ = (
        Index('ix_status_log_equipment_started', 'equipment_id', 'started_at'),
    )


class TimeSeriesData(Base):
    __tablename__ = 'time_series_data'
    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(String(36), ForeignKey('equipment.id', ondelete='CASCADE'), nullable=False)
    metric_type = Column(String(50), nullable=False, index=True)
    monitoring_point = Column(String(100))
    timestamp = Column(UTCDateTime, nullable=False)
    value = Column(Float)
    quality = Column(String(20), default='normal', index=True)  # normal | abnormal | suspicious

    __table_args__ = (
        Index('ix_tsd_equipment_metric_time', 'equipment_id', 'metric_type', 'timestamp'),
    )


class AlarmRecord(Base):
    __tablename__ = 'alarm_records'
    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(String(36), ForeignKey('equipment.id', ondelete='CASCADE'), nullable=False)
    metric_type = Column(String(50))
    severity = Column(String(20), nullable=False, default='medium')  # low | medium | high | critical
    status = Column(String(20), nullable=False, default='pending')  # pending | processing | resolved | ignored
    message = Column(Text)
    triggered_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index('ix_alarm_equipment_triggered', 'equipment_id', 'triggered_at'),
    )


class HealthReportRecord(Base):
    __tablename__ = 'health_reports'
    id = Column(String(36), primary_key=True)
    equipment_id = Column(String(36), index=True)  # NULL for aggregate reports
    equipment_ids = Column(Text, nullable=False)  # JSON list
    report_type = Column(String(20), nullable=False, index=True)
    window_start = Column(UTCDateTime, nullable=False)
    window_end = Column(UTCDateTime, nullable=False)
    score = Column(Float, nullable=False)
    level = Column(String(20), nullable=False)
    confidence = Column(Float, nullable=False)
    contributions = Column(Text)  # JSON
    trend_summary = Column(Text)  # JSON
    uptime_stats = Column(Text)  # JSON
    alarm_count = Column(Integer, default=0)
    abnormal_count = Column(Integer, default=0)
    anomalies = Column(Text)  # JSON list
    alarm_counts_by_status = Column(Text)  # JSON
    risk_level = Column(String(20), nullable=False)
    suggestions = Column(Text)  # JSON list
    generated_at = Column(UTCDateTime, nullable=False, index=True)
    generated_by = Column(String(100))
    remarks = Column(Text)
    additional_notes = Column(Text)
    updated_at = Column(UTCDateTime)


def dumps(value: Any) -> str:
    """JSON-encode a column payload."""
    return json.dumps(value, ensure_ascii=False)


def loads(value: Optional[str], default: Any = None) -> Any:
    if not value:
        return default
    return json.loads(value)


class DatabaseManager:
    """
    Manages the engine and transactional sessions.

    Args:
        database_url: SQLAlchemy URL.
        echo: Echo SQL statements (debugging only).
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = self._create_engine(database_url, echo)
        self.SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=self.engine))
        self._initialize_schema()

    @staticmethod
    def _create_engine(database_url: str, echo: bool):
        if database_url.startswith('sqlite'):
            # One shared connection for in-memory databases so worker threads see the same data
            kwargs: Dict[str, Any] = {'connect_args': {'check_same_thread': False}}
            if ':memory:' in database_url or database_url in ('sqlite://', 'sqlite:///'):
                kwargs['poolclass'] = StaticPool
            return create_engine(database_url, echo=echo, **kwargs)
        return create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1800,
        )

    def _initialize_schema(self):
        """Create database tables if they don't exist."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database schema checked/created successfully.")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database schema: {e}", exc_info=True)
            raise

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}", exc_info=True)
            raise
        finally:
            self.SessionLocal.remove()

    # --- Registry & Ingestion Helpers ---

    def register_equipment(self, equipment_id: str, device_code: str, name: str,
                           equipment_type: str, location: Optional[str] = None,
                           status: str = 'normal') -> None:
        """Register or update an equipment row."""
        with self.session_scope() as session:
            session.merge(Equipment(
                id=equipment_id,
                device_code=device_code,
                name=name,
                equipment_type=equipment_type,
                location=location,
                status=status,
            ))
        logger.info(f"Equipment registered/updated: {equipment_id}")

    def record_status(self, equipment_id: str, status: str,
                      started_at: datetime, ended_at: Optional[datetime] = None) -> None:
        with self.session_scope() as session:
            session.add(EquipmentStatusLog(
                equipment_id=equipment_id,
                status=status,
                started_at=as_utc_naive(started_at),
                ended_at=as_utc_naive(ended_at) if ended_at else None,
            ))

    def insert_time_series(self, equipment_id: str,
                           rows: Iterable[Tuple[str, datetime, Optional[float]]],
                           monitoring_point: Optional[str] = None,
                           quality: str = 'normal') -> int:
        """
        Bulk insert readings.

        Args:
            rows: (metric_type, timestamp, value) tuples. metric_type may be a
                  MetricType or its string value.

        Returns:
            Number of rows inserted.

        Raises:
            ValueError: a row names an unknown metric type. Nothing is inserted.
        """
        records = [
            TimeSeriesData(
                equipment_id=equipment_id,
                metric_type=MetricType(metric_type).value,
                monitoring_point=monitoring_point,
                timestamp=as_utc_naive(timestamp),
                value=value,
                quality=quality,
            )
            for metric_type, timestamp, value in rows
        ]
        with self.session_scope() as session:
            session.add_all(records)
        logger.debug(f"Inserted {len(records)} readings for {equipment_id}")
        return len(records)

    def insert_alarm(self, equipment_id: str, triggered_at: datetime, status: str = 'pending',
                     severity: str = 'medium', metric_type: Optional[str] = None,
                     message: Optional[str] = None) -> None:
        with self.session_scope() as session:
            session.add(AlarmRecord(
                equipment_id=equipment_id,
                triggered_at=as_utc_naive(triggered_at),
                status=status,
                severity=severity,
                metric_type=metric_type,
                message=message,
            ))

    def close(self):
        """Dispose of pooled connections."""
        self.SessionLocal.remove()
        self.engine.dispose()
        logger.info("Database engine disposed.")
