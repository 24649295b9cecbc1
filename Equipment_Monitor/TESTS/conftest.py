#!/usr/bin/env python3
"""
Shared pytest fixtures for Equipment Monitor tests
"""

from datetime import timedelta

import pytest

from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.CONFIG.app_config import Config
from Equipment_Monitor.DATA_MANAGEMENT.database_manager import DatabaseManager
from Equipment_Monitor.REPORTS.health_report_generator import HealthReportGenerator
from Equipment_Monitor.TESTS.sample_data import (
    GENERATED_AT, HEALTHY_VALUES, WINDOW_END, WINDOW_START, FakeAlarmStore, FakeRegistry,
    FakeTimeSeriesStore, InMemoryReportRepository, constant_series, healthy_samples
)


@pytest.fixture
def fake_stores():
    """Time-series, alarm, registry and repository fakes for three pieces of equipment."""
    data = {
        'EQ-001': healthy_samples(),
        'EQ-002': {
            MetricType.VIBRATION: constant_series(MetricType.VIBRATION, 4.8),
            MetricType.TEMPERATURE: constant_series(MetricType.TEMPERATURE, 67.5),
        },
        'EQ-003': {},
    }
    alarms = {
        'EQ-001': {'resolved': 1},
        'EQ-002': {'pending': 4, 'resolved': 3},
    }
    history = {
        'EQ-001': [('normal', WINDOW_START, WINDOW_START + timedelta(hours=20)),
                   ('maintenance', WINDOW_START + timedelta(hours=20), None)],
        'EQ-002': [('fault', WINDOW_START, WINDOW_START + timedelta(hours=6)),
                   ('normal', WINDOW_START + timedelta(hours=6), WINDOW_END)],
    }
    return {
        'time_series': FakeTimeSeriesStore(data),
        'alarms': FakeAlarmStore(alarms),
        'registry': FakeRegistry(['EQ-001', 'EQ-002', 'EQ-003'], history),
        'repository': InMemoryReportRepository(),
    }


@pytest.fixture
def generator(fake_stores):
    return HealthReportGenerator(
        time_series_store=fake_stores['time_series'],
        alarm_store=fake_stores['alarms'],
        registry=fake_stores['registry'],
        repository=fake_stores['repository'],
        fetch_timeout=5.0,
        clock=lambda: GENERATED_AT,
    )


# --- Database fixtures ---

@pytest.fixture
def db_manager():
    """In-memory SQLite database shared across threads."""
    db = DatabaseManager('sqlite://')
    yield db
    db.close()


@pytest.fixture
def seeded_db(db_manager):
    """Two registered pieces of equipment with a day of readings, alarms and status history."""
    db_manager.register_equipment('EQ-001', 'PUMP-001', 'Main Pump', 'pump', location='Engine Room')
    db_manager.register_equipment('EQ-002', 'FAN-001', 'Cooling Fan', 'fan', location='Deck 2')

    for metric, value in HEALTHY_VALUES.items():
        rows = [(metric.value, WINDOW_START + i * timedelta(minutes=30), value) for i in range(48)]
        db_manager.insert_time_series('EQ-001', rows)
    db_manager.insert_time_series('EQ-001', [('temperature', WINDOW_START, 250.0)], quality='abnormal')

    rows = [('temperature', WINDOW_START + i * timedelta(minutes=30), 88.0) for i in range(48)]
    db_manager.insert_time_series('EQ-002', rows)

    db_manager.insert_alarm('EQ-001', WINDOW_START + timedelta(hours=2), status='resolved')
    db_manager.insert_alarm('EQ-002', WINDOW_START + timedelta(hours=3), status='pending', severity='high')
    db_manager.insert_alarm('EQ-002', WINDOW_START + timedelta(hours=4), status='pending')
    db_manager.insert_alarm('EQ-002', WINDOW_END + timedelta(hours=4), status='pending')

    db_manager.record_status('EQ-001', 'normal', WINDOW_START, WINDOW_START + timedelta(hours=18))
    db_manager.record_status('EQ-001', 'maintenance', WINDOW_START + timedelta(hours=18))
    return db_manager


@pytest.fixture
def test_config():
    cfg = Config()
    cfg.DATABASE_URL = 'sqlite://'
    cfg.METRIC_PROFILE_PATH = None
    cfg.METRIC_WEIGHTS = {}
    cfg.REPORT_PAGE_SIZE = 20
    # In-memory SQLite shares one connection, so assess members one at a time
    cfg.AGGREGATE_MAX_WORKERS = 1
    return cfg


@pytest.fixture
def flask_test_client(test_config, seeded_db):
    """Create a test client for the Flask app backed by the seeded database"""
    from Equipment_Monitor.WEB_APPLICATION.report_api import create_app
    app = create_app(test_config, db=seeded_db)
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
