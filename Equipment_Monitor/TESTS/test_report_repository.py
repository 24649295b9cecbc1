"""Integration tests for the SQLAlchemy stores and the report repository."""
from dataclasses import replace
from datetime import timedelta

import pytest

from Equipment_Monitor.AI_MODULES.assessment_models import AnomalyPoint, AnomalySeverity, RiskLevel
from Equipment_Monitor.AI_MODULES.exceptions import ReportNotFoundError
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricType
from Equipment_Monitor.DATA_MANAGEMENT.stores import (
    HealthReportRepository, ReportFilters, SqlAlarmStore, SqlEquipmentRegistry, SqlTimeSeriesStore,
    new_report_id
)
from Equipment_Monitor.REPORTS.health_report_generator import HealthReportGenerator
from Equipment_Monitor.REPORTS.report_models import HealthLevel, HealthReport, ReportType

from Equipment_Monitor.TESTS.sample_data import GENERATED_AT, WINDOW_END, WINDOW_START

WINDOW = (WINDOW_START, WINDOW_END)


def make_report(equipment_ids=('EQ-001',), generated_at=GENERATED_AT, score=88.0,
                report_type=ReportType.SINGLE):
    return HealthReport(
        id=new_report_id(),
        equipment_ids=tuple(equipment_ids),
        report_type=report_type,
        window_start=WINDOW_START,
        window_end=WINDOW_END,
        score=score,
        level=HealthLevel.GOOD,
        confidence=0.8,
        risk_level=RiskLevel.LOW,
        generated_at=generated_at,
        generated_by='tester',
        suggestions=('Equipment is operating normally; continue routine maintenance',),
    )


@pytest.fixture
def repository(db_manager):
    return HealthReportRepository(db_manager)


@pytest.fixture
def sql_generator(seeded_db, test_config):
    generator = HealthReportGenerator.from_config(seeded_db, test_config)
    generator.clock = lambda: GENERATED_AT
    return generator


# --- Read-side stores ---

@pytest.mark.integration
def test_time_series_store_excludes_abnormal_readings(seeded_db):
    store = SqlTimeSeriesStore(seeded_db)
    samples = store.query('EQ-001', MetricType.TEMPERATURE, WINDOW)
    assert len(samples) == 48
    assert {s.value for s in samples} == {67.5}
    assert samples[0].timestamp == WINDOW_START
    assert samples == sorted(samples, key=lambda s: s.timestamp)


@pytest.mark.integration
def test_time_series_store_respects_window(seeded_db):
    store = SqlTimeSeriesStore(seeded_db)
    half = (WINDOW_START, WINDOW_START + timedelta(hours=12))
    # Both endpoints are inclusive
    assert len(store.query('EQ-002', 'temperature', half)) == 25
    assert store.query('EQ-002', MetricType.VIBRATION, WINDOW) == []
    assert store.query_frame('EQ-404', MetricType.TEMPERATURE, WINDOW).empty


@pytest.mark.integration
def test_insert_accepts_metric_type_members(db_manager):
    db_manager.register_equipment('EQ-010', 'PUMP-010', 'Bilge Pump', 'pump')
    db_manager.insert_time_series('EQ-010', [(MetricType.TEMPERATURE, WINDOW_START, 67.5)])
    samples = SqlTimeSeriesStore(db_manager).query('EQ-010', MetricType.TEMPERATURE, WINDOW)
    assert len(samples) == 1
    assert samples[0].metric_type is MetricType.TEMPERATURE


@pytest.mark.integration
def test_insert_rejects_unknown_metric_type(db_manager):
    db_manager.register_equipment('EQ-010', 'PUMP-010', 'Bilge Pump', 'pump')
    with pytest.raises(ValueError):
        db_manager.insert_time_series('EQ-010', [('oil_quality', WINDOW_START, 3.0)])
    assert SqlTimeSeriesStore(db_manager).query_frame('EQ-010', MetricType.TEMPERATURE, WINDOW).empty


@pytest.mark.integration
def test_alarm_counts_by_status(seeded_db):
    store = SqlAlarmStore(seeded_db)
    assert store.count_by_status('EQ-002', WINDOW) == {'pending': 2}
    assert store.count_by_status('EQ-001', WINDOW) == {'resolved': 1}
    assert store.count_by_status('EQ-404', WINDOW) == {}


@pytest.mark.integration
def test_registry(seeded_db):
    registry = SqlEquipmentRegistry(seeded_db)
    assert registry.exists('EQ-001')
    assert not registry.exists('EQ-404')

    history = registry.status_history('EQ-001', WINDOW)
    assert [h[0] for h in history] == ['normal', 'maintenance']
    assert history[1][2] is None
    assert registry.status_history('EQ-001', (WINDOW_END + timedelta(days=1), WINDOW_END + timedelta(days=2))) \
        == [('maintenance', WINDOW_START + timedelta(hours=18), None)]


# --- Generator against SQL stores ---

@pytest.mark.integration
def test_sql_backed_report_for_healthy_equipment(sql_generator):
    report = sql_generator.generate_report('EQ-001', WINDOW_START, WINDOW_END)
    # The abnormal 250 degree reading is never scored
    assert report.score == 100.0
    assert report.contributions[MetricType.TEMPERATURE].sample_count == 48
    assert report.uptime_stats.running_duration == 18 * 3600.0
    assert report.uptime_stats.maintenance_duration == 6 * 3600.0
    assert report.uptime_stats.uptime_rate == 75.0
    assert report.alarm_count == 1


@pytest.mark.integration
def test_sql_backed_report_for_overheating_equipment(sql_generator):
    report = sql_generator.generate_report('EQ-002', WINDOW_START, WINDOW_END)
    assert report.score == pytest.approx(50.5)
    assert report.level is HealthLevel.POOR
    assert report.risk_level is RiskLevel.HIGH
    # The alarm raised after the window is not counted
    assert report.alarm_count == 2
    assert report.uptime_stats.unknown_duration == 24 * 3600.0


@pytest.mark.integration
def test_persisted_report_round_trip(sql_generator, seeded_db):
    report = sql_generator.generate_report('EQ-002', WINDOW_START, WINDOW_END)
    loaded = HealthReportRepository(seeded_db).get(report.id)
    assert loaded.to_dict() == report.to_dict()
    assert loaded.contributions[MetricType.TEMPERATURE] == report.contributions[MetricType.TEMPERATURE]


@pytest.mark.integration
def test_anomalies_persist_with_report(repository):
    spike = AnomalyPoint(
        metric_type=MetricType.VIBRATION,
        timestamp=WINDOW_START + timedelta(hours=5),
        value=6.0,
        expected_value=1.104167,
        deviation_percent=443.4,
        severity=AnomalySeverity.CRITICAL,
        equipment_id='EQ-001',
    )
    report = replace(make_report(), abnormal_count=4, anomalies=(spike,))
    repository.save(report)

    loaded = repository.get(report.id)
    assert loaded.abnormal_count == 4
    assert loaded.anomalies == (spike,)
    assert loaded.to_dict() == report.to_dict()
    assert repository.get(repository.save(make_report()).id).anomalies == ()


@pytest.mark.integration
def test_aggregate_report_persists_member_ids(sql_generator, seeded_db):
    report = sql_generator.generate_report(['EQ-001', 'EQ-002'], WINDOW_START, WINDOW_END)
    loaded = HealthReportRepository(seeded_db).get(report.id)
    assert loaded.report_type is ReportType.AGGREGATE
    assert loaded.equipment_ids == ('EQ-001', 'EQ-002')
    assert loaded.equipment_id is None
    assert loaded.score == pytest.approx((100.0 + 50.5) / 2, abs=0.01)


# --- Repository ---

@pytest.mark.integration
def test_get_missing_report(repository):
    with pytest.raises(ReportNotFoundError) as exc_info:
        repository.get('missing')
    assert exc_info.value.report_id == 'missing'


@pytest.mark.integration
def test_annotations_leave_assessment_untouched(repository):
    report = repository.save(make_report())
    updated = repository.update_annotations(report.id, remarks='Checked on site')
    assert updated.remarks == 'Checked on site'
    assert updated.additional_notes is None
    assert updated.score == report.score
    assert updated.suggestions == report.suggestions

    updated = repository.update_annotations(report.id, additional_notes='Bearing ordered')
    assert updated.remarks == 'Checked on site'
    assert updated.additional_notes == 'Bearing ordered'
    assert repository.get(report.id).additional_notes == 'Bearing ordered'

    with pytest.raises(ReportNotFoundError):
        repository.update_annotations('missing', remarks='x')


@pytest.mark.integration
def test_list_newest_first_with_pagination(repository):
    for hours in range(5):
        repository.save(make_report(generated_at=GENERATED_AT + timedelta(hours=hours)))

    items, total = repository.list(ReportFilters(), page=1, page_size=2)
    assert total == 5
    assert [r.generated_at for r in items] == [GENERATED_AT + timedelta(hours=4), GENERATED_AT + timedelta(hours=3)]

    items, total = repository.list(ReportFilters(), page=3, page_size=2)
    assert total == 5
    assert len(items) == 1
    assert items[0].generated_at == GENERATED_AT

    items, _ = repository.list(ReportFilters(), page=4, page_size=2)
    assert items == []


@pytest.mark.integration
def test_list_filters(repository):
    repository.save(make_report(('EQ-001',), GENERATED_AT))
    repository.save(make_report(('EQ-002',), GENERATED_AT + timedelta(days=1)))
    repository.save(make_report(('EQ-001', 'EQ-002'), GENERATED_AT + timedelta(days=2),
                                report_type=ReportType.AGGREGATE))

    items, total = repository.list(ReportFilters(equipment_id='EQ-001'))
    assert total == 1
    assert items[0].equipment_id == 'EQ-001'

    _, total = repository.list(ReportFilters(report_type=ReportType.AGGREGATE))
    assert total == 1

    items, total = repository.list(ReportFilters(start_time=GENERATED_AT + timedelta(hours=12),
                                                 end_time=GENERATED_AT + timedelta(days=1, hours=12)))
    assert total == 1
    assert items[0].equipment_id == 'EQ-002'


@pytest.mark.integration
def test_delete(repository):
    report = repository.save(make_report())
    repository.delete(report.id)
    with pytest.raises(ReportNotFoundError):
        repository.get(report.id)
    with pytest.raises(ReportNotFoundError):
        repository.delete(report.id)
