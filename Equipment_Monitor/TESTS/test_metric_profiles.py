"""Tests for the metric profile table and its JSON overrides."""
import json
import math

import pytest

from Equipment_Monitor.AI_MODULES.exceptions import ProfileConfigurationError
from Equipment_Monitor.AI_MODULES.metric_profiles import (
    CORE_METRICS, DEFAULT_PROFILES, MetricProfile, MetricType, build_profile_table, load_profile_table
)


@pytest.mark.engine
def test_core_metric_set():
    assert set(CORE_METRICS) == {
        MetricType.VIBRATION, MetricType.TEMPERATURE, MetricType.PRESSURE, MetricType.SPEED,
        MetricType.CURRENT, MetricType.VOLTAGE, MetricType.POWER,
    }
    assert not MetricType.HUMIDITY.is_core
    assert MetricType.VIBRATION.is_core


@pytest.mark.engine
def test_default_core_weights_sum_to_one():
    total = math.fsum(DEFAULT_PROFILES[m].weight for m in CORE_METRICS)
    assert total == pytest.approx(1.0)


@pytest.mark.engine
def test_default_profiles_nest_ranges():
    for metric, profile in DEFAULT_PROFILES.items():
        w_low, w_high = profile.warning_range
        o_low, o_high = profile.optimal_range
        assert w_low <= o_low <= profile.ideal_value <= o_high <= w_high, metric


@pytest.mark.engine
def test_unprofiled_members_have_no_profile():
    for metric in (MetricType.LEVEL, MetricType.RESISTANCE, MetricType.SWITCH):
        assert metric.profile is None
        assert not metric.is_core


@pytest.mark.engine
@pytest.mark.parametrize("key,expected", [
    ('temperature', MetricType.TEMPERATURE),
    (' Vibration ', MetricType.VIBRATION),
    (MetricType.POWER, MetricType.POWER),
    ('oil_quality', None),
    (None, None),
    (42, None),
])
def test_parse_metric_keys(key, expected):
    assert MetricType.parse(key) == expected


@pytest.mark.engine
def test_ideal_defaults_to_optimal_midpoint():
    assert MetricType.TEMPERATURE.profile.ideal_value == pytest.approx(67.5)
    assert MetricType.VIBRATION.profile.ideal_value == 0.0


@pytest.mark.engine
def test_profile_rejects_non_nested_ranges():
    with pytest.raises(ProfileConfigurationError):
        MetricProfile(optimal_range=(10.0, 20.0), warning_range=(12.0, 30.0), weight=0.1, unit='x')
    with pytest.raises(ProfileConfigurationError):
        MetricProfile(optimal_range=(10.0, 20.0), warning_range=(0.0, 30.0), weight=0.1, unit='x', ideal=25.0)
    with pytest.raises(ProfileConfigurationError):
        MetricProfile(optimal_range=(10.0, 20.0), warning_range=(0.0, 30.0), weight=-0.1, unit='x')


@pytest.mark.engine
def test_overrides_produce_new_table():
    table = build_profile_table({'temperature': {'optimal_range': [55, 70], 'weight': 0.3}})
    assert table[MetricType.TEMPERATURE].optimal_range == (55.0, 70.0)
    assert table[MetricType.TEMPERATURE].warning_range == DEFAULT_PROFILES[MetricType.TEMPERATURE].warning_range
    assert table[MetricType.TEMPERATURE].weight == 0.3
    # Built-in table untouched
    assert DEFAULT_PROFILES[MetricType.TEMPERATURE].optimal_range == (60.0, 75.0)


@pytest.mark.engine
def test_override_can_add_profile_for_unscored_member():
    table = build_profile_table({'level': {'optimal_range': [40, 60], 'warning_range': [20, 80], 'unit': '%'}})
    assert table[MetricType.LEVEL].unit == '%'
    assert not table[MetricType.LEVEL].core


@pytest.mark.engine
def test_override_rejects_unknown_metric():
    with pytest.raises(ProfileConfigurationError):
        build_profile_table({'oil_quality': {'weight': 0.1}})


@pytest.mark.engine
def test_load_profile_table_from_file(tmp_path):
    path = tmp_path / 'profiles.json'
    path.write_text(json.dumps({'pressure': {'warning_range': [0.1, 0.9]}}), encoding='utf-8')
    table = load_profile_table(path)
    assert table[MetricType.PRESSURE].warning_range == (0.1, 0.9)


@pytest.mark.engine
def test_load_profile_table_errors(tmp_path):
    with pytest.raises(ProfileConfigurationError):
        load_profile_table(tmp_path / 'missing.json')
    bad = tmp_path / 'bad.json'
    bad.write_text('{not json', encoding='utf-8')
    with pytest.raises(ProfileConfigurationError):
        load_profile_table(bad)
    assert load_profile_table(None) is DEFAULT_PROFILES
