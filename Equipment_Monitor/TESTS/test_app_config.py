"""Tests for environment-driven configuration."""
import json

import pytest

from Equipment_Monitor.AI_MODULES.exceptions import ProfileConfigurationError
from Equipment_Monitor.AI_MODULES.metric_profiles import DEFAULT_PROFILES, MetricType
from Equipment_Monitor.CONFIG.app_config import (
    Config, get_bool_env_var, get_int_env_var, get_json_env_var, get_list_env_var, strtobool
)


@pytest.mark.parametrize("value,expected", [('yes', True), (' On ', True), ('1', True), ('false', False), ('0', False)])
def test_strtobool(value, expected):
    assert strtobool(value) is expected


def test_strtobool_rejects_garbage():
    with pytest.raises(ValueError):
        strtobool('maybe')


def test_env_helpers(monkeypatch):
    monkeypatch.setenv('EM_FLAG', 'maybe')
    monkeypatch.setenv('EM_INT', 'twelve')
    monkeypatch.setenv('EM_LIST', 'a, b,,c')
    monkeypatch.setenv('EM_JSON', '{broken')
    assert get_bool_env_var('EM_FLAG', True) is True
    assert get_bool_env_var('EM_MISSING') is False
    assert get_int_env_var('EM_INT', 7) == 7
    assert get_list_env_var('EM_LIST') == ['a', 'b', 'c']
    assert get_json_env_var('EM_JSON', {'x': 1}) == {'x': 1}


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv('DATABASE_URL', 'sqlite://')
    monkeypatch.setenv('ALARM_ESCALATION_THRESHOLD', '3')
    monkeypatch.setenv('TREND_TOLERANCE', '0.1')
    monkeypatch.setenv('METRIC_WEIGHTS', json.dumps({'vibration': 0.4}))
    monkeypatch.setenv('CORS_ALLOWED_ORIGINS', 'https://ops.example.com,https://fleet.example.com')

    cfg = Config()
    assert cfg.DATABASE_URL == 'sqlite://'
    assert cfg.METRIC_WEIGHTS == {'vibration': 0.4}
    assert cfg.CORS_ALLOWED_ORIGINS == ['https://ops.example.com', 'https://fleet.example.com']

    settings = cfg.assessment_settings()
    assert settings.alarm_escalation_threshold == 3
    assert settings.trend_tolerance == 0.1
    assert settings.stability_penalty_share == 0.5


def test_config_falls_back_on_invalid_values(monkeypatch):
    monkeypatch.setenv('METRIC_WEIGHTS', '[0.1, 0.2]')
    monkeypatch.setenv('STABILITY_PENALTY_SHARE', '1.5')
    monkeypatch.setenv('SAMPLE_FETCH_TIMEOUT_SECONDS', '-2')

    cfg = Config()
    assert cfg.METRIC_WEIGHTS == {}
    assert cfg.STABILITY_PENALTY_SHARE == 0.5
    assert cfg.SAMPLE_FETCH_TIMEOUT_SECONDS == 30.0


def test_profile_table_from_file(monkeypatch, tmp_path):
    path = tmp_path / 'profiles.json'
    path.write_text(json.dumps({'temperature': {'optimal_range': [50, 70]}}), encoding='utf-8')
    monkeypatch.setenv('METRIC_PROFILE_PATH', str(path))

    table = Config().profile_table()
    assert table[MetricType.TEMPERATURE].optimal_range == (50.0, 70.0)


def test_profile_table_defaults_and_errors(monkeypatch, tmp_path):
    monkeypatch.delenv('METRIC_PROFILE_PATH', raising=False)
    assert Config().profile_table() is DEFAULT_PROFILES

    monkeypatch.setenv('METRIC_PROFILE_PATH', str(tmp_path / 'missing.json'))
    with pytest.raises(ProfileConfigurationError):
        Config().profile_table()
