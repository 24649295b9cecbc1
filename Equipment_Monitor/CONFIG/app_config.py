#!/usr/bin/env python3
"""
Application Configuration for the Equipment Health Assessment Engine
Centralized configuration hub loading settings primarily via environment variables,
with fallback defaults. Uses python-dotenv to load a .env file if present.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Mapping
from dotenv import load_dotenv
import json

from Equipment_Monitor.AI_MODULES.assessment_models import AssessmentSettings
from Equipment_Monitor.AI_MODULES.exceptions import ProfileConfigurationError
from Equipment_Monitor.AI_MODULES.metric_profiles import MetricProfile, MetricType, load_profile_table

# --- Load .env File ---
# .env is looked up in the Equipment_Monitor directory; deployments set env vars directly.
env_path = Path(__file__).parent.parent / '.env'
if env_path.is_file():
    load_dotenv(dotenv_path=env_path, override=False)

log = logging.getLogger(__name__)

_TRUE_STRINGS = ('y', 'yes', 't', 'true', 'on', '1')
_FALSE_STRINGS = ('n', 'no', 'f', 'false', 'off', '0')

# --- Helper Functions ---

def strtobool(value: str) -> bool:
    """Parse a truthy/falsy string; raises ValueError on anything else."""
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid truth value {value!r}")

def get_env_var(var_name: str, default: Any = None) -> Any:
    """Gets an environment variable, returning a default if not set."""
    return os.environ.get(var_name, default)

def get_bool_env_var(var_name: str, default: bool = False) -> bool:
    """Gets a boolean environment variable, handling various truthy/falsy strings."""
    value = os.environ.get(var_name)
    if value is None:
        return default
    try:
        return strtobool(value)
    except ValueError:
        return default

def get_int_env_var(var_name: str, default: int) -> int:
    """Gets an integer environment variable."""
    try:
        return int(os.environ.get(var_name, default))
    except (ValueError, TypeError):
        return default

def get_float_env_var(var_name: str, default: float) -> float:
    """Gets a float environment variable."""
    try:
        return float(os.environ.get(var_name, default))
    except (ValueError, TypeError):
        return default

def get_list_env_var(var_name: str, default: List = None, separator: str = ',') -> List:
    """Gets a list environment variable (comma-separated)."""
    value = os.environ.get(var_name)
    if value:
        return [item.strip() for item in value.split(separator) if item.strip()]
    return default if default is not None else []

def get_json_env_var(var_name: str, default: Any = None) -> Any:
    """Gets an environment variable expected to contain JSON."""
    value = os.environ.get(var_name)
    if value:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            log.warning(f"Failed to parse JSON from environment variable '{var_name}'. Using default.")
            return default
    return default

# --- Configuration Class ---

class Config:
    """
    Central configuration class loading settings from environment variables.
    Values are read when the instance is created, so tests can build a
    Config after adjusting the environment.
    """

    def __init__(self):
        # General Application Settings
        self.FLASK_ENV: str = get_env_var('FLASK_ENV', 'development')
        self.DEBUG: bool = get_bool_env_var('FLASK_DEBUG', self.FLASK_ENV == 'development')
        self.LOG_LEVEL: str = get_env_var('LOG_LEVEL', 'INFO').upper()
        self.LOG_FORMAT: str = get_env_var('LOG_FORMAT', 'console')  # 'console' or 'json'

        # Database Configuration
        self.DATABASE_URL: str = get_env_var('DATABASE_URL', 'sqlite:///equipment_monitor.db')
        self.DB_ECHO: bool = get_bool_env_var('DB_ECHO', False)

        # CORS Configuration
        self.CORS_ALLOWED_ORIGINS: List[str] = get_list_env_var('CORS_ALLOWED_ORIGINS', ['*'])

        # Assessment Engine Settings
        self.METRIC_PROFILE_PATH: Optional[str] = get_env_var('METRIC_PROFILE_PATH')
        self.METRIC_WEIGHTS: Dict[str, float] = get_json_env_var('METRIC_WEIGHTS', {}) or {}
        self.ALARM_ESCALATION_THRESHOLD: int = get_int_env_var('ALARM_ESCALATION_THRESHOLD', 5)
        self.TREND_TOLERANCE: float = get_float_env_var('TREND_TOLERANCE', 0.05)
        self.TREND_MIN_SAMPLES: int = get_int_env_var('TREND_MIN_SAMPLES', 3)
        self.CONFIDENCE_SATURATION_SAMPLES: int = get_int_env_var('CONFIDENCE_SATURATION_SAMPLES', 100)
        self.STABILITY_PENALTY_SHARE: float = get_float_env_var('STABILITY_PENALTY_SHARE', 0.5)

        # Report Generation
        self.SAMPLE_FETCH_TIMEOUT_SECONDS: float = get_float_env_var('SAMPLE_FETCH_TIMEOUT_SECONDS', 30.0)
        self.AGGREGATE_MAX_WORKERS: int = get_int_env_var('AGGREGATE_MAX_WORKERS', 4)
        self.REPORT_PAGE_SIZE: int = get_int_env_var('REPORT_PAGE_SIZE', 20)

        # --- Validation ---
        if not isinstance(self.METRIC_WEIGHTS, dict):
            log.warning("METRIC_WEIGHTS must be a JSON object. Ignoring it.")
            self.METRIC_WEIGHTS = {}
        if not 0.0 <= self.STABILITY_PENALTY_SHARE <= 1.0:
            log.warning("STABILITY_PENALTY_SHARE outside [0, 1]. Using 0.5.")
            self.STABILITY_PENALTY_SHARE = 0.5
        if self.SAMPLE_FETCH_TIMEOUT_SECONDS <= 0:
            log.warning("SAMPLE_FETCH_TIMEOUT_SECONDS must be positive. Using 30.")
            self.SAMPLE_FETCH_TIMEOUT_SECONDS = 30.0

        log.info(f"Configuration loaded for environment: {self.FLASK_ENV}")
        log.info(f"Database URL: {self.DATABASE_URL.split('@')[-1] if '@' in self.DATABASE_URL else self.DATABASE_URL}")  # Avoid logging password

    def assessment_settings(self) -> AssessmentSettings:
        """Engine constants resolved from this configuration."""
        return AssessmentSettings(
            stability_penalty_share=self.STABILITY_PENALTY_SHARE,
            confidence_saturation_samples=self.CONFIDENCE_SATURATION_SAMPLES,
            trend_tolerance=self.TREND_TOLERANCE,
            trend_min_samples=self.TREND_MIN_SAMPLES,
            alarm_escalation_threshold=self.ALARM_ESCALATION_THRESHOLD,
        )

    def profile_table(self) -> Mapping[MetricType, MetricProfile]:
        """Built-in profiles, merged with the JSON override file when configured."""
        try:
            return load_profile_table(self.METRIC_PROFILE_PATH)
        except ProfileConfigurationError:
            log.error(f"Invalid metric profile file: {self.METRIC_PROFILE_PATH}")
            raise

# Global instance
config = Config()
