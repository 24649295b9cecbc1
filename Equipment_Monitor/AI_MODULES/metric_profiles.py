#!/usr/bin/env python3
"""
Metric Profile Table for the Equipment Health Assessment Engine.

Every monitored quantity is a member of the closed ``MetricType`` enum. Members
that can be scored carry a ``MetricProfile`` describing their optimal and
warning operating ranges, the ideal value, a default weight and the unit.
Discrete or unranged quantities (level, resistance, switch state) have no
profile and are ignored by the scorer.

Profiles may be overridden from a JSON file (see ``load_profile_table``),
producing a new read-only table; the built-in table is never modified.
"""

import json
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import structlog

from Equipment_Monitor.AI_MODULES.exceptions import ProfileConfigurationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MetricProfile:
    """Static scoring configuration for one metric type."""

    optimal_range: Tuple[float, float]
    warning_range: Tuple[float, float]
    weight: float
    unit: str
    ideal: Optional[float] = None
    core: bool = True

    def __post_init__(self):
        o_low, o_high = self.optimal_range
        w_low, w_high = self.warning_range
        if not (w_low <= o_low <= o_high <= w_high):
            raise ProfileConfigurationError(
                f"Ranges must nest: warning {self.warning_range} must contain optimal {self.optimal_range}"
            )
        if self.ideal is not None and not (o_low <= self.ideal <= o_high):
            raise ProfileConfigurationError(
                f"Ideal value {self.ideal} lies outside optimal range {self.optimal_range}"
            )
        if self.weight < 0:
            raise ProfileConfigurationError(f"Weight must be non-negative, got {self.weight}")

    @property
    def ideal_value(self) -> float:
        """Point of best health; the optimal midpoint unless configured."""
        if self.ideal is not None:
            return self.ideal
        return (self.optimal_range[0] + self.optimal_range[1]) / 2.0

    @property
    def warning_span(self) -> float:
        return self.warning_range[1] - self.warning_range[0]

    def dispersion_scale(self) -> float:
        """Reference spread used to turn a standard deviation into a ratio."""
        half_span = self.warning_span / 2.0
        if half_span > 0:
            return half_span
        return max(abs(self.ideal_value), 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'optimal_range': list(self.optimal_range),
            'warning_range': list(self.warning_range),
            'ideal': self.ideal_value,
            'weight': self.weight,
            'unit': self.unit,
            'core': self.core,
        }


class MetricType(str, Enum):
    """Physical measurement types reported by monitoring points."""

    TEMPERATURE = 'temperature'
    PRESSURE = 'pressure'
    HUMIDITY = 'humidity'
    VIBRATION = 'vibration'
    SPEED = 'speed'
    CURRENT = 'current'
    VOLTAGE = 'voltage'
    POWER = 'power'
    FREQUENCY = 'frequency'
    LEVEL = 'level'
    RESISTANCE = 'resistance'
    SWITCH = 'switch'

    @classmethod
    def parse(cls, key: Union[str, 'MetricType', None]) -> Optional['MetricType']:
        """Resolve a store key to a member, or None for unknown keys."""
        if isinstance(key, MetricType):
            return key
        if not isinstance(key, str):
            return None
        try:
            return cls(key.strip().lower())
        except ValueError:
            return None

    @property
    def profile(self) -> Optional[MetricProfile]:
        """Built-in profile for this metric type (None when unscored)."""
        return DEFAULT_PROFILES.get(self)

    @property
    def is_core(self) -> bool:
        profile = self.profile
        return profile is not None and profile.core


# Core weights:
# vibration 25%, temperature 20%, pressure 15%, speed 15%, current 10%, voltage 10%, power 5%.
DEFAULT_PROFILES: Mapping[MetricType, MetricProfile] = MappingProxyType({
    MetricType.VIBRATION: MetricProfile(
        optimal_range=(0.0, 2.5), warning_range=(0.0, 7.1), ideal=0.0, weight=0.25, unit='mm/s'),
    MetricType.TEMPERATURE: MetricProfile(
        optimal_range=(60.0, 75.0), warning_range=(45.0, 95.0), weight=0.20, unit='°C'),
    MetricType.PRESSURE: MetricProfile(
        optimal_range=(0.4, 0.6), warning_range=(0.2, 0.8), weight=0.15, unit='MPa'),
    MetricType.SPEED: MetricProfile(
        optimal_range=(1400.0, 1600.0), warning_range=(1200.0, 1800.0), weight=0.15, unit='rpm'),
    MetricType.CURRENT: MetricProfile(
        optimal_range=(40.0, 80.0), warning_range=(20.0, 100.0), weight=0.10, unit='A'),
    MetricType.VOLTAGE: MetricProfile(
        optimal_range=(370.0, 410.0), warning_range=(340.0, 440.0), weight=0.10, unit='V'),
    MetricType.POWER: MetricProfile(
        optimal_range=(600.0, 1400.0), warning_range=(200.0, 1600.0), weight=0.05, unit='kW'),
    MetricType.HUMIDITY: MetricProfile(
        optimal_range=(30.0, 60.0), warning_range=(20.0, 80.0), weight=0.05, unit='%RH', core=False),
    MetricType.FREQUENCY: MetricProfile(
        optimal_range=(49.5, 50.5), warning_range=(48.0, 52.0), weight=0.05, unit='Hz', core=False),
})

CORE_METRICS: Tuple[MetricType, ...] = tuple(
    metric for metric in MetricType if metric in DEFAULT_PROFILES and DEFAULT_PROFILES[metric].core
)


def _profile_from_dict(base: Optional[MetricProfile], raw: Dict[str, Any]) -> MetricProfile:
    """Build a profile from a JSON entry, filling gaps from ``base``."""
    try:
        if base is None:
            return MetricProfile(
                optimal_range=tuple(float(v) for v in raw['optimal_range']),
                warning_range=tuple(float(v) for v in raw['warning_range']),
                weight=float(raw.get('weight', 0.05)),
                unit=str(raw.get('unit', '')),
                ideal=float(raw['ideal']) if raw.get('ideal') is not None else None,
                core=bool(raw.get('core', False)),
            )
        changes = {}
        if 'optimal_range' in raw:
            changes['optimal_range'] = tuple(float(v) for v in raw['optimal_range'])
        if 'warning_range' in raw:
            changes['warning_range'] = tuple(float(v) for v in raw['warning_range'])
        if 'weight' in raw:
            changes['weight'] = float(raw['weight'])
        if 'unit' in raw:
            changes['unit'] = str(raw['unit'])
        if 'ideal' in raw:
            changes['ideal'] = float(raw['ideal']) if raw['ideal'] is not None else None
        if 'core' in raw:
            changes['core'] = bool(raw['core'])
        return replace(base, **changes)
    except (KeyError, TypeError, ValueError) as e:
        raise ProfileConfigurationError(f"Invalid metric profile entry {raw!r}: {e}") from e


def build_profile_table(overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Mapping[MetricType, MetricProfile]:
    """
    Return a read-only profile table with ``overrides`` merged over the defaults.

    Args:
        overrides: {metric_type: {field: value}} where fields are any of
                   optimal_range, warning_range, weight, unit, ideal, core.

    Returns:
        Mapping of MetricType to MetricProfile.
    """
    if not overrides:
        return DEFAULT_PROFILES

    table = dict(DEFAULT_PROFILES)
    for key, raw in overrides.items():
        metric = MetricType.parse(key)
        if metric is None:
            raise ProfileConfigurationError(f"Unknown metric type in profile overrides: {key!r}")
        if not isinstance(raw, dict):
            raise ProfileConfigurationError(f"Profile override for {key!r} must be an object")
        table[metric] = _profile_from_dict(table.get(metric), raw)
    return MappingProxyType(table)


def load_profile_table(path: Optional[Union[str, Path]]) -> Mapping[MetricType, MetricProfile]:
    """Load profile overrides from a JSON file; defaults when no path is given."""
    if not path:
        return DEFAULT_PROFILES

    config_path = Path(path)
    if not config_path.is_file():
        raise ProfileConfigurationError(f"Metric profile file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            overrides = json.load(f)
        except json.JSONDecodeError as e:
            raise ProfileConfigurationError(f"Metric profile file {config_path} is not valid JSON: {e}") from e

    table = build_profile_table(overrides)
    logger.info("Metric profile overrides loaded", path=str(config_path), metrics=sorted(overrides))
    return table
