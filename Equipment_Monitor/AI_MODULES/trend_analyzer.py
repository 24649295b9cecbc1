#!/usr/bin/env python3
"""
Trend analysis for monitored metrics.

A report window is split at its time midpoint into a baseline half and a
recent half. For each metric the recent mean is compared with the baseline
mean: small relative changes are ``stable``; larger ones are ``improving``
when the recent mean scores closer to the optimal range and ``declining``
when it scores further away. A dispersion-based stability note and a
least-squares slope complete the picture.

The analyzer also flags individual readings that sit more than 1.5 standard
deviations from their metric's window mean as anomalies.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog
from scipy import stats

from Equipment_Monitor.AI_MODULES.assessment_models import (
    AnomalyPoint, AnomalySeverity, AssessmentSettings, MetricSample, Stability, Trend, TrendResult
)
from Equipment_Monitor.AI_MODULES.metric_profiles import DEFAULT_PROFILES, MetricProfile, MetricType
from Equipment_Monitor.AI_MODULES.soh_calculator import central_score, dispersion_ratio, valid_values

logger = structlog.get_logger(__name__)

STEADY_RATIO = 0.1
FLUCTUATING_RATIO = 0.3

# Deviation from the window mean, in population standard deviations
ANOMALY_THRESHOLDS = (
    (3.0, AnomalySeverity.CRITICAL),
    (2.0, AnomalySeverity.HIGH),
    (1.5, AnomalySeverity.MEDIUM),
)
ANOMALY_MIN_SAMPLES = 3


def split_window(samples: Sequence[MetricSample],
                 window_start: datetime,
                 window_end: datetime) -> Tuple[List[MetricSample], List[MetricSample]]:
    """
    Split samples at the window's time midpoint.

    Returns:
        (baseline, recent): samples before the midpoint, and samples at or
        after it. Samples outside the window are dropped.
    """
    midpoint = window_start + (window_end - window_start) / 2
    baseline, recent = [], []
    for sample in sorted(samples, key=lambda s: s.timestamp):
        if sample.timestamp < window_start or sample.timestamp > window_end:
            continue
        if sample.timestamp < midpoint:
            baseline.append(sample)
        else:
            recent.append(sample)
    return baseline, recent


def _slope_per_hour(samples: Sequence[MetricSample]) -> float:
    points = [(s.timestamp, float(s.value)) for s in samples
              if isinstance(s, MetricSample) and s.is_valid()]
    if len(points) < 2:
        return 0.0
    origin = min(t for t, _ in points)
    x = np.array([(t - origin).total_seconds() / 3600.0 for t, _ in points])
    y = np.array([v for _, v in points])
    if np.ptp(x) == 0:
        return 0.0
    slope = stats.linregress(x, y).slope
    return float(slope) if math.isfinite(slope) else 0.0


def anomaly_severity(deviation: float, std: float) -> Optional[AnomalySeverity]:
    """Severity of a deviation from the mean, or None below 1.5 sigma."""
    if std <= 0:
        return None
    for sigmas, severity in ANOMALY_THRESHOLDS:
        if deviation > sigmas * std:
            return severity
    return None


def _default_profiles() -> Mapping[MetricType, MetricProfile]:
    return DEFAULT_PROFILES


@dataclass(frozen=True)
class TrendAnalyzer:
    """Compares recent and baseline sample windows per metric."""

    profiles: Mapping[MetricType, MetricProfile] = field(default_factory=_default_profiles)
    settings: AssessmentSettings = field(default_factory=AssessmentSettings)

    def analyze_trend(self,
                      metric_type: Union[MetricType, str],
                      recent_samples: Sequence[Union[MetricSample, float]],
                      baseline_samples: Sequence[Union[MetricSample, float]]) -> TrendResult:
        """
        Classify the direction and stability of one metric.

        Insufficient data in either window degrades to a stable trend rather
        than failing.
        """
        metric = MetricType.parse(metric_type)
        profile = self.profiles.get(metric) if metric is not None else None

        recent = valid_values(recent_samples)
        baseline = valid_values(baseline_samples)
        slope = _slope_per_hour(list(baseline_samples or ()) + list(recent_samples or ()))

        minimum = max(1, self.settings.trend_min_samples)
        if profile is None or recent.size < minimum or baseline.size < minimum:
            return TrendResult(
                trend=Trend.STABLE,
                stability=Stability.INSUFFICIENT_DATA,
                recent_mean=float(np.mean(recent)) if recent.size else None,
                baseline_mean=float(np.mean(baseline)) if baseline.size else None,
                slope_per_hour=slope,
            )

        recent_mean = float(np.mean(recent))
        baseline_mean = float(np.mean(baseline))
        scale = abs(baseline_mean) if abs(baseline_mean) > 1e-9 else profile.dispersion_scale()
        relative_change = abs(recent_mean - baseline_mean) / scale

        if relative_change < self.settings.trend_tolerance:
            trend = Trend.STABLE
        else:
            recent_score = central_score(profile, recent_mean)
            baseline_score = central_score(profile, baseline_mean)
            if recent_score > baseline_score:
                trend = Trend.IMPROVING
            elif recent_score < baseline_score:
                trend = Trend.DECLINING
            else:
                trend = Trend.STABLE

        ratio = dispersion_ratio(profile, float(np.std(recent)))
        if ratio < STEADY_RATIO:
            stability = Stability.STEADY
        elif ratio < FLUCTUATING_RATIO:
            stability = Stability.FLUCTUATING
        else:
            stability = Stability.ERRATIC

        return TrendResult(
            trend=trend,
            stability=stability,
            relative_change=relative_change,
            recent_mean=round(recent_mean, 6),
            baseline_mean=round(baseline_mean, 6),
            slope_per_hour=slope,
        )

    def analyze_window(self,
                       samples_by_metric: Mapping[Union[MetricType, str], Sequence[MetricSample]],
                       window_start: datetime,
                       window_end: datetime) -> Dict[MetricType, TrendResult]:
        """Trend every scoreable metric of a window split at its midpoint."""
        results: Dict[MetricType, TrendResult] = {}
        for key, samples in samples_by_metric.items():
            metric = MetricType.parse(key)
            if metric is None or metric not in self.profiles:
                continue
            baseline, recent = split_window(samples, window_start, window_end)
            results[metric] = self.analyze_trend(metric, recent, baseline)
            logger.debug("Trend analyzed", metric=metric.value, trend=results[metric].trend.value,
                         baseline=len(baseline), recent=len(recent))
        return results

    def detect_anomalies(self,
                         metric_type: Union[MetricType, str],
                         samples: Sequence[MetricSample]) -> List[AnomalyPoint]:
        """
        Flag readings far from the metric's mean.

        Mean and population standard deviation are taken over the valid
        samples. Fewer than three valid samples, or no spread at all, yields
        no anomalies.

        Returns:
            AnomalyPoints in timestamp order.
        """
        metric = MetricType.parse(metric_type)
        if metric is None:
            return []
        points = sorted((s for s in samples or () if isinstance(s, MetricSample) and s.is_valid()),
                        key=lambda s: s.timestamp)
        if len(points) < ANOMALY_MIN_SAMPLES:
            return []

        values = np.array([float(s.value) for s in points])
        mean = float(np.mean(values))
        std = float(np.std(values))
        deviations = np.abs(values - mean)

        anomalies = []
        for sample, value, deviation in zip(points, values, deviations):
            severity = anomaly_severity(float(deviation), std)
            if severity is None:
                continue
            anomalies.append(AnomalyPoint(
                metric_type=metric,
                timestamp=sample.timestamp,
                value=float(value),
                expected_value=round(mean, 6),
                deviation_percent=round(float(deviation) / abs(mean) * 100.0, 2) if mean != 0 else None,
                severity=severity,
            ))
        if anomalies:
            logger.debug("Anomalies detected", metric=metric.value, count=len(anomalies),
                         mean=round(mean, 6), std=round(std, 6))
        return anomalies

    def detect_window_anomalies(self,
                                samples_by_metric: Mapping[Union[MetricType, str], Sequence[MetricSample]],
                                window_start: datetime,
                                window_end: datetime) -> List[AnomalyPoint]:
        """Anomalies of every profiled metric inside the window, ordered by time then metric."""
        found: List[AnomalyPoint] = []
        for key, samples in samples_by_metric.items():
            metric = MetricType.parse(key)
            if metric is None or metric not in self.profiles:
                continue
            in_window = [s for s in samples or () if window_start <= s.timestamp <= window_end]
            found.extend(self.detect_anomalies(metric, in_window))
        order = {m: i for i, m in enumerate(MetricType)}
        return sorted(found, key=lambda a: (a.timestamp, order[a.metric_type]))


def analyze_trend(metric_type: Union[MetricType, str],
                  recent_samples: Sequence[Union[MetricSample, float]],
                  baseline_samples: Sequence[Union[MetricSample, float]]) -> TrendResult:
    """Module-level shortcut using the built-in profiles."""
    return TrendAnalyzer().analyze_trend(metric_type, recent_samples, baseline_samples)
