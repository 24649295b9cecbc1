#!/usr/bin/env python3
"""
State-of-Health (SOH) calculator.

Turns per-metric sample sequences into:
1. A per-metric score (0-100): a central score from the sample mean against
   the metric's optimal/warning ranges, reduced by a stability penalty that
   grows with the dispersion of the samples.
2. A weighted composite score over all scored metrics.
3. A confidence value (0-1) reflecting sample volume and metric coverage.

The calculator is an immutable value: its profile table and settings are
fixed at construction and every call is a pure function of its arguments.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from Equipment_Monitor.AI_MODULES.assessment_models import (
    AssessmentSettings, MetricContribution, MetricSample, SOHResult
)
from Equipment_Monitor.AI_MODULES.exceptions import InvalidWeightsError
from Equipment_Monitor.AI_MODULES.metric_profiles import DEFAULT_PROFILES, MetricProfile, MetricType

logger = structlog.get_logger(__name__)

# Score band boundaries
OPTIMAL_TOP = 100.0
OPTIMAL_FLOOR = 85.0
WARNING_TOP = 70.0
WARNING_FLOOR = 40.0
BAND_TOPS = (OPTIMAL_TOP, WARNING_TOP, WARNING_FLOOR)
BAND_FLOORS = (OPTIMAL_FLOOR, WARNING_FLOOR, 0.0)

SampleInput = Union[MetricSample, float, int]


def valid_values(samples: Iterable[SampleInput]) -> np.ndarray:
    """Extract finite float values, dropping NaN/inf/non-numeric entries."""
    values: List[float] = []
    for sample in samples or ():
        raw = sample.value if isinstance(sample, MetricSample) else sample
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value):
            values.append(value)
    return np.asarray(values, dtype=float)


def central_score(profile: MetricProfile, value: float) -> float:
    """
    Map a (mean) value onto the 0-100 health scale.

    Optimal range: 100 at the ideal value down to 85 at each optimal edge.
    Warning range: 70 at the optimal edge down to 40 at the warning edge.
    Beyond warning: 40 at the warning edge decaying linearly to 0 over one
    further warning-side width.
    """
    o_low, o_high = profile.optimal_range
    w_low, w_high = profile.warning_range
    ideal = profile.ideal_value

    if o_low <= value <= o_high:
        if value >= ideal:
            span, offset = o_high - ideal, value - ideal
        else:
            span, offset = ideal - o_low, ideal - value
        if span <= 0:
            return OPTIMAL_TOP
        return OPTIMAL_TOP - (OPTIMAL_TOP - OPTIMAL_FLOOR) * offset / span

    if value > o_high:
        distance, band = value - o_high, w_high - o_high
    else:
        distance, band = o_low - value, o_low - w_low

    if band > 0 and distance <= band:
        return WARNING_TOP - (WARNING_TOP - WARNING_FLOOR) * distance / band

    excess = distance - max(band, 0.0)
    decay = band if band > 0 else profile.dispersion_scale()
    return max(0.0, WARNING_FLOOR * (1.0 - excess / decay))


def band_index(profile: MetricProfile, value: float) -> int:
    """Band of ``value``: 0 optimal, 1 warning, 2 beyond warning."""
    return int(sample_bands(profile, np.asarray([value], dtype=float))[0])


def sample_bands(profile: MetricProfile, values: np.ndarray) -> np.ndarray:
    o_low, o_high = profile.optimal_range
    w_low, w_high = profile.warning_range
    in_optimal = (values >= o_low) & (values <= o_high)
    in_warning = (values >= w_low) & (values <= w_high)
    return np.where(in_optimal, 0, np.where(in_warning, 1, 2))


def dispersion_ratio(profile: MetricProfile, std: float) -> float:
    """Standard deviation relative to the profile's reference spread, capped at 1."""
    if std <= 0 or not math.isfinite(std):
        return 0.0
    return min(1.0, std / profile.dispersion_scale())


def _default_profiles() -> Mapping[MetricType, MetricProfile]:
    return DEFAULT_PROFILES


@dataclass(frozen=True)
class SOHCalculator:
    """
    Composite state-of-health scoring over a fixed profile table.

    Args:
        profiles: Metric profile table (defaults to the built-in table).
        settings: Engine constants (penalty share, confidence saturation, ...).
    """

    profiles: Mapping[MetricType, MetricProfile] = field(default_factory=_default_profiles)
    settings: AssessmentSettings = field(default_factory=AssessmentSettings)

    @property
    def core_metrics(self) -> Tuple[MetricType, ...]:
        return tuple(m for m in MetricType if m in self.profiles and self.profiles[m].core)

    def calculate_soh(self,
                      samples_by_metric: Mapping[Union[MetricType, str], Sequence[SampleInput]],
                      weights: Optional[Mapping[Union[MetricType, str], float]] = None) -> SOHResult:
        """
        Calculate the composite SOH for one equipment window.

        Args:
            samples_by_metric: {metric_type: [MetricSample | value, ...]}
            weights: Optional custom weights. Covered metrics use them as
                     given; the rest fall back to the profile weight. All
                     weights are normalized over the scored metrics.

        Returns:
            SOHResult with score (0-100), confidence (0-1) and contributions.
        """
        grouped: Dict[MetricType, List[np.ndarray]] = {}
        for key, samples in (samples_by_metric or {}).items():
            metric = MetricType.parse(key)
            if metric is None or metric not in self.profiles:
                logger.debug("Ignoring unscored metric", metric=str(key))
                continue
            grouped.setdefault(metric, []).append(valid_values(samples))

        scored: Dict[MetricType, Tuple[float, int, float, float]] = {}
        for metric, chunks in grouped.items():
            values = np.concatenate(chunks)
            if values.size == 0:
                logger.warning("Metric has no valid samples, skipping", metric=metric.value)
                continue
            score, mean, std = self.score_metric(self.profiles[metric], values)
            scored[metric] = (score, int(values.size), mean, std)

        if not scored:
            logger.info("SOH calculation skipped: no scoreable samples")
            return SOHResult(score=0.0, confidence=0.0, contributions=MappingProxyType({}))

        normalized = self._normalize_weights(scored.keys(), weights)

        contributions = {}
        composite = 0.0
        for metric in MetricType:
            if metric not in scored:
                continue
            score, count, mean, std = scored[metric]
            weight = normalized[metric]
            contributions[metric] = MetricContribution(
                score=score, weight=weight, sample_count=count,
                mean=round(mean, 6), std=round(std, 6),
            )
            composite += score * weight
            logger.debug("Metric scored", metric=metric.value, score=score, weight=round(weight, 4), samples=count)

        confidence = self.calculate_confidence({m: v[1] for m, v in scored.items()})
        result = SOHResult(
            score=round(min(100.0, max(0.0, composite)), 2),
            confidence=confidence,
            contributions=MappingProxyType(contributions),
        )
        logger.info("SOH calculated", score=result.score, confidence=result.confidence,
                    metrics=len(contributions))
        return result

    def score_metric(self, profile: MetricProfile, values: np.ndarray) -> Tuple[float, float, float]:
        """
        Return (score, mean, population std) for one metric's valid values.

        The score stays inside the band of the mean unless every sample lies
        in a worse band, in which case the best band any sample reached caps
        it. Samples scattered on both sides of the optimal range average to
        an optimal mean but still score as warning readings.
        """
        mean = float(np.mean(values))
        std = float(np.std(values)) if values.size > 1 else 0.0

        band = max(band_index(profile, mean), int(np.min(sample_bands(profile, values))))
        central = min(central_score(profile, mean), BAND_TOPS[band])
        penalty = (dispersion_ratio(profile, std)
                   * self.settings.stability_penalty_share
                   * max(0.0, central - BAND_FLOORS[band]))
        score = min(100.0, max(0.0, central - penalty))
        return round(score, 2), mean, std

    def calculate_confidence(self, sample_counts: Mapping[MetricType, int]) -> float:
        """
        Confidence from metric coverage and per-metric sample volume.

        coverage: scored core metrics / all core metrics.
        volume:   mean of ln(1+n)/ln(1+N_sat), capped at 1 per metric.
        """
        counts = {m: n for m, n in sample_counts.items() if n > 0}
        if not counts:
            return 0.0

        core = self.core_metrics
        coverage = (sum(1 for m in counts if m in core) / len(core)) if core else 0.0

        saturation = math.log1p(max(1, self.settings.confidence_saturation_samples))
        volume = float(np.mean([min(1.0, math.log1p(n) / saturation) for n in counts.values()]))

        share = self.settings.coverage_share
        confidence = share * coverage + (1.0 - share) * volume
        return round(min(1.0, max(0.0, confidence)), 3)

    def _normalize_weights(self,
                           metrics: Iterable[MetricType],
                           weights: Optional[Mapping[Union[MetricType, str], float]]) -> Dict[MetricType, float]:
        custom: Dict[MetricType, float] = {}
        for key, value in (weights or {}).items():
            metric = MetricType.parse(key)
            if metric is None:
                logger.warning("Ignoring weight for unknown metric", metric=str(key))
                continue
            try:
                weight = float(value)
            except (TypeError, ValueError) as e:
                raise InvalidWeightsError(f"Weight for {metric.value} is not a number: {value!r}") from e
            if not math.isfinite(weight) or weight < 0:
                raise InvalidWeightsError(f"Weight for {metric.value} must be a finite non-negative number")
            custom[metric] = weight

        raw = {m: custom[m] if m in custom else self.profiles[m].weight for m in metrics}
        total = math.fsum(raw.values())
        if total <= 0:
            logger.warning("All metric weights are zero, falling back to equal weights")
            return {m: 1.0 / len(raw) for m in raw}
        return {m: w / total for m, w in raw.items()}


def calculate_soh(samples_by_metric: Mapping[Union[MetricType, str], Sequence[SampleInput]],
                  weights: Optional[Mapping[Union[MetricType, str], float]] = None) -> SOHResult:
    """Score with the built-in profile table and default settings."""
    return SOHCalculator().calculate_soh(samples_by_metric, weights)
