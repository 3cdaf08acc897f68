"""Bucketed time series, linear forecasts and anomaly scoring.

Pure functions over plain values. The premium metrics service feeds them
event timestamps read from the database. Nothing here touches persistence.

    series = build_bucketed_series(timestamps, bucket_size_days=7)
    forecast = forecast_next_value(series)
    anomaly = detect_latest_anomaly(series)
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from negotiation_engine.domain.clock import as_utc
from negotiation_engine.domain.enums import ForecastConfidence

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

MIN_STDDEV = 1.0
ANOMALY_Z_THRESHOLD = 2.0

# (minimum points, maximum relative residual spread) per confidence level
HIGH_CONFIDENCE = (8, 0.15)
MEDIUM_CONFIDENCE = (4, 0.35)


@dataclass(frozen=True, slots=True)
class TimeSample:
    timestamp: datetime
    weight: float = 1.0


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class ForecastResult:
    forecast: float
    confidence: ForecastConfidence
    slope: float

    def to_dict(self) -> dict:
        return {
            "forecast": round(self.forecast, 4),
            "confidence": self.confidence.value,
            "slope": round(self.slope, 4),
        }


@dataclass(frozen=True, slots=True)
class AnomalyResult:
    z_score: float
    is_anomaly: bool
    baseline_mean: float
    baseline_stddev: float
    latest: float

    def to_dict(self) -> dict:
        return {
            "z_score": round(self.z_score, 4),
            "is_anomaly": self.is_anomaly,
            "baseline_mean": round(self.baseline_mean, 4),
            "baseline_stddev": round(self.baseline_stddev, 4),
            "latest": round(self.latest, 4),
        }


def _values(series: Sequence[SeriesPoint] | Sequence[float]) -> list[float]:
    return [float(p.value) if isinstance(p, SeriesPoint) else float(p) for p in series]


def build_bucketed_series(
    samples: Iterable[TimeSample | datetime],
    bucket_size_days: int = 7,
) -> list[SeriesPoint]:
    """Group samples into fixed-size buckets.

    Buckets are anchored at midnight UTC of the day holding the earliest
    sample. Empty buckets are omitted, so consecutive points are not
    necessarily adjacent in time.

    Args:
        samples: Timestamps, or TimeSample entries carrying a weight.
        bucket_size_days: Width of each bucket in days.

    Returns:
        One point per non-empty bucket in chronological order, valued at the
        summed weight of its samples.
    """
    if bucket_size_days < 1:
        raise ValueError("bucket_size_days must be >= 1")

    normalized = [
        (as_utc(s.timestamp), float(s.weight))
        if isinstance(s, TimeSample)
        else (as_utc(s), 1.0)
        for s in samples
    ]
    if not normalized:
        return []

    earliest = min(ts for ts, _ in normalized)
    anchor = earliest.replace(hour=0, minute=0, second=0, microsecond=0)
    width = timedelta(days=bucket_size_days)

    buckets: dict[int, float] = {}
    for ts, weight in normalized:
        index = (ts - anchor) // width
        buckets[index] = buckets.get(index, 0.0) + weight

    return [
        SeriesPoint(timestamp=anchor + width * index, value=buckets[index])
        for index in sorted(buckets)
    ]


def _confidence(points: int, relative_spread: float) -> ForecastConfidence:
    if points <= 2:
        return ForecastConfidence.LOW
    min_points, max_spread = HIGH_CONFIDENCE
    if points >= min_points and relative_spread <= max_spread:
        return ForecastConfidence.HIGH
    min_points, max_spread = MEDIUM_CONFIDENCE
    if points >= min_points and relative_spread <= max_spread:
        return ForecastConfidence.MEDIUM
    return ForecastConfidence.LOW


def forecast_next_value(series: Sequence[SeriesPoint] | Sequence[float]) -> ForecastResult:
    """Project the next bucket with an ordinary least squares line.

    The fit runs over (index, value) and is evaluated at index ``n``. The
    forecast is clamped at zero. Confidence grows with
    the number of points and shrinks with the residual spread relative to the
    mean magnitude of the series.
    """
    values = _values(series)
    n = len(values)
    if n == 0:
        return ForecastResult(forecast=0.0, confidence=ForecastConfidence.LOW, slope=0.0)
    if n == 1:
        return ForecastResult(
            forecast=max(values[0], 0.0),
            confidence=ForecastConfidence.LOW,
            slope=0.0,
        )

    xs = list(range(n))
    slope, intercept = statistics.linear_regression(xs, values)
    forecast = max(intercept + slope * n, 0.0)

    residuals = [y - (intercept + slope * x) for x, y in zip(xs, values, strict=True)]
    residual_std = math.sqrt(sum(r * r for r in residuals) / n)
    mean_magnitude = statistics.fmean(abs(v) for v in values)
    if mean_magnitude > 0:
        relative_spread = residual_std / mean_magnitude
    else:
        relative_spread = 0.0 if residual_std == 0 else math.inf

    return ForecastResult(
        forecast=forecast,
        confidence=_confidence(n, relative_spread),
        slope=slope,
    )


def detect_latest_anomaly(series: Sequence[SeriesPoint] | Sequence[float]) -> AnomalyResult:
    """Score the latest bucket against all earlier buckets.

    The baseline standard deviation is floored at MIN_STDDEV so a flat
    history still yields a finite z-score. With fewer than two buckets there
    is no baseline and the z-score is 0.
    """
    values = _values(series)
    if len(values) < 2:
        latest = values[-1] if values else 0.0
        return AnomalyResult(
            z_score=0.0,
            is_anomaly=False,
            baseline_mean=latest,
            baseline_stddev=0.0,
            latest=latest,
        )

    baseline, latest = values[:-1], values[-1]
    mean = statistics.fmean(baseline)
    stddev = statistics.pstdev(baseline) if len(baseline) > 1 else 0.0
    effective_stddev = max(stddev, MIN_STDDEV)
    z_score = (latest - mean) / effective_stddev

    return AnomalyResult(
        z_score=z_score,
        is_anomaly=abs(z_score) >= ANOMALY_Z_THRESHOLD,
        baseline_mean=mean,
        baseline_stddev=stddev,
        latest=latest,
    )
