"""
Gap Shape Estimators
Produce the real-valued day-by-day shape of a gap from recent daily history.
Shapes are relative; allocation.scale_to_total turns them into integers.

- pattern: repeat the most recent daily values across the gap
- stochastic: trailing moving average + linear trend + Gaussian noise scaled
  to historical day-over-day volatility
"""

import hashlib
import math
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


def build_pattern_series(baseline: Sequence[float], target_length: int) -> List[float]:
    """
    Cycle the most recent baseline values forward to `target_length`

    Takes the last min(len(baseline), target_length) values (oldest to newest)
    and tiles them. An empty baseline gives an empty shape.
    """
    if target_length <= 0:
        return []
    history = list(baseline)
    if not history:
        return []
    source = history[-min(len(history), target_length):]
    return [source[i % len(source)] for i in range(target_length)]


def compute_moving_average(series: Sequence[float], window: int) -> np.ndarray:
    """Trailing mean over up to `window` values, clamped at zero"""
    values = np.asarray(series, dtype=float)
    if window <= 1:
        return values.copy()
    if len(values) == 0:
        return values

    cumulative = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(len(values))
    start = np.maximum(0, idx - window + 1)
    sums = cumulative[idx + 1] - cumulative[start]
    counts = np.minimum(idx + 1, window)
    return np.maximum(0.0, sums / counts)


def compute_linear_trend_slope(series: Sequence[float]) -> float:
    """Least-squares slope of the series against positions 0..n-1"""
    values = np.asarray(series, dtype=float)
    n = len(values)
    if n < 2:
        return 0.0
    dx = np.arange(n) - (n - 1) / 2
    denominator = float(np.dot(dx, dx))
    if denominator == 0:
        return 0.0
    return float(np.dot(dx, values - values.mean()) / denominator)


def compute_delta_std(series: Sequence[float]) -> float:
    """Population standard deviation of first differences"""
    values = np.asarray(series, dtype=float)
    if len(values) < 2:
        return 0.0
    return float(np.std(np.diff(values)))


def seed_from_text(text: str) -> int:
    """Stable 32-bit seed derived from arbitrary text"""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


class SeededGaussian:
    """
    Deterministic N(0, 1) sampler

    Uses the polar rejection method: a pair of uniforms inside the unit disk
    yields two normals, the second is cached for the following call. One
    instance per backfill; nothing is shared between instances.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self._uniform = random.Random(seed)
        self._spare: Optional[float] = None

    @classmethod
    def for_gap(cls, last_known: str, today: str, explicit_seed: Optional[str] = None) -> "SeededGaussian":
        """Seed from the configured seed text, else from the gap bounds"""
        seed_text = explicit_seed or f"{last_known}|{today}"
        return cls(seed_from_text(seed_text))

    def sample(self) -> float:
        if self._spare is not None:
            value = self._spare
            self._spare = None
            return value

        while True:
            u = self._uniform.random() * 2 - 1
            v = self._uniform.random() * 2 - 1
            s = u * u + v * v
            if 0 < s < 1:
                break

        multiplier = math.sqrt(-2.0 * math.log(s) / s)
        self._spare = v * multiplier
        return u * multiplier


@dataclass
class StochasticShape:
    values: List[float] = field(default_factory=list)
    slope: float = 0.0
    sigma: float = 0.0
    last_moving_average: float = 0.0


def build_stochastic_series(
    baseline: Sequence[float],
    target_length: int,
    trend_window: int,
    noise_scale: float,
    sampler: SeededGaussian,
) -> StochasticShape:
    """
    Model-based shape for a gap of `target_length` days

    Day i (1-indexed) is max(0, last_ma + slope * i) plus sigma-scaled noise,
    clamped at zero. sigma is the volatility of the raw baseline's first
    differences times `noise_scale`.
    """
    moving_average = compute_moving_average(baseline, max(2, trend_window))
    slope = compute_linear_trend_slope(moving_average)
    last_ma = float(moving_average[-1]) if len(moving_average) > 0 else 0.0

    if not math.isfinite(noise_scale):
        noise_scale = 1.0
    sigma = compute_delta_std(baseline) * noise_scale

    values = []
    for i in range(1, target_length + 1):
        trend = max(0.0, last_ma + slope * i)
        noise = sampler.sample() * sigma if sigma > 0 else 0.0
        values.append(max(0.0, trend + noise))

    return StochasticShape(values=values, slope=slope, sigma=sigma, last_moving_average=last_ma)
