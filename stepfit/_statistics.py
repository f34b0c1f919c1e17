# stepfit/_statistics.py
"""Descriptive statistics for 1-D samples and 2-D points.

Variances and the covariance use the sample (n-1) divisor when n > 1 and
n otherwise. Empty input gives zeros everywhere so callers never branch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np
import torch

from stepfit._matrix import Point2D, points_to_tensor


@dataclass(frozen=True)
class BasicStats:
    mean: float
    variance: float
    standard_deviation: float
    min: float
    max: float
    range: float


@dataclass(frozen=True)
class BasicStats2D:
    mean_x: float
    mean_y: float
    variance_x: float
    variance_y: float
    covariance: float
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    range_x: float
    range_y: float


def as_tensor_1d(data: Iterable[float], dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """Copy 1-D samples into a fresh (N,) tensor."""
    if isinstance(data, torch.Tensor):
        X = data.detach().to(dtype).clone()
    elif isinstance(data, np.ndarray):
        X = torch.from_numpy(np.array(data, dtype=np.float64)).to(dtype)
    else:
        X = torch.tensor([float(x) for x in data], dtype=dtype)
    return X.reshape(-1)


def _divisor(n: int) -> int:
    return n - 1 if n > 1 else n


def calculate_mean(data: Sequence[float]) -> float:
    X = as_tensor_1d(data)
    if X.numel() == 0:
        return 0.0
    return float(X.mean())


def calculate_variance(data: Sequence[float], mean: Optional[float] = None) -> float:
    X = as_tensor_1d(data)
    n = X.numel()
    if n == 0:
        return 0.0
    m = float(X.mean()) if mean is None else mean
    return float(((X - m) ** 2).sum()) / _divisor(n)


def calculate_standard_deviation(data: Sequence[float], mean: Optional[float] = None) -> float:
    return calculate_variance(data, mean) ** 0.5


def calculate_basic_stats(data: Sequence[float]) -> BasicStats:
    X = as_tensor_1d(data)
    if X.numel() == 0:
        return BasicStats(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    mean = float(X.mean())
    variance = calculate_variance(X, mean)
    lo, hi = float(X.min()), float(X.max())
    return BasicStats(
        mean=mean,
        variance=variance,
        standard_deviation=variance ** 0.5,
        min=lo,
        max=hi,
        range=hi - lo,
    )


def calculate_mean_2d(points: Iterable) -> Point2D:
    X = points_to_tensor(points)
    if X.shape[0] == 0:
        return Point2D(0.0, 0.0)
    m = X.mean(dim=0)
    return Point2D(float(m[0]), float(m[1]))


def calculate_basic_stats_2d(points: Iterable) -> BasicStats2D:
    X = points_to_tensor(points)
    N = X.shape[0]
    if N == 0:
        return BasicStats2D(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    mean = X.mean(dim=0)                      # (2,)
    Xc = X - mean.unsqueeze(0)                # (N,2)
    cov = (Xc.T @ Xc) / _divisor(N)           # (2,2)
    lo = X.min(dim=0).values
    hi = X.max(dim=0).values

    return BasicStats2D(
        mean_x=float(mean[0]),
        mean_y=float(mean[1]),
        variance_x=float(cov[0, 0]),
        variance_y=float(cov[1, 1]),
        covariance=float(cov[0, 1]),
        min_x=float(lo[0]),
        max_x=float(hi[0]),
        min_y=float(lo[1]),
        max_y=float(hi[1]),
        range_x=float(hi[0] - lo[0]),
        range_y=float(hi[1] - lo[1]),
    )
