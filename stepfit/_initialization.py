# stepfit/_initialization.py
"""Parameter initialization strategies.

Every strategy that draws random numbers takes an explicit
``torch.Generator``; torch's global RNG is never used, so a fit seeded with
``make_generator(seed)`` is reproducible.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

import torch

from stepfit._matrix import IDENTITY_2X2, Matrix2x2, Point2D
from stepfit._statistics import as_tensor_1d, calculate_basic_stats, calculate_basic_stats_2d

MIN_VARIANCE = 0.01


def make_generator(random_state: Optional[int] = None) -> torch.Generator:
    """CPU generator seeded with random_state, or from OS entropy when None."""
    gen = torch.Generator()
    if random_state is None:
        gen.seed()
    else:
        gen.manual_seed(int(random_state))
    return gen


def _resolve(generator: Optional[torch.Generator]) -> torch.Generator:
    return generator if generator is not None else make_generator()


def _uniform(n: int, generator: torch.Generator) -> torch.Tensor:
    return torch.rand((n,), generator=generator, dtype=torch.float64)


# ---------------------------
# 1-D
# ---------------------------

def random_initialization_1d(
    data: Sequence[float],
    count: int,
    generator: Optional[torch.Generator] = None,
) -> List[float]:
    """count values drawn uniformly from [min, max)."""
    if len(data) == 0 or count <= 0:
        return []
    stats = calculate_basic_stats(data)
    if stats.range == 0:
        return [stats.mean] * count
    u = _uniform(count, _resolve(generator))
    return (stats.min + u * stats.range).tolist()


def uniform_initialization_1d(data: Sequence[float], count: int) -> List[float]:
    """count values evenly spaced strictly inside [min, max]."""
    if len(data) == 0 or count <= 0:
        return []
    stats = calculate_basic_stats(data)
    if count == 1 or stats.range == 0:
        return [stats.mean] * count
    return [stats.min + (i + 1) / (count + 1) * stats.range for i in range(count)]


def statistical_initialization_1d(
    data: Sequence[float],
    count: int,
    noise_scale: float = 0.5,
    generator: Optional[torch.Generator] = None,
) -> List[float]:
    """Mean plus uniform noise of half-width noise_scale * stddev."""
    if len(data) == 0 or count <= 0:
        return []
    stats = calculate_basic_stats(data)
    u = _uniform(count, _resolve(generator))
    noise = (u - 0.5) * 2.0 * noise_scale * stats.standard_deviation
    return (stats.mean + noise).tolist()


@torch.no_grad()
def kmeans_plus_plus_initialization_1d(
    data: Sequence[float],
    count: int,
    generator: Optional[torch.Generator] = None,
) -> List[float]:
    """k-means++ seeding on 1-D data. Returns sorted centers.

    Each new center is a sample drawn with probability proportional to its
    squared distance to the closest center so far. If every sample already
    sits on a center the remaining ones are spaced uniformly.
    """
    if len(data) == 0 or count <= 0:
        return []
    if count >= len(data):
        return [float(x) for x in data]

    gen = _resolve(generator)
    X = torch.sort(as_tensor_1d(data)).values  # (N,)
    N = X.shape[0]

    i0 = int(torch.randint(0, N, (1,), generator=gen).item())
    centers = [float(X[i0])]
    closest_d2 = (X - X[i0]) ** 2  # (N,)

    for k in range(1, count):
        total = float(closest_d2.sum())
        if total == 0:
            centers.extend(uniform_initialization_1d(data, count - k))
            break
        idx = int(torch.multinomial(closest_d2 / total, 1, generator=gen).item())
        centers.append(float(X[idx]))
        closest_d2 = torch.minimum(closest_d2, (X - X[idx]) ** 2)

    return sorted(centers)


# ---------------------------
# 2-D
# ---------------------------

def random_initialization_2d(
    points: Iterable,
    count: int,
    generator: Optional[torch.Generator] = None,
) -> List[Point2D]:
    points = list(points)
    if len(points) == 0 or count <= 0:
        return []
    s = calculate_basic_stats_2d(points)
    if s.range_x == 0 and s.range_y == 0:
        return [Point2D(s.mean_x, s.mean_y)] * count

    gen = _resolve(generator)
    u = torch.rand((count, 2), generator=gen, dtype=torch.float64)
    out = []
    for ux, uy in u.tolist():
        x = s.min_x + ux * s.range_x if s.range_x > 0 else s.mean_x
        y = s.min_y + uy * s.range_y if s.range_y > 0 else s.mean_y
        out.append(Point2D(x, y))
    return out


def grid_initialization_2d(points: Iterable, count: int) -> List[Point2D]:
    """Cell centres of a ceil(sqrt(count))-sided grid over the bounding box."""
    points = list(points)
    if len(points) == 0 or count <= 0:
        return []
    s = calculate_basic_stats_2d(points)
    if count == 1:
        return [Point2D(s.mean_x, s.mean_y)]

    side = math.ceil(math.sqrt(count))
    out: List[Point2D] = []
    for i in range(side):
        for j in range(side):
            if len(out) == count:
                return out
            x = s.min_x + s.range_x * (i + 0.5) / side if s.range_x > 0 else s.mean_x
            y = s.min_y + s.range_y * (j + 0.5) / side if s.range_y > 0 else s.mean_y
            out.append(Point2D(x, y))
    return out


def initialize_covariance_matrix_2d(points: Iterable, scale: float = 0.25) -> Matrix2x2:
    """Sample covariance shrunk by scale, diagonals floored at 0.01."""
    points = list(points)
    if len(points) == 0:
        return IDENTITY_2X2
    s = calculate_basic_stats_2d(points)
    return Matrix2x2(
        xx=max(MIN_VARIANCE, s.variance_x * scale),
        xy=s.covariance * scale,
        yy=max(MIN_VARIANCE, s.variance_y * scale),
    )
