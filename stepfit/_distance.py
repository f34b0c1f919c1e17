# stepfit/_distance.py
"""Distances between samples, and nearest-candidate search."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from stepfit._matrix import Matrix2x2, Point2D, inverse_2x2, quadratic_form_2x2


@dataclass(frozen=True)
class Nearest:
    index: int
    distance: float


def euclidean_distance_1d(a: float, b: float) -> float:
    return abs(a - b)


def squared_euclidean_distance_1d(a: float, b: float) -> float:
    diff = a - b
    return diff * diff


def euclidean_distance_2d(a: Point2D, b: Point2D) -> float:
    return math.sqrt(squared_euclidean_distance_2d(a, b))


def squared_euclidean_distance_2d(a: Point2D, b: Point2D) -> float:
    dx = a.x - b.x
    dy = a.y - b.y
    return dx * dx + dy * dy


def squared_mahalanobis_distance_2d(point: Point2D, mean: Point2D, cov: Matrix2x2) -> float:
    """(x-mu)^T cov^-1 (x-mu); squared Euclidean when cov is singular."""
    inv = inverse_2x2(cov)
    if inv is None:
        return squared_euclidean_distance_2d(point, mean)
    return quadratic_form_2x2(inv, Point2D(point.x - mean.x, point.y - mean.y))


def mahalanobis_distance_2d(point: Point2D, mean: Point2D, cov: Matrix2x2) -> float:
    inv = inverse_2x2(cov)
    if inv is None:
        return euclidean_distance_2d(point, mean)
    d2 = quadratic_form_2x2(inv, Point2D(point.x - mean.x, point.y - mean.y))
    return math.sqrt(max(0.0, d2))


def find_nearest_1d(point: float, candidates: Sequence[float]) -> Nearest:
    """Linear scan; the first of equally near candidates wins."""
    best = Nearest(-1, math.inf)
    for i, c in enumerate(candidates):
        d = euclidean_distance_1d(point, c)
        if d < best.distance or best.index < 0:
            best = Nearest(i, d)
    return best


def find_nearest_2d(point: Point2D, candidates: Sequence[Point2D]) -> Nearest:
    best = Nearest(-1, math.inf)
    for i, c in enumerate(candidates):
        d = euclidean_distance_2d(point, c)
        if d < best.distance or best.index < 0:
            best = Nearest(i, d)
    return best
