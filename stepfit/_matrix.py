# stepfit/_matrix.py
"""2-D points and symmetric 2x2 matrices used by the 2-D Gaussian engine.

A covariance matrix is stored by its three free entries (xx, xy, yy); the
lower off-diagonal mirrors xy. Singular matrices are reported with a None
inverse rather than an exception, callers are expected to check.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import torch

logger = logging.getLogger(__name__)

SINGULAR_DET_EPS = 1e-10
MIN_DIAGONAL = 0.01
MAX_CORRELATION = 0.99


# ---------------------------
# Types
# ---------------------------

@dataclass(frozen=True)
class Point2D:
    x: float
    y: float

    @classmethod
    def of(cls, p: Union["Point2D", Sequence[float]]) -> "Point2D":
        if isinstance(p, Point2D):
            return p
        x, y = p
        return cls(float(x), float(y))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Matrix2x2:
    xx: float
    xy: float
    yy: float

    def to_tensor(self, dtype: torch.dtype = torch.float64) -> torch.Tensor:
        return torch.tensor([[self.xx, self.xy], [self.xy, self.yy]], dtype=dtype)

    @classmethod
    def from_tensor(cls, m: torch.Tensor) -> "Matrix2x2":
        """Read a (2,2) tensor; the off-diagonal is symmetrised."""
        if m.shape != (2, 2):
            raise ValueError(f"expected a (2,2) tensor, got {tuple(m.shape)}")
        xy = 0.5 * (float(m[0, 1]) + float(m[1, 0]))
        return cls(float(m[0, 0]), xy, float(m[1, 1]))


IDENTITY_2X2 = Matrix2x2(1.0, 0.0, 1.0)


def points_to_tensor(points: Iterable, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """Stack 2-D samples into an (N, 2) tensor (always a fresh copy)."""
    if isinstance(points, torch.Tensor):
        X = points.detach().to(dtype).clone()
    elif isinstance(points, np.ndarray):
        X = torch.from_numpy(np.array(points, dtype=np.float64)).to(dtype)
    else:
        rows = [Point2D.of(p).as_tuple() for p in points]
        X = torch.tensor(rows, dtype=dtype) if rows else torch.empty((0, 2), dtype=dtype)
    if X.dim() != 2 or X.shape[1] != 2:
        raise ValueError(f"2-D data must have shape (N, 2), got {tuple(X.shape)}")
    return X


# ---------------------------
# 2x2 algebra
# ---------------------------

def determinant_2x2(m: Matrix2x2) -> float:
    return m.xx * m.yy - m.xy * m.xy


def inverse_2x2(m: Matrix2x2) -> Optional[Matrix2x2]:
    """Closed-form inverse, or None when |det| < 1e-10."""
    det = determinant_2x2(m)
    if abs(det) < SINGULAR_DET_EPS:
        return None
    return Matrix2x2(m.yy / det, -m.xy / det, m.xx / det)


def is_positive_definite_2x2(m: Matrix2x2) -> bool:
    return m.xx > 0 and m.yy > 0 and determinant_2x2(m) > 0


def regularize_covariance_2x2(m: Matrix2x2, min_diagonal: float = MIN_DIAGONAL) -> Matrix2x2:
    """Floor the diagonal and clamp the correlation so the result is positive definite."""
    xx = max(m.xx, min_diagonal)
    yy = max(m.yy, min_diagonal)
    max_corr = MAX_CORRELATION * math.sqrt(xx * yy)
    xy = max(-max_corr, min(max_corr, m.xy))
    if (xx, xy, yy) != (m.xx, m.xy, m.yy):
        logger.debug("regularized covariance %s -> (%g, %g, %g)", m, xx, xy, yy)
    return Matrix2x2(xx, xy, yy)


def matrix_vector_multiply_2x2(m: Matrix2x2, v: Point2D) -> Point2D:
    return Point2D(m.xx * v.x + m.xy * v.y, m.xy * v.x + m.yy * v.y)


def quadratic_form_2x2(m: Matrix2x2, v: Point2D) -> float:
    """v^T M v."""
    return v.x * v.x * m.xx + 2.0 * v.x * v.y * m.xy + v.y * v.y * m.yy


def create_covariance_matrix_2x2(var_x: float, var_y: float, covariance: float) -> Matrix2x2:
    return Matrix2x2(var_x, covariance, var_y)


def correlation_2x2(m: Matrix2x2) -> float:
    denominator = math.sqrt(m.xx * m.yy) if m.xx * m.yy > 0 else 0.0
    return m.xy / denominator if denominator > 0 else 0.0
