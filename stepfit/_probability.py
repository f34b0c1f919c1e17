# stepfit/_probability.py
"""Gaussian densities and log-space helpers.

Invalid scale parameters never raise: densities come back as 0 and
log-densities as -inf.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import torch

from stepfit._matrix import Matrix2x2, Point2D, determinant_2x2, inverse_2x2, quadratic_form_2x2

LOG_2PI = math.log(2.0 * math.pi)
SAFE_LOG_FLOOR = 1e-100


@dataclass(frozen=True)
class MixtureProbability:
    total: float
    component_probs: Tuple[float, ...]
    posteriors: Tuple[float, ...]


# ---------------------------
# Densities
# ---------------------------

def gaussian_pdf_1d(x: float, mu: float, sigma: float) -> float:
    if not sigma > 0:
        return 0.0
    z = (x - mu) / sigma
    return math.exp(-0.5 * z * z) / (sigma * math.sqrt(2.0 * math.pi))


def log_gaussian_pdf_1d(x: float, mu: float, sigma: float) -> float:
    if not sigma > 0:
        return -math.inf
    z = (x - mu) / sigma
    return -math.log(sigma) - 0.5 * LOG_2PI - 0.5 * z * z


def _mahalanobis_sq(point: Point2D, mu: Point2D, inv: Matrix2x2) -> float:
    return quadratic_form_2x2(inv, Point2D(point.x - mu.x, point.y - mu.y))


def gaussian_pdf_2d(point: Point2D, mu: Point2D, sigma: Matrix2x2) -> float:
    inv = inverse_2x2(sigma)
    if inv is None:
        return 0.0
    det = determinant_2x2(sigma)
    if det <= 0:
        return 0.0
    return math.exp(-0.5 * _mahalanobis_sq(point, mu, inv)) / (2.0 * math.pi * math.sqrt(det))


def log_gaussian_pdf_2d(point: Point2D, mu: Point2D, sigma: Matrix2x2) -> float:
    inv = inverse_2x2(sigma)
    if inv is None:
        return -math.inf
    det = determinant_2x2(sigma)
    if det <= 0:
        return -math.inf
    return -LOG_2PI - 0.5 * math.log(det) - 0.5 * _mahalanobis_sq(point, mu, inv)


# ---------------------------
# Log-space helpers
# ---------------------------

def safe_log(x: float, min_value: float = SAFE_LOG_FLOOR) -> float:
    return math.log(max(x, min_value))


def log_sum_exp(a: float, b: float) -> float:
    """log(exp(a) + exp(b)) without overflow."""
    m = max(a, b)
    if m == -math.inf:
        return -math.inf
    return m + math.log(math.exp(a - m) + math.exp(b - m))


def log_sum_exp_array(log_values: Sequence[float]) -> float:
    if len(log_values) == 0:
        return -math.inf
    if len(log_values) == 1:
        return float(log_values[0])
    # torch.logsumexp already returns -inf when every entry is -inf
    return float(torch.logsumexp(torch.as_tensor(log_values, dtype=torch.float64), dim=0))


def log_probs_to_probs(log_probs: Sequence[float]) -> List[float]:
    if len(log_probs) == 0:
        return []
    t = torch.as_tensor(log_probs, dtype=torch.float64)
    log_norm = torch.logsumexp(t, dim=0)
    if float(log_norm) == -math.inf:
        return [1.0 / len(log_probs)] * len(log_probs)
    return (t - log_norm).exp().tolist()


def normalize_probabilities(probs: Sequence[float]) -> List[float]:
    """Scale to sum 1; a non-positive total gives the uniform distribution."""
    n = len(probs)
    if n == 0:
        return []
    total = math.fsum(probs)
    if total <= 0:
        return [1.0 / n] * n
    return [p / total for p in probs]


def mixture_prob_1d(x: float, components: Sequence) -> MixtureProbability:
    """Density of x under components exposing mu, sigma and pi."""
    if len(components) == 0:
        return MixtureProbability(0.0, (), ())
    probs = [c.pi * gaussian_pdf_1d(x, c.mu, c.sigma) for c in components]
    total = math.fsum(probs)
    if total > 0:
        posteriors = [p / total for p in probs]
    else:
        posteriors = [1.0 / len(probs)] * len(probs)
    return MixtureProbability(total, tuple(probs), tuple(posteriors))
