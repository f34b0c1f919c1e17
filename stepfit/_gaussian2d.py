# stepfit/_gaussian2d.py
"""Single bivariate Gaussian fitted by closed-form MLE or by gradient ascent.

Log-likelihood:
    log L = -n log(2 pi) - n/2 log|S| - 1/2 sum_i (x_i - mu)^T S^-1 (x_i - mu)

Gradients used by the iterative mode (P = S^-1, d_i = x_i - mu):
    dlogL/dmu    = P sum_i d_i
    dlogL/dS     = -n/2 P + 1/2 P (sum_i d_i d_i^T) P
The covariance has three free entries; the off-diagonal one appears twice
in S, so its gradient is twice the (0,1) entry above.

A step moves uphill: param += learning_rate * gradient. Any covariance
that leaves the positive-definite cone, or whose diagonal drops below
0.01, is regularized before it is accepted.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import torch

from stepfit._convergence import has_converged_absolute
from stepfit._history import FitState, HistoryStep
from stepfit._initialization import initialize_covariance_matrix_2d
from stepfit._matrix import (
    IDENTITY_2X2,
    MIN_DIAGONAL,
    Matrix2x2,
    Point2D,
    determinant_2x2,
    inverse_2x2,
    is_positive_definite_2x2,
    points_to_tensor,
    regularize_covariance_2x2,
)
from stepfit._probability import gaussian_pdf_2d

logger = logging.getLogger(__name__)

DEFAULT_TOL = 1e-6
DEFAULT_MAX_ITER = 100
DEFAULT_LEARNING_RATE = 0.01
LOG_PDF_PENALTY = -1000.0
DET_EPS = 1e-6
CLOSED_FORM_JITTER = 0.01
CONTOUR_POINTS = 100

_LOG_2PI = math.log(2.0 * math.pi)


@dataclass(frozen=True)
class Gaussian2D:
    mu: Point2D
    sigma: Matrix2x2
    log_likelihood: float = 0.0


@dataclass(frozen=True)
class Gradients:
    mu_grad: Point2D
    sigma_grad: Matrix2x2


@dataclass(frozen=True)
class GradientStepResult:
    gaussian: Gaussian2D
    log_likelihood: float


@dataclass(frozen=True)
class DataExtent:
    x_min: float
    x_max: float
    y_min: float
    y_max: float


ZERO_GRADIENTS = Gradients(Point2D(0.0, 0.0), Matrix2x2(0.0, 0.0, 0.0))


def confidence_level_squared(confidence: float) -> float:
    """Squared Mahalanobis radius enclosing `confidence` of a 2-D Gaussian's mass."""
    if not 0.0 < confidence < 1.0:
        raise ValueError("confidence must be in (0, 1)")
    return -2.0 * math.log1p(-confidence)


# ---------------------------
# Kernels
# ---------------------------

def _mu_tensor(mu: Point2D) -> torch.Tensor:
    return torch.tensor([mu.x, mu.y], dtype=torch.float64)


@torch.no_grad()
def _log_pdf(X: torch.Tensor, mu: Point2D, sigma: Matrix2x2) -> Optional[torch.Tensor]:
    """Per-sample log N(x | mu, sigma), shape (N,); None for a singular/invalid sigma."""
    inv = inverse_2x2(sigma)
    det = determinant_2x2(sigma)
    if inv is None or det <= 0:
        return None
    D = X - _mu_tensor(mu).unsqueeze(0)                  # (N,2)
    mahal = ((D @ inv.to_tensor()) * D).sum(dim=1)       # (N,)
    return -_LOG_2PI - 0.5 * math.log(det) - 0.5 * mahal


@torch.no_grad()
def _log_likelihood(X: torch.Tensor, mu: Point2D, sigma: Matrix2x2) -> float:
    N = X.shape[0]
    if N == 0:
        return 0.0
    log_pdf = _log_pdf(X, mu, sigma)
    if log_pdf is None:
        return LOG_PDF_PENALTY * N
    pdf = torch.exp(log_pdf)
    # pdf == 0 (underflow) and NaN both fall back to the penalty
    per_sample = torch.where(pdf > 0, log_pdf, torch.full_like(log_pdf, LOG_PDF_PENALTY))
    return float(per_sample.sum())


@torch.no_grad()
def _gradients(X: torch.Tensor, mu: Point2D, sigma: Matrix2x2) -> Gradients:
    N = X.shape[0]
    inv = inverse_2x2(sigma)
    if N == 0 or inv is None:
        return ZERO_GRADIENTS

    P = inv.to_tensor()                                  # (2,2), symmetric
    D = X - _mu_tensor(mu).unsqueeze(0)                  # (N,2)
    g_mu = P @ D.sum(dim=0)                              # (2,)

    Y = D @ P                                            # rows are P d_i
    G = -0.5 * N * P + 0.5 * (Y.T @ Y)                   # dlogL/dS, (2,2)

    return Gradients(
        mu_grad=Point2D(float(g_mu[0]), float(g_mu[1])),
        sigma_grad=Matrix2x2(float(G[0, 0]), 2.0 * float(G[0, 1]), float(G[1, 1])),
    )


# ---------------------------
# Model wrapper
# ---------------------------

class Gaussian2DAlgorithm:
    """Fits one 2-D Gaussian to a fixed, privately copied set of points."""

    def __init__(
        self,
        points: Iterable,
        tol: float = DEFAULT_TOL,
        max_iter: int = DEFAULT_MAX_ITER,
    ) -> None:
        if tol < 0:
            raise ValueError("tol must be non-negative")
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")

        self._X = points_to_tensor(points)
        self.points: Tuple[Point2D, ...] = tuple(Point2D(x, y) for x, y in self._X.tolist())
        self.tol = tol
        self.max_iter = max_iter

    @property
    def n_samples(self) -> int:
        return self._X.shape[0]

    # -----------------------
    # Statistics
    # -----------------------

    def calculate_mean(self) -> Point2D:
        if self.n_samples == 0:
            return Point2D(0.0, 0.0)
        m = self._X.mean(dim=0)
        return Point2D(float(m[0]), float(m[1]))

    def calculate_covariance(self, mu: Optional[Point2D] = None) -> Matrix2x2:
        """Sample covariance around mu (the sample mean by default), n-1 divisor."""
        N = self.n_samples
        if N == 0:
            return IDENTITY_2X2
        mu = self.calculate_mean() if mu is None else mu
        D = self._X - _mu_tensor(mu).unsqueeze(0)
        C = (D.T @ D) / (N - 1 if N > 1 else N)
        return Matrix2x2.from_tensor(C)

    def data_extent(self) -> DataExtent:
        if self.n_samples == 0:
            return DataExtent(-5.0, 5.0, -5.0, 5.0)
        lo = self._X.min(dim=0).values
        hi = self._X.max(dim=0).values
        return DataExtent(float(lo[0]), float(hi[0]), float(lo[1]), float(hi[1]))

    # -----------------------
    # Likelihood
    # -----------------------

    def evaluate_pdf(self, point: Point2D, gaussian: Gaussian2D) -> float:
        return gaussian_pdf_2d(Point2D.of(point), gaussian.mu, gaussian.sigma)

    def calculate_log_likelihood(self, gaussian: Gaussian2D) -> float:
        """Sum of per-sample log densities, -1000 for any sample whose density is 0."""
        return _log_likelihood(self._X, gaussian.mu, gaussian.sigma)

    def _with_log_likelihood(self, mu: Point2D, sigma: Matrix2x2) -> Gaussian2D:
        return Gaussian2D(mu=mu, sigma=sigma, log_likelihood=_log_likelihood(self._X, mu, sigma))

    # -----------------------
    # Closed form
    # -----------------------

    def fit_gaussian(self) -> Gaussian2D:
        """Maximum-likelihood mean and sample covariance, jittered if nearly singular."""
        mu = self.calculate_mean()
        sigma = self.calculate_covariance(mu)
        if determinant_2x2(sigma) <= DET_EPS:
            logger.debug("covariance determinant %.3g <= %.0e, adding %.2f to the diagonal",
                         determinant_2x2(sigma), DET_EPS, CLOSED_FORM_JITTER)
            sigma = Matrix2x2(sigma.xx + CLOSED_FORM_JITTER, sigma.xy, sigma.yy + CLOSED_FORM_JITTER)
        return self._with_log_likelihood(mu, sigma)

    def initialize_gaussian(self) -> Gaussian2D:
        """Sample mean with a shrunken covariance, a starting point for gradient ascent."""
        if self.n_samples == 0:
            return Gaussian2D(Point2D(0.0, 0.0), IDENTITY_2X2, 0.0)
        return self._with_log_likelihood(self.calculate_mean(), initialize_covariance_matrix_2d(self.points))

    # -----------------------
    # Gradient ascent
    # -----------------------

    def calculate_gradients(self, gaussian: Gaussian2D) -> Gradients:
        return _gradients(self._X, gaussian.mu, gaussian.sigma)

    def gradient_step(self, gaussian: Gaussian2D, learning_rate: float = DEFAULT_LEARNING_RATE) -> Gaussian2D:
        _check_learning_rate(learning_rate)
        g = self.calculate_gradients(gaussian)

        mu = Point2D(gaussian.mu.x + learning_rate * g.mu_grad.x,
                     gaussian.mu.y + learning_rate * g.mu_grad.y)
        sigma = Matrix2x2(
            gaussian.sigma.xx + learning_rate * g.sigma_grad.xx,
            gaussian.sigma.xy + learning_rate * g.sigma_grad.xy,
            gaussian.sigma.yy + learning_rate * g.sigma_grad.yy,
        )
        if (not is_positive_definite_2x2(sigma) or determinant_2x2(sigma) <= DET_EPS
                or sigma.xx < MIN_DIAGONAL or sigma.yy < MIN_DIAGONAL):
            sigma = regularize_covariance_2x2(sigma)
        return self._with_log_likelihood(mu, sigma)

    def single_gradient_descent_step(
        self, gaussian: Gaussian2D, learning_rate: float = DEFAULT_LEARNING_RATE
    ) -> GradientStepResult:
        new = self.gradient_step(gaussian, learning_rate)
        return GradientStepResult(gaussian=new, log_likelihood=new.log_likelihood)

    # -----------------------
    # Stepping / fitting
    # -----------------------

    def _is_converged(self, previous: HistoryStep, new: HistoryStep) -> bool:
        return has_converged_absolute(new.diagnostic, previous.diagnostic, self.tol)

    def _state(self, initial: Gaussian2D, advance) -> FitState[Gaussian2D]:
        initial = self._with_log_likelihood(initial.mu, initial.sigma)
        return FitState(
            initial,
            advance=advance,
            evaluate=self.calculate_log_likelihood,
            is_converged=self._is_converged,
            max_iter=self.max_iter,
            initial_diagnostic=initial.log_likelihood,
        )

    def start(
        self,
        initial: Optional[Gaussian2D] = None,
        learning_rate: float = DEFAULT_LEARNING_RATE,
    ) -> FitState[Gaussian2D]:
        """A gradient-ascent FitState holding only iteration 0."""
        _check_learning_rate(learning_rate)

        def advance(g: Gaussian2D):
            new = self.gradient_step(g, learning_rate)
            return new, new.log_likelihood, None

        return self._state(self.initialize_gaussian() if initial is None else initial, advance)

    def fit_with_gradient_descent(
        self,
        initial: Optional[Gaussian2D] = None,
        learning_rate: float = DEFAULT_LEARNING_RATE,
    ) -> FitState[Gaussian2D]:
        state = self.start(initial, learning_rate)
        state.run_to_convergence()
        logger.debug(
            "gradient ascent: lr=%g iterations=%d status=%s log_likelihood=%.6f",
            learning_rate, state.iteration, state.status.value, state.diagnostic,
        )
        return state

    def fit_closed_form(self, initial: Optional[Gaussian2D] = None) -> FitState[Gaussian2D]:
        """The closed-form estimate as a stepped fit: iteration 1 is the MLE."""

        def advance(_: Gaussian2D):
            new = self.fit_gaussian()
            return new, new.log_likelihood, None

        return self._state(self.initialize_gaussian() if initial is None else initial, advance)

    # -----------------------
    # Edits and contours
    # -----------------------

    def with_mean(self, gaussian: Gaussian2D, mu: Point2D) -> Gaussian2D:
        return self._with_log_likelihood(Point2D.of(mu), gaussian.sigma)

    def with_covariance(self, gaussian: Gaussian2D, sigma: Matrix2x2) -> Gaussian2D:
        """Edited covariance; anything not positive definite is regularized first."""
        if not is_positive_definite_2x2(sigma):
            sigma = regularize_covariance_2x2(sigma)
        return self._with_log_likelihood(gaussian.mu, sigma)

    def generate_contour_points(
        self, gaussian: Gaussian2D, level: float = 1.0, num_points: int = CONTOUR_POINTS
    ) -> List[Point2D]:
        """Ellipse {x : (x-mu)^T S^-1 (x-mu) = level}; empty for a singular/invalid S."""
        s = gaussian.sigma
        det = determinant_2x2(s)
        if inverse_2x2(s) is None or det <= 0 or level < 0:
            return []

        half_trace = 0.5 * (s.xx + s.yy)
        disc = math.sqrt(max(0.0, half_trace * half_trace - det))
        lambda1 = half_trace + disc
        lambda2 = half_trace - disc
        if lambda1 <= 0 or lambda2 <= 0:
            return []

        a = math.sqrt(lambda1 * level)
        b = math.sqrt(lambda2 * level)
        theta = 0.5 * math.atan2(2.0 * s.xy, s.xx - s.yy)

        t = torch.arange(num_points, dtype=torch.float64) * (2.0 * math.pi / num_points)
        u = a * torch.cos(t)
        v = b * torch.sin(t)
        c, sn = math.cos(theta), math.sin(theta)
        xs = gaussian.mu.x + u * c - v * sn
        ys = gaussian.mu.y + u * sn + v * c
        return [Point2D(x, y) for x, y in zip(xs.tolist(), ys.tolist())]


def _check_learning_rate(learning_rate: float) -> None:
    if not (learning_rate > 0 and math.isfinite(learning_rate)):
        raise ValueError("learning_rate must be a positive finite number")
