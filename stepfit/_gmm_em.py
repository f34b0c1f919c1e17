# stepfit/_gmm_em.py
"""1-D Gaussian Mixture Model fitted by Expectation-Maximization, one step at a time.

The E- and M-steps are vectorised torch kernels over (N, K) responsibility
matrices; the public API speaks in immutable GaussianComponent tuples so
steps can be recorded and replayed.

Numerical choices:
- Densities and responsibilities are computed in probability space. A
  sample whose weighted density is 0 under every component gets uniform
  responsibilities 1/K instead of dividing by zero.
- After the M-step a NaN mean becomes 0, a NaN or < 0.01 sigma becomes 0.1,
  a NaN weight becomes 1/K, and the weights are renormalised to sum to 1.
- The log-likelihood floors each sample's mixture density at 1e-100, so it
  is always finite.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence, Tuple

import torch

from stepfit._convergence import has_converged_absolute
from stepfit._history import FitState, HistoryStep
from stepfit._initialization import make_generator, statistical_initialization_1d
from stepfit._probability import SAFE_LOG_FLOOR, MixtureProbability, mixture_prob_1d
from stepfit._statistics import as_tensor_1d, calculate_basic_stats

logger = logging.getLogger(__name__)

DEFAULT_TOL = 1e-6
DEFAULT_MAX_ITER = 100
SIGMA_MIN = 0.01
SIGMA_FLOOR = 0.1
PI_EDIT_RANGE = (0.01, 0.99)

_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


@dataclass(frozen=True)
class GaussianComponent:
    mu: float
    sigma: float
    pi: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.mu)
            and math.isfinite(self.sigma) and self.sigma > 0
            and math.isfinite(self.pi) and self.pi > 0
        )


Components = Tuple[GaussianComponent, ...]


@dataclass(frozen=True)
class EMStepResult:
    components: Components
    responsibilities: torch.Tensor  # (N,K)
    log_likelihood: float


# ---------------------------
# Kernels
# ---------------------------

def _to_tensors(components: Sequence[GaussianComponent]) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    mu = torch.tensor([c.mu for c in components], dtype=torch.float64)
    sigma = torch.tensor([c.sigma for c in components], dtype=torch.float64)
    pi = torch.tensor([c.pi for c in components], dtype=torch.float64)
    return mu, sigma, pi


def _from_tensors(mu: torch.Tensor, sigma: torch.Tensor, pi: torch.Tensor) -> Components:
    return tuple(
        GaussianComponent(float(m), float(s), float(p))
        for m, s, p in zip(mu.tolist(), sigma.tolist(), pi.tolist())
    )


@torch.no_grad()
def _weighted_densities(X: torch.Tensor, mu: torch.Tensor, sigma: torch.Tensor, pi: torch.Tensor) -> torch.Tensor:
    """pi_k * N(x_n | mu_k, sigma_k), shape (N,K). Invalid components contribute 0."""
    valid = torch.isfinite(mu) & torch.isfinite(sigma) & (sigma > 0)  # (K,)
    safe_mu = torch.where(valid, mu, torch.zeros_like(mu))
    safe_sigma = torch.where(valid, sigma, torch.ones_like(sigma))
    safe_pi = torch.where(torch.isfinite(pi) & (pi > 0), pi, torch.zeros_like(pi))

    z = (X.unsqueeze(1) - safe_mu.unsqueeze(0)) / safe_sigma.unsqueeze(0)  # (N,K)
    pdf = torch.exp(-0.5 * z * z) * (_INV_SQRT_2PI / safe_sigma.unsqueeze(0))
    pdf = torch.where(valid.unsqueeze(0), pdf, torch.zeros_like(pdf))
    return pdf * safe_pi.unsqueeze(0)


@torch.no_grad()
def _expectation_step(X: torch.Tensor, mu: torch.Tensor, sigma: torch.Tensor, pi: torch.Tensor) -> torch.Tensor:
    """Responsibilities (N,K); rows sum to 1."""
    K = mu.shape[0]
    weighted = _weighted_densities(X, mu, sigma, pi)      # (N,K)
    total = weighted.sum(dim=1, keepdim=True)             # (N,1)
    has_mass = total > 0
    resp = weighted / torch.where(has_mass, total, torch.ones_like(total))
    return torch.where(has_mass, resp, torch.full_like(resp, 1.0 / K))


@torch.no_grad()
def _maximization_step(X: torch.Tensor, resp: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Weighted mean / std / weight per component from responsibilities (N,K)."""
    N, K = resp.shape

    nk = resp.sum(dim=0)                                   # (K,)
    mu = (resp.T @ X) / nk                                 # (K,)
    diff = X.unsqueeze(1) - mu.unsqueeze(0)                # (N,K)
    var = (resp * diff * diff).sum(dim=0) / nk             # (K,)
    sigma = torch.sqrt(var)
    pi = nk / N if N > 0 else torch.full((K,), float("nan"), dtype=X.dtype)

    mu = torch.where(torch.isnan(mu), torch.zeros_like(mu), mu)
    sigma = torch.where(torch.isnan(sigma) | (sigma < SIGMA_MIN), torch.full_like(sigma, SIGMA_FLOOR), sigma)
    pi = torch.where(torch.isnan(pi), torch.full_like(pi, 1.0 / K), pi)
    pi = pi / pi.sum()
    return mu, sigma, pi


@torch.no_grad()
def _log_likelihood(X: torch.Tensor, mu: torch.Tensor, sigma: torch.Tensor, pi: torch.Tensor) -> float:
    mix = _weighted_densities(X, mu, sigma, pi).sum(dim=1)  # (N,)
    return float(torch.log(mix.clamp_min(SAFE_LOG_FLOOR)).sum())


# ---------------------------
# Model wrapper
# ---------------------------

class GaussianMixtureModel:
    """EM for a K-component mixture of 1-D Gaussians.

    The data are copied once at construction. Randomness (initial means and
    widths) comes from ``generator`` or from a generator seeded with
    ``random_state``.
    """

    def __init__(
        self,
        data: Iterable[float],
        n_components: int = 2,
        tol: float = DEFAULT_TOL,
        max_iter: int = DEFAULT_MAX_ITER,
        random_state: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> None:
        if n_components <= 0:
            raise ValueError("n_components must be positive")
        if tol < 0:
            raise ValueError("tol must be non-negative")
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")

        self._X = as_tensor_1d(data)
        self.data: Tuple[float, ...] = tuple(self._X.tolist())
        self.n_components = n_components
        self.tol = tol
        self.max_iter = max_iter
        self.generator = generator if generator is not None else make_generator(random_state)

    @property
    def n_samples(self) -> int:
        return self._X.shape[0]

    # -----------------------
    # Initialization
    # -----------------------

    def initialize_components(self) -> Components:
        """Means around the sample mean, widths stddev * U[0.5, 1.5), equal weights."""
        K = self.n_components
        stats = calculate_basic_stats(self.data)
        means = statistical_initialization_1d(self.data, K, generator=self.generator) or [stats.mean] * K
        factors = 0.5 + torch.rand((K,), generator=self.generator, dtype=torch.float64)

        components = []
        for mu, f in zip(means, factors.tolist()):
            sigma = stats.standard_deviation * f
            if sigma < SIGMA_MIN:
                sigma = SIGMA_FLOOR
            components.append(GaussianComponent(mu=mu, sigma=sigma, pi=1.0 / K))
        return tuple(components)

    # -----------------------
    # EM pieces
    # -----------------------

    def gaussian_pdf(self, x: float, mu: float, sigma: float) -> float:
        return float(_weighted_densities(
            torch.tensor([x], dtype=torch.float64),
            torch.tensor([mu], dtype=torch.float64),
            torch.tensor([sigma], dtype=torch.float64),
            torch.ones(1, dtype=torch.float64),
        )[0, 0])

    def expectation_step(self, components: Sequence[GaussianComponent]) -> torch.Tensor:
        return _expectation_step(self._X, *_to_tensors(components))

    def maximization_step(self, responsibilities: torch.Tensor) -> Components:
        if responsibilities.shape != (self.n_samples, self.n_components):
            raise ValueError(
                f"responsibilities must have shape {(self.n_samples, self.n_components)}, "
                f"got {tuple(responsibilities.shape)}"
            )
        return _from_tensors(*_maximization_step(self._X, responsibilities.to(torch.float64)))

    def calculate_log_likelihood(self, components: Sequence[GaussianComponent]) -> float:
        if len(components) == 0:
            return self.n_samples * math.log(SAFE_LOG_FLOOR)
        return _log_likelihood(self._X, *_to_tensors(components))

    def single_em_step(self, components: Sequence[GaussianComponent]) -> EMStepResult:
        """One E-step plus one M-step from the given components."""
        resp = self.expectation_step(components)
        new_components = self.maximization_step(resp)
        return EMStepResult(
            components=new_components,
            responsibilities=resp,
            log_likelihood=self.calculate_log_likelihood(new_components),
        )

    # -----------------------
    # Stepping / fitting
    # -----------------------

    def _advance(self, components: Components):
        result = self.single_em_step(components)
        return result.components, result.log_likelihood, result.responsibilities

    def _is_converged(self, previous: HistoryStep, new: HistoryStep) -> bool:
        return has_converged_absolute(new.diagnostic, previous.diagnostic, self.tol)

    def start(self, initial_components: Optional[Sequence[GaussianComponent]] = None) -> FitState[Components]:
        """A FitState holding only iteration 0, ready to be stepped."""
        if initial_components is None:
            components = self.initialize_components()
        else:
            components = tuple(initial_components)
            if len(components) != self.n_components:
                raise ValueError(
                    f"expected {self.n_components} initial components, got {len(components)}"
                )
        return FitState(
            components,
            advance=self._advance,
            evaluate=self.calculate_log_likelihood,
            is_converged=self._is_converged,
            max_iter=self.max_iter,
        )

    def fit(self, initial_components: Optional[Sequence[GaussianComponent]] = None) -> FitState[Components]:
        state = self.start(initial_components)
        state.run_to_convergence()
        logger.debug(
            "GMM fit: K=%d N=%d iterations=%d status=%s log_likelihood=%.6f",
            self.n_components, self.n_samples, state.iteration, state.status.value, state.diagnostic,
        )
        return state

    # -----------------------
    # Queries and edits
    # -----------------------

    def evaluate_mixture(self, x: float, components: Sequence[GaussianComponent]) -> MixtureProbability:
        """Density at x, skipping components with non-finite or non-positive parameters."""
        valid = [c for c in components if c is not None and c.is_valid()]
        if not valid:
            return MixtureProbability(0.0, (), ())
        return mixture_prob_1d(x, valid)

    def predict(self, x: float, components: Sequence[GaussianComponent]) -> int:
        """Index (among valid components) with the largest posterior, -1 if none."""
        posteriors = self.evaluate_mixture(x, components).posteriors
        if not posteriors:
            return -1
        return max(range(len(posteriors)), key=posteriors.__getitem__)

    @staticmethod
    def with_component(
        components: Sequence[GaussianComponent],
        index: int,
        mu: Optional[float] = None,
        sigma: Optional[float] = None,
        pi: Optional[float] = None,
    ) -> Components:
        """Copy of components with one entry edited; weights renormalised.

        An edited weight is clamped to [0.01, 0.99] before renormalising.
        """
        comps = list(components)
        changes = {}
        if mu is not None:
            changes["mu"] = float(mu)
        if sigma is not None:
            changes["sigma"] = float(sigma)
        if pi is not None:
            lo, hi = PI_EDIT_RANGE
            changes["pi"] = max(lo, min(hi, float(pi)))
        comps[index] = replace(comps[index], **changes)

        total = math.fsum(c.pi for c in comps)
        if total > 0 and math.isfinite(total):
            comps = [replace(c, pi=c.pi / total) for c in comps]
        return tuple(comps)
