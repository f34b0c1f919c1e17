# stepfit/_kmeans.py
"""Lloyd's K-Means on 1-D data, exposed as a steppable iteration.

One iteration assigns every sample to its nearest centroid (ties go to the
lowest centroid index), moves each centroid to the mean of its samples
(an empty cluster keeps its centroid) and reports the inertia, the
within-cluster sum of squares, of the moved centroids under that
assignment.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import torch

from stepfit._convergence import has_converged_absolute, has_converged_array
from stepfit._history import FitState, HistoryStep
from stepfit._initialization import (
    kmeans_plus_plus_initialization_1d,
    make_generator,
    random_initialization_1d,
    uniform_initialization_1d,
)
from stepfit._statistics import as_tensor_1d

logger = logging.getLogger(__name__)

DEFAULT_TOL = 1e-6
DEFAULT_MAX_ITER = 200
INIT_METHODS = ("simple", "k-means++", "random")


@dataclass(frozen=True)
class KMeansCluster:
    centroid: float
    size: int
    points: Tuple[float, ...]


Clusters = Tuple[KMeansCluster, ...]


@dataclass(frozen=True)
class KMeansResult:
    centroids: Tuple[float, ...]
    assignments: Tuple[int, ...]
    clusters: Clusters
    iteration: int
    inertia: float
    converged: bool


@dataclass(frozen=True)
class ElbowPoint:
    k: int
    inertia: float


# ---------------------------
# Kernels
# ---------------------------

@torch.no_grad()
def _assign(X: torch.Tensor, centroids: torch.Tensor) -> torch.Tensor:
    """Nearest-centroid labels (N,). argmin keeps the first of tied minima."""
    if X.shape[0] == 0 or centroids.shape[0] == 0:
        return torch.zeros((X.shape[0],), dtype=torch.long)
    d = (X.unsqueeze(1) - centroids.unsqueeze(0)).abs()  # (N,K)
    d = torch.nan_to_num(d, nan=math.inf)
    return torch.argmin(d, dim=1)


@torch.no_grad()
def _update(X: torch.Tensor, labels: torch.Tensor, previous: torch.Tensor) -> torch.Tensor:
    """Per-cluster means via scatter_add; empty clusters keep their previous centroid."""
    K = previous.shape[0]
    N = X.shape[0]
    counts = torch.zeros((K,), dtype=X.dtype)
    sums = torch.zeros((K,), dtype=X.dtype)
    counts.scatter_add_(0, labels, torch.ones((N,), dtype=X.dtype))
    sums.scatter_add_(0, labels, X)
    return torch.where(counts > 0, sums / counts.clamp_min(1.0), previous)


@torch.no_grad()
def _inertia(X: torch.Tensor, centroids: torch.Tensor, labels: torch.Tensor) -> float:
    if X.shape[0] == 0:
        return 0.0
    return float(((X - centroids[labels]) ** 2).sum())


# ---------------------------
# Model wrapper
# ---------------------------

class KMeansAlgorithm:
    """K-Means with at most ``len(data)`` clusters.

    init: 'simple' spreads centroids evenly over the data range, 'k-means++'
    uses D^2 seeding, 'random' draws uniformly from the range.
    """

    def __init__(
        self,
        data: Iterable[float],
        n_clusters: int = 2,
        tol: float = DEFAULT_TOL,
        max_iter: int = DEFAULT_MAX_ITER,
        init: str = "simple",
        random_state: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> None:
        if n_clusters <= 0:
            raise ValueError("n_clusters must be positive")
        if tol < 0:
            raise ValueError("tol must be non-negative")
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")
        if init not in INIT_METHODS:
            raise ValueError(f"init must be one of {INIT_METHODS}, got {init!r}")

        self._X = as_tensor_1d(data)
        self.data: Tuple[float, ...] = tuple(self._X.tolist())
        self.n_clusters = min(n_clusters, len(self.data))
        self.tol = tol
        self.max_iter = max_iter
        self.init = init
        self.generator = generator if generator is not None else make_generator(random_state)

    def _centroid_tensor(self, centroids: Sequence[float]) -> torch.Tensor:
        C = torch.tensor([float(c) for c in centroids], dtype=torch.float64)
        if C.shape[0] != self.n_clusters:
            raise ValueError(f"expected {self.n_clusters} centroids, got {C.shape[0]}")
        return C

    # -----------------------
    # Initialization
    # -----------------------

    def initialize_centroids(self) -> Tuple[float, ...]:
        K = self.n_clusters
        if K == 0:
            return ()
        if self.init == "k-means++":
            centroids = kmeans_plus_plus_initialization_1d(self.data, K, generator=self.generator)
        elif self.init == "random":
            centroids = random_initialization_1d(self.data, K, generator=self.generator)
        else:
            centroids = self.initialize_centroids_simple()
        return tuple(sorted(centroids))

    def initialize_centroids_simple(self) -> Tuple[float, ...]:
        """Evenly spaced at (i+1)/(K+1) of the range."""
        return tuple(uniform_initialization_1d(self.data, self.n_clusters))

    # -----------------------
    # Iteration pieces
    # -----------------------

    def assign_points(self, centroids: Sequence[float]) -> Tuple[int, ...]:
        return tuple(_assign(self._X, self._centroid_tensor(centroids)).tolist())

    def update_centroids(self, assignments: Sequence[int], previous: Sequence[float]) -> Tuple[float, ...]:
        labels = torch.tensor(list(assignments), dtype=torch.long)
        return tuple(_update(self._X, labels, self._centroid_tensor(previous)).tolist())

    def calculate_inertia(self, centroids: Sequence[float], assignments: Sequence[int]) -> float:
        labels = torch.tensor(list(assignments), dtype=torch.long)
        return _inertia(self._X, self._centroid_tensor(centroids), labels)

    def create_clusters(self, centroids: Sequence[float], assignments: Sequence[int]) -> Clusters:
        labels = torch.tensor(list(assignments), dtype=torch.long)
        clusters = []
        for k, c in enumerate(centroids):
            pts = tuple(self._X[labels == k].tolist())
            clusters.append(KMeansCluster(centroid=float(c), size=len(pts), points=pts))
        return tuple(clusters)

    def evaluate_centroids(self, centroids: Sequence[float]) -> float:
        """Inertia of centroids as given, each sample charged to its nearest one."""
        assignments = self.assign_points(centroids)
        return self.calculate_inertia(centroids, assignments)

    def single_iteration(self, centroids: Sequence[float], iteration: int = 0) -> KMeansResult:
        """One assignment + update pass starting from centroids."""
        current = tuple(float(c) for c in centroids)
        assignments = self.assign_points(current)
        new_centroids = self.update_centroids(assignments, current)
        return KMeansResult(
            centroids=new_centroids,
            assignments=assignments,
            clusters=self.create_clusters(new_centroids, assignments),
            iteration=iteration,
            inertia=self.calculate_inertia(new_centroids, assignments),
            converged=has_converged_array(current, new_centroids, self.tol),
        )

    def _initial_result(self, centroids: Sequence[float]) -> KMeansResult:
        current = tuple(float(c) for c in centroids)
        assignments = self.assign_points(current)
        return KMeansResult(
            centroids=current,
            assignments=assignments,
            clusters=self.create_clusters(current, assignments),
            iteration=0,
            inertia=self.calculate_inertia(current, assignments),
            converged=False,
        )

    def run(self, max_iter: Optional[int] = None, initial_centroids: Optional[Sequence[float]] = None) -> List[KMeansResult]:
        """Full trajectory: the initial placement followed by every iteration."""
        max_iter = self.max_iter if max_iter is None else max_iter
        centroids = self.initialize_centroids() if initial_centroids is None else tuple(initial_centroids)
        history = [self._initial_result(centroids)]
        for it in range(1, max_iter + 1):
            result = self.single_iteration(centroids, iteration=it)
            history.append(result)
            if result.converged:
                break
            centroids = result.centroids
        return history

    # -----------------------
    # Stepping / fitting
    # -----------------------

    def _advance(self, clusters: Clusters):
        result = self.single_iteration([c.centroid for c in clusters])
        return result.clusters, result.inertia, result.assignments

    def _evaluate(self, clusters: Clusters) -> float:
        return self.evaluate_centroids([c.centroid for c in clusters])

    def _is_converged(self, previous: HistoryStep, new: HistoryStep) -> bool:
        prev_c = [c.centroid for c in previous.params]
        new_c = [c.centroid for c in new.params]
        return (has_converged_array(new_c, prev_c, self.tol)
                or has_converged_absolute(new.diagnostic, previous.diagnostic, self.tol))

    def start(self, initial_centroids: Optional[Sequence[float]] = None) -> FitState[Clusters]:
        centroids = self.initialize_centroids() if initial_centroids is None else initial_centroids
        initial = self._initial_result(centroids)
        return FitState(
            initial.clusters,
            advance=self._advance,
            evaluate=self._evaluate,
            is_converged=self._is_converged,
            max_iter=self.max_iter,
            initial_diagnostic=initial.inertia,
            initial_extras=initial.assignments,
        )

    def fit(self, initial_centroids: Optional[Sequence[float]] = None) -> FitState[Clusters]:
        state = self.start(initial_centroids)
        state.run_to_convergence()
        logger.debug(
            "K-Means fit: K=%d N=%d iterations=%d status=%s inertia=%.6f",
            self.n_clusters, len(self.data), state.iteration, state.status.value, state.diagnostic,
        )
        return state

    # -----------------------
    # Queries and edits
    # -----------------------

    def with_centroid(self, clusters: Sequence[KMeansCluster], index: int, value: float) -> Clusters:
        """Clusters after moving one centroid, with samples reassigned to the nearest centroid."""
        centroids = [c.centroid for c in clusters]
        centroids[index] = float(value)
        return self.create_clusters(centroids, self.assign_points(centroids))

    def find_optimal_k(self, max_k: Optional[int] = None) -> List[ElbowPoint]:
        """Final inertia for k = 1..max_k, for an elbow plot."""
        if max_k is None:
            max_k = min(10, len(self.data) // 2)
        points = []
        for k in range(1, max_k + 1):
            model = KMeansAlgorithm(
                self.data, n_clusters=k, tol=self.tol, max_iter=self.max_iter,
                init=self.init, generator=self.generator,
            )
            points.append(ElbowPoint(k=k, inertia=model.run()[-1].inertia))
        return points
