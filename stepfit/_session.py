# stepfit/_session.py
"""Algorithm modes and the entry point a host uses to (re)start a fit.

A session is a FitState. Resetting, loading new data, switching mode or
changing the component/cluster count all discard the old state and call
start_session again.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Iterable

from stepfit._gaussian2d import DEFAULT_LEARNING_RATE, Gaussian2DAlgorithm
from stepfit._gmm_em import GaussianMixtureModel
from stepfit._history import FitState
from stepfit._kmeans import KMeansAlgorithm

logger = logging.getLogger(__name__)


class AlgorithmMode(enum.Enum):
    GMM = "gmm"
    KMEANS = "kmeans"
    GAUSSIAN_2D = "gaussian2d"
    GRADIENT_DESCENT = "gradient_descent"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def is_2d(self) -> bool:
        return self in (AlgorithmMode.GAUSSIAN_2D, AlgorithmMode.GRADIENT_DESCENT)


_LABELS = {
    AlgorithmMode.GMM: "Gaussian Mixture Model",
    AlgorithmMode.KMEANS: "K-Means Clustering",
    AlgorithmMode.GAUSSIAN_2D: "2D Gaussian (Maximum Likelihood)",
    AlgorithmMode.GRADIENT_DESCENT: "2D Gaussian (Gradient Descent)",
}

_DESCRIPTIONS = {
    AlgorithmMode.GMM: "Probabilistic model using Expectation-Maximization algorithm",
    AlgorithmMode.KMEANS: "Centroid-based clustering using iterative assignment and update",
    AlgorithmMode.GAUSSIAN_2D: "Closed-form mean and covariance of a bivariate Gaussian",
    AlgorithmMode.GRADIENT_DESCENT: "Bivariate Gaussian fitted by iterative log-likelihood ascent",
}


def start_session(mode: AlgorithmMode, data: Iterable, count: int = 2, **options: Any) -> FitState:
    """Fresh FitState for mode.

    count is the number of GMM components or K-Means clusters and is
    ignored by the 2-D modes. options go to the engine constructor, except
    ``learning_rate`` (gradient descent) and ``initial`` (starting
    parameters), which go to the engine's start method.
    """
    mode = AlgorithmMode(mode)
    initial = options.pop("initial", None)
    learning_rate = options.pop("learning_rate", DEFAULT_LEARNING_RATE)
    logger.debug("starting %s session (count=%d)", mode.value, count)

    if mode is AlgorithmMode.GMM:
        return GaussianMixtureModel(data, n_components=count, **options).start(initial)
    if mode is AlgorithmMode.KMEANS:
        return KMeansAlgorithm(data, n_clusters=count, **options).start(initial)
    if mode is AlgorithmMode.GAUSSIAN_2D:
        return Gaussian2DAlgorithm(data, **options).fit_closed_form(initial)
    return Gaussian2DAlgorithm(data, **options).start(initial, learning_rate=learning_rate)
