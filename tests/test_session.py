# tests/test_session.py
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from stepfit._gaussian2d import Gaussian2D, Gaussian2DAlgorithm
from stepfit._gmm_em import GaussianComponent
from stepfit._history import FitStatus
from stepfit._matrix import IDENTITY_2X2, Point2D
from stepfit._session import AlgorithmMode, start_session

DATA_1D = [1.0, 1.2, 0.8, 5.0, 5.3, 4.9]
DATA_2D = [(1.0, 2.0), (2.0, 3.0), (3.0, 4.0), (1.5, 2.3), (2.5, 3.7)]


@pytest.mark.parametrize("mode,data", [
    (AlgorithmMode.GMM, DATA_1D),
    (AlgorithmMode.KMEANS, DATA_1D),
    (AlgorithmMode.GAUSSIAN_2D, DATA_2D),
    (AlgorithmMode.GRADIENT_DESCENT, DATA_2D),
])
def test_fresh_session_starts_at_iteration_zero(mode, data):
    options = {} if mode.is_2d else {"random_state": 0}
    state = start_session(mode, data, count=2, **options)
    assert state.iteration == 0
    assert state.status is FitStatus.INITIALIZED
    assert len(state.history) == 1
    state.step_forward()
    assert state.iteration == 1


def test_mode_from_value_and_labels():
    state = start_session("kmeans", DATA_1D, count=3)
    assert len(state.params) == 3
    assert AlgorithmMode.GMM.label == "Gaussian Mixture Model"
    assert AlgorithmMode.GRADIENT_DESCENT.is_2d
    assert not AlgorithmMode.KMEANS.is_2d
    assert all(m.description for m in AlgorithmMode)


def test_closed_form_session_first_step_is_mle():
    state = start_session(AlgorithmMode.GAUSSIAN_2D, DATA_2D)
    assert state.step_forward().params == Gaussian2DAlgorithm(DATA_2D).fit_gaussian()


def test_initial_parameters_are_forwarded():
    comps = (GaussianComponent(1.0, 0.5, 0.5), GaussianComponent(5.0, 0.5, 0.5))
    gmm = start_session(AlgorithmMode.GMM, DATA_1D, count=2, initial=comps)
    assert gmm.params == comps

    initial = Gaussian2D(Point2D(0.0, 0.0), IDENTITY_2X2)
    gd = start_session(AlgorithmMode.GRADIENT_DESCENT, DATA_2D, initial=initial, learning_rate=0.001)
    assert gd.params.mu == Point2D(0.0, 0.0)
    step = gd.step_forward()
    assert step.params.mu.x == pytest.approx(0.001 * (1.0 + 2.0 + 3.0 + 1.5 + 2.5))


def test_restart_discards_previous_history():
    first = start_session(AlgorithmMode.KMEANS, DATA_1D, count=2)
    first.run_to_convergence()
    second = start_session(AlgorithmMode.KMEANS, DATA_1D, count=2)
    assert len(second.history) == 1
    assert len(first.history) > 1
