# tests/test_convergence_init.py
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math

import numpy as np
import pytest

from stepfit._convergence import (
    EarlyStoppingChecker,
    EarlyStoppingConfig,
    calculate_max_change,
    calculate_max_change_2d,
    has_converged_2d,
    has_converged_absolute,
    has_converged_array,
    has_converged_array_2d,
    has_converged_relative,
)
from stepfit._initialization import (
    grid_initialization_2d,
    initialize_covariance_matrix_2d,
    kmeans_plus_plus_initialization_1d,
    make_generator,
    random_initialization_1d,
    random_initialization_2d,
    statistical_initialization_1d,
    uniform_initialization_1d,
)
from stepfit._matrix import IDENTITY_2X2, Point2D


# ---------------------------------------------------------------------
# Convergence predicates
# ---------------------------------------------------------------------

def test_absolute_and_relative():
    assert has_converged_absolute(1.0, 1.0 + 1e-8, 1e-6)
    assert not has_converged_absolute(1.0, 1.1, 1e-6)
    assert has_converged_relative(1000.0, 1000.5, 1e-3)
    assert not has_converged_relative(1.0, 1.5, 1e-3)


def test_relative_falls_back_to_absolute_near_zero():
    assert has_converged_relative(1e-12, 0.0, 1e-6)
    assert not has_converged_relative(0.1, 0.0, 1e-6)


def test_array_predicates():
    assert has_converged_array([1.0, 2.0], [1.0, 2.0 + 1e-9], 1e-6)
    assert not has_converged_array([1.0, 2.0], [1.0, 2.1], 1e-6)
    assert not has_converged_array([1.0], [1.0, 2.0], 1e-6)
    assert has_converged_array([], [], 1e-6)

    a = [Point2D(0.0, 0.0), Point2D(1.0, 1.0)]
    b = [Point2D(0.0, 1e-9), Point2D(1.0, 1.0)]
    assert has_converged_2d(a[0], b[0], 1e-6)
    assert has_converged_array_2d(a, b, 1e-6)
    assert not has_converged_array_2d(a, b[:1], 1e-6)


def test_max_change():
    assert calculate_max_change([1.0, 5.0], [1.5, 4.0]) == pytest.approx(1.0)
    assert calculate_max_change([], []) == 0.0
    assert calculate_max_change([1.0], []) == math.inf
    assert calculate_max_change_2d([Point2D(0, 0)], [Point2D(0.5, -2.0)]) == pytest.approx(2.0)
    assert calculate_max_change_2d([Point2D(0, 0)], []) == math.inf


# ---------------------------------------------------------------------
# Early stopping
# ---------------------------------------------------------------------

def test_stops_at_iteration_cap():
    checker = EarlyStoppingChecker(EarlyStoppingConfig(max_iterations=3, tolerance=1e-6))
    assert not checker.should_stop(1.0)
    assert not checker.should_stop(2.0, 1.0)
    assert checker.should_stop(3.0, 2.0)
    assert checker.iteration_count == 3


def test_stops_when_change_below_tolerance():
    checker = EarlyStoppingChecker(EarlyStoppingConfig(max_iterations=100, tolerance=1e-6))
    assert checker.should_stop(1.0, 1.0 + 1e-9)


def test_stops_when_patience_runs_out():
    cfg = EarlyStoppingConfig(max_iterations=100, tolerance=1e-12, min_improvement=0.1, patience_steps=2)
    checker = EarlyStoppingChecker(cfg)
    assert not checker.should_stop(1.0)
    assert not checker.should_stop(1.05, 1.0)
    assert checker.should_stop(1.08, 1.05)

    checker.reset()
    assert checker.iteration_count == 0
    assert not checker.should_stop(1.0)
    assert not checker.should_stop(1.5, 1.0)   # improves by more than min_improvement
    assert not checker.should_stop(1.55, 1.5)


def test_patience_needs_both_settings():
    assert not EarlyStoppingConfig(10, 1e-6, min_improvement=0.1).uses_patience
    assert not EarlyStoppingConfig(10, 1e-6, patience_steps=3).uses_patience
    assert EarlyStoppingConfig(10, 1e-6, 0.1, 3).uses_patience


@pytest.mark.parametrize("kwargs", [
    {"max_iterations": 0, "tolerance": 1e-6},
    {"max_iterations": 10, "tolerance": -1.0},
])
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ValueError):
        EarlyStoppingConfig(**kwargs)


# ---------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------

def test_same_seed_same_draws():
    rng = np.random.RandomState(0)
    data = rng.randn(30).tolist()
    a = statistical_initialization_1d(data, 4, generator=make_generator(7))
    b = statistical_initialization_1d(data, 4, generator=make_generator(7))
    assert a == b
    c = kmeans_plus_plus_initialization_1d(data, 3, generator=make_generator(11))
    d = kmeans_plus_plus_initialization_1d(data, 3, generator=make_generator(11))
    assert c == d


def test_uniform_initialization():
    assert uniform_initialization_1d([0.0, 10.0], 4) == pytest.approx([2.0, 4.0, 6.0, 8.0])
    assert uniform_initialization_1d([0.0, 10.0], 1) == [5.0]
    assert uniform_initialization_1d([3.0, 3.0], 2) == [3.0, 3.0]
    assert uniform_initialization_1d([], 2) == []


def test_random_initialization_in_range():
    data = [-2.0, 0.5, 4.0]
    values = random_initialization_1d(data, 50, generator=make_generator(1))
    assert len(values) == 50
    assert all(-2.0 <= v <= 4.0 for v in values)
    assert random_initialization_1d([1.0, 1.0], 3, generator=make_generator(1)) == [1.0, 1.0, 1.0]


def test_statistical_initialization_within_noise_band():
    data = [0.0, 2.0, 4.0, 6.0, 8.0]
    std = np.std(data, ddof=1)
    values = statistical_initialization_1d(data, 20, noise_scale=0.5, generator=make_generator(3))
    assert all(abs(v - 4.0) <= 0.5 * std + 1e-12 for v in values)


def test_kmeans_plus_plus_returns_sorted_samples():
    data = [0.0, 0.1, 10.0, 10.1, 20.0, 20.1]
    centers = kmeans_plus_plus_initialization_1d(data, 3, generator=make_generator(5))
    assert len(centers) == 3
    assert centers == sorted(centers)
    assert all(c in data for c in centers)


def test_kmeans_plus_plus_small_or_degenerate_data():
    assert kmeans_plus_plus_initialization_1d([3.0, 1.0], 4) == [3.0, 1.0]
    assert kmeans_plus_plus_initialization_1d([5.0] * 4, 2, generator=make_generator(0)) == [5.0, 5.0]
    assert kmeans_plus_plus_initialization_1d([], 2) == []


def test_grid_initialization():
    box = [(0.0, 0.0), (4.0, 4.0)]
    assert grid_initialization_2d(box, 4) == [
        Point2D(1.0, 1.0), Point2D(1.0, 3.0), Point2D(3.0, 1.0), Point2D(3.0, 3.0),
    ]
    assert len(grid_initialization_2d(box, 3)) == 3
    assert grid_initialization_2d(box, 1) == [Point2D(2.0, 2.0)]


def test_random_initialization_2d_in_box():
    pts = [(0.0, -1.0), (2.0, 3.0), (1.0, 0.0)]
    out = random_initialization_2d(pts, 10, generator=make_generator(2))
    assert all(0.0 <= p.x <= 2.0 and -1.0 <= p.y <= 3.0 for p in out)


def test_initial_covariance():
    assert initialize_covariance_matrix_2d([]) == IDENTITY_2X2
    m = initialize_covariance_matrix_2d([(0.0, 0.0), (2.0, 0.0), (4.0, 0.0)])
    assert m.xx == pytest.approx(1.0)
    assert m.xy == 0.0
    assert m.yy == 0.01
