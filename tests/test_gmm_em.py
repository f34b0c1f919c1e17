# tests/test_gmm_em.py
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math
import warnings

import numpy as np
import pytest
import torch
from sklearn.mixture import GaussianMixture

from stepfit._gmm_em import GaussianComponent, GaussianMixtureModel
from stepfit._history import FitStatus


def _random_seed():
    """Generate a random seed between 1 and 1000."""
    return np.random.default_rng().integers(1, 1001)


def _two_clusters(seed, n_per=100, centers=(0.0, 10.0), scale=0.5):
    rng = np.random.RandomState(seed)
    x = np.concatenate([rng.randn(n_per) * scale + c for c in centers])
    rng.shuffle(x)
    return x


# ---------------------------------------------------------------------
# E-step / M-step
# ---------------------------------------------------------------------

@pytest.mark.parametrize("K", [1, 2, 3])
def test_responsibilities_rows_sum_to_one(K):
    x = _two_clusters(_random_seed())
    model = GaussianMixtureModel(x, n_components=K, random_state=0)
    resp = model.expectation_step(model.initialize_components())
    assert resp.shape == (len(x), K)
    assert torch.allclose(resp.sum(dim=1), torch.ones(len(x), dtype=torch.float64))
    assert bool((resp >= 0).all())


def test_far_sample_gets_uniform_responsibilities():
    model = GaussianMixtureModel([1000.0, 0.0], n_components=2)
    comps = (GaussianComponent(0.0, 0.1, 0.5), GaussianComponent(0.5, 0.1, 0.5))
    resp = model.expectation_step(comps)
    assert resp[0].tolist() == [0.5, 0.5]


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_weights_sum_to_one_after_every_step(seed):
    x = _two_clusters(seed)
    model = GaussianMixtureModel(x, n_components=3, random_state=seed)
    state = model.start()
    for _ in range(15):
        state.step_forward()
        assert math.fsum(c.pi for c in state.params) == pytest.approx(1.0, abs=1e-12)


def test_degenerate_data_floors_sigma():
    model = GaussianMixtureModel([3.0] * 10, n_components=2, random_state=0)
    resp = torch.full((10, 2), 0.5, dtype=torch.float64)
    comps = model.maximization_step(resp)
    for c in comps:
        assert c.mu == pytest.approx(3.0)
        assert c.sigma == 0.1
        assert c.pi == pytest.approx(0.5)


def test_empty_component_gets_fallback_values():
    model = GaussianMixtureModel([1.0, 2.0, 3.0], n_components=2)
    resp = torch.tensor([[1.0, 0.0], [1.0, 0.0], [1.0, 0.0]], dtype=torch.float64)
    comps = model.maximization_step(resp)
    assert comps[0].mu == pytest.approx(2.0)
    assert comps[1].mu == 0.0
    assert comps[1].sigma == 0.1
    assert math.fsum(c.pi for c in comps) == pytest.approx(1.0)


def test_maximization_step_checks_shape():
    model = GaussianMixtureModel([1.0, 2.0, 3.0], n_components=2)
    with pytest.raises(ValueError):
        model.maximization_step(torch.ones((3, 3), dtype=torch.float64))


def test_single_step_matches_manual_computation():
    x = np.array([-1.0, 0.0, 0.5, 4.0, 5.0])
    comps = (GaussianComponent(0.0, 1.0, 0.5), GaussianComponent(4.0, 2.0, 0.5))
    model = GaussianMixtureModel(x, n_components=2)
    result = model.single_em_step(comps)

    dens = np.stack([
        0.5 * np.exp(-0.5 * ((x - 0.0) / 1.0) ** 2) / (1.0 * np.sqrt(2 * np.pi)),
        0.5 * np.exp(-0.5 * ((x - 4.0) / 2.0) ** 2) / (2.0 * np.sqrt(2 * np.pi)),
    ], axis=1)
    r = dens / dens.sum(axis=1, keepdims=True)
    nk = r.sum(axis=0)
    mu = (r * x[:, None]).sum(axis=0) / nk
    sd = np.sqrt((r * (x[:, None] - mu) ** 2).sum(axis=0) / nk)

    np.testing.assert_allclose(result.responsibilities.numpy(), r, rtol=1e-12)
    np.testing.assert_allclose([c.mu for c in result.components], mu, rtol=1e-12)
    np.testing.assert_allclose([c.sigma for c in result.components], sd, rtol=1e-12)
    np.testing.assert_allclose([c.pi for c in result.components], nk / len(x), rtol=1e-12)


def test_log_likelihood_always_finite():
    model = GaussianMixtureModel([0.0, 1.0, 2.0], n_components=2)
    broken = (GaussianComponent(0.0, -1.0, 0.5), GaussianComponent(float("nan"), 1.0, 0.5))
    ll = model.calculate_log_likelihood(broken)
    assert math.isfinite(ll)
    assert ll == pytest.approx(3 * math.log(1e-100))


# ---------------------------------------------------------------------
# Full fits
# ---------------------------------------------------------------------

def test_separated_clusters_converge():
    x = _two_clusters(42)
    model = GaussianMixtureModel(x, n_components=2, max_iter=500, random_state=0)
    state = model.fit()

    print(f"GMM converged at iteration {state.iteration}, LL={state.diagnostic:.4f}")
    assert state.status is FitStatus.CONVERGED
    assert state.iteration <= model.max_iter

    means = sorted(c.mu for c in state.params)
    assert means[0] == pytest.approx(0.0, abs=0.3)
    assert means[1] == pytest.approx(10.0, abs=0.3)
    for c in state.params:
        assert c.pi == pytest.approx(0.5, abs=0.05)
        assert c.sigma == pytest.approx(0.5, abs=0.15)


@pytest.mark.parametrize("K", [2, 3])
def test_log_likelihood_non_decreasing(K):
    x = _two_clusters(_random_seed())
    model = GaussianMixtureModel(x, n_components=K, random_state=_random_seed())
    state = model.fit()
    curve = [ll for _, ll in state.convergence_curve()]
    for prev, cur in zip(curve, curve[1:]):
        assert cur >= prev - 1e-8 * abs(prev), f"log-likelihood dropped: {prev} -> {cur}"


def test_matches_sklearn_from_same_start():
    x = _two_clusters(7, n_per=150, centers=(-2.0, 3.0), scale=1.0)
    init = (GaussianComponent(-1.0, 1.0, 0.5), GaussianComponent(1.0, 1.0, 0.5))

    model = GaussianMixtureModel(x, n_components=2, tol=1e-12, max_iter=1000)
    state = model.fit(init)

    sk = GaussianMixture(
        n_components=2,
        covariance_type="diag",
        means_init=np.array([[c.mu] for c in init]),
        weights_init=np.array([c.pi for c in init]),
        precisions_init=np.array([[1.0 / c.sigma ** 2] for c in init]),
        reg_covar=0.0,
        tol=1e-12,
        max_iter=1000,
        random_state=0,
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        sk.fit(x.reshape(-1, 1))

    np.testing.assert_allclose([c.mu for c in state.params], sk.means_.ravel(), atol=1e-4)
    np.testing.assert_allclose([c.sigma ** 2 for c in state.params], sk.covariances_.ravel(), atol=1e-4)
    np.testing.assert_allclose([c.pi for c in state.params], sk.weights_, atol=1e-4)


def test_same_random_state_same_initialization():
    x = _two_clusters(3)
    a = GaussianMixtureModel(x, n_components=3, random_state=11).initialize_components()
    b = GaussianMixtureModel(x, n_components=3, random_state=11).initialize_components()
    assert a == b
    assert all(c.pi == pytest.approx(1 / 3) for c in a)
    assert all(c.sigma > 0 for c in a)


def test_history_records_responsibilities():
    x = _two_clusters(5, n_per=20)
    state = GaussianMixtureModel(x, n_components=2, random_state=1).start()
    step = state.step_forward()
    assert step.extras.shape == (40, 2)
    state.step_backward()
    assert state.step_forward() is step


def test_start_rejects_wrong_component_count():
    model = GaussianMixtureModel([0.0, 1.0], n_components=2)
    with pytest.raises(ValueError):
        model.start([GaussianComponent(0.0, 1.0, 1.0)])


@pytest.mark.parametrize("kwargs", [{"n_components": 0}, {"tol": -1.0}, {"max_iter": 0}])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        GaussianMixtureModel([0.0, 1.0], **kwargs)


def test_data_is_copied():
    source = [1.0, 2.0, 3.0]
    model = GaussianMixtureModel(source, n_components=1)
    source.append(100.0)
    assert model.data == (1.0, 2.0, 3.0)


# ---------------------------------------------------------------------
# Queries and edits
# ---------------------------------------------------------------------

def test_gaussian_pdf():
    model = GaussianMixtureModel([0.0], n_components=1)
    assert model.gaussian_pdf(0.0, 0.0, 1.0) == pytest.approx(1.0 / math.sqrt(2.0 * math.pi))
    assert model.gaussian_pdf(0.0, 0.0, 0.0) == 0.0


def test_evaluate_mixture_skips_invalid_components():
    model = GaussianMixtureModel([0.0], n_components=1)
    comps = (
        GaussianComponent(0.0, 1.0, 0.5),
        GaussianComponent(1.0, -1.0, 0.3),
        GaussianComponent(2.0, 1.0, float("nan")),
    )
    res = model.evaluate_mixture(0.0, comps)
    assert len(res.component_probs) == 1
    assert res.posteriors == (1.0,)
    assert model.evaluate_mixture(0.0, ()).total == 0.0


def test_predict():
    model = GaussianMixtureModel([0.0], n_components=2)
    comps = (GaussianComponent(0.0, 1.0, 0.5), GaussianComponent(10.0, 1.0, 0.5))
    assert model.predict(1.0, comps) == 0
    assert model.predict(9.0, comps) == 1
    assert model.predict(1.0, ()) == -1


def test_with_component_clamps_and_renormalizes():
    comps = (GaussianComponent(0.0, 1.0, 0.5), GaussianComponent(5.0, 1.0, 0.5))
    edited = GaussianMixtureModel.with_component(comps, 0, pi=5.0)
    assert edited[0].pi == pytest.approx(0.99 / 1.49)
    assert edited[1].pi == pytest.approx(0.5 / 1.49)
    assert math.fsum(c.pi for c in edited) == pytest.approx(1.0)

    moved = GaussianMixtureModel.with_component(comps, 1, mu=7.0, sigma=2.0)
    assert moved[1] == GaussianComponent(7.0, 2.0, 0.5)
    assert comps[1].mu == 5.0


def test_edit_recomputes_log_likelihood_without_stepping():
    x = _two_clusters(9, n_per=30)
    model = GaussianMixtureModel(x, n_components=2, random_state=2)
    state = model.start()
    state.step_forward()
    edited = GaussianMixtureModel.with_component(state.params, 0, mu=5.0)
    step = state.edit(edited)
    assert step.iteration == 1
    assert step.diagnostic == pytest.approx(model.calculate_log_likelihood(edited))
