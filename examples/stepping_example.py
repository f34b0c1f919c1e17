"""
Example: stepping through GMM, K-Means and 2-D Gaussian fits

Each fit is a FitState: step forward one iteration at a time, step back
through the recorded history, edit the current parameters, then run the
rest of the way to convergence. Pass -v to see the library's debug log.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import logging

import numpy as np

from stepfit._gaussian2d import Gaussian2DAlgorithm, confidence_level_squared
from stepfit._gmm_em import GaussianMixtureModel
from stepfit._kmeans import KMeansAlgorithm
from stepfit._matrix import Matrix2x2
from stepfit._session import AlgorithmMode, start_session

logging.basicConfig(
    level=logging.DEBUG if "-v" in sys.argv else logging.WARNING,
    format="%(name)s %(levelname)s: %(message)s",
)

rng = np.random.RandomState(123)
data_1d = np.concatenate([rng.randn(60) * 0.8 - 3.0, rng.randn(40) * 1.2 + 4.0])
data_2d = rng.randn(80, 2) @ np.array([[1.0, 0.0], [0.6, 0.5]]) + np.array([2.0, -1.0])

print("=" * 80)
print("stepfit - interactive stepping")
print("=" * 80)
print()

# Example 1: GMM, one EM iteration at a time
print(f"Example 1: {AlgorithmMode.GMM.label}")
print("-" * 80)
gmm = GaussianMixtureModel(data_1d, n_components=2, random_state=0)
state = gmm.start()
for _ in range(3):
    step = state.step_forward()
    comps = ", ".join(f"(mu={c.mu:.3f}, sigma={c.sigma:.3f}, pi={c.pi:.3f})" for c in step.params)
    print(f"iteration {step.iteration}: LL={step.diagnostic:.4f}  {comps}")

state.step_backward()
print(f"stepped back to iteration {state.iteration}, history still holds {len(state.history)} steps")

edited = GaussianMixtureModel.with_component(state.params, 0, mu=-2.5, pi=0.7)
state.edit(edited)
print(f"edited component 0 at iteration {state.iteration}: LL={state.diagnostic:.4f}")

state.go_to(len(state.history) - 1)
state.run_to_convergence()
print(f"Status: {state.status.value} after {state.iteration} iterations, LL={state.diagnostic:.4f}")
print(f"predict(0.0) -> component {gmm.predict(0.0, state.params)}")
print()

# Example 2: K-Means with k-means++ seeding
print(f"Example 2: {AlgorithmMode.KMEANS.label}")
print("-" * 80)
km = KMeansAlgorithm(data_1d, n_clusters=2, init="k-means++", random_state=0)
state = km.fit()
for cluster in state.params:
    print(f"centroid={cluster.centroid:.3f} size={cluster.size}")
print(f"Status: {state.status.value} after {state.iteration} iterations, inertia={state.diagnostic:.4f}")
print("Elbow:", ", ".join(f"k={p.k}: {p.inertia:.1f}" for p in km.find_optimal_k(max_k=5)))
print()

# Example 3: closed form vs gradient ascent on the same points
print(f"Example 3: {AlgorithmMode.GAUSSIAN_2D.label} vs {AlgorithmMode.GRADIENT_DESCENT.label}")
print("-" * 80)
closed = start_session(AlgorithmMode.GAUSSIAN_2D, data_2d)
mle = closed.step_forward().params
print(f"MLE: mu=({mle.mu.x:.3f}, {mle.mu.y:.3f}) "
      f"sigma=[[{mle.sigma.xx:.3f}, {mle.sigma.xy:.3f}], [{mle.sigma.xy:.3f}, {mle.sigma.yy:.3f}]] "
      f"LL={mle.log_likelihood:.4f}")

algo = Gaussian2DAlgorithm(data_2d, max_iter=500)
gd = algo.fit_with_gradient_descent(learning_rate=0.002)
g = gd.params
print(f"Gradient ascent ({gd.status.value}, {gd.iteration} it): mu=({g.mu.x:.3f}, {g.mu.y:.3f}) "
      f"LL={g.log_likelihood:.4f}")

wide = algo.with_covariance(g, Matrix2x2(4.0, 0.0, 4.0))
print(f"with a wider covariance LL drops to {wide.log_likelihood:.4f}")

ring = algo.generate_contour_points(mle, level=confidence_level_squared(0.95))
print(f"95% contour: {len(ring)} points, first=({ring[0].x:.3f}, {ring[0].y:.3f})")
print()
