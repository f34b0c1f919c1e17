#!/usr/bin/env python3
"""Benchmark stepfit's 1-D GMM and K-Means against scikit-learn.

Both libraries start from the same parameters, so besides the runtime the
table reports how far apart the fitted parameters end up. Results are
printed and written to benchmarks/compare_with_sklearn.csv.
"""

import sys
import os
import time
import warnings
from typing import Callable, Dict, List, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.mixture import GaussianMixture

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from stepfit._gmm_em import GaussianComponent, GaussianMixtureModel
from stepfit._kmeans import KMeansAlgorithm


def timer(func: Callable, *args, n_runs: int = 5, warmup: int = 1, **kwargs) -> Tuple[float, float, object]:
    """Time a function with warmup runs.

    Returns:
        (mean_time, std_time, last_result) with times in milliseconds
    """
    for _ in range(warmup):
        func(*args, **kwargs)

    times = []
    result = None
    for _ in range(n_runs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        times.append((time.perf_counter() - start) * 1000)

    return float(np.mean(times)), float(np.std(times)), result


def generate_test_data(N: int, K: int, seed: int = None) -> np.ndarray:
    """K well separated 1-D blobs, N samples in total."""
    if seed is None:
        seed = np.random.randint(1, 1001)
    rng = np.random.RandomState(seed)
    centers = np.arange(K) * 6.0
    labels = rng.randint(0, K, size=N)
    return centers[labels] + rng.randn(N)


def benchmark_gmm(sizes: List[Tuple[int, int]]) -> List[Dict]:
    print("\n" + "=" * 100)
    print("BENCHMARK: GaussianMixtureModel vs scikit-learn GaussianMixture (1-D, same start)")
    print("=" * 100)

    results = []
    for N, K in sizes:
        x = generate_test_data(N, K)
        init = GaussianMixtureModel(x, n_components=K, random_state=0).initialize_components()

        def fit_ours():
            model = GaussianMixtureModel(x, n_components=K, tol=1e-8, max_iter=500)
            return model.fit(init)

        def fit_sklearn():
            model = GaussianMixture(
                n_components=K,
                covariance_type="diag",
                means_init=np.array([[c.mu] for c in init]),
                weights_init=np.array([c.pi for c in init]),
                precisions_init=np.array([[1.0 / c.sigma ** 2] for c in init]),
                reg_covar=0.0,
                tol=1e-10,
                max_iter=500,
            )
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                model.fit(x.reshape(-1, 1))
            return model

        ours_time, ours_std, state = timer(fit_ours, n_runs=3)
        sk_time, sk_std, sk = timer(fit_sklearn, n_runs=3)

        mu_diff = np.max(np.abs(np.array([c.mu for c in state.params]) - sk.means_.ravel()))
        print(f"N={N}, K={K}: stepfit {ours_time:.2f} ± {ours_std:.2f} ms "
              f"({state.iteration} it), sklearn {sk_time:.2f} ± {sk_std:.2f} ms "
              f"({sk.n_iter_} it), max |mu diff| = {mu_diff:.2e}")

        results.append({
            "Algorithm": "GMM",
            "N": N,
            "K": K,
            "stepfit Time (ms)": ours_time,
            "stepfit Std (ms)": ours_std,
            "stepfit Iterations": state.iteration,
            "scikit-learn Time (ms)": sk_time,
            "scikit-learn Std (ms)": sk_std,
            "scikit-learn Iterations": sk.n_iter_,
            "Max Param Diff": mu_diff,
        })
    return results


def benchmark_kmeans(sizes: List[Tuple[int, int]]) -> List[Dict]:
    print("\n" + "=" * 100)
    print("BENCHMARK: KMeansAlgorithm vs scikit-learn KMeans (lloyd, same start)")
    print("=" * 100)

    results = []
    for N, K in sizes:
        x = generate_test_data(N, K)
        init = KMeansAlgorithm(x, n_clusters=K, init="k-means++", random_state=0).initialize_centroids()

        def fit_ours():
            return KMeansAlgorithm(x, n_clusters=K, tol=1e-12, max_iter=300).fit(init)

        def fit_sklearn():
            model = KMeans(
                n_clusters=K,
                init=np.array(init).reshape(-1, 1),
                n_init=1,
                algorithm="lloyd",
                max_iter=300,
                tol=0.0,
            )
            return model.fit(x.reshape(-1, 1))

        ours_time, ours_std, state = timer(fit_ours, n_runs=3)
        sk_time, sk_std, sk = timer(fit_sklearn, n_runs=3)

        ours_c = np.sort([c.centroid for c in state.params])
        sk_c = np.sort(sk.cluster_centers_.ravel())
        c_diff = float(np.max(np.abs(ours_c - sk_c)))
        print(f"N={N}, K={K}: stepfit {ours_time:.2f} ± {ours_std:.2f} ms "
              f"({state.iteration} it), sklearn {sk_time:.2f} ± {sk_std:.2f} ms "
              f"({sk.n_iter_} it), max |centroid diff| = {c_diff:.2e}")

        results.append({
            "Algorithm": "K-Means",
            "N": N,
            "K": K,
            "stepfit Time (ms)": ours_time,
            "stepfit Std (ms)": ours_std,
            "stepfit Iterations": state.iteration,
            "scikit-learn Time (ms)": sk_time,
            "scikit-learn Std (ms)": sk_std,
            "scikit-learn Iterations": sk.n_iter_,
            "Max Param Diff": c_diff,
        })
    return results


def main():
    sizes = [(200, 2), (1000, 3), (5000, 5)]
    rows = benchmark_gmm(sizes) + benchmark_kmeans(sizes)

    df = pd.DataFrame(rows)
    df["Ratio (stepfit/sklearn)"] = df["stepfit Time (ms)"] / df["scikit-learn Time (ms)"]

    print("\n" + "=" * 100)
    print("SUMMARY")
    print("=" * 100)
    with pd.option_context("display.width", 200, "display.max_columns", None):
        print(df.to_string(index=False, float_format=lambda v: f"{v:.4g}"))

    out = os.path.join(ROOT, "benchmarks", "compare_with_sklearn.csv")
    df.to_csv(out, index=False)
    print(f"\nSaved results to {out}")


if __name__ == "__main__":
    main()
