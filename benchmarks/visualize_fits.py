#!/usr/bin/env python3
"""Visualize stepped fits and the sklearn comparison.

Creates figures from a fresh run of each engine and, when present, from
compare_with_sklearn.csv written by compare_with_sklearn.py.
"""

import sys
import os
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from stepfit._gaussian2d import Gaussian2D, Gaussian2DAlgorithm, confidence_level_squared
from stepfit._gmm_em import GaussianMixtureModel
from stepfit._kmeans import KMeansAlgorithm
from stepfit._matrix import IDENTITY_2X2, Point2D

# Set style
sns.set_style("whitegrid")
plt.rcParams['figure.figsize'] = (12, 8)
plt.rcParams['font.size'] = 11


def make_data(seed: int = 123):
    rng = np.random.RandomState(seed)
    x = np.concatenate([rng.randn(150) * 0.8 - 3.0, rng.randn(100) * 1.2 + 4.0])
    pts = rng.randn(150, 2) @ np.array([[1.0, 0.0], [0.6, 0.5]]) + np.array([2.0, -1.0])
    return x, pts


def plot_convergence(x: np.ndarray, pts: np.ndarray, output_dir: Path):
    """Diagnostic against iteration for every iterative engine."""
    gmm = GaussianMixtureModel(x, n_components=2, random_state=0).fit()
    km = KMeansAlgorithm(x, n_clusters=2, init="random", random_state=0).fit()
    algo = Gaussian2DAlgorithm(pts, max_iter=300)
    gd = algo.fit_with_gradient_descent(Gaussian2D(Point2D(0.0, 0.0), IDENTITY_2X2), learning_rate=0.001)

    fig, axes = plt.subplots(1, 3, figsize=(16, 5))
    fig.suptitle("Convergence of stepped fits", fontsize=16, fontweight='bold')

    for ax, state, title, ylabel, color in [
        (axes[0], gmm, "GMM (EM)", "Log-likelihood", '#3498db'),
        (axes[1], km, "K-Means (Lloyd)", "Inertia", '#e67e22'),
        (axes[2], gd, "2-D Gaussian (gradient ascent)", "Log-likelihood", '#9b59b6'),
    ]:
        it, diag = zip(*state.convergence_curve())
        ax.plot(it, diag, marker='o', markersize=3, color=color, linewidth=2)
        ax.set_title(f"{title}: {state.status.value}", fontweight='bold')
        ax.set_xlabel('Iteration', fontweight='bold')
        ax.set_ylabel(ylabel, fontweight='bold')
        ax.grid(alpha=0.3)

    plt.tight_layout()
    output_path = output_dir / "convergence_curves.png"
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"Saved: {output_path}")
    plt.close()


def plot_gmm_density(x: np.ndarray, output_dir: Path):
    model = GaussianMixtureModel(x, n_components=2, random_state=0)
    state = model.fit()
    grid = np.linspace(x.min() - 1.0, x.max() + 1.0, 400)
    total = [model.evaluate_mixture(v, state.params).total for v in grid]

    fig, ax = plt.subplots(figsize=(12, 6))
    sns.histplot(x, bins=40, stat='density', color='#bdc3c7', ax=ax, label='Data')
    ax.plot(grid, total, color='#2c3e50', linewidth=2.5, label='Mixture')
    for k, c in enumerate(state.params):
        comp = [c.pi * model.gaussian_pdf(v, c.mu, c.sigma) for v in grid]
        ax.plot(grid, comp, linestyle='--', linewidth=1.5, label=f"Component {k} (pi={c.pi:.2f})")
    ax.set_title(f"GMM after {state.iteration} EM iterations", fontweight='bold')
    ax.set_xlabel('x', fontweight='bold')
    ax.set_ylabel('Density', fontweight='bold')
    ax.legend()

    plt.tight_layout()
    output_path = output_dir / "gmm_density.png"
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"Saved: {output_path}")
    plt.close()


def plot_gaussian_contours(pts: np.ndarray, output_dir: Path):
    algo = Gaussian2DAlgorithm(pts)
    mle = algo.fit_gaussian()

    fig, ax = plt.subplots(figsize=(9, 8))
    ax.scatter(pts[:, 0], pts[:, 1], s=12, color='#7f8c8d', alpha=0.7, label='Data')
    for p, color in [(0.5, '#2ecc71'), (0.9, '#f39c12'), (0.99, '#e74c3c')]:
        ring = algo.generate_contour_points(mle, level=confidence_level_squared(p))
        xs = [q.x for q in ring] + [ring[0].x]
        ys = [q.y for q in ring] + [ring[0].y]
        ax.plot(xs, ys, color=color, linewidth=2, label=f"{int(p * 100)}% region")
    ax.scatter([mle.mu.x], [mle.mu.y], marker='x', s=120, color='black', label='Mean')
    ax.set_aspect('equal')
    ax.set_title(f"Closed-form 2-D Gaussian (LL={mle.log_likelihood:.2f})", fontweight='bold')
    ax.legend()

    plt.tight_layout()
    output_path = output_dir / "gaussian2d_contours.png"
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"Saved: {output_path}")
    plt.close()


def plot_timings(csv_path: Path, output_dir: Path):
    if not csv_path.exists():
        print(f"Skipping timings: {csv_path} not found (run compare_with_sklearn.py first)")
        return
    df = pd.read_csv(csv_path)
    df['config'] = df.apply(lambda row: f"{row['Algorithm']}\nN={row['N']}\nK={row['K']}", axis=1)

    fig, ax = plt.subplots(figsize=(14, 6))
    x_pos = np.arange(len(df))
    width = 0.35
    ax.bar(x_pos - width / 2, df['stepfit Time (ms)'], width, yerr=df['stepfit Std (ms)'],
           label='stepfit', color='#3498db', alpha=0.7, edgecolor='black')
    ax.bar(x_pos + width / 2, df['scikit-learn Time (ms)'], width, yerr=df['scikit-learn Std (ms)'],
           label='scikit-learn', color='#e74c3c', alpha=0.7, edgecolor='black')
    ax.set_xticks(x_pos)
    ax.set_xticklabels(df['config'], fontsize=9)
    ax.set_ylabel('Fit time (ms)', fontweight='bold')
    ax.set_title('stepfit vs scikit-learn from identical starting parameters', fontweight='bold')
    ax.legend()
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()
    output_path = output_dir / "sklearn_timings.png"
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"Saved: {output_path}")
    plt.close()


def main():
    output_dir = Path(ROOT) / "benchmarks" / "figures"
    output_dir.mkdir(parents=True, exist_ok=True)

    x, pts = make_data()
    plot_convergence(x, pts, output_dir)
    plot_gmm_density(x, output_dir)
    plot_gaussian_contours(pts, output_dir)
    plot_timings(Path(ROOT) / "benchmarks" / "compare_with_sklearn.csv", output_dir)


if __name__ == "__main__":
    main()
