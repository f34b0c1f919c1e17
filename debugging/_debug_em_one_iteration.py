import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import torch

from stepfit._gmm_em import GaussianComponent, GaussianMixtureModel


def pretty(name, arr):
    if isinstance(arr, torch.Tensor):
        arr = arr.numpy()
    arr = np.asarray(arr)
    print(f"\n{name}:")
    print(arr)
    print(f"shape={arr.shape}, dtype={arr.dtype}")


def main():
    np.set_printoptions(precision=6, suppress=True)

    # -----------------------------
    # 1) Hard-coded tiny dataset (1D)
    # -----------------------------
    x = np.array([-2.0, -1.0, -1.5, 2.0, 1.0, 2.5], dtype=np.float64)

    # -----------------------------
    # 2) Hard-coded starting params
    # -----------------------------
    components = (
        GaussianComponent(mu=-1.5, sigma=0.7, pi=0.5),
        GaussianComponent(mu=1.5, sigma=0.7, pi=0.5),
    )
    model = GaussianMixtureModel(x, n_components=len(components))

    pretty("x", x)
    pretty("mu", [c.mu for c in components])
    pretty("sigma", [c.sigma for c in components])
    pretty("pi", [c.pi for c in components])
    print(f"\nlog-likelihood before: {model.calculate_log_likelihood(components):.6f}")

    # -----------------------------
    # 3) E-step: responsibilities
    # -----------------------------
    resp = model.expectation_step(components)
    pretty("resp = responsibilities", resp)

    print("\nSanity check: each row of resp should sum to 1:")
    print(resp.sum(dim=1).numpy())

    # -----------------------------
    # 4) M-step (from responsibilities)
    # -----------------------------
    pretty("nk = sum_n r_nk", resp.sum(dim=0))
    new_components = model.maximization_step(resp)
    pretty("new mu", [c.mu for c in new_components])
    pretty("new sigma", [c.sigma for c in new_components])
    pretty("new pi", [c.pi for c in new_components])
    print(f"\nlog-likelihood after: {model.calculate_log_likelihood(new_components):.6f}")

    # -----------------------------
    # 5) Same iteration through the stepping API
    # -----------------------------
    state = model.start(components)
    step = state.step_forward()
    print(f"\nFitState iteration {step.iteration}, status={state.status.value}, "
          f"log-likelihood={step.diagnostic:.6f}")
    assert step.params == new_components


if __name__ == "__main__":
    main()
