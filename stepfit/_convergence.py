# stepfit/_convergence.py
"""Convergence predicates and an early-stopping controller."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from stepfit._matrix import Point2D

RELATIVE_ZERO_EPS = 1e-10


def has_converged_absolute(current: float, previous: float, tolerance: float) -> bool:
    return abs(current - previous) < tolerance


def has_converged_relative(current: float, previous: float, tolerance: float) -> bool:
    if abs(previous) < RELATIVE_ZERO_EPS:
        return has_converged_absolute(current, previous, tolerance)
    return abs((current - previous) / previous) < tolerance


def has_converged_array(current: Sequence[float], previous: Sequence[float], tolerance: float) -> bool:
    if len(current) != len(previous):
        return False
    return all(has_converged_absolute(c, p, tolerance) for c, p in zip(current, previous))


def has_converged_2d(current: Point2D, previous: Point2D, tolerance: float) -> bool:
    return (has_converged_absolute(current.x, previous.x, tolerance)
            and has_converged_absolute(current.y, previous.y, tolerance))


def has_converged_array_2d(current: Sequence[Point2D], previous: Sequence[Point2D], tolerance: float) -> bool:
    if len(current) != len(previous):
        return False
    return all(has_converged_2d(c, p, tolerance) for c, p in zip(current, previous))


def calculate_max_change(current: Sequence[float], previous: Sequence[float]) -> float:
    if len(current) != len(previous):
        return math.inf
    return max((abs(c - p) for c, p in zip(current, previous)), default=0.0)


def calculate_max_change_2d(current: Sequence[Point2D], previous: Sequence[Point2D]) -> float:
    """Largest per-axis move of any point."""
    if len(current) != len(previous):
        return math.inf
    return max(
        (max(abs(c.x - p.x), abs(c.y - p.y)) for c, p in zip(current, previous)),
        default=0.0,
    )


# ---------------------------
# Early stopping
# ---------------------------

@dataclass(frozen=True)
class EarlyStoppingConfig:
    max_iterations: int
    tolerance: float
    min_improvement: Optional[float] = None
    patience_steps: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")

    @property
    def uses_patience(self) -> bool:
        return (self.patience_steps or 0) > 0 and (self.min_improvement or 0) > 0


class EarlyStoppingChecker:
    """Decides when an iterative fit of a maximised quantity should stop.

    Stops on the iteration cap, on an absolute change below tolerance, or,
    when patience is configured, after ``patience_steps`` consecutive calls
    without beating the best value by ``min_improvement``.
    """

    def __init__(self, config: EarlyStoppingConfig) -> None:
        self.config = config
        self.reset()

    def reset(self) -> None:
        self._best = -math.inf
        self._patience = 0
        self._iterations = 0

    @property
    def iteration_count(self) -> int:
        return self._iterations

    def should_stop(self, current: float, previous: Optional[float] = None) -> bool:
        self._iterations += 1
        cfg = self.config

        if self._iterations >= cfg.max_iterations:
            return True

        if previous is not None and has_converged_absolute(current, previous, cfg.tolerance):
            return True

        if cfg.uses_patience:
            if current > self._best + cfg.min_improvement:
                self._best = current
                self._patience = 0
            else:
                self._patience += 1
                if self._patience >= cfg.patience_steps:
                    return True

        return False
