# stepfit/_history.py
"""Append-only fit history with a movable cursor.

A FitState records one immutable HistoryStep per iteration. Moving backward
only moves the cursor; moving forward replays recorded steps and computes a
new one only when the cursor already sits on the last step. The engines
supply three callables:

- advance(params)  -> (new_params, diagnostic, extras)   one iteration
- evaluate(params) -> diagnostic                         no iteration
- is_converged(previous_step, new_step) -> bool
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")


class FitStatus(enum.Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


@dataclass(frozen=True)
class HistoryStep(Generic[P]):
    iteration: int
    params: P
    diagnostic: float
    extras: Any = None


AdvanceFn = Callable[[Any], Tuple[Any, float, Any]]
EvaluateFn = Callable[[Any], float]
ConvergedFn = Callable[[HistoryStep, HistoryStep], bool]


class FitState(Generic[P]):
    """Current parameters, diagnostic, status and the recorded trajectory."""

    def __init__(
        self,
        initial_params: P,
        advance: AdvanceFn,
        evaluate: EvaluateFn,
        is_converged: ConvergedFn,
        max_iter: int,
        initial_diagnostic: Optional[float] = None,
        initial_extras: Any = None,
    ) -> None:
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")

        self._advance = advance
        self._evaluate = evaluate
        self._is_converged = is_converged
        self.max_iter = max_iter

        diagnostic = evaluate(initial_params) if initial_diagnostic is None else initial_diagnostic
        self._history: List[HistoryStep[P]] = [
            self._snapshot(0, initial_params, diagnostic, initial_extras)
        ]
        self._cursor = 0
        self._status = FitStatus.INITIALIZED

    @staticmethod
    def _snapshot(iteration: int, params: P, diagnostic: float, extras: Any = None) -> HistoryStep[P]:
        return HistoryStep(
            iteration=iteration,
            params=copy.deepcopy(params),
            diagnostic=float(diagnostic),
            extras=copy.deepcopy(extras),
        )

    # -----------------------
    # Read access
    # -----------------------

    @property
    def history(self) -> Tuple[HistoryStep[P], ...]:
        return tuple(self._history)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current_step(self) -> HistoryStep[P]:
        return self._history[self._cursor]

    @property
    def params(self) -> P:
        return self.current_step.params

    @property
    def iteration(self) -> int:
        return self.current_step.iteration

    @property
    def diagnostic(self) -> float:
        return self.current_step.diagnostic

    @property
    def status(self) -> FitStatus:
        return self._status

    @property
    def converged(self) -> bool:
        return self._status is FitStatus.CONVERGED

    @property
    def at_end(self) -> bool:
        return self._cursor == len(self._history) - 1

    @property
    def finished(self) -> bool:
        return self._status in (FitStatus.CONVERGED, FitStatus.MAX_ITERATIONS_REACHED)

    def convergence_curve(self) -> List[Tuple[int, float]]:
        """(iteration, diagnostic) pairs for every recorded step."""
        return [(s.iteration, s.diagnostic) for s in self._history]

    # -----------------------
    # Navigation
    # -----------------------

    def step_forward(self) -> HistoryStep[P]:
        if not self.at_end:
            self._cursor += 1
            return self.current_step
        if self.finished:
            return self.current_step

        last = self._history[-1]
        if last.iteration >= self.max_iter:
            self._status = FitStatus.MAX_ITERATIONS_REACHED
            return last

        new_params, diagnostic, extras = self._advance(last.params)
        step = self._snapshot(last.iteration + 1, new_params, diagnostic, extras)
        self._history.append(step)
        self._cursor += 1

        if self._is_converged(last, step):
            self._status = FitStatus.CONVERGED
            logger.debug("converged at iteration %d (diagnostic=%.6f)", step.iteration, step.diagnostic)
        elif step.iteration >= self.max_iter:
            self._status = FitStatus.MAX_ITERATIONS_REACHED
            logger.debug("max_iter=%d reached without convergence", self.max_iter)
        else:
            self._status = FitStatus.RUNNING
        return step

    def step_backward(self) -> HistoryStep[P]:
        if self._cursor > 0:
            self._cursor -= 1
        return self.current_step

    def go_to(self, iteration: int) -> HistoryStep[P]:
        """Jump to an already recorded iteration."""
        idx = iteration - self._history[0].iteration
        if idx < 0 or idx >= len(self._history):
            raise IndexError(f"iteration {iteration} has not been recorded")
        self._cursor = idx
        return self.current_step

    def iter_run(self) -> Iterator[HistoryStep[P]]:
        """Yield each step until convergence or max_iter; stopping early is cancellation."""
        while not (self.at_end and self.finished):
            before = (len(self._history), self._cursor)
            step = self.step_forward()
            if (len(self._history), self._cursor) == before:
                return
            yield step

    def run_to_convergence(self) -> HistoryStep[P]:
        for _ in self.iter_run():
            pass
        return self.current_step

    # -----------------------
    # Parameter edits
    # -----------------------

    def edit(self, params: P) -> HistoryStep[P]:
        """Replace the current step's parameters and recompute its diagnostic.

        The iteration counter does not move and no other step is touched.
        Editing the last step re-opens a finished fit; at the iteration cap
        it is reported as capped, never as converged.
        """
        cur = self.current_step
        step = self._snapshot(cur.iteration, params, self._evaluate(params))
        self._history[self._cursor] = step

        if self.at_end and self.finished:
            if step.iteration >= self.max_iter:
                self._status = FitStatus.MAX_ITERATIONS_REACHED
            else:
                self._status = FitStatus.RUNNING if step.iteration > 0 else FitStatus.INITIALIZED
        return step
