#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""invloop.py
================

Outer control loop of the regularized least-squares inversion.

Per iteration the loop

1. picks a step strategy (by default alternating: gradient descent on even
   iteration counts, quasi-Newton on odd ones),
2. snapshots the structured model into a parameter vector,
3. proposes a step, halving that strategy's step size until the proposal
   satisfies the prior bounds,
4. commits the proposal and re-runs the forward evaluator,
5. on a strictly worse objective halves the step size, restores the snapshot,
   re-evaluates it and retries the same iteration (backtracking); once the
   step size is below its floor the run stops in ``STEP_TOO_SMALL``,
6. otherwise accepts the step (equal objectives are accepted, so plateaus do
   not stall the loop) and counts the iteration.

Each strategy keeps its own step size for the whole run. A strategy that
reports failure (e.g. a singular quasi-Newton system) is handled like an
inadmissible step: nothing is committed or evaluated, its step size is
halved, and the run stops in ``STEP_TOO_SMALL`` once that size is below the
floor.

The evaluator is any callable ``evaluator(model) -> Evaluation`` (see
:class:`lovefwd.Evaluation`); it must be deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .lovefwd import Evaluation
from .model1d import LayeredModel
from .paramvec import ParamType, flatten, param_types, unflatten
from .prior import PRIOR_MAX, PRIOR_MIN, per_type, initialize_cm, validate
from .steps import GradientStep, LeastSquaresStep, QuasiNewtonStep, StepKind

SCHEDULES = ("alternate", "gradient", "quasi-newton")


class LoopState(Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max-iter-reached"
    STEP_TOO_SMALL = "step-too-small"


class InversionConfig:
    """Run parameters of :class:`InversionLoop`.

    Parameters
    ----------
    epsilon : float
        Initial step size of both strategies.
    epsilon_min : float
        Step-size floor. A worse objective at a step size below it ends the run.
    max_iter : int
        Maximum number of accepted iterations.
    damping : sequence of 4 floats
        Prior standard deviations for (rho, vs, xi, vpvs); 0 pins a type to
        its reference value.
    prior_min, prior_max : sequence of 4 floats
        Inclusive admissible range per parameter type.
    schedule : {"alternate", "gradient", "quasi-newton"}
        Strategy selection: alternate by iteration parity or use one strategy.
    tol : float or None
        If set, an accepted step whose relative objective decrease is not
        larger than ``tol`` ends the run in ``CONVERGED``.
    exclude : iterable of ParamType
        Parameter types excluded from the inversion.
    """

    def __init__(
        self,
        *,
        epsilon: float = 1.0,
        epsilon_min: float = 1.0e-6,
        max_iter: int = 5,
        damping: Sequence[float] = (0.0, 0.0, 0.0, 0.0),
        prior_min: Sequence[float] = PRIOR_MIN,
        prior_max: Sequence[float] = PRIOR_MAX,
        schedule: str = "alternate",
        tol: Optional[float] = None,
        exclude: Iterable[ParamType] = (),
    ) -> None:
        self.epsilon = float(epsilon)
        self.epsilon_min = float(epsilon_min)
        self.max_iter = int(max_iter)
        self.damping = per_type(damping, "damping")
        self.prior_min = per_type(prior_min, "prior_min")
        self.prior_max = per_type(prior_max, "prior_max")
        self.schedule = str(schedule).lower().strip()
        self.tol = None if tol is None else float(tol)
        self.exclude = tuple(ParamType(t) for t in exclude)

        if self.epsilon <= 0.0:
            raise ValueError("epsilon must be positive.")
        if self.epsilon_min <= 0.0:
            raise ValueError("epsilon_min must be positive.")
        if self.max_iter < 1:
            raise ValueError("need at least one iteration.")
        if np.any(self.damping < 0.0):
            raise ValueError("damping standard deviations must be 0 or greater.")
        if np.any(self.prior_min > self.prior_max):
            raise ValueError("prior_min must not exceed prior_max.")
        if self.schedule not in SCHEDULES:
            raise ValueError(f"schedule must be one of {SCHEDULES}, got {schedule!r}.")
        if self.tol is not None and self.tol < 0.0:
            raise ValueError("tol must be 0 or greater.")


@dataclass
class InversionResult:
    """Outcome of :meth:`InversionLoop.run`.

    ``history`` rows are ``(iteration, objective, epsilon, strategy,
    accepted)`` with strategy 0 = gradient, 1 = quasi-Newton.
    """

    state: LoopState
    iterations: int
    nevals: int
    nbacktracks: int
    objective: float
    evaluation: Evaluation
    epsilon: Dict[str, float]
    history: np.ndarray = field(default_factory=lambda: np.zeros((0, 5)))


class InversionLoop:
    """Alternating gradient / quasi-Newton inversion with backtracking.

    Parameters
    ----------
    evaluator : callable
        ``evaluator(model) -> Evaluation``.
    model : LayeredModel
        Working model; updated in place and left at the final accepted state.
    reference : LayeredModel
        Prior model with the same layout; not modified.
    config : InversionConfig, optional
    out : bool
        Print progress.
    """

    def __init__(
        self,
        evaluator: Callable[[LayeredModel], Evaluation],
        model: LayeredModel,
        reference: LayeredModel,
        config: Optional[InversionConfig] = None,
        *,
        out: bool = True,
    ) -> None:
        self.evaluator = evaluator
        self.model = model
        self.reference = reference
        self.config = config if config is not None else InversionConfig()
        self.out = bool(out)

        self.steps: Dict[StepKind, LeastSquaresStep] = {
            StepKind.GRADIENT: GradientStep(),
            StepKind.QUASI_NEWTON: QuasiNewtonStep(),
        }
        self.epsilon: Dict[StepKind, float] = {kind: self.config.epsilon for kind in StepKind}

        self.state = LoopState.INIT
        self.iterations = 0
        self.nevals = 0
        self.nbacktracks = 0
        self.history: List[tuple] = []

    def select(self, iteration: int) -> StepKind:
        """Strategy used at accepted-iteration count *iteration*."""
        if self.config.schedule == "gradient":
            return StepKind.GRADIENT
        if self.config.schedule == "quasi-newton":
            return StepKind.QUASI_NEWTON
        return StepKind.GRADIENT if iteration % 2 == 0 else StepKind.QUASI_NEWTON

    def _evaluate(self) -> Evaluation:
        self.nevals += 1
        return self.evaluator(self.model)

    def _log(self, msg: str) -> None:
        if self.out:
            print(msg)

    def _record(self, kind: StepKind, objective: float, accepted: bool) -> None:
        self.history.append(
            (
                float(self.iterations),
                float(objective),
                float(self.epsilon[kind]),
                0.0 if kind is StepKind.GRADIENT else 1.0,
                1.0 if accepted else 0.0,
            )
        )

    def run(self) -> InversionResult:
        cfg = self.config

        ev = self._evaluate()
        like = ev.objective
        self._log(f"init: {like:16.9e}")

        nparam = ev.G.shape[1]
        model_0, mask = flatten(self.reference, exclude=cfg.exclude)
        if model_0.size != nparam:
            raise ValueError(f"Jacobian has {nparam} columns but the model has {model_0.size} parameters.")
        ptype = param_types(self.reference)
        Cm = initialize_cm(self.reference, cfg.damping)

        start, _ = flatten(self.model, mask)
        if not validate(start, mask, cfg.prior_min, cfg.prior_max, ptype):
            raise ValueError("starting model violates the prior bounds.")

        base = ev
        self.state = LoopState.ITERATING

        while self.iterations < cfg.max_iter:
            kind = self.select(self.iterations)
            step = self.steps[kind]

            model_v, _ = flatten(self.model, mask)

            while True:
                result = step.compute_step(
                    self.epsilon[kind], ev.Cd, Cm, ev.residuals, ev.G, ev.dLdp, mask, model_v, model_0
                )
                if not result.success:
                    break
                if validate(result.proposed, mask, cfg.prior_min, cfg.prior_max, ptype):
                    break
                self.epsilon[kind] *= 0.5

            if not result.success:
                self._record(kind, like, False)
                if self.epsilon[kind] < cfg.epsilon_min:
                    self._log(f"{self.iterations:4d}: Exiting")
                    self.state = LoopState.STEP_TOO_SMALL
                    break
                self._log(f"{self.iterations:4d}: Step failed ({kind.value})")
                self.epsilon[kind] *= 0.5
                continue

            unflatten(result.proposed, self.model)

            last_like = like
            ev = self._evaluate()
            like = ev.objective

            if not np.isfinite(like) or like > last_like:
                self._record(kind, like, False)

                if self.epsilon[kind] < cfg.epsilon_min:
                    self._log(f"{self.iterations:4d}: Exiting")
                    unflatten(model_v, self.model)
                    ev = base
                    like = base.objective
                    self.state = LoopState.STEP_TOO_SMALL
                    break

                # back track and recompute at the restored model
                self._log(f"{self.iterations:4d}: Backtracking")
                self.epsilon[kind] *= 0.5
                unflatten(model_v, self.model)
                self.nbacktracks += 1
                ev = self._evaluate()
                like = ev.objective
                base = ev
            else:
                self._record(kind, like, True)
                self._log(f"{self.iterations:4d}: {like:16.9e} {self.epsilon[kind]:16.9e}")
                base = ev
                self.iterations += 1

                if cfg.tol is not None and (last_like - like) <= cfg.tol * abs(last_like):
                    self.state = LoopState.CONVERGED
                    break
        else:
            self.state = LoopState.MAX_ITER_REACHED

        return InversionResult(
            state=self.state,
            iterations=self.iterations,
            nevals=self.nevals,
            nbacktracks=self.nbacktracks,
            objective=float(base.objective),
            evaluation=base,
            epsilon={kind.value: eps for kind, eps in self.epsilon.items()},
            history=np.asarray(self.history, dtype=float).reshape(-1, 5),
        )


def invert(
    evaluator: Callable[[LayeredModel], Evaluation],
    model: LayeredModel,
    reference: LayeredModel,
    config: Optional[InversionConfig] = None,
    *,
    out: bool = True,
) -> InversionResult:
    """Run an :class:`InversionLoop` and return its result."""
    return InversionLoop(evaluator, model, reference, config, out=out).run()
