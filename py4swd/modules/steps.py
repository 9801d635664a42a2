#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""steps.py
================

Step strategies for the regularized least-squares iteration.

Both strategies take the current parameter vector together with the
sensitivities of the last forward evaluation and return a proposed vector:

- :class:`GradientStep` -- steepest descent on the (posterior) objective,
  ``m - epsilon * dL/dm``.
- :class:`QuasiNewtonStep` -- Gauss-Newton step of Tarantola & Valette
  (1982) with diagonal covariances,

  ::

      m* = m0 + (G^T Cd^-1 G + Cm^-1)^-1 G^T Cd^-1 (r + G (m - m0))

  scaled towards the current model by ``epsilon`` (``epsilon = 1`` jumps to
  ``m*``).

Only FREE entries of the mask change. Entries with ``Cm == 0`` are hard
priors: the gradient step leaves them alone and the quasi-Newton step aims at
their reference value.

A failed step returns a copy of the current vector with ``success=False``.
"""

from __future__ import annotations

import warnings
from abc import ABC, abstractmethod
from enum import Enum
from typing import NamedTuple

import numpy as np
import scipy.linalg as la

from .paramvec import ParamFlag


class StepResult(NamedTuple):
    proposed: np.ndarray
    success: bool


class StepKind(Enum):
    GRADIENT = "gradient"
    QUASI_NEWTON = "quasi-newton"


class LeastSquaresStep(ABC):
    """Common interface of the step strategies."""

    kind: StepKind

    @abstractmethod
    def compute_step(
        self,
        epsilon: float,
        Cd: np.ndarray,
        Cm: np.ndarray,
        residuals: np.ndarray,
        G: np.ndarray,
        dLdp: np.ndarray,
        mask: np.ndarray,
        current: np.ndarray,
        reference: np.ndarray,
    ) -> StepResult:
        """Propose a new parameter vector."""

    @staticmethod
    def _failed(current: np.ndarray) -> StepResult:
        return StepResult(np.array(current, dtype=float, copy=True), False)


class GradientStep(LeastSquaresStep):
    """Steepest descent: ``proposed = current - epsilon * dLdp``."""

    kind = StepKind.GRADIENT

    def compute_step(self, epsilon, Cd, Cm, residuals, G, dLdp, mask, current, reference):
        current = np.asarray(current, dtype=float)
        dLdp = np.asarray(dLdp, dtype=float).ravel()
        Cm = np.asarray(Cm, dtype=float).ravel()
        if dLdp.size != current.size or Cm.size != current.size:
            raise ValueError("dLdp, Cm and current must have the same length.")

        move = (np.asarray(mask) == ParamFlag.FREE) & (Cm > 0.0)
        if not np.all(np.isfinite(dLdp[move])):
            return self._failed(current)

        proposed = current.copy()
        proposed[move] = current[move] - float(epsilon) * dLdp[move]
        return StepResult(proposed, True)


class QuasiNewtonStep(LeastSquaresStep):
    """Damped Gauss-Newton step with diagonal data and model covariances.

    Parameters
    ----------
    rcond_max : float
        Largest acceptable condition number of the normal-equation matrix.
    """

    kind = StepKind.QUASI_NEWTON

    def __init__(self, rcond_max: float = 1.0e12) -> None:
        self.rcond_max = float(rcond_max)

    def compute_step(self, epsilon, Cd, Cm, residuals, G, dLdp, mask, current, reference):
        current = np.asarray(current, dtype=float)
        reference = np.asarray(reference, dtype=float)
        Cm = np.asarray(Cm, dtype=float).ravel()
        Cd = np.asarray(Cd, dtype=float).ravel()
        r = np.asarray(residuals, dtype=float).ravel()
        G = np.atleast_2d(np.asarray(G, dtype=float))

        nd, nm = G.shape
        if nm != current.size or Cm.size != nm or reference.size != nm:
            raise ValueError(f"G must have {current.size} columns matching current, reference and Cm.")
        if r.size != nd or Cd.size != nd:
            raise ValueError(f"residuals and Cd must have length {nd}.")

        free = np.asarray(mask) == ParamFlag.FREE
        soft = free & (Cm > 0.0)
        hard = free & (Cm == 0.0)

        target = current.copy()
        target[hard] = reference[hard]

        if np.any(soft):
            if np.any(Cd <= 0.0) or not np.all(np.isfinite(Cd)):
                return self._failed(current)

            Gf = G[:, free]
            Gs = G[:, soft]
            Wd = 1.0 / Cd

            A = Gs.T @ (Wd[:, None] * Gs) + np.diag(1.0 / Cm[soft])
            b = Gs.T @ (Wd * (r + Gf @ (current[free] - reference[free])))
            if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
                return self._failed(current)

            cond = np.linalg.cond(A)
            if not np.isfinite(cond) or cond > self.rcond_max:
                warnings.warn(
                    f"quasi-Newton system ill-conditioned (cond = {cond:.3e}); step rejected.",
                    RuntimeWarning,
                )
                return self._failed(current)

            try:
                dm = la.solve(A, b, assume_a="sym")
            except la.LinAlgError:
                return self._failed(current)
            if not np.all(np.isfinite(dm)):
                return self._failed(current)

            target[soft] = reference[soft] + dm

        proposed = current.copy()
        proposed[free] = current[free] + float(epsilon) * (target[free] - current[free])
        return StepResult(proposed, True)


def make_step(kind: StepKind | str) -> LeastSquaresStep:
    """Return a new strategy instance for *kind*."""
    kind = StepKind(kind)
    if kind is StepKind.GRADIENT:
        return GradientStep()
    return QuasiNewtonStep()
