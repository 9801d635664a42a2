#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""lovefwd.py
================

Forward evaluator for fundamental-mode Love-wave phase velocities in layered,
radially anisotropic media.

Physics
-------
For SH motion ``v(z) exp(i(kx - wt))`` in a vertically transversely isotropic
medium with ``L = rho vsv^2`` and ``N = rho vsh^2 = xi L`` the displacement
``v`` and traction ``tau = L dv/dz`` obey

::

    d/dz [v, tau] = [[0, 1/L], [N k^2 - rho w^2, 0]] [v, tau]

Every finite layer is split into ``nsub`` homogeneous sub-layers (properties
taken from the layer polynomial at the sub-layer mid-points) and the
propagator is applied from the free surface (``tau = 0``) down to the
half-space, where the decaying solution requires ``tau + L nu v = 0``. The
fundamental mode is the smallest phase velocity between the slowest
sub-layer ``vsh`` and the half-space ``vsh`` at which this secular function
changes sign. Roots are bracketed on a velocity grid and refined by vectorized
bisection over all frequencies at once.

Evaluator
---------
:class:`LoveEvaluator` turns a :class:`model1d.LayeredModel` into an
:class:`Evaluation`: objective, residuals, finite-difference Jacobian,
gradient and data covariance, the quantities consumed by the inversion loop.
It is deterministic: identical models give identical evaluations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from .dispersion import DispersionData
from .model1d import LayeredModel
from .paramvec import ParamFlag, ParamType, flatten, param_types, unflatten
from .prior import initialize_cm

#: parameter types Love waves do not see
LOVE_INSENSITIVE = (ParamType.VPVS,)


class ForwardError(RuntimeError):
    """Raised when the model supports no fundamental Love mode."""


@dataclass
class Evaluation:
    """Result of one forward evaluation (lower objective is better)."""

    objective: float
    residuals: np.ndarray
    G: np.ndarray
    dLdp: np.ndarray
    Cd: np.ndarray
    predictions: Optional[np.ndarray] = None
    frequencies: Optional[np.ndarray] = None


class ForwardConfig:
    """Discretization and misfit options of :class:`LoveEvaluator`.

    Parameters
    ----------
    nsub : int
        Homogeneous sub-layers per finite layer.
    posterior : bool
        Add the prior (damping) term to objective and gradient.
    threshold : float
        Residual magnitudes (m/s) below this are not penalized; larger ones
        are shrunk by it.
    frequency_thin : float
        Minimum spacing (Hz) of the fitted frequencies.
    fd_step : float
        Relative finite-difference step for the Jacobian.
    nscan : int
        Velocity grid size used to bracket the fundamental mode.
    """

    def __init__(
        self,
        *,
        nsub: int = 5,
        posterior: bool = False,
        threshold: float = 0.0,
        frequency_thin: float = 0.001,
        fd_step: float = 1.0e-5,
        nscan: int = 200,
    ) -> None:
        self.nsub = int(nsub)
        self.posterior = bool(posterior)
        self.threshold = float(threshold)
        self.frequency_thin = float(frequency_thin)
        self.fd_step = float(fd_step)
        self.nscan = int(nscan)
        if self.nsub < 1:
            raise ValueError("nsub must be 1 or greater.")
        if self.threshold < 0.0:
            raise ValueError("threshold must be 0 or greater.")
        if self.fd_step <= 0.0:
            raise ValueError("fd_step must be positive.")
        if self.nscan < 2:
            raise ValueError("nscan must be 2 or greater.")


# -----------------------------------------------------------------------------
# Dispersion
# -----------------------------------------------------------------------------


def discretize(model: LayeredModel, nsub: int = 5) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, Tuple[float, float, float]]:
    """Split finite layers into homogeneous sub-layers.

    Returns
    -------
    h, rho, L, N : ndarray
        Sub-layer thickness, density and Love moduli.
    halfspace : tuple
        ``(rho, L, N)`` of the half-space.
    """
    s = (np.arange(nsub) + 0.5) / nsub
    h, rho, L, N = [], [], [], []
    for layer in model.layers[:-1]:
        vals = layer.evaluate(s)
        r, vs, xi = vals[:, 0], vals[:, 1], vals[:, 2]
        h.append(np.full(nsub, layer.thickness / nsub))
        rho.append(r)
        L.append(r * vs**2)
        N.append(xi * r * vs**2)
    hs = model.halfspace.values()[0]
    L_hs = hs[0] * hs[1] ** 2
    if not h:
        raise ForwardError("a model without finite layers supports no Love waves.")
    return (
        np.concatenate(h),
        np.concatenate(rho),
        np.concatenate(L),
        np.concatenate(N),
        (float(hs[0]), float(L_hs), float(hs[2] * L_hs)),
    )


def _secular(c, omega, h, rho, L, N, halfspace):
    """Sign-faithful Love secular function, broadcast over c and omega."""
    rho_hs, L_hs, N_hs = halfspace
    k2 = (omega / c) ** 2
    w2 = omega**2
    v = np.ones(np.broadcast(c, omega).shape)
    tau = np.zeros_like(v)

    for hj, rj, Lj, Nj in zip(h, rho, L, N):
        a = (Nj * k2 - rj * w2) / Lj
        s = np.sqrt(np.abs(a))
        x = s * hj
        s_safe = np.where(s > 0.0, s, 1.0)
        # hyperbolic branch divided by cosh(x) to stay finite
        th = np.tanh(x)
        g_pos = np.where(s > 0.0, th / s_safe, hj)
        v_pos = v + g_pos / Lj * tau
        t_pos = Lj * s * th * v + tau
        cs, sn = np.cos(x), np.sin(x)
        g_neg = np.where(s > 0.0, sn / s_safe, hj)
        v_neg = cs * v + g_neg / Lj * tau
        t_neg = -Lj * s * sn * v + cs * tau

        pos = a >= 0.0
        v = np.where(pos, v_pos, v_neg)
        tau = np.where(pos, t_pos, t_neg)
        nrm = np.maximum(np.abs(v), np.abs(tau))
        v = v / nrm
        tau = tau / nrm

    nu_hs = np.sqrt(np.maximum((N_hs * k2 - rho_hs * w2) / L_hs, 0.0))
    return tau + L_hs * nu_hs * v


def love_phase_velocity(
    model: LayeredModel,
    frequencies: Sequence[float],
    *,
    nsub: int = 5,
    nscan: int = 200,
    rtol: float = 1.0e-12,
    maxiter: int = 200,
) -> np.ndarray:
    """Fundamental-mode Love phase velocity (m/s) at *frequencies* (Hz)."""
    f = np.asarray(frequencies, dtype=float).ravel()
    if f.size == 0:
        return f.copy()
    if np.any(f <= 0.0):
        raise ValueError("frequencies must be positive.")

    h, rho, L, N, halfspace = discretize(model, nsub)
    if np.any(L <= 0.0) or np.any(N <= 0.0) or np.any(rho <= 0.0) or halfspace[1] <= 0.0:
        raise ForwardError("densities and shear moduli must be positive.")

    vsh = np.sqrt(N / rho)
    c_lo = float(vsh.min())
    c_hi = float(np.sqrt(halfspace[2] / halfspace[0])) * (1.0 - 1.0e-9)
    if c_lo >= c_hi:
        raise ForwardError("half-space vsh must exceed the slowest layer vsh for a guided Love mode.")

    omega = 2.0 * np.pi * f
    grid = np.linspace(c_lo, c_hi, nscan)
    F = _secular(grid[None, :], omega[:, None], h, rho, L, N, halfspace)
    neg = F <= 0.0
    if not np.all(neg.any(axis=1)):
        bad = f[~neg.any(axis=1)]
        raise ForwardError(f"no fundamental Love mode bracketed at f = {bad}.")
    idx = np.argmax(neg, axis=1)
    if np.any(idx == 0):
        raise ForwardError("secular function not positive at the lower velocity bound.")

    lo = grid[idx - 1].copy()
    hi = grid[idx].copy()
    for _ in range(maxiter):
        mid = 0.5 * (lo + hi)
        pos = _secular(mid, omega, h, rho, L, N, halfspace) > 0.0
        lo = np.where(pos, mid, lo)
        hi = np.where(pos, hi, mid)
        if np.all((hi - lo) <= rtol * hi):
            break
    return 0.5 * (lo + hi)


# -----------------------------------------------------------------------------
# Evaluator
# -----------------------------------------------------------------------------


class LoveEvaluator:
    """Objective, residuals and sensitivities of a Love-wave dispersion fit.

    The dataset, reference model, damping and options are fixed at
    construction so that every call evaluates the same objective function.

    Parameters
    ----------
    data : DispersionData
        Dataset with an initialised target.
    reference : LayeredModel
        Reference (prior) model; also fixes the parameter layout.
    damping : sequence of 4 floats
        Prior standard deviations for (rho, vs, xi, vpvs).
    config : ForwardConfig, optional
    exclude : iterable of ParamType
        Types excluded from the inversion (zero Jacobian columns).
    """

    def __init__(
        self,
        data: DispersionData,
        reference: LayeredModel,
        damping: Sequence[float],
        config: Optional[ForwardConfig] = None,
        exclude: Iterable[ParamType] = (),
    ) -> None:
        self.data = data
        self.reference = reference.copy()
        self.config = config if config is not None else ForwardConfig()
        self.model_0, self.mask = flatten(self.reference, exclude=exclude)
        self.ptype = param_types(self.reference)
        self.Cm = initialize_cm(self.reference, damping)

        if data.nfreq == 0 or data.target.size == 0:
            raise ValueError("dataset target is not initialised.")
        self.index = data.thinned(self.config.frequency_thin)
        self.frequencies = data.target_freq[self.index]
        self.target = data.target[self.index]
        self.Cd = data.target_sigma[self.index] ** 2
        self.ncalls = 0

    def predict(self, model: LayeredModel) -> np.ndarray:
        return love_phase_velocity(model, self.frequencies, nsub=self.config.nsub, nscan=self.config.nscan)

    def jacobian(self, model: LayeredModel, vector: np.ndarray, pred: np.ndarray) -> np.ndarray:
        """Forward-difference Jacobian of the predictions, FREE columns only."""
        G = np.zeros((pred.size, vector.size), dtype=float)
        sensitive = self.mask == ParamFlag.FREE
        sensitive &= ~np.isin(self.ptype, [int(t) for t in LOVE_INSENSITIVE])
        scratch = model.copy()
        for i in np.flatnonzero(sensitive):
            dp = self.config.fd_step * max(abs(vector[i]), 1.0)
            perturbed = vector.copy()
            perturbed[i] += dp
            unflatten(perturbed, scratch)
            G[:, i] = (self.predict(scratch) - pred) / dp
        return G

    def __call__(self, model: LayeredModel) -> Evaluation:
        self.ncalls += 1
        vector, _ = flatten(model, self.mask)
        if vector.size != self.model_0.size:
            raise ValueError("model layout differs from the reference model.")

        pred = self.predict(model)
        r = self.target - pred
        thr = self.config.threshold
        if thr > 0.0:
            r = np.sign(r) * np.maximum(np.abs(r) - thr, 0.0)

        G = self.jacobian(model, vector, pred)
        objective = 0.5 * float(np.sum(r**2 / self.Cd))
        dLdp = -G.T @ (r / self.Cd)

        if self.config.posterior:
            prior = (self.mask == ParamFlag.FREE) & (self.Cm > 0.0)
            dm = vector[prior] - self.model_0[prior]
            objective += 0.5 * float(np.sum(dm**2 / self.Cm[prior]))
            dLdp[prior] += dm / self.Cm[prior]

        return Evaluation(
            objective=objective,
            residuals=r,
            G=G,
            dLdp=dLdp,
            Cd=self.Cd.copy(),
            predictions=pred,
            frequencies=self.frequencies.copy(),
        )
