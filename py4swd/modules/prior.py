#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""prior.py
================

Prior information for the least-squares inversion:

- the diagonal model covariance built from one standard deviation
  ("damping") per parameter type, and
- hard admissibility bounds per parameter type.

A zero damping value means infinite confidence in the reference value: the
step strategies never move such entries away from it.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .model1d import LayeredModel
from .paramvec import NTYPES, ParamFlag, param_types

#: lower/upper bounds for (rho, vs, xi, vpvs)
PRIOR_MIN = (0.1e3, 0.5e3, 0.5, 1.0)
PRIOR_MAX = (8.0e3, 10.0e3, 1.5, 2.5)


def per_type(values: Sequence[float], name: str) -> np.ndarray:
    v = np.asarray(values, dtype=float).ravel()
    if v.size != NTYPES:
        raise ValueError(f"{name} must have {NTYPES} entries, got {v.size}.")
    return v


def initialize_cm(model: LayeredModel, damping: Sequence[float]) -> np.ndarray:
    """Diagonal model covariance, ``Cm[i] = damping[type(i)]**2``."""
    damping = per_type(damping, "damping")
    if np.any(damping < 0.0):
        raise ValueError("damping standard deviations must be 0 or greater.")
    return damping[param_types(model)] ** 2


def validate(
    vector: np.ndarray,
    mask: np.ndarray,
    prior_min: Sequence[float] = PRIOR_MIN,
    prior_max: Sequence[float] = PRIOR_MAX,
    ptype: Optional[np.ndarray] = None,
) -> bool:
    """True if every FREE entry lies inside its type's [min, max] range.

    Bounds are inclusive. Non-finite free entries are rejected. Without
    explicit *ptype* tags, the type is taken as ``index mod 4``.
    """
    vector = np.asarray(vector, dtype=float).ravel()
    mask = np.asarray(mask).ravel()
    if mask.size != vector.size:
        raise ValueError(f"mask must have length {vector.size}, got {mask.size}.")
    if ptype is None:
        if vector.size % NTYPES != 0:
            raise ValueError(f"vector length must be a multiple of {NTYPES}.")
        ptype = np.arange(vector.size) % NTYPES
    lo = per_type(prior_min, "prior_min")[ptype]
    hi = per_type(prior_max, "prior_max")[ptype]

    free = mask == ParamFlag.FREE
    v = vector[free]
    ok = np.isfinite(v) & (v >= lo[free]) & (v <= hi[free])
    return bool(np.all(ok))
