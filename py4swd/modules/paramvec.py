#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""paramvec.py
================

Flat parameter vectors for :class:`model1d.LayeredModel`.

Ordering is node major, type minor: for every node (layers top to bottom,
nodes top to bottom within a layer) the four entries
``rho, vs, xi, vpvs`` follow each other. Forward-model Jacobians use the same
column order, so it must never change between calls.

Each entry also carries

- an explicit :class:`ParamType` tag (see :func:`param_types`), so that prior
  tables are indexed by type instead of by position;
- a :class:`ParamFlag` in the mask built by the first :func:`flatten` call.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Iterable, Optional, Tuple

import numpy as np

from .model1d import LayeredModel


class ParamType(IntEnum):
    RHO = 0
    VS = 1
    XI = 2
    VPVS = 3


NTYPES = len(ParamType)


class ParamFlag(IntEnum):
    FIXED = 0
    FREE = 1
    EXCLUDED = 2


def nparam_of(model: LayeredModel) -> int:
    return NTYPES * model.nnodes


def param_types(model: LayeredModel) -> np.ndarray:
    """Per-entry :class:`ParamType` tags (int array of length nparam)."""
    return np.tile(np.arange(NTYPES, dtype=int), model.nnodes)


def build_mask(model: LayeredModel, exclude: Iterable[ParamType] = ()) -> np.ndarray:
    """Mask for *model*: fixed layers -> FIXED, excluded types -> EXCLUDED."""
    excluded = [int(t) for t in exclude]
    mask = np.empty(nparam_of(model), dtype=int)
    ptype = param_types(model)
    i = 0
    for layer in model.layers:
        n = NTYPES * (layer.order + 1)
        mask[i:i + n] = ParamFlag.FIXED if layer.fixed else ParamFlag.FREE
        i += n
    mask[np.isin(ptype, excluded) & (mask == ParamFlag.FREE)] = ParamFlag.EXCLUDED
    return mask


def flatten(
    model: LayeredModel,
    mask: Optional[np.ndarray] = None,
    exclude: Iterable[ParamType] = (),
) -> Tuple[np.ndarray, np.ndarray]:
    """Copy *model* into a new parameter vector.

    Parameters
    ----------
    model : LayeredModel
        Structured model.
    mask : ndarray or None
        Existing mask. If None, a new one is built from the layer ``fixed``
        flags and *exclude*.
    exclude : iterable of ParamType
        Parameter types marked EXCLUDED when a new mask is built.

    Returns
    -------
    vector, mask : ndarray, ndarray
    """
    vector = np.concatenate([layer.values().ravel() for layer in model.layers])
    if mask is None:
        mask = build_mask(model, exclude)
    else:
        mask = np.asarray(mask, dtype=int)
        if mask.shape != vector.shape:
            raise ValueError(f"mask must have length {vector.size}, got {mask.size}.")
    return vector, mask


def unflatten(vector: np.ndarray, model: LayeredModel) -> LayeredModel:
    """Write *vector* back into *model* in place and return it."""
    vector = np.asarray(vector, dtype=float).ravel()
    if vector.size != nparam_of(model):
        raise ValueError(f"vector must have length {nparam_of(model)}, got {vector.size}.")
    i = 0
    for layer in model.layers:
        n = layer.order + 1
        layer.set_values(vector[i:i + NTYPES * n].reshape(n, NTYPES))
        i += NTYPES * n
    return model


def free_indices(mask: np.ndarray) -> np.ndarray:
    return np.flatnonzero(np.asarray(mask) == ParamFlag.FREE)
