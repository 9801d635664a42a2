#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""model1d.py
================

Layered, radially anisotropic 1-D earth models.

Each finite layer carries a polynomial representation of four properties on
``order + 1`` equally spaced nodes running from the layer top to its bottom:

- ``rho``   density (kg/m^3)
- ``vs``    vertically polarized shear velocity (m/s)
- ``xi``    radial anisotropy ``vsh^2 / vsv^2``
- ``vpvs``  compressional to shear velocity ratio

Convention: the last entry is the half-space ("basement"). Its thickness is
kept at 0.0 and it holds a single node (order 0).

Text format
-----------
``#`` starts a comment. The first record is the number of layers. Every layer
then has a header ``thickness order fixed`` followed by ``order + 1`` rows
``rho vs xi vpvs``::

    2
    # thickness order fixed
    1000.0 1 0
    2500.0 2000.0 1.0 1.73
    2600.0 2300.0 1.0 1.73
    0.0 0 0
    3000.0 3500.0 1.0 1.73
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import BarycentricInterpolator


PROPERTIES = ("rho", "vs", "xi", "vpvs")


class Layer:
    """One layer of a :class:`LayeredModel`."""

    def __init__(
        self,
        thickness: float,
        rho: Sequence[float],
        vs: Sequence[float],
        xi: Sequence[float],
        vpvs: Sequence[float],
        *,
        fixed: bool = False,
    ) -> None:
        self.thickness = float(thickness)
        self.rho = np.atleast_1d(np.asarray(rho, dtype=float)).copy()
        self.vs = np.atleast_1d(np.asarray(vs, dtype=float)).copy()
        self.xi = np.atleast_1d(np.asarray(xi, dtype=float)).copy()
        self.vpvs = np.atleast_1d(np.asarray(vpvs, dtype=float)).copy()
        self.fixed = bool(fixed)

        n = self.rho.size
        if n == 0:
            raise ValueError("A layer needs at least one node.")
        for name in PROPERTIES[1:]:
            if getattr(self, name).size != n:
                raise ValueError(f"{name} must have {n} nodes, got {getattr(self, name).size}.")
        if self.thickness < 0.0:
            raise ValueError("Layer thickness must be non-negative.")
        if self.thickness == 0.0 and n != 1:
            raise ValueError("The half-space (thickness 0) must have order 0.")

    @property
    def order(self) -> int:
        return self.rho.size - 1

    @property
    def is_halfspace(self) -> bool:
        return self.thickness == 0.0

    def values(self) -> np.ndarray:
        """Node values as an array of shape (order + 1, 4)."""
        return np.column_stack([self.rho, self.vs, self.xi, self.vpvs])

    def set_values(self, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.order + 1, 4):
            raise ValueError(f"values must have shape ({self.order + 1}, 4), got {values.shape}.")
        self.rho[:] = values[:, 0]
        self.vs[:] = values[:, 1]
        self.xi[:] = values[:, 2]
        self.vpvs[:] = values[:, 3]

    def node_positions(self) -> np.ndarray:
        """Relative node positions in [0, 1] from the layer top."""
        if self.order == 0:
            return np.zeros(1)
        return np.linspace(0.0, 1.0, self.order + 1)

    def evaluate(self, s: np.ndarray) -> np.ndarray:
        """Evaluate the four properties at relative positions *s* in [0, 1].

        Returns an array of shape (len(s), 4).
        """
        s = np.atleast_1d(np.asarray(s, dtype=float))
        if self.order == 0:
            return np.repeat(self.values(), s.size, axis=0)
        interp = BarycentricInterpolator(self.node_positions(), self.values(), axis=0)
        return np.asarray(interp(s), dtype=float).reshape(s.size, 4)

    def promote(self, order: int) -> None:
        """Raise the polynomial order to *order* (no-op if already >= order)."""
        order = int(order)
        if self.is_halfspace or order <= self.order:
            return
        values = self.evaluate(np.linspace(0.0, 1.0, order + 1))
        self.rho, self.vs, self.xi, self.vpvs = (values[:, k].copy() for k in range(4))

    def copy(self) -> "Layer":
        return Layer(self.thickness, self.rho, self.vs, self.xi, self.vpvs, fixed=self.fixed)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Layer):
            return NotImplemented
        return (
            self.thickness == other.thickness
            and self.fixed == other.fixed
            and self.order == other.order
            and np.array_equal(self.values(), other.values())
        )

    def __repr__(self) -> str:
        return f"Layer(thickness={self.thickness!r}, order={self.order}, fixed={self.fixed})"


class LayeredModel:
    """Stack of :class:`Layer` objects, top to bottom, half-space last."""

    def __init__(self, layers: Sequence[Layer]) -> None:
        self.layers: List[Layer] = list(layers)
        if not self.layers:
            raise ValueError("A model needs at least the half-space layer.")
        if not self.layers[-1].is_halfspace:
            raise ValueError("The last layer must be the half-space (thickness 0).")
        for layer in self.layers[:-1]:
            if layer.is_halfspace:
                raise ValueError("Only the last layer may have zero thickness.")

    @property
    def nlayers(self) -> int:
        return len(self.layers)

    @property
    def halfspace(self) -> Layer:
        return self.layers[-1]

    @property
    def nnodes(self) -> int:
        return sum(layer.order + 1 for layer in self.layers)

    def nodes(self) -> Iterator[Tuple[int, int, Layer]]:
        """Yield ``(layer_index, node_index, layer)`` in storage order."""
        for k, layer in enumerate(self.layers):
            for j in range(layer.order + 1):
                yield k, j, layer

    def depth_edges(self) -> np.ndarray:
        """Depths of the layer tops (m), one per layer."""
        h = np.array([layer.thickness for layer in self.layers], dtype=float)
        return np.concatenate([[0.0], np.cumsum(h[:-1])])

    def profile(self, z: np.ndarray) -> np.ndarray:
        """Evaluate rho, vs, xi, vpvs at depths *z* (m), shape (len(z), 4)."""
        z = np.atleast_1d(np.asarray(z, dtype=float))
        tops = self.depth_edges()
        out = np.empty((z.size, 4), dtype=float)
        idx = np.clip(np.searchsorted(tops, z, side="right") - 1, 0, self.nlayers - 1)
        for k in np.unique(idx):
            sel = idx == k
            layer = self.layers[k]
            if layer.is_halfspace:
                out[sel] = layer.values()[0]
            else:
                s = np.clip((z[sel] - tops[k]) / layer.thickness, 0.0, 1.0)
                out[sel] = layer.evaluate(s)
        return out

    def promote(self, order: int) -> None:
        for layer in self.layers:
            layer.promote(order)

    def copy(self) -> "LayeredModel":
        return LayeredModel([layer.copy() for layer in self.layers])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LayeredModel):
            return NotImplemented
        return self.nlayers == other.nlayers and all(a == b for a, b in zip(self.layers, other.layers))

    def __repr__(self) -> str:
        return f"LayeredModel(nlayers={self.nlayers}, nnodes={self.nnodes})"

    # ------------------------------------------------------------------
    # file i/o
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: str, promote: bool = False, order: Optional[int] = None) -> "LayeredModel":
        """Read a model in the layered text format (see module docstring)."""
        tokens: List[str] = []
        with open(Path(path).expanduser(), "r") as f:
            for line in f:
                line = line.split("#", 1)[0].strip()
                if line:
                    tokens.extend(line.split())

        pos = 0

        def _next(n: int) -> List[str]:
            nonlocal pos
            if pos + n > len(tokens):
                raise ValueError(f"{path}: unexpected end of model file.")
            chunk = tokens[pos:pos + n]
            pos += n
            return chunk

        try:
            nlayers = int(_next(1)[0])
            if nlayers < 1:
                raise ValueError(f"{path}: number of layers must be at least 1.")
            layers = []
            for _ in range(nlayers):
                h, p, fixed = _next(3)
                p = int(p)
                if p < 0:
                    raise ValueError(f"{path}: negative layer order.")
                rows = np.array(_next(4 * (p + 1)), dtype=float).reshape(p + 1, 4)
                layers.append(
                    Layer(float(h), rows[:, 0], rows[:, 1], rows[:, 2], rows[:, 3], fixed=bool(int(fixed)))
                )
        except (TypeError, IndexError) as exc:
            raise ValueError(f"{path}: malformed model file ({exc}).") from exc

        if pos != len(tokens):
            raise ValueError(f"{path}: trailing data after {nlayers} layers.")

        model = cls(layers)
        if promote:
            if order is None:
                raise ValueError("promote=True requires an order.")
            model.promote(order)
        return model

    def save(self, path: str) -> None:
        """Write the model in the layered text format."""
        p = Path(path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w") as f:
            f.write(f"{self.nlayers}\n")
            f.write("# thickness order fixed / rho vs xi vpvs\n")
            for layer in self.layers:
                f.write(f"{layer.thickness!r} {layer.order} {int(layer.fixed)}\n")
                for row in layer.values():
                    f.write(" ".join(repr(float(v)) for v in row) + "\n")


class ReferenceModel:
    """Working model plus an untouched reference copy read from one file."""

    def __init__(self) -> None:
        self.model: Optional[LayeredModel] = None
        self.reference: Optional[LayeredModel] = None

    def load(self, path: str, promote: bool = False, order: Optional[int] = None) -> "ReferenceModel":
        self.reference = LayeredModel.load(path, promote=promote, order=order)
        self.model = self.reference.copy()
        return self
