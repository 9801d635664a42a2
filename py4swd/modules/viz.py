#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""viz.py
================

Axes-based plotting helpers for Love-wave dispersion inversions.

All functions draw into an existing Matplotlib ``Axes`` and return it; the
caller owns the figure layout (``plt.subplots`` etc.).

- :func:`plot_profile`     property versus depth for a layered model
- :func:`plot_dispersion`  target curve with error bars and predictions
- :func:`plot_convergence` objective per trial step from the loop history
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .model1d import PROPERTIES, LayeredModel

LABELS = {
    "rho": r"$\rho$ [kg/m$^3$]",
    "vs": r"$v_s$ [m/s]",
    "xi": r"$\xi$",
    "vpvs": r"$v_p/v_s$",
}


def _require_matplotlib():
    """Import Matplotlib lazily."""
    import matplotlib.pyplot as plt

    return plt


def depth_profile(model: LayeredModel, *, npts: int = 20, halfspace_depth: Optional[float] = None):
    """Sample *model* on a depth grid for plotting.

    The half-space is drawn down to *halfspace_depth* (default: 20 % below
    its top).

    Returns
    -------
    z : ndarray, shape (n,)
        Depths (m).
    values : ndarray, shape (n, 4)
        rho, vs, xi, vpvs at *z*.
    """
    tops = model.depth_edges()
    zs = []
    for k, layer in enumerate(model.layers[:-1]):
        zs.append(tops[k] + layer.thickness * np.linspace(0.0, 1.0, npts))
    ztop = tops[-1]
    if halfspace_depth is None:
        halfspace_depth = 1.2 * ztop if ztop > 0.0 else 1.0
    zs.append(np.array([ztop, max(halfspace_depth, ztop)]))
    z = np.concatenate(zs)

    # evaluate each segment in its own layer so discontinuities stay sharp
    values = []
    for k, layer in enumerate(model.layers):
        if layer.is_halfspace:
            values.append(np.repeat(layer.values(), 2, axis=0))
        else:
            values.append(layer.evaluate(np.linspace(0.0, 1.0, npts)))
    return z, np.concatenate(values, axis=0)


def plot_profile(ax, model: LayeredModel, *, prop: str = "vs", label: str = "", linestyle: str = "-", **kwargs):
    """Plot one model property versus depth (depth increasing downwards)."""
    if prop not in PROPERTIES:
        raise ValueError(f"prop must be one of {PROPERTIES}, got {prop!r}.")
    z, values = depth_profile(model, **kwargs)
    ax.plot(values[:, PROPERTIES.index(prop)], z, linestyle=linestyle, label=label or None)
    if not ax.yaxis_inverted():
        ax.invert_yaxis()
    ax.set_ylabel("depth [m]")
    ax.set_xlabel(LABELS[prop])
    ax.grid(True, which="both", alpha=0.3)
    if label:
        ax.legend()
    return ax


def plot_dispersion(ax, frequencies, target, sigma=None, predictions=None, *, label_pred: str = "predicted"):
    """Plot the target phase velocities and, optionally, predictions."""
    f = np.asarray(frequencies, dtype=float)
    ax.errorbar(
        f,
        np.asarray(target, dtype=float),
        yerr=None if sigma is None else np.asarray(sigma, dtype=float),
        fmt="o",
        markersize=3,
        color="black",
        label="target",
    )
    if predictions is not None:
        ax.plot(f, np.asarray(predictions, dtype=float), "-", color="red", label=label_pred)
    ax.set_xlabel("frequency [Hz]")
    ax.set_ylabel("phase velocity [m/s]")
    ax.grid(True, which="both", alpha=0.3)
    ax.legend()
    return ax


def plot_convergence(ax, history):
    """Plot objective per trial step; rejected trials are drawn as crosses."""
    h = np.asarray(history, dtype=float).reshape(-1, 5)
    trial = np.arange(h.shape[0])
    accepted = h[:, 4] > 0.5
    ax.semilogy(
        trial[accepted],
        h[accepted, 1],
        color="green",
        marker="o",
        linestyle="dashed",
        linewidth=1,
        markersize=7,
        markeredgecolor="red",
        markerfacecolor="white",
        label="accepted",
    )
    if np.any(~accepted):
        ax.semilogy(trial[~accepted], h[~accepted, 1], "x", color="grey", label="rejected")
    ax.set_xlabel("trial step")
    ax.set_ylabel("objective")
    ax.grid(True, which="both", alpha=0.3)
    ax.legend()
    return ax


def plot_summary(path: str, initial: LayeredModel, final: LayeredModel, evaluation, data, history) -> None:
    """Write a one-page PDF with profiles, data fit and convergence."""
    plt = _require_matplotlib()
    fig, axes = plt.subplots(1, 4, figsize=(16, 5))
    plot_profile(axes[0], initial, prop="vs", label="initial", linestyle="--")
    plot_profile(axes[0], final, prop="vs", label="final")
    plot_profile(axes[1], initial, prop="xi", label="initial", linestyle="--")
    plot_profile(axes[1], final, prop="xi", label="final")

    idx = np.searchsorted(data.target_freq, evaluation.frequencies)
    plot_dispersion(
        axes[2],
        evaluation.frequencies,
        data.target[idx],
        data.target_sigma[idx],
        evaluation.predictions,
    )
    if np.asarray(history).size:
        plot_convergence(axes[3], history)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
