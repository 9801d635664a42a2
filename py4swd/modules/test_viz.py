#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
test_viz.py
================

Smoke tests for :mod:`viz`, run on the non-interactive Agg backend.
"""

from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pytest

from py4swd.modules.dispersion import DispersionData
from py4swd.modules.lovefwd import Evaluation
from py4swd.modules.model1d import Layer, LayeredModel
from py4swd.modules import viz


def _make_model() -> LayeredModel:
    return LayeredModel(
        [
            Layer(1000.0, [2400.0, 2500.0], [1800.0, 2000.0], [1.0, 1.05], [1.73, 1.75]),
            Layer(2000.0, [2700.0], [2600.0], [0.95], [1.8]),
            Layer(0.0, [3000.0], [3500.0], [1.0], [1.73]),
        ]
    )


def test_depth_profile_keeps_discontinuities() -> None:
    z, values = viz.depth_profile(_make_model(), npts=5)
    assert z.shape == (12,)
    assert values.shape == (12, 4)
    assert np.all(np.diff(z) >= 0.0)
    # bottom of layer 1 and top of layer 2 share a depth but not a value
    assert z[4] == z[5] == 1000.0
    assert values[4, 1] == pytest.approx(2000.0)
    assert values[5, 1] == pytest.approx(2600.0)
    assert z[-1] == pytest.approx(3600.0)


def test_plot_profile_rejects_unknown_property() -> None:
    fig, ax = plt.subplots()
    with pytest.raises(ValueError):
        viz.plot_profile(ax, _make_model(), prop="vp")
    plt.close(fig)


def test_axes_helpers_return_axes() -> None:
    fig, axes = plt.subplots(1, 3)
    assert viz.plot_profile(axes[0], _make_model(), prop="xi", label="model") is axes[0]
    assert axes[0].yaxis_inverted()

    f = np.array([0.05, 0.1, 0.2])
    assert viz.plot_dispersion(axes[1], f, [3000.0, 2900.0, 2800.0], [10.0] * 3, [2990.0, 2905.0, 2801.0]) is axes[1]

    history = np.array([[0, 10.0, 1.0, 0, 1], [1, 12.0, 1.0, 1, 0], [1, 8.0, 0.5, 1, 1]])
    assert viz.plot_convergence(axes[2], history) is axes[2]
    plt.close(fig)


def test_plot_summary_writes_pdf(tmp_path: Path) -> None:
    f = np.array([0.05, 0.1, 0.2])
    obs = tmp_path / "obs.txt"
    np.savetxt(obs.as_posix(), np.column_stack([f, [3000.0, 2900.0, 2800.0], [10.0] * 3]))
    data = DispersionData().load(obs.as_posix()).initialise_target()

    ev = Evaluation(
        objective=1.0,
        residuals=np.zeros(3),
        G=np.zeros((3, 16)),
        dLdp=np.zeros(16),
        Cd=np.full(3, 100.0),
        predictions=np.array([2995.0, 2903.0, 2801.0]),
        frequencies=f,
    )
    history = np.array([[0, 2.0, 1.0, 0, 1], [1, 1.0, 1.0, 1, 1]])

    out = tmp_path / "summary.pdf"
    viz.plot_summary(out.as_posix(), _make_model(), _make_model(), ev, data, history)
    assert out.exists()
    assert out.stat().st_size > 0
