#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
test_model1d.py
================

Pytest test-suite for :mod:`model1d`: construction rules, text file
round trip, order promotion and depth profiles.

Run
---
    python -m pytest -q py4swd/modules/test_model1d.py
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from py4swd.modules.model1d import Layer, LayeredModel, ReferenceModel


def _make_model() -> LayeredModel:
    """Two finite layers (orders 1 and 0) over a half-space."""
    return LayeredModel(
        [
            Layer(1000.0, [2400.0, 2500.0], [1800.0, 2000.0], [1.0, 1.05], [1.73, 1.75]),
            Layer(2000.0, [2700.0], [2600.0], [0.95], [1.8], fixed=True),
            Layer(0.0, [3000.0], [3500.0], [1.0], [1.73]),
        ]
    )


def test_halfspace_must_be_last() -> None:
    """A model needs a zero-thickness layer at the bottom and only there."""
    with pytest.raises(ValueError):
        LayeredModel([Layer(1000.0, [2400.0], [1800.0], [1.0], [1.73])])
    with pytest.raises(ValueError):
        LayeredModel(
            [
                Layer(0.0, [2400.0], [1800.0], [1.0], [1.73]),
                Layer(0.0, [3000.0], [3500.0], [1.0], [1.73]),
            ]
        )


def test_layer_rejects_inconsistent_nodes() -> None:
    with pytest.raises(ValueError):
        Layer(1000.0, [2400.0, 2500.0], [1800.0], [1.0, 1.0], [1.73, 1.73])
    with pytest.raises(ValueError):
        Layer(0.0, [2400.0, 2500.0], [1800.0, 1900.0], [1.0, 1.0], [1.73, 1.73])


def test_save_load_roundtrip(tmp_path: Path) -> None:
    """Saving and loading reproduces the model exactly, including flags."""
    model = _make_model()
    path = tmp_path / "model.txt"
    model.save(path.as_posix())

    loaded = LayeredModel.load(path.as_posix())
    assert loaded == model
    assert loaded.layers[1].fixed
    assert loaded.nnodes == 4


def test_load_malformed_file(tmp_path: Path) -> None:
    path = tmp_path / "bad.txt"
    path.write_text("2\n1000.0 0 0\n2400.0 1800.0 1.0\n")
    with pytest.raises(ValueError):
        LayeredModel.load(path.as_posix())

    path.write_text("1\n0.0 0 0\n3000.0 3500.0 1.0 1.73\n99\n")
    with pytest.raises(ValueError):
        LayeredModel.load(path.as_posix())


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        LayeredModel.load((tmp_path / "nothing.txt").as_posix())


def test_promote_keeps_profile() -> None:
    """Promoting a linear layer to order 3 samples the same straight line."""
    model = _make_model()
    model.promote(3)

    top = model.layers[0]
    assert top.order == 3
    np.testing.assert_allclose(top.vs, [1800.0, 1800.0 + 200.0 / 3, 1800.0 + 400.0 / 3, 2000.0])
    np.testing.assert_allclose(model.layers[1].rho, 2700.0)
    assert model.layers[1].order == 3
    assert model.halfspace.order == 0


def test_promote_never_lowers_order() -> None:
    model = _make_model()
    model.promote(0)
    assert model.layers[0].order == 1


def test_profile_and_depth_edges() -> None:
    model = _make_model()
    np.testing.assert_allclose(model.depth_edges(), [0.0, 1000.0, 3000.0])

    values = model.profile(np.array([0.0, 500.0, 1500.0, 5000.0]))
    np.testing.assert_allclose(values[:, 1], [1800.0, 1900.0, 2600.0, 3500.0])
    np.testing.assert_allclose(values[:, 2], [1.0, 1.025, 0.95, 1.0])


def test_reference_model_load(tmp_path: Path) -> None:
    """Working model and reference are equal but independent copies."""
    path = tmp_path / "ref.txt"
    _make_model().save(path.as_posix())

    ref = ReferenceModel().load(path.as_posix(), promote=True, order=2)
    assert ref.model == ref.reference
    assert ref.model.layers[0].order == 2

    ref.model.layers[0].vs[0] = 1234.0
    assert ref.reference.layers[0].vs[0] == pytest.approx(1800.0)
