#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
test_invloop.py
================

Pytest test-suite for :mod:`invloop`.

The loop is driven by small stub evaluators with scripted objectives so that
acceptance, backtracking and termination can be checked call by call.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest

from py4swd.modules.invloop import InversionConfig, InversionLoop, LoopState, invert
from py4swd.modules.lovefwd import Evaluation
from py4swd.modules.model1d import Layer, LayeredModel
from py4swd.modules.paramvec import ParamType, flatten, param_types

DAMPING = (0.5e3, 0.5e3, 0.05, 0.05)


def _make_model(vs: float = 2000.0) -> LayeredModel:
    """One order-0 layer over a half-space (8 parameters)."""
    return LayeredModel(
        [
            Layer(1000.0, [2500.0], [vs], [1.0], [1.75]),
            Layer(0.0, [3000.0], [vs], [1.0], [1.75]),
        ]
    )


class _Stub:
    """Evaluator returning ``objective(ncalls)`` and fixed sensitivities."""

    def __init__(
        self,
        objective: Callable[[int], float],
        *,
        ndata: int = 3,
        nparam: int = 8,
        dLdp: Optional[np.ndarray] = None,
        Cd: Optional[np.ndarray] = None,
    ) -> None:
        self.objective = objective
        self.ndata = ndata
        self.nparam = nparam
        self.dLdp = np.zeros(nparam) if dLdp is None else np.asarray(dLdp, dtype=float)
        self.Cd = np.ones(ndata) if Cd is None else np.asarray(Cd, dtype=float)
        self.ncalls = 0

    def __call__(self, model: LayeredModel) -> Evaluation:
        self.ncalls += 1
        return Evaluation(
            objective=float(self.objective(self.ncalls)),
            residuals=np.zeros(self.ndata),
            G=np.zeros((self.ndata, self.nparam)),
            dLdp=self.dLdp.copy(),
            Cd=self.Cd.copy(),
        )


def _sequence(values):
    """Objective function replaying *values*, then repeating the last one."""
    return lambda n: values[min(n, len(values)) - 1]


def test_always_worse_stops_with_step_too_small() -> None:
    model = _make_model()
    start = flatten(model)[0]
    stub = _Stub(lambda n: float(n))
    cfg = InversionConfig(epsilon=1.0, epsilon_min=0.1, max_iter=5, damping=DAMPING)

    result = invert(stub, model, model.copy(), cfg, out=False)

    assert result.state is LoopState.STEP_TOO_SMALL
    assert result.iterations == 0
    assert result.nbacktracks == 4
    assert result.nevals == 10
    assert stub.ncalls == result.nevals
    assert result.epsilon["gradient"] == pytest.approx(0.0625)
    assert result.epsilon["quasi-newton"] == pytest.approx(1.0)
    np.testing.assert_array_equal(flatten(model)[0], start)
    # final evaluation is the last one at the restored model
    assert result.objective == pytest.approx(9.0)


def test_max_iter_bounds_accepted_steps() -> None:
    model = _make_model()
    result = invert(_Stub(lambda n: 1.0), model, model.copy(), InversionConfig(max_iter=1, damping=DAMPING), out=False)
    assert result.state is LoopState.MAX_ITER_REACHED
    assert result.iterations == 1
    assert result.nevals == 2


def test_strategies_alternate() -> None:
    """Equal objectives are accepted and strategies alternate by parity."""
    model = _make_model()
    cfg = InversionConfig(max_iter=5, damping=DAMPING)
    result = invert(_Stub(lambda n: 1.0), model, model.copy(), cfg, out=False)

    assert result.state is LoopState.MAX_ITER_REACHED
    assert result.iterations == 5
    assert result.nevals == 6
    np.testing.assert_array_equal(result.history[:, 3], [0, 1, 0, 1, 0])
    np.testing.assert_array_equal(result.history[:, 4], [1, 1, 1, 1, 1])
    np.testing.assert_array_equal(result.history[:, 0], [0, 1, 2, 3, 4])


@pytest.mark.parametrize("schedule, code", [("gradient", 0), ("quasi-newton", 1)])
def test_fixed_schedules(schedule: str, code: int) -> None:
    model = _make_model()
    cfg = InversionConfig(max_iter=3, damping=DAMPING, schedule=schedule)
    result = invert(_Stub(lambda n: 1.0), model, model.copy(), cfg, out=False)
    assert np.all(result.history[:, 3] == code)


def test_failed_step_is_not_evaluated() -> None:
    """A quasi-Newton step that cannot be computed never reaches the evaluator."""
    model = _make_model()
    stub = _Stub(lambda n: 1.0, Cd=np.zeros(3))
    cfg = InversionConfig(epsilon_min=0.1, damping=DAMPING, schedule="quasi-newton")

    result = invert(stub, model, model.copy(), cfg, out=False)

    assert result.state is LoopState.STEP_TOO_SMALL
    assert result.nevals == 1
    assert result.iterations == 0
    assert np.all(result.history[:, 4] == 0)
    assert result.epsilon["quasi-newton"] < 0.1


def test_backtrack_then_accept() -> None:
    model = _make_model()
    stub = _Stub(_sequence([10.0, 12.0, 10.0, 9.0]))
    cfg = InversionConfig(max_iter=1, damping=DAMPING)

    result = invert(stub, model, model.copy(), cfg, out=False)

    assert result.state is LoopState.MAX_ITER_REACHED
    assert result.nevals == 4
    assert result.nbacktracks == 1
    assert result.iterations == 1
    assert result.objective == pytest.approx(9.0)
    assert result.epsilon["gradient"] == pytest.approx(0.5)
    np.testing.assert_array_equal(result.history[:, 4], [0, 1])


def test_step_size_halved_until_inside_bounds() -> None:
    model = _make_model()
    dLdp = np.zeros(8)
    dLdp[param_types(model) == ParamType.VS] = -1.0e5
    stub = _Stub(lambda n: 1.0, dLdp=dLdp)
    cfg = InversionConfig(max_iter=1, damping=DAMPING)

    result = invert(stub, model, model.copy(), cfg, out=False)

    assert result.iterations == 1
    assert result.epsilon["gradient"] == pytest.approx(0.0625)
    np.testing.assert_allclose([layer.vs[0] for layer in model.layers], [8250.0, 8250.0])
    # only vs moved
    np.testing.assert_allclose(model.layers[0].rho, 2500.0)


class _LinearEvaluator:
    """Linear forward problem ``d = G p`` on the flat parameter vector."""

    def __init__(self, G: np.ndarray, d: np.ndarray, Cd: np.ndarray) -> None:
        self.G = G
        self.d = d
        self.Cd = Cd

    def __call__(self, model: LayeredModel) -> Evaluation:
        p = flatten(model)[0]
        r = self.d - self.G @ p
        return Evaluation(
            objective=0.5 * float(np.sum(r**2 / self.Cd)),
            residuals=r,
            G=self.G.copy(),
            dLdp=-self.G.T @ (r / self.Cd),
            Cd=self.Cd.copy(),
        )


def test_quasi_newton_solves_linear_problem() -> None:
    rng = np.random.default_rng(42)
    reference = _make_model()
    p_ref = flatten(reference)[0]
    p_true = p_ref.copy()
    p_true[param_types(reference) == ParamType.VS] += 100.0

    G = rng.standard_normal((6, p_ref.size))
    evaluator = _LinearEvaluator(G, G @ p_true, np.ones(6))
    model = reference.copy()
    # only vs is free to move: zero damping pins the other types
    cfg = InversionConfig(max_iter=1, damping=(0.0, 1.0e4, 0.0, 0.0), schedule="quasi-newton")

    loop = InversionLoop(evaluator, model, reference, cfg, out=False)
    result = loop.run()

    assert result.iterations == 1
    assert result.objective < 1.0e-6
    np.testing.assert_allclose(flatten(model)[0], p_true, rtol=0.0, atol=1.0e-3)
    assert result.history[0, 1] == pytest.approx(result.objective)


def test_invalid_start_model_raises() -> None:
    model = _make_model(vs=20000.0)
    with pytest.raises(ValueError):
        invert(_Stub(lambda n: 1.0), model, model.copy(), InversionConfig(damping=DAMPING), out=False)


def test_jacobian_column_mismatch_raises() -> None:
    model = _make_model()
    with pytest.raises(ValueError):
        invert(_Stub(lambda n: 1.0, nparam=7), model, model.copy(), InversionConfig(damping=DAMPING), out=False)


def test_tolerance_converges() -> None:
    model = _make_model()
    cfg = InversionConfig(max_iter=5, damping=DAMPING, tol=0.0)
    result = invert(_Stub(lambda n: 1.0), model, model.copy(), cfg, out=False)
    assert result.state is LoopState.CONVERGED
    assert result.iterations == 1


def test_progress_output(capsys: pytest.CaptureFixture) -> None:
    model = _make_model()
    invert(_Stub(_sequence([10.0, 12.0, 10.0, 9.0])), model, model.copy(),
           InversionConfig(max_iter=1, damping=DAMPING), out=True)
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("init:")
    assert lines[1] == "   0: Backtracking"
    assert lines[2].startswith("   0:")


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        InversionConfig(epsilon=0.0)
    with pytest.raises(ValueError):
        InversionConfig(schedule="newton")
    with pytest.raises(ValueError):
        InversionConfig(damping=(1.0, 1.0, 1.0))
    with pytest.raises(ValueError):
        InversionConfig(max_iter=0)
