#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""dispersion.py
================

Observed Love-wave dispersion data used as the inversion target.

Two inputs are combined:

- a *raw* observation file on the measurement frequency grid, with columns
  ``frequency sigma`` or ``frequency phase_velocity sigma``;
- an optional *phase curve* ``frequency phase_velocity`` (m/s), e.g. from an
  initial phase estimate, interpolated onto the raw grid. If given it defines
  the target, otherwise the raw phase-velocity column does.

The usable band ``[fmin, fmax]`` selects the desired range ``ffirst..flast``;
:meth:`DispersionData.initialise_target` narrows it to the frequencies for
which a target value exists.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Optional

import numpy as np


def _read_columns(path: str, ncols: tuple) -> np.ndarray:
    """Read a whitespace separated table with one of the allowed column counts."""
    try:
        table = np.loadtxt(Path(path).expanduser(), comments="#", ndmin=2)
    except ValueError as exc:
        raise ValueError(f"{path}: malformed table ({exc}).") from exc
    if table.shape[0] == 0:
        raise ValueError(f"{path}: no data rows.")
    if table.shape[1] not in ncols:
        raise ValueError(f"{path}: expected {' or '.join(map(str, ncols))} columns, got {table.shape[1]}.")
    freq = table[:, 0]
    if np.any(np.diff(freq) <= 0.0):
        raise ValueError(f"{path}: frequencies must be strictly increasing.")
    if np.any(freq <= 0.0):
        raise ValueError(f"{path}: frequencies must be positive.")
    return table


class DispersionData:
    """Raw dispersion observations restricted to a frequency band."""

    def __init__(self, fmin: float = 1.0 / 40.0, fmax: float = 1.0 / 2.0) -> None:
        if not (0.0 < fmin < fmax):
            raise ValueError("Need 0 < fmin < fmax.")
        self.fmin = float(fmin)
        self.fmax = float(fmax)

        self.freq = np.array([], dtype=float)
        self.sigma = np.array([], dtype=float)
        self.raw_phase: Optional[np.ndarray] = None
        self.phase: Optional[np.ndarray] = None
        self.phase_valid: Optional[np.ndarray] = None

        self.ffirst = 0
        self.flast = -1
        self.target = np.array([], dtype=float)
        self.target_sigma = np.array([], dtype=float)

    @property
    def nfreq(self) -> int:
        return self.flast - self.ffirst + 1 if self.flast >= self.ffirst else 0

    @property
    def target_freq(self) -> np.ndarray:
        return self.freq[self.ffirst:self.flast + 1]

    def load(self, path: str) -> "DispersionData":
        table = _read_columns(path, (2, 3))
        self.freq = table[:, 0].copy()
        self.sigma = table[:, -1].copy()
        self.raw_phase = table[:, 1].copy() if table.shape[1] == 3 else None
        if np.any(self.sigma <= 0.0):
            raise ValueError(f"{path}: sigma must be positive.")

        inside = np.flatnonzero((self.freq >= self.fmin) & (self.freq <= self.fmax))
        if inside.size == 0:
            raise ValueError(f"{path}: no frequencies within [{self.fmin}, {self.fmax}].")
        self.ffirst = int(inside[0])
        self.flast = int(inside[-1])
        return self

    def load_phase(self, path: str) -> "DispersionData":
        if self.freq.size == 0:
            raise ValueError("load() the raw observations before the phase curve.")
        table = _read_columns(path, (2,))
        f, c = table[:, 0], table[:, 1]
        if np.any(c <= 0.0):
            raise ValueError(f"{path}: phase velocities must be positive.")
        self.phase = np.interp(self.freq, f, c)
        self.phase_valid = (self.freq >= f[0]) & (self.freq <= f[-1])
        return self

    def initialise_target(self) -> "DispersionData":
        """Narrow the band to frequencies with a target value and build it."""
        if self.phase is not None:
            values = self.phase
            valid = self.phase_valid.copy()
        elif self.raw_phase is not None:
            values = self.raw_phase
            valid = self.raw_phase > 0.0
        else:
            raise ValueError("No phase velocities: load a phase curve or a 3-column observation file.")

        band = np.zeros(self.freq.size, dtype=bool)
        band[self.ffirst:self.flast + 1] = True
        ok = np.flatnonzero(band & valid)
        if ok.size == 0:
            raise ValueError("No target frequencies left inside the band.")
        # keep a contiguous subrange
        self.ffirst = int(ok[0])
        self.flast = int(ok[-1])
        self.target = values[self.ffirst:self.flast + 1].copy()
        self.target_sigma = self.sigma[self.ffirst:self.flast + 1].copy()
        return self

    def thinned(self, frequency_thin: float = 0.0) -> np.ndarray:
        """Indices into the target subrange spaced at least *frequency_thin* Hz."""
        f = self.target_freq
        if f.size == 0:
            raise ValueError("Target not initialised.")
        if frequency_thin <= 0.0:
            return np.arange(f.size)
        keep = [0]
        for i in range(1, f.size):
            if f[i] - f[keep[-1]] >= frequency_thin:
                keep.append(i)
        if len(keep) < f.size:
            warnings.warn(
                f"frequency thinning kept {len(keep)} of {f.size} target frequencies.",
                RuntimeWarning,
            )
        return np.asarray(keep, dtype=int)

    def save_predictions(self, path: str, frequencies: np.ndarray, predictions: np.ndarray) -> None:
        """Write ``frequency target predicted sigma`` for the fitted frequencies."""
        frequencies = np.asarray(frequencies, dtype=float)
        predictions = np.asarray(predictions, dtype=float)
        if frequencies.shape != predictions.shape:
            raise ValueError("frequencies and predictions must have the same shape.")
        idx = np.searchsorted(self.target_freq, frequencies)
        idx = np.clip(idx, 0, self.nfreq - 1)
        if not np.allclose(self.target_freq[idx], frequencies):
            raise ValueError("prediction frequencies are not part of the target.")
        p = Path(path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(
            p.as_posix(),
            np.column_stack([frequencies, self.target[idx], predictions, self.target_sigma[idx]]),
            fmt="%16.9e",
            header="frequency target predicted sigma",
        )
