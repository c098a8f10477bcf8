from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from .config import CalibrationProfile, P16Coeffs, PressureUnit, T5Coeffs

# A indices of the four temperature-compensated pressure terms, lowest dt power first
_K_INDICES = (
    (0, 1, 2, 12),
    (3, 5, 7, 13),
    (4, 6, 8, 14),
    (9, 10, 11, 15),
)
_T_TERMS = 3


def calc_pressure(
    fp: float,
    ft: float,
    coeffs: P16Coeffs,
    unit: PressureUnit,
    p_enabled: bool,
    t_enabled: bool,
) -> float:
    """Pressure in `unit` from the pressure and temperature resonator frequencies."""

    if not p_enabled:
        return math.nan
    dp = float(fp) - coeffs.Fp0
    if not t_enabled or math.isnan(ft):
        dt = 0.0
    else:
        dt = float(ft) - coeffs.Ft0

    a = coeffs.A
    k0, k1, k2, k3 = (a[i0] + dt * (a[i1] + dt * (a[i2] + dt * a[i3])) for i0, i1, i2, i3 in _K_INDICES)
    p = k0 + dp * (k1 + dp * (k2 + dp * k3))
    return float(np.float32(p * unit.multiplier))


def calc_temperature(ft: float, coeffs: T5Coeffs, t_enabled: bool) -> float:
    if not t_enabled:
        return math.nan
    d = float(ft) - coeffs.F0
    result = coeffs.T0
    power = d
    # C[3] and C[4] are stored on the device but not part of the transfer function
    for c in coeffs.C[:_T_TERMS]:
        result += power * c
        power *= d
    return float(np.float32(result))


class CalibrationEngine:
    """
    Transfer functions bound to one calibration profile.

    `apply` evaluates whole columns with numpy and gives the same values as the
    scalar `pressure`/`temperature` methods.
    """

    def __init__(self, profile: CalibrationProfile):
        self.profile = profile
        self._a = np.array(profile.p_coeffs.A, dtype=np.float64)
        self._c = np.array(profile.t_coeffs.C[:_T_TERMS], dtype=np.float64)

    def pressure(self, fp: float, ft: float) -> float:
        profile = self.profile
        return calc_pressure(fp, ft, profile.p_coeffs, profile.unit, profile.p_enabled, profile.t_enabled)

    def temperature(self, ft: float) -> float:
        return calc_temperature(ft, self.profile.t_coeffs, self.profile.t_enabled)

    def apply(self, fp: np.ndarray, ft: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        fp64 = np.asarray(fp, dtype=np.float64)
        ft64 = np.asarray(ft, dtype=np.float64)
        return self._pressure_array(fp64, ft64), self._temperature_array(ft64)

    def _pressure_array(self, fp: np.ndarray, ft: np.ndarray) -> np.ndarray:
        profile = self.profile
        if not profile.p_enabled:
            return np.full(fp.shape, np.nan, dtype=np.float32)
        dp = fp - profile.p_coeffs.Fp0
        if profile.t_enabled:
            dt = np.where(np.isnan(ft), 0.0, ft - profile.p_coeffs.Ft0)
        else:
            dt = np.zeros_like(fp)
        a = self._a
        k0, k1, k2, k3 = (a[i0] + dt * (a[i1] + dt * (a[i2] + dt * a[i3])) for i0, i1, i2, i3 in _K_INDICES)
        p = k0 + dp * (k1 + dp * (k2 + dp * k3))
        return (p * profile.unit.multiplier).astype(np.float32)

    def _temperature_array(self, ft: np.ndarray) -> np.ndarray:
        profile = self.profile
        if not profile.t_enabled:
            return np.full(ft.shape, np.nan, dtype=np.float32)
        d = ft - profile.t_coeffs.F0
        result = np.full(ft.shape, profile.t_coeffs.T0, dtype=np.float64)
        power = d.copy()
        for c in self._c:
            result += power * c
            power *= d
        return result.astype(np.float32)
