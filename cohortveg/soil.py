"""Default soil water-balance collaborator and soil temperature.

Any callable with the signature of `bucket_water_balance` can replace it:

    fn(wcl, demand_mm, record, tsoil, soil_cfg, dt_seconds) -> WaterBalanceResult

The function is pure and owns no cohort state. The tile calls it once per
sub-daily step with the summed transpiration demand of all cohorts.

Bucket model: precipitation enters the top layer, water above field capacity
cascades downward and leaves the bottom layer as drainage/runoff;
transpiration is drawn from plant-available water (above wilting point) in
proportion to each layer's share.
"""

from __future__ import annotations

import math
from typing import Callable, NamedTuple

import numpy as np
from scipy.signal import lfilter

from cohortveg.config import SoilSection
from cohortveg.types import ClimateRecord

_TSOIL_TAU_DAYS = 5.0   # sub-daily relaxation of soil toward air temperature


class WaterBalanceResult(NamedTuple):
    wcl: np.ndarray       # updated volumetric water content per layer
    tsoil: float          # °C
    transp: float         # realized transpiration, mm per step
    runoff: float         # mm per step


WaterBalanceFn = Callable[[np.ndarray, float, ClimateRecord, float, SoilSection, float],
                          WaterBalanceResult]


def wetness_index(wcl: np.ndarray, soil_cfg: SoilSection) -> float:
    """Root-zone wetness: 0 at wilting point, 1 at field capacity."""
    w = wcl[soil_cfg.root_layer]
    theta = (w - soil_cfg.wilting_point) / (soil_cfg.field_capacity - soil_cfg.wilting_point)
    return float(np.clip(theta, 0.0, 1.0))


def plant_available_water(wcl: np.ndarray, thickness: np.ndarray,
                          soil_cfg: SoilSection) -> np.ndarray:
    """Water above wilting point per layer (mm)."""
    return np.maximum(wcl - soil_cfg.wilting_point, 0.0) * thickness * 1000.0


def bucket_water_balance(
    wcl: np.ndarray,
    demand_mm: float,
    record: ClimateRecord,
    tsoil: float,
    soil_cfg: SoilSection,
    dt_seconds: float,
) -> WaterBalanceResult:
    """Advance soil water by one step. Does not modify `wcl` in place."""
    thickness = np.asarray(soil_cfg.layer_thickness, dtype=np.float64)
    water = np.asarray(wcl, dtype=np.float64) * thickness * 1000.0   # mm
    fc = soil_cfg.field_capacity * thickness * 1000.0

    # Infiltration and downward cascade above field capacity
    carry = max(record.precip, 0.0)
    for i in range(len(water)):
        water[i] += carry
        carry = max(water[i] - fc[i], 0.0)
        water[i] -= carry
    runoff = carry

    # Transpiration from plant-available water
    avail = np.maximum(water - soil_cfg.wilting_point * thickness * 1000.0, 0.0)
    supply = float(avail.sum())
    transp = min(max(demand_mm, 0.0), supply)
    if transp > 0.0 and supply > 0.0:
        water -= avail * (transp / supply)

    new_wcl = np.maximum(water / (thickness * 1000.0), 0.0)

    relax = 1.0 - math.exp(-dt_seconds / (_TSOIL_TAU_DAYS * 86400.0))
    new_tsoil = tsoil + (record.tair - tsoil) * relax

    return WaterBalanceResult(new_wcl, float(new_tsoil), float(transp), float(runoff))


def daily_soil_temperature(tair_daily: float, tsoil_prev: float, theta: float,
                           soil_cfg: SoilSection) -> float:
    """Soil temperature for the day from the day's mean air temperature.

    First-order lag filter  T_s[n] = a × T_a[n] + (1 − a) × T_s[n−1]
    with a = tsoil_response × (1 − 0.5 × theta): wetter soil has more
    thermal inertia and follows air temperature more slowly.
    """
    a = soil_cfg.tsoil_response * (1.0 - 0.5 * float(np.clip(theta, 0.0, 1.0)))
    y, _ = lfilter([a], [1.0, a - 1.0], [tair_daily], zi=[(1.0 - a) * tsoil_prev])
    return float(y[0])
