"""Default leaf-level photosynthesis collaborator.

Any callable with the signature of `light_use_efficiency` can replace it:

    fn(leaf: LeafEnvironment, record: ClimateRecord, pft: PFTParams,
       dt_seconds: float) -> PhotosynthesisResult

The function must be pure. Rates are per individual per step (kgC). The
engine treats non-finite outputs as zero carbon gain for that step.

The default is a light-use-efficiency model:
  GPP = ε × APAR × f(T) × f(W) × f(CO2)
  APAR = PAR × light_fraction × (1 − exp(−k × LAI_crown)) × crownarea
with leaf maintenance respiration on a Q10 curve.

References:
  - Monteith 1972, J. Appl. Ecol. 9:747 (light-use efficiency)
  - Medlyn et al. 2011, Global Change Biology 17:2134 (stomatal optimum)
"""

from __future__ import annotations

from typing import Callable, NamedTuple

import numpy as np

from cohortveg.pft import PFTParams
from cohortveg.types import ClimateRecord, PhenoStatus

_MOL_C_PER_KG = 1000.0 / 12.0
_CI_CA_RATIO = 0.7
_RESP_T_REF = 15.0   # °C
_CO2_REF = 400.0     # ppm
_CO2_HALF = 400.0    # ppm


class LeafEnvironment(NamedTuple):
    """Per-cohort inputs to the photosynthesis collaborator."""
    leaf_mass: float          # kgC per individual
    crown_area: float         # m2 per individual
    status: int               # PhenoStatus
    light_fraction: float     # fraction of above-canopy PAR reaching the cohort's layer
    water_stress: float       # 0 (wilting) .. 1 (unstressed)
    extinction_k: float = 0.5


class PhotosynthesisResult(NamedTuple):
    gpp: float                # kgC per individual per step
    resp: float               # leaf respiration, kgC per individual per step
    gs: float                 # stomatal conductance, mol H2O m-2 leaf s-1


PhotosynthesisFn = Callable[[LeafEnvironment, ClimateRecord, PFTParams, float],
                            PhotosynthesisResult]


def temperature_factor(tair: float, pft: PFTParams) -> float:
    """Linear ramp from t_photo_min to t_photo_opt, 1 above the optimum."""
    f = (tair - pft.t_photo_min) / (pft.t_photo_opt - pft.t_photo_min)
    return float(np.clip(f, 0.0, 1.0))


def co2_factor(co2: float) -> float:
    """Michaelis–Menten CO2 response normalized to 1 at 400 ppm."""
    if co2 <= 0:
        return 0.0
    return (co2 / (co2 + _CO2_HALF)) / (_CO2_REF / (_CO2_REF + _CO2_HALF))


def q10_factor(t: float, q10: float, t_ref: float = _RESP_T_REF) -> float:
    return float(q10 ** ((t - t_ref) / 10.0))


def light_use_efficiency(
    leaf: LeafEnvironment,
    record: ClimateRecord,
    pft: PFTParams,
    dt_seconds: float,
) -> PhotosynthesisResult:
    """Gross assimilation, leaf respiration and conductance for one step."""
    if leaf.leaf_mass <= 0 or leaf.crown_area <= 0:
        return PhotosynthesisResult(0.0, 0.0, 0.0)

    leaf_area = leaf.leaf_mass / pft.lma
    resp = pft.r_leaf * leaf.leaf_mass * q10_factor(record.tair, pft.q10) \
        * dt_seconds / (365.0 * 86400.0)

    if leaf.status != PhenoStatus.ACTIVE or record.rad <= 0:
        return PhotosynthesisResult(0.0, resp, 0.0)

    lai_crown = leaf_area / leaf.crown_area
    fapar = 1.0 - np.exp(-leaf.extinction_k * lai_crown)
    apar_mj = record.rad * dt_seconds * 1.0e-6 * leaf.light_fraction * fapar * leaf.crown_area
    gpp = pft.lue * apar_mj * temperature_factor(record.tair, pft) \
        * float(np.clip(leaf.water_stress, 0.0, 1.0)) * co2_factor(record.co2)

    # A_n (mol CO2 m-2 leaf s-1) → gs = 1.6 A / (ca − ci)
    a_mol = gpp * _MOL_C_PER_KG / (leaf_area * dt_seconds)
    ca = record.co2 * 1.0e-6
    gs = 1.6 * a_mol / (ca * (1.0 - _CI_CA_RATIO)) if ca > 0 else 0.0

    return PhotosynthesisResult(float(gpp), float(resp), float(gs))
