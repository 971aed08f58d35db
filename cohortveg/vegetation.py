"""Fast-step budget updater: one sub-daily step of carbon and water.

Per live cohort:
  1. Light fraction from the cohort's canopy layer, water stress from the
     tile's root-zone wetness
  2. Photosynthesis collaborator → GPP and leaf respiration
  3. Root and sapwood maintenance respiration (Q10 on soil/air temperature)
  4. NSC += GPP − respiration, floored at 0 (the unmet part is a deficit)
  5. Transpiration demand from GPP, VPD and water-use efficiency

Then the water-balance collaborator runs once for the whole tile with the
summed demand, and each cohort receives realized transpiration in proportion
to its demand.

The step never changes cohort count or layering. A non-finite collaborator
result is treated as zero carbon gain for that cohort and step, counted in
the tile's anomaly counters, and logged.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from cohortveg.cohorts import light_fraction
from cohortveg.config import SimulationConfig
from cohortveg.pft import PFTParams, PFTTable
from cohortveg.photosynthesis import (
    LeafEnvironment,
    PhotosynthesisFn,
    light_use_efficiency,
    q10_factor,
)
from cohortveg.soil import WaterBalanceFn, bucket_water_balance, wetness_index
from cohortveg.tile import FluxAccumulator, Tile
from cohortveg.types import DAYS_PER_YEAR, SECONDS_PER_DAY, ClimateRecord

logger = logging.getLogger(__name__)

_SECONDS_PER_YEAR = DAYS_PER_YEAR * SECONDS_PER_DAY


def maintenance_respiration(
    br: float,
    bsw: float,
    tsoil: float,
    tair: float,
    p: PFTParams,
    dt_seconds: float,
) -> float:
    """Fine-root (soil temperature) plus sapwood (air temperature) respiration.

    Returns:
        kgC per individual for the step.
    """
    annual = p.r_root * br * q10_factor(tsoil, p.q10) + p.r_sapwood * bsw * q10_factor(tair, p.q10)
    return annual * dt_seconds / _SECONDS_PER_YEAR


def fast_step(
    tile: Tile,
    record: ClimateRecord,
    tsoil: float,
    table: PFTTable,
    config: SimulationConfig,
    photosynthesis: PhotosynthesisFn = light_use_efficiency,
    water_balance: WaterBalanceFn = bucket_water_balance,
) -> FluxAccumulator:
    """Advance every live cohort and the tile's soil by one sub-daily step.

    Args:
        tile: Tile (mutated in place).
        record: Forcing for this step.
        tsoil: Soil temperature for the day (°C).
        table: PFT parameter table.
        config: Simulation configuration.
        photosynthesis: Photosynthesis collaborator.
        water_balance: Water-balance collaborator.

    Returns:
        Tile-level fluxes for this step (per m2 ground); also added to the
        tile's day accumulator.
    """
    dt = SECONDS_PER_DAY / config.simulation.steps_per_day
    c = tile.cohorts
    live = tile.live_slots()
    step = FluxAccumulator(precip=record.precip, tair_sum=record.tair, n_steps=1)
    demand = np.zeros(len(live))

    for k, slot in enumerate(live):
        p = table[c['pft'][slot]]
        leaf = LeafEnvironment(
            leaf_mass=float(c['bl'][slot]),
            crown_area=float(c['crownarea'][slot]),
            status=int(c['status'][slot]),
            light_fraction=light_fraction(tile, c['layer'][slot]),
            water_stress=tile.theta,
            extinction_k=config.cohorts.extinction_k,
        )
        result = photosynthesis(leaf, record, p, dt)
        gpp, leaf_resp = result.gpp, result.resp
        if not (math.isfinite(gpp) and math.isfinite(leaf_resp)):
            tile.anomalies.nonfinite_assimilation += 1
            step.nonfinite += 1
            gpp = leaf_resp = 0.0

        resp = leaf_resp + maintenance_respiration(
            float(c['br'][slot]), float(c['bsw'][slot]), tsoil, record.tair, p, dt,
        )
        nsc = float(c['nsc'][slot]) + gpp - resp
        if nsc < 0.0:
            c['deficit_day'][slot] += -nsc
            nsc = 0.0
        c['nsc'][slot] = nsc

        c['gpp_day'][slot] += gpp
        c['resp_day'][slot] += resp
        c['npp_day'][slot] += gpp - resp
        if gpp > 0.0 and record.vpd > 0.0:
            demand[k] = gpp * record.vpd / p.wue

        n = float(c['nindivs'][slot])
        step.gpp += gpp * n
        step.resp += resp * n
        step.npp += (gpp - resp) * n

    if step.nonfinite:
        logger.warning(
            "Non-finite assimilation for %d cohorts at %d-%03d %05.2fh; "
            "treated as zero gain",
            step.nonfinite, record.year, record.doy, record.hour,
        )

    demand_mm = float(np.sum(demand * c['nindivs'][live]))
    wb = water_balance(tile.wcl, demand_mm, record, tile.tsoil_step, config.soil, dt)
    tile.wcl = np.asarray(wb.wcl, dtype=np.float64)
    tile.tsoil_step = float(wb.tsoil)
    tile.theta = wetness_index(tile.wcl, config.soil)
    step.theta_sum = tile.theta
    supply_ratio = wb.transp / demand_mm if demand_mm > 0 else 0.0
    if len(live):
        c['transp_day'][live] += demand * supply_ratio

    step.transp = float(wb.transp)
    step.runoff = float(wb.runoff)
    tile.day_fluxes.add(step)
    return step
