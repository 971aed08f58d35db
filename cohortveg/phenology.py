"""Daily phenology and growth.

Phenology is a two-state machine per cohort:

    DORMANT ──(gdd > gdd_crit and no leaf-off condition)──▶ ACTIVE
    ACTIVE  ──(tc < tc_crit_off or daylength < daylength_crit_off)──▶ DORMANT

Growing degree days accumulate only while dormant and reset at leaf-off. A
cohort changes status at most once per simulated day (last_switch_day).
Evergreen cohorts are always Active. At leaf-off a deciduous cohort sheds its
leaves and fine roots: the leaf_retranslocation fraction returns to NSC, the
rest becomes litter.

Growth converts NSC into tissue while Active:
    G = min(nsc_growth_fraction × NSC, nsc_growth_ceiling, NSC)
with growth respiration growth_resp_frac × G, a seed share once the cohort
reaches maturity height, leaf and root fill up to their allometric targets,
and the remainder to sapwood. Tissue turnover runs every day.

Once a year, when growth.update_annual_lai_max is set, the tile's per-PFT
LAI ceiling is reset from the year's light and water state; leaf and root
targets read that ceiling.

Neither function changes the number of cohorts.

References:
  - Weng et al. 2015, Biogeosciences 12:2655 (allocation in LM3-PPA)
  - Murray et al. 1989, J. Appl. Ecol. 26:693 (GDD budburst models)
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Tuple

import numpy as np

from cohortveg.cohorts import light_fraction
from cohortveg.config import SimulationConfig
from cohortveg.pft import PFTTable, leaf_max, root_max, update_allometry
from cohortveg.tile import Tile
from cohortveg.types import DAYS_PER_YEAR, PhenoStatus

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# PHENOLOGY
# ═══════════════════════════════════════════════════════════════════════

def leaf_off(tile: Tile, slot: int, retranslocation: float) -> float:
    """Shed leaves and fine roots of one cohort.

    Returns:
        Carbon moved to litter (kgC m-2).
    """
    c = tile.cohorts
    n = float(c['nindivs'][slot])
    to_litter = 0.0
    for pool in ('bl', 'br'):
        mass = float(c[pool][slot])
        kept = retranslocation * mass
        c['nsc'][slot] += kept
        tile.add_litter(pool, (mass - kept) * n)
        to_litter += (mass - kept) * n
        c[pool][slot] = 0.0
    return to_litter


def daily_phenology(tile: Tile, table: PFTTable, daylength: float) -> Tuple[int, int]:
    """Advance each cohort's phenological state machine by one day.

    Uses tile.tc_daily as the day's canopy temperature and tile.day_index as
    the day stamp.

    Args:
        tile: Tile (mutated in place).
        table: PFT parameter table.
        daylength: Hours of daylight.

    Returns:
        (leaf-on transitions, leaf-off transitions)
    """
    c = tile.cohorts
    tc = tile.tc_daily
    today = tile.day_index
    n_on = n_off = 0
    for slot in tile.live_slots():
        p = table[c['pft'][slot]]
        if p.is_evergreen:
            c['status'][slot] = PhenoStatus.ACTIVE
            continue
        if c['last_switch_day'][slot] == today:
            continue
        off_condition = tc < p.tc_crit_off or daylength < p.daylength_crit_off
        if c['status'][slot] == PhenoStatus.DORMANT:
            c['gdd'][slot] += max(0.0, tc - p.gdd_base)
            if c['gdd'][slot] > p.gdd_crit and not off_condition:
                c['status'][slot] = PhenoStatus.ACTIVE
                c['last_switch_day'][slot] = today
                n_on += 1
        elif off_condition:
            leaf_off(tile, int(slot), p.leaf_retranslocation)
            c['status'][slot] = PhenoStatus.DORMANT
            c['gdd'][slot] = 0.0
            c['last_switch_day'][slot] = today
            n_off += 1
    if n_on or n_off:
        logger.debug("Day %d: %d leaf-on, %d leaf-off", today, n_on, n_off)
    return n_on, n_off


# ═══════════════════════════════════════════════════════════════════════
# GROWTH & TURNOVER
# ═══════════════════════════════════════════════════════════════════════

def daily_growth(tile: Tile, table: PFTTable, config: SimulationConfig) -> float:
    """Allocate NSC to tissues, apply turnover, and update stress counters.

    Returns:
        Tile-level growth respiration for the day (kgC m-2).
    """
    g = config.growth
    c = tile.cohorts
    live = tile.live_slots()
    total_growth_resp = 0.0
    for slot in live:
        p = table[c['pft'][slot]]
        n = float(c['nindivs'][slot])

        if c['status'][slot] == PhenoStatus.ACTIVE:
            nsc = float(c['nsc'][slot])
            growth = min(g.nsc_growth_fraction * nsc, g.nsc_growth_ceiling, nsc)
            growth = max(growth, 0.0)
            growth_resp = p.growth_resp_frac * growth
            avail = growth - growth_resp
            c['nsc'][slot] = nsc - growth
            c['resp_day'][slot] += growth_resp
            c['npp_day'][slot] -= growth_resp
            total_growth_resp += growth_resp * n

            if c['height'][slot] >= p.maturity_height:
                seed = p.seed_fraction * avail
                c['seedc'][slot] += seed
                avail -= seed

            crown = c['crownarea'][slot]
            lai = tile.pft_lai_max(p)
            to_leaf = min(p.alloc_leaf * avail, max(float(leaf_max(crown, p, lai)) - c['bl'][slot], 0.0))
            to_root = min(p.alloc_root * avail, max(float(root_max(crown, p, lai)) - c['br'][slot], 0.0))
            c['bl'][slot] += to_leaf
            c['br'][slot] += to_root
            c['bsw'][slot] += avail - to_leaf - to_root

        # Turnover
        if p.is_evergreen:
            shed = c['bl'][slot] / (p.leaf_longevity * DAYS_PER_YEAR)
            c['bl'][slot] -= shed
            tile.add_litter('bl', shed * n)
        shed = c['br'][slot] / (p.root_longevity * DAYS_PER_YEAR)
        c['br'][slot] -= shed
        tile.add_litter('br', shed * n)
        heartwood = c['bsw'][slot] * p.sapwood_turnover / DAYS_PER_YEAR
        c['bsw'][slot] -= heartwood
        c['bhw'][slot] += heartwood

        c['age'][slot] += 1.0 / DAYS_PER_YEAR
        if c['nsc'][slot] <= 0.0:
            c['nsc_low_days'][slot] += 1
            c['nsc_low_max'][slot] = max(c['nsc_low_max'][slot], c['nsc_low_days'][slot])
        else:
            c['nsc_low_days'][slot] = 0
        if c['deficit_day'][slot] > 0.0:
            c['stress_days'][slot] += 1

    tile.day_fluxes.resp += total_growth_resp
    tile.day_fluxes.npp -= total_growth_resp
    update_allometry(c, live, table)
    return total_growth_resp


def daily_update(tile: Tile, table: PFTTable, config: SimulationConfig,
                 daylength: float) -> None:
    """Phenology then growth, in that order."""
    daily_phenology(tile, table, daylength)
    daily_growth(tile, table, config)


# ═══════════════════════════════════════════════════════════════════════
# ANNUAL LEAF-AREA CEILING
# ═══════════════════════════════════════════════════════════════════════

def annual_lai_max_update(tile: Tile, table: PFTTable, config: SimulationConfig) -> Dict[int, float]:
    """Reset each present PFT's LAI ceiling from the year's light and water.

    Light: leaves below the PFT's highest cohort are kept down to the
    light-compensation point,
        lai_light = ln(f_top / light_compensation) / extinction_k
    where f_top is the light fraction reaching that cohort's layer.
    Water: lai_water = lai_max × year-mean root-zone wetness index.

    The new ceiling is min(lai_max, lai_light, lai_water) raised to
    growth.lai_max_floor, and never above the PFT's own lai_max. It is held
    on the tile; the PFT table is not modified. PFTs without live cohorts
    keep their previous value.

    Returns:
        Updated ceilings by PFT id.
    """
    g = config.growth
    k = config.cohorts.extinction_k
    c = tile.cohorts
    live = tile.live_slots()
    water = tile.year_fluxes.theta_mean
    if not math.isfinite(water):
        water = tile.theta
    updated: Dict[int, float] = {}
    for pft_id in np.unique(c['pft'][live]):
        p = table[pft_id]
        members = live[c['pft'][live] == pft_id]
        f_top = light_fraction(tile, int(c['layer'][members].min()))
        if k <= 0.0:
            lai_light = math.inf
        else:
            lai_light = max(math.log(max(f_top, 1e-12) / g.light_compensation) / k, 0.0)
        lai_water = p.lai_max * water
        ceiling = min(max(min(p.lai_max, lai_light, lai_water), g.lai_max_floor), p.lai_max)
        tile.lai_max[int(pft_id)] = ceiling
        updated[int(pft_id)] = ceiling
    if updated:
        logger.debug("Annual LAI ceilings: %s", updated)
    return updated
