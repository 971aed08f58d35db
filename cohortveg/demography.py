"""Annual demography engine: an ordered pipeline of stages on the Tile.

Stages (ANNUAL_STAGES, executed in this order by annual_demography):
  1. starvation:   cull cohorts whose NSC stayed exhausted too long
  2. mortality:    size/layer/stress-dependent thinning of nindivs
  3. reproduction: seed reserves → new cohorts (sees post-mortality counts)
  4. maintenance:  prune (+ old grass) → relayer → merge → population bound
                  → relayer, then compact the arena

Each stage takes the Tile (mutated in place under exclusive ownership), the
PFT table, configuration and the tile's random stream, and records its
outcome in a shared DemographyReport. The random stream is consumed in a fixed
order: one normal draw per live cohort in mortality (ascending id), then one
uniform draw per eligible parent in reproduction (ascending id).

References:
  - Weng et al. 2015, Biogeosciences 12:2655
  - Purves et al. 2008, PNAS 105:17018 (layer-dependent mortality)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

import numpy as np

from cohortveg.cohorts import (
    enforce_nonnegative,
    enforce_population_bound,
    kill_old_grass,
    merge,
    prune,
    relayer,
    reproduce,
)
from cohortveg.config import SimulationConfig
from cohortveg.pft import PFTTable
from cohortveg.tile import Tile
from cohortveg.types import BIOMASS_POOLS, DAYS_PER_YEAR, RemovalCause

logger = logging.getLogger(__name__)


@dataclass
class DemographyReport:
    """What the annual pipeline did to the population."""
    starved: List[int] = field(default_factory=list)       # removed ids
    deaths: float = 0.0                                    # individuals m-2
    died_out: List[int] = field(default_factory=list)      # ids with no survivors
    recruits: List[int] = field(default_factory=list)      # new ids
    pruned: List[int] = field(default_factory=list)
    old_grass: List[int] = field(default_factory=list)
    merges: int = 0
    overflow_removals: int = 0
    n_layers: int = 0
    n_cohorts: int = 0


# ═══════════════════════════════════════════════════════════════════════
# STAGES
# ═══════════════════════════════════════════════════════════════════════

def starvation_culling(tile: Tile, table: PFTTable, config: SimulationConfig,
                       rng: np.random.Generator, report: DemographyReport) -> None:
    """Remove cohorts whose NSC was exhausted for starvation_days in a row.

    Any run during the year counts, not only one still going at year end.
    """
    c = tile.cohorts
    live = tile.live_slots()
    starving = live[c['nsc_low_max'][live] >= config.cohorts.starvation_days]
    for slot in starving:
        report.starved.append(int(c['id'][slot]))
        tile.remove_cohort(int(slot), RemovalCause.STARVATION)
    if report.starved:
        logger.info("Starvation removed cohorts %s", report.starved)


def mortality_probability(tile: Tile, slot: int, table: PFTTable) -> float:
    """Unperturbed annual death probability of one individual."""
    c = tile.cohorts
    p = table[c['pft'][slot]]
    base = p.mortrate_canopy if c['layer'][slot] == 0 else p.mortrate_understory
    size = p.mort_size_a * float(c['dbh'][slot]) ** p.mort_size_b
    stress = p.stress_mortality * float(c['stress_days'][slot]) / DAYS_PER_YEAR
    return base + size + stress


def natural_mortality(tile: Tile, table: PFTTable, config: SimulationConfig,
                      rng: np.random.Generator, report: DemographyReport) -> None:
    """Thin every cohort: nindivs *= 1 - p, dead carbon to litter.

    p is perturbed by a multiplicative normal(1, mortality_noise) draw; one
    draw is consumed per cohort even when the noise is zero so the stream
    position does not depend on parameters. Cohorts with no survivors are
    removed.
    """
    c = tile.cohorts
    live = tile.live_slots()
    for slot in live[np.argsort(c['id'][live], kind='stable')]:
        p = table[c['pft'][slot]]
        noise = rng.normal(1.0, p.mortality_noise)
        prob = float(np.clip(mortality_probability(tile, int(slot), table) * noise, 0.0, 1.0))
        n = float(c['nindivs'][slot])
        dead = n * prob
        if dead <= 0.0:
            continue
        for pool in BIOMASS_POOLS:
            tile.add_litter(pool, dead * max(float(c[pool][slot]), 0.0))
        report.deaths += dead
        c['nindivs'][slot] = n - dead
        if c['nindivs'][slot] <= 0.0:
            report.died_out.append(int(c['id'][slot]))
            c['nindivs'][slot] = 0.0
            tile.remove_cohort(int(slot), RemovalCause.MORTALITY)


def reproduction(tile: Tile, table: PFTTable, config: SimulationConfig,
                 rng: np.random.Generator, report: DemographyReport) -> None:
    report.recruits.extend(reproduce(tile, table, config.cohorts, rng))


def population_maintenance(tile: Tile, table: PFTTable, config: SimulationConfig,
                           rng: np.random.Generator, report: DemographyReport) -> None:
    """Prune → relayer → merge → bound → relayer, then compact the arena."""
    cfg = config.cohorts
    enforce_nonnegative(tile)
    report.pruned.extend(prune(tile, cfg.prune_min_density))
    report.old_grass.extend(kill_old_grass(tile, table))
    relayer(tile, table, cfg)
    report.merges += merge(tile, table, cfg.merge_tolerance)
    merged, removed = enforce_population_bound(tile, table, cfg.max_cohorts)
    report.merges += merged
    report.overflow_removals += removed
    tile.compact()
    report.n_layers = relayer(tile, table, cfg)
    report.n_cohorts = tile.n_cohorts


StageFn = Callable[[Tile, PFTTable, SimulationConfig, np.random.Generator, DemographyReport], None]

ANNUAL_STAGES: Tuple[Tuple[str, StageFn], ...] = (
    ('starvation', starvation_culling),
    ('mortality', natural_mortality),
    ('reproduction', reproduction),
    ('maintenance', population_maintenance),
)


def annual_demography(
    tile: Tile,
    table: PFTTable,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> DemographyReport:
    """Run the annual pipeline on the tile.

    Returns:
        DemographyReport with per-stage outcomes.
    """
    report = DemographyReport()
    n_before = tile.n_cohorts
    for _name, stage in ANNUAL_STAGES:
        stage(tile, table, config, rng, report)
    logger.info(
        "Demography: %d → %d cohorts (starved %d, recruits %d, pruned %d, merges %d)",
        n_before, report.n_cohorts, len(report.starved), len(report.recruits),
        len(report.pruned), report.merges,
    )
    return report
