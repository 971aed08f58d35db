"""Cohort population management: the only code that changes cohort count.

Operations on the Tile's cohort arena:
  - initialize_cohorts: seed the population from configuration
  - relayer: rank by height and assign canopy layers (perfect plasticity)
  - merge: absorb near-identical cohorts of the same PFT and layer
  - enforce_population_bound: last-resort merge/removal down to max_cohorts
  - prune / kill_old_grass: remove cohorts to litter
  - reproduce: turn seed reserves into new cohorts
  - enforce_nonnegative: clamp floating-point drift below zero

Merges and removals keep the tile's carbon balance closed: merged pools are
individual-weighted so that nindivs × pool sums are unchanged, and every
removed kilogram of carbon is added to the tile's litter sinks.

References:
  - Strigul et al. 2008, Ecological Monographs 78:523 (PPA canopy layering)
  - Weng et al. 2015, Biogeosciences 12:2655 (cohort merging in LM3-PPA)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from cohortveg.config import CohortSection, InitialCohort
from cohortveg.pft import PFTTable, update_allometry
from cohortveg.tile import Tile
from cohortveg.types import (
    ANNUAL_FLUX_FIELDS,
    BIOMASS_POOLS,
    DAILY_FLUX_FIELDS,
    PhenoStatus,
    RemovalCause,
)

logger = logging.getLogger(__name__)

# Per-individual quantities that are individual-weighted on merge
_WEIGHTED_FIELDS = BIOMASS_POOLS + ('age', 'gdd') + DAILY_FLUX_FIELDS + ANNUAL_FLUX_FIELDS

# Discrete state taken from the cohort with more individuals
_DOMINANT_FIELDS = ('status', 'last_switch_day', 'nsc_low_days', 'nsc_low_max', 'stress_days')


# ═══════════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════

def initialize_cohorts(
    tile: Tile,
    initial: Sequence[InitialCohort],
    table: PFTTable,
) -> List[int]:
    """Add the configured starting cohorts to an empty tile.

    Evergreen cohorts and cohorts that start with leaves are Active; the
    rest start Dormant and leaf out through phenology.

    Raises:
        MissingPFTError: If an initial cohort references an unknown PFT.

    Returns:
        Ids of the created cohorts, in configuration order.
    """
    table.require(ic.pft for ic in initial)
    ids = []
    for ic in initial:
        p = table[ic.pft]
        active = p.is_evergreen or ic.bl > 0
        ids.append(tile.add_cohort(
            pft=ic.pft,
            nindivs=ic.nindivs,
            pools={pool: getattr(ic, pool) for pool in BIOMASS_POOLS},
            age=ic.age,
            status=PhenoStatus.ACTIVE if active else PhenoStatus.DORMANT,
        ))
    update_allometry(tile.cohorts, tile.live_slots(), table)
    logger.info("Initialized %d cohorts", len(ids))
    return ids


# ═══════════════════════════════════════════════════════════════════════
# CANOPY LAYERING
# ═══════════════════════════════════════════════════════════════════════

def canopy_ranking(tile: Tile) -> np.ndarray:
    """Live slots ordered by height desc, crown area desc, id asc."""
    live = tile.live_slots()
    c = tile.cohorts
    keys = (c['id'][live], -c['crownarea'][live], -c['height'][live])
    return live[np.lexsort(keys)]


def relayer(tile: Tile, table: PFTTable, cfg: CohortSection) -> int:
    """Assign canopy layers from the height ranking.

    Cohorts fill layers top-down; a layer holds `canopy_layer_fraction` m2 of
    crown per m2 of ground. A cohort that does not fit in a partially filled
    layer starts the next layer (cohorts are never split). Also rebuilds
    tile.canopy_order and tile.layer_light (Beer–Lambert attenuation by the
    leaf area of all layers above).

    Returns:
        Number of canopy layers in use.
    """
    order = canopy_ranking(tile)
    tile.canopy_order = order
    if len(order) == 0:
        tile.layer_light = np.ones(1)
        return 0

    c = tile.cohorts
    capacity = cfg.canopy_layer_fraction
    cover = c['crownarea'] * c['nindivs']
    layer = 0
    used = 0.0
    for slot in order:
        a = max(float(cover[slot]), 0.0)
        if used > 0.0 and used + a > capacity * (1.0 + 1e-12):
            layer += 1
            used = 0.0
        c['layer'][slot] = layer
        used += a

    n_layers = layer + 1
    lai = np.zeros(n_layers)
    for slot in order:
        p = table[c['pft'][slot]]
        lai[c['layer'][slot]] += c['bl'][slot] * c['nindivs'][slot] / p.lma / capacity
    lai_above = np.concatenate([[0.0], np.cumsum(lai)[:-1]])
    tile.layer_light = np.exp(-cfg.extinction_k * lai_above)
    return n_layers


def light_fraction(tile: Tile, layer: int) -> float:
    """Fraction of above-canopy PAR reaching a canopy layer."""
    idx = min(int(layer), len(tile.layer_light) - 1)
    return float(tile.layer_light[idx])


# ═══════════════════════════════════════════════════════════════════════
# MERGING
# ═══════════════════════════════════════════════════════════════════════

def _relative_difference(a: float, b: float) -> float:
    top = max(abs(a), abs(b))
    return abs(a - b) / top if top > 0 else 0.0


def cohort_distance(cohorts: np.ndarray, i: int, j: int) -> float:
    """Largest relative difference in per-individual biomass and height."""
    bio_i = sum(float(cohorts[pool][i]) for pool in BIOMASS_POOLS)
    bio_j = sum(float(cohorts[pool][j]) for pool in BIOMASS_POOLS)
    return max(
        _relative_difference(bio_i, bio_j),
        _relative_difference(float(cohorts['height'][i]), float(cohorts['height'][j])),
    )


def absorb(tile: Tile, keep: int, gone: int, table: PFTTable) -> None:
    """Merge cohort in slot `gone` into slot `keep`.

    nindivs sums; per-individual quantities are individual-weighted so that
    every nindivs × pool total is conserved. `keep` retains its id.
    """
    c = tile.cohorts
    n_keep = float(c['nindivs'][keep])
    n_gone = float(c['nindivs'][gone])
    n_total = n_keep + n_gone
    if n_total > 0:
        w_keep, w_gone = n_keep / n_total, n_gone / n_total
    else:
        w_keep = w_gone = 0.5
    for name in _WEIGHTED_FIELDS:
        c[name][keep] = w_keep * c[name][keep] + w_gone * c[name][gone]
    if n_gone > n_keep:
        for name in _DOMINANT_FIELDS:
            c[name][keep] = c[name][gone]
    c['nindivs'][keep] = n_total
    tile.remove_cohort(gone, RemovalCause.MERGED)
    update_allometry(c, np.array([keep]), table)


def merge(tile: Tile, table: PFTTable, tolerance: float) -> int:
    """Combine same-PFT, same-layer cohorts closer than `tolerance`.

    Greedy in canopy order: each surviving cohort absorbs every later cohort
    of its PFT and layer whose per-individual biomass and height differ from
    its own (current, post-absorption) values by less than `tolerance`.

    Returns:
        Number of merges performed.
    """
    c = tile.cohorts
    order = [int(s) for s in tile.canopy_order if c['alive'][s]]
    if len(order) != tile.n_cohorts:
        order = [int(s) for s in canopy_ranking(tile)]
    n_merged = 0
    for pos, keep in enumerate(order):
        if not c['alive'][keep]:
            continue
        for other in order[pos + 1:]:
            if not c['alive'][other]:
                continue
            if c['pft'][other] != c['pft'][keep] or c['layer'][other] != c['layer'][keep]:
                continue
            if cohort_distance(c, keep, other) < tolerance:
                absorb(tile, keep, other, table)
                n_merged += 1
    if n_merged:
        logger.debug("Merged %d cohorts, %d remain", n_merged, tile.n_cohorts)
    return n_merged


def _closest_pair(tile: Tile) -> Optional[Tuple[int, int]]:
    c = tile.cohorts
    order = [int(s) for s in canopy_ranking(tile)]
    best = None
    best_d = np.inf
    for a, i in enumerate(order):
        for j in order[a + 1:]:
            if c['pft'][i] != c['pft'][j]:
                continue
            d = cohort_distance(c, i, j)
            if d < best_d:
                best, best_d = (i, j), d
    return best


def enforce_population_bound(tile: Tile, table: PFTTable, max_cohorts: int) -> Tuple[int, int]:
    """Reduce the live population to at most `max_cohorts`.

    First merges the most similar same-PFT pair (any layer), repeatedly.
    When no same-PFT pair is left, the cohort with the least carbon is
    removed to litter and the overflow counter is incremented; reaching that
    branch means the PFT mix cannot fit the bound.

    Returns:
        (merges, removals)
    """
    merged = removed = 0
    while tile.n_cohorts > max_cohorts:
        pair = _closest_pair(tile)
        if pair is not None:
            absorb(tile, pair[0], pair[1], table)
            merged += 1
            continue
        live = tile.live_slots()
        c = tile.cohorts
        carbon = c['nindivs'][live] * sum(c[pool][live] for pool in BIOMASS_POOLS)
        smallest = int(live[np.argmin(carbon)])
        logger.warning(
            "Population bound exceeded with no mergeable pair: removing cohort %d "
            "(%d live, max_cohorts=%d)",
            int(c['id'][smallest]), tile.n_cohorts, max_cohorts,
        )
        tile.remove_cohort(smallest, RemovalCause.OVERFLOW)
        tile.anomalies.population_overflow += 1
        removed += 1
    return merged, removed


# ═══════════════════════════════════════════════════════════════════════
# REMOVAL
# ═══════════════════════════════════════════════════════════════════════

def prune(tile: Tile, min_density: float) -> List[int]:
    """Remove cohorts with nindivs below `min_density`; carbon to litter.

    Returns:
        Ids of the removed cohorts.
    """
    c = tile.cohorts
    live = tile.live_slots()
    sparse = live[c['nindivs'][live] < min_density]
    removed = [int(c['id'][s]) for s in sparse]
    for slot in sparse:
        tile.remove_cohort(int(slot), RemovalCause.PRUNED)
    if removed:
        logger.debug("Pruned %d cohorts below density %g", len(removed), min_density)
    return removed


def kill_old_grass(tile: Tile, table: PFTTable) -> List[int]:
    """Remove grass cohorts past their PFT max_age.

    A senescent cohort is only removed when a younger cohort of the same PFT
    survives to replace it.
    """
    c = tile.cohorts
    live = tile.live_slots()
    removed = []
    for pft_id in np.unique(c['pft'][live]):
        p = table[pft_id]
        if not p.is_grass or not np.isfinite(p.max_age):
            continue
        members = live[c['pft'][live] == pft_id]
        old = members[c['age'][members] > p.max_age]
        if len(old) and len(old) < len(members):
            for slot in old:
                removed.append(int(c['id'][slot]))
                tile.remove_cohort(int(slot), RemovalCause.OLD_GRASS)
    return removed


def enforce_nonnegative(tile: Tile) -> int:
    """Clamp negative pools and densities of live cohorts to zero.

    Returns:
        Number of clamped values.
    """
    c = tile.cohorts
    live = tile.live_slots()
    n_clamped = 0
    for pool in BIOMASS_POOLS:
        neg = live[c[pool][live] < 0]
        if len(neg):
            c[pool][neg] = 0.0
            n_clamped += len(neg)
            tile.anomalies.negative_pool_clamps += len(neg)
    neg = live[c['nindivs'][live] < 0]
    if len(neg):
        c['nindivs'][neg] = 0.0
        n_clamped += len(neg)
        tile.anomalies.negative_density_clamps += len(neg)
    if n_clamped:
        logger.warning("Clamped %d negative cohort values to zero", n_clamped)
    return n_clamped


# ═══════════════════════════════════════════════════════════════════════
# REPRODUCTION
# ═══════════════════════════════════════════════════════════════════════

def safe_establishment_area(tile: Tile, cfg: CohortSection) -> float:
    """Fraction of the tile's canopy space still open to seedlings."""
    space = cfg.canopy_layer_fraction * cfg.max_canopy_layers
    return float(np.clip(1.0 - tile.total_crown_cover() / space, 0.0, 1.0))


def reproduce(
    tile: Tile,
    table: PFTTable,
    cfg: CohortSection,
    rng: np.random.Generator,
) -> List[int]:
    """Convert parent seed reserves into new cohorts.

    For each parent (ascending id) whose per-individual seed reserve exceeds
    its PFT seed_threshold, all seed carbon leaves the parent. A fraction
    germination_efficiency germinates; one uniform draw against
    prob_germination × safe_establishment_area decides whether the seedlings
    establish as a new cohort. Non-germinated seed, and all seed of a failed
    draw, go to the seedc litter pool. Seedlings produced this year do not
    reproduce.

    Returns:
        Ids of new cohorts, in creation order.
    """
    c = tile.cohorts
    live = tile.live_slots()
    parents = live[np.argsort(c['id'][live], kind='stable')]
    open_area = safe_establishment_area(tile, cfg)
    new_ids: List[int] = []
    for slot in parents:
        c = tile.cohorts
        p = table[c['pft'][slot]]
        if c['seedc'][slot] <= p.seed_threshold:
            continue
        seed_total = float(c['seedc'][slot] * c['nindivs'][slot])
        c['seedc'][slot] = 0.0
        germinated = seed_total * p.germination_efficiency
        established = rng.random() < p.prob_germination * open_area
        if not established or germinated <= 0.0:
            tile.add_litter('seedc', seed_total)
            continue
        tile.add_litter('seedc', seed_total - germinated)
        m = p.seedling_mass
        f_bl, f_br, f_bsw, f_nsc = p.seedling_partition
        new_id = tile.add_cohort(
            pft=p.id,
            nindivs=germinated / m,
            pools={'bl': m * f_bl, 'br': m * f_br, 'bsw': m * f_bsw, 'nsc': m * f_nsc},
            status=PhenoStatus.ACTIVE if p.is_evergreen else PhenoStatus.DORMANT,
        )
        update_allometry(tile.cohorts, np.array([tile.slot_of(new_id)]), table)
        new_ids.append(new_id)
    if new_ids:
        logger.debug("Reproduction created %d cohorts", len(new_ids))
    return new_ids
