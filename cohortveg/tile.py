"""Tile: the site-level aggregate owning soil state and the cohort population.

Cohorts live in an arena (a COHORT_DTYPE structured array with an `alive`
flag). A cohort is addressed by its slot index inside the engine and by its
`id` token from the outside. The canopy order is a separate derived index
(slot indices sorted by the height ranking), rebuilt by cohorts.relayer().

Only the population-management functions in cohorts.py and demography.py
call add_cohort() / remove_cohort(); every other component mutates fields of
existing rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, Mapping

import numpy as np

from cohortveg.config import SoilSection
from cohortveg.pft import PFTParams
from cohortveg.types import (
    ANNUAL_FLUX_FIELDS,
    BIOMASS_POOLS,
    DAILY_FLUX_FIELDS,
    PhenoStatus,
    RemovalCause,
    allocate_cohorts,
)


# ═══════════════════════════════════════════════════════════════════════
# ACCUMULATORS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class FluxAccumulator:
    """Tile-level flux sums (per m2 ground) over one resolution window."""
    gpp: float = 0.0        # kgC m-2
    npp: float = 0.0
    resp: float = 0.0
    transp: float = 0.0     # mm
    precip: float = 0.0     # mm
    runoff: float = 0.0     # mm
    tair_sum: float = 0.0   # °C × steps
    theta_sum: float = 0.0  # wetness index × steps
    n_steps: int = 0
    nonfinite: int = 0

    def add(self, other: "FluxAccumulator") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, type(getattr(self, f.name))(0))

    @property
    def tair_mean(self) -> float:
        return self.tair_sum / self.n_steps if self.n_steps else float('nan')

    @property
    def theta_mean(self) -> float:
        return self.theta_sum / self.n_steps if self.n_steps else float('nan')


@dataclass
class AnomalyCounters:
    """Recoverable numeric anomalies and clamped invariant violations."""
    nonfinite_assimilation: int = 0
    negative_pool_clamps: int = 0
    negative_density_clamps: int = 0
    population_overflow: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def total(self) -> int:
        return sum(self.as_dict().values())


def _zero_litter() -> Dict[str, float]:
    return {pool: 0.0 for pool in BIOMASS_POOLS}


def _zero_removals() -> Dict[str, int]:
    return {cause.name.lower(): 0 for cause in RemovalCause}


# ═══════════════════════════════════════════════════════════════════════
# TILE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Tile:
    """Aggregate root: cohort arena + soil/canopy state + accumulators."""
    cohorts: np.ndarray
    wcl: np.ndarray                        # volumetric water content per soil layer
    layer_thickness: np.ndarray            # m
    tsoil: float = 10.0                    # daily soil temperature, °C
    theta: float = 1.0                     # root-zone wetness index (0 = wilting, 1 = field capacity)
    tc_daily: float = 0.0                  # daily mean canopy (air) temperature, °C
    tsoil_step: float = 10.0               # sub-daily soil temperature from the water balance, °C
    next_id: int = 1
    day_index: int = 0                     # absolute simulated day (0-based)
    lai_max: Dict[int, float] = field(default_factory=dict)   # PFT id -> annually updated LAI ceiling
    canopy_order: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    layer_light: np.ndarray = field(default_factory=lambda: np.ones(1))
    litter: Dict[str, float] = field(default_factory=_zero_litter)   # kgC m-2, current year
    removals: Dict[str, int] = field(default_factory=_zero_removals) # cohorts removed, current year
    anomalies: AnomalyCounters = field(default_factory=AnomalyCounters)
    day_fluxes: FluxAccumulator = field(default_factory=FluxAccumulator)
    month_fluxes: FluxAccumulator = field(default_factory=FluxAccumulator)
    year_fluxes: FluxAccumulator = field(default_factory=FluxAccumulator)

    # ── Population views ─────────────────────────────────────────────

    def live_slots(self) -> np.ndarray:
        """Slot indices of live cohorts, in arena (insertion) order."""
        return np.flatnonzero(self.cohorts['alive'])

    @property
    def n_cohorts(self) -> int:
        return int(np.count_nonzero(self.cohorts['alive']))

    @property
    def capacity(self) -> int:
        return len(self.cohorts)

    def cohort_ids(self) -> np.ndarray:
        return self.cohorts['id'][self.live_slots()].copy()

    def slot_of(self, cohort_id: int) -> int:
        """Arena slot of a live cohort. Raises KeyError if absent."""
        hits = np.flatnonzero(self.cohorts['alive'] & (self.cohorts['id'] == cohort_id))
        if len(hits) == 0:
            raise KeyError(f"No live cohort with id {cohort_id}")
        return int(hits[0])

    def cohort(self, cohort_id: int) -> np.void:
        """Copy of one live cohort's record."""
        return self.cohorts[self.slot_of(cohort_id)].copy()

    def total_pools(self) -> Dict[str, float]:
        """Live carbon per pool, kgC m-2 (nindivs × per-individual pool)."""
        live = self.live_slots()
        n = self.cohorts['nindivs'][live]
        return {pool: float(np.sum(n * self.cohorts[pool][live])) for pool in BIOMASS_POOLS}

    def total_biomass(self) -> float:
        return sum(self.total_pools().values())

    def total_crown_cover(self) -> float:
        live = self.live_slots()
        return float(np.sum(self.cohorts['crownarea'][live] * self.cohorts['nindivs'][live]))

    def pft_lai_max(self, p: PFTParams) -> float:
        """LAI ceiling in effect for a PFT: its annual update if any, else the PFT value."""
        return self.lai_max.get(p.id, p.lai_max)

    # ── Shape changes (population management only) ──────────────────

    def add_cohort(
        self,
        pft: int,
        nindivs: float,
        pools: Mapping[str, float],
        age: float = 0.0,
        status: PhenoStatus = PhenoStatus.DORMANT,
        layer: int = 0,
    ) -> int:
        """Place a new cohort in a free slot and give it a fresh identity.

        The arena doubles in size when full. Allometry is not updated here.

        Returns:
            The new cohort's id.
        """
        free = np.flatnonzero(~self.cohorts['alive'])
        if len(free) == 0:
            old = self.capacity
            self.cohorts = np.concatenate([self.cohorts, allocate_cohorts(max(old, 8))])
            free = np.arange(old, self.capacity)
        slot = int(free[0])
        self.cohorts[slot] = np.zeros((), dtype=self.cohorts.dtype)
        row = self.cohorts[slot:slot + 1]
        cohort_id = self.next_id
        self.next_id += 1
        row['id'] = cohort_id
        row['pft'] = pft
        row['alive'] = True
        row['layer'] = layer
        row['status'] = int(status)
        row['nindivs'] = nindivs
        row['age'] = age
        row['last_switch_day'] = -1
        for pool in BIOMASS_POOLS:
            row[pool] = float(pools.get(pool, 0.0))
        return cohort_id

    def remove_cohort(self, slot: int, cause: RemovalCause) -> Dict[str, float]:
        """Take a cohort out of the live population.

        Its carbon goes to litter unless it was absorbed by a merge (the
        absorbing cohort already holds it).

        Returns:
            Carbon moved to litter per pool (kgC m-2).
        """
        row = self.cohorts[slot]
        moved = {pool: 0.0 for pool in BIOMASS_POOLS}
        if cause != RemovalCause.MERGED:
            n = max(float(row['nindivs']), 0.0)
            for pool in BIOMASS_POOLS:
                amount = n * max(float(row[pool]), 0.0)
                moved[pool] = amount
                self.litter[pool] += amount
        self.cohorts[slot] = np.zeros((), dtype=self.cohorts.dtype)
        self.removals[cause.name.lower()] += 1
        return moved

    def add_litter(self, pool: str, amount: float) -> None:
        self.litter[pool] += amount

    def compact(self) -> None:
        """Drop dead slots, keeping live cohorts in arena order.

        Canopy order is remapped onto the new slot numbers. Cohort ids are
        untouched.
        """
        live = self.live_slots()
        remap = -np.ones(self.capacity, dtype=np.int64)
        remap[live] = np.arange(len(live))
        new_capacity = max(len(live) * 2, 8)
        packed = allocate_cohorts(new_capacity)
        packed[:len(live)] = self.cohorts[live]
        self.cohorts = packed
        order = remap[self.canopy_order] if len(self.canopy_order) else self.canopy_order
        self.canopy_order = order[order >= 0]

    # ── Accumulator resets ──────────────────────────────────────────

    def reset_daily(self) -> None:
        for name in DAILY_FLUX_FIELDS:
            self.cohorts[name] = 0.0
        self.day_fluxes.reset()

    def reset_monthly(self) -> None:
        self.month_fluxes.reset()

    def reset_annual(self) -> None:
        for name in ANNUAL_FLUX_FIELDS:
            self.cohorts[name] = 0.0
        self.cohorts['stress_days'] = 0
        self.cohorts['nsc_low_max'] = 0
        self.year_fluxes.reset()
        self.litter = _zero_litter()
        self.removals = _zero_removals()


def create_tile(soil_cfg: SoilSection, capacity: int = 16) -> Tile:
    """Create an empty tile with initial soil state."""
    thickness = np.asarray(soil_cfg.layer_thickness, dtype=np.float64)
    wcl = np.full(len(thickness), soil_cfg.initial_wcl, dtype=np.float64)
    theta = (wcl[soil_cfg.root_layer] - soil_cfg.wilting_point) / (
        soil_cfg.field_capacity - soil_cfg.wilting_point
    )
    return Tile(
        cohorts=allocate_cohorts(capacity),
        wcl=wcl,
        layer_thickness=thickness,
        tsoil=soil_cfg.initial_tsoil,
        tsoil_step=soil_cfg.initial_tsoil,
        theta=float(np.clip(theta, 0.0, 1.0)),
        tc_daily=soil_cfg.initial_tsoil,
    )
