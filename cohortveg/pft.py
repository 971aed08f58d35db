"""Plant functional type parameters and allometry.

A PFT table maps PFT id → PFTParams. It is built once from configuration
before the first simulated year and never mutated.

Allometry (trees and grasses share the functional form):
  bwood     = alphaBM × dbh^thetaBM        (bwood = sapwood + heartwood)
  alphaBM   = rho_wood × taperfactor × π/4 × alpha_ht
  thetaBM   = theta_ht + 2
  height    = min(alpha_ht × dbh^theta_ht, hmax)
  crownarea = alpha_ca × dbh^theta_ca
  bl_max    = lai_max × crownarea × lma
  br_max    = phi_rl × bl_max

References:
  - Weng et al. 2015, Biogeosciences 12:2655, Eqs. 2–5
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from cohortveg.types import LifeForm, MissingPFTError, Phenotype


@dataclass(frozen=True)
class PFTParams:
    """Physiological constants of one plant functional type."""
    id: int
    name: str = "pft"
    lifeform: LifeForm = LifeForm.TREE
    phenotype: Phenotype = Phenotype.DECIDUOUS

    # Allometry
    alpha_ht: float = 36.0
    theta_ht: float = 0.5
    alpha_ca: float = 150.0
    theta_ca: float = 1.5
    rho_wood: float = 300.0          # kgC m-3
    taperfactor: float = 0.75
    hmax: float = 40.0               # m

    # Leaves & roots
    lma: float = 0.035               # kgC m-2 leaf
    lai_max: float = 3.5
    phi_rl: float = 0.8              # fine root : leaf ratio at target

    # Turnover
    leaf_longevity: float = 1.0      # years (evergreen continuous turnover)
    root_longevity: float = 1.0      # years
    sapwood_turnover: float = 0.05   # yr-1, sapwood → heartwood
    leaf_retranslocation: float = 0.5

    # Phenology
    gdd_base: float = 5.0            # °C
    gdd_crit: float = 280.0          # degree days
    tc_crit_off: float = 10.0        # °C
    daylength_crit_off: float = 10.0 # hours

    # Carbon physiology
    lue: float = 1.5e-3              # kgC per MJ absorbed PAR
    t_photo_min: float = 0.0         # °C
    t_photo_opt: float = 20.0        # °C
    r_leaf: float = 0.5              # yr-1 at 15 °C
    r_root: float = 0.5              # yr-1 at 15 °C
    r_sapwood: float = 0.02          # yr-1 at 15 °C
    q10: float = 2.0
    growth_resp_frac: float = 0.25   # 1 - carbon use efficiency of growth
    wue: float = 3.0e-3              # kgC kPa per kg H2O

    # Allocation
    alloc_leaf: float = 0.35
    alloc_root: float = 0.25

    # Mortality
    mortrate_canopy: float = 0.01     # yr-1
    mortrate_understory: float = 0.075
    mort_size_a: float = 0.0
    mort_size_b: float = 1.0
    stress_mortality: float = 0.1
    mortality_noise: float = 0.0      # relative sd of the annual rate perturbation
    max_age: float = float('inf')     # years (grasses)

    # Reproduction
    seed_fraction: float = 0.1
    maturity_height: float = 10.0     # m
    seed_threshold: float = 0.01      # kgC per individual
    germination_efficiency: float = 0.5
    prob_germination: float = 0.8
    seedling_mass: float = 0.05       # kgC per seedling
    seedling_partition: Tuple[float, float, float, float] = (0.1, 0.1, 0.5, 0.3)  # bl, br, bsw, nsc

    @property
    def alpha_bm(self) -> float:
        return self.rho_wood * self.taperfactor * math.pi / 4.0 * self.alpha_ht

    @property
    def theta_bm(self) -> float:
        return self.theta_ht + 2.0

    @property
    def is_evergreen(self) -> bool:
        return self.phenotype == Phenotype.EVERGREEN

    @property
    def is_grass(self) -> bool:
        return self.lifeform == LifeForm.GRASS


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER TABLE
# ═══════════════════════════════════════════════════════════════════════

class PFTTable(Mapping):
    """Read-only mapping PFT id → PFTParams.

    Indexing with an unknown id raises MissingPFTError, which is fatal.
    """

    def __init__(self, params: Iterable[PFTParams]):
        self._params: Dict[int, PFTParams] = {}
        for p in params:
            self._params[int(p.id)] = p

    def __getitem__(self, pft_id) -> PFTParams:
        try:
            return self._params[int(pft_id)]
        except KeyError:
            raise MissingPFTError(int(pft_id), self._params.keys()) from None

    def __iter__(self) -> Iterator[int]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def require(self, pft_ids: Iterable[int]) -> None:
        """Raise MissingPFTError for the first id not in the table."""
        for pft_id in pft_ids:
            self[pft_id]


def _coerce_enum(enum_cls, value):
    if isinstance(value, str):
        try:
            return enum_cls[value.upper()]
        except KeyError:
            raise ValueError(
                f"{enum_cls.__name__} must be one of "
                f"{[m.name.lower() for m in enum_cls]}, got '{value}'"
            ) from None
    return enum_cls(value)


def pft_from_dict(data: Mapping) -> PFTParams:
    """Build PFTParams from a config dict, ignoring unknown keys."""
    valid = {f.name for f in dataclasses.fields(PFTParams)}
    kwargs = {k: v for k, v in data.items() if k in valid}
    if 'lifeform' in kwargs:
        kwargs['lifeform'] = _coerce_enum(LifeForm, kwargs['lifeform'])
    if 'phenotype' in kwargs:
        kwargs['phenotype'] = _coerce_enum(Phenotype, kwargs['phenotype'])
    if 'seedling_partition' in kwargs:
        kwargs['seedling_partition'] = tuple(float(x) for x in kwargs['seedling_partition'])
    return PFTParams(**kwargs)


def validate_pft(p: PFTParams) -> None:
    """Raise ValueError naming the offending parameter."""
    where = f"pft {p.id} ({p.name})"
    positive = ('alpha_ht', 'alpha_ca', 'rho_wood', 'taperfactor', 'hmax', 'lma',
                'leaf_longevity', 'root_longevity', 'q10', 'wue', 'seedling_mass')
    for name in positive:
        if not getattr(p, name) > 0:
            raise ValueError(f"{where}: {name} must be positive, got {getattr(p, name)}")
    non_negative = ('lai_max', 'phi_rl', 'sapwood_turnover', 'lue', 'r_leaf',
                    'r_root', 'r_sapwood', 'mortrate_canopy', 'mortrate_understory',
                    'mort_size_a', 'stress_mortality', 'mortality_noise',
                    'seed_threshold', 'gdd_crit')
    for name in non_negative:
        if getattr(p, name) < 0:
            raise ValueError(f"{where}: {name} must be >= 0, got {getattr(p, name)}")
    unit = ('leaf_retranslocation', 'growth_resp_frac', 'seed_fraction',
            'germination_efficiency', 'prob_germination')
    for name in unit:
        if not 0.0 <= getattr(p, name) <= 1.0:
            raise ValueError(f"{where}: {name} must be in [0, 1], got {getattr(p, name)}")
    if p.alloc_leaf < 0 or p.alloc_root < 0 or p.alloc_leaf + p.alloc_root > 1.0:
        raise ValueError(
            f"{where}: alloc_leaf + alloc_root must be in [0, 1], "
            f"got {p.alloc_leaf} + {p.alloc_root}"
        )
    if p.t_photo_opt <= p.t_photo_min:
        raise ValueError(
            f"{where}: t_photo_opt ({p.t_photo_opt}) must exceed "
            f"t_photo_min ({p.t_photo_min})"
        )
    if len(p.seedling_partition) != 4 or any(x < 0 for x in p.seedling_partition) \
            or not math.isclose(sum(p.seedling_partition), 1.0, abs_tol=1e-9):
        raise ValueError(
            f"{where}: seedling_partition must be 4 non-negative fractions "
            f"summing to 1, got {p.seedling_partition}"
        )
    if p.max_age <= 0:
        raise ValueError(f"{where}: max_age must be positive, got {p.max_age}")


def build_pft_table(pft_dicts: Sequence[Mapping]) -> PFTTable:
    """Build and validate the PFT table from config dicts."""
    params: List[PFTParams] = []
    for d in pft_dicts:
        p = pft_from_dict(d)
        validate_pft(p)
        params.append(p)
    return PFTTable(params)


# ═══════════════════════════════════════════════════════════════════════
# ALLOMETRY
# ═══════════════════════════════════════════════════════════════════════

def dbh_from_wood(bwood, p: PFTParams):
    """Stem diameter (m) from woody biomass (kgC per individual)."""
    bwood = np.maximum(np.asarray(bwood, dtype=np.float64), 0.0)
    return (bwood / p.alpha_bm) ** (1.0 / p.theta_bm)


def wood_from_dbh(dbh, p: PFTParams):
    """Inverse of dbh_from_wood."""
    return p.alpha_bm * np.asarray(dbh, dtype=np.float64) ** p.theta_bm


def height_from_dbh(dbh, p: PFTParams):
    return np.minimum(p.alpha_ht * np.asarray(dbh, dtype=np.float64) ** p.theta_ht, p.hmax)


def crownarea_from_dbh(dbh, p: PFTParams):
    return p.alpha_ca * np.asarray(dbh, dtype=np.float64) ** p.theta_ca


def leaf_max(crownarea, p: PFTParams, lai_max: Optional[float] = None):
    """Target leaf biomass (kgC per individual) for a given crown area.

    lai_max overrides the PFT ceiling (the tile's annually updated value).
    """
    lai = p.lai_max if lai_max is None else lai_max
    return lai * np.asarray(crownarea, dtype=np.float64) * p.lma


def root_max(crownarea, p: PFTParams, lai_max: Optional[float] = None):
    return p.phi_rl * leaf_max(crownarea, p, lai_max)


def update_allometry(cohorts: np.ndarray, slots: np.ndarray, table: PFTTable) -> None:
    """Recompute dbh, height and crown area from woody biomass, in place.

    Args:
        cohorts: Cohort arena (COHORT_DTYPE).
        slots: Slot indices to update.
        table: PFT parameter table.
    """
    if len(slots) == 0:
        return
    pfts = cohorts['pft'][slots]
    for pft_id in np.unique(pfts):
        p = table[pft_id]
        idx = slots[pfts == pft_id]
        dbh = dbh_from_wood(cohorts['bsw'][idx] + cohorts['bhw'][idx], p)
        cohorts['dbh'][idx] = dbh
        cohorts['height'][idx] = height_from_dbh(dbh, p)
        cohorts['crownarea'][idx] = crownarea_from_dbh(dbh, p)
