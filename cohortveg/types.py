"""Core data types for cohortveg.

This module is the SINGLE SOURCE OF TRUTH for:
  - COHORT_DTYPE: NumPy structured array dtype for cohort records
  - PhenoStatus, LifeForm, Phenotype, RemovalCause enumerations
  - BIOMASS_POOLS: names of the per-individual carbon pools
  - ClimateRecord: one sub-daily forcing sample
  - Exceptions raised by the engine

All modules import these types from here. No other module defines cohort fields.

References:
  - Weng et al. 2015, Biogeosciences 12:2655 (cohort structure of LM3-PPA)
  - Weng et al. 2019, Global Change Biology 25:4047 (BiomeE)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class PhenoStatus(IntEnum):
    """Leaf phenological status.

    DORMANT → ACTIVE:  growing-degree sum exceeds the PFT threshold
    ACTIVE  → DORMANT: daily temperature or day length drops below threshold
    """
    DORMANT = 0
    ACTIVE  = 1


class LifeForm(IntEnum):
    TREE  = 0
    GRASS = 1


class Phenotype(IntEnum):
    DECIDUOUS = 0
    EVERGREEN = 1


class RemovalCause(IntEnum):
    """Why a cohort left the live population (for litter accounting)."""
    PRUNED      = 0   # density below threshold
    STARVATION  = 1   # sustained NSC exhaustion
    MORTALITY   = 2   # natural mortality removed all individuals
    MERGED      = 3   # absorbed into another cohort (no mass leaves the tile)
    OLD_GRASS   = 4   # senescent grass replaced by younger grass
    OVERFLOW    = 5   # population bound enforcement (defect path)


# ═══════════════════════════════════════════════════════════════════════
# CARBON POOLS
# ═══════════════════════════════════════════════════════════════════════

# Per-individual pools (kgC per individual). Merge, litter and conservation
# bookkeeping iterate over this tuple.
BIOMASS_POOLS = ('bl', 'br', 'bsw', 'bhw', 'nsc', 'seedc')

# Calendar
DAYS_PER_YEAR = 365
DAYS_IN_MONTH = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)
SECONDS_PER_DAY = 86400.0


# ═══════════════════════════════════════════════════════════════════════
# COHORT_DTYPE — canonical structured array for cohorts
# ═══════════════════════════════════════════════════════════════════════

COHORT_DTYPE = np.dtype([
    # --- Identity ---
    ('id',              np.int64),     # identity token, unique within the tile
    ('pft',             np.int32),     # PFT id (key into PFTTable)
    ('alive',           np.bool_),     # arena slot in use
    ('layer',           np.int16),     # canopy layer (0 = top), derived by relayer
    ('status',          np.int8),      # PhenoStatus

    # --- Demography ---
    ('nindivs',         np.float64),   # individuals m-2
    ('age',             np.float64),   # years

    # --- Carbon pools (kgC per individual) ---
    ('bl',              np.float64),   # leaf
    ('br',              np.float64),   # fine root
    ('bsw',             np.float64),   # sapwood
    ('bhw',             np.float64),   # heartwood
    ('nsc',             np.float64),   # non-structural carbon
    ('seedc',           np.float64),   # seed reserve

    # --- Allometry (derived from bsw + bhw) ---
    ('dbh',             np.float64),   # m
    ('height',          np.float64),   # m
    ('crownarea',       np.float64),   # m2 per individual

    # --- Phenology & stress ---
    ('gdd',             np.float64),   # growing degree days since leaf-off
    ('last_switch_day', np.int32),     # absolute sim day of last status change
    ('nsc_low_days',    np.int32),     # consecutive days with NSC exhausted (current run)
    ('nsc_low_max',     np.int32),     # longest NSC-exhausted run this year
    ('stress_days',     np.int32),     # days this year with unmet respiration

    # --- Flux accumulators (kgC or kg H2O per individual) ---
    ('gpp_day',         np.float64),
    ('npp_day',         np.float64),
    ('resp_day',        np.float64),
    ('transp_day',      np.float64),
    ('deficit_day',     np.float64),   # respiration not covered by NSC
    ('gpp_year',        np.float64),
    ('npp_year',        np.float64),
    ('resp_year',       np.float64),
    ('transp_year',     np.float64),
])

DAILY_FLUX_FIELDS = ('gpp_day', 'npp_day', 'resp_day', 'transp_day', 'deficit_day')
ANNUAL_FLUX_FIELDS = ('gpp_year', 'npp_year', 'resp_year', 'transp_year')


def allocate_cohorts(max_n: int) -> np.ndarray:
    """Allocate a zeroed cohort arena.

    Args:
        max_n: Arena capacity (number of slots).

    Returns:
        Zeroed structured array of shape (max_n,) with COHORT_DTYPE.
    """
    return np.zeros(max_n, dtype=COHORT_DTYPE)


# ═══════════════════════════════════════════════════════════════════════
# CLIMATE FORCING
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ClimateRecord:
    """One sub-daily forcing sample. Immutable."""
    year: int
    doy: int                 # 1-based day of year
    hour: float              # hour of day at the start of the step
    tair: float              # air temperature (°C)
    precip: float            # precipitation (mm per step)
    rad: float               # photosynthetically active radiation (W m-2)
    rh: float = 0.6          # relative humidity (0–1)
    vpd: float = 1.0         # vapour pressure deficit (kPa)
    co2: float = 400.0       # ppm
    wind: float = 2.0        # m s-1
    patm: float = 101325.0   # Pa


# ═══════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════

class CohortVegError(Exception):
    """Base class for fatal engine errors."""


class ExhaustedForcingError(CohortVegError):
    """More sub-daily steps were requested than the forcing stream provides."""


class MissingPFTError(CohortVegError, KeyError):
    """A cohort references a PFT id absent from the parameter table."""

    def __init__(self, pft_id: int, available=()):
        self.pft_id = pft_id
        self.available = tuple(available)
        super().__init__(
            f"No parameters for PFT {pft_id}. "
            f"Available PFTs: {sorted(self.available)}"
        )

    def __str__(self) -> str:
        return self.args[0]
