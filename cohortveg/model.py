"""Simulation driver: the nested year → month → day → sub-daily clock.

Fixed execution order within one simulated year:

    for month in 12 calendar months (365 days):
        for day in month:
            soil temperature from the day's mean air temperature
            for step in steps_per_day:
                fast_step (carbon/water budgets)     ← one ClimateRecord
                hourly diagnostics
            daily diagnostics
            daily_update (phenology, then growth), relayer
            roll day accumulators into month/year
        monthly diagnostics
    annual LAI ceiling update (optional, growth.update_annual_lai_max)
    annual diagnostics  (before demography: cohort ids match the daily output)
    annual_demography   (starvation → mortality → reproduction → maintenance)
    annual accumulators reset

The driver owns the Tile and the tile's random stream through an explicit
SimulationState. Runs may only be suspended between years (see
checkpoint.py); mid-year state is not restorable.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from cohortveg.cohorts import initialize_cohorts, relayer
from cohortveg.config import SimulationConfig, validate_config
from cohortveg.demography import DemographyReport, annual_demography
from cohortveg.diagnostics import (
    DiagnosticsSink,
    annual_cohort_records,
    annual_tile_record,
    daily_cohort_records,
    daily_tile_record,
    hourly_record,
    monthly_record,
)
from cohortveg.forcing import ForcingStream, daily_means, day_length, required_records
from cohortveg.perf import PerfMonitor
from cohortveg.pft import PFTTable, build_pft_table
from cohortveg.photosynthesis import PhotosynthesisFn, light_use_efficiency
from cohortveg.phenology import annual_lai_max_update, daily_update
from cohortveg.rng import create_rng
from cohortveg.soil import WaterBalanceFn, bucket_water_balance, daily_soil_temperature
from cohortveg.tile import Tile, create_tile
from cohortveg.types import (
    ANNUAL_FLUX_FIELDS,
    DAILY_FLUX_FIELDS,
    DAYS_IN_MONTH,
    CohortVegError,
    ExhaustedForcingError,
)
from cohortveg.vegetation import fast_step

logger = logging.getLogger(__name__)

_NULL_PERF = PerfMonitor(enabled=False)


# ═══════════════════════════════════════════════════════════════════════
# STATE & RESULTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationState:
    """Everything needed to continue a run at a year boundary."""
    config: SimulationConfig
    table: PFTTable
    tile: Optional[Tile]
    rng: np.random.Generator
    year_index: int = 0          # completed years
    forcing_position: int = 0    # records consumed


@dataclass
class YearResult:
    """Summary of one simulated year."""
    year: int
    gpp: float                   # kgC m-2 yr-1
    npp: float
    resp: float
    transp: float                # mm yr-1
    n_cohorts_before: int        # before demography
    n_cohorts: int               # after maintenance
    biomass: float               # kgC m-2 after maintenance
    demography: DemographyReport
    litter: Dict[str, float] = field(default_factory=dict)    # kgC m-2, whole year
    removals: Dict[str, int] = field(default_factory=dict)
    anomalies: Dict[str, int] = field(default_factory=dict)   # cumulative
    lai_max: Dict[int, float] = field(default_factory=dict)   # annually updated LAI ceilings


@dataclass
class SimResult:
    """Results of run_simulation()."""
    n_years: int = 0
    years: List[YearResult] = field(default_factory=list)
    final_tile: Optional[Tile] = None

    # Annual timeseries (length = n_years)
    yearly_gpp: Optional[np.ndarray] = None
    yearly_npp: Optional[np.ndarray] = None
    yearly_n_cohorts: Optional[np.ndarray] = None
    yearly_biomass: Optional[np.ndarray] = None

    anomalies: Dict[str, int] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════

def initialize_simulation(
    config: SimulationConfig,
    table: Optional[PFTTable] = None,
) -> SimulationState:
    """Build the PFT table, the Tile with its initial cohorts, and the RNG.

    Raises:
        ValueError: If the configuration is invalid.
        MissingPFTError: If an initial cohort references an unknown PFT.
    """
    validate_config(config)
    if table is None:
        table = build_pft_table(config.pfts)
    tile = create_tile(config.soil, capacity=max(16, 2 * len(config.initial_cohorts)))
    initialize_cohorts(tile, config.initial_cohorts, table)
    relayer(tile, table, config.cohorts)
    return SimulationState(
        config=config,
        table=table,
        tile=tile,
        rng=create_rng(config.simulation.seed),
    )


def _close_day(tile: Tile) -> None:
    """Roll the day's accumulators into month/year totals."""
    live = tile.live_slots()
    for day_name, year_name in zip(DAILY_FLUX_FIELDS, ANNUAL_FLUX_FIELDS):
        tile.cohorts[year_name][live] += tile.cohorts[day_name][live]
    tile.month_fluxes.add(tile.day_fluxes)
    tile.year_fluxes.add(tile.day_fluxes)


def simulate_year(
    state: SimulationState,
    forcing: ForcingStream,
    sink: Optional[DiagnosticsSink] = None,
    photosynthesis: PhotosynthesisFn = light_use_efficiency,
    water_balance: WaterBalanceFn = bucket_water_balance,
    perf: Optional[PerfMonitor] = None,
) -> YearResult:
    """Simulate one year: 12 months, 365 days, steps_per_day steps per day.

    Raises:
        ExhaustedForcingError: If the stream holds less than a full year.
        CohortVegError: If the state has been finalized.
    """
    if state.tile is None:
        raise CohortVegError("Simulation state has been finalized")
    perf = perf or _NULL_PERF
    config = state.config
    tile = state.tile
    table = state.table
    spd = config.simulation.steps_per_day

    year_records = forcing.peek_year(spd)
    tair_daily = daily_means([r.tair for r in year_records], spd)
    year = year_records[0].year

    day_of_year = 0
    for month, n_days in enumerate(DAYS_IN_MONTH, start=1):
        tile.reset_monthly()
        for _ in range(n_days):
            tile.reset_daily()
            tile.tc_daily = float(tair_daily[day_of_year])
            tile.tsoil = daily_soil_temperature(tile.tc_daily, tile.tsoil, tile.theta, config.soil)

            for _ in range(spd):
                record = forcing.next()
                with perf.track('fast_step'):
                    step = fast_step(tile, record, tile.tsoil, table, config,
                                     photosynthesis, water_balance)
                if sink is not None and sink.record_hourly:
                    sink.write_hourly(hourly_record(tile, record, step))

            if sink is not None:
                sink.write_daily(daily_tile_record(tile, record.year, record.doy))
                if sink.record_daily_cohorts:
                    sink.write_daily_cohorts(daily_cohort_records(tile, record.year, record.doy))

            with perf.track('daily_update'):
                daily_update(tile, table, config,
                             day_length(record.doy, config.simulation.latitude))
                relayer(tile, table, config.cohorts)

            _close_day(tile)
            tile.day_index += 1
            day_of_year += 1

        if sink is not None:
            sink.write_monthly(monthly_record(tile, year, month))
        logger.debug("Completed %d-%02d", year, month)

    if config.growth.update_annual_lai_max:
        annual_lai_max_update(tile, table, config)

    if sink is not None:
        sink.write_annual(annual_tile_record(tile, year))
        sink.write_annual_cohorts(annual_cohort_records(tile, year))

    n_before = tile.n_cohorts
    with perf.track('annual_demography'):
        report = annual_demography(tile, table, config, state.rng)

    f = tile.year_fluxes
    result = YearResult(
        year=year,
        gpp=f.gpp,
        npp=f.npp,
        resp=f.resp,
        transp=f.transp,
        n_cohorts_before=n_before,
        n_cohorts=tile.n_cohorts,
        biomass=tile.total_biomass(),
        demography=report,
        litter=dict(tile.litter),
        removals=dict(tile.removals),
        anomalies=tile.anomalies.as_dict(),
        lai_max=dict(tile.lai_max),
    )
    tile.reset_annual()
    state.year_index += 1
    state.forcing_position = forcing.position
    logger.info(
        "Year %d: GPP %.4f kgC/m2, %d cohorts, biomass %.4f kgC/m2",
        year, result.gpp, result.n_cohorts, result.biomass,
    )
    return result


def finalize_simulation(state: SimulationState) -> Tile:
    """Release the Tile from the state and return it."""
    if state.tile is None:
        raise CohortVegError("Simulation state has already been finalized")
    tile = state.tile
    state.tile = None
    return tile


def check_forcing_length(forcing: ForcingStream, n_years: int, steps_per_day: int) -> None:
    """Reject a stream too short for the run; warn if it is longer.

    Raises:
        ExhaustedForcingError: If fewer records remain than the run needs.
    """
    need = required_records(n_years, steps_per_day)
    have = forcing.remaining
    if have < need:
        raise ExhaustedForcingError(
            f"Forcing stream has {have} records but simulation.n_years={n_years} "
            f"at simulation.steps_per_day={steps_per_day} requires {need}"
        )
    if have > need:
        warnings.warn(
            f"Forcing stream has {have} records; only the first {need} will be used.",
            UserWarning,
            stacklevel=3,
        )


def run_simulation(
    config: SimulationConfig,
    forcing: ForcingStream,
    sink: Optional[DiagnosticsSink] = None,
    photosynthesis: PhotosynthesisFn = light_use_efficiency,
    water_balance: WaterBalanceFn = bucket_water_balance,
    perf: Optional[PerfMonitor] = None,
    table: Optional[PFTTable] = None,
    state: Optional[SimulationState] = None,
) -> SimResult:
    """Run config.simulation.n_years years on one tile.

    Args:
        config: Simulation configuration.
        forcing: Forcing stream positioned at the first record to use.
        sink: Optional diagnostics sink.
        photosynthesis: Photosynthesis collaborator.
        water_balance: Water-balance collaborator.
        perf: Optional stage timer.
        table: PFT table (built from config.pfts if None).
        state: Resume from this state (e.g. a loaded checkpoint) instead of
            initializing; n_years more years are simulated.

    Returns:
        SimResult with per-year summaries and the final Tile.

    Raises:
        ExhaustedForcingError: Before the first year if the stream is short.
        MissingPFTError: If a cohort references an unknown PFT.
    """
    n_years = config.simulation.n_years
    check_forcing_length(forcing, n_years, config.simulation.steps_per_day)
    if state is None:
        state = initialize_simulation(config, table)

    perf = perf or _NULL_PERF
    perf.start()
    years = []
    for _ in range(n_years):
        years.append(simulate_year(state, forcing, sink, photosynthesis,
                                   water_balance, perf))
    perf.stop()

    final_tile = finalize_simulation(state)
    return SimResult(
        n_years=n_years,
        years=years,
        final_tile=final_tile,
        yearly_gpp=np.array([y.gpp for y in years]),
        yearly_npp=np.array([y.npp for y in years]),
        yearly_n_cohorts=np.array([y.n_cohorts for y in years], dtype=np.int64),
        yearly_biomass=np.array([y.biomass for y in years]),
        anomalies=final_tile.anomalies.as_dict(),
    )
