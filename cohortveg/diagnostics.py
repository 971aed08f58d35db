"""Diagnostics: write-only summaries at each clock resolution.

Record builders are pure functions of the Tile (and the current forcing
record); they never mutate state. The driver hands each record to a sink:

    hourly        one HourlyTileRecord per sub-daily step (opt-in)
    daily         DailyTileRecord + one DailyCohortRecord per live cohort
    monthly       MonthlyTileRecord
    annual        AnnualTileRecord + one AnnualCohortRecord per live cohort,
                  written before demography so cohort ids line up with the
                  year's daily output

MemorySink keeps records in lists and exports them as NumPy structured
arrays, one per record type, in a compressed .npz file.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Protocol, Union

import numpy as np

from cohortveg.tile import FluxAccumulator, Tile
from cohortveg.types import BIOMASS_POOLS, ClimateRecord


# ═══════════════════════════════════════════════════════════════════════
# RECORD TYPES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class HourlyTileRecord:
    year: int
    doy: int
    hour: float
    tair: float
    gpp: float          # kgC m-2 per step
    npp: float
    resp: float
    transp: float       # mm per step
    runoff: float
    theta: float
    tsoil: float


@dataclass(frozen=True)
class DailyTileRecord:
    year: int
    doy: int
    day_index: int
    tair: float
    tsoil: float
    theta: float
    precip: float
    gpp: float
    npp: float
    resp: float
    transp: float
    runoff: float
    n_cohorts: int
    biomass: float      # kgC m-2
    nonfinite: int


@dataclass(frozen=True)
class DailyCohortRecord:
    year: int
    doy: int
    cohort_id: int
    pft: int
    layer: int
    status: int
    nindivs: float
    bl: float
    br: float
    bsw: float
    bhw: float
    nsc: float
    seedc: float
    height: float
    crownarea: float
    gpp: float          # kgC per individual per day
    npp: float
    resp: float
    transp: float


@dataclass(frozen=True)
class MonthlyTileRecord:
    year: int
    month: int
    tair: float
    precip: float
    gpp: float
    npp: float
    resp: float
    transp: float
    runoff: float


@dataclass(frozen=True)
class AnnualTileRecord:
    year: int
    tair: float
    precip: float
    gpp: float
    npp: float
    resp: float
    transp: float
    runoff: float
    n_cohorts: int
    biomass: float
    crown_cover: float
    litter: float       # kgC m-2 produced so far this year
    anomalies: int


@dataclass(frozen=True)
class AnnualCohortRecord:
    year: int
    cohort_id: int
    pft: int
    layer: int
    nindivs: float
    age: float
    dbh: float
    height: float
    crownarea: float
    biomass: float      # kgC per individual, all pools
    nsc: float
    gpp: float          # kgC per individual per year
    npp: float
    resp: float
    transp: float
    stress_days: int


# ═══════════════════════════════════════════════════════════════════════
# RECORD BUILDERS
# ═══════════════════════════════════════════════════════════════════════

def hourly_record(tile: Tile, record: ClimateRecord, step: FluxAccumulator) -> HourlyTileRecord:
    return HourlyTileRecord(
        year=record.year, doy=record.doy, hour=record.hour, tair=record.tair,
        gpp=step.gpp, npp=step.npp, resp=step.resp, transp=step.transp,
        runoff=step.runoff, theta=tile.theta, tsoil=tile.tsoil_step,
    )


def daily_tile_record(tile: Tile, year: int, doy: int) -> DailyTileRecord:
    f = tile.day_fluxes
    return DailyTileRecord(
        year=year, doy=doy, day_index=tile.day_index, tair=f.tair_mean,
        tsoil=tile.tsoil, theta=tile.theta, precip=f.precip, gpp=f.gpp,
        npp=f.npp, resp=f.resp, transp=f.transp, runoff=f.runoff,
        n_cohorts=tile.n_cohorts, biomass=tile.total_biomass(), nonfinite=f.nonfinite,
    )


def daily_cohort_records(tile: Tile, year: int, doy: int) -> List[DailyCohortRecord]:
    """One record per live cohort, in canopy order when it is current."""
    c = tile.cohorts
    order = [s for s in tile.canopy_order if c['alive'][s]]
    if len(order) != tile.n_cohorts:
        order = list(tile.live_slots())
    return [
        DailyCohortRecord(
            year=year, doy=doy, cohort_id=int(c['id'][s]), pft=int(c['pft'][s]),
            layer=int(c['layer'][s]), status=int(c['status'][s]),
            nindivs=float(c['nindivs'][s]),
            bl=float(c['bl'][s]), br=float(c['br'][s]), bsw=float(c['bsw'][s]),
            bhw=float(c['bhw'][s]), nsc=float(c['nsc'][s]), seedc=float(c['seedc'][s]),
            height=float(c['height'][s]), crownarea=float(c['crownarea'][s]),
            gpp=float(c['gpp_day'][s]), npp=float(c['npp_day'][s]),
            resp=float(c['resp_day'][s]), transp=float(c['transp_day'][s]),
        )
        for s in order
    ]


def monthly_record(tile: Tile, year: int, month: int) -> MonthlyTileRecord:
    f = tile.month_fluxes
    return MonthlyTileRecord(
        year=year, month=month, tair=f.tair_mean, precip=f.precip, gpp=f.gpp,
        npp=f.npp, resp=f.resp, transp=f.transp, runoff=f.runoff,
    )


def annual_tile_record(tile: Tile, year: int) -> AnnualTileRecord:
    f = tile.year_fluxes
    return AnnualTileRecord(
        year=year, tair=f.tair_mean, precip=f.precip, gpp=f.gpp, npp=f.npp,
        resp=f.resp, transp=f.transp, runoff=f.runoff, n_cohorts=tile.n_cohorts,
        biomass=tile.total_biomass(), crown_cover=tile.total_crown_cover(),
        litter=sum(tile.litter.values()), anomalies=tile.anomalies.total(),
    )


def annual_cohort_records(tile: Tile, year: int) -> List[AnnualCohortRecord]:
    c = tile.cohorts
    return [
        AnnualCohortRecord(
            year=year, cohort_id=int(c['id'][s]), pft=int(c['pft'][s]),
            layer=int(c['layer'][s]), nindivs=float(c['nindivs'][s]),
            age=float(c['age'][s]), dbh=float(c['dbh'][s]),
            height=float(c['height'][s]), crownarea=float(c['crownarea'][s]),
            biomass=float(sum(c[pool][s] for pool in BIOMASS_POOLS)),
            nsc=float(c['nsc'][s]), gpp=float(c['gpp_year'][s]),
            npp=float(c['npp_year'][s]), resp=float(c['resp_year'][s]),
            transp=float(c['transp_year'][s]), stress_days=int(c['stress_days'][s]),
        )
        for s in tile.live_slots()
    ]


# ═══════════════════════════════════════════════════════════════════════
# SINKS
# ═══════════════════════════════════════════════════════════════════════

class DiagnosticsSink(Protocol):
    """Anything the driver can hand records to."""

    record_hourly: bool
    record_daily_cohorts: bool

    def write_hourly(self, record: HourlyTileRecord) -> None: ...

    def write_daily(self, record: DailyTileRecord) -> None: ...

    def write_daily_cohorts(self, records: List[DailyCohortRecord]) -> None: ...

    def write_monthly(self, record: MonthlyTileRecord) -> None: ...

    def write_annual(self, record: AnnualTileRecord) -> None: ...

    def write_annual_cohorts(self, records: List[AnnualCohortRecord]) -> None: ...


_NP_TYPES = {'int': np.int64, 'float': np.float64}

_RECORD_TYPES = {
    'hourly': HourlyTileRecord,
    'daily': DailyTileRecord,
    'daily_cohorts': DailyCohortRecord,
    'monthly': MonthlyTileRecord,
    'annual': AnnualTileRecord,
    'annual_cohorts': AnnualCohortRecord,
}


def record_dtype(record_cls) -> np.dtype:
    """Structured dtype with one field per record attribute."""
    return np.dtype([
        (f.name, _NP_TYPES[f.type if isinstance(f.type, str) else f.type.__name__])
        for f in dataclasses.fields(record_cls)
    ])


def records_to_array(records: List, record_cls) -> np.ndarray:
    dtype = record_dtype(record_cls)
    return np.array([dataclasses.astuple(r) for r in records], dtype=dtype)


class MemorySink:
    """Keeps every record in memory; exports structured arrays.

    Args:
        record_hourly: Keep one record per sub-daily step.
        record_daily_cohorts: Keep per-cohort daily records.
    """

    def __init__(self, record_hourly: bool = False, record_daily_cohorts: bool = True):
        self.record_hourly = record_hourly
        self.record_daily_cohorts = record_daily_cohorts
        self.hourly: List[HourlyTileRecord] = []
        self.daily: List[DailyTileRecord] = []
        self.daily_cohorts: List[DailyCohortRecord] = []
        self.monthly: List[MonthlyTileRecord] = []
        self.annual: List[AnnualTileRecord] = []
        self.annual_cohorts: List[AnnualCohortRecord] = []

    def write_hourly(self, record: HourlyTileRecord) -> None:
        self.hourly.append(record)

    def write_daily(self, record: DailyTileRecord) -> None:
        self.daily.append(record)

    def write_daily_cohorts(self, records: List[DailyCohortRecord]) -> None:
        self.daily_cohorts.extend(records)

    def write_monthly(self, record: MonthlyTileRecord) -> None:
        self.monthly.append(record)

    def write_annual(self, record: AnnualTileRecord) -> None:
        self.annual.append(record)

    def write_annual_cohorts(self, records: List[AnnualCohortRecord]) -> None:
        self.annual_cohorts.extend(records)

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """One structured array per record type (empty arrays included)."""
        return {
            name: records_to_array(getattr(self, name), cls)
            for name, cls in _RECORD_TYPES.items()
        }

    def save(self, path: Union[str, Path]) -> Path:
        """Write all record arrays to a compressed .npz file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **self.to_arrays())
        return path

    @classmethod
    def load_arrays(cls, path: Union[str, Path]) -> Dict[str, np.ndarray]:
        with np.load(path) as data:
            return {name: data[name] for name in data.files}
