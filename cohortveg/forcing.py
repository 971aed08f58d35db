"""Climate forcing: the sequential forcing stream and synthetic generators.

The engine only ever reads forcing sequentially through a ForcingStream. A
stream is finite and replayable (rewind()); reading past its end raises
ExhaustedForcingError.

Synthetic forcing uses a sinusoidal annual cycle with:
  - annual mean and half-range for air temperature
  - a diurnal cycle (temperature peak mid-afternoon, radiation by solar angle)
  - constant or seeded-random precipitation

Site forcing is read from CSV files with one row per sub-daily step (see
load_forcing_csv).

References:
  - Forsythe et al. 1995, Ecological Modelling 80:87 (day length, CBM model)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from cohortveg.types import DAYS_PER_YEAR, ClimateRecord, ExhaustedForcingError

logger = logging.getLogger(__name__)

# Day of year of the annual temperature maximum (~Jul 20)
_TAIR_PEAK_DOY = 201


# ═══════════════════════════════════════════════════════════════════════
# FORCING STREAM
# ═══════════════════════════════════════════════════════════════════════

class ForcingStream:
    """Ordered, finite, replayable sequence of ClimateRecords.

    The cursor only moves forward; the engine never mutates records.
    """

    def __init__(self, records: Sequence[ClimateRecord]):
        self._records: List[ClimateRecord] = list(records)
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ClimateRecord]:
        return iter(self._records)

    def __getitem__(self, i):
        return self._records[i]

    @property
    def position(self) -> int:
        """Number of records consumed so far."""
        return self._cursor

    @property
    def remaining(self) -> int:
        return len(self._records) - self._cursor

    def next(self) -> ClimateRecord:
        """Return the next record and advance the cursor.

        Raises:
            ExhaustedForcingError: If all records have been consumed.
        """
        if self._cursor >= len(self._records):
            raise ExhaustedForcingError(
                f"Forcing stream exhausted after {len(self._records)} records "
                f"(requested step {self._cursor + 1})"
            )
        record = self._records[self._cursor]
        self._cursor += 1
        return record

    def peek_year(self, steps_per_day: int) -> List[ClimateRecord]:
        """Records of the next simulated year, without advancing.

        Raises:
            ExhaustedForcingError: If fewer than a full year remain.
        """
        n = steps_per_day * DAYS_PER_YEAR
        if self.remaining < n:
            raise ExhaustedForcingError(
                f"Forcing stream has {self.remaining} records left at position "
                f"{self._cursor}; a year needs {n} "
                f"({steps_per_day} steps/day x {DAYS_PER_YEAR} days)"
            )
        return self._records[self._cursor:self._cursor + n]

    def seek(self, position: int) -> None:
        """Move the cursor (used when resuming from a checkpoint)."""
        if not 0 <= position <= len(self._records):
            raise ValueError(
                f"position must be in [0, {len(self._records)}], got {position}"
            )
        self._cursor = position

    def rewind(self) -> None:
        self._cursor = 0


def required_records(n_years: int, steps_per_day: int) -> int:
    """Number of records a run of n_years needs."""
    return n_years * steps_per_day * DAYS_PER_YEAR


# ═══════════════════════════════════════════════════════════════════════
# DAILY AGGREGATION & ASTRONOMY
# ═══════════════════════════════════════════════════════════════════════

def daily_means(values: Sequence[float], steps_per_day: int) -> np.ndarray:
    """Average sub-daily values to daily means.

    Args:
        values: Sub-daily series whose length is a multiple of steps_per_day.
        steps_per_day: Steps per day.

    Returns:
        Array of shape (len(values) // steps_per_day,).
    """
    arr = np.asarray(values, dtype=np.float64)
    if len(arr) % steps_per_day != 0:
        raise ValueError(
            f"series length {len(arr)} is not a multiple of "
            f"steps_per_day={steps_per_day}"
        )
    return arr.reshape(-1, steps_per_day).mean(axis=1)


def day_length(doy: int, latitude: float) -> float:
    """Astronomical day length in hours (CBM model, p = 0.8333°).

    Args:
        doy: 1-based day of year.
        latitude: Degrees north.
    """
    theta = 0.2163108 + 2.0 * np.arctan(0.9671396 * np.tan(0.00860 * (doy - 186)))
    phi = np.arcsin(0.39795 * np.cos(theta))
    lat = np.deg2rad(latitude)
    p = np.deg2rad(0.8333)
    arg = (np.sin(p) + np.sin(lat) * np.sin(phi)) / (np.cos(lat) * np.cos(phi))
    arg = float(np.clip(arg, -1.0, 1.0))
    return 24.0 - (24.0 / np.pi) * float(np.arccos(arg))


# ═══════════════════════════════════════════════════════════════════════
# SYNTHETIC FORCING
# ═══════════════════════════════════════════════════════════════════════

def seasonal_temperature(doy: int, mean_t: float, amplitude: float,
                         peak_doy: int = _TAIR_PEAK_DOY) -> float:
    """Daily mean air temperature from a sinusoidal annual cycle.

    T(d) = T_mean + A × cos(2π × (d − d_peak) / 365)
    """
    phase = 2.0 * np.pi * (doy - peak_doy) / DAYS_PER_YEAR
    return mean_t + amplitude * float(np.cos(phase))


def make_synthetic_forcing(
    n_years: int = 1,
    steps_per_day: int = 24,
    start_year: int = 2000,
    latitude: float = 46.0,
    mean_tair: float = 9.0,
    tair_amplitude: float = 11.0,
    diurnal_range: float = 8.0,
    max_rad: float = 450.0,
    precip_per_day: float = 2.5,
    vpd: float = 0.8,
    co2: float = 400.0,
    rng: Optional[np.random.Generator] = None,
) -> ForcingStream:
    """Build a forcing stream with seasonal and diurnal cycles.

    With rng=None the stream is fully deterministic (uniform daily precipitation
    spread over the steps). With an rng, daily precipitation is exponentially
    distributed with the same mean and falls in the first step of the day.

    Args:
        n_years: Simulated years.
        steps_per_day: Sub-daily resolution.
        start_year: Calendar year of the first record.
        latitude: Degrees north (day length drives radiation).
        mean_tair: Annual mean air temperature (°C).
        tair_amplitude: Half-range of the annual cycle (°C).
        diurnal_range: Peak-to-trough diurnal range (°C).
        max_rad: Noon PAR at the summer solstice (W m-2).
        precip_per_day: Mean precipitation (mm day-1).
        vpd: Daytime vapour pressure deficit (kPa).
        co2: Atmospheric CO2 (ppm).
        rng: Optional generator for stochastic precipitation.

    Returns:
        ForcingStream of n_years × 365 × steps_per_day records.
    """
    records: List[ClimateRecord] = []
    dt_hours = 24.0 / steps_per_day
    longest = day_length(172, latitude) if latitude >= 0 else day_length(355, latitude)
    for y in range(n_years):
        year = start_year + y
        for doy in range(1, DAYS_PER_YEAR + 1):
            t_day = seasonal_temperature(doy, mean_tair, tair_amplitude)
            daylen = day_length(doy, latitude)
            if rng is None:
                rain_steps = np.full(steps_per_day, precip_per_day / steps_per_day)
            else:
                rain_steps = np.zeros(steps_per_day)
                rain_steps[0] = rng.exponential(precip_per_day) if precip_per_day > 0 else 0.0
            for s in range(steps_per_day):
                hour = s * dt_hours
                mid = hour + 0.5 * dt_hours
                tair = t_day + 0.5 * diurnal_range * float(np.cos(2.0 * np.pi * (mid - 15.0) / 24.0))
                if steps_per_day == 1:
                    # daily forcing: mean daytime radiation over 24 h
                    rad = max_rad * (2.0 / np.pi) * daylen / 24.0 * (daylen / longest)
                else:
                    sunrise = 12.0 - 0.5 * daylen
                    frac = (mid - sunrise) / daylen if daylen > 0 else -1.0
                    rad = max_rad * float(np.sin(np.pi * frac)) * (daylen / longest) \
                        if 0.0 < frac < 1.0 else 0.0
                records.append(ClimateRecord(
                    year=year,
                    doy=doy,
                    hour=hour,
                    tair=tair,
                    precip=float(rain_steps[s]),
                    rad=max(rad, 0.0),
                    vpd=vpd if rad > 0 else 0.1 * vpd,
                    co2=co2,
                ))
    logger.debug("Synthetic forcing: %d records (%d years)", len(records), n_years)
    return ForcingStream(records)


def constant_forcing(
    n_years: int = 1,
    steps_per_day: int = 1,
    start_year: int = 2000,
    **values,
) -> ForcingStream:
    """Forcing with every record identical except for the calendar fields.

    Keyword arguments are ClimateRecord fields (tair, precip, rad, ...).
    """
    defaults = dict(tair=15.0, precip=2.0, rad=200.0)
    defaults.update(values)
    dt_hours = 24.0 / steps_per_day
    records = [
        ClimateRecord(year=start_year + y, doy=doy, hour=s * dt_hours, **defaults)
        for y in range(n_years)
        for doy in range(1, DAYS_PER_YEAR + 1)
        for s in range(steps_per_day)
    ]
    return ForcingStream(records)


def forcing_from_arrays(
    year: Sequence[int],
    doy: Sequence[int],
    hour: Sequence[float],
    tair: Sequence[float],
    precip: Sequence[float],
    rad: Sequence[float],
    vpd: Optional[Sequence[float]] = None,
    co2: Optional[Sequence[float]] = None,
) -> ForcingStream:
    """Wrap parallel arrays (e.g. columns of a site file) as a ForcingStream."""
    n = len(tair)
    for name, arr in (('year', year), ('doy', doy), ('hour', hour),
                      ('precip', precip), ('rad', rad)):
        if len(arr) != n:
            raise ValueError(f"forcing column '{name}' has length {len(arr)}, expected {n}")
    vpd = np.full(n, 1.0) if vpd is None else np.asarray(vpd, dtype=np.float64)
    co2 = np.full(n, 400.0) if co2 is None else np.asarray(co2, dtype=np.float64)
    records = [
        ClimateRecord(
            year=int(year[i]), doy=int(doy[i]), hour=float(hour[i]),
            tair=float(tair[i]), precip=float(precip[i]), rad=float(rad[i]),
            vpd=float(vpd[i]), co2=float(co2[i]),
        )
        for i in range(n)
    ]
    return ForcingStream(records)


_REQUIRED_COLUMNS = ('year', 'doy', 'hour', 'tair', 'precip', 'rad')


def load_forcing_csv(path: Union[str, Path]) -> ForcingStream:
    """Read site forcing from a CSV file, one row per sub-daily step.

    Required columns: year, doy, hour, tair, precip, rad. Optional columns
    vpd and co2 default to 1.0 kPa and 400 ppm. Rows must already be in time
    order; extra columns are ignored.

    Raises:
        FileNotFoundError: If path does not exist.
        ValueError: If a required column is missing or holds missing values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Forcing file not found: {path}")
    df = pd.read_csv(path)
    missing = [col for col in _REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Forcing file {path} is missing columns {missing}")
    present = [col for col in _REQUIRED_COLUMNS + ('vpd', 'co2') if col in df.columns]
    gaps = df[present].isna().any()
    if gaps.any():
        raise ValueError(
            f"Forcing file {path} has missing values in columns "
            f"{list(gaps[gaps].index)}"
        )
    stream = forcing_from_arrays(
        year=df['year'].to_numpy(),
        doy=df['doy'].to_numpy(),
        hour=df['hour'].to_numpy(),
        tair=df['tair'].to_numpy(),
        precip=df['precip'].to_numpy(),
        rad=df['rad'].to_numpy(),
        vpd=df['vpd'].to_numpy() if 'vpd' in df.columns else None,
        co2=df['co2'].to_numpy() if 'co2' in df.columns else None,
    )
    logger.info("Loaded %d forcing records from %s", len(stream), path)
    return stream
