"""Tests for cohortveg.forcing — forcing stream and synthetic climate."""

import numpy as np
import pandas as pd
import pytest

from cohortveg.forcing import (
    ForcingStream,
    constant_forcing,
    daily_means,
    day_length,
    forcing_from_arrays,
    load_forcing_csv,
    make_synthetic_forcing,
    required_records,
    seasonal_temperature,
)
from cohortveg.types import ExhaustedForcingError


class TestForcingStream:
    def test_sequential_reads(self):
        stream = constant_forcing(n_years=1, steps_per_day=2)
        first = stream.next()
        second = stream.next()
        assert (first.doy, first.hour) == (1, 0.0)
        assert (second.doy, second.hour) == (1, 12.0)
        assert stream.position == 2

    def test_over_read_raises(self):
        stream = constant_forcing(n_years=1, steps_per_day=1)
        for _ in range(365):
            stream.next()
        assert stream.remaining == 0
        with pytest.raises(ExhaustedForcingError):
            stream.next()

    def test_peek_year_does_not_advance(self):
        stream = constant_forcing(n_years=1, steps_per_day=2)
        year = stream.peek_year(2)
        assert len(year) == 730
        assert stream.position == 0

    def test_peek_year_short(self):
        stream = constant_forcing(n_years=1, steps_per_day=1)
        stream.next()
        with pytest.raises(ExhaustedForcingError, match="364"):
            stream.peek_year(1)

    def test_seek_and_rewind(self):
        stream = constant_forcing(n_years=1, steps_per_day=1)
        stream.seek(100)
        assert stream.next().doy == 101
        stream.rewind()
        assert stream.position == 0
        with pytest.raises(ValueError):
            stream.seek(366)

    def test_required_records(self):
        assert required_records(3, 24) == 3 * 24 * 365


class TestDailyHelpers:
    def test_daily_means(self):
        np.testing.assert_allclose(daily_means([1, 3, 5, 7], 2), [2.0, 6.0])

    def test_daily_means_bad_length(self):
        with pytest.raises(ValueError):
            daily_means([1, 2, 3], 2)

    def test_equinox_day_length(self):
        assert day_length(80, 0.0) == pytest.approx(12.1, abs=0.15)

    def test_summer_longer_than_winter(self):
        assert day_length(172, 46.0) > 15.0
        assert day_length(355, 46.0) < 9.0

    def test_southern_hemisphere_mirrors(self):
        assert day_length(172, -46.0) == pytest.approx(day_length(355, 46.0), abs=0.3)

    def test_polar_night_bounded(self):
        assert day_length(355, 80.0) == pytest.approx(0.0)
        assert day_length(172, 80.0) == pytest.approx(24.0)

    def test_seasonal_temperature_peak(self):
        assert seasonal_temperature(201, 10.0, 5.0) == pytest.approx(15.0)


class TestSyntheticForcing:
    def test_length_and_calendar(self):
        stream = make_synthetic_forcing(n_years=2, steps_per_day=4, start_year=1990)
        assert len(stream) == 2 * 365 * 4
        assert stream[0].year == 1990
        assert stream[-1].year == 1991
        assert stream[-1].doy == 365

    def test_deterministic_without_rng(self):
        a = make_synthetic_forcing(steps_per_day=2)
        b = make_synthetic_forcing(steps_per_day=2)
        assert list(a) == list(b)

    def test_precipitation_total(self):
        stream = make_synthetic_forcing(steps_per_day=4, precip_per_day=2.0)
        assert sum(r.precip for r in stream) == pytest.approx(730.0)

    def test_seeded_precipitation_reproducible(self):
        a = make_synthetic_forcing(steps_per_day=2, rng=np.random.default_rng(3))
        b = make_synthetic_forcing(steps_per_day=2, rng=np.random.default_rng(3))
        assert [r.precip for r in a] == [r.precip for r in b]

    def test_no_radiation_at_night(self):
        stream = make_synthetic_forcing(steps_per_day=24)
        midnight = [r for r in stream if r.hour == 0.0]
        assert all(r.rad == 0.0 for r in midnight)
        noon = [r for r in stream if r.hour == 12.0]
        assert all(r.rad > 0.0 for r in noon)

    def test_summer_warmer_than_winter(self):
        stream = make_synthetic_forcing(steps_per_day=1)
        assert stream[200].tair > stream[10].tair

    def test_from_arrays(self):
        stream = forcing_from_arrays(
            year=[2000, 2000], doy=[1, 1], hour=[0.0, 12.0],
            tair=[1.0, 5.0], precip=[0.0, 1.0], rad=[0.0, 300.0],
        )
        assert len(stream) == 2
        assert stream[1].rad == 300.0
        assert stream[1].vpd == 1.0

    def test_from_arrays_length_mismatch(self):
        with pytest.raises(ValueError, match="precip"):
            forcing_from_arrays(
                year=[2000], doy=[1], hour=[0.0],
                tair=[1.0], precip=[0.0, 1.0], rad=[0.0],
            )


class TestForcingCsv:
    def test_load(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({
            'year': [2000, 2000, 2000],
            'doy': [1, 1, 2],
            'hour': [0.0, 12.0, 0.0],
            'tair': [-2.0, 4.5, -1.0],
            'precip': [0.0, 1.2, 0.0],
            'rad': [0.0, 250.0, 0.0],
            'vpd': [0.2, 0.9, 0.3],
            'station': ['a', 'a', 'a'],
        }).to_csv(path, index=False)
        stream = load_forcing_csv(path)
        assert len(stream) == 3
        assert stream[1].tair == 4.5
        assert stream[1].vpd == 0.9
        assert stream[2].doy == 2
        assert stream[0].co2 == 400.0

    def test_missing_column(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({'year': [2000], 'doy': [1], 'hour': [0.0],
                      'tair': [1.0], 'precip': [0.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="rad"):
            load_forcing_csv(path)

    def test_missing_values(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({'year': [2000, 2000], 'doy': [1, 1], 'hour': [0.0, 12.0],
                      'tair': [1.0, None], 'precip': [0.0, 0.0],
                      'rad': [0.0, 100.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="tair"):
            load_forcing_csv(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_forcing_csv(tmp_path / 'absent.csv')
