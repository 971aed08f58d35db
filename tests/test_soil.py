"""Tests for cohortveg.soil — bucket water balance and soil temperature."""

import numpy as np
import pytest

from cohortveg.config import SoilSection
from cohortveg.soil import (
    bucket_water_balance,
    daily_soil_temperature,
    plant_available_water,
    wetness_index,
)
from cohortveg.types import ClimateRecord


def _record(precip=0.0, tair=15.0):
    return ClimateRecord(year=2000, doy=1, hour=0.0, tair=tair, precip=precip, rad=0.0)


SOIL = SoilSection()
DT = 3600.0


class TestBucketWaterBalance:
    def test_small_rain_stays_in_top_layer(self):
        wcl = np.full(3, 0.2)
        result = bucket_water_balance(wcl, 0.0, _record(precip=10.0), 10.0, SOIL, DT)
        assert result.runoff == 0.0
        np.testing.assert_allclose(result.wcl, [0.3, 0.2, 0.2])

    def test_input_not_modified(self):
        wcl = np.full(3, 0.2)
        bucket_water_balance(wcl, 0.0, _record(precip=10.0), 10.0, SOIL, DT)
        np.testing.assert_array_equal(wcl, [0.2, 0.2, 0.2])

    def test_excess_rain_runs_off(self):
        wcl = np.full(3, 0.2)
        result = bucket_water_balance(wcl, 0.0, _record(precip=1000.0), 10.0, SOIL, DT)
        # 0.15 m3/m3 of room in 1.0 m of soil = 150 mm
        assert result.runoff == pytest.approx(850.0)
        np.testing.assert_allclose(result.wcl, [0.35, 0.35, 0.35])

    def test_water_is_conserved(self):
        wcl = np.array([0.3, 0.25, 0.2])
        thickness = np.asarray(SOIL.layer_thickness)
        before = np.sum(wcl * thickness) * 1000.0
        result = bucket_water_balance(wcl, 5.0, _record(precip=30.0), 10.0, SOIL, DT)
        after = np.sum(result.wcl * thickness) * 1000.0
        assert after == pytest.approx(before + 30.0 - result.runoff - result.transp)

    def test_transpiration_limited_by_supply(self):
        wcl = np.full(3, 0.11)
        result = bucket_water_balance(wcl, 100.0, _record(), 10.0, SOIL, DT)
        assert result.transp == pytest.approx(10.0)
        np.testing.assert_allclose(result.wcl, [0.10, 0.10, 0.10])

    def test_transpiration_meets_small_demand(self):
        wcl = np.full(3, 0.3)
        result = bucket_water_balance(wcl, 2.0, _record(), 10.0, SOIL, DT)
        assert result.transp == pytest.approx(2.0)

    def test_soil_relaxes_toward_air(self):
        result = bucket_water_balance(np.full(3, 0.3), 0.0, _record(tair=20.0), 10.0, SOIL, DT)
        assert 10.0 < result.tsoil < 20.0


class TestWetness:
    def test_bounds(self):
        assert wetness_index(np.full(3, 0.05), SOIL) == 0.0
        assert wetness_index(np.full(3, 0.40), SOIL) == 1.0
        assert wetness_index(np.full(3, 0.225), SOIL) == pytest.approx(0.5)

    def test_plant_available_water(self):
        paw = plant_available_water(np.array([0.2, 0.05, 0.3]),
                                    np.asarray(SOIL.layer_thickness), SOIL)
        np.testing.assert_allclose(paw, [10.0, 0.0, 120.0])


class TestDailySoilTemperature:
    def test_steady_state(self):
        assert daily_soil_temperature(12.0, 12.0, 0.5, SOIL) == pytest.approx(12.0)

    def test_lag_filter(self):
        a = SOIL.tsoil_response * (1.0 - 0.5 * 0.0)
        expected = a * 20.0 + (1.0 - a) * 10.0
        assert daily_soil_temperature(20.0, 10.0, 0.0, SOIL) == pytest.approx(expected)

    def test_wet_soil_responds_slower(self):
        dry = daily_soil_temperature(20.0, 10.0, 0.0, SOIL)
        wet = daily_soil_temperature(20.0, 10.0, 1.0, SOIL)
        assert 10.0 < wet < dry < 20.0
