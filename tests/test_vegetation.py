"""Tests for cohortveg.vegetation — the sub-daily carbon/water step."""

import numpy as np
import pytest

from cohortveg.cohorts import relayer
from cohortveg.config import default_config
from cohortveg.pft import PFTParams, build_pft_table
from cohortveg.photosynthesis import PhotosynthesisResult
from cohortveg.soil import WaterBalanceResult
from cohortveg.types import ClimateRecord, SECONDS_PER_DAY
from cohortveg.vegetation import fast_step, maintenance_respiration

RECORD = ClimateRecord(year=2000, doy=180, hour=0.0, tair=20.0, precip=0.0,
                       rad=300.0, vpd=1.0)


@pytest.fixture
def config():
    config = default_config()
    config.simulation.steps_per_day = 1
    return config


@pytest.fixture
def no_maintenance_table():
    """PFT with no root/sapwood maintenance respiration."""
    return build_pft_table([{'id': 1, 'r_root': 0.0, 'r_sapwood': 0.0}])


def _fixed_photosynthesis(gpp, resp):
    def fn(leaf, record, pft, dt):
        return PhotosynthesisResult(gpp, resp, 0.0)
    return fn


class _HalfSupply:
    """Water balance stub that meets half the demand and records it."""

    def __init__(self):
        self.demands = []

    def __call__(self, wcl, demand_mm, record, tsoil, soil_cfg, dt):
        self.demands.append(demand_mm)
        return WaterBalanceResult(np.array(wcl, dtype=float), tsoil, 0.5 * demand_mm, 0.0)


class TestCarbonBudget:
    def test_net_gain_added_to_nsc(self, config, no_maintenance_table, make_tile):
        table = no_maintenance_table
        tile = make_tile(table, [{'bsw': 1.0, 'nsc': 0.5, 'nindivs': 0.2}])
        step = fast_step(tile, RECORD, 15.0, table, config,
                         _fixed_photosynthesis(0.01, 0.002), _HalfSupply())
        c = tile.cohorts
        assert c['nsc'][0] == pytest.approx(0.508)
        assert c['gpp_day'][0] == pytest.approx(0.01)
        assert c['npp_day'][0] == pytest.approx(0.008)
        assert step.gpp == pytest.approx(0.002)
        assert step.npp == pytest.approx(0.0016)
        assert tile.day_fluxes.gpp == pytest.approx(0.002)

    def test_unmet_respiration_is_deficit(self, config, no_maintenance_table, make_tile):
        table = no_maintenance_table
        tile = make_tile(table, [{'bsw': 1.0, 'nsc': 0.5}])
        fast_step(tile, RECORD, 15.0, table, config,
                  _fixed_photosynthesis(0.0, 0.8), _HalfSupply())
        assert tile.cohorts['nsc'][0] == 0.0
        assert tile.cohorts['deficit_day'][0] == pytest.approx(0.3)

    def test_maintenance_respiration(self, config, make_tile):
        table = build_pft_table([{'id': 1}])
        tile = make_tile(table, [{'bsw': 1.0, 'br': 0.2, 'nsc': 0.5}])
        fast_step(tile, RECORD, 10.0, table, config,
                  _fixed_photosynthesis(0.0, 0.0), _HalfSupply())
        expected = maintenance_respiration(0.2, 1.0, 10.0, 20.0, table[1], SECONDS_PER_DAY)
        assert expected > 0
        assert tile.cohorts['nsc'][0] == pytest.approx(0.5 - expected)

    def test_maintenance_respiration_q10(self):
        p = PFTParams(id=1, r_root=1.0, r_sapwood=0.0, q10=2.0)
        cold = maintenance_respiration(1.0, 0.0, 5.0, 5.0, p, 3600.0)
        warm = maintenance_respiration(1.0, 0.0, 15.0, 5.0, p, 3600.0)
        assert warm == pytest.approx(2.0 * cold)

    def test_count_and_layers_unchanged(self, config, make_tile):
        table = build_pft_table([{'id': 1}])
        tile = make_tile(table, [{'bsw': b, 'bl': 0.1, 'nsc': 0.2} for b in (1.0, 5.0, 20.0)])
        relayer(tile, table, config.cohorts)
        ids = tile.cohort_ids()
        layers = tile.cohorts['layer'].copy()
        fast_step(tile, RECORD, 15.0, table, config)
        np.testing.assert_array_equal(tile.cohort_ids(), ids)
        np.testing.assert_array_equal(tile.cohorts['layer'], layers)


class TestNonFinite:
    @pytest.mark.parametrize("gpp, resp", [
        (float('nan'), 0.0),
        (0.01, float('inf')),
    ])
    def test_non_finite_counted_not_fatal(self, config, no_maintenance_table, make_tile,
                                          gpp, resp, caplog):
        table = no_maintenance_table
        tile = make_tile(table, [{'bsw': 1.0, 'nsc': 0.5}, {'bsw': 3.0, 'nsc': 0.5}])
        step = fast_step(tile, RECORD, 15.0, table, config,
                         _fixed_photosynthesis(gpp, resp), _HalfSupply())
        assert tile.anomalies.nonfinite_assimilation == 2
        assert step.nonfinite == 2
        np.testing.assert_array_equal(tile.cohorts['nsc'][:2], [0.5, 0.5])
        assert np.isfinite(tile.day_fluxes.gpp)
        assert "Non-finite" in caplog.text


class TestWaterCoupling:
    def test_water_balance_called_once_with_total_demand(self, config,
                                                         no_maintenance_table, make_tile):
        table = no_maintenance_table
        tile = make_tile(table, [
            {'bsw': 1.0, 'nsc': 0.5, 'nindivs': 0.1},
            {'bsw': 3.0, 'nsc': 0.5, 'nindivs': 0.3},
        ])
        wb = _HalfSupply()
        fast_step(tile, RECORD, 15.0, table, config, _fixed_photosynthesis(0.01, 0.0), wb)
        per_indiv = 0.01 * RECORD.vpd / table[1].wue
        assert len(wb.demands) == 1
        assert wb.demands[0] == pytest.approx(per_indiv * 0.4)
        np.testing.assert_allclose(tile.cohorts['transp_day'][:2], [0.5 * per_indiv] * 2)
        assert tile.day_fluxes.transp == pytest.approx(0.5 * per_indiv * 0.4)

    def test_no_demand_without_assimilation(self, config, no_maintenance_table, make_tile):
        table = no_maintenance_table
        tile = make_tile(table, [{'bsw': 1.0, 'nsc': 0.5}])
        wb = _HalfSupply()
        fast_step(tile, RECORD, 15.0, table, config, _fixed_photosynthesis(0.0, 0.0), wb)
        assert wb.demands == [0.0]
        assert tile.cohorts['transp_day'][0] == 0.0

    def test_soil_state_updated(self, config, make_tile):
        table = build_pft_table([{'id': 1}])
        tile = make_tile(table, [{'bsw': 1.0, 'bl': 0.2, 'nsc': 0.5}])
        wet = ClimateRecord(year=2000, doy=180, hour=0.0, tair=20.0, precip=50.0, rad=0.0)
        theta_before = tile.theta
        fast_step(tile, wet, 15.0, table, config)
        assert tile.theta > theta_before
        assert tile.day_fluxes.precip == 50.0

    def test_wetness_accumulated_per_step(self, config, make_tile):
        table = build_pft_table([{'id': 1}])
        tile = make_tile(table, [{'bsw': 1.0, 'bl': 0.2, 'nsc': 0.5}])
        step = fast_step(tile, RECORD, 15.0, table, config)
        assert step.theta_sum == tile.theta
        fast_step(tile, RECORD, 15.0, table, config)
        assert tile.day_fluxes.n_steps == 2
        assert 0.0 <= tile.day_fluxes.theta_mean <= 1.0
