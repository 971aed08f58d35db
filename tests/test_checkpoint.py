"""Tests for cohortveg.checkpoint — resuming a run between years."""

import numpy as np
import pytest

from cohortveg.checkpoint import load_checkpoint, save_checkpoint
from cohortveg.config import default_config
from cohortveg.forcing import make_synthetic_forcing
from cohortveg.model import (
    finalize_simulation,
    initialize_simulation,
    run_simulation,
    simulate_year,
)
from cohortveg.types import COHORT_DTYPE, CohortVegError


@pytest.fixture
def config():
    config = default_config()
    config.simulation.steps_per_day = 1
    config.simulation.n_years = 2
    config.pfts = [{'id': 1, 'maturity_height': 0.0, 'mortality_noise': 0.2}]
    return config


class TestCheckpoint:
    def test_resume_matches_uninterrupted_run(self, config, tmp_path):
        reference = run_simulation(config, make_synthetic_forcing(n_years=2, steps_per_day=1))

        forcing = make_synthetic_forcing(n_years=2, steps_per_day=1)
        state = initialize_simulation(config)
        simulate_year(state, forcing)
        path = save_checkpoint(state, tmp_path / 'year_0001.npz')

        restored = load_checkpoint(path)
        assert restored.year_index == 1
        assert restored.forcing_position == 365
        fresh = make_synthetic_forcing(n_years=2, steps_per_day=1)
        fresh.seek(restored.forcing_position)
        simulate_year(restored, fresh)
        tile = finalize_simulation(restored)

        expected = reference.final_tile
        assert tile.n_cohorts == expected.n_cohorts
        a = tile.cohorts[tile.live_slots()]
        b = expected.cohorts[expected.live_slots()]
        for name in COHORT_DTYPE.names:
            np.testing.assert_array_equal(a[name], b[name], err_msg=name)
        np.testing.assert_array_equal(tile.wcl, expected.wcl)
        assert tile.next_id == expected.next_id
        assert tile.tsoil == expected.tsoil

    def test_round_trip_scalars(self, config, tmp_path):
        state = initialize_simulation(config)
        state.tile.anomalies.negative_pool_clamps = 3
        state.tile.lai_max[1] = 1.25
        path = save_checkpoint(state, tmp_path / 'cp.npz')
        restored = load_checkpoint(path)
        assert restored.tile.anomalies.negative_pool_clamps == 3
        assert restored.tile.lai_max == {1: 1.25}
        assert restored.config.pfts == config.pfts
        assert restored.rng.random() == state.rng.random()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_checkpoint(tmp_path / 'nope.npz')

    def test_finalized_state_rejected(self, config, tmp_path):
        state = initialize_simulation(config)
        finalize_simulation(state)
        with pytest.raises(CohortVegError):
            save_checkpoint(state, tmp_path / 'cp.npz')

    def test_wrong_version(self, config, tmp_path):
        path = tmp_path / 'old.npz'
        np.savez_compressed(path, meta=np.array('{"version": 0}'))
        with pytest.raises(ValueError, match="version"):
            load_checkpoint(path)
