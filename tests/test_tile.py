"""Tests for cohortveg.tile — cohort arena and tile accounting."""

import numpy as np
import pytest

from cohortveg.config import SoilSection
from cohortveg.tile import FluxAccumulator, create_tile
from cohortveg.types import BIOMASS_POOLS, RemovalCause


POOLS = {'bl': 0.1, 'br': 0.2, 'bsw': 1.0, 'bhw': 0.5, 'nsc': 0.3, 'seedc': 0.05}


class TestCreateTile:
    def test_soil_state(self):
        soil = SoilSection(initial_wcl=0.225)
        tile = create_tile(soil)
        np.testing.assert_allclose(tile.wcl, [0.225, 0.225, 0.225])
        assert tile.theta == pytest.approx(0.5)
        assert tile.n_cohorts == 0
        assert tile.next_id == 1


class TestArena:
    def test_ids_are_sequential(self):
        tile = create_tile(SoilSection())
        ids = [tile.add_cohort(1, 0.1, POOLS) for _ in range(3)]
        assert ids == [1, 2, 3]
        assert tile.next_id == 4
        np.testing.assert_array_equal(tile.cohort_ids(), [1, 2, 3])

    def test_arena_grows(self):
        tile = create_tile(SoilSection(), capacity=2)
        ids = [tile.add_cohort(1, 0.1, POOLS) for _ in range(5)]
        assert tile.capacity >= 5
        assert tile.n_cohorts == 5
        assert len(set(ids)) == 5

    def test_freed_slot_reused_with_fresh_id(self):
        tile = create_tile(SoilSection())
        tile.add_cohort(1, 0.1, POOLS)
        tile.add_cohort(1, 0.1, POOLS)
        tile.remove_cohort(0, RemovalCause.PRUNED)
        new_id = tile.add_cohort(1, 0.1, POOLS)
        assert new_id == 3
        assert tile.slot_of(3) == 0

    def test_slot_of_missing(self):
        tile = create_tile(SoilSection())
        with pytest.raises(KeyError):
            tile.slot_of(42)

    def test_total_pools(self):
        tile = create_tile(SoilSection())
        tile.add_cohort(1, 0.1, POOLS)
        tile.add_cohort(1, 0.3, POOLS)
        totals = tile.total_pools()
        for pool in BIOMASS_POOLS:
            assert totals[pool] == pytest.approx(0.4 * POOLS[pool])
        assert tile.total_biomass() == pytest.approx(0.4 * sum(POOLS.values()))


class TestRemoval:
    def test_removed_carbon_goes_to_litter(self):
        tile = create_tile(SoilSection())
        tile.add_cohort(1, 0.2, POOLS)
        moved = tile.remove_cohort(0, RemovalCause.MORTALITY)
        for pool in BIOMASS_POOLS:
            assert moved[pool] == pytest.approx(0.2 * POOLS[pool])
            assert tile.litter[pool] == pytest.approx(0.2 * POOLS[pool])
        assert tile.n_cohorts == 0
        assert tile.removals['mortality'] == 1

    def test_merged_removal_has_no_litter(self):
        tile = create_tile(SoilSection())
        tile.add_cohort(1, 0.2, POOLS)
        tile.remove_cohort(0, RemovalCause.MERGED)
        assert sum(tile.litter.values()) == 0.0
        assert tile.removals['merged'] == 1


class TestCompact:
    def test_compact_preserves_order_and_ids(self):
        tile = create_tile(SoilSection())
        for i in range(5):
            tile.add_cohort(1, 0.1 * (i + 1), POOLS)
        tile.canopy_order = np.array([4, 2, 0, 1, 3])
        tile.remove_cohort(1, RemovalCause.PRUNED)
        tile.remove_cohort(3, RemovalCause.PRUNED)
        tile.compact()
        np.testing.assert_array_equal(tile.cohort_ids(), [1, 3, 5])
        np.testing.assert_array_equal(tile.live_slots(), [0, 1, 2])
        # slots 4, 2, 0 became 2, 1, 0
        np.testing.assert_array_equal(tile.canopy_order, [2, 1, 0])
        assert tile.next_id == 6


class TestAccumulators:
    def test_flux_accumulator_add_and_reset(self):
        a = FluxAccumulator(gpp=1.0, tair_sum=10.0, n_steps=2)
        a.add(FluxAccumulator(gpp=0.5, tair_sum=20.0, n_steps=1))
        assert a.gpp == 1.5
        assert a.tair_mean == pytest.approx(10.0)
        a.reset()
        assert a.gpp == 0.0
        assert a.n_steps == 0

    def test_reset_annual(self):
        tile = create_tile(SoilSection())
        tile.add_cohort(1, 0.1, POOLS)
        tile.cohorts['gpp_year'][0] = 3.0
        tile.cohorts['stress_days'][0] = 12
        tile.cohorts['nsc_low_days'][0] = 4
        tile.cohorts['nsc_low_max'][0] = 9
        tile.add_litter('bl', 1.0)
        tile.reset_annual()
        assert tile.cohorts['gpp_year'][0] == 0.0
        assert tile.cohorts['stress_days'][0] == 0
        assert tile.cohorts['nsc_low_days'][0] == 4
        assert tile.cohorts['nsc_low_max'][0] == 0
        assert tile.litter['bl'] == 0.0
