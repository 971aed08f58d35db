"""Tests for cohortveg.diagnostics — record builders and the memory sink."""

import numpy as np
import pytest

from cohortveg.diagnostics import (
    AnnualCohortRecord,
    DailyTileRecord,
    MemorySink,
    annual_cohort_records,
    annual_tile_record,
    daily_cohort_records,
    daily_tile_record,
    record_dtype,
    records_to_array,
)
from cohortveg.cohorts import relayer
from cohortveg.config import CohortSection


def _populated(make_tile, table):
    tile = make_tile(table, [{'bsw': 1.0, 'bl': 0.1, 'nsc': 0.2},
                             {'pft': 2, 'bsw': 4.0, 'bl': 0.3}])
    relayer(tile, table, CohortSection())
    tile.day_fluxes.gpp = 0.01
    tile.day_fluxes.n_steps = 1
    tile.day_fluxes.tair_sum = 12.0
    return tile


class TestBuilders:
    def test_daily_tile_record(self, table, make_tile):
        tile = _populated(make_tile, table)
        rec = daily_tile_record(tile, 2001, 40)
        assert (rec.year, rec.doy) == (2001, 40)
        assert rec.gpp == 0.01
        assert rec.tair == 12.0
        assert rec.n_cohorts == 2
        assert rec.biomass == pytest.approx(tile.total_biomass())

    def test_cohort_records_follow_canopy_order(self, table, make_tile):
        tile = _populated(make_tile, table)
        records = daily_cohort_records(tile, 2001, 40)
        assert [r.cohort_id for r in records] == [2, 1]
        assert records[0].height >= records[1].height

    def test_annual_records(self, table, make_tile):
        tile = _populated(make_tile, table)
        tile.cohorts['stress_days'][0] = 7
        rec = annual_tile_record(tile, 2001)
        assert rec.n_cohorts == 2
        assert rec.crown_cover == pytest.approx(tile.total_crown_cover())
        cohorts = {r.cohort_id: r for r in annual_cohort_records(tile, 2001)}
        assert cohorts[1].stress_days == 7
        assert cohorts[1].biomass == pytest.approx(1.3)

    def test_builders_do_not_mutate(self, table, make_tile):
        tile = _populated(make_tile, table)
        before = tile.cohorts.copy()
        daily_tile_record(tile, 2001, 1)
        daily_cohort_records(tile, 2001, 1)
        annual_tile_record(tile, 2001)
        annual_cohort_records(tile, 2001)
        assert tile.cohorts.tobytes() == before.tobytes()


class TestArrays:
    def test_record_dtype(self):
        dtype = record_dtype(AnnualCohortRecord)
        assert dtype['cohort_id'] == np.int64
        assert dtype['biomass'] == np.float64
        assert dtype.names[0] == 'year'

    def test_empty_records(self):
        arr = records_to_array([], DailyTileRecord)
        assert arr.shape == (0,)
        assert 'gpp' in arr.dtype.names

    def test_sink_export_and_reload(self, table, make_tile, tmp_path):
        tile = _populated(make_tile, table)
        sink = MemorySink()
        for doy in (1, 2, 3):
            sink.write_daily(daily_tile_record(tile, 2001, doy))
            sink.write_daily_cohorts(daily_cohort_records(tile, 2001, doy))
        sink.write_annual(annual_tile_record(tile, 2001))

        arrays = sink.to_arrays()
        assert set(arrays) == {'hourly', 'daily', 'daily_cohorts', 'monthly',
                               'annual', 'annual_cohorts'}
        np.testing.assert_array_equal(arrays['daily']['doy'], [1, 2, 3])
        assert len(arrays['daily_cohorts']) == 6
        assert len(arrays['monthly']) == 0

        path = sink.save(tmp_path / 'out' / 'diag.npz')
        assert path.exists()
        loaded = MemorySink.load_arrays(path)
        np.testing.assert_array_equal(loaded['daily']['gpp'], arrays['daily']['gpp'])
        np.testing.assert_array_equal(loaded['daily_cohorts']['cohort_id'],
                                      arrays['daily_cohorts']['cohort_id'])
