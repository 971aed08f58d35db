"""Shared fixtures for the cohortveg test suite."""

import pytest

from cohortveg.config import SoilSection, default_config
from cohortveg.pft import build_pft_table, update_allometry
from cohortveg.tile import create_tile
from cohortveg.types import PhenoStatus


@pytest.fixture
def table():
    """Deciduous tree (1), evergreen tree (2), grass (3)."""
    return build_pft_table([
        {'id': 1, 'name': 'deciduous'},
        {'id': 2, 'name': 'evergreen', 'phenotype': 'evergreen'},
        {'id': 3, 'name': 'grass', 'lifeform': 'grass', 'max_age': 2.0},
    ])


@pytest.fixture
def small_config():
    """Default config on a daily clock with the default single PFT."""
    config = default_config()
    config.simulation.steps_per_day = 1
    config.simulation.n_years = 1
    return config


@pytest.fixture
def make_tile():
    """Factory: tile populated from cohort dicts.

    Keys: pft, nindivs, age, status, and any biomass pool.
    """
    def _make(table, rows, soil=None):
        tile = create_tile(soil or SoilSection())
        for row in rows:
            row = dict(row)
            pft = row.pop('pft', 1)
            nindivs = row.pop('nindivs', 0.05)
            age = row.pop('age', 0.0)
            status = row.pop('status', PhenoStatus.ACTIVE)
            tile.add_cohort(pft, nindivs, row, age=age, status=status)
        update_allometry(tile.cohorts, tile.live_slots(), table)
        return tile
    return _make
