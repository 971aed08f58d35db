"""Between-year checkpoints.

A checkpoint is a compressed .npz holding the cohort arena and the tile's
array state, plus one JSON document (stored as a string array) with the
scalar tile state, the configuration, the RNG state and the run position.

Only year boundaries are safe: month/day accumulators and litter are zero
there, so they are not stored.

Usage:
    save_checkpoint(state, "run/year_0005.npz")
    ...
    state = load_checkpoint("run/year_0005.npz")
    forcing.seek(state.forcing_position)
    run_simulation(state.config, forcing, state=state)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Union

import numpy as np

from cohortveg.config import config_from_dict, config_to_dict
from cohortveg.model import SimulationState
from cohortveg.pft import PFTTable, build_pft_table
from cohortveg.rng import create_rng, restore_rng_state, rng_state_snapshot
from cohortveg.tile import AnomalyCounters, Tile
from cohortveg.types import COHORT_DTYPE, CohortVegError

CHECKPOINT_VERSION = 1


def save_checkpoint(state: SimulationState, path: Union[str, Path]) -> Path:
    """Write the state of a run paused between years.

    Raises:
        CohortVegError: If the state has been finalized.
    """
    if state.tile is None:
        raise CohortVegError("Cannot checkpoint a finalized simulation")
    tile = state.tile
    meta = {
        'version': CHECKPOINT_VERSION,
        'year_index': state.year_index,
        'forcing_position': state.forcing_position,
        'rng_state': rng_state_snapshot(state.rng),
        'config': config_to_dict(state.config),
        'tile': {
            'tsoil': tile.tsoil,
            'tsoil_step': tile.tsoil_step,
            'theta': tile.theta,
            'tc_daily': tile.tc_daily,
            'next_id': tile.next_id,
            'day_index': tile.day_index,
            'lai_max': {str(k): v for k, v in tile.lai_max.items()},
            'anomalies': tile.anomalies.as_dict(),
        },
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        cohorts=tile.cohorts,
        wcl=tile.wcl,
        layer_thickness=tile.layer_thickness,
        canopy_order=tile.canopy_order,
        layer_light=tile.layer_light,
        meta=np.array(json.dumps(meta)),
    )
    return path


def load_checkpoint(
    path: Union[str, Path],
    table: Optional[PFTTable] = None,
) -> SimulationState:
    """Rebuild a SimulationState from save_checkpoint() output.

    Args:
        path: Checkpoint file.
        table: PFT table; rebuilt from the stored configuration if None.

    Raises:
        FileNotFoundError: If path does not exist.
        ValueError: If the file is not a compatible checkpoint.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")
    with np.load(path) as data:
        meta = json.loads(str(data['meta']))
        if meta.get('version') != CHECKPOINT_VERSION:
            raise ValueError(
                f"Unsupported checkpoint version {meta.get('version')} in {path}"
            )
        cohorts = data['cohorts']
        if cohorts.dtype != COHORT_DTYPE:
            raise ValueError(f"Cohort layout in {path} does not match this version")
        arrays = {name: data[name].copy() for name in
                  ('wcl', 'layer_thickness', 'canopy_order', 'layer_light')}
        cohorts = cohorts.copy()

    config = config_from_dict(meta['config'])
    if table is None:
        table = build_pft_table(config.pfts)
    t = meta['tile']
    tile = Tile(
        cohorts=cohorts,
        wcl=arrays['wcl'],
        layer_thickness=arrays['layer_thickness'],
        tsoil=t['tsoil'],
        theta=t['theta'],
        tc_daily=t['tc_daily'],
        tsoil_step=t['tsoil_step'],
        next_id=t['next_id'],
        day_index=t['day_index'],
        lai_max={int(k): v for k, v in t.get('lai_max', {}).items()},
        canopy_order=arrays['canopy_order'],
        layer_light=arrays['layer_light'],
        anomalies=AnomalyCounters(**t['anomalies']),
    )
    rng = create_rng(config.simulation.seed)
    restore_rng_state(rng, meta['rng_state'])
    return SimulationState(
        config=config,
        table=table,
        tile=tile,
        rng=rng,
        year_index=meta['year_index'],
        forcing_position=meta['forcing_position'],
    )
