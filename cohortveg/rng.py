"""Seeded random streams for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Bit-exact replay with the same seed
  - Statistical independence between concurrently simulated sites
  - Adding/removing sites doesn't affect other sites' streams

A single tile consumes exactly one stream, in a fixed order (mortality
perturbation, then reproduction draws), so identical seed + config + forcing
reproduces identical results.

References:
  - NumPy docs: numpy.random.SeedSequence
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np


def create_rng(seed: int) -> np.random.Generator:
    """Create the random stream for one tile.

    Args:
        seed: Non-negative integer seed.

    Returns:
        PCG64-backed Generator.
    """
    return np.random.Generator(np.random.PCG64(np.random.SeedSequence(seed)))


def spawn_site_rngs(seed: int, n_sites: int) -> List[np.random.Generator]:
    """Create independent streams for n_sites tiles run side by side.

    Tiles share nothing mutable, so each gets its own stream spawned from the
    master seed (no overlap in the 2^128 PCG64 period).

    Example:
        >>> rngs = spawn_site_rngs(42, n_sites=3)
        >>> rngs[0].random()  # reproducible
    """
    if n_sites < 0:
        raise ValueError(f"n_sites must be >= 0, got {n_sites}")
    children = np.random.SeedSequence(seed).spawn(n_sites)
    return [np.random.Generator(np.random.PCG64(c)) for c in children]


def rng_state_snapshot(rng: np.random.Generator) -> Dict:
    """Capture the full generator state for checkpointing.

    The returned dict is JSON-serializable (PCG64 state holds Python ints).
    """
    return rng.bit_generator.state


def restore_rng_state(rng: np.random.Generator, state: Dict) -> None:
    """Restore generator state from rng_state_snapshot().

    Raises:
        ValueError: If the snapshot belongs to a different bit generator.
    """
    expected = rng.bit_generator.state['bit_generator']
    if state.get('bit_generator') != expected:
        raise ValueError(
            f"Cannot restore {state.get('bit_generator')!r} state into a "
            f"{expected!r} generator"
        )
    rng.bit_generator.state = state
