"""Configuration system for cohortveg.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → programmatic overrides

Sections map 1:1 to YAML top-level keys. The PFT parameter table and the
initial cohort list are top-level lists, not sections. Everything is supplied
before the first simulated year and treated as immutable afterwards.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run length and clock resolution."""
    n_years: int = 1
    steps_per_day: int = 24
    seed: int = 42
    start_year: int = 2000
    latitude: float = 46.0        # degrees N, for day length


@dataclass
class CohortSection:
    """Population maintenance and canopy structure."""
    max_cohorts: int = 50
    merge_tolerance: float = 0.05      # relative difference in biomass and height
    prune_min_density: float = 1.0e-5  # individuals m-2
    canopy_layer_fraction: float = 1.0 # crown area (m2) per m2 ground per layer
    max_canopy_layers: int = 4         # used for safe establishment area
    extinction_k: float = 0.5          # Beer-Lambert light extinction
    starvation_days: int = 30          # consecutive NSC-exhausted days before culling


@dataclass
class GrowthSection:
    """Conversion of NSC into structural growth."""
    nsc_growth_fraction: float = 0.02            # fraction of NSC used per active day
    nsc_growth_ceiling: float = float('inf')     # kgC per individual per day
    update_annual_lai_max: bool = False          # adjust each PFT's LAI ceiling once a year
    lai_max_floor: float = 0.05                  # lowest ceiling the annual update may set
    light_compensation: float = 0.05             # light fraction at which leaves stop paying for themselves


@dataclass
class SoilSection:
    """Multi-layer bucket soil."""
    layer_thickness: List[float] = field(default_factory=lambda: [0.1, 0.3, 0.6])  # m
    field_capacity: float = 0.35      # volumetric
    wilting_point: float = 0.10       # volumetric
    porosity: float = 0.45            # volumetric
    initial_wcl: float = 0.30         # volumetric, every layer
    initial_tsoil: float = 10.0       # °C
    tsoil_response: float = 0.15      # daily relaxation of soil toward air temp (dry soil)
    root_layer: int = 1               # layer whose wetness drives water stress


@dataclass
class OutputSection:
    """Diagnostics control."""
    directory: str = "results/"
    record_hourly: bool = False
    record_daily_cohorts: bool = True


@dataclass
class InitialCohort:
    """One cohort present at the start of the simulation."""
    pft: int = 1
    nindivs: float = 0.05
    bl: float = 0.0
    br: float = 0.0
    bsw: float = 0.5
    bhw: float = 0.0
    nsc: float = 0.5
    seedc: float = 0.0
    age: float = 0.0


def _default_pfts() -> List[Dict[str, Any]]:
    return [{'id': 1, 'name': 'temperate_deciduous'}]


def _default_initial_cohorts() -> List[InitialCohort]:
    return [InitialCohort()]


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    cohorts: CohortSection = field(default_factory=CohortSection)
    growth: GrowthSection = field(default_factory=GrowthSection)
    soil: SoilSection = field(default_factory=SoilSection)
    output: OutputSection = field(default_factory=OutputSection)
    pfts: List[Dict[str, Any]] = field(default_factory=_default_pfts)
    initial_cohorts: List[InitialCohort] = field(default_factory=_default_initial_cohorts)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values (including lists) are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'cohorts': CohortSection,
    'growth': GrowthSection,
    'soil': SoilSection,
    'output': OutputSection,
}


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig (not validated)."""
    sections: Dict[str, Any] = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    if isinstance(data.get('pfts'), list):
        sections['pfts'] = [dict(p) for p in data['pfts'] if isinstance(p, dict)]

    if isinstance(data.get('initial_cohorts'), list):
        sections['initial_cohorts'] = [
            _dict_to_section(InitialCohort, c)
            for c in data['initial_cohorts'] if isinstance(c, dict)
        ]

    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict view of a config (YAML/JSON serializable)."""
    return copy.deepcopy(dataclasses.asdict(config))


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    The error message always names the offending parameter. PFT parameter
    values are validated when the PFT table is built (see pft.build_pft_table).
    """
    sim = config.simulation
    if sim.n_years < 1:
        raise ValueError(f"simulation.n_years must be >= 1, got {sim.n_years}")
    if sim.steps_per_day < 1:
        raise ValueError(
            f"simulation.steps_per_day must be >= 1, got {sim.steps_per_day}"
        )
    if 1440 % sim.steps_per_day != 0:
        warnings.warn(
            f"simulation.steps_per_day={sim.steps_per_day} does not divide "
            f"the day into whole minutes; step start hours will be inexact.",
            UserWarning,
            stacklevel=2,
        )
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if not -90.0 <= sim.latitude <= 90.0:
        raise ValueError(
            f"simulation.latitude must be in [-90, 90], got {sim.latitude}"
        )

    c = config.cohorts
    if c.max_cohorts < 1:
        raise ValueError(f"cohorts.max_cohorts must be >= 1, got {c.max_cohorts}")
    if not 0.0 <= c.merge_tolerance < 1.0:
        raise ValueError(
            f"cohorts.merge_tolerance must be in [0, 1), got {c.merge_tolerance}"
        )
    if c.prune_min_density < 0:
        raise ValueError(
            f"cohorts.prune_min_density must be >= 0, got {c.prune_min_density}"
        )
    if c.canopy_layer_fraction <= 0:
        raise ValueError(
            f"cohorts.canopy_layer_fraction must be positive, "
            f"got {c.canopy_layer_fraction}"
        )
    if c.max_canopy_layers < 1:
        raise ValueError(
            f"cohorts.max_canopy_layers must be >= 1, got {c.max_canopy_layers}"
        )
    if c.extinction_k < 0:
        raise ValueError(f"cohorts.extinction_k must be >= 0, got {c.extinction_k}")
    if c.starvation_days < 1:
        raise ValueError(
            f"cohorts.starvation_days must be >= 1, got {c.starvation_days}"
        )

    g = config.growth
    if not 0.0 <= g.nsc_growth_fraction <= 1.0:
        raise ValueError(
            f"growth.nsc_growth_fraction must be in [0, 1], "
            f"got {g.nsc_growth_fraction}"
        )
    if math.isnan(g.nsc_growth_ceiling) or g.nsc_growth_ceiling < 0:
        raise ValueError(
            f"growth.nsc_growth_ceiling must be >= 0, got {g.nsc_growth_ceiling}"
        )
    if g.lai_max_floor < 0:
        raise ValueError(f"growth.lai_max_floor must be >= 0, got {g.lai_max_floor}")
    if not 0.0 < g.light_compensation < 1.0:
        raise ValueError(
            f"growth.light_compensation must be in (0, 1), got {g.light_compensation}"
        )

    s = config.soil
    if len(s.layer_thickness) < 1 or any(t <= 0 for t in s.layer_thickness):
        raise ValueError(
            f"soil.layer_thickness must be a non-empty list of positive "
            f"depths, got {s.layer_thickness}"
        )
    if not 0.0 <= s.wilting_point < s.field_capacity <= s.porosity <= 1.0:
        raise ValueError(
            f"soil requires 0 <= wilting_point < field_capacity <= porosity <= 1, "
            f"got {s.wilting_point}, {s.field_capacity}, {s.porosity}"
        )
    if not 0.0 <= s.initial_wcl <= s.porosity:
        raise ValueError(
            f"soil.initial_wcl must be in [0, porosity], got {s.initial_wcl}"
        )
    if not 0.0 < s.tsoil_response <= 1.0:
        raise ValueError(
            f"soil.tsoil_response must be in (0, 1], got {s.tsoil_response}"
        )
    if not 0 <= s.root_layer < len(s.layer_thickness):
        raise ValueError(
            f"soil.root_layer must index a soil layer, got {s.root_layer}"
        )

    if not config.pfts:
        raise ValueError("pfts must define at least one PFT")
    seen = set()
    for i, p in enumerate(config.pfts):
        if 'id' not in p:
            raise ValueError(f"pfts[{i}] is missing 'id'")
        if p['id'] in seen:
            raise ValueError(f"pfts[{i}].id {p['id']} is duplicated")
        seen.add(p['id'])

    for i, ic in enumerate(config.initial_cohorts):
        if ic.nindivs < 0:
            raise ValueError(
                f"initial_cohorts[{i}].nindivs must be >= 0, got {ic.nindivs}"
            )
        for pool in ('bl', 'br', 'bsw', 'bhw', 'nsc', 'seedc'):
            if getattr(ic, pool) < 0:
                raise ValueError(
                    f"initial_cohorts[{i}].{pool} must be >= 0, "
                    f"got {getattr(ic, pool)}"
                )
    if len(config.initial_cohorts) > c.max_cohorts:
        warnings.warn(
            f"{len(config.initial_cohorts)} initial cohorts exceed "
            f"cohorts.max_cohorts={c.max_cohorts}; the bound applies from the "
            f"first annual maintenance onward.",
            UserWarning,
            stacklevel=2,
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.

    Raises:
        FileNotFoundError: If base_path (or a given scenario_path) doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, copy.deepcopy(overrides))

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
