#!/usr/bin/env python3
"""Run a single-site cohort simulation.

Loads a YAML configuration (optionally merged with a scenario file), reads
site forcing from a CSV file or generates seasonal synthetic forcing for the
configured site, runs the model, and writes diagnostics (.npz), a per-year
summary (.json and .csv) and, optionally, a between-year checkpoint.

Usage:
    python scripts/run_site.py --config configs/example_site.yaml
    python scripts/run_site.py --config configs/example_site.yaml --years 50 --seed 7
    python scripts/run_site.py --config base.yaml --scenario dry.yaml --out results/dry
    python scripts/run_site.py --config base.yaml --forcing data/site_hourly.csv

References:
    - cohortveg/config.py: load_config, SimulationConfig
    - cohortveg/model.py: simulate_year
    - cohortveg/forcing.py: make_synthetic_forcing, load_forcing_csv
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

import pandas as pd

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from cohortveg.checkpoint import save_checkpoint
from cohortveg.config import default_config, load_config
from cohortveg.diagnostics import MemorySink
from cohortveg.forcing import load_forcing_csv, make_synthetic_forcing
from cohortveg.model import (
    check_forcing_length,
    finalize_simulation,
    initialize_simulation,
    simulate_year,
)
from cohortveg.perf import PerfMonitor
from cohortveg.rng import create_rng


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a cohort vegetation simulation at one site.",
        epilog="Example: python scripts/run_site.py --config configs/example_site.yaml --years 20",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Base config YAML (default: built-in single-PFT site)",
    )
    parser.add_argument(
        "--scenario", type=str, default=None,
        help="Scenario YAML deep-merged over the base config",
    )
    parser.add_argument(
        "--years", type=int, default=None,
        help="Override simulation.n_years",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Override simulation.seed",
    )
    parser.add_argument(
        "--out", type=str, default=None,
        help="Output directory (default: output.directory from config)",
    )
    parser.add_argument(
        "--forcing", type=str, default=None,
        help="Site forcing CSV (default: synthetic forcing for the configured latitude)",
    )
    parser.add_argument(
        "--stochastic-rain", action="store_true",
        help="Draw daily precipitation from an exponential distribution",
    )
    parser.add_argument(
        "--checkpoint", action="store_true",
        help="Write a checkpoint of the final state",
    )
    parser.add_argument(
        "--perf", action="store_true",
        help="Log stage timings and write perf.json",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="-v for INFO, -vv for DEBUG logging",
    )
    return parser


def year_table(years) -> pd.DataFrame:
    """One row per simulated year with fluxes, population and removals."""
    rows = []
    for y in years:
        row = {
            'year': y.year,
            'gpp': y.gpp,
            'npp': y.npp,
            'resp': y.resp,
            'transp': y.transp,
            'n_cohorts_before': y.n_cohorts_before,
            'n_cohorts': y.n_cohorts,
            'biomass': y.biomass,
            'recruits': len(y.demography.recruits),
            'deaths': y.demography.deaths,
            'merges': y.demography.merges,
            'litter': sum(y.litter.values()),
        }
        row.update({f'removed_{cause}': n for cause, n in y.removals.items()})
        rows.append(row)
    return pd.DataFrame(rows)


def main(argv=None):
    args = build_parser().parse_args(argv)
    level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    overrides = {'simulation': {}}
    if args.years is not None:
        overrides['simulation']['n_years'] = args.years
    if args.seed is not None:
        overrides['simulation']['seed'] = args.seed

    if args.config is not None:
        config = load_config(args.config, args.scenario, overrides)
    else:
        config = default_config()
        for key, value in overrides['simulation'].items():
            setattr(config.simulation, key, value)

    sim = config.simulation
    out_dir = Path(args.out or config.output.directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    if args.forcing is not None:
        forcing = load_forcing_csv(args.forcing)
    else:
        forcing = make_synthetic_forcing(
            n_years=sim.n_years,
            steps_per_day=sim.steps_per_day,
            start_year=sim.start_year,
            latitude=sim.latitude,
            rng=create_rng(sim.seed + 1) if args.stochastic_rain else None,
        )
    sink = MemorySink(
        record_hourly=config.output.record_hourly,
        record_daily_cohorts=config.output.record_daily_cohorts,
    )
    perf = PerfMonitor(enabled=args.perf)
    check_forcing_length(forcing, sim.n_years, sim.steps_per_day)
    state = initialize_simulation(config)
    perf.start()
    years = [simulate_year(state, forcing, sink, perf=perf) for _ in range(sim.n_years)]
    perf.stop()
    perf.log_report()
    if args.checkpoint:
        print(f"  Checkpoint:  {save_checkpoint(state, out_dir / 'checkpoint.npz')}")
    tile = finalize_simulation(state)

    diag_path = sink.save(out_dir / "diagnostics.npz")
    with open(out_dir / "summary.json", "w") as f:
        json.dump([dataclasses.asdict(y) for y in years], f, indent=2)
    year_table(years).to_csv(out_dir / "years.csv", index=False, float_format='%.6g')

    print(f"Simulated {len(years)} years: "
          f"{tile.n_cohorts} cohorts, "
          f"biomass {tile.total_biomass():.3f} kgC/m2")
    print(f"  Diagnostics: {diag_path}")
    print(f"  Summary:     {out_dir / 'summary.json'}, {out_dir / 'years.csv'}")
    if args.perf:
        with open(out_dir / "perf.json", "w") as f:
            json.dump(perf.summary(), f, indent=2)
        print(f"  Timings:     {out_dir / 'perf.json'}")
    if tile.anomalies.total():
        print(f"  Anomalies:   {tile.anomalies.as_dict()}")


if __name__ == "__main__":
    main()
