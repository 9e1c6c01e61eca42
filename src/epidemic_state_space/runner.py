#!/usr/bin/env python3
# src/epidemic_state_space/runner.py — command-line runner

import argparse
import logging
import re
import time
from typing import List, Optional, Tuple

from .config import FitConfig, SimConfig, INFECTIOUS_WINDOW, N_AGE_BINS, SEED
from .inference.driver import fit
from .inference.sampler import MetropolisSampler
from .inference.seed import derive_seed
from .model.spec import StateSpaceModelSpec
from .simulate.batch_processing import write_trajectory_csv
from .simulate.simulator import SimulationResult, simulate
from .state import ModelParameters

# Parser for an initial state like 1,0,0,...
def parse_int_list(s: Optional[str]) -> List[int]:
    if not s:
        return []
    return [int(x) for x in re.split(r"[,\s;]+", s.strip()) if x]


# Parser for a window like 4,15
def parse_window(s: Optional[str]) -> Optional[Tuple[int, int]]:
    if not s:
        return None
    a, b = [int(x) for x in s.split(",")]
    return (a, b)


def run_simulation(cfg: SimConfig) -> SimulationResult:
    params = ModelParameters(
        r0=cfg.r0,
        mortality_prob=cfg.mortality_prob,
        observation_prob=cfg.observation_prob,
        inflow_rate=cfg.inflow_rate,
    )
    return simulate(
        t_max=cfg.t_max,
        params=params,
        initial_state=cfg.resolved_initial_state(),
        rng=cfg.seed,
        infectious_window=cfg.infectious_window,
        n_age_bins=cfg.n_age_bins,
    )


def build_spec(variant: str, n_age_bins: int = N_AGE_BINS,
               infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW) -> StateSpaceModelSpec:
    spec = StateSpaceModelSpec.base(n_age_bins=n_age_bins, infectious_window=infectious_window)
    return spec.with_inflow() if variant == "inflow" else spec


def run_fit(sim_cfg: SimConfig, fit_cfg: FitConfig):
    """Simulate a synthetic data set, seed from it, and fit it back."""
    result = run_simulation(sim_cfg)
    variant = "inflow" if sim_cfg.inflow_rate is not None else "base"
    spec = build_spec(variant, sim_cfg.n_age_bins, sim_cfg.infectious_window)
    seed = derive_seed(result, spec)
    return fit(
        result.observations(),
        spec,
        seed,
        chains=fit_cfg.chains,
        iterations=fit_cfg.iterations,
        sampler=MetropolisSampler.from_config(fit_cfg),
    )


def _add_model_args(sp):
    sp.add_argument("--age-bins", type=int, default=N_AGE_BINS,
                    metavar="W",
                    help=f"Number of infection-age bins (default: {N_AGE_BINS})")
    sp.add_argument("--window", type=str, default=None,
                    metavar="A,B",
                    help="Inclusive infectious age window (default: %d,%d)" % INFECTIOUS_WINDOW)


def _add_sim_args(sp):
    _add_model_args(sp)
    sp.add_argument("--t-max", type=int, default=60,
                    metavar="DAYS",
                    help="Number of simulated days, day 0 included (default: 60)")
    sp.add_argument("--r0", type=float, default=2.0,
                    help="Reproduction number (default: 2.0)")
    sp.add_argument("--mortality", type=float, default=0.1,
                    help="Death probability on the last age bin (default: 0.1)")
    sp.add_argument("--observation", type=float, default=0.5,
                    help="Case observation probability (default: 0.5)")
    sp.add_argument("--inflow-rate", type=float, default=None,
                    help="Daily external inflow rate; omit for no inflow")
    sp.add_argument("--initial-state", type=str, default=None,
                    metavar="LIST",
                    help="Day-0 state, W comma separated counts (default: 1,0,...,0)")
    sp.add_argument("--seed", type=int, default=SEED,
                    metavar="SEED",
                    help=f"RNG seed for reproducibility (default: {SEED})")


def _sim_config(args) -> SimConfig:
    init = parse_int_list(args.initial_state)
    return SimConfig(
        t_max=args.t_max,
        r0=args.r0,
        mortality_prob=args.mortality,
        observation_prob=args.observation,
        inflow_rate=args.inflow_rate,
        n_age_bins=args.age_bins,
        infectious_window=parse_window(args.window) or INFECTIOUS_WINDOW,
        initial_state=init or None,
        seed=args.seed,
        out_path=getattr(args, "out", SimConfig.out_path),
        use_tempfile=getattr(args, "use_tempfile", False),
    )


def main(argv=None):
    p = argparse.ArgumentParser(description="Age-structured epidemic state-space model")
    p.add_argument("--log-level", default="INFO",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                   help="Logging level (default: INFO)")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- simulate ----------
    sim_p = sub.add_parser("simulate", help="Simulate one trajectory and write it to CSV")
    _add_sim_args(sim_p)
    sim_p.add_argument("--out", default=SimConfig.out_path,
                       metavar="PATH",
                       help=f"Output CSV path (default: {SimConfig.out_path})")
    sim_p.add_argument("--use-tempfile", action="store_true",
                       help="Write to a temporary file instead of --out")

    # ---------- model ----------
    model_p = sub.add_parser("model", help="Print the model as BUGS/JAGS text")
    model_p.add_argument("--variant", choices=["base", "inflow"], default="base")
    _add_model_args(model_p)

    # ---------- fit ----------
    fit_p = sub.add_parser("fit", help="Simulate synthetic data and fit the model to it")
    _add_sim_args(fit_p)
    fit_p.add_argument("--chains", type=int, default=FitConfig.chains)
    fit_p.add_argument("--iterations", type=int, default=FitConfig.iterations)
    fit_p.add_argument("--burn-in", type=int, default=FitConfig.burn_in)
    fit_p.add_argument("--n-jobs", type=int, default=1,
                       help="Parallel chains through joblib (default: 1, serial)")

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    t0 = time.perf_counter()

    if args.cmd == "simulate":
        cfg = _sim_config(args)
        result = run_simulation(cfg)
        path = write_trajectory_csv(result, out_path=None if cfg.use_tempfile else cfg.out_path,
                                    use_tempfile=cfg.use_tempfile,
                                    infectious_window=cfg.infectious_window, seed=cfg.seed)
        print("Simulation done ->", path)

    elif args.cmd == "model":
        spec = build_spec(args.variant, args.age_bins, parse_window(args.window) or INFECTIOUS_WINDOW)
        print(spec.to_bugs(), end="")
        return

    elif args.cmd == "fit":
        sim_cfg = _sim_config(args)
        fit_cfg = FitConfig(chains=args.chains, iterations=args.iterations,
                            burn_in=args.burn_in, seed=args.seed, n_jobs=args.n_jobs)
        posterior = run_fit(sim_cfg, fit_cfg)
        print(posterior.summary().to_string())

    print(f"Done in {time.perf_counter() - t0:.2f}s")


if __name__ == "__main__":
    main()
