"""Timestep driver and replicate runner.

simulate() applies a sequence of step functions to a landscape once per
timestep:

    for t in range(n_timesteps):
        for step in dynamics:
            landscape = step(landscape, t, rng)

Any callable with the step signature can be mixed in with the dispersal
engines (e.g. a demographic update written by the caller). Per-stage
totals are recorded after every timestep, along with any individuals the
steps report as absorbed by lethal barriers.

run_replicates() repeats the simulation with independent random streams
spawned from one master seed. Replicates share no mutable state, so they
may run on a thread pool; results do not depend on the worker count.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from gridspread.config import SimulationConfig, default_config
from gridspread.dispersal import build_dispersal_engine
from gridspread.landscape import Landscape
from gridspread.rng import create_replicate_rngs

StepFunction = Callable[[Landscape, int, np.random.Generator], Landscape]


@dataclass
class SimulationResult:
    """Trajectory of one simulation run."""
    n_timesteps: int = 0
    n_stages: int = 0
    # (n_timesteps + 1, n_stages); row 0 is the initial state
    stage_totals: Optional[np.ndarray] = None
    final_landscape: Optional[Landscape] = None
    replicate: int = 0
    # (n_timesteps, n_stages) individuals removed by lethal barriers
    absorbed: Optional[np.ndarray] = None

    def total_population(self) -> np.ndarray:
        """All-stage total per recorded timestep. Shape: (n_timesteps + 1,)."""
        return self.stage_totals.sum(axis=1)


def _as_dynamics(dynamics: Union[StepFunction, Sequence[StepFunction]]) -> List[StepFunction]:
    if callable(dynamics):
        return [dynamics]
    return list(dynamics)


def simulate(
    landscape: Landscape,
    dynamics: Union[StepFunction, Sequence[StepFunction]],
    n_timesteps: int,
    rng: Optional[np.random.Generator] = None,
    progress_callback=None,
    replicate: int = 0,
) -> SimulationResult:
    """Run `dynamics` on `landscape` for `n_timesteps` timesteps.

    Args:
        landscape: Initial landscape (not modified).
        dynamics: One step function or a sequence applied in order.
        n_timesteps: Number of timesteps.
        rng: Random generator; a fresh default_rng() if None.
        progress_callback: Optional callable(timestep, n_timesteps).
        replicate: Replicate index stored on the result.

    Returns:
        SimulationResult with per-stage totals and the final landscape.
    """
    steps = _as_dynamics(dynamics)
    if rng is None:
        rng = np.random.default_rng()

    stage_totals = np.zeros((n_timesteps + 1, landscape.n_stages), dtype=np.float64)
    stage_totals[0] = landscape.stage_totals()
    absorbed = np.zeros((n_timesteps, landscape.n_stages), dtype=np.float64)

    current = landscape
    for t in range(n_timesteps):
        for step in steps:
            previous, current = current, step(current, t, rng)
            if current is not previous and current.absorbed is not None:
                absorbed[t] += current.absorbed
        stage_totals[t + 1] = current.stage_totals()
        if progress_callback is not None:
            progress_callback(t + 1, n_timesteps)

    return SimulationResult(
        n_timesteps=n_timesteps,
        n_stages=landscape.n_stages,
        stage_totals=stage_totals,
        final_landscape=current,
        replicate=replicate,
        absorbed=absorbed,
    )


def run_replicates(
    landscape: Landscape,
    dynamics: Union[StepFunction, Sequence[StepFunction]],
    n_timesteps: int,
    n_replicates: int = 1,
    seed: int = 42,
    parallel_workers: int = 1,
    progress_callback=None,
) -> List[SimulationResult]:
    """Run independent replicate simulations.

    Each replicate gets its own generator from create_replicate_rngs(),
    so replicate k is identical whether run alone, serially or in
    parallel.

    Args:
        landscape: Initial landscape shared read-only by all replicates.
        dynamics: Step function(s).
        n_timesteps: Timesteps per replicate.
        n_replicates: Number of replicates.
        seed: Master seed.
        parallel_workers: Threads; 1 runs serially.
        progress_callback: Optional callable(replicates_done, n_replicates).

    Returns:
        List of SimulationResult ordered by replicate index.
    """
    rngs = create_replicate_rngs(seed, n_replicates)

    def run(k: int) -> SimulationResult:
        return simulate(landscape, dynamics, n_timesteps, rng=rngs[k], replicate=k)

    results: List[SimulationResult] = []
    if parallel_workers > 1 and n_replicates > 1:
        with ThreadPoolExecutor(max_workers=parallel_workers) as pool:
            for k, res in enumerate(pool.map(run, range(n_replicates))):
                results.append(res)
                if progress_callback is not None:
                    progress_callback(k + 1, n_replicates)
    else:
        for k in range(n_replicates):
            results.append(run(k))
            if progress_callback is not None:
                progress_callback(k + 1, n_replicates)
    return results


def run_from_config(
    landscape: Landscape,
    config: Optional[SimulationConfig] = None,
    extra_dynamics: Sequence[StepFunction] = (),
    progress_callback=None,
) -> List[SimulationResult]:
    """Build the configured dispersal engine and run all replicates.

    `extra_dynamics` run after dispersal within each timestep.
    """
    if config is None:
        config = default_config()
    engine = build_dispersal_engine(config)
    sim = config.simulation
    return run_replicates(
        landscape,
        [engine, *extra_dynamics],
        n_timesteps=sim.n_timesteps,
        n_replicates=sim.n_replicates,
        seed=sim.seed,
        parallel_workers=sim.parallel_workers,
        progress_callback=progress_callback,
    )
