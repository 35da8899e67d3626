"""Dispersal engines: one timestep of movement for every life stage.

Every engine implements the same step contract

    engine(landscape, timestep, rng) -> Landscape

and returns a new Landscape; the input is never modified. Per call an
engine:
  1. recycles per-stage parameters to the number of stages (warning on
     the first timestep when the sequence was too short),
  2. resolves shared inputs once (embedding, arrival probability,
     carrying capacity, barriers),
  3. disperses each stage with a positive dispersal proportion, serially
     or on a thread pool, each stage with its own random stream,
  4. merges the stage layers into the returned copy.

Engines:
  - FastDispersal:              Fourier convolution (gridspread.fft)
  - KernelDispersal:            pairwise kernel weights (gridspread.kernel_dispersal)
  - CellularAutomataDispersal:  ring-by-ring movement (gridspread.cellular_automata)

build_dispersal_engine() picks and configures one from a
SimulationConfig.
"""

from __future__ import annotations

import warnings
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from gridspread.cellular_automata import cellular_automata_dispersal_stage
from gridspread.config import SimulationConfig
from gridspread.fft import ToroidalEmbedding, dispersal_fft, setup_fft
from gridspread.kernel_dispersal import (
    DistanceFunction,
    arrival_probability_values,
    euclidean_distance,
    kernel_dispersal_stage,
)
from gridspread.kernels import (
    Kernel,
    exponential_dispersal_kernel,
    gaussian_dispersal_kernel,
    normalized,
    ring_weights,
)
from gridspread.landscape import Landscape
from gridspread.rng import spawn_stage_rngs
from gridspread.types import (
    ArrivalProbability,
    BarrierType,
    DispersalConfigurationError,
    DispersalMethod,
)

CapacityFunction = Callable[[np.ndarray], np.ndarray]


# ═══════════════════════════════════════════════════════════════════════
# PER-STAGE PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

def recycle_per_stage(values, n_stages: int, name: str,
                      warn: bool = True) -> np.ndarray:
    """Return exactly one value per stage.

    A scalar applies to every stage. Too-short sequences are repeated
    (1, 2 → 1, 2, 1 for three stages) and, if `warn`, a UserWarning names
    the discrepancy. Longer sequences are cut to `n_stages`.
    """
    if np.ndim(values) == 0:
        return np.full(n_stages, float(values))
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 0:
        raise ValueError(f"{name} needs at least one value")
    if len(values) < n_stages:
        if warn:
            warnings.warn(
                f"{n_stages} life stages exist but {len(values)} {name}(s) "
                f"of {values.tolist()} were specified; recycling to "
                f"{n_stages} stages. Is this what was intended?",
                UserWarning,
                stacklevel=3,
            )
        values = np.resize(values, n_stages)
    return values[:n_stages]


# ═══════════════════════════════════════════════════════════════════════
# ENGINE INTERFACE
# ═══════════════════════════════════════════════════════════════════════

class DispersalEngine(ABC):
    """Base class for dispersal engines.

    Subclasses implement `prepare` (shared per-call inputs, computed
    before any stage runs so that configuration errors abort the whole
    timestep) and `disperse_stage` (one stage layer, reading only from
    the input landscape). A stage that loses individuals to lethal
    barriers records the loss in `context["absorbed"][stage]`; `step`
    reports the per-stage totals as `result.absorbed`.
    """

    method: DispersalMethod

    def __init__(self,
                 dispersal_proportion: Union[float, Sequence[float]] = 1.0,
                 parallel_workers: int = 1):
        self.dispersal_proportion = dispersal_proportion
        self.parallel_workers = parallel_workers

    def __call__(self, landscape: Landscape, timestep: int = 0,
                 rng: Optional[np.random.Generator] = None) -> Landscape:
        return self.step(landscape, timestep, rng)

    def step(self, landscape: Landscape, timestep: int = 0,
             rng: Optional[np.random.Generator] = None) -> Landscape:
        """Disperse every stage once and return the new landscape."""
        if rng is None:
            rng = np.random.default_rng()
        n_stages = landscape.n_stages
        proportions = recycle_per_stage(
            self.dispersal_proportion, n_stages, "dispersal proportion",
            warn=timestep == 0,
        )
        result = landscape.copy()
        context = self.prepare(landscape, result, timestep, proportions)
        # stages write only their own entry
        context["absorbed"] = np.zeros(n_stages, dtype=np.float64)

        stages = [s for s in range(n_stages) if proportions[s] > 0]
        stage_rngs = spawn_stage_rngs(rng, n_stages)

        def run(stage: int) -> np.ndarray:
            return self.disperse_stage(landscape, stage, proportions[stage],
                                       context, stage_rngs[stage])

        if self.parallel_workers > 1 and len(stages) > 1:
            with ThreadPoolExecutor(max_workers=self.parallel_workers) as pool:
                layers = list(pool.map(run, stages))
        else:
            layers = [run(s) for s in stages]

        for stage, layer in zip(stages, layers):
            result.population[stage] = layer
        result.absorbed = context["absorbed"]
        return result

    @abstractmethod
    def prepare(self, landscape: Landscape, result: Landscape,
                timestep: int, proportions: np.ndarray) -> Dict[str, Any]:
        """Resolve inputs shared by all stages of this call."""

    @abstractmethod
    def disperse_stage(self, landscape: Landscape, stage: int,
                       proportion: float, context: Dict[str, Any],
                       rng: np.random.Generator) -> np.ndarray:
        """Return the new (n_rows, n_cols) layer for `stage`."""


def _apply_capacity_function(fn: Optional[CapacityFunction],
                             result: Landscape, timestep: int) -> None:
    """Recompute carrying capacity from suitability on habitat cells."""
    if fn is None:
        return
    suitability = result.suitability_at(timestep)
    if suitability is None:
        raise DispersalConfigurationError(
            "carrying_capacity_function requires a suitability layer"
        )
    habitat = result.habitat_mask()
    capacity = (np.full(result.shape, np.nan) if result.carrying_capacity is None
                else result.carrying_capacity.copy())
    capacity[habitat] = fn(suitability[habitat])
    result.carrying_capacity = capacity


# ═══════════════════════════════════════════════════════════════════════
# FAST (FOURIER) DISPERSAL
# ═══════════════════════════════════════════════════════════════════════

class FastDispersal(DispersalEngine):
    """Kernel dispersal as an FFT convolution on a toroidal embedding.

    Ignores suitability, carrying capacity and barriers: every dispersing
    individual follows the kernel, and mass landing off-habitat is put
    back proportionally. The kernel is normalised over the torus.

    With demographic_stochasticity the dispersed layer is a multinomial
    draw of whole individuals whose total is exactly the rounded number
    of dispersers; without it the layer stays real-valued.
    """

    method = DispersalMethod.FAST

    def __init__(self,
                 dispersal_kernel: Optional[Kernel] = None,
                 dispersal_proportion: Union[float, Sequence[float]] = 1.0,
                 demographic_stochasticity: bool = True,
                 factor: float = 2,
                 parallel_workers: int = 1):
        super().__init__(dispersal_proportion, parallel_workers)
        if dispersal_kernel is None:
            dispersal_kernel = exponential_dispersal_kernel(distance_decay=0.1)
        self.dispersal_kernel = dispersal_kernel
        self.demographic_stochasticity = demographic_stochasticity
        self.factor = factor
        self._embeddings: Dict[Tuple[int, int], ToroidalEmbedding] = {}

    def embedding_for(self, shape: Tuple[int, int]) -> ToroidalEmbedding:
        """Cached embedding for a grid shape (kernel is fixed per engine)."""
        if shape not in self._embeddings:
            n_rows, n_cols = shape
            self._embeddings[shape] = setup_fft(
                x=np.arange(1, n_cols + 1, dtype=np.float64),
                y=np.arange(1, n_rows + 1, dtype=np.float64),
                kernel=normalized(self.dispersal_kernel),
                factor=self.factor,
            )
        return self._embeddings[shape]

    def prepare(self, landscape, result, timestep, proportions):
        return {"embedding": self.embedding_for(landscape.shape)}

    def disperse_stage(self, landscape, stage, proportion, context, rng):
        pop = landscape.population[stage]
        dispersing = pop * proportion
        staying = pop - dispersing
        dispersed = dispersal_fft(
            dispersing, context["embedding"],
            rng=rng if self.demographic_stochasticity else None,
        )
        return staying + dispersed


# ═══════════════════════════════════════════════════════════════════════
# KERNEL (PAIRWISE) DISPERSAL
# ═══════════════════════════════════════════════════════════════════════

class KernelDispersal(DispersalEngine):
    """Exact pairwise kernel dispersal weighted by arrival probability.

    Requires the landscape layers named by `arrival_probability`
    (suitability, carrying_capacity or both).
    """

    method = DispersalMethod.KERNEL

    def __init__(self,
                 distance_function: DistanceFunction = euclidean_distance,
                 dispersal_kernel: Optional[Kernel] = None,
                 arrival_probability: Union[str, ArrivalProbability] = "both",
                 dispersal_proportion: Union[float, Sequence[float]] = 1.0,
                 demographic_stochasticity: bool = True,
                 carrying_capacity_function: Optional[CapacityFunction] = None,
                 parallel_workers: int = 1):
        super().__init__(dispersal_proportion, parallel_workers)
        if dispersal_kernel is None:
            dispersal_kernel = exponential_dispersal_kernel(distance_decay=0.1)
        self.distance_function = distance_function
        self.dispersal_kernel = dispersal_kernel
        self.arrival_probability = ArrivalProbability(arrival_probability)
        self.demographic_stochasticity = demographic_stochasticity
        self.carrying_capacity_function = carrying_capacity_function

    def prepare(self, landscape, result, timestep, proportions):
        _apply_capacity_function(self.carrying_capacity_function, result, timestep)
        dispersing_stages = np.flatnonzero(proportions > 0)
        arrival = arrival_probability_values(
            landscape, self.arrival_probability, dispersing_stages, timestep,
            carrying_capacity=result.carrying_capacity,
        )
        return {"arrival": arrival, "xy": landscape.cell_coordinates()}

    def disperse_stage(self, landscape, stage, proportion, context, rng):
        pop = landscape.population[stage].ravel()
        dispersing = pop * proportion
        staying = pop - dispersing
        new = kernel_dispersal_stage(
            dispersing, staying, context["xy"], context["arrival"],
            self.dispersal_kernel,
            distance_function=self.distance_function,
            demographic_stochasticity=self.demographic_stochasticity,
        )
        return new.reshape(landscape.shape)


# ═══════════════════════════════════════════════════════════════════════
# CELLULAR-AUTOMATA DISPERSAL
# ═══════════════════════════════════════════════════════════════════════

class CellularAutomataDispersal(DispersalEngine):
    """Bounded ring-by-ring dispersal with barriers and capacity ceilings.

    `arrival_probability` and `carrying_capacity` name landscape layers;
    `barriers_map` is an array, a layer name, or None.
    """

    method = DispersalMethod.CELLULAR_AUTOMATA

    def __init__(self,
                 dispersal_distance: Union[int, Sequence[int]] = 1,
                 dispersal_kernel: Optional[Kernel] = None,
                 dispersal_proportion: Union[float, Sequence[float]] = 1.0,
                 barrier_type: Union[int, str, BarrierType] = BarrierType.BLOCKING,
                 dispersal_steps: int = 1,
                 use_barriers: bool = False,
                 barriers_map: Union[None, str, np.ndarray] = None,
                 arrival_probability: str = "suitability",
                 carrying_capacity: str = "carrying_capacity",
                 carrying_capacity_function: Optional[CapacityFunction] = None,
                 parallel_workers: int = 1):
        super().__init__(dispersal_proportion, parallel_workers)
        if dispersal_kernel is None:
            dispersal_kernel = exponential_dispersal_kernel(distance_decay=0.1)
        if dispersal_steps < 1:
            raise ValueError(f"dispersal_steps must be >= 1, got {dispersal_steps}")
        self.dispersal_distance = dispersal_distance
        self.dispersal_kernel = dispersal_kernel
        self.barrier_type = BarrierType.parse(barrier_type)
        self.dispersal_steps = dispersal_steps
        self.use_barriers = use_barriers
        self.barriers_map = barriers_map
        self.arrival_probability = arrival_probability
        self.carrying_capacity = carrying_capacity
        self.carrying_capacity_function = carrying_capacity_function

    def _layer(self, landscape: Landscape, name: str, timestep: int) -> np.ndarray:
        try:
            layer = landscape.get_layer(name, timestep)
        except KeyError as exc:
            raise DispersalConfigurationError(str(exc)) from None
        if layer is None:
            raise DispersalConfigurationError(
                f"cellular automata dispersal requires the landscape to have "
                f"a {name} layer"
            )
        return layer

    def prepare(self, landscape, result, timestep, proportions):
        _apply_capacity_function(self.carrying_capacity_function, result, timestep)
        distances = recycle_per_stage(
            self.dispersal_distance, landscape.n_stages, "dispersal distance",
            warn=timestep == 0,
        ).astype(int)

        barriers = None
        if self.use_barriers:
            if self.barriers_map is None:
                raise DispersalConfigurationError(
                    "use_barriers=True requires a barriers_map"
                )
            if isinstance(self.barriers_map, str):
                barriers = self._layer(result, self.barriers_map, timestep)
            else:
                barriers = np.asarray(self.barriers_map, dtype=np.float64)

        return {
            "arrival": self._layer(result, self.arrival_probability, timestep),
            "capacity": self._layer(result, self.carrying_capacity, timestep),
            "barriers": barriers,
            "distances": distances,
            "vectors": [ring_weights(self.dispersal_kernel, d) for d in distances],
        }

    def disperse_stage(self, landscape, stage, proportion, context, rng):
        layer, absorbed = cellular_automata_dispersal_stage(
            landscape.population[stage],
            carrying_capacity=context["capacity"],
            arrival_probability=context["arrival"],
            barriers=context["barriers"],
            barrier_type=self.barrier_type,
            use_barriers=self.use_barriers,
            dispersal_steps=self.dispersal_steps,
            dispersal_distance=int(context["distances"][stage]),
            dispersal_vector=context["vectors"][stage],
            dispersal_proportion=proportion,
        )
        context["absorbed"][stage] = absorbed
        return layer


# ═══════════════════════════════════════════════════════════════════════
# BUILDERS
# ═══════════════════════════════════════════════════════════════════════

def build_kernel(config: SimulationConfig) -> Kernel:
    """Dispersal kernel described by config.kernel."""
    k = config.kernel
    if k.type == "exponential":
        return exponential_dispersal_kernel(k.distance_decay, normalize=k.normalize)
    if k.type == "gaussian":
        return gaussian_dispersal_kernel(k.distance_decay, normalize=k.normalize)
    raise ValueError(f"unknown kernel type '{k.type}'")


def build_dispersal_engine(
    config: SimulationConfig,
    dispersal_kernel: Optional[Kernel] = None,
    carrying_capacity_function: Optional[CapacityFunction] = None,
) -> DispersalEngine:
    """Construct the engine selected by config.dispersal.method.

    Args:
        config: Validated SimulationConfig.
        dispersal_kernel: Overrides the kernel built from config.kernel.
        carrying_capacity_function: Optional suitability → capacity map
            for the kernel and cellular-automata engines.

    Returns:
        Configured DispersalEngine.
    """
    d = config.dispersal
    kernel = dispersal_kernel if dispersal_kernel is not None else build_kernel(config)
    method = DispersalMethod(d.method)
    workers = config.simulation.parallel_workers

    if method is DispersalMethod.FAST:
        return FastDispersal(
            dispersal_kernel=kernel,
            dispersal_proportion=d.dispersal_proportion,
            demographic_stochasticity=d.demographic_stochasticity,
            factor=d.fft_factor,
            parallel_workers=workers,
        )
    if method is DispersalMethod.KERNEL:
        return KernelDispersal(
            dispersal_kernel=kernel,
            arrival_probability=d.arrival_probability or "both",
            dispersal_proportion=d.dispersal_proportion,
            demographic_stochasticity=d.demographic_stochasticity,
            carrying_capacity_function=carrying_capacity_function,
            parallel_workers=workers,
        )
    return CellularAutomataDispersal(
        dispersal_distance=d.dispersal_distance,
        dispersal_kernel=kernel,
        dispersal_proportion=d.dispersal_proportion,
        barrier_type=d.barrier_type,
        dispersal_steps=d.dispersal_steps,
        use_barriers=d.use_barriers,
        barriers_map=d.barriers_map,
        arrival_probability=d.arrival_probability or "suitability",
        carrying_capacity=d.carrying_capacity,
        carrying_capacity_function=carrying_capacity_function,
        parallel_workers=workers,
    )
