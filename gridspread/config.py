"""Configuration system for gridspread.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys; unknown keys are ignored so
that a config written for a newer version still loads.

Per-stage options (dispersal_proportion, dispersal_distance) accept a
scalar or a list; lists shorter than the number of life stages are
recycled by the engines with a warning.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from gridspread.types import ArrivalProbability, BarrierType, DispersalMethod


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run length, replication and seeding."""
    seed: int = 42
    n_timesteps: int = 10
    n_replicates: int = 1
    parallel_workers: int = 1     # threads for stage/replicate parallelism


@dataclass
class KernelSection:
    """Dispersal kernel (distance in cell units)."""
    type: str = "exponential"     # 'exponential' or 'gaussian'
    distance_decay: float = 0.1   # decay length λ (cells)
    normalize: bool = False       # scale to a 2D probability density


@dataclass
class DispersalSection:
    """Dispersal engine selection and options.

    arrival_probability: for method='kernel' one of suitability |
    carrying_capacity | both (default both); for cellular_automata the
    name of the landscape layer used as arrival weights (default
    suitability). Ignored by method='fast'.
    """
    method: str = "fast"          # 'fast', 'kernel', 'cellular_automata'
    dispersal_proportion: Union[float, List[float]] = 1.0
    demographic_stochasticity: bool = True
    arrival_probability: Optional[str] = None
    dispersal_distance: Union[int, List[int]] = 1   # cells (cellular_automata)
    dispersal_steps: int = 1                        # iterations (cellular_automata)
    barrier_type: Union[str, int] = "blocking"      # 'blocking'/0 or 'lethal'/1
    use_barriers: bool = False
    barriers_map: Optional[str] = None              # landscape layer name
    carrying_capacity: str = "carrying_capacity"    # landscape layer name
    fft_factor: float = 2.0                         # torus / grid size ratio


@dataclass
class SimulationConfig:
    """Complete dispersal run configuration.

    Load from YAML via `load_config()`.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    kernel: KernelSection = field(default_factory=KernelSection)
    dispersal: DispersalSection = field(default_factory=DispersalSection)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

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


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    section_map = {
        'simulation': SimulationSection,
        'kernel': KernelSection,
        'dispersal': DispersalSection,
    }
    sections = {}
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def _as_list(value) -> List:
    return list(value) if isinstance(value, (list, tuple)) else [value]


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure."""
    s = config.simulation
    if s.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if s.n_timesteps < 1:
        raise ValueError(
            f"simulation.n_timesteps must be >= 1, got {s.n_timesteps}"
        )
    if s.n_replicates < 1:
        raise ValueError(
            f"simulation.n_replicates must be >= 1, got {s.n_replicates}"
        )
    if s.parallel_workers < 1:
        raise ValueError(
            f"simulation.parallel_workers must be >= 1, got {s.parallel_workers}"
        )

    # Kernel
    k = config.kernel
    valid_kernels = {"exponential", "gaussian"}
    if k.type not in valid_kernels:
        raise ValueError(
            f"kernel.type must be one of {valid_kernels}, got '{k.type}'"
        )
    if k.distance_decay <= 0:
        raise ValueError(
            f"kernel.distance_decay must be positive, got {k.distance_decay}"
        )

    # Dispersal
    d = config.dispersal
    valid_methods = {m.value for m in DispersalMethod}
    if d.method not in valid_methods:
        raise ValueError(
            f"dispersal.method must be one of {valid_methods}, got '{d.method}'"
        )

    proportions = _as_list(d.dispersal_proportion)
    if len(proportions) == 0:
        raise ValueError("dispersal.dispersal_proportion must not be empty")
    for p in proportions:
        if not (0.0 <= p <= 1.0):
            raise ValueError(
                f"dispersal.dispersal_proportion values must be in [0, 1], "
                f"got {proportions}"
            )

    distances = _as_list(d.dispersal_distance)
    if len(distances) == 0:
        raise ValueError("dispersal.dispersal_distance must not be empty")
    for dist in distances:
        if int(dist) != dist or dist < 0:
            raise ValueError(
                f"dispersal.dispersal_distance values must be non-negative "
                f"integers, got {distances}"
            )

    if d.dispersal_steps < 1:
        raise ValueError(
            f"dispersal.dispersal_steps must be >= 1, got {d.dispersal_steps}"
        )

    valid_barriers = sorted(b.name.lower() for b in BarrierType)
    try:
        BarrierType.parse(d.barrier_type)
    except (ValueError, TypeError):
        raise ValueError(
            f"dispersal.barrier_type must be one of {valid_barriers} "
            f"or their codes {[int(b) for b in BarrierType]}, "
            f"got {d.barrier_type!r}"
        ) from None
    if d.use_barriers and d.barriers_map is None:
        raise ValueError(
            "dispersal.barriers_map required when use_barriers=True"
        )

    if d.method == DispersalMethod.KERNEL.value and d.arrival_probability is not None:
        valid_arrival = {a.value for a in ArrivalProbability}
        if d.arrival_probability not in valid_arrival:
            raise ValueError(
                f"dispersal.arrival_probability must be one of "
                f"{valid_arrival} for method 'kernel', "
                f"got '{d.arrival_probability}'"
            )

    if d.fft_factor < 1:
        raise ValueError(
            f"dispersal.fft_factor must be >= 1, got {d.fft_factor}"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML (skipped if the
            file does not exist).
        overrides: Optional dict of parameter overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
