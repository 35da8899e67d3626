"""Landscape grid consumed by the dispersal engines.

A Landscape holds one population layer per life stage on a shared
rectangular grid plus the auxiliary layers dispersal reads:
habitat suitability, carrying capacity and any named rasters
(barrier maps, custom layers).

No-habitat cells are NaN in every population layer. Engines treat them
as holding zero individuals and never move anyone into them; the NaN
marker is restored on every layer they return.

Engines never modify a Landscape in place: every dispersal step works on
`copy()` and returns the copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np


@dataclass
class Landscape:
    """Stage-structured population on a habitat grid.

    Attributes:
        population: (n_stages, n_rows, n_cols) counts; NaN = no habitat.
        suitability: (n_rows, n_cols) or (n_timesteps, n_rows, n_cols)
            habitat suitability in [0, 1].
        carrying_capacity: (n_rows, n_cols) ceiling per cell.
        layers: Named auxiliary rasters, (n_rows, n_cols) or
            (n_timesteps, n_rows, n_cols).
        resolution: (x_res, y_res) cell size in map units.
        origin: (x_min, y_min) map position of the lower-left grid corner.
        absorbed: (n_stages,) individuals removed by lethal barriers in
            the dispersal step that produced this landscape; None on
            landscapes built by hand.
    """
    population: np.ndarray
    suitability: Optional[np.ndarray] = None
    carrying_capacity: Optional[np.ndarray] = None
    layers: Dict[str, np.ndarray] = field(default_factory=dict)
    resolution: Tuple[float, float] = (1.0, 1.0)
    origin: Tuple[float, float] = (0.0, 0.0)
    absorbed: Optional[np.ndarray] = None

    def __post_init__(self):
        pop = np.asarray(self.population, dtype=np.float64)
        if pop.ndim == 2:
            pop = pop[np.newaxis]
        if pop.ndim != 3:
            raise ValueError(
                f"population must be (n_stages, n_rows, n_cols), got shape {pop.shape}"
            )
        self.population = pop
        x_res, y_res = (float(r) for r in self.resolution)
        if x_res <= 0 or y_res <= 0:
            raise ValueError(f"resolution must be positive, got {self.resolution}")
        self.resolution = (x_res, y_res)
        if self.suitability is not None:
            self.suitability = self._check_layer(self.suitability, "suitability")
        if self.carrying_capacity is not None:
            self.carrying_capacity = self._check_layer(
                self.carrying_capacity, "carrying_capacity")
        self.layers = {
            name: self._check_layer(layer, name)
            for name, layer in self.layers.items()
        }

    def _check_layer(self, layer, name: str) -> np.ndarray:
        arr = np.asarray(layer, dtype=np.float64)
        if arr.shape[-2:] != self.shape or arr.ndim not in (2, 3):
            raise ValueError(
                f"layer '{name}' has shape {arr.shape}, expected {self.shape} "
                f"or (n_timesteps, *{self.shape})"
            )
        return arr

    # ── Shape & mask ─────────────────────────────────────────────────

    @property
    def n_stages(self) -> int:
        return self.population.shape[0]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.population.shape[1], self.population.shape[2]

    @property
    def n_cells(self) -> int:
        return self.shape[0] * self.shape[1]

    def habitat_mask(self) -> np.ndarray:
        """True where cells hold habitat (stage 0 is not NaN)."""
        return ~np.isnan(self.population[0])

    # ── Layer access ─────────────────────────────────────────────────

    @staticmethod
    def _at_timestep(layer: np.ndarray, timestep: int) -> np.ndarray:
        if layer.ndim == 3:
            return layer[min(timestep, layer.shape[0] - 1)]
        return layer

    def suitability_at(self, timestep: int = 0) -> Optional[np.ndarray]:
        """Suitability for `timestep` (time-varying stacks are indexed)."""
        if self.suitability is None:
            return None
        return self._at_timestep(self.suitability, timestep)

    def get_layer(self, name: str, timestep: int = 0) -> Optional[np.ndarray]:
        """Look up a layer by name for `timestep`.

        'suitability' and 'carrying_capacity' resolve to the dedicated
        fields (None when absent); any other name must be in `layers`.

        Raises:
            KeyError: If `name` is not a known layer.
        """
        if name == "suitability":
            return self.suitability_at(timestep)
        if name == "carrying_capacity":
            return self.carrying_capacity
        if name not in self.layers:
            raise KeyError(
                f"Landscape has no layer '{name}'. "
                f"Available: {sorted(self.layers)}"
            )
        return self._at_timestep(self.layers[name], timestep)

    # ── Geometry ─────────────────────────────────────────────────────

    def map_coordinates(self) -> np.ndarray:
        """Cell-centre (x, y) for every cell, in map units.

        Row-major order matching `population[stage].ravel()`. The grid's
        lower-left corner sits at `origin`; columns step by x_res eastwards
        and rows by y_res southwards from the top row.

        Returns:
            (n_cells, 2) float array.
        """
        n_rows, n_cols = self.shape
        x_res, y_res = self.resolution
        x0, y0 = self.origin
        rows, cols = np.mgrid[0:n_rows, 0:n_cols]
        x = x0 + (cols.ravel() + 0.5) * x_res
        y = y0 + (n_rows - rows.ravel() - 0.5) * y_res
        return np.column_stack([x, y]).astype(np.float64)

    def cell_coordinates(self) -> np.ndarray:
        """Cell-centre (x, y) for every cell, in cell units.

        `map_coordinates()` divided by the resolution, so a step of one
        column or one row is a distance of 1 whatever the cell size, with
        y increasing northwards. Kernel distance decay is measured on
        these.

        Returns:
            (n_cells, 2) float array.
        """
        return self.map_coordinates() / np.asarray(self.resolution, dtype=np.float64)

    # ── Totals ───────────────────────────────────────────────────────

    def stage_totals(self) -> np.ndarray:
        """Population per stage over habitat cells. Shape: (n_stages,)."""
        return np.nansum(self.population, axis=(1, 2))

    def total_population(self) -> float:
        return float(self.stage_totals().sum())

    def copy(self) -> "Landscape":
        """Copy population and carrying capacity; share read-only layers.

        `absorbed` describes one step and is not carried over.
        """
        return Landscape(
            population=self.population.copy(),
            suitability=self.suitability,
            carrying_capacity=(None if self.carrying_capacity is None
                               else self.carrying_capacity.copy()),
            layers=dict(self.layers),
            resolution=self.resolution,
            origin=self.origin,
        )
