"""Cellular-automata dispersal: bounded, ring-by-ring local movement.

Each iteration, the movers in every cell spread over the square rings
(Chebyshev distance 1..dispersal_distance) around it. A destination in
ring r gets weight

    dispersal_vector[r − 1] × arrival_probability(dest)

normalised over the source's in-grid habitat destinations. Movers travel
along the straight cell path from source to destination:
  - blocking barrier: they stop on the last habitat cell before it
  - lethal barrier:   they die and are counted as absorbed
Arrivals, including blocked movers stopping short, are capped by
carrying-capacity headroom max(K − N, 0) at the cell they land on;
whatever a full cell turns away goes back to its source.

Movers keep moving for `dispersal_steps` iterations; stayers never move.

All geometry (destinations, paths, barrier landings) is resolved once per
call and shared by every iteration. The per-iteration work is a fixed
number of whole-grid array operations per ring offset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from gridspread.types import BarrierType, DispersalConfigurationError


# ═══════════════════════════════════════════════════════════════════════
# RING GEOMETRY
# ═══════════════════════════════════════════════════════════════════════

def _round_half_away(v: float) -> int:
    return int(np.sign(v) * np.floor(abs(v) + 0.5))


def ring_offsets(dispersal_distance: int) -> List[Tuple[int, int, int]]:
    """All (dy, dx, ring) offsets with 1 ≤ max(|dy|, |dx|) ≤ distance."""
    offsets = []
    for dy in range(-dispersal_distance, dispersal_distance + 1):
        for dx in range(-dispersal_distance, dispersal_distance + 1):
            ring = max(abs(dy), abs(dx))
            if 1 <= ring <= dispersal_distance:
                offsets.append((dy, dx, ring))
    return offsets


def offset_path(dy: int, dx: int, ring: int) -> List[Tuple[int, int]]:
    """Cells crossed moving from (0, 0) to (dy, dx), destination last.

    One cell per ring: step t lands on round(t · offset / ring), so the
    path is symmetric under reflection of the offset.
    """
    return [
        (_round_half_away(t * dy / ring), _round_half_away(t * dx / ring))
        for t in range(1, ring + 1)
    ]


@dataclass
class _OffsetMove:
    """Resolved geometry of one ring offset for every source cell."""
    dest: np.ndarray       # (n_cells,) flat destination index, −1 if off-grid
    weight: np.ndarray     # (n_cells,) unnormalised weight
    blocked: np.ndarray    # (n_cells,) path meets a barrier
    landing: np.ndarray    # (n_cells,) flat cell where blocked movers stop


def _resolve_offset(dy: int, dx: int, ring: int,
                    ring_weight: float,
                    arrival: np.ndarray,
                    habitat: np.ndarray,
                    barrier: Optional[np.ndarray]) -> _OffsetMove:
    n_rows, n_cols = habitat.shape
    rows, cols = np.indices((n_rows, n_cols))
    rows = rows.ravel()
    cols = cols.ravel()
    source = rows * n_cols + cols

    dr, dc = rows + dy, cols + dx
    in_grid = (dr >= 0) & (dr < n_rows) & (dc >= 0) & (dc < n_cols)
    dest = np.where(in_grid, dr * n_cols + dc, -1)
    dest_safe = np.where(in_grid, dest, 0)
    weight = np.where(in_grid & habitat.ravel()[dest_safe],
                      ring_weight * arrival.ravel()[dest_safe], 0.0)

    blocked = np.zeros(source.size, dtype=bool)
    landing = source.copy()
    if barrier is not None:
        hab_flat = habitat.ravel()
        bar_flat = barrier.ravel()
        for py, px in offset_path(dy, dx, ring):
            pr, pc = rows + py, cols + px
            inside = (pr >= 0) & (pr < n_rows) & (pc >= 0) & (pc < n_cols)
            cell = np.where(inside, pr * n_cols + pc, 0)
            blocked |= inside & bar_flat[cell]
            advance = ~blocked & inside & hab_flat[cell]
            landing = np.where(advance, cell, landing)

    return _OffsetMove(dest=dest, weight=weight, blocked=blocked, landing=landing)


# ═══════════════════════════════════════════════════════════════════════
# DISPERSAL
# ═══════════════════════════════════════════════════════════════════════

def cellular_automata_dispersal_stage(
    population: np.ndarray,
    carrying_capacity: Optional[np.ndarray],
    arrival_probability: Optional[np.ndarray],
    barriers: Optional[np.ndarray],
    barrier_type=BarrierType.BLOCKING,
    use_barriers: bool = False,
    dispersal_steps: int = 1,
    dispersal_distance: int = 1,
    dispersal_vector: Optional[np.ndarray] = None,
    dispersal_proportion: float = 1.0,
) -> Tuple[np.ndarray, float]:
    """Run cellular-automata dispersal for one life stage.

    Args:
        population: (n_rows, n_cols) stage population; NaN = no habitat.
        carrying_capacity: (n_rows, n_cols) ceiling per cell. None or NaN
            cells have no ceiling.
        arrival_probability: (n_rows, n_cols) destination weights. None
            admits every habitat cell equally; NaN or ≤ 0 admits nobody.
        barriers: (n_rows, n_cols) 1 = barrier, 0 = open.
        barrier_type: BarrierType (or 0/1, 'blocking'/'lethal').
        use_barriers: Apply `barriers`.
        dispersal_steps: Movement iterations (≥ 1).
        dispersal_distance: Outermost ring a mover can reach per step.
        dispersal_vector: Ring weights; entry k weights ring k + 1. At
            least `dispersal_distance` entries. Default: uniform.
        dispersal_proportion: Fraction of each cell that moves.

    Returns:
        (new_population, absorbed): the stage layer after dispersal (NaN
        on no-habitat cells) and the total killed by lethal barriers.

    Raises:
        DispersalConfigurationError: If barriers are enabled without a
            barrier map.
        ValueError: For invalid step counts or a short dispersal_vector.
    """
    barrier_type = BarrierType.parse(barrier_type)
    if dispersal_steps < 1:
        raise ValueError(f"dispersal_steps must be >= 1, got {dispersal_steps}")
    if dispersal_vector is None:
        dispersal_vector = np.ones(dispersal_distance, dtype=np.float64)
    dispersal_vector = np.asarray(dispersal_vector, dtype=np.float64)
    if len(dispersal_vector) < dispersal_distance:
        raise ValueError(
            f"dispersal_vector has {len(dispersal_vector)} ring weights, "
            f"dispersal_distance {dispersal_distance} needs "
            f"{dispersal_distance}"
        )
    if use_barriers and barriers is None:
        raise DispersalConfigurationError(
            "use_barriers=True requires a barriers map"
        )

    population = np.asarray(population, dtype=np.float64)
    habitat = ~np.isnan(population)
    pop = np.where(habitat, population, 0.0).ravel()

    if arrival_probability is None:
        arrival = habitat.astype(np.float64)
    else:
        arrival = np.asarray(arrival_probability, dtype=np.float64)
        arrival = np.where(habitat & np.isfinite(arrival) & (arrival > 0),
                           arrival, 0.0)

    if carrying_capacity is None:
        capacity = np.full(pop.size, np.inf)
    else:
        capacity = np.asarray(carrying_capacity, dtype=np.float64).ravel()
        capacity = np.where(np.isnan(capacity), np.inf, capacity)

    barrier = None
    if use_barriers:
        barrier = np.nan_to_num(np.asarray(barriers, dtype=np.float64)) > 0

    moves = [
        _resolve_offset(dy, dx, ring, dispersal_vector[ring - 1],
                        arrival, habitat, barrier)
        for dy, dx, ring in ring_offsets(dispersal_distance)
    ]
    moves = [m for m in moves if np.any(m.weight > 0)]

    total_weight = np.zeros(pop.size, dtype=np.float64)
    for m in moves:
        total_weight += m.weight
    can_move = total_weight > 0
    safe_total = np.where(can_move, total_weight, 1.0)

    source = np.arange(pop.size)
    staying = pop * (1.0 - dispersal_proportion)
    moving = pop * dispersal_proportion
    absorbed = 0.0

    for _ in range(dispersal_steps):
        headroom = np.maximum(capacity - (staying + moving), 0.0)

        # Tentative inflow per destination; blocked movers count against
        # the cell they stop on
        inflow = np.zeros(pop.size, dtype=np.float64)
        for m in moves:
            amount = moving * m.weight / safe_total
            go = ~m.blocked & (amount > 0)
            np.add.at(inflow, m.dest[go], amount[go])
            if barrier_type is BarrierType.BLOCKING:
                stopped = m.blocked & (amount > 0) & (m.landing != source)
                np.add.at(inflow, m.landing[stopped], amount[stopped])
        with np.errstate(divide="ignore", invalid="ignore"):
            accept = np.where(inflow > headroom, headroom / inflow, 1.0)

        new_moving = np.where(can_move, 0.0, moving)
        for m in moves:
            amount = moving * m.weight / safe_total
            stopped = m.blocked & (amount > 0)
            if barrier_type is BarrierType.LETHAL:
                absorbed += float(amount[stopped].sum())
            else:
                landed = amount[stopped] * np.where(
                    m.landing[stopped] == source[stopped], 1.0,
                    accept[m.landing[stopped]])
                np.add.at(new_moving, m.landing[stopped], landed)
                np.add.at(new_moving, source[stopped], amount[stopped] - landed)

            go = ~m.blocked & (amount > 0)
            arriving = amount[go] * accept[m.dest[go]]
            np.add.at(new_moving, m.dest[go], arriving)
            np.add.at(new_moving, source[go], amount[go] - arriving)
        moving = new_moving

    result = (staying + moving).reshape(population.shape)
    result[~habitat] = np.nan
    return result, absorbed
