"""Pairwise kernel dispersal: exact distance weighting between cells.

Every cell holding dispersers sends them to every admissible destination
in proportion to

    kernel(distance(source, dest)) × arrival_probability(dest)

normalised over destinations. Nothing is approximated, so the cost is
O(n_sources × n_destinations) per stage; use the Fourier engine for
large grids without arrival constraints.

Admissible destinations: habitat cells whose arrival probability is
positive and finite. Arrival probability comes from suitability, the
remaining carrying-capacity headroom (1 − occupied / K), or their
product.

With demographic stochasticity each source's contribution vector is
turned into whole individuals by largest-remainder rounding, so a source
with n dispersers delivers exactly round(n) individuals.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np
from scipy.spatial.distance import cdist

from gridspread.landscape import Landscape
from gridspread.types import ArrivalProbability, DispersalConfigurationError

DistanceFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]


def euclidean_distance(source: np.ndarray, destinations: np.ndarray) -> np.ndarray:
    """Straight-line distance from one (x, y) point to each row of `destinations`."""
    return cdist(np.atleast_2d(source), destinations)[0]


def largest_remainder_round(values: np.ndarray,
                            total: Optional[int] = None) -> np.ndarray:
    """Round non-negative reals to integers with a fixed sum.

    Every value is floored; the shortfall is handed out one unit each to
    the entries with the largest fractional remainders. Equal remainders
    are served in index order. If floating-point drift leaves the floors
    above the target, units are taken back from the smallest remainders.

    Args:
        values: Non-negative reals.
        total: Target sum. Default: round(sum(values)). Pass the rounded
            quantity the values were split from, since their float sum
            can land either side of a .5.

    Example:
        >>> largest_remainder_round(np.array([0.5, 0.5, 1.0]))
        array([1., 0., 1.])
    """
    values = np.asarray(values, dtype=np.float64)
    rounded = np.floor(values)
    target = int(round(values.sum())) if total is None else int(total)
    n_extra = target - int(rounded.sum())
    remainders = values - rounded
    if n_extra > 0:
        # stable sort on the negated remainders keeps ties in index order
        order = np.argsort(-remainders, kind="stable")
        rounded[order[:n_extra]] += 1.0
    elif n_extra < 0:
        order = np.argsort(remainders, kind="stable")
        order = order[rounded[order] >= 1.0]
        rounded[order[:-n_extra]] -= 1.0
    return rounded


def arrival_probability_values(
    landscape: Landscape,
    mode,
    dispersing_stages: Sequence[int],
    timestep: int = 0,
    carrying_capacity: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Per-cell arrival probability, flattened row-major.

    Args:
        landscape: Current landscape.
        mode: ArrivalProbability member or its string value.
        dispersing_stages: Stages whose summed population counts as
            occupancy against carrying capacity.
        timestep: Selects the suitability layer when it varies in time.
        carrying_capacity: Overrides landscape.carrying_capacity (e.g.
            derived from suitability for this timestep).

    Returns:
        (n_cells,) array; NaN or ≤ 0 means the cell admits nobody.

    Raises:
        DispersalConfigurationError: If a layer the mode needs is absent.
    """
    mode = ArrivalProbability(mode)
    capacity = (carrying_capacity if carrying_capacity is not None
                else landscape.carrying_capacity)
    present = {
        "suitability": landscape.suitability is not None,
        "carrying_capacity": capacity is not None,
    }
    missing = [name for name in mode.required_layers() if not present[name]]
    if missing:
        missing_text = " and ".join(f"a {name} layer" for name in missing)
        raise DispersalConfigurationError(
            f"kernel dispersal with arrival_probability='{mode.value}' "
            f"requires the landscape to have {missing_text}"
        )

    if mode is ArrivalProbability.SUITABILITY:
        values = landscape.suitability_at(timestep)
    else:
        stages = list(dispersing_stages)
        occupied = landscape.population[stages].sum(axis=0)
        with np.errstate(divide="ignore", invalid="ignore"):
            headroom = 1.0 - occupied / capacity
        if mode is ArrivalProbability.BOTH:
            values = landscape.suitability_at(timestep) * headroom
        else:
            values = headroom
    return np.asarray(values, dtype=np.float64).ravel()


def kernel_dispersal_stage(
    pop_dispersing: np.ndarray,
    pop_staying: np.ndarray,
    xy: np.ndarray,
    arrival: np.ndarray,
    dispersal_kernel: Callable[[np.ndarray], np.ndarray],
    distance_function: DistanceFunction = euclidean_distance,
    demographic_stochasticity: bool = True,
) -> np.ndarray:
    """Disperse one life stage over flattened cell vectors.

    Args:
        pop_dispersing: (n_cells,) individuals leaving each cell; NaN on
            no-habitat cells.
        pop_staying: (n_cells,) individuals that do not disperse.
        xy: (n_cells, 2) cell coordinates.
        arrival: (n_cells,) arrival probability.
        dispersal_kernel: Distance → weight.
        distance_function: (source_xy, dest_xy) → distances.
        demographic_stochasticity: Round each source's contributions to
            whole individuals.

    Returns:
        (n_cells,) population after dispersal: arrivals plus stayers.
        A source whose weights are all zero (kernel underflow) keeps its
        dispersers.

    Raises:
        DispersalConfigurationError: If dispersers exist but no cell can
            receive them.
    """
    pop_dispersing = np.asarray(pop_dispersing, dtype=np.float64)
    arrival = np.asarray(arrival, dtype=np.float64)

    with np.errstate(invalid="ignore"):
        can_arrive = np.flatnonzero(
            (arrival > 0) & np.isfinite(arrival) & ~np.isnan(pop_dispersing)
        )
        has_pop = np.flatnonzero(pop_dispersing > 0)

    result = np.array(pop_staying, dtype=np.float64)
    if has_pop.size == 0:
        return result
    if can_arrive.size == 0:
        raise DispersalConfigurationError(
            f"{pop_dispersing[has_pop].sum():g} individuals are dispersing "
            f"but no cell has a positive arrival probability"
        )

    dest_xy = xy[can_arrive]
    dest_arrival = arrival[can_arrive]
    arrived = np.zeros(can_arrive.size, dtype=np.float64)

    for i in has_pop:
        weights = dispersal_kernel(distance_function(xy[i], dest_xy)) * dest_arrival
        total = weights.sum()
        if not total > 0:
            result[i] += pop_dispersing[i]
            continue
        contribution = weights / total * pop_dispersing[i]
        if demographic_stochasticity:
            contribution = largest_remainder_round(
                contribution, total=round(pop_dispersing[i]))
        arrived += contribution

    result[can_arrive] += arrived
    return result
