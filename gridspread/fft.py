"""Fourier-domain dispersal on a toroidal embedding of the grid.

Dispersing every cell's population through a distance kernel is a
matrix-vector product with an (n_cells × n_cells) dispersal matrix. On a
torus with evenly spaced cells that matrix is block-circulant: each row
is a cyclic shift of the first. Its action is therefore a 2D circular
convolution with the first row (the "basis"), which the FFT computes in
O(N log N) without ever building the matrix.

The real grid is not a torus, so it is embedded in the middle of a
larger periodic domain (at least `factor` times larger along each axis,
rounded up to a power of two). Mass that the kernel carries off the real
grid, or onto no-habitat cells, is put back proportionally afterwards.

Core functions:
  - extend:        pad one axis to a power-of-two torus
  - bcb:           block-circulant basis of kernel weights
  - setup_fft:     build the reusable ToroidalEmbedding
  - dispersal_fft: disperse one population matrix
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import fft as sp_fft

from gridspread.types import DispersalConfigurationError


# ═══════════════════════════════════════════════════════════════════════
# TOROIDAL EMBEDDING
# ═══════════════════════════════════════════════════════════════════════

def _spacing(axis: np.ndarray) -> float:
    return float(axis[1] - axis[0]) if len(axis) > 1 else 1.0


def extend(axis, factor: float = 2) -> Tuple[np.ndarray, Tuple[int, int]]:
    """Pad an evenly spaced axis to a power-of-two length.

    The padded length is the smallest power of two ≥ factor × n. Padding
    continues the axis spacing on both ends; when the pad is odd the
    spare cell goes on the high end.

    Args:
        axis: (n,) evenly spaced cell-centre coordinates.
        factor: Minimum ratio of padded to original length (≥ 1).

    Returns:
        (padded_axis, (start, stop)) where padded_axis[start:stop] is the
        original axis.

    Example:
        >>> padded, (start, stop) = extend(np.arange(5), factor=2)
        >>> len(padded), start, stop
        (16, 5, 10)
    """
    x = np.asarray(axis, dtype=np.float64)
    n = len(x)
    if n == 0:
        raise ValueError("cannot extend an empty axis")
    if factor < 1:
        raise ValueError(f"factor must be >= 1, got {factor}")
    width = _spacing(x)

    n2 = int(2 ** np.ceil(np.log2(factor * n)))
    pad = n2 - n
    pad_low = pad // 2
    pad_high = pad - pad_low

    low = x[0] - np.arange(pad_low, 0, -1) * width
    high = x[-1] + np.arange(1, pad_high + 1) * width
    return np.concatenate([low, x, high]), (pad_low, pad_low + n)


def bcb(x, y, kernel: Callable[[np.ndarray], np.ndarray] = lambda d: d) -> np.ndarray:
    """Block-circulant basis of kernel weights on the torus.

    Distances are measured from cell (0, 0) the short way round the torus
    along each axis (min(k, m − k) cells) and combined as Euclidean
    distance before the kernel is applied. The kernel is evaluated once,
    on the whole distance grid.

    Args:
        x: (m,) padded column coordinates.
        y: (n,) padded row coordinates.
        kernel: Distance → weight; identity returns raw distances.

    Returns:
        (n, m) weights. Flattened row-major, this is the first row of the
        block-circulant dispersal matrix.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    m, n = len(x), len(y)

    i = np.arange(m)
    j = np.arange(n)
    xdist = np.minimum(i, m - i) * _spacing(x)
    ydist = np.minimum(j, n - j) * _spacing(y)

    d = np.sqrt(ydist[:, np.newaxis] ** 2 + xdist[np.newaxis, :] ** 2)
    return np.asarray(kernel(d), dtype=np.float64)


@dataclass(frozen=True)
class ToroidalEmbedding:
    """Everything dispersal_fft needs for one grid shape and kernel.

    Rebuild when the grid shape or kernel changes; otherwise reuse it
    for every timestep.
    """
    x: np.ndarray                 # (m,) padded column axis
    y: np.ndarray                 # (n,) padded row axis
    x_index: Tuple[int, int]      # true columns = x[start:stop]
    y_index: Tuple[int, int]      # true rows = y[start:stop]
    basis: np.ndarray             # (n, m) circulant basis
    basis_fft: np.ndarray         # rfft2 of basis

    @property
    def shape(self) -> Tuple[int, int]:
        """Shape of the true (unpadded) grid."""
        return (self.y_index[1] - self.y_index[0],
                self.x_index[1] - self.x_index[0])

    @property
    def torus_shape(self) -> Tuple[int, int]:
        return len(self.y), len(self.x)


def setup_fft(x, y, kernel: Callable[[np.ndarray], np.ndarray],
              factor: float = 2) -> ToroidalEmbedding:
    """Build the toroidal embedding for a grid with axes `x` and `y`.

    The kernel is used as given. If dispersal should conserve mass
    exactly before boundary correction, pass a kernel normalised over the
    torus (see kernels.normalized).

    Args:
        x: (n_cols,) column coordinates of the real grid.
        y: (n_rows,) row coordinates of the real grid.
        kernel: Distance → weight.
        factor: Minimum torus / grid size ratio per axis.

    Returns:
        ToroidalEmbedding.
    """
    xe, x_index = extend(x, factor)
    ye, y_index = extend(y, factor)
    basis = bcb(xe, ye, kernel)
    return ToroidalEmbedding(
        x=xe, y=ye,
        x_index=x_index, y_index=y_index,
        basis=basis,
        basis_fft=sp_fft.rfft2(basis),
    )


# ═══════════════════════════════════════════════════════════════════════
# FOURIER DISPERSAL
# ═══════════════════════════════════════════════════════════════════════

def dispersal_fft(
    popmat: np.ndarray,
    embedding: ToroidalEmbedding,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Disperse a population matrix through the embedding's kernel.

    Steps:
      1. NaN (no-habitat) cells are zero-filled; the mask is kept.
      2. The matrix is placed in the middle of a zero torus.
      3. Circular convolution with the basis via rfft2 / irfft2 (the
         inverse transform carries the 1 / n_cells normalisation).
      4. Negative round-off is clamped to zero.
      5. The real grid window is cut out.
      6. Mass that landed off-habitat (no-habitat cells inside the window
         and the torus padding) is returned by scaling every habitat cell
         by (1 + leaked / retained).
      7. With an `rng`, one multinomial draw of round(original total)
         individuals over habitat cells, proportional to the dispersed
         amounts, turns the result into integers with exactly that sum.

    Args:
        popmat: (n_rows, n_cols) population; NaN = no habitat.
        embedding: From setup_fft() for this grid shape.
        rng: Generator for the requantization draw. None leaves the
            result real-valued.

    Returns:
        (n_rows, n_cols) dispersed population, NaN on no-habitat cells.

    Raises:
        DispersalConfigurationError: If `popmat` does not match the
            embedding's grid shape.
    """
    popmat = np.asarray(popmat, dtype=np.float64)
    if popmat.shape != embedding.shape:
        raise DispersalConfigurationError(
            f"population matrix shape {popmat.shape} does not match "
            f"embedding grid shape {embedding.shape}"
        )

    missing = np.isnan(popmat)
    habitat = ~missing
    filled = np.where(missing, 0.0, popmat)
    original_total = filled.sum()

    (r0, r1), (c0, c1) = embedding.y_index, embedding.x_index
    torus = np.zeros(embedding.torus_shape, dtype=np.float64)
    torus[r0:r1, c0:c1] = filled

    dispersed = sp_fft.irfft2(
        sp_fft.rfft2(torus) * embedding.basis_fft,
        s=embedding.torus_shape,
    )
    np.maximum(dispersed, 0.0, out=dispersed)

    pop_new = dispersed[r0:r1, c0:c1].copy()
    if original_total <= 0:
        pop_new[habitat] = 0.0
        pop_new[missing] = np.nan
        return pop_new

    # Boundary correction
    retained = pop_new[habitat].sum()
    if retained > 0:
        leaked = dispersed.sum() - retained
        pop_new[habitat] *= 1.0 + leaked / retained
    pop_new[missing] = np.nan

    if rng is not None and retained > 0:
        values = pop_new[habitat]
        pop_new[habitat] = rng.multinomial(
            int(round(original_total)), values / values.sum()
        )

    return pop_new
