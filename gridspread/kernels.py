"""Dispersal kernels: distance → relative weight.

A dispersal kernel is any callable mapping an array of non-negative
distances (in cell units) to non-negative weights. Kernels are expected
to be non-increasing in distance, but this is not enforced.

Library kernels:
  - exponential:  w(r) = exp(−r / λ)
  - gaussian:     w(r) = exp(−(r / λ)²)

With normalize=True each kernel is scaled to integrate to one over the
plane, i.e. it becomes a 2D probability density.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

Kernel = Callable[[np.ndarray], np.ndarray]


def exponential_dispersal_kernel(distance_decay: float = 0.5,
                                 normalize: bool = False) -> Kernel:
    """Negative-exponential kernel with decay length `distance_decay`.

    Args:
        distance_decay: Decay length λ (cells). Must be positive.
        normalize: If True, divide by 2πλ² so the kernel integrates to
            one over the plane.

    Returns:
        Vectorised kernel function.
    """
    if distance_decay <= 0:
        raise ValueError(
            f"distance_decay must be positive, got {distance_decay}"
        )
    scale = 1.0 / (2.0 * np.pi * distance_decay ** 2) if normalize else 1.0

    def kernel(r):
        return scale * np.exp(-np.asarray(r, dtype=np.float64) / distance_decay)

    return kernel


def gaussian_dispersal_kernel(distance_decay: float = 0.5,
                              normalize: bool = False) -> Kernel:
    """Gaussian (exponential-power, shape 2) kernel.

    Args:
        distance_decay: Scale λ (cells). Must be positive.
        normalize: If True, divide by πλ².

    Returns:
        Vectorised kernel function.
    """
    if distance_decay <= 0:
        raise ValueError(
            f"distance_decay must be positive, got {distance_decay}"
        )
    scale = 1.0 / (np.pi * distance_decay ** 2) if normalize else 1.0

    def kernel(r):
        r = np.asarray(r, dtype=np.float64)
        return scale * np.exp(-(r / distance_decay) ** 2)

    return kernel


def normalized(kernel: Kernel) -> Kernel:
    """Wrap `kernel` so the weights of each call sum to one.

    Used for the Fourier engine, where one call evaluates the kernel over
    every cell of the torus and the result must be a discrete probability
    distribution. An all-zero evaluation is returned unchanged.
    """
    def wrapped(r):
        w = np.asarray(kernel(r), dtype=np.float64)
        total = w.sum()
        return w / total if total > 0 else w

    return wrapped


def ring_weights(kernel: Kernel, dispersal_distance: int) -> np.ndarray:
    """Per-ring weights kernel(0), kernel(1), …, kernel(distance − 1).

    Entry k weights the cells in Chebyshev ring k + 1 around a source in
    the cellular-automata engine.
    """
    if dispersal_distance < 1:
        return np.zeros(0, dtype=np.float64)
    return np.asarray(
        kernel(np.arange(dispersal_distance, dtype=np.float64)),
        dtype=np.float64,
    )
