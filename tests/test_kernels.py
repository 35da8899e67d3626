"""Tests for gridspread.kernels."""

import numpy as np
import pytest
from scipy.integrate import quad

from gridspread.kernels import (
    exponential_dispersal_kernel,
    gaussian_dispersal_kernel,
    normalized,
    ring_weights,
)


class TestExponentialKernel:
    def test_values(self):
        kernel = exponential_dispersal_kernel(2.0)
        np.testing.assert_allclose(kernel(np.array([0.0, 2.0, 4.0])),
                                   [1.0, np.exp(-1.0), np.exp(-2.0)])

    def test_monotone_decreasing(self):
        w = exponential_dispersal_kernel(0.5)(np.linspace(0, 10, 50))
        assert np.all(np.diff(w) < 0)

    def test_normalized_density(self):
        """Integrates to ~1 over the plane: ∫ 2πr k(r) dr."""
        lam = 1.3
        kernel = exponential_dispersal_kernel(lam, normalize=True)
        integral, _ = quad(lambda r: 2 * np.pi * r * float(kernel(r)), 0, np.inf)
        assert integral == pytest.approx(1.0, rel=1e-6)

    def test_scalar_input(self):
        assert float(exponential_dispersal_kernel(1.0)(0.0)) == 1.0

    @pytest.mark.parametrize("decay", [0.0, -1.0])
    def test_invalid_decay(self, decay):
        with pytest.raises(ValueError, match="distance_decay"):
            exponential_dispersal_kernel(decay)


class TestGaussianKernel:
    def test_values(self):
        kernel = gaussian_dispersal_kernel(2.0)
        np.testing.assert_allclose(kernel(np.array([0.0, 2.0])), [1.0, np.exp(-1.0)])

    def test_normalized_peak(self):
        kernel = gaussian_dispersal_kernel(2.0, normalize=True)
        assert kernel(np.array([0.0]))[0] == pytest.approx(1.0 / (np.pi * 4.0))

    def test_invalid_decay(self):
        with pytest.raises(ValueError):
            gaussian_dispersal_kernel(0.0)


class TestHelpers:
    def test_normalized_sums_to_one(self):
        kernel = normalized(exponential_dispersal_kernel(1.0))
        assert kernel(np.arange(10.0)).sum() == pytest.approx(1.0)

    def test_normalized_all_zero(self):
        kernel = normalized(lambda r: np.zeros_like(r))
        np.testing.assert_array_equal(kernel(np.arange(3.0)), 0.0)

    def test_ring_weights(self):
        w = ring_weights(exponential_dispersal_kernel(1.0), 3)
        np.testing.assert_allclose(w, np.exp(-np.arange(3.0)))

    def test_ring_weights_zero_distance(self):
        assert ring_weights(exponential_dispersal_kernel(1.0), 0).size == 0
