"""Tests for the synthetic Duke data set and the noise injector."""

import numpy as np
import pytest

from koopman_errors import InvalidInput, InvalidParameter
from preprocess_utils import uniform_step
from synthetic_utils import add_multiplicative_noise, duke_synthetic


class TestDukeSynthetic:

    def test_shapes_and_grid(self):
        U, t, x = duke_synthetic(n_space=64, n_time=128)

        assert U.shape == (64, 128)
        assert np.isrealobj(U)
        assert uniform_step(t) == pytest.approx(1.0 / 127)
        assert uniform_step(x) == pytest.approx(1.0 / 63)

    def test_values(self):
        U, t, x = duke_synthetic(time_complex_frequency=20j, space_complex_frequency=1 + 5j,
                                 n_space=16, n_time=32)
        np.testing.assert_allclose(U[:, 0], np.exp(x) * np.cos(5 * x))
        expected = np.exp(x)[:, None] * np.cos(5 * x[:, None] + 20 * t[None, :])
        np.testing.assert_allclose(U, expected, atol=1e-12)

    def test_growth_rate(self):
        U, t, x = duke_synthetic(time_complex_frequency=-1.0 + 0j, space_complex_frequency=0j,
                                 n_space=3, n_time=10)
        np.testing.assert_allclose(U, np.ones((3, 1)) * np.exp(-t)[None, :])

    @pytest.mark.parametrize("kwargs", [
        dict(n_space=1), dict(n_time=0), dict(n_time=2.5),
        dict(x_span=(1.0, 0.0)), dict(t_span=(0.0, np.inf)),
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidParameter):
            duke_synthetic(**kwargs)


class TestMultiplicativeNoise:

    def test_zero_noise_is_identity(self):
        U, _, _ = duke_synthetic(n_space=8, n_time=16)
        np.testing.assert_array_equal(add_multiplicative_noise(U, 0.0, seed=1), U)

    def test_noise_bounded_by_ratio(self):
        U, _, _ = duke_synthetic(n_space=8, n_time=16)
        nsr = 0.1
        noisy = add_multiplicative_noise(U, nsr, seed=2)
        mask = np.abs(U) > 1e-12
        rel = noisy[mask] / U[mask] - 1.0
        assert np.all(np.abs(rel) <= nsr + 1e-12)
        assert np.std(rel) > 0.01

    def test_seeded_noise_is_reproducible(self):
        U, _, _ = duke_synthetic(n_space=8, n_time=16)
        a = add_multiplicative_noise(U, 0.05, seed=11)
        b = add_multiplicative_noise(U, 0.05, rng=np.random.default_rng(11))
        np.testing.assert_array_equal(a, b)

    def test_invalid(self):
        U, _, _ = duke_synthetic(n_space=8, n_time=16)
        with pytest.raises(InvalidParameter):
            add_multiplicative_noise(U, -0.1)
        with pytest.raises(InvalidInput):
            add_multiplicative_noise(np.ones(4), 0.1)
