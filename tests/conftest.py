import pytest

from preprocess_utils import remove_mean, uniform_step
from synthetic_utils import duke_synthetic


@pytest.fixture(scope="session")
def duke_data():
    """Noiseless, mean-removed Duke data set: (U_centered, t, x, dt)."""
    U, t, x = duke_synthetic(time_complex_frequency=20j, space_complex_frequency=1 + 5j,
                             n_space=64, n_time=128)
    U_centered, _ = remove_mean(U)
    return U_centered, t, x, uniform_step(t)

