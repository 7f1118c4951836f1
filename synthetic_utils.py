"""
Synthetic benchmark data after Duke, Soria & Honnery (2012),
"An error analysis of the dynamic mode decomposition", Exp. Fluids 52:529-542.

The field is a single travelling wave with prescribed complex spatial and
temporal frequencies, so the Koopman eigenvalues of the (real) data are known:
the temporal frequency and its complex conjugate.
"""

import numbers
import numpy as np
from typing import Optional, Tuple

from koopman_errors import InvalidParameter
from preprocess_utils import as_snapshot_matrix


def _check_span(span, name):
    lo, hi = (float(v) for v in span)
    if not (np.isfinite(lo) and np.isfinite(hi)) or hi <= lo:
        raise InvalidParameter(f"{name} must be a finite interval (lo, hi) with hi > lo (got {span}).")
    return lo, hi


def duke_synthetic(time_complex_frequency: complex = 20j,
                   space_complex_frequency: complex = 1 + 5j,
                   n_space: int = 64,
                   n_time: int = 128,
                   x_span: Tuple[float, float] = (0.0, 1.0),
                   t_span: Tuple[float, float] = (0.0, 1.0)):
    """
    Generate U(x, t) = Re( exp(a * x) * exp(w * t) ) on a uniform grid.

    Parameters
    ----------
    time_complex_frequency : complex
        w; its imaginary part is the angular frequency, its real part the growth rate.
    space_complex_frequency : complex
        a; real part is the spatial growth, imaginary part the wavenumber.
    n_space, n_time : int
        Grid sizes (>= 2 each).
    x_span, t_span : (float, float)
        Closed intervals covered by the space and time grids.

    Returns
    -------
    U : np.ndarray, shape (n_space, n_time)
    t : np.ndarray, shape (n_time,)
    x : np.ndarray, shape (n_space,)
    """
    for name, n in (("n_space", n_space), ("n_time", n_time)):
        if isinstance(n, bool) or not isinstance(n, numbers.Integral) or n < 2:
            raise InvalidParameter(f"{name} must be an integer >= 2 (got {n!r}).")
    x = np.linspace(*_check_span(x_span, "x_span"), n_space)
    t = np.linspace(*_check_span(t_span, "t_span"), n_time)

    space = np.exp(complex(space_complex_frequency) * x)
    time = np.exp(complex(time_complex_frequency) * t)
    U = np.real(np.outer(space, time))
    return U, t, x


def add_multiplicative_noise(U: np.ndarray, nsr: float,
                             rng: Optional[np.random.Generator] = None,
                             seed: Optional[int] = None) -> np.ndarray:
    """
    Return U * (1 + noise), noise uniform in [-nsr, nsr] and independent per entry.

    Parameters
    ----------
    U : np.ndarray
        Clean data; not modified.
    nsr : float
        Noise-to-signal ratio (>= 0).
    rng : np.random.Generator or None
        Random source. If None, a generator is created from `seed`.
    seed : int or None
        Seed used when `rng` is None.
    """
    U = as_snapshot_matrix(U)
    nsr = float(nsr)
    if not np.isfinite(nsr) or nsr < 0:
        raise InvalidParameter(f"nsr must be finite and >= 0 (got {nsr}).")
    if rng is None:
        rng = np.random.default_rng(seed)
    noise = (2.0 * rng.random(U.shape) - 1.0) * nsr
    return U * (1.0 + noise)
