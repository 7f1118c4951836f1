"""
Koopman modes from the discrete Fourier transform (KDFT).

For data that are a finite sum of purely oscillatory Koopman modes sampled over
whole periods, the DFT along time of every spatial location gives the Koopman
eigenvalues (the DFT bins) and the modes (the per-location Fourier coefficients)
directly, without fitting a linear model. It is used as the reference technique
for the DMD estimators.
"""

import logging
import numpy as np
from scipy import fft as sp_fft
from typing import Tuple

from dmd_utils import KoopmanEstimator, KoopmanResult, normalize_modes

logger = logging.getLogger(__name__)


class KDFT(KoopmanEstimator):
    """
    Spectral Koopman estimator.

    For bin k of an N-point transform:
        lambda_k = 2*pi*i * k / (N * dt)      (k signed, as in fftfreq)
        Phi_k    = F[:, k] / ||F[:, k]||
        b_k      = ||F[:, k]|| / N
    so that sum_k b_k Phi_k exp(lambda_k * n * dt) = U[:, n] for every sample n.
    Bins above N/2 are mapped to negative frequencies, i.e. the same principal
    range (-pi/dt, pi/dt] used by the DMD estimators.
    """

    method = "kdft"

    def _decompose(self, U: np.ndarray, dt: float) -> KoopmanResult:
        n_space, n_time = U.shape

        F = sp_fft.fft(U, axis=1)                           # (n_space, n_time)
        lambda_ = 2j * np.pi * sp_fft.fftfreq(n_time, d=dt)  # (n_time,)
        mu = np.exp(lambda_ * dt)

        Phi, norms = normalize_modes(F.astype(np.complex128))
        b = (norms / n_time).astype(np.complex128)
        logger.debug("KDFT: %d bins, frequency resolution %g rad/time", n_time,
                     2 * np.pi / (n_time * dt))

        return KoopmanResult(lambda_=lambda_.astype(np.complex128), mu=mu, Phi=Phi, b=b,
                             rank=n_time, dt=dt, method=self.method)


def spectral_koopman(U: np.ndarray, dt: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """KDFT of U; returns (lambda, Phi, b) in FFT bin order."""
    return KDFT().decompose(U, dt).as_tuple()
