"""
Ordering of Koopman modes by amplitude.

All estimators return modes in whatever order their eigen-solver or transform
produced them; these helpers give a deterministic, amplitude-ranked view.
"""

import numbers
import numpy as np
from typing import Tuple

from koopman_errors import InvalidInput, InvalidParameter


def rank_order(b: np.ndarray) -> np.ndarray:
    """
    Permutation that sorts amplitudes by descending magnitude.

    Ties keep ascending original index (stable sort), so applying the
    permutation to an already ranked array is the identity.
    """
    return np.argsort(-np.abs(np.asarray(b)), kind="stable")


def _check_triple(lambda_, Phi, b):
    lambda_ = np.asarray(lambda_)
    Phi = np.asarray(Phi)
    b = np.asarray(b)
    if lambda_.ndim != 1 or b.ndim != 1 or Phi.ndim != 2:
        raise InvalidInput(
            f"Expected lambda (r,), Phi (n_space, r), b (r,); got {lambda_.shape}, {Phi.shape}, {b.shape}.")
    if not (lambda_.size == b.size == Phi.shape[1]):
        raise InvalidInput(
            f"Mode count mismatch: {lambda_.size} eigenvalues, {Phi.shape[1]} modes, {b.size} amplitudes.")
    return lambda_, Phi, b


def rank_modes(lambda_, Phi, b) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Reorder (lambda, Phi, b) so that |b| is non-increasing."""
    lambda_, Phi, b = _check_triple(lambda_, Phi, b)
    order = rank_order(b)
    return lambda_[order], Phi[:, order], b[order]


def check_count(n) -> int:
    if isinstance(n, bool) or not isinstance(n, numbers.Integral) or n < 0:
        raise InvalidParameter(f"n must be an integer >= 0 (got {n!r}).")
    return int(n)


def top_modes(lambda_, Phi, b, n: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The n largest-amplitude modes (fewer if the triple has fewer)."""
    n = check_count(n)
    lambda_, Phi, b = rank_modes(lambda_, Phi, b)
    return lambda_[:n], Phi[:, :n], b[:n]
