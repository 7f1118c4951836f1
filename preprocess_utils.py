import logging
from typing import Tuple

import numpy as np

from koopman_errors import InvalidInput, InvalidParameter

logger = logging.getLogger(__name__)


def as_snapshot_matrix(U, name: str = "U") -> np.ndarray:
    """
    Validate a snapshot matrix of shape (n_space, n_time) and return it as an array.

    The input is not copied when it already is a numpy array; callers must not
    write into the returned array.
    """
    U = np.asarray(U)
    if U.ndim != 2:
        raise InvalidInput(f"{name} must be 2D (n_space, n_time), got shape {U.shape}.")
    if U.size == 0:
        raise InvalidInput(f"{name} is empty (shape {U.shape}).")
    if not np.issubdtype(U.dtype, np.number):
        raise InvalidInput(f"{name} must be numeric, got dtype {U.dtype}.")
    if not np.all(np.isfinite(U)):
        raise InvalidInput(f"{name} contains non-finite values.")
    return U


def check_time_step(dt) -> float:
    """Return dt as a float, rejecting non-finite or non-positive steps."""
    try:
        dt = float(dt)
    except (TypeError, ValueError):
        raise InvalidParameter(f"dt must be a real number (got {dt!r}).")
    if not np.isfinite(dt) or dt <= 0.0:
        raise InvalidParameter(f"dt must be finite and > 0 (got {dt}).")
    return dt


def uniform_step(coords, rtol: float = 1e-8, name: str = "coordinates") -> float:
    """
    Constant spacing of a strictly increasing, uniformly spaced coordinate vector.

    Parameters
    ----------
    coords : array_like, shape (n,)
        Time or space samples, n >= 2.
    rtol : float
        Allowed relative deviation of any increment from the mean increment.
    name : str
        Used in error messages.

    Returns
    -------
    float
        The step (t[1] - t[0] up to round-off).
    """
    c = np.asarray(coords)
    if c.ndim != 1 or c.size < 2:
        raise InvalidInput(f"{name} must be 1D with at least 2 samples, got shape {c.shape}.")
    if np.iscomplexobj(c) or not np.all(np.isfinite(c)):
        raise InvalidInput(f"{name} must be real and finite.")
    steps = np.diff(c.astype(float))
    if np.any(steps <= 0):
        raise InvalidInput(f"{name} must be strictly increasing.")
    h = float(np.mean(steps))
    if np.max(np.abs(steps - h)) > rtol * h:
        raise InvalidInput(f"{name} are not uniformly spaced (rtol={rtol}).")
    return h


def remove_mean(U) -> Tuple[np.ndarray, np.ndarray]:
    """
    Remove the per-location temporal mean from a snapshot matrix.

    Parameters
    ----------
    U : np.ndarray, shape (n_space, n_time)
        Snapshot matrix; rows are spatial locations, columns are time instants.

    Returns
    -------
    U_centered : np.ndarray, shape (n_space, n_time)
        U - Mean[:, None]. A new array; U is left untouched.
    Mean : np.ndarray, shape (n_space,)
        Row-wise average over time.
    """
    U = as_snapshot_matrix(U)
    Mean = U.mean(axis=1)
    U_centered = U - Mean[:, None]
    logger.debug("Removed temporal mean, range [%g, %g]",
                 float(np.min(np.real(Mean))), float(np.max(np.real(Mean))))
    return U_centered, Mean
