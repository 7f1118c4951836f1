from dataclasses import dataclass
import logging
import numbers
import numpy as np
from typing import Optional, Tuple

from koopman_errors import InvalidInput, InvalidParameter, NumericalInstability, RankDeficiency
from preprocess_utils import as_snapshot_matrix, check_time_step
from ranking_utils import check_count, rank_order

logger = logging.getLogger(__name__)


@dataclass
class KoopmanResult:
    lambda_: np.ndarray     # Continuous-time eigenvalues (r,)
    mu: np.ndarray          # Discrete-time eigenvalues exp(lambda_ * dt) (r,)
    Phi: np.ndarray         # Unit-norm Koopman modes (n_space, r)
    b: np.ndarray           # Mode amplitudes (r,)
    rank: int               # Number of modes actually returned
    dt: float               # Sampling step used for the eigenvalue mapping
    method: str             # Estimator label
    singular_values: Optional[np.ndarray] = None  # Singular values before truncation (SVD-based only)

    def as_tuple(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the (lambda, Phi, b) triple."""
        return self.lambda_, self.Phi, self.b

    def reconstruct(self, t: np.ndarray) -> np.ndarray:
        """Evaluate sum_k b_k Phi_k exp(lambda_k t) at times t (t=0 is the first snapshot)."""
        return _reconstruct(self.Phi, self.lambda_, self.b, np.asarray(t, dtype=float))

    def ranked(self) -> "KoopmanResult":
        """Copy of the result with modes ordered by descending |b| (stable)."""
        return self._take(rank_order(self.b))

    def top(self, n: int) -> "KoopmanResult":
        """The n modes with the largest amplitudes, in ranked order."""
        return self._take(rank_order(self.b)[:check_count(n)])

    def _take(self, order: np.ndarray) -> "KoopmanResult":
        return KoopmanResult(lambda_=self.lambda_[order], mu=self.mu[order],
                             Phi=self.Phi[:, order], b=self.b[order],
                             rank=int(order.size), dt=self.dt, method=self.method,
                             singular_values=self.singular_values)


# ---------- Eigenvalue / mode helpers ----------

def continuous_eigenvalues(mu: np.ndarray, dt: float) -> np.ndarray:
    """
    Map discrete-time eigenvalues to continuous time: lambda = log(mu) / dt.

    The principal branch of the logarithm is used, so Im(lambda) is folded into
    (-pi/dt, pi/dt]. Frequencies above the Nyquist limit alias silently; this
    is a property of uniform sampling and is not corrected here.
    """
    mu = np.asarray(mu, dtype=np.complex128)
    if np.any(mu == 0):
        raise NumericalInstability("Zero discrete eigenvalue; log(mu) is undefined.")
    return np.log(mu) / dt


def aliased_eigenvalue(lam, dt: float):
    """Continuous eigenvalue that uniform sampling at step dt actually observes for lam."""
    return np.log(np.exp(np.asarray(lam, dtype=np.complex128) * dt)) / dt


def truncation_rank(s: np.ndarray, shape: Tuple[int, int], max_rank: Optional[int] = None) -> int:
    """
    Number of singular values kept by the rank-truncation policy.

    Singular values at or below eps * max(shape) * s_max are discarded (the
    tolerance numpy.linalg.matrix_rank uses); max_rank, if given, caps the result.
    """
    if s.size == 0 or s[0] == 0:
        return 0
    tol = np.finfo(float).eps * max(shape) * s[0]
    r = int(np.count_nonzero(s > tol))
    if max_rank is not None:
        r = min(r, max_rank)
    return r


def normalize_modes(Phi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Scale every column of Phi to unit Euclidean norm.

    Returns
    -------
    Phi_unit : np.ndarray
        Normalized modes. Numerically zero columns stay exactly zero.
    norms : np.ndarray
        Norm removed from each column (0 for zeroed columns), so that
        Phi == Phi_unit * norms[None, :].
    """
    norms = np.linalg.norm(Phi, axis=0)
    max_norm = np.max(norms) if norms.size else 0.0
    tiny = norms <= 10.0 * np.finfo(float).eps * (max_norm if max_norm > 0 else 1.0)
    safe = norms.copy()
    safe[tiny] = 1.0
    Phi_unit = Phi / safe[None, :]
    Phi_unit[:, tiny] = 0.0
    norms = np.where(tiny, 0.0, norms)
    return Phi_unit, norms


def fit_amplitudes(Phi: np.ndarray, x0: np.ndarray) -> np.ndarray:
    """Least-squares amplitudes b = pinv(Phi) @ x0."""
    b = np.linalg.lstsq(Phi, x0.astype(np.complex128), rcond=None)[0]
    _ensure_finite("amplitudes", b)
    return b


def hankel_stack(U: np.ndarray, window: int) -> np.ndarray:
    """
    Delay-embed U with `window` time-shifted copies.

    Row block k (rows k*n_space .. (k+1)*n_space) holds U[:, k : k + n_time - window + 1],
    giving a matrix of shape (n_space * window, n_time - window + 1).
    """
    n_cols = U.shape[1] - window + 1
    return np.vstack([U[:, k:k + n_cols] for k in range(window)])


def _ensure_finite(name: str, arr: np.ndarray) -> None:
    if not np.all(np.isfinite(arr)):
        raise NumericalInstability(f"Non-finite values in {name}.")


def _reconstruct(Phi: np.ndarray, omega: np.ndarray, b: np.ndarray, t: np.ndarray) -> np.ndarray:
    """
    Reconstruct snapshots at times t: u(t) = sum_i b_i * Phi_i * exp(omega_i * t).

    Parameters
    ----------
    Phi : np.ndarray, shape (n_space, r)
        Modes matrix. Each column is a spatial mode.
    omega : np.ndarray, shape (r,)
        Continuous-time eigenvalues (real part: growth/decay, imaginary part: angular frequency).
    b : np.ndarray, shape (r,)
        Mode amplitudes.
    t : np.ndarray, shape (n_time,)
        Time points, measured from the first snapshot.

    Returns
    -------
    Uhat : np.ndarray, shape (n_space, n_time)
    """
    time_dynamics = np.exp(np.outer(omega, t))  # shape (r, len(t))
    return Phi @ (time_dynamics * b[:, None])


def _check_max_rank(max_rank) -> Optional[int]:
    if max_rank is None:
        return None
    if isinstance(max_rank, bool) or not isinstance(max_rank, numbers.Integral) or max_rank < 1:
        raise InvalidParameter(f"max_rank must be an integer >= 1 or None (got {max_rank!r}).")
    return int(max_rank)


def dmd_operator(X1: np.ndarray, X2: np.ndarray, exact_modes: bool = True,
                 max_rank: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    SVD-based DMD of the snapshot pairs X2 ~ A X1.

    This is the shared linear-algebra pipeline of the exact and windowed estimators:
    1. Thin SVD of X1: X1 = U_svd * S * V^H
    2. Truncate to rank r (see `truncation_rank`)
    3. Reduced operator in the POD subspace: A_tilde = U_r^H * X2 * V_r * S_r^{-1}
    4. Eigendecomposition A_tilde * W = W * diag(mu)
    5. Modes: exact Phi = X2 * V_r * S_r^{-1} * W, or projected Phi = U_r * W

    Parameters
    ----------
    X1, X2 : np.ndarray, shape (n_rows, m)
        Snapshot matrices shifted by one time step.
    exact_modes : bool
        Select exact (True) or projected (False) modes.
    max_rank : int or None
        Optional cap on the truncation rank.

    Returns
    -------
    mu : np.ndarray, shape (r,)
        Discrete-time eigenvalues.
    Phi : np.ndarray, shape (n_rows, r)
        Unnormalized modes.
    s : np.ndarray
        All singular values of X1 (before truncation).
    """
    # Step 1: SVD of X1; U_svd are spatial (POD) modes, Vh are temporal modes
    Ux, s, Vhx = np.linalg.svd(X1, full_matrices=False)

    # Step 2: Determine truncation rank
    r = truncation_rank(s, X1.shape, max_rank)
    if r == 0:
        raise RankDeficiency(
            f"Rank truncation left an empty basis (largest singular value {s[0] if s.size else 0.0:.3e}).")
    logger.debug("DMD truncation: kept %d of %d singular values (shape %s)", r, s.size, X1.shape)

    U_r = Ux[:, :r]                 # (n_rows, r)
    s_inv = 1.0 / s[:r]             # (r,)
    V_r = Vhx[:r, :].conj().T       # (m, r)

    # Step 3: Reduced operator; X2 V_r S_r^{-1} is shared with the exact modes
    X2_V_Sinv = (X2 @ V_r) * s_inv[None, :]
    A_tilde = U_r.conj().T @ X2_V_Sinv
    _ensure_finite("reduced operator", A_tilde)

    # Step 4: Eigendecomposition of the r x r operator
    mu, W = np.linalg.eig(A_tilde)

    # Step 5: Lift eigenvectors back to the full space
    if exact_modes:
        Phi = X2_V_Sinv @ W
    else:
        Phi = U_r @ W
    _ensure_finite("modes", Phi)
    return mu.astype(np.complex128), Phi.astype(np.complex128), s


# ---------- Estimators ----------

class KoopmanEstimator:
    """
    Common interface of the Koopman mode estimators.

    `decompose(U, dt)` validates its inputs and returns a fresh `KoopmanResult`.
    Implementations are stateless apart from their constructor parameters, so a
    single instance may be reused across data sets.
    """

    method = "koopman"

    def decompose(self, U: np.ndarray, dt: float) -> KoopmanResult:
        U = as_snapshot_matrix(U)
        dt = check_time_step(dt)
        return self._decompose(U, dt)

    def _decompose(self, U: np.ndarray, dt: float) -> KoopmanResult:
        raise NotImplementedError


class ExactDMD(KoopmanEstimator):
    """
    Exact Dynamic Mode Decomposition (Tu et al.).

    The method finds the best linear operator A that maps X1 to X2 in the least-squares sense:
    X2 ≈ A*X1, where X1 = [u_0, ..., u_{N-2}] and X2 = [u_1, ..., u_{N-1}].

    - The eigendecomposition of the reduced operator gives discrete eigenvalues mu
    - lambda = log(mu) / dt are the continuous-time Koopman eigenvalues
    - Modes are scaled to unit norm; amplitudes b solve Phi * b = u_0 in the least-squares sense

    Parameters
    ----------
    exact_modes : bool
        True for exact modes X2 V S^{-1} W, False for projected (POD-basis) modes U_r W.
    max_rank : int or None
        Optional cap on the truncation rank. If None, only the numerical-rank
        tolerance eps * max(M, N) * s_max applies.
    """

    method = "exact_dmd"

    def __init__(self, exact_modes: bool = True, max_rank: Optional[int] = None):
        self.exact_modes = bool(exact_modes)
        self.max_rank = _check_max_rank(max_rank)

    def _decompose(self, U: np.ndarray, dt: float) -> KoopmanResult:
        n_space, n_time = U.shape
        if n_time < 2:
            raise InvalidInput(f"At least 2 snapshots are required (got {n_time}).")

        # Time-shifted snapshot pairs X2 ≈ A X1
        X1 = U[:, :-1]
        X2 = U[:, 1:]

        mu, Phi, s = dmd_operator(X1, X2, exact_modes=self.exact_modes, max_rank=self.max_rank)
        lambda_ = continuous_eigenvalues(mu, dt)
        _ensure_finite("eigenvalues", lambda_)

        Phi, _ = normalize_modes(Phi)
        b = fit_amplitudes(Phi, X1[:, 0])

        return KoopmanResult(lambda_=lambda_, mu=mu, Phi=Phi, b=b, rank=int(mu.size),
                             dt=dt, method=self.method, singular_values=s)


class DukeDMD(ExactDMD):
    """
    Windowed (delay-augmented) DMD.

    The snapshot matrix is Hankel-stacked with `window` time-shifted copies
    (see `hankel_stack`), which raises the effective row count to n_space * window
    and averages measurement noise over the delays, at the price of a larger SVD.
    The exact-DMD pipeline then runs on the augmented matrix; modes are brought
    back to the original space by keeping the leading n_space rows (zero delay).

    Amplitudes are fitted against the first augmented column and rescaled when
    the truncated modes are re-normalized, so sum_k b_k Phi_k still reproduces
    the first snapshot. window=1 reduces to `ExactDMD`.
    """

    method = "duke_dmd"

    def __init__(self, window: int, exact_modes: bool = True, max_rank: Optional[int] = None):
        if isinstance(window, bool) or not isinstance(window, numbers.Integral):
            raise InvalidParameter(f"window must be an integer (got {window!r}).")
        if window < 1:
            raise InvalidParameter(f"window must be >= 1 (got {window}).")
        super().__init__(exact_modes=exact_modes, max_rank=max_rank)
        self.window = int(window)

    def _decompose(self, U: np.ndarray, dt: float) -> KoopmanResult:
        n_space, n_time = U.shape
        if self.window >= n_time:
            raise InvalidParameter(
                f"window must be < number of snapshots (got window={self.window}, n_time={n_time}).")

        H = hankel_stack(U, self.window)
        logger.debug("Duke DMD: window %d, augmented matrix %s", self.window, H.shape)

        mu, Phi_aug, s = dmd_operator(H[:, :-1], H[:, 1:], exact_modes=self.exact_modes,
                                      max_rank=self.max_rank)
        lambda_ = continuous_eigenvalues(mu, dt)
        _ensure_finite("eigenvalues", lambda_)

        Phi_aug, _ = normalize_modes(Phi_aug)
        b_aug = fit_amplitudes(Phi_aug, H[:, 0])

        # Zero-delay block carries the spatial pattern at the current time
        Phi, norms = normalize_modes(Phi_aug[:n_space, :])
        b = b_aug * norms

        return KoopmanResult(lambda_=lambda_, mu=mu, Phi=Phi, b=b, rank=int(mu.size),
                             dt=dt, method=self.method, singular_values=s)


# ---------- Functional interface ----------

def exact_dmd(U: np.ndarray, dt: float, exact_modes: bool = True,
              max_rank: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Exact DMD of U; returns (lambda, Phi, b) in eigen-solver order."""
    return ExactDMD(exact_modes=exact_modes, max_rank=max_rank).decompose(U, dt).as_tuple()


def windowed_dmd(U: np.ndarray, dt: float, window: int,
                 max_rank: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Windowed (Duke) DMD of U with `window` delays; returns (lambda, Phi, b)."""
    return DukeDMD(window, max_rank=max_rank).decompose(U, dt).as_tuple()


def rel_l2(a: np.ndarray, b: np.ndarray, axis=None, eps: float = 1e-12) -> float:
    """Relative L2 error: ||a-b|| / ||b||."""
    num = np.linalg.norm(a - b, axis=axis)
    den = np.linalg.norm(b, axis=axis)
    return float(num / (den + eps))


def rel_l2_over_time(U_pred: np.ndarray, U_true: np.ndarray) -> np.ndarray:
    """Relative L2 error at each time column."""
    if U_pred.shape != U_true.shape:
        raise InvalidInput(f"Shape mismatch: {U_pred.shape} vs {U_true.shape}.")
    T = U_pred.shape[1]
    errs = np.empty(T)
    for j in range(T):
        errs[j] = rel_l2(U_pred[:, j], U_true[:, j])
    return errs
