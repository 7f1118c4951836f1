import numpy as np
import matplotlib
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import fft as sp_fft

from koopman_errors import InvalidInput
from preprocess_utils import as_snapshot_matrix, check_time_step


def set_style():
    """Apply the plotting style used for all calibration figures."""
    plt.style.use('seaborn-v0_8')
    sns.set_palette("husl")


def plot_data(ax, t, x, U):
    """False-colour time/space plot of the data matrix."""
    U = as_snapshot_matrix(U)
    mesh = ax.pcolormesh(t, x, np.real(U), shading="gouraud", cmap="RdBu_r")
    ax.set_xlabel("Time t")
    ax.set_ylabel("Space x")
    ax.set_title("Synthetic Duke data set")
    ax.figure.colorbar(mesh, ax=ax, orientation="horizontal", fraction=0.05, pad=0.2)
    return mesh


def plot_spectrum(ax, signal, step, label=None):
    """
    One-sided FFT amplitude spectrum of a uniformly sampled signal.

    The abscissa is angular frequency (rad per unit of `step`), so peaks line up
    with the imaginary parts of the Koopman eigenvalues.
    """
    y = np.asarray(signal)
    if y.ndim != 1 or y.size < 2 or not np.all(np.isfinite(y)):
        raise InvalidInput(f"signal must be a finite 1D array with >= 2 samples (got shape {y.shape}).")
    step = check_time_step(step)

    n = y.size
    amp = np.abs(sp_fft.fft(y - np.mean(y))) / n
    omega = 2 * np.pi * sp_fft.fftfreq(n, d=step)
    half = omega >= 0
    amp[omega > 0] *= 2  # fold negative frequencies

    line, = ax.plot(omega[half], amp[half], lw=1.5, marker=".", label=label)
    ax.set_xlabel("angular frequency")
    ax.set_ylabel("|FFT| amplitude")
    return line


def plot_mode(ax, x, z, name):
    """
    Plot the real-valued contribution of a complex mode (amplitude included).

    Real data carry every complex mode together with its conjugate partner;
    2 * Re(z) is their sum at t = 0.
    """
    x = np.asarray(x)
    z = np.asarray(z)
    if x.ndim != 1 or not np.all(np.isfinite(x)):
        raise InvalidInput("x must be a finite 1D array.")
    if z.shape != x.shape or not np.all(np.isfinite(z)):
        raise InvalidInput(f"mode must be finite with {x.size} entries (got shape {z.shape}).")

    line, = ax.plot(x, 2 * np.real(z), lw=1.5, label=name)
    return line


def use_headless_backend():
    """Switch to a non-interactive backend (for batch runs)."""
    matplotlib.use("Agg")
