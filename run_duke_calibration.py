#!/usr/bin/env python3
"""
Duke calibration: Koopman modes of a synthetic travelling wave by three techniques.

The data set follows Duke, Soria & Honnery (2012): a single wave with complex
temporal frequency 20i and complex spatial frequency 1+5i, optionally corrupted
by multiplicative noise (NSR = 10% by default). Koopman modes are computed with

- exact DMD,
- windowed (Duke) DMD with a Hankel window of 20 snapshots,
- the DFT-based estimator (KDFT),

and the leading amplitudes/eigenvalues are printed side by side. The run should
be read as a sanity check of the techniques: all three must find the wave at
(close to) +-20i.

Outputs (in --out):
    duke_calibration.png   data, time/space spectra and leading modes
    summary.txt            leading amplitudes and eigenvalues per method
    duke_calibration.log   debug log
"""

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from pydmd import DMD as PYDMD

from dmd_utils import DukeDMD, ExactDMD, continuous_eigenvalues, rel_l2_over_time
from kdft_utils import KDFT
from koopman_errors import KoopmanError
from preprocess_utils import remove_mean, uniform_step
from synthetic_utils import add_multiplicative_noise, duke_synthetic


@dataclass
class CalibrationConfig:
    """Parameters of one calibration run."""
    time_frequency: complex = 20j
    space_frequency: complex = 1 + 5j
    n_space: int = 64
    n_time: int = 128
    noisy: bool = True
    nsr: float = 0.10          # noise-to-signal ratio
    seed: Optional[int] = None
    window: int = 20           # Duke DMD window length
    n_modes: int = 5           # modes reported per method
    max_rank: Optional[int] = None
    crosscheck_pydmd: bool = False
    make_plots: bool = True
    out: str = "duke_calibration_outputs"


# ---------- Utilities ----------

def ensure_outdir(root: Path) -> None:
    root.mkdir(parents=True, exist_ok=True)


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Loggers that receive the run handlers: the library modules and this script.
LIBRARY_LOGGERS = ("dmd_utils", "kdft_utils", "preprocess_utils", "ranking_utils",
                   "synthetic_utils", __name__)


def _run_loggers(name: str):
    return [logging.getLogger(n) for n in dict.fromkeys((name,) + LIBRARY_LOGGERS)]


def teardown_logging(name: str) -> None:
    """Detach and close the handlers installed by setup_logging(name, ...)."""
    for logger in _run_loggers(name):
        owned = [h for h in logger.handlers if getattr(h, "_calibration_run", False)]
        for handler in owned:
            logger.removeHandler(handler)
            handler.close()
        if owned:
            logger.setLevel(logging.NOTSET)


def setup_logging(name: str, run_dir: str, log_level: str = "INFO") -> logging.Logger:
    """Console logging at `log_level` plus a debug-level log file in run_dir.

    Handlers go on the named run logger and the library module loggers, never
    on the root logger. Handlers left by a previous call are closed first.
    """
    teardown_logging(name)
    formatter = logging.Formatter(
        '%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, log_level.upper()))
    console.setFormatter(formatter)
    handlers = [console]

    if run_dir:
        file_handler = logging.FileHandler(os.path.join(run_dir, f"{name}.log"), mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        handler._calibration_run = True
    for logger in _run_loggers(name):
        logger.setLevel(logging.DEBUG)
        for handler in handlers:
            logger.addHandler(handler)

    return logging.getLogger(name)


def spectrum_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Largest distance from an eigenvalue in `a` to its nearest neighbour in `b`."""
    a = np.asarray(a)
    b = np.asarray(b)
    if a.size == 0 or b.size == 0:
        return float("inf") if a.size != b.size else 0.0
    return float(np.max(np.min(np.abs(a[:, None] - b[None, :]), axis=1)))


def pydmd_eigenvalues(U: np.ndarray, dt: float, rank: int) -> np.ndarray:
    """Continuous-time eigenvalues of PyDMD's exact DMD at a fixed rank."""
    dmd = PYDMD(svd_rank=int(rank), exact=True)
    dmd.fit(U)
    return continuous_eigenvalues(dmd.eigs, dt)


def format_modes(result, n_modes: int) -> str:
    top = result.top(n_modes)
    lines = [f"{result.method} (rank {result.rank}):"]
    lines.append("   #        |b|                 b                          lambda")
    for k in range(top.rank):
        b = top.b[k]
        lam = top.lambda_[k]
        lines.append(f"  {k:2d}  {abs(b):12.6e}  {b.real:+.5e}{b.imag:+.5e}j  "
                     f"{lam.real:+.6e}{lam.imag:+.6e}j")
    return "\n".join(lines)


# ---------- Core pipeline ----------

def run_calibration(cfg: CalibrationConfig, logger: Optional[logging.Logger] = None) -> dict:
    """
    Generate the Duke data set, compute Koopman modes with all three estimators
    and collect ranked results.

    Parameters
    ----------
    cfg : CalibrationConfig
        Run parameters.
    logger : logging.Logger or None
        Destination for progress messages; module logger if None.

    Returns
    -------
    dict
        "U", "t", "x", "dt", "dx", "U_centered", "mean": data and grid;
        "results": {method: ranked KoopmanResult};
        "timings": {method: seconds};
        "recon_err": {method: mean relative L2 reconstruction error over the window};
        "pydmd_distance": float or None.
    """
    logger = logger or logging.getLogger(__name__)

    # Step 1: Generate the synthetic data set
    U, t, x = duke_synthetic(time_complex_frequency=cfg.time_frequency,
                             space_complex_frequency=cfg.space_frequency,
                             n_space=cfg.n_space, n_time=cfg.n_time)
    dt = uniform_step(t, name="t")
    dx = uniform_step(x, name="x")

    # Step 2: Multiplicative noise, if requested
    if cfg.noisy:
        logger.info("Adding noise (NSR=%g)", cfg.nsr)
        U = add_multiplicative_noise(U, cfg.nsr, seed=cfg.seed)
    else:
        logger.info("Noiseless")

    # Step 3: Remove the temporal mean (shared by all estimators)
    U_centered, Mean = remove_mean(U)
    logger.info("Removed data mean (ranged in interval [%f, %f])", float(np.min(Mean)), float(np.max(Mean)))

    # Step 4: Run the estimators independently
    estimators = [
        ("Exact DMD", ExactDMD(exact_modes=True, max_rank=cfg.max_rank)),
        ("Duke DMD", DukeDMD(cfg.window, max_rank=cfg.max_rank)),
        ("KDFT", KDFT()),
    ]
    results, timings, recon_err = {}, {}, {}
    t_rel = t - t[0]
    for name, estimator in estimators:
        tic = time.perf_counter()
        res = estimator.decompose(U_centered, dt)
        timings[name] = time.perf_counter() - tic
        results[name] = res.ranked()
        recon_err[name] = float(np.mean(rel_l2_over_time(res.reconstruct(t_rel), U_centered)))
        logger.info("%s: %d modes in %.4f s, mean reconstruction error %.3e",
                    name, res.rank, timings[name], recon_err[name])

    # Step 5: Optional cross-check of the exact DMD spectrum against PyDMD
    pydmd_distance = None
    if cfg.crosscheck_pydmd:
        exact = results["Exact DMD"]
        ref = pydmd_eigenvalues(U_centered, dt, exact.rank)
        pydmd_distance = spectrum_distance(exact.lambda_, ref)
        logger.info("PyDMD cross-check: max eigenvalue distance %.3e", pydmd_distance)

    return {
        "U": U, "t": t, "x": x, "dt": dt, "dx": dx,
        "U_centered": U_centered, "mean": Mean,
        "results": results, "timings": timings, "recon_err": recon_err,
        "pydmd_distance": pydmd_distance,
    }


def plot_calibration(run: dict, outpath: Path):
    """2x2 figure: data, leading modes, time spectrum and space spectrum."""
    import matplotlib.pyplot as plt
    from plot_utils import plot_data, plot_mode, plot_spectrum, set_style

    set_style()
    fig, axes = plt.subplots(2, 2, figsize=(11, 8))
    U, t, x = run["U"], run["t"], run["x"]

    plot_data(axes[0, 0], t, x, U)

    ax = axes[0, 1]
    ax.plot(x, np.real(run["U_centered"][:, 0]), lw=3, label="Data")
    ax.autoscale(False)  # fix axis according to data
    for name, res in run["results"].items():
        plot_mode(ax, x, res.b[0] * res.Phi[:, 0], name)
    ax.set_xlabel("x")
    ax.set_title("Leading mode (2 Re(b Phi))")
    ax.legend(loc="best")

    plot_spectrum(axes[1, 0], U[-1, :], run["dt"])
    axes[1, 0].set_title("Time FFT")
    plot_spectrum(axes[1, 1], U[:, -1], run["dx"])
    axes[1, 1].set_title("Space FFT")

    fig.tight_layout()
    fig.savefig(outpath, dpi=150)
    plt.close(fig)


def write_summary(run: dict, cfg: CalibrationConfig, outpath: Path):
    with open(outpath, "w") as f:
        f.write(f"time_frequency={cfg.time_frequency}, space_frequency={cfg.space_frequency}\n")
        f.write(f"n_space={cfg.n_space}, n_time={cfg.n_time}, dt={run['dt']:.6e}, dx={run['dx']:.6e}\n")
        f.write(f"noisy={cfg.noisy}, nsr={cfg.nsr}, seed={cfg.seed}\n")
        f.write(f"window={cfg.window}, max_rank={cfg.max_rank}\n\n")
        for name, res in run["results"].items():
            f.write(f"[{name}] time={run['timings'][name]:.4f}s "
                    f"recon_rel_l2={run['recon_err'][name]:.6e}\n")
            f.write(format_modes(res, cfg.n_modes) + "\n\n")
        if run["pydmd_distance"] is not None:
            f.write(f"pydmd_max_eig_distance={run['pydmd_distance']:.6e}\n")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--noiseless", action="store_true", help="Do not add multiplicative noise")
    parser.add_argument("--nsr", type=float, default=0.10, help="Noise-to-signal ratio")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the noise generator")
    parser.add_argument("--time-frequency", type=complex, default=20j,
                        help="Temporal complex frequency, e.g. 20j or 0.5+20j")
    parser.add_argument("--space-frequency", type=complex, default=1 + 5j,
                        help="Spatial complex frequency, e.g. 1+5j")
    parser.add_argument("--n-space", type=int, default=64, help="Number of spatial points")
    parser.add_argument("--n-time", type=int, default=128, help="Number of snapshots")
    parser.add_argument("--window", type=int, default=20, help="Duke DMD window length")
    parser.add_argument("--n-modes", type=int, default=5, help="Modes reported per method")
    parser.add_argument("--max-rank", type=int, default=None, help="Cap on the DMD truncation rank")
    parser.add_argument("--crosscheck-pydmd", action="store_true",
                        help="Compare the exact DMD spectrum with PyDMD")
    parser.add_argument("--no-plots", action="store_true", help="Skip the figure")
    parser.add_argument("--out", type=str, default="duke_calibration_outputs",
                        help="Directory to write outputs")
    parser.add_argument("--log-level", type=str.upper, default="INFO", choices=LOG_LEVELS,
                        help="Console log level")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = CalibrationConfig(
        time_frequency=args.time_frequency, space_frequency=args.space_frequency,
        n_space=args.n_space, n_time=args.n_time,
        noisy=not args.noiseless, nsr=args.nsr, seed=args.seed,
        window=args.window, n_modes=args.n_modes, max_rank=args.max_rank,
        crosscheck_pydmd=args.crosscheck_pydmd, make_plots=not args.no_plots,
        out=args.out,
    )
    outroot = Path(cfg.out)
    ensure_outdir(outroot)
    logger = setup_logging("duke_calibration", str(outroot), args.log_level)

    try:
        try:
            run = run_calibration(cfg, logger)
        except KoopmanError as exc:
            logger.error("Calibration failed: %s: %s", type(exc).__name__, exc)
            return 1

        for name, res in run["results"].items():
            print(f"\n=== {name} ===")
            print(format_modes(res, cfg.n_modes))

        write_summary(run, cfg, outroot / "summary.txt")
        if cfg.make_plots:
            from plot_utils import use_headless_backend
            use_headless_backend()
            plot_calibration(run, outroot / "duke_calibration.png")

        print(f"\nDone. Outputs in: {outroot.resolve()}")
        return 0
    finally:
        teardown_logging("duke_calibration")


if __name__ == "__main__":
    sys.exit(main())
