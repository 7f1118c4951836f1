"""End-to-end checks of the three estimators on the Duke benchmark."""

import logging

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from dmd_utils import DukeDMD, ExactDMD, aliased_eigenvalue
from kdft_utils import KDFT
from koopman_errors import InvalidInput
from preprocess_utils import remove_mean, uniform_step
from run_duke_calibration import (CalibrationConfig, main, plot_calibration, pydmd_eigenvalues,
                                  run_calibration, setup_logging, spectrum_distance,
                                  teardown_logging)
from synthetic_utils import add_multiplicative_noise, duke_synthetic


def fold(lam):
    """Conjugate-pair members coincide after folding onto the upper half plane."""
    return lam.real + 1j * abs(lam.imag)


def test_exact_and_windowed_agree_on_dominant_eigenvalue(duke_data):
    U, t, x, dt = duke_data
    lam_exact = fold(ExactDMD().decompose(U, dt).ranked().lambda_[0])
    lam_duke = fold(DukeDMD(20).decompose(U, dt).ranked().lambda_[0])
    target = aliased_eigenvalue(20j, dt)

    assert abs(lam_exact - lam_duke) <= 0.01 * abs(lam_duke)
    assert abs(lam_exact - target) <= 0.05 * abs(target)
    assert abs(lam_duke - target) <= 0.05 * abs(target)


def test_all_estimators_reconstruct_first_snapshot(duke_data):
    U, t, x, dt = duke_data
    for estimator in (ExactDMD(), ExactDMD(exact_modes=False), DukeDMD(20), KDFT()):
        res = estimator.decompose(U, dt)
        err = np.linalg.norm(res.Phi @ res.b - U[:, 0]) / np.linalg.norm(U[:, 0])
        assert err < 1e-8, estimator.method


@pytest.mark.parametrize("estimator", [ExactDMD(max_rank=2), DukeDMD(20, max_rank=3), KDFT(),
                          ExactDMD(), DukeDMD(20)],
                         ids=["exact", "duke", "kdft", "exact-uncapped", "duke-uncapped"])
def test_dominant_amplitude_varies_smoothly_with_noise(estimator):
    U0, t, x = duke_synthetic(n_space=64, n_time=128)
    dt = uniform_step(t)

    amplitudes = []
    for nsr in np.linspace(0.0, 0.1, 11):
        Uc, _ = remove_mean(add_multiplicative_noise(U0, nsr, seed=1234))
        res = estimator.decompose(Uc, dt).ranked()
        amplitudes.append(abs(res.b[0]))
    amplitudes = np.array(amplitudes)

    assert np.all(np.isfinite(amplitudes))
    assert np.max(np.abs(np.diff(amplitudes))) < 0.05 * amplitudes[0]
    assert abs(amplitudes[-1] - amplitudes[0]) < 0.2 * amplitudes[0]


def test_exact_dmd_matches_pydmd(duke_data):
    U, t, x, dt = duke_data
    res = ExactDMD().decompose(U, dt)
    ref = pydmd_eigenvalues(U, dt, res.rank)

    assert ref.size == res.rank
    assert spectrum_distance(res.lambda_, ref) < 1e-6


def test_spectrum_distance():
    a = np.array([1j, -1j])
    assert spectrum_distance(a, a[::-1]) == 0.0
    assert spectrum_distance(a, np.array([1j])) == pytest.approx(2.0)
    assert spectrum_distance(np.array([]), np.array([])) == 0.0


class TestRunCalibration:

    def test_noiseless_run(self):
        cfg = CalibrationConfig(noisy=False, crosscheck_pydmd=True, make_plots=False)
        run = run_calibration(cfg)

        assert set(run["results"]) == {"Exact DMD", "Duke DMD", "KDFT"}
        for name, res in run["results"].items():
            assert np.all(np.diff(np.abs(res.b)) <= 0), name
            assert run["timings"][name] >= 0.0
        assert run["recon_err"]["Duke DMD"] < 1e-6
        assert run["recon_err"]["KDFT"] < 1e-8
        assert run["pydmd_distance"] < 1e-6
        np.testing.assert_allclose(run["U_centered"].mean(axis=1), 0.0, atol=1e-12)

    def test_noisy_run_is_seeded(self):
        cfg = CalibrationConfig(noisy=True, nsr=0.1, seed=5, make_plots=False)
        first = run_calibration(cfg)
        second = run_calibration(cfg)
        np.testing.assert_array_equal(first["U"], second["U"])
        for name in first["results"]:
            np.testing.assert_allclose(first["results"][name].b, second["results"][name].b,
                                       rtol=1e-12)

    def test_plot(self, tmp_path):
        run = run_calibration(CalibrationConfig(noisy=False, n_space=16, n_time=40, window=5))
        out = tmp_path / "fig.png"
        plot_calibration(run, out)
        assert out.exists() and out.stat().st_size > 0


class TestMain:

    def test_writes_summary(self, tmp_path, capsys):
        code = main(["--noiseless", "--no-plots", "--crosscheck-pydmd",
                     "--n-modes", "3", "--out", str(tmp_path)])

        assert code == 0
        summary = (tmp_path / "summary.txt").read_text()
        assert "[Exact DMD]" in summary and "[Duke DMD]" in summary and "[KDFT]" in summary
        assert "pydmd_max_eig_distance" in summary
        assert (tmp_path / "duke_calibration.log").exists()
        assert "=== KDFT ===" in capsys.readouterr().out

    def test_writes_figure(self, tmp_path):
        code = main(["--seed", "0", "--n-space", "16", "--n-time", "48", "--window", "8",
                     "--out", str(tmp_path)])
        assert code == 0
        assert (tmp_path / "duke_calibration.png").exists()

    def test_reports_estimator_errors(self, tmp_path):
        # window >= number of snapshots
        code = main(["--noiseless", "--no-plots", "--n-time", "10", "--window", "10",
                     "--out", str(tmp_path)])
        assert code == 1

    def test_rejects_unknown_log_level(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main(["--log-level", "LOUD", "--out", str(tmp_path)])
        assert excinfo.value.code == 2

    def test_log_level_is_case_insensitive(self, tmp_path):
        code = main(["--noiseless", "--no-plots", "--n-space", "8", "--n-time", "24",
                     "--window", "4", "--log-level", "debug", "--out", str(tmp_path)])
        assert code == 0

    def test_repeated_runs_keep_host_handlers(self, tmp_path):
        root = logging.getLogger()
        host = logging.NullHandler()
        root.addHandler(host)
        args = ["--noiseless", "--no-plots", "--n-space", "8", "--n-time", "24", "--window", "4"]
        try:
            for run_dir in ("a", "b"):
                assert main(args + ["--out", str(tmp_path / run_dir)]) == 0
            assert host in root.handlers
        finally:
            root.removeHandler(host)

        for name in ("duke_calibration", "dmd_utils", "kdft_utils", "preprocess_utils"):
            assert not logging.getLogger(name).handlers, name
        for run_dir in ("a", "b"):
            log = (tmp_path / run_dir / "duke_calibration.log").read_text()
            assert "[duke_calibration] INFO" in log
            assert "[dmd_utils] DEBUG" in log


def test_setup_logging_closes_previous_run_file(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    try:
        setup_logging("duke_calibration", str(tmp_path / "a"))
        first = [h for h in logging.getLogger("duke_calibration").handlers
                 if isinstance(h, logging.FileHandler)]
        setup_logging("duke_calibration", str(tmp_path / "b"))
        current = logging.getLogger("duke_calibration").handlers

        assert len(first) == 1
        assert first[0].stream is None
        assert first[0] not in current
        assert sum(isinstance(h, logging.FileHandler) for h in current) == 1
    finally:
        teardown_logging("duke_calibration")
    assert not logging.getLogger("duke_calibration").handlers


def test_plot_mode_validates_input():
    import matplotlib.pyplot as plt
    from plot_utils import plot_mode, plot_spectrum

    fig, ax = plt.subplots()
    with pytest.raises(InvalidInput):
        plot_mode(ax, np.linspace(0, 1, 5), np.ones(4), "bad")
    with pytest.raises(InvalidInput):
        plot_spectrum(ax, np.array([1.0]), 0.1)

    line = plot_mode(ax, np.linspace(0, 1, 3), np.array([1 + 1j, 0.5j, -2.0]), "ok")
    np.testing.assert_allclose(line.get_ydata(), [2.0, 0.0, -4.0])
    plt.close(fig)
