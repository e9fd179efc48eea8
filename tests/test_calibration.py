"""Tests for the calibration pipeline and the command line wrapper."""

from dataclasses import replace

import numpy as np
import pytest

from sopyt.calibration import calibrate, run_job
from sopyt.errors import FormatError, SingularFitError
from sopyt.io.config import load_job
from sopyt.io.events import load_events, save_events
from sopyt.io.matrix import read_matrix_file, write_matrix_file
from sopyt.matrix import DependentMatrix, IndependentMatrix
from sopyt_cli import optics_fit

JOB_TEXT = """\
[matrix]
old = "old.dat"
new = "new.dat"

[fit]
order      = 1
iterations = 1

[[runs]]
number        = 1814
events        = "events.npy"
foils         = [0.0]
theta         = 10.0
y_mispointing = 0.5

  [runs.sieve]
  rows      = 1
  cols      = 1
  x_min     = 0.0
  x_spacing = 2.5
  y_min     = 0.0
  y_spacing = 1.64
  z0        = 253.0
"""


@pytest.fixture
def job_file(tmp_path, unit_matrices, hole_events):
    indep, dep = unit_matrices
    write_matrix_file(tmp_path / "old__indep.dat", indep)
    write_matrix_file(tmp_path / "old__dep.dat", dep)
    save_events(tmp_path / "events.npy", hole_events)
    file = tmp_path / "job.toml"
    file.write_text(JOB_TEXT)
    return file


class TestCalibrate:
    """Test the complete calibration on a single hole."""

    def test_recovers_y_mispointing(
        self, single_foil_run, unit_matrices, hole_events, peak_finder
    ):
        indep, dep = unit_matrices
        result, fitter = calibrate(
            [single_foil_run], indep, dep, 1, 1,
            peak_finder=peak_finder, event_source=lambda run: hole_events,
        )
        assert result.ok
        # the per-hole cap limits the fit to 50 events
        assert result.num_events == 50
        assert fitter.num_events == 50
        coeffs = result.matrix.coeffs
        assert len(result.matrix) == 5
        # physical target y is offset by the mispointing
        assert 100.0 * coeffs[0, 1] == pytest.approx(-0.5, abs=0.02)
        assert coeffs[0, 2] == pytest.approx(0.5 / 253.0, abs=1e-4)
        np.testing.assert_allclose(coeffs[:, 0], 0.0, atol=1e-9)

    def test_window_overrides(
        self, single_foil_run, unit_matrices, hole_events, peak_finder
    ):
        indep, dep = unit_matrices
        result, _ = calibrate(
            [single_foil_run], indep, dep, 1, 0,
            peak_finder=peak_finder, event_source=lambda run: hole_events,
            windows={"max_events_per_hole": 20},
        )
        assert result.num_events == 20

    def test_runs_are_accumulated(
        self, single_foil_run, unit_matrices, hole_events, peak_finder
    ):
        indep, dep = unit_matrices
        runs = [single_foil_run, replace(single_foil_run, number=1815)]
        result, _ = calibrate(
            runs, indep, dep, 1, 0, peak_finder=peak_finder,
            event_source=lambda run: hole_events.copy(),
        )
        assert result.num_events == 100

    def test_no_holes_reports_singular_fit(
        self, single_foil_run, unit_matrices, hole_events, peak_finder
    ):
        indep, dep = unit_matrices
        with pytest.warns(UserWarning):
            result, _ = calibrate(
                [single_foil_run], indep, dep, 1, 0, peak_finder=peak_finder,
                event_source=lambda run: hole_events[:20],
            )
        assert result.num_events == 0
        assert result.success == {"xp": False, "y": False, "yp": False}

    def test_run_without_event_file(self, single_foil_run, unit_matrices):
        indep, dep = unit_matrices
        with pytest.raises(FormatError):
            calibrate([single_foil_run], indep, dep, 1, 0)


class TestRunJob:
    """Test calibration jobs."""

    def test_outputs(self, job_file, peak_finder):
        base = job_file.parent
        result = run_job(
            load_job(job_file), events_dir=base / "events",
            peak_finder=peak_finder,
        )
        assert result.ok
        new_indep = read_matrix_file(base / "new__indep.dat", IndependentMatrix)
        assert len(new_indep) == 5
        assert new_indep.header == "unit matrix"
        # dependent matrix is copied unchanged
        assert (base / "new__dep.dat").read_text() == \
            (base / "old__dep.dat").read_text()
        assert len((base / "xpVec.txt").read_text().splitlines()) == 5
        assert len((base / "xpMat.txt").read_text().splitlines()) == 5
        events = np.load(base / "events" / "run_1814_reconstructed.npy")
        assert np.all(np.isfinite(events["z_ver"]))

    def test_strict_mode(self, job_file, peak_finder):
        base = job_file.parent
        events = load_events(base / "events.npy")
        save_events(base / "events.npy", events[:20])
        with pytest.warns(UserWarning):
            with pytest.raises(SingularFitError):
                run_job(load_job(job_file), strict=True, peak_finder=peak_finder)
        assert not (base / "new__indep.dat").exists()
        # without strict mode the (unusable) matrix is written nevertheless
        with pytest.warns(UserWarning):
            result = run_job(load_job(job_file), peak_finder=peak_finder)
        assert not result.ok
        assert (base / "new__indep.dat").exists()


class TestCommandLine:
    """Test the command line wrapper."""

    def test_missing_job_file(self, tmp_path):
        assert optics_fit.main([str(tmp_path / "missing.toml")]) == 1

    def test_invalid_job_file(self, tmp_path):
        file = tmp_path / "job.toml"
        file.write_text("[matrix\n")
        assert optics_fit.main([str(file)]) == 1

    def test_arguments(self, job_file, monkeypatch):
        calls = []

        class Result:
            ok = True
            success = {"xp": True, "y": True, "yp": True}

        def fake_run_job(job, strict, events_dir):
            calls.append((job, strict, events_dir))
            return Result()

        monkeypatch.setattr(optics_fit, "run_job", fake_run_job)
        assert optics_fit.main([str(job_file), "--strict", "--debug"]) == 0
        job, strict, events_dir = calls[0]
        assert job.order == 1
        assert strict
        assert events_dir is None
