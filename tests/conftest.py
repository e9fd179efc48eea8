"""Pytest configuration and fixtures for sopyt tests."""

import numpy as np
import pytest

import sopyt.io.config as config
from sopyt.io.config import EVENT_DTYPE, RunConfig, SieveGeometry
from sopyt.matrix import DependentMatrix, IndependentMatrix
from sopyt.peaks import Peak


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Redirect the user configuration to a temporary directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr(config, "_CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "_CONFIG_PATH", config_dir / "config.toml")
    monkeypatch.setattr(config, "_config_cache", None)
    return config_dir


class MomentPeakFinder:
    """
    Deterministic peak finder based on histogram moments.

    Peaks are the largest clusters of contiguous populated bins; their
    parameters are the count-weighted mean and standard deviation.
    """

    def find_peaks(self, hist, expected_count):
        counts = hist.counts
        populated = np.flatnonzero(counts > 0)
        if len(populated) == 0 or expected_count < 1:
            return []
        # split populated bins into contiguous clusters
        clusters = np.split(populated, np.flatnonzero(np.diff(populated) > 1) + 1)
        clusters = sorted(clusters, key=lambda c: counts[c].sum(), reverse=True)
        peaks = [self._moments(hist, c) for c in clusters[:expected_count]]
        return sorted(peaks, key=lambda p: p.mean)

    def fit_peak(self, hist, norm, mean, sigma):
        populated = np.flatnonzero(hist.counts > 0)
        if len(populated) < 2:
            return Peak(mean, 0.0, norm)
        return self._moments(hist, np.arange(len(hist)))

    @staticmethod
    def _moments(hist, bins):
        w = hist.counts[bins]
        x = hist.centers[bins]
        mean = np.average(x, weights=w)
        sigma = np.sqrt(np.average((x - mean) ** 2, weights=w))
        return Peak(mean, sigma, w.max())


@pytest.fixture
def peak_finder():
    """Moment-based peak finder test double."""
    return MomentPeakFinder()


def make_events(n, **fields):
    """Create event array with given input fields (others zero/NaN)."""
    events = np.zeros(n, dtype=EVENT_DTYPE)
    for name in EVENT_DTYPE.names[8:]:
        events[name] = np.nan
    for name, value in fields.items():
        events[name] = value
    return events


@pytest.fixture
def single_hole_sieve():
    """Sieve with a single hole at the origin."""
    return SieveGeometry(1, 1, 0.0, 2.5, 0.0, 1.64, 253.0)


@pytest.fixture
def single_foil_run(single_hole_sieve):
    """Run with one foil at z = 0 and a y-mispointing of 0.5 cm."""
    return RunConfig(
        1814, (0.0,), 10.0, single_hole_sieve, y_mispointing=0.5
    )


@pytest.fixture
def unit_matrices():
    """First-order identity-like forward map and empty dependent matrix."""
    indep = IndependentMatrix(
        "unit matrix",
        [(0, 0, 0, 0, 0), (0, 1, 0, 0, 0), (0, 0, 1, 0, 0), (0, 0, 0, 1, 0)],
        [
            [0.0, 0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 1.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, 0.0],
        ],
    )
    return indep, DependentMatrix("empty")


@pytest.fixture
def hole_events():
    """1000 events scattered around the single hole/foil truth."""
    rng = np.random.default_rng(20171016)
    n = 1000
    return make_events(
        n,
        x_fp=rng.normal(0.0, 1.0, n),
        xp_fp=rng.normal(0.0, 0.001, n),
        y_fp=rng.normal(0.0, 0.1, n),
        yp_fp=rng.normal(0.0, 0.001, n),
        theta=10.0,
        delta=0.0,
        x_ver=rng.normal(0.0, 0.02, n),
        y_ver=0.0,
    )
