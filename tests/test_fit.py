"""Tests for the normal-equation fit."""

import numpy as np
import pytest

from conftest import make_events
from sopyt.association import SieveHole
from sopyt.errors import SingularFitError
from sopyt.fit import CalibrationFitter
from sopyt.matrix import DependentMatrix, IndependentMatrix
from sopyt.peaks import Peak
from sopyt.reconstruction import physical_target


def linear_matrix():
    return IndependentMatrix(
        "linear", [(0, 0, 0, 0, 0), (1, 0, 0, 0, 0), (0, 0, 1, 0, 0)]
    )


class TestSolve:
    """Test solving the normal equations."""

    def test_exact_solution(self):
        rng = np.random.default_rng(5)
        lambdas = np.column_stack(
            (np.ones(100), rng.normal(size=100), rng.normal(size=100))
        )
        truth = np.array([[1.0, -2.0, 0.5], [0.1, 0.2, 0.3], [3.0, 0.0, -1.0]])
        fitter = CalibrationFitter(linear_matrix(), DependentMatrix("dep"))
        fitter.add(lambdas, lambdas @ truth)
        result = fitter.solve()
        assert result.ok
        assert result.errors == {}
        assert result.num_events == 100
        np.testing.assert_allclose(result.matrix.coeffs[:, :3], truth, atol=1e-10)

    def test_header_and_delta_are_kept(self):
        matrix = IndependentMatrix(
            "keep me", [(0, 0, 0, 0, 0)], [[0.0, 0.0, 0.0, 0.75]]
        )
        fitter = CalibrationFitter(matrix, DependentMatrix("dep"))
        fitter.add([1.0], [0.1, 0.2, 0.3])
        result = fitter.solve()
        assert result.matrix.header == "keep me"
        np.testing.assert_allclose(result.matrix.coeffs[0], [0.1, 0.2, 0.3, 0.75])
        # the input matrix is left untouched
        assert np.all(matrix.coeffs[0, :3] == 0.0)

    @pytest.mark.parametrize("rcond", [None, 1e-12])
    def test_duplicate_terms_are_singular(self, rcond):
        matrix = IndependentMatrix("dup", [(0, 0, 0, 0, 0)] * 2)
        fitter = CalibrationFitter(matrix, DependentMatrix("dep"))
        fitter.add(np.ones((10, 2)), np.ones((10, 3)))
        result = fitter.solve(rcond=rcond)
        assert not result.ok
        assert result.success == {"xp": False, "y": False, "yp": False}
        assert set(result.errors) == {"xp", "y", "yp"}
        assert all(isinstance(e, SingularFitError) for e in result.errors.values())
        # the truncated pseudo-inverse solution is installed nevertheless
        np.testing.assert_allclose(result.matrix.coeffs[:, 1], [0.5, 0.5])
        with pytest.raises(SingularFitError, match="xp"):
            result.raise_for_status()

    def test_full_order_over_focal_plane_acceptance(self):
        # badly scaled high-order terms must not make a full-rank fit fail
        rng = np.random.default_rng(11)
        n = 20000
        coords = np.column_stack((
            rng.uniform(-20.0, 20.0, n) / 100.0,
            rng.uniform(-0.05, 0.05, n),
            rng.uniform(-5.0, 5.0, n) / 100.0,
            rng.uniform(-0.03, 0.03, n),
        ))
        matrix = IndependentMatrix.fresh(5)
        lambdas = matrix.basis_values(coords)
        truth = rng.normal(size=(len(matrix), 3))
        residuals = lambdas @ truth
        fitter = CalibrationFitter(matrix, DependentMatrix("dep"))
        fitter.add(lambdas, residuals)
        result = fitter.solve()
        assert len(matrix) == 126
        assert result.ok
        assert result.errors == {}
        coeffs = result.matrix.coeffs[:, :3]
        np.testing.assert_allclose(
            lambdas @ coeffs, residuals, atol=1e-8 * np.abs(residuals).max()
        )
        np.testing.assert_allclose(coeffs[:5], truth[:5], atol=1e-6)

    def test_no_events_is_singular(self):
        fitter = CalibrationFitter(linear_matrix(), DependentMatrix("dep"))
        result = fitter.solve()
        assert result.success == {"xp": False, "y": False, "yp": False}
        assert result.num_events == 0
        assert np.all(result.matrix.coeffs == 0.0)

    def test_invalid_shapes(self):
        fitter = CalibrationFitter(linear_matrix(), DependentMatrix("dep"))
        with pytest.raises(ValueError):
            fitter.add(np.ones((4, 2)), np.ones((4, 3)))
        with pytest.raises(ValueError):
            fitter.add(np.ones((4, 3)), np.ones((5, 3)))


class TestAccumulate:
    """Test accumulation of labeled events."""

    def test_residuals(self, single_foil_run):
        events = make_events(
            3, x_fp=[1.0, -2.0, 0.5], y_fp=[0.3, 0.1, -0.4], theta=10.0,
            x_ver=[0.01, -0.02, 0.0], delta=[0.0, 2.0, -1.0],
        )
        dep = DependentMatrix("dep", [(0, 0, 0, 0, 1)], [[0.1, 0.2, 0.3, 0.0]])
        matrix = IndependentMatrix("single", [(0, 0, 0, 0, 0)])
        fitter = CalibrationFitter(matrix, dep)
        holes = [[SieveHole(Peak(0.0, 0.2, 1), Peak(0.0, 0.2, 1), 0, 0)]]
        num = fitter.accumulate(
            events, np.array([0, -1, 0]), np.array([0, -1, 0]),
            single_foil_run, holes,
        )
        assert num == 2
        assert fitter.num_events == 2
        # constant basis: the right-hand side is the sum of residuals
        expected = np.zeros(3)
        for e in events[[0, 2]]:
            xp, y, yp, x = physical_target(0.0, 0.0, 0.0, e, single_foil_run)
            expected += np.array([xp, y / 100.0, yp]) - \
                np.array([0.1, 0.2, 0.3]) * x / 100.0
        np.testing.assert_allclose(
            [fitter.rhs(c)[0] for c in ("xp", "y", "yp")], expected
        )
        np.testing.assert_allclose(fitter.normal_matrix, [[2.0]])

    def test_no_labeled_events(self, single_foil_run):
        fitter = CalibrationFitter(linear_matrix(), DependentMatrix("dep"))
        events = make_events(4)
        num = fitter.accumulate(
            events, np.full(4, -1), np.full(4, -1), single_foil_run, [[]]
        )
        assert num == 0
        assert fitter.num_events == 0


class TestWriteNormalEquations:
    """Test the diagnostic dumps."""

    def test_format(self, tmp_path):
        fitter = CalibrationFitter(linear_matrix(), DependentMatrix("dep"))
        fitter.add([[1.0, 2.0, -3.0]], [[0.5, 0.0, 0.0]])
        vec, mat = tmp_path / "xpVec.txt", tmp_path / "xpMat.txt"
        fitter.write_normal_equations(vec, mat)
        assert vec.read_text().splitlines() == [
            "  5.000000000e-01", "  1.000000000e+00", " -1.500000000e+00",
        ]
        rows = mat.read_text().splitlines()
        assert len(rows) == 3
        assert rows[0] == "  1.000000000e+00  2.000000000e+00 -3.000000000e+00"
        np.testing.assert_allclose(np.loadtxt(mat), fitter.normal_matrix)
