"""Tests for the polynomial basis and reconstruction matrices."""

from math import comb

import numpy as np
import pytest

from conftest import make_events
from sopyt.errors import FormatError
from sopyt.matrix import (
    DependentMatrix,
    IndependentMatrix,
    PolynomialBasis,
    focal_plane_coords,
)


@pytest.fixture
def event():
    events = make_events(1, x_fp=12.0, xp_fp=0.02, y_fp=-3.0, yp_fp=-0.01)
    return events[0]


class TestPolynomialBasis:
    """Test evaluation of single terms."""

    def test_zero_exponents_evaluate_to_one(self):
        zero = make_events(1)[0]
        assert PolynomialBasis(0, 0, 0, 0, 0).evaluate(zero) == 1.0
        assert PolynomialBasis(0, 0, 0, 0, 0).evaluate(zero, x_tar=7.5) == 1.0

    def test_positions_are_normalized(self, event):
        term = PolynomialBasis(1, 0, 2, 0, 0)
        assert term.evaluate(event) == pytest.approx(0.12 * 0.03 ** 2)

    def test_target_x_dependence(self, event):
        term = PolynomialBasis(0, 1, 0, 1, 2)
        expected = 0.02 * -0.01 * 0.05 ** 2
        assert term.evaluate(event, x_tar=5.0) == pytest.approx(expected)

    def test_order(self):
        assert PolynomialBasis(1, 2, 0, 1, 3).order == 7
        assert not PolynomialBasis(1, 0, 0, 0, 0).is_dependent
        assert PolynomialBasis(0, 0, 0, 0, 1).is_dependent

    @pytest.mark.parametrize("exponents", [(-1, 0, 0, 0, 0), (0, 1.5, 0, 0, 0)])
    def test_invalid_exponents(self, exponents):
        with pytest.raises(ValueError):
            PolynomialBasis(*exponents)


class TestReconstructionMatrix:
    """Test matrix containers and forward sums."""

    def test_add_term_rejects_duplicates(self):
        matrix = IndependentMatrix("header")
        matrix.add_term((1, 0, 0, 0, 0), c_xp=1.0)
        with pytest.raises(ValueError):
            matrix.add_term((1, 0, 0, 0, 0))
        assert len(matrix) == 1

    def test_constructor_accepts_duplicates(self):
        matrix = IndependentMatrix("dup", [(0, 0, 0, 0, 0)] * 2)
        assert len(matrix) == 2

    def test_independent_rejects_target_x_terms(self):
        with pytest.raises(FormatError):
            IndependentMatrix("bad", [(0, 0, 0, 0, 1)])

    def test_basis_values_match_single_evaluation(self, event):
        matrix = DependentMatrix(
            "dep", [(1, 0, 0, 0, 1), (0, 2, 1, 0, 0), (0, 0, 0, 3, 2)]
        )
        values = matrix.basis_values(focal_plane_coords(event), 4.0)
        assert values.shape == (1, 3)
        for j, term in enumerate(matrix.terms):
            assert values[0, j] == pytest.approx(term.evaluate(event, 4.0))

    def test_forward_sum(self, event):
        matrix = IndependentMatrix(
            "indep",
            [(0, 0, 0, 0, 0), (1, 0, 0, 0, 0)],
            [[1.0, 2.0, 3.0, 4.0], [10.0, 20.0, 30.0, 40.0]],
        )
        coords = focal_plane_coords(event)
        xp, y, yp = matrix.forward_sum(coords)
        assert xp == pytest.approx(1.0 + 10.0 * 0.12)
        assert y == pytest.approx(2.0 + 20.0 * 0.12)
        assert yp == pytest.approx(3.0 + 30.0 * 0.12)
        assert matrix.forward_sum(coords, columns="delta") == \
            pytest.approx(4.0 + 40.0 * 0.12)

    def test_independent_ignores_target_x(self, event):
        matrix = IndependentMatrix("indep", [(1, 1, 0, 0, 0)], [[1, 1, 1, 1]])
        coords = focal_plane_coords(event)
        np.testing.assert_array_equal(
            matrix.forward_sum(coords, 0.0), matrix.forward_sum(coords, 99.0)
        )

    def test_batch_evaluation(self):
        rng = np.random.default_rng(1)
        events = make_events(
            20, x_fp=rng.normal(size=20), xp_fp=rng.normal(size=20),
            y_fp=rng.normal(size=20), yp_fp=rng.normal(size=20),
        )
        x_tar = rng.normal(size=20)
        matrix = DependentMatrix(
            "dep", [(1, 0, 0, 0, 1), (0, 1, 1, 0, 1)], [[1, 2, 3, 0], [4, 5, 6, 0]]
        )
        sums = matrix.forward_sum(focal_plane_coords(events), x_tar)
        assert sums.shape == (20, 3)
        for i in range(20):
            expected = matrix.forward_sum(focal_plane_coords(events[i]), x_tar[i])
            np.testing.assert_allclose(sums[i], expected)

    def test_set_coefficients(self):
        matrix = IndependentMatrix("m", [(0, 0, 0, 0, 0), (1, 0, 0, 0, 0)])
        matrix.set_coefficients("y", [1.0, 2.0])
        np.testing.assert_array_equal(matrix.coeffs[:, 1], [1.0, 2.0])
        with pytest.raises(ValueError):
            matrix.set_coefficients("y", [1.0])


class TestFreshMatrix:
    """Test construction of complete target-x independent matrices."""

    @pytest.mark.parametrize("order", range(6))
    def test_term_count(self, order):
        assert len(IndependentMatrix.fresh(order)) == comb(order + 4, 4)

    def test_term_order(self):
        terms = [tuple(t)[:4] for t in IndependentMatrix.fresh(2).terms]
        assert terms == [
            (0, 0, 0, 0),
            (1, 0, 0, 0), (0, 1, 0, 0), (0, 0, 1, 0), (0, 0, 0, 1),
            (2, 0, 0, 0), (1, 1, 0, 0), (0, 2, 0, 0),
            (1, 0, 1, 0), (0, 1, 1, 0), (0, 0, 2, 0),
            (1, 0, 0, 1), (0, 1, 0, 1), (0, 0, 1, 1),
            (0, 0, 0, 2),
        ]

    def test_orders_are_grouped(self):
        orders = [t.order for t in IndependentMatrix.fresh(4).terms]
        assert orders == sorted(orders)

    def test_delta_coefficients_are_copied(self):
        prior = IndependentMatrix(
            "prior header",
            [(1, 0, 0, 0, 0), (0, 0, 3, 0, 0)],
            [[1.0, 2.0, 3.0, 0.5], [1.0, 2.0, 3.0, -0.25]],
        )
        matrix = IndependentMatrix.fresh(2, prior=prior)
        assert matrix.header == "prior header"
        coeffs = matrix.coeffs
        assert coeffs[matrix.find_term((1, 0, 0, 0, 0)), 3] == 0.5
        # terms beyond the new order are dropped
        assert matrix.find_term((0, 0, 3, 0, 0)) is None
        # fit coefficients start at zero
        assert np.all(coeffs[:, :3] == 0.0)
        assert np.count_nonzero(coeffs[:, 3]) == 1
