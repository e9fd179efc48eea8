"""Tests for reading and writing matrix files."""

from pathlib import Path

import numpy as np
import pytest

from sopyt.errors import FormatError
from sopyt.io.matrix import (
    matrix_file_names,
    read_matrix_file,
    read_matrix_pair,
    write_matrix_file,
)
from sopyt.matrix import DependentMatrix, IndependentMatrix

MATRIX_TEXT = """\
 ---------------------------------------------------------------------
 0 0 0 0 0  -1.000000000e-03  2.5e-1  0.0  1.0
 1 0 0 0 0   0.95  -0.00123  0.5e-02  0.0

 0 1 1 0 0  1e-5 -2e-5 3e-5 -4e-5
"""


@pytest.fixture
def matrix_file(tmp_path):
    file = tmp_path / "shms__indep.dat"
    file.write_text(MATRIX_TEXT)
    return file


class TestReadMatrix:
    """Test parsing of matrix files."""

    def test_read(self, matrix_file):
        matrix = read_matrix_file(matrix_file, IndependentMatrix)
        assert isinstance(matrix, IndependentMatrix)
        assert matrix.header == MATRIX_TEXT.splitlines()[0]
        assert len(matrix) == 3
        assert tuple(matrix.terms[2]) == (0, 1, 1, 0, 0)
        np.testing.assert_allclose(
            matrix.coeffs[0], [-1.0e-3, 0.25, 0.0, 1.0]
        )

    def test_read_dependent(self, tmp_path):
        file = tmp_path / "dep.dat"
        file.write_text("header\n1 0 0 0 2 1.0 2.0 3.0 4.0\n")
        matrix = read_matrix_file(file, DependentMatrix)
        assert tuple(matrix.terms[0]) == (1, 0, 0, 0, 2)

    def test_header_only(self, tmp_path):
        file = tmp_path / "empty.dat"
        file.write_text("just a header\n")
        matrix = read_matrix_file(file, DependentMatrix)
        assert len(matrix) == 0
        assert matrix.header == "just a header"

    @pytest.mark.parametrize(
        "row",
        [
            "0 0 0 0 0 1.0 2.0 3.0",
            "0 0 0 0 0 1.0 2.0 3.0 4.0 5.0",
            "0 0.5 0 0 0 1.0 2.0 3.0 4.0",
            "0 -1 0 0 0 1.0 2.0 3.0 4.0",
            "0 0 0 0 0 1.0 abc 3.0 4.0",
        ],
    )
    def test_malformed_rows(self, tmp_path, row):
        file = tmp_path / "bad.dat"
        file.write_text(f"header\n0 0 0 0 0 0 0 0 0\n{row}\n")
        with pytest.raises(FormatError, match="line 3"):
            read_matrix_file(file, IndependentMatrix)

    def test_target_x_term_in_independent_file(self, tmp_path):
        file = tmp_path / "bad.dat"
        file.write_text("header\n0 0 0 0 1 0 0 0 0\n")
        with pytest.raises(FormatError):
            read_matrix_file(file, IndependentMatrix)

    def test_empty_file(self, tmp_path):
        file = tmp_path / "empty.dat"
        file.write_text("")
        with pytest.raises(FormatError):
            read_matrix_file(file, IndependentMatrix)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            read_matrix_file(tmp_path / "missing.dat", IndependentMatrix)


class TestWriteMatrix:
    """Test serialization of matrices."""

    def test_rewrite_is_stable(self, matrix_file, tmp_path):
        first, second = tmp_path / "first.dat", tmp_path / "second.dat"
        write_matrix_file(first, read_matrix_file(matrix_file, IndependentMatrix))
        write_matrix_file(second, read_matrix_file(first, IndependentMatrix))
        assert first.read_bytes() == second.read_bytes()

    def test_header_is_kept_verbatim(self, matrix_file, tmp_path):
        out = tmp_path / "out.dat"
        write_matrix_file(out, read_matrix_file(matrix_file, IndependentMatrix))
        assert out.read_text().splitlines()[0] == MATRIX_TEXT.splitlines()[0]

    def test_row_format(self, tmp_path):
        matrix = DependentMatrix("h", [(1, 0, 2, 0, 1)], [[1.5, -2.0, 0.0, 1e-7]])
        out = tmp_path / "out.dat"
        write_matrix_file(out, matrix)
        assert out.read_text().splitlines()[1] == (
            "1 0 2 0 1  1.500000000e+00 -2.000000000e+00  0.000000000e+00"
            "  1.000000000e-07"
        )


class TestMatrixFileNames:
    """Test derivation of matrix pair file names."""

    def test_names(self):
        assert matrix_file_names("shms_optics.dat") == (
            "shms_optics__dep.dat", "shms_optics__indep.dat"
        )

    def test_path(self):
        dep, indep = matrix_file_names(Path("dir/new.dat"))
        assert dep == Path("dir/new__dep.dat")
        assert indep == Path("dir/new__indep.dat")

    def test_read_pair(self, tmp_path, matrix_file):
        (tmp_path / "shms__dep.dat").write_text("dep header\n")
        dep, indep = read_matrix_pair(tmp_path / "shms.dat")
        assert isinstance(dep, DependentMatrix)
        assert isinstance(indep, IndependentMatrix)
        assert len(indep) == 3
