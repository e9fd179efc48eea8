"""
The SOPyT matrix file module
============================

This module reads and writes reconstruction matrix files.


File format
-----------

A matrix file is a plain text file. The first line is a header, which is
treated as opaque metadata and written back verbatim. Every following
non-blank line describes one term of the forward map as whitespace-delimited
fields::

    e_x e_xp e_y e_yp e_xtar C_xp C_y C_yp C_delta

i.e. five non-negative integer exponents followed by four coefficients.

A complete reconstruction matrix is stored as a *pair* of files, one for the
target-x dependent and one for the target-x independent terms. Their names
are derived from a common base name by :func:`matrix_file_names`.


List of functions
-----------------

* :func:`matrix_file_names`: Get names of the dependent and independent matrix
  files.
* :func:`read_matrix_file`: Read reconstruction matrix from file.
* :func:`read_matrix_pair`: Read dependent and independent matrix files.
* :func:`write_matrix_file`: Write reconstruction matrix to file.
"""
#
#
#
#
__version__ = "0.1.0"
__all__ = [
    "matrix_file_names",
    "read_matrix_file",
    "read_matrix_pair",
    "write_matrix_file"
]
#
#
#
#
# import modules
import logging
#
# import individual functions
from pathlib import Path
from sopyt.errors import FormatError
from sopyt.matrix import COEFF_NAMES, DependentMatrix, IndependentMatrix, \
                         PolynomialBasis
#
#
#
#
# set up logger
logger = logging.getLogger(__name__)
#
#
#
#
################################################################################
#
# private module-level variables
#
################################################################################
_NUM_EXPONENTS = len(PolynomialBasis._fields)
_NUM_FIELDS    = _NUM_EXPONENTS + len(COEFF_NAMES)
_ROW_FORMAT    = " ".join(["{:d}"] * _NUM_EXPONENTS + \
                          ["{: .9e}"] * len(COEFF_NAMES))
#
#
#
#
################################################################################
#
# public functions
#
################################################################################
def matrix_file_names(file_name):
    """
    Get names of the dependent and independent matrix files.

    The suffixes ``__dep`` and ``__indep`` are inserted before the last four
    characters (i.e. a three-letter extension) of the base name, e.g.
    ``shms.dat`` yields ``shms__dep.dat`` and ``shms__indep.dat``.

    Parameters
    ----------
    file_name : str or Path
        The base name of the matrix file pair.

    Returns
    -------
    dep : str or Path
        The name of the target-x dependent matrix file.
    indep : str or Path
        The name of the target-x independent matrix file.
    """
    #
    #
    name = str(file_name)
    if len(name) < 4:
        raise ValueError(f"Matrix file name \"{name}\" is too short.")
    #
    dep   = name[:-4] + "__dep"   + name[-4:]
    indep = name[:-4] + "__indep" + name[-4:]
    if isinstance(file_name, Path):
        return Path(dep), Path(indep)
    return dep, indep
#
#
#
#
def read_matrix_file(file, kind):
    """
    Read reconstruction matrix from file.

    Parameters
    ----------
    file : str or Path
        The matrix file.
    kind : type
        The matrix flavor, either :class:`sopyt.matrix.IndependentMatrix` or
        :class:`sopyt.matrix.DependentMatrix`.

    Returns
    -------
    matrix : ReconstructionMatrix
        The matrix of the requested flavor.

    Raises
    ------
    OSError
        If the file cannot be opened.
    FormatError
        If a line is malformed or the file is empty.
    """
    #
    #
    logger.info(f"Reading reconstruction matrix from \"{file}\".")
    with open(file, "r", encoding = "utf-8") as f:
        lines = f.read().splitlines()
    if len(lines) == 0:
        raise FormatError(f"Matrix file \"{file}\" is empty (missing header).")
    #
    #
    # parse terms
    terms, coeffs = [], []
    for line_number, line in enumerate(lines[1:], start = 2):
        fields = line.split()
        if len(fields) == 0:
            continue
        term, c = _parse_row(fields, file, line_number)
        if kind is IndependentMatrix and term.is_dependent:
            raise FormatError(
                f"Target-x dependent term in independent matrix file "
                f"\"{file}\" (line {line_number})."
            )
        terms.append(term)
        coeffs.append(c)
    #
    #
    logger.debug(f"Matrix file contains {len(terms)} terms.")
    return kind(lines[0], terms, coeffs if len(coeffs) > 0 else None)
#
#
#
#
def read_matrix_pair(file_name):
    """
    Read dependent and independent matrix files.

    Parameters
    ----------
    file_name : str or Path
        The base name of the matrix file pair, see :func:`matrix_file_names`.

    Returns
    -------
    matrix_dep : DependentMatrix
        The target-x dependent matrix.
    matrix_indep : IndependentMatrix
        The target-x independent matrix.
    """
    #
    #
    file_dep, file_indep = matrix_file_names(file_name)
    return read_matrix_file(file_dep, DependentMatrix), \
           read_matrix_file(file_indep, IndependentMatrix)
#
#
#
#
def write_matrix_file(file, matrix):
    """
    Write reconstruction matrix to file.

    Exponents are written as integers and coefficients in scientific notation
    with nine decimal places, so that reading and writing a file a second time
    reproduces it exactly.

    Parameters
    ----------
    file : str or Path
        The matrix file.
    matrix : ReconstructionMatrix
        The matrix.
    """
    #
    #
    logger.info(f"Writing reconstruction matrix ({len(matrix)} terms) to "
                f"\"{file}\".")
    with open(file, "w", encoding = "utf-8") as f:
        f.write(matrix.header + "\n")
        for term, c in matrix:
            f.write(_ROW_FORMAT.format(*term, *c) + "\n")
#
#
#
#
################################################################################
#
# private module-level functions
#
################################################################################
def _parse_row(fields, file, line_number):
    """
    Parse one matrix row.
    """
    #
    #
    location = f"\"{file}\" (line {line_number})"
    if len(fields) != _NUM_FIELDS:
        raise FormatError(
            f"Expected {_NUM_FIELDS} fields in matrix file {location} (got "
            f"{len(fields)})."
        )
    #
    #
    try:
        exponents = [int(e) for e in fields[:_NUM_EXPONENTS]]
    except ValueError:
        raise FormatError(f"Invalid exponent in matrix file {location}.")
    if any(e < 0 for e in exponents):
        raise FormatError(f"Negative exponent in matrix file {location}.")
    #
    try:
        coeffs = [float(c) for c in fields[_NUM_EXPONENTS:]]
    except ValueError:
        raise FormatError(f"Invalid coefficient in matrix file {location}.")
    #
    #
    return PolynomialBasis(*exponents), coeffs
