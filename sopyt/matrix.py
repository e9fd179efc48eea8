"""
The SOPyT reconstruction matrix module
======================================

This module implements the polynomial forward map from the focal plane to the
target.


Forward map
-----------

Each target quantity :math:`q \\in \\{x'_\\mathrm{tar}, y_\\mathrm{tar},
y'_\\mathrm{tar}, \\delta\\}` is reconstructed as a sum over the rows of a
reconstruction matrix

.. math::
    q = \\sum_i C_{q,i} \\, \\lambda_i, \\qquad
    \\lambda_i = \\left(\\frac{x_\\mathrm{fp}}{100}\\right)^{e_{x,i}}
                 x_\\mathrm{fp}'^{\\,e_{x',i}}
                 \\left(\\frac{y_\\mathrm{fp}}{100}\\right)^{e_{y,i}}
                 y_\\mathrm{fp}'^{\\,e_{y',i}}
                 \\left(\\frac{x_\\mathrm{tar}}{100}\\right)^{e_{x_\\mathrm{tar},i}},

where the positions are given in cm (and hence normalized to m). The
:math:`\\lambda_i` are referred to as *basis values* and a single row is
described by a :class:`PolynomialBasis`.

Matrix flavors
^^^^^^^^^^^^^^

The matrix is split into two flavors with different evaluation signatures:

* :class:`IndependentMatrix`: terms without target *x* dependence. The target
  *x* argument is ignored for these.
* :class:`DependentMatrix`: terms with target *x* dependence. As the target
  *x* is itself a result of the reconstruction, these terms require the
  fixed-point iteration of the
  :ref:`reconstruction module<sopyt.reconstruction:The SOPyT reconstruction
  module>`.

Coefficient columns
^^^^^^^^^^^^^^^^^^^

Coefficients are stored in four columns named ``xp``, ``y``, ``yp``, and
``delta`` (see :data:`COEFF_NAMES`). Only the first three are refitted by the
optics calibration.


List of classes
---------------

* :class:`DependentMatrix`: Reconstruction matrix with target-x dependent
  terms.
* :class:`IndependentMatrix`: Reconstruction matrix with target-x independent
  terms.
* :class:`PolynomialBasis`: Exponents of one term of the forward map.
* :class:`ReconstructionMatrix`: Common base class of both matrix flavors.


List of functions
-----------------

* :func:`focal_plane_coords`: Get normalized focal plane coordinates of
  event(s).
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = [
    'COEFF_NAMES',
    'DependentMatrix',
    'FIT_COLUMNS',
    'IndependentMatrix',
    'PolynomialBasis',
    'ReconstructionMatrix',
    'focal_plane_coords'
]
#
#
#
#
# import modules
import logging
import numba
import numpy as np
#
# import some special functions/modules
from collections import namedtuple
from sopyt.errors import FormatError
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
# public module-level variables
#
################################################################################
COEFF_NAMES = ('xp', 'y', 'yp', 'delta')
"The names of the coefficient columns."
FIT_COLUMNS = ('xp', 'y', 'yp')
"The coefficient columns refitted by the optics calibration."
#
#
#
#
################################################################################
#
# private module-level variables
#
################################################################################
_LENGTH_SCALE = 100.0
"The normalization of focal plane and target positions (cm to m)."
#
#
#
#
################################################################################
#
# public classes
#
################################################################################
class PolynomialBasis(
    namedtuple('PolynomialBasis', ['e_x', 'e_xp', 'e_y', 'e_yp', 'e_xtar'])
):
    """
    Exponents of one term of the forward map.

    The exponents apply to the normalized focal plane *x*, focal plane
    *x*-slope, focal plane *y*, focal plane *y*-slope, and normalized target
    *x*, respectively.
    """
    __slots__ = ()
    #
    #
    def __new__(cls, e_x, e_xp, e_y, e_yp, e_xtar = 0):
        exponents = (e_x, e_xp, e_y, e_yp, e_xtar)
        for e in exponents:
            if isinstance(e, (bool, np.bool_)) or \
               not isinstance(e, (int, np.integer)) or e < 0:
                raise ValueError(
                    f"Exponents must be non-negative integers (got "
                    f"{exponents})."
                )
        return super().__new__(cls, *(int(e) for e in exponents))
    #
    #
    @property
    def order(self):
        """The polynomial order of the term (sum of all exponents)."""
        return sum(self)
    #
    @property
    def is_dependent(self):
        """Whether the term depends on target *x*."""
        return self.e_xtar > 0
    #
    #
    def evaluate(self, event, x_tar = 0.0):
        """
        Evaluate term for a single event.

        Parameters
        ----------
        event : structured scalar
            The event, with the focal plane fields of
            :data:`sopyt.io.config.EVENT_DTYPE`.
        x_tar : float
            The target *x* (in cm). Only relevant for target-x dependent terms.

        Returns
        -------
        λ : float
            The basis value of this term.
        """
        #
        #
        coords = (*focal_plane_coords(event), x_tar / _LENGTH_SCALE)
        value = 1.0
        for c, e in zip(coords, self):
            value *= c**e
        return value
#
#
#
#
class ReconstructionMatrix:
    """
    Common base class of both matrix flavors.

    Parameters
    ----------
    header : str
        The header line of the matrix file. It is treated as opaque metadata
        and written back verbatim.
    terms : iterable of PolynomialBasis
        The terms of the matrix.
    coeffs : array_like, shape (n, 4)
        The coefficients of the *n* terms, in the column order of
        :data:`COEFF_NAMES`. Defaults to zero.

    Notes
    -----
    Duplicate terms are accepted by the constructor (e.g. to set up
    intentionally degenerate systems), but rejected by :meth:`add_term`.
    """
    #
    #
    is_dependent = False
    "Whether the matrix describes target-x dependent terms."
    #
    #
    def __init__(self, header = "", terms = (), coeffs = None):
        #
        #
        self.header = header
        self._terms = [self._check_term(PolynomialBasis(*t)) for t in terms]
        #
        if coeffs is None:
            coeffs = np.zeros((len(self._terms), len(COEFF_NAMES)))
        self._coeffs = np.array(coeffs, dtype = np.float64).reshape(
            -1, len(COEFF_NAMES)
        )
        if len(self._coeffs) != len(self._terms):
            raise ValueError(
                f"Number of coefficient rows ({len(self._coeffs)}) does not "
                f"match number of terms ({len(self._terms)})."
            )
        self._exponents = None
    #
    #
    def __len__(self):
        return len(self._terms)
    #
    def __iter__(self):
        """Iterate over ``(term, coefficients)`` pairs."""
        return zip(self._terms, (tuple(c) for c in self._coeffs))
    #
    def __repr__(self):
        return f"{type(self).__name__}({len(self)} terms)"
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Properties                                                       ###
    ###                                                                      ###
    ############################################################################
    @property
    def terms(self):
        """The terms of the matrix (*read-only* copy).

        Returns
        -------
        terms : list of PolynomialBasis
            The terms, in matrix order.
        """
        return list(self._terms)
    #
    @property
    def coeffs(self):
        """The coefficients of the matrix (*read-only* copy).

        Returns
        -------
        coeffs : ndarray, shape (n, 4)
            The coefficients, columns ordered as in :data:`COEFF_NAMES`.
        """
        return self._coeffs.copy()
    #
    @property
    def exponents(self):
        """The exponents of all terms.

        Returns
        -------
        exponents : ndarray, shape (n, 5)
            The exponents as 64-bit integers.
        """
        if self._exponents is None:
            self._exponents = np.array(
                self._terms, dtype = np.int64
            ).reshape(-1, len(PolynomialBasis._fields))
        return self._exponents
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Public class-level methods                                       ###
    ###                                                                      ###
    ############################################################################
    def add_term(self, term, c_xp = 0.0, c_y = 0.0, c_yp = 0.0, c_delta = 0.0):
        """
        Append a term to the matrix.

        Raises
        ------
        ValueError
            If the term is already part of the matrix.
        """
        #
        #
        term = self._check_term(PolynomialBasis(*term))
        if self.find_term(term) is not None:
            raise ValueError(f"Duplicate term {tuple(term)}.")
        #
        self._terms.append(term)
        self._coeffs = np.vstack((self._coeffs, [c_xp, c_y, c_yp, c_delta]))
        self._exponents = None
    #
    #
    def basis_values(self, coords, x_tar = 0.0):
        """
        Evaluate all terms for one or more events.

        Parameters
        ----------
        coords : ndarray, shape (4,) or (m, 4)
            The normalized focal plane coordinates of one or *m* events, as
            returned by :func:`focal_plane_coords`.
        x_tar : float or ndarray, shape (m,)
            The target *x* (in cm) of the event(s).

        Returns
        -------
        λ : ndarray, shape (m, n)
            The basis values of all *n* terms for the *m* events (*m* = 1 for a
            single event).
        """
        #
        #
        coords = np.atleast_2d(np.asarray(coords, dtype = np.float64))
        x_tar  = np.broadcast_to(
            np.asarray(x_tar, dtype = np.float64), (len(coords),)
        )
        #
        # append normalized target x as fifth coordinate
        coords = np.column_stack((coords, x_tar / _LENGTH_SCALE))
        return _basis_values(np.ascontiguousarray(coords), self.exponents)
    #
    #
    def coefficient_index(self, columns):
        """Get column indices of coefficient name(s)."""
        #
        if isinstance(columns, str):
            return COEFF_NAMES.index(columns)
        return [COEFF_NAMES.index(c) for c in columns]
    #
    #
    def find_term(self, term):
        """
        Find a term in the matrix.

        Returns
        -------
        index : int or None
            The index of the term, or ``None`` if it is not part of the matrix.
        """
        #
        #
        try:
            return self._terms.index(PolynomialBasis(*term))
        except ValueError:
            return None
    #
    #
    def forward_sum(self, coords, x_tar = 0.0, columns = FIT_COLUMNS):
        """
        Evaluate the forward map for one or more events.

        Parameters
        ----------
        coords : ndarray, shape (4,) or (m, 4)
            The normalized focal plane coordinates of one or *m* events, as
            returned by :func:`focal_plane_coords`.
        x_tar : float or ndarray, shape (m,)
            The target *x* (in cm) of the event(s).
        columns : str or sequence of str
            The coefficient column(s) to sum. Defaults to :data:`FIT_COLUMNS`.

        Returns
        -------
        sums : ndarray or float
            The sums :math:`\\sum_i C_i \\lambda_i` for the selected column(s).
            The leading event axis is dropped for one-dimensional *coords*.
        """
        #
        #
        sums = self.basis_values(coords, x_tar) @ \
               self._coeffs[:, self.coefficient_index(columns)]
        return sums[0] if np.ndim(coords) == 1 else sums
    #
    #
    def set_coefficients(self, column, values):
        """
        Set all coefficients of one column.

        Parameters
        ----------
        column : str
            The coefficient column, one of :data:`COEFF_NAMES`.
        values : array_like, shape (n,)
            The new coefficients of all *n* terms.
        """
        #
        #
        values = np.asarray(values, dtype = np.float64)
        if values.shape != (len(self),):
            raise ValueError(
                f"Expected {len(self)} coefficients (got {values.shape})."
            )
        self._coeffs[:, self.coefficient_index(column)] = values
    #
    #
    def copy(self):
        """Return an independent copy of the matrix."""
        return type(self)(self.header, self._terms, self._coeffs)
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Private class-level methods                                      ###
    ###                                                                      ###
    ############################################################################
    def _check_term(self, term):
        """Hook for flavor-specific term validation."""
        return term
#
#
#
#
class IndependentMatrix(ReconstructionMatrix):
    """
    Reconstruction matrix with target-x independent terms.

    All terms must have a vanishing target *x* exponent; other terms raise a
    :class:`sopyt.errors.FormatError`. The target *x* argument of
    :meth:`basis_values` and :meth:`forward_sum` is accepted for a uniform
    interface, but ignored.
    """
    #
    #
    is_dependent = False
    #
    #
    @classmethod
    def fresh(cls, order, prior = None, header = None):
        """
        Construct a complete matrix up to a given order.

        All exponent combinations with vanishing target *x* exponent and total
        order up to *order* are included, grouped by increasing order. Within
        one order the terms follow the loop precedence of the established
        matrix files (outermost *y*-slope, then *y*, then *x*-slope, innermost
        *x*). The resulting number of terms is
        :math:`\\binom{\\mathrm{order} + 4}{4}`.

        Parameters
        ----------
        order : int
            The maximum polynomial order.
        prior : IndependentMatrix
            The matrix from which the ``delta`` coefficients (and the header,
            unless given explicitly) are copied. Terms not present in *prior*
            get a vanishing ``delta`` coefficient. All other coefficients are
            initialized with zero. Defaults to ``None``.
        header : str
            The header line of the new matrix. Defaults to the header of
            *prior* (or an empty string).

        Returns
        -------
        matrix : IndependentMatrix
            The new matrix.
        """
        #
        #
        if order < 0:
            raise ValueError(f"Order must not be negative (got {order}).")
        if header is None:
            header = prior.header if prior is not None else ""
        matrix = cls(header)
        #
        #
        # construct order by order
        i_delta = COEFF_NAMES.index('delta')
        for n in range(order + 1):
            for e_yp in range(n + 1):
                for e_y in range(n - e_yp + 1):
                    for e_xp in range(n - e_yp - e_y + 1):
                        e_x = n - e_yp - e_y - e_xp
                        term = PolynomialBasis(e_x, e_xp, e_y, e_yp, 0)
                        #
                        # copy delta coefficient from prior matrix
                        c_delta = 0.0
                        if prior is not None:
                            index = prior.find_term(term)
                            if index is not None:
                                c_delta = prior._coeffs[index, i_delta]
                        matrix.add_term(term, c_delta = c_delta)
        #
        #
        logger.info(f"Initialized new matrix with {len(matrix)} target-x "
                    f"independent terms up to order {order}.")
        return matrix
    #
    #
    def basis_values(self, coords, x_tar = None):
        return super().basis_values(coords, 0.0)
    #
    #
    def forward_sum(self, coords, x_tar = None, columns = FIT_COLUMNS):
        return super().forward_sum(coords, 0.0, columns)
    #
    #
    def _check_term(self, term):
        if term.is_dependent:
            raise FormatError(
                f"Term {tuple(term)} depends on target x and cannot be part "
                f"of a target-x independent matrix."
            )
        return term
#
#
#
#
class DependentMatrix(ReconstructionMatrix):
    """
    Reconstruction matrix with target-x dependent terms.

    The basis values of these terms depend on the reconstructed target *x*,
    which must be passed explicitly to :meth:`basis_values` and
    :meth:`forward_sum`.
    """
    #
    #
    is_dependent = True
    #
    #
    def basis_values(self, coords, x_tar):
        return super().basis_values(coords, x_tar)
    #
    #
    def forward_sum(self, coords, x_tar, columns = FIT_COLUMNS):
        return super().forward_sum(coords, x_tar, columns)
#
#
#
#
################################################################################
#
# public functions
#
################################################################################
def focal_plane_coords(events):
    """
    Get normalized focal plane coordinates of event(s).

    Parameters
    ----------
    events : structured scalar or ndarray, shape (m,)
        One or *m* events with the focal plane fields of
        :data:`sopyt.io.config.EVENT_DTYPE`.

    Returns
    -------
    coords : ndarray, shape (4,) or (m, 4)
        The coordinates :math:`(x_\\mathrm{fp}/100, x'_\\mathrm{fp},
        y_\\mathrm{fp}/100, y'_\\mathrm{fp})`.
    """
    #
    #
    return np.stack((
        np.asarray(events['x_fp'], dtype = np.float64) / _LENGTH_SCALE,
        np.asarray(events['xp_fp'], dtype = np.float64),
        np.asarray(events['y_fp'], dtype = np.float64) / _LENGTH_SCALE,
        np.asarray(events['yp_fp'], dtype = np.float64)
    ), axis = -1)
#
#
#
#
################################################################################
#
# private module-level functions
#
################################################################################
@numba.njit('f8[:, :](f8[:, :], i8[:, :])', cache = True, parallel = True)
def _basis_values(coords, exponents):
    """Evaluate basis values for all events and terms.

    Parameters
    ----------
    coords : ndarray, shape (m, 5)
        The normalized coordinates of *m* events.
    exponents : ndarray, shape (n, 5)
        The exponents of *n* terms.

    Returns
    -------
    λ : ndarray, shape (m, n)
        The basis values.
    """
    #
    #
    λ = np.empty((coords.shape[0], exponents.shape[0]))
    for i in numba.prange(coords.shape[0]):
        for j in range(exponents.shape[0]):
            value = 1.0
            for k in range(exponents.shape[1]):
                value *= coords[i, k]**exponents[j, k]
            λ[i, j] = value
    #
    #
    return λ
