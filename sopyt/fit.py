"""
The SOPyT calibration fit module
================================

This module refits the coefficients of the target-x independent
reconstruction matrix.


General
-------

For every event assigned to a foil and a sieve hole, the *physical* target
quantities follow from the known foil and hole positions (see
:func:`sopyt.reconstruction.physical_target`). The contribution of the
target-x dependent matrix (evaluated at the physical target *x*) is subtracted,
and the remainder is fitted by the basis values
:math:`\\lambda_i` of the new target-x independent matrix in the least-squares
sense:

.. math::
    \\sum_e \\lambda_{e,m} \\lambda_{e,n} \\, C_{q,n} =
    \\sum_e \\lambda_{e,m} \\, r_{e,q}, \\qquad q \\in \\{x', y, y'\\}.

All three coordinates share one normal matrix. It is equilibrated to a unit
diagonal (by the root of its diagonal elements) and decomposed once by
singular value decomposition (|svd|). A system is considered singular if the
smallest singular value of the equilibrated matrix falls below ``rcond`` times
the largest one. Such failures are reported per coordinate through
:class:`FitResult`; the truncated pseudo-inverse solution is installed
nevertheless, and it is up to the caller to discard the result.


List of classes
---------------

* :class:`CalibrationFitter`: Accumulate and solve the normal equations.
* :class:`FitResult`: Result of the calibration fit.


.. |svd| raw:: html

    <a href="https://docs.scipy.org/doc/scipy/reference/generated/
    scipy.linalg.svd.html" target="_blank">scipy.linalg.svd</a>
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = ['CalibrationFitter', 'FitResult']
#
#
#
#
# import modules
import logging
import numpy as np
#
# import some special functions/modules
from scipy.linalg import svd
from sopyt.errors import SingularFitError
from sopyt.matrix import FIT_COLUMNS, focal_plane_coords
from sopyt.reconstruction import physical_target
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
_LENGTH_SCALE = 100.0
_DUMP_FORMAT = '%17.9e'
#
#
#
#
################################################################################
#
# public classes
#
################################################################################
class FitResult:
    """
    Result of the calibration fit.

    Parameters
    ----------
    matrix : IndependentMatrix
        The new matrix with the fitted coefficients installed.
    success : dict
        Whether the fit succeeded, per coordinate (``xp``, ``y``, ``yp``).
    errors : dict
        The :class:`sopyt.errors.SingularFitError` of each failed coordinate.
    singular_values : ndarray, shape (n,)
        The singular values of the equilibrated normal matrix.
    num_events : int
        The number of events used for the fit.
    """
    #
    #
    def __init__(self, matrix, success, errors, singular_values, num_events):
        self.matrix          = matrix
        self.success         = success
        self.errors          = errors
        self.singular_values = singular_values
        self.num_events      = num_events
    #
    #
    def __bool__(self):
        return self.ok
    #
    #
    @property
    def ok(self):
        """Whether all coordinates were fitted successfully."""
        return all(self.success.values())
    #
    #
    def raise_for_status(self):
        """Raise the first fit error, if any."""
        for name in FIT_COLUMNS:
            if name in self.errors:
                raise self.errors[name]
#
#
#
#
class CalibrationFitter:
    """
    Accumulate and solve the normal equations.

    Parameters
    ----------
    matrix_new : IndependentMatrix
        The matrix whose terms are fitted. Its ``delta`` coefficients and
        header are kept.
    matrix_dep : DependentMatrix
        The (fixed) target-x dependent matrix.


    The following class methods are provided:

    * :meth:`accumulate`: Add labeled events of one run.
    * :meth:`add`: Add basis values and residuals.
    * :meth:`solve`: Solve the normal equations.
    * :meth:`write_normal_equations`: Write normal equations of one coordinate
      to text files.
    """
    #
    #
    def __init__(self, matrix_new, matrix_dep):
        #
        #
        self._matrix     = matrix_new
        self._matrix_dep = matrix_dep
        #
        n = len(matrix_new)
        self._normal     = np.zeros((n, n))
        self._rhs        = np.zeros((len(FIT_COLUMNS), n))
        self._num_events = 0
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
    def normal_matrix(self):
        """The accumulated normal matrix (*read-only* copy)."""
        return self._normal.copy()
    #
    @property
    def num_events(self):
        """The number of accumulated events."""
        return self._num_events
    #
    def rhs(self, coordinate):
        """Get accumulated right-hand side of one coordinate."""
        return self._rhs[FIT_COLUMNS.index(coordinate)].copy()
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Public class-level methods                                       ###
    ###                                                                      ###
    ############################################################################
    def accumulate(self, events, foil_ids, hole_ids, run, holes):
        """
        Add labeled events of one run.

        Parameters
        ----------
        events : ndarray, shape (n,)
            The reconstructed events.
        foil_ids : ndarray, shape (n,)
            The foil index of each event.
        hole_ids : ndarray, shape (n,)
            The hole index of each event, ``-1`` for rejected events.
        run : RunConfig
            The run configuration.
        holes : list of list of SieveHole
            The fitted sieve holes per foil.

        Returns
        -------
        num_events : int
            The number of events added.
        """
        #
        #
        selected = np.flatnonzero((np.asarray(hole_ids) >= 0) &
                                  (np.asarray(foil_ids) >= 0))
        if len(selected) == 0:
            logger.info(f"No labeled events in run {run.number}.")
            return 0
        events = events[selected]
        #
        #
        # known foil and hole positions of each event
        sieve = run.sieve
        foils = np.asarray(run.foils)
        hole_list = [holes[foil_ids[i]][hole_ids[i]] for i in selected]
        z_foil = foils[np.asarray(foil_ids)[selected]]
        x_hole = sieve.holes_x[[h.row for h in hole_list]]
        y_hole = sieve.holes_y[[h.col for h in hole_list]]
        #
        #
        # residuals of the target-x independent part
        xp_phys, y_phys, yp_phys, x_phys = physical_target(
            z_foil, x_hole, y_hole, events, run
        )
        coords = focal_plane_coords(events)
        residuals = np.column_stack(
            (xp_phys, y_phys / _LENGTH_SCALE, yp_phys)
        ) - self._matrix_dep.forward_sum(coords, x_phys)
        #
        #
        self.add(self._matrix.basis_values(coords, x_phys), residuals)
        logger.info(f"Added {len(selected)} events of run {run.number} to the "
                    f"normal equations.")
        return len(selected)
    #
    #
    def add(self, lambdas, residuals):
        """
        Add basis values and residuals.

        Parameters
        ----------
        lambdas : ndarray, shape (m, n) or (n,)
            The basis values of the *n* terms for *m* events.
        residuals : ndarray, shape (m, 3) or (3,)
            The residuals of the three fit coordinates for *m* events.
        """
        #
        #
        lambdas   = np.atleast_2d(np.asarray(lambdas, dtype = np.float64))
        residuals = np.atleast_2d(np.asarray(residuals, dtype = np.float64))
        if lambdas.shape[1] != len(self._matrix) or \
           residuals.shape != (len(lambdas), len(FIT_COLUMNS)):
            raise ValueError(
                f"Invalid shapes of basis values {lambdas.shape} and "
                f"residuals {residuals.shape}."
            )
        #
        self._normal += lambdas.T @ lambdas
        self._rhs    += residuals.T @ lambdas
        self._num_events += len(lambdas)
    #
    #
    def solve(self, rcond = None):
        """
        Solve the normal equations.

        Parameters
        ----------
        rcond : float
            The relative threshold below which singular values are treated as
            zero. Defaults to ``None``, i.e. the number of terms times the
            machine precision.

        Returns
        -------
        result : FitResult
            The fit result, including a copy of the new matrix with the
            fitted coefficients.
        """
        #
        #
        n = len(self._matrix)
        if rcond is None:
            rcond = max(n, 1) * np.finfo(np.float64).eps
        logger.info(f"Solving normal equations for {n} terms "
                    f"({self._num_events} events).")
        #
        #
        # equilibrate shared normal matrix (unit diagonal) and decompose it
        diag = np.diag(self._normal).copy()
        scale = 1.0 / np.sqrt(np.where(diag > 0.0, diag, 1.0))
        normal = self._normal * np.outer(scale, scale)
        if n > 0:
            U, s, Vt = svd(normal)
        else:
            U, s, Vt = np.zeros((0, 0)), np.zeros(0), np.zeros((0, 0))
        s_max = s.max(initial = 0.0)
        keep = s > rcond * s_max
        is_singular = s_max == 0.0 or not np.all(keep)
        #
        #
        # solve each coordinate (truncated pseudo-inverse, scaled back)
        matrix = self._matrix.copy()
        success, errors = {}, {}
        for i, name in enumerate(FIT_COLUMNS):
            rhs = self._rhs[i] * scale
            coeffs = scale * (Vt[keep].T @ ((U[:, keep].T @ rhs) / s[keep]))
            matrix.set_coefficients(name, coeffs)
            #
            success[name] = not is_singular
            if is_singular:
                errors[name] = SingularFitError(name, s, rcond)
                logger.error(str(errors[name]))
            else:
                logger.info(f"SVD solution for \"{name}\" succeeded.")
        #
        #
        return FitResult(matrix, success, errors, s, self._num_events)
    #
    #
    def write_normal_equations(self, vec_file, mat_file, coordinate = 'xp'):
        """
        Write normal equations of one coordinate to text files.

        Parameters
        ----------
        vec_file : str or Path
            The output file of the right-hand side (one value per line).
        mat_file : str or Path
            The output file of the normal matrix (one row per line).
        coordinate : str
            The fit coordinate. Defaults to ``'xp'``.
        """
        #
        #
        logger.info(f"Writing normal equations of \"{coordinate}\" to "
                    f"\"{vec_file}\" and \"{mat_file}\".")
        np.savetxt(vec_file, self.rhs(coordinate), fmt = _DUMP_FORMAT)
        np.savetxt(mat_file, self._normal, fmt = _DUMP_FORMAT, delimiter = '')
