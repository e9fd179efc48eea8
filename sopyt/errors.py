"""
The SOPyT error module
======================

This module defines the exceptions raised by the SOPyT package.

Malformed input (matrix files, event files, configuration files) raises a
:class:`FormatError`, which is also a ``ValueError``. Files which cannot be
opened raise the built-in ``OSError`` family (e.g. ``FileNotFoundError``).

A normal-equation system which cannot be solved is *not* fatal. The fit module
collects one :class:`SingularFitError` per affected coordinate and hands them
to the caller, who decides whether to discard the refitted matrix.

Numerically degenerate vertex projections (vanishing denominator for small
scattering angles) are no exception at all; they propagate as ``inf`` or
``nan`` and the affected events simply fail the association windows.


List of classes
---------------

* :class:`SopytError`: Base class of all SOPyT exceptions.
* :class:`FormatError`: Malformed matrix, event, or configuration file.
* :class:`SingularFitError`: Normal-equation system is singular.
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = [
    'FormatError',
    'SingularFitError',
    'SopytError'
]
#
#
#
#
class SopytError(Exception):
    """Base class of all SOPyT exceptions."""
#
#
class FormatError(SopytError, ValueError):
    """Malformed matrix, event, or configuration file."""
#
#
class SingularFitError(SopytError):
    """
    Normal-equation system is singular.

    Parameters
    ----------
    coordinate : str
        The name of the fitted coordinate (``xp``, ``y``, or ``yp``).
    singular_values : ndarray, shape (n,)
        The singular values of the normal matrix.
    rcond : float
        The relative threshold below which a singular value is treated as zero.
    """
    #
    #
    def __init__(self, coordinate, singular_values, rcond):
        self.coordinate      = coordinate
        self.singular_values = singular_values
        self.rcond           = rcond
        #
        s_max = singular_values.max() if len(singular_values) > 0 else 0.0
        s_min = singular_values.min() if len(singular_values) > 0 else 0.0
        super().__init__(
            f"SVD solution for \"{coordinate}\" failed (smallest singular value "
            f"{s_min:.3e}, largest {s_max:.3e}, rcond {rcond:.3e})."
        )
