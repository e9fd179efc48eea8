"""
The SOPyT reconstruction module
===============================

This module reconstructs target quantities from measured focal plane
coordinates.


General
-------

The target *x*-slope, target *y*, and target *y*-slope follow from the
:ref:`forward map<sopyt.matrix:Forward map>`. However, the target-x dependent
terms of the map require the target *x* itself, which in turn depends on the
vertex position along the beam and hence on the reconstructed target *y* and
*y*-slope. This circular dependency is resolved by a fixed number of
fixed-point iterations, starting from the horizontal beam position.

The vertex position along the beam is obtained by projecting the straight
track from the target plane back onto the beam:

.. math::
    z_\\mathrm{ver} = \\frac{y_\\mathrm{tar} - x_\\mathrm{ver}(\\cos\\theta -
                      y'_\\mathrm{tar}\\sin\\theta)}
                     {-\\sin\\theta - y'_\\mathrm{tar}\\cos\\theta}.

The projection is ill-conditioned for small scattering angles. Results close
to the singularity are returned as large numbers, ``inf``, or ``nan``; no
exception is raised. Such events fail the association windows later on.

Finally, the track is propagated to the sieve plane, using the drift lengths
:data:`D1`, :data:`D2`, and :data:`D3` for the vertical coordinate.


List of functions
-----------------

* :func:`physical_target`: Calculate true target quantities from known foil
  and sieve hole positions.
* :func:`reconstruct_event`: Reconstruct target quantities of a single event.
* :func:`reconstruct_events`: Reconstruct target quantities of all events.
* :func:`vertex_z`: Project track back onto the beam.
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = [
    'D1',
    'D2',
    'D3',
    'physical_target',
    'reconstruct_event',
    'reconstruct_events',
    'vertex_z'
]
#
#
#
#
# import modules
import logging
import numpy as np
#
# import some special functions/modules
from sopyt.matrix import focal_plane_coords
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
D1 = 138.0
"The first drift length to the sieve plane (cm)."
D2 = 75.0
"The second drift length to the sieve plane (cm)."
D3 = 40.0
"The drift length of the momentum-dependent vertical sieve offset (cm)."
#
#
#
#
################################################################################
#
# private module-level variables
#
################################################################################
# momentum-dependent vertical sieve offsets (linear and quadratic coefficients
# in delta)
_Y_SIEVE_DELTA    = (-0.019,   0.00019)
_Y_SIEVE_DELTA_D3 = (-0.00052, 0.0000052)
#
# y-target versus y-slope correlation correction for legacy data
_LEGACY_FACTOR_LOW  = 25.0
_LEGACY_FACTOR_HIGH = 6.0
_LEGACY_SIN_THRESHOLD = 0.4
#
# target positions are given in cm, the forward map yields m
_LENGTH_SCALE = 100.0
#
#
#
#
################################################################################
#
# public functions
#
################################################################################
def physical_target(z_foil, x_hole, y_hole, event, run):
    """
    Calculate true target quantities from known foil and sieve hole positions.

    The straight track from the known vertex (foil position and beam position)
    through the known sieve hole defines the "physical" target quantities,
    which serve as the fit targets of the optics calibration.

    Parameters
    ----------
    z_foil : float
        The foil position along the beam (cm).
    x_hole : float
        The physical *x* position of the sieve hole (cm).
    y_hole : float
        The physical *y* position of the sieve hole (cm).
    event : structured scalar
        The event (providing ``theta``, ``delta``, ``x_ver``, and ``y_ver``).
    run : RunConfig
        The run configuration.

    Returns
    -------
    xp_tar : float
        The physical target *x*-slope.
    y_tar : float
        The physical target *y* (cm).
    yp_tar : float
        The physical target *y*-slope.
    x_tar : float
        The physical target *x* (cm).
    """
    #
    #
    θ = np.deg2rad(event['theta'])
    sin_θ, cos_θ = np.sin(θ), np.cos(θ)
    δ = event['delta']
    #
    #
    # vertex in target frame
    x_tar_ver = -event['y_ver'] - run.x_mispointing
    y_tar_ver = -z_foil * sin_θ + event['x_ver'] * cos_θ - run.y_mispointing
    z_tar_ver =  z_foil * cos_θ + event['x_ver'] * sin_θ
    #
    # slopes from vertex to sieve hole
    drift = run.sieve.z0 - z_tar_ver
    y_offset = _delta_poly(_Y_SIEVE_DELTA, δ) + \
               D3 * _delta_poly(_Y_SIEVE_DELTA_D3, δ)
    xp_tar = (x_hole - x_tar_ver) / drift
    yp_tar = (y_hole - y_offset - y_tar_ver) / drift
    #
    #
    # project back onto target plane
    return (
        xp_tar,
        y_tar_ver - yp_tar * z_tar_ver,
        yp_tar,
        x_tar_ver - xp_tar * z_tar_ver
    )
#
#
#
#
def reconstruct_event(event, matrix_indep, matrix_dep, run, num_iter):
    """
    Reconstruct target quantities of a single event.

    Parameters
    ----------
    event : structured scalar
        The event with data type :data:`sopyt.io.config.EVENT_DTYPE`. The
        reconstructed fields (``xp_tar``, ``y_tar``, ``yp_tar``, ``x_tar``,
        ``z_ver``, ``x_sieve``, and ``y_sieve``) are set in place.
    matrix_indep : IndependentMatrix
        The target-x independent reconstruction matrix.
    matrix_dep : DependentMatrix
        The target-x dependent reconstruction matrix.
    run : RunConfig
        The run configuration.
    num_iter : int
        The number of additional target *x* iterations. The dependent terms
        are evaluated *num_iter* + 1 times.

    Returns
    -------
    event : structured scalar
        The same event, for convenience.
    """
    #
    #
    θ = np.deg2rad(event['theta'])
    sin_θ, cos_θ = np.sin(θ), np.cos(θ)
    x_ver = event['x_ver']
    #
    # the legacy correction factor is decided once per event
    legacy_factor = _LEGACY_FACTOR_HIGH \
                    if run.sin_theta > _LEGACY_SIN_THRESHOLD \
                    else _LEGACY_FACTOR_LOW
    #
    #
    # target-x independent contributions
    coords = focal_plane_coords(event)
    xp_indep, y_indep, yp_indep = matrix_indep.forward_sum(coords)
    #
    #
    # iterate target-x dependent contributions
    x_tar = -event['y_ver'] - run.x_mispointing
    for _ in range(num_iter + 1):
        xp_dep, y_dep, yp_dep = matrix_dep.forward_sum(coords, x_tar)
        #
        xp_tar = (xp_indep + xp_dep) + run.phi_offset
        y_tar  = (y_indep + y_dep) * _LENGTH_SCALE + run.y_mispointing
        yp_tar = (yp_indep + yp_dep) + run.theta_offset
        #
        y_tar_uncorr = y_tar
        if run.legacy_correction:
            y_tar = y_tar - legacy_factor * yp_tar
        #
        # vertex (the target frame vertex always uses uncorrected target y)
        z_ver        = vertex_z(y_tar,        x_ver, yp_tar, sin_θ, cos_θ)
        z_ver_uncorr = vertex_z(y_tar_uncorr, x_ver, yp_tar, sin_θ, cos_θ)
        z_tar_ver = z_ver_uncorr * cos_θ + x_ver * sin_θ
        #
        x_tar = -event['y_ver'] - z_tar_ver * xp_tar - run.x_mispointing
    #
    #
    # undo mispointing offsets
    x_tar += run.x_mispointing
    y_tar -= run.y_mispointing
    #
    #
    # store results
    event['xp_tar'] = xp_tar
    event['y_tar']  = y_tar
    event['yp_tar'] = yp_tar
    event['x_tar']  = x_tar
    event['z_ver']  = z_ver
    #
    # project to sieve plane
    δ = event['delta']
    event['x_sieve'] = x_tar + xp_tar * run.sieve.z0
    event['y_sieve'] = \
        (_delta_poly(_Y_SIEVE_DELTA, δ) + (D1 + D2) * yp_tar + y_tar_uncorr) + \
        D3 * (_delta_poly(_Y_SIEVE_DELTA_D3, δ) + yp_tar)
    #
    #
    return event
#
#
#
#
def reconstruct_events(
    events, matrix_indep, matrix_dep, run, num_iter, progress = None
):
    """
    Reconstruct target quantities of all events.

    Parameters
    ----------
    events : ndarray, shape (n,)
        The *n* events with data type :data:`sopyt.io.config.EVENT_DTYPE`,
        modified in place.
    matrix_indep : IndependentMatrix
        The target-x independent reconstruction matrix.
    matrix_dep : DependentMatrix
        The target-x dependent reconstruction matrix.
    run : RunConfig
        The run configuration.
    num_iter : int
        The number of additional target *x* iterations.
    progress : callable
        Optional callback, invoked as ``progress(i, n)`` after each event.
        Defaults to ``None``.

    Returns
    -------
    events : ndarray, shape (n,)
        The same events, for convenience.
    """
    #
    #
    n = len(events)
    logger.info(f"Reconstructing {n} events of run {run.number} "
                f"({num_iter} target x iteration(s)).")
    for i in range(n):
        reconstruct_event(events[i], matrix_indep, matrix_dep, run, num_iter)
        if progress is not None:
            progress(i + 1, n)
    #
    #
    # report degenerate vertex projections
    num_degenerate = np.count_nonzero(~np.isfinite(events['z_ver']))
    if num_degenerate > 0:
        logger.warning(f"Vertex projection is degenerate for {num_degenerate} "
                       f"of {n} events.")
    #
    #
    return events
#
#
#
#
def vertex_z(y_tar, x_ver, yp_tar, sin_θ, cos_θ):
    """
    Project track back onto the beam.

    Parameters
    ----------
    y_tar : float or ndarray
        The target *y* (cm).
    x_ver : float or ndarray
        The horizontal beam position (cm).
    yp_tar : float or ndarray
        The target *y*-slope.
    sin_θ : float or ndarray
        The sine of the scattering angle.
    cos_θ : float or ndarray
        The cosine of the scattering angle.

    Returns
    -------
    z_ver : float or ndarray
        The vertex position along the beam (cm). May be ``inf`` or ``nan`` for
        degenerate geometries.
    """
    #
    #
    with np.errstate(divide = 'ignore', invalid = 'ignore'):
        return np.divide(
            np.asarray(y_tar, dtype = np.float64) - x_ver * (cos_θ - yp_tar * sin_θ),
            -sin_θ - yp_tar * cos_θ
        )
#
#
#
#
################################################################################
#
# private module-level functions
#
################################################################################
def _delta_poly(coeffs, δ):
    """Evaluate linear plus quadratic polynomial in delta."""
    return coeffs[0] * δ + coeffs[1] * δ**2
