"""
The SOPyT calibration module
============================

This module chains all steps of an optics calibration.


Howto
-----

For every run, the events are

1. reconstructed with the old matrices (:mod:`sopyt.reconstruction`),
2. assigned to foils and sieve holes (:mod:`sopyt.association`), and
3. added to the normal equations of the new target-x independent matrix
   (:mod:`sopyt.fit`).

After all runs have been processed, the normal equations are solved once. The
new matrix contains all terms up to the requested order; its ``delta``
coefficients are taken from the old matrix, while the target-x dependent
matrix is kept unchanged.

The complete calibration as described by a job file is performed by
:func:`run_job`, which is also the entry point of the ``sopyt-optics-fit``
command line tool.


List of functions
-----------------

* :func:`calibrate`: Refit target-x independent matrix from calibration runs.
* :func:`run_job`: Perform calibration as described by a calibration job.
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = ['calibrate', 'run_job']
#
#
#
#
# import modules
import logging
#
# import some special functions/modules
from pathlib import Path
from sopyt.association import AssociationWindows, FoilSieveAssociator
from sopyt.errors import FormatError
from sopyt.fit import CalibrationFitter
from sopyt.io.events import load_events, save_events
from sopyt.io.matrix import matrix_file_names, read_matrix_pair, \
                            write_matrix_file
from sopyt.matrix import IndependentMatrix
from sopyt.peaks import GaussianPeakFinder
from sopyt.reconstruction import reconstruct_events
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
# public functions
#
################################################################################
def calibrate(
    runs, matrix_indep, matrix_dep, order, num_iter,
    peak_finder = None, windows = None, event_source = None, progress = None,
    event_sink = None
):
    """
    Refit target-x independent matrix from calibration runs.

    Parameters
    ----------
    runs : sequence of RunConfig
        The calibration runs.
    matrix_indep : IndependentMatrix
        The old target-x independent matrix.
    matrix_dep : DependentMatrix
        The target-x dependent matrix.
    order : int
        The maximum order of the new matrix.
    num_iter : int
        The number of additional target *x* iterations.
    peak_finder : object
        The peak finder, see :mod:`sopyt.peaks`. Defaults to ``None``, i.e.
        :class:`sopyt.peaks.GaussianPeakFinder`.
    windows : AssociationWindows or dict
        The association windows, or overrides of the default windows. Defaults
        to ``None``, i.e. the default windows.
    event_source : callable
        Called as ``event_source(run)`` to obtain the events of a run. Defaults
        to ``None``, i.e. the event file of the run is loaded.
    progress : callable
        Optional progress callback passed to
        :func:`sopyt.reconstruction.reconstruct_events`. Defaults to ``None``.
    event_sink : callable
        Optional callback, invoked as ``event_sink(run, events)`` with the
        reconstructed events of each run. Defaults to ``None``.

    Returns
    -------
    result : FitResult
        The fit result.
    fitter : CalibrationFitter
        The fitter holding the accumulated normal equations.
    """
    #
    #
    if peak_finder is None:
        peak_finder = GaussianPeakFinder()
    if windows is None or isinstance(windows, dict):
        windows = AssociationWindows.from_settings(windows or {})
    if event_source is None:
        event_source = _load_run_events
    #
    #
    # set up new matrix
    matrix_new = IndependentMatrix.fresh(order, prior = matrix_indep)
    fitter = CalibrationFitter(matrix_new, matrix_dep)
    #
    #
    # process runs sequentially
    for run in runs:
        logger.info(f"Processing run {run.number}.")
        events = event_source(run)
        #
        reconstruct_events(
            events, matrix_indep, matrix_dep, run, num_iter,
            progress = progress
        )
        if event_sink is not None:
            event_sink(run, events)
        #
        associator = FoilSieveAssociator.from_events(
            events, run, peak_finder = peak_finder, windows = windows
        )
        associator.fit_sieve_holes(events, peak_finder = peak_finder)
        foil_ids, hole_ids = associator.label_events(events)
        #
        fitter.accumulate(events, foil_ids, hole_ids, run, associator.holes)
    #
    #
    # solve once for all runs
    return fitter.solve(), fitter
#
#
#
#
def run_job(job, strict = False, events_dir = None, peak_finder = None):
    """
    Perform calibration as described by a calibration job.

    The old matrix pair is read, the calibration is performed, the normal
    equations of the target *x*-slope are dumped, and the new matrix pair is
    written (with an unchanged target-x dependent matrix).

    Parameters
    ----------
    job : CalibrationJob
        The calibration job.
    strict : bool
        Whether to abort without writing the new matrix if any coordinate
        could not be fitted. Defaults to ``False``.
    events_dir : str or Path
        Optional directory to store the reconstructed events of each run.
        Defaults to ``None``.
    peak_finder : object
        The peak finder. Defaults to ``None``, i.e.
        :class:`sopyt.peaks.GaussianPeakFinder`.

    Returns
    -------
    result : FitResult
        The fit result.

    Raises
    ------
    SingularFitError
        If *strict* is enabled and a fit failed.
    """
    #
    #
    matrix_dep, matrix_indep = read_matrix_pair(job.matrix_old)
    #
    event_sink = None
    if events_dir is not None:
        events_dir = Path(events_dir)
        events_dir.mkdir(parents = True, exist_ok = True)
        event_sink = lambda run, events: save_events(
            events_dir / f"run_{run.number}_reconstructed.npy", events
        )
    #
    #
    result, fitter = calibrate(
        job.runs, matrix_indep, matrix_dep, job.order, job.iterations,
        peak_finder = peak_finder,
        windows = AssociationWindows.from_settings(job.association),
        event_sink = event_sink
    )
    fitter.write_normal_equations(job.output_vector, job.output_matrix)
    #
    #
    # write new matrix pair
    if strict:
        result.raise_for_status()
    elif not result.ok:
        logger.warning("Writing new matrix although the fit failed for "
                       "coordinate(s) " + ", ".join(result.errors) + ".")
    file_dep, file_indep = matrix_file_names(job.matrix_new)
    write_matrix_file(file_indep, result.matrix)
    write_matrix_file(file_dep, matrix_dep)
    #
    #
    return result
#
#
#
#
################################################################################
#
# private module-level functions
#
################################################################################
def _load_run_events(run):
    """Load events from the event file of a run."""
    #
    if run.events is None:
        raise FormatError(f"No event file specified for run {run.number}.")
    return load_events(run.events)
