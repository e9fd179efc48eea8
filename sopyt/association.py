"""
The SOPyT foil and sieve hole association module
================================================

This module assigns reconstructed events to a target foil and a sieve hole.


Foil association
----------------

The reconstructed vertex positions and target *y* values of one run are
histogrammed and searched for one peak per foil. An event belongs to foil
:math:`i` (counted in increasing position along the beam) if

* its vertex position lies within :math:`\\pm 1.3\\sigma` of the :math:`i`-th
  vertex peak,
* its target *y* lies within :math:`\\pm 1.0\\sigma` (for :math:`\\delta < 1`) or
  :math:`\\pm 1.8\\sigma` (otherwise) of the target *y* peak with index
  :math:`n_\\mathrm{foils} - 1 - i` (the target *y* axis runs opposite to the
  beam axis), and
* :math:`\\delta > -12`.

The first matching foil wins.


Sieve hole association
----------------------

For every foil, the sieve plane positions of its events are filled into a
two-dimensional histogram. Hole candidates are obtained from peaks in both
projections and refined by single peak fits within a bounding box around each
candidate pair. An event is assigned to the first hole whose
:math:`\\pm 2.2\\sigma_x` / :math:`\\pm 2\\sigma_y` box contains the event. Each
hole accepts at most 50 events (in event order) so that no single hole
dominates the calibration fit.

All window constants were tuned empirically and are collected in
:class:`AssociationWindows`.


List of classes
---------------

* :class:`AssociationWindows`: Window constants of the association.
* :class:`FoilSieveAssociator`: Assign events to foils and sieve holes.
* :class:`SieveHole`: Fitted sieve hole mapped to the physical grid.
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = ['AssociationWindows', 'FoilSieveAssociator', 'SieveHole']
#
#
#
#
# import modules
import dataclasses
import logging
import numpy as np
import warnings
#
# import some special functions/modules
from collections import namedtuple
from dataclasses import dataclass
from sopyt.errors import FormatError
from sopyt.histogram import Histogram1D, Histogram2D
from sopyt.peaks import GaussianPeakFinder
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
# public classes
#
################################################################################
@dataclass(frozen = True)
class AssociationWindows:
    """
    Window constants of the association.

    Widths are given in units of the respective fitted peak width, unless a
    length unit (cm) is noted.
    """
    # foil windows
    z_sigma:             float = 1.3
    y_sigma_low_delta:   float = 1.0
    y_sigma_high_delta:  float = 1.8
    delta_split:         float = 1.0
    delta_min:           float = -12.0
    #
    # hole search
    min_hole_counts:     float = 50.0
    box_sigma:           float = 3.0
    x_sigma_cap:         float = 0.36
    y_sigma_cap:         float = 0.35
    x_min_sep:           float = 1.5    # cm
    x_narrow_sep:        float = 2.0    # cm
    x_narrow_sigma:      float = 0.35
    y_min_sep:           float = 0.95   # cm
    x_start:             float = -30.0  # cm
    y_start:             float = -10.0  # cm
    recheck_x_sigma:     float = 2.2
    recheck_y_sigma:     float = 2.0
    x_mean_max:          float = 15.0   # cm
    y_mean_max:          float = 10.0   # cm
    projection_skip:     float = 0.25
    #
    # event to hole windows
    hole_x_sigma:        float = 2.2
    hole_y_sigma:        float = 2.0
    max_events_per_hole: int   = 50
    #
    # histogram ranges
    bins_per_cm:         int   = 10
    foil_margin:         float = 5.0    # cm
    sieve_margin:        float = 0.1
    sieve_min_margin:    float = 2.0    # cm
    #
    #
    @classmethod
    def from_settings(cls, settings):
        """
        Construct windows from a settings dictionary.

        Parameters
        ----------
        settings : dict
            Overrides of the default values, e.g. the ``[association]`` table
            of a calibration job.

        Raises
        ------
        FormatError
            If a setting is unknown or has an invalid type.
        """
        #
        #
        fields = {f.name: f.type for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in settings.items():
            if key not in fields:
                raise FormatError(f"Unknown association setting \"{key}\".")
            if isinstance(value, bool) or \
               not isinstance(value, (int, float)) or \
               (fields[key] in (int, 'int') and not isinstance(value, int)):
                raise FormatError(
                    f"Invalid value for association setting \"{key}\" "
                    f"({value!r})."
                )
            kwargs[key] = value
        return cls(**kwargs)
#
#
#
#
SieveHole = namedtuple('SieveHole', ['x', 'y', 'row', 'col'])
SieveHole.__doc__ = """
Fitted sieve hole.

*x* and *y* are the fitted peaks (:class:`sopyt.peaks.Peak`) in the sieve
plane, *row* and *col* the indices of the closest physical hole position.
"""
#
#
#
#
class FoilSieveAssociator:
    """
    Assign events to foils and sieve holes.

    Parameters
    ----------
    run : RunConfig
        The run configuration.
    z_peaks : list of Peak
        The vertex position peaks, in increasing position.
    y_peaks : list of Peak
        The target *y* peaks, in increasing position.
    windows : AssociationWindows
        The window constants. Defaults to ``None``, i.e. the default windows.
    holes : list of list of SieveHole
        The fitted sieve holes per foil, e.g. from a previous call of
        :meth:`fit_sieve_holes`. Defaults to ``None``, i.e. no holes.


    The following class methods are provided:

    * :meth:`from_events`: Set up associator from foil peaks of reconstructed
      events.
    * :meth:`fit_sieve_holes`: Find and fit the sieve holes of all foils.
    * :meth:`label_events`: Assign all events to foils and sieve holes.
    * :meth:`match_foil`: Find foil of an event.
    * :meth:`match_hole`: Find sieve hole of an event.
    """
    #
    #
    def __init__(self, run, z_peaks, y_peaks, windows = None, holes = None):
        #
        #
        self._run     = run
        self._z_peaks = list(z_peaks)
        self._y_peaks = list(y_peaks)
        self._windows = AssociationWindows() if windows is None else windows
        #
        if holes is None:
            holes = [[] for _ in range(run.n_foils)]
        if len(holes) != run.n_foils:
            raise ValueError(f"Expected holes for {run.n_foils} foils (got "
                             f"{len(holes)}).")
        self._holes = [list(h) for h in holes]
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
    def holes(self):
        """The fitted sieve holes per foil (*read-only*)."""
        return [list(h) for h in self._holes]
    #
    @property
    def windows(self):
        """The window constants (*read-only*)."""
        return self._windows
    #
    @property
    def y_peaks(self):
        """The target *y* peaks (*read-only*)."""
        return list(self._y_peaks)
    #
    @property
    def z_peaks(self):
        """The vertex position peaks (*read-only*)."""
        return list(self._z_peaks)
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Public class-level methods                                       ###
    ###                                                                      ###
    ############################################################################
    @classmethod
    def from_events(cls, events, run, peak_finder = None, windows = None):
        """
        Set up associator from foil peaks of reconstructed events.

        Parameters
        ----------
        events : ndarray, shape (n,)
            The reconstructed events.
        run : RunConfig
            The run configuration.
        peak_finder : object
            The peak finder, see :mod:`sopyt.peaks`. Defaults to ``None``, i.e.
            :class:`sopyt.peaks.GaussianPeakFinder`.
        windows : AssociationWindows
            The window constants. Defaults to ``None``, i.e. the default
            windows.

        Returns
        -------
        associator : FoilSieveAssociator
            The associator, without sieve holes.
        """
        #
        #
        if peak_finder is None:
            peak_finder = GaussianPeakFinder()
        if windows is None:
            windows = AssociationWindows()
        #
        #
        # set up histograms (target y range follows from foil range)
        low  = run.foils[0]  - windows.foil_margin
        high = run.foils[-1] + windows.foil_margin
        bins = max(windows.bins_per_cm * int(high - low), 1)
        z_hist = Histogram1D(bins, low, high)
        y_hist = Histogram1D(
            bins, *sorted((low * run.sin_theta, high * run.sin_theta))
        )
        z_hist.fill(events['z_ver'])
        y_hist.fill(events['y_tar'])
        #
        #
        # find one peak per foil
        z_peaks = peak_finder.find_peaks(z_hist, run.n_foils)
        y_peaks = peak_finder.find_peaks(y_hist, run.n_foils)
        for name, peaks in (("vertex", z_peaks), ("target y", y_peaks)):
            logger.info(f"Found {len(peaks)} {name} peak(s) for run "
                        f"{run.number}.")
            for p in peaks:
                logger.debug(f"Peak at {p.mean:.4f} cm (width {p.sigma:.4f} cm, "
                             f"height {p.norm:.1f}).")
            if len(peaks) < run.n_foils:
                _warn(f"Found only {len(peaks)} {name} peak(s) for "
                      f"{run.n_foils} foil(s) in run {run.number}; foils "
                      f"without peak are skipped.")
        #
        #
        return cls(run, z_peaks, y_peaks, windows)
    #
    #
    def fit_sieve_holes(self, events, peak_finder = None):
        """
        Find and fit the sieve holes of all foils.

        Parameters
        ----------
        events : ndarray, shape (n,)
            The reconstructed events.
        peak_finder : object
            The peak finder, see :mod:`sopyt.peaks`. Defaults to ``None``, i.e.
            :class:`sopyt.peaks.GaussianPeakFinder`.

        Returns
        -------
        holes : list of list of SieveHole
            The fitted sieve holes per foil, which are also stored in the
            associator.
        """
        #
        #
        if peak_finder is None:
            peak_finder = GaussianPeakFinder()
        w = self._windows
        sieve = self._run.sieve
        x_phys, y_phys = sieve.holes_x, sieve.holes_y
        #
        #
        # assign events to foils
        foil_ids = np.array(
            [self._match_foil_index(event) for event in events], dtype = int
        )
        #
        #
        # find holes for each foil
        for i_foil in range(self._run.n_foils):
            mask = foil_ids == i_foil
            hist = Histogram2D(
                *self._sieve_binning(x_phys), *self._sieve_binning(y_phys)
            )
            hist.fill(events['x_sieve'][mask], events['y_sieve'][mask])
            logger.info(f"Fitting sieve holes of foil {i_foil} "
                        f"({np.count_nonzero(mask)} events).")
            #
            # hole candidates from projections (foils behind the first one skip
            # the lower part of the other axis)
            if i_foil >= 1:
                proj_x = hist.projection_x(
                    _projection_start(hist.shape[1], w.projection_skip),
                    hist.shape[1] - 1
                )
                proj_y = hist.projection_y(
                    _projection_start(hist.shape[0], w.projection_skip),
                    hist.shape[0] - 1
                )
            else:
                proj_x = hist.projection_x()
                proj_y = hist.projection_y()
            x_candidates = peak_finder.find_peaks(proj_x, sieve.rows)
            y_candidates = peak_finder.find_peaks(proj_y, sieve.cols)
            #
            self._holes[i_foil] = self._refine_holes(
                hist, x_candidates, y_candidates, peak_finder
            )
            logger.info(f"Found {len(self._holes[i_foil])} sieve hole(s) for "
                        f"foil {i_foil}.")
            if len(self._holes[i_foil]) == 0:
                _warn(f"No sieve holes found for foil {i_foil} in run "
                      f"{self._run.number}.")
        #
        #
        return self.holes
    #
    #
    def label_events(self, events):
        """
        Assign all events to foils and sieve holes.

        Parameters
        ----------
        events : ndarray, shape (n,)
            The reconstructed events.

        Returns
        -------
        foil_ids : ndarray, shape (n,)
            The foil index of each event, ``-1`` for rejected events.
        hole_ids : ndarray, shape (n,)
            The hole index of each event (within the hole list of its foil),
            ``-1`` for rejected events.
        """
        #
        #
        foil_ids = np.full(len(events), -1, dtype = int)
        hole_ids = np.full(len(events), -1, dtype = int)
        num_events = [np.zeros(len(h), dtype = int) for h in self._holes]
        #
        #
        for i, event in enumerate(events):
            i_foil = self.match_foil(event)
            if i_foil is None:
                continue
            i_hole = self.match_hole(event, i_foil)
            if i_hole is None or \
               num_events[i_foil][i_hole] >= self._windows.max_events_per_hole:
                continue
            #
            num_events[i_foil][i_hole] += 1
            foil_ids[i] = i_foil
            hole_ids[i] = i_hole
        #
        #
        logger.info(f"Assigned {np.count_nonzero(hole_ids >= 0)} of "
                    f"{len(events)} events to sieve holes.")
        return foil_ids, hole_ids
    #
    #
    def match_foil(self, event):
        """
        Find foil of an event.

        Returns
        -------
        i_foil : int or None
            The index of the first matching foil, or ``None``.
        """
        #
        #
        w = self._windows
        n_foils = self._run.n_foils
        δ = event['delta']
        if not δ > w.delta_min:
            return None
        y_sigma = w.y_sigma_low_delta if δ < w.delta_split \
                  else w.y_sigma_high_delta
        #
        #
        for i in range(n_foils):
            if i >= len(self._z_peaks) or n_foils - 1 - i >= len(self._y_peaks):
                continue
            z_peak = self._z_peaks[i]
            y_peak = self._y_peaks[n_foils - 1 - i]
            if _in_window(event['z_ver'], z_peak, w.z_sigma) and \
               _in_window(event['y_tar'], y_peak, y_sigma):
                return i
        #
        #
        return None
    #
    #
    def match_hole(self, event, i_foil):
        """
        Find sieve hole of an event.

        Returns
        -------
        i_hole : int or None
            The index of the first matching hole of the given foil, or
            ``None``.
        """
        #
        #
        w = self._windows
        for i, hole in enumerate(self._holes[i_foil]):
            if _in_window(event['x_sieve'], hole.x, w.hole_x_sigma) and \
               _in_window(event['y_sieve'], hole.y, w.hole_y_sigma):
                return i
        return None
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Private class-level methods                                      ###
    ###                                                                      ###
    ############################################################################
    def _match_foil_index(self, event):
        i_foil = self.match_foil(event)
        return -1 if i_foil is None else i_foil
    #
    #
    def _refine_holes(self, hist, x_candidates, y_candidates, peak_finder):
        """
        Refine hole candidates by single peak fits.
        """
        #
        #
        w = self._windows
        sieve = self._run.sieve
        x_phys, y_phys = sieve.holes_x, sieve.holes_y
        holes = []
        #
        #
        x_prev = w.x_start
        for x_cand in x_candidates:
            x_sep = abs(x_cand.mean - x_prev)
            if x_sep < w.x_min_sep:
                continue
            x_sigma = _capped_sigma(x_cand.sigma, w.x_sigma_cap)
            if x_sep < w.x_narrow_sep:
                x_sigma = min(x_sigma, w.x_narrow_sigma)
            x_prev = x_cand.mean
            x_first, x_last = _bin_range(
                hist.axis_x, x_cand.mean, w.box_sigma * x_sigma
            )
            #
            #
            y_prev = w.y_start
            for y_cand in y_candidates:
                if abs(y_cand.mean - y_prev) < w.y_min_sep:
                    continue
                y_sigma = _capped_sigma(y_cand.sigma, w.y_sigma_cap)
                y_first, y_last = _bin_range(
                    hist.axis_y, y_cand.mean, w.box_sigma * y_sigma
                )
                #
                # require enough counts within bounding box
                if hist.integral(x_first, x_last, y_first, y_last) < \
                   w.min_hole_counts:
                    continue
                #
                # fit both axes independently
                x_peak = peak_finder.fit_peak(
                    hist.projection_x(y_first, y_last).window(x_first, x_last),
                    x_cand.norm, x_cand.mean, x_sigma
                )
                y_peak = peak_finder.fit_peak(
                    hist.projection_y(x_first, x_last).window(y_first, y_last),
                    y_cand.norm, y_cand.mean, y_sigma
                )
                if x_peak.sigma == 0.0 or y_peak.sigma == 0.0:
                    logger.debug(f"Rejected hole candidate at "
                                 f"({x_cand.mean:.3f}, {y_cand.mean:.3f}) "
                                 f"(failed fit).")
                    continue
                #
                # re-check counts within tighter box
                if hist.integral(
                    *_bin_range(
                        hist.axis_x, x_peak.mean, w.recheck_x_sigma * x_peak.sigma
                    ),
                    *_bin_range(
                        hist.axis_y, y_peak.mean, w.recheck_y_sigma * y_peak.sigma
                    )
                ) < w.min_hole_counts:
                    continue
                #
                if abs(x_peak.mean) < w.x_mean_max and \
                   abs(y_peak.mean) < w.y_mean_max and \
                   abs(y_peak.mean - y_prev) > w.y_min_sep:
                    hole = SieveHole(
                        x_peak, y_peak,
                        int(np.argmin(np.abs(x_phys - x_peak.mean))),
                        int(np.argmin(np.abs(y_phys - y_peak.mean)))
                    )
                    logger.debug(
                        f"Hole ({hole.row}, {hole.col}) at "
                        f"({x_peak.mean:.3f}, {y_peak.mean:.3f}) cm with widths "
                        f"({x_peak.sigma:.3f}, {y_peak.sigma:.3f}) cm."
                    )
                    holes.append(hole)
                    y_prev = y_peak.mean
        #
        #
        return holes
    #
    #
    def _sieve_binning(self, positions):
        """Get histogram binning around physical hole positions."""
        #
        #
        w = self._windows
        span = positions[-1] - positions[0]
        margin = w.sieve_margin * span if span > 0.0 else w.sieve_min_margin
        low, high = positions[0] - margin, positions[-1] + margin
        return max(w.bins_per_cm * int(high - low), 1), low, high
#
#
#
#
################################################################################
#
# private module-level functions
#
################################################################################
def _bin_range(axis, center, half_width):
    """Get inclusive bin range of a window."""
    return axis.find_bin(center - half_width), axis.find_bin(center + half_width)
#
#
#
#
def _capped_sigma(sigma, cap):
    """Limit initial peak width (failed peaks use the cap)."""
    return min(sigma, cap) if sigma > 0.0 else cap
#
#
#
#
def _in_window(value, peak, n_sigma):
    """Check whether value lies within ±n_sigma of a peak (inclusive)."""
    return peak.mean - n_sigma * peak.sigma <= value <= \
           peak.mean + n_sigma * peak.sigma
#
#
#
#
def _projection_start(bins, skip):
    """Get first bin of a projection skipping the lower part of an axis."""
    # the skipped fraction counts bins from one
    return max(int(bins * skip) - 1, 0)
#
#
#
#
def _warn(msg):
    """Issue warning and log it."""
    warnings.warn(msg)
    logger.warning(msg)
