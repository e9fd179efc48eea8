"""
The SOPyT peak finding module
=============================

This module provides the default peak finder used for the foil and sieve hole
searches.

Any object providing the two methods

* ``find_peaks(hist, expected_count)``: Find the (at most) *expected_count*
  most prominent peaks of a :class:`sopyt.histogram.Histogram1D`, returned as
  a list of :class:`Peak` in increasing position, and
* ``fit_peak(hist, norm, mean, sigma)``: Fit a single peak to a (windowed)
  histogram, starting from the given initial guess, and return a
  :class:`Peak`,

can be used as a peak finder. A peak whose fit failed is reported with a
vanishing width.


Howto
-----

Candidate peaks are located with |find_peaks| above a relative height
threshold. Each candidate is then refined by a Gaussian fit (using the
|GaussianModel| of the |lmfit| package) restricted to the region between the
neighboring candidates.


List of classes
---------------

* :class:`GaussianPeakFinder`: Find and fit Gaussian peaks.
* :class:`Peak`: Parameters of a single peak.


.. |find_peaks| raw:: html

    <a href="https://docs.scipy.org/doc/scipy/reference/generated/
    scipy.signal.find_peaks.html" target="_blank">scipy.signal.find_peaks</a>

.. |GaussianModel| raw:: html

    <a href="https://lmfit.github.io/lmfit-py/builtin_models.html
    #lmfit.models.GaussianModel" target="_blank">GaussianModel</a>

.. |lmfit| raw:: html

    <a href="https://lmfit.github.io/lmfit-py/" target="_blank">lmfit</a>
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = ['GaussianPeakFinder', 'Peak']
#
#
#
#
# import modules
import logging
import numpy as np
#
# import some special functions/modules
from collections import namedtuple
from lmfit.models import GaussianModel
from scipy.signal import find_peaks
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
Peak = namedtuple('Peak', ['mean', 'sigma', 'norm'])
Peak.__doc__ = """Parameters of a single peak (position, width, and height)."""
#
#
#
#
class GaussianPeakFinder:
    """
    Find and fit Gaussian peaks.

    Parameters
    ----------
    threshold : float
        The minimum candidate height relative to the histogram maximum.
        Defaults to ``0.1``.
    min_bins : int
        The minimum number of populated bins required for a fit. Defaults to
        ``3``.
    """
    #
    #
    def __init__(self, threshold = 0.1, min_bins = 3):
        self.threshold = threshold
        self.min_bins  = min_bins
        self._model    = GaussianModel()
    #
    #
    def find_peaks(self, hist, expected_count):
        """
        Find the most prominent peaks of a histogram.

        Parameters
        ----------
        hist : Histogram1D
            The histogram.
        expected_count : int
            The number of peaks sought.

        Returns
        -------
        peaks : list of Peak
            The (at most) *expected_count* peaks in increasing position.
        """
        #
        #
        counts = hist.counts
        if expected_count < 1 or counts.max(initial = 0.0) <= 0.0:
            return []
        #
        #
        # find candidate peaks and keep the most prominent ones
        candidates, properties = find_peaks(
            counts, height = self.threshold * counts.max(), prominence = 0.0
        )
        selected = np.sort(candidates[
            np.argsort(properties['prominences'])[::-1][:expected_count]
        ])
        if len(selected) < expected_count:
            logger.debug(f"Found {len(selected)} of {expected_count} expected "
                         f"peak(s).")
        #
        #
        # refine each candidate within the region bounded by its neighbors
        peaks = []
        bounds = np.concatenate(
            ([0], (selected[1:] + selected[:-1]) // 2, [len(counts) - 1])
        )
        for i, j in enumerate(selected):
            window = hist.window(bounds[i], bounds[i + 1])
            peak = self.fit_peak(
                window, counts[j], hist.centers[j],
                self._estimate_sigma(window, counts[j])
            )
            logger.debug(f"Peak at {peak.mean:.4f} (width {peak.sigma:.4f}, "
                         f"height {peak.norm:.1f}).")
            peaks.append(peak)
        #
        #
        return sorted(peaks, key = lambda p: p.mean)
    #
    #
    def fit_peak(self, hist, norm, mean, sigma):
        """
        Fit a single Gaussian peak.

        Parameters
        ----------
        hist : Histogram1D
            The (windowed) histogram.
        norm : float
            The initial guess for the peak height.
        mean : float
            The initial guess for the peak position.
        sigma : float
            The initial guess for the peak width.

        Returns
        -------
        peak : Peak
            The fitted peak. The width vanishes if the fit failed or too few
            bins are populated.
        """
        #
        #
        x, y = hist.centers, hist.counts
        if np.count_nonzero(y) < self.min_bins:
            logger.debug(f"Too few populated bins for peak fit near {mean:.4f}.")
            return Peak(mean, 0.0, norm)
        #
        #
        # set up fit parameters
        sigma = sigma if sigma > 0.0 else hist.width
        params = self._model.make_params(
            amplitude = norm * sigma * np.sqrt(2.0 * np.pi),
            center = mean, sigma = sigma
        )
        params['sigma'].set(min = 0.0)
        params['center'].set(min = x[0] - hist.width, max = x[-1] + hist.width)
        #
        #
        # perform fit (with Poisson weights)
        try:
            result = self._model.fit(
                y, params, x = x, weights = 1.0 / np.sqrt(np.maximum(y, 1.0))
            )
        except ValueError as e:
            logger.warning(f"Peak fit near {mean:.4f} failed: {e}")
            return Peak(mean, 0.0, norm)
        #
        values = result.params.valuesdict()
        if not result.success or \
           not np.all(np.isfinite(list(values.values()))):
            logger.debug(f"Peak fit near {mean:.4f} did not converge.")
            return Peak(mean, 0.0, norm)
        #
        #
        return Peak(values['center'], abs(values['sigma']), values['height'])
    #
    #
    #
    #
    ############################################################################
    ###                                                                      ###
    ###     Private class-level methods                                      ###
    ###                                                                      ###
    ############################################################################
    @staticmethod
    def _estimate_sigma(hist, height):
        """Estimate peak width from full width at half maximum."""
        #
        width = np.count_nonzero(hist.counts >= 0.5 * height) * hist.width
        return max(width / (2.0 * np.sqrt(2.0 * np.log(2.0))), hist.width)
