"""
The SOPyT histogram module
==========================

This module provides simple one- and two-dimensional histograms with fixed,
equidistant bins, as required for the foil and sieve hole peak searches.

Bins are indexed from ``0`` to ``bins - 1``. In contrast to
|numpy.histogram|, :meth:`Histogram1D.find_bin` clips values outside of the
histogram range to the first or last bin, and all integrals include both
boundary bins. Non-finite values (e.g. from degenerate vertex projections) are
silently ignored when filling.


List of classes
---------------

* :class:`Histogram1D`: One-dimensional histogram.
* :class:`Histogram2D`: Two-dimensional histogram.


.. |numpy.histogram| raw:: html

    <a href="https://numpy.org/doc/stable/reference/generated/
    numpy.histogram.html" target="_blank">numpy.histogram</a>
"""
#
#
#
#
__version__ = '0.1.0'
__all__ = ['Histogram1D', 'Histogram2D']
#
#
#
#
# import modules
import numpy as np
#
#
#
#
################################################################################
#
# public classes
#
################################################################################
class Histogram1D:
    """
    One-dimensional histogram.

    Parameters
    ----------
    bins : int
        The number of bins.
    low : float
        The lower edge of the first bin.
    high : float
        The upper edge of the last bin.
    counts : ndarray, shape (bins,)
        Initial bin counts. Defaults to zero.
    """
    #
    #
    def __init__(self, bins, low, high, counts = None):
        if bins < 1 or not high > low:
            raise ValueError(
                f"Invalid histogram binning ({bins} bins in [{low}, {high}])."
            )
        #
        self.edges = np.linspace(low, high, bins + 1)
        self.counts = np.zeros(bins) if counts is None else \
                      np.asarray(counts, dtype = np.float64).copy()
    #
    #
    def __len__(self):
        return len(self.counts)
    #
    #
    @property
    def centers(self):
        """The bin centers."""
        return 0.5 * (self.edges[:-1] + self.edges[1:])
    #
    @property
    def width(self):
        """The bin width."""
        return self.edges[1] - self.edges[0]
    #
    #
    def fill(self, values, weights = None):
        """Fill values into histogram."""
        values = np.asarray(values, dtype = np.float64)
        mask = np.isfinite(values)
        if weights is not None:
            weights = np.asarray(weights, dtype = np.float64)[mask]
        self.counts += np.histogram(
            values[mask], bins = self.edges, weights = weights
        )[0]
    #
    #
    def find_bin(self, value):
        """Get index of bin containing value (clipped to histogram range)."""
        i = int(np.floor((value - self.edges[0]) / self.width)) \
            if np.isfinite(value) else \
            (0 if value < 0 else len(self) - 1)
        return min(max(i, 0), len(self) - 1)
    #
    #
    def integral(self, first = 0, last = None):
        """Get sum of bin counts from *first* to *last* (inclusive)."""
        if last is None:
            last = len(self) - 1
        return self.counts[max(first, 0):last + 1].sum()
    #
    #
    def window(self, first, last):
        """
        Get sub-histogram.

        Parameters
        ----------
        first : int
            The first bin of the sub-histogram.
        last : int
            The last bin of the sub-histogram (inclusive).

        Returns
        -------
        hist : Histogram1D
            The sub-histogram, containing the selected bins only.
        """
        #
        #
        first = max(first, 0)
        last  = min(max(last, first), len(self) - 1)
        return Histogram1D(
            last - first + 1, self.edges[first], self.edges[last + 1],
            counts = self.counts[first:last + 1]
        )
#
#
#
#
class Histogram2D:
    """
    Two-dimensional histogram.

    Parameters
    ----------
    bins_x : int
        The number of bins along *x*.
    low_x : float
        The lower *x* edge of the histogram.
    high_x : float
        The upper *x* edge of the histogram.
    bins_y : int
        The number of bins along *y*.
    low_y : float
        The lower *y* edge of the histogram.
    high_y : float
        The upper *y* edge of the histogram.
    """
    #
    #
    def __init__(self, bins_x, low_x, high_x, bins_y, low_y, high_y):
        self.axis_x = Histogram1D(bins_x, low_x, high_x)
        self.axis_y = Histogram1D(bins_y, low_y, high_y)
        self.counts = np.zeros((bins_x, bins_y))
    #
    #
    @property
    def shape(self):
        """The number of bins along *x* and *y*."""
        return self.counts.shape
    #
    #
    def fill(self, x, y):
        """Fill value pairs into histogram."""
        x = np.asarray(x, dtype = np.float64)
        y = np.asarray(y, dtype = np.float64)
        mask = np.isfinite(x) & np.isfinite(y)
        self.counts += np.histogram2d(
            x[mask], y[mask], bins = (self.axis_x.edges, self.axis_y.edges)
        )[0]
    #
    #
    def integral(self, first_x, last_x, first_y, last_y):
        """Get sum of bin counts within bin box (inclusive)."""
        return self.counts[
            max(first_x, 0):last_x + 1, max(first_y, 0):last_y + 1
        ].sum()
    #
    #
    def projection_x(self, first_y = 0, last_y = None):
        """
        Project onto *x* axis.

        Parameters
        ----------
        first_y : int
            The first *y* bin included in the projection. Defaults to ``0``.
        last_y : int
            The last *y* bin included in the projection (inclusive). Defaults to
            the last bin.

        Returns
        -------
        hist : Histogram1D
            The projection.
        """
        #
        #
        if last_y is None:
            last_y = self.shape[1] - 1
        return Histogram1D(
            len(self.axis_x), self.axis_x.edges[0], self.axis_x.edges[-1],
            counts = self.counts[:, max(first_y, 0):last_y + 1].sum(axis = 1)
        )
    #
    #
    def projection_y(self, first_x = 0, last_x = None):
        """
        Project onto *y* axis.

        See :meth:`projection_x` for details.
        """
        #
        #
        if last_x is None:
            last_x = self.shape[0] - 1
        return Histogram1D(
            len(self.axis_y), self.axis_y.edges[0], self.axis_y.edges[-1],
            counts = self.counts[max(first_x, 0):last_x + 1, :].sum(axis = 0)
        )
