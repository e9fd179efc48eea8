"""
The SOPyT Package: Iterative Spectrometer Optics Calibration
============================================================

The SOPyT package calibrates the optics of a magnetic spectrometer. Starting
from raw focal plane track coordinates and a polynomial reconstruction matrix,
it reconstructs the target coordinates of every event, associates the events
with the known calibration foils and sieve slit holes, and refits the
polynomial coefficients by least squares so that the reconstructed coordinates
match the physical foil and hole geometry.

The modules can be used individually or chained through the
:ref:`calibration module<sopyt.calibration:The SOPyT calibration module>`,
which is also wrapped by the ``sopyt-optics-fit`` command line script.


Available subpackages
---------------------

.. toctree::
   :maxdepth: 1

   The SOPyT file input/output subpackage (sopyt.io)<sopyt.io>


Available modules
-----------------

.. toctree::
   :maxdepth: 1

   The SOPyT association module (sopyt.association)<sopyt.association>
   The SOPyT calibration module (sopyt.calibration)<sopyt.calibration>
   The SOPyT error module (sopyt.errors)<sopyt.errors>
   The SOPyT fit module (sopyt.fit)<sopyt.fit>
   The SOPyT histogram module (sopyt.histogram)<sopyt.histogram>
   The SOPyT reconstruction matrix module (sopyt.matrix)<sopyt.matrix>
   The SOPyT peak module (sopyt.peaks)<sopyt.peaks>
   The SOPyT reconstruction module (sopyt.reconstruction)<sopyt.reconstruction>
"""
__version__ = '0.1.0'
