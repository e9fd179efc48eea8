"""
The SOPyT file input/output subpackage
======================================

The ``sopyt.io`` subpackage provides tools for reading and writing the files
used during an optics calibration: reconstruction matrix files, event files,
user settings, and calibration job descriptions.


Available modules
-----------------

The following modules are available in this subpackage:

.. toctree::
   :maxdepth: 1

   The SOPyT configuration module (sopyt.io.config)<sopyt.io.config>
   The SOPyT event file module (sopyt.io.events)<sopyt.io.events>
   The SOPyT matrix file module (sopyt.io.matrix)<sopyt.io.matrix>
"""
__version__ = "0.1.0"
__all__ = ["config", "events", "matrix"]
