"""
The SOPyT command line scripts
==============================

The following command line scripts are available:

* ``sopyt-optics-fit`` (:mod:`sopyt_cli.optics_fit`): Refit the target-x
  independent reconstruction matrix from calibration runs.
"""
