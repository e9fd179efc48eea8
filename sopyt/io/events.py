"""
The SOPyT event file module
===========================

This module reads and writes event files. An event file is a NumPy binary file
(``.npy``) containing a structured array with (at least) the measured fields
of :data:`sopyt.io.config.EVENT_DTYPE`:

- ``x_fp``, ``y_fp``: focal plane positions (cm);
- ``xp_fp``, ``yp_fp``: focal plane slopes;
- ``theta``: scattering angle (degrees);
- ``delta``: relative momentum deviation (%);
- ``x_ver``, ``y_ver``: horizontal and vertical beam position at the target
  (cm).

The events are expected to be cut by upstream quality criteria already. No
additional event selection is performed here.


List of functions
-----------------

* :func:`load_events`: Load events from file.
* :func:`save_events`: Save (reconstructed) events to file.
"""
#
#
__version__ = "0.1.0"
__all__ = ["load_events", "save_events"]
#
#
# import modules
import logging
import numpy as np
#
# import individual functions
from pathlib import Path
from sopyt.errors import FormatError
from sopyt.io.config import _EVENT_INPUT_FIELDS, EVENT_DTYPE
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
def load_events(file):
    """
    Load events from file.

    Parameters
    ----------
    file : str or Path
        The NumPy event file.

    Returns
    -------
    events : ndarray, shape (n,)
        The *n* events with data type :data:`sopyt.io.config.EVENT_DTYPE`. All
        reconstructed fields are initialized with ``nan``.

    Raises
    ------
    FileNotFoundError
        If the event file does not exist.
    FormatError
        If the file does not contain a structured array with all measured
        fields.
    """
    #
    #
    # check event file
    file = Path(file)
    if not file.is_file():
        raise FileNotFoundError(f"Could not find event file \"{file}\".")
    #
    #
    # load data from file
    logger.info(f"Loading events from file \"{file}\".")
    try:
        data = np.load(file, allow_pickle = False)
    except ValueError as e:
        raise FormatError(f"Invalid event file \"{file}\": {e}") from e
    #
    # check for required fields
    if data.dtype.names is None:
        raise FormatError(f"Event file \"{file}\" has no named fields.")
    missing = [name for name in _EVENT_INPUT_FIELDS
               if name not in data.dtype.names]
    if len(missing) > 0:
        raise FormatError(
            f"Event file \"{file}\" misses field(s) {', '.join(missing)}."
        )
    #
    #
    # copy measured fields into fresh event array
    events = np.empty(len(data), dtype = EVENT_DTYPE)
    for name in EVENT_DTYPE.names:
        events[name] = data[name] if name in _EVENT_INPUT_FIELDS else np.nan
    #
    #
    # return events
    logger.info(f"Event file contains {len(events)} events.")
    return events
#
#
#
#
def save_events(file, events):
    """
    Save (reconstructed) events to file.

    Parameters
    ----------
    file : str or Path
        The NumPy event file.
    events : ndarray, shape (n,)
        The *n* events with data type :data:`sopyt.io.config.EVENT_DTYPE`.
    """
    #
    #
    logger.info(f"Writing {len(events)} events to \"{file}\".")
    np.save(file, np.asarray(events, dtype = EVENT_DTYPE), allow_pickle = False)
