"""
The SOPyT configuration module
==============================

This module provides the configuration layer of the SOPyT package. It serves
two purposes:

1. **User settings**, i.e. default values for calibration jobs (fit order,
   number of target-x iterations, association windows, and names of the
   diagnostic output files). These settings are stored in a TOML file in a
   platform-specific user directory, which is created automatically with
   default content if none is found.
2. **Calibration jobs**, i.e. TOML files describing which reconstruction
   matrices to refit and which runs (with their foil and sieve geometry) to
   use for the fit.


User settings file location
---------------------------

The user settings file is stored in a platform-specific user directory, e.g.:

- Linux: ``~/.config/sopyt/config.toml``
- Windows: ``%USERPROFILE%\\AppData\\Local\\sopyt\\sopyt\\config.toml``

These locations are determined automatically using the |platformdirs| package.


Calibration job structure
-------------------------

.. code-block:: toml

    [matrix]
    old = "shms_optics.dat"
    new = "shms_optics_new.dat"

    [fit]
    order      = 5
    iterations = 2

    [[runs]]
    number            = 1814
    events            = "run_1814.npy"
    foils             = [-10.0, 0.0, 10.0]
    theta             = 10.0
    x_mispointing     = 0.0
    y_mispointing     = 0.0
    phi_offset        = 0.0
    theta_offset      = 0.0
    legacy_correction = false

      [runs.sieve]
      rows      = 11
      cols      = 11
      x_min     = -12.5
      x_spacing = 2.5
      y_min     = -8.2
      y_spacing = 1.64
      z0        = 253.0
      staggered = false

The ``[fit]``, ``[association]``, and ``[output]`` tables are optional; missing
entries fall back to the user settings. Relative file names are resolved
against the directory of the job file. The matrix file names refer to *pairs*
of files, see :func:`sopyt.io.matrix.matrix_file_names`.


List of functions
-----------------

* :func:`get_setting`: Retrieve a nested setting from the user configuration.
* :func:`load_config`: Load user configuration from file (or cache if already
  loaded).
* :func:`load_job`: Load calibration job from TOML file.


.. |platformdirs| raw:: html

        <a href="https://platformdirs.readthedocs.io/en/latest/"
        target="_blank">platformdirs</a>
"""
#
#
#
#
__version__ = "0.1.0"
__all__ = [
    "CalibrationJob",
    "EVENT_DTYPE",
    "RunConfig",
    "SieveGeometry",
    "get_setting",
    "load_config",
    "load_job"
]
#
#
#
#
# import modules
import logging
import numpy as np
import tomllib
#
# import special functions
from dataclasses import dataclass, field
from pathlib import Path
from platformdirs import user_config_dir
from sopyt.errors import FormatError
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
# internal configuration
#
################################################################################
# configuration file name and path
_APP_NAME = "sopyt"
_CONFIG_FILENAME = "config.toml"
_CONFIG_DIR = Path(user_config_dir(_APP_NAME))
_CONFIG_PATH = _CONFIG_DIR / _CONFIG_FILENAME
#
#
# default configuration content
_DEFAULT_CONFIG_TEXT = """\
# default fit settings
[fit]
order      = 5
iterations = 2

# foil and sieve hole association windows (in units of the fitted peak widths
# unless noted otherwise)
[association]
z_sigma            = 1.3
y_sigma_low_delta  = 1.0
y_sigma_high_delta = 1.8
delta_split        = 1.0
delta_min          = -12.0
max_events_per_hole = 50

# diagnostic dumps of the xp normal equations
[output]
vector = "xpVec.txt"
matrix = "xpMat.txt"
"""
#
#
#
#
################################################################################
#
# global configuration variables
#
################################################################################
# event format (measured quantities followed by reconstructed quantities)
EVENT_DTYPE = np.dtype([
    ('x_fp', '<f8'), ('xp_fp', '<f8'), ('y_fp', '<f8'), ('yp_fp', '<f8'),
    ('theta', '<f8'), ('delta', '<f8'), ('x_ver', '<f8'), ('y_ver', '<f8'),
    ('xp_tar', '<f8'), ('y_tar', '<f8'), ('yp_tar', '<f8'), ('x_tar', '<f8'),
    ('z_ver', '<f8'), ('x_sieve', '<f8'), ('y_sieve', '<f8')
])
"The structured data type of one event."
#
_EVENT_INPUT_FIELDS = EVENT_DTYPE.names[:8]
"The fields which must be provided by an event source."
#
#
#
#
################################################################################
#
# private module-level variables
#
################################################################################
# cached configuration dictionary
_config_cache = None
#
# marker for mandatory job settings
_MANDATORY = object()
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
class SieveGeometry:
    """
    Physical hole grid of the sieve slit.

    All lengths are given in cm. *z0* is the distance of the sieve plane from
    the target along the spectrometer axis. For *staggered* sieves, the
    vertical hole positions are shifted by half a spacing.
    """
    rows:      int
    cols:      int
    x_min:     float
    x_spacing: float
    y_min:     float
    y_spacing: float
    z0:        float
    staggered: bool = False
    #
    #
    @property
    def holes_x(self):
        """The physical *x* positions of the hole rows."""
        return self.x_min + self.x_spacing * np.arange(self.rows)
    #
    @property
    def holes_y(self):
        """The physical *y* positions of the hole columns."""
        y_min = self.y_min
        if self.staggered:
            y_min += self.y_spacing / 2.0
        return y_min + self.y_spacing * np.arange(self.cols)
#
#
#
#
@dataclass(frozen = True)
class RunConfig:
    """
    Geometry and spectrometer settings of one calibration run.

    The foil positions *foils* (in cm along the beam) must be given in
    increasing order. *theta* is the nominal spectrometer angle (in degrees).
    The mispointings are given in cm, the angle offsets *phi_offset* (added to
    the reconstructed target x-slope) and *theta_offset* (added to the target
    y-slope) in radians. *legacy_correction* enables the empirical y-target
    versus y-slope correlation correction used for data taken before the first
    optics optimization.
    """
    number:            int
    foils:             tuple
    theta:             float
    sieve:             SieveGeometry
    events:            Path  = None
    x_mispointing:     float = 0.0
    y_mispointing:     float = 0.0
    phi_offset:        float = 0.0
    theta_offset:      float = 0.0
    legacy_correction: bool  = False
    #
    #
    @property
    def n_foils(self):
        """The number of target foils."""
        return len(self.foils)
    #
    @property
    def sin_theta(self):
        """The sine of the nominal spectrometer angle."""
        return np.sin(np.deg2rad(self.theta))
#
#
#
#
@dataclass(frozen = True)
class CalibrationJob:
    """
    Complete description of one optics calibration.

    *matrix_old* and *matrix_new* name matrix file pairs (see
    :func:`sopyt.io.matrix.matrix_file_names`). *association* holds overrides
    for :class:`sopyt.association.AssociationWindows`.
    """
    matrix_old:    Path
    matrix_new:    Path
    order:         int
    iterations:    int
    runs:          tuple
    association:   dict = field(default_factory = dict)
    output_vector: Path = Path("xpVec.txt")
    output_matrix: Path = Path("xpMat.txt")
#
#
#
#
################################################################################
#
# public functions
#
################################################################################
def get_setting(key_path):
    """
    Retrieve a nested setting from the user configuration.

    Parameters
    ----------
    key_path : str
        Dot-separated path to the config setting, e.g. ``"fit.order"``.

    Returns
    -------
    Any
        The requested config value.

    Raises
    ------
    KeyError
        If the setting does not exist.
    """
    #
    #
    # load configuration
    config = load_config()
    #
    #
    # traverse along configuration dictionary
    for key in key_path.split("."):
        try:
            config = config[key]
        except(KeyError):
            raise KeyError(
                f"Setting \"{key_path}\" not found in configuration."
            )
    #
    #
    # return (nested) configuration setting
    return config
#
#
#
#
def load_config(force_reload = False):
    """
    Load user configuration from file (or cache if already loaded).

    Parameters
    ----------
    force_reload : bool
        Whether to reload the configuration file from disk.

    Returns
    -------
    dict
        The parsed configuration dictionary.
    """
    #
    #
    # use global configuration cache
    global _config_cache
    #
    #
    # create configuration directory if not present
    if not _CONFIG_DIR.exists():
        logger.info(f"Creating configuration directory at \"{_CONFIG_DIR}\".")
        _CONFIG_DIR.mkdir(parents = True, exist_ok = True)
    #
    #
    # create default configuration file if not present
    if not _CONFIG_PATH.exists():
        logger.info(
            f"Creating default configuration file \"{_CONFIG_FILENAME}\"."
        )
        _CONFIG_PATH.write_text(_DEFAULT_CONFIG_TEXT, encoding = "utf-8")
    #
    #
    # load configuration from file
    if _config_cache is None or force_reload:
        logger.info(f"Loading configuration from \"{_CONFIG_PATH}\".")
        with _CONFIG_PATH.open("rb") as f:
            try:
                _config_cache = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise FormatError(
                    f"Invalid configuration file \"{_CONFIG_PATH}\": {e}"
                ) from e
    else:
        logger.debug("Using cached configuration settings.")
    #
    #
    # return (cached) configuration
    return _config_cache
#
#
#
#
def load_job(file):
    """
    Load calibration job from TOML file.

    Parameters
    ----------
    file : str or Path
        The calibration job file, as described in
        :ref:`calibration job structure<sopyt.io.config:Calibration job
        structure>`.

    Returns
    -------
    job : CalibrationJob
        The parsed calibration job.

    Raises
    ------
    FileNotFoundError
        If the job file does not exist.
    FormatError
        If the job file is no valid TOML or misses mandatory entries.
    """
    #
    #
    # read job file
    file = Path(file)
    logger.info(f"Reading calibration job from \"{file}\".")
    with file.open("rb") as f:
        try:
            job = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise FormatError(f"Invalid job file \"{file}\": {e}") from e
    base = file.parent
    #
    #
    # matrix files
    matrix = _get(job, "matrix", dict, file)
    matrix_old = base / _get(matrix, "old", str, file, "matrix")
    matrix_new = base / _get(matrix, "new", str, file, "matrix")
    #
    # fit settings (with user defaults)
    fit = _get(job, "fit", dict, file, default = {})
    order = _get(
        fit, "order", int, file, "fit", default = get_setting("fit.order")
    )
    iterations = _get(
        fit, "iterations", int, file, "fit",
        default = get_setting("fit.iterations")
    )
    if order < 0 or iterations < 0:
        raise FormatError(
            f"Fit order and iterations must not be negative in \"{file}\"."
        )
    #
    # association window overrides (job settings take precedence)
    association = dict(get_setting("association"))
    association.update(_get(job, "association", dict, file, default = {}))
    #
    # output files
    output = _get(job, "output", dict, file, default = {})
    output_vector = base / _get(
        output, "vector", str, file, "output",
        default = get_setting("output.vector")
    )
    output_matrix = base / _get(
        output, "matrix", str, file, "output",
        default = get_setting("output.matrix")
    )
    #
    #
    # runs
    runs = tuple(
        _parse_run(run, base, file) for run in _get(job, "runs", list, file)
    )
    if len(runs) == 0:
        raise FormatError(f"No runs specified in \"{file}\".")
    logger.info(f"Calibration job contains {len(runs)} run(s).")
    #
    #
    return CalibrationJob(
        matrix_old, matrix_new, order, iterations, runs,
        association = association,
        output_vector = output_vector, output_matrix = output_matrix
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
def _get(table, key, type_, file, section = None, default = _MANDATORY):
    """
    Get typed entry from TOML table.

    Integers are accepted where floats are expected.
    """
    #
    #
    name = key if section is None else f"{section}.{key}"
    if key not in table:
        if default is _MANDATORY:
            raise FormatError(f"Missing entry \"{name}\" in \"{file}\".")
        return default
    #
    #
    value = table[key]
    if type_ is float and isinstance(value, int) and \
       not isinstance(value, bool):
        value = float(value)
    if not isinstance(value, type_) or \
       (type_ is int and isinstance(value, bool)):
        raise FormatError(
            f"Entry \"{name}\" in \"{file}\" must be of type "
            f"{type_.__name__} (got {type(value).__name__})."
        )
    return value
#
#
#
#
def _parse_run(run, base, file):
    """
    Parse one ``[[runs]]`` table.
    """
    #
    #
    if not isinstance(run, dict):
        raise FormatError(f"Invalid run entry in \"{file}\".")
    number = _get(run, "number", int, file, "runs")
    section = f"runs[{number}]"
    #
    #
    # foil positions (must be increasing)
    foils = _get(run, "foils", list, file, section)
    try:
        foils = tuple(float(z) for z in foils)
    except (TypeError, ValueError):
        raise FormatError(
            f"Foil positions of run {number} in \"{file}\" must be numbers."
        )
    if len(foils) == 0 or any(np.diff(foils) <= 0.0):
        raise FormatError(
            f"Foil positions of run {number} in \"{file}\" must be non-empty "
            f"and strictly increasing."
        )
    #
    #
    # sieve geometry
    sieve = _get(run, "sieve", dict, file, section)
    section_sieve = section + ".sieve"
    sieve = SieveGeometry(
        _get(sieve, "rows",      int,   file, section_sieve),
        _get(sieve, "cols",      int,   file, section_sieve),
        _get(sieve, "x_min",     float, file, section_sieve),
        _get(sieve, "x_spacing", float, file, section_sieve),
        _get(sieve, "y_min",     float, file, section_sieve),
        _get(sieve, "y_spacing", float, file, section_sieve),
        _get(sieve, "z0",        float, file, section_sieve),
        staggered = _get(
            sieve, "staggered", bool, file, section_sieve, default = False
        )
    )
    if sieve.rows < 1 or sieve.cols < 1:
        raise FormatError(
            f"Sieve of run {number} in \"{file}\" must have at least one hole."
        )
    #
    #
    # event file (optional, events may be supplied programmatically)
    events = _get(run, "events", str, file, section, default = None)
    if events is not None:
        events = base / events
    #
    #
    return RunConfig(
        number, foils,
        _get(run, "theta", float, file, section),
        sieve,
        events = events,
        x_mispointing = _get(
            run, "x_mispointing", float, file, section, default = 0.0
        ),
        y_mispointing = _get(
            run, "y_mispointing", float, file, section, default = 0.0
        ),
        phi_offset = _get(
            run, "phi_offset", float, file, section, default = 0.0
        ),
        theta_offset = _get(
            run, "theta_offset", float, file, section, default = 0.0
        ),
        legacy_correction = _get(
            run, "legacy_correction", bool, file, section, default = False
        )
    )
