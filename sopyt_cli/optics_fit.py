#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
#
desc = """
Refit the target-x independent reconstruction matrix of a magnetic spectrometer.

This script performs an optics calibration as described by a calibration job
file (TOML). For every run listed in the job, the events are reconstructed
with the old reconstruction matrix, assigned to target foils and sieve slit
holes, and added to the normal equations of the new matrix. After all runs, the
normal equations are solved once and the new matrix pair is written.

The normal equations of the target x-slope are dumped to two text files (by
default "xpVec.txt" and "xpMat.txt") for external inspection.

The script serves as a convenient command line wrapper around the SOPyT
calibration module. Default settings (fit order, association windows, output
file names) are read from the user configuration file, which is created on
first use.
"""
#
#
#
#
# import modules
import argparse
import logging
import sys
#
# import individual functions/modules
from sopyt.calibration import run_job
from sopyt.errors import FormatError, SingularFitError
from sopyt.io.config import load_job
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
# program's arguments
parser = argparse.ArgumentParser(
    description = desc, add_help = False,
    formatter_class = argparse.RawTextHelpFormatter
)
parser.add_argument(
    "job", type = str,
    help = """\
The calibration job file (TOML).
"""
)
parser.add_argument(
    "--debug", action = 'store_true',
    help = """\
Whether to print debug messages.
"""
)
parser.add_argument(
    "-h", "--help", action = "help",
    default = argparse.SUPPRESS,
    help = """\
Show this help message and exit.
"""
)
parser.add_argument(
    "--save-events", metavar = "<dir>", type = str, default = None,
    help = """\
Directory to store the reconstructed events of each run
as NumPy binary files (run_<number>_reconstructed.npy).
"""
)
parser.add_argument(
    "--strict", action = 'store_true',
    help = """\
Do not write the new matrix if the fit failed for any
coordinate.
"""
)
#
#
#
#
def main(argv = None):
    """
    Run optics calibration from the command line.
    """
    #
    #
    args = parser.parse_args(argv)
    logging.basicConfig(level = logging.DEBUG if args.debug else logging.INFO)
    #
    #
    # perform calibration
    try:
        result = run_job(
            load_job(args.job), strict = args.strict,
            events_dir = args.save_events
        )
    except (OSError, FormatError) as e:
        logger.error(str(e))
        return 1
    except SingularFitError as e:
        logger.error(f"New matrix not written: {e}")
        return 2
    #
    #
    # report fit status
    for name, success in result.success.items():
        logger.info(f"Fit of \"{name}\": {'success' if success else 'failure'}.")
    return 0 if result.ok else 2
#
#
#
#
if __name__ == "__main__":
    sys.exit(main())
