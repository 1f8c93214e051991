"""fork_faucet package root.

Fund test accounts on forked and local development chains
by borrowing large token holders through the node impersonation cheat codes.

See :py:mod:`fork_faucet.funding` for the entry point.
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"fork-faucet needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
