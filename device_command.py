"""
Thin wrapper around the external tools the device collectors shell out to.
"""

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.5


def run_command(cmd, timeout=DEFAULT_TIMEOUT):
    """
    Execute cmd and return its captured stdout as text. Set LC_ALL=C in the child process
    environment so that the tool does not perform any locale-specific formatting.

    Raises subprocess.CalledProcessError on a non-zero exit status, subprocess.TimeoutExpired
    when the tool runs past the deadline and FileNotFoundError when it is not installed.
    """
    logger.debug("running %s", " ".join(cmd))
    return subprocess.run(
        list(cmd),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=True,
        timeout=timeout,
        env=dict(os.environ, LC_ALL="C"),
    ).stdout.decode("utf-8")
