"""
Process liveness checks.
"""
import logging

import psutil

LOG = logging.getLogger(__name__)


def process_exists(pid: int) -> bool:
    """
    Check if a process with the given PID exists and is not a zombie.

    Args:
        pid: Process ID

    Returns:
        True if process exists
    """
    if not pid:
        return False

    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        LOG.debug("Access denied when checking PID %d", pid)
        return psutil.pid_exists(pid)
