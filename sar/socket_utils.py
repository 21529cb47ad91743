"""
Unix socket helpers for talking to SSH agents.
"""
import logging
import os
import socket
import stat
from pathlib import Path
from typing import Optional

LOG = logging.getLogger(__name__)


def check_agent_socket(socket_path: Optional[str]) -> bool:
    """
    Check if a path exists and is a Unix socket.

    Args:
        socket_path: Path to the socket

    Returns:
        True if the path is a socket, False otherwise
    """
    if not socket_path:
        return False

    try:
        mode = Path(socket_path).stat().st_mode
    except OSError as e:
        LOG.debug("Cannot stat %s: %s", socket_path, e)
        return False

    if not stat.S_ISSOCK(mode):
        LOG.debug("Path exists but is not a socket: %s", socket_path)
        return False
    return True


def connect_unix(socket_path: str, timeout: Optional[float] = None) -> socket.socket:
    """
    Open a stream connection to a Unix socket.

    Raises:
        OSError: If the connection cannot be established
    """
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(timeout)
        sock.connect(socket_path)
    except OSError:
        sock.close()
        raise
    return sock


def same_socket(sock1: Optional[str], sock2: Optional[str]) -> bool:
    """Check whether two paths name the same socket, following symlinks."""
    if not sock1 or not sock2:
        return False
    return os.path.realpath(sock1) == os.path.realpath(sock2)


def remove_socket(socket_path: str) -> None:
    """Remove a socket file, ignoring a missing one."""
    try:
        os.unlink(socket_path)
    except FileNotFoundError:
        pass
