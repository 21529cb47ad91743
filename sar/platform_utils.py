"""
Platform detection and peer credential lookup for Unix domain sockets.
"""
import os
import socket
import struct
import sys
from pathlib import Path

from .errors import AuthorizationMismatch

# struct ucred { pid_t pid; uid_t uid; gid_t gid; }
PEERCRED_STRUCT = struct.Struct('= i I I')
# struct xucred { u_int cr_version; uid_t cr_uid; short cr_ngroups; gid_t cr_groups[16]; }
XUCRED_STRUCT = struct.Struct('@ I I h 16I')
SOL_LOCAL = 0
LOCAL_PEERCRED = 0x001


def is_macos() -> bool:
    """Check if running on macOS."""
    return sys.platform == "darwin"


def is_linux() -> bool:
    """Check if running on Linux."""
    return sys.platform.startswith("linux")


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path, return Path object."""
    expanded = os.path.expanduser(os.path.expandvars(path))
    return Path(expanded)


def get_home_dir() -> Path:
    """Get user home directory as Path."""
    return Path.home()


def get_ssh_dir() -> Path:
    """Get .ssh directory path."""
    return get_home_dir() / ".ssh"


def peer_credentials(sock: socket.socket) -> int:
    """
    Return the effective uid of the process on the other end of a Unix socket.

    Raises:
        AuthorizationMismatch: If the credentials cannot be read
    """
    try:
        if is_linux():
            creds = sock.getsockopt(socket.SOL_SOCKET, socket.SO_PEERCRED,
                                    PEERCRED_STRUCT.size)
            _pid, uid, _gid = PEERCRED_STRUCT.unpack(creds)
            return uid
        if is_macos():
            creds = sock.getsockopt(SOL_LOCAL, LOCAL_PEERCRED, XUCRED_STRUCT.size)
            return XUCRED_STRUCT.unpack(creds)[1]
    except OSError as e:
        raise AuthorizationMismatch("cannot read peer credentials: {}".format(e))
    raise AuthorizationMismatch("peer credentials are not supported on {}".format(sys.platform))
