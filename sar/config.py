"""
Configuration from the environment, with defaults.
"""
import logging
import os
from typing import Optional

from .multiplexer import parse_tmux_env
from .platform_utils import expand_path, get_ssh_dir

LOG = logging.getLogger(__name__)

DEFAULT_UPSTREAM_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0
PUBLISHED_VARIABLE = "SSH_AUTH_SOCK"


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        LOG.warning("Ignoring %s=%r: not a number", name, value)
        return default


def default_socket_path() -> str:
    """
    Default listen address.

    Next to the tmux server socket when running inside tmux, so every tmux
    server gets its own router; ~/.ssh/agent-router.sock otherwise.
    """
    parsed = parse_tmux_env(os.environ.get("TMUX"))
    if parsed is not None:
        return parsed[0] + "-agent.sock"
    return str(get_ssh_dir() / "agent-router.sock")


def get_socket_path(override: Optional[str] = None) -> str:
    """Listen address from the command line, $SAR_SOCKET, or the default."""
    path = override or os.environ.get("SAR_SOCKET") or default_socket_path()
    return os.path.abspath(expand_path(path))


def lock_path_for(socket_path: str) -> str:
    """The singleton lock file belonging to a listen address."""
    base, ext = os.path.splitext(socket_path)
    if ext == ".lock":
        # Never the socket itself
        return socket_path + ".lock"
    return base + ".lock"


def get_log_file() -> Optional[str]:
    path = os.environ.get("SAR_LOG_FILE")
    return os.path.abspath(expand_path(path)) if path else None


def get_upstream_timeout() -> float:
    return _float_env("SAR_UPSTREAM_TIMEOUT", DEFAULT_UPSTREAM_TIMEOUT)


def get_poll_interval() -> float:
    return _float_env("SAR_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)


def is_debug() -> bool:
    return os.environ.get("DEBUG") == "1"
