"""
tmux integration: which client has focus, is the server still alive, and
publishing variables into the global environment.
"""
import logging
import os
import subprocess
from typing import List, Optional, Tuple

from .errors import MultiplexerError
from .process import process_exists

LOG = logging.getLogger(__name__)

TMUX_TIMEOUT = 5


def parse_tmux_env(value: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    Split $TMUX ("socket_path,server_pid,session_index").

    Returns:
        Tuple of (socket path, server pid), or None if not inside tmux
    """
    if not value:
        return None
    parts = value.split(",")
    if len(parts) < 2 or not parts[0]:
        return None
    try:
        return parts[0], int(parts[1])
    except ValueError:
        return None


class TmuxMultiplexer:
    """
    Queries the tmux server this process runs under.

    Args:
        tmux_env: Value of $TMUX, defaults to the current environment
    """

    def __init__(self, tmux_env: Optional[str] = None, tmux_bin: str = "tmux"):
        if tmux_env is None:
            tmux_env = os.environ.get("TMUX", "")
        parsed = parse_tmux_env(tmux_env)
        if parsed is None:
            raise MultiplexerError("not running inside tmux")
        self.socket_path, self.server_pid = parsed
        self.tmux_bin = tmux_bin

    def _tmux(self, args: List[str]) -> str:
        cmd = [self.tmux_bin, "-S", self.socket_path] + args
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=TMUX_TIMEOUT
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise MultiplexerError("tmux {} failed: {}".format(args[0], e))
        return result.stdout

    def is_alive(self) -> bool:
        """Check that the tmux server process and its socket still exist."""
        return process_exists(self.server_pid) and os.path.exists(self.socket_path)

    def current_focused_terminal(self) -> Optional[str]:
        """Return the tty of the most recently active tmux client."""
        try:
            output = self._tmux(["list-clients", "-F", "#{client_activity} #{client_tty}"])
        except MultiplexerError as e:
            LOG.debug("Cannot list tmux clients: %s", e)
            return None

        latest = None
        for line in output.splitlines():
            activity, _, tty = line.strip().partition(" ")
            if not tty:
                continue
            try:
                stamp = int(activity)
            except ValueError:
                continue
            if latest is None or stamp > latest[0]:
                latest = (stamp, tty)
        return latest[1] if latest else None

    def current_client_terminal(self) -> Optional[str]:
        """Return the tty of the tmux client this command was started from."""
        try:
            tty = self._tmux(["display-message", "-p", "#{client_tty}"]).strip()
        except MultiplexerError as e:
            LOG.debug("Cannot query tmux client: %s", e)
            return None
        return tty or None

    def publish(self, name: str, value: str) -> None:
        """Set a variable in the tmux global environment."""
        self._tmux(["set-environment", "-g", name, value])
        LOG.debug("Published %s=%s to tmux", name, value)
