"""
Routing table: which upstream agent serves which terminal.
"""
import logging
import os
import threading
from typing import Dict, List, Optional, Tuple

LOG = logging.getLogger(__name__)


class AgentRegistry:
    """
    Map of terminal device path to upstream agent socket, plus a default.

    A terminal mapped to None has explicitly no agent and does not fall back
    to the default. Entries are only validated when they are added; stale
    ones are dropped by prune(). Every method takes the same lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._agents: Dict[str, Optional[str]] = {}
        self._default_agent: Optional[str] = None

    def route(self, terminal_id: Optional[str]) -> Optional[str]:
        """Return the upstream socket for a terminal, or the default agent."""
        with self._lock:
            if terminal_id is not None and terminal_id in self._agents:
                return self._agents[terminal_id]
            return self._default_agent

    def add(self, terminal_id: str, upstream: Optional[str]) -> bool:
        """
        Register an upstream agent for a terminal.

        Args:
            terminal_id: TTY device path, or "" to set the default agent
            upstream: Agent socket path, or None for "no agent"

        Returns:
            True if the registry was updated, False if validation failed
        """
        if terminal_id and not os.path.exists(terminal_id):
            LOG.warning("Refusing agent for %s: terminal does not exist", terminal_id)
            return False
        if upstream is not None and not os.path.exists(upstream):
            LOG.warning("Refusing agent %s: socket does not exist", upstream)
            return False

        with self._lock:
            if terminal_id:
                self._agents[terminal_id] = upstream
            else:
                self._default_agent = upstream

        LOG.info("Agent for %s: %s", terminal_id or "default", upstream or "(none)")
        return True

    def prune(self) -> None:
        """Forget entries whose terminal or agent socket disappeared."""
        with self._lock:
            for terminal_id, upstream in list(self._agents.items()):
                if not os.path.exists(terminal_id) or \
                        (upstream is not None and not os.path.exists(upstream)):
                    LOG.info("Dropping stale agent for %s: %s", terminal_id, upstream)
                    del self._agents[terminal_id]

            if self._default_agent is not None and \
                    not os.path.exists(self._default_agent):
                LOG.info("Dropping stale default agent: %s", self._default_agent)
                self._default_agent = None

    def snapshot_for_listing(self) -> List[Tuple[str, str]]:
        """
        Return (label, socket) pairs, the default agent first with label "".
        """
        with self._lock:
            entries = []
            if self._default_agent is not None:
                entries.append(("", self._default_agent))
            for terminal_id in sorted(self._agents):
                upstream = self._agents[terminal_id]
                if upstream is not None:
                    entries.append((terminal_id, upstream))
            return entries
