"""
Client side of the control protocol, used by the stop/add/list commands.
"""
import logging
from typing import List, Optional, Tuple

from .control import (
    EXTENSION_ID, SAR_ADD_AGENT, SAR_AGENTS_ANSWER, SAR_KILL_AGENT,
    SAR_REQUEST_AGENTS, decode_agents_answer, encode_add_agent
)
from .errors import ControlError, RegistryValidationError
from .protocol import (
    Frame, SSH_AGENT_EXTENSION_FAILURE, SSH_AGENT_SUCCESS, SSH_AGENTC_EXTENSION,
    encode_extension, request
)
from .socket_utils import connect_unix, same_socket

LOG = logging.getLogger(__name__)

CLIENT_TIMEOUT = 10


class RouterClient:
    """
    Sends control requests to a running agent router.

    Each call opens its own connection.
    """

    def __init__(self, socket_path: str, timeout: Optional[float] = CLIENT_TIMEOUT):
        self.socket_path = socket_path
        self.timeout = timeout

    def _control(self, sub_type: int, sub_body: bytes = b"") -> Frame:
        body = encode_extension(EXTENSION_ID, sub_type, sub_body)
        with connect_unix(self.socket_path, self.timeout) as sock:
            reply = request(sock, SSH_AGENTC_EXTENSION, body)
        LOG.debug("control %d reply: type:%d", sub_type, reply.type)
        return reply

    def kill(self) -> None:
        """Stop the router. Raises ControlError unless it confirms."""
        reply = self._control(SAR_KILL_AGENT)
        if reply.type != SSH_AGENT_SUCCESS:
            raise ControlError("router refused to stop (reply type {})".format(reply.type))

    def add_agent(self, terminal_id: str, upstream: Optional[str]) -> None:
        """
        Register an agent for a terminal ("" for the default agent).

        Raises:
            RegistryValidationError: If the loop check fails or the router
                rejects the terminal or socket
        """
        if same_socket(upstream, self.socket_path):
            raise RegistryValidationError(
                "refusing to route {} to the router itself".format(terminal_id or "default"))

        reply = self._control(SAR_ADD_AGENT, encode_add_agent(terminal_id, upstream))
        if reply.type == SSH_AGENT_EXTENSION_FAILURE:
            raise RegistryValidationError(
                "router rejected agent {} for {}".format(upstream, terminal_id or "default"))
        if reply.type != SSH_AGENT_SUCCESS:
            raise ControlError("unexpected reply type {}".format(reply.type))

    def list_agents(self) -> List[Tuple[str, str]]:
        """Return (label, socket) pairs, label "" for the default agent."""
        reply = self._control(SAR_REQUEST_AGENTS)
        if reply.type != SAR_AGENTS_ANSWER:
            raise ControlError("unexpected reply type {}".format(reply.type))
        return decode_agents_answer(reply.body)
