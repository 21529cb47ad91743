"""
Private control protocol carried inside SSH_AGENTC_EXTENSION messages.

Control requests are extension requests whose extension id is EXTENSION_ID.
The byte after the id selects the operation.
"""
import logging
from typing import List, NamedTuple, Optional, Tuple

from .errors import ProtocolError
from .protocol import (
    Frame, SSH_AGENT_SUCCESS, SSH_AGENT_EXTENSION_FAILURE, UINT32,
    pack_string, unpack_string
)
from .registry import AgentRegistry
from .socket_utils import same_socket

LOG = logging.getLogger(__name__)

EXTENSION_ID = "agent-router@ssh-agent-router"

SAR_KILL_AGENT = 100
SAR_ADD_AGENT = 101
SAR_REMOVE_AGENT = 102  # reserved
SAR_REQUEST_AGENTS = 103
SAR_AGENTS_ANSWER = 104


class ControlReply(NamedTuple):
    frame: Frame
    # Stop the server once the reply has been sent
    stop: bool = False


def encode_add_agent(terminal_id: str, upstream: Optional[str]) -> bytes:
    return pack_string(terminal_id) + pack_string(upstream or "")


def decode_add_agent(sub_body: bytes) -> Tuple[str, Optional[str]]:
    raw_tty, offset = unpack_string(sub_body)
    raw_sock, offset = unpack_string(sub_body, offset)
    try:
        terminal_id = raw_tty.decode('utf-8')
        upstream = raw_sock.decode('utf-8')
    except UnicodeDecodeError:
        raise ProtocolError("agent registration is not valid UTF-8")
    return terminal_id, upstream or None


def encode_agents_answer(entries: List[Tuple[str, str]]) -> bytes:
    body = bytearray(UINT32.pack(len(entries)))
    for label, upstream in entries:
        body.extend(pack_string(label))
        body.extend(pack_string(upstream))
    return bytes(body)


def decode_agents_answer(body: bytes) -> List[Tuple[str, str]]:
    """Parse a SAR_AGENTS_ANSWER body into (label, socket) pairs."""
    if len(body) < UINT32.size:
        raise ProtocolError("agents answer without entry count")
    count = UINT32.unpack_from(body)[0]
    offset = UINT32.size
    entries = []
    for _ in range(count):
        label, offset = unpack_string(body, offset)
        upstream, offset = unpack_string(body, offset)
        entries.append((label.decode('utf-8', errors='replace'),
                        upstream.decode('utf-8', errors='replace')))
    return entries


class ControlHandler:
    """
    Answers control requests against an AgentRegistry.

    Args:
        registry: Routing table to query and update
        listen_address: The router's own socket, never accepted as an agent
    """

    def __init__(self, registry: AgentRegistry, listen_address: Optional[str] = None):
        self.registry = registry
        self.listen_address = listen_address
        self._dispatch = {
            SAR_KILL_AGENT: self._kill,
            SAR_ADD_AGENT: self._add_agent,
            SAR_REQUEST_AGENTS: self._request_agents,
        }

    def handle(self, sub_type: int, sub_body: bytes) -> ControlReply:
        method = self._dispatch.get(sub_type)
        if method is None:
            LOG.debug("Unknown control request %d", sub_type)
            return ControlReply(Frame(SSH_AGENT_EXTENSION_FAILURE))
        return method(sub_body)

    def _kill(self, sub_body):
        LOG.info("Kill requested")
        return ControlReply(Frame(SSH_AGENT_SUCCESS), stop=True)

    def _add_agent(self, sub_body):
        try:
            terminal_id, upstream = decode_add_agent(sub_body)
        except ProtocolError as e:
            LOG.warning("Malformed agent registration: %s", e)
            return ControlReply(Frame(SSH_AGENT_EXTENSION_FAILURE))

        if same_socket(upstream, self.listen_address):
            LOG.warning("Refusing agent %s: it is the router itself", upstream)
            return ControlReply(Frame(SSH_AGENT_EXTENSION_FAILURE))

        if self.registry.add(terminal_id, upstream):
            return ControlReply(Frame(SSH_AGENT_SUCCESS))
        return ControlReply(Frame(SSH_AGENT_EXTENSION_FAILURE))

    def _request_agents(self, sub_body):
        entries = self.registry.snapshot_for_listing()
        return ControlReply(Frame(SAR_AGENTS_ANSWER, encode_agents_answer(entries)))
